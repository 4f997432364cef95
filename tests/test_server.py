import asyncio

import pytest
from fastapi.testclient import TestClient

from motion_studio.config import AppConfig, CaptureConfig
from motion_studio.overlay import OverlayRenderer
from motion_studio.pipeline import MotionPipeline
import server
from server import create_app


@pytest.fixture
def cfg():
	return AppConfig(capture=CaptureConfig(width=64, height=48, mirror_user=False))


@pytest.fixture
def pipeline(cfg, provider, capture, driver):
	return MotionPipeline(
		cfg,
		provider=provider,
		capture=capture,
		renderer=OverlayRenderer(cfg.overlay, width=64, height=48),
		driver=driver,
	)


@pytest.fixture
def client(cfg, pipeline):
	app = create_app(cfg, pipeline=pipeline, auto_initialize=False)
	with TestClient(app) as c:
		yield c


def _init(client):
	r = client.post("/pipeline/reinitialize", json={})
	assert r.status_code == 200, r.text
	return r.json()


def test_status_before_initialize(client):
	r = client.get("/pipeline/status")
	assert r.status_code == 200
	body = r.json()
	assert body["state"] == "uninitialized"
	assert body["running"] is False
	assert body["model"]["backend"] == "fake"


def test_start_before_initialize_is_conflict(client):
	r = client.post("/pipeline/start")
	assert r.status_code == 409
	assert r.json()["detail"]["kind"] == "pipeline_state"


def test_full_session(client, driver):
	assert _init(client)["status"]["state"] == "ready"

	r = client.post("/pipeline/start", json={"facing": "user"})
	assert r.status_code == 200, r.text
	assert r.json()["status"]["state"] == "running"

	assert client.get("/video/snapshot.jpg").status_code == 404
	driver.fire()

	r = client.get("/angles")
	assert r.status_code == 200
	body = r.json()
	assert body["state"] == "running"
	assert body["skeletons"] == 1
	assert body["angles"]["leftElbow"] == pytest.approx(90.0)
	assert set(body["angles"]) >= {"leftKnee", "rightShoulder"}

	r = client.get("/video/snapshot.jpg")
	assert r.status_code == 200
	assert r.headers["content-type"] == "image/jpeg"
	assert r.content[:2] == b"\xff\xd8"

	r = client.post("/pipeline/facing/switch")
	assert r.status_code == 200
	assert r.json()["status"]["facing"] == "environment"

	r = client.post("/pipeline/stop")
	assert r.status_code == 200
	assert r.json()["status"]["state"] == "ready"
	assert r.json()["status"]["active_tracks"] == 0


def test_toggle(client):
	_init(client)
	assert client.post("/pipeline/toggle").json()["status"]["state"] == "running"
	assert client.post("/pipeline/toggle").json()["status"]["state"] == "ready"


def test_unknown_facing_is_rejected(client):
	_init(client)
	r = client.post("/pipeline/start", json={"facing": "sideways"})
	assert r.status_code == 422


def test_missing_camera_is_service_unavailable(client, registry):
	_init(client)
	registry.per_index[0] = {"opened": False}
	r = client.post("/pipeline/start")
	assert r.status_code == 503
	assert r.json()["detail"]["kind"] == "device_unavailable"
	assert client.get("/pipeline/status").json()["state"] == "ready"


def test_model_failure_is_service_unavailable(client, provider):
	provider.fail_load = RuntimeError("no GPU")
	r = client.post("/pipeline/reinitialize", json={"delegate": "CPU"})
	assert r.status_code == 503
	assert r.json()["detail"]["kind"] == "model_init"
	assert client.get("/pipeline/status").json()["state"] == "error"


def test_reinitialize_applies_options(client, provider):
	r = client.post("/pipeline/reinitialize", json={"num_poses": 1, "min_tracking_confidence": 0.7})
	assert r.status_code == 200
	assert provider.config.num_poses == 1
	assert provider.config.min_tracking_confidence == 0.7
	assert client.post("/pipeline/reinitialize", json={"num_poses": 0}).status_code == 422


def test_websocket_receives_state_events(client):
	_init(client)
	with client.websocket_connect("/ws") as ws:
		hello = ws.receive_json()
		assert hello["type"] == "status"
		assert hello["state"] == "ready"
		client.post("/pipeline/start")
		msg = ws.receive_json()
		assert msg["type"] == "state"
		assert msg["state"] == "running"


def test_websocket_status_request(client):
	with client.websocket_connect("/ws") as ws:
		assert ws.receive_json()["state"] == "uninitialized"
		ws.send_text("status")
		msg = ws.receive_json()
		assert msg["type"] == "status"
		assert msg["model"]["backend"] == "fake"


def test_snapshot_headers(client, driver):
	_init(client)
	client.post("/pipeline/start")
	driver.fire()
	r = client.get("/video/snapshot.jpg")
	assert r.status_code == 200
	assert r.headers["x-surface-size"] == "64x48"
	assert r.headers["cache-control"].startswith("no-store")


class SlowManager:
	def __init__(self):
		self.sent = []
		self.release = None

	async def broadcast_json(self, message):
		await self.release.wait()
		self.sent.append(message)


def test_broadcast_tasks_are_held_until_sent():
	manager = SlowManager()
	held = []

	async def scenario():
		manager.release = asyncio.Event()
		before = set(server._pending_broadcasts)
		server._broadcast(manager, {"type": "log", "msg": "hi"})
		held.extend(server._pending_broadcasts - before)
		assert len(held) == 1
		manager.release.set()
		await held[0]
		await asyncio.sleep(0)

	asyncio.run(scenario())
	assert manager.sent == [{"type": "log", "msg": "hi"}]
	assert held[0] not in server._pending_broadcasts


def test_broadcast_without_a_loop_is_dropped():
	manager = SlowManager()
	before = set(server._pending_broadcasts)
	server._broadcast(manager, {"type": "log", "msg": "hi"})
	assert server._pending_broadcasts == before
	assert manager.sent == []
