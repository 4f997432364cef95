"""
WebSocket endpoint and ConnectionManager. Route: /ws.

Server -> client: {"type": "angles" | "state" | "log", ...} pipeline events.
Client -> server: the text "status" asks for a fresh status snapshot.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ws"])


class ConnectionManager:
	def __init__(self) -> None:
		self._clients: Set[WebSocket] = set()
		self._lock = asyncio.Lock()

	@property
	def client_count(self) -> int:
		return len(self._clients)

	async def connect(self, websocket: WebSocket) -> None:
		await websocket.accept()
		async with self._lock:
			self._clients.add(websocket)
		logger.debug("WebSocket client connected (%d total)", len(self._clients))

	async def disconnect(self, websocket: WebSocket) -> None:
		async with self._lock:
			self._clients.discard(websocket)

	async def broadcast_json(self, message: Dict[str, Any]) -> None:
		"""Send one event to every client; a client that fails is dropped."""
		payload = json.dumps(message, separators=(",", ":"))
		async with self._lock:
			clients = list(self._clients)
		if not clients:
			return
		results = await asyncio.gather(*(ws.send_text(payload) for ws in clients), return_exceptions=True)
		dead = [ws for ws, res in zip(clients, results) if isinstance(res, Exception)]
		if dead:
			async with self._lock:
				for ws in dead:
					self._clients.discard(ws)
			logger.debug("Dropped %d websocket client(s)", len(dead))


manager = ConnectionManager()


def _status_event(websocket: WebSocket) -> Dict[str, Any]:
	state = getattr(websocket.app.state, "state", None)
	pipeline = getattr(state, "pipeline", None)
	if pipeline is None:
		return {"type": "status", "state": "unavailable"}
	return {"type": "status", **pipeline.get_status()}


@router.websocket("/ws")
async def ws_endpoint(websocket: WebSocket):
	await manager.connect(websocket)
	try:
		await websocket.send_json(_status_event(websocket))
		while True:
			text = await websocket.receive_text()
			if text.strip().lower() == "status":
				await websocket.send_json(_status_event(websocket))
	except WebSocketDisconnect:
		pass
	finally:
		await manager.disconnect(websocket)
