"""
Fakes for the camera device, the inference service and the refresh signal.
No camera, model file or event loop is needed by the core tests.
"""
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional

import cv2
import numpy as np
import pytest

# Root-level modules (server, app_state, deps, routers) when run from a checkout.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
	sys.path.insert(0, str(ROOT))

from motion_studio.capture import CaptureManager, VideoFrame  # noqa: E402
from motion_studio.config import CaptureConfig, PoseConfig  # noqa: E402
from motion_studio.pose.base import PoseProvider  # noqa: E402
from motion_studio.pose.types import Landmark, PoseLandmark, Skeleton  # noqa: E402

PL = PoseLandmark


def make_image(width: int = 64, height: int = 48, value: int = 0) -> np.ndarray:
	return np.full((height, width, 3), value, dtype=np.uint8)


def make_skeleton(**overrides: Optional[Landmark]) -> Skeleton:
	"""
	Upright figure with every angle-relevant joint present.
	Keyword names are PoseLandmark member names (lower case); None removes a joint.
	"""
	points = {
		PL.LEFT_SHOULDER: Landmark(0.4, 0.3, visibility=0.9),
		PL.RIGHT_SHOULDER: Landmark(0.6, 0.3, visibility=0.9),
		PL.LEFT_ELBOW: Landmark(0.4, 0.45, visibility=0.9),
		PL.RIGHT_ELBOW: Landmark(0.6, 0.45, visibility=0.9),
		PL.LEFT_WRIST: Landmark(0.55, 0.45, visibility=0.9),
		PL.RIGHT_WRIST: Landmark(0.6, 0.6, visibility=0.9),
		PL.LEFT_HIP: Landmark(0.42, 0.6, visibility=0.9),
		PL.RIGHT_HIP: Landmark(0.58, 0.6, visibility=0.9),
		PL.LEFT_KNEE: Landmark(0.42, 0.75, visibility=0.9),
		PL.RIGHT_KNEE: Landmark(0.58, 0.75, visibility=0.9),
		PL.LEFT_ANKLE: Landmark(0.42, 0.9, visibility=0.9),
		PL.RIGHT_ANKLE: Landmark(0.58, 0.9, visibility=0.9),
	}
	for name, lm in overrides.items():
		joint = PL[name.upper()]
		if lm is None:
			points.pop(joint, None)
		else:
			points[joint] = lm
	return Skeleton.from_points(points)


class FakeDevice:
	"""
	Stand-in for cv2.VideoCapture. `pos_step_ms` > 0 makes it report a device
	clock (like a file source); 0 behaves like a webcam.
	"""

	def __init__(
		self,
		registry: "DeviceRegistry",
		index: Any,
		opened: bool = True,
		frames: bool = True,
		width: int = 64,
		height: int = 48,
		pos_step_ms: float = 33.0,
	) -> None:
		self.registry = registry
		self.index = index
		self._opened = opened
		self._frames = frames
		self.width = width
		self.height = height
		self.pos_step_ms = pos_step_ms
		self.reads = 0
		self.released = 0
		self.props = {}

	def isOpened(self) -> bool:
		return self._opened

	def read(self):
		if not self._opened or not self._frames:
			return False, None
		self.reads += 1
		return True, make_image(self.width, self.height, value=self.reads % 255)

	def set(self, prop: int, value: Any) -> bool:
		self.props[prop] = value
		return True

	def get(self, prop: int) -> float:
		if prop == cv2.CAP_PROP_POS_MSEC:
			return float(self.reads) * self.pos_step_ms
		return float(self.props.get(prop, 0.0))

	def release(self) -> None:
		if self._opened:
			self._opened = False
			self.registry.on_release(self)
		self.released += 1


class DeviceRegistry:
	"""
	device_factory for CaptureManager that records every acquisition and the
	maximum number of simultaneously open devices.
	"""

	def __init__(self, **device_kwargs: Any) -> None:
		self.device_kwargs = device_kwargs
		self.per_index = {}
		self.created: List[FakeDevice] = []
		self.open_now = 0
		self.max_open = 0

	def __call__(self, index: Any) -> FakeDevice:
		kwargs = dict(self.device_kwargs)
		kwargs.update(self.per_index.get(index, {}))
		dev = FakeDevice(self, index, **kwargs)
		self.created.append(dev)
		if dev.isOpened():
			self.open_now += 1
			self.max_open = max(self.max_open, self.open_now)
		return dev

	def on_release(self, dev: FakeDevice) -> None:
		self.open_now -= 1


class FakeProvider(PoseProvider):
	def __init__(self, cfg: Optional[PoseConfig] = None, skeletons: Optional[List[Skeleton]] = None) -> None:
		super().__init__(cfg or PoseConfig(model_path="fake.task"))
		self.skeletons = list(skeletons) if skeletons is not None else [make_skeleton()]
		self.calls: List[int] = []
		self.loads = 0
		self.releases = 0
		self.fail_load: Optional[Exception] = None
		self.fail_infer: Optional[Exception] = None

	def name(self) -> str:
		return "fake"

	def _load(self, cfg: PoseConfig) -> None:
		if self.fail_load is not None:
			raise self.fail_load
		self.loads += 1

	def _infer(self, frame: Any, timestamp_us: int) -> List[Skeleton]:
		self.calls.append(timestamp_us)
		if self.fail_infer is not None:
			raise self.fail_infer
		return list(self.skeletons)

	def _release(self) -> None:
		self.releases += 1


class ManualHandle:
	def __init__(self, callback: Callable[[], None]) -> None:
		self.callback = callback
		self.cancelled = False
		self.fired = False

	def cancel(self) -> None:
		self.cancelled = True


class ManualDriver:
	"""Refresh signal under test control: fire() runs the pending tick, if any."""

	def __init__(self) -> None:
		self.handles: List[ManualHandle] = []

	def schedule(self, callback: Callable[[], None]) -> ManualHandle:
		h = ManualHandle(callback)
		self.handles.append(h)
		return h

	@property
	def pending(self) -> List[ManualHandle]:
		return [h for h in self.handles if not h.cancelled and not h.fired]

	def fire(self) -> bool:
		pending = self.pending
		if not pending:
			return False
		h = pending[-1]
		h.fired = True
		h.callback()
		return True


class FakeSource:
	"""FrameSource whose current frame is set directly by the test."""

	def __init__(self, frame: Optional[VideoFrame] = None) -> None:
		self.frame = frame

	def current_frame(self) -> Optional[VideoFrame]:
		return self.frame

	def show(self, video_time: float, image: Optional[np.ndarray] = None) -> None:
		self.frame = VideoFrame(image=image if image is not None else make_image(), video_time=float(video_time))


class FakeClock:
	def __init__(self, start: float = 100.0) -> None:
		self.now = float(start)

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += float(seconds)


@pytest.fixture
def registry() -> DeviceRegistry:
	return DeviceRegistry()


@pytest.fixture
def capture(registry: DeviceRegistry) -> CaptureManager:
	cfg = CaptureConfig(width=64, height=48, mirror_user=False)
	return CaptureManager(cfg, device_factory=registry, threaded=False)


@pytest.fixture
def provider() -> FakeProvider:
	return FakeProvider()


@pytest.fixture
def driver() -> ManualDriver:
	return ManualDriver()
