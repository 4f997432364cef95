from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import cv2

from motion_studio.config import CaptureConfig
from motion_studio.errors import DeviceUnavailable, PlaybackError

logger = logging.getLogger(__name__)

MetadataCallback = Callable[[int, int], None]


class FacingMode(str, Enum):
	USER = "user"  # front camera
	ENVIRONMENT = "environment"  # back camera

	def other(self) -> "FacingMode":
		return FacingMode.ENVIRONMENT if self is FacingMode.USER else FacingMode.USER

	@classmethod
	def parse(cls, v: Any) -> "FacingMode":
		if isinstance(v, FacingMode):
			return v
		s = str(v or "").strip().lower()
		if s in ("user", "front"):
			return cls.USER
		if s in ("environment", "back", "rear"):
			return cls.ENVIRONMENT
		raise ValueError(f"unknown facing mode: {v!r}")


@dataclass(frozen=True)
class CaptureConstraints:
	"""
	Requested stream parameters. Devices negotiate; read actual values back from the session.
	"""

	width: int = 640
	height: int = 480
	frame_rate: int = 30
	max_frame_rate: int = 60

	@classmethod
	def from_config(cls, cfg: CaptureConfig) -> "CaptureConstraints":
		return cls(
			width=int(cfg.width),
			height=int(cfg.height),
			frame_rate=int(cfg.frame_rate),
			max_frame_rate=int(cfg.max_frame_rate),
		)


@dataclass
class VideoFrame:
	"""
	Latest decoded frame and its presentation time (seconds on the session clock).
	"""

	image: Any
	video_time: float
	frame_idx: int = 0
	t_host: float = 0.0


class CaptureSession:
	"""
	One live camera stream bound to one device handle.

	The reader thread plays the role of the video element: it advances the
	latest frame independently of whoever consumes it. Consumers only call
	current_frame(). With threaded=False frames are pulled synchronously on each
	current_frame() call instead (file sources, tests).
	"""

	def __init__(
		self,
		device: Any,
		facing: FacingMode,
		device_index: Any,
		first_image: Any,
		mirror: bool = False,
		threaded: bool = True,
	) -> None:
		self._lock = threading.Lock()
		self._device_lock = threading.Lock()
		self._device = device
		self._threaded = bool(threaded)
		self._thread: Optional[threading.Thread] = None
		self._running = False
		self._open = True
		self._last_error: Optional[str] = None

		self.facing = facing
		self.device_index = device_index
		self.mirror = bool(mirror)

		h, w = int(first_image.shape[0]), int(first_image.shape[1])
		self.width = w
		self.height = h

		self._t0 = time.monotonic()
		# Prefer the device clock when it reports one (files, some backends); webcams usually report 0.
		self._use_device_clock = self._device_pos_msec() > 0.0
		self._last_video_time: Optional[float] = None
		self._frame_idx = 0
		self._latest: Optional[VideoFrame] = None
		self._publish(first_image)

	@property
	def is_open(self) -> bool:
		with self._lock:
			return bool(self._open)

	@property
	def active_tracks(self) -> int:
		return 1 if self.is_open else 0

	def get_status(self) -> Dict[str, Any]:
		with self._lock:
			return {
				"facing": self.facing.value,
				"device_index": self.device_index,
				"open": bool(self._open),
				"width": int(self.width),
				"height": int(self.height),
				"frame_idx": int(self._frame_idx),
				"video_time": self._latest.video_time if self._latest else None,
				"error": self._last_error,
			}

	def start(self) -> None:
		if not self._threaded:
			return
		with self._lock:
			if self._running or not self._open:
				return
			self._running = True
		t = threading.Thread(target=self._run_reader, name=f"capture-{self.facing.value}", daemon=True)
		self._thread = t
		t.start()

	def current_frame(self) -> Optional[VideoFrame]:
		if not self._threaded and self.is_open:
			self._read_once()
		with self._lock:
			return self._latest

	def close(self) -> None:
		"""
		Stop the reader and release the device. Idempotent.
		"""
		with self._lock:
			if not self._open:
				return
			self._open = False
			self._running = False

		t = self._thread
		if t is not None and t.is_alive() and t is not threading.current_thread():
			t.join(timeout=2.0)
		self._thread = None

		# Waits for an in-flight read to finish before releasing.
		with self._device_lock:
			device = self._device
			self._device = None
			if device is not None:
				try:
					device.release()
				except cv2.error as e:
					logger.warning("Camera release failed (%s): %r", self.facing.value, e)
		logger.info("Capture closed (%s, device=%s)", self.facing.value, self.device_index)

	def _device_pos_msec(self) -> float:
		try:
			return float(self._device.get(cv2.CAP_PROP_POS_MSEC) or 0.0)
		except (cv2.error, TypeError, ValueError, AttributeError):
			return 0.0

	def _video_time_now(self) -> float:
		if self._use_device_clock:
			return self._device_pos_msec() / 1000.0
		return time.monotonic() - self._t0

	def _publish(self, image: Any) -> None:
		if self.mirror:
			image = cv2.flip(image, 1)
		vt = self._video_time_now()
		with self._lock:
			# Same presentation time means the stream has not advanced.
			if self._last_video_time is not None and vt == self._last_video_time and self._latest is not None:
				return
			self._frame_idx += 1
			self._last_video_time = vt
			self._latest = VideoFrame(image=image, video_time=vt, frame_idx=self._frame_idx, t_host=time.time())

	def _read_once(self) -> bool:
		with self._device_lock:
			device = self._device
			if device is None:
				return False
			try:
				ok, image = device.read()
			except cv2.error as e:
				msg = f"camera read error: {e!r}"
				with self._lock:
					repeated = msg == self._last_error
					self._last_error = msg
				if not repeated:
					logger.warning("Camera read failed (%s): %r", self.facing.value, e)
				return False
			if not ok or image is None:
				return False
			self._publish(image)
		return True

	def _run_reader(self) -> None:
		misses = 0
		try:
			while True:
				with self._lock:
					if not self._running:
						break
				if self._read_once():
					misses = 0
					continue
				misses += 1
				if misses == 1 or misses % 100 == 0:
					logger.debug("No frame from camera (%s), misses=%d", self.facing.value, misses)
				time.sleep(0.005)
		finally:
			with self._lock:
				self._running = False


class CaptureManager:
	"""
	Owns the camera device. At most one CaptureSession is open at a time:
	open() always fully closes the previous session before acquiring a device.
	"""

	def __init__(
		self,
		cfg: Optional[CaptureConfig] = None,
		device_factory: Optional[Callable[[Any], Any]] = None,
		threaded: bool = True,
	) -> None:
		self._cfg = cfg or CaptureConfig()
		self._factory = device_factory or cv2.VideoCapture
		self._threaded = bool(threaded)
		self._session: Optional[CaptureSession] = None

	@property
	def session(self) -> Optional[CaptureSession]:
		return self._session

	@property
	def active_tracks(self) -> int:
		s = self._session
		return s.active_tracks if s is not None else 0

	def device_index_for(self, facing: FacingMode) -> int:
		if facing is FacingMode.ENVIRONMENT:
			return int(self._cfg.environment_index)
		return int(self._cfg.user_index)

	def open(
		self,
		facing: Any = None,
		constraints: Optional[CaptureConstraints] = None,
		on_metadata: Optional[MetadataCallback] = None,
		source: Any = None,
	) -> CaptureSession:
		"""
		Acquire a camera and bind it to a new session.

		Raises DeviceUnavailable (no device / permission / open failure) or
		PlaybackError (device opened but never delivered a first frame). In both
		cases nothing is left open.
		"""
		fm = FacingMode.parse(facing if facing is not None else self._cfg.default_facing)
		cons = constraints or CaptureConstraints.from_config(self._cfg)

		# Tear down first: two handles on one camera fight over the device.
		self.close()

		index = source if source is not None else self.device_index_for(fm)
		try:
			device = self._factory(index)
		except (cv2.error, OSError, RuntimeError) as e:
			raise DeviceUnavailable(f"camera {index!r} ({fm.value}) could not be opened: {e!r}") from e
		if device is None or not device.isOpened():
			if device is not None:
				device.release()
			raise DeviceUnavailable(f"camera {index!r} ({fm.value}) is not available")

		self._apply_constraints(device, cons)

		try:
			ok, first = device.read()
		except cv2.error as e:
			ok, first = False, None
			logger.warning("First read failed on camera %r: %r", index, e)
		if not ok or first is None:
			device.release()
			raise PlaybackError(f"camera {index!r} ({fm.value}) opened but produced no frames")

		session = CaptureSession(
			device=device,
			facing=fm,
			device_index=index,
			first_image=first,
			mirror=bool(self._cfg.mirror_user and fm is FacingMode.USER),
			threaded=self._threaded,
		)
		self._session = session
		session.start()
		logger.info("Capture opened (%s, device=%r, %dx%d)", fm.value, index, session.width, session.height)

		if on_metadata is not None:
			on_metadata(session.width, session.height)
		return session

	def close(self, session: Optional[CaptureSession] = None) -> None:
		"""Stop the given (default: active) session. No-op when already closed."""
		target = session or self._session
		if target is None:
			return
		target.close()
		if target is self._session:
			self._session = None

	def switch(
		self,
		constraints: Optional[CaptureConstraints] = None,
		on_metadata: Optional[MetadataCallback] = None,
	) -> CaptureSession:
		"""Close the active session and reopen with the other facing mode."""
		current = self._session
		if current is not None:
			target = current.facing.other()
		else:
			target = FacingMode.parse(self._cfg.default_facing).other()
		return self.open(target, constraints=constraints, on_metadata=on_metadata)

	@staticmethod
	def _apply_constraints(device: Any, cons: CaptureConstraints) -> None:
		# Best-effort: many backends ignore some of these.
		fps = min(int(cons.frame_rate), int(cons.max_frame_rate)) if cons.max_frame_rate > 0 else int(cons.frame_rate)
		for prop, value in (
			(cv2.CAP_PROP_FRAME_WIDTH, int(cons.width)),
			(cv2.CAP_PROP_FRAME_HEIGHT, int(cons.height)),
			(cv2.CAP_PROP_FPS, int(fps)),
		):
			try:
				device.set(prop, value)
			except cv2.error as e:
				logger.debug("Camera property %s=%s not applied: %r", prop, value, e)
