from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from motion_studio.capture import CaptureConstraints, CaptureManager, FacingMode
from motion_studio.config import AppConfig, PoseConfig, get_config
from motion_studio.errors import (
	DeviceUnavailable,
	InferenceTickError,
	ModelInitError,
	MotionStudioError,
	PipelineStateError,
	PlaybackError,
)
from motion_studio.overlay import OverlayRenderer
from motion_studio.pose.base import PoseProvider
from motion_studio.pose.types import FrameResult, JointAngleSet
from motion_studio.scheduler import AsyncioRefreshDriver, FrameScheduler, LoopHandle, RefreshDriver
from motion_studio.state import (
	Error,
	Loading,
	PipelineState,
	Ready,
	Running,
	Uninitialized,
	describe,
	transition,
)

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


def _default_provider(cfg: PoseConfig) -> PoseProvider:
	from motion_studio.pose.mediapipe_provider import MediaPipePoseProvider

	return MediaPipePoseProvider(cfg)


class MotionPipeline:
	"""
	Owns the whole capture -> inference -> angles -> overlay pipeline.

	- One explicit PipelineState instead of loading/running/error flags.
	- Every exit path (stop, facing switch, device/playback failure, loop halt,
	  close) goes through _teardown(), which cancels the loop and releases the
	  camera together.
	- Not thread-safe: call from the event loop that drives the scheduler.
	"""

	def __init__(
		self,
		cfg: Optional[AppConfig] = None,
		*,
		provider: Optional[PoseProvider] = None,
		capture: Optional[CaptureManager] = None,
		renderer: Optional[OverlayRenderer] = None,
		driver: Optional[RefreshDriver] = None,
	) -> None:
		self._cfg = cfg or get_config()
		self._provider = provider or _default_provider(self._cfg.pose)
		self._capture = capture or CaptureManager(self._cfg.capture)
		self._renderer = renderer or OverlayRenderer(
			self._cfg.overlay, width=self._cfg.capture.width, height=self._cfg.capture.height
		)
		self._driver = driver or AsyncioRefreshDriver(self._cfg.scheduler.refresh_hz)
		self._scheduler = FrameScheduler(
			self._provider,
			self._renderer,
			self._driver,
			on_result=self._handle_result,
			on_error=self._handle_tick_error,
			on_halt=self._handle_halt,
			min_visibility=self._cfg.pose.angle_min_visibility,
		)
		self._state: PipelineState = Uninitialized()
		self._facing = FacingMode.parse(self._cfg.capture.default_facing)
		self._loop_handle: Optional[LoopHandle] = None
		self._listeners: List[Listener] = []
		self._last_error: Optional[Dict[str, Any]] = None
		self._last_result: Optional[FrameResult] = None
		self._loading: Optional[asyncio.Future] = None

	# ---- observation -------------------------------------------------------

	@property
	def state(self) -> PipelineState:
		return self._state

	@property
	def facing(self) -> FacingMode:
		return self._facing

	@property
	def provider(self) -> PoseProvider:
		return self._provider

	@property
	def capture(self) -> CaptureManager:
		return self._capture

	@property
	def renderer(self) -> OverlayRenderer:
		return self._renderer

	@property
	def scheduler(self) -> FrameScheduler:
		return self._scheduler

	@property
	def current_angles(self) -> JointAngleSet:
		return self._scheduler.angles

	@property
	def last_result(self) -> Optional[FrameResult]:
		return self._last_result

	def add_listener(self, fn: Listener) -> None:
		self._listeners.append(fn)

	def remove_listener(self, fn: Listener) -> None:
		try:
			self._listeners.remove(fn)
		except ValueError:
			pass

	def latest_jpeg(self) -> Optional[bytes]:
		return self._renderer.latest_jpeg()

	def get_latest_jpeg(self) -> Tuple[Optional[bytes], Optional[float]]:
		"""(jpeg, video_time) of the last rendered frame; (None, None) before the first one."""
		result = self._last_result
		if result is None:
			return None, None
		return self._renderer.latest_jpeg(), result.video_time

	def get_status(self) -> Dict[str, Any]:
		out = describe(self._state)
		w, h = self._renderer.size
		session = self._capture.session
		out.update(
			{
				"facing_preference": self._facing.value,
				"surface": {"width": int(w), "height": int(h)},
				"capture": session.get_status() if session is not None else None,
				"active_tracks": int(self._capture.active_tracks),
				"model": {
					"backend": self._provider.name(),
					"ready": bool(self._provider.is_ready),
					"model_path": self._provider.config.model_path,
					"running_mode": self._provider.config.running_mode,
					"num_poses": int(self._provider.config.num_poses),
				},
				"scheduler": self._scheduler.get_status(),
				"last_error": self._last_error,
			}
		)
		return out

	# ---- lifecycle -----------------------------------------------------------

	async def initialize(self, pose_cfg: Optional[PoseConfig] = None) -> None:
		"""
		Load the model. Until this succeeds start() refuses to run.
		Raises ModelInitError (state -> Error).
		"""
		if isinstance(self._state, (Ready, Running)) and pose_cfg is None:
			return
		if isinstance(self._state, Loading):
			raise PipelineStateError("model initialization already in progress")
		self._set_state(Loading())
		# The load thread cannot be interrupted. Cancelling the caller leaves it
		# running; close() waits for it so the handle it creates is disposed.
		self._loading = asyncio.ensure_future(self._load_model(pose_cfg))
		await asyncio.shield(self._loading)

	async def _load_model(self, pose_cfg: Optional[PoseConfig]) -> None:
		try:
			await self._provider.initialize(pose_cfg)
		except ModelInitError as e:
			self._fail(e)
			raise
		except Exception as e:
			err = ModelInitError(f"model initialization failed: {e!r}")
			self._fail(err)
			raise err from e
		self._set_state(Ready())

	async def reinitialize(self, pose_cfg: PoseConfig) -> None:
		"""Options are fixed per handle: dispose, then load with the new options."""
		if isinstance(self._state, Loading):
			raise PipelineStateError("model initialization already in progress")
		self.stop()
		self._provider.dispose()
		await self.initialize(pose_cfg)

	def start(self, facing: Any = None, constraints: Optional[CaptureConstraints] = None) -> PipelineState:
		if isinstance(self._state, Running):
			return self._state
		if not isinstance(self._state, Ready):
			raise PipelineStateError(f"cannot start while {self._state.name}")
		if facing is not None:
			self._facing = FacingMode.parse(facing)
		self._open_and_run(self._facing, constraints)
		return self._state

	def stop(self) -> PipelineState:
		"""Cancel the loop and release the camera. No-op when not running."""
		self._teardown()
		if isinstance(self._state, Running):
			self._set_state(Ready())
		return self._state

	def toggle(self) -> PipelineState:
		if isinstance(self._state, Running):
			return self.stop()
		return self.start()

	def switch_facing(self, constraints: Optional[CaptureConstraints] = None) -> FacingMode:
		"""
		Flip front/back. While running this is close-then-open: the old device is
		fully released before the new one is acquired.
		"""
		target = self._facing.other()
		self._facing = target
		if isinstance(self._state, Running):
			self._open_and_run(target, constraints)
		return target

	async def close(self) -> None:
		"""Unmount: tear down capture + loop and dispose the model handle."""
		self._teardown()
		loading = self._loading
		self._loading = None
		if loading is not None and not loading.done():
			logger.info("Waiting for model load to finish before closing")
			try:
				await loading
			except ModelInitError:
				# Already recorded as the Error state.
				pass
		self._provider.dispose()
		# Unmount resets to the initial state; a new initialize() is required.
		self._state = Uninitialized()
		self._emit({"type": "state", **describe(self._state)})

	# ---- internals ---------------------------------------------------------

	def _open_and_run(self, facing: FacingMode, constraints: Optional[CaptureConstraints]) -> None:
		self._teardown()
		try:
			session = self._capture.open(facing, constraints=constraints, on_metadata=self._renderer.resize)
		except (DeviceUnavailable, PlaybackError) as e:
			self._teardown()
			self._record_error(e)
			if isinstance(self._state, Running):
				self._set_state(Ready())
			raise
		self._renderer.clear()
		self._loop_handle = self._scheduler.start(session)
		self._last_error = None
		self._set_state(Running(facing=facing.value))

	def _teardown(self) -> None:
		handle = self._loop_handle
		self._loop_handle = None
		if handle is not None:
			handle.cancel()
		self._scheduler.cancel()
		self._capture.close()

	def _set_state(self, target: PipelineState) -> None:
		prev = self._state
		self._state = transition(prev, target)
		if prev != self._state:
			logger.info("Pipeline state %s -> %s", prev.name, self._state.name)
		self._emit({"type": "state", **describe(self._state)})

	def _record_error(self, exc: MotionStudioError) -> None:
		self._last_error = {"kind": exc.kind, "message": str(exc), "t": time.time()}
		logger.warning("Pipeline error (%s): %s", exc.kind, exc)
		self._emit({"type": "log", "msg": f"[{exc.kind}] {exc}"})

	def _fail(self, exc: MotionStudioError) -> None:
		self._teardown()
		self._record_error(exc)
		self._set_state(Error(kind=exc.kind, message=str(exc)))

	def _handle_result(self, result: FrameResult) -> None:
		self._last_result = result
		self._emit(
			{
				"type": "angles",
				"video_time": result.video_time,
				"timestamp_us": result.timestamp_us,
				"skeletons": len(result.skeletons),
				"angles": result.angles.as_dict(),
			}
		)

	def _handle_tick_error(self, err: InferenceTickError) -> None:
		self._emit({"type": "log", "msg": f"[{err.kind}] {err}"})

	def _handle_halt(self, exc: Exception) -> None:
		if isinstance(exc, MotionStudioError):
			self._fail(exc)
		else:
			self._fail(InferenceTickError(str(exc)))

	def _emit(self, event: Dict[str, Any]) -> None:
		for fn in list(self._listeners):
			try:
				fn(event)
			except Exception:
				logger.exception("Pipeline listener failed")
