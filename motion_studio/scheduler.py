"""
Refresh-driven frame scheduler.

One tick per display-refresh opportunity, strictly sequential:

    check-frame -> (skip | infer -> angles -> render) -> re-arm

Inference runs at most once per distinct video presentation time, with
capture timestamps (microseconds) derived from elapsed loop time so they keep
increasing however the ticks are spaced. The loop holds an explicit handle to
its pending tick; cancel() is synchronous and idempotent.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol

from motion_studio.errors import InferenceOrderError, InferenceTickError, ProviderClosedError
from motion_studio.overlay import OverlayRenderer
from motion_studio.pose.angles import compute_joint_angles
from motion_studio.pose.base import PoseProvider
from motion_studio.pose.types import FrameResult, JointAngleSet

logger = logging.getLogger(__name__)


class TickHandle(Protocol):
	def cancel(self) -> None: ...


class RefreshDriver(Protocol):
	"""Source of the display-refresh signal: run `callback` at the next paint opportunity."""

	def schedule(self, callback: Callable[[], None]) -> TickHandle: ...


class FrameSource(Protocol):
	"""Anything exposing the latest decoded frame (CaptureSession in production)."""

	def current_frame(self) -> Any: ...


class AsyncioRefreshDriver:
	"""
	Refresh signal emulated on the running asyncio loop at a fixed rate.
	asyncio.TimerHandle.cancel() is idempotent, which LoopHandle relies on.
	"""

	def __init__(self, hz: float = 60.0, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
		self._interval = 1.0 / float(hz) if hz and hz > 0 else 1.0 / 60.0
		self._loop = loop

	@property
	def interval(self) -> float:
		return self._interval

	def schedule(self, callback: Callable[[], None]) -> TickHandle:
		loop = self._loop or asyncio.get_running_loop()
		return loop.call_later(self._interval, callback)


class LoopHandle:
	"""
	Cancellation token returned by FrameScheduler.start().
	"""

	def __init__(self, scheduler: "FrameScheduler", generation: int) -> None:
		self._scheduler = scheduler
		self._generation = generation
		self._cancelled = False

	@property
	def cancelled(self) -> bool:
		return self._cancelled

	def cancel(self) -> None:
		if self._cancelled:
			return
		self._cancelled = True
		self._scheduler._cancel_generation(self._generation)


class FrameScheduler:
	"""
	Cooperative render/inference loop over one frame source and one provider.

	Callbacks (all invoked from inside the tick):
	- on_result(FrameResult) after a processed frame (also after a failed one,
	  carrying an undetermined angle set)
	- on_error(InferenceTickError) for swallowed per-tick failures
	- on_halt(exc) when the loop stops itself because the inference handle is
	  no longer usable (ProviderClosedError / InferenceOrderError)
	"""

	def __init__(
		self,
		provider: PoseProvider,
		renderer: OverlayRenderer,
		driver: RefreshDriver,
		on_result: Optional[Callable[[FrameResult], None]] = None,
		on_error: Optional[Callable[[InferenceTickError], None]] = None,
		on_halt: Optional[Callable[[Exception], None]] = None,
		min_visibility: Optional[float] = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self._provider = provider
		self._renderer = renderer
		self._driver = driver
		self._on_result = on_result
		self._on_error = on_error
		self._on_halt = on_halt
		self._min_visibility = min_visibility
		self._clock = clock

		self._source: Optional[FrameSource] = None
		self._running = False
		self._pending: Optional[TickHandle] = None
		self._generation = 0
		self._in_tick = False

		# Frame clock state
		self._last_video_time: Optional[float] = None
		self._loop_start = 0.0
		self._ts_base = 0
		self._last_issued_us: Optional[int] = None

		self._angles = JointAngleSet.undetermined()
		self._stats: Dict[str, Any] = {
			"ticks": 0,
			"frames_processed": 0,
			"frames_skipped": 0,
			"tick_errors": 0,
			"last_error": None,
		}

	@property
	def running(self) -> bool:
		return bool(self._running)

	@property
	def has_pending_tick(self) -> bool:
		return self._pending is not None

	@property
	def angles(self) -> JointAngleSet:
		return self._angles

	@property
	def last_video_time(self) -> Optional[float]:
		return self._last_video_time

	def get_status(self) -> Dict[str, Any]:
		st = dict(self._stats)
		st.update(
			{
				"running": bool(self._running),
				"pending_tick": self._pending is not None,
				"last_video_time": self._last_video_time,
				"last_timestamp_us": self._last_issued_us,
			}
		)
		return st

	def start(self, source: FrameSource) -> LoopHandle:
		"""
		Begin ticking over `source`. Any previous loop is cancelled first.
		"""
		self.cancel()
		self._generation += 1
		self._source = source
		self._running = True
		self._last_video_time = None
		self._loop_start = self._clock()
		# Continue after whatever this provider handle has already seen.
		last = self._provider.last_timestamp_us
		self._ts_base = 0 if last is None else int(last) + 1
		self._angles = JointAngleSet.undetermined()
		self._arm()
		logger.info("Frame loop started (generation %d)", self._generation)
		return LoopHandle(self, self._generation)

	def cancel(self) -> None:
		"""Cancel the pending tick and halt. Safe to call repeatedly."""
		was_running = self._running
		self._running = False
		pending = self._pending
		self._pending = None
		if pending is not None:
			pending.cancel()
		self._source = None
		if was_running:
			logger.info("Frame loop stopped (generation %d)", self._generation)

	def _cancel_generation(self, generation: int) -> None:
		# A stale token must not stop a newer loop.
		if generation == self._generation:
			self.cancel()

	def _arm(self) -> None:
		if not self._running:
			return
		self._pending = self._driver.schedule(self.tick)

	def next_timestamp_us(self) -> int:
		elapsed = max(0.0, self._clock() - self._loop_start)
		ts = self._ts_base + int(elapsed * 1_000_000)
		if self._last_issued_us is not None and ts <= self._last_issued_us:
			ts = self._last_issued_us + 1
		return ts

	def tick(self) -> None:
		"""
		One loop iteration. Safe to force externally: when the loop is not
		running this is a no-op and nothing is re-armed.
		"""
		if self._in_tick:
			return
		pending = self._pending
		self._pending = None
		if pending is not None:
			# Forced tick: drop the scheduled one so only one chain exists.
			pending.cancel()
		if not self._running:
			return
		self._in_tick = True
		try:
			self._stats["ticks"] += 1
			self._step()
		finally:
			self._in_tick = False
		self._arm()

	def _step(self) -> None:
		if not self._provider.is_ready:
			self._halt(ProviderClosedError("inference handle is not ready"))
			return

		source = self._source
		try:
			frame = source.current_frame() if source is not None else None
		except Exception as e:
			self._tick_failed(e, f"frame fetch failed: {e!r}")
			return
		if frame is None:
			return

		video_time = frame.video_time
		if self._last_video_time is not None and video_time == self._last_video_time:
			self._stats["frames_skipped"] += 1
			return
		# Recorded before inference so a failing frame is not retried.
		self._last_video_time = video_time

		ts_us = self.next_timestamp_us()
		self._last_issued_us = ts_us
		try:
			skeletons = self._provider.infer(frame.image, ts_us)
			angles = compute_joint_angles(skeletons, min_visibility=self._min_visibility)
			self._renderer.render(frame.image, skeletons, angles)
		except (ProviderClosedError, InferenceOrderError) as e:
			self._angles = JointAngleSet.undetermined()
			self._halt(e)
			return
		except Exception as e:
			self._tick_failed(e, f"frame at {video_time:.3f}s failed: {e!r}", video_time=video_time)
			if self._on_result is not None:
				self._on_result(FrameResult(video_time=video_time, timestamp_us=ts_us, angles=self._angles))
			return

		self._angles = angles
		self._stats["frames_processed"] += 1
		logger.debug("Processed frame t=%.3fs ts=%dus skeletons=%d", video_time, ts_us, len(skeletons))
		if self._on_result is not None:
			self._on_result(
				FrameResult(video_time=video_time, timestamp_us=ts_us, skeletons=tuple(skeletons), angles=angles)
			)

	def _tick_failed(self, exc: Exception, message: str, video_time: Optional[float] = None) -> None:
		# The tick still re-arms; only this frame's angles are lost.
		self._angles = JointAngleSet.undetermined()
		err = InferenceTickError(message, video_time=video_time)
		err.__cause__ = exc
		self._stats["tick_errors"] += 1
		self._stats["last_error"] = str(err)
		logger.warning("Tick failed: %s", err, exc_info=exc)
		if self._on_error is not None:
			self._on_error(err)

	def _halt(self, exc: Exception) -> None:
		self._stats["last_error"] = str(exc)
		logger.warning("Frame loop halted: %s", exc)
		self.cancel()
		if self._on_halt is not None:
			self._on_halt(exc)
