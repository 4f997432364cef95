"""
Multipart MJPEG over the overlay surface.

A part goes out once per processed frame (keyed by its inference timestamp)
and never faster than the requested rate. The JPEG comes from the renderer's
per-surface cache, so an idle pipeline is not re-encoded for every client.
"""
from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Optional, Protocol

from motion_studio.pose.types import FrameResult

BOUNDARY = "frame"
MEDIA_TYPE = f"multipart/x-mixed-replace; boundary={BOUNDARY}"
DEFAULT_FPS = 15.0


class OverlaySource(Protocol):
	@property
	def last_result(self) -> Optional[FrameResult]: ...

	def latest_jpeg(self) -> Optional[bytes]: ...


def frame_interval(fps: object, default: float = DEFAULT_FPS) -> float:
	try:
		rate = float(fps)  # type: ignore[arg-type]
	except (TypeError, ValueError):
		rate = default
	if not rate > 0.0:
		rate = default
	return 1.0 / rate


def multipart_part(jpeg: bytes) -> bytes:
	head = f"--{BOUNDARY}\r\nContent-Type: image/jpeg\r\nContent-Length: {len(jpeg)}\r\n\r\n"
	return head.encode("ascii") + jpeg + b"\r\n"


async def overlay_mjpeg(source: OverlaySource, fps: object = DEFAULT_FPS, poll: float = 0.01) -> AsyncIterator[bytes]:
	interval = frame_interval(fps)
	sent_ts: Optional[int] = None
	next_due = 0.0
	while True:
		result = source.last_result
		if result is None or result.timestamp_us == sent_ts:
			await asyncio.sleep(poll)
			continue
		wait = next_due - time.monotonic()
		if wait > 0:
			await asyncio.sleep(wait)
			continue
		jpeg = source.latest_jpeg()
		if jpeg is None:
			await asyncio.sleep(poll)
			continue
		sent_ts = result.timestamp_us
		next_due = time.monotonic() + interval
		yield multipart_part(jpeg)
