from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from io import BytesIO
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from motion_studio.config import OverlayConfig
from motion_studio.pose.angles import JOINT_TABLE
from motion_studio.pose.types import POSE_CONNECTIONS, JointAngleSet, Skeleton

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int]


@dataclass(frozen=True)
class DrawingStyle:
	connector_color: Color
	connector_width: int
	landmark_color: Color
	landmark_fill: Color
	landmark_line_width: int
	landmark_radius: int
	text_color: Color = (255, 255, 255)
	text_scale: float = 0.5

	@classmethod
	def from_config(cls, cfg: OverlayConfig) -> "DrawingStyle":
		return cls(
			connector_color=tuple(cfg.connector_color),
			connector_width=int(cfg.connector_width),
			landmark_color=tuple(cfg.landmark_color),
			landmark_fill=tuple(cfg.landmark_fill),
			landmark_line_width=int(cfg.landmark_line_width),
			landmark_radius=int(cfg.landmark_radius),
		)


def encode_jpeg(surface: np.ndarray, quality: int = 80) -> bytes:
	"""Encode a BGR surface as JPEG bytes."""
	rgb = cv2.cvtColor(surface, cv2.COLOR_BGR2RGB)
	buf = BytesIO()
	Image.fromarray(rgb).save(buf, format="JPEG", quality=int(quality), optimize=True)
	return buf.getvalue()


class OverlayRenderer:
	"""
	Draws the current video frame plus skeleton connectors/markers onto a display
	surface that always matches the live video's native resolution.

	render() is called from the scheduler tick only. The surface is replaced, not
	mutated in place, so readers (MJPEG, snapshot) always see a complete frame.
	"""

	def __init__(self, cfg: Optional[OverlayConfig] = None, width: int = 640, height: int = 480) -> None:
		self._cfg = cfg or OverlayConfig()
		self._lock = threading.Lock()
		self._default_style = DrawingStyle.from_config(self._cfg)
		self._style = self._default_style
		self._style_stack: List[DrawingStyle] = []
		self._width = int(width)
		self._height = int(height)
		self._surface = np.zeros((self._height, self._width, 3), dtype=np.uint8)
		self._latest_jpeg: Optional[bytes] = None
		self._latest_jpeg_src: Optional[np.ndarray] = None

	@property
	def size(self) -> Tuple[int, int]:
		return self._width, self._height

	@property
	def style(self) -> DrawingStyle:
		return self._style

	@property
	def surface(self) -> np.ndarray:
		with self._lock:
			return self._surface

	def resize(self, width: int, height: int) -> None:
		"""Match the surface to new stream metadata (e.g. after a facing switch)."""
		w, h = int(width), int(height)
		if w <= 0 or h <= 0:
			raise ValueError(f"invalid surface size {w}x{h}")
		if (w, h) == (self._width, self._height):
			return
		logger.info("Overlay surface resized %dx%d -> %dx%d", self._width, self._height, w, h)
		with self._lock:
			self._width, self._height = w, h
			self._surface = np.zeros((h, w, 3), dtype=np.uint8)
			self._latest_jpeg = None
			self._latest_jpeg_src = None

	@contextmanager
	def _drawing_state(self, **overrides: Any) -> Iterator[DrawingStyle]:
		"""
		Push a style for the duration of a draw; always pops back, even on error.
		"""
		self._style_stack.append(self._style)
		self._style = replace(self._style, **overrides) if overrides else self._style
		try:
			yield self._style
		finally:
			self._style = self._style_stack.pop()

	def clear(self) -> None:
		with self._lock:
			self._surface = np.zeros((self._height, self._width, 3), dtype=np.uint8)

	def render(
		self,
		frame: np.ndarray,
		skeletons: Sequence[Skeleton] = (),
		angles: Optional[JointAngleSet] = None,
	) -> np.ndarray:
		w, h = self._width, self._height
		# Clear, then the frame as background at native resolution.
		canvas = np.zeros((h, w, 3), dtype=np.uint8)
		if frame is not None:
			if frame.shape[1] != w or frame.shape[0] != h:
				frame = cv2.resize(frame, (w, h), interpolation=cv2.INTER_LINEAR)
			canvas[:, :, :] = frame[:, :, :3]

		with self._drawing_state() as style:
			for skeleton in skeletons:
				self._draw_connectors(canvas, skeleton, style)
				self._draw_landmarks(canvas, skeleton, style)
			if self._cfg.show_angles and angles is not None and skeletons:
				self._draw_angle_labels(canvas, skeletons[0], angles, style)

		with self._lock:
			self._surface = canvas
		return canvas

	def latest_jpeg(self) -> Optional[bytes]:
		"""JPEG of the current surface; re-encoded only when the surface changed."""
		with self._lock:
			surface = self._surface
			if self._latest_jpeg is not None and self._latest_jpeg_src is surface:
				return self._latest_jpeg
		jpeg = encode_jpeg(surface, quality=self._cfg.jpeg_quality)
		with self._lock:
			if self._surface is surface:
				self._latest_jpeg = jpeg
				self._latest_jpeg_src = surface
		return jpeg

	def _draw_connectors(self, canvas: np.ndarray, skeleton: Skeleton, style: DrawingStyle) -> None:
		h, w = canvas.shape[0], canvas.shape[1]
		for start, end in POSE_CONNECTIONS:
			a = skeleton.get(start)
			b = skeleton.get(end)
			if a is None or b is None or not (a.is_finite() and b.is_finite()):
				continue
			cv2.line(canvas, a.to_pixels(w, h), b.to_pixels(w, h), style.connector_color, style.connector_width, cv2.LINE_AA)

	def _draw_landmarks(self, canvas: np.ndarray, skeleton: Skeleton, style: DrawingStyle) -> None:
		h, w = canvas.shape[0], canvas.shape[1]
		for lm in skeleton:
			if lm is None or not lm.is_finite():
				continue
			pt = lm.to_pixels(w, h)
			cv2.circle(canvas, pt, style.landmark_radius, style.landmark_fill, -1, cv2.LINE_AA)
			cv2.circle(canvas, pt, style.landmark_radius, style.landmark_color, style.landmark_line_width, cv2.LINE_AA)

	def _draw_angle_labels(self, canvas: np.ndarray, skeleton: Skeleton, angles: JointAngleSet, style: DrawingStyle) -> None:
		h, w = canvas.shape[0], canvas.shape[1]
		for key, (_a, vertex, _c) in JOINT_TABLE.items():
			value = angles.get(key)
			lm = skeleton.get(vertex)
			if value is None or lm is None or not lm.is_finite():
				continue
			x, y = lm.to_pixels(w, h)
			cv2.putText(
				canvas,
				f"{value:.0f}",
				(x + 12, y - 12),
				cv2.FONT_HERSHEY_SIMPLEX,
				style.text_scale,
				style.text_color,
				2,
				cv2.LINE_AA,
			)
