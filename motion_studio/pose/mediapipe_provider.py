from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional

import cv2

from motion_studio.config import PoseConfig
from motion_studio.errors import ModelInitError
from motion_studio.pose.base import PoseProvider
from motion_studio.pose.types import SKELETON_SIZE, Landmark, Skeleton

logger = logging.getLogger(__name__)


def _opt_float(v: Any) -> Optional[float]:
	try:
		return None if v is None else float(v)
	except (TypeError, ValueError):
		return None


def skeletons_from_result(result: Any) -> List[Skeleton]:
	"""
	Convert a PoseLandmarkerResult into Skeletons (one per detected person).

	Short landmark lists are padded with empty slots so every Skeleton has the
	fixed BlazePose length.
	"""
	poses = getattr(result, "pose_landmarks", None) or []
	out: List[Skeleton] = []
	for pose in poses:
		slots: List[Optional[Landmark]] = [None] * SKELETON_SIZE
		for i, p in enumerate(list(pose)[:SKELETON_SIZE]):
			x = _opt_float(getattr(p, "x", None))
			y = _opt_float(getattr(p, "y", None))
			if x is None or y is None:
				continue
			slots[i] = Landmark(
				x=x,
				y=y,
				z=_opt_float(getattr(p, "z", None)),
				visibility=_opt_float(getattr(p, "visibility", None)),
			)
		out.append(Skeleton(tuple(slots)))
	return out


class MediaPipePoseProvider(PoseProvider):
	"""
	MediaPipe Tasks PoseLandmarker provider.

	Notes:
	- Frames come in as BGR (OpenCV order) and are converted to SRGB here.
	- The adapter contract is microseconds; PoseLandmarker wants integer
	  milliseconds, also strictly increasing, so sub-millisecond steps are bumped
	  to the next millisecond.
	- A GPU delegate that fails to come up is retried once on CPU.
	"""

	def __init__(self, cfg: Optional[PoseConfig] = None) -> None:
		super().__init__(cfg)
		self._mp = None
		self._landmarker = None
		self._last_ms: Optional[int] = None
		self._delegate_used: Optional[str] = None

	def name(self) -> str:
		return "mediapipe_pose_landmarker"

	@property
	def delegate_used(self) -> Optional[str]:
		return self._delegate_used

	def _build_options(self, cfg: PoseConfig, delegate: str):
		from mediapipe.tasks.python.core.base_options import BaseOptions  # type: ignore
		from mediapipe.tasks.python.vision import PoseLandmarkerOptions, RunningMode  # type: ignore

		base = BaseOptions(
			model_asset_path=str(cfg.model_path),
			delegate=BaseOptions.Delegate.GPU if delegate == "GPU" else BaseOptions.Delegate.CPU,
		)
		running_mode = RunningMode.VIDEO if cfg.running_mode.upper() == "VIDEO" else RunningMode.IMAGE
		return PoseLandmarkerOptions(
			base_options=base,
			running_mode=running_mode,
			num_poses=int(cfg.num_poses),
			min_pose_detection_confidence=float(cfg.min_detection_confidence),
			min_pose_presence_confidence=float(cfg.min_presence_confidence),
			min_tracking_confidence=float(cfg.min_tracking_confidence),
			output_segmentation_masks=bool(cfg.output_segmentation_masks),
		)

	def _load(self, cfg: PoseConfig) -> None:
		try:
			import mediapipe as mp  # type: ignore
			from mediapipe.tasks.python.vision import PoseLandmarker  # type: ignore
		except ImportError as e:
			raise ModelInitError("MediaPipe Tasks API is not available. Install with: pip install mediapipe") from e

		if not Path(cfg.model_path).expanduser().exists():
			raise ModelInitError(f"pose model asset not found: {cfg.model_path}")

		delegates = [cfg.delegate.upper()]
		if delegates[0] == "GPU":
			delegates.append("CPU")

		last_exc: Optional[Exception] = None
		for delegate in delegates:
			try:
				self._landmarker = PoseLandmarker.create_from_options(self._build_options(cfg, delegate))
			except (RuntimeError, ValueError, NotImplementedError) as e:
				last_exc = e
				logger.warning("PoseLandmarker init with %s delegate failed: %r", delegate, e)
				continue
			self._mp = mp
			self._delegate_used = delegate
			self._last_ms = None
			return
		raise ModelInitError(f"PoseLandmarker init failed: {last_exc!r}") from last_exc

	def _infer(self, frame: Any, timestamp_us: int) -> List[Skeleton]:
		rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
		mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb)
		if self.tracks_time:
			ts_ms = int(timestamp_us) // 1000
			if self._last_ms is not None and ts_ms <= self._last_ms:
				ts_ms = self._last_ms + 1
			self._last_ms = ts_ms
			result = self._landmarker.detect_for_video(mp_image, ts_ms)
		else:
			result = self._landmarker.detect(mp_image)
		return skeletons_from_result(result)

	def _release(self) -> None:
		landmarker = self._landmarker
		self._landmarker = None
		self._last_ms = None
		if landmarker is not None:
			landmarker.close()
