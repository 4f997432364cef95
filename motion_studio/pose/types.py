from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterator, Mapping, Optional, Tuple


class PoseLandmark(IntEnum):
	"""
	BlazePose landmark ids. One slot per anatomical joint in a Skeleton.
	"""

	NOSE = 0
	LEFT_EYE_INNER = 1
	LEFT_EYE = 2
	LEFT_EYE_OUTER = 3
	RIGHT_EYE_INNER = 4
	RIGHT_EYE = 5
	RIGHT_EYE_OUTER = 6
	LEFT_EAR = 7
	RIGHT_EAR = 8
	MOUTH_LEFT = 9
	MOUTH_RIGHT = 10
	LEFT_SHOULDER = 11
	RIGHT_SHOULDER = 12
	LEFT_ELBOW = 13
	RIGHT_ELBOW = 14
	LEFT_WRIST = 15
	RIGHT_WRIST = 16
	LEFT_PINKY = 17
	RIGHT_PINKY = 18
	LEFT_INDEX = 19
	RIGHT_INDEX = 20
	LEFT_THUMB = 21
	RIGHT_THUMB = 22
	LEFT_HIP = 23
	RIGHT_HIP = 24
	LEFT_KNEE = 25
	RIGHT_KNEE = 26
	LEFT_ANKLE = 27
	RIGHT_ANKLE = 28
	LEFT_HEEL = 29
	RIGHT_HEEL = 30
	LEFT_FOOT_INDEX = 31
	RIGHT_FOOT_INDEX = 32


SKELETON_SIZE = len(PoseLandmark)

PL = PoseLandmark

# Connector topology drawn between joints (same edge set as the pose landmarker model).
POSE_CONNECTIONS: Tuple[Tuple[int, int], ...] = (
	(PL.NOSE, PL.LEFT_EYE_INNER),
	(PL.LEFT_EYE_INNER, PL.LEFT_EYE),
	(PL.LEFT_EYE, PL.LEFT_EYE_OUTER),
	(PL.LEFT_EYE_OUTER, PL.LEFT_EAR),
	(PL.NOSE, PL.RIGHT_EYE_INNER),
	(PL.RIGHT_EYE_INNER, PL.RIGHT_EYE),
	(PL.RIGHT_EYE, PL.RIGHT_EYE_OUTER),
	(PL.RIGHT_EYE_OUTER, PL.RIGHT_EAR),
	(PL.MOUTH_LEFT, PL.MOUTH_RIGHT),
	(PL.LEFT_SHOULDER, PL.RIGHT_SHOULDER),
	(PL.LEFT_SHOULDER, PL.LEFT_ELBOW),
	(PL.LEFT_ELBOW, PL.LEFT_WRIST),
	(PL.LEFT_WRIST, PL.LEFT_PINKY),
	(PL.LEFT_WRIST, PL.LEFT_INDEX),
	(PL.LEFT_WRIST, PL.LEFT_THUMB),
	(PL.LEFT_PINKY, PL.LEFT_INDEX),
	(PL.RIGHT_SHOULDER, PL.RIGHT_ELBOW),
	(PL.RIGHT_ELBOW, PL.RIGHT_WRIST),
	(PL.RIGHT_WRIST, PL.RIGHT_PINKY),
	(PL.RIGHT_WRIST, PL.RIGHT_INDEX),
	(PL.RIGHT_WRIST, PL.RIGHT_THUMB),
	(PL.RIGHT_PINKY, PL.RIGHT_INDEX),
	(PL.LEFT_SHOULDER, PL.LEFT_HIP),
	(PL.RIGHT_SHOULDER, PL.RIGHT_HIP),
	(PL.LEFT_HIP, PL.RIGHT_HIP),
	(PL.LEFT_HIP, PL.LEFT_KNEE),
	(PL.RIGHT_HIP, PL.RIGHT_KNEE),
	(PL.LEFT_KNEE, PL.LEFT_ANKLE),
	(PL.RIGHT_KNEE, PL.RIGHT_ANKLE),
	(PL.LEFT_ANKLE, PL.LEFT_HEEL),
	(PL.RIGHT_ANKLE, PL.RIGHT_HEEL),
	(PL.LEFT_HEEL, PL.LEFT_FOOT_INDEX),
	(PL.RIGHT_HEEL, PL.RIGHT_FOOT_INDEX),
	(PL.LEFT_ANKLE, PL.LEFT_FOOT_INDEX),
	(PL.RIGHT_ANKLE, PL.RIGHT_FOOT_INDEX),
)


@dataclass(frozen=True)
class Landmark:
	"""
	A single keypoint in normalized image coordinates.

	- x, y are relative to frame width/height (nominally [0, 1]; the model may
	  report slightly outside the frame).
	- z is relative depth, visibility a [0..1] confidence (both optional).
	"""

	x: float
	y: float
	z: Optional[float] = None
	visibility: Optional[float] = None

	def is_finite(self) -> bool:
		return math.isfinite(self.x) and math.isfinite(self.y)

	def to_pixels(self, width: int, height: int) -> Tuple[int, int]:
		return int(round(self.x * width)), int(round(self.y * height))


@dataclass(frozen=True)
class Skeleton:
	"""
	One detected person for one frame: a fixed-length sequence indexed by PoseLandmark.

	A slot is None when the inference service did not return that joint.
	"""

	landmarks: Tuple[Optional[Landmark], ...]

	def __post_init__(self) -> None:
		if len(self.landmarks) != SKELETON_SIZE:
			raise ValueError(f"skeleton needs {SKELETON_SIZE} landmark slots, got {len(self.landmarks)}")
		# Accept any sequence but store an immutable tuple.
		object.__setattr__(self, "landmarks", tuple(self.landmarks))

	def get(self, joint: int) -> Optional[Landmark]:
		return self.landmarks[int(joint)]

	def __iter__(self) -> Iterator[Optional[Landmark]]:
		return iter(self.landmarks)

	def __len__(self) -> int:
		return len(self.landmarks)

	@classmethod
	def from_points(cls, points: Mapping[int, Landmark]) -> "Skeleton":
		"""Build a skeleton from a sparse {joint_id: Landmark} mapping; other slots stay empty."""
		slots: list[Optional[Landmark]] = [None] * SKELETON_SIZE
		for idx, lm in points.items():
			slots[int(idx)] = lm
		return cls(tuple(slots))


JOINT_KEYS: Tuple[str, ...] = (
	"leftElbow",
	"rightElbow",
	"leftShoulder",
	"rightShoulder",
	"leftHip",
	"rightHip",
	"leftKnee",
	"rightKnee",
)


@dataclass(frozen=True)
class JointAngleSet:
	"""
	Joint angles (degrees) derived from one processed frame.

	Every key in JOINT_KEYS is always present; None means "undetermined".
	"""

	angles: Dict[str, Optional[float]] = field(default_factory=lambda: {k: None for k in JOINT_KEYS})

	def __post_init__(self) -> None:
		full = {k: None for k in JOINT_KEYS}
		for k, v in dict(self.angles).items():
			if k not in full:
				raise KeyError(f"unknown joint key: {k!r}")
			full[k] = None if v is None else float(v)
		object.__setattr__(self, "angles", full)

	@classmethod
	def undetermined(cls) -> "JointAngleSet":
		return cls()

	def get(self, key: str) -> Optional[float]:
		return self.angles.get(key)

	def __getitem__(self, key: str) -> Optional[float]:
		return self.angles[key]

	def is_empty(self) -> bool:
		return all(v is None for v in self.angles.values())

	def as_dict(self) -> Dict[str, Optional[float]]:
		return dict(self.angles)


@dataclass(frozen=True)
class FrameResult:
	"""
	Everything derived from one processed tick; never retained past the next one.
	"""

	video_time: float
	timestamp_us: int
	skeletons: Tuple[Skeleton, ...] = ()
	angles: JointAngleSet = field(default_factory=JointAngleSet)
