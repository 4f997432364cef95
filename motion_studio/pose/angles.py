from __future__ import annotations

import math
from typing import Dict, Optional, Sequence, Tuple

from motion_studio.pose.types import JointAngleSet, Landmark, PoseLandmark, Skeleton


PL = PoseLandmark

# Static joint table: key -> (ray end A, vertex B, ray end C).
JOINT_TABLE: Dict[str, Tuple[PoseLandmark, PoseLandmark, PoseLandmark]] = {
	"leftElbow": (PL.LEFT_SHOULDER, PL.LEFT_ELBOW, PL.LEFT_WRIST),
	"rightElbow": (PL.RIGHT_SHOULDER, PL.RIGHT_ELBOW, PL.RIGHT_WRIST),
	"leftShoulder": (PL.LEFT_ELBOW, PL.LEFT_SHOULDER, PL.LEFT_HIP),
	"rightShoulder": (PL.RIGHT_ELBOW, PL.RIGHT_SHOULDER, PL.RIGHT_HIP),
	"leftHip": (PL.LEFT_SHOULDER, PL.LEFT_HIP, PL.LEFT_KNEE),
	"rightHip": (PL.RIGHT_SHOULDER, PL.RIGHT_HIP, PL.RIGHT_KNEE),
	"leftKnee": (PL.LEFT_HIP, PL.LEFT_KNEE, PL.LEFT_ANKLE),
	"rightKnee": (PL.RIGHT_HIP, PL.RIGHT_KNEE, PL.RIGHT_ANKLE),
}


def calculate_angle(a: Optional[Landmark], b: Optional[Landmark], c: Optional[Landmark]) -> Optional[float]:
	"""
	Angle at vertex B between rays B->A and B->C, in degrees [0, 180].

	Planar only: depth is ignored. Returns None (undetermined) when a landmark is
	missing or non-finite, or when either ray has zero length.
	"""
	if a is None or b is None or c is None:
		return None
	if not (a.is_finite() and b.is_finite() and c.is_finite()):
		return None

	v1x = float(a.x) - float(b.x)
	v1y = float(a.y) - float(b.y)
	v2x = float(c.x) - float(b.x)
	v2y = float(c.y) - float(b.y)

	m1 = math.hypot(v1x, v1y)
	m2 = math.hypot(v2x, v2y)
	if m1 == 0.0 or m2 == 0.0:
		return None

	cos_angle = (v1x * v2x + v1y * v2y) / (m1 * m2)
	# Rounding can push |cos| just past 1.0; acos would raise.
	cos_angle = max(-1.0, min(1.0, cos_angle))
	return math.degrees(math.acos(cos_angle))


def _usable(lm: Optional[Landmark], min_visibility: Optional[float]) -> Optional[Landmark]:
	if lm is None or min_visibility is None:
		return lm
	if lm.visibility is not None and float(lm.visibility) < float(min_visibility):
		return None
	return lm


def joint_angles_for_skeleton(skeleton: Skeleton, min_visibility: Optional[float] = None) -> JointAngleSet:
	out: Dict[str, Optional[float]] = {}
	for key, (ia, ib, ic) in JOINT_TABLE.items():
		out[key] = calculate_angle(
			_usable(skeleton.get(ia), min_visibility),
			_usable(skeleton.get(ib), min_visibility),
			_usable(skeleton.get(ic), min_visibility),
		)
	return JointAngleSet(out)


def compute_joint_angles(skeletons: Sequence[Skeleton], min_visibility: Optional[float] = None) -> JointAngleSet:
	"""
	JointAngleSet for a processed frame. Only the first (primary) skeleton contributes.
	"""
	if not skeletons:
		return JointAngleSet.undetermined()
	return joint_angles_for_skeleton(skeletons[0], min_visibility=min_visibility)
