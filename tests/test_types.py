import pytest

from motion_studio.pose.types import (
	JOINT_KEYS,
	POSE_CONNECTIONS,
	SKELETON_SIZE,
	JointAngleSet,
	Landmark,
	PoseLandmark,
	Skeleton,
)


def test_skeleton_has_fixed_length():
	assert SKELETON_SIZE == 33
	with pytest.raises(ValueError):
		Skeleton(tuple([None] * 10))
	sk = Skeleton([None] * SKELETON_SIZE)
	assert isinstance(sk.landmarks, tuple)
	assert len(sk) == SKELETON_SIZE


def test_skeleton_from_points_leaves_other_slots_empty():
	sk = Skeleton.from_points({PoseLandmark.NOSE: Landmark(0.5, 0.1)})
	assert sk.get(PoseLandmark.NOSE) == Landmark(0.5, 0.1)
	assert sk.get(PoseLandmark.LEFT_KNEE) is None
	assert sum(1 for lm in sk if lm is not None) == 1


def test_connections_reference_valid_joints():
	assert len(POSE_CONNECTIONS) == 35
	for a, b in POSE_CONNECTIONS:
		assert 0 <= int(a) < SKELETON_SIZE
		assert 0 <= int(b) < SKELETON_SIZE
		assert a != b


def test_landmark_pixels_and_finiteness():
	lm = Landmark(0.5, 0.25)
	assert lm.to_pixels(640, 480) == (320, 120)
	assert lm.is_finite()
	assert not Landmark(float("nan"), 0.1).is_finite()


def test_angle_set_always_has_every_key():
	s = JointAngleSet({"leftKnee": 92})
	assert set(s.as_dict()) == set(JOINT_KEYS)
	assert s["leftKnee"] == 92.0
	assert isinstance(s["leftKnee"], float)
	assert s["rightKnee"] is None
	assert not s.is_empty()
	assert JointAngleSet.undetermined().is_empty()


def test_angle_set_rejects_unknown_joint():
	with pytest.raises(KeyError):
		JointAngleSet({"leftAnkle": 10.0})


def test_angle_set_dict_is_a_copy():
	s = JointAngleSet({"leftHip": 170.0})
	d = s.as_dict()
	d["leftHip"] = 0.0
	assert s["leftHip"] == 170.0
