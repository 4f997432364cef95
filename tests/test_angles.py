import math
import random

import pytest

from motion_studio.pose.angles import JOINT_TABLE, calculate_angle, compute_joint_angles, joint_angles_for_skeleton
from motion_studio.pose.types import JOINT_KEYS, Landmark

from conftest import make_skeleton


def L(x, y, visibility=None):
	return Landmark(x, y, visibility=visibility)


def test_right_angle_at_vertex():
	assert calculate_angle(L(0, 0), L(0, 1), L(1, 1)) == pytest.approx(90.0)


def test_collinear_with_vertex_between_is_straight():
	assert calculate_angle(L(0, 0), L(1, 1), L(2, 2)) == pytest.approx(180.0)


def test_same_direction_is_zero():
	assert calculate_angle(L(1, 0), L(0, 0), L(1, 0)) == pytest.approx(0.0, abs=1e-6)
	assert calculate_angle(L(1, 0), L(0, 0), L(3, 0)) == pytest.approx(0.0, abs=1e-6)


def test_symmetric_and_bounded():
	rng = random.Random(1234)
	for _ in range(500):
		a, b, c = (L(rng.uniform(-2, 2), rng.uniform(-2, 2)) for _ in range(3))
		ang = calculate_angle(a, b, c)
		if ang is None:
			continue
		assert 0.0 <= ang <= 180.0
		assert ang == pytest.approx(calculate_angle(c, b, a))


def test_cosine_clamp_never_nan():
	# Nearly parallel rays with very different magnitudes push |cos| past 1.0 in floating point.
	cases = [
		(L(1e-9, 0.1), L(0.0, 0.0), L(3e-9, 0.3)),
		(L(0.1, 0.1), L(0.0, 0.0), L(0.7, 0.7)),
		(L(-0.3, -0.3), L(0.0, 0.0), L(0.1, 0.1)),
		(L(1e8, 1e8 + 1), L(0.0, 0.0), L(1.0, 1.0)),
	]
	for a, b, c in cases:
		ang = calculate_angle(a, b, c)
		assert ang is not None
		assert not math.isnan(ang)
		assert 0.0 <= ang <= 180.0


def test_degenerate_vector_is_undetermined():
	assert calculate_angle(L(0.5, 0.5), L(0.5, 0.5), L(1, 1)) is None
	assert calculate_angle(L(0, 0), L(0.5, 0.5), L(0.5, 0.5)) is None


def test_missing_or_non_finite_is_undetermined():
	assert calculate_angle(None, L(0, 0), L(1, 1)) is None
	assert calculate_angle(L(float("nan"), 0), L(0, 0), L(1, 1)) is None
	assert calculate_angle(L(0, 1), L(0, 0), L(float("inf"), 1)) is None


def test_depth_is_ignored():
	a = Landmark(0, 0, z=5.0)
	b = Landmark(0, 1, z=-3.0)
	c = Landmark(1, 1, z=0.0)
	assert calculate_angle(a, b, c) == pytest.approx(90.0)


def test_joint_table_covers_every_key():
	assert tuple(JOINT_TABLE) == JOINT_KEYS
	for a, b, c in JOINT_TABLE.values():
		assert len({a, b, c}) == 3


def test_skeleton_angles():
	angles = joint_angles_for_skeleton(make_skeleton())
	assert angles["leftElbow"] == pytest.approx(90.0)
	assert angles["rightElbow"] == pytest.approx(180.0)
	assert angles["leftKnee"] == pytest.approx(180.0)
	assert not angles.is_empty()


def test_missing_wrist_only_affects_that_elbow():
	full = joint_angles_for_skeleton(make_skeleton())
	partial = joint_angles_for_skeleton(make_skeleton(left_wrist=None))
	assert partial["leftElbow"] is None
	for key in JOINT_KEYS:
		if key != "leftElbow":
			assert partial[key] == pytest.approx(full[key])


def test_low_visibility_counts_as_missing_when_threshold_set():
	sk = make_skeleton(left_wrist=L(0.55, 0.45, visibility=0.1))
	assert joint_angles_for_skeleton(sk)["leftElbow"] == pytest.approx(90.0)
	assert joint_angles_for_skeleton(sk, min_visibility=0.5)["leftElbow"] is None


def test_only_first_skeleton_contributes():
	first = make_skeleton()
	second = make_skeleton(left_wrist=L(0.4, 0.6))
	angles = compute_joint_angles([first, second])
	assert angles["leftElbow"] == pytest.approx(90.0)


def test_no_skeleton_gives_all_undetermined():
	angles = compute_joint_angles([])
	assert angles.is_empty()
	assert set(angles.as_dict()) == set(JOINT_KEYS)
