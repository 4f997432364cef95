import numpy as np
import pytest

from motion_studio.config import OverlayConfig
from motion_studio.overlay import OverlayRenderer
from motion_studio.pose.angles import compute_joint_angles

from conftest import make_image, make_skeleton


def test_surface_matches_video_size():
	r = OverlayRenderer(width=64, height=48)
	assert r.surface.shape == (48, 64, 3)
	r.resize(32, 24)
	assert r.size == (32, 24)
	assert r.surface.shape == (24, 32, 3)


def test_resize_rejects_empty_size():
	r = OverlayRenderer(width=64, height=48)
	with pytest.raises(ValueError):
		r.resize(0, 48)


def test_frame_of_other_size_is_scaled_to_surface():
	r = OverlayRenderer(width=64, height=48)
	out = r.render(make_image(128, 96, value=7))
	assert out.shape == (48, 64, 3)
	assert int(out[0, 0, 0]) == 7


def test_render_draws_skeleton_over_frame():
	r = OverlayRenderer(width=64, height=48)
	bare = r.render(make_image(value=0)).copy()
	drawn = r.render(make_image(value=0), [make_skeleton()])
	assert not bare.any()
	assert drawn.any()
	assert r.surface is drawn


def test_render_replaces_surface_instead_of_mutating():
	r = OverlayRenderer(width=64, height=48)
	first = r.render(make_image(value=1))
	second = r.render(make_image(value=2))
	assert first is not second
	assert int(first[0, 0, 0]) == 1


def test_drawing_state_is_restored_after_error():
	r = OverlayRenderer(width=64, height=48)
	before = r.style
	with pytest.raises(RuntimeError):
		with r._drawing_state(connector_width=1, connector_color=(0, 0, 255)) as style:
			assert style.connector_width == 1
			raise RuntimeError("draw failed")
	assert r.style == before


def test_angle_labels_only_when_enabled():
	sk = make_skeleton()
	plain = OverlayRenderer(OverlayConfig(connector_width=1, landmark_radius=1), width=64, height=48)
	labelled = OverlayRenderer(OverlayConfig(connector_width=1, landmark_radius=1, show_angles=True), width=64, height=48)
	angles = compute_joint_angles([sk])
	a = plain.render(make_image(value=0), [sk], angles)
	b = labelled.render(make_image(value=0), [sk], angles)
	assert not np.array_equal(a, b)


def test_latest_jpeg_is_cached_per_surface():
	r = OverlayRenderer(width=64, height=48)
	r.render(make_image(value=50))
	j1 = r.latest_jpeg()
	assert j1[:2] == b"\xff\xd8"
	assert r.latest_jpeg() is j1
	r.render(make_image(value=60))
	assert r.latest_jpeg() is not j1
