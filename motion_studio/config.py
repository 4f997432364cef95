from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class CaptureConfig:
	# Requested ("ideal") stream parameters; the device may negotiate something else.
	width: int = 640
	height: int = 480
	frame_rate: int = 30
	max_frame_rate: int = 60
	default_facing: str = "user"  # user (front) / environment (back)
	# Device index per facing mode. OpenCV has no facing concept, so this is a lookup.
	user_index: int = 0
	environment_index: int = 1
	# Mirror the front camera horizontally (selfie view).
	mirror_user: bool = True


@dataclass(frozen=True)
class PoseConfig:
	model_path: str = str(Path("models") / "pose_landmarker_heavy.task")
	delegate: str = "GPU"  # GPU / CPU
	running_mode: str = "VIDEO"  # VIDEO / IMAGE
	num_poses: int = 2
	min_detection_confidence: float = 0.5
	min_presence_confidence: float = 0.5
	min_tracking_confidence: float = 0.5
	output_segmentation_masks: bool = False
	# Landmarks below this visibility count as missing for angle purposes (None = off).
	angle_min_visibility: Optional[float] = None


@dataclass(frozen=True)
class OverlayConfig:
	# Colors are BGR (OpenCV order).
	connector_color: Tuple[int, int, int] = (255, 255, 255)
	connector_width: int = 5
	landmark_color: Tuple[int, int, int] = (255, 255, 255)
	landmark_fill: Tuple[int, int, int] = (0, 0, 0)
	landmark_line_width: int = 3
	landmark_radius: int = 10
	show_angles: bool = False
	jpeg_quality: int = 80


@dataclass(frozen=True)
class SchedulerConfig:
	# Display refresh signal frequency driving the tick loop.
	refresh_hz: float = 60.0


@dataclass(frozen=True)
class ServerConfig:
	host: str = "127.0.0.1"
	port: int = 8000
	mjpeg_fps: float = 15.0


@dataclass(frozen=True)
class AppConfig:
	capture: CaptureConfig = field(default_factory=CaptureConfig)
	pose: PoseConfig = field(default_factory=PoseConfig)
	overlay: OverlayConfig = field(default_factory=OverlayConfig)
	scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
	server: ServerConfig = field(default_factory=ServerConfig)


_CONFIG_PATH: Optional[Path] = None
_CONFIG_CACHE: Optional[AppConfig] = None


def _repo_root() -> Path:
	# motion_studio/config.py -> repo root is one level up.
	return Path(__file__).resolve().parents[1]


def get_default_config_path() -> Path:
	return _repo_root() / "config.json"


def set_config_path(path: str | Path) -> None:
	"""
	Override the config path (must be called before first get_config()).
	Used by the CLI --config option and by tests.
	"""
	global _CONFIG_PATH
	global _CONFIG_CACHE
	_CONFIG_PATH = Path(path).expanduser().resolve()
	_CONFIG_CACHE = None


def _deep_get(d: Dict[str, Any], keys: list[str], default: Any = None) -> Any:
	cur: Any = d
	for k in keys:
		if not isinstance(cur, dict):
			return default
		cur = cur.get(k)
	return cur if cur is not None else default


def _as_int(v: Any, default: int) -> int:
	try:
		return int(v)
	except (TypeError, ValueError):
		return int(default)


def _as_bool(v: Any, default: bool) -> bool:
	if isinstance(v, bool):
		return v
	if isinstance(v, (int, float)):
		return bool(v)
	if isinstance(v, str):
		return v.strip().lower() in ("1", "true", "yes", "on")
	return bool(default)


def _as_str(v: Any, default: str = "") -> str:
	return str(v) if v is not None else str(default)


def _as_float(v: Any, default: float) -> float:
	try:
		return float(v)
	except (TypeError, ValueError):
		return float(default)


def _as_unit(v: Any, default: float) -> float:
	"""Confidence-style value clamped to [0, 1]."""
	return max(0.0, min(1.0, _as_float(v, default)))


def _as_color(v: Any, default: Tuple[int, int, int]) -> Tuple[int, int, int]:
	"""
	Accept [b, g, r] lists or "#RRGGBB" strings; returns a BGR tuple.
	"""
	try:
		if isinstance(v, (list, tuple)) and len(v) == 3:
			b, g, r = (max(0, min(255, int(c))) for c in v)
			return (b, g, r)
		if isinstance(v, str):
			s = v.strip().lstrip("#")
			if len(s) == 6:
				r, g, b = int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16)
				return (b, g, r)
	except (TypeError, ValueError):
		return default
	return default


def _as_facing(v: Any, default: str) -> str:
	s = _as_str(v, default).strip().lower()
	return s if s in ("user", "environment") else default


def parse_pose_config(obj: Any, base: Optional[PoseConfig] = None) -> PoseConfig:
	"""
	Build a PoseConfig from a dict, falling back to `base` (or defaults) per field.
	Also used for runtime re-initialization requests.
	"""
	b = base or PoseConfig()
	if not isinstance(obj, dict):
		return b
	running_mode = _as_str(obj.get("running_mode"), b.running_mode).strip().upper()
	if running_mode not in ("VIDEO", "IMAGE"):
		running_mode = b.running_mode
	delegate = _as_str(obj.get("delegate"), b.delegate).strip().upper()
	if delegate not in ("GPU", "CPU"):
		delegate = b.delegate
	min_vis_raw = obj.get("angle_min_visibility", b.angle_min_visibility)
	return PoseConfig(
		model_path=_as_str(obj.get("model_path"), b.model_path) or b.model_path,
		delegate=delegate,
		running_mode=running_mode,
		num_poses=max(1, _as_int(obj.get("num_poses", b.num_poses), b.num_poses)),
		min_detection_confidence=_as_unit(obj.get("min_detection_confidence", b.min_detection_confidence), b.min_detection_confidence),
		min_presence_confidence=_as_unit(obj.get("min_presence_confidence", b.min_presence_confidence), b.min_presence_confidence),
		min_tracking_confidence=_as_unit(obj.get("min_tracking_confidence", b.min_tracking_confidence), b.min_tracking_confidence),
		output_segmentation_masks=_as_bool(obj.get("output_segmentation_masks", b.output_segmentation_masks), b.output_segmentation_masks),
		angle_min_visibility=None if min_vis_raw is None else _as_unit(min_vis_raw, 0.0),
	)


def load_config(path: Optional[str | Path] = None) -> AppConfig:
	p = Path(path).expanduser().resolve() if path else (_CONFIG_PATH or get_default_config_path())
	if not p.exists():
		# Defaults-only config; app can still run.
		return AppConfig()
	try:
		raw = json.loads(p.read_text(encoding="utf-8"))
	except (OSError, ValueError):
		# If config is malformed, fail safe to defaults (but keep app running).
		return AppConfig()

	if not isinstance(raw, dict):
		return AppConfig()

	d_cap = CaptureConfig()
	cap_w = _as_int(_deep_get(raw, ["capture", "width"], d_cap.width), d_cap.width)
	cap_h = _as_int(_deep_get(raw, ["capture", "height"], d_cap.height), d_cap.height)
	cap_fps = _as_int(_deep_get(raw, ["capture", "frame_rate"], d_cap.frame_rate), d_cap.frame_rate)
	cap_max_fps = _as_int(_deep_get(raw, ["capture", "max_frame_rate"], d_cap.max_frame_rate), d_cap.max_frame_rate)
	cap_facing = _as_facing(_deep_get(raw, ["capture", "default_facing"], d_cap.default_facing), d_cap.default_facing)
	# NOTE: do not use `or 0` style defaults; camera index 0 is valid.
	cap_user_idx = _as_int(_deep_get(raw, ["capture", "user_index"], d_cap.user_index), d_cap.user_index)
	cap_env_idx = _as_int(_deep_get(raw, ["capture", "environment_index"], d_cap.environment_index), d_cap.environment_index)
	cap_mirror = _as_bool(_deep_get(raw, ["capture", "mirror_user"], d_cap.mirror_user), d_cap.mirror_user)

	pose = parse_pose_config(_deep_get(raw, ["pose"], {}))

	d_ov = OverlayConfig()
	ov = _deep_get(raw, ["overlay"], {})
	if not isinstance(ov, dict):
		ov = {}

	d_sched = SchedulerConfig()
	refresh_hz = _as_float(_deep_get(raw, ["scheduler", "refresh_hz"], d_sched.refresh_hz), d_sched.refresh_hz)

	d_srv = ServerConfig()
	srv_host = _as_str(_deep_get(raw, ["server", "host"], d_srv.host), d_srv.host)
	srv_port = _as_int(_deep_get(raw, ["server", "port"], d_srv.port), d_srv.port)
	srv_mjpeg_fps = _as_float(_deep_get(raw, ["server", "mjpeg_fps"], d_srv.mjpeg_fps), d_srv.mjpeg_fps)

	return AppConfig(
		capture=CaptureConfig(
			width=cap_w if cap_w > 0 else d_cap.width,
			height=cap_h if cap_h > 0 else d_cap.height,
			frame_rate=cap_fps if cap_fps > 0 else d_cap.frame_rate,
			max_frame_rate=max(cap_max_fps, cap_fps) if cap_max_fps > 0 else d_cap.max_frame_rate,
			default_facing=cap_facing,
			user_index=cap_user_idx if cap_user_idx >= 0 else d_cap.user_index,
			environment_index=cap_env_idx if cap_env_idx >= 0 else d_cap.environment_index,
			mirror_user=cap_mirror,
		),
		pose=pose,
		overlay=OverlayConfig(
			connector_color=_as_color(ov.get("connector_color"), d_ov.connector_color),
			connector_width=max(1, _as_int(ov.get("connector_width", d_ov.connector_width), d_ov.connector_width)),
			landmark_color=_as_color(ov.get("landmark_color"), d_ov.landmark_color),
			landmark_fill=_as_color(ov.get("landmark_fill"), d_ov.landmark_fill),
			landmark_line_width=max(1, _as_int(ov.get("landmark_line_width", d_ov.landmark_line_width), d_ov.landmark_line_width)),
			landmark_radius=max(1, _as_int(ov.get("landmark_radius", d_ov.landmark_radius), d_ov.landmark_radius)),
			show_angles=_as_bool(ov.get("show_angles", d_ov.show_angles), d_ov.show_angles),
			jpeg_quality=max(1, min(95, _as_int(ov.get("jpeg_quality", d_ov.jpeg_quality), d_ov.jpeg_quality))),
		),
		scheduler=SchedulerConfig(refresh_hz=refresh_hz if refresh_hz > 0.0 else d_sched.refresh_hz),
		server=ServerConfig(
			host=srv_host or d_srv.host,
			port=srv_port if srv_port > 0 else d_srv.port,
			mjpeg_fps=srv_mjpeg_fps if srv_mjpeg_fps > 0.0 else d_srv.mjpeg_fps,
		),
	)


def get_config() -> AppConfig:
	global _CONFIG_CACHE
	if _CONFIG_CACHE is None:
		_CONFIG_CACHE = load_config()
	return _CONFIG_CACHE
