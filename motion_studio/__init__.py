"""
Motion Studio application package.

Live camera pose estimation with joint-angle overlay: capture lifecycle, a
MediaPipe inference adapter, a refresh-driven frame scheduler and an OpenCV
overlay renderer.
"""

from pathlib import Path


def _read_version() -> str:
	try:
		vf = Path(__file__).resolve().parents[1] / "VERSION"
		if vf.exists():
			val = vf.read_text(encoding="utf-8").strip()
			if val:
				return val
	except OSError:
		pass
	return "0.1.0"


__version__ = _read_version()
