import argparse
import asyncio
import logging
import sys
from typing import Optional

from motion_studio.config import AppConfig, get_config, set_config_path

logger = logging.getLogger("motion_studio")


def _serve(cfg: AppConfig, host: Optional[str], port: Optional[int]) -> int:
	import uvicorn

	from server import create_app

	uvicorn.run(
		create_app(cfg),
		host=host or cfg.server.host,
		port=int(port or cfg.server.port),
		log_level="info",
	)
	return 0


async def _preview(cfg: AppConfig, facing: Optional[str], source: Optional[str]) -> None:
	import cv2

	from motion_studio.capture import CaptureManager
	from motion_studio.errors import DeviceUnavailable, PlaybackError
	from motion_studio.pipeline import MotionPipeline
	from motion_studio.state import Running

	capture = None
	if source:
		# Files are pulled one frame per tick so playback follows the loop.
		capture = CaptureManager(cfg.capture, device_factory=lambda _index: cv2.VideoCapture(source), threaded=False)
	pipeline = MotionPipeline(cfg, capture=capture)
	pipeline.add_listener(_print_event)
	window = "motion_studio"
	try:
		await pipeline.initialize()
		pipeline.start(facing=facing)
		cv2.namedWindow(window, cv2.WINDOW_NORMAL)
		while isinstance(pipeline.state, Running):
			cv2.imshow(window, pipeline.renderer.surface)
			key = cv2.waitKey(1) & 0xFF
			if key == ord("q"):
				break
			if key == ord("f"):
				try:
					pipeline.switch_facing()
				except (DeviceUnavailable, PlaybackError) as e:
					# Fall back to the camera that was working.
					logger.warning("Camera switch failed: %s", e)
					pipeline.switch_facing()
					pipeline.start()
			await asyncio.sleep(0.01)
	finally:
		await pipeline.close()
		cv2.destroyAllWindows()


def _print_event(event: dict) -> None:
	if event.get("type") == "angles":
		angles = event.get("angles") or {}
		shown = " ".join(f"{k}={v:.0f}" for k, v in angles.items() if v is not None)
		logger.debug("t=%.3fs %s", float(event.get("video_time") or 0.0), shown or "(no skeleton)")
	elif event.get("type") == "log":
		logger.info("%s", event.get("msg"))


def main(argv: Optional[list[str]] = None) -> int:
	p = argparse.ArgumentParser(prog="motion_studio", description="Live pose estimation with joint angles.")
	p.add_argument("--config", help="Path to config.json (default: repo root config.json)")
	p.add_argument("--debug", action="store_true", help="Enable debug logging.")
	sub = p.add_subparsers(dest="command", required=True)

	p_serve = sub.add_parser("serve", help="Run the HTTP/WebSocket server")
	p_serve.add_argument("--host", default=None, help="Bind address (default from config)")
	p_serve.add_argument("--port", type=int, default=None, help="Port (default from config)")

	p_prev = sub.add_parser("preview", help="Local OpenCV window (q quits, f switches camera)")
	p_prev.add_argument("--facing", choices=["user", "environment"], default=None, help="Initial camera")
	p_prev.add_argument("--source", default=None, help="Video file to play instead of a camera")

	args = p.parse_args(argv)

	# Configure logging
	if args.debug:
		logging.basicConfig(level=logging.DEBUG, format='%(levelname)s:%(name)s:%(message)s')
	else:
		logging.basicConfig(level=logging.INFO, format='%(levelname)s:%(name)s:%(message)s')

	if args.config:
		set_config_path(args.config)
	cfg = get_config()

	try:
		if args.command == "serve":
			return _serve(cfg, args.host, args.port)
		asyncio.run(_preview(cfg, args.facing, args.source))
		return 0
	except KeyboardInterrupt:
		return 0
	except Exception as e:
		logging.exception("Fatal error: %s", e)
		return 1


if __name__ == "__main__":
	sys.exit(main())
