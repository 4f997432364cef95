"""Overlay video routes. Routes: /video/mjpeg, /video/snapshot.jpg."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response, StreamingResponse

from app_state import AppState
from deps import get_pipeline, get_state
from motion_studio.mjpeg import MEDIA_TYPE, overlay_mjpeg
from motion_studio.pipeline import MotionPipeline

router = APIRouter(tags=["video"])

_NO_CACHE = {
	"Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
	"Pragma": "no-cache",
}


@router.get("/video/mjpeg")
async def video_mjpeg(
	fps: Optional[float] = None,
	state: AppState = Depends(get_state),
	pipeline: MotionPipeline = Depends(get_pipeline),
):
	"""Live MJPEG stream of the overlay surface (video frame + skeletons)."""
	if fps is None:
		fps = state.cfg.server.mjpeg_fps if state.cfg is not None else 15.0
	return StreamingResponse(
		overlay_mjpeg(pipeline, fps=fps),
		media_type=MEDIA_TYPE,
		headers={**_NO_CACHE, "Connection": "keep-alive"},
	)


@router.get("/video/snapshot.jpg")
async def video_snapshot(pipeline: MotionPipeline = Depends(get_pipeline)):
	"""Current overlay surface as a single JPEG; 404 until the first frame was processed."""
	jpeg, t = pipeline.get_latest_jpeg()
	if jpeg is None:
		raise HTTPException(status_code=404, detail="No frame rendered yet")
	headers = dict(_NO_CACHE)
	headers["X-Video-Time"] = f"{t:.6f}"
	w, h = pipeline.renderer.size
	headers["X-Surface-Size"] = f"{w}x{h}"
	return Response(content=jpeg, media_type="image/jpeg", headers=headers)
