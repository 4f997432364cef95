"""Pipeline control routes. Routes: /pipeline/status, start, stop, toggle, facing/switch, reinitialize; /angles."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from deps import get_pipeline
from motion_studio.config import parse_pose_config
from motion_studio.errors import (
	DeviceUnavailable,
	ModelInitError,
	MotionStudioError,
	PipelineStateError,
	PlaybackError,
)
from motion_studio.pipeline import MotionPipeline
from schemas import AnglesResponse, PipelineActionResponse, ReinitializePayload, StartPayload

router = APIRouter(tags=["pipeline"])

_STATUS_BY_ERROR = (
	(DeviceUnavailable, 503),
	(ModelInitError, 503),
	(PipelineStateError, 409),
	(PlaybackError, 500),
)


def _http_error(e: MotionStudioError) -> HTTPException:
	"""Map a pipeline error to the HTTP status the UI branches on."""
	for cls, code in _STATUS_BY_ERROR:
		if isinstance(e, cls):
			return HTTPException(status_code=code, detail={"kind": e.kind, "message": str(e)})
	return HTTPException(status_code=500, detail={"kind": e.kind, "message": str(e)})


@router.get("/pipeline/status")
async def pipeline_status(pipeline: MotionPipeline = Depends(get_pipeline)):
	return pipeline.get_status()


@router.post("/pipeline/start", response_model=PipelineActionResponse)
async def pipeline_start(payload: Optional[StartPayload] = None, pipeline: MotionPipeline = Depends(get_pipeline)):
	"""Acquire the camera and start the frame loop."""
	facing = payload.facing if payload is not None else None
	try:
		pipeline.start(facing=facing)
	except ValueError as e:
		raise HTTPException(status_code=422, detail=str(e))
	except MotionStudioError as e:
		raise _http_error(e)
	return {"detail": "Pipeline running.", "status": pipeline.get_status()}


@router.post("/pipeline/stop", response_model=PipelineActionResponse)
async def pipeline_stop(pipeline: MotionPipeline = Depends(get_pipeline)):
	pipeline.stop()
	return {"detail": "Pipeline stopped.", "status": pipeline.get_status()}


@router.post("/pipeline/toggle", response_model=PipelineActionResponse)
async def pipeline_toggle(pipeline: MotionPipeline = Depends(get_pipeline)):
	try:
		state = pipeline.toggle()
	except MotionStudioError as e:
		raise _http_error(e)
	return {"detail": f"Pipeline {state.name}.", "status": pipeline.get_status()}


@router.post("/pipeline/facing/switch", response_model=PipelineActionResponse)
async def pipeline_switch_facing(pipeline: MotionPipeline = Depends(get_pipeline)):
	"""Flip front/back camera; restarts capture when running."""
	try:
		facing = pipeline.switch_facing()
	except MotionStudioError as e:
		raise _http_error(e)
	return {"detail": f"Facing mode {facing.value}.", "status": pipeline.get_status()}


@router.post("/pipeline/reinitialize", response_model=PipelineActionResponse)
async def pipeline_reinitialize(
	payload: Optional[ReinitializePayload] = None,
	pipeline: MotionPipeline = Depends(get_pipeline),
):
	"""Dispose the model and load it again with new options (stops the loop first)."""
	options = payload.as_options() if payload is not None else {}
	pose_cfg = parse_pose_config(options, base=pipeline.provider.config)
	try:
		await pipeline.reinitialize(pose_cfg)
	except MotionStudioError as e:
		raise _http_error(e)
	return {"detail": "Model initialized.", "status": pipeline.get_status()}


@router.get("/angles", response_model=AnglesResponse)
async def current_angles(pipeline: MotionPipeline = Depends(get_pipeline)):
	"""Latest joint angles (all null until a frame with a skeleton was processed)."""
	result = pipeline.last_result
	return {
		"state": pipeline.state.name,
		"video_time": result.video_time if result is not None else None,
		"timestamp_us": result.timestamp_us if result is not None else None,
		"skeletons": len(result.skeletons) if result is not None else 0,
		"angles": pipeline.current_angles.as_dict(),
	}
