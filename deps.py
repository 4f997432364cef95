"""
FastAPI dependencies. Use Depends(get_state) / Depends(get_pipeline) in route handlers.
"""
from fastapi import Depends, HTTPException, Request

from app_state import AppState
from motion_studio.pipeline import MotionPipeline


def get_state(request: Request) -> AppState:
	"""Return the app state instance attached in lifespan."""
	return request.app.state.state


def get_pipeline(state: AppState = Depends(get_state)) -> MotionPipeline:
	if state.pipeline is None:
		raise HTTPException(status_code=503, detail="Pipeline not available yet")
	return state.pipeline
