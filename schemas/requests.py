"""Pydantic request body models for the pipeline endpoints."""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class StartPayload(BaseModel):
	"""Request body for POST /pipeline/start. Facing defaults to the current preference."""

	facing: Optional[str] = Field(None, description="'user' (front) or 'environment' (back)")


class ReinitializePayload(BaseModel):
	"""Request body for POST /pipeline/reinitialize. Omitted fields keep their current value."""

	model_path: Optional[str] = Field(None, description="Path to the .task model bundle")
	delegate: Optional[str] = Field(None, description="GPU or CPU")
	running_mode: Optional[str] = Field(None, description="VIDEO or IMAGE")
	num_poses: Optional[int] = Field(None, ge=1, description="Maximum skeletons per frame")
	min_detection_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
	min_presence_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
	min_tracking_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
	output_segmentation_masks: Optional[bool] = None
	angle_min_visibility: Optional[float] = Field(None, ge=0.0, le=1.0)

	def as_options(self) -> Dict[str, Any]:
		return self.model_dump(exclude_none=True)
