"""Pydantic response models for API docs (optional; routes may return dicts)."""
from typing import Any, Dict, Optional

from pydantic import BaseModel


class PipelineActionResponse(BaseModel):
	"""Response from the POST /pipeline/* actions."""

	detail: str
	status: Dict[str, Any]


class AnglesResponse(BaseModel):
	"""Response from GET /angles. Undetermined angles are null."""

	state: str
	video_time: Optional[float] = None
	timestamp_us: Optional[int] = None
	skeletons: int = 0
	angles: Dict[str, Optional[float]]
