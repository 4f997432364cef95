"""Pydantic request/response models for API validation and docs."""
from schemas.requests import (
	StartPayload,
	ReinitializePayload,
)
from schemas.responses import (
	PipelineActionResponse,
	AnglesResponse,
)

__all__ = [
	"StartPayload",
	"ReinitializePayload",
	"PipelineActionResponse",
	"AnglesResponse",
]
