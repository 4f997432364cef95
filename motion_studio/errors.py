"""
Error taxonomy for the capture / inference / render pipeline.

Initialization-class errors (DeviceUnavailable, ModelInitError, PlaybackError)
surface to the caller and block interaction. Per-tick errors are wrapped in
InferenceTickError by the scheduler, logged and swallowed.
"""

from __future__ import annotations


class MotionStudioError(Exception):
	"""Base class for all pipeline errors."""

	kind = "error"


class DeviceUnavailable(MotionStudioError):
	"""Camera permission denied, no device, or no device matching the request."""

	kind = "device_unavailable"


class PlaybackError(MotionStudioError):
	"""The stream was attached but never produced a first frame."""

	kind = "playback"


class ModelInitError(MotionStudioError):
	"""Model asset load or backend delegate failure."""

	kind = "model_init"


class InferenceOrderError(MotionStudioError):
	"""An inference call was made with a timestamp that did not strictly increase."""

	kind = "inference_order"

	def __init__(self, timestamp_us: int, last_timestamp_us: int) -> None:
		super().__init__(
			f"inference timestamp {int(timestamp_us)}us is not greater than previous {int(last_timestamp_us)}us"
		)
		self.timestamp_us = int(timestamp_us)
		self.last_timestamp_us = int(last_timestamp_us)


class ProviderClosedError(MotionStudioError):
	"""The inference handle is not initialized or was disposed."""

	kind = "provider_closed"


class InferenceTickError(MotionStudioError):
	"""A single frame failed during inference, angle computation or drawing."""

	kind = "inference_tick"

	def __init__(self, message: str, video_time: float | None = None) -> None:
		super().__init__(message)
		self.video_time = video_time


class PipelineStateError(MotionStudioError):
	"""An operation was requested in a pipeline state that does not allow it."""

	kind = "pipeline_state"
