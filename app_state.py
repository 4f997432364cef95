"""
Explicit app state: single source of truth for runtime lifecycle.
Created in lifespan, attached to app.state.state; injected into routes via Depends(get_state).
"""
from typing import Any, Optional

from motion_studio.config import AppConfig
from motion_studio.pipeline import MotionPipeline


class AppState:
	"""
	Holds the runtime refs for the app. Populated in server lifespan.
	"""
	# WebSocket broadcast (set at app load)
	manager: Any = None

	# Config and the one pipeline instance
	cfg: Optional[AppConfig] = None
	pipeline: Optional[MotionPipeline] = None

	# Background model initialization (set in lifespan)
	init_task: Any = None
