"""
FastAPI app: pose pipeline control, overlay video and the live angle feed.

Run with `python -m motion_studio serve` (or `uvicorn server:app`).
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app_state import AppState
from motion_studio import __version__
from motion_studio.config import AppConfig, get_config
from motion_studio.errors import ModelInitError
from motion_studio.pipeline import MotionPipeline
from routers import pipeline as pipeline_router
from routers import video as video_router
from routers import ws as ws_router

logger = logging.getLogger(__name__)


# Strong references to in-flight broadcasts; the loop only keeps weak ones.
_pending_broadcasts: Set["asyncio.Task[None]"] = set()


def _broadcast(manager: Any, message: Dict[str, Any]) -> None:
	"""
	Fire-and-forget broadcast to all connected WebSocket clients.
	Safe to call from non-async code.
	"""
	try:
		asyncio.get_running_loop()
	except RuntimeError:
		# No running loop (shutdown, preview mode); drop.
		return
	task = asyncio.create_task(manager.broadcast_json(message))
	_pending_broadcasts.add(task)
	task.add_done_callback(_pending_broadcasts.discard)


async def _initialize_in_background(pipeline: MotionPipeline) -> None:
	try:
		await pipeline.initialize()
	except ModelInitError as e:
		# State is already Error; status endpoint and /ws carry the details.
		logger.error("Model initialization failed: %s", e)


def create_app(
	cfg: Optional[AppConfig] = None,
	pipeline: Optional[MotionPipeline] = None,
	auto_initialize: bool = True,
) -> FastAPI:
	"""
	Build the app. `pipeline` is injectable (tests pass one wired to fakes);
	otherwise one is created from config in lifespan.
	"""

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		state = AppState()
		state.cfg = cfg or get_config()
		state.manager = ws_router.manager
		state.pipeline = pipeline or MotionPipeline(state.cfg)

		def forward(event: Dict[str, Any]) -> None:
			_broadcast(state.manager, event)

		state.pipeline.add_listener(forward)
		app.state.state = state

		if auto_initialize:
			state.init_task = asyncio.create_task(_initialize_in_background(state.pipeline))
		logger.info("motion_studio %s ready", __version__)
		try:
			yield
		finally:
			task = state.init_task
			if task is not None and not task.done():
				task.cancel()
				try:
					await task
				except asyncio.CancelledError:
					pass
			state.init_task = None
			state.pipeline.remove_listener(forward)
			await state.pipeline.close()
			logger.info("Pipeline closed")

	app = FastAPI(title="motion_studio", version=__version__, lifespan=lifespan)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	app.include_router(pipeline_router.router)
	app.include_router(video_router.router)
	app.include_router(ws_router.router)
	return app


app = create_app()
