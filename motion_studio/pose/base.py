from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from motion_studio.config import PoseConfig
from motion_studio.errors import InferenceOrderError, ProviderClosedError
from motion_studio.pose.types import Skeleton

logger = logging.getLogger(__name__)


class PoseProvider(ABC):
	"""
	Model adapter interface.

	Lifecycle: initialize() -> infer()* -> dispose(). Options are fixed at
	initialize time; changing them means dispose() + initialize() again.

	In VIDEO mode the underlying service tracks people over time, so infer()
	must be called with strictly increasing timestamps per handle. A violation
	raises InferenceOrderError instead of being silently dropped.
	"""

	def __init__(self, cfg: Optional[PoseConfig] = None) -> None:
		self._cfg = cfg or PoseConfig()
		self._ready = False
		self._last_timestamp_us: Optional[int] = None

	@abstractmethod
	def name(self) -> str: ...

	@abstractmethod
	def _load(self, cfg: PoseConfig) -> None:
		"""Blocking model load; raise ModelInitError on failure."""

	@abstractmethod
	def _infer(self, frame: Any, timestamp_us: int) -> List[Skeleton]: ...

	@abstractmethod
	def _release(self) -> None: ...

	@property
	def config(self) -> PoseConfig:
		return self._cfg

	@property
	def is_ready(self) -> bool:
		return bool(self._ready)

	@property
	def last_timestamp_us(self) -> Optional[int]:
		return self._last_timestamp_us

	@property
	def tracks_time(self) -> bool:
		return self._cfg.running_mode.upper() == "VIDEO"

	def load(self, cfg: Optional[PoseConfig] = None) -> None:
		"""
		Synchronous initialize. Disposes any previous handle first.
		"""
		if self._ready:
			self.dispose()
		if cfg is not None:
			self._cfg = cfg
		logger.info("Loading pose model %s (%s)", self._cfg.model_path, self.name())
		self._load(self._cfg)
		self._last_timestamp_us = None
		self._ready = True
		logger.info("Pose model ready (%s, running_mode=%s)", self.name(), self._cfg.running_mode)

	async def initialize(self, cfg: Optional[PoseConfig] = None) -> None:
		# Model loading blocks (file IO + delegate setup); keep it off the event loop.
		await asyncio.to_thread(self.load, cfg)

	def infer(self, frame: Any, timestamp_us: int) -> List[Skeleton]:
		if not self._ready:
			raise ProviderClosedError(f"{self.name()}: inference handle is not initialized")
		ts = int(timestamp_us)
		if self.tracks_time:
			last = self._last_timestamp_us
			if last is not None and ts <= last:
				raise InferenceOrderError(ts, last)
			self._last_timestamp_us = ts
		return self._infer(frame, ts)

	def dispose(self) -> None:
		"""Release native resources. Safe to call more than once."""
		if not self._ready:
			return
		self._ready = False
		try:
			self._release()
		finally:
			logger.info("Pose model disposed (%s)", self.name())
