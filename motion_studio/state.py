"""
Pipeline state as a tagged union.

    Uninitialized -> Loading -> Ready -> Running <-> Ready
    any -> Error;  Error -> Loading (fresh initialize)

Running carries the facing mode, Error carries the failure kind and message,
so impossible combinations (running while uninitialized, error while running)
cannot be represented.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union

from motion_studio.errors import PipelineStateError


@dataclass(frozen=True)
class Uninitialized:
	name = "uninitialized"


@dataclass(frozen=True)
class Loading:
	name = "loading"


@dataclass(frozen=True)
class Ready:
	name = "ready"


@dataclass(frozen=True)
class Running:
	facing: str
	name = "running"


@dataclass(frozen=True)
class Error:
	kind: str
	message: str
	name = "error"


PipelineState = Union[Uninitialized, Loading, Ready, Running, Error]

_ALLOWED = {
	Uninitialized: (Loading, Error),
	Loading: (Ready, Error),
	Ready: (Running, Loading, Error),
	Running: (Ready, Running, Error),
	Error: (Loading, Error),
}


def can_transition(current: PipelineState, target: PipelineState) -> bool:
	return isinstance(target, _ALLOWED[type(current)])


def transition(current: PipelineState, target: PipelineState) -> PipelineState:
	"""Return `target` if the move is legal, else raise PipelineStateError."""
	if not can_transition(current, target):
		raise PipelineStateError(f"illegal pipeline transition {current.name} -> {target.name}")
	return target


def describe(state: PipelineState) -> Dict[str, Any]:
	"""Flat dict for the UI: running/loading/error flags derived from one value."""
	return {
		"state": state.name,
		"loading": isinstance(state, Loading),
		"running": isinstance(state, Running),
		"ready": isinstance(state, (Ready, Running)),
		"facing": state.facing if isinstance(state, Running) else None,
		"error": {"kind": state.kind, "message": state.message} if isinstance(state, Error) else None,
	}
