"""Core engine state, events, validation and integrity."""

from .state import EngineState
from .events import EventBus, ERROR_EVENT
from .validation import (
    CheckpointValidator,
    canonical_json,
    compute_integrity_hash,
    validate_memory_state,
)
from .integrity import IntegrityChecker

__all__ = [
    "EngineState",
    "EventBus",
    "ERROR_EVENT",
    "CheckpointValidator",
    "canonical_json",
    "compute_integrity_hash",
    "validate_memory_state",
    "IntegrityChecker",
]
