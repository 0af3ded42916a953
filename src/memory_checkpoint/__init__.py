"""Memory checkpoint and recovery engine."""

from typing import Optional

from .config.checkpoint_config import CheckpointConfig, load_config
from .exceptions import (
    CheckpointEngineError,
    CheckpointValidationError,
    CheckpointNotFoundError,
    PersistenceError,
    SessionError,
    RecoveryError,
    RecoveryTimeoutError,
    UnknownFailureTypeError,
    CorruptionDetected,
)
from .models import Checkpoint, CheckpointType, FailureType, MemorySnapshot, Session
from .services import CheckpointIntegration

__version__ = "0.1.0"

__all__ = [
    "CheckpointConfig",
    "load_config",
    "CheckpointEngineError",
    "CheckpointValidationError",
    "CheckpointNotFoundError",
    "PersistenceError",
    "SessionError",
    "RecoveryError",
    "RecoveryTimeoutError",
    "UnknownFailureTypeError",
    "CorruptionDetected",
    "Checkpoint",
    "CheckpointType",
    "FailureType",
    "MemorySnapshot",
    "Session",
    "CheckpointIntegration",
    "create_checkpoint_engine",
]


def create_checkpoint_engine(
    config: Optional[CheckpointConfig] = None,
) -> CheckpointIntegration:
    """
    Factory function to create a checkpoint engine.

    Args:
        config: Engine configuration (environment defaults if omitted)

    Returns:
        Uninitialized CheckpointIntegration; call initialize() before use
    """
    return CheckpointIntegration(config=config)
