"""Data models for the checkpoint engine."""

from .state_models import MemorySnapshot, ProcessInfo, SystemState
from .checkpoint_models import (
    Checkpoint,
    CheckpointType,
    CheckpointStats,
    HealthStatus,
    MemoryUsage,
    OPERATION_CHECKPOINT_TYPES,
    SESSION_CHECKPOINT_TYPES,
)
from .session_models import Session
from .recovery_models import (
    ErrorEvent,
    ErrorKind,
    FailedOperation,
    FailureType,
    RecoveryAttempt,
    RecoveryResult,
    RecoveryStatus,
)

__all__ = [
    "MemorySnapshot",
    "ProcessInfo",
    "SystemState",
    "Checkpoint",
    "CheckpointType",
    "CheckpointStats",
    "HealthStatus",
    "MemoryUsage",
    "OPERATION_CHECKPOINT_TYPES",
    "SESSION_CHECKPOINT_TYPES",
    "Session",
    "ErrorEvent",
    "ErrorKind",
    "FailedOperation",
    "FailureType",
    "RecoveryAttempt",
    "RecoveryResult",
    "RecoveryStatus",
]
