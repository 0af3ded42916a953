"""Recovery and error-event models."""

from enum import Enum
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, Field

from ..utils.identifiers import now_ms


class FailureType(str, Enum):
    """Built-in failure classifications with registered strategies."""

    MEMORY_CORRUPTION = "memory_corruption"
    SESSION_FAILURE = "session_failure"
    AGENT_MEMORY_FAILURE = "agent_memory_failure"
    COORDINATION_FAILURE = "coordination_failure"
    SYSTEM_FAILURE = "system_failure"


class RecoveryResult(BaseModel):
    """Outcome of a recovery strategy."""

    success: bool = Field(description="Whether the strategy restored a working state")
    strategy: Optional[str] = Field(default=None, description="Strategy branch taken")
    reason: Optional[str] = Field(default=None, description="Why recovery failed")
    checkpoint_id: Optional[str] = Field(default=None)
    session_id: Optional[str] = Field(default=None)
    agent_id: Optional[str] = Field(default=None)
    backup: Optional[str] = Field(default=None, description="Backup file used")
    steps: List["RecoveryResult"] = Field(
        default_factory=list, description="Sub-results of composite strategies"
    )


RecoveryResult.model_rebuild()


class RecoveryAttempt(BaseModel):
    """Append-only history entry for one recovery invocation."""

    id: str
    failure_type: str
    context: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[RecoveryResult] = Field(default=None)
    error: Optional[str] = Field(default=None)
    timestamp: int = Field(default_factory=now_ms)
    duration_ms: int = Field(default=0)
    success: bool

    class Config:
        """Pydantic configuration."""

        frozen = True


class RecoveryStatus(BaseModel):
    """Recovery engine status report."""

    enabled: bool
    total_recoveries: int = Field(default=0)
    successful_recoveries: int = Field(default=0)
    last_recovery: Optional[RecoveryAttempt] = Field(default=None)
    available_strategies: List[str] = Field(default_factory=list)
    integrity_checks_enabled: bool = Field(default=True)
    last_integrity_check: Optional[int] = Field(default=None)


class ErrorKind(str, Enum):
    """Kinds of error event emitted by the engine."""

    CHECKPOINT_SAVE = "checkpoint_save"
    CHECKPOINT_LOAD = "checkpoint_load"
    CHECKPOINT_RESTORE = "checkpoint_restore"
    MEMORY_RESTORE = "memory_restore"
    SESSION_LOAD = "session_load"
    CLEANUP = "cleanup"
    ROLLBACK = "rollback"


class ErrorEvent(BaseModel):
    """Error surfaced by an engine component."""

    kind: ErrorKind
    error: str
    checkpoint_id: Optional[str] = Field(default=None)
    session_id: Optional[str] = Field(default=None)
    agent_id: Optional[str] = Field(default=None)
    timestamp: int = Field(default_factory=now_ms)


class FailedOperation(BaseModel):
    """Record of an operation that failed and left the engine degraded."""

    operation: str
    checkpoint_id: Optional[str] = Field(default=None)
    error: str
    timestamp: int = Field(default_factory=now_ms)
