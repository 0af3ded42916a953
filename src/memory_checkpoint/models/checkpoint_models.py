"""Checkpoint data models for state persistence."""

from enum import Enum
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field

from .state_models import MemorySnapshot, SystemState
from ..utils.identifiers import now_ms


class CheckpointType(str, Enum):
    """Kinds of checkpoint the engine writes."""

    SESSION_START = "session_start"
    SESSION_BOUNDARY = "session_boundary"
    SESSION_END = "session_end"
    DECISION_POINT = "decision_point"
    PRE_OPERATION = "pre_operation"
    MILESTONE = "milestone"
    ROLLBACK = "rollback"
    SAFETY = "safety"
    RECOVERY = "recovery"


# Types whose payload carries an "operation" block
OPERATION_CHECKPOINT_TYPES = frozenset(
    {
        CheckpointType.PRE_OPERATION,
        CheckpointType.MILESTONE,
        CheckpointType.ROLLBACK,
        CheckpointType.SAFETY,
        CheckpointType.RECOVERY,
    }
)

SESSION_CHECKPOINT_TYPES = frozenset(
    {
        CheckpointType.SESSION_START,
        CheckpointType.SESSION_BOUNDARY,
        CheckpointType.SESSION_END,
    }
)


class Checkpoint(BaseModel):
    """
    Immutable, timestamped, typed snapshot record.

    compressed and file_path are bookkeeping set by the store from the
    location the record was written to or read from; they are never
    serialized.
    """

    id: str
    type: CheckpointType
    session_id: Optional[str] = None
    timestamp: int
    payload: Dict[str, Any] = Field(default_factory=dict)
    memory_state: MemorySnapshot = Field(default_factory=MemorySnapshot)
    system_state: SystemState = Field(default_factory=SystemState)

    compressed: bool = Field(default=False, exclude=True)
    file_path: Optional[str] = Field(default=None, exclude=True)

    class Config:
        """Pydantic configuration."""

        frozen = True
        use_enum_values = True

    @property
    def file_name(self) -> str:
        """Plaintext file name: {type}_{id}.json."""
        return f"{self.type}_{self.id}.json"


class CheckpointStats(BaseModel):
    """Aggregate statistics over the checkpoint index."""

    total: int = Field(default=0)
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_session: Dict[str, int] = Field(default_factory=dict)
    oldest: Optional[str] = Field(default=None)
    newest: Optional[str] = Field(default=None)


class HealthStatus(BaseModel):
    """Health report of the checkpoint store."""

    healthy: bool = Field(default=True)
    timestamp: int = Field(default_factory=now_ms)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


class MemoryUsage(BaseModel):
    """On-disk footprint of memory and checkpoint directories."""

    checkpoints: int = Field(default=0)
    total_memory_size: int = Field(default=0)
    compressed_size: int = Field(default=0)
