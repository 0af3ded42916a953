"""Session state models."""

from typing import Dict, Any, List, Optional

from pydantic import BaseModel, Field

from .state_models import MemorySnapshot
from ..utils.identifiers import now_ms


class Session(BaseModel):
    """
    A bounded unit of activity delimited by start/end checkpoints.

    CRITICAL: All fields must be JSON-serializable for archival.
    """

    id: str = Field(description="Unique session identifier")
    start_time: int = Field(default_factory=now_ms)
    last_activity: int = Field(default_factory=now_ms)
    checkpoint_count: int = Field(default=0)
    decision_points: List[str] = Field(default_factory=list)
    memory_state: Optional[MemorySnapshot] = Field(
        default=None, description="Last known memory snapshot"
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)

    # Lifecycle markers
    ended_at: Optional[int] = Field(default=None)
    restored: bool = Field(default=False)
    restored_at: Optional[int] = Field(default=None)

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def record_checkpoint(
        self,
        memory_state: Optional[MemorySnapshot] = None,
        decision_id: Optional[str] = None,
    ) -> None:
        """
        Update counters after a checkpoint was written for this session.

        Args:
            memory_state: Snapshot attached to the checkpoint
            decision_id: Checkpoint id when it was a decision point
        """
        self.checkpoint_count += 1
        self.last_activity = now_ms()
        if memory_state is not None:
            self.memory_state = memory_state
        if decision_id:
            self.decision_points.append(decision_id)

    def duration_ms(self) -> int:
        """Milliseconds since the session started."""
        return max(0, now_ms() - self.start_time)

    def to_summary(self) -> Dict[str, Any]:
        """Get a short session summary."""
        return {
            "id": self.id,
            "start_time": self.start_time,
            "last_activity": self.last_activity,
            "checkpoint_count": self.checkpoint_count,
            "decision_points": len(self.decision_points),
            "active": self.is_active,
            "restored": self.restored,
        }
