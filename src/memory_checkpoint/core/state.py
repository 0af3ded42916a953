"""Owned engine state shared by every component."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models.checkpoint_models import Checkpoint
from ..models.recovery_models import FailedOperation
from ..models.session_models import Session


@dataclass
class EngineState:
    """
    Mutable state of one engine instance.

    Passed to every component constructor so independent engines can
    coexist in one process. The checkpoint index preserves insertion order.
    """

    current_session: Optional[Session] = None
    index: Dict[str, Checkpoint] = field(default_factory=dict)
    integrity_cache: Dict[str, str] = field(default_factory=dict)

    # Recovery state
    recovery_mode: bool = False
    recovery_in_progress: bool = False
    last_valid_checkpoint: Optional[str] = None
    failed_operations: List[FailedOperation] = field(default_factory=list)

    @property
    def session_id(self) -> Optional[str]:
        """Id of the active session, if any."""
        return self.current_session.id if self.current_session else None

    def record_failure(
        self, operation: str, error: str, checkpoint_id: Optional[str] = None
    ) -> FailedOperation:
        """
        Record a failed operation.

        Args:
            operation: Operation name
            error: Error message
            checkpoint_id: Checkpoint involved, if any

        Returns:
            The recorded failure
        """
        failure = FailedOperation(
            operation=operation, error=error, checkpoint_id=checkpoint_id
        )
        self.failed_operations.append(failure)
        return failure
