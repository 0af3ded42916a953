"""Rollback service for restoring earlier checkpoints safely."""

import logging
from typing import Dict, Any, List, Optional

from .checkpoint_service import CheckpointStore
from .session_service import SessionManager
from ..core.events import EventBus
from ..exceptions import CheckpointEngineError, CheckpointNotFoundError
from ..models.checkpoint_models import CheckpointType
from ..models.recovery_models import ErrorKind
from ..utils.identifiers import now_ms

logger = logging.getLogger(__name__)


class RollbackManager:
    """
    Rollback manager for state recovery.

    Every rollback first writes a safety checkpoint of the current state,
    so a rollback can itself be undone.
    """

    def __init__(
        self,
        sessions: SessionManager,
        store: CheckpointStore,
        events: EventBus,
    ):
        """
        Initialize rollback manager.

        Args:
            sessions: Session manager used to checkpoint and restore
            store: Checkpoint store
            events: Event bus
        """
        self.sessions = sessions
        self.store = store
        self.events = events
        self._rollback_history: List[Dict[str, Any]] = []

    async def create_rollback_point(self, description: str = "") -> str:
        """
        Create a rollback checkpoint of the current state.

        Args:
            description: Human-readable reason

        Returns:
            Rollback checkpoint ID
        """
        checkpoint_id = await self.sessions.create_operation_checkpoint(
            {
                "name": "rollback_point",
                "type": "rollback",
                "scope": "session",
                "risk_level": "low",
                "description": description,
            },
            checkpoint_type=CheckpointType.ROLLBACK,
        )
        logger.info(f"Created rollback point {checkpoint_id}")
        return checkpoint_id

    async def rollback_to_point(self, checkpoint_id: str) -> bool:
        """
        Roll the live memory state back to a checkpoint.

        Writes a safety checkpoint before restoring.

        Args:
            checkpoint_id: Target checkpoint

        Returns:
            True on success

        Raises:
            CheckpointNotFoundError: Target missing
            PersistenceError: Restore failed
        """
        logger.info(f"Rolling back to checkpoint {checkpoint_id}")
        try:
            target = await self.store.load(checkpoint_id)
            if target is None:
                raise CheckpointNotFoundError(checkpoint_id)

            safety_id = await self.sessions.create_operation_checkpoint(
                {
                    "name": "pre_rollback",
                    "type": "safety",
                    "scope": "session",
                    "risk_level": "high",
                    "rollback_target": checkpoint_id,
                },
                checkpoint_type=CheckpointType.SAFETY,
            )

            await self.sessions.restore_checkpoint(target)
        except CheckpointEngineError as e:
            logger.error(f"Rollback to {checkpoint_id} failed: {e}")
            self.events.emit_error(ErrorKind.ROLLBACK, e, checkpoint_id=checkpoint_id)
            raise

        self._rollback_history.append(
            {
                "timestamp": now_ms(),
                "target_checkpoint": checkpoint_id,
                "safety_checkpoint": safety_id,
                "session_id": self.sessions.state.session_id,
            }
        )
        self.events.emit("rollback_completed", checkpoint_id)
        logger.info(
            f"Rolled back to {checkpoint_id} (safety checkpoint {safety_id})"
        )
        return True

    def get_rollback_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Get rollback history, oldest first.

        Args:
            limit: Optional number of most recent entries

        Returns:
            List of rollback records
        """
        history = list(self._rollback_history)
        return history[-limit:] if limit else history
