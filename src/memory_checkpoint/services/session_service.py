"""Session lifecycle service."""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union

from pydantic import ValidationError

from .checkpoint_service import CheckpointStore
from ..config.checkpoint_config import CheckpointConfig
from ..core.events import EventBus
from ..core.state import EngineState
from ..exceptions import (
    CheckpointEngineError,
    CheckpointNotFoundError,
    PersistenceError,
    SessionError,
)
from ..memory.base import BaseMemoryStore
from ..memory.snapshot import SnapshotCapture
from ..models.checkpoint_models import (
    Checkpoint,
    CheckpointType,
    OPERATION_CHECKPOINT_TYPES,
    SESSION_CHECKPOINT_TYPES,
)
from ..models.recovery_models import ErrorKind
from ..models.session_models import Session
from ..models.state_models import MemorySnapshot
from ..utils.files import read_json, write_json
from ..utils.identifiers import generate_checkpoint_id, generate_session_id, now_ms

logger = logging.getLogger(__name__)

SESSION_MEMORY_FILE = "session_memory.json"


class SessionManager:
    """
    Session lifecycle manager.

    Drives checkpoint creation at lifecycle boundaries:
    none -> active (start) -> ended (end) -> archived -> active (restored).

    Every checkpoint written while the session is active increments its
    counter. The session_end marker is written after the session leaves
    the active state, so it closes the count rather than adding to it.
    """

    def __init__(
        self,
        config: CheckpointConfig,
        state: EngineState,
        events: EventBus,
        store: CheckpointStore,
        capture: SnapshotCapture,
        memory_store: BaseMemoryStore,
    ):
        """
        Initialize session manager.

        Args:
            config: Engine configuration
            state: Shared engine state
            events: Event bus
            store: Checkpoint store
            capture: Snapshot capture
            memory_store: Live memory store restored into
        """
        self.config = config
        self.state = state
        self.events = events
        self.store = store
        self.capture = capture
        self.memory_store = memory_store

    @property
    def current_session(self) -> Optional[Session]:
        return self.state.current_session

    async def start(self, initial_data: Optional[Dict[str, Any]] = None) -> str:
        """
        Start a new session and persist its session_start checkpoint.

        Args:
            initial_data: Metadata stored with the session

        Returns:
            Session ID
        """
        session = Session(id=generate_session_id(), metadata=dict(initial_data or {}))
        self.state.current_session = session

        try:
            await self.create_session_checkpoint(
                {
                    **session.metadata,
                    "type": CheckpointType.SESSION_START.value,
                    "session_id": session.id,
                }
            )
        except Exception:
            self.state.current_session = None
            raise

        self.events.emit("session_started", session)
        logger.info(f"Started session {session.id}")
        return session.id

    async def create_decision_checkpoint(self, decision_data: Dict[str, Any]) -> str:
        """
        Checkpoint a decision point of the active session.

        Args:
            decision_data: context, options, selected, reasoning, impact, reversible

        Returns:
            Checkpoint ID

        Raises:
            SessionError: No active session
        """
        session = self.current_session
        if session is None or not session.is_active:
            raise SessionError("No active session for decision checkpoint")

        decision = {
            "context": decision_data.get("context", {}),
            "options": decision_data.get("options", []),
            "reasoning": decision_data.get("reasoning"),
            "impact": decision_data.get("impact", "medium"),
            "reversible": decision_data.get("reversible") is not False,
        }
        # A decision without a selection stays invalid
        if "selected" in decision_data:
            decision["selected"] = decision_data["selected"]

        checkpoint = await self._build_checkpoint(
            CheckpointType.DECISION_POINT, {"decision": decision}
        )
        return await self._persist(checkpoint, decision=True)

    async def create_operation_checkpoint(
        self,
        operation_data: Dict[str, Any],
        checkpoint_type: Union[str, CheckpointType] = CheckpointType.PRE_OPERATION,
    ) -> str:
        """
        Checkpoint before (or at) an operation.

        Args:
            operation_data: name, type, scope, risk_level, expected_duration,
                dependencies and any extra keys
            checkpoint_type: One of the operation-shaped checkpoint types

        Returns:
            Checkpoint ID
        """
        checkpoint_type = CheckpointType(checkpoint_type)
        if checkpoint_type not in OPERATION_CHECKPOINT_TYPES:
            raise ValueError(f"{checkpoint_type.value} is not an operation checkpoint type")

        operation = {
            "name": operation_data.get("name"),
            "type": operation_data.get("type"),
            "scope": operation_data.get("scope", "local"),
            "risk_level": operation_data.get("risk_level", "medium"),
            "expected_duration": operation_data.get("expected_duration"),
            "dependencies": operation_data.get("dependencies", []),
        }
        for key, value in operation_data.items():
            operation.setdefault(key, value)

        checkpoint = await self._build_checkpoint(
            checkpoint_type, {"operation": operation}
        )
        checkpoint_id = await self._persist(checkpoint)
        self.events.emit("operation_checkpoint_created", checkpoint)
        return checkpoint_id

    async def create_session_checkpoint(self, session_data: Dict[str, Any]) -> str:
        """
        Checkpoint a session boundary.

        A session_end checkpoint also archives the session.

        Args:
            session_data: "type" (default session_boundary), optional
                "session_id"; remaining keys become metadata

        Returns:
            Checkpoint ID
        """
        checkpoint_type = CheckpointType(
            session_data.get("type", CheckpointType.SESSION_BOUNDARY.value)
        )
        if checkpoint_type not in SESSION_CHECKPOINT_TYPES:
            raise ValueError(f"{checkpoint_type.value} is not a session checkpoint type")

        session = self.current_session
        if checkpoint_type == CheckpointType.SESSION_END and session is not None:
            session.ended_at = now_ms()

        try:
            usage = await self.store.get_memory_usage()
            payload = {
                "session": {
                    "duration": session.duration_ms() if session else 0,
                    "checkpoint_count": session.checkpoint_count if session else 0,
                    "decision_points": list(session.decision_points) if session else [],
                    "memory_usage": usage.model_dump(),
                },
                "metadata": {
                    k: v
                    for k, v in session_data.items()
                    if k not in ("type", "session_id")
                },
            }
            checkpoint = await self._build_checkpoint(
                checkpoint_type,
                payload,
                session_id=session_data.get("session_id"),
            )
            checkpoint_id = await self._persist(checkpoint)
            if checkpoint_type == CheckpointType.SESSION_END:
                await self.archive(end_checkpoint_id=checkpoint_id)
        except Exception:
            if checkpoint_type == CheckpointType.SESSION_END and session is not None:
                session.ended_at = None
            raise

        return checkpoint_id

    async def end(self) -> Optional[str]:
        """
        End the active session.

        Returns:
            Ended session ID, or None if no session was active
        """
        session = self.current_session
        if session is None:
            return None

        await self.create_session_checkpoint({"type": CheckpointType.SESSION_END.value})
        self.state.current_session = None

        self.events.emit("session_ended", session.id)
        logger.info(
            f"Ended session {session.id} after {session.checkpoint_count} checkpoints"
        )
        return session.id

    async def archive(self, end_checkpoint_id: Optional[str] = None) -> Optional[Path]:
        """
        Archive the current session and persist it for later reload.

        Args:
            end_checkpoint_id: session_end checkpoint closing the session

        Returns:
            Archive file path, or None if no session is active
        """
        session = self.current_session
        if session is None:
            return None

        archive_path = (
            self.config.archived_dir / f"session_{session.id}_{now_ms()}.json"
        )
        archive_data = {
            "session": session.model_dump(mode="json"),
            "checkpoints": self._session_checkpoints(session.id),
            "end_checkpoint_id": end_checkpoint_id,
            "archived_at": now_ms(),
            "memory_state": (await self.capture.capture()).model_dump(mode="json"),
        }
        await write_json(archive_path, archive_data)

        await self.persist_session_memory(session.id)

        self.events.emit("session_archived", {"session_id": session.id, "path": str(archive_path)})
        logger.info(f"Archived session {session.id} to {archive_path}")
        return archive_path

    async def persist_session_memory(self, session_id: str) -> Path:
        """
        Persist a session bundle for cross-session reload.

        Args:
            session_id: Session to persist

        Returns:
            Path of the written session_memory.json
        """
        session = self.current_session
        session_info = (
            session.model_dump(mode="json")
            if session is not None and session.id == session_id
            else None
        )
        bundle = {
            "session_id": session_id,
            "persisted_at": now_ms(),
            "memory_state": (await self.capture.capture()).model_dump(mode="json"),
            "checkpoints": self._session_checkpoints(session_id),
            "session_info": session_info,
        }
        path = self.config.sessions_dir / session_id / SESSION_MEMORY_FILE
        await write_json(path, bundle)

        self.events.emit("session_memory_persisted", session_id)
        return path

    async def load_persisted_session(self, session_id: str) -> Dict[str, Any]:
        """
        Reload a persisted session as the active, restored session.

        Args:
            session_id: Session to reload

        Returns:
            The persisted bundle

        Raises:
            PersistenceError: Bundle missing, unreadable or malformed
        """
        path = self.config.sessions_dir / session_id / SESSION_MEMORY_FILE
        try:
            bundle = await read_json(path)
            snapshot = MemorySnapshot.model_validate(bundle.get("memory_state") or {})
            await self.memory_store.restore(snapshot)

            for data in bundle.get("checkpoints", []):
                if self.store.validate(data):
                    checkpoint = Checkpoint.model_validate(data)
                    self.state.index[checkpoint.id] = checkpoint

            session_info = bundle.get("session_info") or {"id": session_id}
            session = Session.model_validate(session_info)
            session.ended_at = None
            session.restored = True
            session.restored_at = now_ms()
            self.state.current_session = session
        except (OSError, ValueError, AttributeError, ValidationError) as e:
            logger.error(f"Failed to load persisted session {session_id}: {e}")
            self.events.emit_error(ErrorKind.SESSION_LOAD, e, session_id=session_id)
            raise PersistenceError(
                f"Failed to load persisted session {session_id}: {e}"
            ) from e

        self.events.emit("session_memory_loaded", session_id)
        logger.info(f"Reloaded persisted session {session_id}")
        return bundle

    async def restore_from_checkpoint(self, checkpoint_id: str) -> bool:
        """
        Restore the live memory state from a checkpoint.

        Args:
            checkpoint_id: Checkpoint to restore

        Returns:
            True on success

        Raises:
            CheckpointNotFoundError: Checkpoint missing
            PersistenceError: Memory state could not be restored
        """
        self.state.recovery_mode = True
        try:
            checkpoint = await self.store.load(checkpoint_id)
            if checkpoint is None:
                raise CheckpointNotFoundError(checkpoint_id)
            return await self.restore_checkpoint(checkpoint)
        except CheckpointNotFoundError as e:
            self._record_restore_failure(checkpoint_id, e)
            raise
        finally:
            self.state.recovery_mode = False

    async def restore_checkpoint(self, checkpoint: Checkpoint) -> bool:
        """
        Restore an already-loaded checkpoint.

        Only a session_start checkpoint rebuilds the active session.
        """
        self.state.recovery_mode = True
        try:
            self.state.last_valid_checkpoint = checkpoint.id
            await self.restore_memory_state(checkpoint.memory_state)

            if (
                checkpoint.session_id
                and checkpoint.type == CheckpointType.SESSION_START.value
            ):
                self.state.current_session = Session(
                    id=checkpoint.session_id,
                    start_time=checkpoint.timestamp,
                    memory_state=checkpoint.memory_state,
                    restored=True,
                    restored_at=now_ms(),
                )
        except CheckpointEngineError as e:
            self._record_restore_failure(checkpoint.id, e)
            raise
        finally:
            self.state.recovery_mode = False

        self.events.emit("checkpoint_restored", checkpoint)
        logger.info(f"Restored from checkpoint {checkpoint.id}")
        return True

    async def restore_memory_state(self, snapshot: MemorySnapshot) -> None:
        """
        Write a snapshot back into the live memory store.

        Raises:
            PersistenceError: Store write failed
        """
        try:
            await self.memory_store.restore(snapshot)
        except (OSError, ValueError) as e:
            logger.error(f"Memory restore failed: {e}", exc_info=True)
            self.events.emit_error(ErrorKind.MEMORY_RESTORE, e)
            raise PersistenceError(f"Memory restore failed: {e}") from e

        self.events.emit("memory_state_restored", snapshot)

    async def _build_checkpoint(
        self,
        checkpoint_type: CheckpointType,
        payload: Dict[str, Any],
        session_id: Optional[str] = None,
    ) -> Checkpoint:
        return Checkpoint(
            id=generate_checkpoint_id(checkpoint_type.value),
            type=checkpoint_type,
            session_id=session_id or self.state.session_id,
            timestamp=now_ms(),
            payload=payload,
            memory_state=await self.capture.capture(),
            system_state=self.capture.capture_system_state(),
        )

    async def _persist(self, checkpoint: Checkpoint, decision: bool = False) -> str:
        checkpoint_id = await self.store.save(checkpoint)

        session = self.current_session
        if session is not None and session.is_active:
            session.record_checkpoint(
                memory_state=checkpoint.memory_state,
                decision_id=checkpoint_id if decision else None,
            )
        return checkpoint_id

    def _session_checkpoints(self, session_id: str) -> list:
        checkpoints = [
            c
            for c in self.state.index.values()
            if c.session_id == session_id and c.type != CheckpointType.SESSION_END.value
        ]
        checkpoints.sort(key=lambda c: c.timestamp)
        return [c.model_dump(mode="json") for c in checkpoints]

    def _record_restore_failure(self, checkpoint_id: str, error: Exception) -> None:
        logger.error(f"Restore from checkpoint {checkpoint_id} failed: {error}")
        self.state.record_failure("restore", str(error), checkpoint_id)
        self.events.emit_error(
            ErrorKind.CHECKPOINT_RESTORE, error, checkpoint_id=checkpoint_id
        )
