"""Recovery engine: failure-type strategies with timeout and audit log."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict, Any, List, Optional, Union

import aiofiles
import aiofiles.os

from .backup_service import BackupManager
from .checkpoint_service import CheckpointStore
from .session_service import SessionManager, SESSION_MEMORY_FILE
from ..config.checkpoint_config import CheckpointConfig
from ..core.integrity import IntegrityChecker
from ..core.state import EngineState
from ..exceptions import RecoveryTimeoutError, UnknownFailureTypeError
from ..memory.file_store import FileMemoryStore
from ..memory.snapshot import SnapshotCapture
from ..models.checkpoint_models import Checkpoint
from ..models.recovery_models import (
    FailureType,
    RecoveryAttempt,
    RecoveryResult,
    RecoveryStatus,
)
from ..models.state_models import MemorySnapshot
from ..utils.files import ensure_dir, read_json
from ..utils.identifiers import generate_recovery_id, now_ms

logger = logging.getLogger(__name__)

RecoveryStrategy = Callable[[Dict[str, Any]], Awaitable[RecoveryResult]]


class RecoveryEngine:
    """
    Registry of failure-type -> recovery strategy.

    Strategies run under asyncio.wait_for with the configured timeout. A
    timed-out strategy is abandoned; strategies must tolerate being
    stopped mid-flight. Every invocation is appended to the NDJSON
    recovery log and to the in-memory history.
    """

    def __init__(
        self,
        config: CheckpointConfig,
        state: EngineState,
        store: CheckpointStore,
        sessions: SessionManager,
        backups: BackupManager,
        memory_store: FileMemoryStore,
        capture: SnapshotCapture,
        integrity: Optional[IntegrityChecker] = None,
    ):
        """
        Initialize recovery engine.

        Args:
            config: Engine configuration
            state: Shared engine state
            store: Checkpoint store
            sessions: Session manager
            backups: Backup manager
            memory_store: Live memory store
            capture: Snapshot capture
            integrity: Integrity checker, reported in status
        """
        self.config = config
        self.state = state
        self.store = store
        self.sessions = sessions
        self.backups = backups
        self.memory_store = memory_store
        self.capture = capture
        self.integrity = integrity
        self.log_path = Path(config.recovery_log_path)

        self._history: List[RecoveryAttempt] = []
        self._strategies: Dict[str, RecoveryStrategy] = {
            FailureType.MEMORY_CORRUPTION.value: self._recover_memory_corruption,
            FailureType.SESSION_FAILURE.value: self._recover_session_failure,
            FailureType.AGENT_MEMORY_FAILURE.value: self._recover_agent_memory,
            FailureType.COORDINATION_FAILURE.value: self._recover_coordination,
            FailureType.SYSTEM_FAILURE.value: self._recover_system,
        }

    @property
    def available_strategies(self) -> List[str]:
        return list(self._strategies.keys())

    def register_strategy(
        self, failure_type: Union[str, FailureType], strategy: RecoveryStrategy
    ) -> None:
        """
        Register (or replace) the strategy for a failure type.

        Args:
            failure_type: Failure type key
            strategy: Async callable taking the context dict
        """
        key = failure_type.value if isinstance(failure_type, FailureType) else failure_type
        self._strategies[key] = strategy
        logger.info(f"Registered recovery strategy for {key}")

    def get_recovery_history(self) -> List[RecoveryAttempt]:
        return list(self._history)

    async def perform_recovery(
        self,
        failure_type: Union[str, FailureType],
        context: Optional[Dict[str, Any]] = None,
    ) -> RecoveryResult:
        """
        Run the strategy registered for a failure type.

        Args:
            failure_type: Failure classification
            context: Strategy-specific context

        Returns:
            Strategy result

        Raises:
            UnknownFailureTypeError: No strategy registered
            RecoveryTimeoutError: Strategy exceeded recovery_timeout
            Exception: Whatever the strategy raised
        """
        if isinstance(failure_type, FailureType):
            failure_type = failure_type.value
        context = dict(context or {})
        recovery_id = generate_recovery_id()
        started = now_ms()

        await self._append_log(
            {
                "timestamp": started,
                "recovery_id": recovery_id,
                "event": "recovery_attempt",
                "failure_type": failure_type,
                "context": context,
            }
        )

        strategy = self._strategies.get(failure_type)
        if strategy is None:
            error = UnknownFailureTypeError(failure_type)
            logger.error(str(error))
            await self._record_failure(recovery_id, failure_type, context, error, started)
            raise error

        logger.info(f"Starting recovery {recovery_id} for {failure_type}")
        self.state.recovery_in_progress = True
        try:
            result = await asyncio.wait_for(
                strategy(context), timeout=self.config.recovery_timeout
            )
        except asyncio.TimeoutError:
            error = RecoveryTimeoutError(failure_type, self.config.recovery_timeout)
            logger.error(str(error))
            await self._record_failure(recovery_id, failure_type, context, error, started)
            raise error from None
        except Exception as e:
            logger.error(f"Recovery {recovery_id} failed: {e}", exc_info=True)
            await self._record_failure(recovery_id, failure_type, context, e, started)
            raise
        finally:
            self.state.recovery_in_progress = False
            self.state.recovery_mode = False

        duration = now_ms() - started
        await self._append_log(
            {
                "timestamp": now_ms(),
                "recovery_id": recovery_id,
                "event": "recovery_result",
                "success": result.success,
                "result": result.model_dump(mode="json"),
                "duration_ms": duration,
            }
        )
        self._history.append(
            RecoveryAttempt(
                id=recovery_id,
                failure_type=failure_type,
                context=context,
                result=result,
                success=result.success,
                duration_ms=duration,
            )
        )

        logger.info(
            f"Recovery {recovery_id} finished: strategy={result.strategy}, "
            f"success={result.success}"
        )
        return result

    def find_last_valid_checkpoint(
        self, exclude: Optional[str] = None
    ) -> Optional[Checkpoint]:
        """
        Newest indexed checkpoint passing validation.

        Args:
            exclude: Checkpoint ID to skip

        Returns:
            Checkpoint or None
        """
        ordered = sorted(
            self.state.index.values(), key=lambda c: c.timestamp, reverse=True
        )
        for checkpoint in ordered:
            if checkpoint.id != exclude and self.store.validate(checkpoint):
                return checkpoint
        return None

    async def find_session_backups(
        self, session_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Persisted session bundles, most recent first.

        Args:
            session_id: Only directories whose name contains this id

        Returns:
            List of {"session_id", "persisted_at", "path"}
        """
        sessions_dir = self.config.sessions_dir
        if not await aiofiles.os.path.isdir(sessions_dir):
            return []

        backups = []
        for name in await aiofiles.os.listdir(sessions_dir):
            if session_id and session_id not in name:
                continue
            path = sessions_dir / name / SESSION_MEMORY_FILE
            try:
                bundle = await read_json(path)
                backups.append(
                    {
                        "session_id": bundle["session_id"],
                        "persisted_at": bundle.get("persisted_at", 0),
                        "path": str(path),
                    }
                )
            except (OSError, ValueError, KeyError, TypeError):
                logger.debug(f"Skipping invalid session backup {name}")

        backups.sort(key=lambda b: b["persisted_at"], reverse=True)
        return backups

    async def preserve_existing_memory(self) -> MemorySnapshot:
        """Capture whatever live memory is still readable."""
        return await self.capture.capture()

    def get_recovery_status(self) -> RecoveryStatus:
        """Summary of recovery activity."""
        return RecoveryStatus(
            enabled=self.config.auto_recovery_enabled,
            total_recoveries=len(self._history),
            successful_recoveries=sum(1 for a in self._history if a.success),
            last_recovery=self._history[-1] if self._history else None,
            available_strategies=self.available_strategies,
            integrity_checks_enabled=self.config.integrity_check_enabled,
            last_integrity_check=self.integrity.last_check_time if self.integrity else None,
        )

    async def _recover_memory_corruption(self, context: Dict[str, Any]) -> RecoveryResult:
        exclude = context.get("checkpoint_id") if context.get("operation") == "restore" else None
        checkpoint = self.find_last_valid_checkpoint(exclude=exclude)
        if checkpoint is None:
            return RecoveryResult(
                success=False,
                strategy="last_valid_checkpoint",
                reason="No valid checkpoint found",
            )

        await self.sessions.restore_checkpoint(checkpoint)
        self.state.failed_operations.clear()
        return RecoveryResult(
            success=True,
            strategy="last_valid_checkpoint",
            checkpoint_id=checkpoint.id,
        )

    async def _recover_session_failure(self, context: Dict[str, Any]) -> RecoveryResult:
        backups = await self.find_session_backups(context.get("session_id"))
        if backups:
            latest = backups[0]
            await self.sessions.load_persisted_session(latest["session_id"])
            return RecoveryResult(
                success=True,
                strategy="session_backup",
                session_id=latest["session_id"],
            )

        preserved = await self.preserve_existing_memory()
        session_id = await self.sessions.start(
            {
                "recovered_session": True,
                "original_session_id": context.get("session_id"),
                "preserved_memory": preserved.content(),
            }
        )
        return RecoveryResult(
            success=True, strategy="new_session_with_memory", session_id=session_id
        )

    async def _recover_agent_memory(self, context: Dict[str, Any]) -> RecoveryResult:
        agent_id = context.get("agent_id")
        if not agent_id:
            return RecoveryResult(
                success=False,
                strategy="agent_backup_restore",
                reason="No agent_id in recovery context",
            )

        backup_path = self.backups.agent_backup_path(agent_id)
        try:
            memory = await read_json(backup_path)
            await self.memory_store.write_agent_memory(agent_id, memory)
            return RecoveryResult(
                success=True,
                strategy="agent_backup_restore",
                agent_id=agent_id,
                backup=str(backup_path),
            )
        except (OSError, ValueError) as e:
            logger.warning(f"No usable backup for agent {agent_id}: {e}")

        minimal_memory = {
            "agent_id": agent_id,
            "type": context.get("agent_type", "unknown"),
            "initialized": now_ms(),
            "recovered": True,
            "memory_bank": {},
            "task_history": [],
        }
        await self.memory_store.write_agent_memory(agent_id, minimal_memory)
        return RecoveryResult(
            success=True, strategy="minimal_agent_recovery", agent_id=agent_id
        )

    async def _recover_coordination(self, context: Dict[str, Any]) -> RecoveryResult:
        try:
            latest = await self.backups.latest_coordination_backup()
            if latest is not None:
                coordination_state = await read_json(latest)
                if isinstance(coordination_state, dict):
                    for key, value in coordination_state.items():
                        await self.memory_store.write_entry(
                            "coordination_state", key, value
                        )
                    return RecoveryResult(
                        success=True,
                        strategy="coordination_backup_restore",
                        backup=latest.name,
                    )
        except (OSError, ValueError) as e:
            logger.warning(f"Coordination backup unusable: {e}")

        await self.memory_store.write_entry(
            "coordination_state",
            "swarm-state",
            {
                "initialized": now_ms(),
                "topology": "mesh",
                "agents": {},
                "recovered": True,
            },
        )
        return RecoveryResult(success=True, strategy="minimal_coordination_recovery")

    async def _recover_system(self, context: Dict[str, Any]) -> RecoveryResult:
        steps = [await self._strategies[FailureType.COORDINATION_FAILURE.value]({})]

        agent_strategy = self._strategies[FailureType.AGENT_MEMORY_FAILURE.value]
        for agent_id in await self.backups.discover_agents():
            steps.append(await agent_strategy({"agent_id": agent_id}))

        steps.append(
            await self._strategies[FailureType.SESSION_FAILURE.value](context)
        )
        return RecoveryResult(
            success=all(step.success for step in steps),
            strategy="complete_system_recovery",
            steps=steps,
        )

    async def _record_failure(
        self,
        recovery_id: str,
        failure_type: str,
        context: Dict[str, Any],
        error: Exception,
        started: int,
    ) -> None:
        duration = now_ms() - started
        await self._append_log(
            {
                "timestamp": now_ms(),
                "recovery_id": recovery_id,
                "event": "recovery_result",
                "success": False,
                "error": str(error),
                "duration_ms": duration,
            }
        )
        self._history.append(
            RecoveryAttempt(
                id=recovery_id,
                failure_type=failure_type,
                context=context,
                error=str(error),
                success=False,
                duration_ms=duration,
            )
        )

    async def _append_log(self, entry: Dict[str, Any]) -> None:
        try:
            await ensure_dir(self.log_path.parent)
            async with aiofiles.open(self.log_path, "a", encoding="utf-8") as f:
                await f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            logger.warning(f"Failed to write recovery log: {e}")
