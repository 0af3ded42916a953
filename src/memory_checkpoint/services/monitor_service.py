"""Auto-recovery monitor: health, backup and metrics loops plus error routing."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, Any, List, Optional, Tuple

from .backup_service import BackupManager
from .checkpoint_service import CheckpointStore
from .recovery_service import RecoveryEngine
from .session_service import SessionManager
from ..config.checkpoint_config import CheckpointConfig
from ..core.events import ERROR_EVENT, EventBus
from ..core.integrity import IntegrityChecker
from ..core.state import EngineState
from ..exceptions import CorruptionDetected
from ..models.checkpoint_models import CheckpointType, HealthStatus
from ..models.recovery_models import ErrorEvent, ErrorKind, FailureType, RecoveryResult
from ..utils.files import write_json
from ..utils.identifiers import now_ms

logger = logging.getLogger(__name__)

METRICS_FILE = "checkpoint-metrics.json"

ContextBuilder = Callable[[ErrorEvent], Dict[str, Any]]

# One recovery per error kind
ERROR_RECOVERY_MAP: Dict[ErrorKind, Tuple[FailureType, ContextBuilder]] = {
    ErrorKind.CHECKPOINT_SAVE: (
        FailureType.MEMORY_CORRUPTION,
        lambda e: {"operation": "save", "checkpoint_id": e.checkpoint_id},
    ),
    ErrorKind.CHECKPOINT_RESTORE: (
        FailureType.MEMORY_CORRUPTION,
        lambda e: {"operation": "restore", "checkpoint_id": e.checkpoint_id},
    ),
    ErrorKind.MEMORY_RESTORE: (
        FailureType.AGENT_MEMORY_FAILURE,
        lambda e: {"agent_id": e.agent_id} if e.agent_id else {},
    ),
    ErrorKind.SESSION_LOAD: (
        FailureType.SESSION_FAILURE,
        lambda e: {"session_id": e.session_id},
    ),
}


class AutoRecoveryMonitor:
    """
    Maps health and error signals to recovery invocations.

    Runs three independent asyncio tasks: the health loop, the backup
    loop and the metrics loop. Loop failures are logged, never raised.
    """

    def __init__(
        self,
        config: CheckpointConfig,
        state: EngineState,
        events: EventBus,
        store: CheckpointStore,
        sessions: SessionManager,
        recovery: RecoveryEngine,
        backups: BackupManager,
        integrity: IntegrityChecker,
    ):
        """
        Initialize monitor.

        Args:
            config: Engine configuration
            state: Shared engine state
            events: Event bus carrying error events
            store: Checkpoint store (health surface)
            sessions: Session manager (emergency checkpoints)
            recovery: Recovery engine
            backups: Backup manager
            integrity: Integrity checker; its corruption handler is set here
        """
        self.config = config
        self.state = state
        self.events = events
        self.store = store
        self.sessions = sessions
        self.recovery = recovery
        self.backups = backups
        self.integrity = integrity
        self.integrity.on_corruption = self.handle_corruption

        self.metrics_path = Path(config.memory_dir) / "metrics" / METRICS_FILE
        self._tasks: List[asyncio.Task] = []
        self._recovering = False

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def busy(self) -> bool:
        return self._recovering or self.state.recovery_in_progress

    def start(self) -> None:
        """Subscribe to error events and start the loops."""
        if not self.config.auto_recovery_enabled:
            logger.info("Auto-recovery disabled, monitor not started")
            return
        if self.running:
            return

        self.events.subscribe(ERROR_EVENT, self.on_error_event)
        self._tasks = [
            asyncio.create_task(
                self._loop(self.config.health_check_interval, self.run_health_check),
                name="checkpoint-health",
            ),
            asyncio.create_task(
                self._loop(self.config.backup_interval, self.backups.create_recovery_backups),
                name="checkpoint-backup",
            ),
            asyncio.create_task(
                self._loop(self.config.metrics_interval, self.write_metrics),
                name="checkpoint-metrics",
            ),
        ]
        logger.info("Auto-recovery monitor started")

    async def stop(self) -> None:
        """Cancel the loops and unsubscribe."""
        self.events.unsubscribe(ERROR_EVENT, self.on_error_event)
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Auto-recovery monitor stopped")

    async def run_health_check(self) -> Optional[HealthStatus]:
        """
        Run one health check cycle.

        Returns:
            Health status, or None if skipped during a recovery
        """
        if self.busy or self.state.recovery_mode:
            logger.debug("Recovery or restore in progress, skipping health check")
            return None

        health = self.store.get_health_status()
        if not health.healthy:
            await self.handle_health_issues(health)

        if self.config.integrity_check_enabled:
            await self.integrity.check()
        return health

    async def handle_health_issues(self, health: HealthStatus) -> None:
        """
        Act on the warnings of an unhealthy report.

        Args:
            health: Health status to act on
        """
        for warning in health.warnings:
            if "failed operations" in warning:
                await self._recover(FailureType.MEMORY_CORRUPTION, {})
            elif "No active session" in warning:
                await self._recover(FailureType.SESSION_FAILURE, {})
            elif "No active checkpoints" in warning:
                await self._create_emergency_checkpoint()

    def on_error_event(self, event: ErrorEvent):
        """
        Route an error event to its mapped recovery.

        Returns a coroutine for the event bus to schedule, or None when the
        event is unmapped or arrives during a recovery.
        """
        mapping = ERROR_RECOVERY_MAP.get(event.kind)
        if mapping is None:
            logger.warning(f"Unhandled checkpoint error: {event.kind.value}")
            return None
        if self.busy:
            logger.info(
                f"Recovery in progress, dropping {event.kind.value} error event"
            )
            return None

        failure_type, build_context = mapping
        self._recovering = True
        return self._recover_for_event(failure_type, build_context(event))

    async def handle_corruption(self, signal: CorruptionDetected) -> None:
        """Run memory_corruption recovery for an integrity failure."""
        await self._recover(
            FailureType.MEMORY_CORRUPTION, {"reason": str(signal)}
        )

    async def write_metrics(self) -> Path:
        """
        Write the metrics snapshot file.

        Returns:
            Metrics file path
        """
        metrics = {
            "timestamp": now_ms(),
            "health": self.store.get_health_status().model_dump(mode="json"),
            "recovery": self.recovery.get_recovery_status().model_dump(mode="json"),
            "stats": self.store.get_checkpoint_stats().model_dump(mode="json"),
            "process": self.sessions.capture.capture_system_state()
            .process_info.model_dump(mode="json"),
        }
        return await write_json(self.metrics_path, metrics)

    async def _recover_for_event(
        self, failure_type: FailureType, context: Dict[str, Any]
    ) -> Optional[RecoveryResult]:
        try:
            return await self._recover(failure_type, context)
        finally:
            self._recovering = False

    async def _recover(
        self, failure_type: FailureType, context: Dict[str, Any]
    ) -> Optional[RecoveryResult]:
        try:
            return await self.recovery.perform_recovery(failure_type, context)
        except Exception as e:
            logger.error(f"Auto-recovery {failure_type.value} failed: {e}")
            return None

    async def _create_emergency_checkpoint(self) -> Optional[str]:
        try:
            return await self.sessions.create_operation_checkpoint(
                {
                    "name": "emergency_checkpoint",
                    "type": "recovery",
                    "scope": "system",
                    "risk_level": "high",
                },
                checkpoint_type=CheckpointType.RECOVERY,
            )
        except Exception as e:
            logger.error(f"Emergency checkpoint failed: {e}")
            return None

    async def _loop(self, interval: float, action: Callable) -> None:
        name = getattr(action, "__name__", "action")
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Monitor {name} failed: {e}", exc_info=True)
