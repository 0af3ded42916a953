"""Snapshot capture of live memory and process state."""

import logging
import os
import platform
import time
from typing import Any, Dict, Mapping, Optional

import psutil

from .base import BaseMemoryStore
from ..core.state import EngineState
from ..core.validation import canonical_json
from ..models.state_models import MemorySnapshot, ProcessInfo, SystemState

logger = logging.getLogger(__name__)


class SnapshotCapture:
    """
    Turns the live state tree into a MemorySnapshot plus process metrics.

    CRITICAL: capture never raises. Missing or unreadable sources become
    empty scopes.
    """

    def __init__(self, memory_store: BaseMemoryStore, state: EngineState):
        """
        Initialize snapshot capture.

        Args:
            memory_store: Live memory source
            state: Engine state, reported in system state
        """
        self.memory_store = memory_store
        self.state = state
        self.process = psutil.Process()

    async def capture(
        self, state_tree: Optional[Mapping[str, Any]] = None
    ) -> MemorySnapshot:
        """
        Capture a memory snapshot.

        Args:
            state_tree: Optional caller-supplied scopes; read from the
                memory store when omitted

        Returns:
            Snapshot of all scopes
        """
        scopes: Dict[str, Dict[str, Any]] = {}
        for scope in MemorySnapshot.SCOPES:
            scopes[scope] = await self._capture_scope(scope, state_tree)

        try:
            return MemorySnapshot(
                **scopes, memory_metrics=self._memory_metrics(scopes)
            )
        except Exception as e:
            logger.warning(f"Snapshot capture degraded to empty state: {e}")
            return MemorySnapshot(memory_metrics={"error": str(e)})

    def capture_system_state(self) -> SystemState:
        """
        Capture process metrics.

        Returns:
            SystemState; zeroed process info if metrics are unavailable
        """
        try:
            with self.process.oneshot():
                memory_info = self.process.memory_info()
                cpu_times = self.process.cpu_times()
                process_info = ProcessInfo(
                    pid=self.process.pid,
                    uptime_seconds=round(time.time() - self.process.create_time(), 3),
                    memory_rss_bytes=memory_info.rss,
                    memory_vms_bytes=memory_info.vms,
                    cpu_user_seconds=cpu_times.user,
                    cpu_system_seconds=cpu_times.system,
                    thread_count=self.process.num_threads(),
                )
        except psutil.Error as e:
            logger.warning(f"Process metrics unavailable: {e}")
            process_info = ProcessInfo(pid=os.getpid())

        return SystemState(
            process_info=process_info,
            environment={
                "python_version": platform.python_version(),
                "platform": platform.system().lower(),
                "cwd": os.getcwd(),
            },
            checkpoint_system={
                "active_checkpoints": len(self.state.index),
                "current_session": self.state.session_id,
                "recovery_mode": self.state.recovery_mode,
            },
        )

    async def _capture_scope(
        self, scope: str, state_tree: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        if state_tree is not None:
            value = state_tree.get(scope)
            return dict(value) if isinstance(value, Mapping) else {}

        try:
            return await self.memory_store.read_scope(scope)
        except Exception as e:
            logger.warning(f"Could not capture {scope}: {e}")
            return {}

    @staticmethod
    def _memory_metrics(scopes: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {
            f"{scope}_entries": len(entries) for scope, entries in scopes.items()
        }
        metrics["total_size_bytes"] = len(canonical_json(scopes).encode("utf-8"))
        return metrics
