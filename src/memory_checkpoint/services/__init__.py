"""Checkpoint engine services."""

from .checkpoint_service import CheckpointStore
from .session_service import SessionManager
from .rollback_service import RollbackManager
from .backup_service import BackupManager
from .recovery_service import RecoveryEngine
from .monitor_service import AutoRecoveryMonitor, ERROR_RECOVERY_MAP
from .integration_service import CheckpointIntegration

__all__ = [
    "CheckpointStore",
    "SessionManager",
    "RollbackManager",
    "BackupManager",
    "RecoveryEngine",
    "AutoRecoveryMonitor",
    "ERROR_RECOVERY_MAP",
    "CheckpointIntegration",
]
