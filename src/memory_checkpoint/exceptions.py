"""Exception taxonomy for the checkpoint and recovery engine."""

from typing import Optional


class CheckpointEngineError(Exception):
    """Base class for all checkpoint engine errors."""

    pass


class CheckpointValidationError(CheckpointEngineError):
    """Raised when a checkpoint fails structural validation before a write."""

    def __init__(self, message: str, checkpoint_id: Optional[str] = None):
        super().__init__(message)
        self.checkpoint_id = checkpoint_id


class PersistenceError(CheckpointEngineError):
    """Raised on I/O failures while saving or loading persisted state."""

    pass


class CheckpointNotFoundError(PersistenceError):
    """Raised when a checkpoint id cannot be resolved for a restore."""

    def __init__(self, checkpoint_id: str):
        super().__init__(f"Checkpoint {checkpoint_id} not found")
        self.checkpoint_id = checkpoint_id


class SessionError(CheckpointEngineError):
    """Raised when an operation needs an active session and none exists."""

    pass


class RecoveryError(CheckpointEngineError):
    """Base class for recovery engine failures."""

    pass


class UnknownFailureTypeError(RecoveryError):
    """Raised when no recovery strategy is registered for a failure type."""

    def __init__(self, failure_type: str):
        super().__init__(f"No recovery strategy for failure type: {failure_type}")
        self.failure_type = failure_type


class RecoveryTimeoutError(RecoveryError):
    """Raised when a recovery strategy exceeds its time budget."""

    def __init__(self, failure_type: str, timeout: float):
        super().__init__(
            f"Recovery '{failure_type}' timed out after {timeout:.1f}s"
        )
        self.failure_type = failure_type
        self.timeout = timeout


class CorruptionDetected(CheckpointEngineError):
    """Integrity hash drift combined with a structurally invalid snapshot."""

    def __init__(self, previous_hash: str, current_hash: str):
        super().__init__(
            f"Memory state drifted ({previous_hash[:12]} -> {current_hash[:12]}) "
            "and failed structural validation"
        )
        self.previous_hash = previous_hash
        self.current_hash = current_hash
