"""Shared fixtures for checkpoint engine tests."""

import pytest

from memory_checkpoint.config.checkpoint_config import CheckpointConfig
from memory_checkpoint.core.events import EventBus
from memory_checkpoint.core.state import EngineState
from memory_checkpoint.memory.file_store import FileMemoryStore
from memory_checkpoint.memory.snapshot import SnapshotCapture
from memory_checkpoint.models.checkpoint_models import Checkpoint, CheckpointType
from memory_checkpoint.models.state_models import MemorySnapshot
from memory_checkpoint.services.checkpoint_service import CheckpointStore
from memory_checkpoint.services.integration_service import CheckpointIntegration
from memory_checkpoint.services.session_service import SessionManager
from memory_checkpoint.utils.identifiers import generate_checkpoint_id, now_ms


@pytest.fixture
def config(tmp_path):
    """Engine configuration rooted in a temporary directory."""
    memory_dir = tmp_path / "memory"
    return CheckpointConfig(
        checkpoint_dir=str(memory_dir / "checkpoints"),
        memory_dir=str(memory_dir),
        coordination_dir=str(tmp_path / "coordination" / "memory_bank"),
        recovery_log_path=str(memory_dir / "recovery" / "recovery.log"),
        compression_enabled=True,
        compression_threshold=1024,
        max_checkpoints=100,
        retention_days=7,
        validation_enabled=True,
        recovery_timeout=5,
        auto_recovery_enabled=True,
        integrity_check_enabled=True,
        health_check_interval=3600,
        backup_interval=3600,
        metrics_interval=3600,
        backup_keep_count=5,
        vcs_hook_enabled=False,
        vcs_hook_command=None,
    )


@pytest.fixture
def state():
    return EngineState()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def memory_store(config):
    return FileMemoryStore(config)


@pytest.fixture
def capture(memory_store, state):
    return SnapshotCapture(memory_store, state)


@pytest.fixture
def store(config, state, events):
    return CheckpointStore(config, state, events)


@pytest.fixture
def sessions(config, state, events, store, capture, memory_store):
    return SessionManager(config, state, events, store, capture, memory_store)


@pytest.fixture
def engine(config):
    """Fully wired engine; not initialized."""
    return CheckpointIntegration(config)


@pytest.fixture
def recorded_errors(events):
    """Collect every error event emitted on the bus."""
    errors = []
    events.subscribe("error", errors.append)
    return errors


@pytest.fixture
def checkpoint_factory():
    """Build valid checkpoints with controllable timestamp and size."""

    def factory(
        checkpoint_type=CheckpointType.PRE_OPERATION,
        timestamp=None,
        payload=None,
        memory_state=None,
        session_id=None,
        padding=0,
    ):
        if payload is None:
            payload = {"operation": {"name": "deploy", "type": "write"}}
            if padding:
                payload["operation"]["blob"] = "x" * padding
        return Checkpoint(
            id=generate_checkpoint_id(CheckpointType(checkpoint_type).value),
            type=checkpoint_type,
            session_id=session_id,
            timestamp=timestamp if timestamp is not None else now_ms() - 1000,
            payload=payload,
            memory_state=memory_state
            or MemorySnapshot(
                agent_memory={"agent-1": {"tasks": [1, 2]}},
                shared_memory={"notes": {"b": 2, "a": 1}},
            ),
        )

    return factory
