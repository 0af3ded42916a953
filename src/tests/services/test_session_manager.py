"""Tests for the session lifecycle service."""

import json

import pytest

from memory_checkpoint.exceptions import (
    CheckpointNotFoundError,
    CheckpointValidationError,
    PersistenceError,
    SessionError,
)
from memory_checkpoint.models.recovery_models import ErrorKind
from memory_checkpoint.services.session_service import SESSION_MEMORY_FILE


@pytest.mark.asyncio
class TestSessionLifecycle:
    """Tests for start, checkpoints and end."""

    async def test_start_writes_session_start(self, sessions, store, state, events):
        started = []
        events.subscribe("session_started", started.append)

        session_id = await sessions.start({"task": "refactor"})

        assert state.session_id == session_id
        assert state.current_session.checkpoint_count == 1
        assert state.current_session.metadata == {"task": "refactor"}
        [checkpoint] = store.list_checkpoints("session_start")
        assert checkpoint.session_id == session_id
        assert checkpoint.payload["metadata"] == {"task": "refactor"}
        assert [s.id for s in started] == [session_id]

    async def test_decision_requires_session(self, sessions):
        with pytest.raises(SessionError):
            await sessions.create_decision_checkpoint({"context": {}})

    async def test_decision_checkpoint_defaults(self, sessions, store, state):
        await sessions.start()

        checkpoint_id = await sessions.create_decision_checkpoint(
            {"context": {"file": "a.py"}, "options": ["x", "y"], "selected": "x"}
        )

        decision = store.index[checkpoint_id].payload["decision"]
        assert decision["selected"] == "x"
        assert decision["impact"] == "medium"
        assert decision["reversible"] is True
        assert state.current_session.decision_points == [checkpoint_id]
        assert state.current_session.checkpoint_count == 2

    async def test_decision_not_reversible(self, sessions, store):
        await sessions.start()

        checkpoint_id = await sessions.create_decision_checkpoint(
            {"context": {}, "selected": None, "reversible": False}
        )

        assert store.index[checkpoint_id].payload["decision"]["reversible"] is False
        assert store.index[checkpoint_id].payload["decision"]["selected"] is None

    async def test_decision_without_selection_is_invalid(self, sessions, state):
        await sessions.start()

        with pytest.raises(CheckpointValidationError):
            await sessions.create_decision_checkpoint({"context": {"x": 1}})

        assert state.current_session.decision_points == []

    async def test_start_metadata_cannot_change_marker_type(self, sessions, store, state):
        session_id = await sessions.start({"type": "interactive"})

        [checkpoint] = store.list_checkpoints("session_start")
        assert checkpoint.session_id == session_id
        assert state.current_session.metadata == {"type": "interactive"}
        assert state.current_session.is_active

    async def test_start_metadata_cannot_end_session(self, sessions, store, state):
        session_id = await sessions.start({"type": "session_end", "session_id": "other"})

        assert state.current_session.is_active
        assert state.current_session.ended_at is None
        assert store.list_checkpoints("session_end") == []
        [checkpoint] = store.list_checkpoints("session_start")
        assert checkpoint.session_id == session_id

    async def test_start_failure_clears_session(self, sessions, store, state, mocker):
        mocker.patch.object(store, "save", side_effect=RuntimeError("disk gone"))

        with pytest.raises(RuntimeError):
            await sessions.start()

        assert state.current_session is None

    async def test_operation_checkpoint_defaults(self, sessions, store, events):
        seen = []
        events.subscribe("operation_checkpoint_created", seen.append)

        checkpoint_id = await sessions.create_operation_checkpoint(
            {"name": "migrate", "type": "write", "ticket": "OPS-1"}
        )

        checkpoint = store.index[checkpoint_id]
        operation = checkpoint.payload["operation"]
        assert checkpoint.type == "pre_operation"
        assert checkpoint.session_id is None
        assert operation["scope"] == "local"
        assert operation["risk_level"] == "medium"
        assert operation["dependencies"] == []
        assert operation["ticket"] == "OPS-1"
        assert [c.id for c in seen] == [checkpoint_id]

    async def test_operation_checkpoint_rejects_other_types(self, sessions):
        with pytest.raises(ValueError):
            await sessions.create_operation_checkpoint(
                {"name": "x", "type": "y"}, checkpoint_type="session_start"
            )

    async def test_operation_without_name_is_invalid(self, sessions):
        with pytest.raises(CheckpointValidationError):
            await sessions.create_operation_checkpoint({"type": "write"})

    async def test_session_boundary(self, sessions, store):
        session_id = await sessions.start()

        checkpoint_id = await sessions.create_session_checkpoint({"reason": "handoff"})

        checkpoint = store.index[checkpoint_id]
        assert checkpoint.type == "session_boundary"
        assert checkpoint.session_id == session_id
        assert checkpoint.payload["metadata"] == {"reason": "handoff"}
        assert checkpoint.payload["session"]["checkpoint_count"] == 1

    async def test_session_boundary_needs_session(self, sessions):
        with pytest.raises(CheckpointValidationError):
            await sessions.create_session_checkpoint({"type": "session_boundary"})

    async def test_end_without_session(self, sessions):
        assert await sessions.end() is None

    async def test_end_archives_three_checkpoints(self, sessions, store, state, config):
        session_id = await sessions.start()
        await sessions.create_operation_checkpoint({"name": "one", "type": "write"})
        await sessions.create_operation_checkpoint({"name": "two", "type": "write"})

        assert await sessions.end() == session_id

        assert state.current_session is None
        [archive_path] = list(config.archived_dir.glob(f"session_{session_id}_*.json"))
        archive = json.loads(archive_path.read_text())
        assert archive["session"]["checkpoint_count"] == 3
        assert archive["session"]["ended_at"] is not None
        assert len(archive["checkpoints"]) == 3
        assert [c["type"] for c in archive["checkpoints"]] == [
            "session_start",
            "pre_operation",
            "pre_operation",
        ]
        end_checkpoint = store.index[archive["end_checkpoint_id"]]
        assert end_checkpoint.type == "session_end"
        assert end_checkpoint.payload["session"]["checkpoint_count"] == 3

    async def test_failed_end_keeps_session_active(self, sessions, store, state, mocker):
        save = store.save

        async def fail_on_session_end(checkpoint):
            if checkpoint.type == "session_end":
                raise PersistenceError("disk full")
            return await save(checkpoint)

        session_id = await sessions.start()
        mocker.patch.object(store, "save", side_effect=fail_on_session_end)

        with pytest.raises(PersistenceError):
            await sessions.end()

        session = state.current_session
        assert session.id == session_id
        assert session.ended_at is None
        checkpoint_id = await sessions.create_decision_checkpoint(
            {"context": {}, "selected": "retry"}
        )
        assert session.decision_points == [checkpoint_id]
        assert session.checkpoint_count == 2

    async def test_end_persists_session_memory(self, sessions, memory_store, config):
        await memory_store.write_agent_memory("agent-1", {"step": 1})
        session_id = await sessions.start()

        await sessions.end()

        bundle = json.loads(
            (config.sessions_dir / session_id / SESSION_MEMORY_FILE).read_text()
        )
        assert bundle["session_id"] == session_id
        assert bundle["memory_state"]["agent_memory"] == {"agent-1": {"step": 1}}
        assert len(bundle["checkpoints"]) == 1
        assert bundle["session_info"]["id"] == session_id


@pytest.mark.asyncio
class TestPersistedSessions:
    """Tests for cross-session reload."""

    async def test_load_persisted_session(self, sessions, memory_store, state, capture):
        await memory_store.write_agent_memory("agent-1", {"step": 1})
        session_id = await sessions.start()
        await sessions.create_operation_checkpoint({"name": "op", "type": "write"})
        await sessions.end()

        await memory_store.write_agent_memory("agent-1", {"step": 99})
        await memory_store.write_entry("shared_memory", "stray", True)
        state.index.clear()

        bundle = await sessions.load_persisted_session(session_id)

        assert bundle["session_id"] == session_id
        session = state.current_session
        assert session.id == session_id
        assert session.restored is True
        assert session.restored_at is not None
        assert session.is_active
        assert len(state.index) == 2
        snapshot = await capture.capture()
        assert snapshot.agent_memory == {"agent-1": {"step": 1}}
        assert snapshot.shared_memory == {}

    async def test_load_missing_session(self, sessions, recorded_errors):
        with pytest.raises(PersistenceError):
            await sessions.load_persisted_session("session_missing")

        assert recorded_errors[0].kind == ErrorKind.SESSION_LOAD
        assert recorded_errors[0].session_id == "session_missing"

    async def test_load_corrupt_bundle(self, sessions, config, recorded_errors):
        path = config.sessions_dir / "session_bad" / SESSION_MEMORY_FILE
        path.parent.mkdir(parents=True)
        path.write_text("[1, 2, 3]")

        with pytest.raises(PersistenceError):
            await sessions.load_persisted_session("session_bad")

        assert len(recorded_errors) == 1


@pytest.mark.asyncio
class TestRestore:
    """Tests for restoring from checkpoints."""

    async def test_restore_from_checkpoint(self, sessions, memory_store, store, state, capture):
        await memory_store.write_agent_memory("agent-1", {"version": 1})
        checkpoint_id = await sessions.create_operation_checkpoint(
            {"name": "deploy", "type": "write"}
        )
        await memory_store.write_agent_memory("agent-1", {"version": 2})
        await memory_store.write_agent_memory("agent-2", {"new": True})

        assert await sessions.restore_from_checkpoint(checkpoint_id) is True

        snapshot = await capture.capture()
        assert snapshot.content() == store.index[checkpoint_id].memory_state.content()
        assert state.recovery_mode is False
        assert state.last_valid_checkpoint == checkpoint_id

    async def test_restore_session_start_rebuilds_session(self, sessions, store, state):
        session_id = await sessions.start()
        [start] = store.list_checkpoints("session_start")
        await sessions.end()

        await sessions.restore_from_checkpoint(start.id)

        assert state.current_session.id == session_id
        assert state.current_session.restored is True

    async def test_restore_operation_keeps_session(self, sessions, state):
        checkpoint_id = await sessions.create_operation_checkpoint(
            {"name": "deploy", "type": "write"}
        )

        await sessions.restore_from_checkpoint(checkpoint_id)

        assert state.current_session is None

    async def test_restore_missing_checkpoint(self, sessions, state, recorded_errors):
        with pytest.raises(CheckpointNotFoundError):
            await sessions.restore_from_checkpoint("pre_operation_missing")

        assert state.recovery_mode is False
        [failure] = state.failed_operations
        assert failure.operation == "restore"
        assert failure.checkpoint_id == "pre_operation_missing"
        assert recorded_errors[0].kind == ErrorKind.CHECKPOINT_RESTORE

    async def test_restore_write_failure(
        self, sessions, memory_store, state, recorded_errors, mocker
    ):
        checkpoint_id = await sessions.create_operation_checkpoint(
            {"name": "deploy", "type": "write"}
        )
        mocker.patch.object(memory_store, "restore", side_effect=OSError("read-only"))

        with pytest.raises(PersistenceError):
            await sessions.restore_from_checkpoint(checkpoint_id)

        assert [e.kind for e in recorded_errors] == [
            ErrorKind.MEMORY_RESTORE,
            ErrorKind.CHECKPOINT_RESTORE,
        ]
        assert len(state.failed_operations) == 1
        assert state.recovery_mode is False
