"""Tests for the rollback service."""

import pytest

from memory_checkpoint.exceptions import CheckpointNotFoundError
from memory_checkpoint.models.recovery_models import ErrorKind
from memory_checkpoint.services.rollback_service import RollbackManager


@pytest.fixture
def rollback(sessions, store, events):
    return RollbackManager(sessions, store, events)


@pytest.mark.asyncio
class TestRollbackManager:
    """Tests for RollbackManager."""

    async def test_create_rollback_point(self, rollback, store):
        checkpoint_id = await rollback.create_rollback_point("before refactor")

        checkpoint = store.index[checkpoint_id]
        assert checkpoint.type == "rollback"
        assert checkpoint.payload["operation"]["name"] == "rollback_point"
        assert checkpoint.payload["operation"]["description"] == "before refactor"

    async def test_rollback_restores_target(
        self, rollback, memory_store, store, capture, events
    ):
        completed = []
        events.subscribe("rollback_completed", completed.append)
        await memory_store.write_agent_memory("agent-1", {"version": 1})
        target_id = await rollback.create_rollback_point("v1")
        await memory_store.write_agent_memory("agent-1", {"version": 2})
        await memory_store.write_entry("shared_memory", "draft", {"text": "wip"})
        before_rollback = await capture.capture()

        assert await rollback.rollback_to_point(target_id) is True

        [safety] = store.list_checkpoints("safety")
        assert safety.payload["operation"]["rollback_target"] == target_id
        assert safety.memory_state.content() == before_rollback.content()
        live = await capture.capture()
        assert live.content() == store.index[target_id].memory_state.content()
        assert completed == [target_id]

    async def test_rollback_can_be_undone(self, rollback, memory_store, store, capture):
        await memory_store.write_agent_memory("agent-1", {"version": 1})
        target_id = await rollback.create_rollback_point()
        await memory_store.write_agent_memory("agent-1", {"version": 2})

        await rollback.rollback_to_point(target_id)
        [safety] = store.list_checkpoints("safety")
        await rollback.rollback_to_point(safety.id)

        assert (await capture.capture()).agent_memory == {"agent-1": {"version": 2}}

    async def test_rollback_history(self, rollback):
        first = await rollback.create_rollback_point()
        await rollback.rollback_to_point(first)
        await rollback.rollback_to_point(first)

        history = rollback.get_rollback_history()

        assert [h["target_checkpoint"] for h in history] == [first, first]
        assert len(rollback.get_rollback_history(limit=1)) == 1
        assert history[0]["safety_checkpoint"] != history[1]["safety_checkpoint"]

    async def test_rollback_to_missing_checkpoint(self, rollback, store, recorded_errors):
        with pytest.raises(CheckpointNotFoundError):
            await rollback.rollback_to_point("rollback_missing")

        assert store.list_checkpoints("safety") == []
        assert [e.kind for e in recorded_errors] == [ErrorKind.ROLLBACK]
        assert rollback.get_rollback_history() == []
