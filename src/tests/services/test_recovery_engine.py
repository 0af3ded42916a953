"""Tests for the recovery engine."""

import asyncio
import json
from pathlib import Path

import pytest

from memory_checkpoint.exceptions import RecoveryTimeoutError, UnknownFailureTypeError
from memory_checkpoint.models.recovery_models import FailureType, RecoveryResult


def read_log(config):
    lines = Path(config.recovery_log_path).read_text().splitlines()
    return [json.loads(line) for line in lines]


@pytest.mark.asyncio
class TestPerformRecovery:
    """Tests for the dispatch path of perform_recovery."""

    async def test_unknown_failure_type(self, engine, config):
        await engine.sessions.create_operation_checkpoint({"name": "op", "type": "write"})
        index_before = dict(engine.state.index)

        with pytest.raises(UnknownFailureTypeError):
            await engine.recovery.perform_recovery("cosmic_ray", {"x": 1})

        [attempt] = engine.recovery.get_recovery_history()
        assert attempt.success is False
        assert attempt.failure_type == "cosmic_ray"
        assert "cosmic_ray" in attempt.error
        assert engine.state.index == index_before
        entries = read_log(config)
        assert [e["event"] for e in entries] == ["recovery_attempt", "recovery_result"]
        assert entries[0]["context"] == {"x": 1}

    async def test_history_and_log_on_success(self, engine, config):
        result = await engine.recovery.perform_recovery(
            FailureType.COORDINATION_FAILURE
        )

        [attempt] = engine.recovery.get_recovery_history()
        assert attempt.success is True
        assert attempt.result == result
        entries = read_log(config)
        assert entries[1]["success"] is True
        assert entries[1]["result"]["strategy"] == "minimal_coordination_recovery"

    async def test_failed_result_is_recorded_as_failure(self, engine):
        result = await engine.recovery.perform_recovery(FailureType.MEMORY_CORRUPTION)

        assert result.success is False
        assert engine.recovery.get_recovery_history()[0].success is False

    async def test_timeout(self, engine, config):
        config.recovery_timeout = 0.05

        async def slow(_context):
            await asyncio.sleep(5)
            return RecoveryResult(success=True)

        engine.recovery.register_strategy("slow_failure", slow)

        with pytest.raises(RecoveryTimeoutError):
            await engine.recovery.perform_recovery("slow_failure")

        assert engine.state.recovery_in_progress is False
        assert engine.recovery.get_recovery_history()[0].success is False

    async def test_strategy_exception_propagates(self, engine):
        async def broken(_context):
            raise RuntimeError("strategy bug")

        engine.recovery.register_strategy("broken_failure", broken)

        with pytest.raises(RuntimeError):
            await engine.recovery.perform_recovery("broken_failure")

        assert engine.state.recovery_in_progress is False
        assert engine.state.recovery_mode is False
        assert engine.recovery.get_recovery_history()[0].error == "strategy bug"

    async def test_recovery_in_progress_during_strategy(self, engine):
        observed = []

        async def custom_strategy(_context):
            observed.append(engine.state.recovery_in_progress)
            return RecoveryResult(success=True, strategy="custom")

        engine.recovery.register_strategy("custom_failure", custom_strategy)
        await engine.recovery.perform_recovery("custom_failure")

        assert observed == [True]
        assert engine.state.recovery_in_progress is False
        assert "custom_failure" in engine.recovery.available_strategies

    async def test_recovery_status(self, engine):
        await engine.recovery.perform_recovery(FailureType.COORDINATION_FAILURE)
        await engine.recovery.perform_recovery(FailureType.MEMORY_CORRUPTION)

        status = engine.recovery.get_recovery_status()

        assert status.total_recoveries == 2
        assert status.successful_recoveries == 1
        assert status.last_recovery.failure_type == "memory_corruption"
        assert "system_failure" in status.available_strategies


@pytest.mark.asyncio
class TestMemoryCorruption:
    """Tests for the memory_corruption strategy."""

    async def test_restores_newest_valid_checkpoint(self, engine):
        await engine.memory_store.write_agent_memory("agent-1", {"good": True})
        checkpoint_id = await engine.sessions.create_operation_checkpoint(
            {"name": "op", "type": "write"}
        )
        await engine.memory_store.write_agent_memory("agent-1", {"good": False})
        engine.state.record_failure("save", "disk full")

        result = await engine.recovery.perform_recovery(FailureType.MEMORY_CORRUPTION)

        assert result.success is True
        assert result.checkpoint_id == checkpoint_id
        assert engine.state.failed_operations == []
        assert (await engine.capture.capture()).agent_memory == {"agent-1": {"good": True}}

    async def test_excludes_failed_restore_target(self, engine):
        first = await engine.sessions.create_operation_checkpoint(
            {"name": "first", "type": "write"}
        )
        await asyncio.sleep(0.01)
        second = await engine.sessions.create_operation_checkpoint(
            {"name": "second", "type": "write"}
        )

        result = await engine.recovery.perform_recovery(
            FailureType.MEMORY_CORRUPTION,
            {"operation": "restore", "checkpoint_id": second},
        )

        assert result.checkpoint_id == first

    async def test_no_checkpoint(self, engine):
        result = await engine.recovery.perform_recovery(FailureType.MEMORY_CORRUPTION)

        assert result.success is False
        assert result.reason


@pytest.mark.asyncio
class TestSessionFailure:
    """Tests for the session_failure strategy."""

    async def test_new_session_when_no_backup(self, engine):
        result = await engine.recovery.perform_recovery(
            FailureType.SESSION_FAILURE, {"session_id": "session_lost"}
        )

        assert result.success is True
        assert result.strategy == "new_session_with_memory"
        session = engine.state.current_session
        assert session.id == result.session_id
        assert session.metadata["recovered_session"] is True
        assert session.metadata["original_session_id"] == "session_lost"

    async def test_reload_from_backup(self, engine):
        await engine.memory_store.write_agent_memory("agent-1", {"step": 3})
        session_id = await engine.sessions.start()
        await engine.sessions.end()

        result = await engine.recovery.perform_recovery(FailureType.SESSION_FAILURE)

        assert result.strategy == "session_backup"
        assert result.session_id == session_id
        assert engine.state.current_session.restored is True

    async def test_find_session_backups(self, engine, config):
        first = await engine.sessions.start()
        await engine.sessions.end()
        await asyncio.sleep(0.01)
        second = await engine.sessions.start()
        await engine.sessions.end()
        junk = config.sessions_dir / "session_junk"
        junk.mkdir()
        (junk / "session_memory.json").write_text("{}")

        backups = await engine.recovery.find_session_backups()

        assert [b["session_id"] for b in backups] == [second, first]
        assert [b["session_id"] for b in await engine.recovery.find_session_backups(first)] == [
            first
        ]


@pytest.mark.asyncio
class TestAgentAndCoordination:
    """Tests for agent, coordination and system strategies."""

    async def test_agent_minimal_recovery(self, engine):
        result = await engine.recovery.perform_recovery(
            FailureType.AGENT_MEMORY_FAILURE, {"agent_id": "agent-9", "agent_type": "coder"}
        )

        assert result.success is True
        assert result.strategy == "minimal_agent_recovery"
        memory = await engine.memory_store.read_agent_memory("agent-9")
        assert memory["recovered"] is True
        assert memory["type"] == "coder"
        assert memory["memory_bank"] == {}

    async def test_agent_backup_restore(self, engine):
        await engine.memory_store.write_agent_memory("agent-1", {"tasks": ["t1"]})
        await engine.backups.create_recovery_backups()
        await engine.memory_store.write_agent_memory("agent-1", {"tasks": "garbage"})

        result = await engine.recovery.perform_recovery(
            FailureType.AGENT_MEMORY_FAILURE, {"agent_id": "agent-1"}
        )

        assert result.strategy == "agent_backup_restore"
        assert await engine.memory_store.read_agent_memory("agent-1") == {"tasks": ["t1"]}

    async def test_agent_without_id(self, engine):
        result = await engine.recovery.perform_recovery(FailureType.AGENT_MEMORY_FAILURE)

        assert result.success is False
        assert result.reason

    async def test_coordination_minimal_recovery(self, engine):
        result = await engine.recovery.perform_recovery(FailureType.COORDINATION_FAILURE)

        assert result.strategy == "minimal_coordination_recovery"
        swarm_state = await engine.memory_store.read_entry("coordination_state", "swarm-state")
        assert swarm_state["topology"] == "mesh"
        assert swarm_state["recovered"] is True

    async def test_coordination_backup_restore(self, engine):
        await engine.memory_store.write_entry(
            "coordination_state", "swarm-state", {"topology": "star"}
        )
        await engine.backups.create_recovery_backups()
        await engine.memory_store.delete_entry("coordination_state", "swarm-state")

        result = await engine.recovery.perform_recovery(FailureType.COORDINATION_FAILURE)

        assert result.strategy == "coordination_backup_restore"
        assert await engine.memory_store.read_entry(
            "coordination_state", "swarm-state"
        ) == {"topology": "star"}

    async def test_system_failure(self, engine):
        await engine.memory_store.write_agent_memory("agent-1", {})
        await engine.memory_store.write_agent_memory("agent-2", {})

        result = await engine.recovery.perform_recovery(FailureType.SYSTEM_FAILURE)

        assert result.success is True
        assert result.strategy == "complete_system_recovery"
        assert [step.strategy for step in result.steps] == [
            "minimal_coordination_recovery",
            "minimal_agent_recovery",
            "minimal_agent_recovery",
            "new_session_with_memory",
        ]
        assert len(engine.recovery.get_recovery_history()) == 1
