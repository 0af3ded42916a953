"""Tests for the auto-recovery monitor."""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, call

from memory_checkpoint.exceptions import CheckpointNotFoundError, CorruptionDetected
from memory_checkpoint.models.recovery_models import ErrorKind, FailureType


@pytest.fixture
def recovery_mock(engine):
    """Replace perform_recovery on the engine's recovery engine."""
    mock = AsyncMock()
    engine.recovery.perform_recovery = mock
    return mock


@pytest.mark.asyncio
class TestHealthCheck:
    """Tests for the health check cycle."""

    async def test_healthy_report_takes_no_action(self, engine, recovery_mock):
        await engine.sessions.start()

        health = await engine.monitor.run_health_check()

        assert health.healthy is True
        recovery_mock.assert_not_called()

    async def test_warnings_alone_take_no_action(self, engine, recovery_mock):
        health = await engine.monitor.run_health_check()

        assert health.healthy is True
        assert "No active session" in health.warnings
        recovery_mock.assert_not_called()
        assert engine.state.index == {}

    async def test_unhealthy_report_triggers_recovery(self, engine, recovery_mock):
        engine.state.record_failure("save", "disk full")

        health = await engine.monitor.run_health_check()

        assert health.healthy is False
        assert recovery_mock.await_args_list == [
            call(FailureType.MEMORY_CORRUPTION, {}),
            call(FailureType.SESSION_FAILURE, {}),
        ]
        [emergency] = engine.store.list_checkpoints("recovery")
        assert emergency.payload["operation"]["name"] == "emergency_checkpoint"

    async def test_skipped_during_recovery(self, engine, recovery_mock):
        engine.state.recovery_in_progress = True
        engine.state.record_failure("save", "disk full")

        assert await engine.monitor.run_health_check() is None
        recovery_mock.assert_not_called()

    async def test_skipped_during_restore(self, engine, recovery_mock):
        engine.state.recovery_mode = True
        engine.state.record_failure("save", "disk full")

        assert await engine.monitor.run_health_check() is None
        recovery_mock.assert_not_called()
        assert engine.store.list_checkpoints("recovery") == []

    async def test_restore_failure_still_routes_error(self, engine, recovery_mock):
        engine.monitor.start()
        try:
            with pytest.raises(CheckpointNotFoundError):
                await engine.sessions.restore_from_checkpoint("decision_point_missing")
            await engine.events.drain()
        finally:
            await engine.monitor.stop()

        recovery_mock.assert_awaited_once_with(
            FailureType.MEMORY_CORRUPTION,
            {"operation": "restore", "checkpoint_id": "decision_point_missing"},
        )

    async def test_integrity_corruption_triggers_recovery(
        self, engine, recovery_mock
    ):
        await engine.sessions.start()
        await engine.memory_store.write_agent_memory("agent-1", {})
        await engine.monitor.run_health_check()

        await engine.memory_store.write_agent_memory("agent-1", ["not", "a", "mapping"])
        await engine.monitor.run_health_check()

        [recovery_call] = recovery_mock.await_args_list
        assert recovery_call.args[0] == FailureType.MEMORY_CORRUPTION
        assert "reason" in recovery_call.args[1]

    async def test_handle_corruption(self, engine, recovery_mock):
        await engine.monitor.handle_corruption(CorruptionDetected("a" * 64, "b" * 64))

        recovery_mock.assert_awaited_once()

    async def test_recovery_failure_is_contained(self, engine, recovery_mock):
        recovery_mock.side_effect = RuntimeError("strategy bug")
        engine.state.record_failure("save", "disk full")

        await engine.monitor.run_health_check()


@pytest.mark.asyncio
class TestErrorRouting:
    """Tests for error event to recovery mapping."""

    async def test_save_error_triggers_memory_corruption(self, engine, recovery_mock):
        engine.monitor.start()
        try:
            engine.events.emit_error(
                ErrorKind.CHECKPOINT_SAVE, "disk full", checkpoint_id="cp-1"
            )
            await engine.events.drain()
        finally:
            await engine.monitor.stop()

        recovery_mock.assert_awaited_once_with(
            FailureType.MEMORY_CORRUPTION, {"operation": "save", "checkpoint_id": "cp-1"}
        )
        assert engine.monitor.busy is False

    @pytest.mark.parametrize(
        "kind,failure_type,context",
        [
            (
                ErrorKind.CHECKPOINT_RESTORE,
                FailureType.MEMORY_CORRUPTION,
                {"operation": "restore", "checkpoint_id": "cp-1"},
            ),
            (ErrorKind.MEMORY_RESTORE, FailureType.AGENT_MEMORY_FAILURE, {}),
            (ErrorKind.SESSION_LOAD, FailureType.SESSION_FAILURE, {"session_id": "s-1"}),
        ],
    )
    async def test_error_mapping(self, engine, recovery_mock, kind, failure_type, context):
        engine.monitor.start()
        try:
            engine.events.emit_error(
                kind, "failure", checkpoint_id="cp-1", session_id="s-1"
            )
            await engine.events.drain()
        finally:
            await engine.monitor.stop()

        recovery_mock.assert_awaited_once_with(failure_type, context)

    async def test_unmapped_error_is_ignored(self, engine, recovery_mock):
        engine.monitor.start()
        try:
            engine.events.emit_error(ErrorKind.CLEANUP, "cleanup failed")
            await engine.events.drain()
        finally:
            await engine.monitor.stop()

        recovery_mock.assert_not_called()

    async def test_events_dropped_during_recovery(self, engine, recovery_mock):
        engine.monitor.start()
        try:
            engine.state.recovery_in_progress = True
            engine.events.emit_error(ErrorKind.CHECKPOINT_SAVE, "disk full")
            await engine.events.drain()
        finally:
            engine.state.recovery_in_progress = False
            await engine.monitor.stop()

        recovery_mock.assert_not_called()

    async def test_single_recovery_for_back_to_back_errors(self, engine, recovery_mock):
        engine.monitor.start()
        try:
            engine.events.emit_error(ErrorKind.CHECKPOINT_SAVE, "first")
            engine.events.emit_error(ErrorKind.CHECKPOINT_SAVE, "second")
            await engine.events.drain()
        finally:
            await engine.monitor.stop()

        assert recovery_mock.await_count == 1

    async def test_stop_unsubscribes(self, engine, recovery_mock):
        engine.monitor.start()
        await engine.monitor.stop()

        engine.events.emit_error(ErrorKind.CHECKPOINT_SAVE, "after stop")
        await engine.events.drain()

        recovery_mock.assert_not_called()
        assert engine.monitor.running is False


@pytest.mark.asyncio
class TestMonitorLoops:
    """Tests for the periodic loops."""

    async def test_disabled_monitor_does_not_start(self, engine, config):
        config.auto_recovery_enabled = False

        engine.monitor.start()

        assert engine.monitor.running is False

    async def test_loops_run_periodically(self, engine, config, mocker):
        config.health_check_interval = 0.01
        config.backup_interval = 0.01
        config.metrics_interval = 0.01
        health = mocker.patch.object(engine.monitor, "run_health_check", AsyncMock())
        backup = mocker.patch.object(
            engine.backups, "create_recovery_backups", AsyncMock()
        )

        engine.monitor.start()
        await asyncio.sleep(0.1)
        await engine.monitor.stop()

        assert health.await_count >= 1
        assert backup.await_count >= 1
        assert engine.monitor.metrics_path.exists()

    async def test_loop_failure_does_not_stop_loop(self, engine, config, mocker):
        config.health_check_interval = 0.01
        health = mocker.patch.object(
            engine.monitor,
            "run_health_check",
            AsyncMock(side_effect=RuntimeError("check failed")),
        )

        engine.monitor.start()
        await asyncio.sleep(0.1)
        await engine.monitor.stop()

        assert health.await_count >= 2

    async def test_write_metrics(self, engine):
        await engine.sessions.start()

        path = await engine.monitor.write_metrics()

        metrics = json.loads(path.read_text())
        assert metrics["stats"]["total"] == 1
        assert metrics["health"]["healthy"] is True
        assert metrics["recovery"]["total_recoveries"] == 0
        assert metrics["process"]["pid"] > 0
