"""Integration facade wiring the checkpoint engine together."""

import asyncio
import logging
import os
from typing import Awaitable, Callable, Dict, Any, List, Optional

from .backup_service import BackupManager
from .checkpoint_service import CheckpointStore
from .monitor_service import AutoRecoveryMonitor
from .recovery_service import RecoveryEngine
from .rollback_service import RollbackManager
from .session_service import SessionManager
from ..config.checkpoint_config import CheckpointConfig, load_config
from ..core.events import EventBus
from ..core.integrity import IntegrityChecker
from ..core.state import EngineState
from ..core.validation import CheckpointValidator
from ..exceptions import CheckpointEngineError
from ..memory.file_store import FileMemoryStore
from ..memory.snapshot import SnapshotCapture
from ..models.checkpoint_models import Checkpoint, CheckpointType
from ..models.recovery_models import FailureType, RecoveryResult
from ..utils.identifiers import now_ms

logger = logging.getLogger(__name__)

VCS_HOOK_TYPES = frozenset(
    {CheckpointType.DECISION_POINT.value, CheckpointType.SESSION_BOUNDARY.value}
)
VCS_HOOK_TIMEOUT = 10.0
MAX_COORDINATION_EVENTS = 100

Hook = Callable[[Dict[str, Any]], Awaitable[Any]]


class CheckpointIntegration:
    """
    Facade owning one engine instance.

    Builds every component around a single EngineState and exposes the
    lifecycle hooks callers use around agent, task and coordination work.
    """

    def __init__(self, config: Optional[CheckpointConfig] = None):
        """
        Initialize integration and build all components.

        Args:
            config: Engine configuration (loaded from environment if omitted)
        """
        self.config = config or load_config()
        self.state = EngineState()
        self.events = EventBus()

        self.memory_store = FileMemoryStore(self.config)
        self.capture = SnapshotCapture(self.memory_store, self.state)
        self.store = CheckpointStore(
            self.config, self.state, self.events, CheckpointValidator()
        )
        self.sessions = SessionManager(
            self.config,
            self.state,
            self.events,
            self.store,
            self.capture,
            self.memory_store,
        )
        self.rollback = RollbackManager(self.sessions, self.store, self.events)
        self.backups = BackupManager(self.config, self.memory_store)
        self.integrity = IntegrityChecker(self.capture, self.state)
        self.recovery = RecoveryEngine(
            self.config,
            self.state,
            self.store,
            self.sessions,
            self.backups,
            self.memory_store,
            self.capture,
            self.integrity,
        )
        self.monitor = AutoRecoveryMonitor(
            self.config,
            self.state,
            self.events,
            self.store,
            self.sessions,
            self.recovery,
            self.backups,
            self.integrity,
        )

        self.initialized = False
        self.logger = logger
        self._hooks: Dict[str, Hook] = {
            "pre_agent_spawn": self._pre_agent_spawn,
            "pre_task_assignment": self._pre_task_assignment,
            "pre_memory_update": self._pre_memory_update,
            "post_task_completion": self._post_task_completion,
            "post_agent_coordination": self._post_agent_coordination,
            "on_agent_failure": self._on_agent_failure,
            "on_coordination_failure": self._on_coordination_failure,
        }

    @property
    def available_hooks(self) -> List[str]:
        return list(self._hooks.keys())

    async def initialize(
        self, start_session: bool = True, start_monitor: bool = True
    ) -> None:
        """
        Prepare directories, load checkpoints and start services.

        Args:
            start_session: Start a session immediately
            start_monitor: Start the auto-recovery monitor loops
        """
        if self.initialized:
            return

        await self.store.ensure_directories()
        await self.store.load_existing()

        if self.config.vcs_hook_enabled and self.config.vcs_hook_command:
            self.events.subscribe("checkpoint_created", self._on_checkpoint_created)
            self.events.subscribe("session_ended", self._on_session_ended)

        if start_session:
            await self.sessions.start({"source": "integration"})
        if start_monitor:
            self.monitor.start()

        self.initialized = True
        self.logger.info("Checkpoint integration initialized")

    async def execute_hook(
        self, hook_name: str, data: Optional[Dict[str, Any]] = None
    ) -> Optional[Any]:
        """
        Run a named integration hook.

        Hook failures are logged and yield None.

        Args:
            hook_name: Registered hook name
            data: Hook input

        Returns:
            Hook result, or None if missing or failed
        """
        hook = self._hooks.get(hook_name)
        if hook is None:
            self.logger.warning(f"Unknown integration hook: {hook_name}")
            return None
        try:
            return await hook(data or {})
        except Exception as e:
            self.logger.warning(f"Integration hook {hook_name} failed: {e}")
            return None

    async def on_agent_spawn(self, agent_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Checkpoint and initialize a newly spawned agent.

        Args:
            agent_data: id, type and optional capabilities

        Returns:
            Result with the pre-spawn checkpoint id

        Raises:
            OSError: Agent memory could not be written (after recovery ran)
        """
        checkpoint_id = await self.execute_hook("pre_agent_spawn", agent_data)
        agent_id = agent_data["id"]

        try:
            await self.memory_store.write_agent_memory(
                agent_id,
                {
                    "agent_id": agent_id,
                    "agent_type": agent_data.get("type"),
                    "spawned_at": now_ms(),
                    "memory_bank": {
                        "tasks": [],
                        "knowledge": {},
                        "interactions": [],
                        "decisions": [],
                    },
                    "capabilities": agent_data.get("capabilities", []),
                    "status": "initialized",
                },
            )
            await self.sessions.create_operation_checkpoint(
                {
                    "name": "agent_spawn_success",
                    "type": "milestone",
                    "scope": "agent",
                    "risk_level": "low",
                    "agent_id": agent_id,
                    "agent_type": agent_data.get("type"),
                },
                checkpoint_type=CheckpointType.MILESTONE,
            )
        except (OSError, CheckpointEngineError) as e:
            await self.execute_hook(
                "on_agent_failure",
                {"agent_id": agent_id, "type": agent_data.get("type"), "error": str(e)},
            )
            raise

        return {"success": True, "checkpoint_id": checkpoint_id, "agent_id": agent_id}

    async def on_task_assignment(self, task_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Checkpoint a task assignment and record it in the agent's memory.

        Args:
            task_data: id, name, assigned_to, priority, deadline, requirements

        Returns:
            Result with the pre-assignment checkpoint id
        """
        checkpoint_id = await self.execute_hook("pre_task_assignment", task_data)
        agent_id = task_data["assigned_to"]

        memory = await self.memory_store.read_agent_memory(agent_id)
        if not isinstance(memory, dict):
            raise CheckpointEngineError(f"No memory bank for agent {agent_id}")

        memory.setdefault("memory_bank", {}).setdefault("tasks", []).append(
            {
                "task_id": task_data.get("id"),
                "task_name": task_data.get("name"),
                "assigned_at": now_ms(),
                "status": "assigned",
                "priority": task_data.get("priority", "medium"),
                "deadline": task_data.get("deadline"),
                "requirements": task_data.get("requirements", []),
            }
        )
        memory["status"] = "task_assigned"
        memory["last_updated"] = now_ms()
        await self.memory_store.write_agent_memory(agent_id, memory)

        await self.sessions.create_operation_checkpoint(
            {
                "name": "task_assignment_success",
                "type": "task",
                "scope": "agent",
                "risk_level": "low",
                "task_id": task_data.get("id"),
                "agent_id": agent_id,
            }
        )
        return {"success": True, "checkpoint_id": checkpoint_id, "task_id": task_data.get("id")}

    async def on_task_completion(self, task_result: Dict[str, Any]) -> Optional[str]:
        """
        Record a completed task and checkpoint the milestone.

        Args:
            task_result: task_id, agent_id, result

        Returns:
            Milestone checkpoint id
        """
        await self.execute_hook("post_task_completion", task_result)

        agent_id = task_result.get("agent_id")
        memory = await self.memory_store.read_agent_memory(agent_id) if agent_id else None
        if isinstance(memory, dict):
            for task in memory.get("memory_bank", {}).get("tasks", []):
                if task.get("task_id") == task_result.get("task_id"):
                    task["status"] = "completed"
                    task["completed_at"] = now_ms()
                    task["result"] = task_result.get("result")
                    task["duration"] = now_ms() - task.get("assigned_at", now_ms())
            memory["status"] = "task_completed"
            memory["last_updated"] = now_ms()
            await self.memory_store.write_agent_memory(agent_id, memory)
        elif agent_id:
            self.logger.warning(f"No memory bank to update for agent {agent_id}")

        return await self.sessions.create_operation_checkpoint(
            {
                "name": "task_completion_milestone",
                "type": "milestone",
                "scope": "task",
                "risk_level": "low",
                "task_id": task_result.get("task_id"),
                "result": task_result.get("result"),
            },
            checkpoint_type=CheckpointType.MILESTONE,
        )

    async def on_coordination_event(self, event_data: Dict[str, Any]) -> None:
        """
        Append a coordination event to the swarm state.

        Keeps the most recent events only.
        """
        await self.execute_hook("post_agent_coordination", event_data)

        swarm_state = await self.memory_store.read_entry("coordination_state", "swarm-state")
        if not isinstance(swarm_state, dict):
            swarm_state = {}

        events = swarm_state.setdefault("events", [])
        events.append({**event_data, "timestamp": now_ms()})
        swarm_state["events"] = events[-MAX_COORDINATION_EVENTS:]
        swarm_state["last_updated"] = now_ms()
        await self.memory_store.write_entry("coordination_state", "swarm-state", swarm_state)

    async def create_manual_checkpoint(self, description: str) -> str:
        """
        Create a manual decision checkpoint.

        Starts a session first if none is active.

        Args:
            description: Why the checkpoint was taken

        Returns:
            Checkpoint ID
        """
        if self.state.current_session is None:
            await self.sessions.start({"source": "manual"})

        return await self.sessions.create_decision_checkpoint(
            {
                "context": {"manual": True, "description": description},
                "selected": "manual_checkpoint",
                "reasoning": description,
                "impact": "low",
                "reversible": True,
            }
        )

    async def emergency_recovery(self) -> RecoveryResult:
        """Run a complete system recovery."""
        self.logger.warning("Emergency recovery initiated")
        result = await self.recovery.perform_recovery(
            FailureType.SYSTEM_FAILURE, {"trigger": "emergency", "timestamp": now_ms()}
        )
        self.logger.info(f"Emergency recovery finished: success={result.success}")
        return result

    def get_status(self) -> Dict[str, Any]:
        """
        Report integration, checkpoint and recovery status.

        Returns:
            Status dictionary
        """
        return {
            "integration": {
                "initialized": self.initialized,
                "vcs_hook": bool(
                    self.config.vcs_hook_enabled and self.config.vcs_hook_command
                ),
                "monitoring": self.monitor.running,
                "available_hooks": self.available_hooks,
            },
            "checkpoint": self.store.get_health_status().model_dump(mode="json"),
            "recovery": self.recovery.get_recovery_status().model_dump(mode="json"),
            "timestamp": now_ms(),
        }

    async def shutdown(self) -> None:
        """End the session, take final backups and stop the monitor."""
        try:
            await self.sessions.end()
            await self.backups.create_recovery_backups()
        except (OSError, CheckpointEngineError) as e:
            self.logger.warning(f"Error during shutdown: {e}")
        finally:
            await self.monitor.stop()
            await self.events.drain()

        self.logger.info("Checkpoint integration shut down")

    async def run_vcs_hook(self, event: str, checkpoint_id: str = "") -> bool:
        """
        Invoke the configured VCS hook command.

        The command receives HOOK_EVENT and CHECKPOINT_ID in its
        environment. Failures are logged and never raised.

        Returns:
            True if the command exited with status 0
        """
        command = self.config.vcs_hook_command
        if not command:
            return False

        env = {**os.environ, "HOOK_EVENT": event, "CHECKPOINT_ID": checkpoint_id}
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                env=env,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=VCS_HOOK_TIMEOUT
            )
        except asyncio.TimeoutError:
            process.kill()
            self.logger.warning(f"VCS hook timed out for {event}")
            return False
        except OSError as e:
            self.logger.warning(f"VCS hook could not run: {e}")
            return False

        if process.returncode != 0:
            self.logger.warning(
                f"VCS hook exited with {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
            return False
        return True

    def _on_checkpoint_created(self, checkpoint: Checkpoint):
        if checkpoint.type in VCS_HOOK_TYPES:
            return self.run_vcs_hook("checkpoint", checkpoint.id)
        return None

    def _on_session_ended(self, session_id: str):
        return self.run_vcs_hook("session-end", session_id)

    async def _pre_agent_spawn(self, agent_data: Dict[str, Any]) -> str:
        return await self.sessions.create_decision_checkpoint(
            {
                "context": {"operation": "agent_spawn", "agent_type": agent_data.get("type")},
                "selected": "spawn_agent",
                "reasoning": f"Spawning {agent_data.get('type')} agent",
                "impact": "medium",
                "reversible": True,
            }
        )

    async def _pre_task_assignment(self, task_data: Dict[str, Any]) -> str:
        return await self.sessions.create_decision_checkpoint(
            {
                "context": {"operation": "task_assignment", "task": task_data.get("name")},
                "selected": "assign_task",
                "reasoning": f"Assigning task {task_data.get('name')} to agent",
                "impact": task_data.get("priority", "medium"),
                "reversible": True,
            }
        )

    async def _pre_memory_update(self, memory_data: Dict[str, Any]) -> str:
        return await self.sessions.create_operation_checkpoint(
            {
                "name": "memory_update",
                "type": "memory",
                "scope": memory_data.get("scope", "local"),
                "risk_level": "low",
                "dependencies": memory_data.get("dependencies", []),
            }
        )

    async def _post_task_completion(self, task_result: Dict[str, Any]) -> str:
        return await self.sessions.create_operation_checkpoint(
            {
                "name": "task_completion",
                "type": "milestone",
                "scope": "task",
                "risk_level": "low",
                "result": task_result,
            },
            checkpoint_type=CheckpointType.MILESTONE,
        )

    async def _post_agent_coordination(self, coordination_data: Dict[str, Any]) -> str:
        return await self.sessions.create_session_checkpoint(
            {
                "type": CheckpointType.SESSION_BOUNDARY.value,
                "coordination": coordination_data,
            }
        )

    async def _on_agent_failure(self, failure_data: Dict[str, Any]) -> RecoveryResult:
        return await self.recovery.perform_recovery(
            FailureType.AGENT_MEMORY_FAILURE,
            {
                "agent_id": failure_data.get("agent_id"),
                "agent_type": failure_data.get("type"),
                "error": failure_data.get("error"),
            },
        )

    async def _on_coordination_failure(self, failure_data: Dict[str, Any]) -> RecoveryResult:
        return await self.recovery.perform_recovery(
            FailureType.COORDINATION_FAILURE,
            {
                "topology": failure_data.get("topology"),
                "agents": failure_data.get("agents"),
                "error": failure_data.get("error"),
            },
        )
