"""Snapshot models for captured memory and process state."""

from typing import Dict, Any, ClassVar, Tuple
from pydantic import BaseModel, Field, field_validator

from ..utils.identifiers import now_ms


class MemorySnapshot(BaseModel):
    """
    Captured value of every tracked memory scope at a point in time.

    Each scope maps string keys to arbitrary JSON values. Keys are kept
    sorted so serialized snapshots are stable across capture order.
    """

    SCOPES: ClassVar[Tuple[str, ...]] = (
        "agent_memory",
        "shared_memory",
        "global_memory",
        "coordination_state",
    )

    timestamp: int = Field(default_factory=now_ms)
    agent_memory: Dict[str, Any] = Field(default_factory=dict)
    shared_memory: Dict[str, Any] = Field(default_factory=dict)
    global_memory: Dict[str, Any] = Field(default_factory=dict)
    coordination_state: Dict[str, Any] = Field(default_factory=dict)
    memory_metrics: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "agent_memory", "shared_memory", "global_memory", "coordination_state"
    )
    @classmethod
    def _sort_keys(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        return dict(sorted(value.items()))

    def content(self) -> Dict[str, Dict[str, Any]]:
        """
        Scope contents without capture bookkeeping.

        Returns:
            Mapping of scope name to scope contents
        """
        return {scope: getattr(self, scope) for scope in self.SCOPES}

    def is_empty(self) -> bool:
        """Check whether every scope is empty."""
        return not any(self.content().values())


class ProcessInfo(BaseModel):
    """Lightweight process metrics."""

    pid: int = Field(default=0)
    uptime_seconds: float = Field(default=0.0)
    memory_rss_bytes: int = Field(default=0)
    memory_vms_bytes: int = Field(default=0)
    cpu_user_seconds: float = Field(default=0.0)
    cpu_system_seconds: float = Field(default=0.0)
    thread_count: int = Field(default=1)


class SystemState(BaseModel):
    """Process and runtime information captured with a checkpoint."""

    timestamp: int = Field(default_factory=now_ms)
    process_info: ProcessInfo = Field(default_factory=ProcessInfo)
    environment: Dict[str, str] = Field(default_factory=dict)
    checkpoint_system: Dict[str, Any] = Field(default_factory=dict)
