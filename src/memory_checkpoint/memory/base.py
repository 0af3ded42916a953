"""Abstract base class for live memory stores."""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional

from ..models.state_models import MemorySnapshot


class BaseMemoryStore(ABC):
    """Abstract base class defining the live memory interface."""

    @abstractmethod
    async def read_scope(self, scope: str) -> Dict[str, Any]:
        """
        Read every entry of a memory scope.

        Args:
            scope: One of MemorySnapshot.SCOPES

        Returns:
            Mapping of key to value; empty if the scope has no source
        """
        pass

    @abstractmethod
    async def write_entry(self, scope: str, key: str, value: Any) -> None:
        """
        Write one entry of a memory scope.

        Args:
            scope: One of MemorySnapshot.SCOPES
            key: Entry key (agent id for agent_memory)
            value: JSON-serializable value
        """
        pass

    @abstractmethod
    async def delete_entry(self, scope: str, key: str) -> bool:
        """
        Delete one entry of a memory scope.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    async def list_agents(self) -> List[str]:
        """List agent ids that have a memory bank."""
        pass

    async def read_entry(self, scope: str, key: str) -> Optional[Any]:
        """Read one entry, None if absent."""
        return (await self.read_scope(scope)).get(key)

    async def restore(self, snapshot: MemorySnapshot) -> None:
        """
        Replace the live state with a snapshot.

        Entries absent from the snapshot are deleted so the live state
        equals the snapshot content afterwards.

        Args:
            snapshot: Snapshot to restore
        """
        for scope, entries in snapshot.content().items():
            current = await self.read_scope(scope)
            for key in current:
                if key not in entries:
                    await self.delete_entry(scope, key)
            for key, value in entries.items():
                await self.write_entry(scope, key, value)
