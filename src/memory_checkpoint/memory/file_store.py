"""File-backed live memory store."""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from urllib.parse import quote, unquote

import aiofiles.os

from .base import BaseMemoryStore
from ..config.checkpoint_config import CheckpointConfig
from ..utils.files import list_files, read_json, remove_file, write_json

logger = logging.getLogger(__name__)

AGENT_MEMORY_FILE = "memory_bank.json"


def encode_key(key: str) -> str:
    """
    Map an entry key to a single safe file name component.

    Path separators and a leading dot are percent-encoded so every key
    stays inside its scope directory and is listed on read.
    """
    encoded = quote(key, safe="")
    if encoded.startswith("."):
        encoded = "%2E" + encoded[1:]
    return encoded


def decode_key(name: str) -> str:
    return unquote(name)


class FileMemoryStore(BaseMemoryStore):
    """
    Memory store laid out as JSON files on disk.

    Layout:
        <memory_dir>/agents/<agent_id>/memory_bank.json  -> agent_memory
        <memory_dir>/shared/<key>.json                  -> shared_memory
        <memory_dir>/global/<key>.json                  -> global_memory
        <coordination_dir>/<key>.json                   -> coordination_state

    Keys and agent ids are percent-encoded into file names (encode_key).
    Unreadable files are skipped with a warning rather than failing a read.
    """

    def __init__(self, config: CheckpointConfig):
        """
        Initialize file memory store.

        Args:
            config: Engine configuration
        """
        self.config = config
        self.memory_dir = Path(config.memory_dir)
        self.agents_dir = self.memory_dir / "agents"
        self._scope_dirs: Dict[str, Path] = {
            "shared_memory": self.memory_dir / "shared",
            "global_memory": self.memory_dir / "global",
            "coordination_state": Path(config.coordination_dir),
        }

    def agent_memory_path(self, agent_id: str) -> Path:
        return self.agents_dir / encode_key(agent_id) / AGENT_MEMORY_FILE

    async def list_agents(self) -> List[str]:
        if not await aiofiles.os.path.isdir(self.agents_dir):
            return []

        agents = []
        for name in sorted(await aiofiles.os.listdir(self.agents_dir)):
            if await aiofiles.os.path.isfile(self.agents_dir / name / AGENT_MEMORY_FILE):
                agents.append(decode_key(name))
        return agents

    async def read_agent_memory(self, agent_id: str) -> Optional[Any]:
        """
        Read one agent's memory bank.

        Args:
            agent_id: Agent identifier

        Returns:
            Parsed memory, or None if missing or unreadable
        """
        path = self.agent_memory_path(agent_id)
        try:
            return await read_json(path)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable memory bank for agent {agent_id}: {e}")
            return None

    async def write_agent_memory(self, agent_id: str, memory: Any) -> Path:
        """Write one agent's memory bank."""
        return await write_json(self.agent_memory_path(agent_id), memory)

    async def read_scope(self, scope: str) -> Dict[str, Any]:
        if scope == "agent_memory":
            entries = {}
            for agent_id in await self.list_agents():
                memory = await self.read_agent_memory(agent_id)
                if memory is not None:
                    entries[agent_id] = memory
            return entries

        entries = {}
        for path in await list_files(self._scope_dir(scope), suffix=".json"):
            try:
                entries[decode_key(path.stem)] = await read_json(path)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable {scope} entry {path.name}: {e}")
        return entries

    async def write_entry(self, scope: str, key: str, value: Any) -> None:
        if scope == "agent_memory":
            await self.write_agent_memory(key, value)
        else:
            await write_json(self._scope_dir(scope) / f"{encode_key(key)}.json", value)

    async def delete_entry(self, scope: str, key: str) -> bool:
        if scope == "agent_memory":
            return await remove_file(self.agent_memory_path(key))
        return await remove_file(self._scope_dir(scope) / f"{encode_key(key)}.json")

    def _scope_dir(self, scope: str) -> Path:
        try:
            return self._scope_dirs[scope]
        except KeyError:
            raise ValueError(f"Unknown memory scope: {scope}") from None
