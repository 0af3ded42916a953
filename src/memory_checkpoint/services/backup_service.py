"""Recovery backups of agent memory and coordination state."""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

import aiofiles
import aiofiles.os

from ..config.checkpoint_config import CheckpointConfig
from ..memory.file_store import FileMemoryStore, decode_key, encode_key
from ..utils.files import ensure_dir, list_files, remove_file, write_json
from ..utils.identifiers import now_ms

logger = logging.getLogger(__name__)

COORDINATION_BACKUP_PREFIX = "backup_"


class BackupManager:
    """
    Creates the backups the recovery strategies restore from.

    Agent backups keep only the latest copy per agent. Coordination
    backups are timestamped and rolled, keeping backup_keep_count files.
    """

    def __init__(self, config: CheckpointConfig, memory_store: FileMemoryStore):
        """
        Initialize backup manager.

        Args:
            config: Engine configuration
            memory_store: Live memory store
        """
        self.config = config
        self.memory_store = memory_store
        self.recovery_dir = config.recovery_dir
        self.coordination_backup_dir = config.coordination_backup_dir

    def agent_backup_path(self, agent_id: str) -> Path:
        return self.recovery_dir / f"{encode_key(agent_id)}_backup.json"

    async def discover_agents(self) -> List[str]:
        """
        List agent directories under the memory tree.

        Returns:
            Agent ids; empty if no agents directory exists
        """
        agents_dir = self.memory_store.agents_dir
        if not await aiofiles.os.path.isdir(agents_dir):
            return []

        agents = []
        for name in sorted(await aiofiles.os.listdir(agents_dir)):
            if await aiofiles.os.path.isdir(agents_dir / name):
                agents.append(decode_key(name))
        return agents

    async def create_recovery_backups(self) -> Dict[str, Any]:
        """
        Back up every agent memory bank and the coordination state.

        Returns:
            Summary with backed-up agent ids and the coordination backup path
        """
        summary: Dict[str, Any] = {"agents": [], "coordination": None}

        await ensure_dir(self.recovery_dir)
        for agent_id in await self.discover_agents():
            source = self.memory_store.agent_memory_path(agent_id)
            try:
                async with aiofiles.open(source, "r", encoding="utf-8") as f:
                    content = await f.read()
                async with aiofiles.open(
                    self.agent_backup_path(agent_id), "w", encoding="utf-8"
                ) as f:
                    await f.write(content)
                summary["agents"].append(agent_id)
            except FileNotFoundError:
                logger.debug(f"Agent {agent_id} has no memory bank to back up")
            except OSError as e:
                logger.warning(f"Failed to back up agent {agent_id}: {e}")

        try:
            coordination_state = await self.memory_store.read_scope("coordination_state")
            backup_path = (
                self.coordination_backup_dir
                / f"{COORDINATION_BACKUP_PREFIX}{now_ms()}.json"
            )
            await write_json(backup_path, coordination_state)
            summary["coordination"] = str(backup_path)
            await self.cleanup_old_backups(
                self.coordination_backup_dir, self.config.backup_keep_count
            )
        except OSError as e:
            logger.warning(f"Failed to back up coordination state: {e}")

        logger.info(
            f"Created recovery backups for {len(summary['agents'])} agents"
        )
        return summary

    async def cleanup_old_backups(self, directory: Path, keep: int = 5) -> int:
        """
        Delete all but the newest backups in a directory.

        Backups are ordered by file name, which embeds the timestamp.

        Args:
            directory: Backup directory
            keep: Number of backups to keep

        Returns:
            Number of deleted files
        """
        backups = [
            path
            for path in await list_files(directory, suffix=".json")
            if "backup" in path.name
        ]
        backups.sort(key=lambda p: p.name, reverse=True)

        removed = 0
        for path in backups[keep:]:
            if await remove_file(path):
                removed += 1
        if removed:
            logger.debug(f"Removed {removed} old backups from {directory}")
        return removed

    async def latest_coordination_backup(self) -> Optional[Path]:
        """Newest coordination backup file, if any."""
        backups = await list_files(self.coordination_backup_dir, suffix=".json")
        backups = [p for p in backups if p.name.startswith(COORDINATION_BACKUP_PREFIX)]
        return max(backups, key=lambda p: p.name) if backups else None
