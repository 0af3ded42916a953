"""Checkpoint persistence service with compression and retention."""

import gzip
import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from ..config.checkpoint_config import CheckpointConfig
from ..core.events import EventBus
from ..core.state import EngineState
from ..core.validation import CheckpointValidator
from ..exceptions import (
    CheckpointNotFoundError,
    CheckpointValidationError,
    PersistenceError,
)
from ..models.checkpoint_models import (
    Checkpoint,
    CheckpointStats,
    CheckpointType,
    HealthStatus,
    MemoryUsage,
)
from ..models.recovery_models import ErrorKind
from ..utils.files import directory_size, ensure_dir, list_files, remove_file
from ..utils.identifiers import now_ms

logger = logging.getLogger(__name__)

COMPRESSED_SUFFIX = ".gz"


def _is_checkpoint_file(name: str) -> bool:
    if name.startswith("."):
        return False
    return name.endswith(".json") or name.endswith(".json" + COMPRESSED_SUFFIX)


class CheckpointStore:
    """
    Durable checkpoint store.

    Persists checkpoints as JSON (gzip above the compression threshold),
    keeps the in-memory index on the shared EngineState and enforces
    the retention policy after every save.
    """

    def __init__(
        self,
        config: CheckpointConfig,
        state: EngineState,
        events: EventBus,
        validator: Optional[CheckpointValidator] = None,
    ):
        """
        Initialize checkpoint store.

        Args:
            config: Engine configuration
            state: Shared engine state holding the index
            events: Event bus for lifecycle and error events
            validator: Checkpoint validator (default rules if omitted)
        """
        self.config = config
        self.state = state
        self.events = events
        self.validator = validator or CheckpointValidator()
        self.checkpoint_dir = Path(config.checkpoint_dir)
        self.compressed_dir = config.compressed_dir

    @property
    def index(self) -> Dict[str, Checkpoint]:
        return self.state.index

    async def ensure_directories(self) -> None:
        """Create every directory the engine writes to."""
        for directory in self.config.required_directories():
            await ensure_dir(directory)

    def validate(self, checkpoint: Union[Checkpoint, Dict[str, Any]]) -> bool:
        """Validate a checkpoint or its serialized mapping."""
        return self.validator.is_valid(checkpoint)

    async def save(self, checkpoint: Checkpoint) -> str:
        """
        Persist a checkpoint and index it.

        Args:
            checkpoint: Checkpoint to persist

        Returns:
            Checkpoint ID

        Raises:
            CheckpointValidationError: Validation enabled and checkpoint invalid
            PersistenceError: Checkpoint could not be written
        """
        if self.config.validation_enabled and not self.validate(checkpoint):
            error = CheckpointValidationError(
                f"Invalid checkpoint: {checkpoint.id}", checkpoint.id
            )
            self._emit_save_error(error, checkpoint)
            raise error

        serialized = json.dumps(checkpoint.model_dump(mode="json"), indent=2)
        raw = serialized.encode("utf-8")
        compressed = (
            self.config.compression_enabled
            and len(raw) > self.config.compression_threshold
        )

        try:
            if compressed:
                await ensure_dir(self.compressed_dir)
                path = self.compressed_dir / (checkpoint.file_name + COMPRESSED_SUFFIX)
                async with aiofiles.open(path, "wb") as f:
                    await f.write(gzip.compress(raw))
            else:
                await ensure_dir(self.checkpoint_dir)
                path = self.checkpoint_dir / checkpoint.file_name
                async with aiofiles.open(path, "w", encoding="utf-8") as f:
                    await f.write(serialized)
        except OSError as e:
            error = PersistenceError(f"Failed to save checkpoint {checkpoint.id}: {e}")
            self._emit_save_error(error, checkpoint)
            raise error from e

        stored = checkpoint.model_copy(
            update={"file_path": str(path), "compressed": compressed}
        )
        self.index[stored.id] = stored

        await self.cleanup()

        self.events.emit("checkpoint_created", stored)
        logger.info(
            f"Saved checkpoint {stored.id} ({len(raw)} bytes"
            + (", compressed)" if compressed else ")")
        )
        return stored.id

    async def load(self, checkpoint_id: str) -> Optional[Checkpoint]:
        """
        Load a checkpoint by ID.

        Checks the index first, then scans the checkpoint and compressed
        directories. Corrupt files are left on disk and not indexed.

        Args:
            checkpoint_id: Checkpoint ID

        Returns:
            Checkpoint if found and valid, None otherwise
        """
        if checkpoint_id in self.index:
            return self.index[checkpoint_id]

        for directory in (self.checkpoint_dir, self.compressed_dir):
            for path in await list_files(directory):
                if checkpoint_id not in path.name or not _is_checkpoint_file(path.name):
                    continue

                checkpoint = await self._read_checkpoint_file(path)
                if checkpoint is None:
                    return None

                self.index[checkpoint.id] = checkpoint
                logger.debug(f"Loaded checkpoint {checkpoint.id} from {path}")
                return checkpoint

        logger.debug(f"Checkpoint {checkpoint_id} not found")
        return None

    async def require(self, checkpoint_id: str) -> Checkpoint:
        """
        Load a checkpoint or raise.

        Raises:
            CheckpointNotFoundError: Checkpoint missing or corrupt
        """
        checkpoint = await self.load(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return checkpoint

    async def load_existing(self, limit: int = 20) -> int:
        """
        Populate the index from the newest checkpoint files on disk.

        Args:
            limit: Maximum files to load per directory

        Returns:
            Number of checkpoints indexed
        """
        loaded = 0
        for directory in (self.checkpoint_dir, self.compressed_dir):
            files = [
                path
                for path in await list_files(directory)
                if _is_checkpoint_file(path.name)
            ]
            files.sort(key=lambda p: p.stat().st_mtime, reverse=True)

            for path in files[:limit]:
                checkpoint = await self._read_checkpoint_file(path)
                if checkpoint is not None and checkpoint.id not in self.index:
                    self.index[checkpoint.id] = checkpoint
                    loaded += 1

        logger.info(f"Loaded {loaded} existing checkpoints")
        return loaded

    async def cleanup(self) -> int:
        """
        Apply the retention policy.

        Time pass drops indexed and on-disk checkpoints older than
        retention_days. Count pass keeps the max_checkpoints most recent
        indexed checkpoints; equal timestamps keep insertion order.

        Returns:
            Number of evicted index entries
        """
        evicted = 0
        try:
            cutoff = now_ms() - self.config.retention_ms

            for checkpoint in list(self.index.values()):
                if checkpoint.timestamp < cutoff:
                    self.index.pop(checkpoint.id, None)
                    await self._delete_files(checkpoint)
                    evicted += 1

            for directory in (self.checkpoint_dir, self.compressed_dir):
                for path in await list_files(directory):
                    if not _is_checkpoint_file(path.name):
                        continue
                    try:
                        stat = await aiofiles.os.stat(path)
                    except FileNotFoundError:
                        continue
                    if stat.st_mtime * 1000 < cutoff:
                        await remove_file(path)
                        logger.debug(f"Removed expired checkpoint file {path.name}")

            if len(self.index) > self.config.max_checkpoints:
                ordered = sorted(
                    list(self.index.values()),
                    key=lambda c: c.timestamp,
                    reverse=True,
                )
                for checkpoint in ordered[self.config.max_checkpoints :]:
                    self.index.pop(checkpoint.id, None)
                    await self._delete_files(checkpoint)
                    evicted += 1

            if evicted:
                logger.info(f"Cleanup evicted {evicted} checkpoints")
        except Exception as e:
            logger.error(f"Checkpoint cleanup failed: {e}", exc_info=True)
            self.events.emit_error(ErrorKind.CLEANUP, e)

        return evicted

    def list_checkpoints(
        self,
        checkpoint_type: Optional[Union[str, CheckpointType]] = None,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Checkpoint]:
        """
        List indexed checkpoints, newest first.

        Args:
            checkpoint_type: Optional type filter
            session_id: Optional session filter
            limit: Maximum results

        Returns:
            List of checkpoints
        """
        if isinstance(checkpoint_type, CheckpointType):
            checkpoint_type = checkpoint_type.value

        checkpoints = [
            c
            for c in self.index.values()
            if (checkpoint_type is None or c.type == checkpoint_type)
            and (session_id is None or c.session_id == session_id)
        ]
        checkpoints.sort(key=lambda c: c.timestamp, reverse=True)
        return checkpoints[:limit] if limit else checkpoints

    def get_health_status(self) -> HealthStatus:
        """
        Report store health.

        Returns:
            Health status with metrics and warnings
        """
        failed = len(self.state.failed_operations)
        status = HealthStatus(
            metrics={
                "active_checkpoints": len(self.index),
                "current_session": self.state.session_id,
                "recovery_mode": self.state.recovery_mode,
                "failed_operations": failed,
            }
        )

        if not self.index:
            status.warnings.append("No active checkpoints available")

        if failed:
            status.warnings.append(f"{failed} failed operations")
            status.healthy = False

        if self.state.current_session is None:
            status.warnings.append("No active session")

        return status

    def get_checkpoint_stats(self) -> CheckpointStats:
        """Aggregate counts by type and session."""
        stats = CheckpointStats(total=len(self.index))
        for checkpoint in self.index.values():
            stats.by_type[checkpoint.type] = stats.by_type.get(checkpoint.type, 0) + 1
            if checkpoint.session_id:
                stats.by_session[checkpoint.session_id] = (
                    stats.by_session.get(checkpoint.session_id, 0) + 1
                )

        if self.index:
            ordered = sorted(self.index.values(), key=lambda c: c.timestamp)
            stats.oldest = ordered[0].id
            stats.newest = ordered[-1].id
        return stats

    async def get_memory_usage(self) -> MemoryUsage:
        """Byte sizes of the memory tree and of the compressed checkpoints."""
        return MemoryUsage(
            checkpoints=len(self.index),
            total_memory_size=await directory_size(self.config.memory_dir),
            compressed_size=await directory_size(self.compressed_dir),
        )

    async def import_checkpoint(self, data: Dict[str, Any]) -> str:
        """
        Import a serialized checkpoint.

        Args:
            data: Checkpoint mapping as produced by export_checkpoint

        Returns:
            Checkpoint ID

        Raises:
            CheckpointValidationError: Data is not a valid checkpoint
        """
        if not self.validate(data):
            raise CheckpointValidationError("Invalid checkpoint data", data.get("id"))
        try:
            checkpoint = Checkpoint.model_validate(data)
        except ValidationError as e:
            raise CheckpointValidationError(
                f"Malformed checkpoint data: {e}", data.get("id")
            ) from e

        checkpoint_id = await self.save(checkpoint)
        logger.info(f"Imported checkpoint {checkpoint_id}")
        return checkpoint_id

    async def export_checkpoint(self, checkpoint_id: str, output_path: str) -> Path:
        """
        Write a checkpoint as plain JSON to an arbitrary path.

        Raises:
            CheckpointNotFoundError: Checkpoint missing
        """
        checkpoint = await self.require(checkpoint_id)
        path = Path(output_path)
        await ensure_dir(path.parent)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(checkpoint.model_dump(mode="json"), indent=2))

        logger.info(f"Exported checkpoint {checkpoint_id} to {path}")
        return path

    async def _read_checkpoint_file(self, path: Path) -> Optional[Checkpoint]:
        try:
            if path.name.endswith(COMPRESSED_SUFFIX):
                async with aiofiles.open(path, "rb") as f:
                    content = gzip.decompress(await f.read()).decode("utf-8")
            else:
                async with aiofiles.open(path, "r", encoding="utf-8") as f:
                    content = await f.read()
            data = json.loads(content)
        except (OSError, EOFError, ValueError) as e:
            self._report_corrupt(path, f"unreadable: {e}")
            return None

        if not isinstance(data, dict) or not self.validate(data):
            self._report_corrupt(path, "failed validation")
            return None

        try:
            checkpoint = Checkpoint.model_validate(data)
        except ValidationError as e:
            self._report_corrupt(path, f"malformed: {e}")
            return None

        return checkpoint.model_copy(
            update={
                "file_path": str(path),
                "compressed": path.name.endswith(COMPRESSED_SUFFIX),
            }
        )

    def _report_corrupt(self, path: Path, reason: str) -> None:
        logger.warning(f"Corrupt checkpoint file {path}: {reason}")
        self.events.emit_error(
            ErrorKind.CHECKPOINT_LOAD, f"Corrupt checkpoint file {path.name}: {reason}"
        )

    async def _delete_files(self, checkpoint: Checkpoint) -> None:
        candidates = {
            self.checkpoint_dir / checkpoint.file_name,
            self.compressed_dir / (checkpoint.file_name + COMPRESSED_SUFFIX),
        }
        if checkpoint.file_path:
            candidates.add(Path(checkpoint.file_path))
        for path in candidates:
            await remove_file(path)

    def _emit_save_error(self, error: Exception, checkpoint: Checkpoint) -> None:
        logger.error(f"Checkpoint save failed: {error}")
        self.events.emit_error(
            ErrorKind.CHECKPOINT_SAVE,
            error,
            checkpoint_id=checkpoint.id,
            session_id=checkpoint.session_id,
        )
