"""Checkpoint engine configuration with environment variable loading."""

import os
import logging
from pathlib import Path
from typing import Optional, Dict, Any

import yaml
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

ENV_OVERRIDE_PREFIX = "MEMORY_CHECKPOINT_"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class CheckpointConfig(BaseModel):
    """Configuration for the checkpoint and recovery engine."""

    # Storage locations
    checkpoint_dir: str = Field(
        default_factory=lambda: os.getenv("CHECKPOINT_DIR", "./memory/checkpoints"),
        description="Directory holding checkpoint files",
    )
    memory_dir: str = Field(
        default_factory=lambda: os.getenv("MEMORY_DIR", "./memory"),
        description="Root of the agent/shared/global memory tree",
    )
    coordination_dir: str = Field(
        default_factory=lambda: os.getenv(
            "COORDINATION_DIR", "./coordination/memory_bank"
        ),
        description="Directory holding coordination state files",
    )

    # Compression
    compression_enabled: bool = Field(
        default_factory=lambda: _env_bool("CHECKPOINT_COMPRESSION_ENABLED", "true"),
        description="Gzip checkpoints above the threshold",
    )
    compression_threshold: int = Field(
        default_factory=lambda: int(
            os.getenv("CHECKPOINT_COMPRESSION_THRESHOLD", "1024")
        ),
        ge=0,
        description="Serialized size (bytes) above which checkpoints are compressed",
    )

    # Retention
    max_checkpoints: int = Field(
        default_factory=lambda: int(os.getenv("CHECKPOINT_MAX_CHECKPOINTS", "100")),
        ge=1,
        description="Maximum number of indexed checkpoints",
    )
    retention_days: float = Field(
        default_factory=lambda: float(os.getenv("CHECKPOINT_RETENTION_DAYS", "7")),
        gt=0,
        description="Age after which checkpoints are deleted",
    )
    validation_enabled: bool = Field(
        default_factory=lambda: _env_bool("CHECKPOINT_VALIDATION_ENABLED", "true"),
        description="Validate checkpoints before persisting",
    )

    # Recovery
    recovery_timeout: float = Field(
        default_factory=lambda: float(os.getenv("RECOVERY_TIMEOUT_SECONDS", "30")),
        gt=0,
        description="Time budget for a single recovery strategy (seconds)",
    )
    recovery_log_path: str = Field(
        default_factory=lambda: os.getenv(
            "RECOVERY_LOG_PATH", "./memory/recovery/recovery.log"
        ),
        description="Append-only NDJSON recovery audit log",
    )
    auto_recovery_enabled: bool = Field(
        default_factory=lambda: _env_bool("AUTO_RECOVERY_ENABLED", "true"),
        description="Run the auto-recovery monitor",
    )
    integrity_check_enabled: bool = Field(
        default_factory=lambda: _env_bool("INTEGRITY_CHECK_ENABLED", "true"),
        description="Hash the live memory state on every health check",
    )

    # Monitor intervals
    health_check_interval: float = Field(
        default_factory=lambda: float(
            os.getenv("HEALTH_CHECK_INTERVAL_SECONDS", "30")
        ),
        gt=0,
        description="Seconds between health checks",
    )
    backup_interval: float = Field(
        default_factory=lambda: float(os.getenv("BACKUP_INTERVAL_SECONDS", "300")),
        gt=0,
        description="Seconds between recovery backups",
    )
    metrics_interval: float = Field(
        default_factory=lambda: float(os.getenv("METRICS_INTERVAL_SECONDS", "60")),
        gt=0,
        description="Seconds between metrics snapshots",
    )
    backup_keep_count: int = Field(
        default_factory=lambda: int(os.getenv("BACKUP_KEEP_COUNT", "5")),
        ge=1,
        description="Coordination backups to keep",
    )

    # Version-control hook
    vcs_hook_enabled: bool = Field(
        default_factory=lambda: _env_bool("VCS_HOOK_ENABLED", "false"),
        description="Run the VCS hook after key checkpoints",
    )
    vcs_hook_command: Optional[str] = Field(
        default_factory=lambda: os.getenv("VCS_HOOK_COMMAND"),
        description="Shell command invoked as the VCS hook",
    )

    @property
    def compressed_dir(self) -> Path:
        return Path(self.checkpoint_dir) / "compressed"

    @property
    def archived_dir(self) -> Path:
        return Path(self.checkpoint_dir) / "archived"

    @property
    def sessions_dir(self) -> Path:
        return Path(self.memory_dir) / "sessions"

    @property
    def recovery_dir(self) -> Path:
        return Path(self.memory_dir) / "recovery"

    @property
    def coordination_backup_dir(self) -> Path:
        return Path(self.coordination_dir) / "backup"

    @property
    def retention_ms(self) -> int:
        return int(self.retention_days * 24 * 60 * 60 * 1000)

    def required_directories(self) -> list[Path]:
        """
        Directories the engine expects to exist.

        Returns:
            List of directory paths
        """
        return [
            Path(self.checkpoint_dir),
            self.compressed_dir,
            self.archived_dir,
            Path(self.memory_dir),
            self.sessions_dir,
            self.recovery_dir,
            Path(self.coordination_dir),
        ]

    class Config:
        """Pydantic config."""

        validate_assignment = True


def load_config(config_path: Optional[str] = None, **overrides: Any) -> CheckpointConfig:
    """
    Load checkpoint configuration.

    Configuration is merged in this order (later overrides earlier):
    1. Default values (environment variables, .env)
    2. YAML file at config_path, if provided
    3. Environment variables (MEMORY_CHECKPOINT_*)
    4. Explicit keyword overrides

    Args:
        config_path: Optional YAML config file path
        **overrides: Explicit field overrides

    Returns:
        Merged CheckpointConfig instance
    """
    merged_config: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path) as f:
                    file_config = yaml.safe_load(f) or {}
                # Only merge 'checkpoint' section if present, otherwise use whole file
                if "checkpoint" in file_config:
                    merged_config.update(file_config["checkpoint"])
                else:
                    merged_config.update(file_config)
                logger.debug(f"Loaded config from {path}")
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {path}: {e}")
        else:
            logger.warning(f"Config file {path} does not exist, using defaults")

    merged_config.update(_get_env_overrides())
    merged_config.update(overrides)

    return CheckpointConfig(**merged_config)


def _get_env_overrides() -> Dict[str, Any]:
    """
    Get configuration overrides from environment variables.

    Environment variables are prefixed with MEMORY_CHECKPOINT_.
    Boolean values: "true", "1", "yes" are True; "false", "0", "no" are False.
    Numeric values are converted automatically.

    Returns:
        Dictionary of overrides
    """
    overrides: Dict[str, Any] = {}

    for key, value in os.environ.items():
        if key.startswith(ENV_OVERRIDE_PREFIX):
            # MEMORY_CHECKPOINT_MAX_CHECKPOINTS -> max_checkpoints
            config_key = key[len(ENV_OVERRIDE_PREFIX) :].lower()
            if config_key not in CheckpointConfig.model_fields:
                continue

            if value.lower() in ("true", "yes"):
                overrides[config_key] = True
            elif value.lower() in ("false", "no"):
                overrides[config_key] = False
            else:
                try:
                    overrides[config_key] = int(value)
                except ValueError:
                    try:
                        overrides[config_key] = float(value)
                    except ValueError:
                        overrides[config_key] = value

    return overrides
