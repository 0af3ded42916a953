"""Configuration for the checkpoint engine."""

from .checkpoint_config import CheckpointConfig, load_config

__all__ = ["CheckpointConfig", "load_config"]
