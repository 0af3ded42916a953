"""Utility helpers."""

from .identifiers import (
    now_ms,
    to_base36,
    generate_checkpoint_id,
    generate_session_id,
    generate_recovery_id,
)
from .files import (
    ensure_dir,
    read_json,
    write_json,
    remove_file,
    list_files,
    directory_size,
)

__all__ = [
    "now_ms",
    "to_base36",
    "generate_checkpoint_id",
    "generate_session_id",
    "generate_recovery_id",
    "ensure_dir",
    "read_json",
    "write_json",
    "remove_file",
    "list_files",
    "directory_size",
]
