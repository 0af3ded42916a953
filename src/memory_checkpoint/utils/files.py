"""Async JSON file helpers built on aiofiles."""

import json
import logging
from pathlib import Path
from typing import Any, List, Union

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


async def ensure_dir(path: PathLike) -> Path:
    """Create a directory (and parents) if missing."""
    path = Path(path)
    await aiofiles.os.makedirs(path, exist_ok=True)
    return path


async def read_json(path: PathLike) -> Any:
    """
    Read and parse a JSON file.

    Args:
        path: File path

    Returns:
        Parsed JSON value

    Raises:
        OSError: File cannot be read
        ValueError: File is not valid JSON
    """
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        content = await f.read()
    return json.loads(content)


async def write_json(path: PathLike, data: Any, indent: int = 2) -> Path:
    """
    Write a JSON file, replacing it atomically.

    Args:
        path: Target file path
        data: JSON-serializable value
        indent: Indentation level

    Returns:
        Written path
    """
    path = Path(path)
    await ensure_dir(path.parent)
    tmp_path = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(data, indent=indent, default=str))
    await aiofiles.os.replace(tmp_path, path)
    return path


async def remove_file(path: PathLike) -> bool:
    """
    Delete a file, tolerating an already-absent path.

    Returns:
        True if a file was removed
    """
    try:
        await aiofiles.os.remove(path)
        return True
    except FileNotFoundError:
        return False


async def list_files(directory: PathLike, suffix: str = "") -> List[Path]:
    """
    List regular files in a directory, sorted by name.

    A missing directory yields an empty list.
    """
    directory = Path(directory)
    if not await aiofiles.os.path.isdir(directory):
        return []
    names = await aiofiles.os.listdir(directory)
    files = []
    for name in sorted(names):
        if not name.endswith(suffix) or name.startswith("."):
            continue
        path = directory / name
        if await aiofiles.os.path.isfile(path):
            files.append(path)
    return files


async def directory_size(directory: PathLike) -> int:
    """Total size in bytes of all files below a directory."""
    directory = Path(directory)
    if not await aiofiles.os.path.isdir(directory):
        return 0

    total = 0
    for name in await aiofiles.os.listdir(directory):
        path = directory / name
        try:
            if await aiofiles.os.path.isdir(path):
                total += await directory_size(path)
            else:
                total += (await aiofiles.os.stat(path)).st_size
        except FileNotFoundError:
            continue
    return total
