"""
Atomic file writes for configuration files.

Content goes to a temporary file in the destination directory, which then
replaces the destination, so readers see either the old file or the new
one.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union


def _sync_directory(directory: Path) -> None:
    # O_DIRECTORY does not exist on Windows
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        dir_fd = os.open(str(directory), flags)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


def atomic_write_text(path: Union[str, Path], content: str, mode: int = 0o644) -> None:
    """
    Write text to ``path`` atomically, creating parent directories.

    Args:
        path: Destination file path
        content: Text content to write
        mode: File permissions (ignored where the platform has no POSIX modes)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise

    _sync_directory(path.parent)


def atomic_write_json(path: Union[str, Path], data: Any, indent: int = 2) -> None:
    """Serialize ``data`` as JSON and write it atomically."""
    content = json.dumps(data, indent=indent, ensure_ascii=False)
    atomic_write_text(path, content + "\n")
