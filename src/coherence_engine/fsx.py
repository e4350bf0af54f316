from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any


@dataclass(frozen=True)
class WriteResult:
    path: Path
    changed: bool


def _to_bytes(content: str | bytes) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else bytes(content)


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write *data* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place.  This prevents partial/corrupt reads
    if the process crashes mid-write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as tmp_handle:
            tmp_handle.write(data)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        # Clean up the temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def read_bytes_if_exists(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def safe_write(path: Path, content: str | bytes) -> WriteResult:
    """Write *content* to *path* only if the bytes on disk differ.

    Parent directories are created as needed. Returns ``changed=False`` and
    leaves the file untouched when the existing bytes are identical.
    """
    data = _to_bytes(content)
    path.parent.mkdir(parents=True, exist_ok=True)
    if read_bytes_if_exists(path) == data:
        return WriteResult(path=path, changed=False)
    _atomic_write_bytes(path, data)
    return WriteResult(path=path, changed=True)


def dumps_json(data: Any) -> str:
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def safe_write_json(path: Path, data: Any) -> WriteResult:
    return safe_write(path, dumps_json(data))


def remove_file_if_exists(path: Path) -> bool:
    """Remove *path*; an already-missing file is not an error. Returns whether a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def resolve_project_path(project_dir: Path, relative_path: str) -> Path:
    """Join a project-relative POSIX path onto *project_dir*.

    Raises:
        ValueError: If the path is absolute or escapes the project directory.
    """
    candidate = PurePosixPath(relative_path.replace("\\", "/"))
    if candidate.is_absolute() or (candidate.parts and ":" in candidate.parts[0]):
        raise ValueError(f"Path must be relative to the project root: {relative_path}")
    if ".." in candidate.parts:
        raise ValueError(f"Path escapes the project root: {relative_path}")
    return project_dir.joinpath(*candidate.parts)
