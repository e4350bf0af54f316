from __future__ import annotations

import re
from pathlib import Path, PurePath

_LOWER_UPPER_RE = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_RE = re.compile(r"([A-Z])([A-Z][a-z])")
_NON_WORD_RE = re.compile(r"[^a-zA-Z0-9_]+")


def entity_slug(name: str) -> str:
    """Convert an entity name such as ``BlogPost`` or ``HTTPRoute`` to snake_case."""
    slug = _LOWER_UPPER_RE.sub(r"\1_\2", name.strip())
    slug = _ACRONYM_RE.sub(r"\1_\2", slug)
    slug = _NON_WORD_RE.sub("_", slug).strip("_")
    slug = re.sub(r"_{2,}", "_", slug)
    return slug.lower()


def to_posix(path: str | PurePath) -> str:
    return str(path).replace("\\", "/")


def project_relative(project_root: Path, path: str | Path) -> str:
    """Return *path* relative to *project_root* in POSIX form, or ``.`` for the root itself."""
    absolute = Path(path)
    if not absolute.is_absolute():
        absolute = project_root / absolute
    try:
        relative = absolute.resolve().relative_to(project_root.resolve())
    except ValueError:
        return to_posix(absolute)
    return relative.as_posix()
