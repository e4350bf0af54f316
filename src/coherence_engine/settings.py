from __future__ import annotations

import os
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path, PurePosixPath

from .state_store import STATE_DIR
from .watch import DEFAULT_DEBOUNCE_MS

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def get_version() -> str:
    try:
        return version("coherence-engine")
    except PackageNotFoundError:
        return "0.0.0"


@dataclass(frozen=True)
class EngineSettings:
    """Engine settings loaded from environment with fail-fast validation."""

    state_dir: str = STATE_DIR
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    tool_version: str = ""
    watch_ignore: tuple[str, ...] = field(default_factory=tuple)
    force_polling: bool = False
    project_root: str = ""

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            state_dir=os.getenv("COHERENCE_STATE_DIR", STATE_DIR),
            debounce_ms=_get_env_int("COHERENCE_DEBOUNCE_MS", default=DEFAULT_DEBOUNCE_MS, minimum=0, maximum=60_000),
            tool_version=os.getenv("COHERENCE_TOOL_VERSION", ""),
            watch_ignore=tuple(
                item.strip() for item in os.getenv("COHERENCE_WATCH_IGNORE", "").split(",") if item.strip()
            ),
            force_polling=_get_env_bool("COHERENCE_FORCE_POLLING", default=False),
            project_root=os.getenv("COHERENCE_PROJECT_ROOT", ""),
        ).normalized()

    @property
    def project_root_path(self) -> Path:
        """Return the project root as a Path, defaulting to cwd if unset."""
        return Path(self.project_root) if self.project_root else Path.cwd()

    @property
    def effective_tool_version(self) -> str:
        return self.tool_version or get_version()

    def normalized(self) -> "EngineSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        state_dir = self.state_dir.strip().replace("\\", "/").strip("/")
        if not state_dir:
            raise ValueError("COHERENCE_STATE_DIR must be non-empty")
        state_path = PurePosixPath(state_dir)
        if state_path.is_absolute() or ".." in state_path.parts:
            raise ValueError(f"COHERENCE_STATE_DIR must stay inside the project root, got: {self.state_dir!r}")
        if self.debounce_ms < 0:
            raise ValueError(f"COHERENCE_DEBOUNCE_MS must be >= 0, got: {self.debounce_ms}")
        return EngineSettings(
            state_dir=state_dir,
            debounce_ms=self.debounce_ms,
            tool_version=self.tool_version.strip(),
            watch_ignore=self.watch_ignore,
            force_polling=self.force_polling,
            project_root=self.project_root.strip(),
        )


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got: {raw!r}")
