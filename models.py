"""
models.py — Data models: AppEnvironment, PreviewConfig, RecentProjects, Buffer
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from PyQt6.QtCore import QSettings

logger = logging.getLogger(__name__)

APP_NAME = "Tide"
MAX_CACHED_PROJECTS = 5


# ─────────────────────────────────────────────
# Environment
# ─────────────────────────────────────────────

class AppEnvironment:
    """Directories Tide reads from and writes to.

    Passed explicitly to the components that need it so tests can point
    everything at a temporary directory.
    """

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)
        self.fonts_dir = self.config_dir / "fonts"
        self.templates_dir = self.config_dir / "templates"
        self.recent_cache = self.config_dir / "recent.cache"

    @staticmethod
    def default_config_dir() -> Path:
        """Returns the app config directory (Windows: %APPDATA%/Tide)."""
        if os.name == "nt":
            return Path(os.environ.get("APPDATA", Path.home())) / APP_NAME
        return Path.home() / ".config" / APP_NAME

    @classmethod
    def default(cls) -> "AppEnvironment":
        env = cls(cls.default_config_dir())
        env.ensure()
        return env

    def ensure(self):
        """Create the config, fonts and templates directories if missing."""
        for path in (self.config_dir, self.fonts_dir, self.templates_dir):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Can't create {path}: {e}")


# ─────────────────────────────────────────────
# Preview settings
# ─────────────────────────────────────────────

@dataclass
class PreviewConfig:
    page_gap: float = 16.0
    scroll_threshold: float = 120.0
    default_zoom: float = 1.0
    device_pixel_ratio: float = 2.0
    auto_preview_ms: int = 800  # 0 disables compile-on-pause

    @classmethod
    def from_settings(cls, settings: Optional[QSettings] = None) -> "PreviewConfig":
        settings = settings or QSettings(APP_NAME, "Settings")
        default = cls()
        return cls(
            page_gap=settings.value("preview/page_gap", default.page_gap, type=float),
            scroll_threshold=settings.value("preview/scroll_threshold", default.scroll_threshold, type=float),
            default_zoom=settings.value("preview/default_zoom", default.default_zoom, type=float),
            device_pixel_ratio=settings.value("preview/device_pixel_ratio", default.device_pixel_ratio, type=float),
            auto_preview_ms=settings.value("preview/auto_preview_ms", default.auto_preview_ms, type=int),
        )


# ─────────────────────────────────────────────
# Recent projects
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class ProjectCache:
    root_path: Path
    main: Optional[Path] = None

    def to_line(self) -> str:
        main = str(self.main) if self.main else "?"
        return f"{self.root_path},{main}"

    @classmethod
    def from_line(cls, line: str) -> "ProjectCache":
        elements = line.split(",")
        main = None
        if len(elements) >= 2 and elements[1] and elements[1] != "?":
            main = Path(elements[1])
        return cls(Path(elements[0]), main)


class RecentProjects:
    """Recently opened projects, most recent first, persisted in recent.cache."""

    def __init__(self, env: AppEnvironment, limit: int = MAX_CACHED_PROJECTS):
        self._path = env.recent_cache
        self._limit = limit

    def load(self) -> list[ProjectCache]:
        try:
            contents = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f"Error reading cache: {e}")
            return []
        return [ProjectCache.from_line(line) for line in contents.splitlines() if line.strip()]

    def add(self, project: ProjectCache) -> list[ProjectCache]:
        projects = [p for p in self.load() if p.root_path != project.root_path]
        projects.insert(0, project)
        del projects[self._limit:]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text("\n".join(p.to_line() for p in projects), encoding="utf-8")
            logger.info(f"Project cached into recent files: {project.root_path}")
        except OSError as e:
            logger.warning(f"Error writing cache: {e}")
        return projects


# ─────────────────────────────────────────────
# Editor buffer
# ─────────────────────────────────────────────

@dataclass
class Buffer:
    """In-memory text of one open file."""
    text: str = ""
    is_saved: bool = True
    cursor: int = field(default=0, compare=False)
