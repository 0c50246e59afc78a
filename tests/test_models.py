from __future__ import annotations

from pathlib import Path

from PyQt6.QtCore import QSettings

from models import AppEnvironment, PreviewConfig, ProjectCache, RecentProjects


def test_environment_layout(tmp_path) -> None:
    env = AppEnvironment(tmp_path / "cfg")
    env.ensure()
    assert env.fonts_dir.is_dir()
    assert env.templates_dir.is_dir()
    assert env.recent_cache == tmp_path / "cfg" / "recent.cache"


def test_recent_projects_most_recent_first(env) -> None:
    recent = RecentProjects(env)
    assert recent.load() == []
    recent.add(ProjectCache(Path("/a")))
    recent.add(ProjectCache(Path("/b"), Path("/b/main.md")))
    recent.add(ProjectCache(Path("/a"), Path("/a/intro.md")))

    loaded = recent.load()
    assert [p.root_path for p in loaded] == [Path("/a"), Path("/b")]
    assert loaded[0].main == Path("/a/intro.md")
    assert loaded[1].main == Path("/b/main.md")


def test_recent_projects_are_capped(env) -> None:
    recent = RecentProjects(env, limit=5)
    for i in range(8):
        recent.add(ProjectCache(Path(f"/p{i}")))
    assert [p.root_path.name for p in recent.load()] == ["p7", "p6", "p5", "p4", "p3"]


def test_cache_line_format() -> None:
    assert ProjectCache(Path("/r")).to_line() == "/r,?"
    assert ProjectCache.from_line("/r,?") == ProjectCache(Path("/r"))
    assert ProjectCache.from_line("/r") == ProjectCache(Path("/r"))


def test_preview_config_from_settings(tmp_path) -> None:
    settings = QSettings(str(tmp_path / "settings.ini"), QSettings.Format.IniFormat)
    settings.setValue("preview/scroll_threshold", 64)
    settings.setValue("preview/auto_preview_ms", 0)
    config = PreviewConfig.from_settings(settings)
    assert config.scroll_threshold == 64.0
    assert config.auto_preview_ms == 0
    assert config.page_gap == PreviewConfig().page_gap

