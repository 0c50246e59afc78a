from __future__ import annotations

import os
import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_ROOT))
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PyQt6.QtWidgets import QApplication

from compiler import PagedDocument, PageGeometry, Warned
from errors import RenderError
from fonts import FontCatalog
from models import AppEnvironment, PreviewConfig

PAGE_BREAK = "\f"


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


class SyncPool:
    """Stands in for QThreadPool: runs every job immediately on the caller's thread."""

    def __init__(self):
        self.started = 0

    def start(self, runnable):
        self.started += 1
        runnable.run()


class DeferredPool:
    """Queues jobs so a test can finish them in any order."""

    def __init__(self):
        self.jobs = []

    def start(self, runnable):
        self.jobs.append(runnable)

    def run(self, index: int):
        self.jobs.pop(index).run()

    def run_all(self):
        while self.jobs:
            self.run(0)


class FakeCompiler:
    """One page per form-feed separated, non-blank chunk of the main source."""

    def __init__(self, page_size=(100.0, 200.0), warnings=()):
        self.page_size = page_size
        self.warnings = list(warnings)
        self.calls = 0

    def compile(self, world) -> Warned:
        self.calls += 1
        text = world.source(world.main())
        chunks = [c for c in text.split(PAGE_BREAK) if c.strip()]
        pages = tuple(PageGeometry(*self.page_size) for _ in chunks)
        return Warned(PagedDocument(pdf_bytes=text.encode("utf-8"), pages=pages), list(self.warnings))


class FakeRasterizer:
    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls: list[tuple[int, int, float]] = []

    def rasterize(self, document, page_index, zoom) -> bytes:
        self.calls.append((document.revision, page_index, zoom))
        if page_index in self.fail_on:
            raise RenderError(page_index, "boom")
        return f"page-{page_index}@{zoom}".encode()


def make_document(n_pages: int, width: float = 100.0, height: float = 200.0) -> PagedDocument:
    return PagedDocument(pdf_bytes=b"", pages=tuple(PageGeometry(width, height) for _ in range(n_pages)))


@pytest.fixture
def env(tmp_path) -> AppEnvironment:
    env = AppEnvironment(tmp_path / "config")
    env.ensure()
    return env


@pytest.fixture
def config() -> PreviewConfig:
    return PreviewConfig(page_gap=16.0, scroll_threshold=120.0, auto_preview_ms=0)


@pytest.fixture
def no_fonts() -> FontCatalog:
    return FontCatalog([])


@pytest.fixture
def project(tmp_path) -> Path:
    root = tmp_path / "project"
    (root / "images").mkdir(parents=True)
    (root / "main.md").write_text(f"# First{PAGE_BREAK}# Second", encoding="utf-8")
    (root / "notes.md").write_text("notes", encoding="utf-8")
    (root / "images" / "logo.png").write_bytes(b"\x89PNG fake")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD.md").write_text("hidden", encoding="utf-8")
    return root
