"""
preview.py — Incremental, viewport-aware page cache for the live preview

The renderer keeps one PageRecord per page of the compiled document. Only
pages inside the visible range are rasterized (on a QThreadPool worker, at
the current zoom); every other page is a placeholder that carries just its
geometry so the scroll area always has the right size.

    IDLE --(zoom / scroll past threshold / new document)--> RELOAD_PENDING
    RELOAD_PENDING --(range unchanged)--> IDLE
    RELOAD_PENDING --(range changed)--> RENDERING --(worker done)--> IDLE
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from PyQt6.QtCore import QObject, QRunnable, QThreadPool, QTimer, pyqtSignal

from compiler import PagedDocument, PageGeometry, PdfRasterizer, Rasterizer
from errors import RenderError
from models import PreviewConfig

logger = logging.getLogger(__name__)

MIN_ZOOM = 0.1
MAX_ZOOM = 3.0


def clamp_zoom(zoom: float) -> float:
    return max(MIN_ZOOM, min(float(zoom), MAX_ZOOM))


@dataclass(frozen=True)
class PageRecord:
    width: float
    height: float
    pixels: Optional[bytes] = None  # encoded PNG; None = placeholder

    @property
    def is_placeholder(self) -> bool:
        return self.pixels is None


@dataclass
class ViewportState:
    zoom: float = 1.0
    scroll_offset: float = 0.0
    viewport_height: float = 0.0


class RenderState(str, Enum):
    IDLE = "idle"
    RELOAD_PENDING = "reload_pending"
    RENDERING = "rendering"


# ─────────────────────────────────────────────
# Viewport math
# ─────────────────────────────────────────────

def page_offsets(pages: Sequence[PageGeometry], zoom: float, gap: float) -> list[float]:
    """Top y of each page at ``zoom``; every page is followed by ``gap``."""
    tops = []
    y = 0.0
    for page in pages:
        tops.append(y)
        y += page.height * zoom + gap
    return tops


def total_height(pages: Sequence[PageGeometry], zoom: float, gap: float) -> float:
    return sum(page.height * zoom + gap for page in pages)


def visible_range(pages: Sequence[PageGeometry], viewport: ViewportState, gap: float) -> Optional[tuple[int, int]]:
    """Inclusive (first, last) indices of the pages intersecting the viewport.

    None for an empty document. A viewport that sits in the gap between two
    pages reports the next page.
    """
    n = len(pages)
    if n == 0:
        return None
    zoom = viewport.zoom
    tops = page_offsets(pages, zoom, gap)
    ends = [top + page.height * zoom for top, page in zip(tops, pages)]
    top = max(0.0, viewport.scroll_offset)
    bottom = top + max(0.0, viewport.viewport_height)

    first = min(bisect.bisect_right(ends, top), n - 1)
    last = bisect.bisect_left(tops, bottom) - 1
    last = min(max(last, first), n - 1)
    return first, last


def page_at(pages: Sequence[PageGeometry], zoom: float, gap: float, y: float) -> int:
    """Returns the page index at the given y position (binary search, O(log n))."""
    if not pages:
        return 0
    tops = page_offsets(pages, zoom, gap)
    idx = bisect.bisect_right(tops, y) - 1
    return max(0, min(idx, len(tops) - 1))


def placeholders(document: PagedDocument) -> list[PageRecord]:
    return [PageRecord(page.width, page.height) for page in document.pages]


def build_page_records(document: PagedDocument, zoom: float, visible: tuple[int, int],
                       rasterizer: Rasterizer) -> tuple[list[PageRecord], list[RenderError]]:
    """Rasterize pages in ``visible``; placeholders for the rest.

    A page that fails to render degrades to a placeholder and is reported in
    the returned failure list.
    """
    first, last = visible
    records: list[PageRecord] = []
    failures: list[RenderError] = []
    for i, page in enumerate(document.pages):
        pixels = None
        if first <= i <= last:
            try:
                pixels = rasterizer.rasterize(document, i, zoom)
            except RenderError as e:
                failures.append(e)
            except Exception as e:
                failures.append(RenderError(i, str(e)))
        records.append(PageRecord(page.width, page.height, pixels))
    for failure in failures:
        logger.warning(f"Render failed, placeholder kept: {failure}")
    return records, failures


# ─────────────────────────────────────────────
# Async Rendering Worker
# ─────────────────────────────────────────────

class RenderSignals(QObject):
    finished = pyqtSignal(int, object, object)  # generation, records, failures


class RenderWorker(QRunnable):
    """Background render pass over an immutable PagedDocument."""

    def __init__(self, generation: int, key: tuple, document: PagedDocument, zoom: float,
                 visible: tuple[int, int], rasterizer: Rasterizer):
        super().__init__()
        self.generation = generation
        self.key = key
        self.document = document
        self.zoom = zoom
        self.visible = visible
        self.rasterizer = rasterizer
        self.signals = RenderSignals()

    def run(self):
        records, failures = build_page_records(self.document, self.zoom, self.visible, self.rasterizer)
        self.signals.finished.emit(self.generation, records, failures)


# ─────────────────────────────────────────────
# Renderer
# ─────────────────────────────────────────────

class PreviewRenderer(QObject):
    """Owns the page cache and viewport state of the preview."""

    cache_changed = pyqtSignal()
    state_changed = pyqtSignal(str)
    page_failed = pyqtSignal(int, str)  # page index, message

    SETTLE_MS = 150

    def __init__(self, config: Optional[PreviewConfig] = None,
                 rasterizer: Optional[Rasterizer] = None,
                 pool: Optional[QThreadPool] = None, parent=None):
        super().__init__(parent)
        self._config = config or PreviewConfig()
        self._rasterizer = rasterizer or PdfRasterizer(self._config.device_pixel_ratio)
        self._pool = pool or QThreadPool.globalInstance()

        self._document: Optional[PagedDocument] = None
        self._viewport = ViewportState(zoom=clamp_zoom(self._config.default_zoom))
        self._cache: tuple[PageRecord, ...] = ()
        self._state = RenderState.IDLE

        self._visible: Optional[tuple[int, int]] = None
        self._trigger_scroll = 0.0
        self._rendered_key: Optional[tuple] = None
        self._pending_key: Optional[tuple] = None
        self._generation = 0
        self._applied_generation = 0
        self._workers: dict[int, RenderWorker] = {}

        # Re-check once scrolling stops so sub-threshold moves still settle
        self._settle_timer = QTimer(self)
        self._settle_timer.setSingleShot(True)
        self._settle_timer.timeout.connect(self.request_reload)

    # ── State ─────────────────────────────────

    @property
    def cache(self) -> tuple[PageRecord, ...]:
        return self._cache

    @property
    def state(self) -> RenderState:
        return self._state

    @property
    def viewport(self) -> ViewportState:
        return ViewportState(self._viewport.zoom, self._viewport.scroll_offset, self._viewport.viewport_height)

    @property
    def zoom(self) -> float:
        return self._viewport.zoom

    @property
    def document(self) -> Optional[PagedDocument]:
        return self._document

    @property
    def visible(self) -> Optional[tuple[int, int]]:
        """Range computed by the last reload."""
        return self._visible

    @property
    def page_gap(self) -> float:
        return self._config.page_gap

    def _set_state(self, state: RenderState):
        if state != self._state:
            self._state = state
            self.state_changed.emit(state.value)

    # ── Layout helpers for the view ───────────

    def _pages(self) -> tuple[PageGeometry, ...]:
        return self._document.pages if self._document else ()

    def page_offsets(self) -> list[float]:
        return page_offsets(self._pages(), self._viewport.zoom, self._config.page_gap)

    def total_height(self) -> float:
        return total_height(self._pages(), self._viewport.zoom, self._config.page_gap)

    def page_at(self, y: float) -> int:
        return page_at(self._pages(), self._viewport.zoom, self._config.page_gap, y)

    def offset_for_page(self, page_index: int) -> float:
        offsets = self.page_offsets()
        if 0 <= page_index < len(offsets):
            return offsets[page_index]
        return 0.0

    # ── Triggers ──────────────────────────────

    def set_document(self, document: Optional[PagedDocument]):
        """Install a freshly compiled document and render its visible pages."""
        previous = self._cache
        old_visible = self._visible
        self._document = document
        # anything still in flight belongs to an older document
        self._applied_generation = self._generation
        self._rendered_key = None
        self._pending_key = None

        if document is None:
            self._cache = ()
            self._visible = None
        else:
            # keep the old bitmaps of on-screen pages until the new pass lands
            records = placeholders(document)
            if old_visible is not None:
                first, last = old_visible
                for i in range(first, min(last, len(records) - 1, len(previous) - 1) + 1):
                    old = previous[i]
                    if (old.width, old.height) == (records[i].width, records[i].height):
                        records[i] = old
            self._cache = tuple(records)
        self.cache_changed.emit()
        self.request_reload()

    def set_zoom(self, zoom: float):
        zoom = clamp_zoom(zoom)
        if abs(zoom - self._viewport.zoom) < 0.001:
            return
        self._viewport.zoom = zoom
        self.request_reload()

    def set_scroll_offset(self, offset: float):
        self._viewport.scroll_offset = max(0.0, float(offset))
        if abs(self._viewport.scroll_offset - self._trigger_scroll) >= self._config.scroll_threshold:
            self.request_reload()
        else:
            self._settle_timer.start(self.SETTLE_MS)

    def set_viewport_height(self, height: float):
        height = max(0.0, float(height))
        if abs(height - self._viewport.viewport_height) < 0.5:
            return
        self._viewport.viewport_height = height
        self.request_reload()

    def request_reload(self):
        """Recompute the visible range and dispatch a render pass if it changed."""
        self._settle_timer.stop()
        self._trigger_scroll = self._viewport.scroll_offset
        self._set_state(RenderState.RELOAD_PENDING)

        document = self._document
        if document is None or document.page_count == 0:
            self._visible = None
            if self._cache:
                self._cache = ()
                self.cache_changed.emit()
            self._set_state(RenderState.IDLE if not self._workers else RenderState.RENDERING)
            return

        visible = visible_range(document.pages, self._viewport, self._config.page_gap)
        self._visible = visible
        zoom = round(self._viewport.zoom, 3)
        key = (document.revision, zoom, visible)
        if key in (self._rendered_key, self._pending_key):
            if key == self._rendered_key and self._pending_key is not None:
                # the pass in flight was for a range that is no longer on screen
                self._applied_generation = self._generation
                self._pending_key = None
            self._set_state(RenderState.RENDERING if self._pending_key else RenderState.IDLE)
            return

        self._generation += 1
        self._pending_key = key
        worker = RenderWorker(self._generation, key, document, zoom, visible, self._rasterizer)
        worker.signals.finished.connect(self._on_render_finished)
        self._workers[self._generation] = worker
        self._set_state(RenderState.RENDERING)
        logger.debug(f"render pass {self._generation}: pages {visible[0]}-{visible[1]} at {zoom}")
        self._pool.start(worker)

    def clear(self):
        self.set_document(None)

    # ── Completion ────────────────────────────

    def _on_render_finished(self, generation: int, records: list, failures: list):
        worker = self._workers.pop(generation, None)
        if generation == self._generation:
            self._pending_key = None
            self._set_state(RenderState.IDLE)

        # Discard stale renders: a newer pass (or document) already landed
        if worker is None or generation <= self._applied_generation:
            logger.debug(f"render pass {generation} discarded as stale")
            return
        if self._document is None or worker.document.revision != self._document.revision:
            return
        if worker.key != (self._document.revision, round(self._viewport.zoom, 3), self._visible):
            logger.debug(f"render pass {generation} no longer matches the viewport")
            return

        self._applied_generation = generation
        self._rendered_key = worker.key
        self._cache = tuple(records)
        for failure in failures:
            self.page_failed.emit(failure.page_index, str(failure))
        self.cache_changed.emit()
