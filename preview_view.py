"""
preview_view.py — Scrollable preview of the renderer's page cache

Draws each PageRecord at the current zoom: rasterized pages as pixmaps,
placeholders as blank, correctly sized sheets. Scroll, resize and
Ctrl+wheel events are forwarded to the PreviewRenderer.
"""

from __future__ import annotations

from typing import Optional

from PyQt6.QtCore import QRect, Qt, pyqtSignal
from PyQt6.QtGui import QColor, QPainter, QPen, QPixmap, QWheelEvent
from PyQt6.QtWidgets import QScrollArea, QSizePolicy, QWidget

from preview import PreviewRenderer

SIDE_MARGIN = 40


class PreviewWidget(QWidget):
    """Paints the page cache of a PreviewRenderer in one continuous column."""

    zoom_requested = pyqtSignal(float)

    def __init__(self, renderer: PreviewRenderer, parent=None):
        super().__init__(parent)
        self.setFocusPolicy(Qt.FocusPolicy.NoFocus)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self._renderer = renderer
        # page index -> (encoded bytes, decoded pixmap); decoded once per record
        self._pixmaps: dict[int, tuple[bytes, QPixmap]] = {}
        self._inverted = False

        renderer.cache_changed.connect(self._on_cache_changed)

    def set_inverted(self, inverted: bool):
        self._inverted = inverted
        self._pixmaps.clear()
        self.update()

    def _on_cache_changed(self):
        cache = self._renderer.cache
        for i in list(self._pixmaps):
            if i >= len(cache) or cache[i].pixels is not self._pixmaps[i][0]:
                del self._pixmaps[i]
        self.recalculate_layout()
        self.update()

    def _pixmap_for(self, index: int) -> Optional[QPixmap]:
        record = self._renderer.cache[index]
        if record.pixels is None:
            return None
        cached = self._pixmaps.get(index)
        if cached is not None and cached[0] is record.pixels:
            return cached[1]
        pixmap = QPixmap()
        if not pixmap.loadFromData(record.pixels, "PNG"):
            return None
        if self._inverted:
            image = pixmap.toImage()
            image.invertPixels()
            pixmap = QPixmap.fromImage(image)
        self._pixmaps[index] = (record.pixels, pixmap)
        return pixmap

    def recalculate_layout(self):
        zoom = self._renderer.zoom
        cache = self._renderer.cache
        max_w = max((int(r.width * zoom) for r in cache), default=0)
        widget_w = max_w + SIDE_MARGIN * 2
        if self.parent() is not None:
            widget_w = max(widget_w, self.parent().width())
        self.setMinimumSize(widget_w, int(self._renderer.total_height()))

    def _page_x_offset(self, page_width: int) -> int:
        """Returns the x offset to center a page horizontally."""
        if page_width >= self.width() - 20:
            return 10
        return (self.width() - page_width) // 2

    def paintEvent(self, event):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        painter.fillRect(self.rect(), QColor("#444444"))

        cache = self._renderer.cache
        if not cache:
            painter.setPen(QColor("#bbbbbb"))
            painter.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, "No preview yet")
            return

        zoom = self._renderer.zoom
        clip = event.rect()
        offsets = self._renderer.page_offsets()
        for i, record in enumerate(cache):
            y = int(offsets[i])
            w = int(record.width * zoom)
            h = int(record.height * zoom)
            if y > clip.bottom():
                break
            if y + h < clip.top():
                continue
            target = QRect(self._page_x_offset(w), y, w, h)
            pixmap = self._pixmap_for(i)
            if pixmap is not None:
                painter.drawPixmap(target, pixmap)
            else:
                painter.fillRect(target, QColor("#202020") if self._inverted else QColor("white"))
                painter.setPen(QColor("#999999"))
                painter.drawText(target, Qt.AlignmentFlag.AlignCenter, "Loading...")
            painter.setPen(QPen(QColor("#222222"), 1))
            painter.drawRect(target)

    def wheelEvent(self, event: QWheelEvent):
        if event.modifiers() & Qt.KeyboardModifier.ControlModifier:
            # Precision touchpad sends pixelDelta, a mouse wheel sends angleDelta (±120)
            pixel_y = event.pixelDelta().y()
            if pixel_y != 0:
                factor = 1.0 + pixel_y * 0.004
            else:
                factor = 1.0 + (event.angleDelta().y() / 120.0) * 0.07
            self.zoom_requested.emit(self._renderer.zoom * factor)
            event.accept()
        else:
            event.ignore()


# ─────────────────────────────────────────────
# Scrollable container
# ─────────────────────────────────────────────

class PreviewScrollView(QScrollArea):
    """A QScrollArea wrapping PreviewWidget that feeds the renderer's viewport."""

    page_changed = pyqtSignal(int)
    zoom_changed = pyqtSignal(float)

    def __init__(self, renderer: PreviewRenderer, parent=None):
        super().__init__(parent)
        self.setObjectName("previewScrollArea")
        self.setWidgetResizable(True)
        self.setAlignment(Qt.AlignmentFlag.AlignHCenter)
        self._renderer = renderer

        self._widget = PreviewWidget(renderer)
        self.setWidget(self._widget)
        self._widget.zoom_requested.connect(self.set_zoom)

        self.verticalScrollBar().valueChanged.connect(self._on_scroll)

    @property
    def preview_widget(self) -> PreviewWidget:
        return self._widget

    def set_zoom(self, z: float):
        old_zoom = self._renderer.zoom
        vbar = self.verticalScrollBar()
        old_vscroll = vbar.value()
        vh = self.viewport().height()

        self._renderer.set_zoom(z)
        new_zoom = self._renderer.zoom
        self._widget.recalculate_layout()

        # Keep the viewport center fixed across the zoom change
        if old_zoom > 0 and abs(new_zoom - old_zoom) > 0.001:
            ratio = new_zoom / old_zoom
            vbar.setValue(max(0, int((old_vscroll + vh / 2) * ratio - vh / 2)))
            self.zoom_changed.emit(new_zoom)
        self._widget.update()

    def scroll_to_page(self, page_index: int):
        self.verticalScrollBar().setValue(int(self._renderer.offset_for_page(page_index)))

    def visible_page(self) -> int:
        center = self.verticalScrollBar().value() + self.viewport().height() // 2
        return self._renderer.page_at(center)

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self._renderer.set_viewport_height(self.viewport().height())
        self._widget.recalculate_layout()

    def _on_scroll(self, value: int):
        self._renderer.set_scroll_offset(value)
        self.page_changed.emit(self.visible_page())
