"""
main_window.py — Main application window
File list, source editor, live preview and the diagnostics panel.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from PyQt6.QtCore import Qt
from PyQt6.QtGui import QFont, QKeySequence, QShortcut, QTextCursor
from PyQt6.QtWidgets import (
    QFileDialog, QFrame, QHBoxLayout, QInputDialog, QLabel, QLineEdit,
    QListWidget, QListWidgetItem, QMainWindow, QMenu, QMessageBox,
    QPlainTextEdit, QSplitter, QToolButton, QVBoxLayout, QWidget,
)

from file_identity import VirtualId
from file_manager import ALL_TYPES, SOURCE_EXTENSIONS
from models import AppEnvironment, PreviewConfig
from preview import PreviewRenderer
from preview_view import PreviewScrollView
from session import EditorSession


def make_tool_button(text: str, tooltip: str) -> QToolButton:
    btn = QToolButton()
    btn.setText(text)
    btn.setToolTip(tooltip)
    btn.setFixedSize(36, 32)
    btn.setStyleSheet(
        "QToolButton { border: none; border-radius: 4px; font-size: 16px; }"
        "QToolButton:hover { background: rgba(0,0,0,0.08); }"
        "QToolButton:pressed { background: rgba(0,0,0,0.15); }"
    )
    return btn


DIVIDER_STYLE = "background: #d0d0d0; min-width: 1px; max-width: 1px; margin: 3px 4px;"


def make_divider() -> QFrame:
    d = QFrame()
    d.setFrameShape(QFrame.Shape.VLine)
    d.setStyleSheet(DIVIDER_STYLE)
    return d


def _filter(name: str, extensions) -> str:
    return f"{name} ({' '.join('*' + e for e in extensions)})"


# ─────────────────────────────────────────────
# Main Window
# ─────────────────────────────────────────────

class MainWindow(QMainWindow):

    def __init__(self, env: Optional[AppEnvironment] = None, config: Optional[PreviewConfig] = None):
        super().__init__()
        self.setWindowTitle("Tide")
        self.setMinimumSize(1100, 700)
        self.resize(1400, 860)

        self._env = env or AppEnvironment.default()
        self._config = config or PreviewConfig.from_settings()
        self._renderer = PreviewRenderer(self._config, parent=self)
        self._session = EditorSession(self._env, self._renderer, config=self._config, parent=self)
        self._loading_buffer = False
        self._shown_vid: Optional[VirtualId] = None

        self._build_ui()
        self._connect_signals()
        self._update_toolbar_state()

    @property
    def session(self) -> EditorSession:
        return self._session

    # ── UI Build ──────────────────────────────

    def _build_ui(self):
        central = QWidget()
        self.setCentralWidget(central)
        main_vl = QVBoxLayout(central)
        main_vl.setContentsMargins(0, 0, 0, 0)
        main_vl.setSpacing(0)

        # ── Toolbar ──
        self._toolbar = QWidget()
        self._toolbar.setFixedHeight(38)
        self._toolbar.setStyleSheet("background: #fafafa;")
        tb_layout = QHBoxLayout(self._toolbar)
        tb_layout.setContentsMargins(6, 3, 6, 3)
        tb_layout.setSpacing(0)

        open_btn = make_tool_button("📂", "Open project")
        open_btn.clicked.connect(lambda: self.open_project())
        tb_layout.addWidget(open_btn)
        self._recent_btn = make_tool_button("🕘", "Recent projects")
        self._recent_menu = QMenu(self)
        self._recent_menu.aboutToShow.connect(self._fill_recent_menu)
        self._recent_btn.setMenu(self._recent_menu)
        self._recent_btn.setPopupMode(QToolButton.ToolButtonPopupMode.InstantPopup)
        tb_layout.addWidget(self._recent_btn)
        tb_layout.addWidget(make_divider())

        self._new_btn = make_tool_button("＋", "New file")
        self._new_btn.clicked.connect(self._new_file)
        tb_layout.addWidget(self._new_btn)
        self._upload_btn = make_tool_button("⤒", "Upload file into project")
        self._upload_btn.clicked.connect(self._upload_file)
        tb_layout.addWidget(self._upload_btn)
        self._save_btn = make_tool_button("💾", "Save (Ctrl+S)")
        self._save_btn.clicked.connect(self._session.save_current)
        tb_layout.addWidget(self._save_btn)
        self._main_btn = make_tool_button("★", "Use current file as main")
        self._main_btn.clicked.connect(self._set_main)
        tb_layout.addWidget(self._main_btn)
        self._delete_btn = make_tool_button("🗑", "Delete selected file")
        self._delete_btn.clicked.connect(self._delete_file)
        tb_layout.addWidget(self._delete_btn)
        tb_layout.addWidget(make_divider())

        self._preview_btn = make_tool_button("▶", "Preview (F5)")
        self._preview_btn.clicked.connect(self._session.request_preview)
        tb_layout.addWidget(self._preview_btn)
        self._zoom_input = QLineEdit("100%")
        self._zoom_input.setFixedWidth(52)
        self._zoom_input.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._zoom_input.setStyleSheet(
            "QLineEdit { font-size: 11px; border: 1px solid transparent; background: transparent; }"
            "QLineEdit:focus { border: 1px solid #aaa; background: white; }"
        )
        self._zoom_input.editingFinished.connect(self._apply_zoom_input)
        tb_layout.addWidget(self._zoom_input)
        zoom_out_btn = make_tool_button("−", "Zoom out")
        zoom_out_btn.clicked.connect(lambda: self._preview.set_zoom(self._renderer.zoom / 1.2))
        tb_layout.addWidget(zoom_out_btn)
        zoom_in_btn = make_tool_button("+", "Zoom in")
        zoom_in_btn.clicked.connect(lambda: self._preview.set_zoom(self._renderer.zoom * 1.2))
        tb_layout.addWidget(zoom_in_btn)
        invert_btn = make_tool_button("◐", "Invert preview colors")
        invert_btn.setCheckable(True)
        invert_btn.toggled.connect(lambda on: self._preview.preview_widget.set_inverted(on))
        tb_layout.addWidget(invert_btn)
        tb_layout.addWidget(make_divider())

        self._export_btn = make_tool_button("⇪", "Export")
        export_menu = QMenu(self)
        export_menu.addAction("PDF...", self._export_pdf)
        export_menu.addAction("PNG images...", self._export_images)
        export_menu.addAction("Current file as template", self._export_template)
        self._export_btn.setMenu(export_menu)
        self._export_btn.setPopupMode(QToolButton.ToolButtonPopupMode.InstantPopup)
        tb_layout.addWidget(self._export_btn)
        tb_layout.addStretch()

        self._page_label = QLabel("—")
        self._page_label.setStyleSheet("font-size: 11px; color: #888; padding-right: 8px;")
        tb_layout.addWidget(self._page_label)
        main_vl.addWidget(self._toolbar)

        sep = QFrame()
        sep.setFrameShape(QFrame.Shape.HLine)
        sep.setStyleSheet("color: #d0d0d0;")
        main_vl.addWidget(sep)

        # ── Body: files | editor | preview ──
        splitter = QSplitter(Qt.Orientation.Horizontal)
        self._file_list = QListWidget()
        self._file_list.itemActivated.connect(self._on_file_activated)
        self._file_list.itemClicked.connect(self._on_file_activated)
        splitter.addWidget(self._file_list)

        self._editor = QPlainTextEdit()
        self._editor.setFont(QFont("Consolas", 11))
        self._editor.setLineWrapMode(QPlainTextEdit.LineWrapMode.WidgetWidth)
        self._editor.textChanged.connect(self._on_text_changed)
        splitter.addWidget(self._editor)

        self._preview = PreviewScrollView(self._renderer)
        splitter.addWidget(self._preview)
        splitter.setSizes([220, 560, 620])
        main_vl.addWidget(splitter, 1)

        # ── Diagnostics panel (dismissible) ──
        self._diag_panel = QWidget()
        self._diag_panel.setStyleSheet("background: #fff4f4;")
        dl = QHBoxLayout(self._diag_panel)
        dl.setContentsMargins(6, 4, 6, 4)
        self._diag_text = QPlainTextEdit()
        self._diag_text.setReadOnly(True)
        self._diag_text.setMaximumHeight(110)
        dl.addWidget(self._diag_text, 1)
        close_btn = make_tool_button("✕", "Dismiss")
        close_btn.clicked.connect(self._diag_panel.hide)
        dl.addWidget(close_btn, 0, Qt.AlignmentFlag.AlignTop)
        self._diag_panel.hide()
        main_vl.addWidget(self._diag_panel)

        self.statusBar().showMessage("Open a project to start")

        QShortcut(QKeySequence("Ctrl+S"), self, activated=self._session.save_current)
        QShortcut(QKeySequence("F5"), self, activated=self._session.request_preview)
        QShortcut(QKeySequence("Ctrl+O"), self, activated=lambda: self.open_project())

    def _connect_signals(self):
        s = self._session
        s.notification.connect(self._on_notification)
        s.diagnostics_changed.connect(self._on_diagnostics)
        s.files_changed.connect(self._refresh_file_list)
        s.current_changed.connect(self._on_current_changed)
        s.project_opened.connect(self._on_project_opened)
        self._preview.page_changed.connect(self._update_page_label)
        self._preview.zoom_changed.connect(lambda z: self._zoom_input.setText(f"{round(z * 100)}%"))
        self._renderer.page_failed.connect(
            lambda i, msg: self.statusBar().showMessage(f"Page {i + 1} could not be rendered: {msg}", 5000)
        )
        self._renderer.cache_changed.connect(lambda: self._update_page_label(self._preview.visible_page()))

    def _update_toolbar_state(self):
        has_project = self._session.world is not None
        has_file = self._session.current is not None
        for btn in (self._new_btn, self._upload_btn, self._preview_btn, self._export_btn, self._delete_btn):
            btn.setEnabled(has_project)
        self._save_btn.setEnabled(has_file)
        self._main_btn.setEnabled(has_file)

    # ── Project & files ───────────────────────

    def open_project(self, root: Optional[str] = None, main: Optional[str] = None):
        if root is None:
            root = QFileDialog.getExistingDirectory(self, "Open Project")
            if not root:
                return
        self._session.open_project(Path(root), Path(main) if main else None)

    def _fill_recent_menu(self):
        self._recent_menu.clear()
        projects = self._session.recent_projects()
        if not projects:
            self._recent_menu.addAction("(none)").setEnabled(False)
        for p in projects:
            self._recent_menu.addAction(
                str(p.root_path),
                lambda r=p.root_path, m=p.main: self.open_project(str(r), str(m) if m else None),
            )

    def _on_project_opened(self, root: str):
        self.setWindowTitle(f"Tide — {Path(root).name}")
        self._update_toolbar_state()

    def _refresh_file_list(self):
        self._file_list.clear()
        world = self._session.world
        if world is None:
            return
        for vid in world.ids():
            label = vid.rootless()
            if vid == world.main():
                label = "★ " + label
            buffer = self._session.buffer(vid)
            if buffer is not None and not buffer.is_saved:
                label += " •"
            item = QListWidgetItem(label)
            item.setData(Qt.ItemDataRole.UserRole, vid)
            self._file_list.addItem(item)
        self._update_toolbar_state()

    def _selected_vid(self) -> Optional[VirtualId]:
        item = self._file_list.currentItem()
        return item.data(Qt.ItemDataRole.UserRole) if item else None

    def _on_file_activated(self, item: QListWidgetItem):
        self._session.open_file(item.data(Qt.ItemDataRole.UserRole))

    def _new_file(self):
        name, ok = QInputDialog.getText(self, "New file", "File name (relative to project):", text="untitled.md")
        if ok and name.strip():
            self._session.create_file(name.strip())

    def _upload_file(self):
        path, _ = QFileDialog.getOpenFileName(self, "Load File", "", _filter("Sources or assets", ALL_TYPES))
        if path:
            self._session.upload_file(Path(path))

    def _delete_file(self):
        vid = self._selected_vid()
        if vid is None:
            return
        answer = QMessageBox.question(self, "Delete file", f"Delete {vid.rootless()} from disk?")
        if answer == QMessageBox.StandardButton.Yes:
            self._session.delete_file(vid)

    def _set_main(self):
        if self._session.current is not None:
            self._session.set_main(self._session.current)
            self._session.request_preview()

    # ── Editor ────────────────────────────────

    def _on_current_changed(self, vid: Optional[VirtualId]):
        if self._shown_vid is not None:
            previous = self._session.buffer(self._shown_vid)
            if previous is not None:
                previous.cursor = self._editor.textCursor().position()
        self._shown_vid = vid
        buffer = self._session.buffer(vid) if vid else None
        self._loading_buffer = True
        try:
            self._editor.setPlainText(buffer.text if buffer else "")
            self._editor.setReadOnly(buffer is None)
            if buffer is not None:
                cursor = self._editor.textCursor()
                cursor.setPosition(min(buffer.cursor, len(buffer.text)))
                self._editor.setTextCursor(cursor)
                self._editor.moveCursor(QTextCursor.MoveOperation.NoMove)
        finally:
            self._loading_buffer = False
        self._refresh_file_list()

    def _on_text_changed(self):
        if not self._loading_buffer:
            self._session.set_buffer_text(self._editor.toPlainText())

    # ── Preview ───────────────────────────────

    def _apply_zoom_input(self):
        text = self._zoom_input.text().strip().rstrip("%")
        try:
            self._preview.set_zoom(float(text) / 100.0)
        except ValueError:
            pass
        self._zoom_input.setText(f"{round(self._renderer.zoom * 100)}%")

    def _update_page_label(self, page: int):
        count = len(self._renderer.cache)
        self._page_label.setText(f"{page + 1} / {count}" if count else "—")

    def _on_diagnostics(self, text: str):
        if text:
            self._diag_text.setPlainText(text)
            self._diag_panel.show()
        else:
            self._diag_panel.hide()

    def _on_notification(self, level: str, title: str, message: str):
        if level == "error":
            QMessageBox.critical(self, title, message)
        elif level == "warning":
            QMessageBox.warning(self, title, message)
        else:
            self.statusBar().showMessage(f"{title}: {message}", 5000)

    # ── Export ────────────────────────────────

    def _export_pdf(self):
        path, _ = QFileDialog.getSaveFileName(self, "Export Project", "", _filter("PDF", (".pdf",)))
        if path:
            self._session.export_pdf(Path(path))

    def _export_images(self):
        path, _ = QFileDialog.getSaveFileName(self, "Export Project", "", _filter("PNG", (".png",)))
        if path:
            self._session.export_images(Path(path))

    def _export_template(self):
        vid = self._session.current
        if vid is not None and vid.suffix in SOURCE_EXTENSIONS:
            self._session.export_template(vid)

    def closeEvent(self, event):
        if not self._session.all_saved():
            answer = QMessageBox.question(
                self, "Unsaved changes", "Some files are not saved. Quit anyway?",
            )
            if answer != QMessageBox.StandardButton.Yes:
                event.ignore()
                return
        event.accept()
