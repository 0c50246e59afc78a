"""
session.py — Editor session: one project world, its open buffers and the
background tasks (compile, save, export) that run against world snapshots
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from PyQt6.QtCore import QObject, QRunnable, QThreadPool, QTimer, pyqtSignal

import file_manager
from compiler import Compiler, PagedDocument, compile_document
from errors import CompileError, ExportError
from file_identity import VirtualId, to_absolute, to_virtual
from fonts import FontCatalog
from models import AppEnvironment, Buffer, PreviewConfig, ProjectCache, RecentProjects
from preview import PreviewRenderer
from world import ProjectWorld

logger = logging.getLogger(__name__)

DEFAULT_MAIN = VirtualId("/main.md")


# ─────────────────────────────────────────────
# Workers
# ─────────────────────────────────────────────

class CompileSignals(QObject):
    finished = pyqtSignal(int, object)  # request id, PagedDocument
    failed = pyqtSignal(int, object)    # request id, CompileError


class CompileWorker(QRunnable):
    """Compiles a world snapshot off the UI thread."""

    def __init__(self, request_id: int, world: ProjectWorld, compiler: Optional[Compiler] = None):
        super().__init__()
        self.request_id = request_id
        self.world = world
        self.compiler = compiler
        self.signals = CompileSignals()

    def run(self):
        try:
            document = compile_document(self.world, self.compiler)
        except CompileError as e:
            self.signals.failed.emit(self.request_id, e)
            return
        self.signals.finished.emit(self.request_id, document)


class TaskSignals(QObject):
    finished = pyqtSignal(object)
    failed = pyqtSignal(object)


class TaskWorker(QRunnable):
    """Runs one disk/export job off the UI thread."""

    def __init__(self, fn: Callable[[], object]):
        super().__init__()
        self._fn = fn
        self.signals = TaskSignals()

    def run(self):
        try:
            result = self._fn()
        except Exception as e:
            self.signals.failed.emit(e)
            return
        self.signals.finished.emit(result)


# ─────────────────────────────────────────────
# Session
# ─────────────────────────────────────────────

class EditorSession(QObject):

    notification = pyqtSignal(str, str, str)   # level, title, message
    diagnostics_changed = pyqtSignal(str)      # "" hides the panel
    files_changed = pyqtSignal()
    current_changed = pyqtSignal(object)       # VirtualId | None
    project_opened = pyqtSignal(str)
    document_compiled = pyqtSignal(object)     # PagedDocument

    def __init__(self, env: AppEnvironment, renderer: PreviewRenderer,
                 compiler: Optional[Compiler] = None,
                 config: Optional[PreviewConfig] = None,
                 fonts: Optional[FontCatalog] = None,
                 pool: Optional[QThreadPool] = None, parent=None):
        super().__init__(parent)
        self._env = env
        self._renderer = renderer
        self._compiler = compiler
        self._config = config or PreviewConfig()
        self._fonts = fonts
        self._pool = pool or QThreadPool.globalInstance()
        self._recent = RecentProjects(env)

        self._root: Optional[Path] = None
        self._world: Optional[ProjectWorld] = None
        self._buffers: dict[VirtualId, Buffer] = {}
        self._current: Optional[VirtualId] = None
        self._compile_request_id = 0
        self._workers: set[QRunnable] = set()

        self._auto_preview_timer = QTimer(self)
        self._auto_preview_timer.setSingleShot(True)
        self._auto_preview_timer.timeout.connect(self.request_preview)

    # ── Accessors ─────────────────────────────

    @property
    def root(self) -> Optional[Path]:
        return self._root

    @property
    def world(self) -> Optional[ProjectWorld]:
        return self._world

    @property
    def renderer(self) -> PreviewRenderer:
        return self._renderer

    @property
    def current(self) -> Optional[VirtualId]:
        return self._current

    def buffer(self, vid: VirtualId) -> Optional[Buffer]:
        return self._buffers.get(vid)

    def all_saved(self) -> bool:
        return all(b.is_saved for b in self._buffers.values())

    def recent_projects(self) -> list[ProjectCache]:
        return self._recent.load()

    def _notify(self, level: str, title: str, message: str):
        log = logger.error if level == "error" else logger.info
        log(f"{title}: {message}")
        self.notification.emit(level, title, message)

    def _start(self, worker: QRunnable):
        self._workers.add(worker)
        self._pool.start(worker)

    # ── Project ───────────────────────────────

    def open_project(self, root: Path, main: Optional[Path] = None) -> bool:
        root = Path(root).resolve()
        if not root.is_dir():
            self._notify("error", "Can't open project", f"{root} is not a directory")
            return False
        if self._fonts is None:
            self._fonts = FontCatalog.build(self._env.fonts_dir)

        imported = file_manager.load_repo(root, root)
        main_vid = to_virtual(root, Path(main).resolve()) if main else None
        if main_vid is None:
            sources = sorted(f.vid for f in imported if file_manager.is_source_path(f.vid.path))
            main_vid = DEFAULT_MAIN if DEFAULT_MAIN in sources else (sources[0] if sources else DEFAULT_MAIN)

        world = ProjectWorld(main_vid, fonts=self._fonts)
        for f in imported:
            world.add_file(f)

        self._root = root
        self._world = world
        self._buffers.clear()
        self._current = None
        self._renderer.clear()
        self._recent.add(ProjectCache(root, to_absolute(root, main_vid) if main else None))
        logger.info(f"Project opened: {root} ({len(imported)} files, main {main_vid})")

        self.project_opened.emit(str(root))
        self.files_changed.emit()
        self.current_changed.emit(None)
        if main_vid in world.sources():
            self.open_file(main_vid)
            self.request_preview()
        return True

    def set_main(self, vid: VirtualId):
        if self._world is None:
            return
        self._world.set_main(vid)
        self._recent.add(ProjectCache(self._root, to_absolute(self._root, vid)))
        self.files_changed.emit()

    # ── Buffers ───────────────────────────────

    def open_file(self, vid: VirtualId) -> bool:
        if self._world is None:
            return False
        if vid not in self._world.sources():
            self._notify("warning", "Can't open file", f"We can't open and preview this kind of file yet.\n{vid}")
            return False
        if vid not in self._buffers:
            self._buffers[vid] = Buffer(text=self._world.source(vid), is_saved=True)
        if self._current is not None and self._current != vid:
            self.flush(self._current)
        self._current = vid
        self.current_changed.emit(vid)
        return True

    def close_buffer(self, vid: VirtualId):
        self._buffers.pop(vid, None)
        if self._current == vid:
            self._current = None
            self.current_changed.emit(None)

    def set_buffer_text(self, text: str):
        """Called by the editor widget on every edit of the current buffer."""
        buffer = self._buffers.get(self._current) if self._current else None
        if buffer is None or buffer.text == text:
            return
        buffer.text = text
        buffer.is_saved = False
        if self._config.auto_preview_ms > 0:
            self._auto_preview_timer.start(self._config.auto_preview_ms)

    def flush(self, vid: Optional[VirtualId] = None):
        """Copy a buffer's text into the world (current buffer by default)."""
        vid = vid or self._current
        if self._world is None or vid is None or vid not in self._buffers:
            return
        self._world.replace_text(vid, self._buffers[vid].text)

    # ── Compile ───────────────────────────────

    def request_preview(self):
        self._auto_preview_timer.stop()
        if self._world is None:
            return
        self.flush()
        self._compile_request_id += 1
        worker = CompileWorker(self._compile_request_id, self._world.snapshot_clone(), self._compiler)
        worker.signals.finished.connect(lambda rid, doc, w=worker: self._on_compiled(w, rid, doc))
        worker.signals.failed.connect(lambda rid, err, w=worker: self._on_compile_failed(w, rid, err))
        self._start(worker)

    def _on_compiled(self, worker: CompileWorker, request_id: int, document: PagedDocument):
        self._workers.discard(worker)
        if request_id != self._compile_request_id:
            logger.debug(f"compile {request_id} superseded by {self._compile_request_id}")
            return
        if document.warnings:
            self.diagnostics_changed.emit("\n".join(f"warning: {w}" for w in document.warnings))
        else:
            self.diagnostics_changed.emit("")
        self._renderer.set_document(document)
        self.document_compiled.emit(document)

    def _on_compile_failed(self, worker: CompileWorker, request_id: int, error: CompileError):
        self._workers.discard(worker)
        if request_id != self._compile_request_id:
            return
        logger.warning(f"compile failed: {error}")
        self.diagnostics_changed.emit("\n".join(error.diagnostics))

    # ── Files ─────────────────────────────────

    def save_current(self):
        vid = self._current
        if self._world is None or vid is None:
            return
        self.flush(vid)
        text = self._buffers[vid].text
        root = self._root
        worker = TaskWorker(lambda: file_manager.save_file_disk(vid, text, root))
        worker.signals.finished.connect(lambda path, w=worker: self._on_saved(w, vid, text))
        worker.signals.failed.connect(lambda err, w=worker: self._on_task_failed(w, "File not saved!", err))
        self._start(worker)

    def _on_saved(self, worker: TaskWorker, vid: VirtualId, text: str):
        self._workers.discard(worker)
        buffer = self._buffers.get(vid)
        if buffer is not None and buffer.text == text:
            buffer.is_saved = True
        self.files_changed.emit()

    def _on_task_failed(self, worker: TaskWorker, title: str, error: Exception):
        self._workers.discard(worker)
        self._notify("error", title, str(error))

    def create_file(self, relative_name: str) -> Optional[VirtualId]:
        if self._world is None:
            return None
        path = (self._root / relative_name).resolve()
        if to_virtual(self._root, path) is None:
            self._notify("error", "Can't create file", f"{relative_name} is outside the project")
            return None
        try:
            file_manager.create_file(path)
            imported = file_manager.load_file(path, self._root)
        except (OSError, ValueError) as e:
            self._notify("error", "Can't create file", str(e))
            return None
        self._world.add_file(imported)
        self.files_changed.emit()
        if file_manager.is_source_path(path):
            self.open_file(imported.vid)
        return imported.vid

    def upload_file(self, src: Path) -> Optional[VirtualId]:
        """Copy an outside file into the project root and load it into the world."""
        if self._world is None:
            return None
        src = Path(src)
        vid = to_virtual(self._root, self._root / src.name)
        if vid in self._world or (self._root / src.name).exists():
            self._notify("error", "Can't upload file",
                         "File with the same name already exists in the project.")
            return None
        try:
            target = file_manager.upload_file(src, self._root)
        except OSError as e:
            self._notify("error", "Can't upload file!", str(e))
            return None
        try:
            imported = file_manager.load_file(target, self._root)
        except (OSError, ValueError, UnicodeDecodeError) as e:
            target.unlink(missing_ok=True)
            self._notify("error", "Can't upload file!", str(e))
            return None
        self._world.add_file(imported)
        self.files_changed.emit()
        self._notify("info", "File imported", str(target))
        return imported.vid

    def delete_file(self, vid: VirtualId) -> bool:
        if self._world is None:
            return False
        try:
            file_manager.delete_file_from_disk(vid, self._root)
        except FileNotFoundError:
            logger.warning(f"{vid} already gone from disk")
        except OSError as e:
            self._notify("error", "Can't delete file", str(e))
            return False
        self.close_buffer(vid)
        self._world.remove(vid)
        self.files_changed.emit()
        # pages compiled from the old file set are no longer valid
        self._renderer.clear()
        self.request_preview()
        return True

    # ── Export ────────────────────────────────

    def _export(self, fn: Callable[[ProjectWorld], object]):
        if self._world is None:
            return
        self.flush()
        snapshot = self._world.snapshot_clone()
        worker = TaskWorker(lambda: fn(snapshot))
        worker.signals.finished.connect(lambda result, w=worker: self._on_exported(w, result))
        worker.signals.failed.connect(lambda err, w=worker: self._on_task_failed(w, "Export failed", err))
        self._start(worker)

    def _on_exported(self, worker: TaskWorker, result):
        self._workers.discard(worker)
        if isinstance(result, list):
            message = f"{len(result)} page image(s) written"
        else:
            message = str(result)
        self._notify("info", "Project exported", message)

    def export_pdf(self, output_path: Path):
        self._export(lambda world: file_manager.export_pdf(world, output_path, self._compiler))

    def export_images(self, output_path: Path, zoom: float = 2.0):
        self._export(lambda world: file_manager.export_images(world, output_path, zoom, self._compiler))

    def export_template(self, vid: VirtualId) -> Optional[Path]:
        """Copy the saved file on disk into the templates directory."""
        if self._root is None:
            return None
        try:
            target = file_manager.export_template(to_absolute(self._root, vid), self._env.templates_dir)
        except ExportError as e:
            self._notify("error", "Export failed", str(e))
            return None
        self._notify("info", "Template exported", str(target))
        return target
