"""
file_manager.py — Disk side of a project: import, save, delete, upload, export
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from compiler import Compiler, PdfRasterizer, Rasterizer, compile_document
from errors import ExportError, RenderError
from file_identity import VirtualId, to_absolute, to_virtual
from world import Asset, ImportedFile, ProjectWorld, Source

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = (".md", ".markdown")
ASSET_EXTENSIONS = (".png", ".jpg", ".jpeg", ".svg", ".gif")
ALL_TYPES = SOURCE_EXTENSIONS + ASSET_EXTENSIONS


def is_source_path(path) -> bool:
    return Path(path).suffix.lower() in SOURCE_EXTENSIONS


# ─────────────────────────────────────────────
# Import
# ─────────────────────────────────────────────

def load_file(path: Path, root: Path) -> ImportedFile:
    """Load one file as a Source (by extension) or an Asset.

    Raises FileNotFoundError when ``path`` is outside ``root`` and ValueError
    for files without an extension.
    """
    path = Path(path)
    vid = to_virtual(root, path)
    if vid is None:
        raise FileNotFoundError(f"{path} is not inside project {root}")
    if not path.suffix:
        raise ValueError(f"Import error: {path.name} has no extension")
    if is_source_path(path):
        return ImportedFile(vid, Source(path.read_text(encoding="utf-8")))
    return ImportedFile(vid, Asset(path.read_bytes()))


def load_repo(path: Path, root: Path) -> list[ImportedFile]:
    """Recursively load every importable file under ``path``; unreadable files are skipped."""
    imported = []
    for dirpath, dirnames, filenames in os.walk(path):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            file_path = Path(dirpath) / name
            try:
                imported.append(load_file(file_path, root))
            except (OSError, ValueError, UnicodeDecodeError) as e:
                logger.info(f"Skipping {file_path}: {e}")
    return imported


# ─────────────────────────────────────────────
# Save / delete / create / upload
# ─────────────────────────────────────────────

def _write_atomic(path: Path, data: bytes):
    """Write via a temp file in the same directory, then replace (all-or-nothing)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def save_file_disk(vid: VirtualId, text: str, root: Path) -> Path:
    path = to_absolute(root, vid)
    _write_atomic(path, text.encode("utf-8"))
    logger.info(f"file saved at {path}")
    return path


def delete_file_from_disk(vid: VirtualId, root: Path):
    path = to_absolute(root, vid)
    path.unlink()
    logger.info(f"file deleted: {path}")


def create_file(path: Path) -> Path:
    """Create an empty file; FileExistsError if it is already there."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "x", encoding="utf-8"):
        pass
    logger.info(f"new file created: {path}")
    return path


def upload_file(src: Path, root: Path) -> Path:
    """Copy ``src`` into the project root. FileExistsError if the name is taken."""
    src = Path(src)
    target = Path(root) / src.name
    if target.exists():
        raise FileExistsError(f"A file named {src.name} already exists in the project.")
    _write_atomic(target, src.read_bytes())
    return target


# ─────────────────────────────────────────────
# Export
# ─────────────────────────────────────────────

def export_pdf(world: ProjectWorld, output_path: Path, compiler: Optional[Compiler] = None) -> Path:
    """Compile ``world`` and write it as ``<output_path>.pdf``."""
    document = compile_document(world, compiler)
    output_path = Path(output_path).with_suffix(".pdf")
    try:
        _write_atomic(output_path, document.pdf_bytes)
    except OSError as e:
        raise ExportError(f"Can't write file: {e}") from e
    logger.info(f"PDF exported to {output_path}")
    return output_path


def export_images(world: ProjectWorld, output_path: Path, zoom: float = 2.0,
                  compiler: Optional[Compiler] = None,
                  rasterizer: Optional[Rasterizer] = None) -> list[Path]:
    """Compile ``world`` and write one PNG per page as ``<base>-<index>.png``.

    Pages that fail to render are skipped and logged.
    """
    document = compile_document(world, compiler)
    rasterizer = rasterizer or PdfRasterizer(device_pixel_ratio=1.0)
    base = Path(output_path).with_suffix("")
    written = []
    for i in range(document.page_count):
        try:
            data = rasterizer.rasterize(document, i, zoom)
        except RenderError as e:
            logger.warning(f"Export skipped {e}")
            continue
        path = base.with_name(f"{base.name}-{i}.png")
        try:
            _write_atomic(path, data)
        except OSError as e:
            raise ExportError(f"Can't write file: {e}") from e
        written.append(path)
    if document.page_count and not written:
        raise ExportError("No page could be rendered")
    logger.info(f"{len(written)} page image(s) exported next to {base}")
    return written


def export_template(file_path: Path, templates_dir: Path) -> Path:
    """Copy a source file into the templates directory, keeping its name."""
    file_path = Path(file_path)
    target = Path(templates_dir) / file_path.name
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(file_path, target)
    except OSError as e:
        raise ExportError(f"Can't export template: {e}") from e
    return target
