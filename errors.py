"""
errors.py — Exception types shared by the world, compiler, preview and exports
"""

from __future__ import annotations

from typing import Optional


class TideError(Exception):
    """Base class for every failure raised by Tide itself."""


class NotFoundError(TideError, LookupError):
    """A virtual file id is absent from the project store."""

    def __init__(self, vid):
        super().__init__(f"file not found: {vid}")
        self.vid = vid


class CompileError(TideError):
    """The compiler reported unrecoverable diagnostics."""

    def __init__(self, message: str, diagnostics: Optional[list[str]] = None, missing=None):
        super().__init__(message)
        self.message = message
        self.diagnostics: list[str] = list(diagnostics or [message])
        self.missing = missing  # VirtualId of the file that could not be resolved


class RenderError(TideError):
    """Rasterization or image encoding failed for a single page."""

    def __init__(self, page_index: int, reason: str):
        super().__init__(f"page {page_index + 1}: {reason}")
        self.page_index = page_index


class ExportError(TideError):
    """Export could not produce its output (PDF generation or file write)."""


class FontLoadError(TideError):
    """A font file could not be parsed."""
