"""
compiler.py — Compile pipeline, Markdown backend and page rasterizer

compile_document() runs a Compiler against a world snapshot and returns an
immutable PagedDocument (PDF bytes plus page geometry). The default backend
renders Markdown with markdown-it-py and typesets it with PyMuPDF's Story
layout engine, entirely in memory.
"""

from __future__ import annotations

import io
import itertools
import logging
import re
from dataclasses import dataclass, field, replace
from typing import NamedTuple, Optional, Protocol

import fitz  # PyMuPDF
from markdown_it import MarkdownIt
from mdit_py_plugins.front_matter import front_matter_plugin

from errors import CompileError, NotFoundError, RenderError
from file_identity import VirtualId

logger = logging.getLogger(__name__)

_REVISIONS = itertools.count(1)

MAX_PAGES = 5000


# ─────────────────────────────────────────────
# Document model
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class PageGeometry:
    width: float
    height: float


@dataclass(frozen=True)
class PagedDocument:
    """Compiled output. Immutable, so it can be shared with render workers."""
    pdf_bytes: bytes
    pages: tuple[PageGeometry, ...]
    warnings: tuple[str, ...] = ()
    revision: int = field(default_factory=lambda: next(_REVISIONS))

    @property
    def page_count(self) -> int:
        return len(self.pages)


class Warned(NamedTuple):
    output: PagedDocument
    warnings: list[str]


class Compiler(Protocol):
    def compile(self, world) -> Warned:
        ...


class Rasterizer(Protocol):
    def rasterize(self, document: PagedDocument, page_index: int, zoom: float) -> bytes:
        ...


def read_page_geometry(pdf_bytes: bytes) -> tuple[PageGeometry, ...]:
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return tuple(PageGeometry(page.rect.width, page.rect.height) for page in doc)


# ─────────────────────────────────────────────
# Markdown backend
# ─────────────────────────────────────────────

_TODAY = re.compile(r"\{\{\s*today(?:\s*:\s*([+-]?\d+))?\s*\}\}")
_REMOTE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")

BASE_CSS = """
body { font-family: %(family)s; }
h1, h2, h3, h4 { font-family: %(family)s; }
code, pre { font-family: monospace; }
pre { background: #f4f4f4; padding: 4px; }
table { border-collapse: collapse; }
th, td { border: 1px solid #999; padding: 2px 6px; }
img { max-width: 100%%; }
"""


class MarkdownCompiler:
    """Markdown -> HTML -> paginated PDF.

    An optional front-matter block selects layout settings::

        ---
        font: Libertinus Serif
        size: 12
        paper: letter
        margin: 48
        ---
    """

    def __init__(self, paper: str = "a4", margin: float = 56.0, font_size: float = 11.0):
        self.paper = paper
        self.margin = margin
        self.font_size = font_size
        self._md = MarkdownIt(
            "commonmark",
            {"html": False, "typographer": True},
        ).enable("table").enable("strikethrough")
        self._md.use(front_matter_plugin)

    def compile(self, world) -> Warned:
        main = world.main()
        text = world.source(main)
        warnings: list[str] = []

        text = self._expand_today(text, world, warnings)
        tokens = self._md.parse(text)
        options = self._read_front_matter(tokens, warnings)
        archive = fitz.Archive()
        self._embed_images(tokens, main, world, archive, warnings)
        css = self._font_css(world, archive, options, warnings)
        tokens = [t for t in tokens if t.type != "front_matter"]
        body = self._md.renderer.render(tokens, self._md.options, {})

        pdf_bytes = self._layout(body, css, archive, options)
        pages = read_page_geometry(pdf_bytes)
        return Warned(PagedDocument(pdf_bytes=pdf_bytes, pages=pages), warnings)

    def _expand_today(self, text: str, world, warnings: list[str]) -> str:
        def _sub(match: re.Match) -> str:
            offset = int(match.group(1)) if match.group(1) is not None else None
            date = world.today(offset)
            if date is None:
                warnings.append(f"invalid UTC offset in {match.group(0)!r}")
                return match.group(0)
            return date.isoformat()

        return _TODAY.sub(_sub, text)

    def _read_front_matter(self, tokens, warnings: list[str]) -> dict:
        options = {"paper": self.paper, "margin": self.margin, "size": self.font_size, "font": None}
        for token in tokens:
            if token.type != "front_matter":
                continue
            for line in token.content.splitlines():
                if not line.strip() or line.lstrip().startswith("#"):
                    continue
                key, sep, value = line.partition(":")
                key, value = key.strip().lower(), value.strip()
                if not sep or key not in options:
                    warnings.append(f"unknown front matter line: {line.strip()!r}")
                    continue
                if key in ("margin", "size"):
                    try:
                        options[key] = float(value)
                    except ValueError:
                        warnings.append(f"front matter {key!r} must be a number, got {value!r}")
                else:
                    options[key] = value
        return options

    def _embed_images(self, tokens, main: VirtualId, world, archive: fitz.Archive, warnings: list[str]):
        embedded: set[VirtualId] = set()
        for token in tokens:
            for child in token.children or []:
                if child.type != "image":
                    continue
                src = child.attrGet("src") or ""
                if not src or _REMOTE.match(src):
                    warnings.append(f"remote image skipped: {src}")
                    child.type = "text"
                    continue
                vid = main.join(src)
                data = world.file(vid)  # NotFoundError propagates
                if vid not in embedded:
                    archive.add(data, vid.rootless())
                    embedded.add(vid)
                child.attrSet("src", vid.rootless())

    def _font_css(self, world, archive: fitz.Archive, options: dict, warnings: list[str]) -> str:
        faces = []
        index = 0
        while True:
            entry = world.font(index)
            if entry is None:
                break
            # built-in faces are already known to MuPDF by generic family
            if not entry.origin.startswith("builtin:"):
                name = f"fonts/font-{index}"
                archive.add(entry.data, name)
                faces.append(
                    "@font-face { font-family: '%s'; src: url(%s); font-weight: %s; font-style: %s; }"
                    % (entry.family, name, "bold" if entry.bold else "normal",
                       "italic" if entry.italic else "normal")
                )
            index += 1

        family = "serif"
        requested = options.get("font")
        if requested:
            if world.book().select(requested) is None:
                warnings.append(f"unknown font family: {requested}")
            else:
                family = f"'{requested}', serif"
        return "\n".join(faces) + BASE_CSS % {"family": family}

    def _layout(self, body: str, css: str, archive: fitz.Archive, options: dict) -> bytes:
        try:
            mediabox = fitz.paper_rect(str(options["paper"]).lower())
        except Exception as e:
            raise CompileError(f"unknown paper size {options['paper']!r}") from e
        # MuPDF reports unknown sizes as a degenerate rect
        if mediabox.is_empty:
            raise CompileError(f"unknown paper size {options['paper']!r}")
        m = options["margin"]
        where = mediabox + (m, m, -m, -m)
        if where.is_empty:
            raise CompileError(f"margin {m} leaves no room on {options['paper']} paper")

        buffer = io.BytesIO()
        story = fitz.Story(html=body, user_css=css, em=options["size"], archive=archive)
        writer = fitz.DocumentWriter(buffer)
        more = 1
        pages = 0
        while more:
            if pages >= MAX_PAGES:
                writer.close()
                raise CompileError(f"document exceeds {MAX_PAGES} pages")
            device = writer.begin_page(mediabox)
            more, _ = story.place(where)
            story.draw(device)
            writer.end_page()
            pages += 1
        writer.close()
        return buffer.getvalue()


# ─────────────────────────────────────────────
# Pipeline
# ─────────────────────────────────────────────

def default_compiler() -> Compiler:
    return MarkdownCompiler()


def compile_document(world, compiler: Optional[Compiler] = None) -> PagedDocument:
    """Compile the world's main file. Raises CompileError; never mutates ``world``."""
    compiler = compiler or default_compiler()
    logger.info(f"compiling {world.main()}...")
    try:
        output, warnings = compiler.compile(world)
    except NotFoundError as e:
        raise CompileError(str(e), missing=e.vid) from e
    except CompileError:
        raise
    except Exception as e:
        raise CompileError(f"Can't compile document: {e}") from e

    for warning in warnings:
        logger.warning(f"compile warning: {warning}")
    logger.info(f"compiled {output.page_count} page(s)")
    return replace(output, warnings=tuple(warnings))


# ─────────────────────────────────────────────
# Rasterizer
# ─────────────────────────────────────────────

class PdfRasterizer:
    """Renders one page of a PagedDocument to PNG bytes with PyMuPDF.

    Opens a thread-private fitz.Document per call, so it is safe to use from
    several pool threads at once.
    """

    def __init__(self, device_pixel_ratio: float = 2.0):
        self.device_pixel_ratio = device_pixel_ratio

    def rasterize(self, document: PagedDocument, page_index: int, zoom: float) -> bytes:
        scale = zoom * self.device_pixel_ratio
        try:
            with fitz.open(stream=document.pdf_bytes, filetype="pdf") as doc:
                page = doc[page_index]
                pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
                return pix.tobytes("png")
        except Exception as e:
            raise RenderError(page_index, str(e)) from e
