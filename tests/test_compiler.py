from __future__ import annotations

import fitz
import pytest

from compiler import MarkdownCompiler, PagedDocument, PdfRasterizer, compile_document, read_page_geometry
from conftest import FakeCompiler
from errors import CompileError, NotFoundError, RenderError
from file_identity import VirtualId
from fonts import FontCatalog
from world import ProjectWorld

MAIN = VirtualId("/main.md")
PNG_MAGIC = b"\x89PNG"


@pytest.fixture(scope="module")
def catalog() -> FontCatalog:
    return FontCatalog.build(None)


def _world(text: str, fonts) -> ProjectWorld:
    world = ProjectWorld(MAIN, fonts=fonts)
    world.insert_source(MAIN, text)
    return world


def _tiny_png() -> bytes:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 4, 4), False)
    pix.clear_with(200)
    return pix.tobytes("png")


def _blank_pdf(*sizes) -> bytes:
    doc = fitz.open()
    for width, height in sizes:
        doc.new_page(width=width, height=height)
    data = doc.tobytes()
    doc.close()
    return data


# ── Pipeline ───────────────────────────────

def test_pipeline_collects_warnings(no_fonts) -> None:
    world = _world("a\fb", no_fonts)
    document = compile_document(world, FakeCompiler(warnings=["careful"]))
    assert document.page_count == 2
    assert document.warnings == ("careful",)


def test_missing_main_is_a_compile_error(no_fonts) -> None:
    world = _world("text", no_fonts)
    world.set_main(VirtualId("/ghost.md"))
    with pytest.raises(CompileError) as info:
        compile_document(world, FakeCompiler())
    assert info.value.missing == VirtualId("/ghost.md")
    assert isinstance(info.value.__cause__, NotFoundError)
    assert "ghost.md" in info.value.diagnostics[0]

    # the world is untouched and still compiles once main is valid
    world.set_main(MAIN)
    assert compile_document(world, FakeCompiler()).page_count == 1


def test_unexpected_compiler_failure_is_wrapped(no_fonts) -> None:
    class Exploding:
        def compile(self, world):
            raise RuntimeError("kaboom")

    with pytest.raises(CompileError, match="kaboom"):
        compile_document(_world("x", no_fonts), Exploding())


def test_each_document_gets_a_new_revision() -> None:
    a = PagedDocument(b"", ())
    b = PagedDocument(b"", ())
    assert b.revision > a.revision


# ── Markdown backend ───────────────────────

def test_markdown_compiles_to_pdf(catalog) -> None:
    world = _world("# Title\n\nHello *world*, today is {{ today }}.\n\n- one\n- two\n", catalog)
    document = compile_document(world, MarkdownCompiler())
    assert document.pdf_bytes.startswith(b"%PDF")
    assert document.page_count == 1
    assert document.pages[0].width == pytest.approx(595, abs=1)
    assert document.warnings == ()


def test_long_markdown_spans_pages(catalog) -> None:
    text = "\n\n".join(f"Paragraph {i} " + "lorem ipsum " * 40 for i in range(80))
    document = compile_document(_world(text, catalog), MarkdownCompiler())
    assert document.page_count > 1
    assert read_page_geometry(document.pdf_bytes) == document.pages


def test_front_matter_changes_paper_and_warns_on_unknown_keys(catalog) -> None:
    text = "---\npaper: letter\ncolour: red\nfont: Times\n---\n\nBody\n"
    document = compile_document(_world(text, catalog), MarkdownCompiler())
    assert document.pages[0].width == pytest.approx(612, abs=1)
    assert any("colour" in w for w in document.warnings)


def test_unknown_paper_fails(catalog) -> None:
    with pytest.raises(CompileError, match="paper"):
        compile_document(_world("---\npaper: napkin\n---\n\nx\n", catalog), MarkdownCompiler())


def test_invalid_today_offset_is_a_warning(catalog) -> None:
    document = compile_document(_world("Date {{ today:+99 }}\n", catalog), MarkdownCompiler())
    assert any("+99" in w for w in document.warnings)


def test_images_are_resolved_through_the_world(catalog) -> None:
    world = _world("![logo](images/logo.png)\n\n![web](https://example.com/x.png)\n", catalog)
    world.insert_asset(VirtualId("/images/logo.png"), _tiny_png())
    document = compile_document(world, MarkdownCompiler())
    assert document.page_count == 1
    assert any("remote image" in w for w in document.warnings)


def test_missing_image_names_the_file(catalog) -> None:
    world = _world("![x](nope.png)\n", catalog)
    with pytest.raises(CompileError) as info:
        compile_document(world, MarkdownCompiler())
    assert info.value.missing == VirtualId("/nope.png")


# ── Rasterizer ─────────────────────────────

def test_rasterizer_returns_png() -> None:
    pdf = _blank_pdf((100, 200), (300, 100))
    document = PagedDocument(pdf, read_page_geometry(pdf))
    png = PdfRasterizer(device_pixel_ratio=1.0).rasterize(document, 1, 0.5)
    assert png.startswith(PNG_MAGIC)
    pix = fitz.Pixmap(png)
    assert (pix.width, pix.height) == (150, 50)


def test_rasterizer_failure_is_a_render_error() -> None:
    pdf = _blank_pdf((100, 200))
    document = PagedDocument(pdf, read_page_geometry(pdf))
    with pytest.raises(RenderError) as info:
        PdfRasterizer().rasterize(document, 5, 1.0)
    assert info.value.page_index == 5
