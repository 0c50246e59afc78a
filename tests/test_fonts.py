from __future__ import annotations

import pytest

from errors import FontLoadError
from fonts import BUNDLED_FONTS, FontCatalog, default_fonts, load_fonts, parse_font


def test_builtin_faces_load() -> None:
    entries = default_fonts()
    assert len(entries) == len(BUNDLED_FONTS)
    assert all(e.origin.startswith("builtin:") for e in entries)
    assert all(e.data for e in entries)


def test_catalog_skips_broken_user_fonts(tmp_path) -> None:
    (tmp_path / "broken.ttf").write_bytes(b"not a font at all")
    (tmp_path / "empty.otf").write_bytes(b"")
    (tmp_path / "readme.txt").write_text("ignored")

    assert load_fonts(tmp_path) == []
    catalog = FontCatalog.build(tmp_path)
    assert len(catalog) == len(BUNDLED_FONTS)


def test_missing_font_dir_is_fine(tmp_path) -> None:
    assert load_fonts(tmp_path / "nope") == []
    assert len(FontCatalog.build(None, include_defaults=False)) == 0


def test_parse_font_rejects_garbage() -> None:
    with pytest.raises(FontLoadError):
        parse_font(b"", "empty")
    with pytest.raises(FontLoadError):
        parse_font(b"\x00" * 64, "zeros")


def test_user_font_is_appended_after_builtins(tmp_path) -> None:
    builtin = FontCatalog.build(None)
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "copy.ttf").write_bytes(builtin.font(0).data)
    catalog = FontCatalog.build(tmp_path)
    assert len(catalog) == len(builtin) + 1
    assert catalog.font(len(builtin)).origin.endswith("copy.ttf")


def test_book_select() -> None:
    catalog = FontCatalog.build(None)
    book = catalog.book
    regular = book.select("times")
    bold = book.select("Times", bold=True)
    assert regular is not None and bold is not None
    assert not catalog.font(regular).bold
    assert catalog.font(bold).bold
    assert book.select("No Such Family") is None
    assert catalog.font(len(catalog)) is None
    assert catalog.font(-1) is None
