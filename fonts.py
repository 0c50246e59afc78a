"""
fonts.py — Font catalog handed to the compiler

Built once per world: PyMuPDF's built-in faces first, then every font file
found in the user font directory. Files that fail to parse are logged and
skipped, the catalog itself always builds.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import fitz  # PyMuPDF

from errors import FontLoadError

logger = logging.getLogger(__name__)

FONT_EXTENSIONS = (".ttf", ".otf", ".ttc", ".otc")

# MuPDF Base-14 faces (no file I/O, always available)
BUNDLED_FONTS = ("tiro", "tibo", "tiit", "tibi", "helv", "hebo", "cour")

_STYLE_WORDS = re.compile(
    r"[\s_-]*(regular|bold|italic|oblique|semibold|medium|light|black|roman|book)+$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class FontEntry:
    data: bytes
    name: str
    family: str
    bold: bool = False
    italic: bool = False
    monospaced: bool = False
    glyph_count: int = 0
    origin: str = ""  # "builtin:<name>" or the file path


def _family_of(name: str) -> str:
    family = name.split("-", 1)[0] if "-" in name else name
    family = _STYLE_WORDS.sub("", family).strip()
    return family or name


def _entry_from_font(font: fitz.Font, data: bytes, origin: str) -> FontEntry:
    name = font.name or Path(origin).stem
    lowered = name.lower()
    return FontEntry(
        data=data,
        name=name,
        family=_family_of(name),
        bold=bool(font.is_bold) or "bold" in lowered,
        italic=bool(font.is_italic) or "italic" in lowered or "oblique" in lowered,
        monospaced=bool(font.is_monospaced),
        glyph_count=font.glyph_count,
        origin=origin,
    )


def parse_font(data: bytes, origin: str = "") -> FontEntry:
    """Parse one font binary. Raises FontLoadError when MuPDF rejects it."""
    if not data:
        raise FontLoadError(f"{origin}: empty font file")
    try:
        font = fitz.Font(fontbuffer=data)
    except Exception as e:
        raise FontLoadError(f"{origin}: {e}") from e
    if font.glyph_count <= 0:
        raise FontLoadError(f"{origin}: no glyphs")
    return _entry_from_font(font, data, origin)


def default_fonts() -> list[FontEntry]:
    entries = []
    for code in BUNDLED_FONTS:
        try:
            font = fitz.Font(code)
            entries.append(_entry_from_font(font, font.buffer, f"builtin:{code}"))
        except Exception as e:
            logger.warning(f"Built-in font {code} unavailable: {e}")
    return entries


def load_fonts(font_dir: Optional[Path]) -> list[FontEntry]:
    """Loads every parsable font under ``font_dir`` (recursively, sorted by path)."""
    if font_dir is None or not Path(font_dir).is_dir():
        return []
    entries = []
    for path in sorted(Path(font_dir).rglob("*")):
        if not path.is_file() or path.suffix.lower() not in FONT_EXTENSIONS:
            continue
        try:
            entries.append(parse_font(path.read_bytes(), str(path)))
            logger.info(f"font found: {path}")
        except (OSError, FontLoadError) as e:
            logger.warning(f"Skipping font {path}: {e}")
    return entries


# ─────────────────────────────────────────────
# Font book & catalog
# ─────────────────────────────────────────────

class FontBook:
    """Lookup metadata: lowercase family name -> catalog indices."""

    def __init__(self, entries: list[FontEntry]):
        self._families: dict[str, list[int]] = {}
        for i, entry in enumerate(entries):
            self._families.setdefault(entry.family.lower(), []).append(i)
        self._entries = entries

    def families(self) -> list[str]:
        return sorted({self._entries[ids[0]].family for ids in self._families.values()})

    def indices(self, family: str) -> list[int]:
        return list(self._families.get(family.lower(), []))

    def select(self, family: str, bold: bool = False, italic: bool = False) -> Optional[int]:
        """Best face of ``family`` for the requested style, or None for an unknown family."""
        ids = self._families.get(family.lower())
        if not ids:
            return None
        for i in ids:
            entry = self._entries[i]
            if entry.bold == bold and entry.italic == italic:
                return i
        return ids[0]


class FontCatalog:
    """Index-addressable, immutable list of fonts plus its FontBook."""

    def __init__(self, entries: list[FontEntry]):
        self._entries = tuple(entries)
        self._book = FontBook(list(self._entries))

    @classmethod
    def build(cls, user_font_dir: Optional[Path] = None, include_defaults: bool = True) -> "FontCatalog":
        entries = default_fonts() if include_defaults else []
        entries.extend(load_fonts(user_font_dir))
        logger.info(f"Font catalog built with {len(entries)} faces")
        return cls(entries)

    @property
    def book(self) -> FontBook:
        return self._book

    def font(self, index: int) -> Optional[FontEntry]:
        if 0 <= index < len(self._entries):
            return self._entries[index]
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FontEntry]:
        return iter(self._entries)
