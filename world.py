"""
world.py — Project world: the virtual file system handed to the compiler

Holds the source texts and asset bytes of the open project keyed by
VirtualId, the font catalog and the id of the main file. Compile and export
tasks always receive a snapshot_clone() and never the live world.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from errors import NotFoundError
from file_identity import VirtualId
from fonts import FontBook, FontCatalog, FontEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Source:
    text: str


@dataclass(frozen=True)
class Asset:
    data: bytes


ProjectEntry = Union[Source, Asset]


@dataclass(frozen=True)
class ImportedFile:
    """A file loaded from disk, ready to be added to a world."""
    vid: VirtualId
    entry: ProjectEntry


class ProjectStore:
    """VirtualId -> Source | Asset. One entry per id, inserts overwrite."""

    def __init__(self):
        self._sources: dict[VirtualId, Source] = {}
        self._assets: dict[VirtualId, Asset] = {}

    def insert(self, vid: VirtualId, entry: ProjectEntry):
        if isinstance(entry, Source):
            self._assets.pop(vid, None)
            self._sources[vid] = entry
        else:
            self._sources.pop(vid, None)
            self._assets[vid] = entry

    def remove(self, vid: VirtualId):
        self._sources.pop(vid, None)
        self._assets.pop(vid, None)

    def get(self, vid: VirtualId) -> Optional[ProjectEntry]:
        return self._sources.get(vid) or self._assets.get(vid)

    def source(self, vid: VirtualId) -> Optional[Source]:
        return self._sources.get(vid)

    def asset(self, vid: VirtualId) -> Optional[Asset]:
        return self._assets.get(vid)

    def source_ids(self) -> list[VirtualId]:
        return sorted(self._sources)

    def asset_ids(self) -> list[VirtualId]:
        return sorted(self._assets)

    def copy(self) -> "ProjectStore":
        # entries are frozen, copying the maps is enough to stop aliasing
        clone = ProjectStore()
        clone._sources = dict(self._sources)
        clone._assets = dict(self._assets)
        return clone

    def __contains__(self, vid) -> bool:
        return vid in self._sources or vid in self._assets

    def __len__(self) -> int:
        return len(self._sources) + len(self._assets)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ProjectStore):
            return NotImplemented
        return self._sources == other._sources and self._assets == other._assets


class ProjectWorld:
    """The compiler's view of a project.

    Compiler-facing accessors: main(), source(), file(), font(), today(),
    plus book() for font lookup.
    """

    def __init__(self, main: VirtualId, fonts: Optional[FontCatalog] = None, env=None):
        self._main = main
        if fonts is None:
            fonts = FontCatalog.build(env.fonts_dir if env is not None else None)
        self._fonts = fonts
        self._store = ProjectStore()

    # ── Mutation (UI thread only) ─────────────

    def insert_source(self, vid: VirtualId, text: str):
        self._store.insert(vid, Source(text))

    def insert_asset(self, vid: VirtualId, data: bytes):
        self._store.insert(vid, Asset(bytes(data)))

    def add_file(self, imported: ImportedFile):
        self._store.insert(imported.vid, imported.entry)

    def replace_text(self, vid: VirtualId, text: str):
        """Replace the text of an existing source. Unknown ids are ignored."""
        if self._store.source(vid) is None:
            logger.debug(f"replace_text ignored, no source for {vid}")
            return
        self._store.insert(vid, Source(text))

    def remove(self, vid: VirtualId):
        self._store.remove(vid)

    def set_main(self, vid: VirtualId):
        self._main = vid

    def snapshot_clone(self) -> "ProjectWorld":
        clone = ProjectWorld.__new__(ProjectWorld)
        clone._main = self._main
        clone._fonts = self._fonts  # immutable, shared
        clone._store = self._store.copy()
        return clone

    # ── Compiler accessors ────────────────────

    def main(self) -> VirtualId:
        return self._main

    def source(self, vid: VirtualId) -> str:
        entry = self._store.source(vid)
        if entry is None:
            raise NotFoundError(vid)
        return entry.text

    def file(self, vid: VirtualId) -> bytes:
        entry = self._store.asset(vid)
        if entry is None:
            raise NotFoundError(vid)
        return entry.data

    def font(self, index: int) -> Optional[FontEntry]:
        return self._fonts.font(index)

    def book(self) -> FontBook:
        return self._fonts.book

    def today(self, offset: Optional[int] = None) -> Optional[dt.date]:
        """Current date at UTC+``offset`` hours, or the local date when offset is None."""
        if offset is None:
            return dt.datetime.now().astimezone().date()
        try:
            tz = dt.timezone(dt.timedelta(hours=int(offset)))
        except (TypeError, ValueError, OverflowError):
            return None
        return dt.datetime.now(tz).date()

    # ── Introspection ─────────────────────────

    @property
    def fonts(self) -> FontCatalog:
        return self._fonts

    @property
    def store(self) -> ProjectStore:
        return self._store

    def entry(self, vid: VirtualId) -> Optional[ProjectEntry]:
        return self._store.get(vid)

    def sources(self) -> list[VirtualId]:
        return self._store.source_ids()

    def assets(self) -> list[VirtualId]:
        return self._store.asset_ids()

    def ids(self) -> Iterator[VirtualId]:
        return iter(sorted(self._store.source_ids() + self._store.asset_ids()))

    def __contains__(self, vid) -> bool:
        return vid in self._store

    def __repr__(self) -> str:
        return (
            f"ProjectWorld(main={self._main}, sources={len(self.sources())}, "
            f"assets={len(self.assets())}, fonts={len(self._fonts)})"
        )
