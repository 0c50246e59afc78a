"""
file_identity.py — Mapping between file-system paths and project-relative ids

A VirtualId is the path of a file relative to the project root, written in
POSIX form with a leading "/" ("/chapters/intro.md"). The root itself maps
to "/".
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Union

PathLike = Union[str, os.PathLike]


@dataclass(frozen=True, order=True)
class VirtualId:
    path: str

    def __post_init__(self):
        object.__setattr__(self, "path", _normalize(self.path))

    @property
    def parts(self) -> tuple[str, ...]:
        return PurePosixPath(self.path).parts[1:]

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def suffix(self) -> str:
        return PurePosixPath(self.path).suffix.lower()

    @property
    def parent(self) -> "VirtualId":
        return VirtualId(str(PurePosixPath(self.path).parent))

    def join(self, relative: str) -> "VirtualId":
        """Resolve ``relative`` against this id's directory ("../" allowed, clamped at root)."""
        if relative.startswith("/"):
            return VirtualId(relative)
        return VirtualId(str(PurePosixPath(self.path).parent / relative))

    def rootless(self) -> str:
        return self.path.lstrip("/")

    def __str__(self) -> str:
        return self.path


def _normalize(path: str) -> str:
    if os.sep == "\\":
        path = path.replace("\\", "/")
    parts: list[str] = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    return "/" + "/".join(parts)


def to_virtual(root: PathLike, absolute_path: PathLike) -> Optional[VirtualId]:
    """Returns the VirtualId of ``absolute_path`` or None when it is not under ``root``."""
    try:
        relative = Path(absolute_path).relative_to(Path(root))
    except ValueError:
        return None
    if ".." in relative.parts:
        return None
    return VirtualId(relative.as_posix())


def to_absolute(root: PathLike, vid: VirtualId) -> Path:
    root = Path(root)
    if not vid.parts:
        return root
    return root.joinpath(*vid.parts)
