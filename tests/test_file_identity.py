from __future__ import annotations

import os
from pathlib import Path

import pytest

from file_identity import VirtualId, to_absolute, to_virtual


def test_round_trip_inside_root(tmp_path) -> None:
    path = tmp_path / "chapters" / "intro.md"
    vid = to_virtual(tmp_path, path)
    assert vid == VirtualId("/chapters/intro.md")
    assert to_absolute(tmp_path, vid) == path


def test_outside_root_has_no_id(tmp_path) -> None:
    assert to_virtual(tmp_path / "project", tmp_path / "other" / "a.md") is None


def test_root_maps_to_slash(tmp_path) -> None:
    vid = to_virtual(tmp_path, tmp_path)
    assert vid == VirtualId("/")
    assert vid.parts == ()
    assert to_absolute(tmp_path, vid) == Path(tmp_path)


def test_normalization() -> None:
    assert VirtualId("a/b/./c.md").path == "/a/b/c.md"
    assert VirtualId("/../../x.md").path == "/x.md"
    assert VirtualId("/A/Pic.PNG").suffix == ".png"


def test_join_is_relative_to_parent_directory() -> None:
    main = VirtualId("/chapters/intro.md")
    assert main.join("img/a.png") == VirtualId("/chapters/img/a.png")
    assert main.join("../logo.png") == VirtualId("/logo.png")
    assert main.join("/abs.png") == VirtualId("/abs.png")
    assert main.join("img/a.png").rootless() == "chapters/img/a.png"


@pytest.mark.skipif(os.sep != "/", reason="backslash is a separator on Windows")
def test_backslash_is_part_of_a_posix_name(tmp_path) -> None:
    path = tmp_path / "notes\\draft.md"
    vid = to_virtual(tmp_path, path)
    assert vid.parts == ("notes\\draft.md",)
    assert to_absolute(tmp_path, vid) == path
