from __future__ import annotations

import pytest

import file_manager
from conftest import PAGE_BREAK, FakeCompiler, FakeRasterizer
from errors import ExportError
from file_identity import VirtualId
from world import Asset, ProjectWorld, Source

MAIN = VirtualId("/main.md")


def test_load_file_picks_kind_by_extension(project) -> None:
    source = file_manager.load_file(project / "main.md", project)
    asset = file_manager.load_file(project / "images" / "logo.png", project)
    assert source.vid == MAIN and isinstance(source.entry, Source)
    assert asset.vid == VirtualId("/images/logo.png") and isinstance(asset.entry, Asset)


def test_load_file_rejects_outside_and_extensionless(project, tmp_path) -> None:
    (tmp_path / "stray.md").write_text("x")
    with pytest.raises(FileNotFoundError):
        file_manager.load_file(tmp_path / "stray.md", project)
    (project / "Makefile").write_text("all:")
    with pytest.raises(ValueError):
        file_manager.load_file(project / "Makefile", project)


def test_load_repo_skips_hidden_and_unreadable(project) -> None:
    (project / "LICENSE").write_text("mit")
    (project / "bad.md").write_bytes(b"\xff\xfe\x00bad")
    vids = [f.vid for f in file_manager.load_repo(project, project)]
    assert vids == [MAIN, VirtualId("/notes.md"), VirtualId("/images/logo.png")]


def test_save_is_atomic_and_creates_dirs(tmp_path) -> None:
    path = file_manager.save_file_disk(VirtualId("/deep/dir/a.md"), "text", tmp_path)
    assert path.read_text(encoding="utf-8") == "text"
    assert [p.name for p in path.parent.iterdir()] == ["a.md"]


def test_upload_refuses_existing_target(project, tmp_path) -> None:
    src = tmp_path / "notes.md"
    src.write_text("other")
    with pytest.raises(FileExistsError):
        file_manager.upload_file(src, project)
    assert (project / "notes.md").read_text() == "notes"


@pytest.fixture
def world(no_fonts) -> ProjectWorld:
    w = ProjectWorld(MAIN, fonts=no_fonts)
    w.insert_source(MAIN, f"a{PAGE_BREAK}b{PAGE_BREAK}c")
    return w


def test_export_pdf_forces_suffix(world, tmp_path) -> None:
    out = file_manager.export_pdf(world, tmp_path / "book.txt", FakeCompiler())
    assert out == tmp_path / "book.pdf"
    assert out.exists()


def test_export_images_names_pages(world, tmp_path) -> None:
    paths = file_manager.export_images(world, tmp_path / "book.png", 1.0, FakeCompiler(), FakeRasterizer())
    assert [p.name for p in paths] == ["book-0.png", "book-1.png", "book-2.png"]
    assert paths[1].read_bytes() == b"page-1@1.0"


def test_export_images_skips_failed_pages(world, tmp_path) -> None:
    paths = file_manager.export_images(world, tmp_path / "book", 1.0, FakeCompiler(), FakeRasterizer(fail_on={1}))
    assert [p.name for p in paths] == ["book-0.png", "book-2.png"]


def test_export_images_fails_when_nothing_renders(world, tmp_path) -> None:
    with pytest.raises(ExportError):
        file_manager.export_images(world, tmp_path / "book", 1.0, FakeCompiler(), FakeRasterizer(fail_on={0, 1, 2}))


def test_export_template_copies_file(project, env) -> None:
    target = file_manager.export_template(project / "notes.md", env.templates_dir)
    assert target.read_text() == "notes"
    with pytest.raises(ExportError):
        file_manager.export_template(project / "missing.md", env.templates_dir)
