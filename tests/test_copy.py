import pytest

from cratesfyi.copy import copy_dir, copy_doc_dir


def _make_tree(root):
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "a.rs").write_text("fn main() {}")
    (root / "sub" / "b.css").write_text("body {}")
    (root / "sub" / "deeper" / "c.txt").write_text("text")


def test_copy_dir(tmp_path):
    source = tmp_path / "src"
    _make_tree(source)
    destination = tmp_path / "dest"
    copy_dir(source, destination)
    assert (destination / "a.rs").read_text() == "fn main() {}"
    assert (destination / "sub" / "b.css").read_text() == "body {}"
    assert (destination / "sub" / "deeper" / "c.txt").read_text() == "text"


def test_copy_dir_missing_source(tmp_path):
    with pytest.raises(FileNotFoundError):
        copy_dir(tmp_path / "missing", tmp_path / "dest")


def test_copy_doc_dir_skips_shared_files(tmp_path):
    doc = tmp_path / "target" / "doc"
    (doc / "mycrate").mkdir(parents=True)
    (doc / "mycrate" / "index.html").write_text("<html></html>")
    (doc / "search-index.js").write_text("var x;")
    for name in ["rustdoc.css", "main-20160523.js", "theme-20160523.js", ".lock", "fonts.woff"]:
        (doc / name).write_text("shared")

    destination = tmp_path / "dest"
    copy_doc_dir(tmp_path / "target", destination, "rustc 1.10.0-nightly (57ef01513 2016-05-23)")

    copied = sorted(p.relative_to(destination).as_posix() for p in destination.rglob("*"))
    assert copied == ["mycrate", "mycrate/index.html", "search-index.js"]


def test_copy_doc_dir_creates_destination(tmp_path):
    doc = tmp_path / "target" / "doc"
    doc.mkdir(parents=True)
    (doc / "page.html").write_text("ok")
    destination = tmp_path / "a" / "b" / "c"
    copy_doc_dir(tmp_path / "target", destination, "")
    assert (destination / "page.html").read_text() == "ok"