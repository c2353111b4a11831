"""Tests for scorebook.storage.blob_store.LocalBlobStore."""
from __future__ import annotations

import pathlib

import pytest

from scorebook.storage.blob_store import LocalBlobStore


def test_write_read_delete(tmp_path: pathlib.Path) -> None:
    store = LocalBlobStore(tmp_path)
    path = store.write("a.png", b"abc")

    assert path == tmp_path / "a.png"
    assert store.exists("a.png")
    assert store.read("a.png") == b"abc"
    assert store.delete("a.png") is True
    assert not store.exists("a.png")


def test_write_never_overwrites(tmp_path: pathlib.Path) -> None:
    store = LocalBlobStore(tmp_path)
    store.write("a.png", b"first")
    with pytest.raises(FileExistsError):
        store.write("a.png", b"second")
    assert store.read("a.png") == b"first"


def test_write_creates_missing_root(tmp_path: pathlib.Path) -> None:
    store = LocalBlobStore(tmp_path / "nested" / "scores")
    store.write("a.png", b"x")
    assert (tmp_path / "nested" / "scores" / "a.png").is_file()


def test_missing_blob(tmp_path: pathlib.Path) -> None:
    store = LocalBlobStore(tmp_path)
    assert store.read("nope.png") is None
    assert store.delete("nope.png") is False


@pytest.mark.parametrize("name", ["", "  ", ".", "..", "../escape.png", "a/b.png", "a\\b.png"])
def test_rejects_unsafe_names(tmp_path: pathlib.Path, name: str) -> None:
    store = LocalBlobStore(tmp_path)
    with pytest.raises(ValueError):
        store.path_for(name)


def test_remove_quietly_tolerates_bad_and_missing(tmp_path: pathlib.Path) -> None:
    store = LocalBlobStore(tmp_path)
    store.write("keep.png", b"k")
    store.write("gone.png", b"g")

    store.remove_quietly(["gone.png", "missing.png", "../bad", ""])

    assert store.exists("keep.png")
    assert not store.exists("gone.png")
