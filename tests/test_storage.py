from __future__ import annotations

import os

import pytest

from mediagate.core.errors import InvalidPath, NotFound
from mediagate.core.storage import LocalStorageTree


@pytest.fixture()
def tree(tmp_path) -> LocalStorageTree:
    root = tmp_path / "root"
    (root / "user_42").mkdir(parents=True)
    (root / "user_42" / "a.HEIC").write_bytes(b"heic")
    return LocalStorageTree(root)


def test_source_describes_file(tree):
    asset = tree.source("user_42/a.HEIC")
    assert asset.extension == ".heic"
    assert asset.size == 4
    assert asset.name == "a.HEIC"
    assert tree.exists("user_42/a.HEIC")


def test_directory_is_not_a_source(tree):
    with pytest.raises(NotFound):
        tree.source("user_42")


def test_missing_file(tree):
    assert not tree.exists("user_42/nope.jpg")
    with pytest.raises(NotFound):
        tree.stat("user_42/nope.jpg")
    with pytest.raises(NotFound):
        tree.read_bytes("user_42/nope.jpg")


def test_copy_creates_destination(tree, tmp_path):
    destination = tmp_path / "work" / "input.heic"
    tree.copy("user_42/a.HEIC", destination)
    assert destination.read_bytes() == b"heic"


def test_symlink_escape_is_rejected(tree, tmp_path):
    outside = tmp_path / "outside.txt"
    outside.write_text("secret")
    os.symlink(outside, tree.base_path / "user_42" / "link.txt")
    with pytest.raises(InvalidPath):
        tree.locate("user_42/link.txt")
