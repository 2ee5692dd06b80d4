"""Tests for directory walk module."""

import os
import sys

import pytest

from src.treewatch.walk import iter_subdirectories


def make_tree(root):
    (root / "a" / "b" / "c").mkdir(parents=True)
    (root / "d").mkdir()
    (root / "a" / "file.txt").write_text("not a directory")
    (root / "d" / "other.txt").write_text("not a directory")


class TestIterSubdirectories:
    """Tests for iter_subdirectories."""

    def test_yields_every_descendant_directory(self, tmp_path):
        make_tree(tmp_path)

        found = set(iter_subdirectories(tmp_path))

        assert found == {
            str(tmp_path / "a"),
            str(tmp_path / "a" / "b"),
            str(tmp_path / "a" / "b" / "c"),
            str(tmp_path / "d"),
        }

    def test_root_not_yielded(self, tmp_path):
        assert list(iter_subdirectories(tmp_path)) == []

    def test_relative_root_gives_absolute_paths(self, tmp_path, monkeypatch):
        (tmp_path / "sub").mkdir()
        monkeypatch.chdir(tmp_path)

        found = list(iter_subdirectories("."))

        assert found == [str(tmp_path.resolve() / "sub")]

    def test_missing_root_reported_to_policy(self, tmp_path):
        errors = []

        found = list(iter_subdirectories(tmp_path / "missing", on_error=errors.append))

        assert found == []
        assert len(errors) == 1
        assert isinstance(errors[0], FileNotFoundError)

    def test_missing_root_with_default_policy(self, tmp_path):
        assert list(iter_subdirectories(tmp_path / "missing")) == []

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    @pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0, reason="root ignores permissions")
    def test_unreadable_directory_skipped(self, tmp_path):
        make_tree(tmp_path)
        locked = tmp_path / "a" / "b"
        locked.chmod(0)
        errors = []

        try:
            found = set(iter_subdirectories(tmp_path, on_error=errors.append))
        finally:
            locked.chmod(0o755)

        # The locked directory itself is still yielded, its contents are not
        assert str(locked) in found
        assert str(locked / "c") not in found
        assert str(tmp_path / "d") in found
        assert len(errors) == 1

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges")
    def test_symlinks_skipped_by_default(self, tmp_path):
        target = tmp_path / "target"
        (target / "inner").mkdir(parents=True)
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(target, target_is_directory=True)

        assert list(iter_subdirectories(root)) == []

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges")
    def test_symlinks_followed(self, tmp_path):
        target = tmp_path / "target"
        (target / "inner").mkdir(parents=True)
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(target, target_is_directory=True)

        found = set(iter_subdirectories(root, follow_symlinks=True))

        assert found == {str(root / "link"), str(root / "link" / "inner")}

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges")
    def test_symlink_cycle_terminates(self, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "loop").symlink_to(tmp_path, target_is_directory=True)

        found = set(iter_subdirectories(tmp_path, follow_symlinks=True))

        assert found == {str(tmp_path / "a")}
