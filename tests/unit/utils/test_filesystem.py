"""Tests for modweave.utils.filesystem module."""

import io
import tarfile
import zipfile

import pytest

from modweave.utils.filesystem import (
    compute_file_hash,
    copy_directory,
    create_zip,
    extract_archive,
    hash_tree,
    make_temp_directory,
    normalize_relpath,
    prune_empty_dirs,
    remove_directory,
    write_text_atomic,
)


class TestDirectories:
    """Tests for directory helpers."""

    def test_copy_directory_replaces_destination(self, temp_dir):
        """An existing destination is replaced, not merged."""
        src = temp_dir / "src"
        src.mkdir()
        (src / "a.txt").write_text("a")
        dest = temp_dir / "dest"
        dest.mkdir()
        (dest / "stale.txt").write_text("stale")

        copy_directory(src, dest)

        assert (dest / "a.txt").read_text() == "a"
        assert not (dest / "stale.txt").exists()

    def test_remove_directory(self, temp_dir):
        """remove_directory() reports whether anything was removed."""
        target = temp_dir / "target"
        target.mkdir()
        assert remove_directory(target) is True
        assert remove_directory(target) is False

    def test_make_temp_directory_under_parent(self, temp_dir):
        """Temp directories are created below the given parent."""
        path = make_temp_directory(prefix="x_", parent=temp_dir / "staging")
        assert path.parent == temp_dir / "staging"
        assert path.name.startswith("x_")

    def test_prune_empty_dirs_stops_at_boundary(self, temp_dir):
        """Empty parents are removed up to, not including, the stop directory."""
        leaf = temp_dir / "a" / "b" / "c"
        leaf.mkdir(parents=True)
        prune_empty_dirs(leaf, temp_dir)
        assert not (temp_dir / "a").exists()
        assert temp_dir.exists()

    def test_prune_empty_dirs_keeps_non_empty(self, temp_dir):
        """A directory that still holds files is kept."""
        (temp_dir / "a" / "b").mkdir(parents=True)
        (temp_dir / "a" / "keep.txt").write_text("x")
        prune_empty_dirs(temp_dir / "a" / "b", temp_dir)
        assert (temp_dir / "a").exists()
        assert not (temp_dir / "a" / "b").exists()


class TestNormalizeRelpath:
    """Tests for normalize_relpath()."""

    def test_separators_and_case(self):
        """Backslashes, leading ./ and case differences are normalized."""
        assert normalize_relpath(".\\Mod\\Plugin.DLL") == "mod/plugin.dll"
        assert normalize_relpath("./mod/plugin.dll") == "mod/plugin.dll"


class TestArchives:
    """Tests for archive extraction."""

    def test_zip_round_trip_unwraps_single_directory(self, temp_dir):
        """A zip holding one top-level directory extracts to that directory."""
        src = temp_dir / "src" / "MyMod"
        src.mkdir(parents=True)
        (src / "plugin.dll").write_bytes(b"dll")
        archive = create_zip(temp_dir / "src", temp_dir / "mod.zip")

        result = extract_archive(archive, temp_dir / "out")

        assert result == temp_dir / "out" / "MyMod"
        assert (result / "plugin.dll").read_bytes() == b"dll"

    def test_zip_with_traversal_is_rejected(self, temp_dir):
        """Members escaping the destination are rejected."""
        archive = temp_dir / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../escape.txt", "x")

        with pytest.raises(ValueError, match="Unsafe path"):
            extract_archive(archive, temp_dir / "out")
        assert not (temp_dir / "escape.txt").exists()

    def test_tarball_extracts(self, temp_dir):
        """Gzipped tarballs are supported."""
        archive = temp_dir / "mod.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            data = b"hello"
            info = tarfile.TarInfo("a.txt")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
            info = tarfile.TarInfo("b.txt")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))

        result = extract_archive(archive, temp_dir / "out")

        assert result == temp_dir / "out"
        assert (result / "a.txt").read_bytes() == b"hello"

    def test_unknown_format_raises(self, temp_dir):
        """Files that are neither zip nor tar raise ValueError."""
        path = temp_dir / "mod.rar"
        path.write_bytes(b"not an archive")
        with pytest.raises(ValueError, match="Unsupported archive format"):
            extract_archive(path, temp_dir / "out")


class TestHashing:
    """Tests for file hashing helpers."""

    def test_hash_tree_uses_posix_relpaths(self, temp_dir):
        """hash_tree() keys files by posix relative path."""
        (temp_dir / "sub").mkdir()
        (temp_dir / "sub" / "a.txt").write_text("a")
        hashes = hash_tree(temp_dir)
        assert hashes == {"sub/a.txt": compute_file_hash(temp_dir / "sub" / "a.txt")}

    def test_write_text_atomic(self, temp_dir):
        """The content is written and no temp files are left behind."""
        path = temp_dir / "cfg" / "settings.ini"
        write_text_atomic(path, "a = 1\n")
        assert path.read_text() == "a = 1\n"
        assert [p.name for p in path.parent.iterdir()] == ["settings.ini"]
