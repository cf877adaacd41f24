"""Tests for modweave.backup.snapshot module."""

from unittest.mock import patch

import pytest

from modweave.backup.snapshot import SnapshotBackupStore, captured_paths
from modweave.core.errors import RestoreFailure


def populate(installation):
    mod_dir = installation.plugin_root / "Mod"
    mod_dir.mkdir(parents=True)
    (mod_dir / "Mod.dll").write_bytes(b"v1")
    (installation.state_dir / "installed.yaml").write_text("version: '1.0'\nmods: {}\n")


class TestCapturedPaths:
    """Tests for captured_paths()."""

    def test_paths_are_relative(self, installation):
        """Plugin root, disabled, shipped configs and state files are captured."""
        assert captured_paths(installation) == [
            "BepInEx/plugins",
            ".modweave/disabled",
            ".modweave/shipped",
            ".modweave/installed.yaml",
            ".modweave/update_settings.json",
        ]


class TestSnapshotBackupStore:
    """Tests for SnapshotBackupStore."""

    def test_create_and_info(self, installation):
        """A restore point records its label and captured paths."""
        populate(installation)
        store = SnapshotBackupStore()
        restore_point_id = store.create_restore_point(installation, "before update")

        info = store.info(restore_point_id, installation)

        assert info.label == "before update"
        assert info.installation_root == str(installation.root)
        assert store.list(installation) == [restore_point_id]

    def test_restore_is_exact(self, installation, tree_snapshot):
        """Restoring brings back modified, deleted and added files exactly."""
        populate(installation)
        before = tree_snapshot(installation.root)
        store = SnapshotBackupStore()
        restore_point_id = store.create_restore_point(installation, "test")

        (installation.plugin_root / "Mod" / "Mod.dll").write_bytes(b"v2")
        (installation.plugin_root / "Other").mkdir()
        (installation.plugin_root / "Other" / "Other.dll").write_bytes(b"new")
        (installation.state_dir / "installed.yaml").unlink()
        (installation.state_dir / "update_settings.json").write_text("{}")

        store.restore(restore_point_id, installation)

        assert tree_snapshot(installation.root) == before

    def test_restore_unknown_id(self, installation):
        """An unknown restore point cannot be restored."""
        with pytest.raises(RestoreFailure):
            SnapshotBackupStore().restore("missing", installation)

    def test_restore_io_error_is_fatal(self, installation):
        """I/O errors during restore raise RestoreFailure naming the restore point."""
        populate(installation)
        store = SnapshotBackupStore()
        restore_point_id = store.create_restore_point(installation, "test")

        with patch("modweave.backup.snapshot._copy", side_effect=OSError("disk full")):
            with pytest.raises(RestoreFailure) as exc_info:
                store.restore(restore_point_id, installation)
        assert exc_info.value.restore_point_id == restore_point_id
        assert exc_info.value.fatal

    def test_failed_create_leaves_nothing(self, installation):
        """A half-written restore point is removed."""
        populate(installation)
        store = SnapshotBackupStore()
        with patch("modweave.backup.snapshot._copy", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.create_restore_point(installation, "test")
        assert store.list(installation) == []

    def test_delete(self, installation):
        """Deleted restore points are gone; unknown ids raise KeyError."""
        store = SnapshotBackupStore()
        restore_point_id = store.create_restore_point(installation, "test")
        store.delete(restore_point_id)
        assert store.list(installation) == []
        with pytest.raises(KeyError):
            store.delete(restore_point_id)

    def test_list_from_a_new_store(self, installation):
        """Restore points on disk are found by a fresh store and can be deleted."""
        restore_point_id = SnapshotBackupStore().create_restore_point(installation, "test")
        store = SnapshotBackupStore()
        assert store.list(installation) == [restore_point_id]
        store.delete(restore_point_id)
        assert not (installation.restore_points_root / restore_point_id).exists()


class TestRetention:
    """Tests for pruning old restore points."""

    def test_oldest_are_pruned(self, installation):
        """Creating past the limit deletes the oldest restore points."""
        installation.config.max_restore_points = 2
        store = SnapshotBackupStore()
        first = store.create_restore_point(installation, "one")
        second = store.create_restore_point(installation, "two")
        third = store.create_restore_point(installation, "three")

        assert store.list(installation) == [second, third]
        assert not (installation.restore_points_root / first).exists()

    def test_new_restore_point_is_kept(self, installation):
        """A limit of one keeps only the restore point just created."""
        installation.config.max_restore_points = 1
        store = SnapshotBackupStore()
        store.create_restore_point(installation, "one")
        latest = store.create_restore_point(installation, "two")
        assert store.list(installation) == [latest]

    def test_unlimited(self, installation):
        """Without a limit nothing is pruned."""
        installation.config.max_restore_points = None
        store = SnapshotBackupStore()
        ids = [store.create_restore_point(installation, str(n)) for n in range(3)]
        assert store.list(installation) == ids
