"""Tests for modweave.core.state module."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from modweave.config.schemas import InstalledMod, ModManifest
from modweave.core.state import InstalledModsManager, UpdateSettingsManager


def make_installed(mod_id: str, version: str = "1.0.0", enabled: bool = True) -> InstalledMod:
    return InstalledMod(
        descriptor=ModManifest(id=mod_id, name=mod_id, version=version),
        installed_version=version,
        enabled=enabled,
        install_directory=mod_id,
    )


class TestInstalledModsManager:
    """Tests for InstalledModsManager."""

    def test_empty_state(self, temp_dir):
        """A missing installed.yaml means no mods."""
        manager = InstalledModsManager(temp_dir)
        assert manager.all() == []
        assert manager.get("mod") is None

    def test_put_save_load(self, temp_dir):
        """Recorded mods persist across managers."""
        manager = InstalledModsManager(temp_dir)
        manager.put(make_installed("b"))
        manager.put(make_installed("a", enabled=False))
        manager.save()

        reloaded = InstalledModsManager(temp_dir)
        assert [m.mod_id for m in reloaded.all()] == ["a", "b"]
        assert [m.mod_id for m in reloaded.enabled()] == ["b"]

    def test_save_only_when_modified(self, temp_dir):
        """Nothing is written when nothing changed."""
        manager = InstalledModsManager(temp_dir)
        manager.load()
        manager.save()
        assert not (temp_dir / "installed.yaml").exists()

    def test_remove(self, temp_dir):
        """remove() reports whether the mod was recorded."""
        manager = InstalledModsManager(temp_dir)
        manager.put(make_installed("a"))
        assert manager.remove("a") is True
        assert manager.remove("a") is False

    def test_snapshot_is_a_copy(self, temp_dir):
        """Changing a snapshot does not change the managed state."""
        manager = InstalledModsManager(temp_dir)
        manager.put(make_installed("a"))
        snapshot = manager.snapshot()
        snapshot["a"].enabled = False
        assert manager.get("a").enabled is True


class TestUpdateSettingsManager:
    """Tests for UpdateSettingsManager."""

    def test_get_returns_defaults_without_recording(self, temp_dir):
        """Unknown mods get default settings that are not persisted."""
        manager = UpdateSettingsManager(temp_dir)
        assert manager.get("mod").channel == "stable"
        manager.save()
        assert not (temp_dir / "update_settings.json").exists()

    def test_ensure_records_defaults(self, temp_dir):
        """ensure() records default settings."""
        manager = UpdateSettingsManager(temp_dir)
        manager.ensure("mod")
        manager.save()
        assert "mod" in UpdateSettingsManager(temp_dir).settings.mods

    def test_update_validates(self, temp_dir):
        """Invalid values are rejected and valid ones persisted."""
        manager = UpdateSettingsManager(temp_dir)
        updated = manager.update("mod", auto_update_enabled=True, channel="beta")
        assert updated.auto_update_enabled
        with pytest.raises(ValidationError):
            manager.update("mod", channel="nightly")
        manager.save()
        assert UpdateSettingsManager(temp_dir).get("mod").channel == "beta"

    def test_record_check(self, temp_dir):
        """The last check time is recorded."""
        manager = UpdateSettingsManager(temp_dir)
        when = datetime(2026, 1, 2, tzinfo=timezone.utc)
        manager.record_check("mod", when)
        assert manager.get("mod").last_update_check == when

    def test_auto_update_ids(self, temp_dir):
        """Only mods with automatic updates enabled are listed."""
        manager = UpdateSettingsManager(temp_dir)
        manager.update("b", auto_update_enabled=True)
        manager.update("a", auto_update_enabled=True)
        manager.ensure("c")
        assert manager.auto_update_ids() == ["a", "b"]

    def test_remove(self, temp_dir):
        """Settings of removed mods are dropped."""
        manager = UpdateSettingsManager(temp_dir)
        manager.ensure("mod")
        assert manager.remove("mod") is True
        assert manager.remove("mod") is False
