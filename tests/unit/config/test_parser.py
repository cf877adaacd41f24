"""Tests for modweave.config.parser module."""

import json

import pytest

from modweave.config.parser import (
    ConfigError,
    load_catalog,
    load_installation_config,
    load_installation_state,
    load_json,
    load_mod_manifest,
    load_update_settings,
    load_yaml,
    save_installation_config,
    save_installation_state,
    save_update_settings,
)
from modweave.config.schemas import (
    InstallationConfig,
    InstallationState,
    InstalledMod,
    ModManifest,
    UpdateSettings,
    UpdateSettingsFile,
)


class TestLoadJson:
    """Tests for load_json()."""

    def test_missing_file(self, temp_dir):
        """A missing file raises ConfigError."""
        with pytest.raises(ConfigError, match="File not found"):
            load_json(temp_dir / "missing.json")

    def test_invalid_json(self, temp_dir):
        """Malformed JSON raises ConfigError."""
        path = temp_dir / "bad.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_json(path)

    def test_non_object(self, temp_dir):
        """A top-level array is rejected."""
        path = temp_dir / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError, match="must contain an object"):
            load_json(path)


class TestLoadYaml:
    """Tests for load_yaml()."""

    def test_empty_file(self, temp_dir):
        """An empty YAML file is an empty mapping."""
        path = temp_dir / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_invalid_yaml(self, temp_dir):
        """Malformed YAML raises ConfigError."""
        path = temp_dir / "bad.yaml"
        path.write_text("a: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_yaml(path)


class TestManifest:
    """Tests for load_mod_manifest()."""

    def test_load(self, temp_dir, make_payload):
        """manifest.json is parsed into a ModManifest."""
        make_payload(temp_dir, "mod", "1.2.0", author="someone")
        manifest = load_mod_manifest(temp_dir)
        assert manifest.id == "mod"
        assert manifest.author == "someone"

    def test_invalid_manifest(self, temp_dir):
        """Schema violations raise ConfigError."""
        (temp_dir / "manifest.json").write_text(json.dumps({"id": "mod"}))
        with pytest.raises(ConfigError, match="Invalid mod manifest"):
            load_mod_manifest(temp_dir)


class TestInstallationFiles:
    """Tests for installation config, state and settings persistence."""

    def test_missing_config_is_default(self, temp_dir):
        """A game without modweave.yaml gets the default config."""
        assert load_installation_config(temp_dir) == InstallationConfig()

    def test_config_round_trip(self, temp_dir):
        """Saved configuration loads back unchanged."""
        config = InstallationConfig(game_name="Game", catalog="https://example.com/catalog")
        save_installation_config(temp_dir, config)
        assert load_installation_config(temp_dir) == config

    def test_invalid_config(self, temp_dir):
        """An invalid modweave.yaml raises ConfigError."""
        (temp_dir / "modweave.yaml").write_text("check_interval_hours: -1\n")
        with pytest.raises(ConfigError, match="Invalid installation config"):
            load_installation_config(temp_dir)

    def test_state_round_trip(self, temp_dir):
        """installed.yaml keeps descriptors and hashes."""
        assert load_installation_state(temp_dir) is None
        mod = InstalledMod(
            descriptor=ModManifest(id="mod", name="Mod", version="1.0.0"),
            installed_version="1.0.0",
            install_directory="mod",
            file_hashes={"mod.dll": "abc"},
        )
        save_installation_state(temp_dir, InstallationState(mods={"mod": mod}))
        loaded = load_installation_state(temp_dir)
        assert loaded.mods["mod"] == mod

    def test_settings_round_trip(self, temp_dir):
        """update_settings.json keeps per-mod settings."""
        assert load_update_settings(temp_dir) is None
        settings = UpdateSettingsFile(
            mods={"mod": UpdateSettings(mod_id="mod", auto_update_enabled=True, channel="beta")}
        )
        save_update_settings(temp_dir, settings)
        assert load_update_settings(temp_dir) == settings


class TestCatalog:
    """Tests for load_catalog()."""

    def test_load(self, catalog):
        """Published releases appear in the catalog."""
        catalog.add("mod", "1.0.0")
        loaded = load_catalog(catalog.root)
        assert [r.version for r in loaded.packages["mod"].releases] == ["1.0.0"]

    def test_invalid_catalog(self, temp_dir):
        """A catalog that does not match the schema raises ConfigError."""
        (temp_dir / "catalog.json").write_text(json.dumps({"packages": {"mod": {"releases": 1}}}))
        with pytest.raises(ConfigError, match="Invalid catalog"):
            load_catalog(temp_dir)
