"""Configuration file parsing utilities."""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from modweave.config.schemas import (
    Catalog,
    InstallationConfig,
    InstallationState,
    ModManifest,
    UpdateSettingsFile,
)

MANIFEST_FILE = "manifest.json"
INSTALLATION_CONFIG_FILE = "modweave.yaml"
STATE_FILE = "installed.yaml"
SETTINGS_FILE = "update_settings.json"
CATALOG_FILE = "catalog.json"


class ConfigError(Exception):
    """Error loading or parsing configuration."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def load_json(path: Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Args:
        path: Path to the JSON file

    Returns:
        Parsed JSON as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e

    if not isinstance(result, dict):
        raise ConfigError(f"JSON file must contain an object: {path}", path)
    return result


def save_json(path: Path, data: dict[str, Any], indent: int = 2) -> None:
    """Save data to a JSON file.

    Args:
        path: Path to write to
        data: Data to serialize
        indent: JSON indentation level
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, default=str)
        f.write("\n")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ConfigError(f"YAML file must contain a mapping: {path}", path)
    return result


def save_yaml(path: Path, data: dict[str, Any]) -> None:
    """Save data to a YAML file.

    Args:
        path: Path to write to
        data: Data to serialize
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def load_mod_manifest(payload_dir: Path) -> ModManifest:
    """Load a mod manifest from manifest.json.

    Args:
        payload_dir: Path to the unpacked mod payload

    Returns:
        Parsed ModManifest

    Raises:
        ConfigError: If the file is missing or invalid
    """
    manifest_path = payload_dir / MANIFEST_FILE
    data = load_json(manifest_path)

    try:
        return ModManifest.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid mod manifest: {e}", manifest_path) from e


def load_installation_config(game_root: Path) -> InstallationConfig:
    """Load installation configuration from modweave.yaml.

    A missing file yields the default configuration.

    Raises:
        ConfigError: If the file exists but is invalid
    """
    config_path = game_root / INSTALLATION_CONFIG_FILE
    if not config_path.exists():
        return InstallationConfig()

    data = load_yaml(config_path)
    try:
        return InstallationConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid installation config: {e}", config_path) from e


def save_installation_config(game_root: Path, config: InstallationConfig) -> None:
    """Save installation configuration to modweave.yaml."""
    save_yaml(game_root / INSTALLATION_CONFIG_FILE, config.model_dump(exclude_none=True))


def load_installation_state(state_dir: Path) -> InstallationState | None:
    """Load installed mod state if it exists.

    Raises:
        ConfigError: If the file exists but is invalid
    """
    state_path = state_dir / STATE_FILE
    if not state_path.exists():
        return None

    data = load_yaml(state_path)
    try:
        return InstallationState.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid installation state: {e}", state_path) from e


def save_installation_state(state_dir: Path, state: InstallationState) -> None:
    """Save installed mod state."""
    save_yaml(state_dir / STATE_FILE, state.model_dump(mode="json"))


def load_update_settings(state_dir: Path) -> UpdateSettingsFile | None:
    """Load per-mod update settings if they exist.

    Raises:
        ConfigError: If the file exists but is invalid
    """
    settings_path = state_dir / SETTINGS_FILE
    if not settings_path.exists():
        return None

    data = load_json(settings_path)
    try:
        return UpdateSettingsFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid update settings: {e}", settings_path) from e


def save_update_settings(state_dir: Path, settings: UpdateSettingsFile) -> None:
    """Save per-mod update settings."""
    save_json(state_dir / SETTINGS_FILE, settings.model_dump(mode="json"))


def parse_catalog(data: dict[str, Any], source: Path | None = None) -> Catalog:
    """Validate parsed catalog.json data.

    Raises:
        ConfigError: If the data does not match the catalog schema
    """
    try:
        return Catalog.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid catalog: {e}", source) from e


def load_catalog(catalog_dir: Path) -> Catalog:
    """Load a release catalog from catalog.json.

    Raises:
        ConfigError: If the file is missing or invalid
    """
    catalog_path = catalog_dir / CATALOG_FILE
    return parse_catalog(load_json(catalog_path), catalog_path)
