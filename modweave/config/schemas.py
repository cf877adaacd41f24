"""Pydantic schemas for modweave data files and domain records.

This module defines the data models for:
- manifest.json (mod manifest / descriptor)
- .modweave/installed.yaml (installed mod state)
- .modweave/update_settings.json (per-mod update settings)
- modweave.yaml (installation configuration)
- catalog.json (release catalog)
- resolution plans and conflict records
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Common Types
# =============================================================================

CompatibilityStatus = Literal["unknown", "compatible", "compatible_with_issues", "incompatible"]
ConflictType = Literal[
    "file_conflict", "dependency_conflict", "load_order_conflict", "config_overlap"
]
ConflictSeverity = Literal["warning", "error", "critical"]
PlanAction = Literal["install", "upgrade", "skip"]
UpdateChannel = Literal["stable", "beta", "alpha"]
ConfigFormat = Literal["ini", "json", "yaml", "xml", "toml"]
ChecksumAlgorithm = Literal["sha1", "sha256", "sha384", "sha512", "md5"]
UpdateDelta = Literal["patch", "minor", "major"]

BLOCKING_SEVERITIES: frozenset[str] = frozenset({"error", "critical"})

_MOD_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.-]+)?(\+[a-zA-Z0-9.-]+)?$")


# =============================================================================
# Mod Manifest (manifest.json)
# =============================================================================


class DependencyConstraint(BaseModel):
    """A dependency of one mod on another.

    The expression is not validated here; the resolver evaluates it and
    reports malformed expressions as resolution errors.
    """

    model_config = {"populate_by_name": True, "frozen": True}

    target_mod_id: str = Field(alias="targetModId")
    constraint_expression: str = Field(default="*", alias="constraintExpression")
    optional: bool = False


class ModManifest(BaseModel):
    """Mod manifest (manifest.json) schema.

    This is the immutable descriptor of one version of a mod.
    """

    model_config = {"populate_by_name": True, "frozen": True}

    id: str
    name: str
    version: str
    author: str = ""
    description: str = ""
    dependencies: list[DependencyConstraint] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)

    # Explicit load-order requirements (mod ids)
    load_after: list[str] = Field(default_factory=list, alias="loadAfter")
    load_before: list[str] = Field(default_factory=list, alias="loadBefore")

    # Payload-relative paths of config files shipped with defaults
    config_files: list[str] = Field(default_factory=list, alias="configFiles")
    # Keys written to shared configuration, as "<file>::<key>"
    shared_config_keys: list[str] = Field(default_factory=list, alias="sharedConfigKeys")

    directory_name: str | None = Field(default=None, alias="directoryName")
    payload_location: str | None = Field(default=None, alias="payloadLocation")
    checksum: str | None = None
    checksum_algorithm: ChecksumAlgorithm = Field(default="sha256", alias="checksumAlgorithm")
    signature: str | None = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate mod id format."""
        if not v:
            raise ValueError("Mod id cannot be empty")
        if not _MOD_ID_PATTERN.match(v):
            raise ValueError(
                "Mod id must start with a letter or digit and contain only "
                "letters, digits, dots, hyphens, and underscores"
            )
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate semver format."""
        if not _VERSION_PATTERN.match(v):
            raise ValueError(f"Invalid semver version: {v}")
        return v

    @property
    def declared_conflicts(self) -> list[str]:
        return self.conflicts

    @property
    def mod_directory_name(self) -> str:
        """Directory name of the mod inside the plugin root."""
        return self.directory_name or self.id

    def dependency_on(self, mod_id: str) -> DependencyConstraint | None:
        """Get this mod's constraint on another mod, if any."""
        for dep in self.dependencies:
            if dep.target_mod_id == mod_id:
                return dep
        return None


# =============================================================================
# Installed State (.modweave/installed.yaml)
# =============================================================================


class InstalledMod(BaseModel):
    """A mod committed into the installation."""

    descriptor: ModManifest
    installed_version: str
    enabled: bool = True
    install_directory: str
    compatibility_status: CompatibilityStatus = "unknown"
    file_hashes: dict[str, str] = Field(default_factory=dict)  # relpath -> sha256
    installed_at: datetime | None = None

    @property
    def mod_id(self) -> str:
        return self.descriptor.id


class InstallationState(BaseModel):
    """Installed mod set of one game installation."""

    version: str = "1.0"
    mods: dict[str, InstalledMod] = Field(default_factory=dict)


# =============================================================================
# Update Settings (.modweave/update_settings.json)
# =============================================================================


class UpdateSettings(BaseModel):
    """Per-mod update preferences."""

    mod_id: str
    auto_update_enabled: bool = False
    channel: UpdateChannel = "stable"
    preserve_configs: bool = True
    backup_before_update: bool = True
    last_update_check: datetime | None = None


class UpdateSettingsFile(BaseModel):
    """All update settings of one installation."""

    version: str = "1.0"
    mods: dict[str, UpdateSettings] = Field(default_factory=dict)


# =============================================================================
# Installation Configuration (modweave.yaml)
# =============================================================================


class InstallationConfig(BaseModel):
    """Installation configuration (modweave.yaml) schema."""

    game_name: str | None = None
    plugin_root: str = "BepInEx/plugins"
    config_root: str = "BepInEx/config"
    catalog: str | None = None
    cache_dir: str | None = None
    check_interval_hours: float = 6.0
    verify_signatures: bool = False
    signing_key: str | None = None
    max_restore_points: int | None = 10

    @field_validator("check_interval_hours")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("check_interval_hours must be positive")
        return v

    @field_validator("max_restore_points")
    @classmethod
    def validate_max_restore_points(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("max_restore_points must be at least 1")
        return v


# =============================================================================
# Release Catalog (catalog.json)
# =============================================================================


class ReleaseInfo(BaseModel):
    """A release of a mod as published by the release catalog."""

    mod_id: str
    version: str
    download_url: str
    checksum: str | None = None
    checksum_algorithm: ChecksumAlgorithm = "sha256"
    signature: str | None = None
    published_at: datetime | None = None
    channel: UpdateChannel = "stable"


class CatalogRelease(BaseModel):
    """One release entry of a catalog package."""

    version: str
    channel: UpdateChannel = "stable"
    download_url: str
    checksum: str | None = None
    checksum_algorithm: ChecksumAlgorithm = "sha256"
    signature: str | None = None
    published_at: datetime | None = None
    manifest: ModManifest | None = None


class CatalogPackage(BaseModel):
    """All releases of one mod in the catalog."""

    releases: list[CatalogRelease] = Field(default_factory=list)


class Catalog(BaseModel):
    """Release catalog (catalog.json) schema."""

    version: str = "1.0"
    packages: dict[str, CatalogPackage] = Field(default_factory=dict)


# =============================================================================
# Conflicts
# =============================================================================


class ResolutionOption(BaseModel):
    """A way to resolve a conflict."""

    strategy: str
    description: str
    can_auto_resolve: bool = False


class ConflictRecord(BaseModel):
    """A detected conflict between mods."""

    type: ConflictType
    severity: ConflictSeverity
    involved_mod_ids: list[str]
    description: str
    paths: list[str] = Field(default_factory=list)
    resolution_options: list[ResolutionOption] = Field(default_factory=list)

    @property
    def is_blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES

    @property
    def can_auto_resolve(self) -> bool:
        return any(o.can_auto_resolve for o in self.resolution_options)


# =============================================================================
# Resolution Plans
# =============================================================================


class PlanStep(BaseModel):
    """One change of a resolution plan."""

    action: PlanAction
    mod_id: str
    target_version: str
    current_version: str | None = None
    descriptor: ModManifest | None = None
    requested: bool = False


class ResolutionPlan(BaseModel):
    """Ordered installation/upgrade plan (dependencies first)."""

    steps: list[PlanStep] = Field(default_factory=list)
    unresolved: list[ConflictRecord] = Field(default_factory=list)

    @property
    def is_executable(self) -> bool:
        return not self.unresolved

    @property
    def changes(self) -> list[PlanStep]:
        """Steps that modify the installation."""
        return [s for s in self.steps if s.action != "skip"]

    def installation_order(self) -> list[str]:
        """Get mod ids in installation order."""
        return [s.mod_id for s in self.steps]


# =============================================================================
# Configuration Files
# =============================================================================


class ConfigFile(BaseModel):
    """A mod configuration file taking part in a merge."""

    path: Path
    format: ConfigFormat
    owner_mod_id: str


# =============================================================================
# Updates
# =============================================================================


class UpdateCandidate(BaseModel):
    """An available update for an installed mod."""

    mod_id: str
    current_version: str
    available_version: str
    delta: UpdateDelta
    release: ReleaseInfo


# =============================================================================
# Restore Points
# =============================================================================


class RestorePointInfo(BaseModel):
    """Metadata stored alongside a restore point snapshot."""

    id: str
    label: str
    created_at: datetime
    installation_root: str
    paths: list[str] = Field(default_factory=list)  # Relative to installation root
