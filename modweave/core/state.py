"""Installed mod state and update settings persistence."""

import logging
from datetime import datetime
from pathlib import Path

from modweave.config.parser import (
    load_installation_state,
    load_update_settings,
    save_installation_state,
    save_update_settings,
)
from modweave.config.schemas import (
    InstallationState,
    InstalledMod,
    UpdateSettings,
    UpdateSettingsFile,
)

logger = logging.getLogger(__name__)


class InstalledModsManager:
    """Manages .modweave/installed.yaml, the record of committed mods."""

    def __init__(self, state_dir: Path):
        """Initialize the state manager.

        Args:
            state_dir: The installation's .modweave directory
        """
        self._state_dir = state_dir
        self._state: InstallationState | None = None
        self._modified = False

    def load(self) -> InstallationState:
        """Load state from disk, starting empty if no file exists."""
        self._state = load_installation_state(self._state_dir)
        if self._state is None:
            self._state = InstallationState()
        self._modified = False
        return self._state

    def save(self) -> None:
        """Save state to disk if modified."""
        if self._state is not None and self._modified:
            save_installation_state(self._state_dir, self._state)
            self._modified = False
            logger.debug("Saved installed mod state")

    @property
    def state(self) -> InstallationState:
        if self._state is None:
            return self.load()
        return self._state

    def get(self, mod_id: str) -> InstalledMod | None:
        return self.state.mods.get(mod_id)

    def all(self) -> list[InstalledMod]:
        """Get every installed mod, ordered by id."""
        return [self.state.mods[k] for k in sorted(self.state.mods)]

    def enabled(self) -> list[InstalledMod]:
        return [m for m in self.all() if m.enabled]

    def put(self, mod: InstalledMod) -> None:
        """Record or replace an installed mod."""
        self.state.mods[mod.mod_id] = mod
        self._modified = True

    def remove(self, mod_id: str) -> bool:
        """Remove a mod's record.

        Returns:
            True if the mod was recorded, False otherwise
        """
        if mod_id in self.state.mods:
            del self.state.mods[mod_id]
            self._modified = True
            return True
        return False

    def mark_modified(self) -> None:
        """Flag in-place changes to recorded mods for the next save."""
        self._modified = True

    def snapshot(self) -> dict[str, InstalledMod]:
        """Copy of the installed set for read-only use outside the lock."""
        return {k: v.model_copy(deep=True) for k, v in self.state.mods.items()}


class UpdateSettingsManager:
    """Manages .modweave/update_settings.json.

    Settings are created with defaults the first time a mod is seen.
    """

    def __init__(self, state_dir: Path):
        self._state_dir = state_dir
        self._settings: UpdateSettingsFile | None = None
        self._modified = False

    def load(self) -> UpdateSettingsFile:
        self._settings = load_update_settings(self._state_dir)
        if self._settings is None:
            self._settings = UpdateSettingsFile()
        self._modified = False
        return self._settings

    def save(self) -> None:
        if self._settings is not None and self._modified:
            save_update_settings(self._state_dir, self._settings)
            self._modified = False
            logger.debug("Saved update settings")

    @property
    def settings(self) -> UpdateSettingsFile:
        if self._settings is None:
            return self.load()
        return self._settings

    def get(self, mod_id: str) -> UpdateSettings:
        """Get a mod's settings, falling back to defaults without persisting them."""
        existing = self.settings.mods.get(mod_id)
        if existing is not None:
            return existing
        return UpdateSettings(mod_id=mod_id)

    def ensure(self, mod_id: str) -> UpdateSettings:
        """Get a mod's settings, creating and recording defaults if missing."""
        existing = self.settings.mods.get(mod_id)
        if existing is None:
            existing = UpdateSettings(mod_id=mod_id)
            self.settings.mods[mod_id] = existing
            self._modified = True
            logger.debug("Created default update settings for %s", mod_id)
        return existing

    def update(self, mod_id: str, **changes: object) -> UpdateSettings:
        """Change fields of a mod's settings.

        Raises:
            pydantic.ValidationError: If a changed value is invalid
        """
        current = self.ensure(mod_id)
        updated = UpdateSettings.model_validate({**current.model_dump(), **changes})
        self.settings.mods[mod_id] = updated
        self._modified = True
        return updated

    def record_check(self, mod_id: str, when: datetime) -> None:
        """Record the time of the last update check for a mod."""
        self.ensure(mod_id).last_update_check = when
        self._modified = True

    def remove(self, mod_id: str) -> bool:
        if mod_id in self.settings.mods:
            del self.settings.mods[mod_id]
            self._modified = True
            return True
        return False

    def auto_update_ids(self) -> list[str]:
        """Ids of mods with automatic updates enabled."""
        return sorted(k for k, v in self.settings.mods.items() if v.auto_update_enabled)
