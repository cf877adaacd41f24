"""Lifecycle operations on installed mods.

Enabling and disabling move a payload between the plugin root and
``.modweave/disabled`` without downloading anything. Uninstalling removes the
payload, its state and its shipped config copies.
"""

import logging
import shutil

from modweave.backup.base import BackupStore
from modweave.backup.snapshot import SnapshotBackupStore
from modweave.config.schemas import (
    ConflictRecord,
    InstalledMod,
    RestorePointInfo,
    UpdateSettings,
)
from modweave.core.conflicts import ConflictDetector, ProspectiveMod, partition
from modweave.core.errors import (
    ConflictBlocking,
    ModInUse,
    ModNotFound,
    ModweaveError,
    RestoreFailure,
    StagingIOError,
)
from modweave.core.installation import Installation
from modweave.core.orchestrator import OperationResult
from modweave.core.state import InstalledModsManager, UpdateSettingsManager
from modweave.utils.filesystem import remove_directory

logger = logging.getLogger(__name__)


class ModManager:
    """Enables, disables and uninstalls mods of one installation.

    Every mutating method holds the installation lock; :meth:`list_mods`
    reads a snapshot without it.
    """

    def __init__(self, installation: Installation, backup_store: BackupStore | None = None):
        self._installation = installation
        self._backup_store = backup_store or SnapshotBackupStore()

    @property
    def installation(self) -> Installation:
        return self._installation

    def _mods(self) -> InstalledModsManager:
        mods = InstalledModsManager(self._installation.state_dir)
        mods.load()
        return mods

    def _require(self, mods: InstalledModsManager, mod_id: str) -> InstalledMod:
        mod = mods.get(mod_id)
        if mod is None:
            raise ModNotFound(mod_id)
        return mod

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_mods(self) -> list[InstalledMod]:
        """Installed mods ordered by id."""
        snapshot = InstalledModsManager(self._installation.state_dir).snapshot()
        return [snapshot[k] for k in sorted(snapshot)]

    def get(self, mod_id: str) -> InstalledMod | None:
        return InstalledModsManager(self._installation.state_dir).snapshot().get(mod_id)

    def dependents(self, mod_id: str, mods: list[InstalledMod] | None = None) -> list[str]:
        """Enabled mods with a required dependency on ``mod_id``."""
        if mods is None:
            mods = self.list_mods()
        return sorted(
            m.mod_id
            for m in mods
            if m.enabled
            and m.mod_id != mod_id
            and any(d.target_mod_id == mod_id and not d.optional for d in m.descriptor.dependencies)
        )

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    def enable(self, mod_id: str) -> OperationResult:
        """Move a disabled mod back into the plugin root."""
        return self._set_enabled(mod_id, True)

    def disable(self, mod_id: str) -> OperationResult:
        """Move a mod out of the plugin root, keeping its files."""
        return self._set_enabled(mod_id, False)

    def _set_enabled(self, mod_id: str, enabled: bool) -> OperationResult:
        action = "enable" if enabled else "disable"
        with self._installation.lock:
            try:
                mods = self._mods()
                mod = self._require(mods, mod_id)
                if mod.enabled == enabled:
                    return OperationResult(success=True, message=f"{mod_id} is already {action}d")

                changed = mod.model_copy(update={"enabled": enabled})
                warnings = self._recheck(mods, changed, blocking_allowed=not enabled)
                self._move_payload(mod, enabled)
                mods.save()
            except ModweaveError as e:
                logger.error("Cannot %s %s: %s", action, mod_id, e)
                return OperationResult(
                    success=False,
                    message=str(e),
                    error_kind=e.kind,
                    conflicts=list(e.records) if isinstance(e, ConflictBlocking) else [],
                )

        message = f"{action.capitalize()}d {mod_id}"
        logger.info("%s", message)
        return OperationResult(success=True, message=message, warnings=warnings)

    def _recheck(
        self, mods: InstalledModsManager, changed: InstalledMod, blocking_allowed: bool
    ) -> list[ConflictRecord]:
        """Re-run conflict detection with ``changed`` in place of its record.

        Compatibility statuses are updated in ``mods``. Disabling never
        blocks; enabling is refused when it would create a blocking conflict
        involving the mod.

        Raises:
            ConflictBlocking: If enabling would create a blocking conflict
        """
        prospective = []
        for mod in mods.all():
            # The changed mod's files are still at their current location
            location = mod
            if mod.mod_id == changed.mod_id:
                mod = changed
            payload_root = self._installation.mod_directory(
                location.install_directory, location.enabled
            )
            prospective.append(ProspectiveMod(mod, payload_root=payload_root))

        detection = ConflictDetector(prospective).detect()
        relevant = [r for r in detection.records if changed.mod_id in r.involved_mod_ids]
        blocking, warnings = partition(relevant)
        if blocking and not blocking_allowed:
            raise ConflictBlocking(blocking)

        for mod in mods.all():
            status = detection.compatibility.get(mod.mod_id, mod.compatibility_status)
            if mod.mod_id == changed.mod_id:
                changed = changed.model_copy(update={"compatibility_status": status})
            elif status != mod.compatibility_status:
                mod.compatibility_status = status
                mods.mark_modified()
        mods.put(changed)
        return warnings + (blocking if blocking_allowed else [])

    def _move_payload(self, mod: InstalledMod, enabled: bool) -> None:
        source = self._installation.mod_directory(mod.install_directory, mod.enabled)
        dest = self._installation.mod_directory(mod.install_directory, enabled)
        if dest.exists():
            raise StagingIOError(f"Cannot move {mod.mod_id}: {dest} already exists", mod.mod_id)
        if not source.is_dir():
            logger.warning("Payload of %s is missing at %s", mod.mod_id, source)
            return
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(dest))
        except OSError as e:
            raise StagingIOError(f"Cannot move {mod.mod_id} to {dest}: {e}", mod.mod_id) from e
        logger.debug("Moved %s to %s", source, dest)

    # ------------------------------------------------------------------
    # Uninstall
    # ------------------------------------------------------------------

    def uninstall(self, mod_id: str, force: bool = False) -> OperationResult:
        """Remove a mod, its state, settings and shipped config copies.

        Args:
            mod_id: Mod to remove
            force: Remove even if enabled mods require it; their
                compatibility status becomes ``incompatible``

        Raises:
            RestoreFailure: If a failed removal could not be undone
        """
        with self._installation.lock:
            restore_point_id = None
            try:
                mods = self._mods()
                mod = self._require(mods, mod_id)
                dependents = self.dependents(mod_id, mods.all())
                if dependents and not force:
                    raise ModInUse(mod_id, dependents)

                try:
                    restore_point_id = self._backup_store.create_restore_point(
                        self._installation, f"uninstall {mod_id}"
                    )
                except OSError as e:
                    raise StagingIOError(f"Cannot create restore point: {e}", mod_id) from e

                warnings = self._remove(mods, mod, restore_point_id)
            except RestoreFailure:
                raise
            except ModweaveError as e:
                logger.error("Cannot uninstall %s: %s", mod_id, e)
                return OperationResult(
                    success=False,
                    message=str(e),
                    error_kind=e.kind,
                    restore_point_id=restore_point_id,
                )

        logger.info("Uninstalled %s", mod_id)
        return OperationResult(
            success=True,
            message=f"Uninstalled {mod_id}",
            warnings=warnings,
            restore_point_id=restore_point_id,
            live_files_touched=True,
        )

    def _remove(
        self, mods: InstalledModsManager, mod: InstalledMod, restore_point_id: str
    ) -> list[ConflictRecord]:
        mod_dir = self._installation.mod_directory(mod.install_directory, mod.enabled)
        settings = UpdateSettingsManager(self._installation.state_dir)
        mods.remove(mod.mod_id)
        settings.remove(mod.mod_id)

        prospective = [
            ProspectiveMod(m, self._installation.mod_directory(m.install_directory, m.enabled))
            for m in mods.all()
        ]
        detection = ConflictDetector(prospective).detect()
        for other in mods.all():
            status = detection.compatibility.get(other.mod_id, other.compatibility_status)
            if status != other.compatibility_status:
                other.compatibility_status = status
                mods.mark_modified()

        try:
            remove_directory(mod_dir)
            remove_directory(self._installation.shipped_root / mod.mod_id)
            mods.save()
            settings.save()
        except OSError as e:
            self._backup_store.restore(restore_point_id, self._installation)
            raise StagingIOError(
                f"Uninstall of {mod.mod_id} failed and was rolled back: {e}", mod.mod_id
            ) from e
        return [r for r in detection.records if mod.mod_id in r.involved_mod_ids]

    # ------------------------------------------------------------------
    # Update settings
    # ------------------------------------------------------------------

    def get_settings(self, mod_id: str) -> UpdateSettings:
        """Update settings of an installed mod (defaults if never set).

        Raises:
            ModNotFound: If the mod is not installed
        """
        if self.get(mod_id) is None:
            raise ModNotFound(mod_id)
        return UpdateSettingsManager(self._installation.state_dir).get(mod_id)

    def set_settings(self, mod_id: str, **changes: object) -> UpdateSettings:
        """Change and persist update settings of an installed mod.

        Raises:
            ModNotFound: If the mod is not installed
            pydantic.ValidationError: If a value is invalid
        """
        with self._installation.lock:
            self._require(self._mods(), mod_id)
            settings = UpdateSettingsManager(self._installation.state_dir)
            updated = settings.update(mod_id, **changes)
            settings.save()
        logger.info("Updated settings of %s: %s", mod_id, ", ".join(sorted(changes)))
        return updated

    # ------------------------------------------------------------------
    # Restore points
    # ------------------------------------------------------------------

    def restore_points(self) -> list[RestorePointInfo]:
        """Metadata of every readable restore point, oldest first."""
        infos = []
        for restore_point_id in self._backup_store.list(self._installation):
            try:
                infos.append(self._backup_store.info(restore_point_id, self._installation))
            except RestoreFailure as e:
                logger.warning("Skipping restore point %s: %s", restore_point_id, e)
        return infos

    def restore(self, restore_point_id: str) -> OperationResult:
        """Put the installation back into a restore point's state.

        Raises:
            RestoreFailure: If the restore fails
        """
        with self._installation.lock:
            self._backup_store.restore(restore_point_id, self._installation)
        logger.info("Restored restore point %s", restore_point_id)
        return OperationResult(
            success=True,
            message=f"Restored {restore_point_id}",
            restore_point_id=restore_point_id,
            live_files_touched=True,
        )
