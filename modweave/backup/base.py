"""Backup store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from modweave.config.schemas import RestorePointInfo
from modweave.core.installation import Installation


class BackupStore(ABC):
    """Creates and restores restore points of an installation.

    A restore point captures everything an install or update can change:
    the plugin root, disabled payloads and modweave's own state files.
    """

    @abstractmethod
    def create_restore_point(self, installation: Installation, label: str) -> str:
        """Snapshot the installation.

        Args:
            installation: Installation to snapshot
            label: Human-readable description (e.g. "update BetterUI")

        Returns:
            Restore point id

        Raises:
            OSError: If the snapshot cannot be written
        """
        ...

    @abstractmethod
    def restore(self, restore_point_id: str, installation: Installation) -> None:
        """Put the installation back into the captured state.

        Raises:
            RestoreFailure: If the restore point is missing or cannot be applied
        """
        ...

    @abstractmethod
    def info(self, restore_point_id: str, installation: Installation) -> RestorePointInfo:
        """Read a restore point's metadata.

        Raises:
            RestoreFailure: If the restore point is missing or unreadable
        """
        ...

    @abstractmethod
    def list(self, installation: Installation) -> list[str]:
        """List restore point ids of an installation, oldest first."""
        ...

    @abstractmethod
    def delete(self, restore_point_id: str) -> None:
        """Delete a restore point.

        Raises:
            KeyError: If the restore point is unknown
        """
        ...

    def prune(self, installation: Installation, keep: int, protect: str | None = None) -> list[str]:
        """Delete the oldest restore points beyond ``keep``.

        Args:
            installation: Installation whose restore points are pruned
            keep: Number of restore points to keep
            protect: Restore point that is never deleted

        Returns:
            Ids of the deleted restore points
        """
        candidates = [rp for rp in self.list(installation) if rp != protect]
        excess = len(candidates) + (1 if protect is not None else 0) - keep
        deleted = []
        for restore_point_id in candidates[: max(excess, 0)]:
            self.delete(restore_point_id)
            deleted.append(restore_point_id)
        return deleted
