"""Directory-snapshot backup store.

Restore points live under ``<game>/.modweave/restore_points/<id>/``::

    restore_point.json      RestorePointInfo metadata
    data/<relpath>          copy of each captured path that existed
"""

import logging
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from modweave.backup.base import BackupStore
from modweave.config.parser import (
    SETTINGS_FILE,
    STATE_FILE,
    ConfigError,
    load_json,
    save_json,
)
from modweave.config.schemas import RestorePointInfo
from modweave.core.errors import RestoreFailure
from modweave.core.installation import Installation
from modweave.utils.filesystem import remove_directory

logger = logging.getLogger(__name__)

INFO_FILE = "restore_point.json"
DATA_DIR = "data"


def _new_restore_point_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


def captured_paths(installation: Installation) -> list[str]:
    """Paths a restore point captures, relative to the installation root."""
    state_dir = installation.state_dir
    paths = [
        installation.plugin_root,
        installation.disabled_root,
        installation.shipped_root,
        state_dir / STATE_FILE,
        state_dir / SETTINGS_FILE,
    ]
    return [p.relative_to(installation.root).as_posix() for p in paths]


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _copy(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if src.is_dir():
        shutil.copytree(src, dest, symlinks=True)
    else:
        shutil.copy2(src, dest)


class SnapshotBackupStore(BackupStore):
    """Backup store keeping full directory copies inside the installation."""

    def __init__(self) -> None:
        self._locations: dict[str, Path] = {}

    def _restore_point_dir(self, restore_point_id: str, installation: Installation) -> Path:
        return installation.restore_points_root / restore_point_id

    def create_restore_point(self, installation: Installation, label: str) -> str:
        restore_point_id = _new_restore_point_id()
        rp_dir = self._restore_point_dir(restore_point_id, installation)
        data_dir = rp_dir / DATA_DIR
        paths = captured_paths(installation)

        try:
            data_dir.mkdir(parents=True)
            for relpath in paths:
                source = installation.root / relpath
                if source.exists():
                    _copy(source, data_dir / relpath)
            info = RestorePointInfo(
                id=restore_point_id,
                label=label,
                created_at=datetime.now(timezone.utc),
                installation_root=str(installation.root),
                paths=paths,
            )
            save_json(rp_dir / INFO_FILE, info.model_dump(mode="json"))
        except OSError:
            # A half-written snapshot must never be offered for restore
            remove_directory(rp_dir)
            raise

        self._locations[restore_point_id] = rp_dir
        logger.info("Created restore point %s (%s)", restore_point_id, label)

        keep = installation.config.max_restore_points
        if keep is not None:
            try:
                self.prune(installation, keep, protect=restore_point_id)
            except OSError as e:
                logger.warning("Cannot prune old restore points: %s", e)
        return restore_point_id

    def info(self, restore_point_id: str, installation: Installation) -> RestorePointInfo:
        info_path = self._restore_point_dir(restore_point_id, installation) / INFO_FILE
        try:
            return RestorePointInfo.model_validate(load_json(info_path))
        except (ConfigError, ValidationError) as e:
            raise RestoreFailure(
                f"Cannot read restore point {restore_point_id}: {e}",
                restore_point_id=restore_point_id,
            ) from e

    def restore(self, restore_point_id: str, installation: Installation) -> None:
        info = self.info(restore_point_id, installation)
        data_dir = self._restore_point_dir(restore_point_id, installation) / DATA_DIR
        logger.info("Restoring %s from restore point %s", installation.root, restore_point_id)

        try:
            for relpath in info.paths:
                live = installation.root / relpath
                saved = data_dir / relpath
                _remove(live)
                if saved.exists():
                    _copy(saved, live)
                logger.debug("Restored %s", relpath)
        except OSError as e:
            raise RestoreFailure(
                f"Restore of {installation.root} failed: {e}",
                restore_point_id=restore_point_id,
            ) from e

    def list(self, installation: Installation) -> list[str]:
        root = installation.restore_points_root
        if not root.is_dir():
            return []
        ids = []
        for entry in sorted(root.iterdir()):
            if (entry / INFO_FILE).is_file():
                ids.append(entry.name)
                self._locations[entry.name] = entry
        return ids

    def delete(self, restore_point_id: str) -> None:
        rp_dir = self._locations.pop(restore_point_id, None)
        if rp_dir is None:
            raise KeyError(f"Unknown restore point: {restore_point_id}")
        remove_directory(rp_dir)
        logger.info("Deleted restore point %s", restore_point_id)
