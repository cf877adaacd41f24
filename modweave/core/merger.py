"""Three-way merge of mod configuration files across upgrades.

For every key the new version ships (N), the merge compares the default the
old version shipped (O) with the user's current value (U):

- key not in O: new setting, take N
- key in O and U differs from O: the user customized it, keep U
- otherwise: adopt the new default N

Keys the new version no longer ships are dropped and logged. The merge is
idempotent: merging the result against the same O and N again changes nothing.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from modweave.config.formats import FlatConfig, format_key, get_strategy
from modweave.config.schemas import ConfigFile
from modweave.core.errors import ConfigParseError
from modweave.utils.filesystem import write_text_atomic

logger = logging.getLogger(__name__)


@dataclass
class MergeReport:
    """What a merge did to one configuration file."""

    path: Path
    owner_mod_id: str
    kept_user_keys: list[str] = field(default_factory=list)
    adopted_defaults: list[str] = field(default_factory=list)
    new_keys: list[str] = field(default_factory=list)
    dropped_keys: list[str] = field(default_factory=list)
    backup_path: Path | None = None
    written: bool = False


def merge_values(
    original: FlatConfig | None, user: FlatConfig, new: FlatConfig
) -> FlatConfig:
    """Merge flat configs, preserving user edits.

    Args:
        original: Values shipped with the old version, or None when unknown
            (every user value present in ``new`` is then kept)
        user: Current on-disk values
        new: Values shipped with the new version

    Returns:
        Merged values, ordered like ``new``
    """
    merged, _ = _merge(original, user, new)
    return merged


def _merge(
    original: FlatConfig | None, user: FlatConfig, new: FlatConfig
) -> tuple[FlatConfig, dict[str, list[str]]]:
    merged: FlatConfig = {}
    decisions: dict[str, list[str]] = {"kept": [], "adopted": [], "new": [], "dropped": []}

    for key, new_value in new.items():
        if original is None:
            if key in user:
                merged[key] = user[key]
                decisions["kept"].append(format_key(key))
            else:
                merged[key] = new_value
                decisions["new"].append(format_key(key))
        elif key not in original:
            merged[key] = new_value
            decisions["new"].append(format_key(key))
        elif key in user and user[key] != original[key]:
            merged[key] = user[key]
            decisions["kept"].append(format_key(key))
        else:
            merged[key] = new_value
            decisions["adopted"].append(format_key(key))

    decisions["dropped"] = [format_key(k) for k in user if k not in new]
    return merged, decisions


def next_backup_path(path: Path) -> Path:
    """First free ``<name>.bak`` (or time-stamped variant) beside ``path``."""
    backup = path.with_name(f"{path.name}.bak")
    if backup.exists():
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        backup = path.with_name(f"{path.name}.{stamp}.bak")
    return backup


class ConfigMerger:
    """Merges configuration files, keeping a backup of the user's copy."""

    def merge(
        self,
        config: ConfigFile,
        original_text: str | None,
        new_text: str,
    ) -> tuple[MergeReport, str | None]:
        """Merge the file at ``config.path`` without writing anything.

        Args:
            config: The user's configuration file (U)
            original_text: Text shipped with the old version (O), None if unknown
            new_text: Text shipped with the new version (N)

        Returns:
            The report and the text the file should now hold, or None when
            the user's file is already up to date

        Raises:
            ConfigParseError: If any input cannot be parsed or the format is
                unsupported
        """
        path = config.path
        report = MergeReport(path=path, owner_mod_id=config.owner_mod_id)
        strategy = get_strategy(config.format)

        try:
            user_text = path.read_text(encoding="utf-8") if path.exists() else None
        except OSError as e:
            raise ConfigParseError(
                f"Cannot read {path}: {e}", path=str(path), mod_id=config.owner_mod_id
            ) from e

        try:
            new = strategy.load(new_text)
            if user_text is None:
                # Nothing to preserve; the new defaults go in as shipped
                report.new_keys = [format_key(k) for k in new]
                return report, new_text
            user = strategy.load(user_text)
            original = strategy.load(original_text) if original_text is not None else None
        except ConfigParseError as e:
            e.path = str(path)
            e.mod_id = config.owner_mod_id
            logger.error("Cannot merge %s: %s", path, e)
            raise

        merged, decisions = _merge(original, user, new)
        report.kept_user_keys = decisions["kept"]
        report.adopted_defaults = decisions["adopted"]
        report.new_keys = decisions["new"]
        report.dropped_keys = decisions["dropped"]
        for key in report.dropped_keys:
            logger.warning(
                "Dropping %s from %s: no longer shipped by %s", key, path, config.owner_mod_id
            )

        merged_text = strategy.dump(merged, new_text)
        if merged_text == user_text:
            logger.debug("Config %s already up to date", path)
            return report, None

        logger.info(
            "Merged %s: kept %d user value(s), adopted %d default(s), %d new, %d dropped",
            path,
            len(report.kept_user_keys),
            len(report.adopted_defaults),
            len(report.new_keys),
            len(report.dropped_keys),
        )
        return report, merged_text

    def merge_file(
        self,
        config: ConfigFile,
        original_text: str | None,
        new_text: str,
    ) -> MergeReport:
        """Merge the file at ``config.path`` in place.

        The user's copy is kept next to it as ``<name>.bak``.

        Raises:
            ConfigParseError: If any input cannot be parsed or the format is
                unsupported; the file is left untouched
        """
        path = config.path
        report, merged_text = self.merge(config, original_text, new_text)
        if merged_text is None:
            return report

        if path.exists():
            backup = next_backup_path(path)
            shutil.copy2(path, backup)
            report.backup_path = backup
        else:
            logger.info("Installed default config %s", path)
        write_text_atomic(path, merged_text)
        report.written = True
        return report

    def merge_text(
        self,
        config_format: str,
        original_text: str | None,
        user_text: str,
        new_text: str,
    ) -> str:
        """Merge texts without touching the filesystem.

        Raises:
            ConfigParseError: If any input cannot be parsed
        """
        strategy = get_strategy(config_format)
        original = strategy.load(original_text) if original_text is not None else None
        merged = merge_values(original, strategy.load(user_text), strategy.load(new_text))
        return strategy.dump(merged, new_text)
