"""Conflict detection over a prospective set of installed mods.

The detector never changes anything on disk. It looks at the mod set as it
would be after a plan is committed and reports four kinds of conflict:

- file: two enabled mods ship the same mod-relative path with different
  content (critical); manifest.json is every payload's own and never counts
- dependency: an enabled mod's constraint is not met, or two enabled mods
  declare a conflict with each other (error)
- load order: explicit ordering hints and dependencies form a cycle (error)
- config overlap: two enabled mods write the same shared config key (warning)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from modweave.config.parser import MANIFEST_FILE
from modweave.config.schemas import (
    BLOCKING_SEVERITIES,
    CompatibilityStatus,
    ConflictRecord,
    InstalledMod,
    ResolutionOption,
)
from modweave.core.errors import InvalidConstraintFormat
from modweave.core.resolver import declared_conflict_record
from modweave.utils.filesystem import normalize_relpath
from modweave.utils.graph import find_cycles
from modweave.utils.version import satisfies

logger = logging.getLogger(__name__)


@dataclass
class ProspectiveMod:
    """A mod as it would be installed after the pending plan commits.

    Args:
        mod: The installed-mod record (new or updated)
        payload_root: Directory the mod's files can be read from, if available
    """

    mod: InstalledMod
    payload_root: Path | None = None

    @property
    def mod_id(self) -> str:
        return self.mod.mod_id

    @property
    def enabled(self) -> bool:
        return self.mod.enabled


@dataclass
class _Owner:
    mod_id: str
    relpath: str
    digest: str
    payload_root: Path | None


@dataclass
class DetectionResult:
    """Conflict records plus the compatibility status derived for each mod."""

    records: list[ConflictRecord] = field(default_factory=list)
    compatibility: dict[str, CompatibilityStatus] = field(default_factory=dict)

    @property
    def blocking(self) -> list[ConflictRecord]:
        return [r for r in self.records if r.is_blocking]

    @property
    def warnings(self) -> list[ConflictRecord]:
        return [r for r in self.records if not r.is_blocking]


def partition(records: list[ConflictRecord]) -> tuple[list[ConflictRecord], list[ConflictRecord]]:
    """Split records into (blocking, warnings)."""
    blocking = [r for r in records if r.severity in BLOCKING_SEVERITIES]
    warnings = [r for r in records if r.severity not in BLOCKING_SEVERITIES]
    return blocking, warnings


def _is_byte_prefix(shorter: Path, longer: Path) -> bool:
    size = shorter.stat().st_size
    if size > longer.stat().st_size:
        return False
    with open(shorter, "rb") as a, open(longer, "rb") as b:
        while True:
            chunk = a.read(65536)
            if not chunk:
                return True
            if b.read(len(chunk)) != chunk:
                return False


class ConflictDetector:
    """Finds conflicts in a prospective mod set."""

    def __init__(self, prospective: list[ProspectiveMod]):
        self._mods = {p.mod_id: p for p in prospective}

    @property
    def enabled_ids(self) -> list[str]:
        return sorted(mod_id for mod_id, p in self._mods.items() if p.enabled)

    def detect(self) -> DetectionResult:
        """Run every check and derive compatibility statuses."""
        result = DetectionResult()
        result.records.extend(self.file_conflicts())
        dependency_records, compatibility = self._check_dependencies()
        result.records.extend(dependency_records)
        result.records.extend(self.load_order_conflicts())
        result.records.extend(self.config_overlaps())
        result.compatibility = compatibility

        blocking, warnings = partition(result.records)
        logger.info(
            "Conflict check on %d mod(s): %d blocking, %d warning(s)",
            len(self._mods),
            len(blocking),
            len(warnings),
        )
        for record in warnings:
            logger.warning("%s: %s", record.type, record.description)
        return result

    # ------------------------------------------------------------------
    # (a) files
    # ------------------------------------------------------------------

    def file_conflicts(self) -> list[ConflictRecord]:
        """One critical record per path owned with differing content."""
        owners: dict[str, list[_Owner]] = {}
        for mod_id in self.enabled_ids:
            prospective = self._mods[mod_id]
            for relpath, digest in prospective.mod.file_hashes.items():
                path = normalize_relpath(relpath)
                if path == MANIFEST_FILE:
                    continue
                owners.setdefault(path, []).append(
                    _Owner(mod_id, relpath, digest.lower(), prospective.payload_root)
                )

        records = []
        for path in sorted(owners):
            claims = owners[path]
            if len({c.mod_id for c in claims}) < 2 or len({c.digest for c in claims}) < 2:
                continue
            involved = sorted({c.mod_id for c in claims})
            logger.debug("File conflict on %s between %s", path, ", ".join(involved))
            records.append(
                ConflictRecord(
                    type="file_conflict",
                    severity="critical",
                    involved_mod_ids=involved,
                    description=(
                        f"{path} is shipped with different content by {', '.join(involved)}"
                    ),
                    paths=[path],
                    resolution_options=self._file_options(claims),
                )
            )
        return records

    def _file_options(self, claims: list[_Owner]) -> list[ResolutionOption]:
        superset = self._superset_owner(claims)
        options = []
        if superset is not None:
            options.append(
                ResolutionOption(
                    strategy="keep_superset",
                    description=f"Keep the copy from {superset.mod_id}, which contains the others",
                    can_auto_resolve=True,
                )
            )
        options.append(
            ResolutionOption(
                strategy="choose_owner", description="Choose which mod's copy to keep"
            )
        )
        options.append(
            ResolutionOption(
                strategy="disable_mod", description="Disable one of the conflicting mods"
            )
        )
        return options

    def _superset_owner(self, claims: list[_Owner]) -> _Owner | None:
        """Find the owner whose file starts with every other owner's bytes."""
        files = [(c, c.payload_root / c.relpath) for c in claims if c.payload_root is not None]
        if len(files) != len(claims):
            return None
        try:
            files.sort(key=lambda pair: pair[1].stat().st_size, reverse=True)
            largest, largest_path = files[0]
            for other, other_path in files[1:]:
                if other.digest == largest.digest:
                    continue
                if not _is_byte_prefix(other_path, largest_path):
                    return None
        except OSError as e:
            logger.debug("Cannot compare conflicting files: %s", e)
            return None
        return largest

    # ------------------------------------------------------------------
    # (b) dependencies
    # ------------------------------------------------------------------

    def dependency_conflicts(self) -> list[ConflictRecord]:
        """Unmet constraints and declared conflicts among enabled mods."""
        records, _ = self._check_dependencies()
        return records

    def assess_compatibility(self) -> dict[str, CompatibilityStatus]:
        """Compatibility status of every mod in the set."""
        _, compatibility = self._check_dependencies()
        return compatibility

    def _check_dependencies(
        self,
    ) -> tuple[list[ConflictRecord], dict[str, CompatibilityStatus]]:
        records: list[ConflictRecord] = []
        compatibility: dict[str, CompatibilityStatus] = {}
        enabled = set(self.enabled_ids)

        for mod_id in sorted(self._mods):
            if mod_id not in enabled:
                compatibility[mod_id] = self._mods[mod_id].mod.compatibility_status
                continue

            required_violated = False
            optional_violated = False
            for dep in self._mods[mod_id].mod.descriptor.dependencies:
                problem = self._dependency_problem(dep.target_mod_id, dep.constraint_expression)
                if problem is None:
                    continue
                if dep.optional and dep.target_mod_id not in enabled:
                    # An absent optional dependency is not a violation
                    continue

                if dep.optional:
                    optional_violated = True
                else:
                    required_violated = True
                records.append(
                    ConflictRecord(
                        type="dependency_conflict",
                        severity="warning" if dep.optional else "error",
                        involved_mod_ids=sorted({mod_id, dep.target_mod_id}),
                        description=f"{mod_id} requires {dep.target_mod_id} "
                        f"{dep.constraint_expression}: {problem}",
                        resolution_options=[
                            ResolutionOption(
                                strategy="install_required_version",
                                description=f"Install a version of {dep.target_mod_id} "
                                f"matching {dep.constraint_expression}",
                            ),
                            ResolutionOption(
                                strategy="disable_mod",
                                description=f"Disable {mod_id}",
                            ),
                        ],
                    )
                )

            if required_violated:
                compatibility[mod_id] = "incompatible"
            elif optional_violated:
                compatibility[mod_id] = "compatible_with_issues"
            else:
                compatibility[mod_id] = "compatible"

        seen: set[tuple[str, str]] = set()
        for mod_id in sorted(enabled):
            for other_id in self._mods[mod_id].mod.descriptor.declared_conflicts:
                if other_id not in enabled or other_id == mod_id:
                    continue
                pair = (min(mod_id, other_id), max(mod_id, other_id))
                if pair not in seen:
                    seen.add(pair)
                    records.append(declared_conflict_record(*pair))
                    for involved in pair:
                        compatibility[involved] = "incompatible"

        return records, compatibility

    def _dependency_problem(self, target_id: str, expression: str) -> str | None:
        target = self._mods.get(target_id)
        if target is None:
            return "not installed"
        if not target.enabled:
            return "installed but disabled"
        version = target.mod.installed_version
        try:
            if satisfies(version, expression):
                return None
        except InvalidConstraintFormat as e:
            return str(e)
        return f"installed version {version} does not match"

    # ------------------------------------------------------------------
    # (c) load order
    # ------------------------------------------------------------------

    def load_order_graph(self) -> dict[str, set[str]]:
        """Edges ``a -> b`` meaning "a must load after b"."""
        enabled = set(self.enabled_ids)
        graph: dict[str, set[str]] = {mod_id: set() for mod_id in enabled}
        for mod_id in enabled:
            descriptor = self._mods[mod_id].mod.descriptor
            for other in descriptor.load_after:
                if other in enabled:
                    graph[mod_id].add(other)
            for other in descriptor.load_before:
                if other in enabled:
                    graph[other].add(mod_id)
            for dep in descriptor.dependencies:
                if dep.target_mod_id in enabled:
                    graph[mod_id].add(dep.target_mod_id)
        return graph

    def load_order_conflicts(self) -> list[ConflictRecord]:
        """One error record per cyclic group of ordering requirements."""
        records = []
        for cycle in find_cycles(self.load_order_graph()):
            records.append(
                ConflictRecord(
                    type="load_order_conflict",
                    severity="error",
                    involved_mod_ids=cycle,
                    description="Load order requirements form a cycle: " + " <-> ".join(cycle),
                    resolution_options=[
                        ResolutionOption(
                            strategy="drop_ordering_hint",
                            description="Remove one of the conflicting ordering requirements",
                        ),
                        ResolutionOption(
                            strategy="disable_mod", description="Disable one of the mods"
                        ),
                    ],
                )
            )
        return records

    # ------------------------------------------------------------------
    # (d) shared configuration
    # ------------------------------------------------------------------

    def config_overlaps(self) -> list[ConflictRecord]:
        """One warning per shared config key written by more than one mod."""
        writers: dict[str, list[str]] = {}
        for mod_id in self.enabled_ids:
            for key in self._mods[mod_id].mod.descriptor.shared_config_keys:
                writers.setdefault(key, []).append(mod_id)

        records = []
        for key in sorted(writers):
            mod_ids = sorted(set(writers[key]))
            if len(mod_ids) < 2:
                continue
            records.append(
                ConflictRecord(
                    type="config_overlap",
                    severity="warning",
                    involved_mod_ids=mod_ids,
                    description=f"{key} is written by {', '.join(mod_ids)}",
                    paths=[key],
                    resolution_options=[
                        ResolutionOption(
                            strategy="namespace_keys",
                            description="Prefix the key with each mod's id "
                            f"({', '.join(namespaced_key(m, key) for m in mod_ids)})",
                            can_auto_resolve=True,
                        ),
                        ResolutionOption(
                            strategy="choose_owner", description="Let one mod own the key"
                        ),
                    ],
                )
            )
        return records


def namespaced_key(mod_id: str, key: str) -> str:
    """Key name used when overlapping shared config keys are namespaced."""
    return f"{mod_id}.{key}"


def detect_conflicts(prospective: list[ProspectiveMod]) -> DetectionResult:
    """Convenience function to run every conflict check."""
    return ConflictDetector(prospective).detect()
