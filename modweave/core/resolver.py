"""Dependency resolver for modweave.

This module turns a set of requested mods into an ordered installation plan:
it walks transitive dependencies, picks a version for every mod that
satisfies all constraints pointing at it, orders the result dependencies
first and reports declared conflicts. Resolution never touches the
filesystem.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from modweave.config.schemas import (
    ConflictRecord,
    InstalledMod,
    ModManifest,
    PlanStep,
    ResolutionOption,
    ResolutionPlan,
)
from modweave.core.errors import (
    DependencyCycle,
    ModNotFound,
    VersionConstraintUnsatisfiable,
)
from modweave.utils.graph import find_cycles, kahn_order
from modweave.utils.version import SemVer, VersionConstraint

logger = logging.getLogger(__name__)

REQUESTED = "requested"

VersionLister = Callable[[str], list[str]]
DescriptorLookup = Callable[[str, str], ModManifest | None]


@dataclass
class ModRequest:
    """A request to install or upgrade a mod."""

    mod_id: str
    constraint: str = "*"
    upgrade: bool = False  # prefer the newest match even if the installed version satisfies

    @classmethod
    def parse(cls, text: str, upgrade: bool = False) -> "ModRequest":
        """Parse ``mod_id`` or ``mod_id@constraint``."""
        mod_id, sep, constraint = text.partition("@")
        return cls(
            mod_id=mod_id.strip(),
            constraint=constraint.strip() if sep else "*",
            upgrade=upgrade,
        )


class DependencyResolver:
    """Resolves mod dependencies into a ResolutionPlan.

    This resolver:
    1. Walks requested mods and their dependencies
    2. Selects the highest version satisfying every constraint, keeping an
       installed version that still satisfies unless an upgrade was requested
    3. Detects circular dependencies
    4. Orders the plan dependencies first
    5. Reports declared conflicts as unresolved plan entries
    """

    MAX_PASSES = 100

    def __init__(
        self,
        installed: dict[str, InstalledMod],
        list_versions: VersionLister | None = None,
        get_descriptor: DescriptorLookup | None = None,
    ):
        """Initialize the resolver.

        Args:
            installed: Currently installed mods by id
            list_versions: Callable returning published versions of a mod
            get_descriptor: Callable returning the manifest of a mod version
        """
        self._installed = installed
        self._list_versions = list_versions or (lambda _mod_id: [])
        self._get_descriptor = get_descriptor or (lambda _mod_id, _version: None)

    def resolve(self, requests: list[ModRequest]) -> ResolutionPlan:
        """Resolve requested mods into a plan.

        Raises:
            InvalidConstraintFormat: If a constraint expression is malformed
            DependencyCycle: If the selected mods depend on each other circularly
            VersionConstraintUnsatisfiable: If no version satisfies every constraint
            ModNotFound: If a mod is neither installed nor published
        """
        requested_ids = {r.mod_id for r in requests}
        upgrades = {r.mod_id for r in requests if r.upgrade}
        # target -> requirer -> expression
        requirements: dict[str, dict[str, str]] = {}
        for request in requests:
            requirements.setdefault(request.mod_id, {})[REQUESTED] = request.constraint

        selected: dict[str, ModManifest] = {}
        queue = sorted(requested_ids)
        passes = 0

        while queue:
            passes += 1
            if passes > self.MAX_PASSES * max(len(requirements), 1):
                mod_id = queue[0]
                raise VersionConstraintUnsatisfiable(
                    mod_id, self._constraints_on(mod_id, requirements, selected)
                )

            mod_id = queue.pop(0)
            constraints = self._constraints_on(mod_id, requirements, selected)
            version = self._choose_version(mod_id, constraints, mod_id in upgrades)

            current = selected.get(mod_id)
            if current is not None and current.version == version:
                continue

            descriptor = self._descriptor(mod_id, version)
            if current is not None:
                logger.debug("Reselecting %s: %s -> %s", mod_id, current.version, version)
                for reqs in requirements.values():
                    reqs.pop(mod_id, None)
            selected[mod_id] = descriptor
            logger.debug("Selected %s@%s", mod_id, version)

            for dep in descriptor.dependencies:
                target = dep.target_mod_id
                if dep.optional and target not in self._installed and target not in requested_ids:
                    logger.debug("Ignoring unmet optional dependency %s -> %s", mod_id, target)
                    continue
                requirements.setdefault(target, {})[mod_id] = dep.constraint_expression
                if target not in queue:
                    queue.append(target)

        order = self._order(selected)
        plan = ResolutionPlan()
        for mod_id in order:
            plan.steps.append(self._plan_step(selected[mod_id], mod_id in requested_ids))
        plan.unresolved = self._declared_conflicts(selected)

        logger.info(
            "Resolved %d mod(s): %d change(s), %d unresolved",
            len(plan.steps),
            len(plan.changes),
            len(plan.unresolved),
        )
        return plan

    def resolve_updates(self, updates: dict[str, str]) -> ResolutionPlan:
        """Resolve a batch of updates to exact target versions.

        Args:
            updates: Mod id -> target version
        """
        return self.resolve(
            [
                ModRequest(mod_id, constraint=version, upgrade=True)
                for mod_id, version in updates.items()
            ]
        )

    def _constraints_on(
        self,
        mod_id: str,
        requirements: dict[str, dict[str, str]],
        selected: dict[str, ModManifest],
    ) -> list[tuple[str, str]]:
        """Collect (requirer, expression) pairs pointing at a mod.

        Installed mods that are not part of the plan keep their constraints.
        """
        constraints = sorted(requirements.get(mod_id, {}).items())
        for other_id, other in sorted(self._installed.items()):
            if other_id == mod_id or other_id in selected or not other.enabled:
                continue
            dep = other.descriptor.dependency_on(mod_id)
            if dep is not None:
                constraints.append((other_id, dep.constraint_expression))
        return constraints

    def _choose_version(
        self, mod_id: str, constraints: list[tuple[str, str]], upgrade: bool
    ) -> str:
        parsed = [VersionConstraint(expr) for _, expr in constraints]
        installed = self._installed.get(mod_id)

        if installed is not None and not upgrade:
            current = SemVer.parse(installed.installed_version)
            if all(c.matches(current) for c in parsed):
                return installed.installed_version

        candidates: dict[SemVer, str] = {}
        for version in self._list_versions(mod_id):
            try:
                candidates[SemVer.parse(version)] = version
            except ValueError:
                logger.debug("Skipping unparsable version %s of %s", version, mod_id)
        if installed is not None:
            candidates.setdefault(
                SemVer.parse(installed.installed_version), installed.installed_version
            )

        if not candidates:
            raise ModNotFound(mod_id)

        matching = [v for v in candidates if all(c.matches(v) for c in parsed)]
        if not matching:
            raise VersionConstraintUnsatisfiable(mod_id, constraints)

        best = max(matching)
        # Prefer the installed version when it ties with the best match
        if installed is not None and SemVer.parse(installed.installed_version) == best:
            return installed.installed_version
        return candidates[best]

    def _descriptor(self, mod_id: str, version: str) -> ModManifest:
        installed = self._installed.get(mod_id)
        if installed is not None and installed.installed_version == version:
            return installed.descriptor
        descriptor = self._get_descriptor(mod_id, version)
        if descriptor is None:
            raise ModNotFound(mod_id, version)
        return descriptor

    def _order(self, selected: dict[str, ModManifest]) -> list[str]:
        graph = {
            mod_id: {d.target_mod_id for d in m.dependencies if d.target_mod_id in selected}
            for mod_id, m in selected.items()
        }
        order, residual = kahn_order(graph)
        if residual:
            cycles = find_cycles({k: v for k, v in graph.items() if k in residual})
            involved = sorted({m for cycle in cycles for m in cycle}) or sorted(residual)
            raise DependencyCycle(involved)
        return order

    def _plan_step(self, descriptor: ModManifest, requested: bool) -> PlanStep:
        installed = self._installed.get(descriptor.id)
        if installed is None:
            action = "install"
        elif installed.installed_version == descriptor.version:
            action = "skip"
        else:
            action = "upgrade"
        return PlanStep(
            action=action,
            mod_id=descriptor.id,
            target_version=descriptor.version,
            current_version=installed.installed_version if installed else None,
            descriptor=descriptor,
            requested=requested,
        )

    def _declared_conflicts(self, selected: dict[str, ModManifest]) -> list[ConflictRecord]:
        """Report declared conflicts involving at least one planned mod."""
        prospective = dict(selected)
        for mod_id, mod in self._installed.items():
            if mod_id not in prospective and mod.enabled:
                prospective[mod_id] = mod.descriptor

        records: list[ConflictRecord] = []
        seen: set[tuple[str, str]] = set()
        for mod_id in sorted(selected):
            for other_id in sorted(prospective):
                if other_id == mod_id:
                    continue
                a, b = prospective[mod_id], prospective[other_id]
                if other_id not in a.declared_conflicts and mod_id not in b.declared_conflicts:
                    continue
                pair = (min(mod_id, other_id), max(mod_id, other_id))
                if pair in seen:
                    continue
                seen.add(pair)
                records.append(declared_conflict_record(*pair))
        return records


def declared_conflict_record(mod_a: str, mod_b: str) -> ConflictRecord:
    """Build the record for two mods that declare a conflict with each other."""
    return ConflictRecord(
        type="dependency_conflict",
        severity="error",
        involved_mod_ids=[mod_a, mod_b],
        description=f"{mod_a} and {mod_b} declare a conflict with each other",
        resolution_options=[
            ResolutionOption(
                strategy="remove_mod",
                description=f"Install only one of {mod_a} and {mod_b}",
            ),
            ResolutionOption(
                strategy="acknowledge",
                description="Proceed anyway after explicit acknowledgment",
            ),
        ],
    )
