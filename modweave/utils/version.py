"""Semantic versioning and constraint evaluation."""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Literal

from modweave.core.errors import InvalidConstraintFormat

UpdateDelta = Literal["patch", "minor", "major"]


@total_ordering
@dataclass
class SemVer:
    """Semantic version representation."""

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    _SEMVER_PATTERN = re.compile(
        r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
        r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
        r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
        r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
    )
    _LOOSE_PATTERN = re.compile(r"^[vV]?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-+].*)?$")

    @classmethod
    def parse(cls, version_str: str) -> "SemVer":
        """Parse a semver string.

        Args:
            version_str: Version string (e.g., "1.2.3", "2.0.0-beta.1+build.123")

        Returns:
            SemVer instance

        Raises:
            InvalidConstraintFormat: If the string is not valid semver
        """
        match = cls._SEMVER_PATTERN.match(version_str.strip())
        if not match:
            raise InvalidConstraintFormat(version_str, "Invalid semver")

        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            prerelease=match.group("prerelease"),
            build=match.group("build"),
        )

    @classmethod
    def coerce(cls, version_str: str) -> "SemVer":
        """Parse a loosely formatted version such as "v1.2" or "1.4.0-beta".

        Catalog entries are not always strict semver; missing components
        default to zero.
        """
        try:
            return cls.parse(version_str.lstrip("vV"))
        except InvalidConstraintFormat:
            pass

        match = cls._LOOSE_PATTERN.match(version_str.strip())
        if not match:
            raise InvalidConstraintFormat(version_str, "Invalid semver")
        major, minor, patch = (int(g) if g else 0 for g in match.groups())
        return cls(major, minor, patch)

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        if self.build:
            version += f"+{self.build}"
        return version

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return (
            self.major == other.major
            and self.minor == other.minor
            and self.patch == other.patch
            and self.prerelease == other.prerelease
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented

        # Numeric comparison of major.minor.patch, never lexical
        if (self.major, self.minor, self.patch) != (other.major, other.minor, other.patch):
            return (self.major, self.minor, self.patch) < (other.major, other.minor, other.patch)

        # Prerelease versions have lower precedence
        if self.prerelease and not other.prerelease:
            return True
        if not self.prerelease and other.prerelease:
            return False
        if self.prerelease and other.prerelease:
            return self._compare_prerelease(self.prerelease, other.prerelease) < 0

        return False

    @staticmethod
    def _compare_prerelease(a: str, b: str) -> int:
        """Compare two prerelease strings."""
        parts_a = a.split(".")
        parts_b = b.split(".")

        for pa, pb in zip(parts_a, parts_b, strict=False):
            # Numeric identifiers are compared as integers
            try:
                na, nb = int(pa), int(pb)
                if na != nb:
                    return na - nb
            except ValueError:
                if pa != pb:
                    return -1 if pa < pb else 1

        # Longer prerelease has higher precedence
        return len(parts_a) - len(parts_b)

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))


class VersionConstraint:
    """A parsed version constraint expression.

    Supported forms:
    - exact: ``1.2.3`` or ``=1.2.3``
    - approximate: ``~1.2.0`` (same major.minor, patch >= 0)
    - compatible: ``^1.2.0`` (same major, >= given)
    - range: comma-separated inequalities ANDed together,
      e.g. ``>=1.0.0,<2.0.0`` (operators ``>= <= > < = !=``)
    - any: ``*``, ``latest`` or an empty string
    """

    _OPERATORS = (">=", "<=", "!=", ">", "<", "=")

    def __init__(self, expression: str):
        """Initialize a constraint.

        Args:
            expression: Constraint expression

        Raises:
            InvalidConstraintFormat: If the expression is malformed
        """
        self.expression = expression
        self._constraints = self._parse(expression)

    def _parse(self, expression: str) -> list[tuple[str, SemVer]]:
        """Parse an expression into (operator, version) pairs."""
        spec = expression.strip()

        if spec in ("", "*", "latest"):
            return []

        if spec.startswith("~"):
            base = SemVer.parse(spec[1:].strip())
            return [(">=", base), ("<", SemVer(base.major, base.minor + 1, 0))]

        if spec.startswith("^"):
            base = SemVer.parse(spec[1:].strip())
            if base.major == 0:
                if base.minor == 0:
                    return [(">=", base), ("<", SemVer(0, 0, base.patch + 1))]
                return [(">=", base), ("<", SemVer(0, base.minor + 1, 0))]
            return [(">=", base), ("<", SemVer(base.major + 1, 0, 0))]

        constraints: list[tuple[str, SemVer]] = []
        for part in spec.split(","):
            part = part.strip()
            if not part:
                raise InvalidConstraintFormat(expression, "empty clause")
            for op in self._OPERATORS:
                if part.startswith(op):
                    constraints.append((op, SemVer.parse(part[len(op) :].strip())))
                    break
            else:
                if len(spec.split(",")) > 1:
                    raise InvalidConstraintFormat(expression, f"missing operator in {part!r}")
                constraints.append(("=", SemVer.parse(part)))
        return constraints

    def matches(self, version: SemVer | str) -> bool:
        """Check if a version satisfies this constraint.

        Args:
            version: Version to check

        Returns:
            True if the version satisfies every clause
        """
        if isinstance(version, str):
            version = SemVer.parse(version)

        for op, bound in self._constraints:
            if op == ">=" and version < bound:
                return False
            if op == "<=" and version > bound:
                return False
            if op == ">" and version <= bound:
                return False
            if op == "<" and version >= bound:
                return False
            if op == "=" and version != bound:
                return False
            if op == "!=" and version == bound:
                return False

        return True

    def __str__(self) -> str:
        return self.expression

    def __repr__(self) -> str:
        return f"VersionConstraint({self.expression!r})"


def validate_constraint(expression: str) -> str:
    """Validate a constraint expression, returning it unchanged.

    Raises:
        InvalidConstraintFormat: If the expression is malformed
    """
    VersionConstraint(expression)
    return expression


def satisfies(version: str, expression: str) -> bool:
    """Check whether a version satisfies a constraint expression.

    Raises:
        InvalidConstraintFormat: If either the version or the expression is malformed
    """
    return VersionConstraint(expression).matches(SemVer.parse(version))


def is_newer(a: str, b: str) -> bool:
    """Return True if version ``a`` is strictly newer than version ``b``."""
    return SemVer.coerce(a) > SemVer.coerce(b)


def classify_delta(current: str, available: str) -> UpdateDelta:
    """Classify the difference between two versions as patch, minor or major."""
    old = SemVer.coerce(current)
    new = SemVer.coerce(available)
    if new.major != old.major:
        return "major"
    if new.minor != old.minor:
        return "minor"
    return "patch"


def find_best_version(expression: str, available: list[str]) -> str | None:
    """Find the highest version from a list that satisfies an expression.

    Args:
        expression: Constraint expression
        available: Candidate version strings (unparsable entries are skipped)

    Returns:
        Best matching version, or None if no match
    """
    constraint = VersionConstraint(expression)
    matching: list[tuple[SemVer, str]] = []

    for v in available:
        try:
            semver = SemVer.parse(v)
        except InvalidConstraintFormat:
            continue
        if constraint.matches(semver):
            matching.append((semver, v))

    if not matching:
        return None

    return max(matching, key=lambda pair: pair[0])[1]
