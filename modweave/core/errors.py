"""Error taxonomy for modweave.

Every error carries a ``kind`` string so callers can report a structured
result without inspecting exception types. Only :class:`RestoreFailure` is
fatal; everything else is recoverable by the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modweave.config.schemas import ConflictRecord


class ModweaveError(Exception):
    """Base class for all modweave errors."""

    kind = "ModweaveError"
    fatal = False

    def __init__(self, message: str, mod_id: str | None = None):
        self.mod_id = mod_id
        super().__init__(message)


class InvalidConstraintFormat(ModweaveError, ValueError):
    """A version or constraint expression could not be parsed."""

    kind = "InvalidConstraintFormat"

    def __init__(self, expression: str, reason: str = ""):
        self.expression = expression
        message = f"Invalid version constraint: {expression!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class DependencyCycle(ModweaveError):
    """The dependency graph contains a cycle."""

    kind = "DependencyCycle"

    def __init__(self, mod_ids: list[str]):
        self.mod_ids = sorted(mod_ids)
        super().__init__(f"Circular dependency between: {', '.join(self.mod_ids)}")


class VersionConstraintUnsatisfiable(ModweaveError):
    """No available version satisfies every constraint on a mod."""

    kind = "VersionConstraintUnsatisfiable"

    def __init__(self, mod_id: str, constraints: list[tuple[str, str]]):
        self.constraints = constraints
        req_strs = [f"{requirer} requires {expr}" for requirer, expr in constraints]
        super().__init__(
            f"No version of {mod_id} satisfies: {', '.join(req_strs)}",
            mod_id=mod_id,
        )


class ConflictBlocking(ModweaveError):
    """One or more error/critical conflicts block the operation."""

    kind = "ConflictBlocking"

    def __init__(self, records: list[ConflictRecord]):
        self.records = records
        lines = [f"  - [{r.severity}] {r.description}" for r in records[:5]]
        if len(records) > 5:
            lines.append(f"  ... and {len(records) - 5} more")
        super().__init__(f"{len(records)} blocking conflict(s):\n" + "\n".join(lines))


class ConflictWarning(ModweaveError):
    """Non-blocking conflicts, reported for information only."""

    kind = "ConflictWarning"

    def __init__(self, records: list[ConflictRecord]):
        self.records = records
        super().__init__(f"{len(records)} conflict warning(s)")


class StagingIOError(ModweaveError):
    """Fetching or unpacking a payload into the staging area failed."""

    kind = "StagingIOError"


class ChecksumMismatch(ModweaveError):
    """A staged payload does not match its published checksum."""

    kind = "ChecksumMismatch"

    def __init__(self, mod_id: str, algorithm: str, expected: str, actual: str):
        self.algorithm = algorithm
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {mod_id} ({algorithm}): expected {expected}, got {actual}",
            mod_id=mod_id,
        )


class SignatureInvalid(ModweaveError):
    """A staged payload carries a signature that does not verify."""

    kind = "SignatureInvalid"


class ConfigParseError(ModweaveError):
    """A configuration file could not be parsed or its format is unsupported."""

    kind = "ConfigParseError"

    def __init__(self, message: str, path: str | None = None, mod_id: str | None = None):
        self.path = path
        super().__init__(message, mod_id=mod_id)


class CommitPartialFailure(ModweaveError):
    """Moving staged files into the live directory failed partway."""

    kind = "CommitPartialFailure"

    def __init__(self, message: str, mod_id: str | None = None, undo_succeeded: bool = True):
        self.undo_succeeded = undo_succeeded
        super().__init__(message, mod_id=mod_id)


class RestoreFailure(ModweaveError):
    """Restoring a restore point failed. Manual intervention is required."""

    kind = "RestoreFailure"
    fatal = True

    def __init__(self, message: str, restore_point_id: str | None = None):
        self.restore_point_id = restore_point_id
        if restore_point_id:
            message += f" (restore point retained for manual recovery: {restore_point_id})"
        super().__init__(message)


class OperationCancelled(ModweaveError):
    """The operation was cancelled at a step boundary."""

    kind = "OperationCancelled"


class ReleaseLookupError(ModweaveError):
    """A release catalog could not be read or a payload could not be fetched."""

    kind = "ReleaseLookupError"

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class ModNotFound(ModweaveError):
    """A requested mod is neither installed nor available from the catalog."""

    kind = "ModNotFound"

    def __init__(self, mod_id: str, version: str | None = None):
        message = f"Mod not found: {mod_id}"
        if version:
            message += f"@{version}"
        super().__init__(message, mod_id=mod_id)


class IllegalStageTransition(ModweaveError):
    """A stage was asked to move to a state its current state cannot reach."""

    kind = "IllegalStageTransition"

    def __init__(self, mod_id: str, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Stage for {mod_id} cannot go from {current} to {requested}", mod_id)


class ModInUse(ModweaveError):
    """A mod cannot be removed while enabled mods depend on it."""

    kind = "ModInUse"

    def __init__(self, mod_id: str, dependents: list[str]):
        self.dependents = sorted(dependents)
        super().__init__(
            f"{mod_id} is required by {', '.join(self.dependents)}; use force to remove it",
            mod_id=mod_id,
        )
