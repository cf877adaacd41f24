"""Staged installation of a single mod payload.

A stage moves through a fixed set of states::

    pending -> downloading -> verifying -> staged -> validating -> committing
            -> committed | rolled_back | failed

Everything up to ``committing`` happens in an isolated work directory below
``.modweave/staging``; only :meth:`InstallationStager.commit` writes to the
live plugin directory, and it either completes or undoes its own moves.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from modweave.config.parser import ConfigError, load_mod_manifest
from modweave.config.schemas import (
    ConflictRecord,
    InstalledMod,
    ModManifest,
    PlanStep,
    ReleaseInfo,
)
from modweave.core.conflicts import partition
from modweave.core.errors import (
    ChecksumMismatch,
    CommitPartialFailure,
    ConflictBlocking,
    ConflictWarning,
    IllegalStageTransition,
    ModweaveError,
    OperationCancelled,
    ReleaseLookupError,
    SignatureInvalid,
    StagingIOError,
)
from modweave.core.installation import Installation
from modweave.registry.base import ReleaseLookup
from modweave.registry.factory import fetch_location
from modweave.utils.filesystem import (
    extract_archive,
    hash_tree,
    iter_files,
    make_temp_directory,
    prune_empty_dirs,
    remove_directory,
)
from modweave.utils.progress import (
    CancellationToken,
    ProgressCallback,
    noop_progress,
    scaled_progress,
)
from modweave.utils.verification import checksums_match, compute_checksum, verify_signature

logger = logging.getLogger(__name__)

StageState = Literal[
    "pending",
    "downloading",
    "verifying",
    "staged",
    "validating",
    "committing",
    "committed",
    "rolled_back",
    "failed",
]

_ABORT = {"rolled_back", "failed"}
_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"downloading"} | _ABORT,
    "downloading": {"verifying"} | _ABORT,
    "verifying": {"staged"} | _ABORT,
    "staged": {"validating"} | _ABORT,
    "validating": {"committing"} | _ABORT,
    "committing": {"committed", "failed"},
    "committed": {"rolled_back"},
    "rolled_back": set(),
    "failed": set(),
}

EXECUTABLE_SUFFIXES = (".dll", ".exe", ".so")


@dataclass
class StageFailure:
    """Why a stage failed and whether it touched the live directory."""

    reason: str
    error_kind: str
    live_files_touched: bool = False


class InstallationStager:
    """Downloads, verifies and unpacks one mod payload, then commits it.

    The payload comes from the release lookup when a release is given, or
    from the descriptor's ``payload_location`` otherwise.
    """

    def __init__(
        self,
        installation: Installation,
        step: PlanStep,
        release: ReleaseInfo | None = None,
        lookup: ReleaseLookup | None = None,
        previous: InstalledMod | None = None,
        signing_key: str | None = None,
        require_signature: bool = False,
        progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        """Initialize the stager.

        Args:
            installation: Target installation
            step: Plan step being staged
            release: Published release to fetch, if any
            lookup: Release lookup used to fetch ``release``
            previous: Installed record of the mod being replaced, if any
            signing_key: Publisher key for signature verification
            require_signature: Fail unsigned payloads
            progress: Progress sink receiving (phase, fraction)
            cancel_token: Cancellation signal checked between steps
        """
        self._installation = installation
        self._step = step
        self._release = release
        self._lookup = lookup
        self._previous = previous
        self._signing_key = signing_key
        self._require_signature = require_signature
        self._progress = progress or noop_progress
        self._cancel = cancel_token or CancellationToken()

        self._state: StageState = "pending"
        self._work_dir: Path | None = None
        self._download_path: Path | None = None
        self._payload_dir: Path | None = None
        self._manifest: ModManifest | None = None
        self._file_hashes: dict[str, str] = {}
        self._extra_files: set[str] = set()
        self._placed: list[Path] = []
        self._displaced: list[tuple[Path, Path]] = []
        self._live_files_touched = False
        self.failure: StageFailure | None = None

    def __enter__(self) -> "InstallationStager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._state not in ("committed", "rolled_back", "failed"):
            self.rollback()
        self.discard()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> StageState:
        return self._state

    @property
    def mod_id(self) -> str:
        return self._step.mod_id

    @property
    def step(self) -> PlanStep:
        return self._step

    @property
    def previous(self) -> InstalledMod | None:
        return self._previous

    @property
    def payload_dir(self) -> Path | None:
        """Root of the unpacked payload once staged."""
        return self._payload_dir

    @property
    def manifest(self) -> ModManifest | None:
        return self._manifest

    @property
    def file_hashes(self) -> dict[str, str]:
        return dict(self._file_hashes)

    @property
    def live_files_touched(self) -> bool:
        return self._live_files_touched

    @property
    def target_enabled(self) -> bool:
        """Whether the mod lands in the plugin root (or stays disabled)."""
        return self._previous.enabled if self._previous is not None else True

    @property
    def target_dir(self) -> Path:
        if self._manifest is None:
            raise IllegalStageTransition(self.mod_id, self._state, "committing")
        return self._installation.mod_directory(
            self._manifest.mod_directory_name, self.target_enabled
        )

    def _transition(self, new_state: StageState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise IllegalStageTransition(self.mod_id, self._state, new_state)
        logger.debug("Stage %s: %s -> %s", self.mod_id, self._state, new_state)
        self._state = new_state

    def _fail(self, error: ModweaveError) -> None:
        self.failure = StageFailure(
            reason=str(error),
            error_kind=error.kind,
            live_files_touched=self._live_files_touched,
        )
        self._state = "failed"
        logger.error("Staging %s failed: %s", self.mod_id, error)

    def _boundary(self, step: str) -> None:
        try:
            self._cancel.raise_if_cancelled(step)
        except OperationCancelled:
            logger.info("Staging of %s cancelled before %s", self.mod_id, step)
            self.rollback()
            raise

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def download(self) -> Path:
        """Fetch the payload into the stage work directory.

        Raises:
            StagingIOError: If the payload cannot be fetched
            OperationCancelled: If cancellation was requested
        """
        self._boundary("downloading")
        self._transition("downloading")
        report = scaled_progress(self._progress, 0.0, 0.4)
        report("downloading", 0.0)

        self._work_dir = make_temp_directory(
            prefix=f"{self.mod_id}_", parent=self._installation.state_dir / "staging"
        )
        dest = self._work_dir / "download"
        try:
            if self._release is not None and self._lookup is not None:
                self._download_path = self._lookup.fetch_payload(self._release, dest)
            else:
                location = self._payload_location()
                self._download_path = fetch_location(location, dest)
        except StagingIOError as e:
            self._fail(e)
            self.discard()
            raise
        except (ReleaseLookupError, OSError) as e:
            error = StagingIOError(f"Cannot download {self.mod_id}: {e}", mod_id=self.mod_id)
            self._fail(error)
            self.discard()
            raise error from e

        report("downloading", 1.0)
        logger.info("Downloaded %s to %s", self.mod_id, self._download_path)
        return self._download_path

    def _payload_location(self) -> str:
        if self._release is not None:
            return self._release.download_url
        descriptor = self._step.descriptor
        if descriptor is None or not descriptor.payload_location:
            raise StagingIOError(f"No payload location for {self.mod_id}", mod_id=self.mod_id)
        return descriptor.payload_location

    def verify(self) -> None:
        """Check the downloaded payload's checksum and signature.

        Raises:
            ChecksumMismatch: If the checksum does not match
            SignatureInvalid: If the signature does not verify
            OperationCancelled: If cancellation was requested
        """
        self._boundary("verifying")
        if self._download_path is None:
            raise IllegalStageTransition(self.mod_id, self._state, "verifying")
        self._transition("verifying")
        report = scaled_progress(self._progress, 0.4, 0.6)
        report("verifying", 0.0)

        checksum, algorithm, signature = self._integrity()
        try:
            if checksum:
                actual = compute_checksum(self._download_path, algorithm)
                if not checksums_match(checksum, actual):
                    raise ChecksumMismatch(self.mod_id, algorithm, checksum, actual)
                logger.debug("Checksum of %s verified (%s)", self.mod_id, algorithm)
            else:
                logger.debug("No checksum published for %s", self.mod_id)

            if signature:
                if not self._signing_key:
                    raise SignatureInvalid(
                        f"{self.mod_id} is signed but no signing key is configured",
                        mod_id=self.mod_id,
                    )
                if not verify_signature(self._download_path, signature, self._signing_key):
                    raise SignatureInvalid(
                        f"Signature of {self.mod_id} does not verify", mod_id=self.mod_id
                    )
            elif self._require_signature:
                raise SignatureInvalid(f"{self.mod_id} is not signed", mod_id=self.mod_id)
        except (ChecksumMismatch, SignatureInvalid) as e:
            self._fail(e)
            self.discard()
            raise
        except (OSError, ValueError) as e:
            error = StagingIOError(f"Cannot verify {self.mod_id}: {e}", mod_id=self.mod_id)
            self._fail(error)
            self.discard()
            raise error from e

        report("verifying", 1.0)

    def _integrity(self) -> tuple[str | None, str, str | None]:
        """(checksum, algorithm, signature) from the release, else the descriptor."""
        if self._release is not None:
            return (
                self._release.checksum,
                self._release.checksum_algorithm,
                self._release.signature,
            )
        descriptor = self._step.descriptor
        if descriptor is None:
            return None, "sha256", None
        return descriptor.checksum, descriptor.checksum_algorithm, descriptor.signature

    def unpack(self) -> Path:
        """Unpack the payload and read its manifest.

        Returns:
            Root of the unpacked payload

        Raises:
            StagingIOError: If the payload is malformed
            OperationCancelled: If cancellation was requested
        """
        self._boundary("unpacking")
        if self._download_path is None or self._work_dir is None:
            raise IllegalStageTransition(self.mod_id, self._state, "staged")
        report = scaled_progress(self._progress, 0.6, 0.8)
        report("unpacking", 0.0)

        try:
            if self._download_path.is_dir():
                payload_dir = self._download_path
            else:
                payload_dir = extract_archive(self._download_path, self._work_dir / "payload")
            manifest = load_mod_manifest(payload_dir)
            self._check_manifest(manifest)
            self._check_executables(payload_dir)
            file_hashes = hash_tree(payload_dir)
        except StagingIOError as e:
            self._fail(e)
            self.discard()
            raise
        except (ConfigError, ValueError, OSError) as e:
            error = StagingIOError(f"Cannot unpack {self.mod_id}: {e}", mod_id=self.mod_id)
            self._fail(error)
            self.discard()
            raise error from e

        self._payload_dir = payload_dir
        self._manifest = manifest
        self._file_hashes = file_hashes
        self._transition("staged")
        report("unpacking", 1.0)
        logger.info("Staged %s@%s (%d file(s))", manifest.id, manifest.version, len(file_hashes))
        return payload_dir

    def _check_manifest(self, manifest: ModManifest) -> None:
        if manifest.id != self._step.mod_id:
            raise StagingIOError(
                f"Payload manifest is for {manifest.id}, expected {self._step.mod_id}",
                mod_id=self.mod_id,
            )
        if manifest.version != self._step.target_version:
            raise StagingIOError(
                f"Payload of {self.mod_id} is version {manifest.version}, "
                f"expected {self._step.target_version}",
                mod_id=self.mod_id,
            )

    def _check_executables(self, payload_dir: Path) -> None:
        for file_path in iter_files(payload_dir):
            if file_path.suffix.lower() in EXECUTABLE_SUFFIXES and file_path.stat().st_size == 0:
                raise StagingIOError(
                    f"Empty executable in payload of {self.mod_id}: "
                    f"{file_path.relative_to(payload_dir).as_posix()}",
                    mod_id=self.mod_id,
                )

    def stage(self) -> Path:
        """Run download, verify and unpack."""
        self.download()
        self.verify()
        return self.unpack()

    def validate(self, records: list[ConflictRecord]) -> ConflictWarning | None:
        """Accept or reject the stage given the conflict detector's output.

        Returns:
            The non-blocking records as a ConflictWarning, or None

        Raises:
            ConflictBlocking: If any record is blocking
            OperationCancelled: If cancellation was requested
        """
        self._boundary("validating")
        self._transition("validating")
        blocking, warnings = partition(records)
        if blocking:
            error = ConflictBlocking(blocking)
            self._fail(error)
            raise error
        return ConflictWarning(warnings) if warnings else None

    def staged_payload(self) -> tuple[ModManifest, Path]:
        """The manifest and payload root of an unpacked stage.

        Raises:
            IllegalStageTransition: If the payload has not been unpacked
        """
        if self._manifest is None or self._payload_dir is None:
            raise IllegalStageTransition(self.mod_id, self._state, "staged")
        return self._manifest, self._payload_dir

    def replace_staged_file(self, relpath: str, content: str) -> None:
        """Overwrite a staged file, e.g. with a merged configuration."""
        if self._payload_dir is None or self._state not in ("staged", "validating"):
            raise IllegalStageTransition(self.mod_id, self._state, "staged")
        path = self._payload_dir / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def add_staged_file(self, relpath: str, content: str) -> None:
        """Stage a file the payload does not ship, such as a config backup.

        It is committed and undone with the payload but is not recorded as
        one of the mod's files.
        """
        self.replace_staged_file(relpath, content)
        if relpath not in self._file_hashes:
            self._extra_files.add(relpath)

    # ------------------------------------------------------------------
    # Commit / rollback
    # ------------------------------------------------------------------

    def commit(self) -> Path:
        """Move the staged payload into the live directory.

        Live files that are replaced, and files of the previous version that
        the new version no longer ships, are moved into the stage's undo
        area first. Cancellation is not honoured here.

        Returns:
            The mod's live directory

        Raises:
            CommitPartialFailure: If a move fails; ``undo_succeeded`` tells
                whether the live directory was put back as it was
        """
        if self._payload_dir is None or self._work_dir is None:
            raise IllegalStageTransition(self.mod_id, self._state, "committing")
        if self._state == "staged":
            self._transition("validating")
        self._transition("committing")
        report = scaled_progress(self._progress, 0.8, 1.0)

        target = self.target_dir
        undo_root = self._work_dir / "undo"
        staged_files = sorted(self._file_hashes) + sorted(self._extra_files)
        total = max(len(staged_files), 1)

        try:
            for index, old_path in enumerate(self._obsolete_files(target)):
                self._displace(old_path, undo_root / "obsolete" / str(index))

            for count, relpath in enumerate(staged_files, start=1):
                dest = target / relpath
                if dest.exists():
                    self._displace(dest, undo_root / "replaced" / relpath)
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(self._payload_dir / relpath), str(dest))
                self._placed.append(dest)
                self._live_files_touched = True
                report("committing", count / total)
        except OSError as e:
            undo_succeeded = self._undo()
            error = CommitPartialFailure(
                f"Commit of {self.mod_id} failed: {e}"
                + ("" if undo_succeeded else " (undo incomplete)"),
                mod_id=self.mod_id,
                undo_succeeded=undo_succeeded,
            )
            self._fail(error)
            raise error from e

        if self._previous is not None:
            old_dir = self._installation.mod_directory(
                self._previous.install_directory, self._previous.enabled
            )
            if old_dir != target:
                prune_empty_dirs(old_dir, old_dir.parent)
        self._transition("committed")
        logger.info("Committed %s@%s to %s", self.mod_id, self._step.target_version, target)
        return target

    def _obsolete_files(self, target: Path) -> list[Path]:
        """Live files of the previous version that the new payload does not ship."""
        if self._previous is None:
            return []
        old_dir = self._installation.mod_directory(
            self._previous.install_directory, self._previous.enabled
        )
        keep = set(self._file_hashes) if old_dir == target else set()
        return [
            old_dir / relpath
            for relpath in sorted(self._previous.file_hashes)
            if relpath not in keep and (old_dir / relpath).exists()
        ]

    def _displace(self, live_path: Path, undo_path: Path) -> None:
        undo_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(live_path), str(undo_path))
        self._displaced.append((live_path, undo_path))
        self._live_files_touched = True

    def _undo(self) -> bool:
        """Reverse the moves made by commit. Returns True if fully undone."""
        ok = True
        base = self.target_dir.parent
        for placed in reversed(self._placed):
            try:
                placed.unlink(missing_ok=True)
                prune_empty_dirs(placed.parent, base)
            except OSError as e:
                logger.error("Cannot remove %s during undo: %s", placed, e)
                ok = False
        for live_path, undo_path in reversed(self._displaced):
            try:
                live_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(undo_path), str(live_path))
            except OSError as e:
                logger.error("Cannot restore %s during undo: %s", live_path, e)
                ok = False
        self._placed.clear()
        self._displaced.clear()
        if ok:
            logger.info("Undid partial commit of %s", self.mod_id)
        return ok

    def rollback(self) -> None:
        """Abort the stage, undoing a completed commit if necessary.

        Raises:
            CommitPartialFailure: If a committed stage cannot be fully undone
        """
        if self._state == "committed":
            if not self._undo():
                error = CommitPartialFailure(
                    f"Rollback of {self.mod_id} incomplete",
                    mod_id=self.mod_id,
                    undo_succeeded=False,
                )
                self._fail(error)
                raise error
            self._transition("rolled_back")
            logger.info("Rolled back %s", self.mod_id)
        elif self._state not in ("rolled_back", "failed", "committing"):
            self._transition("rolled_back")
        self.discard()

    def discard(self) -> None:
        """Delete the stage work directory.

        The undo area of a committed stage is kept until the stage is rolled
        back or the caller discards it explicitly after success.
        """
        if self._work_dir is None:
            return
        try:
            remove_directory(self._work_dir)
        except OSError as e:
            logger.warning("Cannot remove staging directory %s: %s", self._work_dir, e)
            return
        self._work_dir = None
