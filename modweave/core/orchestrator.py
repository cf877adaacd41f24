"""Update orchestrator.

The orchestrator coordinates installs and updates of one installation. A
batch is applied as a unit:

1. resolve the requested mods into a plan (no writes)
2. take one umbrella restore point for the batch
3. stage every change in isolated work directories
4. detect conflicts on the prospective mod set
5. merge configuration files of upgraded mods into their stages
6. commit each stage in plan order and persist state
7. on failure after any live write, roll back and restore the restore point

Operations return an :class:`OperationResult`; only :class:`RestoreFailure`
is raised to the caller.
"""

import logging
import queue
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from modweave.backup.base import BackupStore
from modweave.backup.snapshot import SnapshotBackupStore
from modweave.config.formats import detect_format
from modweave.config.parser import ConfigError, load_mod_manifest
from modweave.config.schemas import (
    CompatibilityStatus,
    ConfigFile,
    ConflictRecord,
    InstalledMod,
    ModManifest,
    PlanStep,
    ReleaseInfo,
    ResolutionPlan,
    UpdateCandidate,
)
from modweave.core.conflicts import ConflictDetector, ProspectiveMod, partition
from modweave.core.errors import (
    CommitPartialFailure,
    ConflictBlocking,
    ConflictWarning,
    ModweaveError,
    RestoreFailure,
    StagingIOError,
)
from modweave.core.installation import Installation
from modweave.core.merger import ConfigMerger, MergeReport, next_backup_path
from modweave.core.resolver import DependencyResolver, ModRequest
from modweave.core.stager import InstallationStager
from modweave.core.state import InstalledModsManager, UpdateSettingsManager
from modweave.registry.base import ReleaseLookup, channel_allows
from modweave.registry.factory import create_release_lookup, fetch_location
from modweave.utils.filesystem import (
    extract_archive,
    make_temp_directory,
    remove_directory,
    write_text_atomic,
)
from modweave.utils.progress import (
    CancellationToken,
    ProgressCallback,
    noop_progress,
    scaled_progress,
)
from modweave.utils.version import classify_delta, is_newer

logger = logging.getLogger(__name__)


@dataclass
class StatusEvent:
    """A status update published while an operation runs."""

    operation: str
    mod_id: str | None
    phase: str
    progress: float
    message: str = ""


@dataclass
class OperationResult:
    """Outcome of an install or update operation."""

    success: bool
    message: str = ""
    error_kind: str | None = None
    warnings: list[ConflictRecord] = field(default_factory=list)
    conflicts: list[ConflictRecord] = field(default_factory=list)
    restore_point_id: str | None = None
    plan: ResolutionPlan | None = None
    live_files_touched: bool = False
    merge_reports: list[MergeReport] = field(default_factory=list)

    @property
    def changed_mod_ids(self) -> list[str]:
        if self.plan is None:
            return []
        return [s.mod_id for s in self.plan.changes]

    @property
    def conflict_warning(self) -> ConflictWarning | None:
        """Non-blocking conflicts of a finished operation, if any."""
        return ConflictWarning(self.warnings) if self.warnings else None


@dataclass
class _Run:
    """Mutable bookkeeping of one operation."""

    operation: str
    plan: ResolutionPlan | None = None
    restore_point_id: str | None = None
    warnings: list[ConflictRecord] = field(default_factory=list)
    merge_reports: list[MergeReport] = field(default_factory=list)
    stagers: list[InstallationStager] = field(default_factory=list)
    committed: list[InstallationStager] = field(default_factory=list)
    acknowledge: bool = False

    @property
    def live_files_touched(self) -> bool:
        return any(s.live_files_touched for s in self.stagers)

    def acknowledge_records(self, records: list[ConflictRecord]) -> None:
        """Carry overridden blocking conflicts on as warnings."""
        for record in records:
            if record in self.warnings:
                continue
            logger.warning(
                "Proceeding despite %s (acknowledged): %s", record.type, record.description
            )
            self.warnings.append(record)

    def result(
        self, success: bool, message: str, error: ModweaveError | None = None
    ) -> "OperationResult":
        return OperationResult(
            success=success,
            message=message,
            error_kind=error.kind if error is not None else None,
            warnings=list(self.warnings),
            conflicts=list(error.records) if isinstance(error, ConflictBlocking) else [],
            restore_point_id=self.restore_point_id,
            plan=self.plan,
            live_files_touched=self.live_files_touched,
            merge_reports=list(self.merge_reports),
        )


class UpdateOrchestrator:
    """Installs and updates mods of one installation.

    Mutating operations hold the installation lock for their whole
    duration. ``submit`` runs them on a single worker thread so callers can
    keep polling :attr:`status` while a batch is applied.
    """

    OPERATIONS = ("install", "install_local", "apply_updates", "check_for_updates")

    def __init__(
        self,
        installation: Installation,
        lookup: ReleaseLookup | None = None,
        backup_store: BackupStore | None = None,
        progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            installation: Installation to operate on
            lookup: Release lookup; created from the installation's catalog if None
            backup_store: Restore point store (directory snapshots if None)
            progress: Progress sink receiving (phase, fraction)
            cancel_token: Cancellation signal for running operations
        """
        self._installation = installation
        if lookup is None and installation.config.catalog:
            lookup = create_release_lookup(
                installation.config.catalog, cache_dir=installation.cache_dir
            )
        self._lookup = lookup
        self._backup_store = backup_store or SnapshotBackupStore()
        self._progress = progress or noop_progress
        self._cancel = cancel_token or CancellationToken()
        self._merger = ConfigMerger()
        self._executor: ThreadPoolExecutor | None = None
        self.status: queue.Queue[StatusEvent] = queue.Queue()

    @property
    def installation(self) -> Installation:
        return self._installation

    @property
    def lookup(self) -> ReleaseLookup | None:
        return self._lookup

    @property
    def backup_store(self) -> BackupStore:
        return self._backup_store

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel

    # ------------------------------------------------------------------
    # Status and asynchronous submission
    # ------------------------------------------------------------------

    def _publish(
        self,
        operation: str,
        mod_id: str | None,
        phase: str,
        progress: float,
        message: str = "",
    ) -> None:
        self.status.put(StatusEvent(operation, mod_id, phase, progress, message))
        self._progress(phase, progress)

    def drain_status(self) -> list[StatusEvent]:
        """Take every status event published so far."""
        events = []
        while True:
            try:
                events.append(self.status.get_nowait())
            except queue.Empty:
                return events

    def submit(self, operation: str, *args: object, **kwargs: object) -> Future:
        """Run an operation on the installation's worker thread.

        Args:
            operation: One of ``install``, ``install_local``, ``apply_updates``
                or ``check_for_updates``

        Returns:
            Future resolving to the operation's return value

        Raises:
            ValueError: If the operation name is unknown
        """
        if operation not in self.OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"modweave-{self._installation.root.name}"
            )
        return self._executor.submit(getattr(self, operation), *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker thread."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    # ------------------------------------------------------------------
    # Update checks
    # ------------------------------------------------------------------

    def check_for_updates(self, mod_ids: list[str] | None = None) -> list[UpdateCandidate]:
        """Find newer releases of installed mods.

        Only the time of the check is recorded; nothing else is written.

        Args:
            mod_ids: Mods to check; mods with auto-update enabled if None

        Returns:
            Available updates, ordered by mod id
        """
        installed = InstalledModsManager(self._installation.state_dir).snapshot()
        settings = UpdateSettingsManager(self._installation.state_dir)
        targets = mod_ids if mod_ids is not None else settings.auto_update_ids()
        candidates = self._find_updates(installed, settings, targets)
        self._record_checks([t for t in targets if t in installed])
        return candidates

    def _find_updates(
        self,
        installed: dict[str, InstalledMod],
        settings: UpdateSettingsManager,
        mod_ids: list[str],
    ) -> list[UpdateCandidate]:
        if self._lookup is None:
            logger.warning("No release catalog configured; cannot check for updates")
            return []

        candidates = []
        for mod_id in sorted(set(mod_ids)):
            mod = installed.get(mod_id)
            if mod is None:
                logger.warning("Skipping update check for %s: not installed", mod_id)
                continue
            channel = settings.get(mod_id).channel
            try:
                release = self._lookup.get_latest_release(mod_id, channel)
                newer = release is not None and is_newer(release.version, mod.installed_version)
            except ModweaveError as e:
                logger.warning("Update check for %s failed: %s", mod_id, e)
                continue
            if release is None or not newer:
                logger.debug("%s is up to date (%s)", mod_id, mod.installed_version)
                continue
            candidate = UpdateCandidate(
                mod_id=mod_id,
                current_version=mod.installed_version,
                available_version=release.version,
                delta=classify_delta(mod.installed_version, release.version),
                release=release,
            )
            logger.info(
                "Update available for %s: %s -> %s (%s, %s)",
                mod_id,
                candidate.current_version,
                candidate.available_version,
                candidate.delta,
                channel,
            )
            candidates.append(candidate)
        return candidates

    def _record_checks(self, mod_ids: list[str]) -> None:
        if not mod_ids:
            return
        now = datetime.now(timezone.utc)
        with self._installation.lock:
            settings = UpdateSettingsManager(self._installation.state_dir)
            for mod_id in mod_ids:
                settings.record_check(mod_id, now)
            settings.save()

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def install(
        self, requests: list[ModRequest | str], acknowledge: bool = False
    ) -> OperationResult:
        """Install mods (and their dependencies) from the release catalog.

        Args:
            requests: ModRequests or ``mod_id[@constraint]`` strings
            acknowledge: Proceed past declared and dependency conflicts

        Raises:
            RestoreFailure: If a failed install could not be undone
        """
        parsed = [ModRequest.parse(r) if isinstance(r, str) else r for r in requests]
        label = "install " + ", ".join(r.mod_id for r in parsed)
        return self._execute("install", label, parsed, acknowledge=acknowledge)

    def install_local(self, locations: list[str], acknowledge: bool = False) -> OperationResult:
        """Install mods from payloads that are not published in a catalog.

        Args:
            locations: Payload directories, archives or URLs
            acknowledge: Proceed past declared and dependency conflicts

        Raises:
            RestoreFailure: If a failed install could not be undone
        """
        run = _Run("install")
        descriptors: dict[tuple[str, str], ModManifest] = {}
        try:
            for location in locations:
                manifest = self._read_local_manifest(location)
                descriptors[(manifest.id, manifest.version)] = manifest
        except ModweaveError as e:
            logger.error("install failed: %s", e)
            self._cancel.reset()
            return run.result(False, str(e), e)

        requests = [ModRequest(mod_id, constraint=version) for mod_id, version in descriptors]
        label = "install " + ", ".join(r.mod_id for r in requests)
        return self._execute(
            "install", label, requests, local=descriptors, acknowledge=acknowledge
        )

    def _read_local_manifest(self, location: str) -> ModManifest:
        work_dir = make_temp_directory(
            prefix="modweave_local_", parent=self._installation.state_dir / "staging"
        )
        try:
            payload = fetch_location(location, work_dir / "download")
            payload_dir = payload
            if payload.is_file():
                payload_dir = extract_archive(payload, work_dir / "unpacked")
            manifest = load_mod_manifest(payload_dir)
        except (ConfigError, ValueError, OSError) as e:
            raise StagingIOError(f"Cannot read payload {location}: {e}") from e
        finally:
            remove_directory(work_dir)
        return manifest.model_copy(update={"payload_location": location})

    def apply_updates(
        self,
        mod_ids: list[str] | None = None,
        auto: bool = False,
        allow_major: bool = True,
        acknowledge: bool = False,
    ) -> OperationResult:
        """Apply available updates as one batch.

        Args:
            mod_ids: Mods to update; every installed mod if None, or every
                auto-update mod when ``auto`` is set
            auto: Scheduled run; only mods with auto-update enabled are updated
            allow_major: Include updates that change the major version
            acknowledge: Proceed past declared and dependency conflicts

        Raises:
            RestoreFailure: If a failed update could not be undone
        """
        operation = "auto_update" if auto else "update"
        installed = InstalledModsManager(self._installation.state_dir).snapshot()
        settings = UpdateSettingsManager(self._installation.state_dir)
        if mod_ids is None:
            mod_ids = settings.auto_update_ids() if auto else sorted(installed)
        elif auto:
            mod_ids = [m for m in mod_ids if settings.get(m).auto_update_enabled]

        candidates = self._find_updates(installed, settings, mod_ids)
        self._record_checks([m for m in mod_ids if m in installed])
        if not allow_major:
            for candidate in candidates:
                if candidate.delta == "major":
                    logger.info(
                        "Skipping major update of %s to %s",
                        candidate.mod_id,
                        candidate.available_version,
                    )
            candidates = [c for c in candidates if c.delta != "major"]

        if not candidates:
            self._cancel.reset()
            self._publish(operation, None, "done", 1.0, "All mods are up to date")
            return OperationResult(success=True, message="All mods are up to date")

        releases = {c.mod_id: c.release for c in candidates}
        requests = [
            ModRequest(c.mod_id, constraint=c.available_version, upgrade=True)
            for c in candidates
        ]
        label = "update " + ", ".join(sorted(releases))
        return self._execute(
            operation, label, requests, releases=releases, acknowledge=acknowledge
        )

    def _execute(
        self,
        operation: str,
        label: str,
        requests: list[ModRequest],
        releases: dict[str, ReleaseInfo] | None = None,
        local: dict[tuple[str, str], ModManifest] | None = None,
        acknowledge: bool = False,
    ) -> OperationResult:
        """Apply one batch under the installation lock.

        A cancellation request is consumed by the batch it stops, or cleared
        when the batch finishes, so it never leaks into the next operation.
        """
        run = _Run(operation, acknowledge=acknowledge)
        with self._installation.lock:
            logger.info("Starting %s", label)
            self._publish(operation, None, "resolving", 0.0, label)
            try:
                message = self._apply(run, label, requests, releases or {}, local or {})
            except RestoreFailure as e:
                logger.critical("%s: %s", label, e)
                self._publish(operation, e.mod_id, "failed", 1.0, str(e))
                raise
            except ModweaveError as e:
                logger.error("%s failed: %s", label, e)
                self._publish(operation, e.mod_id, "failed", 1.0, str(e))
                return run.result(False, str(e), e)
            finally:
                self._cancel.reset()

        self._publish(operation, None, "done", 1.0, message)
        logger.info("%s", message)
        return run.result(True, message)

    def _apply(
        self,
        run: _Run,
        label: str,
        requests: list[ModRequest],
        releases: dict[str, ReleaseInfo],
        local: dict[tuple[str, str], ModManifest],
    ) -> str:
        mods = InstalledModsManager(self._installation.state_dir)
        settings = UpdateSettingsManager(self._installation.state_dir)
        installed = mods.snapshot()

        resolver = DependencyResolver(
            installed,
            list_versions=lambda mod_id: self._list_versions(mod_id, local, settings),
            get_descriptor=lambda mod_id, version: self._get_descriptor(mod_id, version, local),
        )
        run.plan = resolver.resolve(requests)
        if not run.plan.is_executable:
            if not run.acknowledge:
                raise ConflictBlocking(run.plan.unresolved)
            run.acknowledge_records(run.plan.unresolved)

        changes = run.plan.changes
        if not changes:
            return "Nothing to do; every requested mod is already installed"

        if self._needs_restore_point(changes, settings):
            try:
                run.restore_point_id = self._backup_store.create_restore_point(
                    self._installation, label
                )
            except OSError as e:
                raise StagingIOError(f"Cannot create restore point: {e}") from e

        try:
            self._stage_all(run, changes, installed, releases)
            compatibility = self._check_conflicts(run, installed)
            shipped = self._capture_shipped_configs(run)
            self._merge_configs(run, settings)
            self._cancel.raise_if_cancelled("committing")
            self._commit_all(run)
            self._persist(run, mods, settings, compatibility, shipped)
        except ModweaveError as e:
            self._recover(run, e)
            raise
        finally:
            for stager in run.stagers:
                stager.discard()

        verb = "Installed" if run.operation == "install" else "Updated"
        return f"{verb} " + ", ".join(f"{s.mod_id}@{s.target_version}" for s in changes)

    def _list_versions(
        self,
        mod_id: str,
        local: dict[tuple[str, str], ModManifest],
        settings: UpdateSettingsManager,
    ) -> list[str]:
        """Local versions plus published versions visible on the mod's channel."""
        versions = [version for (local_id, version) in local if local_id == mod_id]
        if self._lookup is None:
            return versions
        channel = settings.get(mod_id).channel
        for version in self._lookup.list_versions(mod_id):
            release = self._lookup.get_release(mod_id, version)
            if release is None or channel_allows(channel, release.channel):
                versions.append(version)
        return versions

    def _get_descriptor(
        self, mod_id: str, version: str, local: dict[tuple[str, str], ModManifest]
    ) -> ModManifest | None:
        if (mod_id, version) in local:
            return local[(mod_id, version)]
        if self._lookup is None:
            return None
        return self._lookup.get_descriptor(mod_id, version)

    def _needs_restore_point(
        self, changes: list[PlanStep], settings: UpdateSettingsManager
    ) -> bool:
        for step in changes:
            if step.action == "install" or settings.get(step.mod_id).backup_before_update:
                return True
        return False

    def _stage_all(
        self,
        run: _Run,
        changes: list[PlanStep],
        installed: dict[str, InstalledMod],
        releases: dict[str, ReleaseInfo],
    ) -> None:
        config = self._installation.config
        for index, step in enumerate(changes):
            release = releases.get(step.mod_id)
            local_payload = step.descriptor is not None and step.descriptor.payload_location
            if release is None and self._lookup is not None and not local_payload:
                release = self._lookup.get_release(step.mod_id, step.target_version)

            band = scaled_progress(
                self._stage_progress(run.operation, step.mod_id),
                index / len(changes),
                (index + 1) / len(changes),
            )
            stager = InstallationStager(
                self._installation,
                step,
                release=release,
                lookup=self._lookup,
                previous=installed.get(step.mod_id),
                signing_key=config.signing_key,
                require_signature=config.verify_signatures,
                progress=band,
                cancel_token=self._cancel,
            )
            run.stagers.append(stager)
            stager.stage()

    def _stage_progress(self, operation: str, mod_id: str) -> ProgressCallback:
        def report(phase: str, fraction: float) -> None:
            self._publish(operation, mod_id, phase, fraction)

        return report

    def _check_conflicts(
        self, run: _Run, installed: dict[str, InstalledMod]
    ) -> dict[str, CompatibilityStatus]:
        """Run the detector on the prospective set and validate every stage.

        With ``acknowledge`` set, error-severity records are carried on as
        warnings. Critical file conflicts always block.

        Raises:
            ConflictBlocking: If a blocking conflict involves a changed mod
        """
        self._publish(run.operation, None, "validating", 0.0)
        prospective: dict[str, ProspectiveMod] = {}
        for mod_id, mod in installed.items():
            live_dir = self._installation.mod_directory(mod.install_directory, mod.enabled)
            prospective[mod_id] = ProspectiveMod(mod, payload_root=live_dir)
        for stager in run.stagers:
            prospective[stager.mod_id] = ProspectiveMod(
                self._installed_record(stager), payload_root=stager.payload_dir
            )

        detection = ConflictDetector(list(prospective.values())).detect()
        changed = {s.mod_id for s in run.stagers}
        relevant = [r for r in detection.records if changed & set(r.involved_mod_ids)]
        blocking, warnings = partition(relevant)
        if run.acknowledge:
            run.acknowledge_records([r for r in blocking if r.severity == "error"])
            blocking = [r for r in blocking if r.severity != "error"]
        run.warnings.extend(warnings)

        # Every stage is validated so each one with a blocking record ends failed
        rejected = False
        for stager in run.stagers:
            records = [r for r in blocking + warnings if stager.mod_id in r.involved_mod_ids]
            try:
                warning = stager.validate(records)
            except ConflictBlocking:
                rejected = True
                continue
            if warning is not None:
                logger.debug("%s staged with %s", stager.mod_id, warning)
        if rejected:
            raise ConflictBlocking(blocking)
        return detection.compatibility

    def _installed_record(
        self, stager: InstallationStager, status: CompatibilityStatus = "unknown"
    ) -> InstalledMod:
        manifest, _ = stager.staged_payload()
        return InstalledMod(
            descriptor=manifest,
            installed_version=manifest.version,
            enabled=stager.target_enabled,
            install_directory=manifest.mod_directory_name,
            compatibility_status=status,
            file_hashes=stager.file_hashes,
            installed_at=datetime.now(timezone.utc),
        )

    def _capture_shipped_configs(self, run: _Run) -> dict[str, dict[str, str]]:
        """Read the config defaults each staged payload ships, before merging."""
        shipped: dict[str, dict[str, str]] = {}
        for stager in run.stagers:
            manifest, payload_dir = stager.staged_payload()
            texts = {}
            for relpath in manifest.config_files:
                path = payload_dir / relpath
                try:
                    texts[relpath] = path.read_text(encoding="utf-8")
                except FileNotFoundError:
                    logger.warning("%s lists missing config file %s", stager.mod_id, relpath)
                except OSError as e:
                    raise StagingIOError(
                        f"Cannot read {relpath} from {stager.mod_id}: {e}", mod_id=stager.mod_id
                    ) from e
            shipped[stager.mod_id] = texts
        return shipped

    def _merge_configs(self, run: _Run, settings: UpdateSettingsManager) -> None:
        """Three-way merge the config files of upgraded mods into their stages.

        Nothing live is written here: the merged file and the backup of the
        user's copy are staged, so commit places them and undo removes them.
        """
        for stager in run.stagers:
            previous = stager.previous
            if previous is None or not settings.get(stager.mod_id).preserve_configs:
                continue
            manifest, payload_dir = stager.staged_payload()

            live_dir = self._installation.mod_directory(
                previous.install_directory, previous.enabled
            )
            shipped_dir = self._installation.shipped_config_dir(
                stager.mod_id, previous.installed_version
            )
            for relpath in manifest.config_files:
                new_path = payload_dir / relpath
                live_path = live_dir / relpath
                if not new_path.is_file() or not live_path.is_file():
                    continue
                self._publish(run.operation, stager.mod_id, "merging", 0.0, relpath)
                config = ConfigFile(
                    path=live_path,
                    format=detect_format(live_path),
                    owner_mod_id=stager.mod_id,
                )
                try:
                    user_text = live_path.read_text(encoding="utf-8")
                    original_text = self._shipped_text(shipped_dir / relpath)
                    if original_text is None:
                        logger.info(
                            "No shipped copy of %s for %s@%s; keeping every user value",
                            relpath,
                            stager.mod_id,
                            previous.installed_version,
                        )
                    report, merged_text = self._merger.merge(
                        config, original_text, new_path.read_text(encoding="utf-8")
                    )
                    if merged_text is None:
                        stager.replace_staged_file(relpath, user_text)
                    else:
                        stager.replace_staged_file(relpath, merged_text)
                        backup = next_backup_path(stager.target_dir / relpath)
                        stager.add_staged_file(
                            backup.relative_to(stager.target_dir).as_posix(), user_text
                        )
                        report.path = stager.target_dir / relpath
                        report.backup_path = backup
                        report.written = True
                except OSError as e:
                    raise StagingIOError(
                        f"Cannot merge {relpath} of {stager.mod_id}: {e}", mod_id=stager.mod_id
                    ) from e
                run.merge_reports.append(report)

    @staticmethod
    def _shipped_text(path: Path) -> str | None:
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def _commit_all(self, run: _Run) -> None:
        for stager in run.stagers:
            self._publish(run.operation, stager.mod_id, "committing", 0.0)
            stager.commit()
            run.committed.append(stager)

    def _persist(
        self,
        run: _Run,
        mods: InstalledModsManager,
        settings: UpdateSettingsManager,
        compatibility: dict[str, CompatibilityStatus],
        shipped: dict[str, dict[str, str]],
    ) -> None:
        try:
            for stager in run.stagers:
                status = compatibility.get(stager.mod_id, "unknown")
                mods.put(self._installed_record(stager, status))
                settings.ensure(stager.mod_id)
                self._store_shipped(stager, shipped.get(stager.mod_id, {}))
            for mod in mods.all():
                status = compatibility.get(mod.mod_id)
                if status is not None and status != mod.compatibility_status:
                    mod.compatibility_status = status
                    mods.mark_modified()
            mods.save()
            settings.save()
        except OSError as e:
            raise StagingIOError(f"Cannot save installation state: {e}") from e

    def _store_shipped(self, stager: InstallationStager, texts: dict[str, str]) -> None:
        """Keep the shipped config defaults as the base of the next merge."""
        manifest, _ = stager.staged_payload()
        mod_dir = self._installation.shipped_root / stager.mod_id
        remove_directory(mod_dir)
        target = self._installation.shipped_config_dir(stager.mod_id, manifest.version)
        for relpath, text in texts.items():
            write_text_atomic(target / relpath, text)

    def _recover(self, run: _Run, error: ModweaveError) -> None:
        """Undo a failed batch.

        Raises:
            RestoreFailure: If live files were changed and cannot be put back
        """
        if not run.live_files_touched:
            for stager in run.stagers:
                stager.rollback()
            if run.restore_point_id is not None:
                self._backup_store.delete(run.restore_point_id)
                run.restore_point_id = None
            logger.info("No live files were changed; discarded %d stage(s)", len(run.stagers))
            return

        undo_complete = not (
            isinstance(error, CommitPartialFailure) and not error.undo_succeeded
        )
        for stager in reversed(run.committed):
            try:
                stager.rollback()
            except CommitPartialFailure as e:
                logger.error("%s", e)
                undo_complete = False

        if run.restore_point_id is None:
            if not undo_complete:
                raise RestoreFailure(
                    f"{error}; live files could not be restored and no restore point exists"
                ) from error
            logger.warning("Rolled back committed stages without a restore point")
            return

        self._publish(run.operation, None, "restoring", 0.0, run.restore_point_id)
        self._backup_store.restore(run.restore_point_id, self._installation)
        logger.info("Restored restore point %s after failure", run.restore_point_id)

