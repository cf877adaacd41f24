"""Background update checks."""

import logging
import threading

from modweave.config.schemas import UpdateCandidate
from modweave.core.errors import ModweaveError, RestoreFailure
from modweave.core.orchestrator import OperationResult, UpdateOrchestrator

logger = logging.getLogger(__name__)


class UpdateScheduler:
    """Periodically checks for updates and applies automatic ones.

    Checks run on a daemon thread without the installation lock; applying
    goes through the orchestrator, which takes it. Updates that change the
    major version are only applied automatically when ``allow_major`` is set.
    """

    def __init__(
        self,
        orchestrator: UpdateOrchestrator,
        interval_hours: float | None = None,
        allow_major: bool = False,
    ):
        if interval_hours is None:
            interval_hours = orchestrator.installation.config.check_interval_hours
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        self._orchestrator = orchestrator
        self._interval = interval_hours * 3600
        self._allow_major = allow_major
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_candidates: list[UpdateCandidate] = []
        self.last_result: OperationResult | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread. The first check runs immediately."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="modweave-update-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Update scheduler started (every %.1f hour(s))", self._interval / 3600)

    def stop(self, timeout: float | None = None) -> None:
        """Signal the thread to stop and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Update scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except RestoreFailure as e:
                logger.critical("Stopping scheduled updates: %s", e)
                return
            except (ModweaveError, OSError):
                logger.exception("Scheduled update run failed")
            self._stop.wait(self._interval)

    def run_once(self) -> OperationResult | None:
        """Check auto-update mods and apply what is allowed.

        Returns:
            The result of applying updates, or None if nothing was applied

        Raises:
            RestoreFailure: If a failed update could not be undone
        """
        candidates = self._orchestrator.check_for_updates()
        self.last_candidates = candidates
        applicable = [c for c in candidates if self._allow_major or c.delta != "major"]
        for candidate in candidates:
            if candidate not in applicable:
                logger.info(
                    "Not applying major update of %s (%s -> %s) automatically",
                    candidate.mod_id,
                    candidate.current_version,
                    candidate.available_version,
                )
        if not applicable:
            logger.debug("No automatic updates to apply")
            return None

        result = self._orchestrator.apply_updates(
            [c.mod_id for c in applicable], auto=True, allow_major=self._allow_major
        )
        self.last_result = result
        if not result.success:
            logger.warning("Automatic update failed: %s", result.message)
        return result
