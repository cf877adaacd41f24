"""Tests for modweave.core.scheduler module."""

import threading
from unittest.mock import MagicMock

import pytest

from modweave.config.schemas import ReleaseInfo, UpdateCandidate
from modweave.core.errors import RestoreFailure
from modweave.core.orchestrator import OperationResult
from modweave.core.scheduler import UpdateScheduler


def candidate(mod_id: str, current: str, available: str, delta: str) -> UpdateCandidate:
    return UpdateCandidate(
        mod_id=mod_id,
        current_version=current,
        available_version=available,
        delta=delta,
        release=ReleaseInfo(mod_id=mod_id, version=available, download_url=f"{mod_id}.zip"),
    )


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.installation.config.check_interval_hours = 6
    mock.check_for_updates.return_value = []
    mock.apply_updates.return_value = OperationResult(success=True, message="Updated")
    return mock


class TestInterval:
    """Tests for the check interval."""

    def test_default_from_config(self, orchestrator):
        """The interval defaults to the installation's setting."""
        assert UpdateScheduler(orchestrator).interval_seconds == 6 * 3600

    def test_explicit(self, orchestrator):
        """An explicit interval overrides the setting."""
        assert UpdateScheduler(orchestrator, interval_hours=0.5).interval_seconds == 1800

    @pytest.mark.parametrize("hours", [0, -1])
    def test_must_be_positive(self, orchestrator, hours):
        """Non-positive intervals are rejected."""
        with pytest.raises(ValueError, match="positive"):
            UpdateScheduler(orchestrator, interval_hours=hours)


class TestRunOnce:
    """Tests for a single scheduled run."""

    def test_nothing_to_apply(self, orchestrator):
        """Without candidates nothing is applied."""
        scheduler = UpdateScheduler(orchestrator)

        assert scheduler.run_once() is None
        orchestrator.apply_updates.assert_not_called()
        assert scheduler.last_result is None

    def test_major_updates_held_back(self, orchestrator):
        """Major updates are not applied automatically by default."""
        orchestrator.check_for_updates.return_value = [
            candidate("a", "1.0.0", "1.1.0", "minor"),
            candidate("b", "1.0.0", "2.0.0", "major"),
        ]
        scheduler = UpdateScheduler(orchestrator)

        result = scheduler.run_once()

        assert result.success
        assert scheduler.last_result is result
        assert [c.mod_id for c in scheduler.last_candidates] == ["a", "b"]
        orchestrator.apply_updates.assert_called_once_with(["a"], auto=True, allow_major=False)

    def test_only_major_updates(self, orchestrator):
        """A run with only major candidates applies nothing."""
        orchestrator.check_for_updates.return_value = [candidate("b", "1.0.0", "2.0.0", "major")]

        assert UpdateScheduler(orchestrator).run_once() is None
        orchestrator.apply_updates.assert_not_called()

    def test_major_updates_allowed(self, orchestrator):
        """With allow_major every candidate is applied."""
        orchestrator.check_for_updates.return_value = [candidate("b", "1.0.0", "2.0.0", "major")]

        UpdateScheduler(orchestrator, allow_major=True).run_once()

        orchestrator.apply_updates.assert_called_once_with(["b"], auto=True, allow_major=True)

    def test_failed_apply_is_returned(self, orchestrator):
        """A failed update is reported, not raised."""
        orchestrator.check_for_updates.return_value = [candidate("a", "1.0.0", "1.0.1", "patch")]
        orchestrator.apply_updates.return_value = OperationResult(
            success=False, message="boom", error_kind="CommitPartialFailure"
        )

        result = UpdateScheduler(orchestrator).run_once()

        assert result.error_kind == "CommitPartialFailure"


class TestThread:
    """Tests for the background thread."""

    def test_start_and_stop(self, orchestrator):
        """The first check runs right after start."""
        checked = threading.Event()
        orchestrator.check_for_updates.side_effect = lambda: checked.set() or []
        scheduler = UpdateScheduler(orchestrator)

        scheduler.start()
        try:
            assert checked.wait(5)
            assert scheduler.running
        finally:
            scheduler.stop(timeout=5)

        assert not scheduler.running

    def test_restore_failure_stops_the_loop(self, orchestrator):
        """A failed restore ends scheduled updates."""
        orchestrator.check_for_updates.side_effect = RestoreFailure("disk gone")
        scheduler = UpdateScheduler(orchestrator)

        scheduler.start()
        scheduler._thread.join(5)

        assert not scheduler.running
        assert orchestrator.check_for_updates.call_count == 1
