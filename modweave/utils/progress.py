"""Progress reporting and cooperative cancellation primitives."""

import threading
from collections.abc import Callable

from modweave.core.errors import OperationCancelled

# (phase, fraction 0.0-1.0)
ProgressCallback = Callable[[str, float], None]


def noop_progress(_phase: str, _fraction: float) -> None:
    pass


class CancellationToken:
    """Cooperative cancellation signal checked at step boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def reset(self) -> None:
        """Clear a previous request so the token can guard the next operation."""
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, step: str) -> None:
        """Raise OperationCancelled if cancellation was requested.

        Args:
            step: Name of the boundary being crossed, used in the message
        """
        if self._event.is_set():
            raise OperationCancelled(f"Operation cancelled before {step}")


def scaled_progress(callback: ProgressCallback, start: float, end: float) -> ProgressCallback:
    """Map a sub-step's 0.0-1.0 progress into the ``[start, end]`` band."""

    def report(phase: str, fraction: float) -> None:
        fraction = min(max(fraction, 0.0), 1.0)
        callback(phase, start + (end - start) * fraction)

    return report
