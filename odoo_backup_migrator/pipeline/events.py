"""
Progress events and cancellation for the migration pipeline.

The pipeline emits ProgressUpdate events synchronously at fixed checkpoints
onto a ProgressChannel. Consumers (the CLI progress bar, logging, a caller's
callback) subscribe independently; delivery is ordered and happens on the
pipeline's own thread.

Cancellation is advisory: a CancellationToken is checked only at phase
boundaries, so an in-flight bulk load, export or script transaction always
runs to completion.

Example:
    >>> channel = ProgressChannel()
    >>> channel.subscribe(lambda u: print(u.phase, u.progress, u.message))
    >>> channel.emit("extraction", 5, "Extracting backup archive...")
    extraction 5 Extracting backup archive...
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

PHASES = ("extraction", "database", "migration", "export")


@dataclass(frozen=True)
class ProgressUpdate:
    """
    One progress checkpoint.

    Attributes:
        phase: "extraction", "database", "migration", "export" or "complete"
        progress: Overall completion, 0-100
        message: Human-readable status line
    """

    phase: str
    progress: int
    message: str

    def to_dict(self) -> dict[str, str | int]:
        return {"phase": self.phase, "progress": self.progress, "message": self.message}


ProgressSubscriber = Callable[[ProgressUpdate], None]


class ProgressChannel:
    """Synchronous observer list for ProgressUpdate events."""

    def __init__(self):
        self._subscribers: list[ProgressSubscriber] = []
        self.history: list[ProgressUpdate] = []

    def subscribe(self, subscriber: ProgressSubscriber) -> Callable[[], None]:
        """
        Register a subscriber.

        Returns:
            A function that removes the subscriber again
        """
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def emit(self, phase: str, progress: int, message: str) -> ProgressUpdate:
        """
        Deliver an update to every subscriber in subscription order.

        Progress is clamped to 0-100. A subscriber that raises is logged and
        skipped; it never aborts the pipeline.
        """
        update = ProgressUpdate(phase=phase, progress=max(0, min(100, int(progress))), message=message)
        self.history.append(update)
        logger.debug(
            "Progress update",
            extra={"context": {"phase": phase, "progress": update.progress, "message": message}},
        )

        for subscriber in list(self._subscribers):
            try:
                subscriber(update)
            except Exception as e:
                logger.warning(
                    f"Progress subscriber failed: {e}",
                    exc_info=True,
                )
        return update


class CancellationToken:
    """
    Advisory cancellation flag shared between the caller and the pipeline.

    Thread-safe so a signal handler or UI thread can cancel while the
    pipeline thread is blocked in a subprocess.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
