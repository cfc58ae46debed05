"""
Cooperative cancellation and step progress for engine operations.

Captures and restores are short sequences of filesystem steps
(validate -> resolve path -> ensure directory -> write/read). Between steps
the operation polls a cancellation token and reports a step description.

Invariants:
    - Cancellation is cooperative; a step that has started always finishes
    - A combined token is cancelled when any of its sources is cancelled
    - Progress sinks never affect the outcome of the operation
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from .errors import OperationCancelledError

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str, float], None]


class CancellationToken:
    """A flag polled between operation steps.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.is_cancelled
        True
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Idempotent."""
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    def raise_if_cancelled(self, operation: str, step: str | None = None) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self.is_cancelled:
            raise OperationCancelledError(operation, step)

    @staticmethod
    def combine(*tokens: Optional["CancellationToken"]) -> "CancellationToken":
        """Union of several tokens; None entries are ignored."""
        sources = [t for t in tokens if t is not None]
        if len(sources) == 1:
            return sources[0]
        return CombinedCancellationToken(sources)


class CombinedCancellationToken(CancellationToken):
    """Cancelled when itself or any source token is cancelled."""

    def __init__(self, sources: Iterable[CancellationToken]) -> None:
        super().__init__()
        self._sources = list(sources)

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled or any(t.is_cancelled for t in self._sources)


class ProgressReporter:
    """Reports numbered steps of a multi-step operation.

    Messages go to the logger at DEBUG and, when given, to a sink callable
    receiving (message, percentage).

    Attributes:
        total_steps: Number of steps expected
        current_step: Steps reported so far
    """

    def __init__(
        self,
        total_steps: int,
        sink: ProgressSink | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.total_steps = total_steps
        self.current_step = 0
        self._sink = sink
        self._logger = log or logger
        self._increment = 100.0 / total_steps if total_steps > 0 else 0.0

    @property
    def percentage(self) -> float:
        return min(100.0, self.current_step * self._increment)

    def next_step(self, message: str) -> None:
        """Report progress for the next step."""
        self.current_step += 1
        self._emit(f"{message} ({self.current_step}/{self.total_steps})")

    def report(self, message: str) -> None:
        """Report a free-form message without advancing."""
        self._emit(message)

    def complete(self, message: str = "Completed") -> None:
        self.current_step = max(self.current_step, self.total_steps)
        self._emit(message)

    def _emit(self, message: str) -> None:
        self._logger.debug(f"Progress: {self.percentage:.1f}% - {message}")
        if self._sink is not None:
            try:
                self._sink(message, self.percentage)
            except Exception as e:
                self._logger.warning(f"Progress sink failed: {e}")
