"""Per-command run context.

A RunContext is built once by the command handler and passed down through
the walkers, the actions and the cluster adapter. It carries a
cancellation flag and an optional absolute deadline. Nothing in the
installer core enforces it; blocking calls consult it and raise, and the
failure then follows the normal error path.
"""

import threading
import time
from typing import Optional


class ContextError(Exception):
    """The run was cancelled or ran out of time."""


class CancelledError(ContextError):
    """The run was cancelled by the caller."""


class DeadlineExceededError(ContextError):
    """The run's overall deadline has passed."""


class RunContext:
    """Cancellation and deadline token for one command invocation."""

    def __init__(self, timeout: Optional[float] = None):
        """Initialize run context.

        Args:
            timeout: Overall budget in seconds (None = no deadline)
        """
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = None
        if timeout is not None:
            self.deadline = time.monotonic() + timeout

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (None = unbounded)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def bound(self, timeout: float) -> float:
        """Clamp a timeout so it does not outlive the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def check(self) -> None:
        """Raise if the run has been cancelled or the deadline has passed.

        Raises:
            CancelledError: If cancel() was called
            DeadlineExceededError: If the deadline has passed
        """
        if self._cancelled.is_set():
            raise CancelledError("run cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise DeadlineExceededError("run deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Sleep, waking early on cancellation or deadline, then check()."""
        self._cancelled.wait(self.bound(seconds))
        self.check()
