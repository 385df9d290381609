"""Cooperative cancellation for long-running builds.

A CancellationToken is shared between the thread waiting on a build and
the thread running it. The waiting side calls cancel(); the build checks
the token at every walk step, inside file copies and before invoking the
archiver, so a timed-out build actually stops instead of running on
detached.
"""

import threading
import time

from pkginstall.core.errors import BuildCancelledError


class CancellationToken:
    """Thread-safe cancellation flag with an optional deadline.

    Attributes:
        deadline: Monotonic timestamp after which the token reports
            itself as expired, or None for no deadline.
    """

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize the token.

        Args:
            timeout: Optional budget in seconds, measured from now.
        """
        self._event = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Check whether cancellation was requested or the deadline passed."""
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise BuildCancelledError if cancellation was requested.

        Args:
            where: Short description of the checkpoint, used in the message.
        """
        if self.cancelled:
            suffix = f" ({where})" if where else ""
            msg = f"Build cancelled{suffix}"
            raise BuildCancelledError(msg)
