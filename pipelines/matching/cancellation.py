import threading
import time
from typing import Optional

from subsidymatch.errors import CancellationError


class CancelToken:
    """
    Single owning cancellation handle for one invocation.

    Cancelled explicitly via ``cancel()`` or implicitly once the optional
    deadline passes. Worker threads poll it between stages.

    A token created with a ``parent`` also observes the parent's cancellation
    and deadline, but cancelling the child never touches the parent.
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self.parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        if self._event.is_set() or self.expired:
            return True
        return self.parent is not None and self.parent.cancelled

    def remaining(self) -> Optional[float]:
        own = None if self.deadline is None else max(0.0, self.deadline - time.monotonic())
        inherited = None if self.parent is None else self.parent.remaining()
        if own is None:
            return inherited
        if inherited is None:
            return own
        return min(own, inherited)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("Invocation was cancelled")
        if self.expired:
            raise CancellationError("Invocation exceeded its deadline")
        if self.parent is not None:
            self.parent.raise_if_cancelled()
