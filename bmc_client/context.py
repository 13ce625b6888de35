"""
Cancellable, deadline-bearing operation context.

Every client operation takes a Context as its first argument. A Context can
be cancelled from any thread; waiting on it blocks on a threading.Event so a
cancel wakes the waiter immediately instead of after the next sleep.
"""

import threading
import time
import weakref
from typing import Optional

from .errors import CancelledError, ContextError, DeadlineExceededError


class Context:
    """
    Carries cancellation and an optional deadline across a call tree.

    Args:
        timeout: Seconds from now until the deadline (None = no deadline)
        parent: Optional parent; its cancellation and deadline are inherited
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional["Context"] = None):
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        # Weak so children that went out of scope do not pile up on a long-lived parent
        self._children: "weakref.WeakSet[Context]" = weakref.WeakSet()
        self._parent = parent

        deadline = None
        if timeout is not None:
            deadline = time.monotonic() + timeout
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

        if parent is not None:
            parent._add_child(self)

    def _add_child(self, child: "Context"):
        with self._lock:
            self._children.add(child)
        if self._cancelled.is_set():
            child.cancel()

    def child(self, timeout: Optional[float] = None) -> "Context":
        """Derive a context that is cancelled with this one and may have a tighter deadline."""
        return Context(timeout=timeout, parent=self)

    def cancel(self):
        """Cancel this context and every context derived from it."""
        self._cancelled.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, never negative; None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def done(self) -> bool:
        return self.err() is not None

    def err(self) -> Optional[ContextError]:
        """Return the reason this context is done, or None while it is live."""
        if self._cancelled.is_set():
            return CancelledError()
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DeadlineExceededError()
        return None

    def raise_if_done(self):
        err = self.err()
        if err is not None:
            raise err

    def wait(self, seconds: float) -> bool:
        """
        Block for up to ``seconds`` or until the context is done.

        Returns:
            True if the context is done, False if the full interval elapsed.
        """
        if seconds < 0:
            seconds = 0
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._cancelled.wait(remaining)
        else:
            self._cancelled.wait(seconds)
        return self.done()

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cancel()
        return False

    def __repr__(self):
        remaining = self.remaining()
        state = "done" if self.done() else "live"
        if remaining is None:
            return f"<Context {state}>"
        return f"<Context {state} remaining={remaining:.1f}s>"


def background() -> Context:
    """A context with no deadline that is never cancelled unless asked."""
    return Context()


def with_timeout(seconds: float) -> Context:
    return Context(timeout=seconds)
