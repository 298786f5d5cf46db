"""
Scrape context: one deadline plus a cancellation flag shared by all adapters of a run.
Adapters call `check()` before each request and `sleep()` for pacing, so a cancel
or an expired deadline stops them at the next step instead of after the run.
"""

from __future__ import annotations

import threading
import time

from review_triage.errors import ScrapeCancelled


class ScrapeContext:
    def __init__(self, timeout: float | None = None, parent: "ScrapeContext | None" = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._children: list[ScrapeContext] = []
        self._lock = threading.Lock()
        self._reason = ""
        if parent is not None:
            if parent._deadline is not None:
                self._deadline = (
                    parent._deadline if self._deadline is None else min(self._deadline, parent._deadline)
                )
            parent._register(self)

    def _register(self, child: "ScrapeContext") -> None:
        with self._lock:
            self._children.append(child)
            cancelled = self._event.is_set()
        if cancelled:
            child.cancel(self._reason)

    def child(self, timeout: float | None = None) -> "ScrapeContext":
        """Derived context: cancelled with its parent, never outlives the parent's deadline."""
        return ScrapeContext(timeout=timeout, parent=self)

    def cancel(self, reason: str = "scrape cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(reason)

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline_exceeded:
            self.cancel("scrape deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> str:
        return self._reason

    def remaining(self) -> float | None:
        """Seconds until the deadline, None when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def request_timeout(self, default: float) -> float:
        """Per-request timeout bounded by what is left of the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(0.001, min(default, remaining))

    def check(self, source: str = "") -> None:
        if self.cancelled:
            raise ScrapeCancelled(source, self._reason or "scrape cancelled")

    def wait(self, seconds: float) -> bool:
        """Block up to `seconds`; returns True if cancelled while waiting."""
        remaining = self.remaining()
        timeout = seconds if remaining is None else min(seconds, remaining)
        if self._event.wait(max(0.0, timeout)):
            return True
        return self.cancelled

    def sleep(self, seconds: float, source: str = "") -> None:
        """Cancellable pacing delay. Raises ScrapeCancelled instead of oversleeping."""
        if seconds <= 0:
            self.check(source)
            return
        if self.wait(seconds):
            raise ScrapeCancelled(source, self._reason or "scrape cancelled")
