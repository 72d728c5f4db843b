"""
Per-run state: the explicit context threaded through every engine call,
and the guard that keeps two runs off the same document.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional, TypeVar

from .config import EngineSettings
from .dom import Document
from .errors import RunCancelled
from .profile import Profile

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunContext:
    """Everything one autofill run needs: page, profile, settings, cancellation."""

    def __init__(self, document: Document, profile: Profile, settings: Optional[EngineSettings] = None):
        self.document = document
        self.profile = profile
        self.settings = settings or EngineSettings()
        self._cancelled = threading.Event()
        self.cancel_reason = ""

    def cancel(self, reason: str = "page navigated away"):
        if not self._cancelled.is_set():
            self.cancel_reason = reason
            logger.info(f"[Run] Cancelled: {reason}")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self):
        """Raise RunCancelled once the page is gone."""
        if self._cancelled.is_set():
            raise RunCancelled(self.cancel_reason)

    def sleep(self, seconds: float):
        """Wait, waking early (and raising) if the run gets cancelled."""
        self.check()
        if seconds > 0 and self.document.pause(seconds, self._cancelled):
            self.cancel(self.cancel_reason or "page closed")
            raise RunCancelled(self.cancel_reason)

    def poll(self, condition: Callable[[], T], timeout: float) -> Optional[T]:
        """
        Call condition until it returns something truthy or timeout passes.

        Returns the condition result, or None on timeout.
        """
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            self.check()
            result = condition()
            if result:
                return result
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self.sleep(min(self.settings.poll_interval, remaining))


class RunGuard:
    """Tracks documents with a run in flight."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active = set()

    @contextmanager
    def acquire(self, key: Any):
        """Yield True when the caller owns the document, False if a run is already active."""
        with self._lock:
            if key in self._active:
                acquired = False
            else:
                self._active.add(key)
                acquired = True
        try:
            yield acquired
        finally:
            if acquired:
                with self._lock:
                    self._active.discard(key)

    def is_active(self, key: Any) -> bool:
        with self._lock:
            return key in self._active


# Shared by every orchestrator in the process unless one is given its own guard
default_guard = RunGuard()
