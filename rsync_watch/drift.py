from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Protocol

from .logs import get_logger, log_action


class FullMirror(Protocol):
    def full(self, cancel: Optional[threading.Event] = None): ...


class DriftCorrector:
    """
    Background full, non-deleting mirror pass that heals changes the
    watcher never reported (e.g. files created inside a directory before
    its watch was registered).

    Each run() supersedes the previous one: the old pass is asked to stop
    and the new one takes over the handle. Stopping is advisory, so two
    passes may briefly overlap.
    """

    def __init__(self, mirror: FullMirror, min_interval: float = 0.0, logger: Optional[logging.Logger] = None):
        self.mirror = mirror
        self.min_interval = min_interval
        self.logger = logger or get_logger()
        self._handle: Optional[threading.Event] = None
        self._guard = threading.Lock()
        self._last_start: Optional[float] = None
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        with self._guard:
            return self._handle is not None

    def run(self) -> Optional[threading.Thread]:
        now = time.monotonic()
        token = threading.Event()
        with self._guard:
            if self._last_start is not None and now - self._last_start < self.min_interval:
                return None
            previous, self._handle = self._handle, token
            self._last_start = now
            self._threads = [t for t in self._threads if t.is_alive()]

        if previous is not None:
            log_action(self.logger, "DRIFT", "superseding previous drift pass")
            previous.set()

        thread = threading.Thread(target=self._pass, args=(token,), name="drift-pass", daemon=True)
        with self._guard:
            self._threads.append(thread)
        thread.start()
        return thread

    def cancel(self) -> None:
        with self._guard:
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.set()

    def join(self, timeout: Optional[float] = None) -> None:
        with self._guard:
            threads = list(self._threads)
        for t in threads:
            t.join(timeout)

    def _pass(self, token: threading.Event) -> None:
        try:
            log_action(self.logger, "DRIFT", "full pass started", level=logging.DEBUG)
            result = self.mirror.full(cancel=token)
            if result.cancelled:
                log_action(self.logger, "DRIFT", "full pass cancelled", level=logging.DEBUG)
            elif result.ok:
                log_action(self.logger, "DRIFT", "full pass done", level=logging.DEBUG)
            else:
                log_action(self.logger, "DRIFT", f"full pass failed (exit {result.returncode})", level=logging.WARNING)
        except Exception as e:
            log_action(self.logger, "DRIFT", f"full pass error | {e}", level=logging.ERROR)
        finally:
            with self._guard:
                if self._handle is token:
                    self._handle = None
