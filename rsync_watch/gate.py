from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Optional

from .logs import get_logger


class ActivityState(enum.Enum):
    QUIESCENT = "quiescent"
    ACTIVE = "active"
    ACTIVE_PENDING = "active-with-pending"


class SyncGate:
    """
    Lets at most one sync pass run at a time.

    request_sync() is called once per change event. It starts the worker
    when quiescent and otherwise only raises the pending flag, so a burst
    of calls during a pass collapses into one follow-up pass.
    """

    def __init__(self, target: Optional[Callable[[], None]] = None, logger: Optional[logging.Logger] = None):
        self.target = target
        self.logger = logger or get_logger()
        self._state = ActivityState.QUIESCENT
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ActivityState:
        with self._cond:
            return self._state

    def request_sync(self) -> None:
        with self._cond:
            if self._state is ActivityState.QUIESCENT:
                self._state = ActivityState.ACTIVE
                self._thread = threading.Thread(target=self._run, name="sync-worker", daemon=True)
                self._thread.start()
            elif self._state is ActivityState.ACTIVE:
                self._state = ActivityState.ACTIVE_PENDING

    def pass_finished(self) -> bool:
        """Return True when another pass must start, else go quiescent."""
        with self._cond:
            if self._state is ActivityState.ACTIVE_PENDING:
                self._state = ActivityState.ACTIVE
                return True
            self._state = ActivityState.QUIESCENT
            self._cond.notify_all()
            return False

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._state is ActivityState.QUIESCENT, timeout=timeout)

    def _run(self) -> None:
        try:
            if self.target is not None:
                self.target()
            else:
                while self.pass_finished():
                    pass
        except Exception:
            self.logger.exception("sync worker crashed")
            with self._cond:
                self._state = ActivityState.QUIESCENT
                self._cond.notify_all()

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
