from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol, Sequence

from .errors import TransferError
from .gate import SyncGate
from .ledger import PendingLedger, dedupe
from .logs import get_logger, log_action, set_terminal_title

COALESCE_DELAY_SEC = 0.1
RETRY_DELAY_SEC = 1.0


class IncrementalMirror(Protocol):
    def incremental(self, paths: Sequence[str]): ...


class SyncWorker:
    """
    Drains the ledger into the mirror, one pass at a time.

    Each pass sleeps briefly so near-simultaneous events share a snapshot,
    rotates the ledger, and retries the same snapshot until rsync reports
    success. There is no retry cap.
    """

    def __init__(
        self,
        ledger: PendingLedger,
        gate: SyncGate,
        mirror: IncrementalMirror,
        coalesce_delay: float = COALESCE_DELAY_SEC,
        retry_delay: float = RETRY_DELAY_SEC,
        on_idle: Sequence[Callable[[], None]] = (),
        stop_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.gate = gate
        self.mirror = mirror
        self.coalesce_delay = coalesce_delay
        self.retry_delay = retry_delay
        self.on_idle = list(on_idle)
        self.stop_event = stop_event or threading.Event()
        self.logger = logger or get_logger()
        self.passes = 0

    def run(self) -> None:
        while True:
            set_terminal_title("rsync-watch: syncing")
            self.stop_event.wait(self.coalesce_delay)
            self._sync_snapshot(dedupe(self.ledger.rotate()))
            self.passes += 1
            if not self.gate.pass_finished():
                break

        set_terminal_title("rsync-watch: idle")
        if self.stop_event.is_set():
            return
        for hook in self.on_idle:
            try:
                hook()
            except Exception:
                self.logger.exception("idle hook failed")

    def _sync_snapshot(self, snapshot: list[str]) -> None:
        attempt = 0
        while snapshot:
            if self.stop_event.is_set():
                return
            attempt += 1
            try:
                result = self.mirror.incremental(snapshot)
                if result.ok:
                    log_action(self.logger, "SYNC", f"{len(snapshot)} path(s) synced")
                    return
                if getattr(result, "cancelled", False):
                    return
                raise TransferError(
                    f"rsync exited with status {result.returncode}",
                    details={"returncode": result.returncode, "paths": len(snapshot)},
                )
            except TransferError as e:
                log_action(
                    self.logger,
                    "RETRY",
                    f"attempt {attempt} failed, retrying in {self.retry_delay:.1f}s | {e}",
                    level=logging.WARNING,
                )
            except Exception as e:
                log_action(
                    self.logger,
                    "RETRY",
                    f"attempt {attempt} raised {type(e).__name__}, retrying in {self.retry_delay:.1f}s | {e}",
                    level=logging.ERROR,
                )
            self.stop_event.wait(self.retry_delay)
