"""
Change-notification producers.

Both are started before the initial full sync, so changes made while it
runs are queued, and both iterate forever until stopped or until the
underlying watcher dies.
"""

from __future__ import annotations

import logging
import os
import queue
import subprocess
import threading
from pathlib import Path
from typing import Iterator, Optional, Union

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .errors import ProducerTerminatedError
from .events import ChangeEvent, Operation
from .logs import get_logger, log_action

WATCHDOG_OPERATIONS = {
    EVENT_TYPE_MODIFIED: Operation.MODIFY,
    EVENT_TYPE_MOVED: Operation.MOVE,
    EVENT_TYPE_CREATED: Operation.CREATE,
    EVENT_TYPE_DELETED: Operation.DELETE,
    EVENT_TYPE_CLOSED: Operation.CLOSE_WRITE,
}

INOTIFY_EVENTS = "modify,move,create,delete,attrib,close_write"
INOTIFY_FORMAT = "%e %w%f"


def to_change_events(event: FileSystemEvent) -> list[ChangeEvent]:
    operation = WATCHDOG_OPERATIONS.get(event.event_type)
    if operation is None:
        return []
    if operation is Operation.MODIFY and event.is_directory:
        return []

    paths = [event.src_path]
    if operation is Operation.MOVE:
        paths.append(event.dest_path)
    return [ChangeEvent(operation=operation, path=os.fsdecode(p), is_dir=event.is_directory) for p in paths]


class _QueueingHandler(FileSystemEventHandler):
    def __init__(self, events: "queue.Queue[ChangeEvent]"):
        self.events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        for change in to_change_events(event):
            self.events.put(change)


class WatchdogSource:
    def __init__(self, root: Path, poll_interval: float = 0.5, logger: Optional[logging.Logger] = None):
        self.root = root
        self.poll_interval = poll_interval
        self.logger = logger or get_logger()
        self._events: "queue.Queue[ChangeEvent]" = queue.Queue()
        self._observer = Observer()
        self._stopped = threading.Event()

    def start(self) -> "WatchdogSource":
        try:
            self._observer.schedule(_QueueingHandler(self._events), str(self.root), recursive=True)
            self._observer.start()
        except OSError as e:
            raise ProducerTerminatedError(f"could not watch {self.root}: {e}", cause=e) from e
        log_action(self.logger, "WATCH", f"watchdog observer on {self.root}", path=str(self.root))
        return self

    def stop(self) -> None:
        self._stopped.set()
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join(timeout=10)

    def __iter__(self) -> Iterator[ChangeEvent]:
        while True:
            try:
                yield self._events.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._stopped.is_set() or not self._observer.is_alive():
                    return

    def __enter__(self) -> "WatchdogSource":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()


class InotifywaitSource:
    """Runs ``inotifywait -m -r`` and yields its raw output lines."""

    def __init__(self, root: Path, inotifywait: str = "inotifywait", logger: Optional[logging.Logger] = None):
        self.root = root
        self.inotifywait = inotifywait
        self.logger = logger or get_logger()
        self._proc: Optional[subprocess.Popen] = None

    def command(self) -> list[str]:
        return [
            self.inotifywait,
            "-m",
            "-r",
            "-q",
            "-e",
            INOTIFY_EVENTS,
            "--format",
            INOTIFY_FORMAT,
            str(self.root),
        ]

    def start(self) -> "InotifywaitSource":
        try:
            self._proc = subprocess.Popen(
                self.command(),
                stdout=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
            )
        except OSError as e:
            raise ProducerTerminatedError(f"could not start {self.inotifywait}: {e}", cause=e) from e
        log_action(self.logger, "WATCH", f"inotifywait on {self.root}", path=str(self.root))
        return self

    def stop(self) -> None:
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            proc.kill()

    def __iter__(self) -> Iterator[str]:
        if self._proc is None or self._proc.stdout is None:
            return
        for line in self._proc.stdout:
            yield line
        status = self._proc.wait()
        log_action(self.logger, "WATCH", f"inotifywait exited with status {status}", level=logging.ERROR)

    def __enter__(self) -> "InotifywaitSource":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()


EventSource = Union[WatchdogSource, InotifywaitSource]


def make_source(kind: str, root: Path, logger: Optional[logging.Logger] = None) -> EventSource:
    if kind == "inotifywait":
        return InotifywaitSource(root, logger=logger)
    if kind == "watchdog":
        return WatchdogSource(root, logger=logger)
    raise ValueError(f"unknown watcher: {kind}")
