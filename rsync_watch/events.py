from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional, Union

from .errors import MalformedEventError, ProducerTerminatedError
from .gate import SyncGate
from .ignore import IgnoreMatcher
from .ledger import PendingLedger
from .logs import get_logger, log_action


class Operation(enum.Enum):
    MODIFY = "modify"
    MOVE = "move"
    CREATE = "create"
    DELETE = "delete"
    ATTRIB = "attrib"
    CLOSE_WRITE = "close-write"


# inotifywait event names; ISDIR, CLOSE and friends are modifiers, not operations
INOTIFY_OPERATIONS = {
    "MODIFY": Operation.MODIFY,
    "MOVED_FROM": Operation.MOVE,
    "MOVED_TO": Operation.MOVE,
    "MOVE_SELF": Operation.MOVE,
    "CREATE": Operation.CREATE,
    "DELETE": Operation.DELETE,
    "DELETE_SELF": Operation.DELETE,
    "ATTRIB": Operation.ATTRIB,
    "CLOSE_WRITE": Operation.CLOSE_WRITE,
}


@dataclass(frozen=True)
class ChangeEvent:
    operation: Operation
    path: str
    is_dir: bool = False


def parse_event_line(line: str) -> ChangeEvent:
    """Parse an ``inotifywait --format '%e %w%f'`` line."""
    text = line.rstrip("\n")
    flags, sep, path = text.partition(" ")
    if not sep or not path:
        raise MalformedEventError(f"missing path in event line: {text!r}", details={"line": text})

    names = flags.split(",")
    operation = next((INOTIFY_OPERATIONS[n] for n in names if n in INOTIFY_OPERATIONS), None)
    if operation is None:
        raise MalformedEventError(f"unknown event {flags!r}", details={"line": text})
    return ChangeEvent(operation=operation, path=path, is_dir="ISDIR" in names)


class EventConsumer:
    """
    Feeds change notifications into the ledger and wakes the sync gate.

    Items are either ChangeEvent objects or raw inotifywait lines. The
    stream is expected to be infinite; when it ends the producer has died
    and ProducerTerminatedError is raised.
    """

    def __init__(
        self,
        source_root: Path,
        ledger: PendingLedger,
        gate: SyncGate,
        ignore: Optional[IgnoreMatcher] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.source_root = source_root
        self.ledger = ledger
        self.gate = gate
        self.ignore = ignore or IgnoreMatcher()
        self.logger = logger or get_logger()
        self.consumed = 0
        self.skipped = 0

    def consume(self, events: Iterable[Union[ChangeEvent, str]]) -> None:
        for item in events:
            self.handle(item)
        raise ProducerTerminatedError("change notification source terminated")

    def handle(self, item: Union[ChangeEvent, str]) -> bool:
        try:
            event = item if isinstance(item, ChangeEvent) else parse_event_line(item)
            rel = self.relative(event.path)
        except MalformedEventError as e:
            self.skipped += 1
            log_action(self.logger, "SKIP", f"malformed event | {e}", level=logging.WARNING)
            return False

        if rel == ".":
            # the root itself is never listed; "." would sync its whole top level
            self.logger.debug("event %s on source root ignored", event.operation.value)
            return False

        if self.ignore.is_ignored(rel, is_dir=event.is_dir):
            return False

        self.logger.debug("event %s %s", event.operation.value, rel)
        if not self.ledger.append(rel):
            self.skipped += 1
            return False
        self.consumed += 1
        self.gate.request_sync()
        return True

    def relative(self, path: str) -> str:
        try:
            rel = Path(path).relative_to(self.source_root)
        except ValueError:
            raise MalformedEventError(
                f"event path outside source: {path!r}",
                details={"path": path},
            ) from None
        return PurePosixPath(*rel.parts).as_posix() if rel.parts else "."
