"""
rsync-watch
- Mirrors a source folder to an rsync target (local path or host:path).
- Full sync on startup, optionally deleting target files missing from the source.
- Then watches the source and syncs only the changed paths, one rsync at a time.
- Bursts of events are coalesced; failed passes are retried until they succeed.
- After each burst settles, a background full pass corrects missed events.

Usage
  pip install rsync-watch
  rsync-watch /src user@host:/dst
  rsync-watch --watcher inotifywait --exclude "*.swp" /src /mnt/backup/src
"""

from .errors import (
    InitialSyncError,
    MalformedEventError,
    ProducerTerminatedError,
    RsyncWatchError,
    TransferError,
    UnrepresentablePathError,
    UsageError,
    UserQuit,
)
from .events import ChangeEvent, EventConsumer, Operation, parse_event_line
from .gate import ActivityState, SyncGate
from .ledger import PendingLedger
from .mirror import MirrorMode, MirrorResult, RsyncMirror
from .drift import DriftCorrector
from .worker import SyncWorker

__all__ = [
    # Errors
    "RsyncWatchError",
    "UsageError",
    "InitialSyncError",
    "TransferError",
    "MalformedEventError",
    "UnrepresentablePathError",
    "ProducerTerminatedError",
    "UserQuit",
    # Engine
    "ChangeEvent",
    "Operation",
    "parse_event_line",
    "EventConsumer",
    "PendingLedger",
    "ActivityState",
    "SyncGate",
    "SyncWorker",
    "DriftCorrector",
    "MirrorMode",
    "MirrorResult",
    "RsyncMirror",
]

__version__ = "0.1.0"
