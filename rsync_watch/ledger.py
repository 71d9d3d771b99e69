from __future__ import annotations

import logging
import tempfile
import threading
from pathlib import Path
from typing import Iterable, Optional

from .errors import UnrepresentablePathError
from .logs import get_logger, log_action

LINE_SEPARATORS = ("\n", "\r")

# rsync skips --files-from lines starting with these
COMMENT_CHARS = ("#", ";")


def encode_path(path: str) -> str:
    """Return the file-list line for ``path``; raises for paths with line separators."""
    if any(sep in path for sep in LINE_SEPARATORS):
        raise UnrepresentablePathError(
            f"path contains a line separator: {path!r}",
            details={"path": path},
        )
    if path.startswith(COMMENT_CHARS):
        path = "./" + path
    return path + "\n"


def dedupe(paths: Iterable[str]) -> list[str]:
    return list(set(paths))


class PendingLedger:
    """
    Paths awaiting synchronization, shared by the event consumer (append)
    and the sync worker (rotate).

    Every append lands either in the list returned by the next rotate()
    or in the fresh ledger left behind by it.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger()
        self._entries: list[str] = []
        self._guard = threading.Lock()

    def append(self, path: str) -> bool:
        try:
            encode_path(path)
        except UnrepresentablePathError as e:
            log_action(self.logger, "SKIP", f"dropping unrepresentable path | {e}", level=logging.WARNING)
            return False
        with self._guard:
            self._entries.append(path)
        return True

    def rotate(self) -> list[str]:
        with self._guard:
            snapshot, self._entries = self._entries, []
        return snapshot

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def write_snapshot(paths: Iterable[str], directory: Path) -> Path:
    """Write a snapshot as an rsync ``--files-from`` list inside ``directory``."""
    fd, name = tempfile.mkstemp(prefix="snapshot-", suffix=".list", dir=str(directory))
    with open(fd, "w", encoding="utf-8", errors="surrogateescape", newline="\n") as f:
        for path in paths:
            f.write(encode_path(path))
    return Path(name)
