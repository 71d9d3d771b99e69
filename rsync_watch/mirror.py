"""
rsync invocations used by the daemon.

Four modes:
  FULL            upload everything, delete nothing
  DELETE_PREVIEW  dry run listing target files that no longer exist in the source
  DELETE_APPLY    the same deletions, applied
  INCREMENTAL     sync an explicit path list, deleting listed paths missing from the source
"""

from __future__ import annotations

import enum
import logging
import os
import signal
import subprocess
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .errors import TransferError
from .ledger import write_snapshot
from .logs import get_logger, log_action

# 24: "partial transfer due to vanished source files"
SUCCESS_CODES = frozenset({0, 24})

DELETING_PREFIX = "*deleting"


class MirrorMode(enum.Enum):
    FULL = "full"
    DELETE_PREVIEW = "delete-preview"
    DELETE_APPLY = "delete-apply"
    INCREMENTAL = "incremental"


@dataclass(frozen=True)
class MirrorResult:
    mode: MirrorMode
    returncode: int
    output: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.cancelled and self.returncode in SUCCESS_CODES


def parse_deletions(lines: Iterable[str]) -> list[str]:
    """Extract paths from ``--itemize-changes`` deletion lines."""
    out = []
    for line in lines:
        if line.startswith(DELETING_PREFIX):
            parts = line.split(None, 1)
            if len(parts) == 2:
                out.append(parts[1].rstrip("\n"))
    return out


class RsyncMirror:
    def __init__(
        self,
        source: Path,
        target: str,
        rsync: str = "rsync",
        extra_args: Sequence[str] = (),
        excludes: Sequence[str] = (),
        workdir: Optional[Path] = None,
        logger: Optional[logging.Logger] = None,
        poll_interval: float = 0.2,
    ):
        self.source = source
        self.target = target
        self.rsync = rsync
        self.extra_args = list(extra_args)
        self.excludes = list(excludes)
        self.workdir = workdir
        self.logger = logger or get_logger()
        self.poll_interval = poll_interval
        self._closed = threading.Event()
        self._live: set[subprocess.Popen] = set()
        self._live_guard = threading.Lock()

    def build_command(self, mode: MirrorMode, files_from: Optional[Path] = None) -> list[str]:
        cmd = [self.rsync, "-a"]
        if mode is MirrorMode.DELETE_PREVIEW or mode is MirrorMode.DELETE_APPLY:
            cmd += ["--delete", "--existing", "--ignore-existing", "--itemize-changes"]
            if mode is MirrorMode.DELETE_PREVIEW:
                cmd.append("--dry-run")
        elif mode is MirrorMode.INCREMENTAL:
            if files_from is None:
                raise ValueError("incremental mode needs a file list")
            cmd += [
                "--dirs",
                "--delete",
                "--delete-missing-args",
                "--no-implied-dirs",
                f"--files-from={files_from}",
            ]
        for pattern in self.excludes:
            cmd.append(f"--exclude={pattern}")
        cmd += self.extra_args
        cmd += [f"{self.source}/", self.target]
        return cmd

    # -------------------------
    # Modes
    # -------------------------

    def full(self, cancel: Optional[threading.Event] = None) -> MirrorResult:
        return self._run(MirrorMode.FULL, self.build_command(MirrorMode.FULL), cancel)

    def preview_deletions(self) -> list[str]:
        result = self._run(MirrorMode.DELETE_PREVIEW, self.build_command(MirrorMode.DELETE_PREVIEW))
        if not result.ok:
            raise TransferError(
                f"delete preview failed (exit {result.returncode})",
                details={"returncode": result.returncode},
            )
        return parse_deletions(result.output)

    def apply_deletions(self) -> MirrorResult:
        return self._run(MirrorMode.DELETE_APPLY, self.build_command(MirrorMode.DELETE_APPLY))

    def incremental(self, paths: Sequence[str]) -> MirrorResult:
        directory = self.workdir or Path(tempfile.gettempdir())
        files_from = write_snapshot(paths, directory)
        try:
            return self._run(MirrorMode.INCREMENTAL, self.build_command(MirrorMode.INCREMENTAL, files_from))
        finally:
            files_from.unlink(missing_ok=True)

    # -------------------------
    # Process handling
    # -------------------------

    def close(self) -> None:
        """Terminate every running rsync and refuse new invocations."""
        self._closed.set()
        with self._live_guard:
            procs = list(self._live)
        for proc in procs:
            _terminate(proc)

    def _run(self, mode: MirrorMode, cmd: list[str], cancel: Optional[threading.Event] = None) -> MirrorResult:
        if self._closed.is_set():
            return MirrorResult(mode=mode, returncode=-1, cancelled=True)

        self.logger.debug("rsync %s: %s", mode.value, " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
                start_new_session=hasattr(os, "killpg"),
            )
        except OSError as e:
            raise TransferError(f"could not start {cmd[0]}: {e}", details={"command": cmd}, cause=e) from e

        with self._live_guard:
            self._live.add(proc)

        stop = cancel or threading.Event()
        watcher = threading.Thread(target=self._watch_cancel, args=(proc, stop), daemon=True)
        watcher.start()

        output: list[str] = []
        try:
            for line in proc.stdout:
                line = line.rstrip("\n")
                output.append(line)
                self.logger.debug("rsync | %s", line)
            returncode = proc.wait()
        finally:
            with self._live_guard:
                self._live.discard(proc)

        cancelled = stop.is_set() or self._closed.is_set()
        if not cancelled and returncode not in SUCCESS_CODES:
            for line in output[-5:]:
                log_action(self.logger, "RSYNC", f"{mode.value}: {line}", level=logging.WARNING)
        return MirrorResult(mode=mode, returncode=returncode, output=output, cancelled=cancelled)

    def _watch_cancel(self, proc: subprocess.Popen, cancel: threading.Event) -> None:
        while proc.poll() is None:
            if cancel.wait(self.poll_interval) or self._closed.is_set():
                _terminate(proc)
                return


def _terminate(proc: subprocess.Popen) -> None:
    # rsync runs in its own session; signal the whole group so its helpers exit too
    if proc.poll() is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except OSError:
        pass
