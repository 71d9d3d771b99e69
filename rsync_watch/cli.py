from __future__ import annotations

import argparse
import contextlib
import dataclasses
import json
import logging
import signal
import sys
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .drift import DriftCorrector
from .errors import (
    InitialSyncError,
    ProducerTerminatedError,
    TransferError,
    UsageError,
    UserQuit,
)
from .events import EventConsumer
from .gate import SyncGate
from .ignore import IgnoreMatcher, read_patterns
from .ledger import PendingLedger
from .logs import log_action, set_terminal_title, setup_logger
from .mirror import RsyncMirror
from .sources import make_source
from .worker import COALESCE_DELAY_SEC, RETRY_DELAY_SEC, SyncWorker

APP_DIR = Path.home() / ".rsync_watch"
CONFIG_PATH = APP_DIR / "config.json"

EXIT_QUIT = 0
EXIT_USAGE = 1
EXIT_INITIAL_SYNC = 2
EXIT_PRODUCER = 3
EXIT_INTERRUPTED = 130

YES_ANSWERS = {"y", "yes", "j", "ja"}
NO_ANSWERS = {"n", "no", "nein"}
QUIT_ANSWERS = {"q", "quit", "exit", "abort"}

WATCHERS = ("watchdog", "inotifywait")
DELETE_POLICIES = ("ask", "always", "never")


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class AppConfig:
    source_dir: Path
    target: str
    log_dir: Optional[Path]
    watcher: str
    excludes: tuple[str, ...]
    rsync: str
    rsync_args: tuple[str, ...]
    coalesce_delay: float
    retry_delay: float
    drift_enabled: bool
    drift_interval: float
    delete_policy: str
    verbose: bool


class ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting."""

    def error(self, message: str):
        raise UsageError(message)


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = ArgumentParser(prog="rsync-watch", description="Mirror a directory to an rsync target and keep it in sync.")
    p.add_argument("source", help="Source directory to watch.")
    p.add_argument("target", help="rsync destination (local path or host:path).")
    p.add_argument("--log-dir", type=str, default=None, help="Also write a plain log file into this directory.")
    p.add_argument("--watcher", choices=WATCHERS, default=None, help="Change notification backend.")
    p.add_argument("--exclude", action="append", default=[], metavar="PATTERN", help="Gitignore-style pattern to skip (repeatable).")
    p.add_argument("--exclude-from", type=str, default=None, metavar="FILE", help="Read exclude patterns from FILE.")
    p.add_argument("--rsync", type=str, default=None, help="rsync executable.")
    p.add_argument("--rsync-arg", action="append", default=[], metavar="ARG", help="Extra argument passed to every rsync call.")
    p.add_argument("--coalesce-delay", type=float, default=None, help="Seconds to batch events before a pass.")
    p.add_argument("--retry-delay", type=float, default=None, help="Seconds to wait before retrying a failed pass.")
    p.add_argument("--drift-interval", type=float, default=None, help="Minimum seconds between drift-correcting full passes.")
    p.add_argument("--no-drift", action="store_true", help="Disable drift-correcting full passes.")
    group = p.add_mutually_exclusive_group()
    group.add_argument("-y", "--yes", action="store_true", help="Delete extraneous target files without asking.")
    group.add_argument("--keep-extraneous", action="store_true", help="Never delete extraneous target files at startup.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging (includes rsync output).")
    return p.parse_args(argv)


def load_config_file(path: Path = CONFIG_PATH) -> dict:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        pass
    return {}


def build_effective_config(args: argparse.Namespace, saved: Optional[dict] = None) -> AppConfig:
    saved = load_config_file() if saved is None else saved

    def pick(value, key, default):
        return value if value is not None else saved.get(key, default)

    excludes = list(saved.get("excludes", [])) + list(args.exclude)
    exclude_from = args.exclude_from or saved.get("exclude_from")
    if exclude_from:
        try:
            excludes += read_patterns(Path(exclude_from).expanduser())
        except OSError as e:
            raise UsageError(f"cannot read exclude file {exclude_from}: {e}", cause=e) from e

    log_dir = pick(args.log_dir, "log_dir", None)
    if args.yes:
        delete_policy = "always"
    elif args.keep_extraneous:
        delete_policy = "never"
    else:
        delete_policy = saved.get("delete_policy", "ask")
    if delete_policy not in DELETE_POLICIES:
        raise UsageError(f"invalid delete_policy in config: {delete_policy!r}")

    watcher = pick(args.watcher, "watcher", "watchdog")
    if watcher not in WATCHERS:
        raise UsageError(f"invalid watcher in config: {watcher!r}")

    return AppConfig(
        source_dir=Path(args.source),
        target=args.target,
        log_dir=Path(log_dir).expanduser() if log_dir else None,
        watcher=watcher,
        excludes=tuple(excludes),
        rsync=pick(args.rsync, "rsync", "rsync"),
        rsync_args=tuple(saved.get("rsync_args", [])) + tuple(args.rsync_arg),
        coalesce_delay=float(pick(args.coalesce_delay, "coalesce_delay", COALESCE_DELAY_SEC)),
        retry_delay=float(pick(args.retry_delay, "retry_delay", RETRY_DELAY_SEC)),
        drift_enabled=not args.no_drift and bool(saved.get("drift", True)),
        drift_interval=float(pick(args.drift_interval, "drift_interval", 0.0)),
        delete_policy=delete_policy,
        verbose=args.verbose,
    )


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except Exception:
        return False


def is_remote_target(target: str) -> bool:
    if target.startswith("rsync://"):
        return True
    head = target.split("/", 1)[0]
    return ":" in head


def validate_paths(source: Path, target: str) -> tuple[Path, str]:
    source = source.expanduser().resolve()
    if not source.exists() or not source.is_dir():
        raise UsageError(f"Source folder does not exist or is not a folder: {source}")
    if is_remote_target(target):
        return source, target

    local = Path(target).expanduser().resolve()
    if local == source:
        raise UsageError("Source and target folders must be different.")
    if _is_subpath(local, source):
        raise UsageError("Target folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, local):
        raise UsageError("Source folder must NOT be inside target folder.")
    return source, str(local)


# -------------------------
# Prompt
# -------------------------

def ask_yes_no_quit(question: str, input_fn: Callable[[str], str] = input) -> bool:
    """Return True for yes, False for no; raise UserQuit for quit, UsageError on EOF."""
    while True:
        try:
            raw = input_fn(f"{question} [y]es / [n]o / [q]uit: ")
        except EOFError:
            raise UsageError("no answer on stdin; pass -y or --keep-extraneous") from None
        answer = raw.strip().lower()
        if answer in YES_ANSWERS:
            return True
        if answer in NO_ANSWERS:
            return False
        if answer in QUIT_ANSWERS:
            raise UserQuit("quit requested")
        print("Please answer yes, no or quit.")


def confirm_deletions(paths: list[str], target: str, input_fn: Callable[[str], str] = input) -> bool:
    print(f"The following {len(paths)} path(s) exist in {target} but not in the source:")
    for path in paths:
        print(f"  {path}")
    return ask_yes_no_quit("Delete them from the target?", input_fn)


# -------------------------
# Daemon
# -------------------------

def initial_sync(
    mirror: RsyncMirror,
    cfg: AppConfig,
    logger: logging.Logger,
    input_fn: Callable[[str], str] = input,
) -> None:
    set_terminal_title("rsync-watch: initial sync")
    if cfg.delete_policy != "never":
        try:
            doomed = mirror.preview_deletions()
        except TransferError as e:
            raise InitialSyncError(f"delete preview failed: {e}", cause=e) from e

        if doomed and (cfg.delete_policy == "always" or confirm_deletions(doomed, mirror.target, input_fn)):
            result = mirror.apply_deletions()
            if not result.ok:
                raise InitialSyncError(f"deleting extraneous files failed (exit {result.returncode})")
            log_action(logger, "DELETE", f"{len(doomed)} extraneous path(s) removed from target")

    log_action(logger, "FULL", "initial full sync: start")
    result = mirror.full()
    if not result.ok:
        raise InitialSyncError(
            f"initial full sync failed (exit {result.returncode})",
            details={"returncode": result.returncode},
        )
    log_action(logger, "FULL", "initial full sync: done")


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def run(
    cfg: AppConfig,
    logger: logging.Logger,
    input_fn: Callable[[str], str] = input,
    source_factory=make_source,
    workdir_hook: Optional[Callable[[Path], None]] = None,
) -> int:
    with contextlib.ExitStack() as stack:
        workdir = Path(stack.enter_context(tempfile.TemporaryDirectory(prefix="rsync-watch-", ignore_cleanup_errors=True)))
        if workdir_hook is not None:
            workdir_hook(workdir)

        mirror = RsyncMirror(
            cfg.source_dir,
            cfg.target,
            rsync=cfg.rsync,
            extra_args=cfg.rsync_args,
            excludes=cfg.excludes,
            workdir=workdir,
            logger=logger,
        )
        stack.callback(mirror.close)

        try:
            source = stack.enter_context(source_factory(cfg.watcher, cfg.source_dir, logger))
        except ProducerTerminatedError as e:
            logger.error("Watcher error: %s", e)
            return EXIT_PRODUCER

        try:
            initial_sync(mirror, cfg, logger, input_fn)
        except UserQuit:
            logger.info("Quit requested.")
            return EXIT_QUIT
        except UsageError as e:
            logger.error("%s", e)
            return EXIT_USAGE
        except (InitialSyncError, TransferError) as e:
            logger.error("Initial sync failed: %s", e)
            return EXIT_INITIAL_SYNC

        stop_event = threading.Event()
        ledger = PendingLedger(logger)
        gate = SyncGate(logger=logger)
        drift = DriftCorrector(mirror, min_interval=cfg.drift_interval, logger=logger)
        worker = SyncWorker(
            ledger,
            gate,
            mirror,
            coalesce_delay=cfg.coalesce_delay,
            retry_delay=cfg.retry_delay,
            on_idle=[drift.run] if cfg.drift_enabled else [],
            stop_event=stop_event,
            logger=logger,
        )
        gate.target = worker.run

        def shutdown() -> None:
            stop_event.set()
            drift.cancel()
            mirror.close()
            gate.wait_idle(timeout=10)
            drift.join(timeout=10)

        stack.callback(shutdown)

        consumer = EventConsumer(cfg.source_dir, ledger, gate, IgnoreMatcher(cfg.excludes), logger)
        set_terminal_title("rsync-watch: idle")
        logger.info("Watching %s -> %s (Ctrl+C to stop)", cfg.source_dir, cfg.target)
        try:
            consumer.consume(source)
        except ProducerTerminatedError as e:
            logger.error("Watcher stopped: %s", e)
    return EXIT_PRODUCER


def main(argv: Optional[list[str]] = None) -> int:
    try:
        args = parse_args(argv if argv is not None else sys.argv[1:])
        cfg = build_effective_config(args)
        source, target = validate_paths(cfg.source_dir, cfg.target)
    except UsageError as e:
        print(f"rsync-watch: {e}", file=sys.stderr)
        return EXIT_USAGE

    cfg = dataclasses.replace(cfg, source_dir=source, target=target)
    logger = setup_logger(cfg.log_dir, verbose=cfg.verbose)
    logger.info("Source: %s", cfg.source_dir)
    logger.info("Target: %s", cfg.target)

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, _raise_interrupt)

    try:
        return run(cfg, logger)
    except KeyboardInterrupt:
        logger.info("Stopped.")
        return EXIT_INTERRUPTED
