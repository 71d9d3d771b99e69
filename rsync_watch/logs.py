from __future__ import annotations

import datetime as dt
import logging
import sys
from pathlib import Path
from typing import Optional

try:
    from colorama import init as colorama_init  # type: ignore
except Exception:  # pragma: no cover
    colorama_init = None

LOGGER_NAME = "rsync_watch"


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    ORANGE = "\x1b[38;5;208m"
    CYAN = "\x1b[36m"
    WHITE = "\x1b[97m"


ACTION_COLORS = {
    "SYNC": Ansi.GREEN,
    "FULL": Ansi.GREEN,
    "DRIFT": Ansi.CYAN,
    "WATCH": Ansi.CYAN,
    "DELETE": Ansi.ORANGE,
    "RETRY": Ansi.YELLOW,
    "SKIP": Ansi.YELLOW,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except Exception:
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        action = getattr(record, "action", None)
        if action:
            color = ACTION_COLORS.get(action, "")
            if record.levelno >= logging.WARNING and action not in ("SKIP", "RETRY"):
                color = Ansi.YELLOW
            if color and action in base:
                base = base.replace(action, f"{color}{action}{Ansi.RESET}", 1)

        path_text = getattr(record, "path_text", None)
        if path_text and path_text in base:
            base = base.replace(path_text, f"{Ansi.WHITE}{path_text}{Ansi.RESET}")

        return base


def _today_log_name(prefix: str = "rsync_watch") -> str:
    return f"{prefix}_{dt.date.today().isoformat()}.log"


def setup_logger(log_dir: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """Configure the package logger once: colored console, optional plain log file."""
    logger = logging.getLogger(LOGGER_NAME)
    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    logger.propagate = False

    if logger.handlers:
        return logger

    if colorama_init:
        colorama_init()

    fmt = "%(asctime)s | %(levelname)s | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stderr), fmt=fmt, datefmt=datefmt))
    logger.addHandler(ch)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / _today_log_name()
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
        fh.setLevel(level)
        logger.addHandler(fh)
        logger.info("Logging to: %s", log_path)

    return logger


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = path
    logger.log(level, f"{action} | {message}", extra=extra)


def set_terminal_title(title: str, stream=None) -> None:
    """Set the terminal window title; does nothing unless the stream is a TTY."""
    stream = stream or sys.stdout
    if not _supports_color(stream):
        return
    try:
        stream.write(f"\x1b]2;{title}\x07")
        stream.flush()
    except (OSError, ValueError):
        pass
