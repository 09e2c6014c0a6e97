"""
Logging for the launcher.

- One named logger, plain file output plus a colorized console.
- Records may carry an ``action`` (COPY, DELETE, WATCH, SHUTDOWN, ...) and a
  ``path_text``; the console formatter colors both.
- Log file is always plain (no color codes).
"""

from __future__ import annotations

import datetime as dt
import logging
import sys
from pathlib import Path
from typing import Optional

from colorama import just_fix_windows_console

LOGGER_NAME = "devlauncher"


class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    ORANGE = "\x1b[38;5;208m"
    CYAN = "\x1b[36m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    "COPY": Ansi.GREEN,
    "DELETE": Ansi.ORANGE,
    "MKDIR": Ansi.LIGHT_BROWN,
    "WATCH": Ansi.LIGHT_BROWN,
    "UNWATCH": Ansi.LIGHT_BROWN,
    "SHUTDOWN": Ansi.CYAN,
    "CONNECTOR": Ansi.CYAN,
    "WEBAPP": Ansi.CYAN,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except ValueError:
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        action = getattr(record, "action", None)
        is_dir = getattr(record, "is_dir", None)
        path_text = getattr(record, "path_text", None)

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        if action:
            action_color = ACTION_COLORS.get(action, "")
            if record.levelno >= logging.WARNING:
                action_color = Ansi.ORANGE
            if action_color and action in base:
                base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if is_dir else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


def _today_log_name(prefix: str = "devlauncher") -> str:
    return f"{prefix}_{dt.date.today().isoformat()}.log"


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(log_dir: Optional[Path], level: int = logging.INFO) -> logging.Logger:
    """
    Attach the console handler and, once ``log_dir`` is known, a daily log
    file. Safe to call again: existing handlers are kept and re-leveled.
    """
    logger = get_logger()
    logger.setLevel(level)
    logger.propagate = False

    if not logger.handlers:
        just_fix_windows_console()
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(ch)

    has_file = any(isinstance(h, logging.FileHandler) for h in logger.handlers)
    if log_dir is not None and not has_file:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / _today_log_name()
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(fh)
        logger.info("Logging to: %s", log_path)

    for handler in logger.handlers:
        handler.setLevel(level)
    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    is_dir: Optional[bool] = None,
    level: int = logging.INFO,
    exc_info=None,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = bool(is_dir) if is_dir is not None else path.is_dir()
    logger.log(level, f"{action} | {message}", extra=extra, exc_info=exc_info)
