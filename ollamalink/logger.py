"""Logging for ollamalink.

Library modules take a namespaced logger and never add handlers:

    from ollamalink.logger import get_logger
    log = get_logger(__name__)

Applications (the ``ollamalink`` CLI, or your own program) call
:func:`setup_logging` once.  Until then records are dropped by a NullHandler.
"""

import logging
import sys
from datetime import date
from pathlib import Path

ROOT_LOGGER = "ollamalink"
DEFAULT_LOG_DIR = Path.home() / ".local" / "share" / "ollamalink" / "logs"

_FORMATTER = logging.Formatter(
    "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%Y-%m-%dT%H:%M:%S"
)

_initialized = False


def _numeric_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def _default_log_file() -> Path:
    DEFAULT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    return DEFAULT_LOG_DIR / f"ollamalink-{date.today():%Y%m%d}.log"


def _build_handlers(log_file: str | Path, console: bool) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.FileHandler(log_file, encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setFormatter(_FORMATTER)
    return handlers


def setup_logging(
    log_file: str | None = None,
    level: str | int = "INFO",
    console: bool = False,
) -> logging.Logger:
    """Route ``ollamalink.*`` records to a file and, optionally, stderr.

    ``level`` is a name (any case) or a ``logging`` constant; unknown names
    mean INFO.  Without ``log_file`` a per-day file under DEFAULT_LOG_DIR is
    used.  Calling again replaces the handlers of the previous call.
    """
    global _initialized

    target = log_file if log_file is not None else _default_log_file()
    root = logging.getLogger(ROOT_LOGGER)
    for old in root.handlers[:]:
        root.removeHandler(old)
        old.close()
    for handler in _build_handlers(target, console):
        root.addHandler(handler)
    root.setLevel(_numeric_level(level))

    _initialized = True
    root.debug("logging to %s at %s", target, logging.getLevelName(root.level))
    return root


def get_logger(name: str) -> logging.Logger:
    """Logger under ``ollamalink``; ``"client"`` and ``"ollamalink.client"`` are the same."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    root = logging.getLogger(ROOT_LOGGER)
    if not _initialized and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)
