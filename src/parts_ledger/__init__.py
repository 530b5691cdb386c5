"""Parts ledger package: catalog, checkout recorder and daily/monthly closing.

Importing the package configures the shared ``parts_ledger`` logger. Records
go to a size-rotated file under ``.logs/`` and to stderr. The threshold
starts at ``INFO`` and follows ``[Defaults] LogLevel`` once a runtime context
has been loaded.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "parts_ledger.log"
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _file_handler(formatter: logging.Formatter) -> logging.Handler | None:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: ledger log file unavailable at '{LOG_FILE}': {exc}", file=sys.stderr)
        return None
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = _file_handler(formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    set_log_level(DEFAULT_LOG_LEVEL, logger=logger)
    return logger


def set_log_level(level: str, *, logger: logging.Logger | None = None) -> None:
    """Apply ``level`` (a name such as ``"DEBUG"``) to the ledger logger and its handlers.

    Raises:
        ValueError: If ``level`` is not a standard logging level name.
    """

    numeric = logging.getLevelName(str(level).strip().upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")
    target = logger if logger is not None else log
    target.setLevel(numeric)
    for handler in target.handlers:
        handler.setLevel(numeric)


log = _configure_logging()
log.debug("Ledger logger ready (file: %s)", LOG_FILE)
