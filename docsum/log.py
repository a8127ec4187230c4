"""Logging setup for the docsum CLI.

Call ``setup_logging`` once from ``cli.main()`` to configure the ``"docsum"``
package logger with timestamps and optional file output.  All other modules
obtain a child logger via ``logging.getLogger(__name__)`` and let records
propagate here.  Pipeline workers are named threads, so the thread column
shows which run produced a line.
"""

import logging
import sys
from pathlib import Path

_FMT = "%(asctime)s  %(levelname)-7s [%(threadName)s] %(message)s"
_DATE = "%H:%M:%S"

# Third-party loggers that are chatty at INFO/DEBUG.
_QUIET_LOGGERS = ("watchdog", "httpx", "openai", "urllib3", "PIL")


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Configure the ``docsum`` logger for a CLI session.

    Args:
        verbose:  If True, set level to DEBUG (shows request sizes, watcher
                  events and other fine-grained detail).  Default is INFO.
        log_file: If provided, attach a ``FileHandler`` writing to this path
                  in addition to stderr.  Parent directories are created.

    Calling this function a second time (e.g., in tests) is safe: existing
    handlers are cleared before new ones are added.
    """
    logger = logging.getLogger("docsum")
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    fmt = logging.Formatter(_FMT, datefmt=_DATE)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(fmt)
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
