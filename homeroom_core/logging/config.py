# =============================================================================
# homeroom_core/logging/config.py
# Logging Configuration for the Homeroom data engine
# =============================================================================

import logging
import sys
import time
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_LOG_FILENAME = "homeroom.log"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("urllib3", "requests", "watchdog")


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure the root logger for the engine and the Streamlit pages.

    Args:
        level: Level number or name ("DEBUG", "INFO", ...)
        log_to_file: Also write to a file rotated at midnight (7 kept)
        log_filename: File name inside log_dir (default: homeroom.log)
        log_dir: Directory for log files (default: ./logs)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_to_file:
        directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)
        handlers.append(TimedRotatingFileHandler(
            directory / (log_filename or DEFAULT_LOG_FILENAME),
            when="midnight",
            backupCount=7,
            encoding="utf-8",
        ))

    # force=True replaces handlers installed by an earlier call or by Streamlit
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("homeroom_core").info(
        f"Logging ready (level={logging.getLevelName(level)}, file={'on' if log_to_file else 'off'})"
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__``."""
    return logging.getLogger(name)


class LogContext:
    """
    Times a block and logs its start, completion or failure.

    Exceptions are logged with their traceback and re-raised.

    Usage:
        with LogContext(logger, "Full sync") as ctx:
            engine.refresh()
        print(ctx.elapsed)
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.elapsed: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "LogContext":
        self._started = time.perf_counter()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.elapsed = time.perf_counter() - self._started
        if exc_type is None:
            self.logger.log(self.level, f"{self.operation}... completed ({self.elapsed:.2f}s)")
        else:
            self.logger.error(
                f"{self.operation}... failed ({self.elapsed:.2f}s): {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False
