# =============================================================================
# ops_core/logging/config.py
# Logging Configuration for the Operations Board sync core
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Optional


# Log format
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log directory
LOG_DIR = Path("logs")

# Channel for best-effort side effects (activity log writes, subscriber failures)
DIAGNOSTICS_LOGGER = "ops_core.diagnostics"

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "supabase",
    "postgrest",
    "realtime",
    "websockets",
)


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (default: INFO)
        log_to_file: Whether to also log to a file
        log_filename: Custom log filename (default: opsboard_YYYY-MM-DD.log)
        log_dir: Directory for the log file (default: ./logs)
    """
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        directory = Path(log_dir) if log_dir else LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)
        if log_filename is None:
            log_filename = f"opsboard_{datetime.now().strftime('%Y-%m-%d')}.log"
        handlers.append(logging.FileHandler(directory / log_filename))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    # Reduce noise from third-party libraries
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger("ops_core")
    logger.info("Logging initialized")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        Configured logger instance

    Usage:
        from ops_core.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Loading job tasks")
    """
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for logging operation timing and status.

    Usage:
        with LogContext(logger, "Loading SOPs"):
            ...
        # Logs: "Loading SOPs... started"
        # Logs: "Loading SOPs... completed (0.12s)"
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.debug(f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.time() - self.start_time

        if exc_type is None:
            self.logger.debug(f"{self.operation}... completed ({elapsed:.2f}s)")
        else:
            self.logger.error(
                f"{self.operation}... failed ({elapsed:.2f}s): {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
            )

        return False  # Don't suppress exceptions
