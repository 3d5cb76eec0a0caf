from __future__ import annotations

import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger


def setup_logging(
    log_file: Path | None,
    *,
    debug: bool = False,
    trace: bool = False,
) -> Logger:
    """
    Setup console and install-log sinks.

    The console sink stays at WARNING by default so the dialog UI is not
    overdrawn by log lines. The install log is append-only and keeps every
    INFO+ record of the run (DEBUG/TRACE when requested) so error dialogs can
    point the operator at it.

    Args:
        log_file: Append-only install log (None disables the file sink)
        debug: Enable DEBUG level logging on both sinks
        trace: Enable TRACE level logging (very verbose)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
        file_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
        file_level = "DEBUG"
    else:
        console_level = "WARNING"
        file_level = "INFO"

    # SINK 1: Console (stderr)
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "{message}"
        ),
    )

    # SINK 2: Install log, appended across the whole run
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=file_level,
            mode="a",
            backtrace=debug or trace,
            diagnose=False,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <18} | "
                "{message}"
            ),
        )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["disk", "storage"])
        source: Source component (e.g., "disk", "network", "menu")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion, and failure with duration tracking.

    Example:
        with operation_context("partition", device="/dev/sda") as log:
            log.info("Writing partition table")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.bind(**details).info(f"{operation.capitalize()} started")

        try:
            yield log
            duration = time.time() - start_time
            log.bind(duration_seconds=round(duration, 2)).success(
                f"{operation.capitalize()} completed in {duration:.2f}s"
            )
        except Exception as e:
            duration = time.time() - start_time
            log.bind(error_type=type(e).__name__, duration_seconds=round(duration, 2)).error(
                f"{operation.capitalize()} failed: {e}"
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_disk(job_id: str | None = None) -> Logger:
        """Logger for disk planning, partitioning, formatting and mounting."""
        if job_id is None:
            job_id = "-"
        return logger.bind(job_id=job_id, source="disk", tags=["disk", "storage"])

    @staticmethod
    def for_network() -> Logger:
        """Logger for connectivity detection and interface setup."""
        return logger.bind(source="network", tags=["network"])

    @staticmethod
    def for_menu() -> Logger:
        """Logger for menu navigation and dialog interaction."""
        return logger.bind(source="menu", tags=["ui", "menu"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, preconditions, config)."""
        return logger.bind(source="system", tags=["system"])
