"""Stage logging for prepkit.

Every stage entry point logs one record at the custom STAGE level (25, between
INFO and WARNING) carrying its row counts and parameters as `extra` fields.
Per-predictor details go to DEBUG and skipped predictors to WARNING. The
package logger starts disabled; `enable_logging()` turns it on and returns a
handle that turns it off again.

Note:
    Importing this module removes loguru's default stderr handler (ID 0) so
    that `enable_logging()` output is not printed twice. When the application
    has already removed handler 0, the removal is skipped. Applications that
    want loguru's default stderr output should add their own handler after
    importing prepkit.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

# Handler 0 is loguru's import-time stderr handler. Suppressed when already removed.
with contextlib.suppress(ValueError):
    logger.remove(0)

STAGE_LEVEL: Final[str] = "STAGE"
STAGE_LEVEL_NUMBER: Final[int] = 25  # Between INFO (20) and WARNING (30)


def _register_stage_level() -> None:
    """Register the STAGE custom log level with loguru.

    If the level already exists with a different numeric value, emits a
    UserWarning because loguru does not permit changing the numeric value of
    an existing level.
    """
    try:
        existing_level = logger.level(STAGE_LEVEL)
    except ValueError:
        logger.level(STAGE_LEVEL, no=STAGE_LEVEL_NUMBER, icon="#")
    else:
        if existing_level.no != STAGE_LEVEL_NUMBER:
            msg = f"STAGE level already registered with numeric value {existing_level.no}, expected {STAGE_LEVEL_NUMBER}"
            warnings.warn(msg, stacklevel=2)


_register_stage_level()

type LogLevel = Literal[
    "TRACE",
    "DEBUG",
    "INFO",
    "STAGE",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

type LogFormat = Literal["short", "full"]


class LoggingHandle:
    """Handle for managing prepkit logging lifecycle.

    Stores the handler ID from logger.add() and provides cleanup via disable()
    or automatically through the context manager protocol.

    Examples:
        >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
        ...     run_pipeline(dataset)

        >>> handle = enable_logging()  # doctest: +SKIP
        >>> handle.disable()  # doctest: +SKIP
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        """Initialize the logging handle.

        Args:
            handler_id (int): The loguru handler ID from logger.add().
        """
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove the handler associated with this logging handle.

        When this is the last active handle, ``logger.disable("prepkit")`` is
        called, which also silences handlers added independently via
        ``logger.enable("prepkit")``.
        """
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        """Enter context manager.

        Returns:
            LoggingHandle: This handle instance.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager and disable logging."""
        self.disable()


def enable_logging(
    *,
    level: LogLevel = STAGE_LEVEL,
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Enable prepkit logging on stderr.

    Each call returns an independent handle that owns its own handler; use
    the handle's disable() method or context manager protocol to clean up.

    Args:
        level (LogLevel): Minimum log level to display. Defaults to "STAGE",
            which shows one line per pipeline stage with its row counts and
            parameters. Lower to "DEBUG" for per-predictor scores, treatments,
            and correlation drops.
        log_format (LogFormat): "short" (default) shows only the function name;
            "full" adds module:function:line.

    Returns:
        LoggingHandle: Independent handle for managing the logging handler.

    Note:
        Disabling the last active handle calls ``logger.disable("prepkit")``.
        Call ``logger.enable("prepkit")`` again afterwards if your application
        routes prepkit records to its own handler.
    """
    logger.enable(PACKAGE_NAME)

    if log_format == "short":
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{function}</cyan> - "
            "<level>{message}</level> {extra}"
        )
    else:  # "full"
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level> {extra}"
        )

    handler_id = logger.add(
        sys.stderr,
        level=level,
        filter=_is_prepkit_record,
        format=format_str,
    )

    return LoggingHandle(handler_id)


def _is_prepkit_record(record: Record) -> bool:
    """Pass only records emitted from within the prepkit package.

    Args:
        record (Record): The loguru Record object to filter.

    Returns:
        bool: True if the record is from the prepkit package, False otherwise.
    """
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
