"""Root logger wiring.

Records go through a ``QueueHandler`` on the root logger; a
``QueueListener`` thread feeds the real handlers (stderr and an optional
rotating file) so request handlers never block on log I/O. Request context
from contextvars is injected by ``ContextInjectingFilter``.
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import TYPE_CHECKING

from gloria_service.infra.logging.formatters import JSONFormatter

if TYPE_CHECKING:
    from gloria_service.core.settings.logs import LoggingSettings

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_listener: QueueListener | None = None
_configured = False
_atexit_registered = False


def shutdown() -> None:
    """Flush queued records and stop the listener thread."""
    global _listener
    if _listener is not None:
        _listener.stop()
        _listener = None


def setup_logging(log_settings: LoggingSettings | None = None, *, force: bool = False) -> None:
    """Configure logging once per process; later calls are no-ops unless ``force``."""
    global _configured
    if _configured and not force:
        return
    if log_settings is None:
        from gloria_service.core.settings import get_logging_settings

        log_settings = get_logging_settings()
    configure_logging(log_settings)
    _configured = True


def configure_logging(log_settings: LoggingSettings) -> None:
    """(Re)build the handler chain from ``log_settings``."""
    global _listener, _atexit_registered

    logging.captureWarnings(True)
    shutdown()
    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, QueueHandler)]:
        root.removeHandler(handler)

    filters = (
        {"context": {"()": "gloria_service.infra.logging.context.ContextInjectingFilter"}}
        if log_settings.include_context
        else {}
    )
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": filters,
            "root": {"level": log_settings.level, "handlers": [], "filters": list(filters)},
        }
    )

    handlers = _build_handlers(log_settings)
    queue: Queue[logging.LogRecord] = Queue()
    if handlers:
        _listener = QueueListener(queue, *handlers, respect_handler_level=True)
        _listener.start()
        if not _atexit_registered:
            atexit.register(shutdown)
            _atexit_registered = True
    root.addHandler(QueueHandler(queue))


def _build_handlers(log_settings: LoggingSettings) -> list[logging.Handler]:
    formatter = _build_formatter(log_settings)
    handlers: list[logging.Handler] = []

    if log_settings.console_enabled:
        console = logging.StreamHandler()
        console.setLevel(log_settings.console_level or log_settings.level)
        handlers.append(console)

    if log_settings.file_path:
        path = Path(log_settings.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=log_settings.file_max_bytes,
            backupCount=log_settings.file_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_settings.file_level or log_settings.level)
        handlers.append(file_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _build_formatter(log_settings: LoggingSettings) -> logging.Formatter:
    if not log_settings.json_logs:
        return logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)
    return JSONFormatter(
        fmt_keys={"level": "levelname", "logger": "name", "message": "message"},
        static={"service": log_settings.service_name},
    )
