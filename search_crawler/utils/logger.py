"""
Logging setup for the crawler.

Components log through stdlib loggers handed to them at construction.
Per-URL outcomes are emitted as structured records: the URL, an event name
and the error type travel in the record's ``extra`` fields so the JSON
formatter can ship them as-is.
"""

import json
import logging
import logging.handlers
import os
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import psutil

from .config import LoggingConfig


# Attributes every LogRecord has; anything else arrived through ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}

NOISY_LOGGERS = ('aiohttp.access', 'aiohttp.client', 'aiohttp.internal', 'asyncio')

MAIN_LOG_BYTES = 50 * 1024 * 1024
ERROR_LOG_BYTES = 10 * 1024 * 1024


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with every ``extra`` field at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
        }
        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and key not in entry
        )
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Adds fixed context (e.g. the worker id) to every record."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **(kwargs.get('extra') or {})}
        return msg, kwargs

    def log_url_event(self, level: int, url: str, event: str, message: str, **fields):
        """Log the outcome of processing one URL."""
        self.log(level, message, extra={'url': url, 'event_type': event, **fields})


class PerformanceFilter(logging.Filter):
    """Drops records from chatty third-party loggers."""

    def __init__(self, suppressed: Optional[List[str]] = None):
        super().__init__()
        self.suppressed = tuple(suppressed or NOISY_LOGGERS)

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(self.suppressed)


def _rotating_handler(path: Path, level: int, max_bytes: int, backups: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig,
                  enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Configure the root logger from the logging section.

    Installs a stderr handler (INFO and up), a rotating main log at
    ``config.file`` (everything) and a rotating ``errors.log`` next to it.
    Raises OSError if the log directory cannot be created.
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.INFO)
    console.setFormatter(formatter)

    handlers = [
        console,
        _rotating_handler(log_file, logging.DEBUG, MAIN_LOG_BYTES, 5, formatter),
        _rotating_handler(log_file.parent / 'errors.log', logging.ERROR, ERROR_LOG_BYTES, 3, formatter),
    ]
    if enable_performance_filtering:
        for handler in handlers:
            handler.addFilter(PerformanceFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    for handler in handlers:
        root.addHandler(handler)

    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    root.info(f"Logging to {log_file} at level {config.level}")
    return root


def get_crawler_logger(name: str, **context) -> CrawlerLogAdapter:
    """Logger adapter carrying ``context`` (e.g. ``worker='worker-3'``) on every record."""
    return CrawlerLogAdapter(logging.getLogger(name), context)


def log_system_info():
    """Log host facts useful when sizing the worker pool."""
    logger = logging.getLogger(__name__)
    memory = psutil.virtual_memory()

    logger.info(f"Platform: {platform.platform()}, Python {platform.python_version()}")
    logger.info(f"CPUs: {psutil.cpu_count()}, memory: {memory.total / 1024 ** 3:.1f} GB "
                f"({memory.available / 1024 ** 3:.1f} GB available)")
    logger.debug(f"PID: {os.getpid()}")
