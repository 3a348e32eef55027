"""
Structured JSON logging.

Every call names the event it reports (``"session_store.save_failed"``) and
passes a flat dict of context. Records go to stdout and, when enabled, to a
rotating ``<logger name>.jsonl`` file under ``LOG_LOG_DIR``.
"""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from session_bridge.infrastructure.config.settings import LoggingSettings

_logger_cache: Dict[str, 'StructuredLogger'] = {}
_cache_lock = threading.RLock()

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class _EventEncoder(json.JSONEncoder):
    """Encodes the values that show up in event data: states, timestamps, errors."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, BaseException):
            return f"{type(obj).__name__}: {obj}"
        return super().default(obj)


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, call site, event_type, data."""

    def format(self, record: logging.LogRecord) -> str:
        payload = record.msg if isinstance(record.msg, dict) else {"message": record.getMessage()}
        log_object = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "lineno": record.lineno,
            **payload,
        }
        if record.exc_info:
            log_object["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_object, cls=_EventEncoder)


class StructuredLogger:
    """
    Thin wrapper over logging.Logger that logs (event_type, data) pairs.

    Handler setup is idempotent: building a second StructuredLogger for the
    same name reuses the stdout and file handlers already attached.
    """

    def __init__(self, name: str, config: Any):
        self.logger = logging.getLogger(name)
        level_name = getattr(config.level, "value", config.level)
        self.logger.setLevel(getattr(logging, str(level_name).upper(), logging.INFO))
        self.logger.propagate = False

        formatter = JsonFormatter() if config.structured_logging else logging.Formatter(PLAIN_FORMAT)
        if config.console_enabled:
            self._attach_console(formatter)
        if config.file_enabled:
            self._attach_file(Path(config.log_dir) / f"{name}.jsonl", config, formatter)

    def _attach_console(self, formatter: logging.Formatter) -> None:
        for handler in self.logger.handlers:
            if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stdout:
                return
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def _attach_file(self, log_file: Path, config: Any, formatter: logging.Formatter) -> None:
        target = str(log_file.resolve())
        for handler in self.logger.handlers:
            if isinstance(handler, RotatingFileHandler) and handler.baseFilename == target:
                return
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding='utf-8',
        )
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def _log(self, level: int, event_type: str, data: Dict[str, Any], exc_info=False):
        self.logger.log(level, {"event_type": event_type, "data": data}, exc_info=exc_info)

    def debug(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.DEBUG, event_type, data or {})

    def info(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.INFO, event_type, data or {})

    def warning(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.WARNING, event_type, data or {})

    def error(self, event_type: str, data: Dict[str, Any] = None, exc_info=False):
        """
        Log an error event.

        Args:
            event_type: Dotted event name, e.g. "client_controller.flush_failed"
            data: Error context; never pass raw session blobs or store URLs
            exc_info: Attach the active traceback
        """
        self._log(logging.ERROR, event_type, data or {}, exc_info=exc_info)


def _default_logging_settings() -> 'LoggingSettings':
    from session_bridge.infrastructure.config.config_loader import get_settings_from_working_directory
    from session_bridge.infrastructure.config.settings import LoggingSettings
    try:
        return get_settings_from_working_directory().logging
    except Exception as e:
        # Required settings may be absent at import time; console logging still works
        sys.stderr.write(f"WARNING: logging settings unavailable, using defaults: {e}\n")
        return LoggingSettings()


def configure_logging(config: 'LoggingSettings') -> None:
    """
    Re-apply logging settings to every cached logger.

    Called from the composition root once settings are loaded, so loggers
    created at import time pick up the final level and outputs.
    """
    with _cache_lock:
        for name, cached in list(_logger_cache.items()):
            for handler in list(cached.logger.handlers):
                handler.close()
                cached.logger.removeHandler(handler)
            _logger_cache[name] = StructuredLogger(name, config)


def get_logger(name: str) -> StructuredLogger:
    """Cached StructuredLogger for `name`; handlers are attached only once."""
    with _cache_lock:
        logger = _logger_cache.get(name)
        if logger is None:
            logger = StructuredLogger(name, _default_logging_settings())
            _logger_cache[name] = logger
        return logger
