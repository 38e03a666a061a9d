"""
Journal Recall Structured Logging Configuration

Provides:
- JSON structured logging for production
- Colorized console output for development
- Performance logging for sync and async functions

Usage:
    from core.logging_config import setup_logging, get_logger

    # At startup
    setup_logging(level='INFO', json_format=True)

    # In modules
    logger = get_logger(__name__)
    logger.info('Index rebuilt', extra={'index_size': 42})
"""

import inspect
import json
import logging
import os
import sys
import time
import traceback
from datetime import datetime, timezone
from functools import wraps


# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'taskName', 'message',
))


# =============================================================================
# Custom Formatters
# =============================================================================

class JSONFormatter(logging.Formatter):
    """JSON structured log formatter for production."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colorized console formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        parts = [
            f'{color}[{timestamp}]{reset}',
            f'{color}{record.levelname:8}{reset}',
            f'{record.name}:',
            record.getMessage()
        ]

        if hasattr(record, 'recording_id'):
            parts.insert(2, f'[{str(record.recording_id)[:8]}]')

        if hasattr(record, 'duration_ms'):
            parts.append(f'({record.duration_ms}ms)')

        message = ' '.join(parts)

        if record.exc_info:
            message += '\n' + ''.join(traceback.format_exception(*record.exc_info))

        return message


# =============================================================================
# Logger Setup
# =============================================================================

def setup_logging(level='INFO', json_format=None):
    """
    Configure root logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (default: True when RECALL_ENV is production)
    """
    if json_format is None:
        json_format = os.getenv('RECALL_ENV', 'development') == 'production'

    numeric_level = getattr(logging, level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)

    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter())

    root_logger.addHandler(console_handler)

    get_logger('recall').debug('Logging configured', extra={
        'format': 'json' if json_format else 'colored',
        'level': level
    })

    return root_logger


def get_logger(name):
    """Get a logger with the given name."""
    return logging.getLogger(name)


# =============================================================================
# Performance Logging Decorator
# =============================================================================

def log_performance(logger_name=None):
    """
    Decorator to log function performance.

    Works on plain functions and coroutine functions.

    Usage:
        @log_performance('recall.keyword')
        def build_index(recordings):
            ...
    """
    def decorator(func):
        def _log_success(logger, start_time):
            duration_ms = int((time.time() - start_time) * 1000)
            logger.debug(
                f'{func.__name__} completed',
                extra={'function': func.__name__, 'duration_ms': duration_ms}
            )

        def _log_failure(logger, start_time, error):
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f'{func.__name__} failed: {str(error)}',
                extra={
                    'function': func.__name__,
                    'duration_ms': duration_ms,
                    'error_type': type(error).__name__,
                }
            )

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                logger = get_logger(logger_name or func.__module__)
                start_time = time.time()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _log_failure(logger, start_time, e)
                    raise
                _log_success(logger, start_time)
                return result

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(logger_name or func.__module__)
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_failure(logger, start_time, e)
                raise
            _log_success(logger, start_time)
            return result

        return wrapper
    return decorator
