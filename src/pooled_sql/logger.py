"""
Centralized logging for the pooled SQL access layer.

Configures console and rotating-file output, masks credentials that may
leak into messages (passwords, tokens, connection URLs) and provides
timing decorators for both plain and coroutine functions.
"""

from __future__ import annotations

import inspect
import logging
import logging.handlers
import re
import sys
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from time import perf_counter
from typing import Any, TypeAlias, TypeVar

LogLevel: TypeAlias = str | int

F = TypeVar('F', bound=Callable[..., Any])

ROOT_LOGGER_NAME: str = 'pooled_sql'

DEFAULT_LOG_FORMAT: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_DATE_FORMAT: str = '%Y-%m-%d %H:%M:%S'
MAX_LOG_FILE_SIZE: int = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT: int = 3

SENSITIVE_PATTERNS: tuple[tuple[str, str], ...] = (
    (r"password[\"']?\s*[:=]\s*[\"']?([^\"'\s]+)", r'password=***'),
    (r"token[\"']?\s*[:=]\s*[\"']?([^\"'\s]+)", r'token=***'),
    (r"secret[\"']?\s*[:=]\s*[\"']?([^\"'\s]+)", r'secret=***'),
    # user:password@host inside connection URLs
    (r'(://[^:/@\s]+):[^@\s]*@', r'\1:***@'),
)


def setup_logging(
    log_level: LogLevel = 'INFO',
    log_file: str | Path | None = None,
    logger_name: str = ROOT_LOGGER_NAME,
    *,
    console_output: bool = True,
    mask_sensitive: bool = True,
) -> logging.Logger:
    """
    Configure the package logger with console and/or file output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to a log file (optional, rotated at 10 MB).
        logger_name: Logger to configure.
        console_output: Whether to log to stdout.
        mask_sensitive: Whether to mask credentials in messages.

    Returns:
        The configured logger.

    Example:
        >>> logger = setup_logging('DEBUG', 'pooled_sql.log')
        >>> logger.info('Pool opened')
    """
    logger = logging.getLogger(logger_name)

    # Повторная настройка не должна дублировать handlers
    logger.handlers.clear()
    logger.filters.clear()

    numeric_level = _parse_log_level(log_level)
    logger.setLevel(numeric_level)

    formatter = logging.Formatter(fmt=DEFAULT_LOG_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    match (console_output, log_file):
        case (True, None):
            _add_console_handler(logger, formatter)
        case (False, str() | Path() as file):
            _add_file_handler(logger, formatter, file)
        case (True, str() | Path() as file):
            _add_console_handler(logger, formatter)
            _add_file_handler(logger, formatter, file)
        case (False, None):
            _add_console_handler(logger, formatter)
            logger.warning('No log destination configured, falling back to console')

    if mask_sensitive:
        sensitive_filter = _create_sensitive_filter()
        logger.addFilter(sensitive_filter)
        for handler in logger.handlers:
            handler.addFilter(sensitive_filter)

    logger.debug(
        'Logger %r configured with level %s',
        logger_name,
        logging.getLevelName(numeric_level),
    )
    return logger


def _parse_log_level(level: LogLevel) -> int:
    """
    Convert a logging level name or number to its numeric value.

    Raises:
        ValueError: If the level is unknown.
    """
    match level:
        case int() as numeric_level if numeric_level in {0, 10, 20, 30, 40, 50}:
            return numeric_level
        case str() as string_level:
            upper_level = string_level.strip().upper()
            numeric = logging.getLevelNamesMapping().get(upper_level)
            if numeric is None:
                raise ValueError(f'Invalid logging level: {level}')
            return numeric
        case _:
            raise ValueError(f'Unsupported logging level: {level!r}')


def _add_console_handler(logger: logging.Logger, formatter: logging.Formatter) -> None:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_create_colored_formatter() if _supports_color() else formatter)
    logger.addHandler(console_handler)


def _add_file_handler(
    logger: logging.Logger,
    formatter: logging.Formatter,
    log_file: str | Path,
) -> None:
    file_path = Path(log_file)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=file_path,
        maxBytes=MAX_LOG_FILE_SIZE,
        backupCount=BACKUP_COUNT,
        encoding='utf-8',
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _supports_color() -> bool:
    return hasattr(sys.stdout, 'isatty') and sys.stdout.isatty() and sys.platform != 'win32'


def _create_colored_formatter() -> logging.Formatter:
    """Formatter that wraps the level name in ANSI colors."""
    colors = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    reset = '\033[0m'

    class ColoredFormatter(logging.Formatter):
        def format(self, record: logging.LogRecord) -> str:
            color = colors.get(record.levelname)
            if color is None:
                return super().format(record)
            original = record.levelname
            try:
                record.levelname = f'{color}{original}{reset}'
                return super().format(record)
            finally:
                record.levelname = original

    return ColoredFormatter(fmt=DEFAULT_LOG_FORMAT, datefmt=DEFAULT_DATE_FORMAT)


_COMPILED_PATTERNS = [
    (re.compile(pattern, re.IGNORECASE), replacement) for pattern, replacement in SENSITIVE_PATTERNS
]


def mask_sensitive_text(text: str) -> str:
    """Apply every sensitive pattern to ``text``."""
    for pattern, replacement in _COMPILED_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _create_sensitive_filter() -> logging.Filter:
    """Create a filter that rewrites records containing credentials."""

    class SensitiveDataFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            original_msg = record.getMessage()
            filtered_msg = mask_sensitive_text(original_msg)
            if filtered_msg != original_msg:
                record.msg = filtered_msg
                record.args = ()
            return True

    return SensitiveDataFilter()


def log_execution_time(func: F) -> F:
    """
    Decorator logging how long a function or coroutine function takes.

    Coroutine functions are timed until the awaited result is available,
    not until the coroutine object is created.

    Example:
        >>> @log_execution_time
        ... async def open_pool():
        ...     ...
    """
    logger = logging.getLogger(f'{ROOT_LOGGER_NAME}.performance')
    func_name = f'{func.__module__}.{func.__qualname__}'

    if inspect.iscoroutinefunction(func):

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            logger.debug('Starting execution: %s', func_name)
            start_time = perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception:
                logger.exception('Error in %s after %.4fs', func_name, perf_counter() - start_time)
                raise
            logger.info('Completed: %s (time: %.4fs)', func_name, perf_counter() - start_time)
            return result

        return async_wrapper  # type: ignore[return-value]

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger.debug('Starting execution: %s', func_name)
        start_time = perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception:
            logger.exception('Error in %s after %.4fs', func_name, perf_counter() - start_time)
            raise
        logger.info('Completed: %s (time: %.4fs)', func_name, perf_counter() - start_time)
        return result

    return wrapper  # type: ignore[return-value]


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Get a logger inside the package namespace.

    Example:
        >>> get_logger('client').name
        'pooled_sql.client'
    """
    if name is None:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name != ROOT_LOGGER_NAME and not name.startswith(f'{ROOT_LOGGER_NAME}.'):
        name = f'{ROOT_LOGGER_NAME}.{name}'
    return logging.getLogger(name)


def log_exception(
    logger: logging.Logger | None = None,
    message: str = 'An error occurred',
    level: int = logging.ERROR,
) -> None:
    """Log the exception currently being handled, with traceback."""
    if logger is None:
        logger = get_logger()
    logger.log(level, message, exc_info=True)


def shutdown_logging() -> None:
    """Flush and close every handler."""
    logging.shutdown()
