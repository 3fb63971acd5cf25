"""
Logging configuration for MarketPulse
Provides structured logging with color support and optional file output
"""

import functools
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
import colorama
from colorama import Fore, Style

# Initialize colorama for Windows support
colorama.init()

# Custom log colors
LOG_COLORS = {
    'DEBUG': Fore.CYAN,
    'INFO': Fore.GREEN,
    'WARNING': Fore.YELLOW,
    'ERROR': Fore.RED,
    'CRITICAL': Fore.MAGENTA
}

CONSOLE_FORMAT = "%(timestamp)s [%(levelname)s] %(name)s: %(message)s%(context)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s%(context)s"


class ContextFilter(logging.Filter):
    """Guarantees the custom record fields exist for every handler"""

    def filter(self, record):
        if not hasattr(record, 'context'):
            record.context = ""
        record.timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        return True


class ColoredFormatter(logging.Formatter):
    """Custom formatter with color support"""

    def __init__(self, fmt=None, datefmt=None, use_colors=True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record):
        if not self.use_colors:
            return super().format(record)

        levelname, name = record.levelname, record.name
        if levelname in LOG_COLORS:
            record.levelname = f"{LOG_COLORS[levelname]}{levelname}{Style.RESET_ALL}"
            record.name = f"{Fore.BLUE}{name}{Style.RESET_ALL}"
        try:
            return super().format(record)
        finally:
            # Records are shared between handlers
            record.levelname, record.name = levelname, name


class StructuredLogger:
    """Wrapper for structured logging with context"""

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        self.logger = logger
        self.context: Dict[str, Any] = dict(context or {})

    def add_context(self, **kwargs):
        """Add persistent context to all log messages"""
        self.context.update(kwargs)

    def clear_context(self):
        """Clear all context"""
        self.context = {}

    def bind(self, **kwargs) -> 'StructuredLogger':
        """Return a child logger carrying extra context"""
        return StructuredLogger(self.logger, {**self.context, **kwargs})

    def _log(self, level, msg, *args, **kwargs):
        """Internal log method with context injection"""
        extra = dict(kwargs.pop('extra', None) or {})
        fields = {**self.context, **extra}
        extra['context'] = (
            " | " + " ".join(f"{k}={v}" for k, v in fields.items()) if fields else ""
        )
        kwargs['extra'] = extra
        getattr(self.logger, level)(msg, *args, **kwargs)

    def debug(self, msg, *args, **kwargs):
        self._log('debug', msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self._log('info', msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._log('warning', msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self._log('error', msg, *args, **kwargs)

    def critical(self, msg, *args, **kwargs):
        self._log('critical', msg, *args, **kwargs)

    def exception(self, msg, *args, **kwargs):
        kwargs['exc_info'] = True
        self._log('error', msg, *args, **kwargs)


def setup_logger(
    name: str,
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    use_colors: bool = True
) -> StructuredLogger:
    """
    Set up a logger with console and optional file output

    Args:
        name: Logger name (usually __name__)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging
        use_colors: Whether to use colored output

    Returns:
        StructuredLogger instance
    """
    from ..config.settings import get_config
    config = get_config()

    # Use provided level or fall back to config
    if level is None:
        level = config.system.log_level

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Module-level loggers are created once per import; avoid duplicate handlers
    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.addFilter(ContextFilter())
        console_handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, use_colors=use_colors))
        logger.addHandler(console_handler)

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
            file_handler.addFilter(ContextFilter())
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            logger.addHandler(file_handler)

        # Prevent propagation to root logger
        logger.propagate = False

    return StructuredLogger(logger)


def get_logger(name: str) -> StructuredLogger:
    """
    Get or create a logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        StructuredLogger instance
    """
    return setup_logger(name)


def log_async_performance(logger: Optional[StructuredLogger] = None):
    """Decorator to log async function performance"""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            log = logger or get_logger(func.__module__)
            start_time = time.perf_counter()
            log.debug(f"Starting async {func.__name__}")

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = time.perf_counter() - start_time
                log.error(
                    f"Failed async {func.__name__}: {e}",
                    extra={'duration_ms': int(elapsed * 1000)},
                    exc_info=True
                )
                raise
            elapsed = time.perf_counter() - start_time
            log.info(f"Completed async {func.__name__}", extra={'duration_ms': int(elapsed * 1000)})
            return result

        return wrapper
    return decorator
