# This module contains a custom formatter for logging messages with different log levels.
import logging
import os
import re
from typing import Optional

LOGGER_NAME = "engagement"


class CustomFormatter(logging.Formatter):
    """
    A custom formatter for logging messages with different log levels.

    Attributes:
        grey (str): ANSI escape sequence for grey color.
        yellow (str): ANSI escape sequence for yellow color.
        red (str): ANSI escape sequence for red color.
        bold_red (str): ANSI escape sequence for bold red color.
        reset (str): ANSI escape sequence to reset color.
        format (str): The log message format.
        FORMATS (dict): A dictionary mapping log levels to their respective log message formats.

    Usage:
        formatter = CustomFormatter()
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
    """
    grey = "\x1b[37;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    dark_grey = "\x1b[30;1m"
    reset = "\x1b[0m"
    format = '[%(levelname)s] %(asctime)s - %(name)s - %(message)s'

    FORMATS = {
        logging.DEBUG: dark_grey + format + reset,
        logging.INFO: grey + format + reset,
        logging.WARNING: yellow + format + reset,
        logging.ERROR: red + format + reset,
        logging.CRITICAL: bold_red + format + reset
    }

    def format(self, record):
        """
        Formats the log record based on its log level.

        Args:
            record (logging.LogRecord): The log record to be formatted.

        Returns:
            str: The formatted log message.
        """
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def _root_logger() -> logging.Logger:
    root = logging.getLogger(LOGGER_NAME)
    if not root.handlers:
        root.setLevel(logging.INFO)
        ch = logging.StreamHandler()
        ch.setLevel(logging.DEBUG)
        ch.setFormatter(CustomFormatter())
        root.addHandler(ch)
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Return a child of the application logger.

    Args:
        name: Usually the calling module's ``__name__``.

    Returns:
        logging.Logger: Logger that propagates to the console handler.
    """
    _root_logger()
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def setup_file_logging(log_file: Optional[str], level: int = logging.INFO) -> logging.Logger:
    """
    Attach a plain-text file handler and set the application log level.

    Calling it again with the same path keeps the existing handler.

    Args:
        log_file: Path of the log file, or None to log to the console only.
        level: Logging level for the application logger.

    Returns:
        logging.Logger: The configured application logger.
    """
    root = _root_logger()
    root.setLevel(level)
    if log_file:
        path = os.path.abspath(log_file)
        for handler in root.handlers:
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == path:
                handler.setLevel(level)
                return root
        fh = logging.FileHandler(path, encoding='utf-8')
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter('[%(levelname)s] %(asctime)s - %(name)s - %(message)s'))
        root.addHandler(fh)
    return root


_SECRET_PATTERNS = [
    re.compile(r'(?i)(password|pwd|api[_-]?key|token|secret)=([^;\s&]+)'),
    re.compile(r'(?i)(bearer\s+)([A-Za-z0-9._\-]+)'),
]


def sanitize_error(error: BaseException) -> str:
    """Render an exception for logs with credential-looking values masked."""
    message = f"{type(error).__name__}: {error}"
    for pattern in _SECRET_PATTERNS:
        message = pattern.sub(lambda m: f"{m.group(1)}{'=' if '=' in m.group(0) else ''}***", message)
    return message
