"""
Helper Utility Module

This module provides various helper functions used throughout the engagement pipeline.
"""

import threading
import time
import weakref
from typing import Callable, Optional, Tuple, TypeVar
from datetime import datetime, timezone

from utils.exceptions import OperationCancelledError

T = TypeVar("T")


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as returned by the AT Protocol.

    Args:
        value: Timestamp such as ``2024-01-15T10:00:00.000Z``.

    Returns:
        Optional[datetime]: UTC datetime, or None if the value is empty or invalid.
    """
    if not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except ValueError:
        return None


def retry_with_backoff(func: Callable[[], T], max_attempts: int = 3, base_delay: float = 1.0,
                       exceptions: Tuple = (Exception,), backoff: float = 2,
                       cancel_event: Optional[threading.Event] = None,
                       sleep: Optional[Callable[[float], None]] = None,
                       on_retry: Optional[Callable[[int, BaseException, float], None]] = None) -> T:
    """
    Retry a function multiple times if it fails.

    Delays grow as ``base_delay * backoff ** (attempt - 1)``, so the defaults
    wait 1s then 2s between three attempts. Errors carrying
    ``retryable = False`` are raised immediately.

    Args:
        func: The function to retry
        max_attempts: Maximum number of attempts
        base_delay: Initial delay between attempts in seconds
        exceptions: Tuple of exceptions to catch
        backoff: Multiplier for the delay between attempts
        cancel_event: When set, the pending wait is abandoned and
            OperationCancelledError is raised
        sleep: Replacement for the blocking wait (tests)
        on_retry: Called with (attempt, error, delay) before each wait

    Returns:
        The result of the function call

    Raises:
        The last exception raised by the function
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("Operation cancelled before attempt")
        try:
            return func()
        except exceptions as e:
            attempt += 1
            if attempt >= max_attempts or getattr(e, "retryable", True) is False:
                raise

            wait_time = base_delay * (backoff ** (attempt - 1))
            if on_retry is not None:
                on_retry(attempt, e, wait_time)

            if sleep is not None:
                sleep(wait_time)
            elif cancel_event is not None:
                # Event.wait returns True as soon as the event is set
                if cancel_event.wait(wait_time):
                    raise OperationCancelledError("Operation cancelled during backoff") from e
            else:
                time.sleep(wait_time)


def truncate_text(text: str, max_length: int = 100, add_ellipsis: bool = True) -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: The text to truncate
        max_length: Maximum length
        add_ellipsis: Whether to add an ellipsis if text is truncated

    Returns:
        str: Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    truncated = text[:max_length].rstrip()
    if add_ellipsis:
        truncated += "..."

    return truncated


class KeyedLocks:
    """
    Hands out one lock per key so callers can serialize work per entity.

    Entries live only while some caller still holds the lock object, so
    keys that are no longer in use do not accumulate.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def get(self, key) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock
