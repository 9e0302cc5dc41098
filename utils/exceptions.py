"""
Custom Exception Classes for the Engagement Pipeline

This module defines custom exceptions for better error handling and
categorization of failures across discovery, response generation and
posting. Every error exposes a ``retryable`` flag so callers can decide
whether to offer a retry affordance.
"""

from typing import List, Optional, Union


class EngagementError(Exception):
    """Base exception for all engagement pipeline errors."""
    retryable = False


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(EngagementError):
    """Raised when configuration validation fails or required settings are missing."""
    pass


# =============================================================================
# Domain Errors
# =============================================================================

class NotFoundError(EngagementError):
    """Raised when a referenced account, profile, opportunity or response is missing."""

    def __init__(self, entity: str, entity_id: object = None):
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} not found: {entity_id}"
        super().__init__(message)


class InvalidStateError(EngagementError):
    """Raised when an operation is attempted on an entity in the wrong lifecycle state."""

    def __init__(self, current_status: str, expected_status: Union[str, List[str]],
                 action: str = "modify", entity: str = "response"):
        self.current_status = str(current_status)
        self.expected_status = expected_status
        if isinstance(expected_status, (list, tuple)):
            expected = " or ".join(str(s) for s in expected_status)
        else:
            expected = str(expected_status)

        if self.current_status == "posted":
            message = (f"Cannot {action} {entity} with status 'posted' - already posted. "
                       f"Expected status: {expected}.")
        else:
            message = (f"Cannot {action} {entity} with status '{self.current_status}'. "
                       f"Expected status: {expected}.")
        super().__init__(message)


class ValidationError(EngagementError):
    """Raised when caller input or an upstream result is malformed."""
    pass


class ConstraintViolationError(EngagementError):
    """Raised when generated text does not satisfy the platform's posting constraints."""

    def __init__(self, actual: int, limit: int):
        self.actual = actual
        self.limit = limit
        super().__init__(
            f"Generated response ({actual} chars) exceeds platform limit ({limit} chars)"
        )


class OperationCancelledError(EngagementError):
    """Raised when a caller cancels an in-flight retry loop."""
    pass


# =============================================================================
# Upstream Errors
# =============================================================================

class UpstreamError(EngagementError):
    """Base exception for failures of external collaborators."""
    retryable = True


class PlatformError(UpstreamError):
    """Base exception for social media platform errors."""

    def __init__(self, platform: str, message: str, retryable: bool = True):
        self.platform = platform
        self.retryable = retryable
        super().__init__(message)


class AuthenticationError(PlatformError):
    """Raised when credentials for a platform are invalid or expired."""

    def __init__(self, platform: str, message: str):
        super().__init__(
            platform,
            f"Authentication failed: {message}. Please reconnect your account.",
            retryable=False
        )


class RateLimitError(PlatformError):
    """Raised when a platform throttles requests."""

    def __init__(self, platform: str, retry_after: int = 60):
        self.retry_after = retry_after
        if retry_after >= 60:
            minutes = round(retry_after / 60)
            wait = f"{minutes} minute{'s' if minutes != 1 else ''}"
        else:
            wait = f"{retry_after} second{'s' if retry_after != 1 else ''}"
        super().__init__(
            platform,
            f"Rate limit exceeded. Please retry after {wait} ({retry_after} seconds).",
            retryable=True
        )


class PostNotFoundError(PlatformError):
    """Raised when a post no longer exists on the platform."""

    def __init__(self, platform: str, post_id: Optional[str] = None):
        self.post_id = post_id
        message = f"Post not found or was deleted: {post_id}" if post_id else "Post not found or was deleted"
        super().__init__(platform, message, retryable=False)


class ContentViolationError(PlatformError):
    """Raised when the platform rejects content for violating its rules."""

    def __init__(self, platform: str, reason: Optional[str] = None):
        self.reason = reason
        message = f"Content violation: {reason}" if reason else "Content violation detected"
        super().__init__(platform, message, retryable=False)


class PostingError(PlatformError):
    """Raised when posting to a platform fails for an unclassified reason."""
    pass


class GenerationError(UpstreamError):
    """Raised when the generation engine fails or returns an unusable result."""
    pass


class KnowledgeSearchError(UpstreamError):
    """Raised when the knowledge index cannot be queried."""
    pass


# =============================================================================
# Database Errors
# =============================================================================

class DatabaseError(EngagementError):
    """Base exception for database-related errors."""
    pass


class ConnectionError(DatabaseError):
    """Raised when database connection fails."""
    pass


class QueryError(DatabaseError):
    """Raised when a database query fails."""
    pass


class DuplicateKeyError(DatabaseError):
    """Raised when an insert violates a unique index."""
    pass
