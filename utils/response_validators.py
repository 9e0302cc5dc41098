"""
Response Validation Module

Checks applied to drafts before they are stored and before they are posted.
"""

from datetime import datetime

from data.models import PlatformConstraints, PostResult, Response, ResponseStatus
from utils.exceptions import ConstraintViolationError, InvalidStateError, ValidationError


def validate_constraints(text: str, constraints: PlatformConstraints) -> None:
    """
    Raise ConstraintViolationError if the text is longer than the platform allows.
    """
    if len(text) > constraints.max_length:
        raise ConstraintViolationError(len(text), constraints.max_length)


def validate_response_for_posting(response: Response) -> None:
    """Only drafts can be posted."""
    if response.status != ResponseStatus.DRAFT:
        raise InvalidStateError(response.status.value, ResponseStatus.DRAFT.value, action="post")


def validate_post_result(result: PostResult) -> None:
    """
    Make sure the platform returned everything needed to record the post.

    Raises:
        ValidationError: A field is missing, empty or of the wrong type.
    """
    if result is None:
        raise ValidationError("PostResult is required")

    for name in ("post_id", "post_url"):
        value = getattr(result, name, None)
        if value is None:
            raise ValidationError(f"{name} is required")
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} cannot be empty")

    if getattr(result, "posted_at", None) is None:
        raise ValidationError("posted_at is required")
    if not isinstance(result.posted_at, datetime):
        raise ValidationError("posted_at must be a datetime")
