"""
Service Protocol Definitions

This module defines typing.Protocol interfaces for the external collaborators
used by discovery and response generation. These protocols enable loose
coupling, dependency injection, and easier testing.

Protocols defined:
- ContentSource: Interface for a social platform (fetching, authors, posting)
- KnowledgeSearchClient: Interface for the private knowledge index
- GenerationClient: Interface for the AI generation engine
"""

from datetime import datetime
from typing import List, Optional, Protocol

from data.models import (
    KnowledgeChunk, OpportunityAnalysis, PlatformConstraints, PostResult, RawAuthor, RawPost
)


class ContentSource(Protocol):
    """Protocol defining the interface for a social media content source.

    Implementations must translate platform failures into the typed errors of
    utils.exceptions: RateLimitError (with retry_after), AuthenticationError
    and PostNotFoundError, falling back to PlatformError.
    """

    platform: str

    def fetch_replies(self, since: Optional[datetime] = None, limit: int = 100) -> List[RawPost]:
        """Fetch replies to the authenticated user's posts.

        Args:
            since: Only return replies created after this time.
            limit: Maximum number of posts to return.

        Returns:
            List of raw posts, newest first.
        """
        ...

    def search_posts(self, keywords: List[str], since: Optional[datetime] = None,
                     limit: int = 50) -> List[RawPost]:
        """Search for posts matching any of the keywords.

        Args:
            keywords: Search terms.
            since: Only return posts created after this time.
            limit: Maximum number of posts to return.

        Returns:
            List of raw posts.
        """
        ...

    def get_author(self, platform_user_id: str) -> RawAuthor:
        """Get author details by platform user ID."""
        ...

    def get_constraints(self) -> PlatformConstraints:
        """Return posting constraints such as the maximum length."""
        ...

    def post(self, parent_post_id: str, text: str) -> PostResult:
        """Publish text as a reply to the given post.

        Returns:
            PostResult with the platform's id, web URL and timestamp.
        """
        ...


class KnowledgeSearchClient(Protocol):
    """Protocol for the user's private knowledge index.

    An empty index is not an error: implementations return an empty list.
    """

    def search(self, keywords: List[str]) -> List[KnowledgeChunk]:
        ...


class GenerationClient(Protocol):
    """Protocol for the AI generation engine.

    Implementations must not retry internally; the response pipeline owns
    the retry policy.
    """

    model_name: str

    def analyze(self, prompt: str) -> OpportunityAnalysis:
        """Run the Stage 1 analysis prompt and parse its JSON answer."""
        ...

    def generate(self, prompt: str) -> str:
        """Run the Stage 2 generation prompt and return the reply text."""
        ...
