"""
Shared Test Fixtures for the Engagement Assistant

This module provides common fixtures used across all test modules.
Fixtures include a fixed clock, an in-memory store, fake platform,
generation and knowledge clients, log capture, and data factories for
posts, authors, profiles, accounts and opportunities.
"""

import pytest
from unittest.mock import MagicMock, patch
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
import logging
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.memory_store import MemoryStore
from data.models import (
    Account, DiscoveryConfig, DiscoverySchedule, DiscoveryType, KnowledgeChunk, Opportunity,
    OpportunityAnalysis, OpportunityScore, OpportunityStatus, PlatformConstraints, PostResult,
    Profile, RawAuthor, RawPost, VoiceConfig
)


FIXED_NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """
    Patch credentials on the settings module with test values.

    Prevents tests from reading real API keys or database credentials.

    Returns:
        module: The patched config.settings module.
    """
    from config import settings

    with patch.multiple(settings,
                        GOOGLE_AI_API_KEY="test-google-api-key",
                        AT_PROTOCOL_USERNAME="test-bsky-user",
                        AT_PROTOCOL_PASSWORD="test-bsky-password",
                        DB_SERVER="test-server",
                        DB_NAME="test-db",
                        DB_USER="test-user",
                        DB_PASSWORD="test-password",
                        DB_CONNECTION_STRING="DRIVER={Test};SERVER=test-server;PWD=test-password"):
        yield settings


# =============================================================================
# Clock Fixtures
# =============================================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """A FakeClock starting at 2024-01-15 12:00 UTC."""
    return FakeClock()


# =============================================================================
# Logging Fixtures
# =============================================================================

@pytest.fixture
def capture_logs():
    """
    Capture log messages for assertion in tests.

    Returns:
        list: A list that will contain captured log records.
    """

    class LogCapture(logging.Handler):
        def __init__(self):
            super().__init__()
            self.records = []

        def emit(self, record):
            self.records.append(record)

    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    original_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(handler)

    yield handler.records

    root_logger.removeHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def test_logger(capture_logs):
    """A dedicated DEBUG logger whose records land in capture_logs."""
    log = logging.getLogger("engagement.tests")
    log.setLevel(logging.DEBUG)
    return log


# =============================================================================
# Fake Collaborators
# =============================================================================

class FakeSource:
    """In-memory ContentSource recording every call."""

    platform = "bluesky"

    def __init__(self):
        self.replies: List[RawPost] = []
        self.search_results: List[RawPost] = []
        self.authors: Dict[str, RawAuthor] = {}
        self.max_length = 300
        self.fetch_error: Optional[Exception] = None
        self.post_error: Optional[Exception] = None
        self.post_result: Optional[PostResult] = None
        self.calls: List[tuple] = []

    def fetch_replies(self, since=None, limit=100):
        self.calls.append(("fetch_replies", since, limit))
        if self.fetch_error:
            raise self.fetch_error
        return list(self.replies)

    def search_posts(self, keywords, since=None, limit=50):
        self.calls.append(("search_posts", list(keywords), since, limit))
        if self.fetch_error:
            raise self.fetch_error
        return list(self.search_results)

    def get_author(self, platform_user_id):
        self.calls.append(("get_author", platform_user_id))
        return self.authors.get(platform_user_id) or RawAuthor(
            id=platform_user_id, handle=f"{platform_user_id.split(':')[-1]}.bsky.social")

    def get_constraints(self):
        return PlatformConstraints(max_length=self.max_length)

    def post(self, parent_post_id, text):
        self.calls.append(("post", parent_post_id, text))
        if self.post_error:
            raise self.post_error
        if self.post_result is not None:
            return self.post_result
        return PostResult(
            post_id="at://did:plc:me/app.bsky.feed.post/reply1",
            post_url="https://bsky.app/profile/me.bsky.social/post/reply1",
            posted_at=FIXED_NOW
        )


class FakeGenerationClient:
    """GenerationClient whose answers (or errors) are queued per stage."""

    model_name = "test-model"

    def __init__(self):
        self.analysis_results: List[object] = []
        self.generation_results: List[object] = []
        self.default_analysis = OpportunityAnalysis(
            keywords=["rust", "memory safety"], main_topic="Rust", domain="technology",
            question="none")
        self.default_text = "Great point about ownership. The borrow checker pays off later."
        self.prompts: List[tuple] = []

    @staticmethod
    def _next(queue, default):
        result = queue.pop(0) if queue else default
        if isinstance(result, Exception):
            raise result
        return result

    def analyze(self, prompt):
        self.prompts.append(("analyze", prompt))
        return self._next(self.analysis_results, self.default_analysis)

    def generate(self, prompt):
        self.prompts.append(("generate", prompt))
        return self._next(self.generation_results, self.default_text)


class FakeKnowledgeClient:
    def __init__(self, chunks: Optional[List[KnowledgeChunk]] = None, error: Optional[Exception] = None):
        self.chunks = chunks or []
        self.error = error
        self.queries: List[List[str]] = []

    def search(self, keywords):
        self.queries.append(list(keywords))
        if self.error:
            raise self.error
        return list(self.chunks)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def generation_client():
    return FakeGenerationClient()


@pytest.fixture
def knowledge_client():
    return FakeKnowledgeClient(chunks=[
        KnowledgeChunk(id="c1", text="Ownership rules prevent data races.", document_id="doc1"),
        KnowledgeChunk(id="c2", text="Lifetimes describe how long references live.", document_id="doc1"),
    ])


# =============================================================================
# Data Factories
# =============================================================================

@pytest.fixture
def raw_post_factory():
    """
    Factory fixture for RawPost objects.

    Usage:
        def test_post(raw_post_factory):
            post = raw_post_factory(post_id="p1", age_minutes=10, likes=5)
    """
    def _create(post_id: str = "at://did:plc:alice/app.bsky.feed.post/1",
                text: str = "Is Rust worth learning in 2024?",
                age_minutes: float = 0,
                author_id: str = "did:plc:alice",
                likes: int = 0, reposts: int = 0, replies: int = 0,
                now: datetime = FIXED_NOW) -> RawPost:
        return RawPost(
            id=post_id,
            url=f"https://bsky.app/profile/alice.bsky.social/post/{post_id.split('/')[-1]}",
            text=text,
            created_at=now - timedelta(minutes=age_minutes),
            author_id=author_id,
            likes=likes,
            reposts=reposts,
            replies=replies
        )
    return _create


@pytest.fixture
def raw_author_factory():
    def _create(author_id: str = "did:plc:alice", handle: str = "alice.bsky.social",
                follower_count: int = 0, display_name: str = "Alice") -> RawAuthor:
        return RawAuthor(id=author_id, handle=handle, display_name=display_name,
                         follower_count=follower_count, bio=None)
    return _create


@pytest.fixture
def profile_factory():
    def _create(keywords: Optional[List[str]] = None, interests: Optional[List[str]] = None,
                principles: str = "Be kind and precise.", style: str = "Casual, concise.",
                name: str = "Test Persona") -> Profile:
        return Profile(
            name=name,
            principles=principles,
            voice=VoiceConfig(tone="friendly", style=style, examples=[]),
            discovery=DiscoveryConfig(
                interests=interests if interests is not None else ["programming"],
                keywords=keywords if keywords is not None else ["rust"],
                communities=[]
            )
        )
    return _create


@pytest.fixture
def account_factory():
    def _create(profile_id: str, types=(DiscoveryType.REPLIES, DiscoveryType.SEARCH),
                last_run_at: Optional[datetime] = None, interval_minutes: int = 15) -> Account:
        return Account(
            profile_id=profile_id,
            platform="bluesky",
            handle="me.bsky.social",
            schedules=[DiscoverySchedule(type=t, enabled=True, interval_minutes=interval_minutes,
                                         last_run_at=last_run_at) for t in types]
        )
    return _create


@pytest.fixture
def seeded(store, profile_factory, account_factory):
    """Store holding one profile and one account with both discovery schedules."""
    profile = profile_factory()
    store.save_profile(profile)
    account = account_factory(profile.id)
    store.save_account(account)
    return store, account, profile


@pytest.fixture
def opportunity_factory():
    def _create(account_id: str, post_id: str = "at://did:plc:alice/app.bsky.feed.post/1",
                author_id: str = "author-1", total: float = 70.0,
                status: OpportunityStatus = OpportunityStatus.PENDING,
                discovered_at: datetime = FIXED_NOW, ttl_hours: float = 4,
                text: str = "Is Rust worth learning in 2024?") -> Opportunity:
        return Opportunity(
            account_id=account_id,
            platform="bluesky",
            post_id=post_id,
            post_url="https://bsky.app/profile/alice.bsky.social/post/1",
            text=text,
            post_created_at=discovered_at,
            author_id=author_id,
            scoring=OpportunityScore(recency=100.0, impact=0.0, total=total),
            discovery_type=DiscoveryType.REPLIES,
            status=status,
            discovered_at=discovered_at,
            expires_at=discovered_at + timedelta(hours=ttl_hours),
            updated_at=discovered_at
        )
    return _create


@pytest.fixture
def mock_db_connection():
    """
    Mock pyodbc connection for database tests.

    Yields:
        tuple: (mock_connect, mock_connection, mock_cursor)
    """
    with patch('data.database.pyodbc.connect') as mock_connect:
        mock_connection = MagicMock()
        mock_cursor = MagicMock()
        mock_connection.cursor.return_value = mock_cursor
        mock_connect.return_value = mock_connection
        yield mock_connect, mock_connection, mock_cursor
