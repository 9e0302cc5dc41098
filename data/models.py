"""
Data Models for the Engagement Pipeline

This module contains the data classes and status enums shared by the
storage layer, the platform adapters and the discovery / response services.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional
import uuid


def new_id() -> str:
    """Generate a new document identifier."""
    return uuid.uuid4().hex


class DiscoveryType(str, Enum):
    REPLIES = "replies"
    SEARCH = "search"


class OpportunityStatus(str, Enum):
    PENDING = "pending"
    RESPONDED = "responded"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


class ResponseStatus(str, Enum):
    DRAFT = "draft"
    POSTED = "posted"
    DISMISSED = "dismissed"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


# =============================================================================
# Platform data (as returned by a content source)
# =============================================================================

@dataclass
class RawPost:
    """A post as fetched from the platform, before scoring."""
    id: str                            # Platform post id (AT URI on Bluesky)
    url: str                           # Web URL to the post
    text: str
    created_at: datetime
    author_id: str                     # Platform user id (DID on Bluesky)
    likes: int = 0
    reposts: int = 0
    replies: int = 0


@dataclass
class RawAuthor:
    """Author profile as fetched from the platform."""
    id: str
    handle: str
    display_name: str = ""
    follower_count: int = 0
    bio: Optional[str] = None


@dataclass
class PlatformConstraints:
    max_length: int


@dataclass
class PostResult:
    """Platform metadata for a successfully posted reply."""
    post_id: str
    post_url: str
    posted_at: datetime


@dataclass
class KnowledgeChunk:
    """A ranked snippet from the user's knowledge base."""
    id: str
    text: str
    document_id: str = ""
    distance: float = 0.0
    chunk_index: int = 0
    filename: Optional[str] = None


@dataclass
class OpportunityAnalysis:
    """Stage 1 output: concepts extracted from the opportunity text."""
    keywords: List[str]
    main_topic: str
    domain: str
    question: str = "none"


# =============================================================================
# Stored documents
# =============================================================================

@dataclass
class Author:
    """Denormalized author cache keyed by (platform, platform_user_id)."""
    platform: str
    platform_user_id: str
    handle: str
    display_name: str = ""
    follower_count: int = 0
    bio: Optional[str] = None
    last_updated_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)


@dataclass
class OpportunityScore:
    recency: float
    impact: float
    total: float


@dataclass
class Opportunity:
    account_id: str
    platform: str
    post_id: str
    post_url: str
    text: str
    post_created_at: datetime
    author_id: str
    scoring: OpportunityScore
    discovery_type: DiscoveryType
    discovered_at: datetime
    expires_at: datetime
    likes: int = 0
    reposts: int = 0
    replies: int = 0
    status: OpportunityStatus = OpportunityStatus.PENDING
    updated_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now


@dataclass
class OpportunityWithAuthor:
    opportunity: Opportunity
    author: Author


@dataclass
class DiscoverySchedule:
    """Schedule for one discovery type of an account."""
    type: DiscoveryType
    enabled: bool = True
    interval_minutes: int = 15
    last_run_at: Optional[datetime] = None


@dataclass
class Account:
    profile_id: str
    platform: str
    handle: str
    schedules: List[DiscoverySchedule] = field(default_factory=list)
    status: AccountStatus = AccountStatus.ACTIVE
    last_discovery_at: Optional[datetime] = None
    discovery_error: Optional[str] = None
    id: str = field(default_factory=new_id)

    def schedule_for(self, discovery_type: DiscoveryType) -> Optional[DiscoverySchedule]:
        for schedule in self.schedules:
            if schedule.type == discovery_type:
                return schedule
        return None


@dataclass
class VoiceConfig:
    tone: str = ""
    style: str = ""
    examples: List[str] = field(default_factory=list)


@dataclass
class DiscoveryConfig:
    interests: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    communities: List[str] = field(default_factory=list)


@dataclass
class Profile:
    name: str
    principles: str = ""
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    is_active: bool = True
    id: str = field(default_factory=new_id)


@dataclass
class ResponseMetadata:
    """How a draft was produced."""
    analysis_keywords: List[str]
    main_topic: str
    domain: str
    question: str
    kb_chunks_used: int
    max_length: int
    model: str
    generation_time_ms: int
    analysis_time_ms: int
    search_time_ms: int
    response_time_ms: int
    used_principles: bool
    used_voice: bool


@dataclass
class Response:
    opportunity_id: str
    account_id: str
    text: str
    version: int
    metadata: ResponseMetadata
    generated_at: datetime
    status: ResponseStatus = ResponseStatus.DRAFT
    updated_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    posted_at: Optional[datetime] = None
    platform_post_id: Optional[str] = None
    platform_post_url: Optional[str] = None
    id: str = field(default_factory=new_id)


# =============================================================================
# Queries
# =============================================================================

@dataclass
class OpportunityFilters:
    status: Optional[List[OpportunityStatus]] = None
    limit: int = 20
    offset: int = 0


@dataclass
class OpportunityPage:
    opportunities: List[OpportunityWithAuthor]
    total: int
    limit: int
    offset: int
