"""
Scoring Service Module

Ranks discovered posts by recency and impact.

- Recency: exponential decay, ``e^(-age_minutes / 30) * 100``
- Impact: ``10*log10(followers) + 3*log10(likes+1) + 3*log10(reposts+1)``
- Total: ``0.7 * recency + 0.3 * impact``

All three values are clamped to [0, 100] and rounded to one decimal place.
The clock is injectable so scores are reproducible in tests.
"""

import math
from datetime import datetime
from typing import Callable, Optional

from config import settings
from data.models import OpportunityScore, RawAuthor, RawPost
from utils.helpers import ensure_utc, utc_now


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


class ScoringService:
    """Pure scoring of a post and its author."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None,
                 recency_weight: float = settings.RECENCY_WEIGHT,
                 impact_weight: float = settings.IMPACT_WEIGHT,
                 decay_minutes: float = settings.RECENCY_DECAY_MINUTES):
        self._clock = clock or utc_now
        self.recency_weight = recency_weight
        self.impact_weight = impact_weight
        self.decay_minutes = decay_minutes

    def score(self, post: RawPost, author: RawAuthor, now: Optional[datetime] = None) -> OpportunityScore:
        """
        Calculate the score breakdown for a post.

        Args:
            post: Post metadata from the content source.
            author: Author metadata.
            now: Reference time; defaults to the service clock.

        Returns:
            OpportunityScore: recency, impact and total, each 0-100.
        """
        now = now or self._clock()
        recency = self.recency_score(post.created_at, now)
        impact = self.impact_score(post, author)
        total = self.recency_weight * recency + self.impact_weight * impact

        return OpportunityScore(
            recency=_round1(recency),
            impact=_round1(impact),
            total=_round1(_clamp(total))
        )

    def recency_score(self, created_at: datetime, now: datetime) -> float:
        age_minutes = (ensure_utc(now) - ensure_utc(created_at)).total_seconds() / 60
        return _clamp(math.exp(-age_minutes / self.decay_minutes) * 100)

    @staticmethod
    def impact_score(post: RawPost, author: RawAuthor) -> float:
        followers = max(0, author.follower_count)
        likes = max(0, post.likes)
        reposts = max(0, post.reposts)

        # log10(0) is undefined; an author without followers contributes nothing
        follower_score = math.log10(followers) if followers > 0 else 0.0
        likes_score = math.log10(likes + 1)
        reposts_score = math.log10(reposts + 1)

        raw = (follower_score * settings.FOLLOWER_WEIGHT
               + likes_score * settings.ENGAGEMENT_WEIGHT
               + reposts_score * settings.ENGAGEMENT_WEIGHT)
        return _clamp(raw)

    @staticmethod
    def explain_score(score: OpportunityScore) -> str:
        """Human-readable summary, e.g. for tooltips and CLI output."""
        return (f"Score: {score.total}/100 "
                f"(recency: {round(score.recency)}%, impact: {round(score.impact)}%)")
