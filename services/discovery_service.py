"""
Discovery Service Module

Finds opportunities for an account: fetches candidate posts from the content
source, skips posts already stored for the account, refreshes their authors,
scores them and stores the ones above the threshold as pending opportunities
with a fixed time-to-live. Also lists opportunities, applies user-driven
status changes and expires stale pending opportunities.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

from config import settings
from data.models import (
    DiscoveryType, Opportunity, OpportunityFilters, OpportunityPage,
    OpportunityStatus, OpportunityWithAuthor, RawPost
)
from data.protocols import EngagementStore
from services.author_cache import AuthorCache
from services.protocols import ContentSource
from services.scoring_service import ScoringService
from utils.exceptions import (
    DuplicateKeyError, InvalidStateError, NotFoundError, ValidationError
)
from utils.helpers import KeyedLocks, utc_now
from utils.logger import get_logger, sanitize_error

# Statuses a user or agent may set directly; responded and expired have their own paths
_MANUAL_TRANSITIONS = {
    OpportunityStatus.PENDING: {OpportunityStatus.DISMISSED},
}


def _coerce_discovery_type(value: Union[str, DiscoveryType]) -> DiscoveryType:
    try:
        return DiscoveryType(value)
    except ValueError:
        raise ValidationError(f"Unknown discovery type: {value}") from None


class DiscoveryService:
    """Orchestrates discovery runs and the opportunity lifecycle."""

    def __init__(self, store: EngagementStore, source: ContentSource,
                 scoring: Optional[ScoringService] = None,
                 author_cache: Optional[AuthorCache] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 logger: Optional[logging.Logger] = None,
                 score_threshold: float = settings.OPPORTUNITY_SCORE_THRESHOLD,
                 ttl_hours: float = settings.OPPORTUNITY_TTL_HOURS,
                 lookback_hours: float = settings.DEFAULT_LOOKBACK_HOURS):
        self._store = store
        self._source = source
        self._clock = clock or utc_now
        self._scoring = scoring or ScoringService(clock=self._clock)
        self._authors = author_cache or AuthorCache(store, source, clock=self._clock)
        self._log = logger or get_logger(__name__)
        self.score_threshold = score_threshold
        self.ttl = timedelta(hours=ttl_hours)
        self.lookback = timedelta(hours=lookback_hours)
        self._run_locks = KeyedLocks()

    # =========================================================================
    # Discovery runs
    # =========================================================================

    def discover(self, account_id: str, discovery_type: Union[str, DiscoveryType]) -> List[Opportunity]:
        """
        Run discovery for one account and discovery type.

        Runs for the same (account, type) are serialized. Already-stored posts
        are skipped by looking them up in the store, so a retried run never
        inserts an opportunity twice.

        Args:
            account_id: Account to discover for.
            discovery_type: 'replies' or 'search'.

        Returns:
            List[Opportunity]: Opportunities created by this run.

        Raises:
            NotFoundError: Account, profile or schedule is missing.
            UpstreamError: The content source failed; the message is stored on the account.
        """
        discovery_type = _coerce_discovery_type(discovery_type)
        with self._run_locks.get((account_id, discovery_type)):
            return self._discover(account_id, discovery_type)

    def _discover(self, account_id: str, discovery_type: DiscoveryType) -> List[Opportunity]:
        log = self._log
        run = f"[{account_id}:{discovery_type.value}]"
        started = time.monotonic()
        log.info(f"{run} Discovery starting")

        try:
            account = self._store.get_account(account_id)
            if account is None:
                raise NotFoundError("Account", account_id)

            profile = self._store.get_profile(account.profile_id)
            if profile is None:
                raise NotFoundError("Profile", account.profile_id)

            schedule = account.schedule_for(discovery_type)
            if schedule is None:
                raise NotFoundError("Discovery schedule", discovery_type.value)

            now = self._clock()
            since = schedule.last_run_at or (now - self.lookback)
            log.debug(f"{run} Fetching posts since {since.isoformat()}")

            if discovery_type == DiscoveryType.REPLIES:
                posts = self._source.fetch_replies(since=since, limit=settings.REPLIES_FETCH_LIMIT)
            else:
                keywords = profile.discovery.keywords or profile.discovery.interests
                if not keywords:
                    log.info(f"{run} No keywords or interests configured, skipping search")
                    self._store.record_discovery_success(account_id, discovery_type, self._clock())
                    return []
                source = "keywords" if profile.discovery.keywords else "interests"
                log.debug(f"{run} Searching with {source}: {', '.join(keywords)}")
                posts = self._source.search_posts(keywords, since=since,
                                                  limit=settings.SEARCH_FETCH_LIMIT)

            log.info(f"{run} {len(posts)} posts fetched from {self._source.platform}")

            created = []
            skipped_duplicates = 0
            skipped_low_score = 0
            for post in posts:
                if self._store.find_opportunity_by_post(account_id, post.id) is not None:
                    skipped_duplicates += 1
                    continue

                opportunity = self._evaluate(account_id, account.platform, discovery_type, post)
                if opportunity is None:
                    skipped_low_score += 1
                    continue

                try:
                    self._store.insert_opportunity(opportunity)
                except DuplicateKeyError:
                    # Stored by an overlapping run between the lookup and the insert
                    skipped_duplicates += 1
                    continue
                created.append(opportunity)

            self._store.record_discovery_success(account_id, discovery_type, self._clock())

            duration_ms = int((time.monotonic() - started) * 1000)
            log.info(f"{run} Discovery complete: created={len(created)} "
                     f"skipped_duplicates={skipped_duplicates} "
                     f"skipped_low_score={skipped_low_score} duration_ms={duration_ms}")
            return created

        except Exception as e:
            log.error(f"{run} Discovery failed: {sanitize_error(e)}")
            try:
                self._store.record_discovery_error(account_id, str(e))
            except Exception as record_error:
                log.error(f"{run} Could not record discovery error: {sanitize_error(record_error)}")
            raise

    def _evaluate(self, account_id: str, platform: str, discovery_type: DiscoveryType,
                  post: RawPost) -> Optional[Opportunity]:
        """Refresh the author, score the post and build the opportunity if it qualifies."""
        raw_author, author = self._authors.refresh(post.author_id)

        now = self._clock()
        score = self._scoring.score(post, raw_author, now=now)
        if score.total < self.score_threshold:
            self._log.debug(f"Skipping {post.id}: {self._scoring.explain_score(score)}")
            return None

        return Opportunity(
            account_id=account_id,
            platform=platform,
            post_id=post.id,
            post_url=post.url,
            text=post.text,
            post_created_at=post.created_at,
            author_id=author.id,
            likes=post.likes,
            reposts=post.reposts,
            replies=post.replies,
            scoring=score,
            discovery_type=discovery_type,
            status=OpportunityStatus.PENDING,
            discovered_at=now,
            expires_at=now + self.ttl,
            updated_at=now
        )

    # =========================================================================
    # Opportunity lifecycle
    # =========================================================================

    def get_opportunities(self, account_id: str,
                          filters: Optional[OpportunityFilters] = None) -> OpportunityPage:
        """
        List opportunities for an account, highest score first, with authors attached.

        Args:
            account_id: Account whose opportunities are listed.
            filters: Status filter and pagination; limit is capped at
                OPPORTUNITY_MAX_PAGE_SIZE.

        Returns:
            OpportunityPage: The page plus the total number of matches.
        """
        filters = filters or OpportunityFilters(limit=settings.OPPORTUNITY_PAGE_SIZE)
        limit = filters.limit if filters.limit and filters.limit > 0 else settings.OPPORTUNITY_PAGE_SIZE
        limit = min(limit, settings.OPPORTUNITY_MAX_PAGE_SIZE)
        offset = max(0, filters.offset)
        page_filters = OpportunityFilters(status=filters.status, limit=limit, offset=offset)

        rows = self._store.list_opportunities(account_id, page_filters)
        total = self._store.count_opportunities(account_id, filters.status)

        opportunities = []
        for opportunity in rows:
            author = self._store.get_author(opportunity.author_id)
            if author is None:
                self._log.warning(f"Author {opportunity.author_id} missing for opportunity {opportunity.id}")
                continue
            opportunities.append(OpportunityWithAuthor(opportunity=opportunity, author=author))

        return OpportunityPage(opportunities=opportunities, total=total, limit=limit, offset=offset)

    def update_status(self, opportunity_id: str, status: Union[str, OpportunityStatus]) -> Opportunity:
        """
        Apply a user or agent driven status change (currently pending -> dismissed).

        Raises:
            NotFoundError: The opportunity does not exist.
            InvalidStateError: The transition is not allowed from the current status.
        """
        status = OpportunityStatus(status)
        opportunity = self._store.get_opportunity(opportunity_id)
        if opportunity is None:
            raise NotFoundError("Opportunity", opportunity_id)

        allowed = _MANUAL_TRANSITIONS.get(opportunity.status, set())
        if status not in allowed:
            raise InvalidStateError(opportunity.status.value, OpportunityStatus.PENDING.value,
                                    action=f"set {status.value} on", entity="opportunity")

        now = self._clock()
        if not self._store.update_opportunity_status(opportunity_id, status, now,
                                                     expected=opportunity.status):
            # Moved on since it was read, usually by the expiration sweep
            current = self._store.get_opportunity(opportunity_id)
            if current is None:
                raise NotFoundError("Opportunity", opportunity_id)
            raise InvalidStateError(current.status.value, opportunity.status.value,
                                    action=f"set {status.value} on", entity="opportunity")
        opportunity.status = status
        opportunity.updated_at = now
        self._log.info(f"Opportunity {opportunity_id} set to {status.value}")
        return opportunity

    def expire_opportunities(self) -> int:
        """
        Mark every pending opportunity past its expiry as expired.

        Safe to run at any time and repeatedly; it only touches pending
        records whose expires_at has passed.

        Returns:
            int: Number of opportunities changed.
        """
        count = self._store.expire_opportunities(self._clock())
        if count:
            self._log.info(f"Expired {count} stale opportunities")
        return count
