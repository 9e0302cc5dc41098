"""
In-Memory Store

Thread-safe implementation of EngagementStore backed by dictionaries.
Used for dry runs of the CLI and as the store in the test-suite.
"""

import copy
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from data.models import (
    Account, Author, DiscoveryType, Opportunity, OpportunityFilters,
    OpportunityStatus, Profile, RawAuthor, Response, ResponseStatus
)
from utils.exceptions import DuplicateKeyError


class MemoryStore:
    """Dictionary-backed store. Returned objects are copies; mutate via store methods."""

    def __init__(self):
        self._lock = threading.RLock()
        self._accounts: Dict[str, Account] = {}
        self._profiles: Dict[str, Profile] = {}
        self._authors: Dict[str, Author] = {}
        self._author_keys: Dict[Tuple[str, str], str] = {}
        self._opportunities: Dict[str, Opportunity] = {}
        self._opportunity_keys: Dict[Tuple[str, str], str] = {}
        self._responses: Dict[str, Response] = {}
        self._response_keys: Dict[Tuple[str, int], str] = {}

    # -- accounts and profiles ------------------------------------------------

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return copy.deepcopy(self._accounts.get(account_id))

    def list_accounts(self) -> List[Account]:
        with self._lock:
            return [copy.deepcopy(a) for a in self._accounts.values()]

    def save_account(self, account: Account) -> None:
        with self._lock:
            self._accounts[account.id] = copy.deepcopy(account)

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        with self._lock:
            return copy.deepcopy(self._profiles.get(profile_id))

    def save_profile(self, profile: Profile) -> None:
        with self._lock:
            self._profiles[profile.id] = copy.deepcopy(profile)

    def record_discovery_success(self, account_id: str, discovery_type: DiscoveryType,
                                 run_at: datetime) -> None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return
            schedule = account.schedule_for(discovery_type)
            if schedule is None:
                return
            schedule.last_run_at = run_at
            account.last_discovery_at = run_at
            account.discovery_error = None

    def record_discovery_error(self, account_id: str, message: str) -> None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is not None:
                account.discovery_error = message

    # -- authors --------------------------------------------------------------

    def upsert_author(self, platform: str, raw_author: RawAuthor, seen_at: datetime) -> Author:
        with self._lock:
            key = (platform, raw_author.id)
            author_id = self._author_keys.get(key)
            if author_id is None:
                author = Author(platform=platform, platform_user_id=raw_author.id,
                                handle=raw_author.handle)
                self._authors[author.id] = author
                self._author_keys[key] = author.id
            else:
                author = self._authors[author_id]
            author.handle = raw_author.handle
            author.display_name = raw_author.display_name
            author.bio = raw_author.bio
            author.follower_count = raw_author.follower_count
            author.last_updated_at = seen_at
            return copy.deepcopy(author)

    def get_author(self, author_id: str) -> Optional[Author]:
        with self._lock:
            return copy.deepcopy(self._authors.get(author_id))

    # -- opportunities --------------------------------------------------------

    def find_opportunity_by_post(self, account_id: str, post_id: str) -> Optional[Opportunity]:
        with self._lock:
            opportunity_id = self._opportunity_keys.get((account_id, post_id))
            if opportunity_id is None:
                return None
            return copy.deepcopy(self._opportunities[opportunity_id])

    def insert_opportunity(self, opportunity: Opportunity) -> None:
        with self._lock:
            key = (opportunity.account_id, opportunity.post_id)
            if key in self._opportunity_keys:
                raise DuplicateKeyError(
                    f"Opportunity already exists for account {key[0]} and post {key[1]}")
            self._opportunities[opportunity.id] = copy.deepcopy(opportunity)
            self._opportunity_keys[key] = opportunity.id

    def get_opportunity(self, opportunity_id: str) -> Optional[Opportunity]:
        with self._lock:
            return copy.deepcopy(self._opportunities.get(opportunity_id))

    def _matching(self, account_id: str,
                  statuses: Optional[List[OpportunityStatus]]) -> List[Opportunity]:
        return [
            o for o in self._opportunities.values()
            if o.account_id == account_id and (not statuses or o.status in statuses)
        ]

    def list_opportunities(self, account_id: str, filters: OpportunityFilters) -> List[Opportunity]:
        with self._lock:
            rows = sorted(self._matching(account_id, filters.status),
                          key=lambda o: o.scoring.total, reverse=True)
            page = rows[filters.offset:filters.offset + filters.limit]
            return [copy.deepcopy(o) for o in page]

    def count_opportunities(self, account_id: str,
                            statuses: Optional[List[OpportunityStatus]] = None) -> int:
        with self._lock:
            return len(self._matching(account_id, statuses))

    def update_opportunity_status(self, opportunity_id: str, status: OpportunityStatus,
                                  updated_at: datetime,
                                  expected: OpportunityStatus = OpportunityStatus.PENDING) -> bool:
        with self._lock:
            opportunity = self._opportunities.get(opportunity_id)
            if opportunity is None or opportunity.status != expected:
                return False
            opportunity.status = status
            opportunity.updated_at = updated_at
            return True

    def expire_opportunities(self, now: datetime) -> int:
        with self._lock:
            changed = 0
            for opportunity in self._opportunities.values():
                if opportunity.status == OpportunityStatus.PENDING and opportunity.expires_at < now:
                    opportunity.status = OpportunityStatus.EXPIRED
                    opportunity.updated_at = now
                    changed += 1
            return changed

    # -- responses ------------------------------------------------------------

    def insert_response(self, response: Response) -> None:
        with self._lock:
            key = (response.opportunity_id, response.version)
            if key in self._response_keys:
                raise DuplicateKeyError(
                    f"Response version {key[1]} already exists for opportunity {key[0]}")
            self._responses[response.id] = copy.deepcopy(response)
            self._response_keys[key] = response.id

    def get_response(self, response_id: str) -> Optional[Response]:
        with self._lock:
            return copy.deepcopy(self._responses.get(response_id))

    def list_responses(self, opportunity_id: str) -> List[Response]:
        with self._lock:
            rows = [r for r in self._responses.values() if r.opportunity_id == opportunity_id]
            return [copy.deepcopy(r) for r in sorted(rows, key=lambda r: r.version)]

    def max_response_version(self, opportunity_id: str) -> int:
        with self._lock:
            versions = [r.version for r in self._responses.values()
                        if r.opportunity_id == opportunity_id]
            return max(versions) if versions else 0

    def _draft(self, response_id: str) -> Optional[Response]:
        response = self._responses.get(response_id)
        if response is None or response.status != ResponseStatus.DRAFT:
            return None
        return response

    def update_response_text(self, response_id: str, text: str, updated_at: datetime) -> bool:
        with self._lock:
            response = self._draft(response_id)
            if response is None:
                return False
            response.text = text
            response.updated_at = updated_at
            return True

    def dismiss_response(self, response_id: str, dismissed_at: datetime) -> bool:
        with self._lock:
            response = self._draft(response_id)
            if response is None:
                return False
            response.status = ResponseStatus.DISMISSED
            response.dismissed_at = dismissed_at
            response.updated_at = dismissed_at
            return True

    def mark_response_posted(self, response_id: str, platform_post_id: str,
                             platform_post_url: str, posted_at: datetime) -> bool:
        with self._lock:
            response = self._draft(response_id)
            if response is None:
                return False
            already_posted = any(
                r.status == ResponseStatus.POSTED
                for r in self._responses.values()
                if r.opportunity_id == response.opportunity_id
            )
            if already_posted:
                return False

            response.status = ResponseStatus.POSTED
            response.posted_at = posted_at
            response.updated_at = posted_at
            response.platform_post_id = platform_post_id
            response.platform_post_url = platform_post_url

            opportunity = self._opportunities.get(response.opportunity_id)
            if opportunity is not None and opportunity.status == OpportunityStatus.PENDING:
                opportunity.status = OpportunityStatus.RESPONDED
                opportunity.updated_at = posted_at
            return True
