"""
Data Layer Protocol Definitions

This module defines the typing.Protocol interface for the logical
document-store operations used by the discovery and response services.
It lets the services run against SQL Server, the in-memory store or a
test double without changes.

Protocols defined:
- EngagementStore: accounts, profiles, authors, opportunities and responses
"""

from datetime import datetime
from typing import List, Optional, Protocol

from data.models import (
    Account, Author, DiscoveryType, Opportunity, OpportunityFilters,
    OpportunityStatus, Profile, RawAuthor, Response
)


class EngagementStore(Protocol):
    """Protocol defining the persistence operations of the pipeline.

    Implementations must enforce two unique indexes:
    - opportunities on (account_id, post_id)
    - responses on (opportunity_id, version)
    and raise DuplicateKeyError when an insert would violate either.
    Authors are unique on (platform, platform_user_id) and only ever upserted.
    """

    # -- accounts and profiles ------------------------------------------------

    def get_account(self, account_id: str) -> Optional[Account]:
        ...

    def list_accounts(self) -> List[Account]:
        ...

    def save_account(self, account: Account) -> None:
        ...

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        ...

    def save_profile(self, profile: Profile) -> None:
        ...

    def record_discovery_success(self, account_id: str, discovery_type: DiscoveryType,
                                 run_at: datetime) -> None:
        """Set the schedule's last run time and clear the stored error."""
        ...

    def record_discovery_error(self, account_id: str, message: str) -> None:
        ...

    # -- authors --------------------------------------------------------------

    def upsert_author(self, platform: str, raw_author: RawAuthor, seen_at: datetime) -> Author:
        """Insert or refresh the cached author and return the stored record."""
        ...

    def get_author(self, author_id: str) -> Optional[Author]:
        ...

    # -- opportunities --------------------------------------------------------

    def find_opportunity_by_post(self, account_id: str, post_id: str) -> Optional[Opportunity]:
        ...

    def insert_opportunity(self, opportunity: Opportunity) -> None:
        ...

    def get_opportunity(self, opportunity_id: str) -> Optional[Opportunity]:
        ...

    def list_opportunities(self, account_id: str, filters: OpportunityFilters) -> List[Opportunity]:
        """Return one page of opportunities ordered by total score, highest first."""
        ...

    def count_opportunities(self, account_id: str,
                            statuses: Optional[List[OpportunityStatus]] = None) -> int:
        ...

    def update_opportunity_status(self, opportunity_id: str, status: OpportunityStatus,
                                  updated_at: datetime,
                                  expected: OpportunityStatus = OpportunityStatus.PENDING) -> bool:
        """Set the status only if it is still `expected`; False if missing or already moved on."""
        ...

    def expire_opportunities(self, now: datetime) -> int:
        """Move every pending opportunity with expires_at < now to expired."""
        ...

    # -- responses ------------------------------------------------------------

    def insert_response(self, response: Response) -> None:
        ...

    def get_response(self, response_id: str) -> Optional[Response]:
        ...

    def list_responses(self, opportunity_id: str) -> List[Response]:
        """Return every version for the opportunity, ascending."""
        ...

    def max_response_version(self, opportunity_id: str) -> int:
        """Return the highest stored version, or 0 if there is none."""
        ...

    def update_response_text(self, response_id: str, text: str, updated_at: datetime) -> bool:
        """Change the text of a draft. Return False if no draft matched."""
        ...

    def dismiss_response(self, response_id: str, dismissed_at: datetime) -> bool:
        """Move a draft to dismissed. Return False if no draft matched."""
        ...

    def mark_response_posted(self, response_id: str, platform_post_id: str,
                             platform_post_url: str, posted_at: datetime) -> bool:
        """Atomically move a draft to posted and its opportunity to responded.

        Returns False (and changes nothing) if the response is no longer a
        draft or another response of the same opportunity is already posted.
        The opportunity only moves to responded while it is still pending; an
        opportunity that was expired or dismissed meanwhile keeps its status.
        """
        ...
