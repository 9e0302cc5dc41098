"""
Author Cache Module

Keeps the denormalized author records fresh during discovery. Every sighting
refetches the profile from the content source and upserts it by
(platform, platform_user_id); authors are never deleted here.
"""

from datetime import datetime
from typing import Callable, Optional, Tuple

from data.models import Author, RawAuthor
from data.protocols import EngagementStore
from services.protocols import ContentSource
from utils.helpers import utc_now


class AuthorCache:
    """Fetch-and-upsert wrapper around the authors collection."""

    def __init__(self, store: EngagementStore, source: ContentSource,
                 clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._source = source
        self._clock = clock or utc_now

    def refresh(self, platform_user_id: str) -> Tuple[RawAuthor, Author]:
        """
        Fetch the latest profile and store it.

        Returns:
            Tuple of the raw profile (for scoring) and the stored Author record.
        """
        raw_author = self._source.get_author(platform_user_id)
        stored = self._store.upsert_author(self._source.platform, raw_author, self._clock())
        return raw_author, stored
