"""
Social Service Module

This module handles social media integration with the AT Protocol (BlueSky).
It implements the ContentSource interface: fetching replies to the
authenticated account, searching posts, looking up authors and posting
replies. AT Protocol failures are translated into the platform errors of
utils.exceptions.
"""

from datetime import datetime
from typing import Callable, Iterable, List, Optional, TypeVar

from atproto import Client, models
from atproto_client.exceptions import AtProtocolError, RequestErrorBase

from config import settings
from data.models import PlatformConstraints, PostResult, RawAuthor, RawPost
from utils.exceptions import (
    AuthenticationError, ContentViolationError, PlatformError, PostNotFoundError,
    PostingError, RateLimitError
)
from utils.helpers import ensure_utc, parse_timestamp, utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# app.bsky.feed.getPosts accepts at most 25 URIs per call
GET_POSTS_BATCH_SIZE = 25

CONTENT_VIOLATION_MARKERS = ("content", "label", "moderation", "blocked", "too long", "grapheme")


def post_web_url(handle: str, post_uri: str) -> str:
    """Convert an AT URI into the bsky.app URL of the post."""
    rkey = post_uri.rstrip('/').split('/')[-1]
    return f"{settings.BLUESKY_WEB_URL}/profile/{handle}/post/{rkey}"


def _retry_after(headers) -> int:
    """Seconds to wait from the rate limit headers, or the default."""
    if not headers:
        return settings.DEFAULT_RATE_LIMIT_RETRY_SECONDS
    lowered = {str(k).lower(): v for k, v in dict(headers).items()}

    retry_after = lowered.get('retry-after')
    if retry_after:
        try:
            return max(1, int(float(retry_after)))
        except ValueError:
            pass

    # ratelimit-reset is an epoch timestamp
    reset = lowered.get('ratelimit-reset')
    if reset:
        try:
            remaining = int(float(reset) - utc_now().timestamp())
            return max(1, remaining)
        except ValueError:
            pass

    return settings.DEFAULT_RATE_LIMIT_RETRY_SECONDS


def translate_error(error: Exception, platform: str = settings.BLUESKY_PLATFORM,
                    post_id: Optional[str] = None) -> PlatformError:
    """
    Map an AT Protocol client error onto the platform error hierarchy.

    Args:
        error: Exception raised by the atproto client
        platform: Platform name to attach to the error
        post_id: Post the request was about, for not-found errors

    Returns:
        PlatformError: The typed error to raise
    """
    if isinstance(error, PlatformError):
        return error

    response = getattr(error, 'response', None) if isinstance(error, RequestErrorBase) else None
    status = getattr(response, 'status_code', None)
    content = getattr(response, 'content', None)
    message = str(getattr(content, 'message', None) or content or error)

    if status == 429:
        return RateLimitError(platform, retry_after=_retry_after(getattr(response, 'headers', None)))
    if status == 401:
        return AuthenticationError(platform, message)
    if status == 404 or 'not found' in message.lower():
        return PostNotFoundError(platform, post_id)
    if status == 400 and any(marker in message.lower() for marker in CONTENT_VIOLATION_MARKERS):
        return ContentViolationError(platform, message)
    return PlatformError(platform, f"AT Protocol request failed ({status or 'no status'}): {message}")


class BlueskySource:
    """ContentSource backed by the AT Protocol (BlueSky)."""

    platform = settings.BLUESKY_PLATFORM

    def __init__(self, username: Optional[str] = None, password: Optional[str] = None,
                 client: Optional[Client] = None):
        """
        Initialize the source with an AT Protocol client.

        Login happens on first use so constructing the source never touches the network.
        """
        self.username = username or settings.AT_PROTOCOL_USERNAME
        self.password = password or settings.AT_PROTOCOL_PASSWORD
        self.at_client = client or Client()
        self._did: Optional[str] = None
        self._handle: Optional[str] = None

    def _setup_at_protocol(self) -> None:
        """
        Set up AT Protocol authentication.

        Raises:
            AuthenticationError: Credentials missing or rejected.
        """
        if self._did:
            return

        if not self.username or not self.password:
            raise AuthenticationError(self.platform, "Missing AT Protocol credentials")

        try:
            profile = self.at_client.login(self.username, self.password)
        except AtProtocolError as e:
            error = translate_error(e, self.platform)
            if isinstance(error, RateLimitError):
                raise error from e
            raise AuthenticationError(self.platform, str(error)) from e

        self._did = profile.did
        self._handle = profile.handle
        logger.info(f"Successfully logged in to AT Protocol as {self._handle}")

    def _call(self, func: Callable[[], T], post_id: Optional[str] = None) -> T:
        self._setup_at_protocol()
        try:
            return func()
        except AtProtocolError as e:
            raise translate_error(e, self.platform, post_id) from e

    # =========================================================================
    # Fetching
    # =========================================================================

    def fetch_replies(self, since: Optional[datetime] = None, limit: int = 100) -> List[RawPost]:
        """
        Fetch replies to the authenticated account's posts.

        Reply notifications are paged newest first until one is older than
        ``since`` or ``limit`` replies were collected, then hydrated with
        get_posts for engagement counts.

        Args:
            since: Only return replies created after this time
            limit: Maximum number of replies

        Returns:
            List[RawPost]: Replies, newest first
        """
        since = ensure_utc(since) if since else None
        reply_uris: List[str] = []
        cursor = None

        while len(reply_uris) < limit:
            params = {'limit': settings.BLUESKY_NOTIFICATION_PAGE_SIZE}
            if cursor:
                params['cursor'] = cursor
            page = self._call(lambda: self.at_client.app.bsky.notification.list_notifications(params=params))

            reached_since = False
            for notification in page.notifications:
                indexed_at = parse_timestamp(getattr(notification, 'indexed_at', None))
                if since and indexed_at and indexed_at <= since:
                    reached_since = True
                    break
                if notification.reason != 'reply':
                    continue
                if notification.author and notification.author.did == self._did:
                    continue
                reply_uris.append(notification.uri)
                if len(reply_uris) >= limit:
                    break

            cursor = getattr(page, 'cursor', None)
            if reached_since or not cursor or not page.notifications:
                break

        posts = self._hydrate(reply_uris)
        if since:
            posts = [p for p in posts if p.created_at > since]
        logger.info(f"Fetched {len(posts)} replies from AT Protocol")
        return posts

    def search_posts(self, keywords: List[str], since: Optional[datetime] = None,
                     limit: int = 50) -> List[RawPost]:
        """
        Search for recent posts matching any of the keywords.

        Args:
            keywords: Search terms, combined with OR
            since: Only return posts created after this time
            limit: Maximum number of posts (the search API caps at 100)

        Returns:
            List[RawPost]: Matching posts, newest first
        """
        terms = [k.strip() for k in keywords if k and k.strip()]
        if not terms:
            return []

        query = " OR ".join(f'"{t}"' if ' ' in t else t for t in terms)
        params = {'q': query, 'limit': min(limit, 100), 'sort': 'latest'}
        if since:
            params['since'] = ensure_utc(since).strftime('%Y-%m-%dT%H:%M:%S.000Z')

        result = self._call(lambda: self.at_client.app.bsky.feed.search_posts(params=params))

        posts = []
        for post_view in result.posts:
            post = self._to_raw_post(post_view)
            if post is None or post.author_id == self._did:
                continue
            if since and post.created_at <= ensure_utc(since):
                continue
            posts.append(post)

        logger.info(f"Search '{query}' returned {len(posts)} posts")
        return posts[:limit]

    def get_author(self, platform_user_id: str) -> RawAuthor:
        """
        Get author details by DID or handle.

        Raises:
            PostNotFoundError: The profile does not exist.
        """
        profile = self._call(lambda: self.at_client.get_profile(platform_user_id))
        return RawAuthor(
            id=profile.did,
            handle=profile.handle,
            display_name=profile.display_name or "",
            follower_count=profile.followers_count or 0,
            bio=profile.description
        )

    def get_constraints(self) -> PlatformConstraints:
        return PlatformConstraints(max_length=settings.BLUESKY_MAX_POST_LENGTH)

    def _hydrate(self, uris: Iterable[str]) -> List[RawPost]:
        uris = list(uris)
        posts = []
        for start in range(0, len(uris), GET_POSTS_BATCH_SIZE):
            batch = uris[start:start + GET_POSTS_BATCH_SIZE]
            response = self._call(lambda: self.at_client.get_posts(uris=batch))
            for post_view in response.posts:
                post = self._to_raw_post(post_view)
                if post is not None:
                    posts.append(post)
        posts.sort(key=lambda p: p.created_at, reverse=True)
        return posts

    def _to_raw_post(self, post_view) -> Optional[RawPost]:
        """Convert an app.bsky.feed.defs#postView; None if it carries no text record."""
        record = getattr(post_view, 'record', None)
        text = getattr(record, 'text', None)
        if text is None:
            return None

        created_at = (parse_timestamp(getattr(record, 'created_at', None))
                      or parse_timestamp(getattr(post_view, 'indexed_at', None)))
        if created_at is None:
            logger.warning(f"No timestamp found for post {post_view.uri}, using current time")
            created_at = utc_now()

        return RawPost(
            id=post_view.uri,
            url=post_web_url(post_view.author.handle, post_view.uri),
            text=text,
            created_at=created_at,
            author_id=post_view.author.did,
            likes=post_view.like_count or 0,
            reposts=post_view.repost_count or 0,
            replies=post_view.reply_count or 0
        )

    # =========================================================================
    # Posting
    # =========================================================================

    def post(self, parent_post_id: str, text: str) -> PostResult:
        """
        Publish a reply to the given post.

        Args:
            parent_post_id: AT URI of the post being answered
            text: Reply text

        Returns:
            PostResult: URI, web URL and time of the new post

        Raises:
            PostNotFoundError: The parent post was deleted.
            RateLimitError, AuthenticationError, ContentViolationError, PostingError
        """
        parents = self._call(lambda: self.at_client.get_posts(uris=[parent_post_id]),
                             post_id=parent_post_id)
        if not parents.posts:
            raise PostNotFoundError(self.platform, parent_post_id)
        parent = parents.posts[0]

        parent_ref = models.create_strong_ref(parent)
        parent_reply = getattr(parent.record, 'reply', None)
        root_ref = parent_reply.root if parent_reply else parent_ref
        reply_to = models.AppBskyFeedPost.ReplyRef(parent=parent_ref, root=root_ref)

        self._setup_at_protocol()
        try:
            created = self.at_client.send_post(text=text, reply_to=reply_to)
        except AtProtocolError as e:
            error = translate_error(e, self.platform, parent_post_id)
            if type(error) is PlatformError:
                raise PostingError(self.platform, str(error)) from e
            raise error from e

        posted_at = utc_now()
        logger.info(f"Successfully posted reply to {parent_post_id}")
        return PostResult(
            post_id=created.uri,
            post_url=post_web_url(self._handle or self.username, created.uri),
            posted_at=posted_at
        )
