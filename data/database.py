"""
Database Module for the Engagement Pipeline

This module handles the SQL Server connection and implements the
EngagementStore operations with parameterized T-SQL through pyodbc.
Timestamps are stored as UTC in DATETIME2 columns.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pyodbc

from config import settings
from data.models import (
    Account, AccountStatus, Author, DiscoveryConfig, DiscoverySchedule, DiscoveryType,
    Opportunity, OpportunityFilters, OpportunityScore, OpportunityStatus, Profile,
    RawAuthor, Response, ResponseMetadata, ResponseStatus, VoiceConfig
)
from utils.exceptions import ConnectionError, DuplicateKeyError, QueryError
from utils.helpers import ensure_utc
from utils.logger import get_logger, sanitize_error

logger = get_logger(__name__)


SCHEMA_STATEMENTS = [
    """
    IF OBJECT_ID('dbo.profiles', 'U') IS NULL
    CREATE TABLE dbo.profiles (
        id NVARCHAR(64) NOT NULL PRIMARY KEY,
        name NVARCHAR(200) NOT NULL,
        principles NVARCHAR(MAX) NULL,
        voice_tone NVARCHAR(200) NULL,
        voice_style NVARCHAR(MAX) NULL,
        voice_examples NVARCHAR(MAX) NULL,
        interests NVARCHAR(MAX) NULL,
        keywords NVARCHAR(MAX) NULL,
        communities NVARCHAR(MAX) NULL,
        is_active BIT NOT NULL DEFAULT 1
    )
    """,
    """
    IF OBJECT_ID('dbo.accounts', 'U') IS NULL
    CREATE TABLE dbo.accounts (
        id NVARCHAR(64) NOT NULL PRIMARY KEY,
        profile_id NVARCHAR(64) NOT NULL,
        platform NVARCHAR(32) NOT NULL,
        handle NVARCHAR(256) NOT NULL,
        status NVARCHAR(16) NOT NULL,
        last_discovery_at DATETIME2 NULL,
        discovery_error NVARCHAR(MAX) NULL
    )
    """,
    """
    IF OBJECT_ID('dbo.discovery_schedules', 'U') IS NULL
    CREATE TABLE dbo.discovery_schedules (
        account_id NVARCHAR(64) NOT NULL,
        discovery_type NVARCHAR(16) NOT NULL,
        enabled BIT NOT NULL,
        interval_minutes INT NOT NULL,
        last_run_at DATETIME2 NULL,
        CONSTRAINT pk_discovery_schedules PRIMARY KEY (account_id, discovery_type)
    )
    """,
    """
    IF OBJECT_ID('dbo.authors', 'U') IS NULL
    CREATE TABLE dbo.authors (
        id NVARCHAR(64) NOT NULL PRIMARY KEY,
        platform NVARCHAR(32) NOT NULL,
        platform_user_id NVARCHAR(256) NOT NULL,
        handle NVARCHAR(256) NOT NULL,
        display_name NVARCHAR(256) NULL,
        bio NVARCHAR(MAX) NULL,
        follower_count INT NOT NULL DEFAULT 0,
        last_updated_at DATETIME2 NULL,
        CONSTRAINT uq_authors_platform_user UNIQUE (platform, platform_user_id)
    )
    """,
    """
    IF OBJECT_ID('dbo.opportunities', 'U') IS NULL
    CREATE TABLE dbo.opportunities (
        id NVARCHAR(64) NOT NULL PRIMARY KEY,
        account_id NVARCHAR(64) NOT NULL,
        platform NVARCHAR(32) NOT NULL,
        post_id NVARCHAR(450) NOT NULL,
        post_url NVARCHAR(1024) NOT NULL,
        text NVARCHAR(MAX) NOT NULL,
        post_created_at DATETIME2 NOT NULL,
        author_id NVARCHAR(64) NOT NULL,
        likes INT NOT NULL DEFAULT 0,
        reposts INT NOT NULL DEFAULT 0,
        replies INT NOT NULL DEFAULT 0,
        score_recency FLOAT NOT NULL,
        score_impact FLOAT NOT NULL,
        score_total FLOAT NOT NULL,
        discovery_type NVARCHAR(16) NOT NULL,
        status NVARCHAR(16) NOT NULL,
        discovered_at DATETIME2 NOT NULL,
        expires_at DATETIME2 NOT NULL,
        updated_at DATETIME2 NULL,
        CONSTRAINT uq_opportunities_account_post UNIQUE (account_id, post_id)
    )
    """,
    """
    IF NOT EXISTS (SELECT 1 FROM sys.indexes WHERE name = 'ix_opportunities_status_expires')
    CREATE INDEX ix_opportunities_status_expires ON dbo.opportunities (status, expires_at)
    """,
    """
    IF OBJECT_ID('dbo.responses', 'U') IS NULL
    CREATE TABLE dbo.responses (
        id NVARCHAR(64) NOT NULL PRIMARY KEY,
        opportunity_id NVARCHAR(64) NOT NULL,
        account_id NVARCHAR(64) NOT NULL,
        text NVARCHAR(MAX) NOT NULL,
        status NVARCHAR(16) NOT NULL,
        version INT NOT NULL,
        metadata NVARCHAR(MAX) NOT NULL,
        generated_at DATETIME2 NOT NULL,
        updated_at DATETIME2 NULL,
        dismissed_at DATETIME2 NULL,
        posted_at DATETIME2 NULL,
        platform_post_id NVARCHAR(450) NULL,
        platform_post_url NVARCHAR(1024) NULL,
        CONSTRAINT uq_responses_opportunity_version UNIQUE (opportunity_id, version)
    )
    """,
]


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _json_list(value: Optional[str]) -> List[str]:
    return json.loads(value) if value else []


class DatabaseConnection:
    """SQL Server implementation of the EngagementStore protocol."""

    def __init__(self, connection_string: Optional[str] = None):
        """Initialize the database connection."""
        self.connection_string = connection_string or settings.DB_CONNECTION_STRING
        self.conn = None
        pyodbc.pooling = False

    def connect(self) -> bool:
        """
        Establish a connection to the database.

        Returns:
            bool: True if connection was successful.

        Raises:
            ConnectionError: If the connection cannot be opened.
        """
        try:
            self.conn = pyodbc.connect(self.connection_string, autocommit=False)
            self.conn.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            logger.info("Successfully connected to database")
            return True
        except pyodbc.Error as e:
            self.conn = None
            logger.error(f"Failed to connect to database: {sanitize_error(e)}")
            raise ConnectionError(f"Failed to connect to database: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        try:
            if self.conn:
                self.conn.close()
                logger.info("Database connection closed")
        except pyodbc.Error as e:
            logger.error(f"Error closing database connection: {e}")
        finally:
            self.conn = None

    def _cursor(self):
        if not self.conn:
            self.connect()
        return self.conn.cursor()

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except pyodbc.Error:
            logger.warning("Rollback failed")

    def _execute(self, query: str, params: tuple = (), commit: bool = True) -> int:
        """Run a statement and return the affected row count."""
        cursor = self._cursor()
        try:
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)
            rowcount = cursor.rowcount
            if commit:
                self.conn.commit()
            return rowcount
        except pyodbc.IntegrityError as e:
            self._rollback()
            raise DuplicateKeyError(str(e)) from e
        except pyodbc.Error as e:
            self._rollback()
            logger.error(f"Error executing query: {e}")
            raise QueryError(str(e)) from e

    def _fetch_all(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        cursor = self._cursor()
        try:
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except pyodbc.Error as e:
            logger.error(f"Error executing query: {e}")
            raise QueryError(str(e)) from e

    def _fetch_one(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None

    def create_schema(self) -> None:
        """Create tables and unique indexes if they do not exist."""
        for statement in SCHEMA_STATEMENTS:
            self._execute(statement, commit=False)
        self.conn.commit()
        logger.info("Database schema verified")

    # -- row mapping ----------------------------------------------------------

    @staticmethod
    def _row_to_opportunity(row: Dict[str, Any]) -> Opportunity:
        return Opportunity(
            id=row['id'],
            account_id=row['account_id'],
            platform=row['platform'],
            post_id=row['post_id'],
            post_url=row['post_url'],
            text=row['text'],
            post_created_at=_from_db(row['post_created_at']),
            author_id=row['author_id'],
            likes=row['likes'],
            reposts=row['reposts'],
            replies=row['replies'],
            scoring=OpportunityScore(
                recency=row['score_recency'],
                impact=row['score_impact'],
                total=row['score_total']
            ),
            discovery_type=DiscoveryType(row['discovery_type']),
            status=OpportunityStatus(row['status']),
            discovered_at=_from_db(row['discovered_at']),
            expires_at=_from_db(row['expires_at']),
            updated_at=_from_db(row['updated_at'])
        )

    @staticmethod
    def _row_to_response(row: Dict[str, Any]) -> Response:
        return Response(
            id=row['id'],
            opportunity_id=row['opportunity_id'],
            account_id=row['account_id'],
            text=row['text'],
            status=ResponseStatus(row['status']),
            version=row['version'],
            metadata=ResponseMetadata(**json.loads(row['metadata'])),
            generated_at=_from_db(row['generated_at']),
            updated_at=_from_db(row['updated_at']),
            dismissed_at=_from_db(row['dismissed_at']),
            posted_at=_from_db(row['posted_at']),
            platform_post_id=row['platform_post_id'],
            platform_post_url=row['platform_post_url']
        )

    @staticmethod
    def _row_to_author(row: Dict[str, Any]) -> Author:
        return Author(
            id=row['id'],
            platform=row['platform'],
            platform_user_id=row['platform_user_id'],
            handle=row['handle'],
            display_name=row['display_name'] or "",
            bio=row['bio'],
            follower_count=row['follower_count'],
            last_updated_at=_from_db(row['last_updated_at'])
        )

    # -- accounts and profiles ------------------------------------------------

    def _load_schedules(self, account_id: str) -> List[DiscoverySchedule]:
        rows = self._fetch_all(
            "SELECT discovery_type, enabled, interval_minutes, last_run_at "
            "FROM dbo.discovery_schedules WHERE account_id = ? ORDER BY discovery_type",
            (account_id,)
        )
        return [
            DiscoverySchedule(
                type=DiscoveryType(row['discovery_type']),
                enabled=bool(row['enabled']),
                interval_minutes=row['interval_minutes'],
                last_run_at=_from_db(row['last_run_at'])
            )
            for row in rows
        ]

    def _row_to_account(self, row: Dict[str, Any]) -> Account:
        return Account(
            id=row['id'],
            profile_id=row['profile_id'],
            platform=row['platform'],
            handle=row['handle'],
            status=AccountStatus(row['status']),
            last_discovery_at=_from_db(row['last_discovery_at']),
            discovery_error=row['discovery_error'],
            schedules=self._load_schedules(row['id'])
        )

    def get_account(self, account_id: str) -> Optional[Account]:
        row = self._fetch_one("SELECT * FROM dbo.accounts WHERE id = ?", (account_id,))
        return self._row_to_account(row) if row else None

    def list_accounts(self) -> List[Account]:
        rows = self._fetch_all("SELECT * FROM dbo.accounts ORDER BY handle")
        return [self._row_to_account(row) for row in rows]

    def save_account(self, account: Account) -> None:
        self._execute(
            """
            MERGE dbo.accounts AS target
            USING (SELECT ? AS id) AS source ON target.id = source.id
            WHEN MATCHED THEN UPDATE SET
                profile_id = ?, platform = ?, handle = ?, status = ?,
                last_discovery_at = ?, discovery_error = ?
            WHEN NOT MATCHED THEN INSERT
                (id, profile_id, platform, handle, status, last_discovery_at, discovery_error)
                VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (account.id,
             account.profile_id, account.platform, account.handle, account.status.value,
             _to_db(account.last_discovery_at), account.discovery_error,
             account.id, account.profile_id, account.platform, account.handle,
             account.status.value, _to_db(account.last_discovery_at), account.discovery_error),
            commit=False
        )
        self._execute("DELETE FROM dbo.discovery_schedules WHERE account_id = ?",
                      (account.id,), commit=False)
        for schedule in account.schedules:
            self._execute(
                "INSERT INTO dbo.discovery_schedules "
                "(account_id, discovery_type, enabled, interval_minutes, last_run_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (account.id, schedule.type.value, int(schedule.enabled),
                 schedule.interval_minutes, _to_db(schedule.last_run_at)),
                commit=False
            )
        self.conn.commit()

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        row = self._fetch_one("SELECT * FROM dbo.profiles WHERE id = ?", (profile_id,))
        if not row:
            return None
        return Profile(
            id=row['id'],
            name=row['name'],
            principles=row['principles'] or "",
            voice=VoiceConfig(
                tone=row['voice_tone'] or "",
                style=row['voice_style'] or "",
                examples=_json_list(row['voice_examples'])
            ),
            discovery=DiscoveryConfig(
                interests=_json_list(row['interests']),
                keywords=_json_list(row['keywords']),
                communities=_json_list(row['communities'])
            ),
            is_active=bool(row['is_active'])
        )

    def save_profile(self, profile: Profile) -> None:
        values = (
            profile.name, profile.principles, profile.voice.tone, profile.voice.style,
            json.dumps(profile.voice.examples), json.dumps(profile.discovery.interests),
            json.dumps(profile.discovery.keywords), json.dumps(profile.discovery.communities),
            int(profile.is_active)
        )
        self._execute(
            """
            MERGE dbo.profiles AS target
            USING (SELECT ? AS id) AS source ON target.id = source.id
            WHEN MATCHED THEN UPDATE SET
                name = ?, principles = ?, voice_tone = ?, voice_style = ?, voice_examples = ?,
                interests = ?, keywords = ?, communities = ?, is_active = ?
            WHEN NOT MATCHED THEN INSERT
                (id, name, principles, voice_tone, voice_style, voice_examples,
                 interests, keywords, communities, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (profile.id,) + values + (profile.id,) + values
        )

    def record_discovery_success(self, account_id: str, discovery_type: DiscoveryType,
                                 run_at: datetime) -> None:
        self._execute(
            "UPDATE dbo.discovery_schedules SET last_run_at = ? "
            "WHERE account_id = ? AND discovery_type = ?",
            (_to_db(run_at), account_id, discovery_type.value),
            commit=False
        )
        self._execute(
            "UPDATE dbo.accounts SET last_discovery_at = ?, discovery_error = NULL WHERE id = ?",
            (_to_db(run_at), account_id),
            commit=False
        )
        self.conn.commit()

    def record_discovery_error(self, account_id: str, message: str) -> None:
        self._execute("UPDATE dbo.accounts SET discovery_error = ? WHERE id = ?",
                      (message, account_id))

    # -- authors --------------------------------------------------------------

    def upsert_author(self, platform: str, raw_author: RawAuthor, seen_at: datetime) -> Author:
        new_author = Author(platform=platform, platform_user_id=raw_author.id,
                            handle=raw_author.handle)
        self._execute(
            """
            MERGE dbo.authors WITH (HOLDLOCK) AS target
            USING (SELECT ? AS platform, ? AS platform_user_id) AS source
                ON target.platform = source.platform
                AND target.platform_user_id = source.platform_user_id
            WHEN MATCHED THEN UPDATE SET
                handle = ?, display_name = ?, bio = ?, follower_count = ?, last_updated_at = ?
            WHEN NOT MATCHED THEN INSERT
                (id, platform, platform_user_id, handle, display_name, bio,
                 follower_count, last_updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (platform, raw_author.id,
             raw_author.handle, raw_author.display_name, raw_author.bio,
             raw_author.follower_count, _to_db(seen_at),
             new_author.id, platform, raw_author.id, raw_author.handle,
             raw_author.display_name, raw_author.bio, raw_author.follower_count, _to_db(seen_at))
        )
        row = self._fetch_one(
            "SELECT * FROM dbo.authors WHERE platform = ? AND platform_user_id = ?",
            (platform, raw_author.id)
        )
        if not row:
            raise QueryError(f"Failed to upsert author: {raw_author.id}")
        return self._row_to_author(row)

    def get_author(self, author_id: str) -> Optional[Author]:
        row = self._fetch_one("SELECT * FROM dbo.authors WHERE id = ?", (author_id,))
        return self._row_to_author(row) if row else None

    # -- opportunities --------------------------------------------------------

    def find_opportunity_by_post(self, account_id: str, post_id: str) -> Optional[Opportunity]:
        row = self._fetch_one(
            "SELECT * FROM dbo.opportunities WHERE account_id = ? AND post_id = ?",
            (account_id, post_id)
        )
        return self._row_to_opportunity(row) if row else None

    def insert_opportunity(self, opportunity: Opportunity) -> None:
        o = opportunity
        self._execute(
            """
            INSERT INTO dbo.opportunities
                (id, account_id, platform, post_id, post_url, text, post_created_at, author_id,
                 likes, reposts, replies, score_recency, score_impact, score_total,
                 discovery_type, status, discovered_at, expires_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (o.id, o.account_id, o.platform, o.post_id, o.post_url, o.text,
             _to_db(o.post_created_at), o.author_id, o.likes, o.reposts, o.replies,
             o.scoring.recency, o.scoring.impact, o.scoring.total,
             o.discovery_type.value, o.status.value, _to_db(o.discovered_at),
             _to_db(o.expires_at), _to_db(o.updated_at))
        )

    def get_opportunity(self, opportunity_id: str) -> Optional[Opportunity]:
        row = self._fetch_one("SELECT * FROM dbo.opportunities WHERE id = ?", (opportunity_id,))
        return self._row_to_opportunity(row) if row else None

    @staticmethod
    def _status_clause(statuses: Optional[List[OpportunityStatus]]):
        if not statuses:
            return "", ()
        placeholders = ", ".join("?" for _ in statuses)
        return f" AND status IN ({placeholders})", tuple(s.value for s in statuses)

    def list_opportunities(self, account_id: str, filters: OpportunityFilters) -> List[Opportunity]:
        clause, params = self._status_clause(filters.status)
        rows = self._fetch_all(
            f"SELECT * FROM dbo.opportunities WHERE account_id = ?{clause} "
            "ORDER BY score_total DESC, discovered_at DESC "
            "OFFSET ? ROWS FETCH NEXT ? ROWS ONLY",
            (account_id,) + params + (filters.offset, filters.limit)
        )
        return [self._row_to_opportunity(row) for row in rows]

    def count_opportunities(self, account_id: str,
                            statuses: Optional[List[OpportunityStatus]] = None) -> int:
        clause, params = self._status_clause(statuses)
        row = self._fetch_one(
            f"SELECT COUNT(*) AS total FROM dbo.opportunities WHERE account_id = ?{clause}",
            (account_id,) + params
        )
        return row['total'] if row else 0

    def update_opportunity_status(self, opportunity_id: str, status: OpportunityStatus,
                                  updated_at: datetime,
                                  expected: OpportunityStatus = OpportunityStatus.PENDING) -> bool:
        rowcount = self._execute(
            "UPDATE dbo.opportunities SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (status.value, _to_db(updated_at), opportunity_id, expected.value)
        )
        return rowcount > 0

    def expire_opportunities(self, now: datetime) -> int:
        return self._execute(
            "UPDATE dbo.opportunities SET status = ?, updated_at = ? "
            "WHERE status = ? AND expires_at < ?",
            (OpportunityStatus.EXPIRED.value, _to_db(now),
             OpportunityStatus.PENDING.value, _to_db(now))
        )

    # -- responses ------------------------------------------------------------

    def insert_response(self, response: Response) -> None:
        r = response
        self._execute(
            """
            INSERT INTO dbo.responses
                (id, opportunity_id, account_id, text, status, version, metadata,
                 generated_at, updated_at, dismissed_at, posted_at,
                 platform_post_id, platform_post_url)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (r.id, r.opportunity_id, r.account_id, r.text, r.status.value, r.version,
             json.dumps(r.metadata.__dict__), _to_db(r.generated_at), _to_db(r.updated_at),
             _to_db(r.dismissed_at), _to_db(r.posted_at), r.platform_post_id, r.platform_post_url)
        )

    def get_response(self, response_id: str) -> Optional[Response]:
        row = self._fetch_one("SELECT * FROM dbo.responses WHERE id = ?", (response_id,))
        return self._row_to_response(row) if row else None

    def list_responses(self, opportunity_id: str) -> List[Response]:
        rows = self._fetch_all(
            "SELECT * FROM dbo.responses WHERE opportunity_id = ? ORDER BY version",
            (opportunity_id,)
        )
        return [self._row_to_response(row) for row in rows]

    def max_response_version(self, opportunity_id: str) -> int:
        row = self._fetch_one(
            "SELECT MAX(version) AS max_version FROM dbo.responses WHERE opportunity_id = ?",
            (opportunity_id,)
        )
        return (row or {}).get('max_version') or 0

    def update_response_text(self, response_id: str, text: str, updated_at: datetime) -> bool:
        rowcount = self._execute(
            "UPDATE dbo.responses SET text = ?, updated_at = ? WHERE id = ? AND status = ?",
            (text, _to_db(updated_at), response_id, ResponseStatus.DRAFT.value)
        )
        return rowcount > 0

    def dismiss_response(self, response_id: str, dismissed_at: datetime) -> bool:
        rowcount = self._execute(
            "UPDATE dbo.responses SET status = ?, dismissed_at = ?, updated_at = ? "
            "WHERE id = ? AND status = ?",
            (ResponseStatus.DISMISSED.value, _to_db(dismissed_at), _to_db(dismissed_at),
             response_id, ResponseStatus.DRAFT.value)
        )
        return rowcount > 0

    def mark_response_posted(self, response_id: str, platform_post_id: str,
                             platform_post_url: str, posted_at: datetime) -> bool:
        posted = _to_db(posted_at)
        rowcount = self._execute(
            """
            UPDATE r SET status = ?, posted_at = ?, updated_at = ?,
                platform_post_id = ?, platform_post_url = ?
            FROM dbo.responses AS r WITH (UPDLOCK, HOLDLOCK)
            WHERE r.id = ? AND r.status = ?
            AND NOT EXISTS (
                SELECT 1 FROM dbo.responses AS other
                WHERE other.opportunity_id = r.opportunity_id AND other.status = ?
            )
            """,
            (ResponseStatus.POSTED.value, posted, posted, platform_post_id, platform_post_url,
             response_id, ResponseStatus.DRAFT.value, ResponseStatus.POSTED.value),
            commit=False
        )
        if rowcount == 0:
            self._rollback()
            return False

        self._execute(
            """
            UPDATE dbo.opportunities SET status = ?, updated_at = ?
            WHERE id = (SELECT opportunity_id FROM dbo.responses WHERE id = ?) AND status = ?
            """,
            (OpportunityStatus.RESPONDED.value, posted, response_id, OpportunityStatus.PENDING.value),
            commit=False
        )
        self.conn.commit()
        logger.info(f"Response {response_id} marked as posted")
        return True
