"""
Tests for DatabaseConnection Class

Tests for the SQL Server store including connection management, query execution,
row mapping and the atomic posting update.
"""

import pytest
import pyodbc
from datetime import datetime, timezone
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.database import DatabaseConnection
from data.models import OpportunityFilters, OpportunityStatus, RawAuthor
from utils.exceptions import DuplicateKeyError, QueryError
from utils.exceptions import ConnectionError as DatabaseConnectionError


CONNECTION_STRING = "DRIVER={Test};SERVER=localhost;DATABASE=engagement;UID=sa;PWD=secret"


@pytest.fixture
def db(mock_db_connection):
    database = DatabaseConnection(CONNECTION_STRING)
    database.connect()
    return database


class TestConnectionManagement:
    """Tests for database connection management."""

    def test_connect_success(self, mock_db_connection):
        mock_connect, mock_connection, _ = mock_db_connection

        database = DatabaseConnection(CONNECTION_STRING)

        assert database.connect() is True
        assert database.conn is mock_connection
        mock_connect.assert_called_once_with(CONNECTION_STRING, autocommit=False)

    def test_connect_failure_raises_connection_error(self, mock_db_connection):
        mock_connect, _, _ = mock_db_connection
        mock_connect.side_effect = pyodbc.Error("08001", "Login failed")

        database = DatabaseConnection(CONNECTION_STRING)

        with pytest.raises(DatabaseConnectionError):
            database.connect()
        assert database.conn is None

    def test_close(self, db, mock_db_connection):
        _, mock_connection, _ = mock_db_connection

        db.close()

        mock_connection.close.assert_called_once()
        assert db.conn is None

    def test_cursor_reconnects_when_closed(self, db, mock_db_connection):
        mock_connect, _, _ = mock_db_connection
        db.close()

        db.expire_opportunities(datetime(2024, 1, 15, tzinfo=timezone.utc))

        assert mock_connect.call_count == 2


class TestQueryExecution:
    """Tests for the statement helpers."""

    def test_execute_commits_and_returns_rowcount(self, db, mock_db_connection):
        _, mock_connection, mock_cursor = mock_db_connection
        mock_cursor.rowcount = 3

        assert db._execute("UPDATE t SET a = ?", (1,)) == 3
        mock_cursor.execute.assert_called_once_with("UPDATE t SET a = ?", (1,))
        mock_connection.commit.assert_called_once()

    def test_execute_without_params(self, db, mock_db_connection):
        _, _, mock_cursor = mock_db_connection

        db._execute("SELECT 1", commit=False)

        mock_cursor.execute.assert_called_once_with("SELECT 1")

    def test_integrity_error_becomes_duplicate_key(self, db, mock_db_connection):
        _, mock_connection, mock_cursor = mock_db_connection
        mock_cursor.execute.side_effect = pyodbc.IntegrityError("23000", "duplicate key")

        with pytest.raises(DuplicateKeyError):
            db._execute("INSERT INTO t VALUES (?)", (1,))
        mock_connection.rollback.assert_called_once()
        mock_connection.commit.assert_not_called()

    def test_other_errors_become_query_errors(self, db, mock_db_connection):
        _, mock_connection, mock_cursor = mock_db_connection
        mock_cursor.execute.side_effect = pyodbc.ProgrammingError("42000", "syntax")

        with pytest.raises(QueryError):
            db._execute("UPDATE", (1,))
        mock_connection.rollback.assert_called_once()

    def test_fetch_all_maps_columns(self, db, mock_db_connection):
        _, _, mock_cursor = mock_db_connection
        mock_cursor.description = [("id",), ("handle",)]
        mock_cursor.fetchall.return_value = [("a1", "alice"), ("b2", "bob")]

        rows = db._fetch_all("SELECT id, handle FROM dbo.authors")

        assert rows == [{"id": "a1", "handle": "alice"}, {"id": "b2", "handle": "bob"}]

    def test_create_schema_commits_once(self, db, mock_db_connection):
        _, mock_connection, mock_cursor = mock_db_connection

        db.create_schema()

        assert mock_cursor.execute.call_count > 0
        mock_connection.commit.assert_called_once()


class TestStoreOperations:
    """Tests for store methods that build on the helpers."""

    def test_expire_returns_affected_rows(self, db, mock_db_connection):
        _, _, mock_cursor = mock_db_connection
        mock_cursor.rowcount = 4

        now = datetime(2024, 1, 15, 12, tzinfo=timezone.utc)
        assert db.expire_opportunities(now) == 4

        query, params = mock_cursor.execute.call_args[0]
        assert "expires_at < ?" in query
        assert params == ("expired", datetime(2024, 1, 15, 12), "pending", datetime(2024, 1, 15, 12))

    def test_status_update_is_guarded_by_expected_status(self, db, mock_db_connection):
        _, _, mock_cursor = mock_db_connection
        mock_cursor.rowcount = 0

        updated = db.update_opportunity_status("o1", OpportunityStatus.DISMISSED,
                                               datetime(2024, 1, 15, 12, tzinfo=timezone.utc))

        assert updated is False
        query, params = mock_cursor.execute.call_args[0]
        assert query.endswith("WHERE id = ? AND status = ?")
        assert params == ("dismissed", datetime(2024, 1, 15, 12), "o1", "pending")

    def test_max_response_version(self, db, mock_db_connection):
        _, _, mock_cursor = mock_db_connection
        mock_cursor.description = [("max_version",)]

        mock_cursor.fetchall.return_value = [(None,)]
        assert db.max_response_version("o1") == 0

        mock_cursor.fetchall.return_value = [(3,)]
        assert db.max_response_version("o1") == 3

    def test_list_opportunities_pages_and_filters(self, db, mock_db_connection):
        _, _, mock_cursor = mock_db_connection
        mock_cursor.description = [("id",)]
        mock_cursor.fetchall.return_value = []

        filters = OpportunityFilters(status=[OpportunityStatus.PENDING], limit=10, offset=20)
        assert db.list_opportunities("acct", filters) == []

        query, params = mock_cursor.execute.call_args[0]
        assert "ORDER BY score_total DESC" in query
        assert "status IN (?)" in query
        assert params == ("acct", "pending", 20, 10)

    def test_upsert_author_maps_stored_row(self, db, mock_db_connection):
        _, _, mock_cursor = mock_db_connection
        seen = datetime(2024, 1, 15, 12)
        mock_cursor.description = [(c,) for c in (
            "id", "platform", "platform_user_id", "handle", "display_name", "bio",
            "follower_count", "last_updated_at")]
        mock_cursor.fetchall.return_value = [
            ("auth-1", "bluesky", "did:plc:alice", "alice.bsky.social", None, None, 42, seen)]

        author = db.upsert_author("bluesky", RawAuthor(id="did:plc:alice", handle="alice.bsky.social",
                                                       follower_count=42),
                                  datetime(2024, 1, 15, 12, tzinfo=timezone.utc))

        assert author.id == "auth-1"
        assert author.display_name == ""
        assert author.follower_count == 42
        assert author.last_updated_at.tzinfo == timezone.utc

    def test_mark_posted_rolls_back_when_nothing_updated(self, db, mock_db_connection):
        _, mock_connection, mock_cursor = mock_db_connection
        mock_cursor.rowcount = 0

        result = db.mark_response_posted("r1", "at://x", "https://bsky.app/x",
                                         datetime(2024, 1, 15, tzinfo=timezone.utc))

        assert result is False
        mock_connection.rollback.assert_called_once()
        mock_connection.commit.assert_not_called()

    def test_mark_posted_commits_both_updates(self, db, mock_db_connection):
        _, mock_connection, mock_cursor = mock_db_connection
        mock_cursor.rowcount = 1

        result = db.mark_response_posted("r1", "at://x", "https://bsky.app/x",
                                         datetime(2024, 1, 15, tzinfo=timezone.utc))

        assert result is True
        assert mock_cursor.execute.call_count == 2
        assert "dbo.opportunities" in mock_cursor.execute.call_args_list[1][0][0]
        query, params = mock_cursor.execute.call_args_list[1][0]
        assert "AND status = ?" in query
        assert params[-1] == "pending"
        mock_connection.commit.assert_called_once()
