"""DuckDB-based local key/value storage.

This is the client's durable "local storage": a handful of keyed records
(auth token, cached user, the random-chat snapshot) that must survive a
process restart. Values are JSON documents, overwritten wholesale on every
write.

Database Schema:
    local_storage table:
        - key: Record name (primary key)
        - value: JSON-encoded payload
        - updated_at: When the record was last written (UTC)

Thread Safety:
    The DuckDB connection is NOT thread-safe. The client runs on a single
    asyncio event loop, so all access happens from one thread.

Usage:
    store = LocalStore("whirl_local.duckdb")
    store.set("jwt_token", "abc")
    token = store.get("jwt_token")
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import duckdb

logger = logging.getLogger(__name__)

# Well-known record keys
TOKEN_KEY = "jwt_token"
USER_KEY = "user"
RANDOM_SESSION_KEY = "random_chat_session"


class LocalStore:
    """Keyed JSON records persisted in a DuckDB file.

    Attributes:
        _db_path: Path to the DuckDB database file (or ":memory:").
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Open (or create) the store.

        Args:
            db_path: Path to DuckDB file. Defaults to an in-memory database.
        """
        self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get the DuckDB connection, creating if needed.

        Returns:
            Active DuckDB connection.
        """
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the local_storage table if it doesn't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS local_storage (
                key VARCHAR PRIMARY KEY,
                value VARCHAR NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a record.

        Args:
            key: Record name.
            default: Returned when the record is absent or unreadable.

        Returns:
            The decoded JSON value, or ``default``.
        """
        row = self._get_connection().execute(
            "SELECT value FROM local_storage WHERE key = ?", [key]
        ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"[Store] Discarding unreadable record {key!r}")
            self.remove(key)
            return default

    def set(self, key: str, value: Any) -> None:
        """Overwrite a record with a JSON-serializable value."""
        self._get_connection().execute(
            """
            INSERT OR REPLACE INTO local_storage (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, json.dumps(value), datetime.now(timezone.utc).replace(tzinfo=None)]
        )

    def remove(self, key: str) -> None:
        """Delete a record; missing keys are ignored."""
        self._get_connection().execute(
            "DELETE FROM local_storage WHERE key = ?", [key]
        )

    def has(self, key: str) -> bool:
        row = self._get_connection().execute(
            "SELECT 1 FROM local_storage WHERE key = ?", [key]
        ).fetchone()
        return row is not None

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
