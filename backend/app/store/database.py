"""DuckDB-backed document store for users, chatrooms and messages.

This module owns the single embedded DuckDB connection used by the
repositories. The schema is created on first use and is safe to apply
repeatedly.

Database Schema:
    users:              accounts and profile attributes (unique username)
    chatrooms:          room metadata, moderation flags, activity counters
    room_occupants:     active occupancy rows, one per (room, user)
    messages:           room messages, ordered by an insertion sequence
    message_reactions:  one row per (message, emoji, user)

List and struct attributes are stored as JSON text.

Thread Safety:
    The DuckDB connection is NOT thread-safe. All access happens from the
    event loop thread; each repository method is one statement or one
    explicit transaction, which makes it atomic with respect to other
    events in the process.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

import duckdb

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id                      VARCHAR PRIMARY KEY,
        username                VARCHAR NOT NULL UNIQUE,
        password_hash           VARCHAR NOT NULL,
        profile_picture         VARCHAR,
        status                  VARCHAR NOT NULL DEFAULT 'offline',
        bio                     VARCHAR NOT NULL DEFAULT '',
        interests               VARCHAR NOT NULL DEFAULT '[]',
        age                     INTEGER,
        gender                  VARCHAR,
        interested_in           VARCHAR NOT NULL DEFAULT '["everyone"]',
        mola_balance            INTEGER NOT NULL DEFAULT 50,
        is_email_verified       BOOLEAN NOT NULL DEFAULT FALSE,
        is_active               BOOLEAN NOT NULL DEFAULT TRUE,
        last_seen               TIMESTAMP NOT NULL,
        joined_at               TIMESTAMP NOT NULL,
        subscription_type       VARCHAR NOT NULL DEFAULT 'free',
        subscription_expires_at TIMESTAMP,
        created_at              TIMESTAMP NOT NULL,
        updated_at              TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chatrooms (
        id              VARCHAR PRIMARY KEY,
        name            VARCHAR NOT NULL,
        description     VARCHAR NOT NULL DEFAULT '',
        topic           VARCHAR NOT NULL DEFAULT 'general',
        neon_theme      VARCHAR NOT NULL DEFAULT '{}',
        created_by      VARCHAR NOT NULL,
        is_private      BOOLEAN NOT NULL DEFAULT FALSE,
        max_users       INTEGER NOT NULL DEFAULT 100,
        allow_whispers  BOOLEAN NOT NULL DEFAULT TRUE,
        allow_emojis    BOOLEAN NOT NULL DEFAULT TRUE,
        is_premium_room BOOLEAN NOT NULL DEFAULT FALSE,
        total_messages  INTEGER NOT NULL DEFAULT 0,
        last_activity   TIMESTAMP NOT NULL,
        is_active       BOOLEAN NOT NULL DEFAULT TRUE,
        created_at      TIMESTAMP NOT NULL,
        updated_at      TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chatrooms_topic ON chatrooms(topic, is_active)",
    """
    CREATE TABLE IF NOT EXISTS room_occupants (
        room_id   VARCHAR NOT NULL,
        user_id   VARCHAR NOT NULL,
        joined_at TIMESTAMP NOT NULL,
        last_seen TIMESTAMP NOT NULL,
        PRIMARY KEY (room_id, user_id)
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id              VARCHAR PRIMARY KEY,
        seq             BIGINT NOT NULL DEFAULT nextval('messages_seq'),
        room_id         VARCHAR NOT NULL,
        sender_id       VARCHAR NOT NULL,
        content         VARCHAR NOT NULL,
        message_type    VARCHAR NOT NULL DEFAULT 'public',
        whisper_target  VARCHAR,
        has_neon_effect BOOLEAN NOT NULL DEFAULT FALSE,
        neon_color      VARCHAR,
        is_deleted      BOOLEAN NOT NULL DEFAULT FALSE,
        is_edited       BOOLEAN NOT NULL DEFAULT FALSE,
        edited_at       TIMESTAMP,
        created_at      TIMESTAMP NOT NULL,
        updated_at      TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_messages_sender ON messages(sender_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS message_reactions (
        message_id VARCHAR NOT NULL,
        emoji      VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL,
        PRIMARY KEY (message_id, emoji, user_id)
    )
    """,
]


def utcnow() -> datetime:
    """Naive UTC timestamp, matching DuckDB's TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Database:
    """Owns the DuckDB connection shared by all repositories.

    The connection is opened lazily so that building the application does
    not touch the filesystem until the first query.

    Attributes:
        path: DuckDB file path, or ``:memory:`` for a throwaway database.
    """

    def __init__(self, path: str = "neon.duckdb") -> None:
        self.path = path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Get the DuckDB connection, creating it and the schema if needed."""
        if self._connection is None:
            self._connection = duckdb.connect(self.path)
            self._initialize_schema(self._connection)
            logger.info("[Store] Connected to DuckDB at %s", self.path)
        return self._connection

    @staticmethod
    def _initialize_schema(conn: duckdb.DuckDBPyConnection) -> None:
        for statement in _SCHEMA:
            conn.execute(statement)

    def execute(self, query: str, params: Optional[list] = None) -> duckdb.DuckDBPyConnection:
        return self.connection.execute(query, params or [])

    def fetchone(self, query: str, params: Optional[list] = None) -> Optional[tuple]:
        return self.execute(query, params).fetchone()

    def fetchall(self, query: str, params: Optional[list] = None) -> list:
        return self.execute(query, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run several statements as one atomic read-modify-write."""
        conn = self.connection
        conn.begin()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        """Close the connection (reopened on next use)."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            logger.info("[Store] Closed DuckDB connection to %s", self.path)
