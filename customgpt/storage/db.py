"""
Database handle for the chat store.

One process-wide Database is created at server startup and passed to the
store. Connections are opened per operation; health_check() is a read-only
probe the store runs before every read and write.
"""

import sqlite3
import logging
from pathlib import Path
from contextlib import contextmanager

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS chats (
    chat_id TEXT PRIMARY KEY,
    chat_name TEXT NOT NULL,
    config_name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    chat_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    message_id TEXT NOT NULL,
    interaction_type TEXT NOT NULL,
    role TEXT NOT NULL,
    created_at TEXT NOT NULL,
    message_content TEXT NOT NULL,
    parent_id TEXT NOT NULL DEFAULT 'root',
    status TEXT NOT NULL DEFAULT 'success',
    PRIMARY KEY (chat_id, seq),
    FOREIGN KEY (chat_id) REFERENCES chats(chat_id)
);

CREATE INDEX IF NOT EXISTS idx_chats_last_updated
    ON chats(last_updated_at);
CREATE INDEX IF NOT EXISTS idx_messages_chat
    ON messages(chat_id);
"""


class Database:
    """SQLite connection handle with an explicit init/health_check/teardown lifecycle."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self._ready = False
        self._closed = False

    @property
    def ready(self) -> bool:
        return self._ready

    def init(self) -> bool:
        """Create the schema. Returns False (and logs) when the file can't be opened."""
        self._closed = False
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.executescript(CREATE_TABLES)
        except (OSError, sqlite3.Error) as e:
            logger.error("SQLite init failed at %s: %s", self.db_path, e)
            self._ready = False
            return False
        self._ready = True
        logger.info("SQLite store initialized at %s", self.db_path)
        return True

    def health_check(self) -> bool:
        """Read-only probe. Never raises; a failed probe may succeed next time."""
        if self._closed:
            return False
        if not self._ready:
            # Startup may have failed on a transient error; try again
            if not self.db_path.parent.exists():
                logger.warning("Database unavailable: %s does not exist", self.db_path.parent)
                return False
            if not self.init():
                return False
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.warning("Database health check failed: %s", e)
            return False

    def teardown(self):
        """Stop serving. Later probes report unavailable until init() runs again."""
        self._ready = False
        self._closed = True
        logger.info("SQLite store closed (%s)", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def connect(self):
        """Per-operation connection: commits on success, rolls back on error."""
        return self._connect()
