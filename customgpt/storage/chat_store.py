"""
Conversation store: chats as append-only, parent-linked message lists.

Every operation probes the Database first and fails fast with
DatabaseUnavailable; nothing is queued or retried here. Callers decide
whether a persistence failure matters to what the user sees.
"""

from __future__ import annotations

import sqlite3
import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from customgpt.errors import ChatNotFound, DatabaseUnavailable, InvalidInput
from customgpt.storage.db import Database
from customgpt.storage.models import (
    Chat,
    DEFAULT_CHAT_NAME,
    DEFAULT_CONFIG_NAME,
    INTERACTION_TYPES,
    Message,
    ROLES,
    ROOT_ID,
    STATUSES,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 500


def _next_timestamp(previous: str) -> str:
    """Now, or one microsecond after `previous` if the clock hasn't moved past it."""
    now = datetime.now(timezone.utc)
    try:
        prev = datetime.fromisoformat(previous)
    except (TypeError, ValueError):
        return now.isoformat(timespec="microseconds")
    if prev.tzinfo is None:
        prev = prev.replace(tzinfo=timezone.utc)
    if now <= prev:
        now = prev + timedelta(microseconds=1)
    return now.astimezone(timezone.utc).isoformat(timespec="microseconds")


def clamp_paging(limit, skip) -> tuple[int, int]:
    """Limit defaults to 50 (0 included) and stays within [1, 500]; skip is never negative."""
    try:
        limit = int(limit) if limit not in (None, "") else DEFAULT_LIMIT
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    if limit == 0:
        limit = DEFAULT_LIMIT
    try:
        skip = int(skip) if skip not in (None, "") else 0
    except (TypeError, ValueError):
        skip = 0
    return max(1, min(limit, MAX_LIMIT)), max(0, skip)


class ConversationStore:
    """Chat persistence on top of a Database handle."""

    def __init__(self, db: Database):
        self.db = db

    def _require_db(self):
        if not self.db.health_check():
            raise DatabaseUnavailable("Database unavailable")

    def _load_messages(self, conn, chat_id: str) -> list[Message]:
        rows = conn.execute(
            """SELECT message_id, interaction_type, role, created_at,
                      message_content, parent_id, status
               FROM messages WHERE chat_id = ? ORDER BY seq""",
            (chat_id,),
        ).fetchall()
        return [Message(**dict(r)) for r in rows]

    def _load_chat(self, conn, chat_id: str) -> Chat:
        row = conn.execute(
            "SELECT * FROM chats WHERE chat_id = ?", (chat_id,)
        ).fetchone()
        if row is None:
            raise ChatNotFound("Chat not found")
        chat = Chat(**dict(row))
        chat.messages = self._load_messages(conn, chat_id)
        return chat

    def create_chat(
        self,
        chat_name: str | None = None,
        config_name: str | None = None,
    ) -> Chat:
        """Insert a new chat holding only the synthetic root message."""
        self._require_db()
        now = utcnow()
        chat = Chat(
            chat_id=uuid4().hex,
            chat_name=chat_name or DEFAULT_CHAT_NAME,
            created_at=now,
            last_updated_at=now,
            config_name=config_name or DEFAULT_CONFIG_NAME,
            messages=[Message.root(created_at=now)],
        )
        root = chat.messages[0]
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """INSERT INTO chats
                       (chat_id, chat_name, config_name, created_at, last_updated_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (chat.chat_id, chat.chat_name, chat.config_name,
                     chat.created_at, chat.last_updated_at),
                )
                conn.execute(
                    """INSERT INTO messages
                       (chat_id, seq, message_id, interaction_type, role,
                        created_at, message_content, parent_id, status)
                       VALUES (?, 0, ?, ?, ?, ?, ?, ?, ?)""",
                    (chat.chat_id, root.message_id, root.interaction_type, root.role,
                     root.created_at, root.message_content, root.parent_id, root.status),
                )
        except sqlite3.Error as e:
            logger.error("Failed to create chat: %s", e)
            raise DatabaseUnavailable(f"Failed to create chat: {e}") from e
        logger.info("Created chat %s (%s)", chat.chat_id, chat.chat_name)
        return chat

    def list_chats(self, limit: int | None = DEFAULT_LIMIT, skip: int | None = 0) -> tuple[list[dict], int]:
        """Chat summaries, most recently updated first, plus the total count."""
        self._require_db()
        limit, skip = clamp_paging(limit, skip)
        try:
            with self.db.connect() as conn:
                rows = conn.execute(
                    """SELECT chat_id, chat_name, created_at, last_updated_at
                       FROM chats
                       ORDER BY last_updated_at DESC, chat_id
                       LIMIT ? OFFSET ?""",
                    (limit, skip),
                ).fetchall()
                total = conn.execute("SELECT COUNT(*) FROM chats").fetchone()[0]
        except sqlite3.Error as e:
            raise DatabaseUnavailable(f"Failed to fetch chats: {e}") from e
        return [dict(r) for r in rows], total

    def get_chat(self, chat_id: str) -> Chat:
        self._require_db()
        try:
            with self.db.connect() as conn:
                return self._load_chat(conn, chat_id)
        except sqlite3.Error as e:
            raise DatabaseUnavailable(f"Failed to fetch chat: {e}") from e

    def append_message(
        self,
        chat_id: str,
        role: str,
        interaction_type: str,
        message_content: str,
        parent_id: str | None = ROOT_ID,
        status: str | None = "success",
    ) -> tuple[str, Chat]:
        """
        Append one message and bump last_updated_at in a single transaction.
        Returns (message_id, updated chat).
        """
        self._require_db()
        if not role or not interaction_type or not message_content:
            raise InvalidInput("Missing required fields: role, interaction_type, and message_content")
        if role not in ROLES:
            raise InvalidInput(f"role must be one of {', '.join(ROLES)}")
        if interaction_type not in INTERACTION_TYPES:
            raise InvalidInput(f"interaction_type must be one of {', '.join(INTERACTION_TYPES)}")
        status = status or "success"
        if status not in STATUSES:
            raise InvalidInput(f"status must be one of {', '.join(STATUSES)}")
        if not isinstance(message_content, str):
            raise InvalidInput("message_content must be a string")

        message = Message(
            message_id=uuid4().hex,
            interaction_type=interaction_type,
            role=role,
            message_content=message_content,
            parent_id=ROOT_ID if parent_id is None else str(parent_id),
            status=status,
        )
        try:
            with self.db.connect() as conn:
                row = conn.execute(
                    "SELECT last_updated_at FROM chats WHERE chat_id = ?", (chat_id,)
                ).fetchone()
                if row is None:
                    raise ChatNotFound("Chat not found")
                seq = conn.execute(
                    "SELECT COALESCE(MAX(seq), -1) + 1 FROM messages WHERE chat_id = ?",
                    (chat_id,),
                ).fetchone()[0]
                updated_at = _next_timestamp(row["last_updated_at"])
                conn.execute(
                    """INSERT INTO messages
                       (chat_id, seq, message_id, interaction_type, role,
                        created_at, message_content, parent_id, status)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (chat_id, seq, message.message_id, message.interaction_type, message.role,
                     message.created_at, message.message_content, message.parent_id, message.status),
                )
                conn.execute(
                    "UPDATE chats SET last_updated_at = ? WHERE chat_id = ?",
                    (updated_at, chat_id),
                )
                chat = self._load_chat(conn, chat_id)
        except sqlite3.Error as e:
            logger.error("Failed to append message to %s: %s", chat_id, e)
            raise DatabaseUnavailable(f"Failed to append message: {e}") from e
        logger.debug("Stored message %s (role=%s, chat=%s)", message.message_id, role, chat_id)
        return message.message_id, chat

    def update_chat_metadata(
        self,
        chat_id: str,
        chat_name: str | None = None,
        config_name: str | None = None,
    ) -> Chat:
        """Partial update of name/config; last_updated_at is always bumped."""
        self._require_db()
        try:
            with self.db.connect() as conn:
                row = conn.execute(
                    "SELECT last_updated_at FROM chats WHERE chat_id = ?", (chat_id,)
                ).fetchone()
                if row is None:
                    raise ChatNotFound("Chat not found")
                sets = ["last_updated_at = ?"]
                params: list = [_next_timestamp(row["last_updated_at"])]
                if chat_name is not None:
                    sets.append("chat_name = ?")
                    params.append(chat_name)
                if config_name is not None:
                    sets.append("config_name = ?")
                    params.append(config_name)
                params.append(chat_id)
                conn.execute(f"UPDATE chats SET {', '.join(sets)} WHERE chat_id = ?", params)
                chat = self._load_chat(conn, chat_id)
        except sqlite3.Error as e:
            raise DatabaseUnavailable(f"Failed to update chat: {e}") from e
        return chat
