"""
Data models for chat storage.
These define the shape of data flowing between the store, the API and the console.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from uuid import uuid4

ROOT_ID = "root"
DEFAULT_CHAT_NAME = "New Chat"
DEFAULT_CONFIG_NAME = "default"

ROLES = ("system", "user", "assistant")
INTERACTION_TYPES = ("chat", "completion")
STATUSES = ("success", "failure", "interrupted")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class Message:
    """A single message in a chat."""
    message_id: str = field(default_factory=lambda: uuid4().hex)
    interaction_type: str = "completion"   # "chat" or "completion"
    role: str = ""                         # "system", "user", "assistant"
    created_at: str = field(default_factory=utcnow)
    message_content: str = ""
    parent_id: str = ROOT_ID
    status: str = "success"                # "success", "failure", "interrupted"

    @property
    def is_root(self) -> bool:
        return self.message_id == ROOT_ID and self.role == "system"

    def to_dict(self) -> dict:
        return asdict(self)

    def to_openai_format(self) -> dict:
        """The {role, content} pair chat-style endpoints expect."""
        return {"role": self.role, "content": self.message_content}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})

    @classmethod
    def root(cls, created_at: str | None = None) -> "Message":
        """The synthetic system message every chat starts with."""
        return cls(
            message_id=ROOT_ID,
            interaction_type="chat",
            role="system",
            created_at=created_at or utcnow(),
            message_content="",
            parent_id="",
            status="success",
        )


@dataclass
class Chat:
    """A chat is an ordered, parent-linked list of messages plus its metadata."""
    chat_id: str = field(default_factory=lambda: uuid4().hex)
    chat_name: str = DEFAULT_CHAT_NAME
    created_at: str = field(default_factory=utcnow)
    last_updated_at: str = ""
    config_name: str = DEFAULT_CONFIG_NAME
    messages: list[Message] = field(default_factory=list)

    def __post_init__(self):
        if not self.last_updated_at:
            self.last_updated_at = self.created_at

    def summary(self) -> dict:
        return {
            "chat_id": self.chat_id,
            "chat_name": self.chat_name,
            "created_at": self.created_at,
            "last_updated_at": self.last_updated_at,
            "config_name": self.config_name,
        }

    def to_dict(self) -> dict:
        data = self.summary()
        data["messages"] = [m.to_dict() for m in self.messages]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Chat":
        return cls(
            chat_id=data["chat_id"],
            chat_name=data.get("chat_name") or DEFAULT_CHAT_NAME,
            created_at=data.get("created_at") or utcnow(),
            last_updated_at=data.get("last_updated_at") or "",
            config_name=data.get("config_name") or DEFAULT_CONFIG_NAME,
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
        )
