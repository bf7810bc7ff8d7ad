"""
Chat Widget Data Model
=======================
Messages, sessions and feedback owned by a single widget conversation,
plus the per-business AgentConfig that drives it.

Storage: in-memory only. A ConversationSession lives as long as the
browser widget that opened it; persistence is somebody else's job.
"""

from __future__ import annotations

import random
import string
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Rating(str, Enum):
    HELPFUL = "helpful"
    NOT_HELPFUL = "not-helpful"


# ── Identifiers ──────────────────────────────────────────────────────────

_BASE36 = string.ascii_lowercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(random.choices(_BASE36, k=length))


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{_random_suffix(9)}"


def new_user_id() -> str:
    return f"user_{_random_suffix(8)}"


def new_message_id(role: Role) -> str:
    return f"msg_{uuid.uuid4().hex[:16]}_{role.value}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Messages ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MessageMetadata:
    business_id: str = ""
    session_id: str = ""
    sentiment: Optional[str] = None    # positive | negative | neutral
    intent: Optional[str] = None
    confidence: Optional[float] = None
    requires_human: bool = False

    def to_dict(self) -> dict:
        data = {
            "businessId": self.business_id,
            "sessionId": self.session_id,
            "requiresHuman": self.requires_human,
        }
        if self.sentiment is not None:
            data["sentiment"] = self.sentiment
        if self.intent is not None:
            data["intent"] = self.intent
            data["confidence"] = self.confidence
        return data


@dataclass(frozen=True)
class ChatMessage:
    id: str
    content: str
    role: Role
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: Optional[MessageMetadata] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "role": self.role.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


@dataclass(frozen=True)
class FeedbackRecord:
    message_id: str
    rating: Rating
    business_id: str
    comment: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "messageId": self.message_id,
            "rating": self.rating.value,
            "comment": self.comment,
            "timestamp": self.timestamp.isoformat(),
            "businessId": self.business_id,
        }


@dataclass
class ConversationSession:
    business_id: str
    session_id: str = field(default_factory=new_session_id)
    user_id: str = field(default_factory=new_user_id)
    messages: list[ChatMessage] = field(default_factory=list)
    feedback: list[FeedbackRecord] = field(default_factory=list)

    def add_message(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        return message

    def add_feedback(self, record: FeedbackRecord) -> FeedbackRecord:
        self.feedback.append(record)
        return record

    def last_user_message(self) -> Optional[ChatMessage]:
        for message in reversed(self.messages):
            if message.role == Role.USER:
                return message
        return None


# ── Turn results ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class NormalizedResponse:
    text: str
    has_markup: bool = False


@dataclass(frozen=True)
class AgentReply:
    """What the widget gets back from one send_message() call."""

    message_id: str
    assistant_text: str
    intent: str
    confidence: float
    requires_human: bool
    formatted: Optional[object] = None    # agent.formatters.FormattedContent
    has_markup: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "messageId": self.message_id,
            "message": self.assistant_text,
            "intent": self.intent,
            "confidence": self.confidence,
            "requiresHuman": self.requires_human,
            "hasMarkup": self.has_markup,
            "formatted": self.formatted.to_dict() if self.formatted is not None else None,
        }


# ── Agent configuration ─────────────────────────────────────────────────


class AgentConfig(BaseModel):
    """Per-business widget settings. Validated before it reaches a session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    business_id: str = Field(min_length=1, max_length=255)
    business_name: str = Field(min_length=1, max_length=255)
    webhook_url: str = Field(min_length=1)
    agent_id: Optional[str] = None
    api_key: Optional[str] = None
    position: Literal["bottom-right", "bottom-left", "top-right", "top-left"] = "bottom-right"
    primary_color: str = "#3b82f6"
    secondary_color: str = "#1e40af"
    welcome_message: str = "Hello! How can I help you today?"
    width: int = Field(default=350, ge=200, le=1200)
    height: int = Field(default=500, ge=200, le=1600)
    show_timestamp: bool = True
    enable_typing_indicator: bool = True
    max_messages: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True
