"""
Chat Widget Channel Handler — FastAPI Router
=============================================
HTTP surface used by the embeddable widget and the admin dashboard.

Endpoints:
  POST   /api/chat                       — Send one user turn
  GET    /api/chat/{session_id}/analytics — Conversation analytics
  POST   /api/feedback                   — Rate an assistant message
  GET    /api/agents                     — List active widget configs
  GET    /api/agents/{business_id}       — Fetch one config
  POST   /api/agents                     — Create or update a config
  DELETE /api/agents/{business_id}       — Deactivate a config

Incoming flow:
  Widget → POST /api/chat → look up AgentConfig → reuse or open the
  ChatSession → send_message() → reply + formatted content

Webhook failures never surface as HTTP errors: the session turns them
into a fallback reply with requiresHuman=true. Only caller mistakes
(bad input, unknown business, concurrent send) get 4xx responses.

Live sessions are held in memory and dropped once idle for
SESSION_IDLE_TTL_SECONDS or when MAX_LIVE_SESSIONS is exceeded.
"""

from __future__ import annotations

import logging
import os
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Optional

import httpx
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agent.chat_agent import ChatSession
from agent.config import validate_config
from agent.errors import ConfigError, SessionBusyError
from agent.formatters import render_html
from agent.models import ConversationSession, new_session_id, new_user_id
from database.agent_store import get_store

logger = logging.getLogger("channels.widget")

router = APIRouter(prefix="/api", tags=["chat-widget"])

# Shared outbound client, set by the FastAPI app on startup.
_http_client: Optional[httpx.AsyncClient] = None

MAX_LIVE_SESSIONS = int(os.environ.get("MAX_LIVE_SESSIONS", "1000"))
SESSION_IDLE_TTL_SECONDS = float(os.environ.get("SESSION_IDLE_TTL_SECONDS", "1800"))


class SessionRegistry:
    """Live ChatSessions by session_id, least recently used first.

    Sessions idle longer than idle_ttl are dropped, and once more than
    max_sessions are held the least recently used ones go. A session with
    a request in flight is never dropped.
    """

    def __init__(
        self,
        max_sessions: int = MAX_LIVE_SESSIONS,
        idle_ttl: float = SESSION_IDLE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions
        self.idle_ttl = idle_ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[ChatSession, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def get(self, session_id: str) -> Optional[ChatSession]:
        """Return the session and mark it as just used."""
        self.evict()
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        self._touch(entry[0])
        return entry[0]

    def add(self, chat: ChatSession) -> None:
        self._touch(chat)
        self.evict(keep=chat.session_id)

    def clear(self) -> None:
        self._entries.clear()

    def evict(self, keep: Optional[str] = None) -> int:
        """Drop expired and overflow sessions. Returns how many went."""
        now = self._clock()
        evicted = 0
        for session_id, (chat, last_used) in list(self._entries.items()):
            overflow = len(self._entries) > self.max_sessions
            expired = now - last_used > self.idle_ttl
            if not (overflow or expired):
                break
            if chat.is_busy or session_id == keep:
                continue
            del self._entries[session_id]
            evicted += 1
            logger.info(
                f"Widget session evicted: {session_id} "
                f"({'idle' if expired else 'capacity'})"
            )
        return evicted

    def _touch(self, chat: ChatSession) -> None:
        self._entries[chat.session_id] = (chat, self._clock())
        self._entries.move_to_end(chat.session_id)


_sessions = SessionRegistry()


def set_http_client(client: Optional[httpx.AsyncClient]) -> None:
    """Set the shared webhook client. Called once at app startup."""
    global _http_client
    _http_client = client


def get_session(session_id: str) -> Optional[ChatSession]:
    return _sessions.get(session_id)


def reset_sessions(registry: Optional[SessionRegistry] = None) -> None:
    """Empty the registry, or swap in a differently configured one."""
    global _sessions
    if registry is not None:
        _sessions = registry
    else:
        _sessions.clear()


# ── Request / Response Models ────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(_CamelModel):
    """One user turn from the widget."""

    message: str = Field(min_length=1, max_length=5000, description="User's message text")
    business_id: str = Field(min_length=1, description="Business whose agent answers")
    session_id: Optional[str] = Field(default=None, description="Existing widget session")
    user_id: Optional[str] = Field(default=None, description="Widget-generated user id")

    @field_validator("message")
    @classmethod
    def message_must_have_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message must not be blank")
        return v


class FeedbackRequest(_CamelModel):
    message_id: str = Field(min_length=1)
    rating: Literal["helpful", "not-helpful"]
    business_id: str = Field(min_length=1)
    session_id: Optional[str] = None
    comment: Optional[str] = Field(default=None, max_length=2000)


class ChatResponse(BaseModel):
    success: bool = True
    response: dict[str, Any]


class AgentConfigRequest(_CamelModel):
    """Create/update body for a widget config.

    The three identifying fields are checked by the route so a missing one
    is a 400. Any other AgentConfig field may be sent and falls back to
    its default when omitted.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    business_id: Optional[str] = Field(default=None, description="Unique business key")
    business_name: Optional[str] = Field(default=None, description="Name shown in the widget")
    webhook_url: Optional[str] = Field(default=None, description="n8n webhook this agent calls")

    def missing_fields(self) -> list[str]:
        return [
            to_camel(name)
            for name in ("business_id", "business_name", "webhook_url")
            if not (getattr(self, name) or "").strip()
        ]


# ── Session Registry ────────────────────────────────────────────────────


def _open_session(request: ChatRequest) -> ChatSession:
    """Reuse the widget's session or open a new one for this business."""
    store = get_store()
    config = store.get_agent_config(request.business_id)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Agent {request.business_id} not found")

    if request.session_id:
        existing = _sessions.get(request.session_id)
        if existing is not None:
            if existing.config.business_id != request.business_id:
                raise HTTPException(
                    status_code=400,
                    detail="Session belongs to a different business",
                )
            return existing

    chat = ChatSession(
        config,
        client=_http_client,
        session=ConversationSession(
            business_id=config.business_id,
            session_id=request.session_id or new_session_id(),
            user_id=request.user_id or new_user_id(),
        ),
    )
    _sessions.add(chat)
    logger.info(f"Widget session opened: {chat.session_id} (business={config.business_id})")
    return chat


# ── Chat Endpoints ───────────────────────────────────────────────────────


@router.post("/chat", response_model=ChatResponse)
async def send_chat_message(request: ChatRequest):
    """Relay one user message to the business's webhook.

    Returns the assistant text, intent, confidence, the escalation flag
    and the formatted line/span structure (plus an HTML rendering).
    """
    chat = _open_session(request)

    try:
        reply = await chat.send_message(request.message)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    body = reply.to_dict()
    body["html"] = render_html(reply.formatted) if reply.formatted is not None else None
    body["metadata"] = {
        "sessionId": chat.session_id,
        "userId": chat.user_id,
        "businessId": chat.config.business_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return ChatResponse(response=body)


@router.get("/chat/{session_id}/analytics")
async def get_session_analytics(session_id: str):
    chat = _sessions.get(session_id)
    if chat is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {
        "sessionId": session_id,
        "analytics": chat.analytics().to_dict(),
        "feedback": chat.feedback_summary().to_dict(),
    }


@router.post("/feedback")
async def submit_feedback(request: FeedbackRequest):
    """Record a thumbs-up/down for an assistant message."""
    chat = _sessions.get(request.session_id) if request.session_id else None
    if chat is None:
        # Feedback for a session this process never saw is accepted and logged.
        logger.info(
            f"Feedback received without live session: business={request.business_id}, "
            f"message={request.message_id}, rating={request.rating}"
        )
        return {"success": True, "message": "Feedback recorded"}

    chat.record_feedback(request.message_id, request.rating, request.comment)
    return {"success": True, "message": "Feedback recorded"}


# ── Agent Config Endpoints ───────────────────────────────────────────────


@router.get("/agents")
async def list_agents():
    return {"agents": [c.model_dump(by_alias=True) for c in get_store().list_agents()]}


@router.get("/agents/{business_id}")
async def get_agent(business_id: str):
    config = get_store().get_agent_config(business_id)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Agent {business_id} not found")
    return config.model_dump(by_alias=True)


@router.post("/agents", status_code=201)
async def save_agent(request: AgentConfigRequest):
    """Create or update a widget config. Optional fields fall back to defaults."""
    missing = request.missing_fields()
    if missing:
        raise HTTPException(
            status_code=400,
            detail=f"Missing required fields: {', '.join(missing)}",
        )

    try:
        config = validate_config(request.model_dump(exclude_none=True))
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))

    get_store().save_agent(config)
    return config.model_dump(by_alias=True)


@router.delete("/agents/{business_id}")
async def delete_agent(business_id: str):
    if not get_store().deactivate_agent(business_id):
        raise HTTPException(status_code=404, detail=f"Agent {business_id} not found")
    return {"success": True}
