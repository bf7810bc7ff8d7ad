"""
Chat Session — Per-Widget Turn Orchestrator
============================================
Runs one widget conversation: every user turn goes out to the business's
n8n webhook, and whatever comes back is normalized, formatted, classified
and appended to the session history.

Turn pipeline (send_message):
  1. Append the user message                         Idle → Sending
  2. POST {message, userId, sessionId, ...} to the webhook
  3. Normalize the response body into display text
  4. Format it, classify the user's intent, score confidence
  5. Append the assistant message with its metadata  → Idle

Any ChatAgentError along the way (transport, unrecognized shape, bad text,
config) ends the turn with FALLBACK_MESSAGE, intent "error", confidence 0
and requires_human=True. History is never lost and the session stays
usable for the next send.

Only one send can be in flight per session; a second concurrent
send_message() raises SessionBusyError without touching history.

Usage:
    session = ChatSession(config)
    reply = await session.send_message("Can I book a grooming appointment?")
    print(reply.assistant_text, reply.intent, reply.requires_human)
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional

import httpx

from channels.webhook_client import build_payload, post_to_webhook

from .analytics import ConversationAnalytics, FeedbackSummary, analyze_conversation, parse_feedback
from .classifiers import (
    ERROR_INTENT,
    classify_intent,
    classify_sentiment,
    requires_human,
    score_confidence,
)
from .config import is_valid_webhook_url
from .errors import (
    ChatAgentError,
    ConfigError,
    InvalidResponseText,
    SessionBusyError,
    TransportError,
    UnrecognizedShape,
)
from .formatters import format_message
from .models import (
    AgentConfig,
    AgentReply,
    ChatMessage,
    ConversationSession,
    FeedbackRecord,
    MessageMetadata,
    NormalizedResponse,
    Rating,
    Role,
    new_message_id,
)
from .normalizer import describe_payload, normalize_response

logger = logging.getLogger("agent.chat")

FALLBACK_MESSAGE = (
    "I'm sorry, I'm having trouble responding right now. "
    "Please try again or contact us directly."
)


class SessionState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"


class TurnOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class ChatSession:
    """One widget conversation bound to a single business config."""

    def __init__(
        self,
        config: AgentConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        session: Optional[ConversationSession] = None,
    ):
        self.config = config
        self.session = session or ConversationSession(business_id=config.business_id)
        self.state = SessionState.IDLE
        self.last_outcome: Optional[TurnOutcome] = None
        self._client = client
        self._timeout = timeout
        self._inflight: Optional[asyncio.Future] = None

    # ── Properties ────────────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def user_id(self) -> str:
        return self.session.user_id

    @property
    def is_busy(self) -> bool:
        return self.state == SessionState.SENDING

    def _metadata(self, **kwargs: Any) -> MessageMetadata:
        return MessageMetadata(
            business_id=self.config.business_id,
            session_id=self.session_id,
            **kwargs,
        )

    # ── Turn ──────────────────────────────────────────────────────────

    async def send_message(self, text: str) -> AgentReply:
        """Send one user turn and return the assistant's reply.

        Raises:
            SessionBusyError: another send is still in flight.
        """
        if self.is_busy:
            raise SessionBusyError(
                f"Session {self.session_id} already has a request in flight"
            )

        self.state = SessionState.SENDING
        try:
            self.session.add_message(ChatMessage(
                id=new_message_id(Role.USER),
                content=text,
                role=Role.USER,
                metadata=self._metadata(sentiment=classify_sentiment(text)),
            ))

            try:
                raw = await self._call_webhook(text)
                normalized = normalize_response(raw)
            except (UnrecognizedShape, InvalidResponseText) as e:
                logger.error(
                    f"Could not normalize webhook response for session {self.session_id}: "
                    f"{e} | payload={describe_payload(e.payload)}"
                )
                return self._fail(e)
            except ChatAgentError as e:
                logger.error(f"Webhook turn failed for session {self.session_id}: {e}")
                return self._fail(e)

            return self._succeed(text, normalized)
        finally:
            self._inflight = None
            self.state = SessionState.IDLE

    async def _call_webhook(self, text: str) -> Any:
        if not is_valid_webhook_url(self.config.webhook_url):
            raise ConfigError(f"No valid webhook URL configured for {self.config.business_id}")

        payload = build_payload(
            message=text,
            user_id=self.user_id,
            session_id=self.session_id,
            business_id=self.config.business_id,
            business_name=self.config.business_name,
        )

        self._inflight = asyncio.ensure_future(post_to_webhook(
            self.config.webhook_url,
            payload,
            client=self._client,
            timeout=self._timeout,
        ))
        try:
            return await self._inflight
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            raise TransportError("Webhook request was cancelled")

    def _succeed(self, utterance: str, normalized: NormalizedResponse) -> AgentReply:
        text = normalized.text
        intent = classify_intent(utterance)
        confidence = score_confidence(utterance, text)
        escalate = requires_human(confidence, intent)

        message = self.session.add_message(ChatMessage(
            id=new_message_id(Role.ASSISTANT),
            content=text,
            role=Role.ASSISTANT,
            metadata=self._metadata(
                intent=intent,
                confidence=confidence,
                requires_human=escalate,
            ),
        ))
        self.last_outcome = TurnOutcome.SUCCESS

        logger.info(
            f"Turn complete: session={self.session_id}, intent={intent}, "
            f"confidence={confidence:.2f}, requires_human={escalate}"
        )

        return AgentReply(
            message_id=message.id,
            assistant_text=text,
            intent=intent,
            confidence=confidence,
            requires_human=escalate,
            formatted=format_message(text),
            has_markup=normalized.has_markup,
        )

    def _fail(self, error: Exception) -> AgentReply:
        message = self.session.add_message(ChatMessage(
            id=new_message_id(Role.ASSISTANT),
            content=FALLBACK_MESSAGE,
            role=Role.ASSISTANT,
            metadata=self._metadata(
                intent=ERROR_INTENT,
                confidence=0.0,
                requires_human=True,
            ),
        ))
        self.last_outcome = TurnOutcome.FAILED

        return AgentReply(
            message_id=message.id,
            assistant_text=FALLBACK_MESSAGE,
            intent=ERROR_INTENT,
            confidence=0.0,
            requires_human=True,
            formatted=format_message(FALLBACK_MESSAGE),
            error=str(error),
        )

    def cancel(self) -> bool:
        """Abandon the in-flight webhook request, if any.

        The pending send_message() resolves through the fallback reply.
        """
        if self._inflight is None or self._inflight.done():
            return False
        logger.info(f"Cancelling in-flight webhook request for session {self.session_id}")
        return self._inflight.cancel()

    # ── Feedback & History ────────────────────────────────────────────

    def record_feedback(
        self,
        message_id: str,
        rating: Rating | str,
        comment: Optional[str] = None,
    ) -> FeedbackRecord:
        """Store a rating for an assistant message.

        Additive: message_id is not checked against history and repeat
        ratings for the same message are all kept.
        """
        record = self.session.add_feedback(FeedbackRecord(
            message_id=message_id,
            rating=Rating(rating),
            business_id=self.config.business_id,
            comment=comment,
        ))
        logger.info(
            f"Feedback recorded: session={self.session_id}, "
            f"message={message_id}, rating={record.rating.value}"
        )
        return record

    def history(self) -> list[ChatMessage]:
        return list(self.session.messages)

    def clear_history(self) -> None:
        self.session.messages.clear()

    def analytics(self) -> ConversationAnalytics:
        return analyze_conversation(self.session.messages, self.session.feedback)

    def feedback_summary(self) -> FeedbackSummary:
        return parse_feedback(self.session.messages, self.session.feedback)
