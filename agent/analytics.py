"""
Conversation Analytics & Feedback Summary
==========================================
Aggregates a widget conversation and its thumbs-up/down feedback into
the numbers shown on the business dashboard.

  analyze_conversation — counts, sentiment/intent histograms,
                         satisfaction and escalation percentages
  parse_feedback       — topics, action items, urgency and a one-line
                         summary for follow-up by staff

All percentages are 0–100 and are 0 (not NaN) when there's nothing to
divide by.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from .classifiers import classify_sentiment
from .models import ChatMessage, FeedbackRecord, Rating, Role

# Response-time tracking isn't wired to real timestamps yet; the dashboard
# shows this fixed value.
PLACEHOLDER_RESPONSE_TIME = 2.5  # seconds


@dataclass(frozen=True)
class ConversationAnalytics:
    total_messages: int
    average_response_time: float
    sentiment_distribution: dict[str, int]
    common_intents: dict[str, int]
    satisfaction_score: float
    escalation_rate: float

    def to_dict(self) -> dict:
        return {
            "totalMessages": self.total_messages,
            "averageResponseTime": self.average_response_time,
            "sentimentDistribution": dict(self.sentiment_distribution),
            "commonIntents": dict(self.common_intents),
            "satisfactionScore": self.satisfaction_score,
            "escalationRate": self.escalation_rate,
        }


@dataclass(frozen=True)
class FeedbackSummary:
    sentiment: str
    topics: list[str] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)
    urgency: str = "low"
    summary: str = ""

    def to_dict(self) -> dict:
        return {
            "sentiment": self.sentiment,
            "topics": list(self.topics),
            "actionItems": list(self.action_items),
            "urgency": self.urgency,
            "summary": self.summary,
        }


def _escalated(message: ChatMessage) -> bool:
    return bool(message.metadata and message.metadata.requires_human)


def _intent(message: ChatMessage):
    return message.metadata.intent if message.metadata else None


# ── Analytics ────────────────────────────────────────────────────────────


def sentiment_distribution(messages: Sequence[ChatMessage]) -> dict[str, int]:
    distribution = {"positive": 0, "negative": 0, "neutral": 0}
    for message in messages:
        distribution[classify_sentiment(message.content)] += 1
    return distribution


def common_intents(messages: Sequence[ChatMessage]) -> dict[str, int]:
    return dict(Counter(i for i in map(_intent, messages) if i))


def satisfaction_score(feedback: Sequence[FeedbackRecord]) -> float:
    if not feedback:
        return 0.0
    helpful = sum(1 for f in feedback if f.rating == Rating.HELPFUL)
    return helpful / len(feedback) * 100


def escalation_rate(messages: Sequence[ChatMessage]) -> float:
    if not messages:
        return 0.0
    return sum(1 for m in messages if _escalated(m)) / len(messages) * 100


def analyze_conversation(
    messages: Sequence[ChatMessage],
    feedback: Sequence[FeedbackRecord],
) -> ConversationAnalytics:
    return ConversationAnalytics(
        total_messages=len(messages),
        average_response_time=PLACEHOLDER_RESPONSE_TIME,
        sentiment_distribution=sentiment_distribution(messages),
        common_intents=common_intents(messages),
        satisfaction_score=satisfaction_score(feedback),
        escalation_rate=escalation_rate(messages),
    )


# ── Feedback Summary ─────────────────────────────────────────────────────

TOPIC_KEYWORDS = {
    "booking": ("book", "appointment", "schedule", "reserve"),
    "pricing": ("price", "cost", "fee", "charge", "expensive", "cheap"),
    "services": ("service", "grooming", "walking", "boarding", "training"),
    "staff": ("staff", "employee", "worker", "person", "team"),
    "quality": ("quality", "professional", "clean", "dirty", "good", "bad"),
    "timing": ("time", "late", "early", "punctual", "schedule", "hours"),
}

ESCALATION_PHRASES = ("manager", "human")


def extract_topics(content: str) -> list[str]:
    lowered = content.lower()
    return [
        topic for topic, keywords in TOPIC_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    ]


def _action_items(
    messages: Sequence[ChatMessage],
    feedback: Sequence[FeedbackRecord],
) -> list[str]:
    items = []

    if any(f.rating == Rating.NOT_HELPFUL for f in feedback):
        items.append("Review and improve responses that received negative feedback")

    if any(
        _escalated(m) or any(p in m.content.lower() for p in ESCALATION_PHRASES)
        for m in messages
    ):
        items.append("Follow up on escalation requests")

    if any(_intent(m) == "booking" for m in messages):
        items.append("Ensure booking requests were properly handled")

    return items


def _urgency(messages: Sequence[ChatMessage], feedback: Sequence[FeedbackRecord]) -> str:
    score = 2 * sum(1 for f in feedback if f.rating == Rating.NOT_HELPFUL)
    score += 3 * sum(1 for m in messages if _escalated(m))
    score += 2 * sum(1 for m in messages if _intent(m) == "complaint")

    if score >= 5:
        return "high"
    if score >= 2:
        return "medium"
    return "low"


def _summary(messages: Sequence[ChatMessage], sentiment: str, topics: list[str]) -> str:
    users = sum(1 for m in messages if m.role == Role.USER)
    assistants = sum(1 for m in messages if m.role == Role.ASSISTANT)

    summary = (
        f"Conversation with {users} user messages and {assistants} assistant responses. "
        f"Overall sentiment: {sentiment}. "
    )
    if topics:
        summary += f"Main topics discussed: {', '.join(topics)}."
    return summary.strip()


def parse_feedback(
    messages: Sequence[ChatMessage],
    feedback: Sequence[FeedbackRecord],
) -> FeedbackSummary:
    """Whole-conversation summary for staff follow-up."""
    content = " ".join(m.content for m in messages)
    sentiment = classify_sentiment(content)
    topics = extract_topics(content)

    return FeedbackSummary(
        sentiment=sentiment,
        topics=topics,
        action_items=_action_items(messages, feedback),
        urgency=_urgency(messages, feedback),
        summary=_summary(messages, sentiment, topics),
    )
