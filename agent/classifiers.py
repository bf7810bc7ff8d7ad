"""
Keyword Classifiers — Intent, Confidence, Sentiment
=====================================================
Lightweight heuristics used to tag every exchange for analytics and to
decide when a conversation should be handed to a human.

These are literal keyword tables, not a model. Behavior compatibility
with the existing widget analytics matters more than accuracy, so keep
the tables and their order as they are.

  classify_intent     — first matching rule wins (order matters)
  score_confidence    — 0.8 base, keyword/length deductions, [0.1, 1.0]
  requires_human      — confidence < 0.7 or a complaint
  classify_sentiment  — positive/negative keyword vote, ties → neutral
"""

from __future__ import annotations

from typing import Optional

# ── Intent ───────────────────────────────────────────────────────────────

INTENT_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("booking", ("book", "appointment", "schedule")),
    ("pricing", ("price", "cost", "how much")),
    ("hours", ("hours", "open", "closed")),
    ("complaint", ("complaint", "problem", "issue")),
    ("services", ("service", "what do you")),
)

DEFAULT_INTENT = "general"
ERROR_INTENT = "error"


def classify_intent(utterance: str) -> str:
    """Map a user utterance to an intent label.

    Case-insensitive substring match against INTENT_RULES; earlier rules
    shadow later ones ("is the booking service open" → booking).
    """
    lowered = (utterance or "").lower()
    for label, keywords in INTENT_RULES:
        if any(keyword in lowered for keyword in keywords):
            return label
    return DEFAULT_INTENT


# ── Confidence & Escalation ──────────────────────────────────────────────

BASE_CONFIDENCE = 0.8
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0
SHORT_UTTERANCE_LENGTH = 10
ESCALATION_THRESHOLD = 0.7

# (phrases in the response, deduction)
_RESPONSE_PENALTIES = (
    (("I don't know", "not sure"), 0.2),
    (("contact us directly",), 0.3),
)


def score_confidence(utterance: str, response_text: str) -> float:
    """Heuristic confidence for one exchange, clamped to [0.1, 1.0].

    Response phrases are matched case-sensitively, as the widget always
    has. Rounded to two decimals so 0.8 - 0.1 - 0.2 is exactly 0.5.
    """
    confidence = BASE_CONFIDENCE

    if len(utterance or "") < SHORT_UTTERANCE_LENGTH:
        confidence -= 0.1

    response_text = response_text or ""
    for phrases, penalty in _RESPONSE_PENALTIES:
        if any(phrase in response_text for phrase in phrases):
            confidence -= penalty

    return round(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence)), 2)


def requires_human(confidence: float, intent: Optional[str]) -> bool:
    return confidence < ESCALATION_THRESHOLD or intent == "complaint"


# ── Sentiment ────────────────────────────────────────────────────────────

POSITIVE_WORDS = (
    "great", "excellent", "amazing", "wonderful",
    "fantastic", "love", "perfect", "awesome",
)

NEGATIVE_WORDS = (
    "terrible", "awful", "horrible", "hate",
    "worst", "bad", "disappointed", "frustrated",
)


def classify_sentiment(text: str) -> str:
    """Count distinct positive vs negative keywords present in text."""
    lowered = (text or "").lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)

    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"
