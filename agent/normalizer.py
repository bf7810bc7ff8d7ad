"""
Webhook Response Normalizer
============================
Turns whatever the n8n workflow sent back into one display string.

The webhook has no schema contract, so we try a fixed list of shapes and
take the first one that matches. The order below is a compatibility
contract with existing workflows, do not reorder:

  1. [{"output": S}, ...]          first array element carries "output"
  2. {"output": S}
  3. "<json>" or "plain text"      JSON strings are decoded and re-run;
                                   if that yields no text, or the string
                                   isn't JSON, the string is the text itself
  4. {"message"|"response"|"text": S} or {"data": {"output": S}}
  5. anything else                 → UnrecognizedShape

The extracted value then gets a cleanup pass: literal "\\n" sequences
become real line breaks, surrounding whitespace is trimmed, and stray
JSON fragments like a leading [{"output":" or trailing "}] are removed.

Usage:
    from agent.normalizer import normalize
    normalize([{"output": "Hello!"}])   # → "Hello!"
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Optional

from .errors import InvalidResponseText, UnrecognizedShape
from .models import NormalizedResponse

logger = logging.getLogger("agent.normalizer")

# Keys tried on plain objects once "output" has missed, in priority order.
FALLBACK_KEYS = ("message", "response", "text")

_MISSING = object()

_LEADING_ARTIFACT = re.compile(r'^\[?\{\s*"?output"?\s*:\s*"?')
_TRAILING_ARTIFACT = re.compile(r'"\s*\}\s*\]?$')
_MARKUP = re.compile(r"\*\*.+?\*\*|^\s*(?:[•-]|\d+\.\s)", re.MULTILINE)


def _present(obj: dict, key: str) -> Any:
    """JSON null and the empty string both count as absent."""
    value = obj.get(key)
    return _MISSING if value is None or value == "" else value


# ── Shape matchers ───────────────────────────────────────────────────────
# Each returns the raw extracted value, or _MISSING when it doesn't apply.


def _match_output_array(raw: Any) -> Any:
    if isinstance(raw, list) and raw and isinstance(raw[0], dict):
        return _present(raw[0], "output")
    return _MISSING


def _match_output_object(raw: Any) -> Any:
    if isinstance(raw, dict):
        return _present(raw, "output")
    return _MISSING


def _match_string(raw: Any) -> Any:
    if not isinstance(raw, str):
        return _MISSING
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw
    # Decoded JSON that yields no text is shown as the string itself.
    try:
        value = _extract(parsed)
    except UnrecognizedShape:
        return raw
    return value if isinstance(value, str) else raw


def _match_common_keys(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return _MISSING
    for key in FALLBACK_KEYS:
        value = _present(raw, key)
        if value is not _MISSING:
            return value
    data = raw.get("data")
    if isinstance(data, dict):
        return _present(data, "output")
    return _MISSING


SHAPES: tuple[tuple[str, Callable[[Any], Any]], ...] = (
    ("output_array", _match_output_array),
    ("output_object", _match_output_object),
    ("json_string", _match_string),
    ("common_keys", _match_common_keys),
)


def _extract(raw: Any) -> Any:
    for name, matcher in SHAPES:
        value = matcher(raw)
        if value is not _MISSING:
            logger.debug(f"Webhook response matched shape '{name}'")
            return value
    raise UnrecognizedShape("Unable to parse webhook response format", payload=raw)


# ── Cleanup ──────────────────────────────────────────────────────────────


def clean_text(value: Any) -> str:
    """Escape/whitespace/artifact cleanup applied to every extracted value.

    Raises:
        InvalidResponseText: if value is not a non-empty string.
    """
    if not isinstance(value, str) or not value:
        raise InvalidResponseText(
            f"Invalid response text: expected a string, got {type(value).__name__}",
            payload=value,
        )

    text = value.replace("\\n", "\n").strip()
    text = _LEADING_ARTIFACT.sub("", text, count=1)
    text = _TRAILING_ARTIFACT.sub("", text, count=1).strip()
    if not text:
        raise InvalidResponseText("Invalid response text: empty after cleanup", payload=value)
    return text


# ── Public API ───────────────────────────────────────────────────────────


def normalize(raw: Any) -> str:
    """Extract the display string from a decoded webhook body.

    Raises:
        UnrecognizedShape: no known response shape matched.
        InvalidResponseText: a shape matched but its value isn't text.
    """
    return clean_text(_extract(raw))


def normalize_response(raw: Any) -> NormalizedResponse:
    text = normalize(raw)
    return NormalizedResponse(text=text, has_markup=_MARKUP.search(text) is not None)


def describe_payload(raw: Any, limit: int = 500) -> Optional[str]:
    """Compact, truncated rendering of a raw payload for log lines."""
    if raw is None:
        return None
    try:
        rendered = json.dumps(raw, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        rendered = repr(raw)
    if len(rendered) > limit:
        rendered = rendered[:limit] + "..."
    return rendered
