"""
Message Formatters — Widget Display Structure
==============================================
Turns a normalized assistant reply into a rendering-agnostic structure
the widget can draw: one record per physical line, each made of inline
spans.

Line kinds:
  blank     — empty or whitespace-only
  bullet    — starts with "•" or "-" (marker stripped)
  numbered  — starts with "1. ", "2. ", ... (kept verbatim)
  plain     — everything else

Span kinds:
  text  — passed through unchanged
  bold  — **paired** markdown bold (an unmatched ** stays literal)
  link  — http(s) URLs, www. hosts and bare domains like critter.pet/faq

Booking links on critter.pet are shown as "booking.critter.pet" while
the href still points at the unmodified URL.

Used by: agent.chat_agent, channels.widget_handler
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class LineKind(str, Enum):
    BLANK = "blank"
    BULLET = "bullet"
    NUMBERED = "numbered"
    PLAIN = "plain"


class SpanKind(str, Enum):
    TEXT = "text"
    BOLD = "bold"
    LINK = "link"


# ── Structure ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Span:
    kind: SpanKind
    text: str
    href: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": self.kind.value, "text": self.text}
        if self.kind == SpanKind.LINK:
            data["displayText"] = self.text
            data["href"] = self.href
        return data


@dataclass(frozen=True)
class FormattedLine:
    kind: LineKind
    spans: tuple[Span, ...] = ()

    @property
    def text(self) -> str:
        return "".join(span.text for span in self.spans)

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "spans": [s.to_dict() for s in self.spans]}


@dataclass(frozen=True)
class FormattedContent:
    lines: tuple[FormattedLine, ...] = field(default_factory=tuple)

    @property
    def has_links(self) -> bool:
        return any(s.kind == SpanKind.LINK for line in self.lines for s in line.spans)

    def to_plain_text(self) -> str:
        """Flatten back to text. Bullets come back with a "• " marker."""
        out = []
        for line in self.lines:
            if line.kind == LineKind.BLANK:
                out.append("")
            elif line.kind == LineKind.BULLET:
                out.append(f"• {line.text}")
            else:
                out.append(line.text)
        return "\n".join(out)

    def to_dict(self) -> dict:
        return {"lines": [line.to_dict() for line in self.lines]}


# ── Patterns ─────────────────────────────────────────────────────────────

_BOLD = re.compile(r"\*\*(.*?)\*\*")
_BULLET_MARKER = re.compile(r"^[•-]\s*")
_NUMBERED = re.compile(r"^\d+\.\s")
_URL = re.compile(
    r"(https?://[^\s]+"
    r"|www\.[^\s]+"
    r"|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9]*\.[a-zA-Z]{2,}(?:\.[a-zA-Z]{2,})?(?:/[^\s]*)?)"
)

BOOKING_URL_MARKER = "critter.pet/booking"
BOOKING_DISPLAY = "booking.critter.pet"


# ── Inline processing ────────────────────────────────────────────────────


def display_url(url: str) -> str:
    if BOOKING_URL_MARKER in url:
        return BOOKING_DISPLAY
    return url


def link_href(url: str) -> str:
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"https://{url}"


def _link_spans(text: str) -> list[Span]:
    spans = []
    last = 0
    for match in _URL.finditer(text):
        if match.start() > last:
            spans.append(Span(SpanKind.TEXT, text[last:match.start()]))
        url = match.group(0)
        spans.append(Span(SpanKind.LINK, display_url(url), href=link_href(url)))
        last = match.end()
    if last < len(text):
        spans.append(Span(SpanKind.TEXT, text[last:]))
    return spans


def parse_inline(text: str) -> tuple[Span, ...]:
    """Split one line into text/bold/link spans."""
    spans: list[Span] = []
    last = 0
    for match in _BOLD.finditer(text):
        spans.extend(_link_spans(text[last:match.start()]))
        if match.group(1):
            spans.append(Span(SpanKind.BOLD, match.group(1)))
        last = match.end()
    spans.extend(_link_spans(text[last:]))
    return tuple(spans)


def classify_line(line: str) -> LineKind:
    stripped = line.strip()
    if not stripped:
        return LineKind.BLANK
    if stripped.startswith("•") or stripped.startswith("-"):
        return LineKind.BULLET
    if _NUMBERED.match(stripped):
        return LineKind.NUMBERED
    return LineKind.PLAIN


# ── Public API ───────────────────────────────────────────────────────────


def format_message(text: str) -> FormattedContent:
    """Format a normalized reply into line/span structure.

    Deterministic: the same text always yields an equal FormattedContent.
    """
    lines = []
    for raw_line in text.split("\n"):
        kind = classify_line(raw_line)
        if kind == LineKind.BLANK:
            lines.append(FormattedLine(kind))
        elif kind == LineKind.BULLET:
            content = _BULLET_MARKER.sub("", raw_line.strip(), count=1)
            lines.append(FormattedLine(kind, parse_inline(content)))
        else:
            lines.append(FormattedLine(kind, parse_inline(raw_line)))
    return FormattedContent(tuple(lines))


def _render_span(span: Span) -> str:
    if span.kind == SpanKind.BOLD:
        return f"<strong>{html.escape(span.text)}</strong>"
    if span.kind == SpanKind.LINK:
        return (
            f'<a href="{html.escape(span.href or "", quote=True)}" '
            f'target="_blank" rel="noopener noreferrer">{html.escape(span.text)}</a>'
        )
    return html.escape(span.text)


def render_html(content: FormattedContent) -> str:
    """HTML fragment for the embeddable widget. All text is escaped."""
    parts = []
    for line in content.lines:
        inner = "".join(_render_span(s) for s in line.spans)
        if line.kind == LineKind.BLANK:
            parts.append("<br>")
        elif line.kind == LineKind.BULLET:
            parts.append(f'<div class="bullet"><span>•</span> <span>{inner}</span></div>')
        else:
            parts.append(f'<div class="{line.kind.value}">{inner}</div>')
    return "".join(parts)
