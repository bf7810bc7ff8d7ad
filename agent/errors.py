"""
Chat Agent Errors
==================
Every failure a single chat turn can hit. The session catches all of
these at its boundary and turns them into the fallback assistant reply,
so none of them ever reach the widget user directly.

  UnrecognizedShape    — webhook body matches none of the known shapes
  InvalidResponseText  — a known shape matched, but the value isn't text
  TransportError       — network failure, timeout, or non-2xx status
  ConfigError          — missing or invalid agent configuration
  SessionBusyError     — a send arrived while another is in flight
"""

from __future__ import annotations

from typing import Any, Optional


class ChatAgentError(Exception):
    """Base class for all chat agent failures."""


class UnrecognizedShape(ChatAgentError):
    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class InvalidResponseText(ChatAgentError):
    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class TransportError(ChatAgentError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigError(ChatAgentError):
    pass


class SessionBusyError(ChatAgentError):
    """Raised to the caller, not converted to a fallback reply."""
