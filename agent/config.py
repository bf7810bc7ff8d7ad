"""
Agent Configuration Defaults
=============================
Fallback widget settings and validation for per-business AgentConfig.

Partial configs coming from the admin form or the store are merged over
FALLBACK_CONFIG, so a business only has to supply what differs.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from .errors import ConfigError
from .models import AgentConfig

logger = logging.getLogger("agent.config")

FALLBACK_CONFIG: dict[str, Any] = {
    "business_id": "demo",
    "business_name": "Demo Business",
    "webhook_url": "https://example.com/webhook",
    "position": "bottom-right",
    "primary_color": "#3b82f6",
    "secondary_color": "#1e40af",
    "welcome_message": "Hello! How can I help you today?",
    "width": 350,
    "height": 500,
    "show_timestamp": True,
    "enable_typing_indicator": True,
}


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def is_valid_webhook_url(url: Optional[str]) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_config(partial: Optional[dict[str, Any]] = None) -> AgentConfig:
    """Merge a partial config over the fallback and validate it.

    Accepts both snake_case and camelCase keys (the widget and admin UI
    send camelCase).

    Raises:
        ConfigError: if any field fails validation or the webhook URL
            is not an absolute http(s) URL.
    """
    merged = dict(FALLBACK_CONFIG)
    for key, value in (partial or {}).items():
        merged[_snake_case(key)] = value

    try:
        config = AgentConfig.model_validate(merged)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        logger.warning(f"Rejected agent config: invalid fields [{fields}]")
        raise ConfigError(f"Invalid agent configuration: {fields}") from e

    if not is_valid_webhook_url(config.webhook_url):
        logger.warning(
            f"Rejected agent config for {config.business_id}: "
            f"bad webhook URL {config.webhook_url!r}"
        )
        raise ConfigError(f"Invalid webhook URL: {config.webhook_url!r}")

    return config
