"""
n8n Webhook Client — Outbound Transport
========================================
Posts one user turn to the business's configured n8n webhook and hands
back the decoded JSON body.

Outgoing request (wire shape is frozen, workflows depend on it):
  POST <webhook_url>
  Content-Type: application/json
  {message, userId, sessionId, businessId, businessName, timestamp}

Failure mapping:
  timeout / connection error / non-2xx  → TransportError
  2xx with a body that isn't JSON       → UnrecognizedShape

Environment:
  WEBHOOK_TIMEOUT_SECONDS — per-request timeout (default 30)
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from agent.errors import TransportError, UnrecognizedShape

logger = logging.getLogger("channels.webhook")

# ── Configuration ────────────────────────────────────────────────────────

WEBHOOK_TIMEOUT_SECONDS = float(os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "30"))


# ── Payload ──────────────────────────────────────────────────────────────


def build_payload(
    message: str,
    user_id: str,
    session_id: str,
    business_id: str,
    business_name: str,
    timestamp: Optional[datetime] = None,
) -> dict:
    """Build the outbound webhook body (camelCase keys, ISO-8601 timestamp)."""
    timestamp = timestamp or datetime.now(timezone.utc)
    return {
        "message": message,
        "userId": user_id,
        "sessionId": session_id,
        "businessId": business_id,
        "businessName": business_name,
        "timestamp": timestamp.isoformat().replace("+00:00", "Z"),
    }


# ── Transport ────────────────────────────────────────────────────────────


async def _post(client: httpx.AsyncClient, url: str, payload: dict, timeout: float) -> httpx.Response:
    return await client.post(
        url,
        json=payload,
        headers={"Content-Type": "application/json"},
        timeout=timeout,
    )


async def post_to_webhook(
    url: str,
    payload: dict,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
) -> Any:
    """POST payload to the webhook and return the decoded JSON body.

    Args:
        url: The business's configured webhook URL
        payload: Body built by build_payload()
        client: Shared AsyncClient; a short-lived one is opened if omitted
        timeout: Seconds before the request is abandoned

    Raises:
        TransportError: network failure, timeout, or non-2xx status.
        UnrecognizedShape: 2xx response whose body is not JSON.
    """
    timeout = WEBHOOK_TIMEOUT_SECONDS if timeout is None else timeout

    try:
        if client is None:
            async with httpx.AsyncClient() as own_client:
                response = await _post(own_client, url, payload, timeout)
        else:
            response = await _post(client, url, payload, timeout)
    except httpx.TimeoutException as e:
        logger.error(f"Webhook request timed out after {timeout}s: {url}")
        raise TransportError(f"Webhook request timed out after {timeout}s") from e
    except httpx.HTTPError as e:
        logger.error(f"Webhook request failed: {url}: {e}")
        raise TransportError(f"Webhook request failed: {e}") from e

    logger.info(f"Webhook response: status={response.status_code}, url={url}")

    if not response.is_success:
        logger.error(
            f"Webhook error ({response.status_code}): {response.text[:500]}"
        )
        raise TransportError(
            f"Webhook request failed: {response.status_code}",
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as e:
        raise UnrecognizedShape(
            "Webhook response body is not valid JSON", payload=response.text[:500]
        ) from e
