"""
Shared Test Fixtures — Chat Widget Builder
============================================
Provides reusable fixtures for all test modules.

Usage:
  pytest tests/ -v
"""

from __future__ import annotations

import json
import os
import sys

import httpx
import pytest

# Ensure the project packages are importable without installation
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))


# ── Agent Config ─────────────────────────────────────────────────────────


@pytest.fixture
def agent_config():
    """Validated config for a pet-care business."""
    from agent.models import AgentConfig

    return AgentConfig(
        business_id="critter-pets",
        business_name="Critter Pet Care",
        webhook_url="https://n8n.example.com/webhook/critter",
        welcome_message="Hi! Ask me about grooming, walking or boarding.",
    )


# ── Mock Webhook ─────────────────────────────────────────────────────────


class WebhookRecorder:
    """MockTransport handler that records requests and replays responses.

    Each queued item is either an httpx.Response or an exception instance
    to raise. The last item is reused once the queue runs dry.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def webhook():
    """Factory: webhook(*responses) → WebhookRecorder."""
    return WebhookRecorder


@pytest.fixture
def n8n_reply():
    """The happy-path body shape n8n workflows return."""
    def _reply(text: str, status: int = 200) -> httpx.Response:
        return httpx.Response(status, json=[{"output": text}])
    return _reply


# ── FastAPI Test Client ──────────────────────────────────────────────────


@pytest.fixture
def agent_store(agent_config):
    """Fresh AgentConfigStore seeded with agent_config, swapped in globally."""
    from database.agent_store import AgentConfigStore, get_store, set_store

    previous = get_store()
    store = AgentConfigStore()
    store.save_agent(agent_config)
    set_store(store)
    yield store
    set_store(previous)


@pytest.fixture
def test_client(agent_store):
    """FastAPI TestClient whose webhook calls go to a WebhookRecorder.

    Yields (client, recorder); tests queue responses on recorder.responses.
    """
    from fastapi.testclient import TestClient

    from api.main import app
    from channels.widget_handler import SessionRegistry, reset_sessions, set_http_client

    recorder = WebhookRecorder(
        httpx.Response(200, json=[{"output": "Hello! How can I help your pet today?"}])
    )
    set_http_client(recorder.client())
    reset_sessions(SessionRegistry())

    yield TestClient(app), recorder

    set_http_client(None)
    reset_sessions(SessionRegistry())
