"""
Widget API Tests — Chat, Feedback, Agent Config Routes
========================================================
Tests for the FastAPI router the widget and admin dashboard talk to.
Outbound webhook calls go to a WebhookRecorder (see conftest.py).

Run:
  pytest tests/test_widget_api.py -v
"""

from __future__ import annotations

import httpx
import pytest

from agent.chat_agent import FALLBACK_MESSAGE, ChatSession, SessionState
from agent.models import ConversationSession
from channels import widget_handler
from channels.widget_handler import SessionRegistry, reset_sessions


def _chat(client, message="Can I book a grooming appointment?", **extra):
    body = {"message": message, "businessId": "critter-pets", **extra}
    return client.post("/api/chat", json=body)


# ═══════════════════════════════════════════════════════════════════════
# Chat
# ═══════════════════════════════════════════════════════════════════════


class TestChatEndpoint:

    def test_successful_turn(self, test_client):
        client, recorder = test_client
        response = _chat(client)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        reply = data["response"]
        assert reply["message"] == "Hello! How can I help your pet today?"
        assert reply["intent"] == "booking"
        assert reply["confidence"] == 0.8
        assert reply["requiresHuman"] is False
        assert reply["hasMarkup"] is False
        assert reply["formatted"]["lines"][0]["type"] == "plain"
        assert reply["metadata"]["businessId"] == "critter-pets"
        assert reply["metadata"]["sessionId"].startswith("session_")
        assert len(recorder.requests) == 1

    def test_session_reused(self, test_client):
        client, recorder = test_client
        first = _chat(client, sessionId="session_widget_1", userId="user_abc12345")
        second = _chat(client, message="How much is it?", sessionId="session_widget_1")

        assert first.status_code == second.status_code == 200
        assert [p["sessionId"] for p in recorder.payloads] == ["session_widget_1"] * 2
        assert [p["userId"] for p in recorder.payloads] == ["user_abc12345"] * 2

        analytics = client.get("/api/chat/session_widget_1/analytics").json()
        assert analytics["analytics"]["totalMessages"] == 4
        assert analytics["analytics"]["commonIntents"] == {"booking": 1, "pricing": 1}

    def test_webhook_failure_is_still_200(self, test_client):
        """Transport problems come back as the fallback reply, not a 5xx."""
        client, recorder = test_client
        recorder.responses = [httpx.Response(502, text="Bad Gateway")]

        response = _chat(client)

        assert response.status_code == 200
        reply = response.json()["response"]
        assert reply["message"] == FALLBACK_MESSAGE
        assert reply["intent"] == "error"
        assert reply["confidence"] == 0
        assert reply["requiresHuman"] is True

    def test_unknown_business(self, test_client):
        client, _ = test_client
        response = client.post("/api/chat", json={"message": "hi", "businessId": "nope"})
        assert response.status_code == 404

    def test_blank_message(self, test_client):
        client, _ = test_client
        assert _chat(client, message="   ").status_code == 422
        assert _chat(client, message="").status_code == 422

    def test_session_of_other_business(self, test_client, agent_store, agent_config):
        client, _ = test_client
        agent_store.save_agent(agent_config.model_copy(update={"business_id": "other-biz"}))
        _chat(client, sessionId="session_shared")

        response = client.post(
            "/api/chat",
            json={"message": "hi there", "businessId": "other-biz", "sessionId": "session_shared"},
        )
        assert response.status_code == 400

    def test_analytics_unknown_session(self, test_client):
        client, _ = test_client
        assert client.get("/api/chat/session_missing/analytics").status_code == 404


# ═══════════════════════════════════════════════════════════════════════
# Feedback
# ═══════════════════════════════════════════════════════════════════════


class TestFeedbackEndpoint:

    def test_feedback_on_live_session(self, test_client):
        client, _ = test_client
        reply = _chat(client, sessionId="session_fb").json()["response"]

        response = client.post("/api/feedback", json={
            "messageId": reply["messageId"],
            "rating": "helpful",
            "businessId": "critter-pets",
            "sessionId": "session_fb",
        })

        assert response.status_code == 200
        analytics = client.get("/api/chat/session_fb/analytics").json()
        assert analytics["analytics"]["satisfactionScore"] == 100

    def test_feedback_without_session_accepted(self, test_client):
        client, _ = test_client
        response = client.post("/api/feedback", json={
            "messageId": "msg_unknown",
            "rating": "not-helpful",
            "businessId": "critter-pets",
            "comment": "Didn't answer my question",
        })
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_invalid_rating(self, test_client):
        client, _ = test_client
        response = client.post("/api/feedback", json={
            "messageId": "msg_1", "rating": "meh", "businessId": "critter-pets",
        })
        assert response.status_code == 422


# ═══════════════════════════════════════════════════════════════════════
# Agent Configs
# ═══════════════════════════════════════════════════════════════════════


class TestAgentEndpoints:

    def test_get_agent(self, test_client):
        client, _ = test_client
        data = client.get("/api/agents/critter-pets").json()
        assert data["businessId"] == "critter-pets"
        assert data["webhookUrl"] == "https://n8n.example.com/webhook/critter"
        assert data["position"] == "bottom-right"

    def test_create_with_defaults(self, test_client):
        client, _ = test_client
        response = client.post("/api/agents", json={
            "businessId": "paws-spa",
            "businessName": "Paws Spa",
            "webhookUrl": "https://n8n.example.com/webhook/paws",
            "primaryColor": "#ff6600",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["primaryColor"] == "#ff6600"
        assert data["width"] == 350
        assert data["welcomeMessage"] == "Hello! How can I help you today?"

        listed = client.get("/api/agents").json()["agents"]
        assert [a["businessId"] for a in listed] == ["paws-spa", "critter-pets"]

    def test_create_rejects_bad_webhook(self, test_client):
        client, _ = test_client
        response = client.post("/api/agents", json={
            "businessId": "bad-hook", "webhookUrl": "ftp://example.com/hook",
        })
        assert response.status_code == 422

    @pytest.mark.parametrize("body,missing", [
        ({"businessId": "newbiz"}, "businessName, webhookUrl"),
        ({"businessName": "Nameless", "webhookUrl": "https://n8n.example.com/webhook/x"}, "businessId"),
        ({"businessId": "newbiz", "businessName": "New Biz", "webhookUrl": "  "}, "webhookUrl"),
    ])
    def test_create_requires_identifying_fields(self, test_client, body, missing):
        """No defaults are filled in for businessId, businessName or webhookUrl."""
        client, _ = test_client
        response = client.post("/api/agents", json=body)

        assert response.status_code == 400
        assert response.json()["detail"] == f"Missing required fields: {missing}"
        assert client.get("/api/agents/newbiz").status_code == 404

    def test_delete_deactivates(self, test_client):
        client, _ = test_client
        assert client.delete("/api/agents/critter-pets").status_code == 200
        assert client.get("/api/agents/critter-pets").status_code == 404
        assert client.delete("/api/agents/critter-pets").status_code == 404
        assert _chat(client).status_code == 404


class TestHealth:

    def test_health(self, test_client):
        client, _ = test_client
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


# ═══════════════════════════════════════════════════════════════════════
# Session Registry
# ═══════════════════════════════════════════════════════════════════════


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _open(agent_config, session_id):
    return ChatSession(
        agent_config,
        session=ConversationSession(business_id=agent_config.business_id, session_id=session_id),
    )


class TestSessionRegistry:
    """Live widget sessions are bounded by idle time and count."""

    def test_idle_sessions_expire(self, agent_config):
        clock = FakeClock()
        registry = SessionRegistry(max_sessions=10, idle_ttl=60, clock=clock)
        registry.add(_open(agent_config, "session_a"))
        registry.add(_open(agent_config, "session_b"))

        clock.now += 30
        assert registry.get("session_b") is not None
        clock.now += 45

        assert registry.get("session_a") is None
        assert "session_b" in registry
        assert len(registry) == 1

    def test_least_recently_used_dropped_at_capacity(self, agent_config):
        clock = FakeClock()
        registry = SessionRegistry(max_sessions=2, idle_ttl=3600, clock=clock)
        registry.add(_open(agent_config, "session_a"))
        registry.add(_open(agent_config, "session_b"))
        registry.get("session_a")

        registry.add(_open(agent_config, "session_c"))

        assert "session_a" in registry
        assert "session_b" not in registry
        assert "session_c" in registry

    def test_busy_session_kept(self, agent_config):
        """A session with a request in flight survives expiry."""
        clock = FakeClock()
        registry = SessionRegistry(max_sessions=10, idle_ttl=60, clock=clock)
        busy = _open(agent_config, "session_busy")
        busy.state = SessionState.SENDING
        registry.add(busy)

        clock.now += 120
        assert registry.evict() == 0
        assert "session_busy" in registry

    def test_chat_route_stays_bounded(self, test_client):
        """Many sessionless chats never hold more than max_sessions."""
        client, _ = test_client
        reset_sessions(SessionRegistry(max_sessions=5))

        for _ in range(20):
            assert _chat(client).status_code == 200

        assert len(widget_handler._sessions) == 5

    def test_expired_session_id_starts_fresh(self, test_client):
        """A widget returning after expiry gets a clean history under the same id."""
        client, _ = test_client
        clock = FakeClock()
        reset_sessions(SessionRegistry(idle_ttl=60, clock=clock))

        _chat(client, sessionId="session_return")
        clock.now += 120
        _chat(client, sessionId="session_return")

        analytics = client.get("/api/chat/session_return/analytics").json()
        assert analytics["analytics"]["totalMessages"] == 2
