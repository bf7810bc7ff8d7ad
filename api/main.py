"""
Chat Widget Builder — FastAPI Application
==========================================
Main application entry point: lifecycle management, widget/admin routes
and health checks.

Startup:
  1. Open the shared httpx client used for outbound webhook calls
  2. Seed the demo agent config so the widget works out of the box
  3. Register the widget router

Shutdown:
  1. Close the httpx client

Run:
  uvicorn api.main:app --host 0.0.0.0 --port 8000

Environment:
  LOG_LEVEL               — Root log level (default INFO)
  CORS_ORIGINS            — Comma-separated allowed origins
  WEBHOOK_TIMEOUT_SECONDS — Outbound webhook timeout (default 30)
  SEED_DEMO_AGENT         — "false" to skip the demo config
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent.config import validate_config
from channels.webhook_client import WEBHOOK_TIMEOUT_SECONDS
from channels.widget_handler import router as widget_router
from channels.widget_handler import set_http_client
from database.agent_store import get_store

logger = logging.getLogger("api")
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

# ── Configuration ────────────────────────────────────────────────────────

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",")
SEED_DEMO_AGENT = os.environ.get("SEED_DEMO_AGENT", "true").lower() != "false"


# ── Lifespan ────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown."""
    logger.info("Starting Chat Widget Builder API...")

    client = httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS)
    app.state.http_client = client
    set_http_client(client)
    logger.info(f"Webhook client ready (timeout={WEBHOOK_TIMEOUT_SECONDS}s)")

    store = get_store()
    if SEED_DEMO_AGENT and store.get_agent_config("demo") is None:
        store.save_agent(validate_config())
        logger.info("Seeded demo agent config")

    logger.info("API startup complete")
    yield

    logger.info("Shutting down API...")
    set_http_client(None)
    await client.aclose()
    logger.info("Webhook client closed")


# ── App ──────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Chat Widget Builder",
    description="Configurable per-business chat widgets backed by n8n webhooks",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(widget_router)


# ── Health Checks ────────────────────────────────────────────────────────


@app.get("/health", tags=["health"])
async def health_check():
    return {"status": "ok", "agents": len(get_store())}
