"""
Agent Config Store — Business Id → AgentConfig
================================================
Key-value store for per-business widget configuration.

Storage: In-memory dict. The production deployment keeps these rows in
its own database; anything that offers get/list/save/deactivate with the
same semantics can stand in for this class.
"""

from __future__ import annotations

import itertools
import logging
from typing import Optional

from agent.models import AgentConfig

logger = logging.getLogger("database.agents")


class AgentConfigStore:
    """In-memory AgentConfig store keyed by business_id."""

    def __init__(self):
        # business_id -> AgentConfig
        self._agents: dict[str, AgentConfig] = {}
        # business_id -> creation sequence number (newest-first listing)
        self._created_seq: dict[str, int] = {}
        self._seq = itertools.count()

    def get_agent_config(self, business_id: str) -> Optional[AgentConfig]:
        """Active config for a business, or None when unknown/inactive."""
        config = self._agents.get(business_id)
        if config is None or not config.is_active:
            return None
        return config

    def list_agents(self) -> list[AgentConfig]:
        """All active configs, most recently created first."""
        active = [c for c in self._agents.values() if c.is_active]
        return sorted(active, key=lambda c: self._created_seq[c.business_id], reverse=True)

    def save_agent(self, config: AgentConfig) -> AgentConfig:
        """Create or replace the config for config.business_id."""
        created = config.business_id not in self._agents
        self._agents[config.business_id] = config
        if created:
            self._created_seq[config.business_id] = next(self._seq)
        logger.info(
            f"Agent {'created' if created else 'updated'}: {config.business_id}"
        )
        return config

    def deactivate_agent(self, business_id: str) -> bool:
        """Soft-delete: the config stays but is no longer served."""
        config = self._agents.get(business_id)
        if config is None or not config.is_active:
            return False
        self._agents[business_id] = config.model_copy(update={"is_active": False})
        logger.info(f"Agent deactivated: {business_id}")
        return True

    def __len__(self) -> int:
        return len(self._agents)


# Process-wide store used by the HTTP routes.
_store = AgentConfigStore()


def get_store() -> AgentConfigStore:
    return _store


def set_store(store: AgentConfigStore) -> None:
    """Swap the shared store (tests, alternative backends)."""
    global _store
    _store = store
