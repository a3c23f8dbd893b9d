"""
Agent Registry for Rendezvous.

The only shared mutable state of the server: agent id -> (agent, connection).
Entries are written by announces and removed only when their expiry passes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Protocol, Tuple

from .protocol import Agent

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything the server can push a text frame to (e.g. a WebSocket)."""

    async def send_text(self, data: str) -> None:
        ...


RegistryEntry = Tuple[Agent, Connection]


class AgentRegistry:
    """
    Registry of announced agents and their live connections.

    The plain methods do no locking. Callers that prune and then read or
    write must do both inside one ``session()`` so that a concurrent
    handler never observes the registry between the two steps.

    Usage:
        registry = AgentRegistry()

        async with registry.session():
            registry.prune(now_ms())
            registry.register(agent, websocket)
    """

    def __init__(self):
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator["AgentRegistry"]:
        """Hold exclusive access to the registry."""
        async with self._lock:
            yield self

    def register(self, agent: Agent, connection: Connection) -> None:
        """Insert or overwrite the entry for ``agent.id``."""
        replaced = agent.id in self._entries
        self._entries[agent.id] = (agent, connection)
        logger.debug(f"{'Refreshed' if replaced else 'Registered'} agent {agent.id} until {agent.expiry}")

    def lookup(self, agent_id: str) -> Optional[RegistryEntry]:
        return self._entries.get(agent_id)

    def list_active(self) -> List[Agent]:
        """Snapshot of every registered agent."""
        return [agent for agent, _ in self._entries.values()]

    def prune(self, now: int) -> List[str]:
        """Remove every entry whose expiry is at or before ``now``."""
        expired = [
            agent_id for agent_id, (agent, _) in self._entries.items()
            if agent.expiry <= now
        ]
        for agent_id in expired:
            del self._entries[agent_id]
        if expired:
            logger.info(f"Pruned {len(expired)} expired agent(s): {', '.join(expired)}")
        return expired

    def connections(self) -> int:
        """Number of distinct connections referenced by the registry."""
        return len({id(connection) for _, connection in self._entries.values()})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._entries
