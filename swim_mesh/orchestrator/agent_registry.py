"""Agent registry for capability discovery and health monitoring.

The registry is the only mutable state shared by concurrent requests. Writes
(registration, deregistration, health updates) are serialised by one lock;
descriptors are immutable and every status change swaps in a new descriptor,
so a lookup never observes a half-updated agent.
"""

import asyncio
import threading
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Iterable, FrozenSet
from urllib.parse import urlparse

from ..a2a import A2AClient, A2AException, A2ATimeoutError, A2AConnectionError
from ..utils.config import AgentConfig, HTTP_SCHEMES
from ..utils.logging import get_logger
from .exceptions import DuplicateAgentError, AgentNotFoundError

logger = get_logger("orchestrator")


class AgentStatus(str, Enum):
    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class AgentDescriptor:
    """Service record for one data-access agent.

    ``endpoint`` is either an A2A URL (``http://host:port/a2a``) or a
    ``local://name`` reference to an in-process agent.
    """
    id: str
    capabilities: FrozenSet[str]
    endpoint: str
    status: AgentStatus = AgentStatus.AVAILABLE
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    last_health_check: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.capabilities, frozenset):
            object.__setattr__(self, "capabilities", frozenset(self.capabilities))
        if not isinstance(self.status, AgentStatus):
            object.__setattr__(self, "status", AgentStatus(self.status))

    @property
    def scheme(self) -> str:
        return urlparse(self.endpoint).scheme

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "capabilities": sorted(self.capabilities),
            "endpoint": self.endpoint,
            "status": self.status.value,
            "description": self.description,
            "last_health_check": self.last_health_check,
        }


class AgentRegistry:
    """Process-wide registry of agents keyed by id, in registration order."""

    def __init__(self, client: Optional[A2AClient] = None):
        self._agents: "OrderedDict[str, AgentDescriptor]" = OrderedDict()
        self._lock = threading.RLock()
        self._client = client

    @classmethod
    def from_config(cls, agent_configs: Dict[str, AgentConfig],
                    client: Optional[A2AClient] = None) -> 'AgentRegistry':
        """Build a registry from the ``agents`` configuration section."""
        registry = cls(client=client)
        for name, agent_config in agent_configs.items():
            if not agent_config.enabled:
                continue
            registry.register(AgentDescriptor(
                id=name,
                capabilities=frozenset(agent_config.capabilities),
                endpoint=agent_config.endpoint,
                description=agent_config.description,
            ))
        return registry

    def _snapshot(self) -> List[AgentDescriptor]:
        with self._lock:
            return list(self._agents.values())

    def register(self, descriptor: AgentDescriptor):
        """Add an agent; raises DuplicateAgentError if the id is taken."""
        with self._lock:
            if descriptor.id in self._agents:
                raise DuplicateAgentError(descriptor.id)
            self._agents[descriptor.id] = descriptor

        logger.info("agent_registered",
            operation="register",
            agent_id=descriptor.id,
            endpoint=descriptor.endpoint,
            capabilities=sorted(descriptor.capabilities)
        )

    def deregister(self, agent_id: str) -> bool:
        """Remove an agent. Returns False if it was not registered."""
        with self._lock:
            removed = self._agents.pop(agent_id, None)

        if removed is None:
            return False
        logger.info("agent_deregistered", operation="deregister", agent_id=agent_id)
        return True

    def get(self, agent_id: str) -> Optional[AgentDescriptor]:
        with self._lock:
            return self._agents.get(agent_id)

    def list_agents(self) -> List[AgentDescriptor]:
        return self._snapshot()

    def find(self, capability: str) -> List[AgentDescriptor]:
        """Available agents serving ``capability``, in registration order."""
        matches = [
            agent for agent in self._snapshot()
            if agent.status == AgentStatus.AVAILABLE and agent.has_capability(capability)
        ]
        logger.debug("capability_query",
            capability=capability,
            agents_found=len(matches),
            agent_ids=[agent.id for agent in matches]
        )
        return matches

    def capabilities(self) -> List[str]:
        """Every capability tag offered by at least one registered agent."""
        tags = set()
        for agent in self._snapshot():
            tags.update(agent.capabilities)
        return sorted(tags)

    def set_status(self, agent_id: str, status: AgentStatus) -> AgentDescriptor:
        """Swap in a descriptor with a new status; raises AgentNotFoundError."""
        status = AgentStatus(status)
        with self._lock:
            current = self._agents.get(agent_id)
            if current is None:
                raise AgentNotFoundError(agent_id)
            if current.status == status:
                return current
            updated = replace(
                current,
                status=status,
                last_health_check=datetime.now(timezone.utc).isoformat()
            )
            self._agents[agent_id] = updated

        logger.info("agent_status_changed",
            agent_id=agent_id,
            old_status=current.status.value,
            new_status=status.value
        )
        return updated

    def _mark(self, agent_id: str, status: AgentStatus):
        # Lookup and swap under one lock so a concurrent deregister cannot interleave
        with self._lock:
            if agent_id in self._agents:
                self.set_status(agent_id, status)

    def mark_unavailable(self, agent_id: str):
        """Idempotent; unknown ids are ignored."""
        self._mark(agent_id, AgentStatus.UNAVAILABLE)

    def mark_degraded(self, agent_id: str):
        self._mark(agent_id, AgentStatus.DEGRADED)

    def mark_available(self, agent_id: str):
        self._mark(agent_id, AgentStatus.AVAILABLE)

    async def health_check_agent(self, agent_id: str) -> bool:
        """Fetch one agent's agent card and update its status.

        In-process agents have no agent card; they count as healthy and
        are restored to available.
        """
        agent = self.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)

        if agent.scheme not in HTTP_SCHEMES:
            self.mark_available(agent_id)
            return True

        if self._client is None:
            self._client = A2AClient()

        try:
            card = await self._client.get_agent_card(agent.endpoint)
        except (A2ATimeoutError, A2AConnectionError) as e:
            logger.warning("health_check_unreachable",
                agent_id=agent_id,
                endpoint=agent.endpoint,
                error=str(e),
                error_type=type(e).__name__
            )
            self.mark_unavailable(agent_id)
            return False
        except A2AException as e:
            logger.warning("health_check_error",
                agent_id=agent_id,
                endpoint=agent.endpoint,
                error=str(e),
                error_type=type(e).__name__
            )
            self.mark_degraded(agent_id)
            return False

        logger.debug("health_check_ok",
            agent_id=agent_id,
            card_name=card.name,
            card_capabilities=card.capabilities
        )
        self.mark_available(agent_id)
        return True

    async def _check_if_registered(self, agent_id: str) -> Optional[bool]:
        try:
            return await self.health_check_agent(agent_id)
        except AgentNotFoundError:
            logger.info("health_check_skipped", agent_id=agent_id, reason="deregistered")
            return None

    async def health_check_all(self, agent_ids: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """Check agents concurrently; returns id -> healthy.

        Agents deregistered before or during the sweep are left out.
        """
        ids = list(agent_ids) if agent_ids is not None else [a.id for a in self._snapshot()]
        outcomes = await asyncio.gather(*(self._check_if_registered(agent_id) for agent_id in ids))
        results = {agent_id: ok for agent_id, ok in zip(ids, outcomes) if ok is not None}

        logger.info("health_check_completed",
            total_agents=len(results),
            healthy_agents=sum(1 for ok in results.values() if ok)
        )
        return results

    def stats(self) -> Dict[str, Any]:
        agents = self._snapshot()
        by_status = {status.value: 0 for status in AgentStatus}
        for agent in agents:
            by_status[agent.status.value] += 1
        return {
            "total_agents": len(agents),
            "by_status": by_status,
            "capabilities": self.capabilities(),
        }
