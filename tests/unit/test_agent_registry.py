"""
Unit tests for the agent registry.

Tests cover:
- Registration, duplicate ids and deregistration
- Capability lookup in registration order, available agents only
- Copy-on-write status changes
- Health checks over A2A and for in-process agents
- Lookups concurrent with writers
"""

import threading
from unittest.mock import AsyncMock, Mock

import pytest

from swim_mesh.a2a import A2AException, A2ATimeoutError, AgentCard
from swim_mesh.orchestrator import (
    AgentDescriptor,
    AgentNotFoundError,
    AgentRegistry,
    AgentStatus,
    DuplicateAgentError,
)
from swim_mesh.utils.config import AgentConfig


def descriptor(agent_id, *capabilities, endpoint=None, **kwargs):
    return AgentDescriptor(
        id=agent_id,
        capabilities=frozenset(capabilities),
        endpoint=endpoint or f"http://{agent_id}:8000/a2a",
        **kwargs
    )


class TestRegistration:
    """Registering and removing agents."""

    def test_register_and_get(self, registry):
        registry.register(descriptor("fdps-agent", "flight-position"))

        agent = registry.get("fdps-agent")
        assert agent.status == AgentStatus.AVAILABLE
        assert agent.has_capability("flight-position")

    def test_duplicate_id_rejected(self, registry):
        registry.register(descriptor("fdps-agent", "flight-position"))

        with pytest.raises(DuplicateAgentError) as exc_info:
            registry.register(descriptor("fdps-agent", "surface-movement"))

        assert exc_info.value.agent_id == "fdps-agent"
        assert registry.get("fdps-agent").capabilities == frozenset({"flight-position"})

    def test_deregister(self, registry):
        registry.register(descriptor("fdps-agent", "flight-position"))

        assert registry.deregister("fdps-agent") is True
        assert registry.deregister("fdps-agent") is False
        assert registry.find("flight-position") == []

    def test_from_config_skips_disabled(self):
        registry = AgentRegistry.from_config({
            "fdps-agent": AgentConfig(name="fdps-agent", endpoint="http://localhost:8101/a2a",
                                      capabilities=["flight-position"]),
            "smes-agent": AgentConfig(name="smes-agent", endpoint="http://localhost:8102/a2a",
                                      capabilities=["surface-movement"], enabled=False),
        })

        assert [a.id for a in registry.list_agents()] == ["fdps-agent"]

    def test_descriptor_coerces_types(self):
        agent = AgentDescriptor(id="x", capabilities=["flight-plan"], endpoint="local://x",
                                status="degraded")

        assert agent.capabilities == frozenset({"flight-plan"})
        assert agent.status == AgentStatus.DEGRADED
        assert agent.scheme == "local"


class TestCapabilityLookup:
    """find() returns available agents in registration order."""

    def test_registration_order(self, registry):
        registry.register(descriptor("fdps-east", "flight-position"))
        registry.register(descriptor("tfms-agent", "flight-plan"))
        registry.register(descriptor("fdps-west", "flight-position"))

        assert [a.id for a in registry.find("flight-position")] == ["fdps-east", "fdps-west"]

    def test_unavailable_and_degraded_excluded(self, registry):
        registry.register(descriptor("fdps-east", "flight-position"))
        registry.register(descriptor("fdps-west", "flight-position"))
        registry.register(descriptor("fdps-north", "flight-position"))

        registry.mark_unavailable("fdps-east")
        registry.mark_degraded("fdps-north")

        assert [a.id for a in registry.find("flight-position")] == ["fdps-west"]

    def test_unknown_capability(self, registry):
        registry.register(descriptor("fdps-agent", "flight-position"))
        assert registry.find("surface-movement") == []

    def test_capabilities_and_stats(self, registry):
        registry.register(descriptor("fdps-agent", "flight-position"))
        registry.register(descriptor("tfms-agent", "flight-plan"))
        registry.mark_unavailable("tfms-agent")

        assert registry.capabilities() == ["flight-plan", "flight-position"]
        stats = registry.stats()
        assert stats["total_agents"] == 2
        assert stats["by_status"] == {"available": 1, "degraded": 0, "unavailable": 1}


class TestStatusChanges:
    """Descriptors are replaced, never mutated."""

    def test_set_status_swaps_descriptor(self, registry):
        registry.register(descriptor("fdps-agent", "flight-position"))
        before = registry.get("fdps-agent")

        after = registry.set_status("fdps-agent", AgentStatus.DEGRADED)

        assert before.status == AgentStatus.AVAILABLE
        assert after.status == AgentStatus.DEGRADED
        assert after is not before
        assert after.last_health_check is not None

    def test_set_status_unknown_agent(self, registry):
        with pytest.raises(AgentNotFoundError):
            registry.set_status("ghost", AgentStatus.AVAILABLE)

    def test_mark_helpers_are_idempotent(self, registry):
        registry.register(descriptor("fdps-agent", "flight-position"))

        registry.mark_unavailable("fdps-agent")
        registry.mark_unavailable("fdps-agent")
        registry.mark_unavailable("ghost")

        assert registry.get("fdps-agent").status == AgentStatus.UNAVAILABLE

        registry.mark_available("fdps-agent")
        assert [a.id for a in registry.find("flight-position")] == ["fdps-agent"]


class TestHealthChecks:
    """Health checks fetch the agent card."""

    @pytest.fixture
    def client(self, agent_card):
        client = Mock()
        client.get_agent_card = AsyncMock(return_value=AgentCard.from_dict(agent_card))
        return client

    @pytest.mark.asyncio
    async def test_healthy_agent_becomes_available(self, client):
        registry = AgentRegistry(client=client)
        registry.register(descriptor("fdps-agent", "flight-position", status=AgentStatus.DEGRADED))

        assert await registry.health_check_agent("fdps-agent") is True
        assert registry.get("fdps-agent").status == AgentStatus.AVAILABLE
        client.get_agent_card.assert_awaited_once_with("http://fdps-agent:8000/a2a")

    @pytest.mark.asyncio
    async def test_unreachable_agent_becomes_unavailable(self, client):
        client.get_agent_card.side_effect = A2ATimeoutError("timed out")
        registry = AgentRegistry(client=client)
        registry.register(descriptor("fdps-agent", "flight-position"))

        assert await registry.health_check_agent("fdps-agent") is False
        assert registry.get("fdps-agent").status == AgentStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_erroring_agent_becomes_degraded(self, client):
        client.get_agent_card.side_effect = A2AException("Agent error: boom", code=-32603)
        registry = AgentRegistry(client=client)
        registry.register(descriptor("fdps-agent", "flight-position"))

        assert await registry.health_check_agent("fdps-agent") is False
        assert registry.get("fdps-agent").status == AgentStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_local_agents_skip_card_fetch(self, client):
        registry = AgentRegistry(client=client)
        registry.register(descriptor("adherence-engine", "adherence", endpoint="local://adherence-engine"))

        assert await registry.health_check_agent("adherence-engine") is True
        client.get_agent_card.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_health_check_all(self, client):
        async def card_for(endpoint):
            if "tfms" in endpoint:
                raise A2ATimeoutError("timed out")
            return AgentCard(name="fdps-agent", version="1", description="", capabilities=[])

        client.get_agent_card.side_effect = card_for
        registry = AgentRegistry(client=client)
        registry.register(descriptor("fdps-agent", "flight-position"))
        registry.register(descriptor("tfms-agent", "flight-plan"))

        results = await registry.health_check_all()

        assert results == {"fdps-agent": True, "tfms-agent": False}

    @pytest.mark.asyncio
    async def test_unknown_agent(self, client):
        registry = AgentRegistry(client=client)
        with pytest.raises(AgentNotFoundError):
            await registry.health_check_agent("ghost")

    @pytest.mark.asyncio
    async def test_local_agent_restored(self, client):
        registry = AgentRegistry(client=client)
        registry.register(descriptor("adherence-engine", "adherence", endpoint="local://adherence-engine",
                                     status=AgentStatus.DEGRADED))

        assert await registry.health_check_agent("adherence-engine") is True
        assert [a.id for a in registry.find("adherence")] == ["adherence-engine"]

    @pytest.mark.asyncio
    async def test_health_check_all_skips_deregistered_agents(self, client):
        registry = AgentRegistry(client=client)
        registry.register(descriptor("fdps-agent", "flight-position"))
        registry.register(descriptor("tfms-agent", "flight-plan"))

        async def card_for(endpoint):
            registry.deregister("tfms-agent")
            return AgentCard(name="fdps-agent", version="1", description="", capabilities=[])

        client.get_agent_card.side_effect = card_for

        results = await registry.health_check_all(["fdps-agent", "tfms-agent", "ghost"])

        assert results == {"fdps-agent": True}


class TestConcurrentAccess:
    """Lookups running alongside writers only ever see whole descriptors."""

    ROUNDS = 200

    def test_readers_see_consistent_descriptors(self, registry):
        problems = []
        done = threading.Event()

        def check(agent):
            if not isinstance(agent, AgentDescriptor):
                problems.append(f"not a descriptor: {agent!r}")
                return
            if agent.endpoint != f"local://{agent.id}" or agent.description != f"{agent.id} feed":
                problems.append(f"mixed fields: {agent!r}")
            if agent.capabilities != frozenset({"flight-position"}):
                problems.append(f"capabilities: {agent!r}")
            if agent.status != AgentStatus.AVAILABLE and agent.last_health_check is None:
                problems.append(f"status without timestamp: {agent!r}")

        def writer():
            try:
                for i in range(self.ROUNDS):
                    agent_id = f"fdps-{i % 5}"
                    registry.register(descriptor(agent_id, "flight-position", endpoint=f"local://{agent_id}",
                                                 description=f"{agent_id} feed"))
                    registry.set_status(agent_id, AgentStatus.DEGRADED)
                    registry.set_status(agent_id, AgentStatus.AVAILABLE)
                    registry.deregister(agent_id)
            except Exception as e:
                problems.append(f"writer: {type(e).__name__}: {e}")
            finally:
                done.set()

        def marker():
            try:
                while not done.is_set():
                    for i in range(5):
                        registry.mark_unavailable(f"fdps-{i}")
                        registry.mark_available(f"fdps-{i}")
            except Exception as e:
                problems.append(f"marker: {type(e).__name__}: {e}")

        def reader():
            try:
                while not done.is_set():
                    for agent in registry.find("flight-position"):
                        check(agent)
                        if agent.status != AgentStatus.AVAILABLE:
                            problems.append(f"find returned {agent.status}")
                    for i in range(5):
                        agent = registry.get(f"fdps-{i}")
                        if agent is not None:
                            check(agent)
            except Exception as e:
                problems.append(f"reader: {type(e).__name__}: {e}")

        threads = [threading.Thread(target=writer), threading.Thread(target=marker)]
        threads += [threading.Thread(target=reader) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert problems == []
        assert registry.list_agents() == []
