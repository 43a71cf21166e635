"""
Global pytest configuration and fixtures for the SWIM agent mesh tests.

Fixtures are grouped by purpose: environment isolation, registry and agents,
flight data, and language model mocks.
"""

import os
import tempfile

# Logs from the test run go to a scratch directory, never ./logs
os.environ.setdefault("LOGS_DIR", tempfile.mkdtemp(prefix="swim_mesh_logs_"))

import pytest
from typing import Dict, Any, List
from unittest.mock import Mock, AsyncMock

from langchain_core.messages import AIMessage

from swim_mesh.agents import CapabilityAgent
from swim_mesh.orchestrator import (
    AgentDescriptor,
    AgentInvoker,
    AgentRegistry,
    LocalAdapter,
    WorkflowCoordinator,
)
from swim_mesh.utils.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from swim_mesh.utils.config import (
    WorkflowConfig,
    reset_config_manager,
    CAPABILITY_FLIGHT_POSITION,
    CAPABILITY_FLIGHT_PLAN,
)


# ============================================================================
# Environment Isolation
# ============================================================================

@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Every test sees code defaults only: no config file, no env overrides."""
    monkeypatch.setenv("SWIM_MESH_CONFIG", str(tmp_path / "missing_config.json"))
    for var in ("STEP_TIMEOUT", "PLAN_TIMEOUT", "A2A_TIMEOUT", "MATCH_WINDOW_SECONDS",
                "BROKER_REST_URL", "LLM_MODEL", "LLM_TEMPERATURE",
                "AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    reset_config_manager()
    yield
    reset_config_manager()


@pytest.fixture
def workflow_config():
    """Fast execution policy: no retries, no retry delay, no plan deadline."""
    return WorkflowConfig(step_timeout=1.0, max_retries=0, retry_delay=0.0, plan_timeout=None)


@pytest.fixture
def circuit_breaker_config():
    """Circuit breaker configuration for testing."""
    return CircuitBreakerConfig(
        failure_threshold=3,
        timeout=0.05,
        half_open_max_calls=1
    )


# ============================================================================
# Registry and Agent Fixtures
# ============================================================================

def local_descriptor(agent_id: str, *capabilities: str, **kwargs) -> AgentDescriptor:
    return AgentDescriptor(
        id=agent_id,
        capabilities=frozenset(capabilities),
        endpoint=f"local://{agent_id}",
        **kwargs
    )


@pytest.fixture
def registry():
    """Empty registry with no A2A client."""
    return AgentRegistry()


@pytest.fixture
def local_adapter():
    return LocalAdapter()


@pytest.fixture
def invoker(registry, local_adapter, circuit_breaker_config):
    return AgentInvoker(
        registry,
        adapters={"local": local_adapter},
        breakers=CircuitBreakerRegistry(circuit_breaker_config),
    )


@pytest.fixture
def coordinator(invoker, workflow_config):
    return WorkflowCoordinator(invoker, workflow_config)


@pytest.fixture
def add_local_agent(registry, local_adapter):
    """Register an in-process agent from a ``(capability, payload)`` handler."""
    def _add(agent_id: str, handler, *capabilities: str):
        registry.register(local_descriptor(agent_id, *capabilities))
        local_adapter.register(agent_id, handler)
    return _add


@pytest.fixture
def call_log() -> List[str]:
    """Order in which fake agents were called."""
    return []


# ============================================================================
# Flight Data Fixtures
# ============================================================================

@pytest.fixture
def aal123_flight_plan() -> Dict[str, Any]:
    """AAL123 DFW-LAS filed plan, three waypoints."""
    return {
        "identifier": "AAL123",
        "waypoints": [
            {"name": "BOOVE", "lat": 33.0, "lon": -97.0, "planned_altitude_ft": 20000,
             "eta": "2026-03-01T14:00:00Z"},
            {"name": "GUTZZ", "lat": 34.0, "lon": -105.0, "planned_altitude_ft": 36000,
             "eta": "2026-03-01T15:00:00Z"},
            {"name": "KLAS", "lat": 36.08, "lon": -115.15, "planned_altitude_ft": 2000,
             "eta": "2026-03-01T16:30:00Z"},
        ],
    }


@pytest.fixture
def aal123_track() -> Dict[str, Any]:
    """Observed AAL123 history: on BOOVE, 0.05 deg west of GUTZZ, four minutes late into KLAS."""
    return {
        "flight": "AAL123",
        "records": [
            {"lat": 33.0, "lon": -97.0, "altitude_ft": 20000, "timestamp": "2026-03-01T14:00:30Z"},
            {"lat": 34.0, "lon": -105.05, "altitude_ft": 36000, "timestamp": "2026-03-01T15:02:00Z"},
            {"lat": 36.08, "lon": -115.15, "altitude_ft": 2000, "timestamp": "2026-03-01T16:34:00Z"},
        ],
    }


@pytest.fixture
def ual45_flight_plan() -> Dict[str, Any]:
    return {
        "flight_plan": {
            "identifier": "UAL45",
            "waypoints": [
                {"name": "DRK", "lat": 34.70, "lon": -112.48, "planned_altitude_ft": 24000,
                 "eta": "2026-03-01T20:00:00Z"},
                {"name": "KLAS", "lat": 36.08, "lon": -115.15, "planned_altitude_ft": 2000,
                 "eta": "2026-03-01T20:40:00Z"},
            ],
        }
    }


@pytest.fixture
def ual45_track() -> Dict[str, Any]:
    return {
        "flight": "UAL45",
        "records": [
            {"lat": 34.70, "lon": -112.48, "altitude_ft": 24000, "timestamp": "2026-03-01T20:01:00Z"},
            {"lat": 36.08, "lon": -115.15, "altitude_ft": 2000, "timestamp": "2026-03-01T20:45:00Z"},
        ],
    }


@pytest.fixture
def swim_agents(aal123_flight_plan, aal123_track, ual45_flight_plan, ual45_track, call_log):
    """Fake FDPS and TFMS agents serving canned data for AAL123 and UAL45."""
    tracks = {"AAL123": aal123_track, "UAL45": ual45_track}
    plans = {"AAL123": aal123_flight_plan, "UAL45": ual45_flight_plan}

    async def fdps_history(payload: Dict[str, Any]) -> Dict[str, Any]:
        call_log.append("fdps")
        flight = payload.get("flight")
        if flight not in tracks:
            raise ValueError(f"unknown flight {flight}")
        return tracks[flight]

    async def tfms_plan(payload: Dict[str, Any]) -> Dict[str, Any]:
        call_log.append("tfms")
        flight = payload.get("flight")
        if flight not in plans:
            raise ValueError(f"unknown flight {flight}")
        return plans[flight]

    return [
        CapabilityAgent("fdps-agent", {CAPABILITY_FLIGHT_POSITION: fdps_history},
                        description="FDPS en route positions"),
        CapabilityAgent("tfms-agent", {CAPABILITY_FLIGHT_PLAN: tfms_plan},
                        description="TFMS flight plans"),
    ]


# ============================================================================
# LLM Mocking Fixtures
# ============================================================================

@pytest.fixture
def mock_llm():
    """Mock chat model returning a fixed answer."""
    mock = Mock()
    mock.ainvoke = AsyncMock(return_value=AIMessage(content="AAL123 flew close to its filed plan."))
    return mock


@pytest.fixture
def mock_llm_error():
    """Mock chat model whose calls fail."""
    mock = Mock()
    mock.ainvoke = AsyncMock(side_effect=Exception("LLM service unavailable"))
    return mock


# ============================================================================
# A2A Fixtures
# ============================================================================

@pytest.fixture
def agent_card() -> Dict[str, Any]:
    """Sample agent card for testing."""
    return {
        "name": "fdps-agent",
        "version": "1.0.0",
        "description": "FDPS en route positions",
        "capabilities": [CAPABILITY_FLIGHT_POSITION],
        "endpoints": {"a2a": "http://localhost:8101/a2a"},
        "communication_modes": ["sync"],
        "metadata": {"feed": "FDPS"},
    }


