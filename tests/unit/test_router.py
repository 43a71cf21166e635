"""
Unit tests for intent classification and capability routing.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from swim_mesh.orchestrator import (
    AgentDescriptor,
    AmbiguousCapabilityError,
    CapabilityRouter,
    Intent,
    KeywordIntentClassifier,
    LLMIntentClassifier,
    NoAgentAvailableError,
    PlanSource,
    PlanValidationError,
)
from swim_mesh.orchestrator.router import IntentExtraction
from swim_mesh.orchestrator.templates import CORRELATE_STEP, FETCH_PLAN_STEP, FETCH_TRACK_STEP
from swim_mesh.utils.config import WorkflowConfig


def local(agent_id, *capabilities):
    return AgentDescriptor(id=agent_id, capabilities=frozenset(capabilities),
                           endpoint=f"local://{agent_id}")


@pytest.fixture
def mesh(registry):
    """Position, plan, documentation and adherence agents; no surface agent."""
    registry.register(local("fdps-agent", "flight-position"))
    registry.register(local("tfms-agent", "flight-plan"))
    registry.register(local("docs-agent", "documentation"))
    registry.register(local("adherence-engine", "adherence"))
    return registry


@pytest.fixture
def router(mesh, workflow_config):
    return CapabilityRouter(mesh, workflow_config)


class TestKeywordIntentClassifier:
    """Offline regex classification."""

    @pytest.mark.asyncio
    async def test_surface_question(self):
        intent = await KeywordIntentClassifier().classify("Show ground traffic at KLAS")

        assert intent.capabilities == ["surface-movement"]
        assert intent.entities == {"airport": "KLAS"}
        assert intent.correlate is False

    @pytest.mark.asyncio
    async def test_position_question(self):
        intent = await KeywordIntentClassifier().classify("Where is UAL45 right now?")

        assert intent.capabilities == ["flight-position"]
        assert intent.entities["flight"] == "UAL45"

    @pytest.mark.asyncio
    async def test_correlation_replaces_individual_fetches(self):
        intent = await KeywordIntentClassifier().classify(
            "Compare AAL123 flight plan to actual track"
        )

        assert intent.correlate is True
        assert intent.capabilities == []
        assert intent.entities["flight"] == "AAL123"

    @pytest.mark.asyncio
    async def test_falls_back_to_documentation(self):
        intent = await KeywordIntentClassifier().classify("Tell me something interesting")

        assert intent.capabilities == ["documentation"]


class TestLLMIntentClassifier:
    """Structured-output classification through a chat model."""

    @pytest.mark.asyncio
    async def test_unknown_capabilities_are_dropped(self):
        structured = Mock()
        structured.ainvoke = AsyncMock(return_value=IntentExtraction(
            capabilities=["flight-position", "weather"],
            optional_capabilities=["documentation", "flight-position"],
            flight="AAL123",
            airport="KLAS",
        ))
        llm = Mock()
        llm.with_structured_output = Mock(return_value=structured)

        intent = await LLMIntentClassifier(llm).classify("Where is AAL123 near KLAS?")

        llm.with_structured_output.assert_called_once_with(IntentExtraction)
        assert intent.capabilities == ["flight-position"]
        assert intent.optional_capabilities == ["documentation"]
        assert intent.entities == {"flight": "AAL123", "airport": "KLAS"}

    @pytest.mark.asyncio
    async def test_prompt_includes_question(self):
        structured = Mock()
        structured.ainvoke = AsyncMock(return_value=IntentExtraction(correlate=True, flight="AAL123"))
        llm = Mock()
        llm.with_structured_output = Mock(return_value=structured)

        intent = await LLMIntentClassifier(llm).classify("Did AAL123 stick to its plan?")

        messages = structured.ainvoke.await_args.args[0]
        assert messages[-1].content == "Did AAL123 stick to its plan?"
        assert intent.correlate is True


class TestCapabilityRouter:
    """Plans built from intents."""

    def test_missing_surface_agent(self, router):
        intent = Intent(question="Show ground traffic at KLAS",
                        capabilities=["surface-movement"], entities={"airport": "KLAS"})

        with pytest.raises(NoAgentAvailableError) as exc_info:
            router.route(intent)

        assert exc_info.value.capability == "surface-movement"

    def test_single_fetch(self, router):
        intent = Intent(question="Where is UAL45?", capabilities=["flight-position"],
                        entities={"flight": "UAL45"})

        plan = router.route(intent)

        assert len(plan.steps) == 1
        step = plan.steps[0]
        assert step.id == "fetch_flight_position"
        assert step.agent_id == "fdps-agent"
        assert step.inputs == {"flight": "{flight}"}
        assert step.timeout == 1.0
        assert plan.source == PlanSource.REQUEST
        assert plan.entities == {"flight": "UAL45"}

    def test_documentation_gets_question(self, router):
        intent = Intent(question="How do I subscribe to SMES?", capabilities=["documentation"])

        plan = router.route(intent)

        assert plan.steps[0].inputs == {"question": "How do I subscribe to SMES?"}

    def test_correlation_plan(self, router):
        intent = Intent(question="Compare AAL123 plan to actual", correlate=True,
                        entities={"flight": "AAL123", "airport": "KLAS"})

        plan = router.route(intent)

        assert [s.id for s in plan.steps] == [FETCH_TRACK_STEP, FETCH_PLAN_STEP, CORRELATE_STEP]
        correlate = plan.get_step(CORRELATE_STEP)
        assert set(correlate.depends_on) == {FETCH_TRACK_STEP, FETCH_PLAN_STEP}
        assert correlate.agent_id == "adherence-engine"
        assert correlate.inputs["track"] == "{steps.fetch_fdps_history}"
        assert plan.get_step(FETCH_PLAN_STEP).inputs == {"flight": "{flight}", "destination": "{airport}"}

    @pytest.mark.asyncio
    async def test_correlation_without_flight_is_rejected(self, router):
        intent = await KeywordIntentClassifier().classify("Did the last arrival deviate from its flight plan?")
        assert intent.correlate is True
        assert "flight" not in intent.entities

        with pytest.raises(PlanValidationError, match="flight identifier"):
            router.route(intent)

    def test_correlation_needs_adherence_agent(self, registry, workflow_config):
        registry.register(local("fdps-agent", "flight-position"))
        registry.register(local("tfms-agent", "flight-plan"))
        router = CapabilityRouter(registry, workflow_config)

        with pytest.raises(NoAgentAvailableError) as exc_info:
            router.route(Intent(correlate=True, entities={"flight": "AAL123"}))

        assert exc_info.value.capability == "adherence"

    def test_optional_capability_without_agent_is_dropped(self, router):
        intent = Intent(capabilities=["flight-position"], optional_capabilities=["surface-movement"],
                        entities={"flight": "UAL45"})

        plan = router.route(intent)

        assert [s.capability for s in plan.steps] == ["flight-position"]

    def test_optional_step_not_required(self, router):
        intent = Intent(capabilities=["flight-position"], optional_capabilities=["flight-plan"],
                        entities={"flight": "UAL45"})

        plan = router.route(intent)

        assert [(s.capability, s.required) for s in plan.steps] == [
            ("flight-position", True),
            ("flight-plan", False),
        ]

    def test_empty_intent(self, router):
        with pytest.raises(PlanValidationError):
            router.route(Intent(question="nothing"))


class TestAgentSelection:
    """Ambiguity and hints."""

    @pytest.fixture
    def ambiguous(self, registry):
        registry.register(local("fdps-east", "flight-position"))
        registry.register(local("fdps-west", "flight-position"))
        return registry

    def test_first_registered_wins(self, ambiguous, workflow_config):
        router = CapabilityRouter(ambiguous, workflow_config)
        assert router.select_agent("flight-position").id == "fdps-east"

    def test_strict_mode_raises(self, ambiguous):
        router = CapabilityRouter(ambiguous, WorkflowConfig(strict_ambiguity=True))

        with pytest.raises(AmbiguousCapabilityError) as exc_info:
            router.select_agent("flight-position")

        assert exc_info.value.candidates == ["fdps-east", "fdps-west"]

    def test_hint_picks_agent(self, ambiguous):
        router = CapabilityRouter(ambiguous, WorkflowConfig(strict_ambiguity=True))

        agent = router.select_agent("flight-position", {"flight-position": "fdps-west"})

        assert agent.id == "fdps-west"

    def test_unavailable_agent_not_selected(self, ambiguous, workflow_config):
        ambiguous.mark_unavailable("fdps-east")
        router = CapabilityRouter(ambiguous, workflow_config)

        assert router.select_agent("flight-position").id == "fdps-west"
