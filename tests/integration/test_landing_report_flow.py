"""
Integration tests: questions and landing events through the assembled service.

Data agents are in-process capability agents serving canned FDPS and TFMS
data; the adherence engine is the real built-in agent.
"""

import pytest

from swim_mesh.agents import CapabilityAgent
from swim_mesh.events import InboundEvent, InMemoryPublisher, QueueEventSource
from swim_mesh.orchestrator import AgentStatus, PlanStatus, StepStatus
from swim_mesh.orchestrator.service import build_default_service
from swim_mesh.utils.config import CAPABILITY_FLIGHT_PLAN, ConfigManager, WorkflowConfig

pytestmark = pytest.mark.integration


@pytest.fixture
def system_config(tmp_path):
    config = ConfigManager(str(tmp_path / "absent.json")).get_config()
    config.workflow = WorkflowConfig(step_timeout=2.0, max_retries=0, retry_delay=0.0, plan_timeout=10.0)
    return config


@pytest.fixture
def publisher():
    return InMemoryPublisher()


@pytest.fixture
async def service(system_config, publisher, swim_agents):
    service = build_default_service(system_config, publisher=publisher, local_agents=swim_agents)
    yield service
    await service.close()


class TestLandingReport:
    """status/DROPPED events become published landing reports."""

    @pytest.mark.asyncio
    async def test_landing_event(self, service, publisher, call_log):
        outcomes = await service.handle_event(InboundEvent("status/DROPPED", {
            "flight": "UAL45", "airport": "LAS", "time": "2026-03-01T20:45:00Z",
        }))

        assert len(outcomes) == 1
        outcome = outcomes[0]
        assert [s.id for s in outcome.plan.steps] == ["fetch_fdps_history", "fetch_flight_plan", "correlate"]
        assert outcome.result.status == PlanStatus.COMPLETED
        assert sorted(call_log) == ["fdps", "tfms"]

        correlate = outcome.result.get("correlate")
        assert correlate.agent_id == "adherence-engine"
        assert correlate.payload["identifier"] == "UAL45"
        assert correlate.payload["summary"]["matched_count"] == 2

        assert outcome.published_topic == "reports/landing/UAL45"
        [report] = publisher.reports_for("reports/landing/UAL45")
        assert report["identification"]["flight"] == "UAL45"
        assert report["identification"]["event_topic"] == "status/DROPPED"
        assert report["landing"]["delta_seconds"] == 300.0
        assert report["adherence"]["status"] == "available"
        assert report["issues"] == []

    @pytest.mark.asyncio
    async def test_unknown_flight_reports_gaps(self, service, publisher):
        outcomes = await service.handle_event(InboundEvent("status/DROPPED", {"flight": "SWA9"}))

        result = outcomes[0].result
        assert result.status == PlanStatus.FAILED
        assert result.get("correlate").status == StepStatus.SKIPPED

        [report] = publisher.reports_for("reports/landing/SWA9")
        assert report["adherence"] == {"status": "unavailable"}
        assert {i["step_id"] for i in report["issues"]} >= {"fetch_fdps_history", "correlate"}

    @pytest.mark.asyncio
    async def test_trigger_loop(self, service, publisher):
        source = QueueEventSource()
        await source.put("status/DROPPED", {"airport": "LAS"})
        await source.put("status/ACTIVE", {"flight": "AAL123"})
        await source.put("status/DROPPED", {"flight": "UAL45", "time": "2026-03-01T20:45:00Z"})
        await source.close()

        processed = await service.run_triggers(source)

        assert processed == 3
        assert [topic for topic, _ in publisher.published] == ["reports/landing/UAL45"]


class TestQuestions:
    """Natural-language questions without a language model."""

    @pytest.mark.asyncio
    async def test_adherence_question(self, service):
        answer = await service.ask("Compare AAL123 flight plan to actual track")

        assert answer.answered is True
        assert answer.result.status == PlanStatus.COMPLETED
        assert "AAL123: minor-deviation" in answer.text

    @pytest.mark.asyncio
    async def test_position_question(self, service):
        answer = await service.ask("Where is UAL45 right now?")

        assert answer.answered is True
        assert answer.result.get("fetch_flight_position").succeeded
        assert "flight-position" in answer.text

    @pytest.mark.asyncio
    async def test_missing_surface_agent(self, service):
        answer = await service.ask("Show ground traffic at KLAS")

        assert answer.answered is False
        assert "surface-movement" in answer.text
        assert answer.plan is None

    @pytest.mark.asyncio
    async def test_comparison_without_flight(self, service, call_log):
        answer = await service.ask("Did the last arrival deviate from its flight plan?")

        assert answer.answered is False
        assert "flight identifier" in answer.text
        assert call_log == []

    @pytest.mark.asyncio
    async def test_failed_agent_surfaces_in_answer(self, service):
        answer = await service.ask("Where is SWA9 right now?")

        assert answer.answered is True
        assert answer.result.status == PlanStatus.FAILED
        assert "Missing or degraded:" in answer.text

    @pytest.mark.asyncio
    async def test_registry_contents(self, service):
        agents = {a.id: a for a in service.registry.list_agents()}

        assert set(agents) == {"adherence-engine", "fdps-agent", "tfms-agent"}
        assert all(a.status == AgentStatus.AVAILABLE for a in agents.values())


class TestQuestionsWithLLM:
    """A configured chat model composes answers; classification failures fall back to keywords."""

    @pytest.mark.asyncio
    async def test_classifier_failure_falls_back(self, system_config, swim_agents, mock_llm):
        mock_llm.with_structured_output.return_value.ainvoke.side_effect = RuntimeError("rate limited")
        service = build_default_service(system_config, llm=mock_llm, publisher=InMemoryPublisher(),
                                        local_agents=swim_agents)
        try:
            answer = await service.ask("Compare AAL123 flight plan to actual track")
        finally:
            await service.close()

        assert answer.answered is True
        assert answer.result.status == PlanStatus.COMPLETED
        assert answer.text == "AAL123 flew close to its filed plan."
        mock_llm.ainvoke.assert_awaited_once()


class TestAdherenceAgentHealth:
    """Bad upstream data fails single reports without taking the adherence agent out."""

    @pytest.mark.asyncio
    async def test_unparseable_plans_do_not_disable_adherence(self, system_config, swim_agents,
                                                              ual45_flight_plan):
        system_config.workflow = WorkflowConfig(step_timeout=2.0, max_retries=1, retry_delay=0.0,
                                                plan_timeout=10.0)
        feed = {"broken": True}

        async def tfms_plan(payload):
            if feed["broken"]:
                return {"flight_plan": "filed plan unavailable"}
            return ual45_flight_plan

        fdps_agent = swim_agents[0]
        tfms_agent = CapabilityAgent("tfms-agent", {CAPABILITY_FLIGHT_PLAN: tfms_plan})
        service = build_default_service(system_config, publisher=InMemoryPublisher(),
                                        local_agents=[fdps_agent, tfms_agent])
        event = InboundEvent("status/DROPPED", {"flight": "UAL45", "time": "2026-03-01T20:45:00Z"})
        try:
            for _ in range(3):
                [outcome] = await service.handle_event(event)
                correlate = outcome.result.get("correlate")
                assert correlate.status == StepStatus.FAILED
                assert correlate.attempts == 1

            assert service.registry.get("adherence-engine").status == AgentStatus.AVAILABLE

            feed["broken"] = False
            [outcome] = await service.handle_event(event)
            answer = await service.ask("Compare UAL45 flight plan to actual track")
        finally:
            await service.close()

        assert outcome.result.status == PlanStatus.COMPLETED
        assert answer.answered is True
        assert answer.result.get("correlate").succeeded
