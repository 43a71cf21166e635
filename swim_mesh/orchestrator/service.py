"""Orchestration service - one entry point for questions and events

Questions go classify -> route -> coordinate -> compose. Events go through
the EventTrigger, which reuses the same coordinator and composer.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..a2a import A2AClient
from ..adherence.agent import create_adherence_agent
from ..agents.base import CapabilityAgent
from ..events.publishers import RestReportPublisher
from ..events.sources import EventSource, InboundEvent
from ..events.trigger import EventTrigger, TriggerOutcome
from ..utils.config import SystemConfig, get_system_config
from ..utils.llm import create_chat_model
from ..utils.logging import get_logger, set_correlation_id
from .agent_registry import AgentRegistry
from .composer import ResponseComposer
from .coordinator import WorkflowCoordinator
from .exceptions import NoAgentAvailableError, PlanValidationError
from .invoker import AgentInvoker, LocalAdapter
from .models import Plan, PlanResult
from .router import CapabilityRouter, IntentClassifier, KeywordIntentClassifier, LLMIntentClassifier

logger = get_logger("orchestrator")


@dataclass
class Answer:
    question: str
    text: str
    answered: bool
    plan: Optional[Plan] = None
    result: Optional[PlanResult] = None
    error: Optional[str] = None


class OrchestrationService:
    """Wires classifier, router, coordinator, composer and trigger together"""

    def __init__(self, registry: AgentRegistry, classifier: IntentClassifier,
                 router: CapabilityRouter, coordinator: WorkflowCoordinator,
                 composer: ResponseComposer, trigger: Optional[EventTrigger] = None):
        self.registry = registry
        self.classifier = classifier
        self.router = router
        self.coordinator = coordinator
        self.composer = composer
        self.trigger = trigger
        self._fallback_classifier = KeywordIntentClassifier()

    async def ask(self, question: str) -> Answer:
        """Answer a question; unanswerable requests come back with answered=False."""
        correlation_id = set_correlation_id()
        logger.info("request_received", question=question[:200], correlation_id=correlation_id)

        try:
            intent = await self.classifier.classify(question)
        except Exception as e:
            logger.error("intent_classification_failed",
                error=str(e),
                error_type=type(e).__name__
            )
            intent = await self._fallback_classifier.classify(question)

        try:
            plan = self.router.route(intent)
        except NoAgentAvailableError as e:
            return Answer(
                question=question,
                text=f"Cannot answer: no available agent provides '{e.capability}' data.",
                answered=False,
                error=str(e),
            )
        except PlanValidationError as e:
            return Answer(
                question=question,
                text=f"Cannot answer: {e}",
                answered=False,
                error=str(e),
            )

        result = await self.coordinator.execute(plan)
        text = await self.composer.compose_answer(question, plan, result)
        return Answer(question=question, text=text, answered=True, plan=plan, result=result)

    async def handle_event(self, event: InboundEvent) -> List[TriggerOutcome]:
        if self.trigger is None:
            raise RuntimeError("No event trigger configured")
        return await self.trigger.handle_event(event)

    async def run_triggers(self, source: EventSource) -> int:
        if self.trigger is None:
            raise RuntimeError("No event trigger configured")
        return await self.trigger.run(source)

    async def close(self):
        await self.coordinator.invoker.close()
        close = getattr(self.composer.publisher, "close", None)
        if close is not None:
            await close()


def build_default_service(config: Optional[SystemConfig] = None, llm=None, publisher=None,
                          local_agents: Sequence[CapabilityAgent] = ()) -> OrchestrationService:
    """Assemble a service from configuration.

    Configured agents are reached over A2A; ``local_agents`` and the built-in
    adherence engine run in-process. Without Azure OpenAI settings the keyword
    classifier and deterministic summaries are used.
    """
    config = config or get_system_config()

    client = A2AClient(timeout=config.a2a.timeout)
    registry = AgentRegistry.from_config(config.agents, client=client)

    local = LocalAdapter()
    for agent in (create_adherence_agent(), *local_agents):
        local.register(agent.name, agent.dispatch)
        if registry.get(agent.name) is None:
            registry.register(agent.descriptor())

    invoker = AgentInvoker.with_default_adapters(registry, client=client, local=local)

    if llm is None:
        try:
            llm = create_chat_model()
        except ValueError as e:
            logger.warning("llm_not_configured", reason=str(e))

    classifier = LLMIntentClassifier(llm) if llm is not None else KeywordIntentClassifier()

    if publisher is None and config.events.broker_rest_url:
        publisher = RestReportPublisher(config.events.broker_rest_url, timeout=config.events.publish_timeout)

    composer = ResponseComposer(llm=llm, publisher=publisher)
    coordinator = WorkflowCoordinator(invoker, config.workflow)
    trigger = EventTrigger.from_config(config.triggers, coordinator, composer)

    logger.info("service_built",
        agents=[agent.id for agent in registry.list_agents()],
        triggers=[rule.name for rule in trigger.rules],
        llm_enabled=llm is not None,
        publisher=type(publisher).__name__ if publisher is not None else None
    )
    return OrchestrationService(
        registry=registry,
        classifier=classifier,
        router=CapabilityRouter(registry, config.workflow),
        coordinator=coordinator,
        composer=composer,
        trigger=trigger,
    )
