"""Capability Router - turns a classified intent into a plan

Classification itself is delegated: ``IntentClassifier`` is the seam, with
an LLM-backed implementation for production and a regex implementation for
offline use. The router only decides which agents serve which capability.
"""

import re
from typing import Dict, Any, List, Optional, Tuple, Protocol

from langchain_core.messages import SystemMessage, HumanMessage
from pydantic import BaseModel, Field

from ..utils.config import (
    get_workflow_config,
    WorkflowConfig,
    KNOWN_CAPABILITIES,
    CAPABILITY_FLIGHT_POSITION,
    CAPABILITY_SURFACE_MOVEMENT,
    CAPABILITY_FLIGHT_PLAN,
    CAPABILITY_DOCUMENTATION,
    CAPABILITY_ADHERENCE,
)
from ..utils.logging import get_logger
from .agent_registry import AgentRegistry, AgentDescriptor
from .exceptions import NoAgentAvailableError, AmbiguousCapabilityError, PlanValidationError
from .models import Plan, PlanSource, Step
from .templates import adherence_steps

logger = get_logger("orchestrator")

CORRELATION_CAPABILITIES = (CAPABILITY_FLIGHT_PLAN, CAPABILITY_FLIGHT_POSITION, CAPABILITY_ADHERENCE)


class Intent(BaseModel):
    """A classified request: what data is needed and about what"""
    question: str = ""
    capabilities: List[str] = Field(default_factory=list)
    optional_capabilities: List[str] = Field(default_factory=list)
    entities: Dict[str, Any] = Field(default_factory=dict)
    correlate: bool = False
    agent_hints: Dict[str, str] = Field(default_factory=dict)  # capability -> preferred agent id


class IntentClassifier(Protocol):
    async def classify(self, text: str) -> Intent:
        ...


# Keyword rules in priority order, matched case-insensitively
CAPABILITY_KEYWORD_RULES: List[Tuple[str, str]] = [
    (r"\b(?:taxi\w*|runway|gate|ramp|ground traffic|on the ground|surface|smes)\b", CAPABILITY_SURFACE_MOVEMENT),
    (r"\b(?:where is|position|altitude|speed|heading|track|en[- ]?route|fdps)\b", CAPABILITY_FLIGHT_POSITION),
    (r"\b(?:flight plan|filed|route|waypoints?|tfms|eta)\b", CAPABILITY_FLIGHT_PLAN),
    (r"\b(?:documentation|docs|how do i|subscribe|message format|schema|what does swim)\b", CAPABILITY_DOCUMENTATION),
]

CORRELATION_PATTERN = r"\b(?:adhere\w*|deviat\w*|compare|on[- ]plan|off[- ]plan|plan (?:vs\.?|versus|to) actual)\b"

FLIGHT_PATTERN = r"\b([A-Z]{2,3}\d{1,4}[A-Z]?)\b"
AIRPORT_PATTERN = r"\b(?:at|to|from|into|near)\s+([A-Z]{3,4})\b"


class KeywordIntentClassifier:
    """Regex classifier used when no language model is configured"""

    def __init__(self, rules: Optional[List[Tuple[str, str]]] = None):
        self.rules = rules or CAPABILITY_KEYWORD_RULES
        self.compiled_rules = [
            (re.compile(pattern, re.IGNORECASE), capability)
            for pattern, capability in self.rules
        ]
        self.correlation = re.compile(CORRELATION_PATTERN, re.IGNORECASE)
        self.flight = re.compile(FLIGHT_PATTERN)
        self.airport = re.compile(AIRPORT_PATTERN)

    def extract_entities(self, text: str) -> Dict[str, Any]:
        entities: Dict[str, Any] = {}
        airport = self.airport.search(text)
        if airport:
            entities["airport"] = airport.group(1)
        for match in self.flight.finditer(text):
            if match.group(1) != entities.get("airport"):
                entities["flight"] = match.group(1)
                break
        return entities

    async def classify(self, text: str) -> Intent:
        correlate = bool(self.correlation.search(text))
        capabilities: List[str] = []
        for pattern, capability in self.compiled_rules:
            if pattern.search(text) and capability not in capabilities:
                capabilities.append(capability)

        if correlate:
            # The adherence trio replaces the individual fetches
            capabilities = [c for c in capabilities if c not in CORRELATION_CAPABILITIES]

        if not capabilities and not correlate:
            capabilities = [CAPABILITY_DOCUMENTATION]

        return Intent(
            question=text,
            capabilities=capabilities,
            entities=self.extract_entities(text),
            correlate=correlate,
        )


class IntentExtraction(BaseModel):
    """Structured output requested from the language model"""
    capabilities: List[str] = Field(
        default_factory=list,
        description="Capabilities whose data is needed to answer: " + ", ".join(KNOWN_CAPABILITIES)
    )
    optional_capabilities: List[str] = Field(
        default_factory=list,
        description="Capabilities that would enrich but are not needed for the answer"
    )
    correlate: bool = Field(
        default=False,
        description="True when the question compares a flight's filed plan with its actual track"
    )
    flight: Optional[str] = Field(default=None, description="Flight identifier, e.g. AAL123")
    airport: Optional[str] = Field(default=None, description="Airport code, e.g. KLAS or LAS")
    time: Optional[str] = Field(default=None, description="ISO-8601 time the question is about")


CLASSIFIER_SYSTEM_PROMPT = """You classify questions about live aviation data from FAA SWIM feeds.
Available capabilities:
- flight-position: en-route positions, altitude, speed and track history (FDPS)
- surface-movement: aircraft and vehicles on the airport surface, taxiways, runways (SMES)
- flight-plan: filed flight plans, routes, waypoints and estimated times (TFMS)
- documentation: questions about SWIM services, message formats and subscriptions
Set correlate=true only when the question asks how an actual flight compared with its plan.
Only use the capability names listed above."""


class LLMIntentClassifier:
    """Delegates classification to a LangChain chat model with structured output"""

    def __init__(self, llm):
        self.llm = llm
        self.structured = llm.with_structured_output(IntentExtraction)

    async def classify(self, text: str) -> Intent:
        extraction: IntentExtraction = await self.structured.ainvoke([
            SystemMessage(content=CLASSIFIER_SYSTEM_PROMPT),
            HumanMessage(content=text),
        ])

        capabilities = [c for c in extraction.capabilities if c in KNOWN_CAPABILITIES]
        optional = [c for c in extraction.optional_capabilities
                    if c in KNOWN_CAPABILITIES and c not in capabilities]
        dropped = set(extraction.capabilities) - set(capabilities)
        if dropped:
            logger.warning("unknown_capabilities_ignored", capabilities=sorted(dropped))

        entities = {
            key: value for key, value in (
                ("flight", extraction.flight),
                ("airport", extraction.airport),
                ("time", extraction.time),
            ) if value
        }

        intent = Intent(
            question=text,
            capabilities=capabilities,
            optional_capabilities=optional,
            entities=entities,
            correlate=extraction.correlate,
        )
        logger.info("intent_classified",
            capabilities=intent.capabilities,
            optional_capabilities=intent.optional_capabilities,
            correlate=intent.correlate,
            entity_keys=sorted(entities)
        )
        return intent


class CapabilityRouter:
    """Builds a plan with one step per needed capability"""

    def __init__(self, registry: AgentRegistry, workflow_config: Optional[WorkflowConfig] = None):
        self.registry = registry
        self.workflow_config = workflow_config or get_workflow_config()

    def select_agent(self, capability: str, hints: Optional[Dict[str, str]] = None) -> Optional[AgentDescriptor]:
        """First available agent by registration order, unless a hint names one.

        Raises:
            AmbiguousCapabilityError: several candidates, no hint, strict mode
        """
        candidates = self.registry.find(capability)
        if not candidates:
            return None

        hint = (hints or {}).get(capability)
        if hint:
            for candidate in candidates:
                if candidate.id == hint:
                    return candidate
            logger.warning("agent_hint_unavailable", capability=capability, hint=hint)

        if len(candidates) > 1:
            candidate_ids = [c.id for c in candidates]
            if self.workflow_config.strict_ambiguity:
                raise AmbiguousCapabilityError(capability, candidate_ids)
            logger.warning("ambiguous_capability",
                capability=capability,
                candidates=candidate_ids,
                selected=candidates[0].id
            )
        return candidates[0]

    def _require(self, capability: str, intent: Intent) -> AgentDescriptor:
        agent = self.select_agent(capability, intent.agent_hints)
        if agent is None:
            logger.warning("no_agent_available", capability=capability)
            raise NoAgentAvailableError(capability)
        return agent

    def _fetch_step(self, capability: str, agent: AgentDescriptor, intent: Intent,
                    required: bool) -> Step:
        if capability == CAPABILITY_DOCUMENTATION:
            inputs: Dict[str, Any] = {"question": intent.question}
        else:
            inputs = {key: "{%s}" % key for key in intent.entities}
        return Step(
            id=f"fetch_{capability.replace('-', '_')}",
            capability=capability,
            inputs=inputs,
            timeout=self.workflow_config.step_timeout,
            max_retries=self.workflow_config.max_retries,
            required=required,
            agent_id=agent.id,
        )

    def route(self, intent: Intent) -> Plan:
        """Build a plan for an intent.

        Raises:
            NoAgentAvailableError: a required capability has no available agent
            AmbiguousCapabilityError: only in strict mode
            PlanValidationError: the intent names no capability at all, or asks
                for a correlation without naming a flight
        """
        steps: List[Step] = []
        covered = set()

        if intent.correlate:
            if not intent.entities.get("flight"):
                raise PlanValidationError("Comparing a flight plan to its track needs a flight identifier")
            pins = {cap: self._require(cap, intent).id for cap in CORRELATION_CAPABILITIES}
            steps.extend(adherence_steps(
                intent.entities,
                self.workflow_config.step_timeout,
                self.workflow_config.max_retries,
                agents=pins,
            ))
            covered.update(CORRELATION_CAPABILITIES)

        for capability in intent.capabilities:
            if capability in covered:
                continue
            steps.append(self._fetch_step(capability, self._require(capability, intent), intent, True))
            covered.add(capability)

        for capability in intent.optional_capabilities:
            if capability in covered:
                continue
            agent = self.select_agent(capability, intent.agent_hints)
            if agent is None:
                logger.warning("optional_capability_dropped", capability=capability)
                continue
            steps.append(self._fetch_step(capability, agent, intent, False))
            covered.add(capability)

        if not steps:
            raise PlanValidationError("Intent requires no capability")

        plan = Plan(
            steps=tuple(steps),
            intent=intent.question,
            entities=dict(intent.entities),
            source=PlanSource.REQUEST,
        )
        logger.info("plan_routed",
            plan_id=plan.id,
            steps=[(s.id, s.capability, s.agent_id) for s in plan.steps]
        )
        return plan
