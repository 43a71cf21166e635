"""Event Trigger - standing rules that turn events into plans

An event that matches a rule becomes a plan built from the rule's template.
That plan runs through the same WorkflowCoordinator as user requests, and
its result is composed into a report and published. Events are consumed
one at a time; a bad event is logged and dropped and never stops the loop.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..orchestrator.composer import ResponseComposer
from ..orchestrator.coordinator import WorkflowCoordinator
from ..orchestrator.exceptions import MalformedEventError, PlanValidationError
from ..orchestrator.models import Plan, PlanResult, PlanSource
from ..orchestrator.templates import PlanTemplates
from ..utils.config import TriggerConfig
from ..utils.logging import get_logger, set_correlation_id, clear_correlation_id
from .sources import EventSource, InboundEvent
from .topics import render_topic, topic_matches

logger = get_logger("events")

# Entity name -> payload keys it may be found under, in preference order
ENTITY_FIELDS: Dict[str, Tuple[str, ...]] = {
    "flight": ("flight", "callsign", "identifier", "acid"),
    "airport": ("airport", "arrival_airport", "destination"),
    "time": ("time", "timestamp", "event_time"),
    "location": ("location", "runway", "position"),
}


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


@dataclass(frozen=True)
class TriggerRule:
    name: str
    topic_pattern: str
    plan_template: str
    required_fields: Tuple[str, ...] = ("flight",)
    field_equals: Dict[str, Any] = field(default_factory=dict, hash=False)
    publish_topic: Optional[str] = None

    @classmethod
    def from_config(cls, config: TriggerConfig) -> 'TriggerRule':
        return cls(
            name=config.name,
            topic_pattern=config.topic_pattern,
            plan_template=config.plan_template,
            required_fields=tuple(config.required_fields),
            field_equals=dict(config.field_equals),
            publish_topic=config.publish_topic,
        )

    def matches(self, event: InboundEvent) -> bool:
        """Topic matches and, for mapping payloads, every field_equals holds.

        Payload validity is not checked here: a matching but malformed event
        is reported by ``extract_entities``.
        """
        if not topic_matches(self.topic_pattern, event.topic):
            return False
        if self.field_equals and isinstance(event.payload, Mapping):
            return all(event.payload.get(key) == value for key, value in self.field_equals.items())
        return True

    def extract_entities(self, event: InboundEvent) -> Dict[str, Any]:
        """Pull flight/airport/time/location out of the payload.

        Raises:
            MalformedEventError: payload is not an object or a required field is missing
        """
        payload = event.payload
        if not isinstance(payload, Mapping):
            raise MalformedEventError(
                f"payload must be an object, got {type(payload).__name__}", topic=event.topic
            )

        entities: Dict[str, Any] = {}
        for entity, keys in ENTITY_FIELDS.items():
            for key in keys:
                if _present(payload.get(key)):
                    entities[entity] = payload[key]
                    break

        for required in self.required_fields:
            if not _present(entities.get(required, payload.get(required))):
                raise MalformedEventError(f"missing required field '{required}'", topic=event.topic)
            if required not in entities:
                entities[required] = payload[required]

        if isinstance(entities.get("flight"), str):
            entities["flight"] = entities["flight"].strip().upper()
        return entities

    def render_publish_topic(self, entities: Dict[str, Any]) -> Optional[str]:
        if not self.publish_topic:
            return None
        return render_topic(self.publish_topic, entities)


@dataclass
class TriggerOutcome:
    rule: str
    plan: Plan
    result: PlanResult
    report: Dict[str, Any]
    published_topic: Optional[str] = None
    published: bool = False


class EventTrigger:
    """Consumes events and drives matching rules through the coordinator"""

    def __init__(self, rules: Sequence[TriggerRule], coordinator: WorkflowCoordinator,
                 composer: ResponseComposer, templates=PlanTemplates):
        self.rules = list(rules)
        self.coordinator = coordinator
        self.composer = composer
        self.templates = templates

    @classmethod
    def from_config(cls, trigger_configs: Sequence[TriggerConfig], coordinator: WorkflowCoordinator,
                    composer: ResponseComposer) -> 'EventTrigger':
        return cls([TriggerRule.from_config(c) for c in trigger_configs], coordinator, composer)

    async def _fire(self, rule: TriggerRule, event: InboundEvent,
                    entities: Dict[str, Any]) -> TriggerOutcome:
        plan = self.templates.build(
            rule.plan_template,
            entities,
            intent=f"{rule.name} for {entities.get('flight', event.topic)}",
            source=PlanSource.EVENT,
        )
        logger.info("trigger_fired",
            rule=rule.name,
            topic=event.topic,
            plan_id=plan.id,
            flight=entities.get("flight")
        )

        result = await self.coordinator.execute(plan)
        report = self.composer.compose_report(plan, result, entities, topic=event.topic)

        outcome = TriggerOutcome(rule=rule.name, plan=plan, result=result, report=report)
        topic = rule.render_publish_topic(entities)
        if topic:
            outcome.published_topic = topic
            outcome.published = await self.composer.publish(topic, report)
        return outcome

    async def handle_event(self, event: InboundEvent) -> List[TriggerOutcome]:
        """Fire every rule matching the event, independently and in rule order."""
        outcomes: List[TriggerOutcome] = []
        matched = [rule for rule in self.rules if rule.matches(event)]
        if not matched:
            logger.debug("event_unmatched", topic=event.topic)
            return outcomes

        for rule in matched:
            try:
                entities = rule.extract_entities(event)
            except MalformedEventError as e:
                logger.warning("event_dropped",
                    rule=rule.name,
                    topic=event.topic,
                    reason=str(e)
                )
                continue

            try:
                outcomes.append(await self._fire(rule, event, entities))
            except PlanValidationError as e:
                logger.error("trigger_plan_invalid",
                    rule=rule.name,
                    topic=event.topic,
                    error=str(e)
                )
        return outcomes

    async def run(self, source: EventSource) -> int:
        """Consume a source until it ends; returns the number of events seen."""
        processed = 0
        logger.info("trigger_loop_started", rules=[rule.name for rule in self.rules])

        async for item in source:
            processed += 1
            set_correlation_id()
            try:
                event = item if isinstance(item, InboundEvent) else InboundEvent.from_message(item)
                await self.handle_event(event)
            except MalformedEventError as e:
                logger.warning("event_dropped", reason=str(e))
            except Exception as e:
                logger.error("event_handling_failed",
                    error=str(e),
                    error_type=type(e).__name__
                )
            finally:
                clear_correlation_id()

        logger.info("trigger_loop_stopped", processed=processed)
        return processed
