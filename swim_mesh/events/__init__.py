"""Event-driven plan triggering and report publication."""

from .topics import topic_matches, render_topic
from .sources import InboundEvent, EventSource, QueueEventSource
from .publishers import ReportPublisher, InMemoryPublisher, RestReportPublisher
from .trigger import TriggerRule, TriggerOutcome, EventTrigger, ENTITY_FIELDS

__all__ = [
    'topic_matches',
    'render_topic',
    'InboundEvent',
    'EventSource',
    'QueueEventSource',
    'ReportPublisher',
    'InMemoryPublisher',
    'RestReportPublisher',
    'TriggerRule',
    'TriggerOutcome',
    'EventTrigger',
    'ENTITY_FIELDS',
]
