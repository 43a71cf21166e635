"""Structured, component-routed logging.

Usage:
    from swim_mesh.utils.logging import get_logger

    logger = get_logger("orchestrator")
    logger.info("plan_started", plan_id=plan.id, steps=len(plan.steps))
"""

from typing import Dict

from .logger import (
    StructuredLogger,
    ComponentLogger,
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
)
from .multi_file_logger import MultiFileLogger, get_multi_file_logger

_component_loggers: Dict[str, ComponentLogger] = {}


def get_logger(component: str = "system") -> ComponentLogger:
    """Get a logger bound to a component (one cached instance per component)."""
    if component not in _component_loggers:
        _component_loggers[component] = ComponentLogger(get_multi_file_logger(), component)
    return _component_loggers[component]


__all__ = [
    'StructuredLogger',
    'ComponentLogger',
    'MultiFileLogger',
    'get_multi_file_logger',
    'get_logger',
    'get_correlation_id',
    'set_correlation_id',
    'clear_correlation_id',
]
