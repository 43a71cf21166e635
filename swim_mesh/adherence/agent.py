"""The adherence engine served as the built-in ``adherence`` capability."""

from typing import Any, Dict

from ..agents.base import CapabilityAgent
from ..utils.config import get_adherence_config, ADHERENCE_AGENT_ID, CAPABILITY_ADHERENCE
from ..utils.logging import get_logger
from .engine import compute_adherence, parse_flight_plan, parse_flight_records

logger = get_logger("adherence")


async def handle_adherence(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Input: ``{flight, flight_plan, track, match_window_seconds?}``.

    Raises:
        ValueError: the plan or track cannot be parsed
    """
    identifier = payload.get("flight")
    if "flight_plan" not in payload or "track" not in payload:
        raise ValueError("adherence needs both 'flight_plan' and 'track'")

    plan = parse_flight_plan(payload["flight_plan"], identifier)
    records = parse_flight_records(payload["track"], identifier or plan.identifier)

    config = get_adherence_config()
    report = compute_adherence(
        plan,
        records,
        match_window=payload.get("match_window_seconds"),
        config=config,
    )

    logger.info("adherence_computed",
        identifier=report.identifier,
        waypoints=len(report.waypoints),
        records=len(records),
        matched=report.summary.matched_count,
        unmatched=report.summary.unmatched_count,
        verdict=report.summary.verdict
    )
    return report.to_dict()


def create_adherence_agent(**kwargs) -> CapabilityAgent:
    return CapabilityAgent(
        name=ADHERENCE_AGENT_ID,
        handlers={CAPABILITY_ADHERENCE: handle_adherence},
        description="Plan-vs-actual adherence analysis for a single flight",
        **kwargs
    )
