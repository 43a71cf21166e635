"""Plan templates

A template is a function from extracted entities to a list of steps. The
router reuses the adherence trio for correlation questions and the event
trigger builds whole plans from templates by name.
"""

from typing import Any, Callable, Dict, List, Optional

from ..utils.config import (
    get_workflow_config,
    CAPABILITY_FLIGHT_POSITION,
    CAPABILITY_FLIGHT_PLAN,
    CAPABILITY_ADHERENCE,
    LANDING_REPORT_TEMPLATE,
)
from .exceptions import PlanValidationError
from .models import Plan, PlanSource, Step

FETCH_TRACK_STEP = "fetch_fdps_history"
FETCH_PLAN_STEP = "fetch_flight_plan"
CORRELATE_STEP = "correlate"


def adherence_steps(entities: Dict[str, Any], timeout: float, max_retries: int,
                    agents: Optional[Dict[str, str]] = None) -> List[Step]:
    """Two independent fetches followed by the correlation that needs both.

    ``agents`` optionally pins capabilities to agent ids.
    """
    agents = agents or {}

    track_inputs: Dict[str, Any] = {"flight": "{flight}", "history": True}
    if entities.get("time"):
        track_inputs["until"] = "{time}"
    plan_inputs: Dict[str, Any] = {"flight": "{flight}"}
    if entities.get("airport"):
        plan_inputs["destination"] = "{airport}"

    return [
        Step(
            id=FETCH_TRACK_STEP,
            capability=CAPABILITY_FLIGHT_POSITION,
            inputs=track_inputs,
            timeout=timeout,
            max_retries=max_retries,
            agent_id=agents.get(CAPABILITY_FLIGHT_POSITION),
            description="Fetch FDPS position history",
        ),
        Step(
            id=FETCH_PLAN_STEP,
            capability=CAPABILITY_FLIGHT_PLAN,
            inputs=plan_inputs,
            timeout=timeout,
            max_retries=max_retries,
            agent_id=agents.get(CAPABILITY_FLIGHT_PLAN),
            description="Fetch filed flight plan",
        ),
        Step(
            id=CORRELATE_STEP,
            capability=CAPABILITY_ADHERENCE,
            inputs={
                "flight": "{flight}",
                "flight_plan": "{steps.%s}" % FETCH_PLAN_STEP,
                "track": "{steps.%s}" % FETCH_TRACK_STEP,
            },
            depends_on=(FETCH_TRACK_STEP, FETCH_PLAN_STEP),
            timeout=timeout,
            max_retries=max_retries,
            agent_id=agents.get(CAPABILITY_ADHERENCE),
            description="Correlate planned route with actual track",
        ),
    ]


def landing_report(entities: Dict[str, Any], timeout: float, max_retries: int) -> List[Step]:
    """Template: plan-vs-actual report for a flight that just landed"""
    if not entities.get("flight"):
        raise PlanValidationError("landing_report needs a flight identifier")
    return adherence_steps(entities, timeout, max_retries)


TemplateFunc = Callable[[Dict[str, Any], float, int], List[Step]]


class PlanTemplates:
    """Library of named plan templates"""

    _templates: Dict[str, TemplateFunc] = {
        LANDING_REPORT_TEMPLATE: landing_report,
    }

    @classmethod
    def names(cls) -> List[str]:
        return sorted(cls._templates)

    @classmethod
    def register(cls, name: str, template: TemplateFunc):
        cls._templates[name] = template

    @classmethod
    def build(cls, name: str, entities: Dict[str, Any], intent: str = "",
              source: PlanSource = PlanSource.EVENT) -> Plan:
        """Instantiate a template into a validated plan.

        Raises:
            PlanValidationError: unknown template or unusable entities
        """
        template = cls._templates.get(name)
        if template is None:
            raise PlanValidationError(f"Unknown plan template: {name}")

        workflow_config = get_workflow_config()
        steps = template(entities, workflow_config.step_timeout, workflow_config.max_retries)
        try:
            return Plan(
                steps=tuple(steps),
                intent=intent or name,
                entities=dict(entities),
                source=source,
            )
        except ValueError as e:
            raise PlanValidationError(f"Template {name} produced an invalid plan: {e}") from e
