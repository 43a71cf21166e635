"""Response Composer - answers for requests, reports for events

Whatever the output form, every step that did not succeed and every
Unmatched waypoint is listed explicitly; partial answers are preferred over
no answer.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from langchain_core.messages import SystemMessage, HumanMessage

from ..adherence.engine import parse_flight_plan
from ..utils.config import CAPABILITY_ADHERENCE, CAPABILITY_FLIGHT_PLAN
from ..utils.logging import get_logger
from .models import Plan, PlanResult

logger = get_logger("orchestrator")

ANSWER_SYSTEM_PROMPT = """You answer questions about live aviation data using only the step results provided.
Each step result comes from a data-access agent (FDPS positions, SMES surface movement, TFMS flight plans,
SWIM documentation, or the adherence engine). Be concise and factual. Do not invent values.
If a step failed, was skipped, or a waypoint is Unmatched, say so plainly rather than guessing."""

PAYLOAD_PREVIEW_CHARS = 600


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def describe_issue(issue: Dict[str, Any]) -> str:
    if issue["kind"] == "unmatched-waypoint":
        return f"waypoint {issue['waypoint']}: Unmatched (no observed position within the match window)"
    detail = f"{issue['step_id']} ({issue['capability']}): {issue['status']}"
    if issue.get("error_type"):
        detail += f" [{issue['error_type']}]"
    if issue.get("error"):
        detail += f" {issue['error']}"
    return detail


class ResponseComposer:
    """Turns plan results into a chat answer or a publishable report"""

    def __init__(self, llm=None, publisher=None):
        self.llm = llm
        self.publisher = publisher

    @staticmethod
    def _adherence_payload(plan: Plan, result: PlanResult) -> Optional[Dict[str, Any]]:
        for step_result in result.by_capability(plan, CAPABILITY_ADHERENCE):
            if step_result.succeeded and step_result.payload:
                return step_result.payload
        return None

    def issues(self, plan: Plan, result: PlanResult) -> List[Dict[str, Any]]:
        """Non-successful steps, then Unmatched waypoints."""
        issues: List[Dict[str, Any]] = []
        for step, step_result in zip(plan.steps, result.results):
            if step_result.succeeded:
                continue
            issues.append({
                "kind": "step",
                "step_id": step.id,
                "capability": step.capability,
                "required": step.required,
                "status": step_result.status.value,
                "error_type": step_result.error_type,
                "error": step_result.error,
            })

        adherence = self._adherence_payload(plan, result)
        if adherence:
            for waypoint in adherence.get("waypoints", []):
                if not waypoint.get("matched", True):
                    issues.append({
                        "kind": "unmatched-waypoint",
                        "waypoint": waypoint.get("waypoint"),
                        "planned_time": waypoint.get("planned_time"),
                    })
        return issues

    @staticmethod
    def grounding_context(plan: Plan, result: PlanResult) -> str:
        entries = []
        for step, step_result in zip(plan.steps, result.results):
            entries.append({
                "step_id": step.id,
                "capability": step.capability,
                "description": step.description,
                "status": step_result.status.value,
                "payload": step_result.payload,
                "error_type": step_result.error_type,
                "error": step_result.error,
            })
        return json.dumps(entries, default=str, sort_keys=True, indent=2)

    def summarize(self, plan: Plan, result: PlanResult) -> str:
        """Deterministic answer used when no language model is available."""
        lines = [f"Results for: {plan.intent}" if plan.intent else "Results:"]
        adherence = self._adherence_payload(plan, result)
        if adherence:
            lines.append(adherence.get("summary", {}).get("text", ""))
        for step, step_result in zip(plan.steps, result.results):
            if not step_result.succeeded or step.capability == CAPABILITY_ADHERENCE:
                continue
            preview = json.dumps(step_result.payload, default=str, sort_keys=True)
            if len(preview) > PAYLOAD_PREVIEW_CHARS:
                preview = preview[:PAYLOAD_PREVIEW_CHARS] + "..."
            lines.append(f"- {step.capability}: {preview}")
        return "\n".join(line for line in lines if line)

    async def compose_answer(self, question: str, plan: Plan, result: PlanResult) -> str:
        """Natural-language answer grounded in the step results."""
        text = None
        if self.llm is not None:
            try:
                response = await self.llm.ainvoke([
                    SystemMessage(content=ANSWER_SYSTEM_PROMPT),
                    HumanMessage(content=(
                        f"Question: {question}\n\n"
                        f"Plan status: {result.status.value}\n\n"
                        f"Step results (JSON):\n{self.grounding_context(plan, result)}"
                    )),
                ])
                text = response.content if isinstance(response.content, str) else str(response.content)
            except Exception as e:
                logger.error("answer_composition_failed",
                    plan_id=plan.id,
                    error=str(e),
                    error_type=type(e).__name__
                )

        if not text:
            text = self.summarize(plan, result)

        issues = self.issues(plan, result)
        if issues:
            text += "\n\nMissing or degraded:\n" + "\n".join(f"- {describe_issue(i)}" for i in issues)
        return text

    def _planned_landing(self, plan: Plan, result: PlanResult,
                         adherence: Optional[Dict[str, Any]]) -> Optional[datetime]:
        for step_result in result.by_capability(plan, CAPABILITY_FLIGHT_PLAN):
            if step_result.succeeded and step_result.payload:
                try:
                    return parse_flight_plan(step_result.payload, plan.entities.get("flight")).destination_eta
                except ValueError:
                    logger.warning("flight_plan_unparseable", plan_id=plan.id, step_id=step_result.step_id)
        if adherence and adherence.get("waypoints"):
            return _parse_time(adherence["waypoints"][-1].get("planned_time"))
        return None

    def compose_report(self, plan: Plan, result: PlanResult, entities: Dict[str, Any],
                       topic: Optional[str] = None) -> Dict[str, Any]:
        """Structured landing report for republication."""
        adherence = self._adherence_payload(plan, result)
        actual = _parse_time(entities.get("time"))
        planned = self._planned_landing(plan, result, adherence)

        landing: Dict[str, Any] = {
            "actual": actual.isoformat() if actual else None,
            "planned": planned.isoformat() if planned else None,
            "delta_seconds": None,
            "status": "unknown",
        }
        if actual and planned:
            delta = (actual - planned).total_seconds()
            landing["delta_seconds"] = delta
            landing["status"] = "late" if delta > 0 else "early" if delta < 0 else "on-time"

        if adherence:
            adherence_section = dict(adherence.get("summary", {}))
            adherence_section["status"] = "available"
        else:
            adherence_section = {"status": "unavailable"}

        return {
            "identification": {
                "flight": entities.get("flight"),
                "airport": entities.get("airport"),
                "event_time": entities.get("time"),
                "event_topic": topic,
                "plan_id": plan.id,
            },
            "landing": landing,
            "adherence": adherence_section,
            "plan_status": result.status.value,
            "steps": [
                {
                    "step_id": r.step_id,
                    "status": r.status.value,
                    "agent_id": r.agent_id,
                    "attempts": r.attempts,
                    "error_type": r.error_type,
                }
                for r in result.results
            ],
            "issues": self.issues(plan, result),
            "generated_at": result.completed_at.isoformat(),
        }

    async def publish(self, topic: str, report: Dict[str, Any]) -> bool:
        """Fire-and-forget publication; failures are logged, never raised."""
        if self.publisher is None:
            logger.warning("report_not_published", topic=topic, reason="no publisher configured")
            return False
        try:
            await self.publisher.publish(topic, report)
        except Exception as e:
            logger.error("report_publish_failed",
                topic=topic,
                error=str(e),
                error_type=type(e).__name__
            )
            return False
        return True
