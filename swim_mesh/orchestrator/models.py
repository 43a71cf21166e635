"""Data models for plan execution"""

import re
import uuid
from typing import Dict, Any, List, Optional, Tuple, Iterator
from enum import Enum
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.config import (
    DEFAULT_STEP_TIMEOUT_SECONDS,
    DEFAULT_STEP_MAX_RETRIES,
    MAX_STEP_RETRIES,
)

# {steps.<id>} or {steps.<id>.<path>}
STEP_REFERENCE = re.compile(r"\{steps\.([A-Za-z0-9_\-]+)((?:\.[A-Za-z0-9_\-]+)*)\}")


def iter_step_references(value: Any) -> Iterator[str]:
    """Yield the step ids referenced anywhere inside an input template."""
    if isinstance(value, str):
        for match in STEP_REFERENCE.finditer(value):
            yield match.group(1)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_step_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_step_references(item)


class StepStatus(str, Enum):
    """Terminal step states"""
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed-out"
    SKIPPED = "skipped"


class PlanStatus(str, Enum):
    """Plan execution states"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially-failed"
    FAILED = "failed"


class PlanSource(str, Enum):
    REQUEST = "request"
    EVENT = "event"


class Step(BaseModel):
    """Single capability invocation in a plan"""
    model_config = ConfigDict(frozen=True)

    id: str
    capability: str
    inputs: Dict[str, Any] = Field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()
    timeout: float = Field(default=DEFAULT_STEP_TIMEOUT_SECONDS, gt=0)
    required: bool = True
    agent_id: Optional[str] = None  # Pinned by the router; re-resolved if no longer available
    max_retries: int = DEFAULT_STEP_MAX_RETRIES
    description: Optional[str] = None

    @field_validator("max_retries")
    @classmethod
    def _bound_retries(cls, value: int) -> int:
        return max(0, min(value, MAX_STEP_RETRIES))


class Plan(BaseModel):
    """Ordered, acyclic set of steps built per request or event.

    Every dependency must name an earlier step, which makes the declaration
    order a valid topological order.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"plan_{uuid.uuid4().hex[:12]}")
    steps: Tuple[Step, ...]
    intent: str = ""
    entities: Dict[str, Any] = Field(default_factory=dict)
    source: PlanSource = PlanSource.REQUEST
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_graph(self) -> 'Plan':
        if not self.steps:
            raise ValueError("plan has no steps")

        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id '{step.id}'")
            for dep in step.depends_on:
                if dep not in seen:
                    raise ValueError(
                        f"step '{step.id}' depends on '{dep}', which is not an earlier step"
                    )
            for ref in iter_step_references(step.inputs):
                if ref not in step.depends_on:
                    raise ValueError(
                        f"step '{step.id}' references output of '{ref}' without depending on it"
                    )
            seen.add(step.id)
        return self

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def dependants_of(self, step_id: str) -> List[Step]:
        """Steps that directly depend on ``step_id``."""
        return [step for step in self.steps if step_id in step.depends_on]


class StepResult(BaseModel):
    """Outcome of one step, attributed by step id"""
    model_config = ConfigDict(frozen=True)

    step_id: str
    status: StepStatus
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    agent_id: Optional[str] = None
    attempts: int = 0
    duration_ms: float = 0.0
    # False when the agent rejected the input itself; another attempt would fail the same way
    retryable: bool = True

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCESS


class PlanResult(BaseModel):
    """All terminal step results of a plan, in declaration order"""
    model_config = ConfigDict(frozen=True)

    plan_id: str
    status: PlanStatus
    results: Tuple[StepResult, ...]
    started_at: datetime
    completed_at: datetime

    @property
    def duration_ms(self) -> float:
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def get(self, step_id: str) -> Optional[StepResult]:
        for result in self.results:
            if result.step_id == step_id:
                return result
        return None

    def by_capability(self, plan: Plan, capability: str) -> List[StepResult]:
        wanted = {step.id for step in plan.steps if step.capability == capability}
        return [result for result in self.results if result.step_id in wanted]

    def unsuccessful(self) -> List[StepResult]:
        return [result for result in self.results if not result.succeeded]
