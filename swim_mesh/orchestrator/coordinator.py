"""Workflow Coordinator - executes a plan's dependency graph

Every step whose dependencies have all succeeded runs as its own asyncio
task. Results are keyed by step id as they complete and reported in
declaration order. Failure handling:

- a step whose dependency did not succeed is skipped (DependencyFailed),
  transitively, and never started
- once a required step has failed nothing new starts; steps already running
  finish but their results are discarded (skipped, Cancelled)
- retries are per step, bounded, and only for failed/timed-out results
- an optional plan deadline cancels whatever is still running
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from ..utils.config import get_workflow_config, WorkflowConfig, MAX_STEP_RETRIES
from ..utils.logging import get_logger
from .exceptions import (
    ERROR_AGENT_TIMEOUT,
    ERROR_AGENT_FAILED,
    ERROR_NO_AGENT,
    ERROR_DEPENDENCY_FAILED,
    ERROR_CANCELLED,
)
from .invoker import AgentInvoker
from .models import Plan, PlanResult, PlanStatus, Step, StepResult, StepStatus

logger = get_logger("orchestrator")

RETRYABLE = (StepStatus.FAILED, StepStatus.TIMED_OUT)


def plan_status(plan: Plan, results: Dict[str, StepResult]) -> PlanStatus:
    """Any required step not successful fails the plan; optional ones only degrade it."""
    optional_failed = False
    for step in plan.steps:
        result = results.get(step.id)
        if result is not None and result.succeeded:
            continue
        if step.required:
            return PlanStatus.FAILED
        optional_failed = True
    return PlanStatus.PARTIALLY_FAILED if optional_failed else PlanStatus.COMPLETED


def _skipped(step: Step, error_type: str, error: str) -> StepResult:
    return StepResult(step_id=step.id, status=StepStatus.SKIPPED, error=error, error_type=error_type)


class WorkflowCoordinator:
    """Executes plans through an AgentInvoker"""

    def __init__(self, invoker: AgentInvoker, workflow_config: Optional[WorkflowConfig] = None):
        self.invoker = invoker
        self.workflow_config = workflow_config or get_workflow_config()

    async def _run_step(self, step: Step, prior: Dict[str, StepResult],
                        entities: Dict[str, Any]) -> StepResult:
        """Invoke a step, retrying failed/timed-out attempts up to its retry limit."""
        max_retries = min(step.max_retries, MAX_STEP_RETRIES)
        start_time = time.monotonic()
        attempts = 0

        while True:
            attempts += 1
            try:
                result = await self.invoker.invoke(step, prior, entities)
            except Exception as e:
                logger.error("step_invoker_error",
                    step_id=step.id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                result = StepResult(step_id=step.id, status=StepStatus.FAILED,
                                    error=str(e), error_type=ERROR_AGENT_FAILED)

            if (result.status not in RETRYABLE or result.error_type == ERROR_NO_AGENT
                    or not result.retryable or attempts > max_retries):
                break

            logger.info("step_retry",
                step_id=step.id,
                attempt=attempts,
                max_retries=max_retries,
                previous_status=result.status.value,
                error_type=result.error_type
            )
            await asyncio.sleep(self.workflow_config.retry_delay)

        return result.model_copy(update={
            "attempts": attempts,
            "duration_ms": round((time.monotonic() - start_time) * 1000, 3),
        })

    @staticmethod
    def _resolve_unstarted(pending: List[Step], results: Dict[str, StepResult]):
        """Close out steps that will never start, in declaration order."""
        for step in pending:
            # Dependencies still running have no result yet
            failed_deps = [d for d in step.depends_on if d in results and not results[d].succeeded]
            if failed_deps:
                results[step.id] = _skipped(step, ERROR_DEPENDENCY_FAILED,
                                            f"Dependencies did not succeed: {', '.join(failed_deps)}")
            else:
                results[step.id] = _skipped(step, ERROR_CANCELLED, "Plan stopped before this step started")
        pending.clear()

    async def execute(self, plan: Plan, timeout: Optional[float] = None) -> PlanResult:
        """Run a plan to completion and return every step's terminal result.

        ``timeout`` overrides the configured plan deadline.
        """
        started_at = datetime.now(timezone.utc)
        plan_timeout = timeout if timeout is not None else self.workflow_config.plan_timeout
        deadline = time.monotonic() + plan_timeout if plan_timeout else None

        results: Dict[str, StepResult] = {}
        pending: List[Step] = list(plan.steps)
        running: Dict[asyncio.Task, Step] = {}
        stopped = False

        logger.info("plan_started",
            plan_id=plan.id,
            source=plan.source.value,
            steps=len(plan.steps),
            status=PlanStatus.RUNNING.value
        )

        try:
            while True:
                if stopped:
                    self._resolve_unstarted(pending, results)
                else:
                    self._schedule(plan, pending, running, results)

                if not running:
                    break

                remaining = None
                if deadline is not None:
                    remaining = max(0.0, deadline - time.monotonic())
                done, _ = await asyncio.wait(
                    running.keys(), timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )

                if not done:
                    await self._expire(plan, running, results)
                    stopped = True
                    continue

                was_stopped = stopped
                for task in done:
                    step = running.pop(task)
                    result = task.result()
                    if was_stopped:
                        logger.info("step_result_discarded", plan_id=plan.id, step_id=step.id,
                                    status=result.status.value)
                        results[step.id] = _skipped(
                            step, ERROR_CANCELLED, "Discarded after a required step failed"
                        )
                        continue
                    results[step.id] = result
                    if step.required and not result.succeeded:
                        logger.warning("required_step_failed",
                            plan_id=plan.id,
                            step_id=step.id,
                            status=result.status.value,
                            error_type=result.error_type
                        )
                        stopped = True
        finally:
            for task in running:
                task.cancel()

        status = plan_status(plan, results)
        plan_result = PlanResult(
            plan_id=plan.id,
            status=status,
            results=tuple(results[step.id] for step in plan.steps),
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

        log = logger.info if status == PlanStatus.COMPLETED else logger.warning
        log("plan_completed",
            plan_id=plan.id,
            status=status.value,
            duration_ms=round(plan_result.duration_ms, 1),
            step_statuses={r.step_id: r.status.value for r in plan_result.results}
        )
        return plan_result

    def _schedule(self, plan: Plan, pending: List[Step], running: Dict[asyncio.Task, Step],
                  results: Dict[str, StepResult]):
        """Start every ready step; skip those whose dependencies failed."""
        progressed = True
        while progressed:
            progressed = False
            for step in list(pending):
                dep_results = [results.get(dep) for dep in step.depends_on]
                if any(r is not None and not r.succeeded for r in dep_results):
                    failed = [d for d, r in zip(step.depends_on, dep_results)
                              if r is not None and not r.succeeded]
                    results[step.id] = _skipped(step, ERROR_DEPENDENCY_FAILED,
                                                f"Dependencies did not succeed: {', '.join(failed)}")
                    logger.info("step_skipped", plan_id=plan.id, step_id=step.id,
                                failed_dependencies=failed)
                    pending.remove(step)
                    progressed = True
                elif all(r is not None for r in dep_results):
                    prior = {dep: results[dep] for dep in step.depends_on}
                    task = asyncio.create_task(self._run_step(step, prior, plan.entities))
                    running[task] = step
                    pending.remove(step)
                    logger.debug("step_started", plan_id=plan.id, step_id=step.id,
                                 capability=step.capability)

    async def _expire(self, plan: Plan, running: Dict[asyncio.Task, Step],
                      results: Dict[str, StepResult]):
        """Plan deadline reached: cancel running steps and mark them timed out."""
        for task in running:
            task.cancel()
        await asyncio.gather(*running.keys(), return_exceptions=True)
        for task, step in running.items():
            results[step.id] = StepResult(
                step_id=step.id,
                status=StepStatus.TIMED_OUT,
                error="Plan deadline exceeded",
                error_type=ERROR_AGENT_TIMEOUT,
            )
        logger.warning("plan_deadline_exceeded",
            plan_id=plan.id,
            cancelled_steps=[step.id for step in running.values()]
        )
        running.clear()
