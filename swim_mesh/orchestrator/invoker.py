"""Agent Invoker - executes one step against one agent

The invoker never raises for agent-level failures: every outcome becomes a
StepResult. Transport is chosen by the agent endpoint's scheme, so adding a
new kind of agent means registering a new adapter and nothing else.
"""

import asyncio
import json
import re
import time
from collections.abc import Mapping
from typing import Dict, Any, Optional, Protocol, Tuple, Callable, Awaitable
from urllib.parse import urlparse

from ..a2a import (
    A2AClient,
    A2AException,
    A2ATimeoutError,
    A2AConnectionError,
    A2AMalformedResponse,
    INVALID_PARAMS,
)
from ..utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerConfig,
    CircuitBreakerException,
)
from ..utils.config import get_a2a_config, HTTP_SCHEMES, LOCAL_SCHEME
from ..utils.logging import get_logger
from .agent_registry import AgentRegistry, AgentDescriptor, AgentStatus
from .exceptions import (
    ERROR_AGENT_TIMEOUT,
    ERROR_AGENT_FAILED,
    ERROR_MALFORMED_RESPONSE,
    ERROR_NO_AGENT,
)
from .models import Step, StepResult, StepStatus

logger = get_logger("orchestrator")

PLACEHOLDER = re.compile(r"\{([A-Za-z0-9_\-]+(?:\.[A-Za-z0-9_\-]+)*)\}")


def is_error_document(document: Any) -> bool:
    """An agent error response is a mapping whose only key is ``error``."""
    return isinstance(document, Mapping) and set(document.keys()) == {"error"}


def is_input_rejection(document: Mapping) -> bool:
    """The agent refused the request's parameters (JSON-RPC INVALID_PARAMS)."""
    error = document.get("error")
    return isinstance(error, Mapping) and error.get("code") == INVALID_PARAMS


def _error_document(e: A2AException) -> Dict[str, Any]:
    return {"error": {"code": e.code, "message": str(e), "data": e.data}}


def _lookup(path: str, entities: Dict[str, Any], outputs: Dict[str, Any]) -> Tuple[bool, Any]:
    parts = path.split(".")
    if parts[0] == "steps":
        current: Any = outputs
        parts = parts[1:]
    else:
        current = entities

    for part in parts:
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return False, None
    return True, current


def _resolve_string(value: str, entities: Dict[str, Any], outputs: Dict[str, Any]) -> Any:
    whole = PLACEHOLDER.fullmatch(value)
    if whole:
        found, resolved = _lookup(whole.group(1), entities, outputs)
        # A lone reference keeps the referenced object's type
        return resolved if found else value

    def substitute(match):
        found, resolved = _lookup(match.group(1), entities, outputs)
        if not found:
            return match.group(0)
        if isinstance(resolved, str):
            return resolved
        return json.dumps(resolved, default=str, sort_keys=True)

    return PLACEHOLDER.sub(substitute, value)


def resolve_inputs(template: Any, entities: Dict[str, Any], outputs: Dict[str, Any]) -> Any:
    """Substitute ``{entity}`` and ``{steps.<id>[.<path>]}`` placeholders.

    Unknown placeholders are left untouched.
    """
    if isinstance(template, str):
        return _resolve_string(template, entities, outputs)
    if isinstance(template, Mapping):
        return {key: resolve_inputs(value, entities, outputs) for key, value in template.items()}
    if isinstance(template, (list, tuple)):
        return [resolve_inputs(item, entities, outputs) for item in template]
    return template


class InvocationAdapter(Protocol):
    async def send(self, agent: AgentDescriptor, capability: str, payload: Dict[str, Any]) -> Any:
        ...


class A2AAdapter:
    """Invokes remote agents over A2A JSON-RPC.

    A JSON-RPC error from the agent becomes an error document; transport
    failures propagate so the invoker can classify them.
    """

    def __init__(self, client: Optional[A2AClient] = None):
        self.client = client or A2AClient()

    async def send(self, agent: AgentDescriptor, capability: str, payload: Dict[str, Any]) -> Any:
        try:
            return await self.client.invoke(agent.endpoint, capability, payload)
        except (A2ATimeoutError, A2AConnectionError, A2AMalformedResponse):
            raise
        except A2AException as e:
            return _error_document(e)

    async def close(self):
        await self.client.close()


LocalHandler = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class LocalAdapter:
    """Invokes in-process agents addressed as ``local://<name>``

    An A2AException raised by the handler becomes an error document, the
    same answer a remote agent would have sent back.
    """

    def __init__(self, handlers: Optional[Dict[str, LocalHandler]] = None):
        self.handlers: Dict[str, LocalHandler] = dict(handlers or {})

    def register(self, name: str, handler: LocalHandler):
        self.handlers[name] = handler

    async def send(self, agent: AgentDescriptor, capability: str, payload: Dict[str, Any]) -> Any:
        name = urlparse(agent.endpoint).netloc
        handler = self.handlers.get(name)
        if handler is None:
            raise A2AConnectionError(f"No in-process agent named '{name}'")
        try:
            return await handler(capability, payload)
        except (A2ATimeoutError, A2AConnectionError, A2AMalformedResponse):
            raise
        except A2AException as e:
            return _error_document(e)


def _error_message(error: Any) -> str:
    return str(error.get("message") if isinstance(error, Mapping) else error)


class _AgentErrorDocument(Exception):
    def __init__(self, error: Any):
        self.error = error
        super().__init__(_error_message(error))


class _NotADocument(Exception):
    pass


class _InputRejected:
    """A well-formed refusal of the request's parameters.

    Passed back through the circuit breaker as a normal answer: the agent is
    healthy, the upstream data was not.
    """

    def __init__(self, error: Any):
        self.error = error
        self.message = _error_message(error)


class AgentInvoker:
    """Runs single steps with a timeout and a per-agent circuit breaker"""

    def __init__(self, registry: AgentRegistry,
                 adapters: Optional[Dict[str, InvocationAdapter]] = None,
                 breakers: Optional[CircuitBreakerRegistry] = None):
        self.registry = registry
        self.adapters: Dict[str, InvocationAdapter] = dict(adapters or {})
        if breakers is None:
            a2a_config = get_a2a_config()
            breakers = CircuitBreakerRegistry(CircuitBreakerConfig(
                failure_threshold=a2a_config.circuit_breaker_threshold,
                timeout=a2a_config.circuit_breaker_timeout,
                half_open_max_calls=a2a_config.half_open_max_calls,
            ))
        self.breakers = breakers
        self._releases: Dict[str, asyncio.TimerHandle] = {}

    @classmethod
    def with_default_adapters(cls, registry: AgentRegistry,
                              client: Optional[A2AClient] = None,
                              local: Optional[LocalAdapter] = None) -> 'AgentInvoker':
        invoker = cls(registry)
        a2a = A2AAdapter(client)
        for scheme in HTTP_SCHEMES:
            invoker.register_adapter(scheme, a2a)
        invoker.register_adapter(LOCAL_SCHEME, local or LocalAdapter())
        return invoker

    def register_adapter(self, scheme: str, adapter: InvocationAdapter):
        self.adapters[scheme] = adapter

    def _select_agent(self, step: Step) -> Optional[AgentDescriptor]:
        if step.agent_id:
            pinned = self.registry.get(step.agent_id)
            if pinned is not None and pinned.status == AgentStatus.AVAILABLE:
                return pinned
            logger.info("pinned_agent_unavailable", step_id=step.id, agent_id=step.agent_id)
        candidates = self.registry.find(step.capability)
        return candidates[0] if candidates else None

    def _degrade(self, agent_id: str, breaker: CircuitBreaker):
        """Take an agent out of routing while its breaker is open.

        The agent is put back once the breaker timeout has run out, so the
        next call through it is the breaker's half-open trial call. A failed
        trial call reopens the breaker and degrades the agent again.
        """
        self.registry.mark_degraded(agent_id)
        pending = self._releases.pop(agent_id, None)
        if pending is not None:
            pending.cancel()
        delay = max(0.0, breaker.config.timeout - (time.monotonic() - breaker.last_failure_time))
        self._releases[agent_id] = asyncio.get_running_loop().call_later(delay, self._release, agent_id)

    def _release(self, agent_id: str):
        self._releases.pop(agent_id, None)
        current = self.registry.get(agent_id)
        if current is not None and current.status == AgentStatus.DEGRADED:
            logger.info("agent_released_for_trial_call", agent_id=agent_id)
            self.registry.mark_available(agent_id)

    async def _send(self, adapter: InvocationAdapter, agent: AgentDescriptor,
                    step: Step, payload: Dict[str, Any]) -> Any:
        response = await asyncio.wait_for(
            adapter.send(agent, step.capability, payload),
            timeout=step.timeout
        )
        if not isinstance(response, Mapping):
            raise _NotADocument(f"expected a JSON object, got {type(response).__name__}")
        if is_error_document(response):
            if is_input_rejection(response):
                return _InputRejected(response["error"])
            raise _AgentErrorDocument(response["error"])
        return dict(response)

    async def invoke(self, step: Step, prior_results: Dict[str, StepResult],
                     entities: Dict[str, Any]) -> StepResult:
        """Execute one step; agent-level failures come back as results."""
        start_time = time.monotonic()

        def result(status: StepStatus, agent_id: Optional[str] = None, payload=None,
                   error: Optional[str] = None, error_type: Optional[str] = None,
                   retryable: bool = True) -> StepResult:
            return StepResult(
                step_id=step.id,
                status=status,
                payload=payload,
                error=error,
                error_type=error_type,
                agent_id=agent_id,
                attempts=1,
                duration_ms=round((time.monotonic() - start_time) * 1000, 3),
                retryable=retryable,
            )

        agent = self._select_agent(step)
        if agent is None:
            logger.warning("step_no_agent", step_id=step.id, capability=step.capability)
            return result(StepStatus.FAILED,
                          error=f"No available agent for capability '{step.capability}'",
                          error_type=ERROR_NO_AGENT)

        adapter = self.adapters.get(agent.scheme)
        if adapter is None:
            return result(StepStatus.FAILED, agent.id,
                          error=f"No adapter for endpoint scheme '{agent.scheme}'",
                          error_type=ERROR_AGENT_FAILED)

        outputs = {sid: r.payload for sid, r in prior_results.items() if r.succeeded}
        payload = resolve_inputs(step.inputs, entities, outputs)
        breaker = self.breakers.get_breaker(agent.id)

        logger.debug("step_invoking",
            step_id=step.id,
            capability=step.capability,
            agent_id=agent.id,
            timeout=step.timeout
        )

        try:
            document = await breaker.call(self._send, adapter, agent, step, payload)
        except CircuitBreakerException as e:
            self._degrade(agent.id, breaker)
            return result(StepStatus.FAILED, agent.id, error=str(e), error_type=ERROR_AGENT_FAILED)
        except (asyncio.TimeoutError, A2ATimeoutError):
            outcome = result(StepStatus.TIMED_OUT, agent.id,
                             error=f"Agent {agent.id} did not answer within {step.timeout}s",
                             error_type=ERROR_AGENT_TIMEOUT)
        except (_NotADocument, A2AMalformedResponse) as e:
            outcome = result(StepStatus.FAILED, agent.id, error=str(e),
                             error_type=ERROR_MALFORMED_RESPONSE)
        except _AgentErrorDocument as e:
            outcome = result(StepStatus.FAILED, agent.id, error=str(e),
                             error_type=ERROR_AGENT_FAILED)
        except Exception as e:
            outcome = result(StepStatus.FAILED, agent.id,
                             error=f"{type(e).__name__}: {e}",
                             error_type=ERROR_AGENT_FAILED)
        else:
            if isinstance(document, _InputRejected):
                logger.warning("step_input_rejected",
                    step_id=step.id,
                    agent_id=agent.id,
                    error=document.message
                )
                return result(StepStatus.FAILED, agent.id, error=document.message,
                              error_type=ERROR_AGENT_FAILED, retryable=False)
            logger.info("step_succeeded",
                step_id=step.id,
                agent_id=agent.id,
                duration_ms=round((time.monotonic() - start_time) * 1000, 1)
            )
            return result(StepStatus.SUCCESS, agent.id, payload=document)

        if not breaker.is_closed:
            self._degrade(agent.id, breaker)
        logger.warning("step_failed",
            step_id=step.id,
            agent_id=agent.id,
            status=outcome.status.value,
            error_type=outcome.error_type,
            error=outcome.error
        )
        return outcome

    async def close(self):
        for handle in self._releases.values():
            handle.cancel()
        self._releases.clear()
        closed = set()
        for adapter in self.adapters.values():
            if id(adapter) in closed:
                continue
            closed.add(id(adapter))
            close = getattr(adapter, "close", None)
            if close is not None:
                await close()
