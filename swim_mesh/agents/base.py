"""Hosting base for capability agents

A capability agent wraps one or more async handlers, one per capability tag,
and exposes them over A2A (``invoke`` and ``get_agent_card``). The same
agent can run in-process behind the orchestrator's LocalAdapter, which is how
the built-in adherence engine is served.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiohttp import web

from ..a2a import AgentCard, A2AServer, A2AException, INVALID_PARAMS
from ..orchestrator.agent_registry import AgentDescriptor
from ..utils.config import (
    A2A_METHOD_INVOKE,
    A2A_METHOD_AGENT_CARD,
    DEFAULT_A2A_PORT,
    DEFAULT_HOST,
    LOCAL_SCHEME,
    LOCALHOST,
)
from ..utils.logging import get_logger

logger = get_logger("agents")

CapabilityHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class CapabilityAgent:
    """An agent serving a fixed set of capabilities"""

    def __init__(self, name: str, handlers: Dict[str, CapabilityHandler],
                 description: str = "", version: str = "1.0.0",
                 host: str = DEFAULT_HOST, port: int = DEFAULT_A2A_PORT):
        if not handlers:
            raise ValueError("a capability agent needs at least one handler")
        self.name = name
        self.handlers = dict(handlers)
        self.description = description
        self.version = version
        self.host = host
        self.port = port
        self._server: Optional[A2AServer] = None
        self._runner: Optional[web.AppRunner] = None

    @property
    def capabilities(self) -> List[str]:
        return sorted(self.handlers)

    @property
    def a2a_endpoint(self) -> str:
        host = LOCALHOST if self.host == DEFAULT_HOST else self.host
        return f"http://{host}:{self.port}/a2a"

    @property
    def agent_card(self) -> AgentCard:
        return AgentCard(
            name=self.name,
            version=self.version,
            description=self.description,
            capabilities=self.capabilities,
            endpoints={"a2a": self.a2a_endpoint},
            communication_modes=["sync"],
        )

    def descriptor(self, endpoint: Optional[str] = None) -> AgentDescriptor:
        """Registry entry for this agent; in-process unless an endpoint is given."""
        return AgentDescriptor(
            id=self.name,
            capabilities=frozenset(self.handlers),
            endpoint=endpoint or f"{LOCAL_SCHEME}://{self.name}",
            description=self.description,
        )

    async def dispatch(self, capability: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Run a capability handler.

        Raises:
            A2AException: unknown capability or invalid input (INVALID_PARAMS)
        """
        handler = self.handlers.get(capability)
        if handler is None:
            raise A2AException(f"{self.name} does not serve capability '{capability}'",
                               code=INVALID_PARAMS)
        if not isinstance(payload, dict):
            raise A2AException("input must be an object", code=INVALID_PARAMS)

        try:
            return await handler(payload)
        except ValueError as e:
            logger.warning("agent_invalid_input",
                agent=self.name,
                capability=capability,
                error=str(e)
            )
            raise A2AException(f"Invalid input: {e}", code=INVALID_PARAMS)

    async def _handle_invoke(self, params: Dict[str, Any]) -> Dict[str, Any]:
        capability = params.get("capability")
        if not isinstance(capability, str):
            raise A2AException("params.capability must be a string", code=INVALID_PARAMS)
        return await self.dispatch(capability, params.get("input", {}))

    async def _handle_agent_card(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self.agent_card.to_dict()

    def build_server(self) -> A2AServer:
        server = A2AServer(self.agent_card, self.host, self.port)
        server.register_handler(A2A_METHOD_INVOKE, self._handle_invoke)
        server.register_handler(A2A_METHOD_AGENT_CARD, self._handle_agent_card)
        return server

    async def start(self):
        self._server = self.build_server()
        self._runner = await self._server.start()
        logger.info("agent_started", agent=self.name, capabilities=self.capabilities,
                    endpoint=self.a2a_endpoint)

    async def stop(self):
        if self._server is not None and self._runner is not None:
            await self._server.stop(self._runner)
        self._server = None
        self._runner = None
