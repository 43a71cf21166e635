"""
Agent-to-agent (A2A) transport.

JSON-RPC 2.0 over HTTP between the orchestrator and the data-access agents.
Each agent serves ``POST /a2a`` for method calls and ``GET /a2a/agent-card``
for discovery. The orchestrator only ever calls two methods: ``invoke``
(run a capability against an input document) and ``get_agent_card``.

Failures are mapped onto a small exception hierarchy so that callers can tell
a slow agent (A2ATimeoutError) from an unreachable one (A2AConnectionError)
from one that answered with garbage (A2AMalformedResponse). An agent that
answers with a JSON-RPC error object raises plain A2AException carrying the
error code.
"""

import json
import asyncio
import time
import uuid
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict, field

import aiohttp
from aiohttp import web

from ..utils.config import (
    get_a2a_config,
    DEFAULT_A2A_PORT, DEFAULT_HOST,
    A2A_METHOD_INVOKE, A2A_METHOD_AGENT_CARD,
)
from ..utils.logging import get_logger

logger = get_logger("a2a")

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


@dataclass
class AgentCard:
    """Self-description an agent publishes for discovery."""
    name: str
    version: str
    description: str
    capabilities: List[str]
    endpoints: Dict[str, str] = field(default_factory=dict)
    communication_modes: List[str] = field(default_factory=lambda: ["sync"])
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AgentCard':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class A2ARequest:
    """JSON-RPC 2.0 request envelope."""

    def __init__(self, method: str, params: Dict[str, Any], request_id: Optional[str] = None):
        self.jsonrpc = "2.0"
        self.method = method
        self.params = params
        self.id = request_id or str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jsonrpc": self.jsonrpc,
            "method": self.method,
            "params": self.params,
            "id": self.id
        }


class A2AResponse:
    """JSON-RPC 2.0 response envelope (exactly one of result/error)."""

    def __init__(self, result: Any = None, error: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        self.jsonrpc = "2.0"
        self.result = result
        self.error = error
        self.id = request_id

    def to_dict(self) -> Dict[str, Any]:
        response = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            response["error"] = self.error
        else:
            response["result"] = self.result
        return response


class A2AException(Exception):
    """Protocol-level failure talking to an agent.

    ``code`` carries the JSON-RPC error code when the agent sent one.
    """

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class A2ATimeoutError(A2AException):
    """The agent did not answer within the request timeout."""


class A2AConnectionError(A2AException):
    """The agent could not be reached."""


class A2AMalformedResponse(A2AException):
    """The agent answered with something that is not a JSON-RPC response."""


class A2AClient:
    """Client for JSON-RPC calls to agents.

    The underlying aiohttp session is created lazily and shared by every call
    made through this client, so one client serves all concurrent plan steps.

    Usage:
        async with A2AClient() as client:
            payload = await client.invoke(endpoint, "flight-plan", {"flight": "AAL123"})
    """

    def __init__(self, timeout: Optional[float] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        a2a_config = get_a2a_config()
        self.timeout = timeout if timeout is not None else a2a_config.timeout
        self.connect_timeout = a2a_config.connect_timeout
        self.pool_size = a2a_config.connection_pool_size
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout, connect=self.connect_timeout),
                connector=aiohttp.TCPConnector(limit=self.pool_size)
            )
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def call(self, endpoint: str, method: str, params: Dict[str, Any],
                   request_id: Optional[str] = None) -> Any:
        """Make a JSON-RPC call and return its ``result`` member.

        Raises:
            A2ATimeoutError: the request timed out
            A2AConnectionError: the agent could not be reached
            A2AMalformedResponse: the body was not a JSON-RPC response
            A2AException: the agent answered with a JSON-RPC error
        """
        request = A2ARequest(method, params, request_id)
        session = self._get_session()
        start_time = time.monotonic()

        logger.debug("a2a_call_start",
            endpoint=endpoint,
            method=method,
            request_id=request.id,
            params_keys=list(params.keys())
        )

        try:
            async with session.post(
                endpoint,
                json=request.to_dict(),
                headers={"Content-Type": "application/json"}
            ) as response:
                status = response.status
                body = await response.text()
        except asyncio.TimeoutError:
            elapsed = time.monotonic() - start_time
            logger.warning("a2a_call_timeout",
                endpoint=endpoint,
                method=method,
                elapsed_seconds=round(elapsed, 3),
                timeout_seconds=self.timeout
            )
            raise A2ATimeoutError(f"Request to {endpoint} timed out after {elapsed:.2f}s")
        except aiohttp.ClientError as e:
            logger.warning("a2a_call_network_error",
                endpoint=endpoint,
                method=method,
                error=str(e),
                error_type=type(e).__name__
            )
            raise A2AConnectionError(f"Network error calling {endpoint}: {e}")

        try:
            document = json.loads(body)
        except (json.JSONDecodeError, ValueError):
            if status != 200:
                raise A2AException(f"HTTP {status}: {body[:200]}")
            raise A2AMalformedResponse(f"Agent at {endpoint} returned invalid JSON")

        if not isinstance(document, dict):
            raise A2AMalformedResponse(f"Agent at {endpoint} returned a non-object response")

        if "error" in document and document["error"] is not None:
            error = document["error"]
            if isinstance(error, dict):
                message = error.get("message", "Unknown error")
                code = error.get("code")
                data = error.get("data")
            else:
                message, code, data = str(error), None, None
            logger.warning("a2a_call_agent_error",
                endpoint=endpoint,
                method=method,
                error_code=code,
                error=message
            )
            raise A2AException(f"Agent error: {message}", code=code, data=data)

        if status != 200:
            raise A2AException(f"HTTP {status}")

        if "result" not in document:
            raise A2AMalformedResponse(f"Agent at {endpoint} returned neither result nor error")

        logger.debug("a2a_call_success",
            endpoint=endpoint,
            method=method,
            request_id=request.id,
            duration_ms=round((time.monotonic() - start_time) * 1000, 1)
        )
        return document["result"]

    async def invoke(self, endpoint: str, capability: str, payload: Dict[str, Any]) -> Any:
        """Ask an agent to run one capability against an input document."""
        return await self.call(
            endpoint,
            A2A_METHOD_INVOKE,
            {"capability": capability, "input": payload}
        )

    async def get_agent_card(self, endpoint: str) -> AgentCard:
        """Retrieve an agent's self-description (also used as a health check)."""
        result = await self.call(endpoint, A2A_METHOD_AGENT_CARD, {})
        if not isinstance(result, dict):
            raise A2AMalformedResponse(f"Agent at {endpoint} returned an invalid agent card")
        try:
            return AgentCard.from_dict(result)
        except TypeError as e:
            raise A2AMalformedResponse(f"Agent at {endpoint} returned an invalid agent card: {e}")


class A2AServer:
    """JSON-RPC 2.0 server embedded in every capability agent.

    Error codes follow JSON-RPC 2.0:
    - -32700: Parse error (malformed JSON)
    - -32600: Invalid request (wrong structure)
    - -32601: Method not found
    - -32602: Invalid params
    - -32603: Internal error
    """

    def __init__(self, agent_card: AgentCard, host: str = DEFAULT_HOST, port: int = DEFAULT_A2A_PORT):
        self.agent_card = agent_card
        self.host = host
        self.port = port
        self.app = web.Application()
        self.handlers = {}
        self._setup_routes()

    def _setup_routes(self):
        self.app.router.add_post("/a2a", self._handle_request)
        self.app.router.add_get("/a2a/agent-card", self._handle_agent_card)

    def register_handler(self, method: str, handler):
        """Register an async handler taking the params dict."""
        self.handlers[method] = handler

    async def _handle_agent_card(self, request: web.Request) -> web.Response:
        return web.json_response(self.agent_card.to_dict())

    @staticmethod
    def _error(code: int, message: str, status: int, request_id: Optional[str] = None,
               data: Any = None) -> web.Response:
        error = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return web.json_response(A2AResponse(error=error, request_id=request_id).to_dict(), status=status)

    async def _handle_request(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return self._error(PARSE_ERROR, "Parse error", 400)

        if not isinstance(data, dict) or data.get("jsonrpc") != "2.0":
            return self._error(INVALID_REQUEST, "Invalid Request", 400)

        method = data.get("method")
        params = data.get("params", {})
        request_id = data.get("id")

        if not isinstance(method, str) or len(method) > 100:
            return self._error(INVALID_REQUEST, "Invalid method name", 400, request_id)

        if not isinstance(params, dict):
            return self._error(INVALID_REQUEST, "Invalid params - must be object", 400, request_id)

        if method not in self.handlers:
            return self._error(METHOD_NOT_FOUND, "Method not found", 404, request_id)

        try:
            result = await self.handlers[method](params)
        except A2AException as e:
            # Handlers signal protocol errors (e.g. bad params) with a code
            code = e.code if e.code is not None else INTERNAL_ERROR
            status = 400 if code == INVALID_PARAMS else 500
            return self._error(code, str(e), status, request_id, e.data)
        except Exception as e:
            logger.error("a2a_handler_error",
                method=method,
                error=str(e),
                error_type=type(e).__name__
            )
            return self._error(INTERNAL_ERROR, "Internal error", 500, request_id, str(e))

        return web.json_response(A2AResponse(result=result, request_id=request_id).to_dict())

    async def start(self) -> web.AppRunner:
        """Start serving; returns the AppRunner for stop()."""
        runner = web.AppRunner(self.app)
        await runner.setup()

        site = web.TCPSite(runner, self.host, self.port)
        await site.start()

        logger.info("a2a_server_started",
            agent=self.agent_card.name,
            host=self.host,
            port=self.port
        )
        return runner

    async def stop(self, runner: web.AppRunner):
        await runner.cleanup()
        logger.info("a2a_server_stopped", agent=self.agent_card.name)
