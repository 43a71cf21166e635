"""A2A (agent-to-agent) JSON-RPC transport."""

from .protocol import (
    AgentCard,
    A2ARequest,
    A2AResponse,
    A2AClient,
    A2AServer,
    A2AException,
    A2ATimeoutError,
    A2AConnectionError,
    A2AMalformedResponse,
    PARSE_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    INVALID_PARAMS,
    INTERNAL_ERROR,
)

__all__ = [
    'AgentCard',
    'A2ARequest',
    'A2AResponse',
    'A2AClient',
    'A2AServer',
    'A2AException',
    'A2ATimeoutError',
    'A2AConnectionError',
    'A2AMalformedResponse',
    'PARSE_ERROR',
    'INVALID_REQUEST',
    'METHOD_NOT_FOUND',
    'INVALID_PARAMS',
    'INTERNAL_ERROR',
]
