"""Orchestration exceptions

Only registry-level and routing-level failures are raised to callers.
Step-level failures are recorded on StepResult.error_type instead, using the
ERROR_* names below.
"""

from typing import List, Optional

# StepResult.error_type values
ERROR_AGENT_TIMEOUT = "AgentTimeout"
ERROR_AGENT_FAILED = "AgentFailed"
ERROR_MALFORMED_RESPONSE = "MalformedResponse"
ERROR_NO_AGENT = "NoAgentAvailable"
ERROR_DEPENDENCY_FAILED = "DependencyFailed"
ERROR_CANCELLED = "Cancelled"


class OrchestrationError(Exception):
    """Base exception for orchestration errors"""
    pass


class DuplicateAgentError(OrchestrationError):
    """An agent with the same id is already registered"""
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent already registered: {agent_id}")


class AgentNotFoundError(OrchestrationError):
    """No agent with the given id is registered"""
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Unknown agent: {agent_id}")


class NoAgentAvailableError(OrchestrationError):
    """A required capability has no available agent"""
    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(f"No available agent for capability '{capability}'")


class AmbiguousCapabilityError(OrchestrationError):
    """More than one agent serves a capability and no hint picks one"""
    def __init__(self, capability: str, candidates: List[str]):
        self.capability = capability
        self.candidates = candidates
        super().__init__(
            f"Capability '{capability}' is served by {len(candidates)} agents: {', '.join(candidates)}"
        )


class PlanValidationError(OrchestrationError):
    """A plan could not be built from a template or intent"""
    pass


class MalformedEventError(OrchestrationError):
    """An inbound event lacks what a trigger rule needs"""
    def __init__(self, message: str, topic: Optional[str] = None):
        self.topic = topic
        super().__init__(message)
