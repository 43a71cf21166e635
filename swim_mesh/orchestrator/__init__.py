"""Orchestration core: registry, routing, invocation, coordination, composition."""

from .agent_registry import AgentRegistry, AgentDescriptor, AgentStatus
from .exceptions import (
    OrchestrationError,
    DuplicateAgentError,
    AgentNotFoundError,
    NoAgentAvailableError,
    AmbiguousCapabilityError,
    PlanValidationError,
    MalformedEventError,
)
from .models import Plan, PlanResult, PlanSource, PlanStatus, Step, StepResult, StepStatus
from .router import (
    Intent,
    IntentClassifier,
    KeywordIntentClassifier,
    LLMIntentClassifier,
    CapabilityRouter,
)
from .invoker import AgentInvoker, A2AAdapter, LocalAdapter, resolve_inputs
from .coordinator import WorkflowCoordinator, plan_status
from .templates import PlanTemplates, adherence_steps, landing_report
from .composer import ResponseComposer

__all__ = [
    'AgentRegistry',
    'AgentDescriptor',
    'AgentStatus',
    'OrchestrationError',
    'DuplicateAgentError',
    'AgentNotFoundError',
    'NoAgentAvailableError',
    'AmbiguousCapabilityError',
    'PlanValidationError',
    'MalformedEventError',
    'Plan',
    'PlanResult',
    'PlanSource',
    'PlanStatus',
    'Step',
    'StepResult',
    'StepStatus',
    'Intent',
    'IntentClassifier',
    'KeywordIntentClassifier',
    'LLMIntentClassifier',
    'CapabilityRouter',
    'AgentInvoker',
    'A2AAdapter',
    'LocalAdapter',
    'resolve_inputs',
    'WorkflowCoordinator',
    'plan_status',
    'PlanTemplates',
    'adherence_steps',
    'landing_report',
    'ResponseComposer',
]
