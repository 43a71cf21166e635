"""Configuration for the SWIM agent mesh."""

from .config import (
    SystemConfig,
    LoggingConfig,
    LLMConfig,
    A2AConfig,
    WorkflowConfig,
    AdherenceConfig,
    EventsConfig,
    AgentConfig,
    TriggerConfig,
    ConfigManager,
    get_config_manager,
    reset_config_manager,
    get_system_config,
    get_logging_config,
    get_llm_config,
    get_a2a_config,
    get_workflow_config,
    get_adherence_config,
    get_events_config,
)

# Import all constants (star import acceptable for config constants)
from .constants import *  # noqa: F403

__all__ = [
    'SystemConfig',
    'LoggingConfig',
    'LLMConfig',
    'A2AConfig',
    'WorkflowConfig',
    'AdherenceConfig',
    'EventsConfig',
    'AgentConfig',
    'TriggerConfig',
    'ConfigManager',
    'get_config_manager',
    'reset_config_manager',
    'get_system_config',
    'get_logging_config',
    'get_llm_config',
    'get_a2a_config',
    'get_workflow_config',
    'get_adherence_config',
    'get_events_config',
]
