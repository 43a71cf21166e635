"""Configuration management for the SWIM agent mesh."""

import os
import json
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict, field

from dotenv import load_dotenv

from .constants import (
    DEFAULT_TIMEOUT_SECONDS, DEFAULT_CONNECT_TIMEOUT, HEALTH_CHECK_TIMEOUT,
    CIRCUIT_BREAKER_FAILURE_THRESHOLD, CIRCUIT_BREAKER_TIMEOUT,
    CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS,
    DEFAULT_STEP_TIMEOUT_SECONDS, DEFAULT_STEP_MAX_RETRIES, MAX_STEP_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS, DEFAULT_PLAN_TIMEOUT_SECONDS,
    DEFAULT_MATCH_WINDOW_SECONDS,
    LATERAL_MINOR_NM, LATERAL_MAJOR_NM, VERTICAL_MINOR_FT, VERTICAL_MAJOR_FT,
    TIMING_MINOR_SECONDS, TIMING_MAJOR_SECONDS,
    LANDING_STATUS_TOPIC, LANDING_REPORT_TOPIC, LANDING_REPORT_TEMPLATE,
)
from ..logging import get_logger

logger = get_logger("config")


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    external_logs_dir: str = "logs"
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class LLMConfig:
    """Language model configuration."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 2000
    timeout: int = 60
    azure_deployment: Optional[str] = None
    api_version: str = "2024-06-01"


@dataclass
class A2AConfig:
    """Agent-to-agent transport configuration."""
    timeout: int = DEFAULT_TIMEOUT_SECONDS
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    health_check_timeout: int = HEALTH_CHECK_TIMEOUT
    circuit_breaker_threshold: int = CIRCUIT_BREAKER_FAILURE_THRESHOLD
    circuit_breaker_timeout: int = CIRCUIT_BREAKER_TIMEOUT
    half_open_max_calls: int = CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS
    connection_pool_size: int = 20


@dataclass
class WorkflowConfig:
    """Plan execution policy."""
    step_timeout: float = DEFAULT_STEP_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_STEP_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS
    plan_timeout: Optional[float] = DEFAULT_PLAN_TIMEOUT_SECONDS
    strict_ambiguity: bool = False

    def __post_init__(self):
        # Retries are bounded regardless of what the config file asks for
        self.max_retries = max(0, min(int(self.max_retries), MAX_STEP_RETRIES))


@dataclass
class AdherenceConfig:
    """Thresholds for plan-vs-actual correlation."""
    match_window_seconds: float = DEFAULT_MATCH_WINDOW_SECONDS
    lateral_minor_nm: float = LATERAL_MINOR_NM
    lateral_major_nm: float = LATERAL_MAJOR_NM
    vertical_minor_ft: float = VERTICAL_MINOR_FT
    vertical_major_ft: float = VERTICAL_MAJOR_FT
    timing_minor_seconds: float = TIMING_MINOR_SECONDS
    timing_major_seconds: float = TIMING_MAJOR_SECONDS


@dataclass
class EventsConfig:
    """Event subscription and report publication settings."""
    broker_rest_url: Optional[str] = None
    publish_timeout: int = 10
    subscriptions: List[str] = field(default_factory=lambda: [LANDING_STATUS_TOPIC])


@dataclass
class AgentConfig:
    """A statically configured data-access agent."""
    name: str
    endpoint: str
    capabilities: List[str] = field(default_factory=list)
    description: str = ""
    enabled: bool = True


@dataclass
class TriggerConfig:
    """A standing rule turning matching events into plans."""
    name: str
    topic_pattern: str
    plan_template: str
    required_fields: List[str] = field(default_factory=lambda: ["flight"])
    field_equals: Dict[str, Any] = field(default_factory=dict)
    publish_topic: Optional[str] = None


@dataclass
class SystemConfig:
    """Root configuration object."""
    logging: LoggingConfig
    llm: LLMConfig
    a2a: A2AConfig
    workflow: WorkflowConfig
    adherence: AdherenceConfig
    events: EventsConfig
    agents: Dict[str, AgentConfig]
    triggers: List[TriggerConfig]
    environment: str = "development"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SystemConfig':
        """Create from dictionary"""
        agents = {}
        for name, agent_data in data.get('agents', {}).items():
            if isinstance(agent_data, dict):
                agent_data = {k: v for k, v in agent_data.items() if k != 'name'}
                agents[name] = AgentConfig(name=name, **agent_data)

        triggers = [TriggerConfig(**trigger) for trigger in data.get('triggers', [])]

        return cls(
            logging=LoggingConfig(**data.get('logging', {})),
            llm=LLMConfig(**data.get('llm', {})),
            a2a=A2AConfig(**data.get('a2a', {})),
            workflow=WorkflowConfig(**data.get('workflow', {})),
            adherence=AdherenceConfig(**data.get('adherence', {})),
            events=EventsConfig(**data.get('events', {})),
            agents=agents,
            triggers=triggers,
            environment=data.get('environment', 'development'),
        )


class ConfigManager:
    """Loads configuration with precedence: environment > JSON file > code defaults."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.environ.get("SWIM_MESH_CONFIG", "system_config.json")
        self._config: Optional[SystemConfig] = None
        self._load_config()

    def _load_config(self):
        load_dotenv()
        config_data = self._get_default_config()

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r') as f:
                    file_config = json.load(f)
                config_data = self._merge_configs(config_data, file_config)
                logger.info("config_loaded",
                    component="config",
                    operation="load",
                    config_path=self.config_path
                )
            except (OSError, json.JSONDecodeError) as e:
                # System continues with defaults on config errors
                logger.warning("config_load_failed",
                    component="config",
                    operation="load",
                    config_path=self.config_path,
                    error=str(e),
                    error_type=type(e).__name__
                )

        config_data = self._merge_configs(config_data, self._get_env_overrides())
        self._config = SystemConfig.from_dict(config_data)

    def _get_default_config(self) -> Dict[str, Any]:
        return {
            "logging": {},
            "llm": {},
            "a2a": {},
            "workflow": {},
            "adherence": {},
            "events": {},
            "agents": {},
            "triggers": [
                {
                    "name": "landing-report",
                    "topic_pattern": LANDING_STATUS_TOPIC,
                    "plan_template": LANDING_REPORT_TEMPLATE,
                    "required_fields": ["flight"],
                    "publish_topic": LANDING_REPORT_TOPIC,
                }
            ],
            "environment": "development"
        }

    def _get_env_overrides(self) -> Dict[str, Any]:
        """Deployment-specific overrides from environment variables."""
        overrides: Dict[str, Any] = {}

        if env := os.environ.get('ENVIRONMENT'):
            overrides['environment'] = env

        log_overrides = {}
        if log_level := os.environ.get('LOG_LEVEL'):
            log_overrides['level'] = log_level
        if log_dir := os.environ.get('LOGS_DIR'):
            log_overrides['external_logs_dir'] = log_dir
        if log_overrides:
            overrides['logging'] = log_overrides

        llm_overrides = {}
        if model := os.environ.get('LLM_MODEL'):
            llm_overrides['model'] = model
        if deployment := os.environ.get('AZURE_OPENAI_CHAT_DEPLOYMENT_NAME'):
            llm_overrides['azure_deployment'] = deployment
        self._numeric_override(llm_overrides, 'temperature', 'LLM_TEMPERATURE', float)
        if llm_overrides:
            overrides['llm'] = llm_overrides

        a2a_overrides = {}
        self._numeric_override(a2a_overrides, 'timeout', 'A2A_TIMEOUT', int)
        if a2a_overrides:
            overrides['a2a'] = a2a_overrides

        workflow_overrides = {}
        self._numeric_override(workflow_overrides, 'step_timeout', 'STEP_TIMEOUT', float)
        self._numeric_override(workflow_overrides, 'plan_timeout', 'PLAN_TIMEOUT', float)
        if workflow_overrides:
            overrides['workflow'] = workflow_overrides

        adherence_overrides = {}
        self._numeric_override(adherence_overrides, 'match_window_seconds', 'MATCH_WINDOW_SECONDS', float)
        if adherence_overrides:
            overrides['adherence'] = adherence_overrides

        if broker_url := os.environ.get('BROKER_REST_URL'):
            overrides['events'] = {'broker_rest_url': broker_url}

        return overrides

    @staticmethod
    def _numeric_override(target: Dict[str, Any], key: str, env_var: str, cast):
        raw = os.environ.get(env_var)
        if raw is None:
            return
        try:
            target[key] = cast(raw)
        except ValueError:
            logger.warning("invalid_numeric_override",
                component="config",
                operation="validation",
                env_var=env_var,
                invalid_value=raw
            )

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> SystemConfig:
        if self._config is None:
            self._load_config()
        return self._config

    def update_config(self, updates: Dict[str, Any]):
        """Update configuration at runtime (tests and embedding applications)."""
        current_dict = self.get_config().to_dict()
        # Triggers are a list; replace rather than merge
        self._config = SystemConfig.from_dict(self._merge_configs(current_dict, updates))


_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[str] = None) -> ConfigManager:
    """Get singleton config manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
    return _config_manager


def reset_config_manager():
    """Drop the cached configuration so the next access reloads it."""
    global _config_manager
    _config_manager = None


def get_system_config() -> SystemConfig:
    return get_config_manager().get_config()


def get_logging_config() -> LoggingConfig:
    return get_system_config().logging


def get_llm_config() -> LLMConfig:
    return get_system_config().llm


def get_a2a_config() -> A2AConfig:
    return get_system_config().a2a


def get_workflow_config() -> WorkflowConfig:
    return get_system_config().workflow


def get_adherence_config() -> AdherenceConfig:
    return get_system_config().adherence


def get_events_config() -> EventsConfig:
    return get_system_config().events
