"""
Unit tests for configuration loading.

Precedence is environment > JSON file > code defaults.
"""

import json

from swim_mesh.utils.config import (
    ConfigManager,
    SystemConfig,
    WorkflowConfig,
    get_workflow_config,
    reset_config_manager,
    LANDING_STATUS_TOPIC,
    LANDING_REPORT_TEMPLATE,
    MAX_STEP_RETRIES,
)


class TestDefaults:
    """Code defaults with no file and no environment."""

    def test_workflow_defaults(self, tmp_path):
        config = ConfigManager(str(tmp_path / "absent.json")).get_config()

        assert config.workflow.step_timeout == 30.0
        assert config.workflow.max_retries == 1
        assert config.workflow.plan_timeout == 120.0
        assert config.workflow.strict_ambiguity is False
        assert config.adherence.match_window_seconds == 900

    def test_default_landing_trigger(self, tmp_path):
        config = ConfigManager(str(tmp_path / "absent.json")).get_config()

        assert len(config.triggers) == 1
        trigger = config.triggers[0]
        assert trigger.topic_pattern == LANDING_STATUS_TOPIC
        assert trigger.plan_template == LANDING_REPORT_TEMPLATE
        assert trigger.required_fields == ["flight"]

    def test_retries_are_clamped(self):
        assert WorkflowConfig(max_retries=10).max_retries == MAX_STEP_RETRIES
        assert WorkflowConfig(max_retries=-2).max_retries == 0


class TestFileAndEnvironment:
    """Configuration file merge and environment overrides."""

    def test_file_merges_over_defaults(self, tmp_path):
        path = tmp_path / "system_config.json"
        path.write_text(json.dumps({
            "workflow": {"step_timeout": 5},
            "agents": {
                "fdps-agent": {
                    "endpoint": "http://localhost:8101/a2a",
                    "capabilities": ["flight-position"]
                }
            }
        }))

        config = ConfigManager(str(path)).get_config()

        assert config.workflow.step_timeout == 5
        assert config.workflow.plan_timeout == 120.0
        assert config.agents["fdps-agent"].name == "fdps-agent"
        assert config.agents["fdps-agent"].capabilities == ["flight-position"]

    def test_invalid_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "system_config.json"
        path.write_text("{ not json")

        config = ConfigManager(str(path)).get_config()

        assert config.workflow.step_timeout == 30.0

    def test_environment_beats_file(self, tmp_path, monkeypatch):
        path = tmp_path / "system_config.json"
        path.write_text(json.dumps({"workflow": {"step_timeout": 5}}))
        monkeypatch.setenv("STEP_TIMEOUT", "12.5")
        monkeypatch.setenv("BROKER_REST_URL", "http://broker:9000")

        config = ConfigManager(str(path)).get_config()

        assert config.workflow.step_timeout == 12.5
        assert config.events.broker_rest_url == "http://broker:9000"

    def test_invalid_numeric_override_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PLAN_TIMEOUT", "soon")

        config = ConfigManager(str(tmp_path / "absent.json")).get_config()

        assert config.workflow.plan_timeout == 120.0

    def test_singleton_reads_config_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "mesh.json"
        path.write_text(json.dumps({"workflow": {"retry_delay": 0.0}}))
        monkeypatch.setenv("SWIM_MESH_CONFIG", str(path))
        reset_config_manager()

        assert get_workflow_config().retry_delay == 0.0


class TestSystemConfig:
    def test_round_trip_through_dict(self, tmp_path):
        config = ConfigManager(str(tmp_path / "absent.json")).get_config()

        rebuilt = SystemConfig.from_dict(config.to_dict())

        assert rebuilt.workflow == config.workflow
        assert rebuilt.triggers == config.triggers

    def test_update_config(self, tmp_path):
        manager = ConfigManager(str(tmp_path / "absent.json"))
        manager.update_config({"workflow": {"strict_ambiguity": True}})

        assert manager.get_config().workflow.strict_ambiguity is True
