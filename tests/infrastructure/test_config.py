"""Tests for configuration module."""

import json
import os
import pytest
from unittest.mock import patch

from shipyard.infrastructure.config import (
    ApprovalConfig,
    ConfigurationRepoConfig,
    ShipyardConfig,
    VCSConfig,
    WebConfig,
    load_config,
)

MISSING = "/nonexistent/shipyard.json"


class TestDefaultConfig:
    def test_defaults(self):
        config = load_config(path=MISSING)
        assert config.log_level == "WARNING"
        assert config.configuration.descriptor_path == "k8s/deployment.yaml"
        assert config.vcs.backend == "git"
        assert config.vcs.push_attempts == 5
        assert config.approval.required_count == 0
        assert config.rollout.timeout_seconds == 300.0
        assert config.web.port == 8080

    def test_all_sections_present(self):
        config = load_config(path=MISSING)
        assert isinstance(config, ShipyardConfig)
        assert isinstance(config.configuration, ConfigurationRepoConfig)
        assert isinstance(config.vcs, VCSConfig)
        assert isinstance(config.approval, ApprovalConfig)
        assert isinstance(config.web, WebConfig)


class TestFileConfig:
    def test_load_from_file(self, tmp_path):
        config_file = tmp_path / "shipyard.json"
        config_file.write_text(json.dumps({
            "log_level": "DEBUG",
            "application": {"url": "git@x:org/app.git"},
            "configuration": {"url": "git@x:org/cfg.git", "deployment_name": "web"},
            "approval": {"required_count": 2, "timeout_seconds": 600},
            "web": {"port": 9090},
        }))

        config = load_config(path=str(config_file))
        assert config.log_level == "DEBUG"
        assert config.application.url == "git@x:org/app.git"
        assert config.configuration.deployment_name == "web"
        assert config.approval.required_count == 2
        assert config.approval.timeout_seconds == 600
        assert config.web.port == 9090

    def test_partial_config(self, tmp_path):
        config_file = tmp_path / "shipyard.json"
        config_file.write_text(json.dumps({"web": {"port": 3000}}))

        config = load_config(path=str(config_file))
        assert config.web.port == 3000
        assert config.web.host == "127.0.0.1"  # default preserved

    def test_invalid_json_returns_defaults(self, tmp_path):
        config_file = tmp_path / "shipyard.json"
        config_file.write_text("not valid json{{{")

        config = load_config(path=str(config_file))
        assert config.web.port == 8080

    def test_unknown_keys_ignored(self, tmp_path):
        config_file = tmp_path / "shipyard.json"
        config_file.write_text(json.dumps({"web": {"port": 3000, "unknown_key": "x"}}))

        config = load_config(path=str(config_file))
        assert config.web.port == 3000


class TestEnvOverride:
    def test_env_overrides_file(self, tmp_path):
        config_file = tmp_path / "shipyard.json"
        config_file.write_text(json.dumps({"web": {"port": 3000}}))

        with patch.dict(os.environ, {"SHIPYARD_WEB_PORT": "4000"}):
            config = load_config(path=str(config_file))

        assert config.web.port == 4000

    def test_env_types_are_coerced(self):
        env = {
            "SHIPYARD_APPROVAL_REQUIRED_COUNT": "2",
            "SHIPYARD_VCS_BACKOFF_SECONDS": "0.5",
            "SHIPYARD_TELEMETRY_INSECURE": "true",
        }
        with patch.dict(os.environ, env):
            config = load_config(path=MISSING)

        assert config.approval.required_count == 2
        assert config.vcs.backoff_seconds == 0.5
        assert config.telemetry.insecure is True

    def test_env_top_level_log_level(self):
        with patch.dict(os.environ, {"SHIPYARD_LOG_LEVEL": "INFO"}):
            config = load_config(path=MISSING)
        assert config.log_level == "INFO"

    def test_custom_prefix(self):
        with patch.dict(os.environ, {"MYAPP_WEB_PORT": "5000"}):
            config = load_config(path=MISSING, env_prefix="MYAPP")

        assert config.web.port == 5000


class TestConfigImmutability:
    def test_frozen(self):
        config = load_config(path=MISSING)
        with pytest.raises(AttributeError):
            config.log_level = "DEBUG"

    def test_sub_config_frozen(self):
        config = load_config(path=MISSING)
        with pytest.raises(AttributeError):
            config.approval.required_count = 3
