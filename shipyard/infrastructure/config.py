"""
Configuration Module

Architectural Intent:
- Centralized configuration loading from a JSON file
- Provides typed access to all Shipyard settings
- Falls back to sensible defaults when config file is absent
- Environment variables override file-based config

Design Decisions:
- Config is a frozen dataclass for immutability after load
- Nested config sections map to sub-dataclasses
- Environment values arrive as strings and are coerced to the field's type
"""

from __future__ import annotations
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import json
import logging
import os

logger = logging.getLogger(__name__)

TOP_LEVEL_KEYS = ("log_level",)


@dataclass(frozen=True)
class ApplicationRepoConfig:
    """Application repository whose pushes trigger CI."""
    url: str = ""
    trigger_branch: str = "main"


@dataclass(frozen=True)
class ConfigurationRepoConfig:
    """Configuration repository holding the deployment descriptor."""
    url: str = ""
    trigger_branch: str = "main"
    workspace: str = ".shipyard/config-repo"
    descriptor_path: str = "k8s/deployment.yaml"
    deployment_name: str = ""
    container: str = ""


@dataclass(frozen=True)
class VCSConfig:
    """Version-control backend and retry policy."""
    backend: str = "git"  # "git" or "memory"
    sync_attempts: int = 3
    push_attempts: int = 5
    backoff_seconds: float = 1.0
    author_name: str = "shipyard"
    author_email: str = "shipyard@localhost"


@dataclass(frozen=True)
class ApprovalConfig:
    """Approval gate; required_count 0 disables the gate."""
    required_count: int = 0
    timeout_seconds: float = 3600.0
    check_interval_seconds: float = 5.0


@dataclass(frozen=True)
class RolloutConfig:
    timeout_seconds: float = 300.0
    poll_interval_seconds: float = 3.0


@dataclass(frozen=True)
class ClusterConfig:
    """Target Kubernetes cluster."""
    namespace: str = "default"
    kubeconfig: str = ""
    context: str = ""


@dataclass(frozen=True)
class WebConfig:
    """HTTP API configuration."""
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass(frozen=True)
class StoreConfig:
    path: str = "shipyard.db"


@dataclass(frozen=True)
class TelemetryConfig:
    """OpenTelemetry configuration."""
    endpoint: str = ""
    insecure: bool = False


@dataclass(frozen=True)
class NotificationsConfig:
    slack_webhook_url: str = ""


@dataclass(frozen=True)
class ShipyardConfig:
    """Root configuration for the Shipyard application."""
    application: ApplicationRepoConfig = field(default_factory=ApplicationRepoConfig)
    configuration: ConfigurationRepoConfig = field(
        default_factory=ConfigurationRepoConfig
    )
    vcs: VCSConfig = field(default_factory=VCSConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    rollout: RolloutConfig = field(default_factory=RolloutConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    web: WebConfig = field(default_factory=WebConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    log_level: str = "WARNING"


_SECTIONS = {
    "application": ApplicationRepoConfig,
    "configuration": ConfigurationRepoConfig,
    "vcs": VCSConfig,
    "approval": ApprovalConfig,
    "rollout": RolloutConfig,
    "cluster": ClusterConfig,
    "web": WebConfig,
    "store": StoreConfig,
    "telemetry": TelemetryConfig,
    "notifications": NotificationsConfig,
}


def _env_override(data: dict, prefix: str = "SHIPYARD") -> dict:
    """Override config values with environment variables.

    Environment variables follow the pattern SHIPYARD_SECTION_KEY.
    For example: SHIPYARD_WEB_PORT=9090, SHIPYARD_APPROVAL_REQUIRED_COUNT=2
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}_"):
            continue
        name = key[len(prefix) + 1:].lower()
        if name in TOP_LEVEL_KEYS:
            data[name] = value
            continue
        parts = name.split("_", 1)
        if len(parts) == 2:
            section, field_name = parts
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field_name] = value
        elif len(parts) == 1:
            data[parts[0]] = value
    return data


def _parse_config_file(path: Path) -> dict:
    """Parse a JSON config file. Returns empty dict on failure."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}


def _build_sub_config(cls, data: dict):
    """Build a sub-config dataclass from a dict, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}

    # Convert string numbers to int/float/bool
    for f in dataclasses.fields(cls):
        if f.name in filtered and isinstance(filtered[f.name], str):
            if f.type == "int":
                filtered[f.name] = int(filtered[f.name])
            elif f.type == "float":
                filtered[f.name] = float(filtered[f.name])
            elif f.type == "bool":
                filtered[f.name] = filtered[f.name].lower() in ("true", "1", "yes")

    return cls(**filtered)


def load_config(
    path: Optional[str] = None,
    env_prefix: str = "SHIPYARD",
) -> ShipyardConfig:
    """Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (SHIPYARD_SECTION_KEY)
    2. Config file values
    3. Defaults

    Args:
        path: Path to config file (JSON). Defaults to shipyard.json in CWD.
        env_prefix: Environment variable prefix. Defaults to SHIPYARD.
    """
    config_path = Path(path) if path else Path("shipyard.json")
    data = _parse_config_file(config_path)
    data = _env_override(data, env_prefix)

    sections = {
        name: _build_sub_config(cls, data.get(name) or {})
        for name, cls in _SECTIONS.items()
    }
    return ShipyardConfig(**sections, log_level=data.get("log_level", "WARNING"))
