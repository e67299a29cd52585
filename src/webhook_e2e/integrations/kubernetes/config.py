"""Suite configuration models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

ENV_PREFIX = "WEBHOOK_E2E_"


class ClusterConfig(BaseModel):
    """Connection settings for the cluster under test."""

    model_config = ConfigDict(extra="forbid")

    context: str = ""
    kubeconfig: str | None = None
    timeout: int = 300

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("kubeconfig")
    @classmethod
    def validate_kubeconfig(cls, v: str | None) -> str | None:
        """Expand ~ in kubeconfig path."""
        if not v:
            return None
        return str(Path(v).expanduser())


class WaitConfig(BaseModel):
    """Polling settings for the condition waiter."""

    model_config = ConfigDict(extra="forbid")

    poll_interval: float = 2.0
    daemonset_timeout: float = 300.0

    @field_validator("poll_interval", "daemonset_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @model_validator(mode="after")
    def validate_interval_below_timeout(self) -> WaitConfig:
        """Validate the poll interval is shorter than the wait timeout."""
        if self.poll_interval >= self.daemonset_timeout:
            raise ValueError("poll_interval must be less than daemonset_timeout")
        return self


class ScenarioConfig(BaseModel):
    """Settings for the authorization scenarios."""

    model_config = ConfigDict(extra="forbid")

    create_pod_wait: float = 60.0
    delete_pod_wait: float = 300.0
    project: str = "osde2e"
    privileged_namespace: str = "openshift-backplane"
    unprivileged_namespace: str = "openshift-logging"
    pod_image: str = "registry.access.redhat.com/ubi8/ubi-minimal"

    @field_validator("create_pod_wait", "delete_pod_wait")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @field_validator("project", "privileged_namespace", "unprivileged_namespace")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate namespace names are set."""
        if not v.strip():
            raise ValueError("namespace names must not be empty")
        return v.strip()

    @property
    def authorization_timeout(self) -> float:
        """Overall deadline for one authorization scenario."""
        return self.create_pod_wait + self.delete_pod_wait


class SuiteConfig(BaseModel):
    """Complete configuration for a verification run."""

    model_config = ConfigDict(extra="forbid")

    cluster: ClusterConfig = ClusterConfig()
    wait: WaitConfig = WaitConfig()
    scenarios: ScenarioConfig = ScenarioConfig()

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> SuiteConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            WEBHOOK_E2E_KUBECONFIG: Kubeconfig path
            WEBHOOK_E2E_CONTEXT: Kubeconfig context
            WEBHOOK_E2E_PROJECT: Project holding the dedicated-admin-project service account
            WEBHOOK_E2E_POLL_INTERVAL: Seconds between polls
            WEBHOOK_E2E_DAEMONSET_TIMEOUT: Seconds to wait for the webhook daemonset
            WEBHOOK_E2E_CREATE_POD_WAIT: Create budget of the authorization scenarios
            WEBHOOK_E2E_DELETE_POD_WAIT: Delete budget of the authorization scenarios
            WEBHOOK_E2E_POD_IMAGE: Image used for the test pod
        """
        config_dict = {key: dict(value or {}) for key, value in (base_config or {}).items()}

        for section in ("cluster", "wait", "scenarios"):
            config_dict.setdefault(section, {})

        overrides = {
            "KUBECONFIG": ("cluster", "kubeconfig", str),
            "CONTEXT": ("cluster", "context", str),
            "PROJECT": ("scenarios", "project", str),
            "POLL_INTERVAL": ("wait", "poll_interval", float),
            "DAEMONSET_TIMEOUT": ("wait", "daemonset_timeout", float),
            "CREATE_POD_WAIT": ("scenarios", "create_pod_wait", float),
            "DELETE_POD_WAIT": ("scenarios", "delete_pod_wait", float),
            "POD_IMAGE": ("scenarios", "pod_image", str),
        }
        for suffix, (section, key, convert) in overrides.items():
            if value := os.environ.get(f"{ENV_PREFIX}{suffix}"):
                config_dict[section][key] = convert(value)

        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Path) -> SuiteConfig:
        """Load a YAML config file, then apply environment overrides.

        Args:
            path: Path to a YAML document with cluster/wait/scenarios sections.

        Raises:
            ValueError: If the document is not a mapping.
        """
        data = yaml.safe_load(path.read_text()) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping at the top level")
        return cls.from_env(data)
