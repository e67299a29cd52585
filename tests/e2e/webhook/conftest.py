"""E2E fixtures for a live managed cluster.

The suite targets the cluster named by WEBHOOK_E2E_KUBECONFIG (and optionally
WEBHOOK_E2E_CONTEXT / WEBHOOK_E2E_PROJECT). The variables are read at import
time because the autouse ``reset_environment`` fixture clears them per test.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import yaml
from typer.testing import CliRunner

from webhook_e2e.cli.main import app
from webhook_e2e.integrations.kubernetes.client import KubernetesClient
from webhook_e2e.integrations.kubernetes.config import SuiteConfig
from webhook_e2e.integrations.kubernetes.identity import IdentityFactory

E2E_KUBECONFIG = os.environ.get("WEBHOOK_E2E_KUBECONFIG", "")
E2E_CONTEXT = os.environ.get("WEBHOOK_E2E_CONTEXT", "")
E2E_PROJECT = os.environ.get("WEBHOOK_E2E_PROJECT", "")


def _suite_settings() -> dict[str, Any]:
    settings: dict[str, Any] = {
        "cluster": {"kubeconfig": E2E_KUBECONFIG, "context": E2E_CONTEXT},
        "scenarios": {},
    }
    if E2E_PROJECT:
        settings["scenarios"]["project"] = E2E_PROJECT
    return settings


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Skip the live-cluster tests when no kubeconfig is configured."""
    if E2E_KUBECONFIG:
        return
    skip = pytest.mark.skip(reason="WEBHOOK_E2E_KUBECONFIG not set -- skipping live cluster tests")
    here = Path(__file__).parent
    for item in items:
        if here in Path(str(item.path)).parents:
            item.add_marker(skip)


@pytest.fixture(scope="session")
def suite_config() -> SuiteConfig:
    """Suite config for the live cluster, with default timeouts."""
    return SuiteConfig.model_validate(_suite_settings())


@pytest.fixture(scope="session")
def factory(suite_config: SuiteConfig) -> Generator[IdentityFactory]:
    """Identity factory over a session-scoped connection."""
    client = KubernetesClient(suite_config.cluster)
    yield IdentityFactory(client)
    client.close()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """The live-cluster settings as a config file for the CLI."""
    path = tmp_path / "webhook-e2e.yaml"
    path.write_text(yaml.safe_dump(_suite_settings()))
    return path


@pytest.fixture
def invoke_cli(cli_runner: CliRunner, config_file: Path) -> Callable[..., Any]:
    """Invoke a command with the live-cluster config file.

    Example:
        result = invoke_cli("check", "-s", "exists")
    """

    def _invoke(*args: str) -> Any:
        return cli_runner.invoke(app, [*args, "--config", str(config_file)])

    return _invoke
