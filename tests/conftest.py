"""Shared pytest fixtures for webhook_e2e tests."""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from webhook_e2e.cli.main import app


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a suite config file with short waits."""
    config_path = tmp_path / "webhook-e2e.yaml"
    config_path.write_text(
        """
cluster:
  context: test-context
  timeout: 30
wait:
  poll_interval: 0.5
  daemonset_timeout: 10
scenarios:
  project: test-project
  create_pod_wait: 5
  delete_pod_wait: 5
"""
    )
    return config_path


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear WEBHOOK_E2E_ prefixed environment variables for each test."""
    for key in list(os.environ.keys()):
        if key.startswith("WEBHOOK_E2E_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def isolated_log_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path]:
    """Send the rotating log file to a temp dir and drop handlers afterwards."""
    log_dir = tmp_path / "logs"
    monkeypatch.setattr("webhook_e2e.logging.config.LOG_DIR", log_dir)
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    yield log_dir
    for handler in root.handlers:
        if handler not in original_handlers:
            handler.close()
    root.handlers = original_handlers


@pytest.fixture
def capture_logs(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    """Fixture to capture log output."""
    caplog.set_level(logging.DEBUG)
    return caplog


@pytest.fixture
def cli_app() -> typer.Typer:
    """Return the CLI app for testing."""
    return app
