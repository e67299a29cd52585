"""Commands that run checks against a live cluster."""

from __future__ import annotations

import json
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console

from webhook_e2e.cli.output import Table, status_text
from webhook_e2e.integrations.kubernetes import (
    IdentityFactory,
    KubernetesClient,
    KubernetesConfigurationError,
    SuiteConfig,
)
from webhook_e2e.logging import get_logger
from webhook_e2e.services.scenarios import ScenarioResult, ScenarioRunner
from webhook_e2e.services.waiter import ConditionWaiter, Success

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)

EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2

OUTPUT_FORMATS = ("table", "json")


def _load_config(config_file: Path | None) -> SuiteConfig:
    """Load configuration, exiting with EXIT_CONFIG_ERROR when it is invalid."""
    try:
        if config_file is not None:
            return SuiteConfig.from_file(config_file)
        return SuiteConfig.from_env()
    except (ValidationError, ValueError, yaml.YAMLError, OSError) as e:
        err_console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from e


def _connect(config: SuiteConfig) -> KubernetesClient:
    try:
        return KubernetesClient(config.cluster)
    except KubernetesConfigurationError as e:
        err_console.print(f"[red]Cannot load cluster credentials:[/red] {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from e


def _render_table(results: list[ScenarioResult]) -> None:
    for result in results:
        table = Table(title=f"validation webhook {result.title}")
        table.add_column("Status", no_wrap=True)
        table.add_column("Check", style="cyan")
        table.add_column("Actor", style="dim")
        table.add_column("Namespace", style="dim")
        table.add_column("Expected")
        table.add_column("Observed")
        table.add_column("Message", style="dim")
        for check in result.checks:
            table.add_row(
                status_text(check.status),
                check.description,
                check.actor,
                check.namespace or "-",
                check.expected,
                check.observed,
                check.message,
            )
        console.print(table)
        if result.cancelled:
            console.print(
                f"[yellow]Scenario '{result.name}' hit its deadline after "
                f"{result.duration:.1f}s[/yellow]"
            )

    failed = [r.name for r in results if not r.passed]
    if failed:
        console.print(f"\n[bold red]FAILED:[/bold red] {', '.join(failed)}")
    else:
        console.print(f"\n[bold green]PASSED:[/bold green] {len(results)} scenario(s)")


def _render_json(results: list[ScenarioResult]) -> None:
    payload = [{**r.model_dump(mode="json"), "passed": r.passed} for r in results]
    typer.echo(json.dumps(payload, indent=2))


def check(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML config file with cluster, wait and scenarios sections.",
        dir_okay=False,
    ),
    scenario: list[str] | None = typer.Option(
        None,
        "--scenario",
        "-s",
        help="Scenario to run (exists, blocked, allowed). Repeatable; default is all.",
    ),
    output: str = typer.Option(
        "table",
        "--output",
        "-o",
        help="Output format: table or json.",
    ),
) -> None:
    """Verify the validation webhook is deployed and enforces pod placement."""
    if output not in OUTPUT_FORMATS:
        err_console.print(f"[red]Unknown output format '{output}'[/red]")
        raise typer.Exit(EXIT_CONFIG_ERROR)

    unknown = sorted(set(scenario or ()) - set(ScenarioRunner.SCENARIOS))
    if unknown:
        err_console.print(
            f"[red]Unknown scenario(s):[/red] {', '.join(unknown)} "
            f"(choose from {', '.join(ScenarioRunner.SCENARIOS)})"
        )
        raise typer.Exit(EXIT_CONFIG_ERROR)

    config = _load_config(config_file)
    logger.info("starting_check", scenarios=scenario or list(ScenarioRunner.SCENARIOS))

    with _connect(config) as client:
        runner = ScenarioRunner(IdentityFactory(client), config)
        try:
            results = runner.run(scenario)
        except KubernetesConfigurationError as e:
            err_console.print(f"[red]Cannot build client:[/red] {e}")
            raise typer.Exit(EXIT_CONFIG_ERROR) from e

    if output == "json":
        _render_json(results)
    else:
        _render_table(results)

    if not all(r.passed for r in results):
        raise typer.Exit(EXIT_FAILED)


def wait_daemonset(
    name: str = typer.Argument(..., help="DaemonSet name."),
    namespace: str = typer.Option(..., "--namespace", "-n", help="DaemonSet namespace."),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait. Defaults to the configured daemonset timeout.",
    ),
    poll_interval: float | None = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between polls. Defaults to the configured interval.",
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML config file with cluster, wait and scenarios sections.",
        dir_okay=False,
    ),
) -> None:
    """Wait until every desired pod of a daemonset is ready and available."""
    config = _load_config(config_file)
    timeout = timeout if timeout is not None else config.wait.daemonset_timeout
    poll_interval = poll_interval if poll_interval is not None else config.wait.poll_interval

    with _connect(config) as client:
        waiter = ConditionWaiter(
            IdentityFactory(client).ambient(),
            request_timeout=float(config.cluster.timeout),
        )
        try:
            outcome = waiter.wait_for_daemon_set(
                name,
                namespace,
                timeout=timeout,
                poll_interval=poll_interval,
            )
        except ValueError as e:
            err_console.print(f"[red]Invalid wait:[/red] {e}")
            raise typer.Exit(EXIT_CONFIG_ERROR) from e

    if isinstance(outcome, Success):
        ds = outcome.value
        table = Table(title=f"DaemonSet {namespace}/{name}")
        table.add_column("Desired", justify="right")
        table.add_column("Current", justify="right")
        table.add_column("Ready", justify="right")
        table.add_column("Available", justify="right")
        table.add_column("Updated", justify="right")
        table.add_row(
            str(ds.desired_number_scheduled),
            str(ds.current_number_scheduled),
            str(ds.number_ready),
            str(ds.number_available),
            str(ds.updated_number_scheduled),
        )
        console.print(table)
        console.print(f"[green]Ready:[/green] {outcome.describe()}")
        return

    console.print(f"[red]Not ready:[/red] {outcome.describe()}")
    raise typer.Exit(EXIT_FAILED)
