"""
Command-line entry point for evmsim.

    evmsim run SCENARIO [--steps N] [--seed S] [--json] [--log-level L]
    evmsim validate SCENARIO
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from evmsim import __version__
from evmsim.core.config import LOG_DIR, LOG_LEVEL
from evmsim.core.logging_config import setup_logging
from evmsim.core.simulation_exceptions import SimulationError
from evmsim.core.structured_logger import get_structured_logger
from evmsim.simulation.report import SimulationReport
from evmsim.simulation.scenario import ScenarioConfig, build_orchestrator, load_scenario

logger = logging.getLogger(__name__)
console = Console()

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _cli_fail(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging."""
    logger.error("CLI error: %s", exc, extra={"event": "cli.error"})
    console.print(f"[bold red]Error:[/] {exc}")
    if isinstance(exc, SimulationError):
        for error in exc.details.get("errors", []):
            console.print(f"  [red]{error['location']}[/]: {error['message']}")
    sys.exit(exit_code)


def _configure_logging(level: str) -> None:
    # The structured logger must exist first so setup_logging's level wins
    get_structured_logger()
    setup_logging(name="evmsim", level=level, log_file=str(Path(LOG_DIR) / "evmsim-cli.json.log") if LOG_DIR else None)


def _print_scenario(scenario: ScenarioConfig) -> None:
    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold cyan]Name", scenario.name)
    table.add_row("[bold cyan]Steps", str(scenario.steps))
    table.add_row("[bold cyan]Seed", str(scenario.seed))
    table.add_row("[bold cyan]Accounts", str(len(scenario.accounts)))
    table.add_row(
        "[bold cyan]Agents",
        ", ".join(f"{agent.name} ({agent.kind})" for agent in scenario.agents) or "-",
    )
    console.print(Panel(table, title="[bold green]Scenario valid", border_style="green"))


def _print_report(report: SimulationReport) -> None:
    steps = Table(title=f"Simulation: {report.name}", box=box.SIMPLE)
    steps.add_column("Step", justify="right")
    steps.add_column("Block", justify="right")
    steps.add_column("Txs", justify="right")
    steps.add_column("Success", justify="right", style="green")
    steps.add_column("Failed", justify="right", style="red")
    steps.add_column("State root")
    for step in report.steps:
        steps.add_row(
            str(step.step),
            str(step.block_number),
            str(len(step.records)),
            str(len(step.records) - step.failures),
            str(step.failures),
            (step.state_root or "-")[:18],
        )
    console.print(steps)

    balances = Table(title="Final balances", box=box.SIMPLE)
    balances.add_column("Agent")
    balances.add_column("Balance (wei)", justify="right")
    for name, balance in report.balances.items():
        balances.add_row(name, f"{balance:,}")
    console.print(balances)

    counts = ", ".join(f"{status}={count}" for status, count in report.status_counts().items())
    console.print(f"[bold]Outcomes:[/] {counts}")
    console.print(f"[bold]Final state root:[/] {report.final_state_root}")
    if report.stopped_reason:
        console.print(f"[yellow]Stopped early:[/] {report.stopped_reason}")
    if report.fatal:
        console.print(
            Panel(
                f"Step {report.fatal.step}: {report.fatal.reason}",
                title=f"[bold red]Fatal: {report.fatal.error_type}",
                border_style="red",
            )
        )


@click.group()
@click.version_option(__version__, prog_name="evmsim")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=LOG_LEVEL if LOG_LEVEL in LOG_LEVELS else "WARNING",
    show_default=True,
    help="Logging level (logs go to stderr as JSON).",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str):
    """evmsim - deterministic EVM simulation driven by agents."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level.upper()


@cli.command("run")
@click.argument("scenario_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--steps", type=click.IntRange(min=0), help="Override the scenario's step count.")
@click.option("--seed", type=int, help="Override the scenario's random seed.")
@click.option("--json", "json_output", is_flag=True, help="Print the full report as JSON.")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging level for this run (overrides the group option).",
)
@click.pass_context
def run_command(
    ctx: click.Context,
    scenario_path: Path,
    steps: Optional[int],
    seed: Optional[int],
    json_output: bool,
    log_level: Optional[str],
):
    """
    Run a scenario and print its report.

    Exits with status 2 when the run halted on a fatal error.

    Example:
        evmsim run scenarios/transfer.yaml --steps 10 --json
    """
    _configure_logging((log_level or ctx.obj["log_level"]).upper())
    try:
        scenario = load_scenario(scenario_path)
        orchestrator = build_orchestrator(scenario, seed=seed, steps=steps)
        report = orchestrator.run()
    except SimulationError as exc:
        _cli_fail(exc)
        return

    if json_output:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)
    if report.halted:
        sys.exit(2)


@cli.command("validate")
@click.argument("scenario_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def validate_command(ctx: click.Context, scenario_path: Path):
    """
    Validate a scenario file without running it.

    Example:
        evmsim validate scenarios/transfer.yaml
    """
    _configure_logging(ctx.obj["log_level"])
    try:
        scenario = load_scenario(scenario_path)
        build_orchestrator(scenario)
    except SimulationError as exc:
        _cli_fail(exc)
        return
    _print_scenario(scenario)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
