"""CLI entry point for stylus-sentinel."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import config_from_mapping, load_config
from .detectors import DEFAULT_DETECTORS, SEVERITY_RANK, Category, Severity
from .engine import analyze as run_analysis
from .errors import ConfigurationError, ParseError
from .model import DialectHint, build_model
from .report import Report

console = Console()

_SEV_COLORS = {"critical": "red", "high": "bright_red", "medium": "yellow", "low": "blue", "info": "white"}
_RISK_COLORS = {"critical": "red", "high": "bright_red", "medium": "yellow", "low": "blue", "minimal": "green"}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def _render_table(report: Report) -> None:
    console.print(
        f"Contract: [bold]{report.contract}[/] ({report.dialect.value})  "
        f"Risk: [{_RISK_COLORS[report.risk.value]}]{report.risk.value.upper()}[/]"
    )
    console.print(
        f"Scores: security {report.scores.security:g} | "
        f"performance {report.scores.performance:g} | quality {report.scores.quality:g}\n"
    )

    table = Table(title="Findings")
    table.add_column("Severity", style="bold")
    table.add_column("Rule")
    table.add_column("Function")
    table.add_column("Title")
    table.add_column("Location")
    for f in report.findings:
        table.add_row(
            f"[{_SEV_COLORS[f.severity.value]}]{f.severity.value.upper()}[/]",
            f.rule_id,
            f.function or "-",
            f.title,
            str(f.location) if f.location is not None else "-",
        )
    if report.findings:
        console.print(table)
    else:
        console.print("[green]No findings at or above the severity floor.[/]")

    if report.cost_summary.estimates:
        costs = Table(title="Gas Estimates")
        costs.add_column("Function")
        costs.add_column("Gas", justify="right")
        costs.add_column("In loops", justify="right")
        costs.add_column("kg CO2e", justify="right")
        for estimate in report.cost_summary.estimates:
            costs.add_row(estimate.function, str(estimate.gas), str(estimate.in_loop_gas), f"{estimate.carbon_kg:.6f}")
        console.print(costs)

    for diagnostic in report.diagnostics:
        where = f" at {diagnostic.location}" if diagnostic.location is not None else ""
        console.print(f"[yellow]{diagnostic.source}: {diagnostic.reason}{where}[/]")
    suffix = f" ({report.suppressed} below floor)" if report.suppressed else ""
    console.print(f"\n[bold]Total: {len(report.findings)} findings[/]{suffix}\n")


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Static analyzer for Arbitrum Stylus and Solidity contracts."""


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--dialect",
    type=click.Choice([hint.value for hint in DialectHint]),
    default=DialectHint.AUTO.value,
    show_default=True,
)
@click.option("--format", "fmt", type=click.Choice(["table", "json", "markdown"]), default="table", show_default=True)
@click.option("--output", "-o", type=click.Path(), help="Write the report to a file instead of stdout")
@click.option(
    "--severity-floor",
    type=click.Choice([severity.value for severity in Severity], case_sensitive=False),
    default=None,
    help="Minimum severity to include in the report.",
)
@click.option("--gas-threshold", type=int, default=None, help="Gas units above which a function is flagged.")
@click.option(
    "--category",
    "categories",
    type=click.Choice([category.value for category in Category], case_sensitive=False),
    multiple=True,
    help="Detector category to run. Can be repeated; defaults to all.",
)
@click.option("--detectors", "-d", type=str, default=None, help="Comma-separated detector names")
@click.option("--timeout", type=float, default=None, help="Detector time budget in seconds.")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="TOML configuration file")
@click.option(
    "--fail-on-severity",
    type=click.Choice([severity.value for severity in Severity], case_sensitive=False),
    default=None,
    help="Exit with code 3 if any reported finding is at or above this severity.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline progress to stderr.")
def analyze(
    path: str,
    dialect: str,
    fmt: str,
    output: str | None,
    severity_floor: str | None,
    gas_threshold: int | None,
    categories: tuple[str, ...],
    detectors: str | None,
    timeout: float | None,
    config_path: str | None,
    fail_on_severity: str | None,
    verbose: bool,
) -> None:
    """Analyze a Stylus Rust, Solidity or WASM contract."""
    _configure_logging(verbose)

    try:
        config = load_config(config_path)
        overrides: dict[str, object] = {}
        if severity_floor is not None:
            overrides["severity_floor"] = severity_floor
        if gas_threshold is not None:
            overrides["gas_cost_threshold"] = gas_threshold
        if categories:
            overrides["enabled_categories"] = list(categories)
        if timeout is not None:
            overrides["timeout"] = timeout
        if detectors:
            overrides["detectors"] = detectors
        config = config_from_mapping(overrides, base=config).validate()
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/]")
        sys.exit(2)

    source = Path(path).read_bytes()
    try:
        model = build_model(source, DialectHint(dialect), name=Path(path).stem)
    except ParseError as exc:
        console.print(f"[red]Failed to parse {path}: {exc}[/]")
        sys.exit(1)

    report = run_analysis(model, config)

    if fmt == "table" and not output:
        console.print(f"[bold blue]Stylus Sentinel v{__version__}[/]")
        console.print(f"Analyzing: {path}\n")
        _render_table(report)
    else:
        # A table written to a file is rendered as markdown.
        rendered = report.to_json() if fmt == "json" else report.to_markdown()
        if output:
            Path(output).write_text(rendered)
            console.print(f"[green]Report saved to {output}[/]")
        else:
            click.echo(rendered)

    if fail_on_severity is not None:
        threshold = SEVERITY_RANK[Severity(fail_on_severity.lower())]
        violating = [f for f in report.findings if SEVERITY_RANK[f.severity] <= threshold]
        if violating:
            console.print(f"[red]{len(violating)} finding(s) at or above {fail_on_severity}.[/]")
            sys.exit(3)


@main.command(name="detectors")
def list_detectors() -> None:
    """List the registered detectors."""
    table = Table(title="Detectors")
    table.add_column("Name")
    table.add_column("Rule")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Description")
    for detector in DEFAULT_DETECTORS:
        table.add_row(
            detector.name,
            detector.rule_id,
            detector.category.value,
            f"[{_SEV_COLORS[detector.severity.value]}]{detector.severity.value}[/]",
            detector.description,
        )
    console.print(table)


if __name__ == "__main__":
    main()
