#!/usr/bin/env python3
"""
Swarm Feedback CLI

Runs feedback loops against a metrics file and reports their status.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .defaults import build_default_catalog, default_loop_configs
from .errors import ConfigurationError
from .logging_utils import configure_logging
from .loop_definitions import dump_loop_definitions, load_loop_definitions
from .settings import EngineConfig
from .sources import FileMetricSource
from .supervisor import Supervisor

app = typer.Typer(
    name="swarm-feedback",
    help="Periodic feedback loops that score metrics and apply adaptations",
    rich_markup_mode="rich",
)
console = Console()


def _symbol(ok: bool) -> str:
    enc = (getattr(sys.stdout, "encoding", None) or "").lower()
    if "utf" in enc:
        return "✓" if ok else "✗"
    return "OK" if ok else "FAIL"


def _load_engine_config(config_file: Optional[Path]) -> EngineConfig:
    if config_file is not None:
        return EngineConfig.from_file(config_file)
    return EngineConfig.from_env()


def _status_table(status: dict) -> Table:
    table = Table(title="Feedback Loops")
    table.add_column("Loop", style="cyan")
    table.add_column("State")
    table.add_column("Cycles", justify="right")
    table.add_column("Improvements", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Score", justify="right", style="magenta")
    table.add_column("Status")

    for name, loop in status["loops"].items():
        score = loop["last_score"]
        table.add_row(
            name,
            loop["state"],
            str(loop["execution_count"]),
            str(loop["improvement_count"]),
            str(loop["performance"]["failed_cycles"]),
            f"{score:.2f}" if score is not None else "-",
            loop["last_status"] or "-",
        )
    return table


async def _run_for(supervisor: Supervisor, duration: float) -> dict:
    supervisor.start()
    try:
        await asyncio.sleep(duration)
    finally:
        await supervisor.shutdown()
    return supervisor.status()


@app.command("run")
def run_loops(
    metrics_file: Path = typer.Option(
        ..., "--metrics", help="JSON or YAML file holding current metric values"
    ),
    loops_file: Optional[Path] = typer.Option(
        None, "--loops", help="YAML loop definitions (defaults to built-in loops)"
    ),
    only: Optional[List[str]] = typer.Option(
        None, "--only", help="Run only the named loop (repeatable)"
    ),
    duration: float = typer.Option(30.0, "--duration", help="Seconds to run"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", help="Engine configuration JSON file"
    ),
    ledger_out: Optional[Path] = typer.Option(
        None,
        "--ledger-out",
        help="Append improvement records to this JSONL file (default: ledger_path setting)",
    ),
    prometheus_out: Optional[Path] = typer.Option(
        None, "--prometheus-out", help="Write engine metrics in Prometheus format"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print final status as JSON"),
):
    """Run feedback loops for a fixed duration and print their status."""
    config = _load_engine_config(config_file)
    configure_logging(config.log_level, config.log_format)

    try:
        configs = (
            load_loop_definitions(loops_file) if loops_file else default_loop_configs()
        )
        if only:
            unknown = [name for name in only if name not in configs]
            if unknown:
                raise ConfigurationError(f"Unknown loop(s): {', '.join(unknown)}")
            configs = {name: configs[name] for name in only}

        catalog, board = build_default_catalog()
        supervisor = Supervisor(
            catalog=catalog, source=FileMetricSource(metrics_file), config=config
        )
        for name, loop_config in configs.items():
            supervisor.register(name, loop_config)
    except ConfigurationError as e:
        console.print(f"[red]{_symbol(False)} {e}[/red]")
        raise typer.Exit(code=1)

    console.print(
        f"[bold blue]Running {len(configs)} feedback loop(s) for {duration:g}s[/bold blue]"
    )
    status = asyncio.run(_run_for(supervisor, duration))

    if as_json:
        console.print_json(json.dumps(status, default=str))
    else:
        console.print(_status_table(status))
        console.print(
            f"Executions: {status['total_executions']}  "
            f"Improvements: {status['total_improvements']}  "
            f"Failed cycles: {status['failed_cycles']}"
        )

    if ledger_out is None and config.ledger_path:
        ledger_out = Path(config.ledger_path)
    if ledger_out is not None:
        written = supervisor.ledger.export_jsonl(ledger_out)
        console.print(f"[dim]{written} improvement record(s) written to {ledger_out}[/dim]")

    if prometheus_out is not None and supervisor.metrics is not None:
        prometheus_out.parent.mkdir(parents=True, exist_ok=True)
        prometheus_out.write_text(supervisor.metrics.get_prometheus_metrics(), encoding="utf-8")
        console.print(f"[dim]Metrics written to {prometheus_out}[/dim]")

    if not as_json:
        tuned = {k: round(v, 4) for k, v in board.snapshot().items()}
        console.print(f"[dim]Knobs: {tuned}[/dim]")


@app.command("validate")
def validate_definitions(
    loops_file: Path = typer.Argument(..., help="YAML loop definitions to validate"),
):
    """Validate a loop-definitions file."""
    try:
        configs = load_loop_definitions(loops_file)
    except ConfigurationError as e:
        console.print(f"[red]{_symbol(False)} {e}[/red]")
        raise typer.Exit(code=1)

    console.print(
        f"[green]{_symbol(True)} {len(configs)} loop definition(s) valid: "
        f"{', '.join(configs) or '-'}[/green]"
    )


@app.command("defaults")
def show_defaults():
    """Print the built-in loop definitions as YAML."""
    typer.echo(dump_loop_definitions(default_loop_configs()))


@app.command("catalog")
def show_catalog():
    """List the built-in adaptation actions."""
    catalog, _ = build_default_catalog()

    table = Table(title="Adaptation Catalog")
    table.add_column("Domain", style="cyan")
    table.add_column("Metric")
    table.add_column("Action", style="magenta")
    table.add_column("Impact", justify="right")
    table.add_column("Effect")

    for row in catalog.describe():
        table.add_row(
            row["domain"],
            row["metric"] or "(general)",
            row["name"],
            f"{row['estimated_impact']:.2f}",
            row["description"],
        )
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
