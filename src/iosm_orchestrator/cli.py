"""Command-line interface for the IOSM engine.

Commands:

* ``init``      -- write a commented configuration template
* ``validate``  -- load a configuration and print a summary
* ``run``       -- run cycles for a system with collaborators from a plugin
* ``history``   -- show the recorded cycle history
* ``report``    -- render the recorded run as Markdown

Collaborators are supplied by a plugin given as ``module:factory``.  The
factory is called with the loaded :class:`IOSMConfig` and must return a
:class:`Collaborators` bundle (it may be a coroutine function).
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console

from src.iosm_orchestrator.config import IOSMConfig, load_iosm_config
from src.iosm_orchestrator.display import (
    print_config_summary,
    print_error_panel,
    print_final_summary,
    print_gate_report,
    print_history_table,
    print_run_header,
)
from src.iosm_orchestrator.exceptions import ConfigError, IOSMError
from src.iosm_orchestrator.history import HistoryLog
from src.iosm_orchestrator.orchestrator import execute_run
from src.iosm_orchestrator.scoring import score_breakdown
from src.iosm_orchestrator.state import RunState
from src.iosm_shared.models import GateReport, StopReason
from src.iosm_shared.protocols import Collaborators
from src.quality_gate.report import generate_run_report
from src.shared.config import EngineSettings
from src.shared.constants import SERVICE_NAME, VERSION
from src.shared.logging import setup_logging

logger = logging.getLogger(__name__)

console = Console()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130

app = typer.Typer(
    name="iosm",
    help="IOSM engine: Improve, Optimize, Shrink, Modularize until convergence.",
    no_args_is_help=True,
)

_DEFAULT_CONFIG_TEMPLATE = """\
# IOSM engine configuration

planning:
  # Rank backlog items by value / cost before each cycle
  use_economic_decision: true
  # Optional cap on the number of goals per cycle (null = all items)
  max_goals: null

# One gate per phase.  Threshold names ending in _max are upper bounds,
# names ending in _min or without a suffix are lower bounds, and boolean
# thresholds must match exactly.
quality_gates:
  gate_I:
    semantic_coherence: 0.95
    duplication_max: 0.05
  gate_O:
    latency_p95_ms_max: 250
    error_rate_max: 0.01
  gate_S:
    api_surface_delta_max: 0
    dead_code_ratio_max: 0.02
  gate_M:
    contract_tests_pass: true
    coupling_max: 0.3

# Weights of the six dimensions; must be non-negative and sum to 1.0
index_weights:
  semantic: 0.15
  logic: 0.20
  performance: 0.25
  simplicity: 0.15
  modularity: 0.15
  flow: 0.10

decision:
  stop_threshold: 0.98
  # Stop when the index moves less than epsilon over this many cycles
  stagnation_window: 3
  stagnation_epsilon: 0.005
  # Optional hard cap on the number of cycles
  max_cycles: null

retry:
  max_attempts: 3
  backoff_seconds: 1.0
  backoff_multiplier: 2.0
  max_backoff_seconds: 60.0
  retry_execution_errors: true

# Executor timeout per phase, in seconds
phase_timeouts:
  improve: 1800
  optimize: 1800
  shrink: 1200
  modularize: 1800

# Timeout for backlog and metrics calls, in seconds
collaborator_timeout: 300

history_path: ".iosm/history.jsonl"
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"{SERVICE_NAME} {VERSION}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """IOSM engine command-line interface."""
    settings = EngineSettings()
    setup_logging(SERVICE_NAME, level=settings.log_level, fmt=settings.log_format)


def _settings() -> EngineSettings:
    return EngineSettings()


def _load_config_or_exit(config_path: Path) -> IOSMConfig:
    try:
        return load_iosm_config(config_path)
    except ConfigError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=EXIT_FAILURE)


def _load_plugin(target: str) -> Any:
    """Resolve ``module:attribute`` to a callable."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Plugin must be given as 'module:factory', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import plugin module '{module_name}': {exc}") from exc
    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ConfigError(f"Plugin '{target}' does not name a callable")
    return factory


async def _build_collaborators(factory: Any, config: IOSMConfig) -> Collaborators:
    collaborators = factory(config)
    if inspect.isawaitable(collaborators):
        collaborators = await collaborators
    if not isinstance(collaborators, Collaborators):
        raise ConfigError(
            f"Plugin factory returned {type(collaborators).__name__}, "
            "expected Collaborators"
        )
    return collaborators


def _print_report(report: GateReport, attempt: int) -> None:
    print_gate_report(report, attempt)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    output: Path = typer.Option(
        Path("iosm.yaml"), "--output", "-o", help="Where to write the template."
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write a commented configuration template."""
    if output.exists() and not force:
        console.print(f"[red]{output} already exists; use --force to overwrite.[/red]")
        raise typer.Exit(code=EXIT_FAILURE)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(_DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    console.print(f"[green]Wrote configuration template to {output}[/green]")


@app.command()
def validate(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (default: $IOSM_CONFIG)."
    ),
) -> None:
    """Load a configuration file and print a summary."""
    config_path = config or Path(_settings().config_path)
    cfg = _load_config_or_exit(config_path)
    print_config_summary(cfg, str(config_path))
    console.print("[green]Configuration is valid.[/green]")


@app.command()
def run(
    system_id: str = typer.Argument(..., help="System to improve."),
    plugin: str = typer.Option(
        ..., "--plugin", "-p", help="Collaborator factory as 'module:factory'."
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (default: $IOSM_CONFIG)."
    ),
    resume: bool = typer.Option(
        False, "--resume", help="Continue the cycles recorded in the history log."
    ),
    show_gates: bool = typer.Option(
        False, "--show-gates", help="Print every gate report."
    ),
) -> None:
    """Run IOSM cycles for SYSTEM_ID until the decision policy says STOP."""
    settings = _settings()
    config_path = config or Path(settings.config_path)
    cfg = _load_config_or_exit(config_path)

    async def _run() -> Any:
        factory = _load_plugin(plugin)
        collaborators = await _build_collaborators(factory, cfg)
        return await execute_run(
            system_id,
            cfg,
            collaborators,
            config_path=str(config_path),
            state_dir=settings.state_dir,
            resume=resume,
            on_report=_print_report if show_gates else None,
            on_start=lambda state: print_run_header(state, str(config_path)),
        )

    try:
        result = asyncio.run(_run())
    except IOSMError as exc:
        report = getattr(exc, "report", None)
        if report is not None:
            print_gate_report(report)
        print_error_panel(exc)
        if exc.history:
            print_history_table(exc.history)
        raise typer.Exit(code=EXIT_FAILURE)
    except (asyncio.CancelledError, KeyboardInterrupt):
        console.print("[yellow]Run cancelled.[/yellow]")
        raise typer.Exit(code=EXIT_CANCELLED)

    print_history_table(result.history)
    print_final_summary(result)


@app.command()
def history(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (default: $IOSM_CONFIG)."
    ),
) -> None:
    """Show the cycle history recorded in the history log."""
    cfg = _load_config_or_exit(config or Path(_settings().config_path))
    try:
        entries = HistoryLog(cfg.history_path).replay()
    except ValueError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=EXIT_FAILURE)
    print_history_table(entries)


@app.command()
def report(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (default: $IOSM_CONFIG)."
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the Markdown report to this file."
    ),
) -> None:
    """Render the recorded run as a Markdown report."""
    settings = _settings()
    cfg = _load_config_or_exit(config or Path(settings.config_path))
    try:
        entries = HistoryLog(cfg.history_path).replay()
    except ValueError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=EXIT_FAILURE)

    state = RunState.load(settings.state_dir)
    stop_reason = None
    system_id = ""
    if state is not None:
        system_id = state.system_id
        if state.stop_reason:
            stop_reason = StopReason(state.stop_reason)

    breakdown = (
        score_breakdown(entries[-1].metrics, cfg.index_weights) if entries else None
    )
    markdown = generate_run_report(
        entries,
        stop_reason=stop_reason,
        system_id=system_id,
        breakdown=breakdown,
        stop_threshold=cfg.decision.stop_threshold,
    )

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(markdown, encoding="utf-8")
        console.print(f"[green]Wrote report to {output}[/green]")
    else:
        console.print(markdown, markup=False, highlight=False)
