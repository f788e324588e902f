"""Rich-based terminal display layer for IOSM runs.

Provides formatted output for the run header, gate reports, the cycle
history, the configuration summary, error panels and the final summary.
Uses a module-level :class:`~rich.console.Console` singleton for consistent
output.
"""

from __future__ import annotations

from typing import Any, Sequence

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.iosm_orchestrator.scoring import classify_index
from src.iosm_shared.constants import DIMENSIONS
from src.shared.constants import VERSION

# ---------------------------------------------------------------------------
# Module-level Console singleton
# ---------------------------------------------------------------------------

_console = Console()

_LIGHT_STYLES = {"GREEN": "green", "YELLOW": "yellow", "RED": "red"}


# ---------------------------------------------------------------------------
# Display functions
# ---------------------------------------------------------------------------


def print_run_header(state: Any, config_path: str | None = None) -> None:
    """Print a Rich panel header identifying the run.

    Parameters
    ----------
    state:
        A ``RunState`` instance (or duck-typed object with ``run_id``,
        ``system_id``, ``completed_cycles``).
    config_path:
        Explicit config path override.
    """
    run_id = _get_attr(state, "run_id", "unknown")
    system_id = _get_attr(state, "system_id", "unknown")
    cfg = config_path or _get_attr(state, "config_path", "") or "unknown"
    completed = _get_attr(state, "completed_cycles", 0)

    header = Text()
    header.append("IOSM Engine", style="bold white")
    header.append(f" v{VERSION}\n", style="dim")
    header.append("Run: ", style="bold")
    header.append(f"{run_id}\n", style="cyan")
    header.append("System: ", style="bold")
    header.append(f"{system_id}\n", style="green")
    header.append("Config: ", style="bold")
    header.append(f"{cfg}", style="green")
    if completed:
        header.append("\nResuming after: ", style="bold")
        header.append(f"{completed} cycles", style="yellow")

    _console.print(
        Panel(
            header,
            title="[bold]Run Overview[/bold]",
            border_style="blue",
            expand=False,
        )
    )


def print_gate_report(report: Any, attempt: int | None = None) -> None:
    """Print a table with one row per threshold of a gate report.

    Parameters
    ----------
    report:
        A ``GateReport`` instance.
    attempt:
        Attempt number shown in the title (optional).
    """
    phase = _get_attr(report, "phase", None)
    phase_name = _value(phase) or "gate"
    passed = _get_attr(report, "passed", False)

    title = f"Gate {phase_name}"
    if attempt is not None:
        title += f" (attempt {attempt})"
    title += " -- PASSED" if passed else " -- FAILED"

    table = Table(
        title=title,
        show_header=True,
        header_style="bold magenta",
        title_style="green" if passed else "red",
    )
    table.add_column("Threshold", style="cyan", min_width=20)
    table.add_column("Actual", justify="right", min_width=10)
    table.add_column("Check", justify="center", min_width=6)
    table.add_column("Bound", justify="right", min_width=10)
    table.add_column("Result", justify="center", min_width=10)

    for diag in _get_attr(report, "diagnostics", ()):
        kind = _value(_get_attr(diag, "kind", ""))
        actual = _get_attr(diag, "actual", None)
        if kind == "passed":
            result = "[green]OK[/green]"
        elif kind == "missing_measurement":
            result = "[red]MISSING[/red]"
        else:
            result = "[red]VIOLATED[/red]"
        table.add_row(
            str(_get_attr(diag, "threshold", "")),
            "-" if actual is None else str(actual),
            _value(_get_attr(diag, "comparison", "")),
            str(_get_attr(diag, "bound", "")),
            result,
        )

    _console.print(table)


def print_history_table(history: Sequence[Any]) -> None:
    """Print a Rich table with one row per completed cycle.

    Parameters
    ----------
    history:
        Sequence of ``HistoryEntry`` instances (or dicts).
    """
    table = Table(title="Cycle History", show_header=True, header_style="bold magenta")
    table.add_column("Cycle", justify="right", style="cyan")
    table.add_column("Index", justify="right", min_width=8)
    for dim in DIMENSIONS:
        table.add_column(dim.title(), justify="right")
    table.add_column("Goals", min_width=10)

    if not history:
        _console.print("[dim]No cycles recorded.[/dim]")
        return

    for entry in history:
        index = float(_get_attr(entry, "index", 0.0))
        style = _LIGHT_STYLES[classify_index(index)]
        metrics = _get_attr(entry, "metrics", {})
        if hasattr(metrics, "as_dict"):
            metrics = metrics.as_dict()
        goals = _get_attr(entry, "goals", ())
        table.add_row(
            str(_get_attr(entry, "cycle", "")),
            f"[{style}]{index:.4f}[/{style}]",
            *(f"{float(metrics.get(dim, 0.0)):.3f}" for dim in DIMENSIONS),
            ", ".join(goals) if goals else "-",
        )

    _console.print(table)


def print_config_summary(config: Any, config_path: str = "") -> None:
    """Print a panel summarising a loaded ``IOSMConfig``."""
    content = Text()
    if config_path:
        content.append("File: ", style="bold")
        content.append(f"{config_path}\n", style="cyan")

    decision = config.decision
    content.append("Stop threshold: ", style="bold")
    content.append(f"{decision.stop_threshold}\n")
    content.append("Stagnation: ", style="bold")
    content.append(
        f"window {decision.stagnation_window}, epsilon {decision.stagnation_epsilon}\n"
    )
    content.append("Max cycles: ", style="bold")
    content.append(f"{decision.max_cycles or 'unbounded'}\n")
    content.append("Retry: ", style="bold")
    content.append(
        f"{config.retry.max_attempts} attempts, backoff {config.retry.backoff_seconds}s "
        f"x{config.retry.backoff_multiplier}\n"
    )
    content.append("Economic planning: ", style="bold")
    content.append(f"{'on' if config.planning.use_economic_decision else 'off'}\n")

    gates = Table(show_header=True, header_style="bold")
    gates.add_column("Gate", style="cyan")
    gates.add_column("Thresholds")
    gates.add_column("Timeout (s)", justify="right")
    for phase, thresholds in config.quality_gates.items():
        gates.add_row(
            f"{phase.gate_key} ({phase.value})",
            ", ".join(f"{k}={v}" for k, v in thresholds.items()) or "-",
            f"{config.timeout_for(phase):g}",
        )

    weights = Table(show_header=True, header_style="bold")
    weights.add_column("Dimension", style="cyan")
    weights.add_column("Weight", justify="right")
    for name, weight in config.index_weights.as_dict().items():
        weights.add_row(name, f"{weight:.3f}")

    _console.print(
        Panel(
            Group(content, gates, weights),
            title="[bold]Configuration[/bold]",
            border_style="green",
            expand=False,
        )
    )


def print_error_panel(error: str | Exception) -> None:
    """Print an error message in a red Rich panel.

    Parameters
    ----------
    error:
        Error message string or Exception instance.
    """
    error_text = str(error)
    history = getattr(error, "history", ())
    if history:
        error_text += f"\n\nCompleted cycles before failure: {len(history)}"
    _console.print(
        Panel(
            Text(error_text, style="bold white"),
            title=f"[bold red]{type(error).__name__ if isinstance(error, Exception) else 'Error'}[/bold red]",
            border_style="red",
            expand=False,
        )
    )


def print_final_summary(result: Any) -> None:
    """Print the final run summary.

    Parameters
    ----------
    result:
        A ``RunResult`` instance.
    """
    reason = _value(_get_attr(result, "stop_reason", "unknown"))
    final_index = _get_attr(result, "final_index", None)

    if reason == "threshold_reached":
        style = "green"
        title = "Run Converged"
    elif reason == "backlog_empty":
        style = "blue"
        title = "Backlog Exhausted"
    else:
        style = "yellow"
        title = "Run Stopped"

    content = Text()
    content.append("System: ", style="bold")
    content.append(f"{_get_attr(result, 'system_id', 'unknown')}\n", style="cyan")
    content.append("Stop reason: ", style="bold")
    content.append(f"{reason}\n", style=style)
    content.append(f"Cycles: {len(_get_attr(result, 'history', ()))}\n")
    content.append("Final index: ", style="bold")
    if final_index is None:
        content.append("-\n")
    else:
        light = classify_index(final_index)
        content.append(f"{final_index:.4f} ({light})\n", style=_LIGHT_STYLES[light])

    _console.print(
        Panel(
            content,
            title=f"[bold]{title}[/bold]",
            border_style=style,
            expand=False,
        )
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute from object or dict, with fallback to default."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _value(obj: Any) -> str:
    """Enum value or plain string."""
    if obj is None:
        return ""
    return str(getattr(obj, "value", obj))
