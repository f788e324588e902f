"""Markdown report generators for gate evaluations and IOSM runs.

``generate_gate_report`` renders a single :class:`GateReport` with one row
per threshold.  ``generate_run_report`` renders a run: summary, the cycle
history table, the index breakdown of the last cycle and recommendations.

This module contains only pure functions -- no I/O, no side effects.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from src.iosm_shared.constants import DIMENSIONS
from src.iosm_shared.models import (
    DiagnosticKind,
    GateReport,
    HistoryEntry,
    StopReason,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_VERDICT_DISPLAY: dict[bool, str] = {
    True: "✅ PASSED",
    False: "❌ FAILED",
}

_KIND_DISPLAY: dict[DiagnosticKind, str] = {
    DiagnosticKind.PASSED: "✅ ok",
    DiagnosticKind.VIOLATED: "❌ violated",
    DiagnosticKind.MISSING_MEASUREMENT: "⚠️ missing",
}

_STOP_REASON_DISPLAY: dict[StopReason, str] = {
    StopReason.THRESHOLD_REACHED: "Index reached the stop threshold",
    StopReason.BACKLOG_EMPTY: "Backlog is empty",
    StopReason.STAGNATION: "Index stagnated",
    StopReason.MAX_CYCLES: "Cycle cap reached",
}


def _format_value(value: object) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


def _trend(history: Sequence[HistoryEntry]) -> list[str]:
    """Per-cycle index delta labels, ``-`` for the first cycle."""
    labels: list[str] = []
    previous: float | None = None
    for entry in history:
        if previous is None:
            labels.append("-")
        else:
            labels.append(f"{entry.index - previous:+.4f}")
        previous = entry.index
    return labels


# ---------------------------------------------------------------------------
# Gate report sections
# ---------------------------------------------------------------------------


def _gate_header_section(report: GateReport) -> str:
    phase = report.phase.value if report.phase else "unnamed"
    lines: list[str] = [
        f"# Gate Report: {phase}",
        "",
        f"**Verdict:** {_VERDICT_DISPLAY[report.passed]}",
    ]
    return "\n".join(lines)


def _thresholds_section(report: GateReport) -> str:
    """Build the per-threshold table."""
    lines: list[str] = ["## Thresholds", ""]

    if not report.diagnostics:
        lines.append("Gate defines no thresholds.")
        return "\n".join(lines)

    lines.append("| Threshold | Measurement | Actual | Check | Bound | Result |")
    lines.append("|---|---|---|---|---|---|")
    for diag in report.diagnostics:
        lines.append(
            f"| {diag.threshold} | {diag.measurement} | {_format_value(diag.actual)} "
            f"| {diag.comparison.value} | {_format_value(diag.bound)} "
            f"| {_KIND_DISPLAY[diag.kind]} |"
        )
    return "\n".join(lines)


def _failures_section(report: GateReport) -> str:
    lines: list[str] = ["## Failures", ""]
    failures = report.failures
    if not failures:
        lines.append("None.")
        return "\n".join(lines)
    for diag in failures:
        lines.append(f"- {diag.describe()}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Run report sections
# ---------------------------------------------------------------------------


def _run_header_section(system_id: str, stop_reason: StopReason | None) -> str:
    lines: list[str] = ["# IOSM Run Report", ""]
    if system_id:
        lines.append(f"**System:** {system_id}")
    if stop_reason is not None:
        lines.append(
            f"**Stop reason:** {_STOP_REASON_DISPLAY[stop_reason]} "
            f"(`{stop_reason.value}`)"
        )
    return "\n".join(lines)


def _run_summary_section(
    history: Sequence[HistoryEntry], stop_threshold: float | None
) -> str:
    lines: list[str] = [
        "## Summary",
        "",
        "| Metric | Value |",
        "|---|---|",
        f"| Cycles completed | {len(history)} |",
    ]
    if history:
        first, last = history[0], history[-1]
        best = max(history, key=lambda e: e.index)
        lines.append(f"| First index | {first.index:.4f} |")
        lines.append(f"| Final index | {last.index:.4f} |")
        lines.append(f"| Best index | {best.index:.4f} (cycle {best.cycle}) |")
        lines.append(f"| Net change | {last.index - first.index:+.4f} |")
    if stop_threshold is not None:
        lines.append(f"| Stop threshold | {stop_threshold:.4f} |")
    return "\n".join(lines)


def _history_section(history: Sequence[HistoryEntry]) -> str:
    """Build the cycle history table."""
    lines: list[str] = ["## Cycle History", ""]

    if not history:
        lines.append("No cycles completed.")
        return "\n".join(lines)

    header = "| Cycle | Index | Delta | " + " | ".join(d.title() for d in DIMENSIONS) + " | Goals |"
    lines.append(header)
    lines.append("|" + "---|" * (len(DIMENSIONS) + 4))

    for entry, delta in zip(history, _trend(history)):
        metrics = entry.metrics.as_dict()
        dims = " | ".join(f"{metrics[d]:.3f}" for d in DIMENSIONS)
        goals = ", ".join(entry.goals) or "-"
        lines.append(
            f"| {entry.cycle} | {entry.index:.4f} | {delta} | {dims} | {goals} |"
        )
    return "\n".join(lines)


def _breakdown_section(breakdown: Mapping[str, float]) -> str:
    """Build the weighted contribution table of the final cycle."""
    lines: list[str] = [
        "## Final Index Breakdown",
        "",
        "| Dimension | Contribution |",
        "|---|---|",
    ]
    for name in DIMENSIONS:
        if name in breakdown:
            lines.append(f"| {name} | {breakdown[name]:.4f} |")
    lines.append(f"| **total** | **{sum(breakdown.values()):.4f}** |")
    return "\n".join(lines)


def _run_recommendations_section(
    history: Sequence[HistoryEntry], stop_reason: StopReason | None
) -> str:
    lines: list[str] = ["## Recommendations", ""]
    recs: list[str] = []

    if history:
        metrics = history[-1].metrics.as_dict()
        weakest = min(DIMENSIONS, key=lambda d: (metrics[d], d))
        recs.append(
            f"Weakest dimension is **{weakest}** ({metrics[weakest]:.3f}); "
            "prioritise backlog items that improve it."
        )
    if stop_reason is StopReason.STAGNATION:
        recs.append(
            "The index plateaued. Revisit the backlog or the gate thresholds "
            "before running further cycles."
        )
    elif stop_reason is StopReason.MAX_CYCLES:
        recs.append("The cycle cap stopped the run before convergence; consider resuming.")
    elif stop_reason is StopReason.BACKLOG_EMPTY and not history:
        recs.append("The backlog was empty; nothing was run.")

    if not recs:
        lines.append("No further action required.")
    else:
        lines.extend(f"- {rec}" for rec in recs)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def generate_gate_report(report: GateReport) -> str:
    """Generate a Markdown report for one gate evaluation.

    Args:
        report: The report produced by the gate evaluator.

    Returns:
        A complete Markdown report string.
    """
    sections: list[str] = [
        _gate_header_section(report),
        _thresholds_section(report),
        _failures_section(report),
    ]
    return "\n\n".join(sections)


def generate_run_report(
    history: Sequence[HistoryEntry],
    stop_reason: StopReason | None = None,
    system_id: str = "",
    breakdown: Mapping[str, float] | None = None,
    stop_threshold: float | None = None,
) -> str:
    """Generate a Markdown report for a run.

    This is a pure function: it performs no I/O and has no side effects.

    The report is structured into up to five sections:

    1. **Header** -- system and stop reason.
    2. **Summary** -- cycle count and index progression.
    3. **Cycle History** -- one row per cycle with index, delta and the six
       dimension scores.
    4. **Final Index Breakdown** -- weighted contribution per dimension,
       when *breakdown* is given.
    5. **Recommendations** -- derived from the last cycle and stop reason.

    Args:
        history: Completed cycles in order.
        stop_reason: Why the run stopped, if it did.
        system_id: System the run improved.
        breakdown: Weighted contributions of the last cycle.
        stop_threshold: Configured stop threshold.

    Returns:
        A complete Markdown report string.
    """
    logger.debug(
        "Generating run report (cycles=%d, stop_reason=%s)",
        len(history),
        stop_reason.value if stop_reason else None,
    )

    sections: list[str] = [
        _run_header_section(system_id, stop_reason),
        _run_summary_section(history, stop_threshold),
        _history_section(history),
    ]
    if breakdown:
        sections.append(_breakdown_section(breakdown))
    sections.append(_run_recommendations_section(history, stop_reason))

    return "\n\n".join(sections)
