"""Cycle Decision Policy -- decides whether another cycle should run.

STOP conditions, checked in order:

1. the index reached the stop threshold
2. the backlog is empty
3. the index stagnated: the last ``stagnation_window`` history entries
   span less than ``stagnation_epsilon``
4. the optional cycle cap was reached

Otherwise CONTINUE.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from src.iosm_shared.models import Decision, HistoryEntry, StopReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleDecision:
    """Decision plus the reason behind a STOP."""

    decision: Decision
    reason: StopReason | None = None
    detail: str = ""

    @property
    def should_stop(self) -> bool:
        return self.decision is Decision.STOP


def is_stagnant(
    history: Sequence[HistoryEntry],
    window: int,
    epsilon: float,
) -> bool:
    """True when the last *window* indices moved by less than *epsilon*."""
    if window < 1 or len(history) < window:
        return False
    recent = [entry.index for entry in history[-window:]]
    return max(recent) - min(recent) < epsilon


def decide(
    index: float,
    history: Sequence[HistoryEntry],
    stop_threshold: float,
    stagnation_window: int,
    stagnation_epsilon: float,
    backlog_non_empty: bool,
    max_cycles: int | None = None,
) -> CycleDecision:
    """Decide STOP or CONTINUE after a completed cycle.

    Args:
        index: IOSM-Index of the cycle just completed.
        history: All completed cycles, including the one just completed.
        stop_threshold: Index at or above which the run has converged.
        stagnation_window: Number of consecutive entries inspected.
        stagnation_epsilon: Minimum spread that still counts as progress.
        backlog_non_empty: Whether work remains for another cycle.
        max_cycles: Optional hard cap on the number of cycles.

    Returns:
        The decision and, for STOP, its reason.
    """
    if index >= stop_threshold:
        result = CycleDecision(
            Decision.STOP,
            StopReason.THRESHOLD_REACHED,
            f"index {index:.4f} >= stop threshold {stop_threshold:.4f}",
        )
    elif not backlog_non_empty:
        result = CycleDecision(
            Decision.STOP, StopReason.BACKLOG_EMPTY, "backlog is empty"
        )
    elif is_stagnant(history, stagnation_window, stagnation_epsilon):
        result = CycleDecision(
            Decision.STOP,
            StopReason.STAGNATION,
            f"index moved less than {stagnation_epsilon} over the last "
            f"{stagnation_window} cycles",
        )
    elif max_cycles is not None and len(history) >= max_cycles:
        result = CycleDecision(
            Decision.STOP,
            StopReason.MAX_CYCLES,
            f"reached the cap of {max_cycles} cycles",
        )
    else:
        result = CycleDecision(Decision.CONTINUE)

    logger.info(
        "Decision after cycle %d: %s%s",
        len(history),
        result.decision.value,
        f" ({result.detail})" if result.detail else "",
    )
    return result
