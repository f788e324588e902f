"""Tests for src.iosm_orchestrator.decision -- the continue/stop policy."""

from __future__ import annotations

from src.iosm_orchestrator.decision import decide, is_stagnant
from src.iosm_shared.models import Decision, HistoryEntry, StopReason
from tests.iosm.conftest import make_metrics


def _history(*indices: float) -> list[HistoryEntry]:
    return [
        HistoryEntry(cycle=i, index=index, metrics=make_metrics(index))
        for i, index in enumerate(indices, start=1)
    ]


def _decide(index, history, backlog_non_empty=True, max_cycles=None):
    return decide(
        index,
        history,
        stop_threshold=0.98,
        stagnation_window=3,
        stagnation_epsilon=0.005,
        backlog_non_empty=backlog_non_empty,
        max_cycles=max_cycles,
    )


class TestDecide:
    def test_threshold_reached(self):
        result = _decide(0.99, _history(0.99))
        assert result.decision is Decision.STOP
        assert result.reason is StopReason.THRESHOLD_REACHED
        assert result.should_stop

    def test_threshold_is_inclusive(self):
        assert _decide(0.98, _history(0.98)).reason is StopReason.THRESHOLD_REACHED

    def test_stagnation_below_threshold(self):
        result = _decide(0.80, _history(0.80, 0.801, 0.80))
        assert result.decision is Decision.STOP
        assert result.reason is StopReason.STAGNATION

    def test_progress_continues(self):
        result = _decide(0.80, _history(0.60, 0.70, 0.80))
        assert result.decision is Decision.CONTINUE
        assert result.reason is None
        assert not result.should_stop

    def test_short_history_never_stagnates(self):
        assert _decide(0.5, _history(0.5, 0.5)).decision is Decision.CONTINUE

    def test_backlog_empty(self):
        result = _decide(0.5, _history(0.5), backlog_non_empty=False)
        assert result.reason is StopReason.BACKLOG_EMPTY

    def test_threshold_wins_over_empty_backlog(self):
        result = _decide(0.99, _history(0.99), backlog_non_empty=False)
        assert result.reason is StopReason.THRESHOLD_REACHED

    def test_max_cycles(self):
        result = _decide(0.5, _history(0.1, 0.3, 0.5), max_cycles=3)
        assert result.reason is StopReason.MAX_CYCLES

    def test_stagnation_checked_before_max_cycles(self):
        result = _decide(0.5, _history(0.5, 0.5, 0.5), max_cycles=3)
        assert result.reason is StopReason.STAGNATION


class TestIsStagnant:
    def test_only_last_window_counts(self):
        assert is_stagnant(_history(0.1, 0.5, 0.5, 0.5), window=3, epsilon=0.005)

    def test_spread_at_epsilon_is_progress(self):
        assert not is_stagnant(_history(0.5, 0.51), window=2, epsilon=0.01)

    def test_decreasing_index_not_stagnant(self):
        assert not is_stagnant(_history(0.9, 0.8, 0.7), window=3, epsilon=0.005)
