"""Shared fixtures and fake collaborators for the IOSM engine tests."""
from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Mapping, Sequence

import pytest

from src.iosm_orchestrator.config import IOSMConfig, config_from_dict
from src.iosm_shared.models import BacklogItem, CycleMetrics, Goal, Phase
from src.iosm_shared.protocols import Collaborators


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

SAMPLE_CONFIG: dict[str, Any] = {
    "planning": {"use_economic_decision": True, "max_goals": None},
    "quality_gates": {
        "gate_I": {"semantic_coherence": 0.95, "duplication_max": 0.05},
        "gate_O": {"latency_p95_ms_max": 250, "error_rate_max": 0.01},
        "gate_S": {"api_surface_delta_max": 0, "dead_code_ratio_max": 0.02},
        "gate_M": {"contract_tests_pass": True, "coupling_max": 0.3},
    },
    "index_weights": {
        "semantic": 0.15,
        "logic": 0.20,
        "performance": 0.25,
        "simplicity": 0.15,
        "modularity": 0.15,
        "flow": 0.10,
    },
    "decision": {
        "stop_threshold": 0.98,
        "stagnation_window": 3,
        "stagnation_epsilon": 0.005,
    },
    "retry": {
        "max_attempts": 3,
        "backoff_seconds": 0.0,
        "backoff_multiplier": 2.0,
        "max_backoff_seconds": 0.0,
    },
    "phase_timeouts": {"improve": 5, "optimize": 5, "shrink": 5, "modularize": 5},
    "collaborator_timeout": 5,
}

# Phase results that satisfy every gate of SAMPLE_CONFIG
PASSING_RESULTS: dict[Phase, dict[str, Any]] = {
    Phase.IMPROVE: {"semantic_coherence": 0.97, "duplication": 0.03},
    Phase.OPTIMIZE: {"latency_p95_ms": 180, "error_rate": 0.002},
    Phase.SHRINK: {"api_surface_delta": 0, "dead_code_ratio": 0.01},
    Phase.MODULARIZE: {"contract_tests_pass": True, "coupling": 0.2},
}


@pytest.fixture
def sample_config_dict(tmp_path: Path) -> dict[str, Any]:
    """A deep copy of the sample configuration writing history under tmp_path."""
    raw = copy.deepcopy(SAMPLE_CONFIG)
    raw["history_path"] = str(tmp_path / ".iosm" / "history.jsonl")
    return raw


@pytest.fixture
def iosm_config(sample_config_dict: dict[str, Any]) -> IOSMConfig:
    """Validated configuration with zero backoff."""
    return config_from_dict(sample_config_dict)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


def make_metrics(value: float = 0.5, **overrides: float) -> CycleMetrics:
    """CycleMetrics with every dimension at *value* unless overridden."""
    data = {
        "semantic": value,
        "logic": value,
        "performance": value,
        "simplicity": value,
        "modularity": value,
        "flow": value,
    }
    data.update(overrides)
    return CycleMetrics(**data)


def make_goals(*ids: str) -> list[Goal]:
    return [
        Goal(item=BacklogItem(item_id=i, cost=1.0, value=1.0), rank=rank)
        for rank, i in enumerate(ids or ("g1",), start=1)
    ]


class FakeBacklog:
    """Returns the scripted backlogs in order, repeating the last one."""

    def __init__(self, backlogs: Sequence[Sequence[BacklogItem]]) -> None:
        self._backlogs = [list(b) for b in backlogs]
        self.calls: list[str] = []

    async def get_backlog(self, system_id: str) -> list[BacklogItem]:
        self.calls.append(system_id)
        index = min(len(self.calls) - 1, len(self._backlogs) - 1)
        return list(self._backlogs[index])


class FakeExecutor:
    """Returns scripted results per phase, falling back to passing results.

    ``scripts`` maps a phase to a list of results (or exceptions to raise)
    consumed one per call.
    """

    def __init__(
        self, scripts: Mapping[Phase, Sequence[Any]] | None = None
    ) -> None:
        self._scripts = {p: list(s) for p, s in (scripts or {}).items()}
        self.calls: list[tuple[Phase, str, tuple[str, ...]]] = []

    async def run_phase(
        self,
        phase: Phase,
        system_id: str,
        goals: Sequence[Goal],
        timeout: float,
    ) -> Mapping[str, Any]:
        self.calls.append((phase, system_id, tuple(g.item_id for g in goals)))
        script = self._scripts.get(phase)
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return dict(PASSING_RESULTS[phase])

    def phases_called(self) -> list[Phase]:
        return [call[0] for call in self.calls]


class FakeMetrics:
    """Returns the scripted metrics in order, repeating the last one."""

    def __init__(self, metrics: Sequence[Any]) -> None:
        self._metrics = list(metrics)
        self.calls = 0

    async def collect_metrics(self, system_id: str) -> Any:
        self.calls += 1
        return self._metrics[min(self.calls - 1, len(self._metrics) - 1)]


def backlog_items(*ids: str) -> list[BacklogItem]:
    return [BacklogItem(item_id=i, cost=1.0, value=1.0) for i in ids]


def make_collaborators(
    backlogs: Sequence[Sequence[BacklogItem]],
    metrics: Sequence[Any],
    scripts: Mapping[Phase, Sequence[Any]] | None = None,
) -> tuple[Collaborators, FakeBacklog, FakeExecutor, FakeMetrics]:
    backlog = FakeBacklog(backlogs)
    executor = FakeExecutor(scripts)
    collector = FakeMetrics(metrics)
    collaborators = Collaborators.with_single_executor(backlog, executor, collector)
    return collaborators, backlog, executor, collector
