"""Shared data models for the IOSM engine."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union

from src.iosm_shared.constants import DIMENSIONS, GATE_KEYS
from src.iosm_shared.utils import now_iso

# Raw measurement / threshold values.  ``bool`` is listed first so that
# readers know booleans are meaningful here, not an accident of int.
Measurement = Union[bool, int, float]
PhaseResult = Mapping[str, Measurement]
GateConfig = Mapping[str, Measurement]


class Phase(str, Enum):
    """The four ordered phases of an IOSM cycle."""
    IMPROVE = "improve"
    OPTIMIZE = "optimize"
    SHRINK = "shrink"
    MODULARIZE = "modularize"

    @property
    def gate_key(self) -> str:
        """Configuration key of this phase's gate (``gate_I`` ...)."""
        return GATE_KEYS[self.value]


class Comparison(str, Enum):
    """Direction in which a threshold bounds its measurement."""
    AT_MOST = "<="
    AT_LEAST = ">="
    EQUALS = "=="


class DiagnosticKind(str, Enum):
    """Outcome of a single threshold check."""
    PASSED = "passed"
    VIOLATED = "violated"
    MISSING_MEASUREMENT = "missing_measurement"


class Decision(str, Enum):
    """Outcome of the cycle decision policy."""
    CONTINUE = "continue"
    STOP = "stop"


class StopReason(str, Enum):
    """Why a run stopped."""
    THRESHOLD_REACHED = "threshold_reached"
    BACKLOG_EMPTY = "backlog_empty"
    STAGNATION = "stagnation"
    MAX_CYCLES = "max_cycles"


@dataclass(frozen=True)
class BacklogItem:
    """A candidate unit of work returned by the backlog provider."""
    item_id: str
    description: str = ""
    cost: float | None = None
    value: float = 0.0


@dataclass(frozen=True)
class Goal:
    """A backlog item selected for the current cycle, with its rank."""
    item: BacklogItem
    rank: int

    @property
    def item_id(self) -> str:
        return self.item.item_id


@dataclass(frozen=True)
class ThresholdDiagnostic:
    """Result of checking one gate threshold against one measurement."""
    threshold: str
    measurement: str
    comparison: Comparison
    bound: Measurement
    actual: Measurement | None
    passed: bool
    kind: DiagnosticKind
    excess: float = 0.0

    def describe(self) -> str:
        """One-line human readable description."""
        if self.kind is DiagnosticKind.MISSING_MEASUREMENT:
            return f"{self.threshold}: measurement '{self.measurement}' missing"
        verdict = "ok" if self.passed else "violated"
        text = (
            f"{self.threshold}: {self.measurement}={self.actual!r} "
            f"{self.comparison.value} {self.bound!r} ({verdict})"
        )
        if not self.passed and self.excess:
            text += f" by {self.excess:.4g}"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold": self.threshold,
            "measurement": self.measurement,
            "comparison": self.comparison.value,
            "bound": self.bound,
            "actual": self.actual,
            "passed": self.passed,
            "kind": self.kind.value,
            "excess": self.excess,
        }


@dataclass(frozen=True)
class GateReport:
    """Pass/fail verdict of one gate evaluation plus per-threshold diagnostics."""
    passed: bool
    diagnostics: tuple[ThresholdDiagnostic, ...] = ()
    phase: Phase | None = None

    @property
    def failures(self) -> tuple[ThresholdDiagnostic, ...]:
        """Diagnostics that did not pass (violations and missing measurements)."""
        return tuple(d for d in self.diagnostics if not d.passed)

    @property
    def missing_measurements(self) -> tuple[str, ...]:
        """Names of measurements the phase result did not provide."""
        return tuple(
            d.measurement
            for d in self.diagnostics
            if d.kind is DiagnosticKind.MISSING_MEASUREMENT
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value if self.phase else None,
            "passed": self.passed,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def _clamp_unit(name: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"Metric '{name}' must be finite, got {value!r}")
    return min(1.0, max(0.0, value))


@dataclass(frozen=True)
class CycleMetrics:
    """The six normalised dimension scores collected once per cycle.

    Values are clamped to [0, 1] on construction.
    """
    semantic: float
    logic: float
    performance: float
    simplicity: float
    modularity: float
    flow: float

    def __post_init__(self) -> None:
        for name in DIMENSIONS:
            object.__setattr__(self, name, _clamp_unit(name, getattr(self, name)))

    @classmethod
    def from_mapping(cls, data: Mapping[str, float]) -> CycleMetrics:
        """Build from a mapping holding exactly the six dimensions."""
        missing = [d for d in DIMENSIONS if d not in data]
        extra = sorted(set(data) - set(DIMENSIONS))
        if missing or extra:
            raise ValueError(
                f"Metrics must contain exactly {list(DIMENSIONS)}; "
                f"missing={missing}, unexpected={extra}"
            )
        return cls(**{d: data[d] for d in DIMENSIONS})

    def as_dict(self) -> dict[str, float]:
        return {d: getattr(self, d) for d in DIMENSIONS}


@dataclass(frozen=True)
class HistoryEntry:
    """Record of one completed cycle."""
    cycle: int
    index: float
    metrics: CycleMetrics
    goals: tuple[str, ...] = ()
    recorded_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle": self.cycle,
            "index": self.index,
            "metrics": self.metrics.as_dict(),
            "goals": list(self.goals),
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HistoryEntry:
        return cls(
            cycle=int(data["cycle"]),
            index=float(data["index"]),
            metrics=CycleMetrics.from_mapping(data["metrics"]),
            goals=tuple(data.get("goals", ())),
            recorded_at=data.get("recorded_at") or now_iso(),
        )


@dataclass(frozen=True)
class RunResult:
    """Outcome of a run that reached a STOP decision (or an empty backlog)."""
    system_id: str
    final_index: float | None
    final_metrics: CycleMetrics | None
    history: tuple[HistoryEntry, ...]
    stop_reason: StopReason

    @property
    def converged(self) -> bool:
        """True when the run stopped because the index reached the threshold."""
        return self.stop_reason is StopReason.THRESHOLD_REACHED

    @property
    def cycles(self) -> int:
        return len(self.history)
