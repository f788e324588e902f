"""Runtime-checkable protocols for the engine's external collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence, runtime_checkable

from src.iosm_shared.models import (
    BacklogItem,
    CycleMetrics,
    Goal,
    Phase,
    PhaseResult,
)


@runtime_checkable
class BacklogProvider(Protocol):
    """Source of candidate work items for a system."""

    async def get_backlog(self, system_id: str) -> Sequence[BacklogItem]:
        """Return the current backlog for *system_id*.

        May return an empty sequence.  Suppressing items already completed
        in earlier cycles is the provider's responsibility.
        """
        ...


@runtime_checkable
class PhaseExecutor(Protocol):
    """Opaque long-running job that works one phase and measures the result."""

    async def run_phase(
        self,
        phase: Phase,
        system_id: str,
        goals: Sequence[Goal],
        timeout: float,
    ) -> PhaseResult:
        """Run *phase* for *system_id* against *goals*.

        Must return within *timeout* seconds or raise ``ExecutionError``.

        Returns:
            Mapping of measurement name to numeric or boolean value.
        """
        ...


@runtime_checkable
class MetricsCollector(Protocol):
    """Produces the six normalised dimension scores for a system."""

    async def collect_metrics(
        self, system_id: str
    ) -> CycleMetrics | Mapping[str, float]:
        """Collect metrics once per cycle, after all four gates passed."""
        ...


@dataclass
class Collaborators:
    """Bundle of the collaborators a run needs.

    ``executors`` maps each phase to its executor.  A single executor may be
    registered for every phase with :meth:`with_single_executor`.
    """

    backlog: BacklogProvider
    metrics: MetricsCollector
    executors: dict[Phase, PhaseExecutor] = field(default_factory=dict)

    @classmethod
    def with_single_executor(
        cls,
        backlog: BacklogProvider,
        executor: PhaseExecutor,
        metrics: MetricsCollector,
    ) -> Collaborators:
        return cls(
            backlog=backlog,
            metrics=metrics,
            executors={phase: executor for phase in Phase},
        )

    def missing_executors(self) -> list[Phase]:
        """Phases that have no registered executor."""
        return [phase for phase in Phase if phase not in self.executors]
