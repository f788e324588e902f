"""Custom exceptions for the IOSM orchestration engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from src.iosm_shared.models import GateReport, HistoryEntry


class IOSMError(Exception):
    """Base exception for all engine errors.

    ``phase`` and ``cycle`` name where the error occurred; ``history`` is
    filled in by the orchestrator with the entries completed before the run
    was aborted.
    """

    def __init__(
        self,
        message: str,
        phase: str = "",
        cycle: int = 0,
    ) -> None:
        self.phase = phase
        self.cycle = cycle
        self.history: tuple[HistoryEntry, ...] = ()
        super().__init__(message)

    @property
    def location(self) -> str:
        parts = []
        if self.cycle:
            parts.append(f"cycle {self.cycle}")
        if self.phase:
            parts.append(f"phase '{self.phase}'")
        return ", ".join(parts) or "engine"

    def __str__(self) -> str:
        message = super().__str__()
        if self.cycle or self.phase:
            return f"{message} [{self.location}]"
        return message


class ConfigError(IOSMError):
    """Raised for malformed or inconsistent configuration."""

    pass


class ExecutionError(IOSMError):
    """Raised when a phase executor or collaborator fails or times out."""

    def __init__(
        self,
        message: str,
        phase: str = "",
        cycle: int = 0,
        attempts: int = 0,
    ) -> None:
        self.attempts = attempts
        super().__init__(message, phase=phase, cycle=cycle)


class GateExhaustedError(IOSMError):
    """Raised when a phase gate still fails after the retry bound."""

    def __init__(
        self,
        phase: str,
        cycle: int,
        attempts: int,
        report: GateReport,
    ) -> None:
        self.attempts = attempts
        self.report = report
        failed = ", ".join(d.threshold for d in report.failures) or "none"
        super().__init__(
            f"Gate for phase '{phase}' failed after {attempts} attempts "
            f"(failing thresholds: {failed})",
            phase=phase,
            cycle=cycle,
        )


class MissingMeasurementError(IOSMError):
    """Raised when a gate threshold references a measurement the executor
    did not produce.  This is an integration defect and is never retried."""

    def __init__(
        self,
        phase: str,
        cycle: int,
        measurements: Sequence[str],
        report: GateReport,
    ) -> None:
        self.measurements = tuple(measurements)
        self.report = report
        super().__init__(
            f"Phase '{phase}' result is missing measurements: "
            f"{', '.join(self.measurements)}",
            phase=phase,
            cycle=cycle,
        )
