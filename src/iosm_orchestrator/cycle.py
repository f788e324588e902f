"""Phase State Machine driver -- runs one cycle from ``improve`` to ``score``."""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Sequence

from src.iosm_orchestrator.config import IOSMConfig
from src.iosm_orchestrator.exceptions import IOSMError
from src.iosm_orchestrator.phase_runner import PhaseRunner
from src.iosm_orchestrator.shutdown import GracefulShutdown
from src.iosm_orchestrator.state_machine import create_cycle_machine
from src.iosm_shared.constants import PHASE_IMPROVE, STATE_ABORTED, STATE_SCORE
from src.iosm_shared.models import GateReport, Goal, Phase
from src.iosm_shared.protocols import PhaseExecutor
from src.shared.logging import bind_run_context, reset_run_context

logger = logging.getLogger(__name__)

ReportListener = Callable[[GateReport, int], None]


class CycleModel:
    """Model object for the ``transitions`` async state machine.

    Tracks the gate reports of the current cycle and exposes the guard
    methods required by :data:`~src.iosm_orchestrator.state_machine.TRANSITIONS`.
    The ``state`` attribute is managed by the ``AsyncMachine``.
    """

    def __init__(self, cycle: int, max_attempts: int) -> None:
        self.cycle = cycle
        self.max_attempts = max_attempts
        self.state: str = PHASE_IMPROVE
        self.reports: list[GateReport] = []
        self.attempts: dict[str, int] = {}
        self.completed_phases: list[Phase] = []

    @property
    def phase(self) -> Phase | None:
        """Phase the machine is in, or ``None`` in a terminal state."""
        if self.state in (STATE_SCORE, STATE_ABORTED):
            return None
        return Phase(self.state)

    def last_report(self) -> GateReport | None:
        """Most recent report of the current phase."""
        for report in reversed(self.reports):
            if report.phase is not None and report.phase.value == self.state:
                return report
        return None

    def record_report(self, report: GateReport, attempt: int) -> None:
        self.reports.append(report)
        self.attempts[self.state] = attempt

    # ---- Guard methods ---------------------------------------------------

    def gate_passed(self, *args, **kwargs) -> bool:
        """True when the latest report of the current phase passed."""
        report = self.last_report()
        return report is not None and report.passed

    def retries_remaining(self, *args, **kwargs) -> bool:
        """True when the current phase has attempts left."""
        return self.attempts.get(self.state, 0) < self.max_attempts


class PhaseStateMachine:
    """Sequences the four phases of one cycle.

    Usage::

        psm = PhaseStateMachine(config, PhaseRunner())
        model = await psm.run_cycle("billing", 1, goals, executors)
        assert model.state == "score"
    """

    def __init__(
        self,
        config: IOSMConfig,
        runner: PhaseRunner | None = None,
        shutdown: GracefulShutdown | None = None,
        on_report: ReportListener | None = None,
    ) -> None:
        self._config = config
        self._runner = runner or PhaseRunner()
        self._shutdown = shutdown
        self._on_report = on_report

    async def run_cycle(
        self,
        system_id: str,
        cycle: int,
        goals: Sequence[Goal],
        executors: Mapping[Phase, PhaseExecutor],
    ) -> CycleModel:
        """Drive the machine from ``improve`` to ``score``.

        Raises:
            IOSMError: If *goals* is empty, or re-raised from the phase
                runner after the machine moved to ``aborted``.
            asyncio.CancelledError: On cancellation or a shutdown request.
        """
        if not goals:
            raise IOSMError("Cannot start a cycle without goals", cycle=cycle)

        model = CycleModel(cycle, self._config.retry.max_attempts)
        create_cycle_machine(model)

        async def on_report(report: GateReport, attempt: int) -> None:
            model.record_report(report, attempt)
            if self._on_report is not None:
                self._on_report(report, attempt)
            if not report.passed and model.retries_remaining():
                await model.retry_phase()  # type: ignore[attr-defined]

        while model.state != STATE_SCORE:
            phase = Phase(model.state)
            tokens = bind_run_context(phase=phase.value)
            try:
                if self._shutdown is not None:
                    self._shutdown.check(f"before phase '{phase.value}' of cycle {cycle}")
                await self._runner.run(
                    phase,
                    executors[phase],
                    goals,
                    self._config.gate_for(phase),
                    self._config.retry,
                    system_id=system_id,
                    timeout=self._config.timeout_for(phase),
                    cycle=cycle,
                    on_report=on_report,
                )
            except BaseException:
                await model.abort()  # type: ignore[attr-defined]
                logger.error(
                    "Cycle %d aborted in phase %s", cycle, phase.value
                )
                raise
            finally:
                reset_run_context(tokens)

            await model.advance()  # type: ignore[attr-defined]
            if model.state == phase.value:
                raise IOSMError(
                    "Gate reported pass but the state machine refused to advance",
                    phase=phase.value,
                    cycle=cycle,
                )
            model.completed_phases.append(phase)
            logger.info("Cycle %d: %s -> %s", cycle, phase.value, model.state)

        return model
