"""Phase Runner -- runs one phase until its gate passes or the retry bound hits.

Each attempt invokes the phase executor under a timeout and feeds the
result to the :class:`~src.quality_gate.gate_engine.GateEvaluator`:

* gate passed         -> the phase result is returned
* gate failed         -> backoff, then re-invoke the same phase
* measurement missing -> :class:`MissingMeasurementError` immediately
* executor failure    -> retried when the policy allows, else
                         :class:`ExecutionError`

Exhausting the attempts on gate failures raises
:class:`GateExhaustedError` carrying the last report.  Cancellation is never
caught here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Awaitable, Callable, Sequence

from src.iosm_orchestrator.config import RetryConfig
from src.iosm_orchestrator.exceptions import (
    ExecutionError,
    GateExhaustedError,
    MissingMeasurementError,
)
from src.iosm_shared.models import (
    GateConfig,
    GateReport,
    Goal,
    Phase,
    PhaseResult,
)
from src.iosm_shared.protocols import PhaseExecutor
from src.quality_gate.gate_engine import GateEvaluator

logger = logging.getLogger(__name__)

ReportHook = Callable[[GateReport, int], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


def _validate_result(
    result: object, phase: Phase, cycle: int, attempt: int
) -> PhaseResult:
    """Ensure an executor returned a mapping of name -> number/bool."""
    if not isinstance(result, Mapping):
        raise ExecutionError(
            f"Executor returned {type(result).__name__}, expected a mapping",
            phase=phase.value,
            cycle=cycle,
            attempts=attempt,
        )
    bad = sorted(
        str(k)
        for k, v in result.items()
        if not isinstance(k, str) or not isinstance(v, (bool, int, float))
    )
    if bad:
        raise ExecutionError(
            f"Executor returned non-numeric measurements: {', '.join(bad)}",
            phase=phase.value,
            cycle=cycle,
            attempts=attempt,
        )
    return result


class PhaseRunner:
    """Runs a single phase with timeout, gate evaluation, and bounded retry."""

    def __init__(
        self,
        evaluator: GateEvaluator | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._evaluator = evaluator or GateEvaluator()
        self._sleep = sleep or asyncio.sleep

    async def run(
        self,
        phase: Phase,
        executor: PhaseExecutor,
        goals: Sequence[Goal],
        gate_config: GateConfig,
        retry_policy: RetryConfig,
        *,
        system_id: str,
        timeout: float,
        cycle: int = 0,
        on_report: ReportHook | None = None,
    ) -> PhaseResult:
        """Run *phase* until its gate passes.

        Parameters
        ----------
        phase:
            Phase to run.
        executor:
            Executor invoked once per attempt.
        goals:
            Read-only goal set of the current cycle.
        gate_config:
            Thresholds the result must satisfy.
        retry_policy:
            Attempt bound and backoff.
        system_id:
            System under improvement.
        timeout:
            Per-attempt executor timeout in seconds.
        cycle:
            Current cycle number, used for error reporting.
        on_report:
            Awaited with every gate report and its attempt number.

        Returns
        -------
        PhaseResult
            The measurements of the passing attempt.
        """
        last_report: GateReport | None = None
        last_error: ExecutionError | None = None

        for attempt in range(1, retry_policy.max_attempts + 1):
            logger.info(
                "Phase %s attempt %d/%d started",
                phase.value,
                attempt,
                retry_policy.max_attempts,
            )
            try:
                raw = await asyncio.wait_for(
                    executor.run_phase(phase, system_id, goals, timeout),
                    timeout=timeout,
                )
                result = _validate_result(raw, phase, cycle, attempt)
            except asyncio.TimeoutError as exc:
                last_error = ExecutionError(
                    f"Executor timed out after {timeout}s",
                    phase=phase.value,
                    cycle=cycle,
                    attempts=attempt,
                )
                last_error.__cause__ = exc
            except ExecutionError as exc:
                exc.phase = exc.phase or phase.value
                exc.cycle = exc.cycle or cycle
                exc.attempts = attempt
                last_error = exc
            except Exception as exc:
                last_error = ExecutionError(
                    f"Executor failed: {exc}",
                    phase=phase.value,
                    cycle=cycle,
                    attempts=attempt,
                )
                last_error.__cause__ = exc
            else:
                last_error = None

            if last_error is not None:
                logger.warning(
                    "Phase %s attempt %d/%d execution failed: %s",
                    phase.value,
                    attempt,
                    retry_policy.max_attempts,
                    last_error,
                )
                if not retry_policy.retry_execution_errors:
                    raise last_error
                if attempt < retry_policy.max_attempts:
                    await self._backoff(retry_policy, attempt)
                continue

            report = self._evaluator.evaluate(result, gate_config, phase)
            if on_report is not None:
                await on_report(report, attempt)

            if report.missing_measurements:
                logger.error(
                    "Phase %s result lacks measurements %s",
                    phase.value,
                    ", ".join(report.missing_measurements),
                )
                raise MissingMeasurementError(
                    phase.value, cycle, report.missing_measurements, report
                )

            if report.passed:
                logger.info(
                    "Phase %s gate passed on attempt %d", phase.value, attempt
                )
                return result

            last_report = report
            logger.warning(
                "Phase %s gate failed on attempt %d/%d: %s",
                phase.value,
                attempt,
                retry_policy.max_attempts,
                "; ".join(d.describe() for d in report.failures),
            )
            if attempt < retry_policy.max_attempts:
                await self._backoff(retry_policy, attempt)

        if last_error is not None:
            logger.error(
                "Phase %s gave up after %d attempts: %s",
                phase.value,
                retry_policy.max_attempts,
                last_error,
            )
            raise last_error

        assert last_report is not None
        raise GateExhaustedError(
            phase.value, cycle, retry_policy.max_attempts, last_report
        )

    async def _backoff(self, retry_policy: RetryConfig, attempt: int) -> None:
        delay = retry_policy.delay_for(attempt)
        if delay > 0:
            logger.info("Retrying in %.2fs", delay)
            await self._sleep(delay)
