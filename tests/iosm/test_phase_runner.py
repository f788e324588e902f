"""Tests for src.iosm_orchestrator.phase_runner -- bounded retry around a gate."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.iosm_orchestrator.config import RetryConfig
from src.iosm_orchestrator.exceptions import (
    ExecutionError,
    GateExhaustedError,
    MissingMeasurementError,
)
from src.iosm_orchestrator.phase_runner import PhaseRunner
from src.iosm_shared.models import Phase
from tests.iosm.conftest import FakeExecutor, make_goals

GATE_I = {"semantic_coherence": 0.95, "duplication_max": 0.05}
FAIL = {"semantic_coherence": 0.93, "duplication": 0.04}
PASS = {"semantic_coherence": 0.96, "duplication": 0.04}

NO_BACKOFF = RetryConfig(max_attempts=3, backoff_seconds=0.0)


async def _run(runner, executor, retry=NO_BACKOFF, **kwargs):
    return await runner.run(
        Phase.IMPROVE,
        executor,
        make_goals("g1"),
        GATE_I,
        retry,
        system_id="sys",
        timeout=kwargs.pop("timeout", 5.0),
        cycle=1,
        **kwargs,
    )


class TestPhaseRunner:
    @pytest.mark.asyncio
    async def test_pass_first_attempt(self):
        executor = FakeExecutor({Phase.IMPROVE: [PASS]})
        result = await _run(PhaseRunner(), executor)
        assert result == PASS
        assert len(executor.calls) == 1

    @pytest.mark.asyncio
    async def test_retries_until_gate_passes(self):
        executor = FakeExecutor({Phase.IMPROVE: [FAIL, FAIL, PASS]})
        reports = []

        async def on_report(report, attempt):
            reports.append((report.passed, attempt))

        result = await _run(PhaseRunner(), executor, on_report=on_report)
        assert result == PASS
        assert len(executor.calls) == 3
        assert reports == [(False, 1), (False, 2), (True, 3)]

    @pytest.mark.asyncio
    async def test_gate_exhausted_carries_last_report(self):
        executor = FakeExecutor({Phase.IMPROVE: [FAIL, FAIL, FAIL]})
        with pytest.raises(GateExhaustedError) as exc_info:
            await _run(PhaseRunner(), executor)
        err = exc_info.value
        assert err.attempts == 3
        assert err.phase == "improve"
        assert err.cycle == 1
        assert [d.threshold for d in err.report.failures] == ["semantic_coherence"]
        assert len(executor.calls) == 3

    @pytest.mark.asyncio
    async def test_missing_measurement_not_retried(self):
        executor = FakeExecutor({Phase.IMPROVE: [{"semantic_coherence": 0.99}, PASS]})
        with pytest.raises(MissingMeasurementError) as exc_info:
            await _run(PhaseRunner(), executor)
        assert exc_info.value.measurements == ("duplication",)
        assert len(executor.calls) == 1

    @pytest.mark.asyncio
    async def test_execution_error_retried(self):
        executor = FakeExecutor({Phase.IMPROVE: [RuntimeError("boom"), PASS]})
        result = await _run(PhaseRunner(), executor)
        assert result == PASS
        assert len(executor.calls) == 2

    @pytest.mark.asyncio
    async def test_execution_error_exhausted_is_execution_error(self):
        executor = FakeExecutor(
            {Phase.IMPROVE: [RuntimeError("a"), RuntimeError("b"), RuntimeError("c")]}
        )
        with pytest.raises(ExecutionError) as exc_info:
            await _run(PhaseRunner(), executor)
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_execution_error_not_retried_when_disabled(self):
        executor = FakeExecutor({Phase.IMPROVE: [ExecutionError("down"), PASS]})
        retry = RetryConfig(max_attempts=3, backoff_seconds=0.0, retry_execution_errors=False)
        with pytest.raises(ExecutionError) as exc_info:
            await _run(PhaseRunner(), executor, retry=retry)
        assert exc_info.value.phase == "improve"
        assert len(executor.calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_execution_error(self):
        class SlowExecutor:
            async def run_phase(self, phase, system_id, goals, timeout):
                await asyncio.sleep(10)

        retry = RetryConfig(max_attempts=1, backoff_seconds=0.0)
        with pytest.raises(ExecutionError, match="timed out"):
            await _run(PhaseRunner(), SlowExecutor(), retry=retry, timeout=0.01)

    @pytest.mark.asyncio
    async def test_malformed_result_is_execution_error(self):
        executor = FakeExecutor({Phase.IMPROVE: [["not", "a", "mapping"]]})
        retry = RetryConfig(max_attempts=1, backoff_seconds=0.0)
        with pytest.raises(ExecutionError, match="expected a mapping"):
            await _run(PhaseRunner(), executor, retry=retry)

    @pytest.mark.asyncio
    async def test_backoff_delays(self):
        sleep = AsyncMock()
        executor = FakeExecutor({Phase.IMPROVE: [FAIL, FAIL, PASS]})
        retry = RetryConfig(max_attempts=3, backoff_seconds=1.0, backoff_multiplier=2.0)
        await _run(PhaseRunner(sleep=sleep), executor, retry=retry)
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_no_sleep_after_last_attempt(self):
        sleep = AsyncMock()
        executor = FakeExecutor({Phase.IMPROVE: [FAIL, FAIL]})
        retry = RetryConfig(max_attempts=2, backoff_seconds=1.0)
        with pytest.raises(GateExhaustedError):
            await _run(PhaseRunner(sleep=sleep), executor, retry=retry)
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        executor = FakeExecutor({Phase.IMPROVE: [asyncio.CancelledError()]})
        with pytest.raises(asyncio.CancelledError):
            await _run(PhaseRunner(), executor)
        assert len(executor.calls) == 1


class TestRetryConfig:
    def test_delay_capped(self):
        retry = RetryConfig(backoff_seconds=10.0, backoff_multiplier=10.0, max_backoff_seconds=60.0)
        assert retry.delay_for(1) == 10.0
        assert retry.delay_for(2) == 60.0
        assert retry.delay_for(5) == 60.0
