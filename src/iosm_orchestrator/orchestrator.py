"""Cycle Orchestrator -- drives whole IOSM cycles until the decision is STOP.

One cycle is:

1. fetch the backlog and prioritize it into goals
2. run the four phases through the :class:`PhaseStateMachine`
3. collect metrics, compute the IOSM-Index and append a history entry
4. fetch the backlog again and ask the decision policy whether to go on

An empty backlog before the first cycle returns immediately without running
any phase.  Fatal errors propagate to the caller with the partial history
attached; cancellation propagates as :class:`asyncio.CancelledError`.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Sequence

from src.iosm_orchestrator.config import IOSMConfig
from src.iosm_orchestrator.cycle import PhaseStateMachine, ReportListener
from src.iosm_orchestrator.decision import decide
from src.iosm_orchestrator.exceptions import ConfigError, ExecutionError, IOSMError
from src.iosm_orchestrator.history import History, HistoryLog
from src.iosm_orchestrator.phase_runner import PhaseRunner
from src.iosm_orchestrator.prioritizer import prioritize
from src.iosm_orchestrator.scoring import compute_index
from src.iosm_orchestrator.shutdown import GracefulShutdown
from src.iosm_orchestrator.state import RunState
from src.iosm_shared.models import (
    BacklogItem,
    CycleMetrics,
    HistoryEntry,
    RunResult,
    StopReason,
)
from src.iosm_shared.protocols import Collaborators
from src.shared.logging import bind_run_context, reset_run_context

logger = logging.getLogger(__name__)

STEP_BACKLOG = "backlog"
STEP_METRICS = "collect_metrics"


class CycleOrchestrator:
    """Runs IOSM cycles for one system.

    Usage::

        orchestrator = CycleOrchestrator(config, collaborators)
        result = await orchestrator.run("billing")
        print(result.stop_reason, result.final_index)

    The orchestrator owns its :class:`History`; pass one rebuilt from a
    :class:`HistoryLog` to continue an earlier run.
    """

    def __init__(
        self,
        config: IOSMConfig,
        collaborators: Collaborators,
        history: History | None = None,
        state: RunState | None = None,
        shutdown: GracefulShutdown | None = None,
        runner: PhaseRunner | None = None,
        on_report: ReportListener | None = None,
    ) -> None:
        missing = collaborators.missing_executors()
        if missing:
            raise ConfigError(
                "No phase executor registered for: "
                + ", ".join(p.value for p in missing)
            )
        self._config = config
        self._collaborators = collaborators
        self._history = history if history is not None else History()
        self._state = state
        self._shutdown = shutdown
        self._machine = PhaseStateMachine(
            config, runner=runner, shutdown=shutdown, on_report=on_report
        )

    @property
    def history(self) -> History:
        return self._history

    async def run(self, system_id: str) -> RunResult:
        """Run cycles for *system_id* until the decision policy says STOP.

        Raises:
            IOSMError: Any fatal engine error, with ``history`` holding the
                entries completed before the failure.
            asyncio.CancelledError: On cancellation or a shutdown request.
        """
        tokens = bind_run_context(system_id=system_id)
        cycle = self._history.next_cycle
        self._update_state(system_id=system_id, status="running")
        logger.info(
            "Run started for system '%s' at cycle %d", system_id, cycle
        )
        try:
            backlog = await self._fetch_backlog(system_id, cycle)
            if not backlog:
                logger.info("Backlog is empty -- nothing to do")
                return self._finish(system_id, StopReason.BACKLOG_EMPTY)

            while True:
                cycle = self._history.next_cycle
                backlog = await self._run_cycle(system_id, cycle, backlog)

                entry = self._history.last
                assert entry is not None
                decision = decide(
                    entry.index,
                    self._history.snapshot(),
                    self._config.decision.stop_threshold,
                    self._config.decision.stagnation_window,
                    self._config.decision.stagnation_epsilon,
                    backlog_non_empty=bool(backlog),
                    max_cycles=self._config.decision.max_cycles,
                )
                if decision.should_stop:
                    assert decision.reason is not None
                    return self._finish(system_id, decision.reason)
        except IOSMError as exc:
            exc.history = self._history.snapshot()
            if not exc.cycle:
                exc.cycle = cycle
            logger.error("Run aborted: %s", exc)
            self._update_state(
                status="failed", error=str(exc), current_phase=exc.phase
            )
            raise
        except asyncio.CancelledError:
            logger.warning(
                "Run cancelled after %d completed cycles", len(self._history)
            )
            self._update_state(
                status="cancelled",
                interrupted=True,
                interrupt_reason="Cancelled",
            )
            raise
        finally:
            reset_run_context(tokens)

    async def _run_cycle(
        self,
        system_id: str,
        cycle: int,
        backlog: Sequence[BacklogItem],
    ) -> Sequence[BacklogItem]:
        """Run one full cycle and return the backlog fetched after it."""
        tokens = bind_run_context(cycle=cycle)
        try:
            if self._shutdown is not None:
                self._shutdown.check(f"before cycle {cycle}")
            self._update_state(current_cycle=cycle, current_phase="")

            planning = self._config.planning
            goals = prioritize(
                backlog, planning.use_economic_decision, planning.max_goals
            )
            logger.info("Cycle %d started with %d goals", cycle, len(goals))

            await self._machine.run_cycle(
                system_id, cycle, goals, self._collaborators.executors
            )

            metrics = await self._collect_metrics(system_id, cycle)
            index = compute_index(metrics, self._config.index_weights)
            entry = HistoryEntry(
                cycle=cycle,
                index=index,
                metrics=metrics,
                goals=tuple(g.item_id for g in goals),
            )
            self._history.append(entry)
            self._update_state(
                completed_cycles=len(self._history),
                current_phase="",
                last_index=index,
            )
            logger.info("Cycle %d completed with index %.4f", cycle, index)

            return await self._fetch_backlog(system_id, cycle)
        finally:
            reset_run_context(tokens)

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------

    async def _call(
        self, step: str, cycle: int, awaitable: Awaitable[Any]
    ) -> Any:
        timeout = self._config.collaborator_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ExecutionError(
                f"{step} timed out after {timeout}s", phase=step, cycle=cycle
            ) from exc
        except IOSMError:
            raise
        except Exception as exc:
            raise ExecutionError(
                f"{step} failed: {exc}", phase=step, cycle=cycle
            ) from exc

    async def _fetch_backlog(
        self, system_id: str, cycle: int
    ) -> list[BacklogItem]:
        items = await self._call(
            STEP_BACKLOG, cycle, self._collaborators.backlog.get_backlog(system_id)
        )
        if items is None:
            return []
        items = list(items)
        bad = [i for i in items if not isinstance(i, BacklogItem)]
        if bad:
            raise ExecutionError(
                f"Backlog provider returned {len(bad)} non-BacklogItem entries",
                phase=STEP_BACKLOG,
                cycle=cycle,
            )
        logger.debug("Fetched %d backlog items", len(items))
        return items

    async def _collect_metrics(self, system_id: str, cycle: int) -> CycleMetrics:
        raw = await self._call(
            STEP_METRICS,
            cycle,
            self._collaborators.metrics.collect_metrics(system_id),
        )
        if isinstance(raw, CycleMetrics):
            return raw
        if not isinstance(raw, Mapping):
            raise ExecutionError(
                f"Metrics collector returned {type(raw).__name__}, "
                "expected CycleMetrics or a mapping",
                phase=STEP_METRICS,
                cycle=cycle,
            )
        try:
            return CycleMetrics.from_mapping(raw)
        except (TypeError, ValueError) as exc:
            raise ExecutionError(
                f"Invalid metrics: {exc}", phase=STEP_METRICS, cycle=cycle
            ) from exc

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _finish(self, system_id: str, reason: StopReason) -> RunResult:
        last = self._history.last
        result = RunResult(
            system_id=system_id,
            final_index=last.index if last else None,
            final_metrics=last.metrics if last else None,
            history=self._history.snapshot(),
            stop_reason=reason,
        )
        self._update_state(status="stopped", stop_reason=reason.value)
        logger.info(
            "Run stopped after %d cycles: %s", result.cycles, reason.value
        )
        return result

    def _update_state(self, **changes: Any) -> None:
        if self._state is None:
            return
        for key, value in changes.items():
            setattr(self._state, key, value)
        self._state.save()


async def execute_run(
    system_id: str,
    config: IOSMConfig,
    collaborators: Collaborators,
    *,
    config_path: str | Path = "",
    state_dir: str | Path | None = None,
    resume: bool = False,
    install_signals: bool = True,
    on_report: ReportListener | None = None,
    on_start: Callable[[RunState], None] | None = None,
) -> RunResult:
    """Top-level entry point used by the CLI.

    Sets up the history log, the persisted run state and signal handling,
    then runs a :class:`CycleOrchestrator`.

    Parameters
    ----------
    system_id:
        System under improvement.
    config:
        Loaded engine configuration.
    collaborators:
        Backlog provider, phase executors and metrics collector.
    config_path:
        Path the configuration was loaded from; recorded in the run state.
    state_dir:
        Directory for ``RUN_STATE.json``.
    resume:
        If ``True``, continue the cycles recorded in the history log.
    install_signals:
        Whether to register SIGINT / SIGTERM handlers.
    on_report:
        Called with every gate report and its attempt number.
    on_start:
        Called with the saved :class:`RunState` before the first cycle.

    Returns
    -------
    RunResult
        Outcome of the run.
    """
    log = HistoryLog(config.history_path)
    if resume:
        history = History.from_log(log)
        state = RunState.load(state_dir)
        if state is None or state.system_id != system_id:
            state = RunState(system_id=system_id, config_path=str(config_path))
        state.interrupted = False
        state.interrupt_reason = ""
        logger.info(
            "Resuming run %s after %d recorded cycles", state.run_id, len(history)
        )
    else:
        if log.replay():
            raise ConfigError(
                f"History log {log.path} already holds cycles; "
                "resume the run or remove the log first"
            )
        history = History(log=log)
        state = RunState(system_id=system_id, config_path=str(config_path))
        logger.info("Created new run %s", state.run_id)
    if state_dir is not None:
        state.state_dir = str(state_dir)
    state.save()
    if on_start is not None:
        on_start(state)

    shutdown = GracefulShutdown()
    if install_signals:
        shutdown.install()
    shutdown.set_state(state)
    shutdown.attach(asyncio.current_task())

    orchestrator = CycleOrchestrator(
        config,
        collaborators,
        history=history,
        state=state,
        shutdown=shutdown,
        on_report=on_report,
    )
    return await orchestrator.run(system_id)
