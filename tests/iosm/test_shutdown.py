"""Tests for src.iosm_orchestrator.shutdown and run state persistence."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from unittest.mock import MagicMock, patch

import pytest

from src.iosm_orchestrator.shutdown import GracefulShutdown
from src.iosm_orchestrator.state import RunState


# ---------------------------------------------------------------------------
# GracefulShutdown
# ---------------------------------------------------------------------------


class TestGracefulShutdown:
    def test_initial_state(self):
        shutdown = GracefulShutdown()
        assert shutdown.should_stop is False

    def test_check_passes_until_stop(self):
        shutdown = GracefulShutdown()
        shutdown.check("anywhere")
        shutdown.should_stop = True
        with pytest.raises(asyncio.CancelledError):
            shutdown.check("before cycle 2")

    def test_signal_handler_sets_flag_and_saves(self):
        shutdown = GracefulShutdown()
        state = MagicMock()
        shutdown.set_state(state)
        shutdown._signal_handler(signal.SIGINT, None)
        assert shutdown.should_stop is True
        assert state.interrupted is True
        assert state.interrupt_reason == "Signal received"
        state.save.assert_called_once()

    def test_reentrancy_guard(self):
        shutdown = GracefulShutdown()
        state = MagicMock()
        shutdown.set_state(state)
        shutdown._handling = True
        shutdown._signal_handler(signal.SIGTERM, None)
        assert shutdown.should_stop is False
        state.save.assert_not_called()

    def test_emergency_save_failure_is_logged(self, caplog):
        shutdown = GracefulShutdown()
        state = MagicMock()
        state.save.side_effect = OSError("disk full")
        shutdown.set_state(state)
        shutdown._async_handler()
        assert shutdown.should_stop is True
        assert "Failed to save state" in caplog.text

    def test_no_state_is_warning(self, caplog):
        shutdown = GracefulShutdown()
        shutdown._async_handler()
        assert "No run state" in caplog.text

    @pytest.mark.asyncio
    async def test_signal_cancels_attached_task(self):
        shutdown = GracefulShutdown()

        async def long_run():
            await asyncio.sleep(10)

        task = asyncio.create_task(long_run())
        shutdown.attach(task)
        await asyncio.sleep(0)
        shutdown._async_handler()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert task.cancelled()

    def test_install_without_loop_uses_signal(self):
        shutdown = GracefulShutdown()
        with patch("src.iosm_orchestrator.shutdown.signal.signal") as mock_signal:
            shutdown.install()
        registered = {c.args[0] for c in mock_signal.call_args_list}
        assert registered == {signal.SIGINT, signal.SIGTERM}

    @pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers are Unix-only")
    @pytest.mark.asyncio
    async def test_install_with_loop_uses_add_signal_handler(self):
        shutdown = GracefulShutdown()
        loop = asyncio.get_running_loop()
        with patch.object(loop, "add_signal_handler") as mock_add:
            shutdown.install()
        assert mock_add.call_count == 2


# ---------------------------------------------------------------------------
# RunState
# ---------------------------------------------------------------------------


class TestRunState:
    def test_save_and_load(self, tmp_path):
        state = RunState(system_id="billing", current_cycle=3, last_index=0.7)
        path = state.save(tmp_path)
        assert path.name == "RUN_STATE.json"
        loaded = RunState.load(tmp_path)
        assert loaded.run_id == state.run_id
        assert loaded.system_id == "billing"
        assert loaded.current_cycle == 3
        assert loaded.last_index == 0.7

    def test_save_uses_state_dir(self, tmp_path):
        state = RunState(state_dir=str(tmp_path / "nested"))
        state.save()
        assert (tmp_path / "nested" / "RUN_STATE.json").exists()

    def test_load_missing(self, tmp_path):
        assert RunState.load(tmp_path) is None

    def test_load_ignores_unknown_fields(self, tmp_path):
        data = RunState(system_id="x").to_dict()
        data["legacy_field"] = True
        (tmp_path / "RUN_STATE.json").write_text(json.dumps(data), encoding="utf-8")
        assert RunState.load(tmp_path).system_id == "x"

    def test_no_temp_file_left(self, tmp_path):
        RunState().save(tmp_path)
        assert [p.name for p in tmp_path.iterdir()] == ["RUN_STATE.json"]
