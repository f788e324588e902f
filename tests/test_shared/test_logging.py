"""Tests for structured logging and run context binding."""
from __future__ import annotations

import json
import logging

from src.shared.logging import (
    JSONFormatter,
    bind_run_context,
    cycle_var,
    phase_var,
    reset_run_context,
    setup_logging,
    system_id_var,
)


def _record(msg: str = "hello", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="src.iosm_orchestrator.cycle",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    def test_base_fields(self):
        entry = json.loads(JSONFormatter(service_name="iosm-engine").format(_record()))
        assert entry["level"] == "INFO"
        assert entry["service_name"] == "iosm-engine"
        assert entry["logger"] == "src.iosm_orchestrator.cycle"
        assert entry["message"] == "hello"
        assert entry["system_id"] == ""
        assert entry["cycle"] == 0
        assert entry["phase"] == ""
        assert "timestamp" in entry

    def test_includes_bound_context(self):
        tokens = bind_run_context(system_id="billing", cycle=3, phase="shrink")
        try:
            entry = json.loads(JSONFormatter().format(_record()))
        finally:
            reset_run_context(tokens)
        assert entry["system_id"] == "billing"
        assert entry["cycle"] == 3
        assert entry["phase"] == "shrink"

    def test_exception_message(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            record = _record(exc_info=sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert entry["exception"] == "boom"


class TestSetupLogging:
    def test_json_handler(self):
        logger = setup_logging("iosm-engine", level="debug")
        assert logger.name == "src"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_text_handler(self):
        logger = setup_logging("iosm-engine", fmt="text")
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_repeated_setup_replaces_handler(self):
        setup_logging("iosm-engine")
        logger = setup_logging("iosm-engine")
        assert len(logger.handlers) == 1

    def test_unknown_level_defaults_to_info(self):
        logger = setup_logging("iosm-engine", level="chatty")
        assert logger.level == logging.INFO


class TestRunContext:
    def test_partial_bind(self):
        tokens = bind_run_context(cycle=2)
        try:
            assert cycle_var.get() == 2
            assert system_id_var.get() == ""
        finally:
            reset_run_context(tokens)

    def test_reset_restores_previous_values(self):
        outer = bind_run_context(system_id="a", phase="improve")
        inner = bind_run_context(phase="optimize")
        assert phase_var.get() == "optimize"
        reset_run_context(inner)
        assert phase_var.get() == "improve"
        reset_run_context(outer)
        assert system_id_var.get() == ""
        assert phase_var.get() == ""
