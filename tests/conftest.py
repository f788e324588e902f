"""Shared test fixtures for the IOSM engine test suite."""
from __future__ import annotations

import logging

import pytest

_ENV_VARS = ("IOSM_LOG_LEVEL", "IOSM_LOG_FORMAT", "IOSM_STATE_DIR", "IOSM_CONFIG")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep engine settings from leaking in from the developer's shell."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    engine_logger = logging.getLogger("src")
    engine_logger.handlers.clear()
    engine_logger.setLevel(logging.NOTSET)
