"""Structured JSON logging with run context support."""
from __future__ import annotations

import contextvars
import json
import logging
from datetime import datetime, timezone
from typing import Any

# Context variables bound by the orchestrator for every cycle / phase
system_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "system_id", default=""
)
cycle_var: contextvars.ContextVar[int] = contextvars.ContextVar("cycle", default=0)
phase_var: contextvars.ContextVar[str] = contextvars.ContextVar("phase", default="")

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Custom JSON log formatter."""

    def __init__(self, service_name: str = "unknown") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service_name": self.service_name,
            "logger": record.name,
            "system_id": system_id_var.get(""),
            "cycle": cycle_var.get(0),
            "phase": phase_var.get(""),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry)


def setup_logging(
    service_name: str,
    level: str = "INFO",
    fmt: str = "json",
    logger_name: str = "src",
) -> logging.Logger:
    """Configure logging for the engine.

    Args:
        service_name: Name of the service for log entries.
        level: Log level string (e.g. "INFO", "DEBUG").
        fmt: ``"json"`` for structured output, ``"text"`` for a plain format.
        logger_name: Logger the handler is attached to.  Every engine module
            logs below ``src`` so the default captures all of them.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler()
    if fmt == "text":
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    logger.addHandler(handler)

    return logger


def bind_run_context(
    system_id: str | None = None,
    cycle: int | None = None,
    phase: str | None = None,
) -> list[tuple[contextvars.ContextVar, contextvars.Token]]:
    """Set any of the run context variables and return reset tokens."""
    tokens: list[tuple[contextvars.ContextVar, contextvars.Token]] = []
    if system_id is not None:
        tokens.append((system_id_var, system_id_var.set(system_id)))
    if cycle is not None:
        tokens.append((cycle_var, cycle_var.set(cycle)))
    if phase is not None:
        tokens.append((phase_var, phase_var.set(phase)))
    return tokens


def reset_run_context(
    tokens: list[tuple[contextvars.ContextVar, contextvars.Token]],
) -> None:
    """Undo a :func:`bind_run_context` call."""
    for var, token in reversed(tokens):
        var.reset(token)
