"""Cycle state machine using the ``transitions`` library.

Defines the four phase states plus ``score`` (terminal per cycle) and
``aborted``, and three triggers:

* ``advance``     -- move to the next phase, guarded by ``gate_passed``
* ``retry_phase`` -- re-enter the current phase, guarded by ``retries_remaining``
* ``abort``       -- leave any phase for ``aborted``

There is no skipping and no backward transition across phase boundaries.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions.extensions.asyncio import AsyncMachine, AsyncState

from src.iosm_shared.constants import (
    PHASE_IMPROVE,
    PHASE_MODULARIZE,
    PHASE_OPTIMIZE,
    PHASE_SHRINK,
    STATE_ABORTED,
    STATE_SCORE,
)

logger = logging.getLogger(__name__)

PHASE_STATES: list[str] = [
    PHASE_IMPROVE,
    PHASE_OPTIMIZE,
    PHASE_SHRINK,
    PHASE_MODULARIZE,
]

# ---------------------------------------------------------------------------
# States -- four phases, score, aborted
# ---------------------------------------------------------------------------
STATES: list[AsyncState] = [
    AsyncState(PHASE_IMPROVE),
    AsyncState(PHASE_OPTIMIZE),
    AsyncState(PHASE_SHRINK),
    AsyncState(PHASE_MODULARIZE),
    AsyncState(STATE_SCORE),
    AsyncState(STATE_ABORTED),
]

# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": "advance",
        "source": PHASE_IMPROVE,
        "dest": PHASE_OPTIMIZE,
        "conditions": ["gate_passed"],
    },
    {
        "trigger": "advance",
        "source": PHASE_OPTIMIZE,
        "dest": PHASE_SHRINK,
        "conditions": ["gate_passed"],
    },
    {
        "trigger": "advance",
        "source": PHASE_SHRINK,
        "dest": PHASE_MODULARIZE,
        "conditions": ["gate_passed"],
    },
    {
        "trigger": "advance",
        "source": PHASE_MODULARIZE,
        "dest": STATE_SCORE,
        "conditions": ["gate_passed"],
    },
    {
        "trigger": "retry_phase",
        "source": PHASE_STATES,
        "dest": "=",
        "conditions": ["retries_remaining"],
    },
    {
        "trigger": "abort",
        "source": PHASE_STATES,
        "dest": STATE_ABORTED,
    },
]


def create_cycle_machine(
    model: Any, initial_state: str = PHASE_IMPROVE
) -> AsyncMachine:
    """Create and return an ``AsyncMachine`` bound to *model*.

    The model object must implement the guard methods referenced in
    ``TRANSITIONS`` (``gate_passed`` and ``retries_remaining``).

    Args:
        model: The object whose state the machine manages.
        initial_state: The initial state for the machine.

    Returns:
        Configured ``AsyncMachine`` instance.
    """
    machine = AsyncMachine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial=initial_state,
        auto_transitions=False,
        send_event=True,
        queued=True,
        ignore_invalid_triggers=True,
    )
    return machine
