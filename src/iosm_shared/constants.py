"""Shared constants for the IOSM engine."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Phase names (ordered)
# ---------------------------------------------------------------------------
PHASE_IMPROVE = "improve"
PHASE_OPTIMIZE = "optimize"
PHASE_SHRINK = "shrink"
PHASE_MODULARIZE = "modularize"

# Cycle state machine terminal states
STATE_SCORE = "score"
STATE_ABORTED = "aborted"

# Configuration key of each phase's gate under ``quality_gates``
GATE_KEYS: dict[str, str] = {
    PHASE_IMPROVE: "gate_I",
    PHASE_OPTIMIZE: "gate_O",
    PHASE_SHRINK: "gate_S",
    PHASE_MODULARIZE: "gate_M",
}

# ---------------------------------------------------------------------------
# Phase timeouts (seconds)
# ---------------------------------------------------------------------------
PHASE_TIMEOUTS: dict[str, float] = {
    PHASE_IMPROVE: 1800,
    PHASE_OPTIMIZE: 1800,
    PHASE_SHRINK: 1200,
    PHASE_MODULARIZE: 1800,
}

DEFAULT_COLLABORATOR_TIMEOUT = 300.0

# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------
DIMENSIONS = (
    "semantic",
    "logic",
    "performance",
    "simplicity",
    "modularity",
    "flow",
)

WEIGHT_TOLERANCE = 1e-6

# ---------------------------------------------------------------------------
# Decision policy defaults
# ---------------------------------------------------------------------------
DEFAULT_STOP_THRESHOLD = 0.98
DEFAULT_STAGNATION_WINDOW = 3
DEFAULT_STAGNATION_EPSILON = 0.005

# ---------------------------------------------------------------------------
# Retry defaults
# ---------------------------------------------------------------------------
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_BACKOFF_SECONDS = 60.0

# ---------------------------------------------------------------------------
# Threshold name suffixes
# ---------------------------------------------------------------------------
SUFFIX_MAX = "_max"
SUFFIX_MIN = "_min"

# ---------------------------------------------------------------------------
# State persistence
# ---------------------------------------------------------------------------
STATE_DIR = ".iosm"
STATE_FILE = "RUN_STATE.json"
HISTORY_FILE = "history.jsonl"
