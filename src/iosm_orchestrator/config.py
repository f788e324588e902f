"""Configuration dataclasses and loader for the IOSM engine.

The configuration document is YAML.  Sections map onto the dataclasses
below; unknown keys inside a section are ignored so that forward-compatible
files keep loading.  Everything the engine relies on for correctness is
validated at load time and reported as :class:`ConfigError`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from src.iosm_orchestrator.exceptions import ConfigError
from src.iosm_shared.constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_COLLABORATOR_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF_SECONDS,
    DEFAULT_STAGNATION_EPSILON,
    DEFAULT_STAGNATION_WINDOW,
    DEFAULT_STOP_THRESHOLD,
    DIMENSIONS,
    HISTORY_FILE,
    PHASE_TIMEOUTS,
    STATE_DIR,
    WEIGHT_TOLERANCE,
)
from src.iosm_shared.models import GateConfig, Phase


@dataclass
class PlanningConfig:
    """Configuration for goal selection."""

    use_economic_decision: bool = True
    max_goals: int | None = None


@dataclass
class DecisionConfig:
    """Configuration for the continue/stop policy."""

    stop_threshold: float = DEFAULT_STOP_THRESHOLD
    stagnation_window: int = DEFAULT_STAGNATION_WINDOW
    stagnation_epsilon: float = DEFAULT_STAGNATION_EPSILON
    max_cycles: int | None = None


@dataclass(frozen=True)
class RetryConfig:
    """Bounded retry policy applied by the phase runner."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS
    retry_execution_errors: bool = True

    def delay_for(self, attempt: int) -> float:
        """Backoff delay to wait after failed *attempt* (1-based)."""
        delay = self.backoff_seconds * self.backoff_multiplier ** max(0, attempt - 1)
        return min(delay, self.max_backoff_seconds)


@dataclass(frozen=True)
class IndexWeights:
    """Weights of the six dimensions in the IOSM-Index."""

    semantic: float
    logic: float
    performance: float
    simplicity: float
    modularity: float
    flow: float

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> IndexWeights:
        """Build validated weights from a mapping of exactly six dimensions."""
        if not isinstance(data, Mapping):
            raise ConfigError("index_weights must be a mapping")
        missing = [d for d in DIMENSIONS if d not in data]
        extra = sorted(set(data) - set(DIMENSIONS))
        if missing or extra:
            raise ConfigError(
                f"index_weights must define exactly {list(DIMENSIONS)}; "
                f"missing={missing}, unexpected={extra}"
            )
        values: dict[str, float] = {}
        for name in DIMENSIONS:
            raw = data[name]
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise ConfigError(f"index_weights.{name} must be a number, got {raw!r}")
            values[name] = float(raw)
        weights = cls(**values)
        weights.validate()
        return weights

    def as_dict(self) -> dict[str, float]:
        return {d: getattr(self, d) for d in DIMENSIONS}

    @property
    def total(self) -> float:
        return math.fsum(self.as_dict().values())

    def validate(self) -> None:
        """Raise :class:`ConfigError` unless the weights are usable as-is."""
        for name, value in self.as_dict().items():
            if not math.isfinite(value) or value < 0:
                raise ConfigError(
                    f"index_weights.{name} must be a non-negative number, got {value!r}"
                )
        if abs(self.total - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigError(
                f"index_weights must sum to 1.0 (+/- {WEIGHT_TOLERANCE}), "
                f"got {self.total!r}"
            )


@dataclass
class IOSMConfig:
    """Top-level configuration composing all sub-configs."""

    quality_gates: dict[Phase, dict[str, Any]]
    index_weights: IndexWeights
    planning: PlanningConfig = field(default_factory=PlanningConfig)
    decision: DecisionConfig = field(default_factory=DecisionConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    phase_timeouts: dict[str, float] = field(
        default_factory=lambda: dict(PHASE_TIMEOUTS)
    )
    collaborator_timeout: float = DEFAULT_COLLABORATOR_TIMEOUT
    history_path: str = f"{STATE_DIR}/{HISTORY_FILE}"

    def gate_for(self, phase: Phase) -> GateConfig:
        """Threshold set of *phase*."""
        return self.quality_gates[phase]

    def timeout_for(self, phase: Phase) -> float:
        """Executor timeout of *phase* in seconds."""
        return float(self.phase_timeouts.get(phase.value, PHASE_TIMEOUTS[phase.value]))


def _pick(data: Mapping[str, Any], cls: type) -> dict[str, Any]:
    """Filter *data* to only keys accepted by *cls*."""
    valid = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid}


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _parse_gates(raw: Any) -> dict[Phase, dict[str, Any]]:
    if not isinstance(raw, Mapping):
        raise ConfigError("'quality_gates' must be a mapping of gate_I/O/S/M")

    known = {phase.gate_key: phase for phase in Phase}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigError(f"Unknown quality gates: {unknown}")

    gates: dict[Phase, dict[str, Any]] = {}
    for key, phase in known.items():
        if key not in raw:
            raise ConfigError(f"Missing required gate 'quality_gates.{key}'")
        thresholds = raw[key] or {}
        if not isinstance(thresholds, Mapping):
            raise ConfigError(f"'quality_gates.{key}' must be a mapping")
        for name, bound in thresholds.items():
            if not isinstance(name, str) or not name:
                raise ConfigError(f"'quality_gates.{key}' has an invalid threshold name {name!r}")
            if not isinstance(bound, (bool, int, float)):
                raise ConfigError(
                    f"quality_gates.{key}.{name} must be a number or boolean, got {bound!r}"
                )
            if not isinstance(bound, bool) and not math.isfinite(bound):
                raise ConfigError(f"quality_gates.{key}.{name} must be finite")
        gates[phase] = dict(thresholds)
    return gates


def _require_int(value: Any, name: str, optional: bool = False) -> None:
    if optional and value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _require_number(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{name} must be finite, got {value!r}")


def _require_bool(value: Any, name: str) -> None:
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be true or false, got {value!r}")


def _check_types(cfg: IOSMConfig) -> None:
    decision = cfg.decision
    _require_number(decision.stop_threshold, "decision.stop_threshold")
    _require_int(decision.stagnation_window, "decision.stagnation_window")
    _require_number(decision.stagnation_epsilon, "decision.stagnation_epsilon")
    _require_int(decision.max_cycles, "decision.max_cycles", optional=True)

    _require_bool(cfg.planning.use_economic_decision, "planning.use_economic_decision")
    _require_int(cfg.planning.max_goals, "planning.max_goals", optional=True)

    retry = cfg.retry
    _require_int(retry.max_attempts, "retry.max_attempts")
    _require_number(retry.backoff_seconds, "retry.backoff_seconds")
    _require_number(retry.backoff_multiplier, "retry.backoff_multiplier")
    _require_number(retry.max_backoff_seconds, "retry.max_backoff_seconds")
    _require_bool(retry.retry_execution_errors, "retry.retry_execution_errors")

    for name, timeout in cfg.phase_timeouts.items():
        _require_number(timeout, f"phase_timeouts.{name}")
    _require_number(cfg.collaborator_timeout, "collaborator_timeout")


def validate_config(cfg: IOSMConfig) -> IOSMConfig:
    """Check cross-field constraints; return *cfg* unchanged when valid.

    Raises:
        ConfigError: On the first violated constraint.
    """
    _check_types(cfg)
    cfg.index_weights.validate()

    missing = [p.gate_key for p in Phase if p not in cfg.quality_gates]
    if missing:
        raise ConfigError(f"Missing required gates: {missing}")

    decision = cfg.decision
    if not 0.0 <= decision.stop_threshold <= 1.0:
        raise ConfigError("decision.stop_threshold must be within [0, 1]")
    if decision.stagnation_window < 2:
        raise ConfigError("decision.stagnation_window must be an integer >= 2")
    if decision.stagnation_epsilon < 0:
        raise ConfigError("decision.stagnation_epsilon must be >= 0")
    if decision.max_cycles is not None and decision.max_cycles < 1:
        raise ConfigError("decision.max_cycles must be >= 1 when set")

    planning = cfg.planning
    if planning.max_goals is not None and planning.max_goals < 1:
        raise ConfigError("planning.max_goals must be >= 1 when set")

    retry = cfg.retry
    if retry.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be >= 1")
    if retry.backoff_seconds < 0 or retry.max_backoff_seconds < 0:
        raise ConfigError("retry backoff delays must be >= 0")
    if retry.backoff_multiplier < 1:
        raise ConfigError("retry.backoff_multiplier must be >= 1")

    unknown_phases = sorted(set(cfg.phase_timeouts) - {p.value for p in Phase})
    if unknown_phases:
        raise ConfigError(f"phase_timeouts has unknown phases: {unknown_phases}")
    for name, timeout in cfg.phase_timeouts.items():
        if timeout <= 0:
            raise ConfigError(f"phase_timeouts.{name} must be > 0")
    if cfg.collaborator_timeout <= 0:
        raise ConfigError("collaborator_timeout must be > 0")

    return cfg


def config_from_dict(raw: Mapping[str, Any]) -> IOSMConfig:
    """Build and validate an :class:`IOSMConfig` from a parsed document."""
    if not isinstance(raw, Mapping):
        raise ConfigError("Configuration document must be a mapping")

    if "quality_gates" not in raw:
        raise ConfigError("Missing required section 'quality_gates'")
    if "index_weights" not in raw:
        raise ConfigError("Missing required section 'index_weights'")

    try:
        cfg = IOSMConfig(
            quality_gates=_parse_gates(raw["quality_gates"]),
            index_weights=IndexWeights.from_mapping(raw["index_weights"]),
            planning=PlanningConfig(**_pick(_section(raw, "planning"), PlanningConfig)),
            decision=DecisionConfig(**_pick(_section(raw, "decision"), DecisionConfig)),
            retry=RetryConfig(**_pick(_section(raw, "retry"), RetryConfig)),
            phase_timeouts={
                **PHASE_TIMEOUTS,
                **{str(k): float(v) for k, v in _section(raw, "phase_timeouts").items()},
            },
            collaborator_timeout=float(
                raw.get("collaborator_timeout", DEFAULT_COLLABORATOR_TIMEOUT)
            ),
            history_path=str(raw.get("history_path") or f"{STATE_DIR}/{HISTORY_FILE}"),
        )
        return validate_config(cfg)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc


def load_iosm_config(path: Path | str) -> IOSMConfig:
    """Load engine configuration from a YAML file.

    Unlike optional tooling config, gates and weights have no defaults, so a
    missing file is an error.

    Args:
        path: Path to config YAML.

    Returns:
        Populated, validated configuration dataclass.

    Raises:
        ConfigError: If the file is missing, unparsable or invalid.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file {path} is not valid YAML: {exc}") from exc

    return config_from_dict(raw)
