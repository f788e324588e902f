"""Index Calculator -- turns cycle metrics into the IOSM-Index.

The index is the weighted sum of the six normalised dimensions::

    index = sum(weights[d] * metrics[d] for d in DIMENSIONS)

clamped to [0, 1].  Weights are never normalised here: weights that do not
sum to 1 within :data:`WEIGHT_TOLERANCE` are a configuration error.
"""

from __future__ import annotations

import logging
import math
from typing import Mapping, Union

from src.iosm_orchestrator.config import IndexWeights
from src.iosm_orchestrator.exceptions import ConfigError
from src.iosm_shared.constants import WEIGHT_TOLERANCE
from src.iosm_shared.models import CycleMetrics

logger = logging.getLogger(__name__)

MetricsLike = Union[CycleMetrics, Mapping[str, float]]
WeightsLike = Union[IndexWeights, Mapping[str, float]]


# ---------------------------------------------------------------------------
# Traffic-light classification
# ---------------------------------------------------------------------------

def classify_index(index: float) -> str:
    """Classify a 0-1 index into GREEN / YELLOW / RED."""
    if index >= 0.8:
        return "GREEN"
    if index >= 0.5:
        return "YELLOW"
    return "RED"


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _as_mapping(value: MetricsLike | WeightsLike) -> Mapping[str, float]:
    if isinstance(value, (CycleMetrics, IndexWeights)):
        return value.as_dict()
    return value


def _check_weights(weights: Mapping[str, float]) -> None:
    for name, weight in weights.items():
        if not math.isfinite(weight) or weight < 0:
            raise ConfigError(f"Weight '{name}' must be a non-negative number, got {weight!r}")
    total = math.fsum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise ConfigError(
            f"Index weights must sum to 1.0 (+/- {WEIGHT_TOLERANCE}), got {total!r}"
        )


def score_breakdown(metrics: MetricsLike, weights: WeightsLike) -> dict[str, float]:
    """Return the weighted contribution of every dimension.

    Raises:
        ConfigError: If weights and metrics name different dimensions, or
            the weights are invalid.
    """
    metric_map = _as_mapping(metrics)
    weight_map = _as_mapping(weights)

    if set(metric_map) != set(weight_map):
        raise ConfigError(
            "Weights and metrics must share the same dimensions; "
            f"weights={sorted(weight_map)}, metrics={sorted(metric_map)}"
        )
    _check_weights(weight_map)

    return {
        name: weight_map[name] * _clamp(float(metric_map[name]))
        for name in weight_map
    }


def compute_index(metrics: MetricsLike, weights: WeightsLike) -> float:
    """Compute the IOSM-Index for one cycle.

    Args:
        metrics: The six dimension scores, each in [0, 1].
        weights: Six non-negative weights summing to 1.

    Returns:
        Index in [0, 1].

    Raises:
        ConfigError: If weights and metrics name different dimensions, or
            the weights are invalid.
    """
    index = _clamp(math.fsum(score_breakdown(metrics, weights).values()))
    logger.info("IOSM-Index=%.4f traffic_light=%s", index, classify_index(index))
    return index
