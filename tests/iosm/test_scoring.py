"""Tests for src.iosm_orchestrator.scoring -- the IOSM-Index."""

from __future__ import annotations

import pytest

from src.iosm_orchestrator.config import IndexWeights
from src.iosm_orchestrator.exceptions import ConfigError
from src.iosm_orchestrator.scoring import classify_index, compute_index, score_breakdown
from src.iosm_shared.models import CycleMetrics
from tests.iosm.conftest import make_metrics

WEIGHTS = {
    "semantic": 0.15,
    "logic": 0.20,
    "performance": 0.25,
    "simplicity": 0.15,
    "modularity": 0.15,
    "flow": 0.10,
}


class TestComputeIndex:
    def test_uniform_metrics_give_same_index(self):
        assert compute_index(make_metrics(0.9), WEIGHTS) == pytest.approx(0.9, abs=1e-9)

    def test_accepts_dataclasses(self):
        weights = IndexWeights.from_mapping(WEIGHTS)
        assert compute_index(make_metrics(0.9), weights) == pytest.approx(0.9, abs=1e-9)

    def test_weighted_sum(self):
        metrics = make_metrics(0.0, performance=1.0, flow=1.0)
        assert compute_index(metrics, WEIGHTS) == pytest.approx(0.35)

    @pytest.mark.parametrize("value", [0.0, 0.37, 1.0])
    def test_index_within_bounds(self, value):
        index = compute_index(make_metrics(value), WEIGHTS)
        assert 0.0 <= index <= 1.0

    def test_weights_not_summing_to_one(self):
        weights = dict(WEIGHTS, flow=0.2)
        with pytest.raises(ConfigError, match="sum to 1.0"):
            compute_index(make_metrics(0.5), weights)

    def test_negative_weight(self):
        weights = dict(WEIGHTS, flow=-0.1, logic=0.4)
        with pytest.raises(ConfigError, match="non-negative"):
            compute_index(make_metrics(0.5), weights)

    def test_dimension_mismatch(self):
        weights = {k: v for k, v in WEIGHTS.items() if k != "flow"}
        weights["speed"] = 0.10
        with pytest.raises(ConfigError, match="same dimensions"):
            compute_index(make_metrics(0.5), weights)

    def test_breakdown_sums_to_index(self):
        metrics = make_metrics(0.4, logic=0.8)
        breakdown = score_breakdown(metrics, WEIGHTS)
        assert set(breakdown) == set(WEIGHTS)
        assert sum(breakdown.values()) == pytest.approx(compute_index(metrics, WEIGHTS))


class TestCycleMetrics:
    def test_values_clamped(self):
        metrics = CycleMetrics(1.5, -0.2, 0.5, 0.5, 0.5, 0.5)
        assert metrics.semantic == 1.0
        assert metrics.logic == 0.0

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            CycleMetrics(float("nan"), 0.5, 0.5, 0.5, 0.5, 0.5)

    def test_from_mapping_requires_exact_dimensions(self):
        with pytest.raises(ValueError, match="missing"):
            CycleMetrics.from_mapping({"semantic": 0.5})


class TestClassifyIndex:
    @pytest.mark.parametrize(
        "index, expected",
        [(0.95, "GREEN"), (0.8, "GREEN"), (0.6, "YELLOW"), (0.5, "YELLOW"), (0.1, "RED")],
    )
    def test_traffic_light(self, index, expected):
        assert classify_index(index) == expected
