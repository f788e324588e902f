"""Gate Evaluator -- compares a phase result against its gate thresholds.

Each threshold name encodes its comparison direction:

    ``<name>_max``  -- passes when measurement ``<name>`` <= bound
    ``<name>_min``  -- passes when measurement ``<name>`` >= bound
    ``<name>``      -- numeric bound, passes when measurement ``<name>`` >= bound
    ``<name>``      -- boolean bound, passes on exact match

A threshold whose measurement is absent produces a diagnostic of kind
``missing_measurement``.  The overall verdict is the logical AND of every
threshold; an empty gate passes.  Evaluation has no side effects.
"""

from __future__ import annotations

import logging

from src.iosm_shared.constants import SUFFIX_MAX, SUFFIX_MIN
from src.iosm_shared.models import (
    Comparison,
    DiagnosticKind,
    GateConfig,
    GateReport,
    Measurement,
    Phase,
    PhaseResult,
    ThresholdDiagnostic,
)

logger = logging.getLogger(__name__)


def parse_threshold(name: str, bound: Measurement) -> tuple[str, Comparison]:
    """Return the measurement name and comparison implied by a threshold.

    Boolean bounds always compare for equality against the measurement of
    the same name, whatever their suffix.
    """
    if isinstance(bound, bool):
        return name, Comparison.EQUALS
    if name.endswith(SUFFIX_MAX) and len(name) > len(SUFFIX_MAX):
        return name[: -len(SUFFIX_MAX)], Comparison.AT_MOST
    if name.endswith(SUFFIX_MIN) and len(name) > len(SUFFIX_MIN):
        return name[: -len(SUFFIX_MIN)], Comparison.AT_LEAST
    return name, Comparison.AT_LEAST


def check_threshold(
    name: str, bound: Measurement, phase_result: PhaseResult
) -> ThresholdDiagnostic:
    """Check a single threshold against *phase_result*."""
    measurement, comparison = parse_threshold(name, bound)

    if measurement not in phase_result:
        return ThresholdDiagnostic(
            threshold=name,
            measurement=measurement,
            comparison=comparison,
            bound=bound,
            actual=None,
            passed=False,
            kind=DiagnosticKind.MISSING_MEASUREMENT,
        )

    actual = phase_result[measurement]
    excess = 0.0
    if comparison is Comparison.EQUALS:
        passed = actual == bound
    elif comparison is Comparison.AT_MOST:
        passed = actual <= bound
        excess = max(0.0, float(actual) - float(bound))
    else:
        passed = actual >= bound
        excess = max(0.0, float(bound) - float(actual))

    return ThresholdDiagnostic(
        threshold=name,
        measurement=measurement,
        comparison=comparison,
        bound=bound,
        actual=actual,
        passed=passed,
        kind=DiagnosticKind.PASSED if passed else DiagnosticKind.VIOLATED,
        excess=excess,
    )


def evaluate_gate(
    phase_result: PhaseResult,
    gate_config: GateConfig,
    phase: Phase | None = None,
) -> GateReport:
    """Evaluate every threshold in *gate_config* against *phase_result*.

    Diagnostics follow the key order of *gate_config*, so identical inputs
    always yield identical reports.
    """
    diagnostics = tuple(
        check_threshold(name, bound, phase_result)
        for name, bound in gate_config.items()
    )
    return GateReport(
        passed=all(d.passed for d in diagnostics),
        diagnostics=diagnostics,
        phase=phase,
    )


class GateEvaluator:
    """Stateless evaluator for phase gates.

    Usage
    -----
    ::

        evaluator = GateEvaluator()
        report = evaluator.evaluate(
            {"semantic_coherence": 0.96, "duplication": 0.04},
            {"semantic_coherence": 0.95, "duplication_max": 0.05},
            phase=Phase.IMPROVE,
        )
        assert report.passed
    """

    def evaluate(
        self,
        phase_result: PhaseResult,
        gate_config: GateConfig,
        phase: Phase | None = None,
    ) -> GateReport:
        """Return the :class:`GateReport` for *phase_result*.

        Parameters
        ----------
        phase_result:
            Raw measurements produced by a phase executor.
        gate_config:
            Named thresholds for the phase.
        phase:
            Phase the result belongs to; recorded on the report.

        Returns
        -------
        GateReport
            Overall verdict plus one diagnostic per threshold.
        """
        report = evaluate_gate(phase_result, gate_config, phase)
        label = phase.value if phase else "unnamed"
        if report.passed:
            logger.debug(
                "Gate %s passed -- checks=%d", label, len(report.diagnostics)
            )
        else:
            logger.debug(
                "Gate %s failed -- %s",
                label,
                "; ".join(d.describe() for d in report.failures),
            )
        return report
