"""
Threshold evaluation.

Everything here is a pure function of its inputs so analyses can be
reproduced and tested in isolation.
"""

import math
from typing import Iterable

from .models import (
    AdaptationPriority,
    AnalysisResult,
    Direction,
    HealthStatus,
    MetricSample,
    Severity,
    ThresholdSpec,
    Violation,
)

GENERAL_RECOMMENDATION_BELOW = 0.8


def score_metric(value: float, spec: ThresholdSpec) -> float:
    """
    Normalized score of one value against its threshold, clamped to [0, 1].

    Non-finite values score 0.
    """
    if not math.isfinite(value):
        return 0.0
    if spec.direction is Direction.HIGHER_IS_BETTER:
        if spec.limit == 0:
            return 1.0 if value >= 0 else 0.0
        score = value / spec.limit
    else:
        if value == 0:
            return 1.0
        score = spec.limit / value
    return max(0.0, min(1.0, score))


def severity_for(score: float) -> Severity:
    if score < 0.5:
        return Severity.HIGH
    if score < 0.8:
        return Severity.MEDIUM
    return Severity.LOW


def status_for(score: float) -> HealthStatus:
    if score >= 0.9:
        return HealthStatus.EXCELLENT
    if score >= 0.7:
        return HealthStatus.GOOD
    if score >= 0.5:
        return HealthStatus.FAIR
    return HealthStatus.POOR


def adaptation_priority(score: float) -> AdaptationPriority:
    if score < 0.5:
        return AdaptationPriority.CRITICAL
    if score < 0.7:
        return AdaptationPriority.HIGH
    if score < 0.85:
        return AdaptationPriority.MEDIUM
    return AdaptationPriority.LOW


def expected_impact(score: float) -> float:
    """Improvement an adaptation is expected to yield for a given score."""
    return min(0.3, (1.0 - score) * 0.5)


def evaluate(
    samples: Iterable[MetricSample], thresholds: Iterable[ThresholdSpec]
) -> AnalysisResult:
    """
    Score samples against thresholds.

    Thresholds whose metric has no sample are skipped. When several samples
    share a name the last one wins.
    """
    latest = {sample.name: sample.value for sample in samples}

    metric_scores: dict[str, float] = {}
    violations: list[Violation] = []

    for spec in thresholds:
        if spec.metric not in latest:
            continue
        value = latest[spec.metric]
        score = score_metric(value, spec)
        metric_scores[spec.metric] = score

        if score < 1.0:
            violations.append(
                Violation(
                    metric=spec.metric,
                    value=value,
                    limit=spec.limit,
                    severity=severity_for(score),
                    score=score,
                )
            )

    overall = (
        sum(metric_scores.values()) / len(metric_scores) if metric_scores else 0.0
    )

    recommendations = [
        f"Address {v.metric} performance (current: {v.value:.2f}, target: {v.limit})"
        for v in violations
    ]
    if overall < GENERAL_RECOMMENDATION_BELOW:
        recommendations.append(
            f"Overall performance can be improved (current score: {overall * 100:.1f}%)"
        )

    return AnalysisResult(
        overall_score=overall,
        status=status_for(overall),
        violations=violations,
        recommendations=recommendations,
        metric_scores=metric_scores,
    )
