"""
Core data model for the feedback loop engine.

Samples, thresholds, violations and analysis results flow one way through a
cycle; improvement records are the only values kept beyond it.
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class Direction(Enum):
    """Which side of a threshold is good."""

    HIGHER_IS_BETTER = "higher_is_better"
    LOWER_IS_BETTER = "lower_is_better"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class HealthStatus(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class LoopState(Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class AdaptationPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class MetricSample:
    """A single sampled metric value."""

    name: str
    value: float
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ThresholdSpec:
    """Acceptable bound for one metric."""

    metric: str
    limit: float
    direction: Direction = Direction.HIGHER_IS_BETTER


@dataclass
class Violation:
    """A metric whose score fell below 1 in the current analysis."""

    metric: str
    value: float
    limit: float
    severity: Severity
    score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "value": self.value,
            "limit": self.limit,
            "severity": self.severity.value,
            "score": self.score,
        }


@dataclass
class AnalysisResult:
    """Outcome of scoring one set of samples against thresholds."""

    overall_score: float
    status: HealthStatus
    violations: list[Violation] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    metric_scores: dict[str, float] = field(default_factory=dict)

    @property
    def has_high_severity(self) -> bool:
        return any(v.severity is Severity.HIGH for v in self.violations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "status": self.status.value,
            "violations": [v.to_dict() for v in self.violations],
            "recommendations": list(self.recommendations),
            "metric_scores": dict(self.metric_scores),
        }


@dataclass
class ActionOutcome:
    """Result of applying one adaptation action."""

    success: bool
    detail: str = ""
    action: str = ""


@dataclass
class LoopPerformance:
    """Cumulative per-loop statistics."""

    avg_execution_time_ms: float = 0.0
    success_rate: float = 0.0
    improvement_rate: float = 0.0
    failed_cycles: int = 0
    skipped_ticks: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ImprovementRecord:
    """Ledger entry written when a cycle produced an improvement."""

    loop_name: str
    before_score: float
    actions_applied: int
    expected_impact: float
    priority: AdaptationPriority = AdaptationPriority.MEDIUM
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "loop_name": self.loop_name,
            "before_score": self.before_score,
            "actions_applied": self.actions_applied,
            "expected_impact": self.expected_impact,
            "priority": self.priority.value,
        }


@dataclass
class CycleReport:
    """Everything one cycle observed and did, returned to the caller."""

    loop_name: str
    cycle: int
    started_at: float
    duration_ms: float = 0.0
    samples: list[MetricSample] = field(default_factory=list)
    missing_metrics: list[str] = field(default_factory=list)
    analysis: Optional[AnalysisResult] = None
    adaptation_needed: bool = False
    outcomes: list[ActionOutcome] = field(default_factory=list)
    expected_impacts: dict[str, float] = field(default_factory=dict)
    success_rate: float = 0.0
    improved: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "loop_name": self.loop_name,
            "cycle": self.cycle,
            "started_at": self.started_at,
            "duration_ms": self.duration_ms,
            "samples": {s.name: s.value for s in self.samples},
            "missing_metrics": list(self.missing_metrics),
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "adaptation_needed": self.adaptation_needed,
            "outcomes": [asdict(o) for o in self.outcomes],
            "expected_impacts": dict(self.expected_impacts),
            "success_rate": self.success_rate,
            "improved": self.improved,
            "error": self.error,
        }
