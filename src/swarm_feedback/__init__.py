"""
Swarm Feedback: periodic adaptation loops

Each loop periodically samples metrics, scores them against thresholds,
decides whether corrective action is warranted, applies actions from a shared
catalog and records the outcome. A supervisor owns the loops and aggregates
their status.
"""

__version__ = "1.0.0"
__author__ = "Swarm Feedback Team"
__description__ = "Periodic feedback loops with threshold scoring and adaptation"

from .catalog import (
    AdaptationAction,
    AdaptationCatalog,
    FunctionAction,
    Knob,
    KnobAdjustment,
    KnobBoard,
)
from .errors import (
    ActionApplicationError,
    ConfigurationError,
    CycleTimeoutError,
    FeedbackLoopError,
    LoopAlreadyActiveError,
    UnknownLoopError,
    UnknownMetricError,
)
from .evaluator import evaluate
from .ledger import ImprovementLedger
from .loop import Loop, LoopConfig, LoopController
from .models import (
    ActionOutcome,
    AnalysisResult,
    CycleReport,
    Direction,
    HealthStatus,
    ImprovementRecord,
    LoopState,
    MetricSample,
    Severity,
    ThresholdSpec,
    Violation,
)
from .settings import EngineConfig
from .sources import (
    CallableMetricSource,
    CollectorMetricSource,
    FileMetricSource,
    MetricSource,
    StaticMetricSource,
)
from .supervisor import Supervisor
from .telemetry import MetricsCollector

__all__ = [
    "ActionApplicationError",
    "ActionOutcome",
    "AdaptationAction",
    "AdaptationCatalog",
    "AnalysisResult",
    "CallableMetricSource",
    "CollectorMetricSource",
    "ConfigurationError",
    "CycleReport",
    "CycleTimeoutError",
    "Direction",
    "EngineConfig",
    "FeedbackLoopError",
    "FileMetricSource",
    "FunctionAction",
    "HealthStatus",
    "ImprovementLedger",
    "ImprovementRecord",
    "Knob",
    "KnobAdjustment",
    "KnobBoard",
    "Loop",
    "LoopAlreadyActiveError",
    "LoopConfig",
    "LoopController",
    "LoopState",
    "MetricSample",
    "MetricSource",
    "MetricsCollector",
    "Severity",
    "StaticMetricSource",
    "Supervisor",
    "ThresholdSpec",
    "UnknownLoopError",
    "UnknownMetricError",
    "Violation",
    "evaluate",
]
