"""
Loop Controller

Owns one loop's periodic cycle: sample -> evaluate -> decide -> select
actions -> apply -> record. Each active loop runs on its own asyncio task and
never executes two cycles at once.
"""

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from .catalog import AdaptationAction, AdaptationCatalog, order_violations
from .errors import ConfigurationError, CycleTimeoutError, UnknownMetricError
from .evaluator import adaptation_priority, evaluate, expected_impact
from .ledger import ImprovementLedger
from .logging_utils import get_loop_logger
from .models import (
    AnalysisResult,
    CycleReport,
    Direction,
    ImprovementRecord,
    LoopPerformance,
    LoopState,
    MetricSample,
    Severity,
    ThresholdSpec,
)
from .settings import EngineConfig
from .sources import MetricSource
from .telemetry import MetricsCollector

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY_WEIGHTS = {
    Severity.HIGH: 1.5,
    Severity.MEDIUM: 1.2,
    Severity.LOW: 1.0,
}

EventEmitter = Callable[[str, str, dict[str, Any]], None]


def _parse_threshold(metric: Optional[str], data: Any) -> ThresholdSpec:
    if isinstance(data, ThresholdSpec):
        return data
    if isinstance(data, (int, float)):
        return ThresholdSpec(metric=metric, limit=float(data))
    if isinstance(data, Mapping):
        direction = data.get("direction", Direction.HIGHER_IS_BETTER)
        try:
            direction = Direction(direction)
        except ValueError:
            raise ConfigurationError(f"Unknown direction for {metric}: {direction}") from None
        return ThresholdSpec(
            metric=data.get("metric", metric), limit=float(data["limit"]), direction=direction
        )
    raise ConfigurationError(f"Cannot interpret threshold for {metric}: {data!r}")


@dataclass
class LoopConfig:
    """Immutable-by-convention definition of one loop."""

    thresholds: list[ThresholdSpec]
    interval_ms: float = 5000
    metrics: list[str] = field(default_factory=list)
    domain: Optional[str] = None
    severity_weights: dict[Severity, float] = field(
        default_factory=lambda: dict(DEFAULT_SEVERITY_WEIGHTS)
    )
    timeout_ms: Optional[float] = None
    priority: str = "medium"
    description: str = ""

    def __post_init__(self):
        self.thresholds = list(self.thresholds)
        if not self.metrics:
            self.metrics = [t.metric for t in self.thresholds]
        self.metrics = list(self.metrics)
        self.severity_weights = {
            k if isinstance(k, Severity) else Severity(str(k).lower()): float(v)
            for k, v in self.severity_weights.items()
        }
        for severity, weight in DEFAULT_SEVERITY_WEIGHTS.items():
            self.severity_weights.setdefault(severity, weight)

        errors = self.validate()
        if errors:
            raise ConfigurationError("; ".join(errors))

    def validate(self) -> list[str]:
        errors = []
        if self.interval_ms <= 0:
            errors.append("interval_ms must be positive")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            errors.append("timeout_ms must be positive")
        if not self.thresholds:
            errors.append("at least one threshold is required")
        seen = set()
        for spec in self.thresholds:
            if not spec.metric:
                errors.append("threshold without a metric name")
                continue
            if spec.metric in seen:
                errors.append(f"duplicate threshold for {spec.metric}")
            seen.add(spec.metric)
            if spec.metric not in self.metrics:
                errors.append(f"threshold metric {spec.metric} is not sampled")
        return errors

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LoopConfig":
        """
        Build a config from a plain mapping.

        ``thresholds`` may be a list of ``{metric, limit, direction}`` mappings
        or a mapping of metric name to either a limit or ``{limit, direction}``.
        """
        raw = data.get("thresholds") or data.get("threshold") or []
        if isinstance(raw, Mapping):
            thresholds = [_parse_threshold(metric, spec) for metric, spec in raw.items()]
        else:
            thresholds = [_parse_threshold(None, spec) for spec in raw]

        interval = data.get("interval_ms", data.get("interval", 5000))
        kwargs = {
            "thresholds": thresholds,
            "interval_ms": float(interval),
            "metrics": list(data.get("metrics", [])),
            "domain": data.get("domain"),
            "timeout_ms": data.get("timeout_ms"),
            "priority": data.get("priority", "medium"),
            "description": data.get("description", ""),
        }
        if data.get("severity_weights"):
            kwargs["severity_weights"] = dict(data["severity_weights"])
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metrics": list(self.metrics),
            "interval_ms": self.interval_ms,
            "thresholds": [
                {"metric": t.metric, "limit": t.limit, "direction": t.direction.value}
                for t in self.thresholds
            ],
            "domain": self.domain,
            "severity_weights": {k.value: v for k, v in self.severity_weights.items()},
            "timeout_ms": self.timeout_ms,
            "priority": self.priority,
            "description": self.description,
        }


class Loop:
    """State and statistics of one registered loop."""

    def __init__(self, name: str, config: LoopConfig, history_size: int = 50):
        self.name = name
        self.config = config
        self.state = LoopState.INACTIVE
        self.execution_count = 0
        self.improvement_count = 0
        self.last_execution: Optional[float] = None
        self.performance = LoopPerformance()
        self.sample_history: deque = deque(maxlen=history_size)
        self.score_history: deque = deque(maxlen=history_size)
        self.last_analysis: Optional[AnalysisResult] = None

    @property
    def domain(self) -> str:
        return self.config.domain or self.name

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "domain": self.domain,
            "priority": self.config.priority,
            "execution_count": self.execution_count,
            "improvement_count": self.improvement_count,
            "last_execution": self.last_execution,
            "last_score": self.last_analysis.overall_score if self.last_analysis else None,
            "last_status": self.last_analysis.status.value if self.last_analysis else None,
            "performance": self.performance.to_dict(),
        }


class LoopController:
    """Runs the cycles of a single Loop."""

    def __init__(
        self,
        name: str,
        config: LoopConfig,
        source: MetricSource,
        catalog: AdaptationCatalog,
        ledger: ImprovementLedger,
        settings: Optional[EngineConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        emit: Optional[EventEmitter] = None,
    ):
        self.settings = settings or EngineConfig()
        self.loop = Loop(name, config, self.settings.history_size)
        self.source = source
        self.catalog = catalog
        self.ledger = ledger
        self.metrics = metrics
        self._emit = emit or (lambda event_type, loop_name, data: None)
        self.log = get_loop_logger(name, config.domain)

        self._task: Optional[asyncio.Task] = None
        self._cycle_lock = asyncio.Lock()
        # generation of the scheduler task currently holding or awaiting the cycle lock
        self._cycle_generation: Optional[int] = None
        self._generation = 0

    # Convenience accessors

    @property
    def name(self) -> str:
        return self.loop.name

    @property
    def config(self) -> LoopConfig:
        return self.loop.config

    @property
    def state(self) -> LoopState:
        return self.loop.state

    @property
    def is_active(self) -> bool:
        return self.loop.state is LoopState.ACTIVE

    @property
    def execution_count(self) -> int:
        return self.loop.execution_count

    @property
    def improvement_count(self) -> int:
        return self.loop.improvement_count

    @property
    def performance(self) -> LoopPerformance:
        return self.loop.performance

    # Lifecycle

    def start(self) -> None:
        """Schedule cycles every interval. Must be called with a running event loop."""
        if self.is_active:
            self.log.warning(f"Loop {self.name} already active")
            return

        self.loop.state = LoopState.ACTIVE
        self._generation += 1
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation), name=f"feedback-loop-{self.name}"
        )
        self.log.info(f"Started loop: {self.name} (every {self.config.interval_ms:.0f}ms)")
        self._emit("started", self.name, {"interval_ms": self.config.interval_ms})

    def stop(self) -> None:
        """
        Stop scheduling cycles.

        Returns immediately. A cycle already in flight may finish, but no new
        cycle starts after this call.
        """
        if not self.is_active:
            return

        self.loop.state = LoopState.INACTIVE
        if self._task is not None and self._cycle_generation != self._generation:
            self._task.cancel()
        self.log.info(f"Stopped loop: {self.name}")
        self._emit("stopped", self.name, {"execution_count": self.loop.execution_count})

    async def join(self) -> None:
        """Wait for the scheduling task (and any in-flight cycle) to finish."""
        task = self._task
        if task is None:
            return
        await asyncio.gather(task, return_exceptions=True)

    def _still_scheduled(self, generation: int) -> bool:
        return self.is_active and self._generation == generation

    async def _run(self, generation: int) -> None:
        clock = asyncio.get_running_loop().time
        interval = self.config.interval_ms / 1000.0
        next_tick = clock() + interval

        try:
            while self._still_scheduled(generation):
                delay = next_tick - clock()
                if delay > 0:
                    await asyncio.sleep(delay)
                if not self._still_scheduled(generation):
                    break

                self._cycle_generation = generation
                try:
                    async with self._cycle_lock:
                        if not self._still_scheduled(generation):
                            break
                        await self._guarded_cycle()
                finally:
                    if self._cycle_generation == generation:
                        self._cycle_generation = None

                next_tick += interval
                now = clock()
                if now > next_tick:
                    skipped = int((now - next_tick) // interval) + 1
                    self.loop.performance.skipped_ticks += skipped
                    next_tick += skipped * interval
                    self.log.warning(
                        f"Cycle overran its interval, skipped {skipped} tick(s)",
                        extra={"cycle": self.loop.execution_count},
                    )
        except asyncio.CancelledError:
            self.log.debug(f"Scheduler for {self.name} cancelled")

    # Cycle

    async def execute_cycle_now(self) -> CycleReport:
        """Run one cycle immediately. Waits for any in-flight cycle first."""
        async with self._cycle_lock:
            return await self._guarded_cycle()

    async def _guarded_cycle(self) -> CycleReport:
        cycle = self.loop.execution_count + 1
        report = CycleReport(loop_name=self.name, cycle=cycle, started_at=time.time())
        timeout_ms = self._timeout_ms()
        start = time.perf_counter()

        try:
            await asyncio.wait_for(self._execute_cycle(report), timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            error = CycleTimeoutError(self.name, cycle, timeout_ms)
            report.error = str(error)
            self.log.error(
                f"{error} at {report.started_at:.3f}", extra={"cycle": cycle}
            )
        except Exception as e:
            report.error = f"{type(e).__name__}: {e}"
            self.log.error(
                f"Cycle {cycle} of loop {self.name} failed at {report.started_at:.3f}: {e}",
                exc_info=True,
                extra={"cycle": cycle},
            )

        report.duration_ms = (time.perf_counter() - start) * 1000.0
        self._record(report)
        return report

    def _timeout_ms(self) -> float:
        if self.config.timeout_ms is not None:
            return self.config.timeout_ms
        if self.settings.default_timeout_ms is not None:
            return self.settings.default_timeout_ms
        return self.config.interval_ms

    async def _execute_cycle(self, report: CycleReport) -> None:
        report.samples, report.missing_metrics = await self._collect_samples(report.cycle)
        self.loop.sample_history.append(report.samples)

        analysis = evaluate(report.samples, self.config.thresholds)
        report.analysis = analysis
        self.loop.last_analysis = analysis
        self.loop.score_history.append(analysis.overall_score)

        if not analysis.metric_scores:
            self.log.warning(
                "No threshold metric could be sampled; skipping adaptation",
                extra={"cycle": report.cycle},
            )
            return

        report.adaptation_needed = self.needs_adaptation(analysis)
        if not report.adaptation_needed:
            return

        self.log.info(
            f"Adaptation needed (score {analysis.overall_score:.2f}, "
            f"{len(analysis.violations)} violation(s))",
            extra={"cycle": report.cycle},
        )
        plan = self.plan_actions(analysis)
        if not plan:
            self.log.info(
                f"No adaptation actions registered for domain {self.loop.domain}",
                extra={"cycle": report.cycle},
            )
            return

        for action, impact in plan:
            report.expected_impacts[action.name] = impact
            outcome = await action.apply()
            report.outcomes.append(outcome)
            if self.metrics:
                self.metrics.action_metrics(self.name, action.name, outcome.success)

        succeeded = len([o for o in report.outcomes if o.success])
        report.success_rate = succeeded / len(report.outcomes)
        report.improved = report.success_rate > 0.5
        self.log.info(
            f"Adaptation applied: {succeeded}/{len(report.outcomes)} actions successful",
            extra={"cycle": report.cycle},
        )

    async def _collect_samples(self, cycle: int) -> tuple[list[MetricSample], list[str]]:
        samples = []
        missing = []

        for metric in self.config.metrics:
            try:
                value = await self.source.sample(metric)
            except UnknownMetricError as e:
                self.log.warning(str(e), extra={"cycle": cycle})
                missing.append(metric)
                continue
            except Exception as e:
                self.log.warning(
                    f"Failed to collect metric {metric}: {e}", extra={"cycle": cycle}
                )
                missing.append(metric)
                continue
            if not math.isfinite(value):
                self.log.warning(
                    f"Discarding non-finite value for metric {metric}: {value}",
                    extra={"cycle": cycle},
                )
                missing.append(metric)
                continue
            samples.append(MetricSample(name=metric, value=value))

        return samples, missing

    def trend(self) -> Optional[float]:
        """
        Relative change between the latest score and the one ``trend_window``
        analyses back. None until enough analyses exist.
        """
        scores = list(self.loop.score_history)
        if len(scores) < self.settings.trend_min_analyses:
            return None

        recent = scores[-1]
        older = scores[-min(self.settings.trend_window, len(scores))]
        if older == 0:
            return None
        return (recent - older) / older

    def needs_adaptation(self, analysis: AnalysisResult) -> bool:
        if analysis.overall_score < self.settings.adaptation_score_floor:
            return True
        if analysis.has_high_severity:
            return True

        trend = self.trend()
        return trend is not None and trend < -self.settings.trend_decline

    def plan_actions(self, analysis: AnalysisResult) -> list[tuple[AdaptationAction, float]]:
        """
        Actions to apply this cycle with their severity-weighted impact.

        Per-violation actions come first in severity order, then the domain's
        general actions. An action is applied at most once per cycle.
        """
        weights = self.config.severity_weights
        domain = self.loop.domain
        plan: list[tuple[AdaptationAction, float]] = []
        seen: set[int] = set()

        for violation in order_violations(analysis.violations):
            for action in self.catalog.actions_for(violation, domain):
                if id(action) in seen:
                    continue
                seen.add(id(action))
                plan.append((action, action.estimated_impact * weights[violation.severity]))

        for action in self.catalog.general_actions(domain):
            if id(action) in seen:
                continue
            seen.add(id(action))
            plan.append((action, action.estimated_impact * weights[Severity.MEDIUM]))

        return plan

    def _record(self, report: CycleReport) -> None:
        loop = self.loop
        loop.execution_count += 1
        loop.last_execution = report.started_at

        count = loop.execution_count
        perf = loop.performance
        perf.avg_execution_time_ms = (
            perf.avg_execution_time_ms * (count - 1) + report.duration_ms
        ) / count
        perf.success_rate = (perf.success_rate * (count - 1) + (0 if report.failed else 1)) / count

        if report.failed:
            perf.failed_cycles += 1
        elif report.improved:
            loop.improvement_count += 1
            score = report.analysis.overall_score
            self.ledger.append(
                ImprovementRecord(
                    loop_name=loop.name,
                    before_score=score,
                    actions_applied=len(report.outcomes),
                    expected_impact=expected_impact(score),
                    priority=adaptation_priority(score),
                )
            )

        perf.improvement_rate = loop.improvement_count / count

        if self.metrics:
            score = report.analysis.overall_score if report.analysis else None
            self.metrics.cycle_metrics(
                loop.name, not report.failed, report.duration_ms / 1000.0, score
            )
            if report.improved and not report.failed:
                self.metrics.inc_counter("improvements_total", 1, {"loop": loop.name})

        if report.failed:
            self._emit("cycle.failed", loop.name, {"cycle": report.cycle, "error": report.error})
            return

        self._emit("cycle.completed", loop.name, report.to_dict())
        if report.adaptation_needed and report.outcomes:
            self._emit(
                "adaptation.applied",
                loop.name,
                {
                    "cycle": report.cycle,
                    "success_rate": report.success_rate,
                    "improved": report.improved,
                    "actions": [o.action for o in report.outcomes],
                },
            )
