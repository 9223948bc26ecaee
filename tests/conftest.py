"""
Shared test configuration for the feedback loop engine.

Provides:
- Deterministic metric sources
- Recording and failing adaptation actions
- Catalog, supervisor and controller factories
"""

import asyncio
from typing import Any

import pytest

from swarm_feedback.catalog import AdaptationCatalog, FunctionAction
from swarm_feedback.ledger import ImprovementLedger
from swarm_feedback.loop import LoopConfig, LoopController
from swarm_feedback.models import Direction, ThresholdSpec
from swarm_feedback.settings import EngineConfig
from swarm_feedback.sources import StaticMetricSource
from swarm_feedback.supervisor import Supervisor
from swarm_feedback.telemetry import MetricsCollector


class TestCategories:
    """Test category markers for pytest."""

    UNIT = pytest.mark.unit
    INTEGRATION = pytest.mark.integration


def pytest_collection_modifyitems(config, items):
    """Add default markers based on test location."""
    for item in items:
        parts = item.path.parts
        if "unit" in parts:
            item.add_marker(TestCategories.UNIT)
        elif "integration" in parts:
            item.add_marker(TestCategories.INTEGRATION)


class ActionLog:
    """Records the order in which actions were applied."""

    def __init__(self):
        self.calls: list[str] = []

    def action(self, name: str, result: Any = True, target: str = None, impact: float = 0.1):
        def run():
            self.calls.append(name)
            return result

        return FunctionAction(name, run, target_metric=target, estimated_impact=impact)

    def failing(self, name: str, message: str = "boom"):
        def run():
            self.calls.append(name)
            raise RuntimeError(message)

        return FunctionAction(name, run)

    def slow(self, name: str, delay: float):
        async def run():
            self.calls.append(name)
            await asyncio.sleep(delay)
            return True

        return FunctionAction(name, run)


@pytest.fixture
def action_log():
    return ActionLog()


@pytest.fixture
def engine_config():
    """Engine settings with telemetry on and a short ledger."""
    return EngineConfig(ledger_size=100, history_size=20)


@pytest.fixture
def latency_config():
    return LoopConfig(
        interval_ms=1000,
        thresholds=[ThresholdSpec("response_time", 1000, Direction.LOWER_IS_BETTER)],
    )


@pytest.fixture
def performance_config():
    return LoopConfig(
        interval_ms=1000,
        domain="performance",
        thresholds=[
            ThresholdSpec("response_time", 1000, Direction.LOWER_IS_BETTER),
            ThresholdSpec("throughput", 10, Direction.HIGHER_IS_BETTER),
            ThresholdSpec("error_rate", 0.05, Direction.LOWER_IS_BETTER),
        ],
    )


@pytest.fixture
def healthy_source():
    return StaticMetricSource(
        {"response_time": 400, "throughput": 20, "error_rate": 0.01}
    )


@pytest.fixture
def catalog(action_log):
    catalog = AdaptationCatalog()
    catalog.register("performance", "response_time", action_log.action("optimize_response_time"))
    catalog.register("performance", "throughput", action_log.action("increase_parallelism"))
    catalog.register("performance", "error_rate", action_log.action("reduce_error_rate"))
    return catalog.freeze()


@pytest.fixture
def make_controller(engine_config):
    """Factory for a LoopController wired to its own ledger and collector."""

    def factory(config, source, catalog=None, name="loop", settings=None):
        return LoopController(
            name=name,
            config=config,
            source=source,
            catalog=catalog or AdaptationCatalog().freeze(),
            ledger=ImprovementLedger(100),
            settings=settings or engine_config,
            metrics=MetricsCollector(),
        )

    return factory


@pytest.fixture
def supervisor(catalog, healthy_source, engine_config):
    return Supervisor(catalog=catalog, source=healthy_source, config=engine_config)
