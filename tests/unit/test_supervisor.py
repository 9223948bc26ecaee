"""
Unit tests for the Supervisor registry: registration, status aggregation,
events and lifecycle bookkeeping.
"""

import logging

import pytest

from swarm_feedback.catalog import AdaptationCatalog
from swarm_feedback.errors import (
    ConfigurationError,
    LoopAlreadyActiveError,
    UnknownLoopError,
)
from swarm_feedback.loop import LoopController
from swarm_feedback.models import LoopState
from swarm_feedback.settings import EngineConfig
from swarm_feedback.sources import StaticMetricSource
from swarm_feedback.supervisor import Supervisor


@pytest.fixture
def events(supervisor):
    received = []
    supervisor.add_event_handler(received.append)
    return received


class TestRegistration:
    def test_register_returns_controller(self, supervisor, performance_config):
        controller = supervisor.register("perf", performance_config)

        assert isinstance(controller, LoopController)
        assert controller.state is LoopState.INACTIVE
        assert controller.execution_count == 0
        assert "perf" in supervisor
        assert supervisor["perf"] is controller
        assert len(supervisor) == 1

    def test_register_from_mapping(self, supervisor):
        controller = supervisor.register(
            "latency",
            {
                "interval_ms": 200,
                "thresholds": {"response_time": {"limit": 1000, "direction": "lower_is_better"}},
            },
        )

        assert controller.config.interval_ms == 200
        assert controller.config.metrics == ["response_time"]

    def test_invalid_config_is_rejected(self, supervisor):
        with pytest.raises(ConfigurationError):
            supervisor.register("bad", {"interval_ms": 100, "thresholds": []})
        assert "bad" not in supervisor

    def test_missing_source_is_rejected(self, catalog, performance_config):
        supervisor = Supervisor(catalog=catalog)

        with pytest.raises(ConfigurationError):
            supervisor.register("perf", performance_config)

    def test_unsampleable_threshold_metrics_are_warned(self, supervisor, caplog):
        partial = StaticMetricSource({"response_time": 400})

        with caplog.at_level(logging.WARNING, logger="swarm_feedback.supervisor"):
            supervisor.register(
                "perf",
                {"thresholds": {"response_time": 1000, "queue_depth": 10}},
                source=partial,
            )

        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert any("queue_depth" in m and "response_time" not in m for m in warnings)

    def test_fully_sampleable_loop_registers_quietly(self, supervisor, performance_config, caplog):
        with caplog.at_level(logging.WARNING, logger="swarm_feedback.supervisor"):
            supervisor.register("perf", performance_config)

        assert [r for r in caplog.records if r.levelno >= logging.WARNING] == []

    def test_per_loop_source_overrides_default(self, supervisor, latency_config):
        own = StaticMetricSource({"response_time": 10})
        controller = supervisor.register("latency", latency_config, source=own)
        assert controller.source is own

    async def test_replacing_inactive_loop_resets_counters(
        self, supervisor, performance_config
    ):
        first = supervisor.register("perf", performance_config)
        await first.execute_cycle_now()
        assert first.execution_count == 1

        second = supervisor.register("perf", performance_config)

        assert second is not first
        assert second.execution_count == 0
        assert len(supervisor) == 1

    async def test_replacing_active_loop_raises(self, supervisor, performance_config):
        supervisor.register("perf", performance_config)
        supervisor.start()
        try:
            with pytest.raises(LoopAlreadyActiveError):
                supervisor.register("perf", performance_config)
        finally:
            await supervisor.shutdown()

    async def test_loop_can_be_replaced_after_stop(self, supervisor, performance_config):
        first = supervisor.register("perf", performance_config)
        supervisor.start()
        supervisor.stop()
        await first.join()

        controller = supervisor.register("perf", performance_config)

        assert controller.execution_count == 0
        assert controller.state is LoopState.INACTIVE

    async def test_registration_while_running_starts_loop(
        self, supervisor, performance_config
    ):
        supervisor.start()
        try:
            controller = supervisor.register("perf", performance_config)
            assert controller.is_active
        finally:
            await supervisor.shutdown()

    def test_unregister(self, supervisor, performance_config):
        supervisor.register("perf", performance_config)
        supervisor.unregister("perf")

        assert "perf" not in supervisor
        with pytest.raises(UnknownLoopError):
            supervisor.unregister("perf")

    def test_unknown_loop(self, supervisor):
        with pytest.raises(UnknownLoopError):
            supervisor.get("missing")
        with pytest.raises(KeyError):
            supervisor["missing"]

    def test_catalog_is_frozen_on_construction(self, healthy_source):
        catalog = AdaptationCatalog()
        Supervisor(catalog=catalog, source=healthy_source)
        assert catalog.frozen

    def test_invalid_engine_config(self, catalog):
        with pytest.raises(ConfigurationError):
            Supervisor(catalog=catalog, config=EngineConfig(ledger_size=0))


class TestStatus:
    def test_empty_status(self, supervisor):
        status = supervisor.status()

        assert status["running"] is False
        assert status["active_loops"] == 0
        assert status["total_loops"] == 0
        assert status["total_executions"] == 0
        assert status["total_improvements"] == 0
        assert status["loops"] == {}
        assert status["recent_improvements"] == []

    async def test_status_aggregates_loops(
        self, supervisor, performance_config, latency_config, action_log
    ):
        degraded = StaticMetricSource(
            {"response_time": 3000, "throughput": 2, "error_rate": 0.2}
        )
        supervisor.register("perf", performance_config, source=degraded)
        supervisor.register("latency", latency_config)

        await supervisor.execute_all_now()
        await supervisor["latency"].execute_cycle_now()

        status = supervisor.status()
        assert status["total_loops"] == 2
        assert status["total_executions"] == 3
        assert status["total_improvements"] == 1
        assert status["loops"]["perf"]["improvement_count"] == 1
        assert status["loops"]["latency"]["execution_count"] == 2
        assert status["loops"]["latency"]["last_status"] == "excellent"
        assert len(status["recent_improvements"]) == 1
        assert status["recent_improvements"][0]["loop_name"] == "perf"
        assert status["recent_improvements"][0]["priority"] == "critical"

    async def test_recent_improvements_are_bounded(self, catalog, performance_config):
        degraded = StaticMetricSource(
            {"response_time": 3000, "throughput": 2, "error_rate": 0.2}
        )
        supervisor = Supervisor(
            catalog=catalog,
            source=degraded,
            config=EngineConfig(recent_improvements=2),
        )
        controller = supervisor.register("perf", performance_config)

        for _ in range(4):
            await controller.execute_cycle_now()

        assert supervisor.status()["total_improvements"] == 4
        assert len(supervisor.status()["recent_improvements"]) == 2

    async def test_status_counts_active_loops(self, supervisor, performance_config, latency_config):
        supervisor.register("perf", performance_config)
        supervisor.register("latency", latency_config)

        supervisor.start()
        try:
            status = supervisor.status()
            assert status["running"] is True
            assert status["active_loops"] == 2
        finally:
            await supervisor.shutdown()

        assert supervisor.status()["active_loops"] == 0


class TestEvents:
    async def test_lifecycle_events(self, supervisor, events, performance_config):
        supervisor.register("perf", performance_config)

        supervisor.start()
        await supervisor.shutdown()

        types = [e["type"] for e in events]
        assert types == [
            "loop.started",
            "supervisor.started",
            "loop.stopped",
            "supervisor.stopped",
        ]
        assert events[0]["loop"] == "perf"
        assert events[1]["loop"] is None
        assert "timestamp" in events[0]

    async def test_cycle_and_adaptation_events(self, supervisor, events, performance_config):
        degraded = StaticMetricSource(
            {"response_time": 3000, "throughput": 2, "error_rate": 0.2}
        )
        controller = supervisor.register("perf", performance_config, source=degraded)

        await controller.execute_cycle_now()

        types = [e["type"] for e in events]
        assert types == ["loop.cycle.completed", "loop.adaptation.applied"]
        assert events[1]["data"]["improved"] is True
        assert events[1]["data"]["actions"] == [
            "optimize_response_time",
            "increase_parallelism",
            "reduce_error_rate",
        ]

    async def test_failing_handler_does_not_break_cycle(
        self, supervisor, events, performance_config
    ):
        def broken(event):
            raise RuntimeError("handler down")

        supervisor.add_event_handler(broken)
        controller = supervisor.register("perf", performance_config)

        report = await controller.execute_cycle_now()

        assert report.error is None
        assert [e["type"] for e in events] == ["loop.cycle.completed"]

    def test_remove_event_handler(self, supervisor, events):
        supervisor.remove_event_handler(events.append)
        supervisor.remove_event_handler(events.append)
        assert supervisor.event_handlers == []


class TestTelemetry:
    async def test_cycles_are_counted(self, supervisor, performance_config):
        controller = supervisor.register("perf", performance_config)
        await controller.execute_cycle_now()

        text = supervisor.metrics.get_prometheus_metrics()
        assert "swarm_feedback_cycles_total" in text

    def test_metrics_can_be_disabled(self, catalog, healthy_source):
        supervisor = Supervisor(
            catalog=catalog, source=healthy_source, config=EngineConfig(metrics_enabled=False)
        )
        assert supervisor.metrics is None
