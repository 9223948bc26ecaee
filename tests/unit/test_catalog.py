"""
Unit tests for the adaptation catalog and action contracts.
"""

import pytest

from swarm_feedback.catalog import (
    AdaptationAction,
    AdaptationCatalog,
    FunctionAction,
    Knob,
    KnobAdjustment,
    KnobBoard,
    order_violations,
)
from swarm_feedback.errors import ConfigurationError
from swarm_feedback.models import ActionOutcome, Severity, Violation


def violation(metric, severity):
    return Violation(metric=metric, value=1.0, limit=2.0, severity=severity)


class TestActions:
    async def test_sync_function_success(self):
        outcome = await FunctionAction("noop", lambda: None).apply()

        assert outcome.success is True
        assert outcome.action == "noop"

    async def test_false_result_is_failure(self):
        outcome = await FunctionAction("nope", lambda: False).apply()
        assert outcome.success is False

    async def test_string_result_becomes_detail(self):
        outcome = await FunctionAction("resize", lambda: "pool resized to 8").apply()

        assert outcome.success is True
        assert outcome.detail == "pool resized to 8"

    async def test_async_function_is_awaited(self):
        async def remediate():
            return ActionOutcome(success=True, detail="done")

        outcome = await FunctionAction("async_fix", remediate).apply()

        assert outcome.success is True
        assert outcome.detail == "done"
        assert outcome.action == "async_fix"

    async def test_raising_action_never_raises(self):
        def explode():
            raise RuntimeError("disk full")

        outcome = await FunctionAction("explode", explode).apply()

        assert outcome.success is False
        assert "disk full" in outcome.detail
        assert "explode" in outcome.detail

    async def test_raising_async_action_never_raises(self):
        async def explode():
            raise ValueError()

        outcome = await FunctionAction("explode", explode).apply()

        assert outcome.success is False
        assert "ValueError" in outcome.detail

    def test_abstract_action_requires_apply(self):
        with pytest.raises(TypeError):
            AdaptationAction("abstract")


class TestKnobs:
    @pytest.fixture
    def board(self):
        return KnobBoard([Knob("parallelism", 4, 1, 5)])

    async def test_adjustment_scales_knob(self, board):
        action = KnobAdjustment("more_workers", board, "parallelism", 1.1)

        outcome = await action.apply()

        assert outcome.success is True
        assert board.get("parallelism") == pytest.approx(4.4)

    async def test_adjustment_is_bounded(self, board):
        action = KnobAdjustment("more_workers", board, "parallelism", 2.0)

        first = await action.apply()
        second = await action.apply()

        assert first.success is True
        assert board.get("parallelism") == 5
        assert second.success is False
        assert "already at bound" in second.detail

    async def test_unknown_knob_reports_failure(self, board):
        action = KnobAdjustment("ghost", board, "missing", 1.1)

        outcome = await action.apply()

        assert outcome.success is False

    def test_initial_value_is_clamped(self):
        board = KnobBoard([Knob("ratio", 3.0, 0.0, 1.0)])
        assert board.get("ratio") == 1.0
        assert "ratio" in board
        assert board.snapshot() == {"ratio": 1.0}


class TestCatalog:
    def test_lookup_by_domain_and_metric(self):
        action = FunctionAction("fix", lambda: True)
        catalog = AdaptationCatalog().register("perf", "latency", action).freeze()

        assert catalog.actions_for(violation("latency", Severity.LOW), "perf") == [action]
        assert catalog.actions_for(violation("latency", Severity.LOW), "memory") == []

    def test_unknown_metric_returns_empty_list(self):
        catalog = AdaptationCatalog().freeze()
        assert catalog.actions_for(violation("anything", Severity.HIGH), "perf") == []

    def test_registration_order_is_preserved(self):
        first = FunctionAction("first", lambda: True)
        second = FunctionAction("second", lambda: True)
        catalog = AdaptationCatalog()
        catalog.register("perf", "latency", first)
        catalog.register("perf", "latency", second)

        names = [a.name for a in catalog.actions_for(violation("latency", Severity.LOW), "perf")]
        assert names == ["first", "second"]

    def test_general_actions(self):
        general = FunctionAction("tune", lambda: True)
        catalog = AdaptationCatalog().register_general("perf", general).freeze()

        assert catalog.general_actions("perf") == [general]
        assert catalog.general_actions("other") == []

    def test_frozen_catalog_rejects_registration(self):
        catalog = AdaptationCatalog().freeze()

        with pytest.raises(ConfigurationError):
            catalog.register("perf", "latency", FunctionAction("late", lambda: True))

    def test_returned_lists_do_not_mutate_catalog(self):
        catalog = AdaptationCatalog().register(
            "perf", "latency", FunctionAction("fix", lambda: True)
        ).freeze()

        catalog.actions_for(violation("latency", Severity.LOW), "perf").clear()

        assert len(catalog.actions_for(violation("latency", Severity.LOW), "perf")) == 1

    def test_describe_and_len(self):
        catalog = AdaptationCatalog()
        catalog.register("perf", "latency", FunctionAction("fix", lambda: True))
        catalog.register_general("perf", FunctionAction("tune", lambda: True))
        catalog.freeze()

        rows = catalog.describe()
        assert len(catalog) == 2
        assert [r["name"] for r in rows] == ["fix", "tune"]
        assert rows[1]["metric"] is None
        assert catalog.domains() == ["perf"]


def test_order_violations_by_severity_then_registration():
    items = [
        violation("a", Severity.LOW),
        violation("b", Severity.HIGH),
        violation("c", Severity.MEDIUM),
        violation("d", Severity.HIGH),
        violation("e", Severity.LOW),
    ]

    assert [v.metric for v in order_violations(items)] == ["b", "d", "c", "a", "e"]
