"""
Loop Registry / Supervisor

Owns a set of named loops, starts and stops them together and aggregates
their status. Failures inside one loop's cycle never reach the supervisor or
sibling loops.
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union

from .catalog import AdaptationCatalog
from .errors import ConfigurationError, LoopAlreadyActiveError, UnknownLoopError
from .ledger import ImprovementLedger
from .loop import LoopConfig, LoopController
from .settings import EngineConfig
from .sources import MetricSource
from .telemetry import MetricsCollector

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], None]


class Supervisor:
    """Coordinator of all registered feedback loops."""

    def __init__(
        self,
        catalog: Optional[AdaptationCatalog] = None,
        source: Optional[MetricSource] = None,
        config: Optional[EngineConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        ledger: Optional[ImprovementLedger] = None,
    ):
        self.config = config or EngineConfig()
        errors = self.config.validate()
        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {', '.join(errors)}"
            )

        self.catalog = catalog or AdaptationCatalog()
        if not self.catalog.frozen:
            self.catalog.freeze()

        self.default_source = source
        self.ledger = ledger or ImprovementLedger(self.config.ledger_size)

        if metrics is not None:
            self.metrics = metrics
        elif self.config.metrics_enabled:
            self.metrics = MetricsCollector()
        else:
            self.metrics = None

        self._loops: "OrderedDict[str, LoopController]" = OrderedDict()
        self._running = False
        self.event_handlers: list[EventHandler] = []

    # Registration

    def register(
        self,
        name: str,
        config: Union[LoopConfig, Mapping[str, Any]],
        source: Optional[MetricSource] = None,
    ) -> LoopController:
        """
        Register a loop under ``name`` and return its controller.

        An existing loop of the same name is replaced, with its counters reset,
        only while it is inactive.
        """
        if not isinstance(config, LoopConfig):
            config = LoopConfig.from_dict(config)

        existing = self._loops.get(name)
        if existing is not None and existing.is_active:
            raise LoopAlreadyActiveError(name)

        source = source or self.default_source
        if source is None:
            raise ConfigurationError(f"No metric source given for loop '{name}'")

        unsampleable = [t.metric for t in config.thresholds if not source.provides(t.metric)]
        if unsampleable:
            logger.warning(
                f"Loop {name}: source {source.name} does not provide "
                f"{', '.join(unsampleable)}; these metrics will be reported missing"
            )

        controller = LoopController(
            name=name,
            config=config,
            source=source,
            catalog=self.catalog,
            ledger=self.ledger,
            settings=self.config,
            metrics=self.metrics,
            emit=self._emit_loop_event,
        )
        self._loops[name] = controller

        action = "replaced" if existing is not None else "created"
        logger.info(
            f"Feedback loop {action}: {name} "
            f"(metrics: {', '.join(config.metrics)}; interval: {config.interval_ms:.0f}ms; "
            f"priority: {config.priority})"
        )

        if self._running:
            controller.start()
        return controller

    create_loop = register

    def unregister(self, name: str) -> None:
        controller = self.get(name)
        controller.stop()
        del self._loops[name]
        logger.info(f"Feedback loop removed: {name}")

    def get(self, name: str) -> LoopController:
        try:
            return self._loops[name]
        except KeyError:
            raise UnknownLoopError(name) from None

    def __getitem__(self, name: str) -> LoopController:
        return self.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._loops

    def __len__(self) -> int:
        return len(self._loops)

    @property
    def loop_names(self) -> list[str]:
        return list(self._loops)

    @property
    def running(self) -> bool:
        return self._running

    # Lifecycle

    def start(self) -> None:
        """Start every registered loop. Requires a running event loop."""
        if self._running:
            logger.warning("Feedback loops already running")
            return

        self._running = True
        logger.info(f"Starting {len(self._loops)} feedback loop(s)")
        for controller in self._loops.values():
            controller.start()
        self._emit_event("supervisor.started", None, {"loops": self.loop_names})

    def stop(self) -> None:
        """
        Stop every loop. Pending timers are cancelled before this returns, so
        no further cycle starts; in-flight cycles may still finish.
        """
        if not self._running:
            logger.warning("Feedback loops not running")
        self._running = False
        for controller in self._loops.values():
            controller.stop()
        self._emit_event("supervisor.stopped", None, {"loops": self.loop_names})

    async def shutdown(self) -> None:
        """Stop all loops and wait for in-flight cycles to finish."""
        self.stop()
        await asyncio.gather(*(c.join() for c in self._loops.values()))
        logger.info("All feedback loops stopped")

    async def execute_all_now(self) -> dict[str, Any]:
        """Run one cycle of every loop concurrently; returns reports by name."""
        names = list(self._loops)
        reports = await asyncio.gather(
            *(self._loops[name].execute_cycle_now() for name in names)
        )
        return dict(zip(names, reports))

    # Status

    def status(self) -> dict[str, Any]:
        loops = {name: c.loop.status() for name, c in self._loops.items()}
        return {
            "running": self._running,
            "active_loops": len([c for c in self._loops.values() if c.is_active]),
            "total_loops": len(self._loops),
            "total_executions": sum(c.loop.execution_count for c in self._loops.values()),
            "total_improvements": sum(
                c.loop.improvement_count for c in self._loops.values()
            ),
            "failed_cycles": sum(
                c.loop.performance.failed_cycles for c in self._loops.values()
            ),
            "loops": loops,
            "recent_improvements": [
                r.to_dict() for r in self.ledger.recent(self.config.recent_improvements)
            ],
        }

    # Events

    def add_event_handler(self, handler: EventHandler) -> None:
        self.event_handlers.append(handler)

    def remove_event_handler(self, handler: EventHandler) -> None:
        if handler in self.event_handlers:
            self.event_handlers.remove(handler)

    def _emit_loop_event(self, event_type: str, loop_name: str, data: dict[str, Any]) -> None:
        self._emit_event(f"loop.{event_type}", loop_name, data)

    def _emit_event(
        self, event_type: str, loop_name: Optional[str], data: dict[str, Any]
    ) -> None:
        event = {
            "type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "loop": loop_name,
            "data": data,
        }

        for handler in list(self.event_handlers):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Event handler failed: {e}")

        logger.debug(f"Feedback event: {event_type} ({loop_name})")
