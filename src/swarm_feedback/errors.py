"""
Exception taxonomy for the feedback loop engine.

Errors raised inside a single loop cycle are contained by that loop and only
surface as recorded failures. Registration and configuration errors are
raised synchronously to the caller.
"""

from typing import Optional


class FeedbackLoopError(Exception):
    """Base class for all engine errors."""


class UnknownMetricError(FeedbackLoopError, KeyError):
    """A requested metric has no registered source."""

    def __init__(self, metric: str, source: Optional[str] = None):
        self.metric = metric
        self.source = source
        where = f" in source '{source}'" if source else ""
        super().__init__(f"Unknown metric: {metric}{where}")

    def __str__(self) -> str:
        return self.args[0]


class ActionApplicationError(FeedbackLoopError):
    """An adaptation action failed while being applied."""

    def __init__(self, action: str, message: str):
        self.action = action
        super().__init__(f"Action '{action}' failed: {message}")


class LoopAlreadyActiveError(FeedbackLoopError):
    """Attempted to re-register a loop that is currently running."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Loop '{name}' is active and cannot be replaced")


class CycleTimeoutError(FeedbackLoopError):
    """A cycle exceeded its timeout budget."""

    def __init__(self, name: str, cycle: int, timeout_ms: float):
        self.name = name
        self.cycle = cycle
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Cycle {cycle} of loop '{name}' exceeded {timeout_ms:.0f}ms timeout"
        )


class UnknownLoopError(FeedbackLoopError, KeyError):
    """No loop is registered under the given name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown loop: {name}")

    def __str__(self) -> str:
        return self.args[0]


class ConfigurationError(FeedbackLoopError, ValueError):
    """A loop definition or engine configuration is invalid."""
