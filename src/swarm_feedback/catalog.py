"""
Adaptation Catalog

Registry of corrective actions keyed by (domain, metric). The catalog is
populated once at startup, frozen, and then shared read-only by every loop.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Iterable, Optional, Union

from .errors import ActionApplicationError, ConfigurationError
from .models import ActionOutcome, Violation

logger = logging.getLogger(__name__)

ActionResult = Union[bool, str, None, ActionOutcome]


class AdaptationAction(ABC):
    """A named, reusable remediation. ``apply()`` never raises."""

    def __init__(
        self,
        name: str,
        target_metric: Optional[str] = None,
        estimated_impact: float = 0.05,
        description: str = "",
    ):
        self.name = name
        self.target_metric = target_metric
        self.estimated_impact = estimated_impact
        self.description = description
        self.logger = logging.getLogger(f"feedback.action.{name}")

    @abstractmethod
    def _apply(self) -> Any:
        """
        Perform the remediation.

        May be a plain method or a coroutine. Returning ``False`` marks the
        application as unsuccessful, a string becomes the outcome detail and an
        ActionOutcome is passed through. Raising is reported as a failure.
        """

    async def apply(self) -> ActionOutcome:
        try:
            result = self._apply()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            error = ActionApplicationError(self.name, str(e) or type(e).__name__)
            self.logger.error(str(error))
            return ActionOutcome(success=False, detail=str(error), action=self.name)

        return self._to_outcome(result)

    def _to_outcome(self, result: ActionResult) -> ActionOutcome:
        if isinstance(result, ActionOutcome):
            if not result.action:
                result.action = self.name
            return result
        if result is False:
            return ActionOutcome(success=False, detail="action reported failure", action=self.name)
        if isinstance(result, str):
            return ActionOutcome(success=True, detail=result, action=self.name)
        return ActionOutcome(success=True, detail="applied", action=self.name)

    def get_metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "target_metric": self.target_metric,
            "estimated_impact": self.estimated_impact,
            "description": self.description,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, target={self.target_metric!r})"


class FunctionAction(AdaptationAction):
    """Adapts a plain callable (sync or async) into an action."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Any],
        target_metric: Optional[str] = None,
        estimated_impact: float = 0.05,
        description: str = "",
    ):
        super().__init__(name, target_metric, estimated_impact, description)
        self.func = func

    def _apply(self) -> Any:
        return self.func()


@dataclass
class Knob:
    """A tunable numeric setting with hard bounds."""

    name: str
    value: float
    minimum: float
    maximum: float

    def clamp(self, value: float) -> float:
        return max(self.minimum, min(self.maximum, value))


class KnobBoard:
    """The set of tunable settings that knob adjustments act on."""

    def __init__(self, knobs: Optional[Iterable[Knob]] = None):
        self._lock = Lock()
        self._knobs: dict[str, Knob] = {}
        for knob in knobs or []:
            self.add(knob)

    def add(self, knob: Knob) -> None:
        knob.value = knob.clamp(knob.value)
        self._knobs[knob.name] = knob

    def get(self, name: str) -> float:
        return self._knobs[name].value

    def scale(self, name: str, factor: float) -> tuple[float, float]:
        """Multiply a knob by ``factor`` within its bounds; returns (old, new)."""
        with self._lock:
            knob = self._knobs[name]
            old = knob.value
            knob.value = knob.clamp(old * factor)
            return old, knob.value

    def snapshot(self) -> dict[str, float]:
        return {name: knob.value for name, knob in self._knobs.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._knobs


class KnobAdjustment(AdaptationAction):
    """Scales one knob. Repeated application converges on the knob's bound."""

    def __init__(
        self,
        name: str,
        board: KnobBoard,
        knob: str,
        factor: float,
        target_metric: Optional[str] = None,
        estimated_impact: float = 0.05,
        description: str = "",
    ):
        super().__init__(name, target_metric, estimated_impact, description)
        self.board = board
        self.knob = knob
        self.factor = factor

    def _apply(self) -> ActionOutcome:
        old, new = self.board.scale(self.knob, self.factor)
        if new == old:
            return ActionOutcome(
                success=False,
                detail=f"{self.knob} already at bound ({old:g})",
                action=self.name,
            )
        self.logger.info(f"{self.knob}: {old:g} -> {new:g}")
        return ActionOutcome(
            success=True, detail=f"{self.knob} {old:g} -> {new:g}", action=self.name
        )


def order_violations(violations: Iterable[Violation]) -> list[Violation]:
    """Severity descending; equal severities keep their original order."""
    return sorted(violations, key=lambda v: -v.severity.rank)


class AdaptationCatalog:
    """Maps (domain, metric) to candidate actions."""

    def __init__(self):
        self._by_metric: "OrderedDict[tuple[str, str], list[AdaptationAction]]" = OrderedDict()
        self._general: "OrderedDict[str, list[AdaptationAction]]" = OrderedDict()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, domain: str, metric: str, action: AdaptationAction) -> "AdaptationCatalog":
        self._check_mutable()
        self._by_metric.setdefault((domain, metric), []).append(action)
        return self

    def register_general(self, domain: str, action: AdaptationAction) -> "AdaptationCatalog":
        self._check_mutable()
        self._general.setdefault(domain, []).append(action)
        return self

    def freeze(self) -> "AdaptationCatalog":
        self._by_metric = OrderedDict((k, tuple(v)) for k, v in self._by_metric.items())
        self._general = OrderedDict((k, tuple(v)) for k, v in self._general.items())
        self._frozen = True
        return self

    def actions_for(self, violation: Violation, domain: str) -> list[AdaptationAction]:
        """Candidate actions for one violation; empty when none are registered."""
        return list(self._by_metric.get((domain, violation.metric), ()))

    def general_actions(self, domain: str) -> list[AdaptationAction]:
        return list(self._general.get(domain, ()))

    def domains(self) -> list[str]:
        names = [domain for domain, _ in self._by_metric]
        names.extend(self._general)
        return list(OrderedDict.fromkeys(names))

    def describe(self) -> list[dict[str, Any]]:
        rows = []
        for (domain, metric), actions in self._by_metric.items():
            for action in actions:
                rows.append({"domain": domain, "metric": metric, **action.get_metadata()})
        for domain, actions in self._general.items():
            for action in actions:
                rows.append({"domain": domain, "metric": None, **action.get_metadata()})
        return rows

    def __len__(self) -> int:
        return sum(len(a) for a in self._by_metric.values()) + sum(
            len(a) for a in self._general.values()
        )

    def _check_mutable(self) -> None:
        if self._frozen:
            raise ConfigurationError("Adaptation catalog is frozen")
