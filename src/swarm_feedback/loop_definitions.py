"""
Loop Definitions Loader

Loads loop definitions from a YAML document of the form::

    loops:
      - name: latency
        interval_ms: 1000
        thresholds:
          - {metric: response_time, limit: 1000, direction: lower_is_better}

and converts them into LoopConfig objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigurationError
from .loop import LoopConfig
from .models import Direction, Severity, ThresholdSpec


class ThresholdDefinition(BaseModel):
    metric: str = Field(..., min_length=1)
    limit: float
    direction: Direction = Direction.HIGHER_IS_BETTER


class LoopDefinition(BaseModel):
    name: str = Field(..., min_length=1)
    interval_ms: float = Field(5000, gt=0)
    thresholds: List[ThresholdDefinition] = Field(..., min_length=1)
    metrics: List[str] = Field(default_factory=list)
    domain: Optional[str] = None
    severity_weights: Dict[Severity, float] = Field(default_factory=dict)
    timeout_ms: Optional[float] = Field(None, gt=0)
    priority: str = "medium"
    description: str = ""

    @model_validator(mode="after")
    def _thresholds_are_sampled(self) -> "LoopDefinition":
        if self.metrics:
            unsampled = [t.metric for t in self.thresholds if t.metric not in self.metrics]
            if unsampled:
                raise ValueError(f"thresholds for unsampled metrics: {', '.join(unsampled)}")
        return self

    def to_config(self) -> LoopConfig:
        kwargs = {
            "thresholds": [
                ThresholdSpec(metric=t.metric, limit=t.limit, direction=t.direction)
                for t in self.thresholds
            ],
            "interval_ms": self.interval_ms,
            "metrics": list(self.metrics),
            "domain": self.domain,
            "timeout_ms": self.timeout_ms,
            "priority": self.priority,
            "description": self.description,
        }
        if self.severity_weights:
            kwargs["severity_weights"] = dict(self.severity_weights)
        return LoopConfig(**kwargs)


class LoopDocument(BaseModel):
    loops: List[LoopDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_names(self) -> "LoopDocument":
        names = [loop.name for loop in self.loops]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate loop names: {', '.join(duplicates)}")
        return self


def parse_loop_definitions(data: Union[dict, list, None]) -> Dict[str, LoopConfig]:
    """Validate an already-parsed document; returns configs keyed by loop name."""
    if data is None:
        data = {}
    if isinstance(data, list):
        data = {"loops": data}
    try:
        document = LoopDocument.model_validate(data)
        return {loop.name: loop.to_config() for loop in document.loops}
    except ValidationError as e:
        raise ConfigurationError(f"Invalid loop definitions: {e}") from e


def load_loop_definitions(path: Union[str, Path]) -> Dict[str, LoopConfig]:
    """Load and validate a YAML loop-definitions file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Loop definitions file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if data is not None and not isinstance(data, (dict, list)):
        raise ConfigurationError(f"{path} must contain a mapping with a 'loops' list")
    return parse_loop_definitions(data)


def dump_loop_definitions(configs: Union[Dict[str, LoopConfig], Iterable]) -> str:
    """Render loop configs as a YAML document accepted by load_loop_definitions."""
    items = configs.items() if isinstance(configs, dict) else configs
    loops = []
    for name, config in items:
        entry = {"name": name}
        entry.update({k: v for k, v in config.to_dict().items() if v not in (None, "")})
        loops.append(entry)
    return yaml.safe_dump({"loops": loops}, sort_keys=False)
