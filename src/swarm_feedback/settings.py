"""
Engine configuration.

Typed settings with environment variable and JSON file loading.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

LOG_FORMATS = ("json", "text")


@dataclass
class EngineConfig:
    """Feedback loop engine configuration."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    # Retention
    history_size: int = 50
    ledger_size: int = 100
    recent_improvements: int = 10

    # Adaptation decision
    adaptation_score_floor: float = 0.7
    trend_window: int = 5
    trend_min_analyses: int = 3
    trend_decline: float = 0.1

    # Cycle timeout; None means each loop's interval
    default_timeout_ms: Optional[float] = None

    # Outputs; an empty ledger_path disables the improvement export
    ledger_path: Optional[str] = "logs/improvements.jsonl"
    metrics_enabled: bool = True

    @classmethod
    def from_env(cls, prefix: str = "SWARM_FEEDBACK_") -> "EngineConfig":
        """Create config from environment variables."""
        known = {f.name: f for f in fields(cls)}
        config_data: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(prefix):
                continue
            config_key = key[len(prefix) :].lower()
            if config_key not in known:
                continue
            config_data[config_key] = _coerce(value)

        return cls(**config_data)

    @classmethod
    def from_file(cls, config_path: Path) -> "EngineConfig":
        """Load configuration from a JSON file; missing file gives defaults."""
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        with open(config_path, encoding="utf-8") as f:
            config_data = json.load(f)

        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in config_data.items() if k in known})

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(LOG_FORMATS)}")

        if not isinstance(self.log_level, str) or self.log_level.upper() not in (
            "DEBUG",
            "INFO",
            "WARNING",
            "ERROR",
            "CRITICAL",
        ):
            errors.append(f"Unknown log level: {self.log_level}")

        for name in ("history_size", "ledger_size", "trend_window"):
            if getattr(self, name) < 1:
                errors.append(f"{name} must be at least 1")

        if self.recent_improvements < 0:
            errors.append("recent_improvements must not be negative")

        if self.trend_min_analyses < 2:
            errors.append("trend_min_analyses must be at least 2")

        if not (0.0 <= self.adaptation_score_floor <= 1.0):
            errors.append("adaptation_score_floor must be between 0 and 1")

        if self.trend_decline < 0:
            errors.append("trend_decline must not be negative")

        if self.default_timeout_ms is not None and self.default_timeout_ms <= 0:
            errors.append("default_timeout_ms must be positive")

        return errors

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered in ("none", "null", ""):
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value
