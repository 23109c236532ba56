"""Configuration loading for the scheduling core (YAML or JSON)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from dutyroster.errors import ValidationError

EQUITY_MODES = ("weighted", "least_loaded")


@dataclass
class EquityConfig:
    mode: str = "weighted"
    smoothing: float = 1.0
    exponent: float = 2.0


@dataclass
class CompTimeConfig:
    qualifying_weekdays: List[int] = field(default_factory=lambda: [5, 6])
    hours_per_assignment: float = 8.0


@dataclass
class SchedulerConfig:
    horizon_days: int = 28
    timezone: str = "America/New_York"
    database_url: str = "sqlite:///dutyroster.db"
    log_level: str = "INFO"
    equity: EquityConfig = field(default_factory=EquityConfig)
    comp_time: CompTimeConfig = field(default_factory=CompTimeConfig)

    def validate(self) -> "SchedulerConfig":
        """Raise ValidationError if any value is out of range."""
        if not 1 <= self.horizon_days <= 366:
            raise ValidationError(f"horizon_days must be between 1 and 366, got {self.horizon_days}")
        if self.equity.mode not in EQUITY_MODES:
            raise ValidationError(f"equity.mode must be one of {EQUITY_MODES}, got {self.equity.mode!r}")
        if self.equity.smoothing <= 0:
            raise ValidationError("equity.smoothing must be positive")
        if self.equity.exponent < 0:
            raise ValidationError("equity.exponent must not be negative")
        for day in self.comp_time.qualifying_weekdays:
            if day not in range(7):
                raise ValidationError(f"comp_time.qualifying_weekdays contains invalid weekday {day}")
        if self.comp_time.hours_per_assignment < 0:
            raise ValidationError("comp_time.hours_per_assignment must not be negative")
        return self


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValidationError(f"Config section '{key}' must be a mapping")
    return value


def config_from_dict(raw: Dict[str, Any]) -> SchedulerConfig:
    """Build a SchedulerConfig from a parsed mapping. Unknown keys are ignored."""
    equity_raw = _section(raw, "equity")
    comp_raw = _section(raw, "comp_time")
    defaults = SchedulerConfig()

    try:
        cfg = SchedulerConfig(
            horizon_days=int(raw.get("horizon_days", defaults.horizon_days)),
            timezone=str(raw.get("timezone", defaults.timezone)),
            database_url=str(raw.get("database_url", defaults.database_url)),
            log_level=str(raw.get("log_level", defaults.log_level)).upper(),
            equity=EquityConfig(
                mode=str(equity_raw.get("mode", defaults.equity.mode)),
                smoothing=float(equity_raw.get("smoothing", defaults.equity.smoothing)),
                exponent=float(equity_raw.get("exponent", defaults.equity.exponent)),
            ),
            comp_time=CompTimeConfig(
                qualifying_weekdays=[
                    int(d) for d in comp_raw.get("qualifying_weekdays", defaults.comp_time.qualifying_weekdays)
                ],
                hours_per_assignment=float(
                    comp_raw.get("hours_per_assignment", defaults.comp_time.hours_per_assignment)
                ),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid configuration value: {e}") from e

    return cfg.validate()


def load_config(path: str | Path | None = None) -> SchedulerConfig:
    """
    Load configuration from a YAML or JSON file.

    Args:
        path: Config file path. None returns the defaults.

    Returns:
        Validated SchedulerConfig
    """
    if path is None:
        return SchedulerConfig().validate()

    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError(f"Config file {path} must contain a mapping at the top level")
    return config_from_dict(raw)
