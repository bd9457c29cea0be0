"""
Engine configuration.

Holds the grid size, search budget, optimizer parameters and soft-constraint
weights. Values can be loaded from a YAML file so runs stay reproducible.
"""
from dataclasses import dataclass, asdict, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass(frozen=True)
class EngineConfig:
    # Grid
    days_per_week: int = 5
    hours_per_day: int = 9
    lab_block_size: int = 2

    # Search / optimizer
    trial_count: int = 10
    generate_attempts: int = 5
    seed: int = 42
    backtrack_budget: int = 5000
    max_workers: int = 4
    time_limit_s: Optional[float] = 30.0
    spread_heuristic: bool = True

    # Soft-constraint weights
    weight_spread: int = 3
    weight_idle_gap: int = 2
    weight_back_to_back_lab: int = 4

    def __post_init__(self):
        for name in ("days_per_week", "hours_per_day", "lab_block_size",
                     "trial_count", "generate_attempts", "max_workers"):
            if int(getattr(self, name)) < 1:
                raise ValueError(f"{name} must be a positive integer")
        if self.seed < 0:
            raise ValueError("seed cannot be negative")
        if self.backtrack_budget < 0:
            raise ValueError("backtrack_budget cannot be negative")
        if self.time_limit_s is not None and self.time_limit_s <= 0:
            raise ValueError("time_limit_s must be positive or null")
        for name in ("weight_spread", "weight_idle_gap", "weight_back_to_back_lab"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        merged = asdict(cls())
        for k, v in data.items():
            if k in merged:
                merged[k] = v
        return cls(**merged)

    def with_overrides(self, **overrides: Any) -> "EngineConfig":
        """Copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def load_config(path: str = "config.yaml") -> EngineConfig:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return EngineConfig()
    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping")
    return EngineConfig.from_dict(data)
