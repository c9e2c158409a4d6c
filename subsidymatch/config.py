"""
Engine configuration.

Settings come from keyword arguments in code and tests, or from
``SUBSIDYMATCH_*`` environment variables (optionally loaded from ``.env``)
for the CLI.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import InputError

FEATURE_LENGTH = 64
ENV_PREFIX = "SUBSIDYMATCH_"


@dataclass(frozen=True)
class MatchConfig:
    """Fixed, per-engine settings. Invocation-level knobs live in MatchOptions."""

    dimension: int = 1024
    hidden_layers: Tuple[int, ...] = (256, 512, 256)
    ensemble_size: int = 10
    shots: int = 1000
    top_k: int = 10
    seed: int = 0
    bit_flip_rate: float = 0.01
    baseline_ttl: int = 3600
    baseline_range: Tuple[float, float] = (0.2, 0.9)
    cache_pool_size: int = 8
    max_workers: int = 4
    member_workers: int = 4
    breaker_threshold: int = 5
    breaker_recovery: float = 30.0
    db_path: Path = field(default_factory=lambda: Path("data/subsidies.db"))
    redis_url: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        errors = self.validate()
        if errors:
            raise InputError("; ".join(errors))

    def validate(self) -> list:
        errors = []
        if self.dimension < 2 or self.dimension % 2:
            errors.append("dimension must be an even integer >= 2")
        if not self.hidden_layers or any(units < 1 for units in self.hidden_layers):
            errors.append("hidden_layers must be a non-empty tuple of positive sizes")
        for name in ("ensemble_size", "shots", "top_k", "cache_pool_size", "max_workers", "member_workers"):
            if getattr(self, name) < 1:
                errors.append(f"{name} must be >= 1")
        if self.seed < 0:
            errors.append("seed must be non-negative")
        if not 0.0 <= self.bit_flip_rate <= 1.0:
            errors.append("bit_flip_rate must be within [0, 1]")
        low, high = self.baseline_range
        if not 0.0 <= low <= high <= 1.0:
            errors.append("baseline_range must satisfy 0 <= low <= high <= 1")
        return errors

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides) -> "MatchConfig":
        """Build a config from SUBSIDYMATCH_* variables, falling back to defaults."""
        environ = os.environ if environ is None else environ
        values = {}

        def read(name, cast):
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None or raw.strip() == "":
                return
            try:
                values[name] = cast(raw.strip())
            except ValueError as e:
                raise InputError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e

        read("dimension", int)
        read("ensemble_size", int)
        read("shots", int)
        read("top_k", int)
        read("seed", int)
        read("bit_flip_rate", float)
        read("baseline_ttl", int)
        read("cache_pool_size", int)
        read("max_workers", int)
        read("member_workers", int)
        read("db_path", Path)
        read("redis_url", str)
        read("log_level", str)
        read("hidden_layers", lambda raw: tuple(int(part) for part in raw.split(",") if part.strip()))

        values.update(overrides)
        return cls(**values)
