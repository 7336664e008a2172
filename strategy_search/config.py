# strategy_search/config.py
"""
Run configuration for the island-model hyperoptimizer.

Knobs live on a typed dataclass (``OptimizerConfig``); a JSON file can override
any subset of them. Loading is forgiving (missing/malformed files fall back to
defaults with a warning) while ``validate()`` is strict: anything that would make
the search meaningless raises ``ConfigurationError`` before generation 0.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from strategy_search.errors import ConfigurationError

logger = logging.getLogger("strategy_search.config")

DEFAULT_CONFIG_PATH = "storage/config/hyperopt.json"

ExecutorKind = Literal["thread", "process", "serial"]
_EXECUTORS = {"thread", "process", "serial"}


@dataclass(frozen=True)
class RegimeThresholds:
    """Cut-offs for the trailing-window regime classifier."""

    trend_momentum: float = 0.10
    trend_volatility: float = 0.25
    high_volatility: float = 0.30
    ranging_momentum: float = 0.03
    # bars of history required beyond the lookback before a label is assigned
    min_extra_history: int = 50


@dataclass
class OptimizerConfig:
    """Typed configuration for the island search."""

    total_iterations: int = 15000
    population_size: int = 200
    num_islands: int = 5
    batch_size: int = 50
    workers: int = 10
    executor: ExecutorKind = "thread"

    elite_count: int = 20
    mutation_rate_initial: float = 0.15
    crossover_rate: float = 0.7
    tournament_size: int = 5

    migration_interval: int = 20
    migration_count: int = 3

    convergence_threshold: float = 0.0005
    convergence_min_generation: int = 100
    diversity_injection_threshold: float = 0.05
    diversity_injection_count: int = 5
    diversity_min_generation: int = 20

    checkpoint_interval: int = 500
    progress_report_interval: int = 10

    start_idx: int = 60
    initial_capital: float = 100_000.0
    reference_symbol: str = "SPY"
    min_bars: int = 100
    max_runtime_sec: Optional[float] = None
    holdout_fraction: float = 0.0
    seed: Optional[int] = None

    regime: RegimeThresholds = field(default_factory=RegimeThresholds)

    # ---- derived values ----

    @property
    def island_size(self) -> int:
        return self.population_size // self.num_islands

    @property
    def elites_per_island(self) -> int:
        return int(math.ceil(self.elite_count / self.num_islands))

    @property
    def max_generations(self) -> int:
        return int(math.ceil(self.total_iterations / self.population_size))

    def validate(self) -> "OptimizerConfig":
        def _positive(name: str) -> None:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0 (got {getattr(self, name)!r})")

        for name in (
            "total_iterations",
            "population_size",
            "num_islands",
            "batch_size",
            "workers",
            "migration_interval",
            "checkpoint_interval",
            "progress_report_interval",
            "initial_capital",
        ):
            _positive(name)

        if self.population_size < self.num_islands:
            raise ConfigurationError(
                f"population_size ({self.population_size}) must be >= num_islands ({self.num_islands})"
            )
        for name in ("mutation_rate_initial", "crossover_rate", "diversity_injection_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1] (got {value!r})")
        if self.tournament_size < 1:
            raise ConfigurationError("tournament_size must be >= 1")
        if self.elite_count < 0 or self.elites_per_island >= self.island_size:
            raise ConfigurationError(
                f"elite_count={self.elite_count} leaves no room to breed in islands of {self.island_size}"
            )
        if self.migration_count < 0 or self.migration_count >= self.island_size:
            raise ConfigurationError(
                f"migration_count={self.migration_count} must be < island size {self.island_size}"
            )
        if self.diversity_injection_count < 0 or self.diversity_injection_count > self.island_size:
            raise ConfigurationError("diversity_injection_count must be within [0, island size]")
        if self.executor not in _EXECUTORS:
            raise ConfigurationError(f"executor must be one of {sorted(_EXECUTORS)} (got {self.executor!r})")
        if not 0.0 <= self.holdout_fraction < 0.5:
            raise ConfigurationError("holdout_fraction must be within [0, 0.5)")
        if self.start_idx < 0 or self.min_bars <= 0:
            raise ConfigurationError("start_idx must be >= 0 and min_bars > 0")
        if self.max_runtime_sec is not None and self.max_runtime_sec <= 0:
            raise ConfigurationError("max_runtime_sec must be positive when set")
        return self

    def to_log_payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data["island_size"] = self.island_size
        data["elites_per_island"] = self.elites_per_island
        data["max_generations"] = self.max_generations
        return data


# ---- coercion / loading ---------------------------------------------------

_BOOL_TRUE = {"1", "true", "yes", "on"}


def _coerce_value(name: str, value: Any, default: Any) -> Any:
    if value is None:
        return None
    if isinstance(default, bool):
        return value if isinstance(value, bool) else str(value).strip().lower() in _BOOL_TRUE
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, str):
        return str(value)
    if name in ("max_runtime_sec",):
        return float(value)
    if name in ("seed",):
        return int(value)
    return value


def _coerce_regime(value: Any) -> RegimeThresholds:
    if isinstance(value, RegimeThresholds):
        return value
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"regime must be a mapping (got {type(value).__name__})")
    known = {f.name: f for f in fields(RegimeThresholds)}
    kwargs: Dict[str, Any] = {}
    for key, raw in value.items():
        if key not in known:
            logger.warning("Ignoring unknown regime threshold %r", key)
            continue
        kwargs[key] = int(raw) if key == "min_extra_history" else float(raw)
    return RegimeThresholds(**kwargs)


def coerce_optimizer_config(config: Optional[Any]) -> OptimizerConfig:
    """Build an ``OptimizerConfig`` from a dataclass, a mapping or ``None``."""
    if config is None:
        return OptimizerConfig()
    if isinstance(config, OptimizerConfig):
        return config
    if not isinstance(config, Mapping):
        raise ConfigurationError(f"Unsupported config type: {type(config)!r}")

    defaults = OptimizerConfig()
    kwargs: Dict[str, Any] = {}
    for key, raw in config.items():
        if key not in OptimizerConfig.__dataclass_fields__:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        if key == "regime":
            kwargs[key] = _coerce_regime(raw)
            continue
        try:
            kwargs[key] = _coerce_value(key, raw, getattr(defaults, key))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid value for {key}: {raw!r}") from exc
    return OptimizerConfig(**kwargs)


def load_optimizer_config(path: Optional[str | Path] = None) -> OptimizerConfig:
    """
    Load an ``OptimizerConfig`` from JSON. Missing or malformed files yield defaults.
    Default location: storage/config/hyperopt.json
    """
    p = Path(path or DEFAULT_CONFIG_PATH)
    if not p.exists():
        logger.info("No optimizer config at %s; using defaults", p)
        return OptimizerConfig()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read optimizer config %s (%s); using defaults", p, exc)
        return OptimizerConfig()
    if not isinstance(data, dict):
        logger.warning("Optimizer config %s is not a JSON object; using defaults", p)
        return OptimizerConfig()
    return coerce_optimizer_config(data)


__all__ = [
    "OptimizerConfig",
    "RegimeThresholds",
    "coerce_optimizer_config",
    "load_optimizer_config",
]
