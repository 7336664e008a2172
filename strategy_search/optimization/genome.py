# strategy_search/optimization/genome.py
"""
Parameter space, genomes and the genetic operators that act on them.

The space is fixed at startup from an ordered table of ``ParameterSpec``. A
genome stores its values as a tuple in table order; ``ParameterSpace.index``
maps names to positions once.

Every operator returns values on the grid ``min + k * step`` inside
``[min, max]``, with the weight subset renormalized to sum to 1.
"""

from __future__ import annotations

import math
import random
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from strategy_search.errors import ConfigurationError

_ROUND = 10
_WEIGHT_TOL = 1e-9

WEIGHT_PARAMS: Tuple[str, ...] = (
    "technical_weight",
    "momentum_weight",
    "volatility_weight",
    "volume_weight",
    "sentiment_weight",
    "pattern_weight",
    "breadth_weight",
    "correlation_weight",
)


# ----------------------------- Specs & space ------------------------------

@dataclass(frozen=True)
class ParameterSpec:
    name: str
    min: float
    max: float
    step: float
    integer: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("ParameterSpec requires a name")
        if not all(math.isfinite(float(v)) for v in (self.min, self.max, self.step)):
            raise ConfigurationError(f"{self.name}: bounds and step must be finite")
        if self.min > self.max:
            raise ConfigurationError(f"{self.name}: min {self.min} > max {self.max}")
        if self.step <= 0:
            raise ConfigurationError(f"{self.name}: step must be > 0 (got {self.step})")
        if self.integer and any(float(v) != int(v) for v in (self.min, self.max, self.step)):
            raise ConfigurationError(f"{self.name}: integer parameter needs integral bounds and step")

    @property
    def steps(self) -> int:
        """Largest k with min + k*step <= max."""
        return int(math.floor((self.max - self.min) / self.step + 1e-9))

    @property
    def span(self) -> float:
        return float(self.max - self.min)

    def value_at(self, k: int) -> float:
        k = min(max(int(k), 0), self.steps)
        v = round(self.min + k * self.step, _ROUND)
        return float(int(round(v))) if self.integer else v

    def grid_index(self, value: float) -> int:
        return min(max(int(round((float(value) - self.min) / self.step)), 0), self.steps)

    def quantize(self, value: float) -> float:
        """Clamp into range and snap to the nearest grid point."""
        return self.value_at(self.grid_index(value))

    def on_grid(self, value: float) -> bool:
        if value < self.min - 1e-9 or value > self.max + 1e-9:
            return False
        k = (value - self.min) / self.step
        return abs(k - round(k)) < 1e-6


# Position sizing, risk, entry gates, signal weights, then indicator periods.
DEFAULT_PARAMETER_SPECS: Tuple[ParameterSpec, ...] = (
    ParameterSpec("max_position_pct", 0.02, 0.15, 0.01),
    ParameterSpec("max_positions", 5, 30, 1, integer=True),
    ParameterSpec("atr_mult_stop", 0.5, 3.0, 0.1),
    ParameterSpec("atr_mult_target", 1.5, 6.0, 0.25),
    ParameterSpec("buy_threshold", 0.05, 0.25, 0.01),
    ParameterSpec("confidence_min", 0.15, 0.45, 0.02),
    ParameterSpec("technical_weight", 0.05, 0.35, 0.02),
    ParameterSpec("momentum_weight", 0.05, 0.35, 0.02),
    ParameterSpec("volatility_weight", 0.02, 0.20, 0.02),
    ParameterSpec("volume_weight", 0.05, 0.25, 0.02),
    ParameterSpec("sentiment_weight", 0.05, 0.25, 0.02),
    ParameterSpec("pattern_weight", 0.02, 0.20, 0.02),
    ParameterSpec("breadth_weight", 0.02, 0.15, 0.02),
    ParameterSpec("correlation_weight", 0.02, 0.20, 0.02),
    ParameterSpec("rsi_period", 7, 21, 1, integer=True),
    ParameterSpec("rsi_oversold", 20, 40, 2, integer=True),
    ParameterSpec("rsi_overbought", 60, 80, 2, integer=True),
    ParameterSpec("macd_fast", 8, 16, 1, integer=True),
    ParameterSpec("macd_slow", 20, 32, 2, integer=True),
    ParameterSpec("macd_signal", 6, 12, 1, integer=True),
    ParameterSpec("bb_period", 15, 25, 1, integer=True),
    ParameterSpec("bb_std_dev", 1.5, 2.5, 0.1),
    ParameterSpec("atr_period", 10, 20, 1, integer=True),
    ParameterSpec("sma_short", 5, 15, 1, integer=True),
    ParameterSpec("sma_medium", 20, 50, 5, integer=True),
    ParameterSpec("regime_lookback", 20, 60, 5, integer=True),
    ParameterSpec("momentum_short", 3, 10, 1, integer=True),
    ParameterSpec("momentum_medium", 15, 30, 5, integer=True),
)


class ParameterSpace:
    """Ordered, immutable parameter table with a name -> position lookup."""

    def __init__(
        self,
        specs: Sequence[ParameterSpec] = DEFAULT_PARAMETER_SPECS,
        weight_params: Sequence[str] = WEIGHT_PARAMS,
    ) -> None:
        self.specs: Tuple[ParameterSpec, ...] = tuple(specs)
        if not self.specs:
            raise ConfigurationError("Parameter space is empty")
        self.names: Tuple[str, ...] = tuple(s.name for s in self.specs)
        if len(set(self.names)) != len(self.names):
            raise ConfigurationError("Duplicate parameter names in space")
        self._index: Dict[str, int] = {n: i for i, n in enumerate(self.names)}

        missing = [w for w in weight_params if w not in self._index]
        if missing:
            raise ConfigurationError(f"Weight parameters not in space: {missing}")
        self.weight_names: Tuple[str, ...] = tuple(weight_params)
        self.weight_indices: Tuple[int, ...] = tuple(self._index[w] for w in weight_params)
        if self.weight_indices:
            lo = sum(self.specs[i].min for i in self.weight_indices)
            hi = sum(self.specs[i].value_at(self.specs[i].steps) for i in self.weight_indices)
            if lo > 1.0 + 1e-9 or hi < 1.0 - 1e-9:
                raise ConfigurationError(
                    f"Weight ranges cannot sum to 1 (min total {lo:.4f}, max total {hi:.4f})"
                )

    def __len__(self) -> int:
        return len(self.specs)

    def index(self, name: str) -> int:
        return self._index[name]

    def spec(self, name: str) -> ParameterSpec:
        return self.specs[self._index[name]]

    def to_dict(self, genes: Sequence[float]) -> Dict[str, float]:
        return {n: genes[i] for i, n in enumerate(self.names)}

    def from_mapping(self, values: Mapping[str, float]) -> Tuple[float, ...]:
        """Quantized gene tuple from a name mapping; missing names take the grid midpoint."""
        out: List[float] = []
        for s in self.specs:
            raw = values.get(s.name)
            out.append(s.quantize(raw) if raw is not None else s.value_at(s.steps // 2))
        return self.normalize_weights(out)

    # ---- weights ----

    def normalize_weights(self, genes: Sequence[float]) -> Tuple[float, ...]:
        """
        Rescale the weight subset to sum to 1 while keeping every weight on its grid.

        Proportional targets are snapped to the grid, then single-step moves close
        the remaining gap (largest shortfall/excess first).
        """
        values = list(genes)
        idxs = self.weight_indices
        if not idxs:
            return tuple(values)
        specs = [self.specs[i] for i in idxs]
        current = [max(0.0, float(values[i])) for i in idxs]
        total = sum(current)
        targets = [c / total for c in current] if total > 0 else [1.0 / len(idxs)] * len(idxs)
        ks = [s.grid_index(t) for s, t in zip(specs, targets)]

        for _ in range(sum(s.steps for s in specs) + len(specs)):
            vals = [s.value_at(k) for s, k in zip(specs, ks)]
            residual = 1.0 - sum(vals)
            if abs(residual) <= _WEIGHT_TOL:
                break
            direction = 1 if residual > 0 else -1
            best: Optional[Tuple[float, float, int]] = None
            for j, s in enumerate(specs):
                k_new = ks[j] + direction
                if k_new < 0 or k_new > s.steps:
                    continue
                after = abs(residual - direction * s.step)
                if after >= abs(residual) - _WEIGHT_TOL:
                    continue
                # prefer the move that leaves the smallest gap, then the weight furthest from its target
                key = (after, -direction * (targets[j] - vals[j]), j)
                if best is None or key < best:
                    best = key
            if best is None:
                break
            ks[best[2]] += direction

        for i, s, k in zip(idxs, specs, ks):
            values[i] = s.value_at(k)
        return tuple(values)

    def weight_sum(self, genes: Sequence[float]) -> float:
        return float(sum(genes[i] for i in self.weight_indices))

    # ---- validation / sampling ----

    def is_valid(self, genes: Sequence[float]) -> bool:
        if len(genes) != len(self.specs):
            return False
        if not all(s.on_grid(v) for s, v in zip(self.specs, genes)):
            return False
        if self.weight_indices and abs(self.weight_sum(genes) - 1.0) > 1e-6:
            return False
        return True

    def random_genes(self, rng: Optional[random.Random] = None) -> Tuple[float, ...]:
        r = rng or random
        return self.normalize_weights([s.value_at(r.randint(0, s.steps)) for s in self.specs])


# ------------------------------- Genomes ----------------------------------

@dataclass(frozen=True)
class GenomeMetrics:
    sharpe: float = 0.0
    sortino: float = 0.0
    calmar: float = 0.0
    win_rate: float = 0.0
    total_return: float = 0.0
    max_drawdown: float = 0.0
    trades: int = 0


@dataclass
class Genome:
    id: str
    genes: Tuple[float, ...]
    generation: int = 0
    island: int = 0
    parent_ids: Tuple[str, ...] = ()
    mutations: Tuple[str, ...] = ()
    fitness: float = 0.0
    evaluated: bool = False
    metrics: GenomeMetrics = field(default_factory=GenomeMetrics)
    regime: str = "unknown"
    evaluation_time: float = 0.0

    def carry(self, **changes: Any) -> "Genome":
        """Copy with the given fields replaced (elites, migrants)."""
        return replace(self, **changes)

    def to_dict(self, space: Optional[ParameterSpace] = None) -> Dict[str, Any]:
        genes: Any = space.to_dict(self.genes) if space is not None else list(self.genes)
        return {
            "id": self.id,
            "genes": genes,
            "fitness": self.fitness if math.isfinite(self.fitness) else None,
            "evaluated": self.evaluated,
            "metrics": {k: (v if math.isfinite(v) else None) for k, v in asdict(self.metrics).items()},
            "generation": self.generation,
            "island": self.island,
            "parent_ids": list(self.parent_ids),
            "mutations": list(self.mutations),
            "regime": self.regime,
            "evaluation_time": self.evaluation_time,
        }


def new_genome_id(generation: int, island: int, rng: Optional[random.Random] = None) -> str:
    r = rng or random
    return f"g{generation}-i{island}-{r.getrandbits(32):08x}"


# ------------------------------ Operators ---------------------------------

def random_genome(
    space: ParameterSpace,
    generation: int,
    island: int,
    rng: Optional[random.Random] = None,
) -> Genome:
    return Genome(
        id=new_genome_id(generation, island, rng),
        genes=space.random_genes(rng),
        generation=generation,
        island=island,
    )


def crossover(
    parent1: Genome,
    parent2: Genome,
    space: ParameterSpace,
    generation: int,
    island: int,
    rng: Optional[random.Random] = None,
    take_probability: float = 0.35,
) -> Genome:
    """
    Per parameter: parent 1's value with ``take_probability``, parent 2's with the
    same probability, otherwise a random blend a*p1 + (1-a)*p2 snapped to the grid.
    """
    r = rng or random
    child: List[float] = []
    for i, s in enumerate(space.specs):
        roll = r.random()
        if roll < take_probability:
            child.append(parent1.genes[i])
        elif roll < 2 * take_probability:
            child.append(parent2.genes[i])
        else:
            alpha = r.random()
            child.append(s.quantize(alpha * parent1.genes[i] + (1.0 - alpha) * parent2.genes[i]))
    return Genome(
        id=new_genome_id(generation, island, r),
        genes=space.normalize_weights(child),
        generation=generation,
        island=island,
        parent_ids=(parent1.id, parent2.id),
    )


def mutate(
    genome: Genome,
    space: ParameterSpace,
    rate: float,
    generation: int,
    island: int,
    rng: Optional[random.Random] = None,
    suggestions: Optional[Mapping[str, float]] = None,
    guided_probability: float = 0.3,
    sigma_fraction: float = 0.2,
) -> Genome:
    """
    Each parameter mutates with probability ``rate``: a guided suggestion (when one
    exists) with ``guided_probability``, else gaussian noise with sigma =
    ``sigma_fraction`` of the parameter's range.
    """
    r = rng or random
    suggestions = suggestions or {}
    genes = list(genome.genes)
    changed: List[str] = []
    for i, s in enumerate(space.specs):
        if r.random() >= rate:
            continue
        if s.name in suggestions and r.random() < guided_probability:
            genes[i] = s.quantize(suggestions[s.name])
            changed.append(f"{s.name}:guided")
            continue
        new_val = s.quantize(genes[i] + r.gauss(0.0, max(1e-12, s.span * sigma_fraction)))
        if new_val != genes[i]:
            changed.append(s.name)
        genes[i] = new_val
    return Genome(
        id=new_genome_id(generation, island, r),
        genes=space.normalize_weights(genes),
        generation=generation,
        island=island,
        parent_ids=(genome.id,),
        mutations=tuple(changed),
    )


def tournament_select(
    population: Sequence[Genome],
    tournament_size: int,
    rng: Optional[random.Random] = None,
) -> Genome:
    """Sample ``tournament_size`` genomes with replacement; the fittest wins (first seen on ties)."""
    if not population:
        raise ValueError("Tournament selection requires a non-empty population")
    r = rng or random
    best: Optional[Genome] = None
    for _ in range(max(1, tournament_size)):
        candidate = population[r.randrange(len(population))]
        if best is None or candidate.fitness > best.fitness:
            best = candidate
    return best  # type: ignore[return-value]


def population_diversity(genomes: Sequence[Genome]) -> float:
    """Fraction of structurally unique gene sets."""
    if not genomes:
        return 0.0
    return len({g.genes for g in genomes}) / len(genomes)


__all__ = [
    "WEIGHT_PARAMS",
    "ParameterSpec",
    "DEFAULT_PARAMETER_SPECS",
    "ParameterSpace",
    "GenomeMetrics",
    "Genome",
    "new_genome_id",
    "random_genome",
    "crossover",
    "mutate",
    "tournament_select",
    "population_diversity",
]
