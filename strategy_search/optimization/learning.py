# strategy_search/optimization/learning.py
"""
Population statistics that steer mutation.

After each generation the engine compares the top and bottom deciles (by
fitness) parameter by parameter. The normalized gap ``(top mean - bottom mean)
/ population mean`` is kept per parameter; strong gaps become insights and
guided-mutation nudges. Average fitness per generation drives the adaptive
mutation rate and the convergence test.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from strategy_search.optimization.genome import Genome, ParameterSpace

INSIGHT_THRESHOLD = 0.15
GUIDE_THRESHOLD = 0.2
GUIDE_STEPS = 2
HISTORY_WINDOW = 10
CONVERGENCE_WINDOW = 30
MAX_INSIGHTS = 50


@dataclass(frozen=True)
class LearningInsight:
    pattern: str
    parameter: str
    correlation: float
    sample_size: int
    avg_improvement: float
    confidence: float
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "parameter": self.parameter,
            "correlation": self.correlation,
            "sample_size": self.sample_size,
            "avg_improvement": self.avg_improvement if math.isfinite(self.avg_improvement) else None,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
        }


class LearningEngine:
    """Owned by one optimizer run; state lives only as long as the run."""

    def __init__(
        self,
        space: ParameterSpace,
        initial_mutation_rate: float = 0.15,
        convergence_threshold: float = 0.0005,
    ) -> None:
        self.space = space
        self.initial_mutation_rate = float(initial_mutation_rate)
        self.convergence_threshold = float(convergence_threshold)
        self.correlations: Dict[str, float] = {}
        self.fitness_history: List[float] = []
        self.best_by_regime: Dict[str, Genome] = {}
        self._insights: List[LearningInsight] = []

    # ---- per-generation analysis ----

    def analyze_population(self, population: Sequence[Genome]) -> List[LearningInsight]:
        if not population:
            return []
        ranked = sorted(population, key=lambda g: g.fitness, reverse=True)
        decile = max(1, math.ceil(len(ranked) * 0.1))
        top = ranked[:decile]
        bottom = ranked[-decile:]
        now = datetime.now(timezone.utc).isoformat()

        new: List[LearningInsight] = []
        for i, name in enumerate(self.space.names):
            top_avg = sum(g.genes[i] for g in top) / len(top)
            bottom_avg = sum(g.genes[i] for g in bottom) / len(bottom)
            all_avg = sum(g.genes[i] for g in ranked) / len(ranked)
            corr = (top_avg - bottom_avg) / all_avg if all_avg != 0 else 0.0
            self.correlations[name] = corr
            if abs(corr) > INSIGHT_THRESHOLD:
                new.append(LearningInsight(
                    pattern=f"{name} {'higher' if corr > 0 else 'lower'} in top performers",
                    parameter=name,
                    correlation=corr,
                    sample_size=len(top),
                    avg_improvement=top[0].fitness - bottom[-1].fitness,
                    confidence=min(1.0, abs(corr) * len(top) / 20),
                    timestamp=now,
                ))

        for genome in top:
            regime = genome.regime or "unknown"
            current = self.best_by_regime.get(regime)
            if current is None or genome.fitness > current.fitness:
                self.best_by_regime[regime] = genome

        self._insights.extend(new)
        if len(self._insights) > MAX_INSIGHTS * 4:
            self._insights = self._insights[-MAX_INSIGHTS:]
        return new

    def insights(self) -> List[LearningInsight]:
        return self._insights[-MAX_INSIGHTS:]

    # ---- mutation control ----

    def record_generation(self, avg_fitness: float) -> None:
        self.fitness_history.append(float(avg_fitness))

    def adaptive_mutation_rate(self, avg_fitness: Optional[float] = None) -> float:
        """
        Rate for the next breeding pass (records ``avg_fitness`` first when given).

        Stalled progress over the last 10 generations raises the rate (2.5x, max
        0.4); fast progress (> 5%) lowers it (0.6x, min 0.06).
        """
        if avg_fitness is not None:
            self.record_generation(avg_fitness)
        base = self.initial_mutation_rate
        if len(self.fitness_history) < HISTORY_WINDOW:
            return base
        recent = self.fitness_history[-HISTORY_WINDOW:]
        improvement = (recent[-1] - recent[0]) / abs(recent[0] or 1.0)
        if abs(improvement) < self.convergence_threshold:
            return min(base * 2.5, 0.4)
        if improvement > 0.05:
            return max(base * 0.6, 0.06)
        return base

    def suggest_guided_mutation(self, genome: Genome) -> Dict[str, float]:
        """Two-step nudges toward the top decile for strongly separated parameters."""
        out: Dict[str, float] = {}
        for name, corr in self.correlations.items():
            if abs(corr) <= GUIDE_THRESHOLD:
                continue
            spec = self.space.spec(name)
            direction = 1 if corr > 0 else -1
            current = genome.genes[self.space.index(name)]
            out[name] = spec.quantize(current + direction * GUIDE_STEPS * spec.step)
        return out

    def is_converged(self) -> bool:
        if len(self.fitness_history) < CONVERGENCE_WINDOW:
            return False
        recent = self.fitness_history[-CONVERGENCE_WINDOW:]
        return float(np.var(recent)) < self.convergence_threshold

    # ---- reporting ----

    def best_by_regime_dict(self) -> Dict[str, Dict[str, Any]]:
        return {k: g.to_dict(self.space) for k, g in self.best_by_regime.items()}


__all__ = ["LearningInsight", "LearningEngine"]
