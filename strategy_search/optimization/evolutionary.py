# strategy_search/optimization/evolutionary.py
"""
Island-model genetic search over strategy parameters.

Per generation:
- Evaluate every genome not yet scored (batched, possibly parallel); failures get
  the sentinel fitness instead of stopping the run
- Each improvement over the global best goes to the judge; only non-SUSPICIOUS
  results are accepted
- Diversity guard: after ``diversity_min_generation``, a population whose share of
  unique gene sets drops below the threshold has the worst genomes of each island
  replaced by fresh random ones
- Learning analysis, adaptive mutation rate, progress report
- Stop on convergence (after ``convergence_min_generation``), on the wall-clock
  budget or when the generation budget is spent
- Breed each island (elites carried unchanged, then crossover/mutation children);
  every ``migration_interval`` generations the islands exchange elites in a ring;
  every ``checkpoint_interval`` generations a snapshot is written

Only the generation loop writes genome fitness and the global best; workers
return ``EvaluationOutcome`` records.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from strategy_search.backtest.results import BacktestResult
from strategy_search.config import OptimizerConfig, coerce_optimizer_config
from strategy_search.data.market import MarketData
from strategy_search.optimization import evaluation as E
from strategy_search.optimization.fitness import FAILED_EVALUATION_FITNESS
from strategy_search.optimization.genome import (
    Genome,
    GenomeMetrics,
    ParameterSpace,
    crossover,
    mutate,
    population_diversity,
    random_genome,
    tournament_select,
)
from strategy_search.optimization.judge import Judge, JudgeVerdict
from strategy_search.optimization.learning import LearningEngine
from strategy_search.utils.checkpoints import build_snapshot, json_safe, write_json_atomic
from strategy_search.utils.progress import ProgressCallback, noop_progress
from strategy_search.utils.run_logger import NullRunLogger, RunLogger

logger = logging.getLogger("optimization.evolutionary")

MUTATION_ONLY_BOOST = 1.5


@dataclass
class OptimizationState:
    generation: int = 0
    total_evaluations: int = 0
    islands: List[List[Genome]] = field(default_factory=list)
    global_best: Optional[Genome] = None
    global_best_result: Optional[BacktestResult] = None
    global_best_verdict: Optional[JudgeVerdict] = None
    mutation_rate: float = 0.0
    start_time: float = field(default_factory=time.time)
    stop_reason: Optional[str] = None

    def population(self) -> List[Genome]:
        return [g for island in self.islands for g in island]

    def elapsed(self) -> float:
        return max(0.0, time.time() - self.start_time)

    def evaluation_rate(self) -> float:
        elapsed = self.elapsed()
        return self.total_evaluations / elapsed if elapsed > 0 else 0.0


def _rank_key(genome: Genome) -> Tuple[bool, float]:
    # unscored genomes sort below every scored one
    return (genome.evaluated, genome.fitness)


def rank_island(island: Sequence[Genome]) -> List[Genome]:
    """Best first; ties keep their current order."""
    return sorted(island, key=_rank_key, reverse=True)


def metrics_from_result(result: BacktestResult) -> GenomeMetrics:
    return GenomeMetrics(
        sharpe=result.sharpe,
        sortino=result.sortino,
        calmar=result.calmar,
        win_rate=result.win_rate,
        total_return=result.total_return,
        max_drawdown=result.max_drawdown,
        trades=result.trades,
    )


# ------------------------- Outcome application ---------------------------

def apply_outcome(
    state: OptimizationState,
    genome: Genome,
    outcome: E.EvaluationOutcome,
    judge: Judge,
    run_logger: RunLogger,
) -> Genome:
    """Write an evaluation outcome onto its genome and run the global-best gate."""
    if not outcome.ok or outcome.result is None:
        failure = outcome.failure.to_dict() if outcome.failure else {"genome_id": genome.id}
        run_logger.log(
            "evaluation_failed",
            {"generation": state.generation, "island": genome.island, **failure},
        )
        return genome.carry(
            fitness=FAILED_EVALUATION_FITNESS,
            evaluated=True,
            evaluation_time=outcome.duration,
        )

    result = outcome.result
    scored = genome.carry(
        fitness=float(outcome.fitness),
        evaluated=True,
        metrics=metrics_from_result(result),
        regime=outcome.regime,
        evaluation_time=outcome.duration,
    )

    best = state.global_best
    if best is None or scored.fitness > best.fitness:
        verdict = judge.evaluate(result)
        if verdict.accepted:
            state.global_best = scored
            state.global_best_result = result
            state.global_best_verdict = verdict
            run_logger.log(
                "new_global_best",
                {
                    "generation": state.generation,
                    "genome_id": scored.id,
                    "island": scored.island,
                    "fitness": scored.fitness,
                    "verdict": verdict.verdict.value,
                    "judge_score": verdict.score,
                    "metrics": result.summary(),
                },
            )
            for warning in verdict.warnings:
                logger.warning("Global best %s: %s", scored.id, warning)
        else:
            run_logger.log(
                "global_best_rejected",
                {
                    "generation": state.generation,
                    "genome_id": scored.id,
                    "fitness": scored.fitness,
                    "verdict": verdict.verdict.value,
                    "warnings": list(verdict.warnings),
                },
            )
    return scored


# ------------------------------ Operators --------------------------------

def breed_island(
    island: Sequence[Genome],
    space: ParameterSpace,
    config: OptimizerConfig,
    mutation_rate: float,
    generation: int,
    island_idx: int,
    rng: random.Random,
    learning: Optional[LearningEngine] = None,
) -> List[Genome]:
    """Next population for one island: elites unchanged, then bred children."""
    ranked = rank_island(island)
    size = len(ranked)
    next_pop: List[Genome] = ranked[: min(config.elites_per_island, size)]

    def suggestions(g: Genome) -> Dict[str, float]:
        return learning.suggest_guided_mutation(g) if learning is not None else {}

    while len(next_pop) < size:
        if rng.random() < config.crossover_rate:
            p1 = tournament_select(ranked, config.tournament_size, rng)
            p2 = tournament_select(ranked, config.tournament_size, rng)
            child = crossover(p1, p2, space, generation, island_idx, rng)
            if rng.random() < mutation_rate:
                mutated = mutate(child, space, mutation_rate, generation, island_idx, rng, suggestions(child))
                child = mutated.carry(parent_ids=child.parent_ids)
        else:
            parent = tournament_select(ranked, config.tournament_size, rng)
            rate = min(1.0, mutation_rate * MUTATION_ONLY_BOOST)
            child = mutate(parent, space, rate, generation, island_idx, rng, suggestions(parent))
        next_pop.append(child)
    return next_pop


def migrate(
    islands: Sequence[Sequence[Genome]],
    count: int,
) -> Tuple[List[List[Genome]], List[Dict[str, Any]]]:
    """
    Ring migration: island i sends copies of its top ``count`` to island i+1.

    All migrant sets are taken before any island changes. Each target drops its
    ``count`` worst residents (never an arriving migrant), so sizes stay fixed.
    """
    n = len(islands)
    if n < 2 or count <= 0:
        return [list(isl) for isl in islands], []

    outgoing = [rank_island(isl)[:count] for isl in islands]
    new_islands: List[List[Genome]] = []
    moves: List[Dict[str, Any]] = []
    for target in range(n):
        source = (target - 1) % n
        arrivals = [g.carry(island=target) for g in outgoing[source]]
        residents = rank_island(islands[target])
        keep = residents[: max(0, len(residents) - len(arrivals))]
        new_islands.append(keep + arrivals)
        moves.append({
            "source": source,
            "target": target,
            "migrants": [g.id for g in arrivals],
            "dropped": [g.id for g in residents[len(keep):]],
        })
    return new_islands, moves


def inject_diversity(
    islands: Sequence[Sequence[Genome]],
    space: ParameterSpace,
    count: int,
    generation: int,
    rng: random.Random,
) -> List[List[Genome]]:
    """Replace each island's ``count`` worst genomes (keeping at least its best) with random ones."""
    out: List[List[Genome]] = []
    for idx, island in enumerate(islands):
        k = min(count, len(island) - 1)
        ranked = rank_island(island)
        if k <= 0:
            out.append(ranked)
            continue
        fresh = [random_genome(space, generation, idx, rng) for _ in range(k)]
        out.append(ranked[: len(ranked) - k] + fresh)
    return out


# ------------------------------ Optimizer --------------------------------

class IslandOptimizer:
    """Owns one run: config, judge, learning engine and state."""

    def __init__(
        self,
        market: MarketData,
        config: Optional[Any] = None,
        space: Optional[ParameterSpace] = None,
        *,
        run_logger: Optional[RunLogger] = None,
        progress_cb: Optional[ProgressCallback] = None,
        checkpoint_path: Optional[str | Path] = None,
        rng: Optional[random.Random] = None,
        judge: Optional[Judge] = None,
    ) -> None:
        self.config = coerce_optimizer_config(config).validate()
        cfg = self.config
        self.market = market
        self.space = space or ParameterSpace()
        self.rng = rng or random.Random(cfg.seed)
        self.judge = judge or Judge()
        self.learning = LearningEngine(self.space, cfg.mutation_rate_initial, cfg.convergence_threshold)
        self.run_logger = run_logger or NullRunLogger()
        self.progress_cb = progress_cb or noop_progress
        self.checkpoint_path = Path(checkpoint_path) if checkpoint_path else None
        self.state = OptimizationState(mutation_rate=cfg.mutation_rate_initial)

        self.end_idx = len(market)
        self.split_idx = self.end_idx
        if cfg.holdout_fraction > 0:
            span = max(0, self.end_idx - cfg.start_idx)
            self.split_idx = cfg.start_idx + int(round(span * (1.0 - cfg.holdout_fraction)))
        if self.split_idx <= cfg.start_idx:
            logger.warning(
                "History of %d bars leaves no search window after start_idx=%d; every evaluation will be empty",
                self.end_idx, cfg.start_idx,
            )
        self.context = E.EvaluationContext(
            market=market,
            space=self.space,
            start_idx=cfg.start_idx,
            end_idx=self.split_idx,
            initial_capital=cfg.initial_capital,
            regime_thresholds=cfg.regime,
        )

    # ---- population plumbing ----

    def initial_islands(self) -> List[List[Genome]]:
        cfg = self.config
        return [
            [random_genome(self.space, 0, idx, self.rng) for _ in range(cfg.island_size)]
            for idx in range(cfg.num_islands)
        ]

    def evaluate_pending(self, evaluator: E.BatchEvaluator) -> int:
        """Score every unevaluated genome in place; returns how many were evaluated."""
        state = self.state
        slots = [
            (i, j)
            for i, island in enumerate(state.islands)
            for j, g in enumerate(island)
            if not g.evaluated
        ]
        if not slots:
            return 0
        genomes = [state.islands[i][j] for i, j in slots]
        outcomes = evaluator.evaluate(genomes)
        before = state.global_best
        for (i, j), genome, outcome in zip(slots, genomes, outcomes):
            state.islands[i][j] = apply_outcome(state, genome, outcome, self.judge, self.run_logger)
        state.total_evaluations += len(genomes)
        if state.global_best is not before and state.global_best is not None:
            self.progress_cb("new_global_best", {
                "generation": state.generation,
                "fitness": state.global_best.fitness,
                "verdict": state.global_best_verdict.verdict.value if state.global_best_verdict else None,
            })
        return len(genomes)

    def maybe_inject_diversity(self, evaluator: E.BatchEvaluator) -> bool:
        cfg = self.config
        state = self.state
        diversity = population_diversity(state.population())
        if diversity >= cfg.diversity_injection_threshold or state.generation <= cfg.diversity_min_generation:
            return False
        state.islands = inject_diversity(
            state.islands, self.space, cfg.diversity_injection_count, state.generation, self.rng
        )
        logger.info("Diversity %.2f%% below threshold; injecting random genomes", diversity * 100)
        self.run_logger.log("diversity_injection", {
            "generation": state.generation,
            "diversity": diversity,
            "per_island": cfg.diversity_injection_count,
        })
        self.evaluate_pending(evaluator)
        return True

    def breed(self) -> None:
        state = self.state
        state.islands = [
            breed_island(
                island,
                self.space,
                self.config,
                state.mutation_rate,
                state.generation + 1,
                idx,
                self.rng,
                self.learning,
            )
            for idx, island in enumerate(state.islands)
        ]

    def maybe_migrate(self) -> bool:
        cfg = self.config
        gen = self.state.generation
        if not (gen > 0 and gen % cfg.migration_interval == 0):
            return False
        self.state.islands, moves = migrate(self.state.islands, cfg.migration_count)
        if moves:
            self.run_logger.log("migration", {"generation": gen, "moves": moves})
        return bool(moves)

    # ---- reporting ----

    def progress_payload(self, avg_fitness: float, diversity: float) -> Dict[str, Any]:
        state = self.state
        population = state.population()
        best = state.global_best.fitness if state.global_best is not None else (
            max(g.fitness for g in population) if population else 0.0
        )
        return {
            "generation": state.generation,
            "max_generations": self.config.max_generations,
            "best_fitness": best,
            "avg_fitness": avg_fitness,
            "evaluation_rate": state.evaluation_rate(),
            "diversity_pct": diversity * 100.0,
            "mutation_rate": state.mutation_rate,
            "total_evaluations": state.total_evaluations,
            "insights": [i.to_dict() for i in self.learning.insights()[-3:]],
        }

    def checkpoint(self) -> Dict[str, Any]:
        snapshot = build_snapshot(self.state, self.learning)
        if self.checkpoint_path is not None:
            path = self.checkpoint_path
            if path.suffix != ".json":
                path = path / f"checkpoint_gen{self.state.generation}.json"
            try:
                write_json_atomic(path, snapshot)
                logger.info("Checkpoint written to %s", path)
            except OSError as e:
                self.run_logger.log_error({"generation": self.state.generation, "path": str(path)}, e)
                return snapshot
        self.run_logger.log("checkpoint", {
            "generation": self.state.generation,
            "total_evaluations": self.state.total_evaluations,
            "path": str(self.checkpoint_path) if self.checkpoint_path else None,
        })
        return snapshot

    def evaluate_holdout(self) -> Optional[Dict[str, Any]]:
        """Re-run the global best on the held-out tail (reporting only)."""
        best = self.state.global_best
        if best is None or self.split_idx >= self.end_idx:
            return None
        ctx = replace(self.context, start_idx=self.split_idx, end_idx=self.end_idx)
        outcome = E.evaluate_genome(ctx, best)
        block: Dict[str, Any] = {"start_idx": self.split_idx, "end_idx": self.end_idx}
        if not outcome.ok or outcome.result is None:
            block["error"] = outcome.failure.to_dict() if outcome.failure else None
            return block
        verdict = Judge().evaluate(outcome.result)
        block.update({
            "fitness": outcome.fitness,
            "metrics": outcome.result.summary(),
            "verdict": verdict.to_dict(),
        })
        return block

    def build_results(self, holdout: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        state = self.state
        results = build_snapshot(state, self.learning)
        results["summary"] = {
            "total_evaluations": state.total_evaluations,
            "generations": state.generation + 1,
            "runtime_sec": state.elapsed(),
            "evaluation_rate": state.evaluation_rate(),
            "stop_reason": state.stop_reason,
        }
        results["global_best_fallback"] = False
        if state.global_best is None:
            # nothing passed the judge; report the least-bad evaluated genome, unjudged
            ranked = rank_island(state.population())
            if ranked:
                results["global_best"] = ranked[0].to_dict(self.space)
                results["global_best_fallback"] = True
        results["config"] = self.config.to_log_payload()
        results["holdout"] = holdout
        return json_safe(results)

    # ---- main loop ----

    def _stop_reason(self) -> Optional[str]:
        cfg = self.config
        gen = self.state.generation
        if self.learning.is_converged() and gen > cfg.convergence_min_generation:
            return "converged"
        if cfg.max_runtime_sec is not None and self.state.elapsed() >= cfg.max_runtime_sec:
            return "time_exhausted"
        if gen >= cfg.max_generations - 1:
            return "budget_exhausted"
        return None

    def run(self) -> Dict[str, Any]:
        cfg = self.config
        state = self.state
        state.start_time = time.time()
        self.run_logger.log("run_start", {
            "config": cfg.to_log_payload(),
            "parameters": list(self.space.names),
            "symbols": list(self.market.symbols),
            "search_window": [cfg.start_idx, self.split_idx],
            "holdout_window": [self.split_idx, self.end_idx] if self.split_idx < self.end_idx else None,
        })
        logger.info(
            "Island search: %d islands x %d genomes, up to %d generations, %d symbols",
            cfg.num_islands, cfg.island_size, cfg.max_generations, len(self.market.symbols),
        )
        state.islands = self.initial_islands()

        with E.BatchEvaluator(self.context, cfg.workers, cfg.batch_size, cfg.executor) as evaluator:
            while True:
                gen = state.generation
                self.evaluate_pending(evaluator)
                self.maybe_inject_diversity(evaluator)

                population = state.population()
                fitnesses = np.array([g.fitness for g in population], dtype=float)
                avg_fitness = float(fitnesses.mean()) if len(fitnesses) else 0.0
                diversity = population_diversity(population)
                self.learning.analyze_population(population)
                state.mutation_rate = self.learning.adaptive_mutation_rate(avg_fitness)

                self.run_logger.log("generation_end", {
                    "generation": gen,
                    "best_fitness": float(fitnesses.max()) if len(fitnesses) else None,
                    "avg_fitness": avg_fitness,
                    "diversity": diversity,
                    "mutation_rate": state.mutation_rate,
                    "total_evaluations": state.total_evaluations,
                    "global_best": state.global_best.id if state.global_best else None,
                })

                reason = self._stop_reason()
                if gen % cfg.progress_report_interval == 0 or reason is not None:
                    self.progress_cb("progress", self.progress_payload(avg_fitness, diversity))
                if reason is not None:
                    state.stop_reason = reason
                    event = "converged" if reason == "converged" else "budget_exhausted"
                    self.run_logger.log(event, {
                        "generation": gen,
                        "reason": reason,
                        "total_evaluations": state.total_evaluations,
                    })
                    break

                self.breed()
                self.maybe_migrate()
                if gen > 0 and gen % cfg.checkpoint_interval == 0:
                    self.checkpoint()
                state.generation += 1

        self.checkpoint()
        holdout = self.evaluate_holdout()
        results = self.build_results(holdout)
        if state.global_best is None:
            logger.warning(
                "No result passed the judge; reporting the top-ranked genome %s as an unjudged fallback",
                (results["global_best"] or {}).get("id"),
            )
        self.run_logger.log("done", {"summary": results["summary"], "global_best": results["global_best"]})
        self.progress_cb("done", results["summary"])
        return results


def run_island_search(
    market: MarketData,
    config: Optional[Any] = None,
    *,
    space: Optional[ParameterSpace] = None,
    log_file: Optional[str | Path] = None,
    progress_cb: Optional[ProgressCallback] = None,
    checkpoint_path: Optional[str | Path] = None,
    results_path: Optional[str | Path] = None,
) -> Dict[str, Any]:
    """Convenience wrapper: build an optimizer, run it, optionally persist the results."""
    optimizer = IslandOptimizer(
        market,
        config,
        space,
        run_logger=RunLogger(log_file) if log_file else None,
        progress_cb=progress_cb,
        checkpoint_path=checkpoint_path,
    )
    results = optimizer.run()
    if results_path:
        write_json_atomic(results_path, results)
    return results


__all__ = [
    "OptimizationState",
    "IslandOptimizer",
    "apply_outcome",
    "breed_island",
    "migrate",
    "inject_diversity",
    "rank_island",
    "run_island_search",
]
