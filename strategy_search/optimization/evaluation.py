# strategy_search/optimization/evaluation.py
"""
Per-genome evaluation and the batched parallel runner.

- ``evaluate_genome`` is a pure function of (context, genome) that never raises:
  failures come back as an ``EvaluationFailure`` record with the sentinel fitness.
- ``BatchEvaluator`` walks a list of genomes in fixed-size batches. Each batch is
  fanned out to a thread pool (default), a spawn-based process pool (market data
  installed once per worker) or evaluated inline. The caller only gets outcomes
  back, in input order; it alone writes them onto genomes.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import time
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from strategy_search.backtest.engine import DEFAULT_CAPITAL, run_backtest
from strategy_search.backtest.regime import detect_market_regime
from strategy_search.backtest.results import BacktestResult
from strategy_search.backtest.signals import StrategyParams
from strategy_search.config import RegimeThresholds
from strategy_search.data.market import MarketData
from strategy_search.optimization.fitness import FAILED_EVALUATION_FITNESS, calculate_fitness
from strategy_search.optimization.genome import Genome, ParameterSpace

logger = logging.getLogger("optimization.evaluation")


@dataclass(frozen=True)
class EvaluationContext:
    """Everything a worker needs besides the genome. Read-only for the whole run."""

    market: MarketData
    space: ParameterSpace
    start_idx: int
    end_idx: int
    initial_capital: float = DEFAULT_CAPITAL
    regime_thresholds: Optional[RegimeThresholds] = None


@dataclass(frozen=True)
class EvaluationFailure:
    genome_id: str
    error_type: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"genome_id": self.genome_id, "error_type": self.error_type, "message": self.message}


@dataclass(frozen=True)
class EvaluationOutcome:
    genome_id: str
    fitness: float
    result: Optional[BacktestResult] = None
    failure: Optional[EvaluationFailure] = None
    regime: str = "unknown"
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failure is None


def genome_params(space: ParameterSpace, genome: Genome) -> StrategyParams:
    return StrategyParams.from_mapping(space.to_dict(genome.genes))


def genome_regime(context: EvaluationContext, params: StrategyParams) -> str:
    """Regime of the reference series at the end of the evaluation window."""
    ref = context.market.reference
    upto = max(0, min(len(ref), context.end_idx - ref.offset))
    return detect_market_regime(ref.close[:upto], params.regime_lookback, context.regime_thresholds)


def evaluate_genome(context: EvaluationContext, genome: Genome) -> EvaluationOutcome:
    t0 = time.perf_counter()
    try:
        params = genome_params(context.space, genome)
        result = run_backtest(
            context.market,
            params,
            context.start_idx,
            context.end_idx,
            initial_capital=context.initial_capital,
            regime_thresholds=context.regime_thresholds,
        )
        fitness = calculate_fitness(result)
        regime = genome_regime(context, params)
    except Exception as exc:
        logger.debug("Evaluation of %s failed", genome.id, exc_info=True)
        return EvaluationOutcome(
            genome_id=genome.id,
            fitness=FAILED_EVALUATION_FITNESS,
            failure=EvaluationFailure(genome.id, type(exc).__name__, str(exc)),
            duration=time.perf_counter() - t0,
        )
    return EvaluationOutcome(
        genome_id=genome.id,
        fitness=fitness,
        result=result,
        regime=regime,
        duration=time.perf_counter() - t0,
    )


# --------------------------- process-pool plumbing ---------------------------

_WORKER_CONTEXT: Optional[EvaluationContext] = None


def _install_worker_context(context: EvaluationContext) -> None:
    global _WORKER_CONTEXT
    _WORKER_CONTEXT = context


def _evaluate_in_worker(genome: Genome) -> EvaluationOutcome:
    if _WORKER_CONTEXT is None:
        return EvaluationOutcome(
            genome_id=genome.id,
            fitness=FAILED_EVALUATION_FITNESS,
            failure=EvaluationFailure(genome.id, "RuntimeError", "worker context not installed"),
        )
    return evaluate_genome(_WORKER_CONTEXT, genome)


# ------------------------------- batch runner --------------------------------

class BatchEvaluator:
    """
    Evaluate genomes ``batch_size`` at a time with at most ``workers`` in flight.

    Use as a context manager so the pool is created once per run:

        with BatchEvaluator(ctx, workers=10, batch_size=50) as ev:
            outcomes = ev.evaluate(genomes)
    """

    def __init__(
        self,
        context: EvaluationContext,
        workers: int = 10,
        batch_size: int = 50,
        executor: str = "thread",
    ) -> None:
        self.context = context
        self.workers = max(1, int(workers))
        self.batch_size = max(1, int(batch_size))
        self.kind = "serial" if self.workers == 1 else executor
        self._pool: Optional[Executor] = None

    def __enter__(self) -> "BatchEvaluator":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def start(self) -> None:
        if self._pool is not None or self.kind == "serial":
            return
        if self.kind == "process":
            self._pool = ProcessPoolExecutor(
                max_workers=self.workers,
                mp_context=mp.get_context("spawn"),
                initializer=_install_worker_context,
                initargs=(self.context,),
            )
        else:
            self._pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="evaluate")
        logger.debug("Started %s pool with %d workers", self.kind, self.workers)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def _submit(self, genome: Genome):
        if self._pool is None:
            self.start()
        if self._pool is None:
            raise RuntimeError(f"No worker pool for executor kind {self.kind!r}")
        if self.kind == "process":
            return self._pool.submit(_evaluate_in_worker, genome)
        return self._pool.submit(evaluate_genome, self.context, genome)

    def _run_batch(self, batch: Sequence[Genome]) -> List[EvaluationOutcome]:
        if self.kind == "serial":
            return [evaluate_genome(self.context, g) for g in batch]
        if self._pool is None:
            self.start()
        futures = {self._submit(g): i for i, g in enumerate(batch)}
        out: List[Optional[EvaluationOutcome]] = [None] * len(batch)
        for fut in as_completed(futures):
            i = futures[fut]
            try:
                out[i] = fut.result()
            except Exception as exc:
                # pool-level failure (e.g. a worker died); the genome still gets the sentinel
                genome = batch[i]
                logger.warning("Worker failed evaluating %s: %s", genome.id, exc)
                out[i] = EvaluationOutcome(
                    genome_id=genome.id,
                    fitness=FAILED_EVALUATION_FITNESS,
                    failure=EvaluationFailure(genome.id, type(exc).__name__, str(exc)),
                )
        return [o for o in out if o is not None]

    def evaluate(self, genomes: Sequence[Genome]) -> List[EvaluationOutcome]:
        """Outcomes in the order of ``genomes``; every batch completes before the next starts."""
        outcomes: List[EvaluationOutcome] = []
        for start in range(0, len(genomes), self.batch_size):
            outcomes.extend(self._run_batch(genomes[start:start + self.batch_size]))
        return outcomes


__all__ = [
    "EvaluationContext",
    "EvaluationFailure",
    "EvaluationOutcome",
    "evaluate_genome",
    "genome_params",
    "BatchEvaluator",
]
