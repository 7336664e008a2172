# strategy_search/optimization/judge.py
"""
Independent quality / overfitting review of a backtest result.

The judge score (roughly 0-220) rewards capped ratios and penalizes deep
drawdowns, thin trade counts and low win rates. Two patterns are treated as
overfitting: Sharpe above 4, and a win rate above 85% over more than 50 trades.
Any result carrying an overfitting flag is SUSPICIOUS and may not become the
run's global best.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

from strategy_search.backtest.results import BacktestResult

logger = logging.getLogger("optimization.judge")


class Verdict(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    ACCEPTABLE = "ACCEPTABLE"
    POOR = "POOR"
    SUSPICIOUS = "SUSPICIOUS"


@dataclass(frozen=True)
class JudgeVerdict:
    verdict: Verdict
    score: float
    confidence: float
    warnings: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()
    overfit: bool = False

    @property
    def accepted(self) -> bool:
        return self.verdict is not Verdict.SUSPICIOUS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "score": self.score,
            "confidence": self.confidence,
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
            "overfit": self.overfit,
        }


@dataclass
class Judge:
    excellent_score: float = 180.0
    good_score: float = 140.0
    acceptable_score: float = 90.0
    max_score: float = 220.0
    history: List[Tuple[float, str]] = field(default_factory=list)

    def evaluate(self, result: BacktestResult) -> JudgeVerdict:
        warnings: List[str] = []
        suggestions: List[str] = []
        overfit = False

        score = 0.0
        score += min(result.sharpe, 3.0) * 20
        score += min(result.sortino, 4.0) * 10
        score += min(result.calmar, 3.0) * 15
        score += result.win_rate * 20
        score += min(result.total_return * 2, 40.0)
        score += (1.0 - result.max_drawdown) * 30
        score += min(result.trades / 500, 1.0) * 10
        score += min(result.profit_factor, 3.0) * 15

        if result.max_drawdown > 0.25:
            score -= (result.max_drawdown - 0.25) * 100
            warnings.append(f"High drawdown: {result.max_drawdown * 100:.1f}%")
            suggestions.append("Reduce max_position_pct or widen atr_mult_stop")

        if result.trades < 30:
            score -= (30 - result.trades) * 2
            warnings.append(f"Low trade count: {result.trades}")
            suggestions.append("Lower buy_threshold or confidence_min")

        if result.win_rate < 0.35:
            score -= (0.35 - result.win_rate) * 50
            warnings.append(f"Low win rate: {result.win_rate * 100:.1f}%")

        if result.sharpe > 4:
            score -= 30
            overfit = True
            warnings.append("OVERFITTING WARNING: Sharpe > 4 is suspicious")

        if result.win_rate > 0.85 and result.trades > 50:
            score -= 20
            overfit = True
            warnings.append("OVERFITTING WARNING: Win rate > 85% with many trades")

        if overfit:
            verdict = Verdict.SUSPICIOUS
        elif score > self.excellent_score:
            verdict = Verdict.EXCELLENT
        elif score > self.good_score:
            verdict = Verdict.GOOD
        elif score > self.acceptable_score:
            verdict = Verdict.ACCEPTABLE
        else:
            verdict = Verdict.POOR

        confidence = min(1.0, max(0.0, score / self.max_score))
        self.history.append((score, verdict.value))
        if overfit:
            logger.info("Judge flagged result as suspicious (score=%.2f): %s", score, "; ".join(warnings))
        return JudgeVerdict(
            verdict=verdict,
            score=float(score),
            confidence=float(confidence),
            warnings=tuple(warnings),
            suggestions=tuple(suggestions),
            overfit=overfit,
        )


__all__ = ["Verdict", "JudgeVerdict", "Judge"]
