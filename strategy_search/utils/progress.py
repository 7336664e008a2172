# strategy_search/utils/progress.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict

# Public type alias: a function taking (event, payload)
ProgressCallback = Callable[[str, Dict[str, Any]], None]

logger = logging.getLogger("progress")


def noop_progress(event: str, payload: Dict[str, Any]) -> None:
    return


def console_progress(event: str, payload: Dict[str, Any]) -> None:
    """Lightweight progress sink for non-UI contexts."""
    if event == "progress":
        logger.info(
            "gen %s/%s best=%.4f avg=%.4f rate=%.1f/s diversity=%.1f%% mutation=%.3f",
            payload.get("generation"),
            payload.get("max_generations"),
            float(payload.get("best_fitness") or 0.0),
            float(payload.get("avg_fitness") or 0.0),
            float(payload.get("evaluation_rate") or 0.0),
            float(payload.get("diversity_pct") or 0.0),
            float(payload.get("mutation_rate") or 0.0),
        )
        for insight in payload.get("insights") or []:
            logger.info(
                "  insight: %s (corr=%.3f, confidence=%.2f)",
                insight.get("pattern"),
                float(insight.get("correlation") or 0.0),
                float(insight.get("confidence") or 0.0),
            )
        return
    key_bits = {
        k: payload.get(k)
        for k in ("generation", "fitness", "verdict", "reason", "total_evaluations")
        if k in payload
    }
    logger.info("[%s] %s", event, key_bits)


__all__ = ["ProgressCallback", "console_progress", "noop_progress"]
