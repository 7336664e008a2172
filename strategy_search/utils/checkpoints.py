# strategy_search/utils/checkpoints.py
"""
JSON-safe snapshots of a running search.

A snapshot is ``{generation, total_evaluations, global_best, global_best_result,
insights, best_by_regime, timestamp}``; floats that JSON cannot carry (NaN, +/-inf)
become ``null``.
"""

from __future__ import annotations

import json
import math
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict

import numpy as np

if TYPE_CHECKING:  # pragma: no cover
    from strategy_search.optimization.evolutionary import OptimizationState
    from strategy_search.optimization.learning import LearningEngine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_safe(obj: Any) -> Any:
    """Recursively convert to JSON primitives (non-finite floats -> None)."""
    if obj is None or isinstance(obj, (bool, str)):
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (int, np.integer)):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        f = float(obj)
        return f if math.isfinite(f) else None
    if isinstance(obj, np.ndarray):
        return [json_safe(v) for v in obj.tolist()]
    if isinstance(obj, dict):
        return {str(k): json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [json_safe(v) for v in obj]
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return json_safe(to_dict())
    return str(obj)


def write_json_atomic(path: str | Path, payload: Any) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(json_safe(payload), f, indent=2, ensure_ascii=False)
    os.replace(tmp, path)
    return str(path)


def build_snapshot(state: "OptimizationState", learning: "LearningEngine") -> Dict[str, Any]:
    space = learning.space
    best = state.global_best
    result = state.global_best_result
    return json_safe({
        "generation": state.generation,
        "total_evaluations": state.total_evaluations,
        "global_best": best.to_dict(space) if best is not None else None,
        "global_best_result": result.to_dict(include_curves=False) if result is not None else None,
        "global_best_verdict": state.global_best_verdict.to_dict() if state.global_best_verdict else None,
        "insights": [i.to_dict() for i in learning.insights()],
        "best_by_regime": learning.best_by_regime_dict(),
        "timestamp": now_iso(),
    })


__all__ = ["json_safe", "write_json_atomic", "build_snapshot", "now_iso"]
