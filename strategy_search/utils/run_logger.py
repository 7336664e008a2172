# strategy_search/utils/run_logger.py
from __future__ import annotations

import json
import logging
import math
import time
from pathlib import Path
from typing import Any, Dict


def _json_default(obj: Any) -> Any:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return str(obj)


def _finite(obj: Any) -> Any:
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, dict):
        return {k: _finite(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_finite(v) for v in obj]
    return obj


class RunLogger:
    """Append-only JSONL event log for optimizer runs. Console output goes through ``logging``."""

    def __init__(self, log_file: str | Path) -> None:
        self.path = Path(log_file)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._logger = logging.getLogger(f"run.{self.path.stem}")

    def _write(self, record: Dict[str, Any]) -> None:
        record.setdefault("ts", time.time())
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(_finite(record), ensure_ascii=False, default=_json_default) + "\n")

    def log(self, event: str, payload: Dict[str, Any] | None = None) -> None:
        self._write({"event": event, "payload": payload or {}})

    def log_error(self, context: Dict[str, Any], err: BaseException | str, error_type: str | None = None) -> None:
        rec = {
            "event": "error",
            "payload": {
                "context": context,
                "error_type": error_type or type(err).__name__,
                "error_msg": str(err),
            },
        }
        self._logger.warning("Run error: %s", rec["payload"])
        self._write(rec)


class NullRunLogger(RunLogger):
    """Drop-in logger that records nothing (library use without a log file)."""

    def __init__(self) -> None:  # noqa: D107 - no file
        self.path = None  # type: ignore[assignment]
        self._logger = logging.getLogger("run.null")

    def _write(self, record: Dict[str, Any]) -> None:
        return


__all__ = ["RunLogger", "NullRunLogger"]
