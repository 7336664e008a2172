"""Run log, progress sink, checkpoint writer and logging setup."""
from __future__ import annotations

import json
import logging
import math
import random
from pathlib import Path

import numpy as np
import pytest

from strategy_search.optimization.evolutionary import OptimizationState
from strategy_search.optimization.genome import GenomeMetrics, ParameterSpace, random_genome
from strategy_search.optimization.learning import LearningEngine
from strategy_search.utils.checkpoints import build_snapshot, json_safe, write_json_atomic
from strategy_search.utils.logging_setup import SafeRotatingFileHandler, setup_logging
from strategy_search.utils.progress import console_progress
from strategy_search.utils.run_logger import NullRunLogger, RunLogger


def test_run_logger_appends_json_lines(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "run.jsonl"
    logger = RunLogger(path)

    logger.log("run_start", {"generation": 0})
    logger.log("generation_end", {"best_fitness": float("inf"), "avg_fitness": float("nan")})

    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [r["event"] for r in records] == ["run_start", "generation_end"]
    assert records[0]["payload"] == {"generation": 0}
    assert "ts" in records[0]
    assert records[1]["payload"] == {"best_fitness": None, "avg_fitness": None}


def test_run_logger_records_errors(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "errors.jsonl"
    logger = RunLogger(path)

    class BoomError(RuntimeError):
        pass

    with caplog.at_level(logging.WARNING):
        logger.log_error({"generation": 1}, BoomError("failed"))

    record = json.loads(path.read_text(encoding="utf-8").strip())
    assert record["event"] == "error"
    assert record["payload"]["context"] == {"generation": 1}
    assert record["payload"]["error_type"] == "BoomError"
    assert record["payload"]["error_msg"] == "failed"
    assert "BoomError" in caplog.text


def test_null_run_logger_writes_nothing(tmp_path: Path) -> None:
    NullRunLogger().log("done", {"x": 1})
    assert list(tmp_path.iterdir()) == []


def test_json_safe_and_atomic_write(tmp_path: Path) -> None:
    payload = {"a": np.float64(1.5), "b": [math.inf, -math.inf, math.nan], "c": np.int64(3), "d": (1, 2)}
    assert json_safe(payload) == {"a": 1.5, "b": [None, None, None], "c": 3, "d": [1, 2]}

    target = tmp_path / "out" / "snap.json"
    assert write_json_atomic(target, payload) == str(target)
    assert json.loads(target.read_text(encoding="utf-8"))["b"] == [None, None, None]
    assert not target.with_suffix(".json.tmp").exists()


def test_snapshot_shape() -> None:
    space = ParameterSpace()
    state = OptimizationState(generation=3, total_evaluations=60)
    learning = LearningEngine(space)
    empty = build_snapshot(state, learning)
    assert empty["global_best"] is None and empty["global_best_result"] is None

    best = random_genome(space, 2, 1, random.Random(0)).carry(
        fitness=12.5, evaluated=True, metrics=GenomeMetrics(sharpe=math.inf)
    )
    state.global_best = best
    snap = build_snapshot(state, learning)
    assert set(snap) >= {"generation", "total_evaluations", "global_best", "global_best_result",
                         "insights", "best_by_regime", "timestamp"}
    assert snap["generation"] == 3
    assert snap["global_best"]["genes"]["rsi_period"] == space.to_dict(best.genes)["rsi_period"]
    assert snap["global_best"]["metrics"]["sharpe"] is None
    json.dumps(snap, allow_nan=False)


def test_console_progress_logs_summary(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="progress"):
        console_progress("progress", {
            "generation": 10,
            "max_generations": 75,
            "best_fitness": 12.3,
            "avg_fitness": -40.0,
            "evaluation_rate": 55.0,
            "diversity_pct": 88.0,
            "mutation_rate": 0.15,
            "insights": [{"pattern": "rsi_period higher in top performers", "correlation": 0.3, "confidence": 0.1}],
        })
        console_progress("new_global_best", {"generation": 11, "fitness": 15.0, "verdict": "GOOD"})
    assert "gen 10/75" in caplog.text
    assert "rsi_period higher" in caplog.text
    assert "new_global_best" in caplog.text


def test_setup_logging_adds_rotating_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        setup_logging(log_dir=str(tmp_path), filename="test.log")
        setup_logging(log_dir=str(tmp_path), filename="test.log")
        added = [h for h in root.handlers if h not in before]
        files = [h for h in added if isinstance(h, logging.FileHandler)]
        assert len(files) == 1
        assert root.level == logging.DEBUG
        logging.getLogger("tests.logging").info("hello")
        files[0].flush()
        assert "hello" in (tmp_path / "test.log").read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            if h not in before:
                root.removeHandler(h)
                h.close()
        root.setLevel(level)


def test_rotating_handler_rolls_over_with_missing_backups(tmp_path: Path) -> None:
    path = tmp_path / "roll.log"
    handler = SafeRotatingFileHandler(str(path), maxBytes=120, backupCount=3)
    handler.setFormatter(logging.Formatter("%(message)s"))

    def emit(msg: str) -> None:
        handler.emit(logging.LogRecord("tests.roll", logging.INFO, __file__, 0, msg, None, None))

    try:
        for i in range(6):
            emit(f"line-{i:02d} " + "x" * 60)
        assert (tmp_path / "roll.log.1").exists()
        assert (tmp_path / "roll.log.2").exists()

        # a backup removed out from under the handler must not break the next rollover
        (tmp_path / "roll.log.1").unlink()
        for i in range(6, 10):
            emit(f"line-{i:02d} " + "x" * 60)
    finally:
        handler.close()

    assert not (tmp_path / "roll.log.4").exists()
    assert "line-09" in path.read_text(encoding="utf-8")
    assert (tmp_path / "roll.log.1").exists()
