#!/usr/bin/env python3
"""Run the island-model parameter search over a directory of daily OHLCV CSV files."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from dotenv import find_dotenv, load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from strategy_search.config import DEFAULT_CONFIG_PATH, load_optimizer_config
from strategy_search.data.loader import CsvDirectoryProvider, default_symbols, load_market_data
from strategy_search.data.market import universe_summary
from strategy_search.errors import ConfigurationError, DataInsufficiencyError
from strategy_search.optimization.evolutionary import run_island_search
from strategy_search.utils.logging_setup import setup_logging
from strategy_search.utils.progress import console_progress

logger = logging.getLogger("scripts.run_hyperopt")


def _parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Island-model GA search over strategy parameters.")
    parser.add_argument("--config", default=os.getenv("HYPEROPT_CONFIG", DEFAULT_CONFIG_PATH))
    parser.add_argument("--data-dir", default=os.getenv("HYPEROPT_DATA_DIR", "storage/data/ohlcv"))
    parser.add_argument(
        "--symbols",
        default="",
        help="Comma-separated symbols (default: the built-in large-cap/ETF universe).",
    )
    parser.add_argument("--start", default=os.getenv("HYPEROPT_START", "2019-01-01"))
    parser.add_argument("--end", default=os.getenv("HYPEROPT_END", datetime.now(timezone.utc).strftime("%Y-%m-%d")))
    parser.add_argument("--out", default="storage/hyperopt", help="Directory for results and checkpoints.")
    parser.add_argument("--log-file", default=None, help="JSONL run log (default: <out>/run_<ts>.jsonl).")
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--executor", choices=["thread", "process", "serial"], default=None)
    parser.add_argument("--iterations", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(dotenv_path=env_path, override=False)
    args = _parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_optimizer_config(args.config)
        for name in ("workers", "executor", "seed"):
            value = getattr(args, name)
            if value is not None:
                setattr(config, name, value)
        if args.iterations is not None:
            config.total_iterations = args.iterations
        config.validate()
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()] or default_symbols()
    provider = CsvDirectoryProvider(args.data_dir)
    try:
        market = load_market_data(
            provider,
            symbols,
            args.start,
            args.end,
            min_bars=config.min_bars,
            reference_symbol=config.reference_symbol,
        )
    except DataInsufficiencyError as exc:
        logger.error("Cannot start search: %s", exc)
        return 3
    for row in universe_summary(market):
        logger.debug("universe: %s", row)

    out_dir = Path(args.out)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_file = Path(args.log_file) if args.log_file else out_dir / f"run_{stamp}.jsonl"
    results = run_island_search(
        market,
        config,
        log_file=log_file,
        progress_cb=console_progress,
        checkpoint_path=out_dir / "checkpoints",
        results_path=out_dir / f"results_{stamp}.json",
    )

    summary = results.get("summary", {})
    best = results.get("global_best") or {}
    logger.info(
        "Done: %s evaluations over %s generations (%s); best fitness %s",
        summary.get("total_evaluations"),
        summary.get("generations"),
        summary.get("stop_reason"),
        best.get("fitness"),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
