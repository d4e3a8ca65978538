"""One-shot script to cache historical candles for offline backtests.

Fetched candles are upserted into the ``market_data`` table so later runs
can use ``--from-cache``.  ``--csv-dir`` also writes one CSV per timeframe.

Usage (from the project root):
    python -m scripts.fetch_history --symbol BTCUSDT --start 2024-01-01 --end 2024-02-01
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pandas as pd

from ictbacktest.config import load_config
from ictbacktest.market.exchange_client import ExchangeClient
from ictbacktest.market.models import normalize_timeframe, parse_timestamp
from ictbacktest.repos.candle_repo import CandleRepo
from ictbacktest.repos.db import init_db

logger = logging.getLogger("ictbacktest")


async def _main(symbol: str, timeframes: list[str], start: str, end: str, csv_dir: str | None) -> None:
    config = load_config()
    init_db(config.db_path)
    client = ExchangeClient(config)
    repo = CandleRepo(config.db_path)

    for tf in timeframes:
        tf = normalize_timeframe(tf)
        candles = await client.fetch_candles(
            symbol, tf, parse_timestamp(start), parse_timestamp(end),
        )
        written = repo.upsert_candles(symbol, tf, candles)
        logger.info("Cached %d %s %s candles", written, symbol, tf)

        if csv_dir and candles:
            path = Path(csv_dir) / f"{symbol.upper()}_{tf}.csv"
            path.parent.mkdir(parents=True, exist_ok=True)
            pd.DataFrame([c.to_dict() for c in candles]).to_csv(path, index=False)
            logger.info("Saved %s", path)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Download exchange candles into the local cache")
    parser.add_argument("--symbol", default="BTCUSDT")
    parser.add_argument("--timeframes", nargs="+", default=["5M", "1H", "D"])
    parser.add_argument("--start", required=True)
    parser.add_argument("--end", required=True)
    parser.add_argument("--csv-dir", default=None)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    asyncio.run(_main(args.symbol, args.timeframes, args.start, args.end, args.csv_dir))
