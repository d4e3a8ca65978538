"""Market data repository — caches fetched candles in SQLite."""

from datetime import datetime
from typing import Optional

from ictbacktest.market.models import Candle, parse_timestamp
from ictbacktest.repos.db import get_connection


class CandleRepo:
    """Data access layer for the ``market_data`` table.

    Rows are unique per (symbol, timeframe, timestamp); timestamps are
    stored as UTC ISO-8601 strings so they sort chronologically.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def upsert_candles(self, symbol: str, timeframe: str, candles: list[Candle]) -> int:
        """Insert or overwrite *candles*.  Returns the number of rows written."""
        rows = [
            (
                symbol.upper(), timeframe.upper(),
                parse_timestamp(c.timestamp).isoformat(),
                c.open, c.high, c.low, c.close, c.volume,
            )
            for c in candles
        ]
        conn = get_connection(self._db_path)
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO market_data
                        (symbol, timeframe, timestamp, open, high, low, close, volume)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (symbol, timeframe, timestamp) DO UPDATE SET
                        open = excluded.open,
                        high = excluded.high,
                        low = excluded.low,
                        close = excluded.close,
                        volume = excluded.volume
                    """,
                    rows,
                )
            return len(rows)
        finally:
            conn.close()

    def get_candles(
        self,
        symbol: str,
        timeframe: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Candle]:
        """Return cached candles oldest-first, optionally bounded (inclusive)."""
        query = "SELECT * FROM market_data WHERE symbol = ? AND timeframe = ?"
        params: list = [symbol.upper(), timeframe.upper()]
        if start is not None:
            query += " AND timestamp >= ?"
            params.append(parse_timestamp(start).isoformat())
        if end is not None:
            query += " AND timestamp <= ?"
            params.append(parse_timestamp(end).isoformat())
        query += " ORDER BY timestamp"

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [
            Candle(
                timestamp=parse_timestamp(r["timestamp"]),
                open=r["open"],
                high=r["high"],
                low=r["low"],
                close=r["close"],
                volume=r["volume"],
            )
            for r in rows
        ]
