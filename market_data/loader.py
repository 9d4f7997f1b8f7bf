"""历史 K 线加载与保存（CSV）。

CSV 列：ts, open, high, low, close, volume[, quality, anomalies]
- ts 支持毫秒/秒时间戳或 ISO 字符串，统一转为毫秒；
- anomalies 多个标签用 `|` 分隔。
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

import pandas as pd

from shared.models.models import Candle, CandleQuality

CANDLE_COLS = ["ts", "open", "high", "low", "close", "volume"]


def _parse_ts_ms(val) -> int:
    text = str(val).strip()
    try:
        if text.isdigit():
            ts_int = int(text)
            return ts_int if ts_int > 1e12 else ts_int * 1000
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    except ValueError as exc:
        raise ValueError(f"Invalid datetime value: {val}") from exc


def load_candles_from_csv(path: str | Path) -> list[Candle]:
    """从 CSV 读取 Candle 列表（按时间升序）。"""
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Candle file not found: {csv_path}")

    df = pd.read_csv(csv_path, dtype={"ts": str, "anomalies": str, "quality": str})
    if "timestamp" in df.columns and "ts" not in df.columns:
        df = df.rename(columns={"timestamp": "ts"})
    missing = [c for c in CANDLE_COLS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle CSV missing columns: {missing}")

    df["ts"] = df["ts"].map(_parse_ts_ms)
    df = df.sort_values("ts").reset_index(drop=True)

    candles: list[Candle] = []
    for row in df.itertuples(index=False):
        quality = getattr(row, "quality", None)
        anomalies = getattr(row, "anomalies", None)
        candles.append(
            Candle(
                timestamp=int(row.ts),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=0 if pd.isna(row.volume) else int(row.volume),
                quality=CandleQuality(quality) if isinstance(quality, str) and quality else CandleQuality.REALTIME,
                anomalies=tuple(a for a in anomalies.split("|") if a) if isinstance(anomalies, str) else (),
            )
        )
    return candles


def save_candles_to_csv(candles: Sequence[Candle], path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(
        {
            "ts": [c.timestamp for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
            "quality": [c.quality.value for c in candles],
            "anomalies": ["|".join(c.anomalies) for c in candles],
        }
    )
    df.to_csv(out, index=False)
    return out
