"""ATR 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


@dataclass(frozen=True)
class ATRFactor:
    """平均真实波幅（ATR，尾部 `period` 根 TR 的简单均值）。

    数据不足 `period + 1` 根时返回 0（没有足够的前收盘价）。
    """

    period: int = 14
    high_col: str = "high"
    low_col: str = "low"
    close_col: str = "close"
    name: str = "atr"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("ATR period must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "period": self.period,
                "high_col": self.high_col,
                "low_col": self.low_col,
                "close_col": self.close_col,
            },
        )

    def latest(self, df: pd.DataFrame) -> float:
        for col in (self.high_col, self.low_col, self.close_col):
            if col not in df.columns:
                raise ValueError(f"ATRFactor requires column: {col}")
        if len(df) <= self.period:
            return 0.0

        tail = df.iloc[-(self.period + 1) :]
        high = tail[self.high_col].astype(float)
        low = tail[self.low_col].astype(float)
        prev_close = tail[self.close_col].astype(float).shift(1)

        tr1 = high - low
        tr2 = (high - prev_close).abs()
        tr3 = (low - prev_close).abs()
        tr = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1).iloc[1:]
        return float(tr.mean())
