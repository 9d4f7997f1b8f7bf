"""RSI 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

NEUTRAL_RSI = 50.0


@dataclass(frozen=True)
class RSIFactor:
    """相对强弱指数（RSI，尾部窗口 SMA 版本）。

    只看最后 `period` 个价差：涨幅与跌幅分别求和后除以 `period`。
    avg_loss 为 0 时返回 100；数据不足 `period + 1` 根时返回中性值 50。
    """

    period: int = 14
    price_col: str = "close"
    name: str = "rsi"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("RSI period must be > 0")
        object.__setattr__(self, "params", {"period": self.period, "price_col": self.price_col})

    def latest(self, df: pd.DataFrame) -> float:
        if self.price_col not in df.columns:
            raise ValueError(f"RSIFactor requires column: {self.price_col}")
        prices = df[self.price_col].astype(float)
        if len(prices) <= self.period:
            return NEUTRAL_RSI

        delta = prices.iloc[-(self.period + 1) :].diff().dropna()
        avg_gain = float(delta.clip(lower=0.0).sum()) / self.period
        avg_loss = float((-delta).clip(lower=0.0).sum()) / self.period

        if avg_loss == 0:
            return 100.0
        rs = avg_gain / avg_loss
        return 100.0 - (100.0 / (1.0 + rs))
