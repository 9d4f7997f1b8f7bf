"""EMA 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


@dataclass(frozen=True)
class EMAFactor:
    """指数移动平均（EMA，SMA 播种版本）。

    - 先用前 `period` 个收盘价的简单均值作为种子；
    - 再以 `k = 2 / (period + 1)` 向后平滑；
    - 序列长度不足 `period` 时返回最后一个收盘价（空序列返回 0）。
    """

    period: int = 20
    price_col: str = "close"
    name: str = "ema"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("EMA period must be > 0")
        object.__setattr__(self, "params", {"period": self.period, "price_col": self.price_col})

    def latest(self, df: pd.DataFrame) -> float:
        if self.price_col not in df.columns:
            raise ValueError(f"EMAFactor requires column: {self.price_col}")
        prices = df[self.price_col].astype(float)
        if prices.empty:
            return 0.0
        if len(prices) < self.period:
            return float(prices.iloc[-1])

        seeded = prices.iloc[self.period - 1 :].copy()
        seeded.iloc[0] = prices.iloc[: self.period].mean()
        # adjust=False: y_t = (1 - k) * y_{t-1} + k * x_t，等价于逐根递推
        ema = seeded.ewm(alpha=2.0 / (self.period + 1), adjust=False).mean()
        return float(ema.iloc[-1])
