"""成交量均线因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


@dataclass(frozen=True)
class VolumeSMAFactor:
    """尾部 `window` 根成交量的算术平均；不足时按已有根数平均。"""

    window: int = 20
    volume_col: str = "volume"
    name: str = "vol_sma"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.window <= 0:
            raise ValueError("Volume SMA window must be > 0")
        object.__setattr__(self, "params", {"window": self.window, "volume_col": self.volume_col})

    def latest(self, df: pd.DataFrame) -> float:
        if self.volume_col not in df.columns:
            raise ValueError(f"VolumeSMAFactor requires column: {self.volume_col}")
        vols = df[self.volume_col].astype(float)
        if vols.empty:
            return 0.0
        return float(vols.iloc[-self.window :].mean())
