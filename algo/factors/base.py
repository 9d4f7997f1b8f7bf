"""因子（Factors/Indicators）抽象协议。"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

import pandas as pd


class Factor(Protocol):
    """因子协议：`latest(df) -> float`。

    输入 df 至少包含 open/high/low/close/volume 列，按时间升序；
    输出为最后一根 K 线对应的指标值。
    """

    name: str
    params: Mapping[str, Any]

    def latest(self, df: pd.DataFrame) -> float:
        ...
