from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from shared.models.models import (
    BotState,
    Candle,
    EvaluationResult,
    ExitReason,
    Indicators,
    Position,
)


class Strategy(ABC):
    name: str = "base"

    @abstractmethod
    def evaluate(
        self,
        symbol: str,
        candles: Sequence[Candle],
        vix: float,
        state: BotState,
        cooldown: int,
        *,
        equity: float,
        now_ms: int | None = None,
        indicators: Indicators | None = None,
    ) -> EvaluationResult:
        """
        输入一个 symbol 的 K 线历史与上一轮状态，输出信号和新状态。
        """
        ...

    @abstractmethod
    def check_exit(self, position: Position, candle: Candle, indicators: Indicators) -> ExitReason | None:
        """
        持仓中每根新 K 线调用一次；返回 None 表示继续持有。
        """
        ...
