"""Broker 抽象接口与运行模式定义。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Mapping

from shared.models.models import Candle, ExitReason, JournalTrade, PaperAccount, Position, Signal


class BrokerMode(Enum):
    """Broker 运行模式枚举。"""

    PAPER = "paper"
    BACKTEST = "backtest"


class Broker(ABC):
    """交易执行抽象层。

    子类维护账户（现金/权益/回撤）与持仓视图；同一 symbol 最多一个持仓。
    """

    positions: dict[str, Position]

    @abstractmethod
    def get_position(self, symbol: str) -> Position | None:
        """获取某个品种的当前持仓。"""

    @abstractmethod
    def get_account(self) -> PaperAccount:
        """账户快照。"""

    @abstractmethod
    def open_position(self, signal: Signal, candle: Candle, shares: int) -> bool:
        """按信号开仓；无法成交时返回 False 且不改变任何状态。"""

    @abstractmethod
    def close_position(
        self, symbol: str, candle: Candle, reason: ExitReason | None = None
    ) -> JournalTrade | None:
        """按 K 线收盘价平仓；无持仓时返回 None。"""

    @abstractmethod
    def update_equity(self, prices: Mapping[str, float], ts_ms: int) -> PaperAccount:
        """按最新价格重估权益。"""
