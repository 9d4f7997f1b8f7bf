"""贵金属 ETF 趋势跟随策略。

入场由 `algo.strategy.evaluator.evaluate` 决定；本模块补充持仓期间的离场规则：

1. 最低价触及止损 -> STOP
2. 最高价触及目标 -> TARGET
3. 收盘跌破 ema200 -> TREND_BREAK
4. （可选）持仓超过 max_hold_bars 根 K 线 -> TIME_STOP

同一根 K 线同时触及止损和目标时按止损处理（保守假设）。
"""

from __future__ import annotations

from typing import Sequence

from algo.factors.registry import IndicatorEngine
from algo.strategy.base import Strategy
from algo.strategy.evaluator import EvaluationConfig, evaluate
from shared.config.schema import StrategyConfig
from shared.models.models import (
    BotState,
    Candle,
    EvaluationResult,
    ExitReason,
    Indicators,
    Position,
)


class MetalsTrendStrategy(Strategy):
    """趋势 + 动量 + 触发 + 成交量 四重确认的多头策略。

    Parameters
    ----------
    config:
        评估参数（账户权益在每次调用时按实时值替换）。
    """

    name = "metals_trend"

    def __init__(self, config: EvaluationConfig | None = None):
        self.config = config or EvaluationConfig()
        self.indicator_engine = IndicatorEngine.from_config(self.config.strategy)

    @property
    def strategy_cfg(self) -> StrategyConfig:
        return self.config.strategy

    @property
    def warmup_bars(self) -> int:
        return int(self.strategy_cfg.warmup_bars)

    @property
    def lookback(self) -> int:
        return int(self.strategy_cfg.lookback)

    def indicators(self, candles: Sequence[Candle]) -> Indicators:
        return self.indicator_engine.compute(candles)

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
        return evaluate(
            symbol,
            candles,
            vix,
            state,
            cooldown,
            self.config.with_equity(equity),
            now_ms=now_ms,
            indicators=indicators,
            engine=self.indicator_engine,
        )

    def check_exit(self, position: Position, candle: Candle, indicators: Indicators) -> ExitReason | None:
        if candle.low <= position.stop:
            return ExitReason.STOP
        if candle.high >= position.target:
            return ExitReason.TARGET
        if candle.close < indicators.ema200:
            return ExitReason.TREND_BREAK
        max_hold = self.strategy_cfg.max_hold_bars
        if max_hold is not None and position.bars_held >= max_hold:
            return ExitReason.TIME_STOP
        return None
