"""信号评估器（状态机）。

`evaluate(...)` 是纯函数：除了入参之外不读任何全局状态。
调用方负责保存返回的 `new_state/new_cooldown` 并在下一个 tick 原样传回。

评估顺序（前面的分支命中即返回）：

0. （可选）休市：WAIT + MARKET_CLOSED
1. 数据过期：PAUSE_DATA_STALE + STALE_DATA
2. 波动率暂停：PAUSE_REGIME + HIGH_VIX_PAUSE
3. 冷却期：计数 > 0 时 WAIT + COOLDOWN_<n>_BARS 并递减；计数 <= 0 时回到 WAIT 继续评估
4. 入场：趋势/动量/触发/成交量四个条件全部满足 -> BUY，状态切到 LONG
5. 持仓中：HOLD + POSITION_ACTIVE

任何分支都返回合法的 Signal，不抛异常。
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Sequence

from algo.factors.registry import IndicatorEngine
from algo.strategy.market_hours import is_market_open
from shared.config.schema import StrategyConfig
from shared.models.models import (
    BotState,
    Candle,
    CandleQuality,
    EvaluationResult,
    Indicators,
    Signal,
    SignalAction,
)
from shared.utils.ids import make_signal_id

DELAYED_DECAY = 0.9
ANOMALY_DECAY = 0.8


@dataclass(frozen=True)
class EvaluationConfig:
    """评估所需的账户/风控参数（启动时构建一次，按值传入每次调用）。

    Attributes
    ----------
    equity:
        用于计算风险预算的账户权益（USD）。
    risk_pct:
        单笔风险占权益百分比。
    vix_reduce / vix_pause:
        仓位减半 / 暂停新开仓的 VIX 阈值。
    ai_enabled:
        AI 评论开关，不参与核心计算。
    """

    equity: float = 10000.0
    risk_pct: float = 0.5
    vix_reduce: float = 25.0
    vix_pause: float = 30.0
    ai_enabled: bool = False
    strategy: StrategyConfig = field(default_factory=StrategyConfig)

    @classmethod
    def from_main(cls, cfg: Any, *, equity: float | None = None) -> "EvaluationConfig":
        return cls(
            equity=float(equity if equity is not None else cfg.account.starting_equity),
            risk_pct=float(cfg.account.risk_pct),
            vix_reduce=float(cfg.regime.vix_reduce),
            vix_pause=float(cfg.regime.vix_pause),
            ai_enabled=bool(cfg.ai_enabled),
            strategy=cfg.strategy,
        )

    def with_equity(self, equity: float) -> "EvaluationConfig":
        return replace(self, equity=float(equity))


def confidence_decay(candle: Candle) -> float:
    """按数据质量衰减置信度：DELAYED ×0.9，有异常标签 ×0.8，可叠加。"""
    decay = 1.0
    if candle.quality == CandleQuality.DELAYED:
        decay *= DELAYED_DECAY
    if candle.anomalies:
        decay *= ANOMALY_DECAY
    return decay


def build_signal(
    *,
    symbol: str,
    now_ms: int,
    action: SignalAction,
    price: float,
    confidence: int,
    reason_codes: list[str],
    vix: float,
    is_stale: bool = False,
    decay: float = 1.0,
    seq: str = "",
) -> Signal:
    # 四舍五入（half-up），不用 round() 的银行家舍入
    adj = int(math.floor(confidence * decay + 0.5))
    return Signal(
        id=make_signal_id(symbol=symbol, timestamp=now_ms, action=action.value, seq=seq),
        symbol=symbol,
        timestamp=now_ms,
        action=action,
        price=price,
        confidence=confidence,
        confidence_adj=max(0, min(confidence, adj)),
        reason_codes=tuple(reason_codes),
        vix=vix,
        is_stale=is_stale,
    )


def size_from_atr(
    *,
    close: float,
    atr: float,
    vix: float,
    config: EvaluationConfig,
) -> tuple[float, float, int, bool]:
    """BUY 时的内联仓位计算。

    Returns
    -------
    tuple
        (stop, target, shares, reduced)；reduced 表示因 VIX 偏高而减半。
    """
    strat = config.strategy
    stop = close - strat.atr_stop_mult * atr
    target = close + strat.atr_target_mult * atr
    risk_per_share = close - stop
    risk_budget = config.equity * (config.risk_pct / 100.0)

    shares = 0
    if risk_per_share > 0 and risk_budget > 0 and math.isfinite(risk_per_share):
        shares = max(0, int(math.floor(risk_budget / risk_per_share)))

    reduced = vix > config.vix_reduce
    if reduced:
        shares = int(math.floor(shares * 0.5))
    return stop, target, shares, reduced


def evaluate(
    symbol: str,
    candles: Sequence[Candle],
    vix: float,
    state: BotState,
    cooldown: int,
    config: EvaluationConfig,
    *,
    now_ms: int | None = None,
    indicators: Indicators | None = None,
    engine: IndicatorEngine | None = None,
) -> EvaluationResult:
    """单个 symbol 单个 tick 的评估入口。

    Parameters
    ----------
    symbol:
        品种代码。
    candles:
        按时间升序的完整 K 线历史。
    vix:
        本 tick 的波动率指数快照（同一 tick 内所有 symbol 共用）。
    state / cooldown:
        上一个 tick 返回的状态与冷却计数。
    config:
        账户/风控参数。
    now_ms:
        当前时间（毫秒）；回测时传入 K 线时间戳，默认取墙钟。
    indicators:
        预先算好的指标；为 None 时由 `engine` 现算。
    """
    strat = config.strategy
    now_ms = int(now_ms if now_ms is not None else time.time() * 1000)

    if not candles:
        return EvaluationResult(
            signal=build_signal(
                symbol=symbol, now_ms=now_ms, action=SignalAction.WAIT, price=0.0,
                confidence=0, reason_codes=["NO_DATA"], vix=vix,
            ),
            new_state=state,
            new_cooldown=cooldown,
        )

    latest = candles[-1]

    def _passthrough(action: SignalAction, code: str, *, is_stale: bool = False) -> EvaluationResult:
        sig = build_signal(
            symbol=symbol, now_ms=now_ms, action=action, price=latest.close,
            confidence=0, reason_codes=[code], vix=vix, is_stale=is_stale,
        )
        return EvaluationResult(signal=sig, new_state=state, new_cooldown=cooldown)

    if strat.respect_market_hours:
        if not is_market_open(datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc)):
            return _passthrough(SignalAction.WAIT, "MARKET_CLOSED")

    if now_ms - latest.timestamp > strat.stale_after_minutes * 60 * 1000:
        return _passthrough(SignalAction.PAUSE_DATA_STALE, "STALE_DATA", is_stale=True)

    if vix > config.vix_pause:
        return _passthrough(SignalAction.PAUSE_REGIME, "HIGH_VIX_PAUSE")

    if indicators is None:
        if len(candles) < strat.warmup_bars:
            return _passthrough(SignalAction.WAIT, "INSUFFICIENT_HISTORY")
        indicators = (engine or IndicatorEngine.from_config(strat)).compute(candles)

    decay = confidence_decay(latest)
    reason_codes: list[str] = []
    action = SignalAction.WAIT
    confidence = 0
    new_state = state
    new_cooldown = cooldown

    if state == BotState.COOLDOWN:
        if cooldown <= 0:
            new_state = BotState.WAIT
            new_cooldown = 0
        else:
            reason_codes.append(f"COOLDOWN_{cooldown}_BARS")
            new_cooldown = cooldown - 1

    if new_state == BotState.WAIT:
        close = latest.close
        trend_ok = close > indicators.ema200
        momentum_ok = indicators.rsi14 >= strat.rsi_threshold
        trigger_ok = close > indicators.ema20
        volume_ok = latest.volume >= indicators.vol_sma20

        if trend_ok:
            reason_codes.append("TREND_UP")
        if momentum_ok:
            reason_codes.append("MOMENTUM_OK")
        if trigger_ok:
            reason_codes.append("TRIGGER_UP")
        if volume_ok:
            reason_codes.append("VOL_CONFIRM")

        if trend_ok and momentum_ok and trigger_ok and volume_ok:
            action = SignalAction.BUY
            confidence = strat.base_confidence
            new_state = BotState.LONG
    elif new_state == BotState.LONG:
        action = SignalAction.HOLD
        reason_codes.append("POSITION_ACTIVE")

    if action != SignalAction.BUY:
        signal = build_signal(
            symbol=symbol, now_ms=now_ms, action=action, price=latest.close,
            confidence=confidence, reason_codes=reason_codes, vix=vix, decay=decay,
        )
        return EvaluationResult(signal=signal, new_state=new_state, new_cooldown=new_cooldown)

    stop, target, shares, reduced = size_from_atr(
        close=latest.close, atr=indicators.atr14, vix=vix, config=config
    )
    if reduced:
        reason_codes.append("REGIME_REDUCED_SIZE")

    signal = build_signal(
        symbol=symbol, now_ms=now_ms, action=action, price=latest.close,
        confidence=confidence, reason_codes=reason_codes, vix=vix, decay=decay,
    )
    signal = replace(signal, entry=latest.close, stop=stop, target=target, shares=shares)
    return EvaluationResult(signal=signal, new_state=new_state, new_cooldown=new_cooldown)


def after_exit(config: EvaluationConfig) -> tuple[BotState, int]:
    """平仓后进入冷却期。"""
    return BotState.COOLDOWN, int(config.strategy.cooldown_bars)
