"""单 symbol 单 tick 的处理管线（离场 → 评估 → 熔断 → 仓位 → 开仓）。

实时循环与回测共用这一段逻辑，避免两处实现漂移。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from algo.strategy.evaluator import after_exit, build_signal
from algo.strategy.metals_trend import MetalsTrendStrategy
from broker.paper_broker import PaperBroker
from risk.manager import RiskManager
from shared.models.models import (
    BotState,
    Candle,
    ExitReason,
    Indicators,
    JournalTrade,
    MacroCheck,
    Signal,
    SignalAction,
)


@dataclass(frozen=True)
class SymbolStep:
    """一次处理的结果：展示用信号 + 需要调用方持久化的状态。"""

    signal: Signal
    state: BotState
    cooldown: int
    trade: JournalTrade | None = None
    filled: bool = False


def exit_signal(symbol: str, candle: Candle, reason: ExitReason, vix: float) -> Signal:
    return build_signal(
        symbol=symbol,
        now_ms=candle.timestamp,
        action=SignalAction.EXIT,
        price=candle.close,
        confidence=0,
        reason_codes=[f"EXIT_{reason.value}"],
        vix=vix,
    )


def process_symbol(
    *,
    symbol: str,
    candles: Sequence[Candle],
    vix: float,
    state: BotState,
    cooldown: int,
    strategy: MetalsTrendStrategy,
    broker: PaperBroker,
    risk: RiskManager,
    now_ms: int | None = None,
    new_bar: bool = True,
    macro: MacroCheck | None = None,
) -> SymbolStep:
    """处理一个 symbol 的一个 tick。

    Parameters
    ----------
    new_bar:
        本次是否是新 K 线（只有新 K 线才累加持仓根数）。
    macro:
        最近一次宏观校验结果；仅在 `risk.macro_gate=True` 时参与开仓判断。
    """
    latest = candles[-1]
    indicators: Indicators | None = None
    if len(candles) >= strategy.warmup_bars:
        indicators = strategy.indicators(candles)

    position = broker.get_position(symbol)
    if position is not None and indicators is not None:
        if new_bar:
            broker.advance_bar(symbol)
        reason = strategy.check_exit(position, latest, indicators)
        if reason is not None:
            trade = broker.close_position(symbol, latest, reason)
            next_state, next_cooldown = after_exit(strategy.config)
            return SymbolStep(
                signal=exit_signal(symbol, latest, reason, vix),
                state=next_state,
                cooldown=next_cooldown,
                trade=trade,
            )
    elif position is None and state == BotState.LONG:
        # 持仓已不存在（例如被手动平掉），状态机回到 WAIT
        state = BotState.WAIT

    account = broker.get_account()
    result = strategy.evaluate(
        symbol,
        candles,
        vix,
        state,
        cooldown,
        equity=account.equity,
        now_ms=now_ms,
        indicators=indicators,
    )
    signal = result.signal
    if signal.action != SignalAction.BUY:
        return SymbolStep(signal=signal, state=result.new_state, cooldown=result.new_cooldown)

    if not risk.allow_entry(account, macro):
        return SymbolStep(signal=signal, state=BotState.WAIT, cooldown=0)

    atr = indicators.atr14 if indicators is not None else None
    sized = risk.calculate_size(signal, latest.close, atr, account)
    shares = min(int(signal.shares or 0), sized)
    filled = broker.open_position(signal, latest, shares)
    if not filled:
        return SymbolStep(signal=signal, state=BotState.WAIT, cooldown=0)
    return SymbolStep(signal=signal, state=result.new_state, cooldown=result.new_cooldown, filled=True)


def flatten_symbol(
    *, symbol: str, candle: Candle, vix: float, strategy: MetalsTrendStrategy, broker: PaperBroker
) -> SymbolStep | None:
    """强制平仓（回测结束时可选）。"""
    trade = broker.close_position(symbol, candle, ExitReason.FLATTEN)
    if trade is None:
        return None
    next_state, next_cooldown = after_exit(strategy.config)
    return SymbolStep(
        signal=exit_signal(symbol, candle, ExitReason.FLATTEN, vix),
        state=next_state,
        cooldown=next_cooldown,
        trade=trade,
    )
