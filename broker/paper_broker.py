"""模拟 broker（paper / backtest）。

- 不触网，纯本地记账；
- 开/平仓按固定比例计入滑点与手续费（双边对称）；
- 权益按最新价格盯市，历史点按模拟时间降采样。
"""

from __future__ import annotations

from typing import Mapping

from broker.abstract_broker import Broker, BrokerMode
from shared.models.models import (
    Candle,
    EquityPoint,
    ExitReason,
    JournalTrade,
    PaperAccount,
    Position,
    Signal,
    TradeOutcome,
)
from shared.utils.ids import make_trade_id
from shared.utils.logging import setup_logger


class PaperBroker(Broker):
    """纸面交易 broker。

    Parameters
    ----------
    starting_equity:
        初始现金。
    slippage:
        滑点比例（0.0005 = 0.05%）；买入价上移、卖出价下移。
    fee:
        手续费比例，叠加在成交金额上。
    equity_sample_secs:
        权益历史最小采样间隔（模拟时间，秒）。
    """

    def __init__(
        self,
        *,
        starting_equity: float = 10000.0,
        slippage: float = 0.0005,
        fee: float = 0.001,
        equity_sample_secs: int = 60,
        mode: BrokerMode = BrokerMode.PAPER,
        suppress_logs: bool = False,
    ):
        if starting_equity <= 0:
            raise ValueError("starting_equity must be positive")
        self.mode = mode
        self.slippage = float(slippage)
        self.fee = float(fee)
        self.equity_sample_ms = int(equity_sample_secs) * 1000
        self.suppress_logs = suppress_logs
        self.logger = setup_logger("paper-broker")
        self.positions: dict[str, Position] = {}
        self.account = PaperAccount(
            balance=float(starting_equity),
            equity=float(starting_equity),
            peak_equity=float(starting_equity),
        )
        self._last_prices: dict[str, float] = {}

    @classmethod
    def from_config(cls, cfg, *, mode: BrokerMode = BrokerMode.PAPER, suppress_logs: bool = False) -> "PaperBroker":
        return cls(
            starting_equity=cfg.account.starting_equity,
            slippage=cfg.paper.slippage,
            fee=cfg.paper.fee,
            equity_sample_secs=cfg.paper.equity_sample_secs,
            mode=mode,
            suppress_logs=suppress_logs,
        )

    def _log(self, msg: str, *args) -> None:
        if not self.suppress_logs:
            self.logger.info(msg, *args)

    def get_position(self, symbol: str) -> Position | None:
        return self.positions.get(symbol)

    def get_positions(self) -> dict[str, Position]:
        return dict(self.positions)

    def get_account(self) -> PaperAccount:
        return self.account

    def open_position(self, signal: Signal, candle: Candle, shares: int) -> bool:
        shares = int(shares)
        if shares <= 0:
            return False
        if signal.symbol in self.positions:
            return False
        if signal.stop is None or signal.target is None:
            return False

        price = float(candle.close)
        cost = shares * price * (1 + self.slippage)
        total = cost * (1 + self.fee)
        if total > self.account.balance:
            self._log(
                "[%s] reject %s: cost %.2f > balance %.2f",
                self.mode.value,
                signal.symbol,
                total,
                self.account.balance,
            )
            return False

        entry = price * (1 + self.slippage)
        self.account.balance -= total
        self.positions[signal.symbol] = Position(
            symbol=signal.symbol,
            entry=entry,
            shares=shares,
            stop=float(signal.stop),
            target=float(signal.target),
            opened_ts=int(candle.timestamp),
        )
        self._last_prices[signal.symbol] = price
        self._log(
            "[%s ORDER] BUY %s shares=%d entry=%.4f stop=%.4f target=%.4f",
            self.mode.value,
            signal.symbol,
            shares,
            entry,
            signal.stop,
            signal.target,
        )
        return True

    def close_position(
        self, symbol: str, candle: Candle, reason: ExitReason | None = None
    ) -> JournalTrade | None:
        pos = self.positions.get(symbol)
        if pos is None:
            return None

        exit_price = float(candle.close) * (1 - self.slippage)
        proceeds = pos.shares * exit_price
        final = proceeds * (1 - self.fee)
        profit = final - pos.shares * pos.entry

        self.account.balance += final
        self.account.daily_pnl += profit

        risk = (pos.entry - pos.stop) * pos.shares
        r_multiple = profit / risk if risk > 0 else 0.0
        if reason == ExitReason.TIME_STOP:
            outcome = TradeOutcome.TIME_STOP
        else:
            outcome = TradeOutcome.PROFIT if profit > 0 else TradeOutcome.LOSS

        trade = JournalTrade(
            id=make_trade_id(
                symbol=symbol, opened_ts=pos.opened_ts, closed_ts=candle.timestamp, shares=pos.shares
            ),
            symbol=symbol,
            opened_ts=pos.opened_ts,
            closed_ts=int(candle.timestamp),
            entry=pos.entry,
            exit=exit_price,
            shares=pos.shares,
            stop=pos.stop,
            target=pos.target,
            outcome=outcome,
            r_multiple=r_multiple,
            pnl=profit,
            exit_reason=reason,
        )
        del self.positions[symbol]
        self._last_prices.pop(symbol, None)
        self._log(
            "[%s ORDER] SELL %s shares=%d exit=%.4f pnl=%.2f R=%.2f reason=%s",
            self.mode.value,
            symbol,
            trade.shares,
            exit_price,
            profit,
            r_multiple,
            reason.value if reason else "manual",
        )
        return trade

    def advance_bar(self, symbol: str) -> None:
        pos = self.positions.get(symbol)
        if pos is not None:
            pos.bars_held += 1

    def update_equity(self, prices: Mapping[str, float], ts_ms: int) -> PaperAccount:
        """权益 = 现金 + Σ 持仓 × 最新价（本轮无报价时沿用上次价格，再退回开仓价）。"""
        for symbol, price in prices.items():
            if symbol in self.positions and price and price > 0:
                self._last_prices[symbol] = float(price)

        market_value = 0.0
        for symbol, pos in self.positions.items():
            mark = self._last_prices.get(symbol, pos.entry)
            market_value += pos.shares * mark

        acct = self.account
        acct.equity = acct.balance + market_value
        acct.peak_equity = max(acct.peak_equity, acct.equity)
        acct.drawdown = (
            (acct.peak_equity - acct.equity) / acct.peak_equity * 100.0 if acct.peak_equity > 0 else 0.0
        )

        ts_ms = int(ts_ms)
        if not acct.history or ts_ms - acct.history[-1].timestamp >= self.equity_sample_ms:
            acct.history.append(EquityPoint(timestamp=ts_ms, equity=acct.equity))
        return acct

    def reset_daily(self) -> None:
        """跨日重置当日盈亏。"""
        self.account.daily_pnl = 0.0
        self._log("[%s] Daily PnL reset.", self.mode.value)
