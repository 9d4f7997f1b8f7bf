from __future__ import annotations

from dataclasses import replace

import pytest

from algo.strategy.evaluator import build_signal
from broker.paper_broker import PaperBroker
from shared.models.models import Candle, ExitReason, SignalAction, TradeOutcome

S = 0.0005
F = 0.001


def _broker(equity: float = 10000.0) -> PaperBroker:
    return PaperBroker(starting_equity=equity, slippage=S, fee=F, equity_sample_secs=60, suppress_logs=True)


def _buy(symbol: str = "GLD", *, stop: float = 95.0, target: float = 110.0):
    sig = build_signal(
        symbol=symbol,
        now_ms=1_000,
        action=SignalAction.BUY,
        price=100.0,
        confidence=85,
        reason_codes=["TREND_UP"],
        vix=15.0,
    )
    return replace(sig, entry=100.0, stop=stop, target=target, shares=10)


def _bar(close: float, ts: int = 1_000) -> Candle:
    return Candle(timestamp=ts, open=close, high=close, low=close, close=close, volume=1000)


def test_open_position_applies_slippage_and_fee():
    broker = _broker()
    assert broker.open_position(_buy(), _bar(100.0), 10) is True
    pos = broker.get_position("GLD")
    assert pos is not None
    assert pos.entry == pytest.approx(100.0 * (1 + S))
    assert pos.shares == 10
    assert broker.get_account().balance == pytest.approx(10000.0 - 10 * 100.0 * (1 + S) * (1 + F))


@pytest.mark.parametrize("shares", [0, -3])
def test_open_rejects_non_positive_shares(shares):
    broker = _broker()
    assert broker.open_position(_buy(), _bar(100.0), shares) is False
    assert broker.get_positions() == {}
    assert broker.get_account().balance == 10000.0


def test_open_rejects_when_cash_insufficient():
    broker = _broker(equity=1000.0)
    assert broker.open_position(_buy(), _bar(100.0), 10) is False
    assert broker.get_position("GLD") is None
    assert broker.get_account().balance == 1000.0


def test_open_rejects_second_position_same_symbol():
    broker = _broker()
    assert broker.open_position(_buy(), _bar(100.0), 5)
    assert broker.open_position(_buy(), _bar(100.0), 5) is False
    assert broker.get_position("GLD").shares == 5


def test_round_trip_at_same_price_loses_slippage_and_fees():
    broker = _broker()
    n, p = 10, 100.0
    broker.open_position(_buy(), _bar(p), n)
    trade = broker.close_position("GLD", _bar(p, ts=2_000), ExitReason.STOP)

    assert trade is not None
    assert trade.outcome == TradeOutcome.LOSS
    assert trade.pnl < 0
    assert broker.get_position("GLD") is None

    fee_open = n * p * (1 + S) * F
    fee_close = n * p * (1 - S) * F
    expected_cost = n * p * S + n * p * S + fee_open + fee_close
    assert 10000.0 - broker.get_account().balance == pytest.approx(expected_cost)
    assert broker.get_account().daily_pnl == pytest.approx(trade.pnl)


def test_close_profit_records_r_multiple():
    broker = _broker()
    broker.open_position(_buy(), _bar(100.0), 10)
    trade = broker.close_position("GLD", _bar(110.0, ts=5_000), ExitReason.TARGET)

    entry = 100.0 * (1 + S)
    exit_price = 110.0 * (1 - S)
    profit = 10 * exit_price * (1 - F) - 10 * entry
    assert trade.outcome == TradeOutcome.PROFIT
    assert trade.exit == pytest.approx(exit_price)
    assert trade.pnl == pytest.approx(profit)
    assert trade.r_multiple == pytest.approx(profit / ((entry - 95.0) * 10))
    assert trade.opened_ts == 1_000
    assert trade.closed_ts == 5_000
    assert trade.exit_reason == ExitReason.TARGET


def test_time_stop_outcome():
    broker = _broker()
    broker.open_position(_buy(), _bar(100.0), 10)
    trade = broker.close_position("GLD", _bar(101.0), ExitReason.TIME_STOP)
    assert trade.outcome == TradeOutcome.TIME_STOP


def test_r_multiple_zero_when_stop_above_entry():
    broker = _broker()
    broker.open_position(_buy(stop=120.0), _bar(100.0), 10)
    trade = broker.close_position("GLD", _bar(100.0))
    assert trade.r_multiple == 0.0


def test_close_without_position_is_noop():
    broker = _broker()
    assert broker.close_position("SLV", _bar(20.0)) is None
    assert broker.get_account().balance == 10000.0


def test_update_equity_marks_to_market_and_tracks_drawdown():
    broker = _broker()
    broker.open_position(_buy(), _bar(100.0), 10)
    cash = broker.get_account().balance

    acct = broker.update_equity({"GLD": 110.0}, 0)
    assert acct.equity == pytest.approx(cash + 10 * 110.0)
    peak = acct.peak_equity

    acct = broker.update_equity({"GLD": 90.0}, 120_000)
    assert acct.equity == pytest.approx(cash + 10 * 90.0)
    assert acct.peak_equity == peak
    assert acct.drawdown == pytest.approx((peak - acct.equity) / peak * 100.0)


def test_update_equity_falls_back_to_last_then_entry_price():
    broker = _broker()
    broker.open_position(_buy(), _bar(100.0), 10)
    cash = broker.get_account().balance
    # 开仓时记录的最近价格为 100
    assert broker.update_equity({}, 0).equity == pytest.approx(cash + 10 * 100.0)
    broker.update_equity({"GLD": 105.0}, 1)
    assert broker.update_equity({"SLV": 20.0}, 2).equity == pytest.approx(cash + 10 * 105.0)


def test_equity_history_sampled_at_most_once_per_minute():
    broker = _broker()
    broker.update_equity({}, 0)
    broker.update_equity({}, 30_000)
    broker.update_equity({}, 59_999)
    assert len(broker.get_account().history) == 1
    broker.update_equity({}, 60_000)
    assert [p.timestamp for p in broker.get_account().history] == [0, 60_000]


def test_reset_daily_clears_daily_pnl():
    broker = _broker()
    broker.open_position(_buy(), _bar(100.0), 10)
    broker.close_position("GLD", _bar(90.0))
    assert broker.get_account().daily_pnl < 0
    broker.reset_daily()
    assert broker.get_account().daily_pnl == 0.0


def test_advance_bar_counts_holding_period():
    broker = _broker()
    broker.open_position(_buy(), _bar(100.0), 10)
    broker.advance_bar("GLD")
    broker.advance_bar("GLD")
    assert broker.get_position("GLD").bars_held == 2
