from __future__ import annotations

from datetime import datetime, timezone
from itertools import product

import pytest

from algo.strategy.evaluator import EvaluationConfig, after_exit, evaluate
from shared.config.schema import StrategyConfig
from shared.models.models import BotState, Candle, CandleQuality, Indicators, SignalAction

NOW = 1_700_000_000_000
MINUTE_MS = 60 * 1000

ALL_GATES = ("TREND_UP", "MOMENTUM_OK", "TRIGGER_UP", "VOL_CONFIRM")


def _candle(*, close: float = 100.0, volume: int = 2000, ts: int = NOW, quality=CandleQuality.REALTIME, anomalies=()):
    return Candle(
        timestamp=ts,
        open=close,
        high=close + 1,
        low=close - 1,
        close=close,
        volume=volume,
        quality=quality,
        anomalies=tuple(anomalies),
    )


def _ind(*, ema20: float = 95.0, ema200: float = 90.0, rsi: float = 60.0, atr: float = 2.0, vol_sma: float = 1500.0):
    return Indicators(ema20=ema20, ema200=ema200, rsi14=rsi, atr14=atr, vol_sma20=vol_sma)


CFG = EvaluationConfig(equity=10000.0, risk_pct=0.5, vix_reduce=25.0, vix_pause=30.0)


def _eval(candle=None, *, vix=15.0, state=BotState.WAIT, cooldown=0, ind=None, cfg=CFG, now=NOW):
    return evaluate(
        "GLD",
        [candle or _candle()],
        vix,
        state,
        cooldown,
        cfg,
        now_ms=now,
        indicators=ind or _ind(),
    )


def test_scenario_a_all_gates_buy():
    res = _eval()
    sig = res.signal
    assert sig.action == SignalAction.BUY
    assert set(ALL_GATES) <= set(sig.reason_codes)
    assert res.new_state == BotState.LONG
    assert sig.confidence == 85
    assert sig.confidence_adj == 85
    assert sig.entry == 100.0
    assert sig.stop == pytest.approx(95.0)
    assert sig.target == pytest.approx(108.0)
    # 10000 * 0.5% / (100 - 95) = 10
    assert sig.shares == 10


def test_scenario_b_reduce_regime_halves_shares():
    base = _eval(vix=15.0).signal
    reduced = _eval(vix=26.0).signal
    assert reduced.action == SignalAction.BUY
    assert reduced.shares == base.shares // 2
    assert "REGIME_REDUCED_SIZE" in reduced.reason_codes
    assert "REGIME_REDUCED_SIZE" not in base.reason_codes


def test_scenario_c_stale_candle_pauses_regardless_of_indicators():
    for state in (BotState.WAIT, BotState.LONG, BotState.COOLDOWN):
        res = _eval(_candle(ts=NOW - 30 * MINUTE_MS), state=state, cooldown=2)
        assert res.signal.action == SignalAction.PAUSE_DATA_STALE
        assert res.signal.reason_codes == ("STALE_DATA",)
        assert res.signal.is_stale is True
        assert res.signal.confidence == 0
        assert res.new_state == state
        assert res.new_cooldown == 2


def test_staleness_boundary_is_exclusive():
    res = _eval(_candle(ts=NOW - 25 * MINUTE_MS))
    assert res.signal.action == SignalAction.BUY


def test_scenario_d_high_vix_pauses():
    res = _eval(vix=31.0)
    assert res.signal.action == SignalAction.PAUSE_REGIME
    assert res.signal.reason_codes == ("HIGH_VIX_PAUSE",)
    assert res.signal.shares is None
    assert res.new_state == BotState.WAIT


def test_stale_check_runs_before_regime_check():
    res = _eval(_candle(ts=NOW - 30 * MINUTE_MS), vix=40.0)
    assert res.signal.action == SignalAction.PAUSE_DATA_STALE


def test_cooldown_counts_down_then_returns_to_wait():
    # 趋势不成立，保证第四次只回到 WAIT 而不是直接 BUY
    ind = _ind(ema200=120.0)
    state, cooldown = BotState.COOLDOWN, 3
    seen = []
    for _ in range(3):
        res = _eval(state=state, cooldown=cooldown, ind=ind)
        assert res.signal.action == SignalAction.WAIT
        assert res.signal.reason_codes == (f"COOLDOWN_{cooldown}_BARS",)
        state, cooldown = res.new_state, res.new_cooldown
        seen.append((state, cooldown))
    assert seen == [(BotState.COOLDOWN, 2), (BotState.COOLDOWN, 1), (BotState.COOLDOWN, 0)]

    res = _eval(state=state, cooldown=cooldown, ind=ind)
    assert res.new_state == BotState.WAIT
    assert res.new_cooldown == 0
    assert res.signal.action == SignalAction.WAIT


def test_cooldown_expiry_evaluates_entry_in_same_tick():
    res = _eval(state=BotState.COOLDOWN, cooldown=0)
    assert res.signal.action == SignalAction.BUY
    assert res.new_state == BotState.LONG


def test_long_state_reports_hold():
    res = _eval(state=BotState.LONG)
    assert res.signal.action == SignalAction.HOLD
    assert res.signal.reason_codes == ("POSITION_ACTIVE",)
    assert res.new_state == BotState.LONG


def test_partial_gates_wait_with_reason_codes():
    res = _eval(_candle(volume=1000))
    assert res.signal.action == SignalAction.WAIT
    assert res.signal.confidence == 0
    assert res.signal.reason_codes == ("TREND_UP", "MOMENTUM_OK", "TRIGGER_UP")
    assert res.new_state == BotState.WAIT


def test_rsi_exactly_at_threshold_passes_momentum_gate():
    res = _eval(ind=_ind(rsi=50.0))
    assert "MOMENTUM_OK" in res.signal.reason_codes


@pytest.mark.parametrize(
    "quality, anomalies, expected",
    [
        (CandleQuality.REALTIME, (), 85),
        (CandleQuality.DELAYED, (), 77),
        (CandleQuality.REALTIME, ("PRICE_GAP",), 68),
        (CandleQuality.DELAYED, ("PRICE_GAP",), 61),
    ],
)
def test_confidence_decay(quality, anomalies, expected):
    res = _eval(_candle(quality=quality, anomalies=anomalies))
    assert res.signal.confidence == 85
    assert res.signal.confidence_adj == expected


def test_zero_atr_buy_has_zero_shares():
    res = _eval(ind=_ind(atr=0.0))
    assert res.signal.action == SignalAction.BUY
    assert res.signal.shares == 0


def test_totality_over_states_and_gates():
    actions = set(SignalAction)
    states = set(BotState)
    closes = (80.0, 92.0, 100.0)
    vixes = (15.0, 26.0, 31.0)
    for state, cooldown, close, vix, rsi, volume, quality in product(
        BotState, (0, 1, 3), closes, vixes, (40.0, 60.0), (1000, 2000), (CandleQuality.REALTIME, CandleQuality.DELAYED)
    ):
        res = _eval(_candle(close=close, volume=volume, quality=quality), vix=vix, state=state, cooldown=cooldown, ind=_ind(rsi=rsi))
        assert res.signal.action in actions
        assert res.new_state in states
        assert res.new_cooldown >= 0
        assert 0 <= res.signal.confidence_adj <= res.signal.confidence
        if res.signal.action != SignalAction.BUY:
            assert res.signal.shares is None
        else:
            assert res.signal.shares is not None and res.signal.shares >= 0


def test_empty_history_returns_wait():
    res = evaluate("GLD", [], 15.0, BotState.WAIT, 0, CFG, now_ms=NOW)
    assert res.signal.action == SignalAction.WAIT
    assert res.signal.reason_codes == ("NO_DATA",)


def test_short_history_without_indicators_waits():
    candles = [_candle(ts=NOW - i * 15 * MINUTE_MS) for i in range(10)][::-1]
    res = evaluate("GLD", candles, 15.0, BotState.COOLDOWN, 2, CFG, now_ms=NOW)
    assert res.signal.action == SignalAction.WAIT
    assert res.signal.reason_codes == ("INSUFFICIENT_HISTORY",)
    assert res.new_state == BotState.COOLDOWN
    assert res.new_cooldown == 2


def test_market_hours_gate_when_enabled():
    cfg = EvaluationConfig(strategy=StrategyConfig(respect_market_hours=True))
    saturday = int(datetime(2024, 6, 8, 15, 0, tzinfo=timezone.utc).timestamp() * 1000)
    res = _eval(_candle(ts=saturday), cfg=cfg, now=saturday)
    assert res.signal.action == SignalAction.WAIT
    assert res.signal.reason_codes == ("MARKET_CLOSED",)


def test_signal_id_is_deterministic():
    assert _eval().signal.id == _eval().signal.id
    assert _eval().signal.id != _eval(vix=31.0).signal.id


def test_after_exit_enters_cooldown():
    assert after_exit(CFG) == (BotState.COOLDOWN, 3)
