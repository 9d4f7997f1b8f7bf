"""因子注册表与指标引擎。

`IndicatorEngine.compute(candles)` 是无状态纯函数：同样的 K 线序列永远得到同样的指标。
为了控制计算量，只取尾部 `lookback` 根 K 线参与计算。
"""

from __future__ import annotations

from typing import Any, Sequence

import pandas as pd

from algo.factors.atr import ATRFactor
from algo.factors.base import Factor
from algo.factors.ema import EMAFactor
from algo.factors.rsi import RSIFactor
from algo.factors.volume import VolumeSMAFactor
from shared.models.models import Candle, Indicators

DEFAULT_LOOKBACK = 250

_REGISTRY: dict[str, type] = {}


def register_factor(name: str, cls: type) -> None:
    _REGISTRY[name] = cls


def get_factor_cls(name: str) -> type:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown factor: {name}")
    return _REGISTRY[name]


def build_factor(name: str, **params: Any) -> Factor:
    cls = get_factor_cls(name)
    try:
        return cls(**params)
    except TypeError as exc:
        raise ValueError(f"Invalid params for factor '{name}': {params}") from exc


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """把 Candle 序列转换为 DataFrame（列：ts/open/high/low/close/volume）。"""
    return pd.DataFrame(
        {
            "ts": [c.timestamp for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        }
    )


class IndicatorEngine:
    """计算 ema20/ema200/rsi14/atr14/vol_sma20。

    Parameters
    ----------
    ema_fast / ema_slow:
        触发线与趋势线周期。
    rsi_period / atr_period / vol_period:
        动量、波动与成交量窗口。
    lookback:
        参与计算的尾部 K 线数量。
    """

    def __init__(
        self,
        *,
        ema_fast: int = 20,
        ema_slow: int = 200,
        rsi_period: int = 14,
        atr_period: int = 14,
        vol_period: int = 20,
        lookback: int = DEFAULT_LOOKBACK,
    ):
        if lookback < ema_slow:
            raise ValueError(f"lookback ({lookback}) must cover ema_slow ({ema_slow})")
        self.lookback = int(lookback)
        self.ema_fast = build_factor("ema", period=ema_fast)
        self.ema_slow = build_factor("ema", period=ema_slow)
        self.rsi = build_factor("rsi", period=rsi_period)
        self.atr = build_factor("atr", period=atr_period)
        self.vol_sma = build_factor("vol_sma", window=vol_period)

    @classmethod
    def from_config(cls, strategy_cfg: Any) -> "IndicatorEngine":
        return cls(
            ema_fast=strategy_cfg.ema_fast,
            ema_slow=strategy_cfg.ema_slow,
            rsi_period=strategy_cfg.rsi_period,
            atr_period=strategy_cfg.atr_period,
            vol_period=strategy_cfg.vol_period,
            lookback=strategy_cfg.lookback,
        )

    def compute(self, candles: Sequence[Candle]) -> Indicators:
        df = candles_to_frame(candles[-self.lookback :])
        return Indicators(
            ema20=self.ema_fast.latest(df),
            ema200=self.ema_slow.latest(df),
            rsi14=self.rsi.latest(df),
            atr14=self.atr.latest(df),
            vol_sma20=self.vol_sma.latest(df),
        )


def compute_indicators(candles: Sequence[Candle], lookback: int = DEFAULT_LOOKBACK) -> Indicators:
    """按默认周期计算指标。"""
    return IndicatorEngine(lookback=lookback).compute(candles)


# 默认注册
register_factor("ema", EMAFactor)
register_factor("rsi", RSIFactor)
register_factor("atr", ATRFactor)
register_factor("vol_sma", VolumeSMAFactor)
