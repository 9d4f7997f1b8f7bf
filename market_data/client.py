"""行情客户端（Yahoo chart API / 本地假数据）。

所有实现遵循同一约定：数据源不可用时返回空结果（空列表 / None），不抛异常，
由调用方保持上一轮状态，绝不编造价格。
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Sequence

import numpy as np
import requests

from shared.models.models import Candle, CandleQuality, Quote
from shared.utils.logging import setup_logger

BAR_MS = 15 * 60 * 1000


class MarketClient(ABC):
    """行情客户端抽象基类。"""

    @abstractmethod
    def fetch_prices(self, symbols: Sequence[str]) -> list[Quote]:
        """拉取最新报价；不可用时返回空列表。"""
        raise NotImplementedError

    @abstractmethod
    def fetch_history(self, symbol: str, bars: int = 400) -> list[Candle]:
        """拉取按时间升序的 15 分钟 K 线；不可用时返回空列表。"""
        raise NotImplementedError

    @abstractmethod
    def fetch_vix(self) -> float | None:
        """拉取波动率指数；不可用时返回 None。"""
        raise NotImplementedError

    def close(self) -> None:
        return None


class FakeMarketClient(MarketClient):
    """本地假数据源（固定种子的随机游走），便于离线开发/测试。

    Parameters
    ----------
    seed:
        随机种子；相同种子 + 相同调用序列得到相同数据。
    drift:
        每根 K 线的平均收益率（正数制造上升趋势）。
    volatility:
        每根 K 线收益率标准差。
    vix:
        VIX 基准值（围绕该值小幅波动）。
    clock:
        返回秒级时间戳的函数，测试时可替换。
    """

    def __init__(
        self,
        *,
        seed: int = 7,
        drift: float = 0.0,
        volatility: float = 0.002,
        vix: float = 16.0,
        clock: Callable[[], float] = time.time,
        logger=None,
    ):
        self.rng = np.random.default_rng(seed)
        self.drift = float(drift)
        self.volatility = float(volatility)
        self.base_vix = float(vix)
        self.clock = clock
        self.logger = logger or setup_logger("market-fake")
        self._last_price: dict[str, float] = {}
        self._session_volume: dict[str, int] = {}

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def fetch_history(self, symbol: str, bars: int = 400) -> list[Candle]:
        if bars <= 0:
            return []
        start_price = float(self.rng.uniform(30.0, 250.0))
        returns = self.rng.normal(self.drift, self.volatility, size=bars)
        closes = start_price * np.cumprod(1.0 + returns)
        opens = np.concatenate([[start_price], closes[:-1]])
        wiggle = np.abs(self.rng.normal(0.0, self.volatility / 2, size=(2, bars)))
        highs = np.maximum(opens, closes) * (1.0 + wiggle[0])
        lows = np.minimum(opens, closes) * (1.0 - wiggle[1])
        volumes = self.rng.integers(500_000, 1_500_000, size=bars)

        now_ms = self._now_ms()
        last_open = now_ms - now_ms % BAR_MS
        candles = [
            Candle(
                timestamp=int(last_open - (bars - 1 - i) * BAR_MS),
                open=float(opens[i]),
                high=float(highs[i]),
                low=float(lows[i]),
                close=float(closes[i]),
                volume=int(volumes[i]),
                quality=CandleQuality.BACKFILLED,
            )
            for i in range(bars)
        ]
        self._last_price[symbol] = candles[-1].close
        return candles

    def fetch_prices(self, symbols: Sequence[str]) -> list[Quote]:
        now_ms = self._now_ms()
        quotes: list[Quote] = []
        for symbol in symbols:
            prev = self._last_price.get(symbol) or float(self.rng.uniform(30.0, 250.0))
            price = prev * (1.0 + float(self.rng.normal(self.drift, self.volatility)))
            self._last_price[symbol] = price
            # 报价成交量按当日累计口径递增
            volume = self._session_volume.get(symbol, 0) + int(self.rng.integers(5_000, 50_000))
            self._session_volume[symbol] = volume
            quotes.append(
                Quote(
                    symbol=symbol,
                    price=price,
                    high=max(prev, price),
                    low=min(prev, price),
                    volume=volume,
                    timestamp=now_ms,
                    change_percent=(price / prev - 1.0) * 100.0,
                )
            )
        return quotes

    def fetch_vix(self) -> float | None:
        return max(0.0, self.base_vix + float(self.rng.normal(0.0, 0.5)))


def parse_chart_candles(payload: dict[str, Any], quality: CandleQuality = CandleQuality.BACKFILLED) -> list[Candle]:
    """解析 Yahoo `v8/finance/chart` 响应为 Candle 列表（跳过含空值的 K 线）。"""
    results = (payload.get("chart") or {}).get("result") or []
    if not results:
        return []
    result = results[0]
    timestamps = result.get("timestamp") or []
    quotes = ((result.get("indicators") or {}).get("quote") or [{}])[0]
    opens = quotes.get("open") or []
    highs = quotes.get("high") or []
    lows = quotes.get("low") or []
    closes = quotes.get("close") or []
    volumes = quotes.get("volume") or []

    candles: list[Candle] = []
    for i, ts in enumerate(timestamps):
        try:
            o, h, l, c = opens[i], highs[i], lows[i], closes[i]
            v = volumes[i] if i < len(volumes) else 0
        except IndexError:
            break
        if None in (o, h, l, c) or c <= 0:
            continue
        candles.append(
            Candle(
                timestamp=int(ts) * 1000,
                open=float(o),
                high=float(max(h, o, c)),
                low=float(min(l, o, c)),
                close=float(c),
                volume=int(v or 0),
                quality=quality,
            )
        )
    return candles


def parse_chart_quote(symbol: str, payload: dict[str, Any]) -> Quote | None:
    """从 chart 响应的 meta 字段提取最新报价。"""
    results = (payload.get("chart") or {}).get("result") or []
    if not results:
        return None
    meta = results[0].get("meta") or {}
    price = meta.get("regularMarketPrice")
    if price is None or price <= 0:
        return None
    prev_close = meta.get("chartPreviousClose") or meta.get("previousClose")
    change = (float(price) / float(prev_close) - 1.0) * 100.0 if prev_close else 0.0
    ts = meta.get("regularMarketTime")
    return Quote(
        symbol=symbol,
        price=float(price),
        high=float(meta.get("regularMarketDayHigh") or price),
        low=float(meta.get("regularMarketDayLow") or price),
        volume=int(meta.get("regularMarketVolume") or 0),
        timestamp=int(ts) * 1000 if ts else int(time.time() * 1000),
        change_percent=change,
    )


class YahooMarketClient(MarketClient):
    """Yahoo Finance chart API 客户端（REST，15 分钟 K 线）。"""

    def __init__(
        self,
        *,
        base_url: str = "https://query1.finance.yahoo.com",
        vix_symbol: str = "^VIX",
        timeout: float = 5.0,
        session: requests.Session | None = None,
        logger=None,
    ):
        self.base_url = base_url.rstrip("/")
        self.vix_symbol = vix_symbol
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "Mozilla/5.0 (metalsbot)")
        self.logger = logger or setup_logger("market-yahoo")

    def _chart(self, symbol: str, *, interval: str, range_: str) -> dict[str, Any] | None:
        url = f"{self.base_url}/v8/finance/chart/{symbol}"
        try:
            resp = self.session.get(url, params={"interval": interval, "range": range_}, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning("Chart request failed for %s: %s", symbol, exc)
            return None

    def fetch_prices(self, symbols: Sequence[str]) -> list[Quote]:
        quotes: list[Quote] = []
        for symbol in symbols:
            payload = self._chart(symbol, interval="1m", range_="1d")
            quote = parse_chart_quote(symbol, payload) if payload else None
            if quote is not None:
                quotes.append(quote)
        return quotes

    def fetch_history(self, symbol: str, bars: int = 400) -> list[Candle]:
        # 15m 每个交易日约 26 根；按需求根数估算请求天数
        days = max(5, min(60, bars // 26 + 2))
        payload = self._chart(symbol, interval="15m", range_=f"{days}d")
        if not payload:
            return []
        return parse_chart_candles(payload)[-bars:]

    def fetch_vix(self) -> float | None:
        payload = self._chart(self.vix_symbol, interval="1m", range_="1d")
        quote = parse_chart_quote(self.vix_symbol, payload) if payload else None
        return quote.price if quote else None

    def close(self) -> None:
        self.session.close()


def get_market_client(market_cfg, logger=None) -> MarketClient:
    """根据配置选择行情客户端。"""
    if market_cfg.source == "yahoo":
        return YahooMarketClient(
            base_url=market_cfg.base_url,
            vix_symbol=market_cfg.vix_symbol,
            timeout=market_cfg.timeout_secs,
            logger=logger,
        )
    if market_cfg.source == "fake":
        return FakeMarketClient(seed=market_cfg.seed, logger=logger)
    raise ValueError(f"Unsupported market source: {market_cfg.source}")
