from __future__ import annotations

import pytest
import requests

from advisory.client import (
    MAX_SOURCES,
    NullAdvisor,
    OFFLINE_COMMENTARY,
    build_advisor,
    commentary_prompt,
    extract_text,
    parse_macro_response,
)
from algo.strategy.evaluator import build_signal
from engine.trading_engine import CandleBook
from market_data.client import (
    FakeMarketClient,
    YahooMarketClient,
    get_market_client,
    parse_chart_candles,
    parse_chart_quote,
)
from shared.config.schema import AdvisoryConfig, MarketConfig
from shared.models.models import Candle, CandleQuality, Quote, SignalAction

# 15 分钟对齐的时间戳
T0 = 1_717_401_600_000
BAR_MS = 15 * 60 * 1000


def _chart_payload() -> dict:
    return {
        "chart": {
            "result": [
                {
                    "meta": {
                        "regularMarketPrice": 212.5,
                        "chartPreviousClose": 200.0,
                        "regularMarketDayHigh": 213.0,
                        "regularMarketDayLow": 208.0,
                        "regularMarketVolume": 1234,
                        "regularMarketTime": 1_717_401_600,
                    },
                    "timestamp": [1_717_400_700, 1_717_401_600, 1_717_402_500],
                    "indicators": {
                        "quote": [
                            {
                                "open": [210.0, None, 211.0],
                                "high": [211.0, 212.0, 211.5],
                                "low": [209.0, 210.0, 210.0],
                                "close": [210.5, 211.0, 212.0],
                                "volume": [100, 200, None],
                            }
                        ]
                    },
                }
            ]
        }
    }


# ---- 行情解析 ----


def test_parse_chart_candles_skips_null_rows():
    candles = parse_chart_candles(_chart_payload())
    assert [c.timestamp for c in candles] == [1_717_400_700_000, 1_717_402_500_000]
    # high 至少覆盖 close
    assert candles[1].high == 212.0
    assert candles[1].volume == 0
    assert all(c.quality == CandleQuality.BACKFILLED for c in candles)


def test_parse_chart_candles_empty_payload():
    assert parse_chart_candles({}) == []
    assert parse_chart_candles({"chart": {"result": None}}) == []


def test_parse_chart_quote():
    quote = parse_chart_quote("GLD", _chart_payload())
    assert quote is not None
    assert quote.price == 212.5
    assert quote.timestamp == T0
    assert quote.change_percent == pytest.approx(6.25)
    assert parse_chart_quote("GLD", {"chart": {"result": [{"meta": {}}]}}) is None


class _Resp:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class _Session:
    def __init__(self, payload=None, exc: Exception | None = None):
        self.headers: dict[str, str] = {}
        self.payload = payload
        self.exc = exc
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        if self.exc is not None:
            raise self.exc
        return _Resp(self.payload)

    def close(self):
        return None


def test_yahoo_client_parses_session_payload():
    session = _Session(payload=_chart_payload())
    client = YahooMarketClient(session=session)

    assert len(client.fetch_history("GLD", bars=1)) == 1
    assert client.fetch_vix() == 212.5
    url, params = session.calls[0]
    assert url.endswith("/v8/finance/chart/GLD")
    assert params["interval"] == "15m"


def test_yahoo_client_returns_empty_on_network_error():
    client = YahooMarketClient(session=_Session(exc=requests.ConnectionError("down")))
    assert client.fetch_prices(["GLD", "SLV"]) == []
    assert client.fetch_history("GLD") == []
    assert client.fetch_vix() is None


def test_fake_client_is_deterministic():
    a = FakeMarketClient(seed=3, clock=lambda: T0 / 1000)
    b = FakeMarketClient(seed=3, clock=lambda: T0 / 1000)
    ha, hb = a.fetch_history("GLD", 50), b.fetch_history("GLD", 50)
    assert ha == hb
    assert ha[-1].timestamp == T0
    assert all(x.timestamp < y.timestamp for x, y in zip(ha, ha[1:]))
    assert all(c.low <= min(c.open, c.close) and c.high >= max(c.open, c.close) for c in ha)
    assert a.fetch_prices(["GLD"]) == b.fetch_prices(["GLD"])


def test_get_market_client():
    assert isinstance(get_market_client(MarketConfig()), FakeMarketClient)
    assert isinstance(get_market_client(MarketConfig(source="yahoo")), YahooMarketClient)


# ---- K 线合并 ----


def _quote(ts: int, price: float, volume: int = 10) -> Quote:
    return Quote(symbol="GLD", price=price, high=price, low=price, volume=volume, timestamp=ts)


def _seeded_book(max_bars: int = 400) -> CandleBook:
    book = CandleBook(timeframe_minutes=15, max_bars=max_bars)
    book.seed("GLD", [Candle(timestamp=T0, open=100.0, high=100.5, low=99.5, close=100.0, volume=50)])
    return book


def test_merge_updates_current_bar():
    book = _seeded_book()
    assert book.merge(_quote(T0 + 60_000, 101.0, volume=1_000), now_ms=T0 + 60_000) is False
    assert book.merge(_quote(T0 + 120_000, 100.8, volume=1_010), now_ms=T0 + 120_000) is False

    [bar] = book.candles("GLD")
    assert bar.open == 100.0
    assert bar.high == 101.0
    assert bar.low == 99.5
    assert bar.close == 100.8
    # 第一笔报价只作基准，之后只计累计量的增量
    assert bar.volume == 60
    assert bar.quality == CandleQuality.REALTIME


def _yahoo_quote(market_time: int, volume: int) -> Quote:
    payload = _chart_payload()
    meta = payload["chart"]["result"][0]["meta"]
    meta["regularMarketTime"] = market_time
    meta["regularMarketVolume"] = volume
    quote = parse_chart_quote("GLD", payload)
    assert quote is not None
    return quote


def test_repeated_yahoo_quote_does_not_inflate_volume():
    book = CandleBook(timeframe_minutes=15)
    book.seed("GLD", [Candle(timestamp=T0, open=212.0, high=212.6, low=211.8, close=212.4, volume=150_000)])

    quote = _yahoo_quote(T0 // 1000 + 60, 8_000_000)
    for _ in range(3):
        book.merge(quote, now_ms=quote.timestamp + 5_000)

    assert book.candles("GLD")[-1].volume == 150_000

    later = _yahoo_quote(T0 // 1000 + 120, 8_040_000)
    book.merge(later, now_ms=later.timestamp)
    assert book.candles("GLD")[-1].volume == 190_000


def test_new_bar_gets_only_volume_since_previous_quote():
    book = _seeded_book()
    book.merge(_quote(T0 + 60_000, 100.0, volume=5_000_000), now_ms=T0 + 60_000)

    ts = T0 + BAR_MS + 1_000
    assert book.merge(_quote(ts, 100.1, volume=5_025_000), now_ms=ts) is True
    assert book.candles("GLD")[-1].volume == 25_000


def test_cumulative_volume_reset_starts_new_session():
    book = _seeded_book()
    book.merge(_quote(T0 + 60_000, 100.0, volume=9_000_000), now_ms=T0 + 60_000)
    book.merge(_quote(T0 + 120_000, 100.0, volume=3_000), now_ms=T0 + 120_000)
    assert book.candles("GLD")[-1].volume == 50 + 3_000


def test_merge_opens_new_bar():
    book = _seeded_book()
    ts = T0 + BAR_MS + 1_000
    assert book.merge(_quote(ts, 100.2), now_ms=ts) is True
    candles = book.candles("GLD")
    assert len(candles) == 2
    assert candles[-1].open == candles[-1].close == 100.2


def test_merge_marks_delayed_and_anomalies():
    book = _seeded_book()
    ts = T0 + 60_000
    book.merge(_quote(ts, 110.0, volume=0), now_ms=ts + 3 * 60_000)
    bar = book.candles("GLD")[-1]
    assert bar.quality == CandleQuality.DELAYED
    assert bar.anomalies == ("PRICE_GAP", "ZERO_VOLUME")


def test_merge_drops_out_of_order_quote():
    book = _seeded_book()
    assert book.merge(_quote(T0 - BAR_MS, 99.0), now_ms=T0) is False
    assert len(book.candles("GLD")) == 1
    assert book.candles("GLD")[0].close == 100.0


def test_book_is_capped():
    book = _seeded_book(max_bars=3)
    for i in range(1, 6):
        book.merge(_quote(T0 + i * BAR_MS, 100.0), now_ms=T0 + i * BAR_MS)
    candles = book.candles("GLD")
    assert len(candles) == 3
    assert candles[-1].timestamp == T0 + 5 * BAR_MS


# ---- AI 咨询 ----


def _gemini_payload(text: str, chunks: int = 0) -> dict:
    return {
        "candidates": [
            {
                "content": {"parts": [{"text": text}]},
                "groundingMetadata": {
                    "groundingChunks": [
                        {"web": {"title": f"News {i}", "uri": f"https://example.com/{i}"}} for i in range(chunks)
                    ]
                },
            }
        ]
    }


def test_macro_response_risk():
    check = parse_macro_response(_gemini_payload("RISK: Surprise rate hike expected.", chunks=5))
    assert check.is_safe is False
    assert check.reason == "Surprise rate hike expected."
    assert len(check.sources) == MAX_SOURCES
    assert check.sources[0].title == "News 0"


def test_macro_response_safe():
    check = parse_macro_response(_gemini_payload("SAFE"))
    assert check.is_safe is True
    assert check.reason == "Market conditions stable."
    assert check.sources == ()


def test_macro_response_empty_is_safe():
    assert parse_macro_response({}).is_safe is True
    assert extract_text({"candidates": []}) == ""


def test_null_advisor():
    advisor = build_advisor(AdvisoryConfig(provider="gemini", api_key=None))
    assert isinstance(advisor, NullAdvisor)
    sig = build_signal(
        symbol="GLD", now_ms=T0, action=SignalAction.BUY, price=200.0,
        confidence=85, reason_codes=["TREND_UP"], vix=15.0,
    )
    assert advisor.get_commentary(sig, []) == OFFLINE_COMMENTARY
    check = advisor.validate_macro_thesis(["GLD"])
    assert check.is_safe is True


def test_commentary_prompt_mentions_signal():
    sig = build_signal(
        symbol="SLV", now_ms=T0, action=SignalAction.BUY, price=28.5,
        confidence=85, reason_codes=["TREND_UP", "VOL_CONFIRM"], vix=15.0,
    )
    candles = [Candle(timestamp=T0, open=28.0, high=28.6, low=27.9, close=28.5, volume=1)]
    prompt = commentary_prompt(sig, candles)
    assert "SLV BUY at 28.50" in prompt
    assert "TREND_UP, VOL_CONFIRM" in prompt
    assert "O: 28.00, C: 28.50" in prompt
