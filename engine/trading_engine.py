"""纸面实时交易引擎（TradingEngine）。

目标是“一眼能看懂”：配置 → 行情源回填 → 每个 tick（报价 → K 线合并 → 逐 symbol 管线）→ 权益/日志 → 总结。

同一个 tick 内所有 symbol 共用同一份 VIX 快照；tick 之间严格串行，
每个 symbol 的状态/冷却计数只由上一个 tick 的结果决定。
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Sequence

from advisory.channel import AdvisoryChannel
from advisory.client import Advisor, build_advisor
from algo.strategy.market_hours import NY_TZ, session_context
from algo.strategy.registry import build_strategy
from broker.paper_broker import PaperBroker
from engine.base_engine import BaseEngine, EngineResult
from engine.signal_pipeline import SymbolStep, process_symbol
from market_data.client import MarketClient, get_market_client
from risk.manager import RiskManager
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.models.models import BotState, Candle, CandleQuality, MacroCheck, Quote, SignalAction
from shared.state.trade_journal import TradeJournal, build_journal
from shared.utils.logging import setup_logger

# 报价时间落后墙钟超过该值时，合并出的 K 线标记为 DELAYED
DELAYED_AFTER_MS = 2 * 60 * 1000
# 相邻价格跳变超过该比例时打 PRICE_GAP 异常标签
PRICE_GAP_PCT = 0.05


class CandleBook:
    """按 symbol 维护固定周期 K 线；报价合并进当前 K 线，跨周期时开新 K 线。

    报价的 volume 是当日累计成交量，K 线只计入相邻两笔报价之间的增量：
    - 每个 symbol 的第一笔报价只作为基准，不计入成交量；
    - 累计量回落（新交易日）时，本笔累计量即为增量；
    - 时间戳没有前进的报价（轮询到同一笔）直接丢弃。
    """

    def __init__(self, *, timeframe_minutes: int = 15, max_bars: int = 400):
        self.bar_ms = int(timeframe_minutes) * 60 * 1000
        self.max_bars = int(max_bars)
        self._candles: dict[str, list[Candle]] = {}
        self._last_quotes: dict[str, Quote] = {}

    def seed(self, symbol: str, candles: Sequence[Candle]) -> None:
        self._candles[symbol] = list(candles)[-self.max_bars :]
        self._last_quotes.pop(symbol, None)

    def candles(self, symbol: str) -> list[Candle]:
        return self._candles.get(symbol, [])

    def __len__(self) -> int:
        return len(self._candles)

    def _volume_delta(self, quote: Quote) -> int | None:
        """返回本笔报价贡献的成交量；None 表示重复/乱序报价。"""
        prev = self._last_quotes.get(quote.symbol)
        if prev is not None and quote.timestamp <= prev.timestamp:
            return None
        self._last_quotes[quote.symbol] = quote
        if prev is None:
            return 0
        if quote.volume < prev.volume:
            return max(0, quote.volume)
        return quote.volume - prev.volume

    def merge(self, quote: Quote, *, now_ms: int) -> bool:
        """合并一笔报价，返回是否开了新 K 线。"""
        volume = self._volume_delta(quote)
        if volume is None:
            return False

        history = self._candles.setdefault(quote.symbol, [])
        bar_start = quote.timestamp - quote.timestamp % self.bar_ms
        quality = (
            CandleQuality.DELAYED if now_ms - quote.timestamp > DELAYED_AFTER_MS else CandleQuality.REALTIME
        )

        anomalies: list[str] = []
        if history and history[-1].close > 0:
            if abs(quote.price / history[-1].close - 1.0) > PRICE_GAP_PCT:
                anomalies.append("PRICE_GAP")
        if quote.volume <= 0:
            anomalies.append("ZERO_VOLUME")

        last = history[-1] if history else None
        if last is not None and last.timestamp - last.timestamp % self.bar_ms == bar_start:
            history[-1] = Candle(
                timestamp=quote.timestamp,
                open=last.open,
                high=max(last.high, quote.price),
                low=min(last.low, quote.price),
                close=quote.price,
                volume=last.volume + volume,
                quality=quality,
                anomalies=tuple(anomalies),
            )
            return False

        if last is not None and quote.timestamp < last.timestamp:
            # 乱序报价直接丢弃
            return False

        history.append(
            Candle(
                timestamp=quote.timestamp,
                open=quote.price,
                high=quote.price,
                low=quote.price,
                close=quote.price,
                volume=volume,
                quality=quality,
                anomalies=tuple(anomalies),
            )
        )
        del history[: -self.max_bars]
        return True


@dataclass
class TickResult:
    """一个 tick 的处理结果。"""

    timestamp: int
    vix: float | None
    steps: dict[str, SymbolStep] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


class TradingEngine(BaseEngine):
    """纸面实时引擎。

    Parameters
    ----------
    cfg_path / cfg_obj:
        配置文件路径或已解析的配置对象（后者优先）。
    max_ticks:
        最多运行多少个 tick（None 表示一直运行，直到 `stop()` 或 Ctrl-C）。
    market_client / advisor / journal:
        可注入的外部协作者；缺省按配置构建。
    clock:
        返回秒级时间戳的函数，测试时可替换。
    """

    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: MainConfig | None = None,
        max_ticks: int | None = None,
        market_client: MarketClient | None = None,
        advisor: Advisor | None = None,
        journal: TradeJournal | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.logger = setup_logger("engine")
        self.cfg = cfg_obj or load_config(cfg_path)
        self._max_ticks = max_ticks
        self._clock = clock

        cfg = self.cfg
        self.watchlist = list(cfg.watchlist)
        self.market = market_client or get_market_client(cfg.market)
        self.strategy = build_strategy(cfg)
        self.risk = RiskManager.from_config(cfg)
        self.broker = PaperBroker.from_config(cfg)
        self.journal = journal or build_journal(cfg.journal)
        self.channel = AdvisoryChannel(advisor or build_advisor(cfg.advisory)) if cfg.ai_enabled else None
        self.book = CandleBook(timeframe_minutes=cfg.runner.timeframe_minutes, max_bars=cfg.runner.history_bars)

        self.states: dict[str, BotState] = {s: BotState.WAIT for s in self.watchlist}
        self.cooldowns: dict[str, int] = {s: 0 for s in self.watchlist}
        self.last_prices: dict[str, float] = {}
        self.vix: float | None = None
        self.macro: MacroCheck | None = None
        self.tick_count = 0

        self._paused = threading.Event()
        self._stopped = threading.Event()
        self._current_day: date | None = None
        self._last_macro_ts: float | None = None
        self._macro_lock = threading.Lock()

    # ---- 控制 ----

    def pause(self) -> None:
        """总开关：暂停后不再执行 tick，所有状态冻结。"""
        if not self._paused.is_set():
            self._paused.set()
            self.logger.warning("Engine paused (kill switch).")

    def resume(self) -> None:
        if self._paused.is_set():
            self._paused.clear()
            self.logger.info("Engine resumed.")

    @property
    def is_paused(self) -> bool:
        return self._paused.is_set()

    def stop(self) -> None:
        self._stopped.set()

    # ---- 运行 ----

    def prime(self) -> dict[str, int]:
        """为未就绪的 symbol 回填历史 K 线；返回每个 symbol 当前的 K 线数量。"""
        bars = self.cfg.runner.history_bars
        for symbol in self.watchlist:
            if len(self.book.candles(symbol)) >= self.cfg.runner.min_history_bars:
                continue
            history = self.market.fetch_history(symbol, bars)
            if not history:
                self.logger.warning("No history for %s, not yet primed.", symbol)
                continue
            self.book.seed(symbol, history)
            self.last_prices[symbol] = history[-1].close
            self.logger.info("Primed %s with %d candles", symbol, len(history))
        return {s: len(self.book.candles(s)) for s in self.watchlist}

    def run(self) -> EngineResult:
        interval = float(self.cfg.runner.interval_secs)
        self.logger.info(
            "Engine start: watchlist=%s session=%s ai=%s",
            self.watchlist,
            session_context(),
            self.cfg.ai_enabled,
        )
        self.prime()

        iterations = 0
        try:
            while not self._stopped.is_set():
                if self._max_ticks is not None and iterations >= self._max_ticks:
                    break
                self.tick()
                iterations += 1
                if self._max_ticks is not None and iterations >= self._max_ticks:
                    break
                self._stopped.wait(interval)
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down.")
        finally:
            self.shutdown()

        summary = self._build_summary()
        self.logger.info("Engine summary: %s", summary)
        return EngineResult(summary=summary)

    def shutdown(self) -> None:
        if self.channel is not None:
            self.channel.close(wait=False)
        self.market.close()

    def tick(self) -> TickResult | None:
        """执行一个 tick；暂停时返回 None 且不改变任何状态。"""
        if self._paused.is_set():
            return None

        now = self._clock()
        now_ms = int(now * 1000)
        self._maybe_roll_day(now_ms)
        self._maybe_check_macro(now)

        unprimed = [s for s in self.watchlist if len(self.book.candles(s)) < self.cfg.runner.min_history_bars]
        if unprimed:
            self.prime()

        quotes = self.market.fetch_prices(self.watchlist)
        vix = self.market.fetch_vix()
        if vix is not None:
            self.vix = vix
        result = TickResult(timestamp=now_ms, vix=self.vix)

        if not quotes:
            self.logger.warning("No quotes this tick, holding state.")
            result.skipped = list(self.watchlist)
            self.tick_count += 1
            return result
        if self.vix is None:
            self.logger.warning("VIX unavailable, holding state.")
            result.skipped = list(self.watchlist)
            self.tick_count += 1
            return result

        new_bars: dict[str, bool] = {}
        for quote in quotes:
            if quote.symbol not in self.states:
                continue
            new_bars[quote.symbol] = self.book.merge(quote, now_ms=now_ms)
            self.last_prices[quote.symbol] = quote.price

        for symbol in self.watchlist:
            candles = self.book.candles(symbol)
            if symbol not in new_bars or len(candles) < self.cfg.runner.min_history_bars:
                result.skipped.append(symbol)
                continue
            try:
                step = process_symbol(
                    symbol=symbol,
                    candles=candles,
                    vix=self.vix,
                    state=self.states[symbol],
                    cooldown=self.cooldowns[symbol],
                    strategy=self.strategy,
                    broker=self.broker,
                    risk=self.risk,
                    now_ms=now_ms,
                    new_bar=new_bars[symbol],
                    macro=self.latest_macro(),
                )
            except Exception:
                self.logger.exception("Step failed for %s, holding previous state.", symbol)
                result.skipped.append(symbol)
                continue

            self._apply_step(symbol, step, candles)
            result.steps[symbol] = step

        self.broker.update_equity(self.last_prices, now_ms)
        self.tick_count += 1
        return result

    def _apply_step(self, symbol: str, step: SymbolStep, candles: Sequence[Candle]) -> None:
        prev_state = self.states[symbol]
        self.states[symbol] = step.state
        self.cooldowns[symbol] = step.cooldown
        sig = step.signal

        if sig.action in (SignalAction.BUY, SignalAction.EXIT) or step.state != prev_state:
            self.logger.info(
                "%s %s conf=%d/%d reasons=%s state=%s->%s filled=%s",
                symbol,
                sig.action.value,
                sig.confidence_adj,
                sig.confidence,
                ",".join(sig.reason_codes),
                prev_state.value,
                step.state.value,
                step.filled,
            )
        if step.trade is not None:
            self.journal.append(step.trade)
        if self.channel is not None and (step.filled or step.trade is not None):
            self.channel.submit(sig, candles)

    def _maybe_roll_day(self, now_ms: int) -> None:
        day = datetime.fromtimestamp(now_ms / 1000, tz=NY_TZ).date()
        if self._current_day is not None and day != self._current_day:
            self.broker.reset_daily()
            self.logger.info("Trading day changed to %s, reset daily PnL.", day.isoformat())
        self._current_day = day

    def _maybe_check_macro(self, now: float) -> None:
        if self.channel is None:
            return
        if self._last_macro_ts is not None and now - self._last_macro_ts < self.cfg.runner.macro_check_secs:
            return
        self._last_macro_ts = now
        self.channel.submit_task(self._run_macro_check)

    def _run_macro_check(self) -> None:
        assert self.channel is not None
        check = self.channel.advisor.validate_macro_thesis(self.watchlist)
        with self._macro_lock:
            self.macro = check
        if not check.is_safe:
            self.logger.warning("Macro check: RISK %s", check.reason)

    def latest_macro(self) -> MacroCheck | None:
        with self._macro_lock:
            return self.macro

    def _build_summary(self) -> dict[str, Any]:
        account = self.broker.get_account()
        return {
            "ticks": self.tick_count,
            "balance": account.balance,
            "equity": account.equity,
            "peak_equity": account.peak_equity,
            "drawdown": account.drawdown,
            "daily_pnl": account.daily_pnl,
            "positions": {s: p.shares for s, p in self.broker.get_positions().items()},
            "states": {s: st.value for s, st in self.states.items()},
            "journal_trades": len(self.journal.list()),
        }
