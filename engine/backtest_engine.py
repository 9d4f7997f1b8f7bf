"""单次回测引擎（BacktestEngine）。

目标是“一眼能看懂”：配置 → 数据 → 逐根推进（与实时循环共用同一段管线）→ 指标/产物。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Sequence

import pandas as pd

from algo.strategy.market_hours import NY_TZ
from algo.strategy.metals_trend import MetalsTrendStrategy
from algo.strategy.registry import build_strategy
from broker.abstract_broker import BrokerMode
from broker.paper_broker import PaperBroker
from engine.base_engine import BaseEngine, EngineResult
from engine.signal_pipeline import flatten_symbol, process_symbol
from market_data.client import FakeMarketClient
from market_data.loader import load_candles_from_csv
from risk.manager import RiskManager
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.models.models import BotState, Candle, EquityPoint, JournalTrade, SignalAction
from shared.utils.logging import setup_logger
from utils.metrics import compute_metrics
from utils.plotter import plot_drawdown, plot_equity_curve

FAKE_HISTORY_BARS = 1500


@dataclass
class BacktestReport:
    """回测结果（百分比字段：12.5 表示 12.5%）。"""

    symbol: str
    total_return: float = 0.0
    win_rate: float = 0.0
    max_drawdown: float = 0.0
    profit_factor: float = 0.0
    trades: list[JournalTrade] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    starting_equity: float = 0.0
    final_equity: float = 0.0
    bars: int = 0
    buy_signals: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "bars": self.bars,
            "total_return": self.total_return,
            "win_rate": self.win_rate,
            "max_drawdown": self.max_drawdown,
            "profit_factor": self.profit_factor,
            "total_trades": len(self.trades),
            "buy_signals": self.buy_signals,
            "starting_equity": self.starting_equity,
            "final_equity": self.final_equity,
            "expectancy": self.metrics.get("expectancy", 0.0),
            "avg_r_multiple": self.metrics.get("avg_r_multiple", 0.0),
        }


def _ny_date(ts_ms: int) -> date:
    return datetime.fromtimestamp(ts_ms / 1000, tz=NY_TZ).date()


def run_backtest(
    strategy: MetalsTrendStrategy,
    symbol: str,
    candles: Sequence[Candle],
    config: MainConfig,
) -> BacktestReport:
    """对单个 symbol 的历史 K 线做逐根回测。

    Notes
    -----
    - 从第 `warmup_bars` 根开始，每根都在尾部窗口上重算指标；
    - 离场/入场/熔断/仓位/撮合与实时循环走同一段 `process_symbol`；
    - VIX 历史不可得，固定使用 `config.backtest.vix`；
    - K 线不足 `warmup_bars + 1` 根时返回空报告（不抛异常）。
    """
    logger = setup_logger("backtest")
    starting_equity = float(config.account.starting_equity)
    report = BacktestReport(symbol=symbol, starting_equity=starting_equity, final_equity=starting_equity)

    warmup = strategy.warmup_bars
    if len(candles) < warmup + 1:
        logger.warning(
            "Not enough candles for %s: got %d, need at least %d. Returning empty report.",
            symbol,
            len(candles),
            warmup + 1,
        )
        return report

    broker = PaperBroker.from_config(config, mode=BrokerMode.BACKTEST, suppress_logs=True)
    risk = RiskManager.from_config(config, suppress_warnings=True)
    vix = float(config.backtest.vix)
    lookback = strategy.lookback

    state = BotState.WAIT
    cooldown = 0
    trades: list[JournalTrade] = []
    current_day: date | None = None

    for i in range(warmup, len(candles)):
        candle = candles[i]
        window = candles[max(0, i + 1 - lookback) : i + 1]

        day = _ny_date(candle.timestamp)
        if current_day is not None and day != current_day:
            broker.reset_daily()
        current_day = day

        step = process_symbol(
            symbol=symbol,
            candles=window,
            vix=vix,
            state=state,
            cooldown=cooldown,
            strategy=strategy,
            broker=broker,
            risk=risk,
            now_ms=candle.timestamp,
        )
        state, cooldown = step.state, step.cooldown
        if step.trade is not None:
            trades.append(step.trade)
        if step.signal.action == SignalAction.BUY:
            report.buy_signals += 1

        broker.update_equity({symbol: candle.close}, candle.timestamp)

    if config.backtest.flatten_on_end:
        last = candles[-1]
        step = flatten_symbol(symbol=symbol, candle=last, vix=vix, strategy=strategy, broker=broker)
        if step is not None and step.trade is not None:
            trades.append(step.trade)
            broker.update_equity({symbol: last.close}, last.timestamp)
            # 同一时间戳只保留一个点，覆盖为平仓后的权益
            history = broker.account.history
            if history and history[-1].timestamp == last.timestamp:
                history[-1] = EquityPoint(timestamp=last.timestamp, equity=broker.account.equity)

    account = broker.get_account()
    equity_curve = list(account.history)
    metrics = compute_metrics(
        starting_equity=starting_equity,
        final_equity=account.equity,
        equity_curve=equity_curve,
        trades=trades,
    )
    report.total_return = metrics["total_return"]
    report.win_rate = metrics["win_rate"]
    report.max_drawdown = metrics["max_drawdown"]
    report.profit_factor = metrics["profit_factor"]
    report.trades = trades
    report.equity_curve = equity_curve
    report.final_equity = account.equity
    report.bars = len(candles) - warmup
    report.metrics = metrics
    return report


def _export_trades_csv(trades: Sequence[JournalTrade], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = [
        {
            "id": t.id,
            "symbol": t.symbol,
            "opened_ts": t.opened_ts,
            "closed_ts": t.closed_ts,
            "entry": t.entry,
            "exit": t.exit,
            "shares": t.shares,
            "stop": t.stop,
            "target": t.target,
            "outcome": t.outcome.value,
            "exit_reason": t.exit_reason.value if t.exit_reason else "",
            "r_multiple": t.r_multiple,
            "pnl": t.pnl,
        }
        for t in trades
    ]
    columns = [
        "id", "symbol", "opened_ts", "closed_ts", "entry", "exit", "shares",
        "stop", "target", "outcome", "exit_reason", "r_multiple", "pnl",
    ]
    pd.DataFrame(rows, columns=columns).to_csv(path, index=False)


def _export_equity_csv(equity_curve: Sequence[EquityPoint], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame({"ts": [p.timestamp for p in equity_curve], "equity": [p.equity for p in equity_curve]})
    if not df.empty:
        peak = df["equity"].cummax()
        df["drawdown"] = peak - df["equity"]
        df["drawdown_pct"] = (df["drawdown"] / peak * 100.0).where(peak > 0, 0.0)
    df.to_csv(path, index=False)


class BacktestEngine(BaseEngine):
    """单次回测引擎（CLI 入口由仓库根目录 `main.py` 承担）。

    Parameters
    ----------
    cfg_path / cfg_obj:
        配置文件路径或已解析的配置对象（后者优先）。
    symbol:
        回测品种；缺省用 `backtest.symbol`，再缺省用 watchlist 第一个。
    data_path:
        历史 K 线 CSV；缺省用 `backtest.data_path`，都没有时用假数据。
    artifacts_dir:
        产物目录（trades.csv/equity.csv/图）；None 表示不导出。
    """

    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: MainConfig | None = None,
        symbol: str | None = None,
        data_path: str | None = None,
        artifacts_dir: str | Path | None = None,
    ):
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._symbol = symbol
        self._data_path = data_path
        self._artifacts_dir = artifacts_dir
        self.report: BacktestReport | None = None

    def run(self) -> EngineResult:
        cfg = self._load_cfg()
        logger = setup_logger("backtest")

        symbol = (self._symbol or cfg.backtest.symbol or cfg.watchlist[0]).upper()
        candles = self._load_candles(cfg, symbol)
        logger.info("Backtest %s on %d candles", symbol, len(candles))

        strategy = build_strategy(cfg)
        report = run_backtest(strategy, symbol, candles, cfg)
        self.report = report

        summary = report.summary()
        artifacts = self._export_artifacts(cfg, report)
        logger.info("Backtest summary: %s", summary)
        return EngineResult(summary=summary, artifacts=artifacts)

    def _load_cfg(self) -> MainConfig:
        return self._cfg_obj or load_config(self._cfg_path, load_env=False, expand_env_vars=False)

    def _load_candles(self, cfg: MainConfig, symbol: str) -> list[Candle]:
        data_path = self._data_path or cfg.backtest.data_path
        if data_path:
            return load_candles_from_csv(data_path)
        return FakeMarketClient(seed=cfg.market.seed).fetch_history(symbol, bars=FAKE_HISTORY_BARS)

    def _export_artifacts(self, cfg: MainConfig, report: BacktestReport) -> dict[str, Any] | None:
        artifacts_dir = self._artifacts_dir or cfg.backtest.artifacts_dir
        if artifacts_dir is None:
            return None

        out_dir = Path(artifacts_dir)
        _export_trades_csv(report.trades, out_dir / "trades.csv")
        _export_equity_csv(report.equity_curve, out_dir / "equity.csv")

        if not cfg.backtest.skip_plots and report.equity_curve:
            logger = setup_logger("backtest")
            try:
                plot_equity_curve(report.equity_curve, str(out_dir / "equity.png"))
                plot_drawdown(report.equity_curve, str(out_dir / "drawdown.png"))
            except Exception as exc:  # pragma: no cover
                logger.warning("Plotting failed: %s", exc)

        return {"dir": str(out_dir)}
