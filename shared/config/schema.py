"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 带默认值”的边界协议，启动阶段一次构建、全程只读传递；
- 启动阶段尽早失败，避免 typo/类型错误在实盘或长回测中“隐蔽爆炸”；
- 业务代码里不出现 `cfg.get(...)` 与深层字典索引。
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AccountConfig(BaseModel):
    """账户与单笔风险。"""
    starting_equity: float = Field(default=10000.0, gt=0)
    # 每笔交易愿意承担的权益百分比（0.5 表示 0.5%）
    risk_pct: float = Field(default=0.5, gt=0, le=5.0)
    model_config = ConfigDict(extra="forbid")


class RegimeConfig(BaseModel):
    """波动率（VIX）分档：超过 reduce 仓位减半，超过 pause 暂停新开仓。"""
    vix_reduce: float = Field(default=25.0, gt=0)
    vix_pause: float = Field(default=30.0, gt=0)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _pause_above_reduce(self) -> "RegimeConfig":
        if self.vix_pause <= self.vix_reduce:
            raise ValueError("regime.vix_pause must be greater than regime.vix_reduce")
        return self


class StrategyConfig(BaseModel):
    """策略参数（指标周期、止损止盈倍数、冷却期等）。"""
    type: str = "metals_trend"
    ema_fast: int = Field(default=20, gt=0)
    ema_slow: int = Field(default=200, gt=0)
    rsi_period: int = Field(default=14, gt=0)
    rsi_threshold: float = 50.0
    atr_period: int = Field(default=14, gt=0)
    vol_period: int = Field(default=20, gt=0)
    lookback: int = Field(default=250, gt=0)
    warmup_bars: int = Field(default=200, gt=0)
    atr_stop_mult: float = Field(default=2.5, gt=0)
    atr_target_mult: float = Field(default=4.0, gt=0)
    cooldown_bars: int = Field(default=3, ge=0)
    stale_after_minutes: float = Field(default=25.0, gt=0)
    base_confidence: int = Field(default=85, ge=0, le=100)
    respect_market_hours: bool = False
    max_hold_bars: Optional[int] = Field(default=None, gt=0)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _lookback_covers_slow_ema(self) -> "StrategyConfig":
        if self.lookback < self.ema_slow:
            raise ValueError("strategy.lookback must be >= strategy.ema_slow")
        return self


class RiskConfig(BaseModel):
    """账户级风控（百分比单位：20 表示 20%）。"""
    max_drawdown_pct: float = Field(default=20.0, gt=0)
    max_daily_loss_pct: float = Field(default=5.0, gt=0)
    max_position_pct: float = Field(default=20.0, gt=0, le=100)
    # True 时宏观校验 is_safe=False 会阻止新开仓；默认仅展示
    macro_gate: bool = False
    model_config = ConfigDict(extra="forbid")


class PaperConfig(BaseModel):
    """纸面撮合：滑点与手续费（小数，0.0005 = 0.05%）。"""
    slippage: float = Field(default=0.0005, ge=0, lt=1)
    fee: float = Field(default=0.001, ge=0, lt=1)
    equity_sample_secs: int = Field(default=60, ge=0)
    model_config = ConfigDict(extra="forbid")


class RunnerConfig(BaseModel):
    """实时循环配置。"""
    interval_secs: float = Field(default=5.0, gt=0)
    history_bars: int = Field(default=400, gt=0)
    min_history_bars: int = Field(default=250, gt=0)
    timeframe_minutes: int = Field(default=15, gt=0)
    macro_check_secs: float = Field(default=300.0, gt=0)
    model_config = ConfigDict(extra="forbid")


class MarketConfig(BaseModel):
    """行情源配置。"""
    source: Literal["fake", "yahoo"] = "fake"
    base_url: str = "https://query1.finance.yahoo.com"
    vix_symbol: str = "^VIX"
    timeout_secs: float = Field(default=5.0, gt=0)
    seed: int = 7
    model_config = ConfigDict(extra="forbid")


class AdvisoryConfig(BaseModel):
    """AI 评论/宏观校验（仅供参考，不影响核心决策）。"""
    provider: Literal["none", "gemini"] = "none"
    api_key: Optional[str] = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    commentary_model: str = "gemini-2.5-flash"
    macro_model: str = "gemini-2.5-pro"
    timeout_secs: float = Field(default=20.0, gt=0)
    model_config = ConfigDict(extra="forbid")


class JournalConfig(BaseModel):
    """交易日志（SQLite，append-only）。"""
    enabled: bool = True
    path: str = "dataset/state/journal.sqlite3"
    max_entries: int = Field(default=1000, gt=0)
    model_config = ConfigDict(extra="forbid")


class BacktestConfig(BaseModel):
    """回测配置。"""
    symbol: Optional[str] = None
    data_path: Optional[str] = None
    # 历史 VIX 不可得时使用的固定读数
    vix: float = Field(default=18.0, ge=0)
    flatten_on_end: bool = False
    artifacts_dir: Optional[str] = None
    skip_plots: bool = False
    model_config = ConfigDict(extra="forbid")


class MainConfig(BaseModel):
    """应用总配置。"""
    watchlist: List[str] = Field(default_factory=lambda: ["GLD", "SLV", "GDX", "COPX", "DBC"], min_length=1)
    ai_enabled: bool = False

    account: AccountConfig = Field(default_factory=AccountConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    market: MarketConfig = Field(default_factory=MarketConfig)
    advisory: AdvisoryConfig = Field(default_factory=AdvisoryConfig)
    journal: JournalConfig = Field(default_factory=JournalConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @field_validator("watchlist")
    @classmethod
    def _clean_watchlist(cls, value: List[str]) -> List[str]:
        symbols = [s.strip().upper() for s in value]
        if any(not s for s in symbols):
            raise ValueError("watchlist entries must be non-empty strings")
        return symbols


# 兼容旧命名
AppConfig = MainConfig
