"""核心数据结构：Candle/Indicators/Signal/Position/PaperAccount/JournalTrade。

约定
----
- 时间戳统一为毫秒级 epoch（int），与行情源保持一致；
- Candle/Signal/JournalTrade 创建后不可变（frozen），需要修改时用 `dataclasses.replace` 生成新对象；
- Position/PaperAccount 是执行引擎独占的可变状态。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class CandleQuality(str, Enum):
    """K 线数据质量标签。"""

    REALTIME = "REALTIME"
    DELAYED = "DELAYED"
    BACKFILLED = "BACKFILLED"
    INTERPOLATED = "INTERPOLATED"


class SignalAction(str, Enum):
    """评估器可输出的动作。"""

    BUY = "BUY"
    HOLD = "HOLD"
    EXIT = "EXIT"
    WAIT = "WAIT"
    PAUSE_DATA_STALE = "PAUSE_DATA_STALE"
    PAUSE_REGIME = "PAUSE_REGIME"


class BotState(str, Enum):
    """单个 symbol 的持仓生命周期。"""

    WAIT = "WAIT"
    LONG = "LONG"
    COOLDOWN = "COOLDOWN"


class TradeOutcome(str, Enum):
    PROFIT = "PROFIT"
    LOSS = "LOSS"
    TIME_STOP = "TIME_STOP"


class ExitReason(str, Enum):
    """平仓触发原因（按检查顺序排列）。"""

    STOP = "STOP"
    TARGET = "TARGET"
    TREND_BREAK = "TREND_BREAK"
    TIME_STOP = "TIME_STOP"
    FLATTEN = "FLATTEN"


@dataclass(frozen=True)
class Candle:
    """固定周期 K 线（默认 15m）。"""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: int
    quality: CandleQuality = CandleQuality.REALTIME
    anomalies: tuple[str, ...] = ()


@dataclass(frozen=True)
class Quote:
    """行情源返回的最新报价快照。

    volume 为当日累计成交量（与 Yahoo `regularMarketVolume` 同义），不是单笔增量。
    """

    symbol: str
    price: float
    high: float
    low: float
    volume: int
    timestamp: int
    change_percent: float = 0.0


@dataclass(frozen=True)
class Indicators:
    """由尾部窗口计算出的技术指标，不单独持久化。"""

    ema20: float
    ema200: float
    rsi14: float
    atr14: float
    vol_sma20: float


@dataclass(frozen=True)
class Signal:
    """单个 symbol 单次评估的决策结果。

    `entry/stop/target/shares` 仅在 BUY 时填充。
    """

    id: str
    symbol: str
    timestamp: int
    action: SignalAction
    price: float
    confidence: int
    confidence_adj: int
    reason_codes: tuple[str, ...]
    vix: float
    is_stale: bool = False
    entry: float | None = None
    stop: float | None = None
    target: float | None = None
    shares: int | None = None


@dataclass(frozen=True)
class EvaluationResult:
    """`evaluate` 的返回值：信号 + 下一状态 + 下一冷却计数。"""

    signal: Signal
    new_state: BotState
    new_cooldown: int


@dataclass
class Position:
    """模拟持仓。"""

    symbol: str
    entry: float
    shares: int
    stop: float
    target: float
    opened_ts: int
    bars_held: int = 0


@dataclass(frozen=True)
class EquityPoint:
    timestamp: int
    equity: float


@dataclass
class PaperAccount:
    """模拟账户。

    Attributes
    ----------
    balance:
        未投入的现金。
    equity:
        现金 + 持仓市值。
    peak_equity:
        权益高水位。
    drawdown:
        相对高水位的回撤百分比（0~100）。
    daily_pnl:
        当日已实现盈亏（USD）。
    """

    balance: float
    equity: float
    peak_equity: float
    drawdown: float = 0.0
    daily_pnl: float = 0.0
    history: list[EquityPoint] = field(default_factory=list)


@dataclass(frozen=True)
class JournalTrade:
    """已平仓交易记录。"""

    id: str
    symbol: str
    opened_ts: int
    closed_ts: int
    entry: float
    exit: float
    shares: int
    stop: float
    target: float
    outcome: TradeOutcome
    r_multiple: float
    pnl: float = 0.0
    exit_reason: ExitReason | None = None


@dataclass(frozen=True)
class MacroSource:
    title: str
    uri: str


@dataclass(frozen=True)
class MacroCheck:
    """宏观/新闻校验结果（仅供参考）。"""

    is_safe: bool
    reason: str
    sources: tuple[MacroSource, ...] = ()
