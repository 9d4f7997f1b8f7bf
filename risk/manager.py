"""风险管理：仓位计算与账户级熔断。"""

from __future__ import annotations

import math
from typing import Any

from shared.config.schema import RegimeConfig, RiskConfig
from shared.models.models import MacroCheck, PaperAccount, Signal
from shared.utils.logging import setup_logger

# ATR 不可用时，止损距离回退为收盘价的 1%
FALLBACK_STOP_PCT = 0.01


class RiskManager:
    """风险管理器。

    Parameters
    ----------
    risk_cfg:
        风控配置（max_drawdown_pct/max_daily_loss_pct/max_position_pct/macro_gate）。
    regime_cfg:
        VIX 分档阈值。
    risk_pct:
        单笔风险占权益百分比。
    atr_stop_mult:
        止损距离 = atr_stop_mult × ATR。
    suppress_warnings:
        是否抑制 warning 日志（回测常用）。
    """

    def __init__(
        self,
        risk_cfg: RiskConfig,
        regime_cfg: RegimeConfig,
        *,
        risk_pct: float = 0.5,
        atr_stop_mult: float = 2.5,
        suppress_warnings: bool = False,
    ):
        self.cfg = risk_cfg
        self.regime = regime_cfg
        self.risk_pct = float(risk_pct)
        self.atr_stop_mult = float(atr_stop_mult)
        self.suppress_warnings = suppress_warnings
        self.logger = setup_logger("risk")

        # 熔断状态：只在状态翻转时打日志，避免每个 tick 刷 warning
        self._tripped = False

    @classmethod
    def from_config(cls, cfg: Any, *, suppress_warnings: bool = False) -> "RiskManager":
        return cls(
            cfg.risk,
            cfg.regime,
            risk_pct=cfg.account.risk_pct,
            atr_stop_mult=cfg.strategy.atr_stop_mult,
            suppress_warnings=suppress_warnings,
        )

    def calculate_size(self, signal: Signal, close: float, atr: float | None, account: PaperAccount) -> int:
        """按风险预算计算股数（整数，永不为负）。

        Notes
        -----
        - 风险预算 = equity × risk_pct%；
        - 止损距离 = atr_stop_mult × ATR，ATR 缺失时回退为 close 的 1%；
        - VIX 超过 reduce 阈值时减半；
        - 名义价值不超过 equity × max_position_pct%。
        """
        equity = float(account.equity)
        if equity <= 0 or close <= 0:
            return 0

        if atr is not None and math.isfinite(atr) and atr > 0:
            stop_distance = self.atr_stop_mult * atr
        else:
            stop_distance = close * FALLBACK_STOP_PCT
        if stop_distance <= 0:
            return 0

        risk_budget = equity * (self.risk_pct / 100.0)
        shares = int(math.floor(risk_budget / stop_distance))

        if signal.vix > self.regime.vix_reduce:
            shares = int(math.floor(shares * 0.5))

        max_exposure = equity * (self.cfg.max_position_pct / 100.0)
        if shares * close > max_exposure:
            capped = int(math.floor(max_exposure / close))
            if not self.suppress_warnings:
                self.logger.info(
                    "%s notional %.2f > %.2f, cap shares %d -> %d",
                    signal.symbol,
                    shares * close,
                    max_exposure,
                    shares,
                    capped,
                )
            shares = capped

        return max(0, shares)

    def is_safety_tripped(self, account: PaperAccount) -> bool:
        """回撤超过上限，或当日亏损超过当前权益的 max_daily_loss_pct% 时熔断。"""
        drawdown_hit = account.drawdown > self.cfg.max_drawdown_pct
        daily_limit = -(self.cfg.max_daily_loss_pct / 100.0) * account.equity
        daily_hit = account.daily_pnl < daily_limit
        tripped = drawdown_hit or daily_hit

        if tripped and not self._tripped and not self.suppress_warnings:
            self.logger.warning(
                "Safety breaker tripped (drawdown=%.2f%%, daily_pnl=%.2f), block new entries.",
                account.drawdown,
                account.daily_pnl,
            )
        elif not tripped and self._tripped and not self.suppress_warnings:
            self.logger.info("Safety breaker cleared.")
        self._tripped = tripped
        return tripped

    def allow_entry(self, account: PaperAccount, macro: MacroCheck | None = None) -> bool:
        """新开仓前的总闸：熔断 + （可选）宏观校验。"""
        if self.is_safety_tripped(account):
            return False
        if self.cfg.macro_gate and macro is not None and not macro.is_safe:
            if not self.suppress_warnings:
                self.logger.warning("Macro check unsafe, block new entries: %s", macro.reason)
            return False
        return True
