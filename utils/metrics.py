"""回测绩效指标计算（百分比单位：12.5 表示 12.5%）。"""

from __future__ import annotations

from statistics import mean
from typing import Iterable, Sequence

from shared.models.models import EquityPoint, JournalTrade


def total_return(starting_equity: float, final_equity: float) -> float:
    """总收益率（%）。"""
    if starting_equity <= 0:
        return 0.0
    return (final_equity / starting_equity - 1.0) * 100.0


def win_rate(trades: Sequence[JournalTrade]) -> float:
    """盈利笔数 / 全部平仓笔数（%）；没有交易时为 0。"""
    if not trades:
        return 0.0
    wins = sum(1 for t in trades if t.pnl > 0)
    return wins / len(trades) * 100.0


def max_drawdown(equity_curve: Iterable[EquityPoint]) -> float:
    """权益曲线上的最大回撤（%，正数）。"""
    peak = None
    max_dd = 0.0
    for point in equity_curve:
        eq = point.equity
        peak = eq if peak is None else max(peak, eq)
        if peak > 0:
            max_dd = max(max_dd, (peak - eq) / peak * 100.0)
    return max_dd


def profit_factor(trades: Sequence[JournalTrade]) -> float:
    """毛利 / 毛损；没有亏损交易时直接返回毛利。"""
    gross_profit = sum(t.pnl for t in trades if t.pnl > 0)
    gross_loss = abs(sum(t.pnl for t in trades if t.pnl < 0))
    if gross_loss == 0:
        return gross_profit
    return gross_profit / gross_loss


def expectancy(trades: Sequence[JournalTrade]) -> float:
    """每笔平均盈亏（USD）。"""
    return mean(t.pnl for t in trades) if trades else 0.0


def avg_r_multiple(trades: Sequence[JournalTrade]) -> float:
    return mean(t.r_multiple for t in trades) if trades else 0.0


def compute_metrics(
    *,
    starting_equity: float,
    final_equity: float,
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[JournalTrade],
) -> dict:
    """合并权益与交易指标。"""
    return {
        "total_return": total_return(starting_equity, final_equity),
        "win_rate": win_rate(trades),
        "max_drawdown": max_drawdown(equity_curve),
        "profit_factor": profit_factor(trades),
        "expectancy": expectancy(trades),
        "avg_r_multiple": avg_r_multiple(trades),
        "total_trades": len(trades),
    }
