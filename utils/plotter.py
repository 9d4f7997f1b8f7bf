from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Tuple

from shared.models.models import EquityPoint


def _require_matplotlib():
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt  # type: ignore
    except Exception as exc:  # pragma: no cover - import guard
        raise RuntimeError("matplotlib 未安装，无法绘图。请先安装 matplotlib。") from exc
    return plt


def _to_series(equity_curve: Iterable[EquityPoint]) -> Tuple[List[datetime], List[float]]:
    points = sorted(equity_curve, key=lambda p: p.timestamp)
    xs = [datetime.fromtimestamp(p.timestamp / 1000, tz=timezone.utc) for p in points]
    ys = [p.equity for p in points]
    return xs, ys


def _to_mpl_time(xs: List[datetime]) -> List[float]:
    # matplotlib 支持 datetime，但类型检查可能提示不兼容，转为数字避免告警
    import matplotlib.dates as mdates  # type: ignore

    return [float(mdates.date2num(x)) for x in xs]


def _finish(fig, ax, plt, save_path: str | None):
    import matplotlib.dates as mdates  # type: ignore

    locator = mdates.AutoDateLocator()
    ax.xaxis.set_major_locator(locator)
    ax.xaxis.set_major_formatter(mdates.AutoDateFormatter(locator))
    fig.autofmt_xdate()
    ax.grid(True, alpha=0.3)
    ax.legend()
    if save_path:
        path = Path(save_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(str(path), bbox_inches="tight")
        plt.close(fig)
    return fig


def plot_equity_curve(equity_curve: Iterable[EquityPoint], save_path: str | None = None):
    """
    绘制资金曲线，save_path 不传则仅返回 fig。
    """
    plt = _require_matplotlib()
    xs_dt, ys = _to_series(equity_curve)
    if not ys:
        return None

    fig, ax = plt.subplots(figsize=(10, 4))
    ax.plot(_to_mpl_time(xs_dt), ys, label="Equity")
    ax.set_title("Equity Curve")
    ax.set_xlabel("Time")
    ax.set_ylabel("Equity (USD)")
    return _finish(fig, ax, plt, save_path)


def plot_drawdown(equity_curve: Iterable[EquityPoint], save_path: str | None = None):
    """
    绘制回撤曲线（百分比，正数表示低于峰值）。
    """
    plt = _require_matplotlib()
    xs_dt, ys = _to_series(equity_curve)
    if not ys:
        return None

    drawdowns: List[float] = []
    peak = ys[0]
    for eq in ys:
        peak = max(peak, eq)
        drawdowns.append((peak - eq) / peak * 100.0 if peak > 0 else 0.0)

    fig, ax = plt.subplots(figsize=(10, 3))
    xs = _to_mpl_time(xs_dt)
    ax.fill_between(xs, drawdowns, color="tab:red", alpha=0.3, label="Drawdown %")
    ax.invert_yaxis()
    ax.set_title("Drawdown")
    ax.set_xlabel("Time")
    ax.set_ylabel("Drawdown (%)")
    return _finish(fig, ax, plt, save_path)
