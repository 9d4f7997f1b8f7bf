"""NYSE 常规交易时段判断（America/New_York）。"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

NY_TZ = ZoneInfo("America/New_York")

# (month, day)：只覆盖固定日期的核心假日
_FIXED_HOLIDAYS = {(1, 1), (7, 4), (12, 25)}

_SESSION_OPEN_MIN = 9 * 60 + 30
_SESSION_CLOSE_MIN = 16 * 60


def _to_ny(now: datetime | None) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(NY_TZ)


def is_market_open(now: datetime | None = None) -> bool:
    """工作日 09:30~16:00（纽约时间），排除 1/1、7/4、12/25。"""
    ny = _to_ny(now)
    if ny.weekday() >= 5:
        return False
    if (ny.month, ny.day) in _FIXED_HOLIDAYS:
        return False
    minutes = ny.hour * 60 + ny.minute
    return _SESSION_OPEN_MIN <= minutes < _SESSION_CLOSE_MIN


def session_context(now: datetime | None = None) -> str:
    """返回可读的时段状态。"""
    if is_market_open(now):
        return "SESSION_ACTIVE"
    if _to_ny(now).weekday() >= 5:
        return "WEEKEND_HALT"
    return "POST_MARKET_MONITORING"
