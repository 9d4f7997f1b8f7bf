"""信号/成交记录 ID 生成。

要求：
- 同一输入可重建（deterministic），便于重放与测试；
- 长度可控（用 hash 缩短）。
"""

from __future__ import annotations

import hashlib


def _digest(parts: list[str], length: int) -> str:
    raw = "|".join(parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:length]


def make_signal_id(*, symbol: str, timestamp: int, action: str, seq: str = "") -> str:
    return f"sig_{_digest([str(symbol), str(int(timestamp)), str(action), str(seq)], 12)}"


def make_trade_id(*, symbol: str, opened_ts: int, closed_ts: int, shares: int) -> str:
    return f"trd_{_digest([str(symbol), str(int(opened_ts)), str(int(closed_ts)), str(int(shares))], 12)}"
