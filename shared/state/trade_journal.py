"""交易日志（已平仓交易记录）。

设计
----
- append-only：每笔平仓写一条，写入后不修改；
- 以交易 id 作为主键（天然幂等键，重复 append 不会重复记录）；
- `list()` 按写入顺序倒序（最新在前），总条数上限 `max_entries`，超出时丢弃最旧的。
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from pathlib import Path
from typing import Any, Protocol

from shared.models.models import ExitReason, JournalTrade, TradeOutcome
from shared.utils.logging import setup_logger


def _trade_to_dict(trade: JournalTrade) -> dict[str, Any]:
    data = asdict(trade)
    data["outcome"] = trade.outcome.value
    data["exit_reason"] = trade.exit_reason.value if trade.exit_reason else None
    return data


def _trade_from_dict(data: dict[str, Any]) -> JournalTrade:
    reason = data.get("exit_reason")
    return JournalTrade(
        id=str(data["id"]),
        symbol=str(data["symbol"]),
        opened_ts=int(data["opened_ts"]),
        closed_ts=int(data["closed_ts"]),
        entry=float(data["entry"]),
        exit=float(data["exit"]),
        shares=int(data["shares"]),
        stop=float(data["stop"]),
        target=float(data["target"]),
        outcome=TradeOutcome(data["outcome"]),
        r_multiple=float(data["r_multiple"]),
        pnl=float(data.get("pnl") or 0.0),
        exit_reason=ExitReason(reason) if reason else None,
    )


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str, allow_nan=False)


class TradeJournal(Protocol):
    def append(self, trade: JournalTrade) -> None:
        ...

    def list(self) -> list[JournalTrade]:
        ...

    def clear(self) -> None:
        ...

    def export(self) -> str:
        ...


class InMemoryTradeJournal:
    """进程内日志（回测/测试用）。"""

    def __init__(self, max_entries: int = 1000):
        self.max_entries = int(max_entries)
        self._trades: list[JournalTrade] = []

    def append(self, trade: JournalTrade) -> None:
        if any(t.id == trade.id for t in self._trades):
            return
        self._trades.insert(0, trade)
        del self._trades[self.max_entries :]

    def list(self) -> list[JournalTrade]:
        return list(self._trades)

    def clear(self) -> None:
        self._trades.clear()

    def export(self) -> str:
        return _json_dumps([_trade_to_dict(t) for t in self._trades])


class SqliteTradeJournal:
    """SQLite 持久化日志。"""

    def __init__(self, path: str | Path, max_entries: int = 1000):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.max_entries = int(max_entries)
        self.logger = setup_logger("journal")
        self._conn = sqlite3.connect(self.path, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def close(self) -> None:
        self._conn.close()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trades (
              seq INTEGER PRIMARY KEY AUTOINCREMENT,
              id TEXT NOT NULL UNIQUE,
              symbol TEXT NOT NULL,
              opened_ts INTEGER NOT NULL,
              closed_ts INTEGER NOT NULL,
              outcome TEXT NOT NULL,
              raw_json TEXT NOT NULL
            );
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_symbol ON trades(symbol);")

    def append(self, trade: JournalTrade) -> None:
        cur = self._conn.execute(
            """
            INSERT OR IGNORE INTO trades (id, symbol, opened_ts, closed_ts, outcome, raw_json)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                trade.id,
                trade.symbol,
                int(trade.opened_ts),
                int(trade.closed_ts),
                trade.outcome.value,
                _json_dumps(_trade_to_dict(trade)),
            ),
        )
        if cur.rowcount == 0:
            self.logger.info("Trade %s already journaled, skip.", trade.id)
            return
        self._conn.execute(
            """
            DELETE FROM trades WHERE seq NOT IN (
              SELECT seq FROM trades ORDER BY seq DESC LIMIT ?
            );
            """,
            (self.max_entries,),
        )

    def list(self) -> list[JournalTrade]:
        rows = self._conn.execute("SELECT raw_json FROM trades ORDER BY seq DESC;").fetchall()
        return [_trade_from_dict(json.loads(r[0])) for r in rows]

    def clear(self) -> None:
        self._conn.execute("DELETE FROM trades;")

    def export(self) -> str:
        return _json_dumps([_trade_to_dict(t) for t in self.list()])


def build_journal(journal_cfg) -> TradeJournal:
    if journal_cfg.enabled:
        return SqliteTradeJournal(journal_cfg.path, max_entries=journal_cfg.max_entries)
    return InMemoryTradeJournal(max_entries=journal_cfg.max_entries)
