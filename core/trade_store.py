"""
Persistence store for Agent Fleet Bot.

SQLite-backed record of agents, open holdings, the append-only trade log,
periodic PnL snapshots and the per-agent audit log. Wei amounts and
Decimal prices are stored as TEXT so 256-bit values survive round trips.

Usage:
    from core.trade_store import TradeStore

    store = TradeStore("data/agent_fleet.db")
    agent = await store.ensure_agent("Sniper Sam", Strategy.SNIPER, vault_index=0)
    trade_id = await store.record_trade(trade)
"""

from __future__ import annotations

import json
import sqlite3
import time
from decimal import Decimal
from pathlib import Path
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config, get_env_var
from shared.types import (
    AgentLogEntry,
    AgentLogType,
    AgentRecord,
    Holding,
    PnLSnapshot,
    Strategy,
    Trade,
    TradeType,
)

_PROJECT_ROOT = Path(__file__).parent.parent
_DEFAULT_DB_PATH = "data/agent_fleet.db"


def _resolve_db_path(db_path: str | None) -> str:
    if db_path is None:
        db_cfg = get_config().get_app_config().get("database", {})
        db_path = get_env_var("TRADE_DB_PATH", db_cfg.get("path", _DEFAULT_DB_PATH), str)
    if db_path == ":memory:":
        return db_path
    path = Path(db_path)
    if not path.is_absolute():
        path = _PROJECT_ROOT / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return str(path)


class TradeStore:
    """SQLite store for agents, holdings, trades, PnL snapshots and agent logs."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = _resolve_db_path(db_path)
        self._db = sqlite3.connect(self._db_path)
        self._db.row_factory = sqlite3.Row
        self._create_tables()

        self._logger = setup_module_logger("trade_store", "trade_store.log", module_folder="Store_Logs")

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_tables(self) -> None:
        self._db.executescript("""
            CREATE TABLE IF NOT EXISTS agents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                strategy TEXT NOT NULL,
                vault_index INTEGER NOT NULL UNIQUE,
                risk_level TEXT NOT NULL DEFAULT 'moderate',
                personality TEXT NOT NULL DEFAULT '',
                active BOOLEAN NOT NULL DEFAULT 1,
                capital_wei TEXT NOT NULL DEFAULT '0',
                realized_pnl_wei TEXT NOT NULL DEFAULT '0',
                reward_balance_wei TEXT NOT NULL DEFAULT '0',
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS holdings (
                agent_id INTEGER NOT NULL REFERENCES agents(id),
                token_address TEXT NOT NULL,
                symbol TEXT NOT NULL,
                amount TEXT NOT NULL,
                cost_basis TEXT NOT NULL,
                current_value TEXT NOT NULL DEFAULT '0',
                unrealized_pnl_pct TEXT NOT NULL DEFAULT '0',
                acquired_at INTEGER NOT NULL,
                PRIMARY KEY (agent_id, token_address)
            );

            CREATE TABLE IF NOT EXISTS trades (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_id INTEGER NOT NULL REFERENCES agents(id),
                token_address TEXT NOT NULL,
                symbol TEXT NOT NULL,
                trade_type TEXT NOT NULL,
                amount_in TEXT NOT NULL,
                amount_out TEXT NOT NULL,
                price TEXT NOT NULL,
                pnl_wei TEXT,
                reason TEXT NOT NULL,
                signal_json TEXT,
                tx_ref TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_trades_agent_time
                ON trades (agent_id, created_at);

            CREATE TABLE IF NOT EXISTS pnl_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_id INTEGER NOT NULL REFERENCES agents(id),
                realized_pnl_wei TEXT NOT NULL,
                capital_wei TEXT NOT NULL,
                timestamp INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS agent_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_id INTEGER NOT NULL REFERENCES agents(id),
                log_type TEXT NOT NULL,
                message TEXT NOT NULL,
                data_json TEXT,
                created_at INTEGER NOT NULL
            );
        """)
        self._db.commit()

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def ensure_agent(
        self,
        name: str,
        strategy: Strategy,
        vault_index: int,
        risk_level: str = "moderate",
        personality: str = "",
    ) -> AgentRecord:
        """Insert the agent if no agent with this name exists; return the stored record."""
        row = self._db.execute("SELECT * FROM agents WHERE name = ?", (name,)).fetchone()
        if row is None:
            self._db.execute(
                """INSERT INTO agents
                   (name, strategy, vault_index, risk_level, personality, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (name, strategy.value, vault_index, risk_level, personality, int(time.time())),
            )
            self._db.commit()
            self._logger.info("Agent seeded: %s (%s, vault index %d)", name, strategy.value, vault_index)
            row = self._db.execute("SELECT * FROM agents WHERE name = ?", (name,)).fetchone()
        return _row_to_agent(row)

    async def get_agent(self, agent_id: int) -> AgentRecord | None:
        row = self._db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
        return _row_to_agent(row) if row else None

    async def list_agents(self, active_only: bool = True) -> list[AgentRecord]:
        if active_only:
            rows = self._db.execute("SELECT * FROM agents WHERE active = 1 ORDER BY id").fetchall()
        else:
            rows = self._db.execute("SELECT * FROM agents ORDER BY id").fetchall()
        return [_row_to_agent(r) for r in rows]

    async def set_agent_active(self, agent_id: int, active: bool) -> None:
        self._db.execute("UPDATE agents SET active = ? WHERE id = ?", (active, agent_id))
        self._db.commit()

    async def update_agent_balances(
        self,
        agent_id: int,
        capital_wei: int,
        reward_balance_wei: int | None = None,
    ) -> None:
        """Overwrite the synced capital (and optionally reward balance) from settlement."""
        if reward_balance_wei is None:
            self._db.execute(
                "UPDATE agents SET capital_wei = ? WHERE id = ?",
                (str(capital_wei), agent_id),
            )
        else:
            self._db.execute(
                "UPDATE agents SET capital_wei = ?, reward_balance_wei = ? WHERE id = ?",
                (str(capital_wei), str(reward_balance_wei), agent_id),
            )
        self._db.commit()

    async def add_realized_pnl(self, agent_id: int, pnl_wei: int) -> int:
        """Add to the agent's cumulative realized PnL; returns the new total."""
        row = self._db.execute("SELECT realized_pnl_wei FROM agents WHERE id = ?", (agent_id,)).fetchone()
        if row is None:
            raise ValueError(f"Agent {agent_id} not found")
        total = int(row["realized_pnl_wei"]) + pnl_wei
        self._db.execute("UPDATE agents SET realized_pnl_wei = ? WHERE id = ?", (str(total), agent_id))
        self._db.commit()
        return total

    # ------------------------------------------------------------------
    # Holdings
    # ------------------------------------------------------------------

    async def get_holdings(self, agent_id: int) -> list[Holding]:
        rows = self._db.execute(
            "SELECT * FROM holdings WHERE agent_id = ? ORDER BY acquired_at",
            (agent_id,),
        ).fetchall()
        return [_row_to_holding(r) for r in rows if int(r["amount"]) > 0]

    async def get_holding(self, agent_id: int, token_address: str) -> Holding | None:
        row = self._db.execute(
            "SELECT * FROM holdings WHERE agent_id = ? AND token_address = ?",
            (agent_id, token_address.lower()),
        ).fetchone()
        return _row_to_holding(row) if row else None

    async def upsert_holding(self, holding: Holding) -> None:
        """Insert or replace the holding row. A zero amount deletes it."""
        if holding.amount < 0:
            raise ValueError(f"Holding amount must be >= 0, got {holding.amount}")
        if holding.amount == 0:
            await self.delete_holding(holding.agent_id, holding.token_address)
            return

        self._db.execute(
            """INSERT INTO holdings
               (agent_id, token_address, symbol, amount, cost_basis,
                current_value, unrealized_pnl_pct, acquired_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (agent_id, token_address) DO UPDATE SET
                 symbol = excluded.symbol,
                 amount = excluded.amount,
                 cost_basis = excluded.cost_basis,
                 current_value = excluded.current_value,
                 unrealized_pnl_pct = excluded.unrealized_pnl_pct,
                 acquired_at = excluded.acquired_at""",
            (
                holding.agent_id,
                holding.token_address.lower(),
                holding.symbol,
                str(holding.amount),
                str(holding.cost_basis),
                str(holding.current_value),
                str(holding.unrealized_pnl_pct),
                holding.acquired_at,
            ),
        )
        self._db.commit()

    async def delete_holding(self, agent_id: int, token_address: str) -> None:
        self._db.execute(
            "DELETE FROM holdings WHERE agent_id = ? AND token_address = ?",
            (agent_id, token_address.lower()),
        )
        self._db.commit()

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    async def record_trade(self, trade: Trade) -> int:
        """Append a trade. Returns the auto-generated trade ID."""
        created_at = trade.created_at or int(time.time())
        cursor = self._db.execute(
            """INSERT INTO trades
               (agent_id, token_address, symbol, trade_type, amount_in, amount_out,
                price, pnl_wei, reason, signal_json, tx_ref, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                trade.agent_id,
                trade.token_address.lower(),
                trade.symbol,
                trade.trade_type.value,
                str(trade.amount_in),
                str(trade.amount_out),
                str(trade.price),
                None if trade.pnl_wei is None else str(trade.pnl_wei),
                trade.reason,
                trade.signal_json,
                trade.tx_ref,
                created_at,
            ),
        )
        trade_id = cursor.lastrowid
        if trade_id is None:
            raise RuntimeError("Failed to obtain trade ID after INSERT")
        self._db.commit()

        self._logger.info(
            "Trade recorded: id=%d agent=%d %s %s in=%d out=%d tx=%s",
            trade_id,
            trade.agent_id,
            trade.trade_type.value,
            trade.symbol,
            trade.amount_in,
            trade.amount_out,
            trade.tx_ref,
        )
        return trade_id

    async def get_recent_trades(self, agent_id: int, limit: int = 100) -> list[Trade]:
        """Most recent trades for an agent, newest first."""
        rows = self._db.execute(
            """SELECT * FROM trades WHERE agent_id = ?
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (agent_id, limit),
        ).fetchall()
        return [_row_to_trade(r) for r in rows]

    async def get_entry_trade(self, agent_id: int, token_address: str, since: int = 0) -> Trade | None:
        """First buy of ``token_address`` at or after ``since``."""
        row = self._db.execute(
            """SELECT * FROM trades
               WHERE agent_id = ? AND token_address = ? AND trade_type = ? AND created_at >= ?
               ORDER BY created_at ASC, id ASC LIMIT 1""",
            (agent_id, token_address.lower(), TradeType.BUY.value, since),
        ).fetchone()
        return _row_to_trade(row) if row else None

    async def get_recently_sold_tokens(self, agent_id: int, since: int) -> set[str]:
        rows = self._db.execute(
            """SELECT DISTINCT token_address FROM trades
               WHERE agent_id = ? AND trade_type = ? AND created_at >= ?""",
            (agent_id, TradeType.SELL.value, since),
        ).fetchall()
        return {r["token_address"] for r in rows}

    async def count_trades_since(self, since: int) -> int:
        row = self._db.execute("SELECT COUNT(*) AS n FROM trades WHERE created_at >= ?", (since,)).fetchone()
        return int(row["n"])

    # ------------------------------------------------------------------
    # PnL snapshots / agent logs
    # ------------------------------------------------------------------

    async def record_pnl_snapshot(self, snapshot: PnLSnapshot) -> None:
        self._db.execute(
            """INSERT INTO pnl_snapshots (agent_id, realized_pnl_wei, capital_wei, timestamp)
               VALUES (?, ?, ?, ?)""",
            (
                snapshot.agent_id,
                str(snapshot.realized_pnl_wei),
                str(snapshot.capital_wei),
                snapshot.timestamp,
            ),
        )
        self._db.commit()

    async def get_pnl_snapshots(self, agent_id: int, limit: int = 100) -> list[PnLSnapshot]:
        rows = self._db.execute(
            """SELECT * FROM pnl_snapshots WHERE agent_id = ?
               ORDER BY timestamp DESC, id DESC LIMIT ?""",
            (agent_id, limit),
        ).fetchall()
        return [
            PnLSnapshot(
                agent_id=r["agent_id"],
                realized_pnl_wei=int(r["realized_pnl_wei"]),
                capital_wei=int(r["capital_wei"]),
                timestamp=r["timestamp"],
            )
            for r in rows
        ]

    async def log_agent_event(
        self,
        agent_id: int,
        log_type: AgentLogType,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        self._db.execute(
            """INSERT INTO agent_logs (agent_id, log_type, message, data_json, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (
                agent_id,
                log_type.value,
                message,
                json.dumps(data, default=str) if data is not None else None,
                int(time.time()),
            ),
        )
        self._db.commit()

    async def get_agent_logs(
        self,
        agent_id: int,
        log_type: AgentLogType | None = None,
        limit: int = 50,
    ) -> list[AgentLogEntry]:
        if log_type is None:
            rows = self._db.execute(
                "SELECT * FROM agent_logs WHERE agent_id = ? ORDER BY id DESC LIMIT ?",
                (agent_id, limit),
            ).fetchall()
        else:
            rows = self._db.execute(
                """SELECT * FROM agent_logs WHERE agent_id = ? AND log_type = ?
                   ORDER BY id DESC LIMIT ?""",
                (agent_id, log_type.value, limit),
            ).fetchall()
        return [
            AgentLogEntry(
                agent_id=r["agent_id"],
                log_type=AgentLogType(r["log_type"]),
                message=r["message"],
                data_json=r["data_json"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the SQLite database connection."""
        if self._db:
            self._db.close()
            self._logger.debug("TradeStore database closed")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_agent(row: sqlite3.Row) -> AgentRecord:
    return AgentRecord(
        id=row["id"],
        name=row["name"],
        strategy=Strategy(row["strategy"]),
        vault_index=row["vault_index"],
        risk_level=row["risk_level"],
        personality=row["personality"],
        active=bool(row["active"]),
        capital_wei=int(row["capital_wei"]),
        realized_pnl_wei=int(row["realized_pnl_wei"]),
        reward_balance_wei=int(row["reward_balance_wei"]),
        created_at=row["created_at"],
    )


def _row_to_holding(row: sqlite3.Row) -> Holding:
    return Holding(
        agent_id=row["agent_id"],
        token_address=row["token_address"],
        symbol=row["symbol"],
        amount=int(row["amount"]),
        cost_basis=int(row["cost_basis"]),
        current_value=int(row["current_value"]),
        unrealized_pnl_pct=Decimal(row["unrealized_pnl_pct"]),
        acquired_at=row["acquired_at"],
    )


def _row_to_trade(row: sqlite3.Row) -> Trade:
    return Trade(
        agent_id=row["agent_id"],
        token_address=row["token_address"],
        symbol=row["symbol"],
        trade_type=TradeType(row["trade_type"]),
        amount_in=int(row["amount_in"]),
        amount_out=int(row["amount_out"]),
        price=Decimal(row["price"]),
        reason=row["reason"],
        signal_json=row["signal_json"],
        pnl_wei=None if row["pnl_wei"] is None else int(row["pnl_wei"]),
        tx_ref=row["tx_ref"],
        created_at=row["created_at"],
        id=row["id"],
    )
