"""
Agent Fleet Bot: Main Entrypoint.

Single-process asyncio runner for a fleet of trading agents on Monad. One
FleetRunner task cycles every active agent in sequence every
``cycle_interval_seconds``; each agent evaluates its holdings for exit and
then scans recent nad.fun tokens for at most one entry.

All settlement goes through the agent vault. With DRY_RUN enabled (the
default) trades are quoted and simulated but never signed or broadcast.

Usage:
    python main.py          # dry-run by default (set DRY_RUN=false)
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from bot_logging.logger_manager import create_module_log_directories, setup_module_logger
from config.loader import get_config
from config.validate import ConfigValidationError, validate_all_configs
from shared.constants import MONAD_CHAIN_ID, MONAD_RPC_URL
from shared.types import Strategy

if TYPE_CHECKING:
    from core.trade_store import TradeStore

_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs", console=True)


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(
    dry_run: bool,
    rpc_url: str,
    operator_address: str,
    vault_address: str,
    advisor_name: str,
    agent_count: int,
) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Agent Fleet Bot starting")
    _logger.info("=" * 60)
    _logger.info("  dry_run         : %s", dry_run)
    _logger.info("  rpc             : %s...%s", rpc_url[:25], rpc_url[-6:] if len(rpc_url) > 31 else "")
    _logger.info("  operator        : %s", operator_address or "(not set)")
    _logger.info("  vault           : %s", vault_address)
    _logger.info("  advisor         : %s", advisor_name)
    _logger.info("  agents          : %d", agent_count)
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Agent seeding
# ---------------------------------------------------------------------------


async def _seed_agents(store: TradeStore) -> int:
    """Register agents from agents.json; the list position is the vault index."""
    agents_cfg = get_config().get_agents_config().get("agents", [])
    for index, entry in enumerate(agents_cfg):
        await store.ensure_agent(
            name=entry["name"],
            strategy=Strategy(entry["strategy"]),
            vault_index=index,
            risk_level=entry.get("risk_level", "moderate"),
            personality=entry.get("personality", ""),
        )
    return len(agents_cfg)


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> None:
    """Wire all components and run the fleet loop until a shutdown signal."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)

    create_module_log_directories()
    chain_cfg = get_config().get_chain_config(MONAD_CHAIN_ID)

    rpc_url: str = os.getenv("MONAD_RPC_URL", chain_cfg.get("rpc", {}).get("http_url", MONAD_RPC_URL))
    private_key: str = os.getenv("OPERATOR_PRIVATE_KEY", "")

    # ------------------------------------------------------------------
    # 2. Initialize AsyncWeb3 provider
    # ------------------------------------------------------------------
    import aiohttp
    from eth_account import Account
    from web3 import AsyncWeb3
    from web3.providers import AsyncHTTPProvider

    w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
    connected = await w3.is_connected()
    if not connected:
        _logger.critical("Cannot connect to Monad RPC at %s", rpc_url)
        sys.exit(1)
    chain_id = await w3.eth.chain_id
    _logger.info("Connected to chain %d via %s", chain_id, rpc_url[:40])

    # ------------------------------------------------------------------
    # 3. Initialize shared instances (dependency order)
    # ------------------------------------------------------------------
    from core.data_service import MarketDataService
    from core.fleet_runner import FleetRunner
    from core.safety import SafetyState
    from core.trade_store import TradeStore
    from execution.advisory_client import build_advisor
    from execution.tx_submitter import TxSubmitter
    from execution.vault_client import VaultClient, VaultClientError

    safety = SafetyState()

    submitter: TxSubmitter | None = None
    operator_address = ""
    if private_key:
        operator_address = Account.from_key(private_key).address
        submitter = TxSubmitter(w3, safety, private_key, operator_address)
    elif not safety.is_dry_run:
        _logger.critical("OPERATOR_PRIVATE_KEY not set and dry run is disabled")
        sys.exit(1)
    else:
        _logger.warning("OPERATOR_PRIVATE_KEY not set, trades cannot be simulated")

    try:
        vault = VaultClient(w3, submitter, safety)
    except VaultClientError as exc:
        _logger.critical("%s", exc)
        sys.exit(1)

    http_session = aiohttp.ClientSession()
    data_service = MarketDataService(session=http_session)
    advisor = build_advisor(session=http_session)
    store = TradeStore()

    agent_count = await _seed_agents(store)
    _log_banner(safety.is_dry_run, rpc_url, operator_address, vault.address, advisor.name, agent_count)

    fleet = FleetRunner(store, vault, data_service, advisor, safety)

    # ------------------------------------------------------------------
    # 4. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 5. Launch the fleet loop
    # ------------------------------------------------------------------
    task_fleet = asyncio.create_task(fleet.run(), name="fleet_runner")

    def _on_done(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.critical("Fleet loop failed with unhandled exception: %s", exc, exc_info=exc)
        shutdown_event.set()

    task_fleet.add_done_callback(_on_done)

    # ------------------------------------------------------------------
    # 6. Wait for shutdown signal, then cancel
    # ------------------------------------------------------------------
    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down, cancelling fleet loop")
        fleet.stop()
        if not task_fleet.done():
            task_fleet.cancel()
        await asyncio.gather(task_fleet, return_exceptions=True)

        await data_service.close()
        await http_session.close()
        store.close()
        _logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
