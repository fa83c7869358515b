"""
Agent vault client for Agent Fleet Bot.

Reads agent balances, holdings and bonding-curve state from the vault and
lens contracts, and executes operator-only buys and sells on an agent's
behalf. Writes follow quote → slippage-bounded min-out → simulate → submit.

Dry run: the quote and eth_call simulation still run, so a trade that
would revert is still rejected, but nothing is signed. The simulated
output becomes the settled amount and the tx ref is ``dry-run:<id>``.

Usage:
    from web3 import AsyncWeb3, AsyncHTTPProvider
    from execution.vault_client import VaultClient

    w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
    vault = VaultClient(w3, submitter, safety)
    result = await vault.execute_buy(agent_index=0, token=token, amount_in=5 * 10**18)
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, TypeVar

from web3 import AsyncWeb3, Web3
from web3.logs import DISCARD

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config, get_env_var
from execution.tx_submitter import TxSubmitter, TxSubmitterError
from shared.constants import (
    BPS_DENOMINATOR,
    DEFAULT_DEADLINE_SECONDS,
    DEFAULT_SLIPPAGE_BPS,
    LENS_ADDRESS,
    MONAD_CHAIN_ID,
)
from shared.types import SettlementResult

if TYPE_CHECKING:
    from core.safety import SafetyState

T = TypeVar("T")


class VaultClientError(Exception):
    """Raised when a vault or lens call fails."""


def apply_slippage(amount_out: int, slippage_bps: int) -> int:
    """Minimum acceptable output after ``slippage_bps`` of tolerance."""
    return amount_out * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


class VaultClient:
    """
    Async wrapper over the agent vault and lens contracts.

    Reads go straight to the node; writes are routed through TxSubmitter,
    which owns simulation, signing and confirmation.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        submitter: TxSubmitter | None,
        safety: SafetyState,
    ) -> None:
        self._w3 = w3
        self._submitter = submitter
        self._safety = safety

        cfg = get_config()
        chain_cfg = cfg.get_chain_config(MONAD_CHAIN_ID)
        contracts = chain_cfg.get("contracts", {})
        timing = cfg.get_timing_config()
        trading = cfg.get_trading_config()

        vault_address = get_env_var("VAULT_ADDRESS", contracts.get("agent_vault", ""), str)
        if not vault_address:
            raise VaultClientError("Vault address not configured (set VAULT_ADDRESS)")

        self._vault = w3.eth.contract(
            address=Web3.to_checksum_address(vault_address),
            abi=cfg.get_abi("agent_vault"),
        )
        self._lens = w3.eth.contract(
            address=Web3.to_checksum_address(contracts.get("lens", LENS_ADDRESS)),
            abi=cfg.get_abi("lens"),
        )

        self._read_timeout = float(timing.get("settlement_read_timeout_seconds", 10))
        self._slippage_bps = int(trading.get("slippage_bps", DEFAULT_SLIPPAGE_BPS))
        self._deadline_seconds = int(trading.get("deadline_seconds", DEFAULT_DEADLINE_SECONDS))

        self._logger = setup_module_logger("vault_client", "vault_client.log", module_folder="Execution_Logs")

    @property
    def address(self) -> str:
        return self._vault.address

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def _read(self, call: Awaitable[T], label: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._read_timeout)
        except asyncio.TimeoutError as e:
            raise VaultClientError(f"{label} timed out after {self._read_timeout:.0f}s") from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise VaultClientError(f"{label} failed: {e}") from e

    async def quote(self, token: str, amount_in: int, is_buy: bool) -> int:
        """Expected output from the lens for ``amount_in`` (wei for buys, token units for sells)."""
        _router, amount_out = await self._read(
            self._lens.functions.getAmountOut(Web3.to_checksum_address(token), amount_in, is_buy).call(),
            "getAmountOut",
        )
        return int(amount_out)

    async def get_agent_info(self, agent_index: int) -> dict[str, Any]:
        result = await self._read(self._vault.functions.getAgentInfo(agent_index).call(), "getAgentInfo")
        is_active, balance, total_donated, total_pnl, reward_balance, total_distributed, trade_count = result
        return {
            "is_active": bool(is_active),
            "balance": int(balance),
            "total_donated": int(total_donated),
            "total_pnl": int(total_pnl),
            "reward_balance": int(reward_balance),
            "total_distributed": int(total_distributed),
            "trade_count": int(trade_count),
        }

    async def get_agent_balance(self, agent_index: int) -> int:
        """Agent's tradable MON balance in wei."""
        info = await self.get_agent_info(agent_index)
        return info["balance"]

    async def get_holding(self, agent_index: int, token: str) -> tuple[int, int]:
        """Return (amount, cost_basis) the vault holds for the agent."""
        amount, cost_basis = await self._read(
            self._vault.functions.getAgentHolding(agent_index, Web3.to_checksum_address(token)).call(),
            "getAgentHolding",
        )
        return int(amount), int(cost_basis)

    async def get_curve_progress(self, token: str) -> int | None:
        """Bonding-curve progress in bps (0-10000), or None when the token is not on a curve."""
        try:
            progress = await self._read(
                self._lens.functions.getProgress(Web3.to_checksum_address(token)).call(),
                "getProgress",
            )
        except VaultClientError as e:
            self._logger.debug("Curve progress unavailable for %s: %s", token, e)
            return None
        return int(progress)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def min_out(self, quoted: int) -> int:
        return apply_slippage(quoted, self._slippage_bps)

    def deadline(self) -> int:
        return int(time.time()) + self._deadline_seconds

    async def execute_buy(
        self,
        agent_index: int,
        token: str,
        amount_in: int,
        min_out: int | None = None,
        deadline: int | None = None,
    ) -> SettlementResult:
        """Spend ``amount_in`` wei of the agent's balance on ``token``."""
        return await self._execute("executeBuy", agent_index, token, amount_in, min_out, deadline, is_buy=True)

    async def execute_sell(
        self,
        agent_index: int,
        token: str,
        amount_in: int,
        min_out: int | None = None,
        deadline: int | None = None,
    ) -> SettlementResult:
        """Sell ``amount_in`` token units held by the agent for MON."""
        return await self._execute("executeSell", agent_index, token, amount_in, min_out, deadline, is_buy=False)

    async def _execute(
        self,
        fn_name: str,
        agent_index: int,
        token: str,
        amount_in: int,
        min_out: int | None,
        deadline: int | None,
        is_buy: bool,
    ) -> SettlementResult:
        if amount_in <= 0:
            raise VaultClientError(f"{fn_name}: amount_in must be positive, got {amount_in}")
        if self._submitter is None:
            raise VaultClientError(f"{fn_name}: no transaction submitter configured")

        checksum = Web3.to_checksum_address(token)
        if min_out is None:
            min_out = self.min_out(await self.quote(token, amount_in, is_buy))
        if deadline is None:
            deadline = self.deadline()

        data = self._vault.encode_abi(fn_name, args=[agent_index, checksum, amount_in, min_out, deadline])
        tx = {"to": self._vault.address, "data": data, "value": 0}

        try:
            output = await self._submitter.simulate(tx)
            simulated_out = int(self._w3.codec.decode(["uint256"], output)[0])

            if self._safety.is_dry_run:
                tx_ref = f"dry-run:{uuid.uuid4().hex}"
                self._logger.info(
                    "[DRY RUN] %s agent=%d token=%s in=%d out=%d (min %d)",
                    fn_name,
                    agent_index,
                    token,
                    amount_in,
                    simulated_out,
                    min_out,
                )
                return SettlementResult(
                    tx_ref=tx_ref,
                    amount_in=amount_in,
                    amount_out=simulated_out,
                    token_address=token.lower(),
                )

            receipt = await self._submitter.submit_and_wait(tx)
            amount_out = self._settled_amount(receipt, simulated_out)
        except TxSubmitterError as e:
            self._logger.error("%s failed for agent %d on %s: %s", fn_name, agent_index, token, e)
            raise VaultClientError(f"{fn_name} failed: {e}") from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error("%s failed for agent %d on %s: %s", fn_name, agent_index, token, e, exc_info=True)
            raise VaultClientError(f"{fn_name} failed: {e}") from e

        tx_ref = receipt.get("transactionHash", b"")
        tx_ref = tx_ref.to_0x_hex() if hasattr(tx_ref, "to_0x_hex") else str(tx_ref)

        self._logger.info(
            "%s settled: agent=%d token=%s in=%d out=%d tx=%s",
            fn_name,
            agent_index,
            token,
            amount_in,
            amount_out,
            tx_ref,
        )
        return SettlementResult(
            tx_ref=tx_ref,
            amount_in=amount_in,
            amount_out=amount_out,
            token_address=token.lower(),
        )

    def _settled_amount(self, receipt: dict[str, Any], fallback: int) -> int:
        """Actual output from the TradeExecuted event, else the simulated output."""
        events = self._vault.events.TradeExecuted().process_receipt(receipt, errors=DISCARD)
        for event in events:
            return int(event["args"]["amountOut"])
        return fallback
