"""
Transaction submission layer for Agent Fleet Bot.

Simulates (eth_call), signs, submits and confirms vault transactions on
Monad with nonce management. Every write is simulated first; a revert in
simulation never reaches the mempool.

Usage:
    submitter = TxSubmitter(w3, safety, private_key, operator_address)
    output = await submitter.simulate(tx)
    receipt = await submitter.submit_and_wait(tx)
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, cast

from eth_typing import HexStr
from web3 import AsyncWeb3, Web3
from web3.types import TxParams

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import MONAD_CHAIN_ID

if TYPE_CHECKING:
    from core.safety import SafetyState

# Error(string) function selector, first 4 bytes of keccak256("Error(string)")
_ERROR_SELECTOR = bytes.fromhex("08c379a0")

_GAS_LIMIT_BUFFER = 1.2


class TxSubmitterError(Exception):
    """Base error for transaction submission failures."""


class SimulationFailedError(TxSubmitterError):
    """Raised when eth_call simulation reverts."""


class TxRevertedError(TxSubmitterError):
    """Raised when a confirmed transaction has status=0 (reverted)."""


class TxTimeoutError(TxSubmitterError):
    """Raised when a transaction is not confirmed within the timeout."""


class TxSubmitter:
    """Transaction submitter with simulation, nonce management and receipt polling."""

    def __init__(
        self,
        w3: AsyncWeb3,
        safety: SafetyState,
        private_key: str,
        operator_address: str,
    ) -> None:
        self._w3 = w3
        self._safety = safety
        self._private_key = private_key
        self._operator_address = Web3.to_checksum_address(operator_address)

        cfg = get_config()
        timing_cfg = cfg.get_timing_config()
        chain_cfg = cfg.get_chain_config(MONAD_CHAIN_ID)

        self._confirmation_timeout = float(timing_cfg.get("settlement_write_timeout_seconds", 60))
        self._simulation_timeout = float(timing_cfg.get("simulation_timeout_seconds", 10))
        self._chain_id: int = chain_cfg.get("chain_id", MONAD_CHAIN_ID)

        self._gas_price_buffer: float = 1.1

        # Nonce state
        self._nonce: int | None = None
        self._nonce_lock = asyncio.Lock()

        self._logger = setup_module_logger("tx_submitter", "tx_submitter.log", module_folder="Execution_Logs")

    @property
    def operator_address(self) -> str:
        return self._operator_address

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def simulate(self, tx: dict[str, Any]) -> bytes:
        """
        Dry-run a transaction via eth_call.

        Returns output bytes on success. Raises ``SimulationFailedError``
        on revert or timeout.
        """
        call = {"from": self._operator_address, **tx}
        try:
            result = await asyncio.wait_for(
                self._w3.eth.call(cast(TxParams, call)),
                timeout=self._simulation_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SimulationFailedError(f"Simulation timed out after {self._simulation_timeout:.0f}s") from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = self.decode_revert_reason(getattr(exc, "data", b"") or b"")
            raise SimulationFailedError(f"Simulation reverted: {reason}") from exc

        self._logger.debug("Simulation succeeded: %d bytes output", len(result))
        return bytes(result)

    async def submit(self, tx: dict[str, Any]) -> str:
        """
        Sign and submit a transaction.

        Assigns nonce, chain ID, gas limit and EIP-1559 fees automatically.
        Returns the transaction hash as a hex string.
        """
        tx = {"from": self._operator_address, **tx}
        try:
            if "gas" not in tx:
                estimate = await self._w3.eth.estimate_gas(cast(TxParams, tx))
                tx["gas"] = int(estimate * _GAS_LIMIT_BUFFER)
            max_fee, priority_fee = await self.get_gas_price()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise TxSubmitterError(f"Fee preparation failed: {exc}") from exc

        nonce = await self._get_next_nonce()

        tx = {
            **tx,
            "chainId": self._chain_id,
            "nonce": nonce,
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": priority_fee,
            "type": 2,
        }

        signed = self._w3.eth.account.sign_transaction(tx, self._private_key)
        try:
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Rejected by the node (typically a stale nonce); resync before the next attempt
            await self._recover_nonce()
            raise TxSubmitterError(f"TX rejected by node: {exc}") from exc

        tx_hash_hex = tx_hash.to_0x_hex() if hasattr(tx_hash, "to_0x_hex") else tx_hash.hex()
        self._logger.info(
            "TX submitted: hash=%s nonce=%d maxFee=%d priorityFee=%d",
            tx_hash_hex,
            nonce,
            max_fee,
            priority_fee,
        )
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float | None = None) -> dict[str, Any]:
        """
        Poll for transaction receipt until confirmed or timeout.

        Raises ``TxRevertedError`` if status=0, ``TxTimeoutError`` on timeout.
        """
        if timeout is None:
            timeout = self._confirmation_timeout

        start = time.monotonic()

        while True:
            try:
                receipt = await self._w3.eth.get_transaction_receipt(cast(HexStr, tx_hash))
            except asyncio.CancelledError:
                raise
            except Exception:
                # Not yet mined (TransactionNotFound) or transient RPC error
                receipt = None

            if receipt is not None:
                if receipt.get("status") == 1:
                    self._logger.info("TX confirmed: hash=%s gasUsed=%s", tx_hash, receipt.get("gasUsed"))
                    return dict(receipt)
                raise TxRevertedError(f"TX reverted on-chain: {tx_hash}")

            if time.monotonic() - start >= timeout:
                raise TxTimeoutError(f"TX {tx_hash} not confirmed after {timeout:.0f}s")

            await asyncio.sleep(1)

    async def submit_and_wait(self, tx: dict[str, Any]) -> dict[str, Any]:
        """
        Full submission flow: simulate → safety check → submit → wait.

        Returns the transaction receipt dict.
        """
        await self.simulate(tx)

        check = self._safety.can_submit_tx()
        if not check.can_proceed:
            raise TxSubmitterError(f"Safety gate blocked: {check.reason}")

        tx_hash = await self.submit(tx)
        return await self.wait_for_receipt(tx_hash)

    async def get_gas_price(self) -> tuple[int, int]:
        """
        Get current gas price as (maxFeePerGas, maxPriorityFeePerGas) in wei.

        Applies a 10% buffer to the base gas price.
        """
        base_price = await self._w3.eth.gas_price
        max_fee = int(base_price * self._gas_price_buffer)
        priority_fee = max(int(base_price * 0.1), 1)
        max_fee = max(max_fee, priority_fee)
        return max_fee, priority_fee

    # ------------------------------------------------------------------
    # Nonce management
    # ------------------------------------------------------------------

    async def _get_next_nonce(self) -> int:
        async with self._nonce_lock:
            if self._nonce is None:
                self._nonce = await self._w3.eth.get_transaction_count(self._operator_address, "pending")
                self._logger.info("Nonce initialized from chain: %d", self._nonce)
            nonce = self._nonce
            self._nonce += 1
            return nonce

    async def _recover_nonce(self) -> None:
        """Re-sync local nonce counter from chain state."""
        async with self._nonce_lock:
            pending = await self._w3.eth.get_transaction_count(self._operator_address, "pending")
            old_nonce = self._nonce
            self._nonce = pending
            self._logger.warning("Nonce recovered: local=%s pending=%d", old_nonce, pending)

    # ------------------------------------------------------------------
    # Revert decoding
    # ------------------------------------------------------------------

    @staticmethod
    def decode_revert_reason(data: bytes | str) -> str:
        """
        Decode a Solidity revert reason from raw data.

        Handles the ``Error(string)`` selector (0x08c379a0).
        Returns "Unknown revert" for empty data.
        """
        if not data:
            return "Unknown revert"

        if isinstance(data, str):
            try:
                data = bytes.fromhex(data.removeprefix("0x"))
            except ValueError:
                return data

        if len(data) < 4:
            return data.hex()

        if data[:4] == _ERROR_SELECTOR and len(data) >= 68:
            # selector(4) + offset(32) + length(32) + data
            str_len = int.from_bytes(data[36:68], "big")
            return data[68 : 68 + str_len].decode("utf-8", errors="replace")

        return data.hex()
