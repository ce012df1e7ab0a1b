"""
Signs, submits and confirms relayer transactions.

Every payment goes through the same pipeline: an ``eth_call`` dry-run that
surfaces the contract's revert reason before any gas is spent, a buffered gas
estimate, a fee quote (EIP-1559 where the chain has a base fee, legacy
``gasPrice`` otherwise), local nonce assignment, then polling for the receipt.

Usage:
    submitter = TxSubmitter(w3, settings, private_key, chain_id)
    receipt = await submitter.submit_and_wait({"to": manager, "data": calldata, "value": 0})
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Any, cast

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_typing import HexStr
from hexbytes import HexBytes
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.types import TxParams

from bot_logging.logger_manager import setup_module_logger
from shared.constants import ERROR_STRING_SELECTOR, PANIC_SELECTOR
from shared.types import RelayerSettings


class TxSubmitterError(Exception):
    """Base error for transaction submission failures."""


class SimulationFailedError(TxSubmitterError):
    """The dry-run reverted or timed out; nothing was broadcast."""


class TxRevertedError(TxSubmitterError):
    """Mined with status 0."""


class TxTimeoutError(TxSubmitterError):
    """No receipt within the confirmation timeout. The transaction may still be mined later."""


def decode_revert_reason(data: bytes | str | None) -> str:
    """
    Readable reason from revert data.

    Understands ``Error(string)`` and ``Panic(uint256)`` payloads; anything
    else is returned as hex. Providers that put a plain message in the error
    data get that message back unchanged.
    """
    if not data:
        return "Unknown revert"
    if isinstance(data, str):
        try:
            data = bytes(HexBytes(data))
        except ValueError:
            return data

    selector, payload = data[:4], data[4:]
    with suppress(DecodingError):
        if selector == ERROR_STRING_SELECTOR:
            return decode(["string"], payload)[0]
        if selector == PANIC_SELECTOR:
            return f"Panic(0x{decode(['uint256'], payload)[0]:02x})"
    return "0x" + data.hex()


class TxSubmitter:
    """
    Pays gas from the relayer key. There is no bundler or sponsor.

    One instance is bound to the endpoint resolved for the current tick, so
    the nonce is read from the ``pending`` count once per tick and advanced
    locally after that.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        settings: RelayerSettings,
        private_key: str,
        chain_id: int,
    ) -> None:
        self._w3 = w3
        self._account = Account.from_key(private_key)
        self._chain_id = chain_id

        self._confirmation_timeout = settings.confirmation_timeout_seconds
        self._simulation_timeout = settings.simulation_timeout_seconds
        self._poll_interval = settings.receipt_poll_interval_seconds
        self._gas_limit_buffer = settings.gas_limit_buffer

        self._nonce: int | None = None
        self._nonce_lock = asyncio.Lock()

        self._logger = setup_module_logger(
            "tx_submitter", "tx_submitter.log", module_folder="TX_Submitter_Logs"
        )

    @property
    def sender(self) -> str:
        return self._account.address

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def submit_and_wait(self, tx: dict[str, Any]) -> dict[str, Any]:
        """Simulate, size gas, sign, send and wait. Returns the receipt."""
        await self.simulate(tx)
        if "gas" not in tx:
            tx = {**tx, "gas": await self.estimate_gas(tx)}
        tx_hash = await self.submit(tx)
        return await self.wait_for_receipt(tx_hash)

    async def simulate(self, tx: dict[str, Any]) -> bytes:
        try:
            return await asyncio.wait_for(
                self._w3.eth.call(cast(TxParams, {"from": self.sender, **tx})),
                timeout=self._simulation_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SimulationFailedError(
                f"Simulation timed out after {self._simulation_timeout}s"
            ) from exc
        except ContractLogicError as exc:
            reason = decode_revert_reason(exc.data) if exc.data else (exc.message or "Unknown revert")
            raise SimulationFailedError(f"Simulation reverted: {reason}") from exc

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        estimate = await self._w3.eth.estimate_gas(cast(TxParams, {"from": self.sender, **tx}))
        return int(estimate * self._gas_limit_buffer)

    async def quote_fees(self) -> dict[str, int]:
        """
        Fee fields for the next transaction.

        With a base fee: ``maxFeePerGas = 2 * baseFee + tip`` so the
        transaction survives a few full blocks of base-fee growth.
        """
        latest = await self._w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is None:
            return {"gasPrice": await self._w3.eth.gas_price}
        tip = await self._w3.eth.max_priority_fee
        return {
            "type": 2,
            "maxFeePerGas": 2 * base_fee + tip,
            "maxPriorityFeePerGas": tip,
        }

    async def submit(self, tx: dict[str, Any]) -> str:
        """Sign with the relayer key and broadcast. Returns the 0x transaction hash."""
        fees = await self.quote_fees()
        nonce = await self._next_nonce()
        full_tx = {**tx, **fees, "chainId": self._chain_id, "nonce": nonce}

        try:
            signed = self._account.sign_transaction(full_tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception:
            # Rejected before entering the mempool, so this nonce is still free
            await self._resync_nonce()
            raise

        tx_hash_hex = HexBytes(tx_hash).to_0x_hex()
        self._logger.info("TX submitted: hash=%s nonce=%d fees=%s", tx_hash_hex, nonce, fees)
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float | None = None) -> dict[str, Any]:
        if timeout is None:
            timeout = self._confirmation_timeout
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                cast(HexStr, tx_hash), timeout=timeout, poll_latency=self._poll_interval
            )
        except TimeExhausted as exc:
            raise TxTimeoutError(f"TX {tx_hash} not confirmed after {timeout}s") from exc

        if receipt.get("status") != 1:
            raise TxRevertedError(
                f"TX reverted on-chain: {tx_hash} (block {receipt.get('blockNumber')})"
            )

        self._logger.info(
            "TX confirmed: hash=%s block=%s gasUsed=%s",
            tx_hash,
            receipt.get("blockNumber"),
            receipt.get("gasUsed"),
        )
        return dict(receipt)

    # ------------------------------------------------------------------
    # Nonce
    # ------------------------------------------------------------------

    async def _next_nonce(self) -> int:
        async with self._nonce_lock:
            if self._nonce is None:
                self._nonce = await self._w3.eth.get_transaction_count(self.sender, "pending")
                self._logger.debug("Nonce loaded from pending count: %d", self._nonce)
            nonce = self._nonce
            self._nonce += 1
            return nonce

    async def _resync_nonce(self) -> None:
        async with self._nonce_lock:
            stale = self._nonce
            # Re-read lazily on the next submission
            self._nonce = None
        self._logger.warning("Discarded local nonce %s after a rejected submission", stale)
