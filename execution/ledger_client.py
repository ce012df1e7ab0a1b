"""
SubscriptionManager client: chain reads, event discovery and calldata encoding.

Implements the ``LedgerReader`` capability: ``range_query`` over the HTTP
endpoint (``eth_getLogs``) and ``subscribe_live`` over a WebSocket
``eth_subscribe("logs")`` stream. Both paths share one log decoder.
Transactions are signed and sent by TxSubmitter, never here.

Usage:
    w3 = await EndpointResolver(settings.rpc_urls).resolve()
    ledger = SubscriptionLedger(settings, w3)
    due = await ledger.check_upkeep(watch_list)
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from typing import Any

import websockets
from eth_abi.abi import decode as abi_decode
from hexbytes import HexBytes
from web3 import AsyncWeb3, Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import SUBSCRIPTION_CREATED_SIGNATURE, SUBSCRIPTION_MANAGER_ABI_NAME
from shared.serialization_utils import normalize_sub_id, sub_id_to_bytes
from shared.types import RelayerSettings, SubscriptionCreated

SUBSCRIPTION_CREATED_TOPIC = "0x" + bytes(Web3.keccak(text=SUBSCRIPTION_CREATED_SIGNATURE)).hex()


class LedgerClientError(Exception):
    """Raised when a SubscriptionManager read fails."""


class LiveSubscriptionSetupError(LedgerClientError):
    """Raised when the WebSocket subscription cannot be established."""


# ---------------------------------------------------------------------------
# Log decoding
# ---------------------------------------------------------------------------


def _block_number(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


def decode_subscription_created(log: dict[str, Any]) -> SubscriptionCreated:
    """
    Decode a raw ``SubscriptionCreated`` log.

    Accepts both web3.py log dicts (HexBytes topics) and JSON-RPC notification
    payloads (hex-string topics). Raises ``ValueError`` on anything else.
    """
    topics = [HexBytes(t) for t in log.get("topics", [])]
    if len(topics) < 3 or "0x" + bytes(topics[0]).hex() != SUBSCRIPTION_CREATED_TOPIC:
        raise ValueError("Log is not a SubscriptionCreated event")

    data = bytes(HexBytes(log.get("data") or b""))
    try:
        (tier_id,) = abi_decode(["uint256"], data)
    except Exception as exc:
        raise ValueError(f"Undecodable SubscriptionCreated data: {exc}") from exc

    return SubscriptionCreated(
        sub_id=normalize_sub_id(bytes(topics[1])),
        subscriber=Web3.to_checksum_address("0x" + bytes(topics[2])[-20:].hex()),
        tier_id=int(tier_id),
        block_number=_block_number(log.get("blockNumber")),
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SubscriptionLedger:
    """
    Async read + sync encode wrapper for the SubscriptionManager contract.

    ``w3`` is the HTTP connection chosen by the EndpointResolver for the current
    tick. It may be omitted for a live-only reader (the push listener), in which
    case the HTTP-backed methods raise ``LedgerClientError``.
    """

    def __init__(self, settings: RelayerSettings, w3: AsyncWeb3 | None = None) -> None:
        self._settings = settings
        self._w3 = w3
        self._address = Web3.to_checksum_address(settings.manager_address)
        self._abi = get_config().get_abi(SUBSCRIPTION_MANAGER_ABI_NAME)
        self._contract = w3.eth.contract(address=self._address, abi=self._abi) if w3 else None

        self._logger = setup_module_logger(
            "ledger_client", "ledger_client.log", module_folder="Discovery_Logs"
        )

    @property
    def address(self) -> str:
        return self._address

    def _require_http(self) -> tuple[AsyncWeb3, Any]:
        if self._w3 is None or self._contract is None:
            raise LedgerClientError("No HTTP endpoint bound to this ledger client")
        return self._w3, self._contract

    # ------------------------------------------------------------------
    # Chain reads
    # ------------------------------------------------------------------

    async def get_block_number(self) -> int:
        w3, _ = self._require_http()
        try:
            return await w3.eth.block_number
        except Exception as e:
            raise LedgerClientError(f"eth_blockNumber failed: {e}") from e

    async def range_query(self, from_block: int, to_block: int) -> list[SubscriptionCreated]:
        """Fetch and decode every SubscriptionCreated log in ``[from_block, to_block]``."""
        w3, _ = self._require_http()
        try:
            logs = await w3.eth.get_logs(
                {
                    "address": self._address,
                    "topics": [SUBSCRIPTION_CREATED_TOPIC],
                    "fromBlock": from_block,
                    "toBlock": to_block,
                }
            )
        except Exception as e:
            raise LedgerClientError(
                f"getLogs failed for blocks {from_block}-{to_block}: {e}"
            ) from e

        events = []
        for log in logs:
            try:
                events.append(decode_subscription_created(dict(log)))
            except ValueError as e:
                self._logger.warning("Skipping undecodable log in %d-%d: %s", from_block, to_block, e)
        return events

    async def check_upkeep(self, sub_ids: Sequence[str]) -> list[str]:
        """Batch due-check. The due predicate is owned by the contract."""
        _, contract = self._require_http()
        try:
            raw = await contract.functions.checkUpkeep(
                [sub_id_to_bytes(s) for s in sub_ids]
            ).call()
        except Exception as e:
            raise LedgerClientError(f"checkUpkeep failed: {e}") from e
        return [normalize_sub_id(bytes(r)) for r in raw]

    # ------------------------------------------------------------------
    # Live subscription (WebSocket)
    # ------------------------------------------------------------------

    def _subscription_request(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_subscribe",
            "params": [
                "logs",
                {"address": self._address, "topics": [SUBSCRIPTION_CREATED_TOPIC]},
            ],
        }

    async def subscribe_live(self) -> AsyncIterator[SubscriptionCreated]:
        """
        Yield SubscriptionCreated events pushed over WebSocket.

        Raises ``LiveSubscriptionSetupError`` if the connection or the
        ``eth_subscribe`` handshake fails. Returns (or raises the websockets
        close error) when an established stream drops.
        """
        ws_url = self._settings.ws_url
        if not ws_url:
            raise LiveSubscriptionSetupError("No WebSocket URL configured")

        try:
            ws = await websockets.connect(
                ws_url, ping_interval=20, ping_timeout=30, close_timeout=10
            )
        except Exception as e:
            raise LiveSubscriptionSetupError(f"WebSocket connect failed: {e}") from e

        try:
            try:
                await ws.send(json.dumps(self._subscription_request()))
                response = json.loads(
                    await asyncio.wait_for(
                        ws.recv(), timeout=self._settings.ws_subscription_timeout_seconds
                    )
                )
            except asyncio.TimeoutError as e:
                raise LiveSubscriptionSetupError("eth_subscribe response timed out") from e
            except Exception as e:
                raise LiveSubscriptionSetupError(f"eth_subscribe failed: {e}") from e

            if "error" in response:
                raise LiveSubscriptionSetupError(f"eth_subscribe rejected: {response['error']}")
            self._logger.info("Live subscription established: id=%s", response.get("result"))

            async for raw_message in ws:
                try:
                    message = json.loads(raw_message)
                except json.JSONDecodeError as e:
                    self._logger.warning("Invalid JSON on live stream: %s", e)
                    continue

                if message.get("method") != "eth_subscription":
                    continue
                log = message.get("params", {}).get("result")
                # Reorged-out logs are re-announced with removed=true
                if not log or log.get("removed"):
                    continue

                try:
                    yield decode_subscription_created(log)
                except ValueError as e:
                    self._logger.warning("Skipping undecodable live log: %s", e)
        finally:
            await ws.close()

    # ------------------------------------------------------------------
    # Calldata (local ABI encoding)
    # ------------------------------------------------------------------

    def encode_execute_payment(self, sub_id: str) -> str:
        """Encode calldata for executePayment(bytes32)."""
        _, contract = self._require_http()
        try:
            return contract.encode_abi("executePayment", args=[sub_id_to_bytes(sub_id)])
        except Exception as e:
            raise LedgerClientError(f"encode executePayment failed: {e}") from e
