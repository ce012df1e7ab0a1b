"""
RPC endpoint selection for the Recurve relayer.

Walks the ordered endpoint list, probing each with ``eth_chainId``, and hands
back the first AsyncWeb3 instance that answers.

Usage:
    resolver = EndpointResolver(settings.rpc_urls)
    w3 = await resolver.resolve()
"""

from __future__ import annotations

from collections.abc import Sequence

from web3 import AsyncHTTPProvider, AsyncWeb3

from bot_logging.logger_manager import setup_module_logger


class NoEndpointAvailable(Exception):
    """Raised when every configured RPC endpoint failed the liveness probe."""


def _redact(url: str) -> str:
    """Trim provider URLs so API keys embedded in paths do not reach the logs."""
    return f"{url[:25]}...{url[-6:]}" if len(url) > 31 else url


class EndpointResolver:
    """Ordered-fallback RPC endpoint selection."""

    def __init__(self, rpc_urls: Sequence[str], request_timeout: float = 10.0) -> None:
        self._rpc_urls = tuple(rpc_urls)
        self._request_timeout = request_timeout

        self.last_url: str | None = None
        self.last_chain_id: int | None = None

        self._logger = setup_module_logger(
            "endpoint_resolver", "endpoint_resolver.log", module_folder="Endpoint_Logs"
        )

    @property
    def rpc_urls(self) -> tuple[str, ...]:
        return self._rpc_urls

    def _build(self, url: str) -> AsyncWeb3:
        return AsyncWeb3(
            AsyncHTTPProvider(url, request_kwargs={"timeout": self._request_timeout})
        )

    async def resolve(self) -> AsyncWeb3:
        """
        Return a connected AsyncWeb3 for the first endpoint that passes the probe.

        Always starts again from the head of the list. Raises ``NoEndpointAvailable``
        when the list is exhausted.
        """
        failures: list[str] = []
        for url in self._rpc_urls:
            try:
                self._logger.debug("Probing RPC %s", _redact(url))
                w3 = self._build(url)
                chain_id = await w3.eth.chain_id
            except Exception as exc:
                summary = str(exc).split("(")[0].strip() or type(exc).__name__
                self._logger.warning("RPC %s failed probe: %s", _redact(url), summary)
                failures.append(f"{_redact(url)}: {summary}")
                continue

            self.last_url = url
            self.last_chain_id = chain_id
            self._logger.info("Connected to chain %d via %s", chain_id, _redact(url))
            return w3

        raise NoEndpointAvailable(
            f"All {len(self._rpc_urls)} RPC endpoints failed: " + "; ".join(failures)
        )
