"""
Unit tests for execution/endpoint_resolver.py.

AsyncWeb3 construction is replaced with mocks whose ``eth.chain_id`` either
answers or raises, so ordered fallback can be tested without any network.
"""

from __future__ import annotations

from unittest.mock import MagicMock, PropertyMock, patch

import pytest

URL_A = "https://rpc-a.example"
URL_B = "https://rpc-b.example"
URL_C = "https://rpc-c.example/v1/secret-api-key-0123456789"


def _w3(chain_id=None, error=None):
    """Mock AsyncWeb3 whose ``eth.chain_id`` awaitable returns or raises."""

    async def _probe():
        if error is not None:
            raise error
        return chain_id

    w3 = MagicMock()
    w3.eth = MagicMock()
    type(w3.eth).chain_id = PropertyMock(side_effect=lambda: _probe())
    return w3


@pytest.fixture
def make_resolver():
    def _make(urls, endpoints):
        with patch("execution.endpoint_resolver.setup_module_logger") as mock_logger:
            mock_logger.return_value = MagicMock()

            from execution.endpoint_resolver import EndpointResolver

            resolver = EndpointResolver(urls)
        resolver._build = MagicMock(side_effect=lambda url: endpoints[url])
        return resolver

    return _make


class TestResolve:

    async def test_first_healthy_endpoint_wins(self, make_resolver):
        w3_a = _w3(chain_id=5042002)
        resolver = make_resolver([URL_A, URL_B], {URL_A: w3_a, URL_B: _w3(chain_id=5042002)})

        w3 = await resolver.resolve()

        assert w3 is w3_a
        assert resolver.last_url == URL_A
        assert resolver.last_chain_id == 5042002
        resolver._build.assert_called_once_with(URL_A)

    async def test_falls_back_in_order(self, make_resolver):
        w3_b = _w3(chain_id=5042002)
        resolver = make_resolver(
            [URL_A, URL_B],
            {URL_A: _w3(error=ConnectionError("connection refused")), URL_B: w3_b},
        )

        assert await resolver.resolve() is w3_b
        assert [c.args[0] for c in resolver._build.call_args_list] == [URL_A, URL_B]

    async def test_all_failing_raises(self, make_resolver):
        from execution.endpoint_resolver import NoEndpointAvailable

        resolver = make_resolver(
            [URL_A, URL_B],
            {
                URL_A: _w3(error=ConnectionError("refused")),
                URL_B: _w3(error=TimeoutError("timed out")),
            },
        )

        with pytest.raises(NoEndpointAvailable, match="All 2 RPC endpoints failed"):
            await resolver.resolve()

    async def test_empty_list_raises(self, make_resolver):
        from execution.endpoint_resolver import NoEndpointAvailable

        resolver = make_resolver([], {})

        with pytest.raises(NoEndpointAvailable):
            await resolver.resolve()

    async def test_restarts_from_head_each_call(self, make_resolver):
        w3_a = _w3(chain_id=1)
        w3_b = _w3(chain_id=1)
        endpoints = {URL_A: _w3(error=ConnectionError("down")), URL_B: w3_b}
        resolver = make_resolver([URL_A, URL_B], endpoints)

        assert await resolver.resolve() is w3_b

        # Primary recovers
        endpoints[URL_A] = w3_a

        assert await resolver.resolve() is w3_a
        assert resolver.last_url == URL_A

    async def test_build_failure_treated_as_probe_failure(self, make_resolver):
        w3_b = _w3(chain_id=1)
        resolver = make_resolver([URL_A, URL_B], {URL_B: w3_b})

        assert await resolver.resolve() is w3_b


class TestRedaction:

    def test_long_urls_trimmed(self):
        from execution.endpoint_resolver import _redact

        redacted = _redact(URL_C)

        assert "secret-api-key" not in redacted
        assert redacted.startswith(URL_C[:25])

    def test_short_urls_kept(self):
        from execution.endpoint_resolver import _redact

        assert _redact("http://x") == "http://x"
