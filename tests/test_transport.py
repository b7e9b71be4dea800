"""HttpWalletTransport over httpx.MockTransport: JSON-RPC results, errors and synthesized notifications."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from conftest import ALICE, BOB, run
from elements_duel.core.exceptions import ProviderError
from elements_duel.wallet.models import WalletEventKind
from elements_duel.wallet.transport import HttpWalletTransport, parse_chain_id

URL = "http://wallet.test/"


def _transport(handler: Callable[[dict[str, Any]], httpx.Response]) -> tuple[HttpWalletTransport, list[dict]]:
    seen: list[dict[str, Any]] = []

    def _handle(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return handler(body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_handle))
    return HttpWalletTransport(URL, client=client), seen


def _ok(body: dict[str, Any], result: Any) -> httpx.Response:
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


class WalletState:
    def __init__(self) -> None:
        self.accounts = [ALICE.lower()]
        self.chain = "0x38"
        self.down = False

    def __call__(self, body: dict[str, Any]) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused")
        if body["method"] == "eth_accounts":
            return _ok(body, self.accounts)
        return _ok(body, self.chain)


def test_request_returns_result_and_posts_jsonrpc():
    transport, seen = _transport(lambda body: _ok(body, "0x61"))
    assert run(transport.request("eth_chainId")) == "0x61"
    assert seen[0]["jsonrpc"] == "2.0"
    assert seen[0]["method"] == "eth_chainId"
    assert seen[0]["params"] == []


def test_rpc_error_preserves_code_and_data():
    def handler(body):
        return httpx.Response(200, json={
            "jsonrpc": "2.0", "id": body["id"],
            "error": {"code": 4001, "message": "User rejected the request.", "data": {"x": 1}},
        })

    transport, _ = _transport(handler)
    with pytest.raises(ProviderError) as info:
        run(transport.request("eth_requestAccounts"))
    assert info.value.code == 4001
    assert info.value.message == "User rejected the request."
    assert info.value.data == {"x": 1}


def test_http_429_is_rate_limit_error():
    transport, _ = _transport(lambda body: httpx.Response(429, text="slow down"))
    with pytest.raises(ProviderError) as info:
        run(transport.request("eth_chainId"))
    assert info.value.code == 429


def test_http_500_raises_httpx_error():
    transport, _ = _transport(lambda body: httpx.Response(500, text="boom"))
    with pytest.raises(httpx.HTTPStatusError):
        run(transport.request("eth_chainId"))


def test_is_available():
    state = WalletState()
    transport, _ = _transport(state)
    assert run(transport.is_available()) is True
    state.down = True
    assert run(transport.is_available()) is False


def test_poll_synthesizes_notifications():
    state = WalletState()
    transport, _ = _transport(state)

    async def scenario():
        await transport._poll_once()
        assert transport.events.empty()

        state.accounts = [BOB.lower()]
        state.chain = "0x61"
        await transport._poll_once()
        first = transport.events.get_nowait()
        second = transport.events.get_nowait()
        assert first.kind is WalletEventKind.ACCOUNTS_CHANGED
        assert first.accounts == (BOB.lower(),)
        assert second.kind is WalletEventKind.CHAIN_CHANGED
        assert second.chain_id == 97

        state.down = True
        await transport._poll_once()
        await transport._poll_once()
        lost = transport.events.get_nowait()
        assert lost.kind is WalletEventKind.DISCONNECTED
        assert transport.events.empty()

        state.down = False
        await transport._poll_once()
        restored = transport.events.get_nowait()
        assert restored.kind is WalletEventKind.CONNECTED
        assert restored.chain_id == 97
        assert transport.events.empty()
        await transport.aclose()

    run(scenario())


@pytest.mark.parametrize("raw,expected", [("0x38", 56), ("0X61", 97), ("56", 56), (97, 97)])
def test_parse_chain_id(raw, expected):
    assert parse_chain_id(raw) == expected


def test_rejects_empty_url():
    with pytest.raises(ValueError):
        HttpWalletTransport("  ")
