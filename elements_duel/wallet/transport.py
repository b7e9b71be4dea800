"""
Wallet transport: EIP-1193 requests over HTTP JSON-RPC.

Responsibilities:
- Send JSON-RPC requests to a local wallet bridge and raise ProviderError on
  RPC-level errors (code / message preserved for classification).
- Synthesize wallet notifications (accounts changed, chain changed, connected,
  disconnected) by polling eth_accounts / eth_chainId and observing transport
  failures, and push them into an asyncio.Queue consumed by the manager.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import httpx

from elements_duel.core.exceptions import ProviderError
from elements_duel.duel_logging import get_logger
from elements_duel.wallet.models import WalletEvent, WalletEventKind

logger = get_logger(__name__)

_request_ids = itertools.count(1)


def _build_rpc_body(method: str, params: list[Any] | None) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": next(_request_ids),
        "method": method,
        "params": params or [],
    }


def parse_chain_id(raw: Any) -> int:
    """eth_chainId returns hex ("0x38"); some bridges return decimal."""
    if isinstance(raw, int):
        return raw
    text = str(raw).strip().lower()
    return int(text, 16) if text.startswith("0x") else int(text)


class WalletTransport:
    """
    Base transport. Subclasses implement request(); notifications go to `events`.
    """

    def __init__(self) -> None:
        self.events: asyncio.Queue[WalletEvent] = asyncio.Queue()

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        raise NotImplementedError

    async def is_available(self) -> bool:
        """True when the endpoint answers at all (presence check, no retries)."""
        raise NotImplementedError

    async def watch(self, stop: asyncio.Event) -> None:
        """Produce notifications until stop is set. Default transport has none."""
        await stop.wait()

    async def aclose(self) -> None:
        return None

    def emit(self, event: WalletEvent) -> None:
        self.events.put_nowait(event)


class HttpWalletTransport(WalletTransport):
    """
    JSON-RPC over HTTP to a wallet bridge (e.g. Frame at http://127.0.0.1:1248).
    One httpx.AsyncClient is reused for the life of the transport.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        request_timeout_sec: float = 30.0,
        poll_interval_sec: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        if poll_interval_sec <= 0:
            raise ValueError("poll_interval_sec must be positive")
        super().__init__()
        self._rpc_url = rpc_url.rstrip("/")
        self._request_timeout = request_timeout_sec
        self._poll_interval_sec = poll_interval_sec
        self._client = client
        self._last_accounts: tuple[str, ...] | None = None
        self._last_chain_id: int | None = None
        self._reachable: bool | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._request_timeout))
        return self._client

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Perform one JSON-RPC call; raise ProviderError on RPC error, httpx errors on transport failure."""
        body = _build_rpc_body(method, params)
        resp = await self._get_client().post(self._rpc_url, json=body)
        if resp.status_code == 429:
            raise ProviderError("too many requests", code=429)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data and data["error"] is not None:
            err = data["error"]
            if isinstance(err, dict):
                raise ProviderError(
                    str(err.get("message", err)),
                    code=err.get("code"),
                    data=err.get("data"),
                )
            raise ProviderError(str(err))
        return data.get("result")

    async def is_available(self) -> bool:
        try:
            await self.request("eth_chainId")
        except httpx.HTTPError as e:
            logger.warning("wallet_transport_unreachable", rpc_url=self._rpc_url, error=str(e))
            return False
        except ProviderError as e:
            # Endpoint answered, even if with an error.
            logger.debug("wallet_transport_probe_error", error=str(e))
        return True

    async def watch(self, stop: asyncio.Event) -> None:
        logger.info("wallet_watch_started", rpc_url=self._rpc_url, poll_interval_sec=self._poll_interval_sec)
        while not stop.is_set():
            try:
                await self._poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("wallet_watch_cycle_error", error=str(e))
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._poll_interval_sec)
            except asyncio.TimeoutError:
                pass
        logger.info("wallet_watch_exited")

    async def _poll_once(self) -> None:
        try:
            accounts_raw = await self.request("eth_accounts")
            chain_raw = await self.request("eth_chainId")
        except httpx.HTTPError as e:
            if self._reachable is not False:
                self._reachable = False
                logger.warning("wallet_transport_lost", error=str(e))
                self.emit(WalletEvent(WalletEventKind.DISCONNECTED, error=str(e)))
            return

        accounts = tuple(str(a) for a in (accounts_raw or []))
        chain_id = parse_chain_id(chain_raw) if chain_raw is not None else None

        if self._reachable is False:
            logger.info("wallet_transport_restored", chain_id=chain_id)
            self.emit(WalletEvent(WalletEventKind.CONNECTED, chain_id=chain_id))
        self._reachable = True

        if self._last_accounts is not None and accounts != self._last_accounts:
            self.emit(WalletEvent(WalletEventKind.ACCOUNTS_CHANGED, accounts=accounts))
        if self._last_chain_id is not None and chain_id != self._last_chain_id:
            self.emit(WalletEvent(WalletEventKind.CHAIN_CHANGED, chain_id=chain_id))
        self._last_accounts = accounts
        self._last_chain_id = chain_id

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
