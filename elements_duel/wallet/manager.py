"""
Connection Resilience Manager.

Responsibilities:
- Own the wallet session: IDLE -> CONNECTING -> CONNECTED, -> ERROR on failure,
  network mismatch or provider disconnect, -> IDLE on explicit disconnect.
- Route every provider call through retry_call with the session's guard.
- Build the session-bound LedgerClient and refuse ledger access on the wrong network.
- Drain wallet notifications from the transport queue and re-derive state
  (account, chain, owner flag, balance) without the caller reconnecting.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import replace
from decimal import Decimal
from typing import Any, Awaitable, Callable, TypeVar

from web3 import Web3

from elements_duel.config import Settings, get_settings
from elements_duel.config.env import describe_network
from elements_duel.core.addresses import shorten
from elements_duel.core.exceptions import (
    DuelError,
    NotConnectedError,
    UserRejectedError,
    WalletLockedError,
    WalletUnavailableError,
    WrongNetworkError,
)
from elements_duel.duel_logging import bind_account, get_logger
from elements_duel.ledger.client import LedgerClient, RpcCall
from elements_duel.wallet.models import (
    ConnectionState,
    ConnectionStatus,
    WalletEvent,
    WalletEventKind,
)
from elements_duel.wallet.retry import (
    BALANCE_POLICY,
    CHAIN_ID_POLICY,
    DEFAULT_POLICY,
    REQUEST_ACCOUNTS_POLICY,
    SILENT_ACCOUNTS_POLICY,
    SWITCH_NETWORK_POLICY,
    UNKNOWN_CHAIN_CODE,
    RetryPolicy,
    SessionGuard,
    retry_call,
    to_duel_error,
)
from elements_duel.wallet.transport import HttpWalletTransport, WalletTransport, parse_chain_id

logger = get_logger(__name__)

T = TypeVar("T")

LedgerFactory = Callable[[RpcCall, RpcCall, str, str], LedgerClient]

SINGLE_ATTEMPT = RetryPolicy(attempts=1)
STOP_CHECK_SEC = 1.0


def _default_ledger_factory(call: RpcCall, send: RpcCall, contract_address: str, account: str) -> LedgerClient:
    return LedgerClient(call, contract_address, sender=account, send=send)


def format_native(wei: int) -> str:
    """Wei to a plain decimal string in native units ("1.25", "0")."""
    value = Decimal(Web3.from_wei(wei, "ether")).normalize()
    text = format(value, "f")
    return text if text else "0"


class ConnectionManager:
    """
    One wallet session. Collaborators read `state` (an immutable snapshot) and call
    connect / reconnect / switch_network / disconnect; the engine obtains the ledger
    binding through require_ledger().
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: WalletTransport | None = None,
        ledger_factory: LedgerFactory = _default_ledger_factory,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport or HttpWalletTransport(
            self._settings.wallet_rpc_url,
            request_timeout_sec=self._settings.rpc_timeout_sec,
        )
        self._ledger_factory = ledger_factory
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._guard = SessionGuard()
        self._state = ConnectionState()
        self._ledger: LedgerClient | None = None
        self._awaiting_switch = False
        self._last_balance_at: float | None = None
        self._log = logger

    # ------------------------------------------------------------------
    # Snapshot accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session_id(self) -> int:
        return self._guard.session_id

    @property
    def guard(self) -> SessionGuard:
        return self._guard

    @property
    def transport(self) -> WalletTransport:
        return self._transport

    @property
    def settings(self) -> Settings:
        return self._settings

    def is_current(self, session_id: int) -> bool:
        return session_id == self._guard.session_id

    def is_expected_chain(self, chain_id: int | None) -> bool:
        return chain_id is not None and chain_id in self._settings.expected_chain_ids

    def _set_state(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)

    # ------------------------------------------------------------------
    # Retry wrapper
    # ------------------------------------------------------------------

    async def retry(
        self,
        fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy = DEFAULT_POLICY,
        *,
        context: str = "rpc",
    ) -> T:
        """Run a provider call under the session's retry policy and overload guard."""
        return await retry_call(
            fn,
            policy,
            guard=self._guard,
            sleep=self._sleep,
            rng=self._rng,
            context=context,
        )

    async def _request(self, method: str, params: list[Any] | None = None, policy: RetryPolicy = DEFAULT_POLICY) -> Any:
        return await self.retry(lambda: self._transport.request(method, params), policy, context=method)

    async def _ledger_call(self, method: str, params: list[Any]) -> Any:
        return await self._request(method, params, DEFAULT_POLICY)

    async def _ledger_send(self, method: str, params: list[Any]) -> Any:
        return await self._request(method, params, SINGLE_ATTEMPT)

    async def _read_chain_id(self) -> int:
        return parse_chain_id(await self._request("eth_chainId", None, CHAIN_ID_POLICY))

    async def read_balance_wei(self, account: str | None = None) -> int:
        """Fresh native balance of the session account (or the given one)."""
        account = account or self._state.account
        if not account:
            raise NotConnectedError()
        raw = await self._request("eth_getBalance", [account, "latest"], BALANCE_POLICY)
        return raw if isinstance(raw, int) else int(str(raw), 16)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def connect(self) -> ConnectionState:
        """
        Establish the session. Raises ConnectionCooldownError when throttled; any other
        failure moves the state to ERROR with last_error set and is re-raised.
        On a chain mismatch the wallet is asked to switch and the connection completes
        when the chain-changed notification arrives.
        """
        now = self._clock()
        self._guard.check_connect(now)
        self._guard.begin_connect(now)
        session = self._guard.session_id
        self._set_state(status=ConnectionStatus.CONNECTING, last_error=None)
        logger.info("wallet_connect_started", session_id=session)
        try:
            if not await self._transport.is_available():
                self._set_state(wallet_available=False)
                raise WalletUnavailableError()
            self._set_state(wallet_available=True)

            chain_id = await self._read_chain_id()
            if not self.is_expected_chain(chain_id):
                logger.info(
                    "wallet_chain_mismatch",
                    chain_id=chain_id,
                    expected=list(self._settings.expected_chain_ids),
                )
                self._set_state(chain_id=chain_id, is_expected_network=False)
                self._awaiting_switch = True
                await self.switch_network()
                return self._state

            accounts = await self._request("eth_requestAccounts", None, REQUEST_ACCOUNTS_POLICY)
            if not accounts:
                raise WalletLockedError()
            await self._complete_connection(str(accounts[0]), session)
            return self._state
        except Exception as exc:
            err = to_duel_error(exc)
            self._fail(err, session)
            if err is exc:
                raise
            raise err from exc
        finally:
            self._guard.end_connect(session)

    async def reconnect(self) -> ConnectionState:
        """
        Silent reconnect (no wallet prompt). Zero accounts means the wallet is locked or
        not authorized: state goes to IDLE with wallet_locked set and network unknown.
        """
        session = self._guard.session_id
        try:
            accounts = await self._request("eth_accounts", None, SILENT_ACCOUNTS_POLICY)
        except DuelError as exc:
            self._fail(exc, session)
            raise
        if not accounts:
            if self.is_current(session):
                self._state = ConnectionState(
                    wallet_available=True,
                    wallet_locked=True,
                    is_expected_network=None,
                )
                logger.info("wallet_reconnect_locked")
            return self._state
        try:
            await self._complete_connection(str(accounts[0]), session)
        except DuelError as exc:
            self._fail(exc, session)
            raise
        return self._state

    async def switch_network(self, chain_id: int | None = None) -> None:
        """
        Ask the wallet to switch to the target chain; add it first when the wallet does
        not know it (code 4902). User rejection is terminal for this call.
        """
        target = chain_id or self._settings.target_chain_id
        hex_id = hex(target)
        logger.info("wallet_switch_network", chain_id=target)
        try:
            await self._request("wallet_switchEthereumChain", [{"chainId": hex_id}], SWITCH_NETWORK_POLICY)
        except UserRejectedError:
            logger.info("wallet_switch_rejected", chain_id=target)
            raise
        except DuelError as exc:
            if exc.code != UNKNOWN_CHAIN_CODE:
                raise
            logger.info("wallet_add_network", chain_id=target)
            await self._request("wallet_addEthereumChain", [describe_network(target)], SWITCH_NETWORK_POLICY)

    def disconnect(self) -> None:
        """Synchronous total reset; never calls the transport."""
        self._ledger = None
        self._awaiting_switch = False
        self._last_balance_at = None
        session = self._guard.reset()
        self._state = ConnectionState()
        self._log = logger
        logger.info("wallet_disconnected", session_id=session)

    def require_ledger(self) -> LedgerClient:
        """Session-bound ledger binding; refuses before any call when not usable."""
        state = self._state
        if state.chain_id is not None and not self.is_expected_chain(state.chain_id):
            raise WrongNetworkError(chain_id=state.chain_id, expected=self._settings.expected_chain_ids)
        if state.status is not ConnectionStatus.CONNECTED or self._ledger is None or not state.account:
            raise NotConnectedError()
        return self._ledger

    async def refresh_balance(self) -> str | None:
        """Re-read the balance while connected. Failures keep the previous value."""
        if not self._state.is_connected or not self._state.account:
            return None
        session = self._guard.session_id
        self._last_balance_at = self._clock()
        try:
            wei = await self.read_balance_wei()
        except DuelError as exc:
            self._log.warning("balance_refresh_failed", kind=exc.kind.value, error=exc.message)
            return None
        if not self.is_current(session):
            logger.info("balance_stale_result_discarded", session_id=session)
            return None
        balance = format_native(wei)
        self._set_state(balance=balance)
        return balance

    # ------------------------------------------------------------------
    # Connection completion / failure
    # ------------------------------------------------------------------

    async def _complete_connection(self, account: str, session: int) -> None:
        account = Web3.to_checksum_address(account)
        chain_id = await self._read_chain_id()
        if not self.is_current(session):
            logger.info("connect_stale_result_discarded", session_id=session)
            return
        if not self.is_expected_chain(chain_id):
            self._set_state(account=account, chain_id=chain_id, is_expected_network=False)
            raise WrongNetworkError(chain_id=chain_id, expected=self._settings.expected_chain_ids)

        ledger = self._ledger_factory(
            self._ledger_call,
            self._ledger_send,
            self._settings.contract_address,
            account,
        )
        owner = await ledger.owner()
        balance = "0"
        try:
            balance = format_native(await ledger.get_balance(account))
        except DuelError as exc:
            logger.warning("connect_balance_unavailable", kind=exc.kind.value, error=exc.message)
        if not self.is_current(session):
            logger.info("connect_stale_result_discarded", session_id=session)
            return

        self._ledger = ledger
        self._awaiting_switch = False
        self._last_balance_at = self._clock()
        self._state = ConnectionState(
            status=ConnectionStatus.CONNECTED,
            account=account,
            chain_id=chain_id,
            is_expected_network=True,
            balance=balance,
            is_owner=owner.lower() == account.lower(),
            last_error=None,
            wallet_available=True,
            wallet_locked=False,
        )
        self._log = bind_account(shorten(account))
        self._log.info("wallet_connected", chain_id=chain_id, is_owner=self._state.is_owner)

    def _fail(self, err: DuelError, session: int) -> None:
        if not self.is_current(session):
            logger.info("connect_stale_error_discarded", session_id=session, kind=err.kind.value)
            return
        self._ledger = None
        self._awaiting_switch = False
        self._set_state(
            status=ConnectionStatus.ERROR,
            last_error=err.info(),
            wallet_locked=isinstance(err, WalletLockedError),
        )
        logger.warning("wallet_connect_failed", kind=err.kind.value, error=err.message)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def process_events(self) -> int:
        """Drain queued wallet notifications without waiting. Returns how many were handled."""
        handled = 0
        while True:
            try:
                event = self._transport.events.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            await self.handle_event(event)
            handled += 1

    async def handle_event(self, event: WalletEvent) -> None:
        logger.info("wallet_event", kind=event.kind.value, chain_id=event.chain_id, accounts=len(event.accounts))
        session = self._guard.session_id
        try:
            if event.kind is WalletEventKind.ACCOUNTS_CHANGED:
                await self._on_accounts_changed(event, session)
            elif event.kind is WalletEventKind.CHAIN_CHANGED:
                await self._on_chain_changed(event, session)
            elif event.kind is WalletEventKind.DISCONNECTED:
                self._on_disconnected(event)
            elif event.kind is WalletEventKind.CONNECTED:
                await self._on_connected(event, session)
        except DuelError as exc:
            self._fail(exc, session)
        except Exception as exc:
            logger.exception("wallet_event_failed", kind=event.kind.value, error=str(exc))
            self._fail(to_duel_error(exc), session)

    async def _on_accounts_changed(self, event: WalletEvent, session: int) -> None:
        if not event.accounts:
            self._ledger = None
            self._awaiting_switch = False
            self._guard.reset()
            self._state = ConnectionState(wallet_available=True)
            self._log = logger
            logger.info("wallet_accounts_cleared")
            return
        if self._state.status is ConnectionStatus.IDLE and not self._awaiting_switch:
            return
        await self._complete_connection(event.accounts[0], session)

    async def _on_chain_changed(self, event: WalletEvent, session: int) -> None:
        chain_id = event.chain_id
        state = self._state
        if self._awaiting_switch:
            if not self.is_expected_chain(chain_id):
                self._set_state(chain_id=chain_id, is_expected_network=False)
                return
            accounts = await self._request("eth_requestAccounts", None, REQUEST_ACCOUNTS_POLICY)
            if not accounts:
                raise WalletLockedError()
            await self._complete_connection(str(accounts[0]), session)
            return
        if not state.account:
            self._set_state(chain_id=chain_id, is_expected_network=self.is_expected_chain(chain_id) if chain_id else None)
            return
        if self.is_expected_chain(chain_id):
            await self._complete_connection(state.account, session)
            return
        self._ledger = None
        err = WrongNetworkError(chain_id=chain_id, expected=self._settings.expected_chain_ids)
        self._set_state(
            status=ConnectionStatus.ERROR,
            chain_id=chain_id,
            is_expected_network=False,
            last_error=err.info(),
        )
        self._log.warning("wallet_wrong_network", chain_id=chain_id)

    def _on_disconnected(self, event: WalletEvent) -> None:
        if self._state.status in (ConnectionStatus.CONNECTED, ConnectionStatus.CONNECTING):
            self._ledger = None
            err = WalletUnavailableError(detail=event.error)
            self._set_state(status=ConnectionStatus.ERROR, last_error=err.info(), wallet_available=False)
            self._log.warning("wallet_provider_disconnected", error=event.error)
        else:
            self._set_state(wallet_available=False)

    async def _on_connected(self, event: WalletEvent, session: int) -> None:
        self._set_state(wallet_available=True)
        state = self._state
        lost_provider = state.last_error is not None and state.last_error.kind is WalletUnavailableError.kind
        if state.status is ConnectionStatus.ERROR and state.account and lost_provider:
            await self._complete_connection(state.account, session)

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def run(self, stop: asyncio.Event) -> None:
        """
        Drain notifications as they arrive and refresh the balance every
        balance_refresh_sec while connected. Runs the transport watcher alongside.
        """
        watcher = asyncio.create_task(self._transport.watch(stop))
        interval = self._settings.balance_refresh_sec
        logger.info("connection_manager_started", balance_refresh_sec=interval)
        try:
            while not stop.is_set():
                timeout = STOP_CHECK_SEC
                if self._last_balance_at is not None:
                    timeout = min(timeout, max(0.01, self._last_balance_at + interval - self._clock()))
                try:
                    event = await asyncio.wait_for(self._transport.events.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    event = None
                if event is not None:
                    await self.handle_event(event)
                    await self.process_events()
                if self._state.is_connected and (
                    self._last_balance_at is None or self._clock() - self._last_balance_at >= interval
                ):
                    await self.refresh_balance()
        finally:
            stop.set()
            await watcher
            logger.info("connection_manager_stopped")
