"""
Wallet session models: connection snapshot and transport notifications.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from elements_duel.core.exceptions import ErrorInfo


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionState:
    """Immutable snapshot; the manager replaces it on every change."""

    status: ConnectionStatus = ConnectionStatus.IDLE
    account: str | None = None
    chain_id: int | None = None
    is_expected_network: bool | None = None
    """None when unknown (e.g. wallet locked on reconnect)."""
    balance: str = "0"
    """Native-token units as a decimal string."""
    is_owner: bool = False
    last_error: ErrorInfo | None = None
    wallet_available: bool = False
    wallet_locked: bool = False

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


class WalletEventKind(str, Enum):
    ACCOUNTS_CHANGED = "accounts_changed"
    CHAIN_CHANGED = "chain_changed"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class WalletEvent:
    kind: WalletEventKind
    accounts: tuple[str, ...] = ()
    chain_id: int | None = None
    error: str | None = None
