"""
Wallet session: transport, retry / classification and the connection manager.
"""

from elements_duel.wallet.manager import ConnectionManager
from elements_duel.wallet.models import (
    ConnectionState,
    ConnectionStatus,
    WalletEvent,
    WalletEventKind,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "WalletEvent",
    "WalletEventKind",
]
