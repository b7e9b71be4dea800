"""Binding to the on-chain duel contract: ABI, reads/writes and event polling."""

from elements_duel.ledger.client import LedgerClient, TxResult
from elements_duel.ledger.events import LedgerEvent, LedgerEventPoller

__all__ = ["LedgerClient", "LedgerEvent", "LedgerEventPoller", "TxResult"]
