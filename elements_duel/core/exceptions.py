"""
Application-level exceptions.

Responsibilities:
- Define the classified error taxonomy exposed to callers (ErrorKind).
- Provide a deterministic, human-actionable message per class so every failure
  yields exactly one readable notification.
- Keep raw transport failures (ProviderError) separate from classified ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Failure classes surfaced by the manager and engine."""

    USER_REJECTED = "user_rejected"
    WALLET_LOCKED = "wallet_locked"
    WALLET_UNAVAILABLE = "wallet_unavailable"
    WRONG_NETWORK = "wrong_network"
    TRANSPORT_OVERLOADED = "transport_overloaded"
    RATE_LIMITED = "rate_limited"
    CONNECTION_COOLDOWN = "connection_cooldown"
    NOT_CONNECTED = "not_connected"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    COMMITMENT_MISMATCH = "commitment_mismatch"
    MISSING_COMMITMENT = "missing_commitment"
    PRECONDITION_FAILED = "precondition_failed"
    TRANSACTION_FAILED = "transaction_failed"
    UNKNOWN = "unknown"


DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.USER_REJECTED: "Request rejected in the wallet. Approve it to continue.",
    ErrorKind.WALLET_LOCKED: "Wallet is locked. Unlock it and connect again.",
    ErrorKind.WALLET_UNAVAILABLE: "No wallet endpoint is reachable. Start the wallet and try again.",
    ErrorKind.WRONG_NETWORK: "Wallet is on the wrong network. Switch network to continue.",
    ErrorKind.TRANSPORT_OVERLOADED: "Wallet is temporarily overloaded. Try again shortly.",
    ErrorKind.RATE_LIMITED: "Too many requests. Wait a moment and try again.",
    ErrorKind.CONNECTION_COOLDOWN: "Please wait before trying to connect again.",
    ErrorKind.NOT_CONNECTED: "Wallet is not connected. Connect first.",
    ErrorKind.INSUFFICIENT_BALANCE: "Insufficient balance for the bet plus gas.",
    ErrorKind.COMMITMENT_MISMATCH: "Move and secret do not match the committed hash.",
    ErrorKind.MISSING_COMMITMENT: "Missing commitment data: move and secret are required for reveal.",
    ErrorKind.PRECONDITION_FAILED: "Operation is not allowed in the current game state.",
    ErrorKind.TRANSACTION_FAILED: "Transaction failed.",
    ErrorKind.UNKNOWN: "Unexpected wallet error.",
}


class ProviderError(Exception):
    """Raw error returned by the wallet / ledger JSON-RPC endpoint (EIP-1193 style)."""

    def __init__(self, message: str, code: int | None = None, data: object = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"{self.message} (code={self.code})"


class DuelError(Exception):
    """Base class for classified errors. Carries kind and a readable message."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str | None = None,
        *,
        detail: str | None = None,
        code: int | None = None,
    ) -> None:
        self.message = message or DEFAULT_MESSAGES[self.kind]
        self.detail = detail
        self.code = code
        super().__init__(self.message)

    def info(self) -> "ErrorInfo":
        return ErrorInfo(kind=self.kind, message=self.message)


@dataclass(frozen=True)
class ErrorInfo:
    """Last classified failure as exposed on ConnectionState."""

    kind: ErrorKind
    message: str


class UserRejectedError(DuelError):
    kind = ErrorKind.USER_REJECTED


class WalletLockedError(DuelError):
    kind = ErrorKind.WALLET_LOCKED


class WalletUnavailableError(DuelError):
    kind = ErrorKind.WALLET_UNAVAILABLE


class WrongNetworkError(DuelError):
    """Raised before any ledger call when the wallet chain is not accepted."""

    kind = ErrorKind.WRONG_NETWORK

    def __init__(
        self,
        message: str | None = None,
        *,
        chain_id: int | None = None,
        expected: tuple[int, ...] = (),
        detail: str | None = None,
    ) -> None:
        if message is None and chain_id is not None and expected:
            message = (
                f"Wallet is on chain {chain_id}; switch to chain "
                f"{' or '.join(str(c) for c in expected)} to continue."
            )
        super().__init__(message, detail=detail)
        self.chain_id = chain_id
        self.expected = expected


class _WaitError(DuelError):
    """Errors that carry a suggested wait time in seconds."""

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: float | None = None,
        detail: str | None = None,
        code: int | None = None,
    ) -> None:
        if message is None and retry_after is not None:
            message = f"{DEFAULT_MESSAGES[self.kind]} Suggested wait: {int(round(retry_after))}s."
        super().__init__(message, detail=detail, code=code)
        self.retry_after = retry_after


class TransportOverloadedError(_WaitError):
    kind = ErrorKind.TRANSPORT_OVERLOADED


class RateLimitedError(_WaitError):
    kind = ErrorKind.RATE_LIMITED


class ConnectionCooldownError(_WaitError):
    kind = ErrorKind.CONNECTION_COOLDOWN


class NotConnectedError(DuelError):
    kind = ErrorKind.NOT_CONNECTED


class InsufficientBalanceError(DuelError):
    kind = ErrorKind.INSUFFICIENT_BALANCE


class CommitmentMismatchError(DuelError):
    kind = ErrorKind.COMMITMENT_MISMATCH


class MissingCommitmentError(DuelError):
    kind = ErrorKind.MISSING_COMMITMENT


class PreconditionFailedError(DuelError):
    kind = ErrorKind.PRECONDITION_FAILED


class IllegalTransitionError(PreconditionFailedError):
    """Operation not enumerated in the protocol transition table for the game's status."""


class DeadlineNotElapsedError(PreconditionFailedError):
    pass


class TransactionFailedError(DuelError):
    """Ledger rejected or reverted a write; reported verbatim, never retried."""

    kind = ErrorKind.TRANSACTION_FAILED

    def __init__(
        self,
        reason: str | None = None,
        *,
        tx_hash: str | None = None,
        detail: str | None = None,
        code: int | None = None,
    ) -> None:
        message = f"transaction failed: {reason}" if reason else None
        super().__init__(message, detail=detail, code=code)
        self.reason = reason
        self.tx_hash = tx_hash


class UnknownProviderError(DuelError):
    kind = ErrorKind.UNKNOWN


class GameIdUnresolvedError(UnknownProviderError):
    """
    createGame was mined but neither the receipt nor gameCounter yielded the id.

    The pre-image stays in the vault's pending table keyed by commitment hash and
    is adopted on the next games refresh. move and secret are carried so the
    caller can show them once; they are not part of the message.
    """

    def __init__(
        self,
        *,
        tx_hash: str | None,
        commitment_hash: bytes,
        move: int,
        secret: str,
        detail: str | None = None,
    ) -> None:
        super().__init__(
            "Game was created but its id could not be resolved. "
            "The secret is kept locally and will be matched on the next refresh.",
            detail=detail,
        )
        self.tx_hash = tx_hash
        self.commitment_hash = commitment_hash
        self.move = move
        self.secret = secret
