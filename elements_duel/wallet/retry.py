"""
Retry policy, error classification and connection guard for wallet calls.

Responsibilities:
- Map raw provider / transport failures to an ErrorKind (classify_error) and wrap
  them into DuelError subclasses (to_duel_error).
- Retry only overload, rate limiting and network-shaped failures, with exponential
  backoff and multiplicative jitter; user rejection and wallet lock propagate at once.
- Track connect cooldown, overload escalation and the session id (SessionGuard).
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from elements_duel.core.exceptions import (
    ConnectionCooldownError,
    DuelError,
    ErrorKind,
    ProviderError,
    RateLimitedError,
    TransportOverloadedError,
    UnknownProviderError,
    UserRejectedError,
    WalletLockedError,
)
from elements_duel.duel_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

USER_REJECTED_CODE = 4001
UNKNOWN_CHAIN_CODE = 4902
HTTP_TOO_MANY_REQUESTS = 429

CONNECTION_COOLDOWN_SEC = 3.0
CIRCUIT_BREAKER_COOLDOWN_SEC = 20.0
MAX_CIRCUIT_BREAKER_ATTEMPTS = 3
OVERLOAD_JITTER_SEC = 5.0
EXTENDED_LOCKOUT_SEC = 2 * CIRCUIT_BREAKER_COOLDOWN_SEC

_OVERLOAD_MARKERS = ("circuit breaker", "overloaded")
_RATE_LIMIT_MARKERS = ("rate limit", "too many requests")
_NETWORK_MARKERS = ("network error", "timeout", "internal json-rpc error")
_REJECTED_MARKERS = ("user rejected", "user denied")
_LOCKED_MARKERS = ("is locked",)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 1.5
    factor: float = 1.5
    jitter: float = 0.3
    """Delay is multiplied by a random factor in [1, 1 + jitter)."""

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Backoff before the retry that follows `attempt` (1-based)."""
        return self.base_delay * self.factor ** (attempt - 1) * (1 + rng() * self.jitter)


DEFAULT_POLICY = RetryPolicy()
CHAIN_ID_POLICY = RetryPolicy(attempts=5, base_delay=3.0)
REQUEST_ACCOUNTS_POLICY = RetryPolicy(attempts=3, base_delay=2.0)
SILENT_ACCOUNTS_POLICY = RetryPolicy(attempts=2, base_delay=1.0)
SWITCH_NETWORK_POLICY = RetryPolicy(attempts=2, base_delay=1.0)
BALANCE_POLICY = RetryPolicy(attempts=2, base_delay=0.5)


def _message_of(exc: BaseException) -> str:
    if isinstance(exc, (ProviderError, DuelError)):
        return exc.message.lower()
    return str(exc).lower()


def _code_of(exc: BaseException) -> int | None:
    return getattr(exc, "code", None)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any failure to its ErrorKind. Classified errors keep their own kind."""
    if isinstance(exc, DuelError):
        return exc.kind
    msg = _message_of(exc)
    code = _code_of(exc)
    if code == USER_REJECTED_CODE or any(m in msg for m in _REJECTED_MARKERS):
        return ErrorKind.USER_REJECTED
    if any(m in msg for m in _LOCKED_MARKERS):
        return ErrorKind.WALLET_LOCKED
    if any(m in msg for m in _OVERLOAD_MARKERS):
        return ErrorKind.TRANSPORT_OVERLOADED
    if code == HTTP_TOO_MANY_REQUESTS or any(m in msg for m in _RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == HTTP_TOO_MANY_REQUESTS:
        return ErrorKind.RATE_LIMITED
    return ErrorKind.UNKNOWN


def is_network_shaped(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return True
    msg = _message_of(exc)
    return any(m in msg for m in _NETWORK_MARKERS)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, DuelError):
        return False
    kind = classify_error(exc)
    if kind in (ErrorKind.TRANSPORT_OVERLOADED, ErrorKind.RATE_LIMITED):
        return True
    return kind is ErrorKind.UNKNOWN and is_network_shaped(exc)


def to_duel_error(exc: BaseException, *, retry_after: float | None = None) -> DuelError:
    """Wrap a raw failure into its classified exception. DuelErrors pass through."""
    if isinstance(exc, DuelError):
        return exc
    kind = classify_error(exc)
    code = _code_of(exc)
    detail = str(exc)
    if kind is ErrorKind.USER_REJECTED:
        return UserRejectedError(detail=detail, code=code)
    if kind is ErrorKind.WALLET_LOCKED:
        return WalletLockedError(detail=detail, code=code)
    if kind is ErrorKind.TRANSPORT_OVERLOADED:
        return TransportOverloadedError(retry_after=retry_after, detail=detail, code=code)
    if kind is ErrorKind.RATE_LIMITED:
        return RateLimitedError(retry_after=retry_after, detail=detail, code=code)
    message = getattr(exc, "message", None) or str(exc) or None
    return UnknownProviderError(message, detail=detail, code=code)


class SessionGuard:
    """
    Per-manager connect throttling and overload escalation.

    - A connect is refused while another one is in flight or less than the cooldown
      after the previous attempt.
    - After MAX_CIRCUIT_BREAKER_ATTEMPTS consecutive overloads, connects are refused
      for the extended lockout measured from the last attempt; then the counter resets.
    - session_id increases on every disconnect so in-flight work can detect staleness.
    """

    def __init__(self, *, cooldown_sec: float = CONNECTION_COOLDOWN_SEC) -> None:
        self._cooldown_sec = cooldown_sec
        self.overload_count = 0
        self.last_attempt_at: float | None = None
        self.connecting = False
        self.session_id = 0

    def check_connect(self, now: float) -> None:
        if self.connecting:
            raise ConnectionCooldownError(
                "A connection attempt is already in progress.",
                retry_after=self._cooldown_sec,
            )
        if self.last_attempt_at is None:
            return
        elapsed = now - self.last_attempt_at
        if self.overload_count >= MAX_CIRCUIT_BREAKER_ATTEMPTS:
            if elapsed < EXTENDED_LOCKOUT_SEC:
                raise ConnectionCooldownError(
                    "Wallet is overloaded; connection attempts are paused.",
                    retry_after=EXTENDED_LOCKOUT_SEC - elapsed,
                )
            logger.info("overload_lockout_expired", overload_count=self.overload_count)
            self.overload_count = 0
        if elapsed < self._cooldown_sec:
            raise ConnectionCooldownError(retry_after=self._cooldown_sec - elapsed)

    def begin_connect(self, now: float) -> None:
        self.connecting = True
        self.last_attempt_at = now

    def end_connect(self, session_id: int) -> None:
        """Clear the in-flight flag unless a reset has since started a newer session."""
        if session_id == self.session_id:
            self.connecting = False

    def record_overload(self) -> int:
        self.overload_count += 1
        return self.overload_count

    def record_success(self) -> None:
        self.overload_count = 0

    def overload_delay(self, rng: Callable[[], float] = random.random) -> float:
        count = max(1, self.overload_count)
        return CIRCUIT_BREAKER_COOLDOWN_SEC * min(count, MAX_CIRCUIT_BREAKER_ATTEMPTS) + rng() * OVERLOAD_JITTER_SEC

    def reset(self) -> int:
        """Clear throttling state and start a new session. Returns the new session id."""
        self.overload_count = 0
        self.last_attempt_at = None
        self.connecting = False
        self.session_id += 1
        return self.session_id


async def retry_call(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_POLICY,
    *,
    guard: SessionGuard | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    context: str = "rpc",
) -> T:
    """
    Run fn with bounded retries. The attempt ceiling is hard: fn runs at most
    policy.attempts times. Non-retryable failures are wrapped and raised immediately.
    """
    guard = guard or SessionGuard()
    for attempt in range(1, policy.attempts + 1):
        try:
            result = await fn()
        except Exception as exc:
            kind = classify_error(exc)
            if not is_retryable(exc):
                raise to_duel_error(exc) from exc
            if kind is ErrorKind.TRANSPORT_OVERLOADED:
                guard.record_overload()
                delay = guard.overload_delay(rng)
            else:
                delay = policy.delay_for(attempt, rng)
            if attempt >= policy.attempts:
                logger.error(
                    "rpc_give_up",
                    context=context,
                    attempts=attempt,
                    kind=kind.value,
                    error=str(exc),
                )
                raise to_duel_error(exc, retry_after=delay) from exc
            logger.warning(
                "rpc_retry",
                context=context,
                attempt=attempt,
                max_attempts=policy.attempts,
                kind=kind.value,
                delay_sec=round(delay, 2),
                error=str(exc),
            )
            await sleep(delay)
        else:
            guard.record_success()
            return result
    raise AssertionError("unreachable")
