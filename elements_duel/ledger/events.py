"""
Ledger event poller: GameCreated / GameJoined / GameCompleted / GameCanceled.

Responsibilities:
- Poll eth_getLogs over new block ranges for the duel contract.
- Decode and deduplicate logs by (tx hash, log index).
- Push LedgerEvent objects into an asyncio.Queue; the engine drains it and
  refreshes once per drained batch.
- Keep running across RPC failures (the next cycle retries the same range).
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from eth_abi.exceptions import DecodingError

from elements_duel.core.addresses import parse_optional_address, parse_winner
from elements_duel.duel_logging import get_logger
from elements_duel.ledger.abi import decode_event_log
from elements_duel.ledger.client import LedgerClient

logger = get_logger(__name__)

WATCHED_EVENTS = ("GameCreated", "GameJoined", "GameCompleted", "GameCanceled")
ADDRESS_ARGS = ("creator", "opponent", "referrer")


@dataclass(frozen=True)
class LedgerEvent:
    name: str
    game_id: int
    block_number: int | None = None
    tx_hash: str | None = None
    log_index: int | None = None
    args: dict[str, Any] = field(default_factory=dict)


def _as_int(raw: Any) -> int | None:
    if raw is None:
        return None
    return raw if isinstance(raw, int) else int(str(raw), 16)


def _address_slots(name: str, args: dict[str, Any]) -> dict[str, Any]:
    """Zero addresses become UNSET; a zero winner on GameCompleted is a tie."""
    out = dict(args)
    for key in ADDRESS_ARGS:
        if key in out:
            out[key] = parse_optional_address(out[key])
    if "winner" in out:
        out["winner"] = parse_winner(out["winner"], completed=name == "GameCompleted")
    return out


class LedgerEventPoller:
    """
    Polling listener over one LedgerClient. Starts at the current head; history
    is not replayed (the engine refreshes from reads anyway).
    """

    def __init__(
        self,
        ledger: LedgerClient,
        queue: asyncio.Queue[LedgerEvent],
        *,
        poll_interval_sec: float = 15.0,
        max_block_range: int = 5_000,
        max_seen: int = 10_000,
    ) -> None:
        if poll_interval_sec <= 0:
            raise ValueError("poll_interval_sec must be positive")
        if max_block_range < 1:
            raise ValueError("max_block_range must be >= 1")
        self._ledger = ledger
        self._queue = queue
        self._poll_interval_sec = poll_interval_sec
        self._max_block_range = max_block_range
        self._max_seen = max_seen
        self._next_block: int | None = None
        self._seen: set[tuple[str, int]] = set()
        self._seen_order: deque[tuple[str, int]] = deque()

    async def run(self, stop: asyncio.Event) -> None:
        logger.info(
            "ledger_poller_started",
            contract=self._ledger.address,
            poll_interval_sec=self._poll_interval_sec,
        )
        while not stop.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("ledger_poll_cycle_error", error=str(e))
            if stop.is_set():
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._poll_interval_sec)
            except asyncio.TimeoutError:
                pass
        logger.info("ledger_poller_exited")

    async def poll_once(self) -> int:
        """Fetch logs for the next block range; returns how many new events were queued."""
        head = await self._ledger.block_number()
        if self._next_block is None:
            self._next_block = head
        if self._next_block > head:
            return 0
        from_block = self._next_block
        to_block = min(head, from_block + self._max_block_range - 1)
        logs = await self._ledger.get_logs(from_block, to_block, list(WATCHED_EVENTS))
        queued = 0
        for log in logs:
            event = self._to_event(log)
            if event is None:
                continue
            self._queue.put_nowait(event)
            queued += 1
        self._next_block = to_block + 1
        if queued:
            logger.info("ledger_events_queued", count=queued, from_block=from_block, to_block=to_block)
        return queued

    def _mark_seen(self, key: tuple[str, int]) -> bool:
        """Record key; False when it was already seen."""
        if key in self._seen:
            return False
        if len(self._seen) >= self._max_seen:
            self._seen.discard(self._seen_order.popleft())
        self._seen.add(key)
        self._seen_order.append(key)
        return True

    def _to_event(self, log: dict[str, Any]) -> LedgerEvent | None:
        try:
            decoded = decode_event_log(log)
        except (DecodingError, ValueError) as e:
            logger.warning("ledger_log_undecodable", tx_hash=log.get("transactionHash"), error=str(e))
            return None
        if decoded is None:
            return None
        name, args = decoded
        args = _address_slots(name, args)
        tx_hash = str(log.get("transactionHash") or "")
        log_index = _as_int(log.get("logIndex"))
        if tx_hash and log_index is not None and not self._mark_seen((tx_hash, log_index)):
            return None
        return LedgerEvent(
            name=name,
            game_id=int(args.get("gameId", 0)),
            block_number=_as_int(log.get("blockNumber")),
            tx_hash=tx_hash or None,
            log_index=log_index,
            args=args,
        )
