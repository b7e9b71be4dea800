"""LedgerEventPoller: starts at head, walks block ranges, dedups by (tx hash, log index)."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from eth_abi import encode
from web3 import Web3

from conftest import ALICE, BOB, CONTRACT, run
from elements_duel.core.addresses import TIE, UNSET, ZERO_ADDRESS, Address
from elements_duel.ledger.abi import EVENT_TOPICS
from elements_duel.ledger.events import WATCHED_EVENTS, LedgerEventPoller


def _log(name: str, game_id: int, who: str, *, tx: int, index: int = 0, block: int = 1) -> dict[str, Any]:
    data = "0x"
    if name == "GameJoined":
        data = Web3.to_hex(encode(["uint8"], [2]))
    return {
        "address": CONTRACT,
        "topics": [
            EVENT_TOPICS[name],
            Web3.to_hex(encode(["uint256"], [game_id])),
            Web3.to_hex(encode(["address"], [who])),
        ],
        "data": data,
        "transactionHash": "0x" + f"{tx:064x}",
        "logIndex": hex(index),
        "blockNumber": hex(block),
    }


class ScriptedLedger:
    address = CONTRACT

    def __init__(self) -> None:
        self.head = 100
        self.logs: list[dict[str, Any]] = []
        self.ranges: list[tuple[int, int, list[str] | None]] = []

    async def block_number(self) -> int:
        return self.head

    async def get_logs(self, from_block: int, to_block: int, event_names: list[str] | None = None):
        self.ranges.append((from_block, to_block, event_names))
        return [log for log in self.logs if from_block <= int(log["blockNumber"], 16) <= to_block]


@pytest.fixture
def ledger() -> ScriptedLedger:
    return ScriptedLedger()


def _drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


def test_first_poll_starts_at_head(ledger):
    queue: asyncio.Queue = asyncio.Queue()
    poller = LedgerEventPoller(ledger, queue)
    ledger.logs.append(_log("GameCanceled", 1, ALICE, tx=1, block=50))
    assert run(poller.poll_once()) == 0
    assert ledger.ranges == [(100, 100, list(WATCHED_EVENTS))]


def test_queues_decoded_events_and_advances(ledger):
    queue: asyncio.Queue = asyncio.Queue()
    poller = LedgerEventPoller(ledger, queue)
    run(poller.poll_once())
    ledger.head = 103
    ledger.logs += [
        _log("GameJoined", 4, BOB, tx=2, block=101),
        _log("GameCompleted", 4, BOB, tx=3, block=103),
    ]
    assert run(poller.poll_once()) == 2
    events = _drain(queue)
    assert [(e.name, e.game_id) for e in events] == [("GameJoined", 4), ("GameCompleted", 4)]
    assert events[0].args["move"] == 2
    assert events[0].block_number == 101
    assert ledger.ranges[-1][:2] == (101, 103)
    # Nothing new: head unchanged
    assert run(poller.poll_once()) == 0
    assert len(ledger.ranges) == 2


def test_duplicate_logs_are_dropped(ledger):
    queue: asyncio.Queue = asyncio.Queue()
    poller = LedgerEventPoller(ledger, queue)
    run(poller.poll_once())
    ledger.head = 101
    dup = _log("GameCreated", 9, ALICE, tx=7, block=101)
    dup["data"] = Web3.to_hex(encode(["uint256", "bytes32", "address"], [1, b"\x00" * 32, ALICE]))
    ledger.logs += [dup, dict(dup)]
    assert run(poller.poll_once()) == 1
    assert [e.game_id for e in _drain(queue)] == [9]


def test_unknown_topics_are_ignored(ledger):
    queue: asyncio.Queue = asyncio.Queue()
    poller = LedgerEventPoller(ledger, queue)
    run(poller.poll_once())
    ledger.head = 101
    ledger.logs.append({"topics": ["0x" + "ee" * 32], "blockNumber": hex(101), "data": "0x"})
    assert run(poller.poll_once()) == 0


def test_block_range_is_capped(ledger):
    queue: asyncio.Queue = asyncio.Queue()
    poller = LedgerEventPoller(ledger, queue, max_block_range=10)
    run(poller.poll_once())
    ledger.head = 150
    run(poller.poll_once())
    run(poller.poll_once())
    assert [r[:2] for r in ledger.ranges[1:]] == [(101, 110), (111, 120)]


def test_seen_set_is_bounded(ledger):
    poller = LedgerEventPoller(ledger, asyncio.Queue(), max_seen=2)
    assert poller._mark_seen(("a", 0))
    assert poller._mark_seen(("b", 0))
    assert poller._mark_seen(("c", 0))
    # oldest evicted
    assert poller._mark_seen(("a", 0))
    assert not poller._mark_seen(("c", 0))


def test_run_stops_on_event(ledger):
    async def scenario():
        queue: asyncio.Queue = asyncio.Queue()
        poller = LedgerEventPoller(ledger, queue, poll_interval_sec=0.01)
        stop = asyncio.Event()
        task = asyncio.create_task(poller.run(stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)
        return len(ledger.ranges)

    assert run(scenario()) >= 1


def test_invalid_arguments(ledger):
    with pytest.raises(ValueError):
        LedgerEventPoller(ledger, asyncio.Queue(), poll_interval_sec=0)
    with pytest.raises(ValueError):
        LedgerEventPoller(ledger, asyncio.Queue(), max_block_range=0)


def test_event_addresses_become_slots(ledger):
    queue: asyncio.Queue = asyncio.Queue()
    poller = LedgerEventPoller(ledger, queue)
    run(poller.poll_once())
    ledger.head = 102
    created = _log("GameCreated", 5, ALICE, tx=11, block=101)
    created["data"] = Web3.to_hex(encode(["uint256", "bytes32", "address"], [1, b"\x00" * 32, ZERO_ADDRESS]))
    tie = _log("GameCompleted", 5, ZERO_ADDRESS, tx=12, block=102)
    ledger.logs += [created, tie]
    assert run(poller.poll_once()) == 2
    first, second = _drain(queue)
    assert isinstance(first.args["creator"], Address)
    assert first.args["creator"].value == ALICE
    assert first.args["referrer"] is UNSET
    assert second.args["winner"] is TIE
