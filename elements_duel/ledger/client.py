"""
Ledger client for the duel contract.

Reads are eth_call through a retried RPC callable. Writes estimate gas, submit
with gas = floor(estimate * 1.2) through a single-attempt callable, then poll the
receipt until mined. A reverted or rejected write raises TransactionFailedError
with the ledger's reason; it is never retried here.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from eth_abi.exceptions import DecodingError
from web3 import Web3

from elements_duel.core.addresses import MaybeAddress, shorten, to_raw
from elements_duel.core.exceptions import (
    DuelError,
    TransactionFailedError,
    UnknownProviderError,
)
from elements_duel.duel_logging import get_logger
from elements_duel.game.models import GameRecord, Move, PlayerStats
from elements_duel.ledger.abi import EVENT_TOPICS, decode_event_log, decode_output, encode_call

logger = get_logger(__name__)

RpcCall = Callable[[str, list[Any]], Awaitable[Any]]

GAS_MULTIPLIER_NUM = 12
GAS_MULTIPLIER_DEN = 10
DEFAULT_RECEIPT_POLL_SEC = 2.0
DEFAULT_RECEIPT_TIMEOUT_SEC = 180.0


def _hex_to_int(raw: Any) -> int:
    if isinstance(raw, int):
        return raw
    return int(str(raw), 16)


@dataclass(frozen=True)
class TxResult:
    tx_hash: str
    block_number: int | None
    logs: list[dict[str, Any]] = field(default_factory=list)


class LedgerClient:
    """
    Session-bound binding: one contract address, one sending account.
    `call` is used for reads and gas estimation; `send` for eth_sendTransaction.
    """

    def __init__(
        self,
        call: RpcCall,
        contract_address: str,
        *,
        sender: str | None = None,
        send: RpcCall | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        receipt_poll_sec: float = DEFAULT_RECEIPT_POLL_SEC,
        receipt_timeout_sec: float = DEFAULT_RECEIPT_TIMEOUT_SEC,
    ) -> None:
        self._call = call
        self._send = send or call
        self.address = Web3.to_checksum_address(contract_address)
        self.sender = Web3.to_checksum_address(sender) if sender else None
        self._sleep = sleep
        self._clock = clock
        self._receipt_poll_sec = receipt_poll_sec
        self._receipt_timeout_sec = receipt_timeout_sec

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _read(self, name: str, *args: Any) -> tuple[Any, ...]:
        data = encode_call(name, list(args))
        raw = await self._call("eth_call", [{"to": self.address, "data": data}, "latest"])
        try:
            return decode_output(name, Web3.to_bytes(hexstr=raw or "0x"))
        except DecodingError as e:
            raise UnknownProviderError(f"Could not decode {name} result", detail=str(e)) from e

    async def get_game(self, game_id: int) -> GameRecord | None:
        """None when the slot was never created (zero creator)."""
        (raw,) = await self._read("getGame", int(game_id))
        try:
            return GameRecord.from_ledger(game_id, raw)
        except ValueError:
            return None

    async def get_player_stats(self, player: str) -> PlayerStats:
        (raw,) = await self._read("getPlayerStats", Web3.to_checksum_address(player))
        return PlayerStats.from_ledger(raw)

    async def game_counter(self) -> int:
        (value,) = await self._read("gameCounter")
        return int(value)

    async def owner(self) -> str:
        (value,) = await self._read("owner")
        return Web3.to_checksum_address(value)

    async def get_top_monthly_players(self) -> list[tuple[str, int]]:
        players, scores = await self._read("getTopMonthlyPlayers")
        return [(Web3.to_checksum_address(p), int(s)) for p, s in zip(players, scores)]

    async def get_reward_pool_info(self) -> int:
        (value,) = await self._read("getRewardPoolInfo")
        return int(value)

    async def total_games(self) -> int:
        (value,) = await self._read("totalGames")
        return int(value)

    async def total_players(self) -> int:
        (value,) = await self._read("totalPlayers")
        return int(value)

    async def fee_percentage(self) -> int:
        (value,) = await self._read("feePercentage")
        return int(value)

    async def get_balance(self, account: str) -> int:
        raw = await self._call("eth_getBalance", [Web3.to_checksum_address(account), "latest"])
        return _hex_to_int(raw)

    async def block_number(self) -> int:
        return _hex_to_int(await self._call("eth_blockNumber", []))

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        event_names: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        topics = [EVENT_TOPICS[n] for n in (event_names or list(EVENT_TOPICS))]
        params = {
            "address": self.address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [topics],
        }
        return list(await self._call("eth_getLogs", [params]) or [])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_game(self, commitment_hash: bytes, bet_wei: int, referrer: MaybeAddress | None = None) -> TxResult:
        return await self._transact("createGame", [bytes(commitment_hash), to_raw(referrer)], value=bet_wei)

    async def join_game(self, game_id: int, move: Move, bet_wei: int) -> TxResult:
        return await self._transact("joinGame", [int(game_id), int(move)], value=bet_wei)

    async def reveal_move(self, game_id: int, move: Move, secret: str) -> TxResult:
        return await self._transact("revealMove", [int(game_id), int(move), secret])

    async def cancel_game(self, game_id: int) -> TxResult:
        return await self._transact("cancelGame", [int(game_id)])

    async def claim_timeout(self, game_id: int) -> TxResult:
        return await self._transact("claimTimeout", [int(game_id)])

    async def _transact(self, name: str, args: list[Any], *, value: int = 0) -> TxResult:
        if self.sender is None:
            raise TransactionFailedError("no sending account bound")
        tx: dict[str, Any] = {
            "from": self.sender,
            "to": self.address,
            "data": encode_call(name, args),
            "value": hex(int(value)),
        }
        try:
            estimate = _hex_to_int(await self._call("eth_estimateGas", [tx]))
        except UnknownProviderError as e:
            logger.warning("ledger_estimate_rejected", function=name, error=e.message)
            raise TransactionFailedError(e.message, detail=e.detail, code=e.code) from e
        gas = estimate * GAS_MULTIPLIER_NUM // GAS_MULTIPLIER_DEN
        try:
            tx_hash = await self._send("eth_sendTransaction", [{**tx, "gas": hex(gas)}])
        except UnknownProviderError as e:
            logger.warning("ledger_send_rejected", function=name, error=e.message)
            raise TransactionFailedError(e.message, detail=e.detail, code=e.code) from e
        tx_hash = str(tx_hash)
        logger.info(
            "ledger_tx_submitted",
            function=name,
            tx_hash=tx_hash,
            sender=shorten(self.sender),
            gas=gas,
            value_wei=int(value),
        )
        receipt = await self.wait_for_receipt(tx_hash)
        if _hex_to_int(receipt.get("status", "0x1")) == 0:
            logger.warning("ledger_tx_reverted", function=name, tx_hash=tx_hash)
            raise TransactionFailedError(f"{name} reverted", tx_hash=tx_hash)
        block = receipt.get("blockNumber")
        return TxResult(
            tx_hash=tx_hash,
            block_number=_hex_to_int(block) if block is not None else None,
            logs=list(receipt.get("logs") or []),
        )

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        deadline = self._clock() + self._receipt_timeout_sec
        while True:
            receipt = await self._call("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            if self._clock() >= deadline:
                raise TransactionFailedError("receipt not found before timeout", tx_hash=tx_hash)
            await self._sleep(self._receipt_poll_sec)

    def decode_game_created(self, result: TxResult) -> int | None:
        """Game id from the GameCreated log of this contract, or None."""
        for log in result.logs:
            if str(log.get("address", "")).lower() != self.address.lower():
                continue
            try:
                decoded = decode_event_log(log)
            except (DecodingError, ValueError, DuelError) as e:
                logger.warning("game_created_log_undecodable", tx_hash=result.tx_hash, error=str(e))
                continue
            if decoded and decoded[0] == "GameCreated":
                return int(decoded[1]["gameId"])
        return None

