"""
Pytest fixtures for Elements Duel tests.

- FakeWalletTransport: scripted EIP-1193 endpoint (per-method overrides, call log).
- InMemoryChain: contract rules (commit-reveal, deadlines, winner logic) using the
  real commitment codec, so engine scenarios run end to end without a node.
- FakeLedger: LedgerClient-compatible binding of one account to the chain.
- Temporary SecretVault and a controllable clock.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest
from web3 import Web3

from elements_duel.config import Settings
from elements_duel.core.addresses import ZERO_ADDRESS, to_raw
from elements_duel.core.exceptions import ProviderError, TransactionFailedError
from elements_duel.game.commitment import verify_commitment
from elements_duel.game.models import GameRecord, GameStatus, Move, PlayerStats
from elements_duel.game.rules import Outcome, decide_outcome
from elements_duel.ledger.client import TxResult
from elements_duel.vault import SecretVault
from elements_duel.wallet.manager import ConnectionManager
from elements_duel.wallet.transport import WalletTransport

CONTRACT = Web3.to_checksum_address("0x3007582c0e80fc9e381d7a1eb198c72b0d1c3697")
ALICE = Web3.to_checksum_address("0x" + "a1" * 20)
BOB = Web3.to_checksum_address("0x" + "b2" * 20)
CAROL = Web3.to_checksum_address("0x" + "c3" * 20)
OWNER = Web3.to_checksum_address("0x" + "0f" * 20)

ONE = Web3.to_wei(1, "ether")
REVEAL_WINDOW_SEC = 600


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """No-op async sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@dataclass
class ChainGame:
    creator: str
    commitment: bytes
    bet: int
    referrer: str
    created_at: int
    opponent: str = ZERO_ADDRESS
    creator_move: int = 0
    opponent_move: int = 0
    status: int = GameStatus.OPEN
    winner: str = ZERO_ADDRESS
    reveal_deadline: int = 0

    def as_tuple(self) -> tuple[Any, ...]:
        return (
            self.creator, self.commitment, self.creator_move, self.opponent,
            self.opponent_move, self.bet, self.status, self.winner,
            self.created_at, self.reveal_deadline, self.referrer,
        )


@dataclass
class InMemoryChain:
    """Minimal duel contract. Reverts raise TransactionFailedError like LedgerClient does."""

    clock: FakeClock
    owner: str = OWNER
    balances: dict[str, int] = field(default_factory=dict)
    games: dict[int, ChainGame] = field(default_factory=dict)
    stats: dict[str, PlayerStats] = field(default_factory=dict)
    counter: int = 0
    emit_created_log: bool = True
    tx_count: int = 0
    top_players: list[tuple[str, int]] = field(default_factory=list)

    def _tx(self, logs: list[dict[str, Any]] | None = None) -> TxResult:
        self.tx_count += 1
        return TxResult(tx_hash="0x" + f"{self.tx_count:064x}", block_number=self.tx_count, logs=logs or [])

    def _revert(self, reason: str) -> None:
        raise TransactionFailedError(f"execution reverted: {reason}")

    def _get(self, game_id: int) -> ChainGame:
        if game_id not in self.games:
            self._revert("Game does not exist")
        return self.games[game_id]

    def _bump(self, player: str, **delta: int) -> None:
        current = self.stats.get(player, PlayerStats())
        values = {k: getattr(current, k) + delta.get(k, 0) for k in PlayerStats.__dataclass_fields__}
        values["last_played"] = int(self.clock())
        self.stats[player] = PlayerStats(**values)

    def add_game(self, creator: str, *, bet: int = ONE, status: int = GameStatus.OPEN,
                 created_at: int | None = None, opponent: str = ZERO_ADDRESS) -> int:
        self.counter += 1
        self.games[self.counter] = ChainGame(
            creator=creator,
            commitment=b"\x11" * 32,
            bet=bet,
            referrer=ZERO_ADDRESS,
            created_at=int(self.clock()) if created_at is None else created_at,
            opponent=opponent,
            status=status,
        )
        return self.counter

    def create(self, sender: str, commitment: bytes, value: int, referrer: str) -> TxResult:
        if value <= 0:
            self._revert("Bet must be greater than 0")
        if self.balances.get(sender, 0) < value:
            self._revert("insufficient funds")
        self.balances[sender] -= value
        self.counter += 1
        self.games[self.counter] = ChainGame(
            creator=sender,
            commitment=commitment,
            bet=value,
            referrer=referrer,
            created_at=int(self.clock()),
        )
        logs = [{"fake_game_id": self.counter}] if self.emit_created_log else []
        return self._tx(logs)

    def join(self, sender: str, game_id: int, move: int, value: int) -> TxResult:
        game = self._get(game_id)
        if game.status != GameStatus.OPEN:
            self._revert("Game not open")
        if sender == game.creator:
            self._revert("Cannot join own game")
        if value != game.bet:
            self._revert("Bet amount mismatch")
        self.balances[sender] = self.balances.get(sender, 0) - value
        game.opponent = sender
        game.opponent_move = move
        game.status = GameStatus.REVEAL_PHASE
        game.reveal_deadline = int(self.clock()) + REVEAL_WINDOW_SEC
        return self._tx()

    def reveal(self, sender: str, game_id: int, move: int, secret: str) -> TxResult:
        game = self._get(game_id)
        if game.status != GameStatus.REVEAL_PHASE:
            self._revert("Not in reveal phase")
        if sender != game.creator:
            self._revert("Only creator can reveal")
        if not verify_commitment(move, secret, game.commitment):
            self._revert("Invalid move or secret")
        game.creator_move = move
        game.status = GameStatus.COMPLETED
        outcome = decide_outcome(Move(move), Move(game.opponent_move))
        pot = game.bet * 2
        if outcome is Outcome.TIE:
            self.balances[game.creator] = self.balances.get(game.creator, 0) + game.bet
            self.balances[game.opponent] = self.balances.get(game.opponent, 0) + game.bet
            for p in (game.creator, game.opponent):
                self._bump(p, ties=1, games_played=1, total_wagered=game.bet, total_won=game.bet)
        else:
            winner, loser = (
                (game.creator, game.opponent) if outcome is Outcome.CREATOR_WINS
                else (game.opponent, game.creator)
            )
            game.winner = winner
            self.balances[winner] = self.balances.get(winner, 0) + pot
            self._bump(winner, wins=1, games_played=1, total_wagered=game.bet, total_won=pot, monthly_score=3)
            self._bump(loser, losses=1, games_played=1, total_wagered=game.bet)
        return self._tx()

    def cancel(self, sender: str, game_id: int) -> TxResult:
        game = self._get(game_id)
        if game.status != GameStatus.OPEN or game.opponent != ZERO_ADDRESS:
            self._revert("Cannot cancel")
        if sender != game.creator:
            self._revert("Only creator")
        game.status = GameStatus.CANCELED
        self.balances[sender] = self.balances.get(sender, 0) + game.bet
        return self._tx()

    def claim(self, sender: str, game_id: int) -> TxResult:
        game = self._get(game_id)
        if game.status != GameStatus.REVEAL_PHASE:
            self._revert("Not in reveal phase")
        if sender != game.opponent:
            self._revert("Only opponent")
        if self.clock() <= game.reveal_deadline:
            self._revert("Deadline not passed")
        game.status = GameStatus.COMPLETED
        game.winner = sender
        self.balances[sender] = self.balances.get(sender, 0) + game.bet * 2
        return self._tx()


class FakeLedger:
    """Same surface as LedgerClient, bound to one sender on an InMemoryChain."""

    def __init__(self, chain: InMemoryChain, sender: str) -> None:
        self.chain = chain
        self.sender = sender
        self.address = CONTRACT
        self.calls: list[str] = []
        self.fail_game_ids: set[int] = set()

    async def get_game(self, game_id: int) -> GameRecord | None:
        self.calls.append(f"getGame:{game_id}")
        if game_id in self.fail_game_ids:
            raise ProviderError("header not found")
        game = self.chain.games.get(game_id)
        if game is None:
            return None
        try:
            return GameRecord.from_ledger(game_id, game.as_tuple())
        except ValueError:
            return None

    async def get_player_stats(self, player: str) -> PlayerStats:
        self.calls.append("getPlayerStats")
        return self.chain.stats.get(Web3.to_checksum_address(player), PlayerStats())

    async def game_counter(self) -> int:
        self.calls.append("gameCounter")
        return self.chain.counter

    async def owner(self) -> str:
        self.calls.append("owner")
        return self.chain.owner

    async def get_top_monthly_players(self) -> list[tuple[str, int]]:
        return list(self.chain.top_players)

    async def get_reward_pool_info(self) -> int:
        return 5 * ONE

    async def total_games(self) -> int:
        return self.chain.counter

    async def total_players(self) -> int:
        return len(self.chain.stats)

    async def fee_percentage(self) -> int:
        return 5

    async def get_balance(self, account: str) -> int:
        return self.chain.balances.get(Web3.to_checksum_address(account), 0)

    async def create_game(self, commitment_hash: bytes, bet_wei: int, referrer: Any = None) -> TxResult:
        self.calls.append("createGame")
        return self.chain.create(self.sender, commitment_hash, bet_wei, to_raw(referrer))

    async def join_game(self, game_id: int, move: Move, bet_wei: int) -> TxResult:
        self.calls.append("joinGame")
        return self.chain.join(self.sender, game_id, int(move), bet_wei)

    async def reveal_move(self, game_id: int, move: Move, secret: str) -> TxResult:
        self.calls.append("revealMove")
        return self.chain.reveal(self.sender, game_id, int(move), secret)

    async def cancel_game(self, game_id: int) -> TxResult:
        self.calls.append("cancelGame")
        return self.chain.cancel(self.sender, game_id)

    async def claim_timeout(self, game_id: int) -> TxResult:
        self.calls.append("claimTimeout")
        return self.chain.claim(self.sender, game_id)

    def decode_game_created(self, result: TxResult) -> int | None:
        for log in result.logs:
            if "fake_game_id" in log:
                return int(log["fake_game_id"])
        return None


class FakeWalletTransport(WalletTransport):
    """
    Scripted wallet endpoint. `script[method]` holds a list of responses consumed in
    order; an Exception instance is raised instead of returned. Unscripted methods
    fall back to the wallet/chain state.
    """

    def __init__(self, chain: InMemoryChain, *, account: str = ALICE, chain_id: int = 56) -> None:
        super().__init__()
        self.chain = chain
        self.account = account
        self.chain_id = chain_id
        self.available = True
        self.locked = False
        self.known_chains = {56, 97}
        self.script: dict[str, list[Any]] = {}
        self.calls: list[tuple[str, list[Any] | None]] = []

    async def is_available(self) -> bool:
        return self.available

    def push(self, method: str, *responses: Any) -> None:
        self.script.setdefault(method, []).extend(responses)

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        self.calls.append((method, params))
        queued = self.script.get(method)
        if queued:
            response = queued.pop(0)
            if isinstance(response, Exception):
                raise response
            if callable(response):
                return response(params)
            return response
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method in ("eth_accounts", "eth_requestAccounts"):
            return [] if self.locked else [self.account.lower()]
        if method == "eth_getBalance":
            return hex(self.chain.balances.get(Web3.to_checksum_address(params[0]), 0))
        if method == "wallet_switchEthereumChain":
            target = int(params[0]["chainId"], 16)
            if target not in self.known_chains:
                raise ProviderError("Unrecognized chain ID", code=4902)
            self.chain_id = target
            return None
        if method == "wallet_addEthereumChain":
            self.known_chains.add(int(params[0]["chainId"], 16))
            return None
        raise ProviderError(f"method {method} not supported", code=-32601)

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        wallet_rpc_url="http://wallet.test",
        contract_address=CONTRACT,
        target_chain_id=56,
        expected_chain_ids=(56, 97),
        vault_db_path=tmp_path / "secrets.db",
        refresh_interval_sec=300.0,
        balance_refresh_sec=300.0,
        event_poll_sec=15.0,
        rpc_timeout_sec=30.0,
    )


@pytest.fixture
def chain(clock) -> InMemoryChain:
    c = InMemoryChain(clock=clock)
    c.balances.update({ALICE: 10 * ONE, BOB: 10 * ONE, CAROL: 10 * ONE})
    return c


@pytest.fixture
def transport(chain) -> FakeWalletTransport:
    return FakeWalletTransport(chain)


@pytest.fixture
def ledgers(chain) -> dict[str, FakeLedger]:
    """FakeLedger instances built by the manager, keyed by sender."""
    return {}


@pytest.fixture
def manager(settings, transport, chain, ledgers, clock, sleep) -> ConnectionManager:
    def factory(call, send, address, account):
        ledger = FakeLedger(chain, account)
        ledgers[account] = ledger
        return ledger

    return ConnectionManager(
        settings,
        transport=transport,
        ledger_factory=factory,
        clock=clock,
        sleep=sleep,
        rng=lambda: 0.0,
    )


@pytest.fixture
def vault(tmp_path, clock):
    v = SecretVault(tmp_path / "vault.db", clock=clock)
    yield v
    v.close()


def run(coro):
    """Drive a coroutine from a sync test."""
    return asyncio.run(coro)


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds; fails after timeout real seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)
