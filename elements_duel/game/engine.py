"""
Commit-Reveal Game Engine.

Responsibilities:
- Drive create / join / reveal / cancel / claim-timeout against the ledger, with
  local pre-checks (balance, network, transition table) before anything is submitted.
- Persist the commitment pre-image in the vault before create is sent; consume it
  on reveal; drop it on cancel.
- Keep a read-through cache of game records and the session player's stats,
  refreshed on a timer, after every write, and when ledger events arrive.
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from web3 import Web3

from elements_duel.config import Settings
from elements_duel.core.addresses import Address, UNSET, parse_optional_address, shorten
from elements_duel.core.exceptions import (
    CommitmentMismatchError,
    DuelError,
    GameIdUnresolvedError,
    InsufficientBalanceError,
    MissingCommitmentError,
    NotConnectedError,
    PreconditionFailedError,
    TransactionFailedError,
)
from elements_duel.duel_logging import get_logger
from elements_duel.game import rules
from elements_duel.game.commitment import commit, verify_commitment
from elements_duel.game.listing import SortOrder, sort_games
from elements_duel.game.models import (
    CreatedGame,
    GameIdSource,
    GameRecord,
    LeaderboardEntry,
    LedgerOverview,
    Move,
    PlayerStats,
)
from elements_duel.ledger.client import LedgerClient
from elements_duel.ledger.events import LedgerEvent, LedgerEventPoller
from elements_duel.vault import SecretVault
from elements_duel.wallet.manager import ConnectionManager

logger = get_logger(__name__)

FETCH_WINDOW = 50
FETCH_BATCH_SIZE = 10
GAS_MARGIN_WEI = Web3.to_wei(Decimal("0.002"), "ether")
DEFAULT_LEADERBOARD_LIMIT = 10
STOP_CHECK_SEC = 1.0

PollerFactory = Callable[[LedgerClient, "asyncio.Queue[LedgerEvent]"], LedgerEventPoller]


def parse_native_amount(amount: Any) -> int:
    """Native-token amount ("0.1", Decimal, int) to wei. Must be positive."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise PreconditionFailedError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite() or value <= 0:
        raise PreconditionFailedError("Bet amount must be greater than zero")
    return int(Web3.to_wei(value, "ether"))


def _playable_move(move: Move | int | str | None) -> Move:
    try:
        parsed = Move.parse(move) if move is not None else Move.NONE
    except ValueError as e:
        raise PreconditionFailedError(str(e)) from e
    if not parsed.playable:
        raise PreconditionFailedError("Select a move: FIRE, WATER or PLANT")
    return parsed


class GameEngine:
    """
    Collaborators read `games`, `player_stats`, `leaderboard` and `overview`
    (immutable snapshots) and call the protocol operations.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        vault: SecretVault,
        *,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
        poller_factory: PollerFactory | None = None,
    ) -> None:
        self._manager = manager
        self._vault = vault
        self._settings = settings or manager.settings
        self._clock = clock
        self._poller_factory = poller_factory or self._default_poller
        self._events: asyncio.Queue[LedgerEvent] = asyncio.Queue()
        self._games: tuple[GameRecord, ...] = ()
        self._player_stats: PlayerStats | None = None
        self._leaderboard: tuple[LeaderboardEntry, ...] = ()
        self._overview: LedgerOverview | None = None
        self._started = False
        self._last_refresh_at: float | None = None

    def _default_poller(self, ledger: LedgerClient, queue: asyncio.Queue[LedgerEvent]) -> LedgerEventPoller:
        return LedgerEventPoller(ledger, queue, poll_interval_sec=self._settings.event_poll_sec)

    @property
    def games(self) -> tuple[GameRecord, ...]:
        return self._games

    @property
    def player_stats(self) -> PlayerStats | None:
        return self._player_stats

    @property
    def leaderboard(self) -> tuple[LeaderboardEntry, ...]:
        return self._leaderboard

    @property
    def overview(self) -> LedgerOverview | None:
        return self._overview

    @property
    def events(self) -> asyncio.Queue[LedgerEvent]:
        return self._events

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def start(self) -> int:
        """Run once at startup: purge expired secrets. Returns how many were removed."""
        if self._started:
            return 0
        self._started = True
        return self._vault.purge_expired()

    def _session(self) -> tuple[LedgerClient, str, int]:
        ledger = self._manager.require_ledger()
        account = self._manager.state.account
        if not account:
            raise NotConnectedError()
        return ledger, account, self._manager.session_id

    async def _fresh_game(self, ledger: LedgerClient, game_id: int) -> GameRecord:
        game = await ledger.get_game(game_id)
        if game is None:
            raise PreconditionFailedError(f"Game {game_id} does not exist")
        return game

    async def _ensure_balance(self, account: str, bet_wei: int) -> None:
        balance = await self._manager.read_balance_wei(account)
        required = bet_wei + GAS_MARGIN_WEI
        if balance < required:
            logger.info(
                "insufficient_balance",
                account=shorten(account),
                balance_wei=balance,
                required_wei=required,
            )
            raise InsufficientBalanceError(
                f"Insufficient balance: need {Web3.from_wei(required, 'ether')} "
                f"(bet plus gas margin), have {Web3.from_wei(balance, 'ether')}."
            )

    # ------------------------------------------------------------------
    # Protocol operations
    # ------------------------------------------------------------------

    async def create_game(
        self,
        bet: Any,
        move: Move | int | str,
        secret: str,
        referrer: str | None = None,
    ) -> CreatedGame:
        """
        Commit to a move and open a game. The pre-image is stored as pending before
        the transaction is sent and moved under the resolved game id before this
        returns. When neither the receipt nor gameCounter yields the id,
        GameIdUnresolvedError is raised and the pending row is adopted by a later
        fetch_games().
        """
        parsed_move = _playable_move(move)
        if not secret:
            raise PreconditionFailedError("A secret is required to commit a move")
        bet_wei = parse_native_amount(bet)
        try:
            referrer_slot = parse_optional_address(referrer)
        except ValueError as e:
            raise PreconditionFailedError(f"Invalid referrer address: {referrer!r}") from e

        ledger, account, session = self._session()
        if isinstance(referrer_slot, Address) and referrer_slot.matches(account):
            referrer_slot = UNSET
        await self._ensure_balance(account, bet_wei)

        digest = commit(parsed_move, secret)
        self._vault.save_pending(digest, parsed_move, secret)
        try:
            result = await ledger.create_game(digest, bet_wei, referrer_slot)
        except TransactionFailedError as exc:
            if exc.tx_hash is None:
                self._vault.discard_pending(digest)
            raise
        self._vault.save_pending(digest, parsed_move, secret, tx_hash=result.tx_hash)

        game_id = ledger.decode_game_created(result)
        source = GameIdSource.EVENT
        if game_id is None:
            try:
                game_id = await ledger.game_counter()
            except DuelError as exc:
                logger.error(
                    "game_id_unresolved",
                    tx_hash=result.tx_hash,
                    commitment="0x" + digest.hex(),
                    kind=exc.kind.value,
                    error=exc.message,
                )
                raise GameIdUnresolvedError(
                    tx_hash=result.tx_hash,
                    commitment_hash=digest,
                    move=int(parsed_move),
                    secret=secret,
                    detail=exc.message,
                ) from exc
            source = GameIdSource.COUNTER
            logger.warning("game_id_from_counter", tx_hash=result.tx_hash, game_id=game_id)

        self._vault.promote(digest, game_id)
        logger.info(
            "game_created",
            game_id=game_id,
            tx_hash=result.tx_hash,
            bet_wei=bet_wei,
            id_source=source.value,
        )
        await self._refresh_after_write(session)
        return CreatedGame(
            game_id=game_id,
            tx_hash=result.tx_hash,
            commitment_hash=digest,
            id_source=source,
        )

    async def join_game(self, game_id: int, move: Move | int | str, bet: Any = None) -> str:
        """Join an open game with a plain move; bet defaults to the game's bet."""
        parsed_move = _playable_move(move)
        ledger, account, session = self._session()
        game = await self._fresh_game(ledger, game_id)
        rules.ensure_allowed(game, rules.Operation.JOIN, account, self._clock())
        bet_wei = game.bet_amount if bet is None else parse_native_amount(bet)
        if bet_wei != game.bet_amount:
            raise PreconditionFailedError(
                f"Bet must match the game's bet of {Web3.from_wei(game.bet_amount, 'ether')}"
            )
        await self._ensure_balance(account, bet_wei)
        result = await ledger.join_game(game_id, parsed_move, bet_wei)
        logger.info("game_joined", game_id=game_id, tx_hash=result.tx_hash)
        await self._refresh_after_write(session)
        return result.tx_hash

    async def reveal_move(
        self,
        game_id: int,
        move: Move | int | str | None = None,
        secret: str | None = None,
    ) -> str:
        """
        Reveal the committed move. Missing move/secret come from the vault. A ledger
        rejection whose pair does not re-derive the committed hash becomes
        CommitmentMismatchError; the vault entry is only removed on success.
        """
        if move is None or not secret:
            stored = self._vault.get(game_id)
            if stored is None:
                raise MissingCommitmentError()
            move, secret = stored.move, stored.secret
            logger.info("reveal_using_stored_secret", game_id=game_id)
        parsed_move = _playable_move(move)

        ledger, account, session = self._session()
        game = await self._fresh_game(ledger, game_id)
        rules.ensure_allowed(game, rules.Operation.REVEAL, account, self._clock())
        try:
            result = await ledger.reveal_move(game_id, parsed_move, secret)
        except TransactionFailedError as exc:
            if not verify_commitment(parsed_move, secret, game.commitment_hash):
                logger.warning("reveal_commitment_mismatch", game_id=game_id)
                raise CommitmentMismatchError(detail=exc.message) from exc
            raise
        self._vault.remove(game_id)
        logger.info("move_revealed", game_id=game_id, tx_hash=result.tx_hash)
        await self._refresh_after_write(session)
        return result.tx_hash

    async def auto_reveal_move(self, game_id: int) -> bool:
        """False when no stored secret exists; otherwise reveals and returns True."""
        stored = self._vault.get(game_id)
        if stored is None:
            logger.info("auto_reveal_unavailable", game_id=game_id)
            return False
        await self.reveal_move(game_id, stored.move, stored.secret)
        return True

    async def cancel_game(self, game_id: int) -> str:
        ledger, account, session = self._session()
        game = await self._fresh_game(ledger, game_id)
        rules.ensure_allowed(game, rules.Operation.CANCEL, account, self._clock())
        result = await ledger.cancel_game(game_id)
        self._vault.remove(game_id)
        logger.info("game_canceled", game_id=game_id, tx_hash=result.tx_hash)
        await self._refresh_after_write(session)
        return result.tx_hash

    async def claim_timeout(self, game_id: int) -> str:
        ledger, account, session = self._session()
        game = await self._fresh_game(ledger, game_id)
        rules.ensure_allowed(game, rules.Operation.CLAIM_TIMEOUT, account, self._clock())
        result = await ledger.claim_timeout(game_id)
        logger.info("timeout_claimed", game_id=game_id, tx_hash=result.tx_hash)
        await self._refresh_after_write(session)
        return result.tx_hash

    def actions_for(self, game: GameRecord) -> rules.AvailableActions:
        return rules.available_actions(game, self._manager.state.account, self._clock())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_games(self, sort: SortOrder | None = None) -> tuple[GameRecord, ...]:
        """
        Read the trailing window of games in concurrent batches. Individual failures
        are skipped; never-created slots are dropped; the result is sorted once all
        batches have settled.
        """
        ledger, _, session = self._session()
        total = await ledger.game_counter()
        records: list[GameRecord] = []
        for batch_start in range(max(1, total - FETCH_WINDOW), total + 1, FETCH_BATCH_SIZE):
            ids = list(range(batch_start, min(batch_start + FETCH_BATCH_SIZE - 1, total) + 1))
            results = await asyncio.gather(*(ledger.get_game(i) for i in ids), return_exceptions=True)
            for game_id, res in zip(ids, results):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                if isinstance(res, Exception):
                    logger.warning("game_fetch_failed", game_id=game_id, error=str(res))
                    continue
                if res is not None:
                    records.append(res)
        if not self._manager.is_current(session):
            logger.info("games_stale_result_discarded", session_id=session)
            return self._games
        self._adopt_pending_secrets(records)
        self._games = tuple(sort_games(records, sort))
        logger.info("games_fetched", count=len(self._games), game_counter=total)
        return self._games

    def _adopt_pending_secrets(self, records: list[GameRecord]) -> None:
        """Attach pending pre-images to the session player's active games by commitment hash."""
        pending = {p.commitment_hash: p for p in self._vault.list_pending()}
        if not pending:
            return
        account = self._manager.state.account
        for game in records:
            if not game.is_active or not account or not game.creator.matches(account):
                continue
            if game.commitment_hash not in pending or self._vault.has(game.id):
                continue
            self._vault.promote(game.commitment_hash, game.id)
            logger.info(
                "pending_secret_adopted",
                game_id=game.id,
                tx_hash=pending[game.commitment_hash].tx_hash,
            )

    async def fetch_player_stats(self, address: str | None = None) -> PlayerStats:
        ledger, account, session = self._session()
        player = address or account
        stats = await ledger.get_player_stats(player)
        if player.lower() == account.lower():
            if self._manager.is_current(session):
                self._player_stats = stats
            else:
                logger.info("stats_stale_result_discarded", session_id=session)
        return stats

    async def fetch_leaderboard(self, limit: int = DEFAULT_LEADERBOARD_LIMIT) -> tuple[LeaderboardEntry, ...]:
        ledger, _, session = self._session()
        top = await ledger.get_top_monthly_players()
        entries: list[LeaderboardEntry] = []
        for player, score in top:
            if len(entries) >= limit:
                break
            slot = parse_optional_address(player)
            if not isinstance(slot, Address):
                continue
            try:
                stats = await ledger.get_player_stats(slot.value)
            except DuelError as e:
                logger.warning("leaderboard_stats_failed", player=slot.short(), error=e.message)
                continue
            entries.append(
                LeaderboardEntry(rank=len(entries) + 1, player=slot, monthly_score=score, stats=stats)
            )
        if self._manager.is_current(session):
            self._leaderboard = tuple(entries)
        return tuple(entries)

    async def fetch_ledger_overview(self) -> LedgerOverview:
        ledger, _, session = self._session()
        pool, games, players, fee = await asyncio.gather(
            ledger.get_reward_pool_info(),
            ledger.total_games(),
            ledger.total_players(),
            ledger.fee_percentage(),
        )
        overview = LedgerOverview(
            reward_pool=pool,
            total_games=games,
            total_players=players,
            fee_percentage=fee,
        )
        if self._manager.is_current(session):
            self._overview = overview
        return overview

    async def refresh_data(self) -> None:
        """fetch_games() then the session player's stats. No-op while not connected."""
        if not self._manager.state.is_connected:
            return
        self._last_refresh_at = self._clock()
        await self.fetch_games()
        await self.fetch_player_stats()

    async def _refresh_after_write(self, session: int) -> None:
        if not self._manager.is_current(session):
            logger.info("refresh_stale_session_skipped", session_id=session)
            return
        try:
            await self.refresh_data()
        except DuelError as e:
            logger.warning("post_write_refresh_failed", kind=e.kind.value, error=e.message)

    # ------------------------------------------------------------------
    # Events and background loop
    # ------------------------------------------------------------------

    async def process_events(self) -> int:
        """Drain queued ledger events; any number of them triggers one refresh."""
        return await self._drain_and_refresh(0)

    async def _drain_and_refresh(self, drained: int) -> int:
        while True:
            try:
                event = self._events.get_nowait()
            except asyncio.QueueEmpty:
                break
            drained += 1
            logger.debug("ledger_event", name=event.name, game_id=event.game_id)
        if drained:
            logger.info("ledger_events_drained", count=drained)
            await self._refresh_after_write(self._manager.session_id)
        return drained

    async def run(self, stop: asyncio.Event) -> None:
        """
        Keep the ledger poller alive while connected, refresh on ledger events and
        every refresh_interval_sec, until stop is set.
        """
        self.start()
        interval = self._settings.refresh_interval_sec
        poller_task: asyncio.Task[None] | None = None
        poller_stop: asyncio.Event | None = None
        poller_session: int | None = None
        logger.info("game_engine_started", refresh_interval_sec=interval)
        try:
            while not stop.is_set():
                connected = self._manager.state.is_connected
                session = self._manager.session_id
                if poller_task is not None and (not connected or poller_session != session):
                    poller_stop.set()
                    await poller_task
                    poller_task = None
                if connected and poller_task is None:
                    poller_stop = asyncio.Event()
                    poller = self._poller_factory(self._manager.require_ledger(), self._events)
                    poller_task = asyncio.create_task(poller.run(poller_stop))
                    poller_session = session

                try:
                    first = await asyncio.wait_for(self._events.get(), timeout=STOP_CHECK_SEC)
                except asyncio.TimeoutError:
                    first = None
                if stop.is_set():
                    break
                if first is not None:
                    await self._drain_and_refresh(1)
                elif connected and (
                    self._last_refresh_at is None or self._clock() - self._last_refresh_at >= interval
                ):
                    try:
                        await self.refresh_data()
                    except DuelError as e:
                        logger.warning("periodic_refresh_failed", kind=e.kind.value, error=e.message)
        finally:
            if poller_task is not None and poller_stop is not None:
                poller_stop.set()
                await poller_task
            logger.info("game_engine_stopped")

