"""
Operator CLI for Elements Duel.

    python -m elements_duel.cli status
    python -m elements_duel.cli games --filter open --sort newest
    python -m elements_duel.cli create 0.1 fire
    python -m elements_duel.cli reveal 42
    python -m elements_duel.cli secrets

Commands that touch the ledger connect through the wallet bridge first
(DUEL_WALLET_RPC_URL). `secrets` and `purge-secrets` only use the local vault.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time

from web3 import Web3

from elements_duel.config import Settings, get_settings
from elements_duel.config.env import print_duel_startup
from elements_duel.core.addresses import Address
from elements_duel.core.exceptions import DuelError, GameIdUnresolvedError
from elements_duel.duel_logging import get_logger
from elements_duel.game.commitment import generate_secret
from elements_duel.game.engine import GameEngine
from elements_duel.game.levels import get_player_level, progress_to_next_level
from elements_duel.game.listing import (
    GameFilter,
    ListingQuery,
    SortOrder,
    bet_tier,
    filter_games,
    time_remaining,
)
from elements_duel.game.models import GameRecord, PlayerStats
from elements_duel.vault import SecretVault
from elements_duel.wallet.manager import ConnectionManager

logger = get_logger(__name__)

_VAULT_ONLY = {"secrets", "purge-secrets"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="elements-duel", description="Elements Duel client.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Connect and show the wallet session")

    p = sub.add_parser("games", help="List recent games")
    p.add_argument("--sort", choices=[s.value for s in SortOrder], default=None)
    p.add_argument("--filter", choices=[f.value for f in GameFilter], default=GameFilter.ALL.value)
    p.add_argument("--search", default=None, help="Match id, creator or opponent")

    p = sub.add_parser("stats", help="Player stats and level")
    p.add_argument("address", nargs="?", default=None, help="Defaults to the connected account")

    p = sub.add_parser("leaderboard", help="Top monthly players and reward pool")
    p.add_argument("--limit", type=int, default=10)

    p = sub.add_parser("create", help="Commit to a move and open a game")
    p.add_argument("bet", help="Bet in native units, e.g. 0.1")
    p.add_argument("move", help="fire | water | plant")
    p.add_argument("--secret", default=None, help="Defaults to a random secret")
    p.add_argument("--referrer", default=None)

    p = sub.add_parser("join", help="Join an open game")
    p.add_argument("game_id", type=int)
    p.add_argument("move", help="fire | water | plant")
    p.add_argument("--bet", default=None, help="Defaults to the game's bet")

    p = sub.add_parser("reveal", help="Reveal the committed move (stored secret by default)")
    p.add_argument("game_id", type=int)
    p.add_argument("--move", default=None)
    p.add_argument("--secret", default=None)

    p = sub.add_parser("cancel", help="Cancel your open, un-joined game")
    p.add_argument("game_id", type=int)

    p = sub.add_parser("claim", help="Claim a game whose reveal deadline has passed")
    p.add_argument("game_id", type=int)

    sub.add_parser("secrets", help="List locally stored secrets")
    sub.add_parser("purge-secrets", help="Delete stored secrets older than 30 days")
    return parser


def _fmt_native(wei: int) -> str:
    return f"{Web3.from_wei(wei, 'ether')}"


def _print_game(engine: GameEngine, game: GameRecord, now: float) -> None:
    remaining = time_remaining(game, now)
    actions = engine.actions_for(game)
    flags = [
        name
        for name, ok in (
            ("join", actions.can_join),
            ("reveal", actions.can_reveal),
            ("cancel", actions.can_cancel),
            ("claim", actions.can_claim_timeout),
        )
        if ok
    ]
    if engine.vault.has(game.id):
        flags.append("auto-reveal")
    print(
        f"#{game.id:<5} {game.status.name:<12} bet={_fmt_native(game.bet_amount):<10} "
        f"tier={bet_tier(game.bet_amount).value:<6} creator={game.creator.short()} "
        f"opponent={game.opponent.short() if isinstance(game.opponent, Address) else '-'} "
        f"winner={game.winner}"
        + (f" reveal_in={remaining}s" if remaining is not None else "")
        + (f" [{', '.join(flags)}]" if flags else "")
    )


def _print_stats(stats: PlayerStats) -> None:
    level = get_player_level(stats.monthly_score)
    progress = progress_to_next_level(stats.monthly_score)
    print(f"wins={stats.wins} losses={stats.losses} ties={stats.ties} played={stats.games_played}")
    print(f"win_rate={stats.win_rate}% profit={_fmt_native(stats.profit)} roi={stats.roi}% avg_bet={stats.average_bet}")
    print(f"wagered={_fmt_native(stats.total_wagered)} won={_fmt_native(stats.total_won)} "
          f"referrals={_fmt_native(stats.referral_earnings)}")
    nxt = f" next={progress.next.title} ({progress.progress:.0f}%)" if progress.next else ""
    print(f"level={level.level} {level.title} monthly_score={stats.monthly_score}{nxt}")


def _run_vault_command(args: argparse.Namespace, vault: SecretVault) -> int:
    if args.command == "secrets":
        entries = vault.list_all()
        pending = vault.list_pending()
        if not entries and not pending:
            print("No stored secrets.")
        for s in entries:
            age_days = (time.time() - s.created_at) / 86400
            print(f"#{s.game_id:<5} move={s.move.name:<6} age={age_days:.1f}d hash=0x{s.commitment_hash.hex()}")
        for p in pending:
            age_days = (time.time() - p.created_at) / 86400
            print(f"pending move={p.move.name:<6} age={age_days:.1f}d hash=0x{p.commitment_hash.hex()} tx={p.tx_hash}")
        return 0
    removed = vault.purge_expired()
    print(f"Removed {removed} expired secret(s).")
    return 0


async def _run_ledger_command(args: argparse.Namespace, settings: Settings, vault: SecretVault) -> int:
    manager = ConnectionManager(settings)
    engine = GameEngine(manager, vault, settings=settings)
    engine.start()
    try:
        state = await manager.connect()
        if not state.is_connected:
            print("Wallet asked to switch network; approve it and run the command again.")
            return 1
        return await _dispatch(args, manager, engine)
    finally:
        await manager.transport.aclose()


async def _dispatch(args: argparse.Namespace, manager: ConnectionManager, engine: GameEngine) -> int:
    cmd = args.command
    if cmd == "status":
        s = manager.state
        print(f"status={s.status.value} account={s.account} chain_id={s.chain_id} "
              f"balance={s.balance} owner={s.is_owner}")
        return 0
    if cmd == "games":
        sort = SortOrder(args.sort) if args.sort else None
        await engine.fetch_games(sort)
        query = ListingQuery(
            filter=GameFilter(args.filter),
            search=args.search,
            sort=sort,
            account=manager.state.account,
        )
        now = time.time()
        games = filter_games(engine.games, query)
        if not games:
            print("No games.")
        for game in games:
            _print_game(engine, game, now)
        return 0
    if cmd == "stats":
        _print_stats(await engine.fetch_player_stats(args.address))
        return 0
    if cmd == "leaderboard":
        entries = await engine.fetch_leaderboard(args.limit)
        overview = await engine.fetch_ledger_overview()
        for e in entries:
            print(f"{e.rank:>2}. {e.player.short()} score={e.monthly_score} wins={e.stats.wins} "
                  f"level={get_player_level(e.monthly_score).title}")
        print(f"reward_pool={_fmt_native(overview.reward_pool)} games={overview.total_games} "
              f"players={overview.total_players} fee={overview.fee_percentage}%")
        return 0
    if cmd == "create":
        secret = args.secret or generate_secret()
        try:
            created = await engine.create_game(args.bet, args.move, secret, args.referrer)
        except GameIdUnresolvedError as e:
            print(f"Game sent (tx {e.tx_hash}) but its id is unknown; keep this secret: {e.secret}")
            raise
        print(f"Game #{created.game_id} created (tx {created.tx_hash}, id from {created.id_source.value}).")
        print(f"Secret stored locally for auto reveal: {secret}")
        return 0
    if cmd == "join":
        tx = await engine.join_game(args.game_id, args.move, args.bet)
        print(f"Joined game #{args.game_id} (tx {tx}).")
        return 0
    if cmd == "reveal":
        tx = await engine.reveal_move(args.game_id, args.move, args.secret)
        print(f"Revealed move for game #{args.game_id} (tx {tx}).")
        return 0
    if cmd == "cancel":
        tx = await engine.cancel_game(args.game_id)
        print(f"Canceled game #{args.game_id} (tx {tx}).")
        return 0
    if cmd == "claim":
        tx = await engine.claim_timeout(args.game_id)
        print(f"Claimed timeout for game #{args.game_id} (tx {tx}).")
        return 0
    raise ValueError(f"unknown command: {cmd}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    print_duel_startup(f"cli:{args.command}")
    vault = SecretVault(settings.vault_db_path)
    try:
        if args.command in _VAULT_ONLY:
            return _run_vault_command(args, vault)
        return asyncio.run(_run_ledger_command(args, settings, vault))
    except DuelError as e:
        logger.error("cli_command_failed", command=args.command, kind=e.kind.value, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        vault.close()


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
