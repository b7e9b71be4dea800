"""
Client-side ordering and filtering of cached game records.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable

from web3 import Web3

from elements_duel.core.addresses import Address
from elements_duel.game.models import GameRecord, GameStatus

HIGH_STAKES_MIN = Decimal(10)
MEDIUM_STAKES_MIN = Decimal(1)


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    HIGHEST_BET = "highest-bet"
    LOWEST_BET = "lowest-bet"


class GameFilter(str, Enum):
    ALL = "all"
    OPEN = "open"
    MY_GAMES = "my-games"
    COMPLETED = "completed"
    REVEAL = "reveal"
    HIGH_STAKES = "high-stakes"
    MEDIUM_STAKES = "medium-stakes"
    LOW_STAKES = "low-stakes"


class BetTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def bet_tier(bet_amount_wei: int) -> BetTier:
    amount = Decimal(Web3.from_wei(bet_amount_wei, "ether"))
    if amount >= HIGH_STAKES_MIN:
        return BetTier.HIGH
    if amount >= MEDIUM_STAKES_MIN:
        return BetTier.MEDIUM
    return BetTier.LOW


def time_remaining(game: GameRecord, now: float) -> int | None:
    """Seconds left to reveal; None outside the reveal phase."""
    if game.status is not GameStatus.REVEAL_PHASE:
        return None
    return max(0, game.reveal_deadline - int(now))


def sort_games(games: Iterable[GameRecord], order: SortOrder | None = None) -> list[GameRecord]:
    """
    No order: id descending. Any explicit order surfaces OPEN / REVEAL_PHASE records
    ahead of terminal ones, then applies its key; id descending breaks remaining ties.
    """
    items = list(games)
    if order is None:
        return sorted(items, key=lambda g: -g.id)

    def key(g: GameRecord) -> tuple:
        inactive = 0 if g.is_active else 1
        if order is SortOrder.NEWEST:
            return (inactive, -g.created_at, -g.id)
        if order is SortOrder.OLDEST:
            return (inactive, g.created_at, -g.id)
        if order is SortOrder.HIGHEST_BET:
            return (inactive, -g.bet_amount, -g.id)
        return (inactive, g.bet_amount, -g.id)

    return sorted(items, key=key)


def _involves(game: GameRecord, account: str) -> bool:
    if game.creator.matches(account):
        return True
    return isinstance(game.opponent, Address) and game.opponent.matches(account)


def matches_filter(game: GameRecord, flt: GameFilter, account: str | None = None) -> bool:
    if flt is GameFilter.OPEN:
        return game.status is GameStatus.OPEN
    if flt is GameFilter.MY_GAMES:
        return bool(account) and _involves(game, account)
    if flt is GameFilter.COMPLETED:
        return game.status is GameStatus.COMPLETED
    if flt is GameFilter.REVEAL:
        return game.status is GameStatus.REVEAL_PHASE
    if flt is GameFilter.HIGH_STAKES:
        return bet_tier(game.bet_amount) is BetTier.HIGH
    if flt is GameFilter.MEDIUM_STAKES:
        return bet_tier(game.bet_amount) is BetTier.MEDIUM
    if flt is GameFilter.LOW_STAKES:
        return bet_tier(game.bet_amount) is BetTier.LOW
    return True


def matches_search(game: GameRecord, term: str | None) -> bool:
    """Substring match over id, creator and opponent (case-insensitive)."""
    if not term:
        return True
    needle = term.strip().lower()
    haystack = [str(game.id), game.creator.value.lower()]
    if isinstance(game.opponent, Address):
        haystack.append(game.opponent.value.lower())
    return any(needle in h for h in haystack)


@dataclass(frozen=True)
class ListingQuery:
    filter: GameFilter = GameFilter.ALL
    search: str | None = None
    sort: SortOrder | None = None
    account: str | None = None


def filter_games(games: Iterable[GameRecord], query: ListingQuery) -> list[GameRecord]:
    """Apply filter, search and sort in that order."""
    selected = [
        g for g in games
        if matches_filter(g, query.filter, query.account) and matches_search(g, query.search)
    ]
    return sort_games(selected, query.sort)
