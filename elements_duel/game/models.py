"""
Domain models for duel games and players.

Frozen snapshots built from ledger reads. Zero-address sentinels are converted
to UNSET / TIE here and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Sequence

from web3 import Web3

from elements_duel.core.addresses import (
    Address,
    MaybeAddress,
    WinnerSlot,
    parse_optional_address,
    parse_winner,
)


class Move(IntEnum):
    NONE = 0
    FIRE = 1
    WATER = 2
    PLANT = 3

    @classmethod
    def parse(cls, raw: "Move | int | str") -> "Move":
        """Accept enum, int code or name ("fire", "FIRE")."""
        if isinstance(raw, Move):
            return raw
        if isinstance(raw, str) and not raw.strip().isdigit():
            try:
                return cls[raw.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown move: {raw!r}") from None
        return cls(int(raw))

    @property
    def playable(self) -> bool:
        return self is not Move.NONE


class GameStatus(IntEnum):
    OPEN = 0
    COMPLETED = 1
    EXPIRED = 2
    REVEAL_PHASE = 3
    CANCELED = 4

    @property
    def is_active(self) -> bool:
        return self in (GameStatus.OPEN, GameStatus.REVEAL_PHASE)

    @property
    def is_terminal(self) -> bool:
        return self in (GameStatus.COMPLETED, GameStatus.CANCELED, GameStatus.EXPIRED)


class GameIdSource(str, Enum):
    EVENT = "event"
    COUNTER = "counter"


@dataclass(frozen=True)
class GameRecord:
    id: int
    creator: Address
    opponent: MaybeAddress
    commitment_hash: bytes
    creator_move: Move
    opponent_move: Move
    bet_amount: int
    """Wei."""
    status: GameStatus
    winner: WinnerSlot
    created_at: int
    reveal_deadline: int
    """Unix seconds; 0 until an opponent joins."""
    referrer: MaybeAddress

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def bet_native(self) -> Decimal:
        return Decimal(Web3.from_wei(self.bet_amount, "ether"))

    @classmethod
    def from_ledger(cls, game_id: int, raw: Sequence[Any]) -> "GameRecord":
        """
        Build from the decoded getGame tuple:
        (creator, creatorMoveHash, creatorMove, opponent, opponentMove, betAmount,
         status, winner, createdAt, revealDeadline, referrer).
        Raises ValueError when the creator slot is empty (id not allocated).
        """
        creator = parse_optional_address(raw[0])
        if not isinstance(creator, Address):
            raise ValueError(f"game {game_id} has no creator")
        status = GameStatus(int(raw[6]))
        return cls(
            id=int(game_id),
            creator=creator,
            opponent=parse_optional_address(raw[3]),
            commitment_hash=bytes(raw[1]),
            creator_move=Move(int(raw[2])),
            opponent_move=Move(int(raw[4])),
            bet_amount=int(raw[5]),
            status=status,
            winner=parse_winner(raw[7], completed=status is GameStatus.COMPLETED),
            created_at=int(raw[8]),
            reveal_deadline=int(raw[9]),
            referrer=parse_optional_address(raw[10]),
        )


@dataclass(frozen=True)
class PlayerStats:
    wins: int = 0
    losses: int = 0
    ties: int = 0
    games_played: int = 0
    total_wagered: int = 0
    total_won: int = 0
    referral_earnings: int = 0
    monthly_score: int = 0
    last_played: int = 0

    @property
    def win_rate(self) -> int:
        """Percentage, rounded to the nearest integer; 0 with no games."""
        if self.games_played == 0:
            return 0
        return int(Decimal(self.wins * 100) / Decimal(self.games_played) + Decimal("0.5"))

    @property
    def profit(self) -> int:
        return self.total_won - self.total_wagered

    @property
    def roi(self) -> str:
        if self.total_wagered <= 0:
            return "0.00"
        pct = Decimal(self.profit) / Decimal(self.total_wagered) * 100
        return f"{pct:.2f}"

    @property
    def average_bet(self) -> str:
        if self.games_played <= 0:
            return "0.0000"
        avg = Decimal(Web3.from_wei(self.total_wagered, "ether")) / Decimal(self.games_played)
        return f"{avg:.4f}"

    @classmethod
    def from_ledger(cls, raw: Sequence[Any]) -> "PlayerStats":
        """
        Build from getPlayerStats: (wins, losses, ties, gamesPlayed, totalWagered,
        totalWon, referralEarnings, lastPlayed, monthlyScore).
        """
        return cls(
            wins=int(raw[0]),
            losses=int(raw[1]),
            ties=int(raw[2]),
            games_played=int(raw[3]),
            total_wagered=int(raw[4]),
            total_won=int(raw[5]),
            referral_earnings=int(raw[6]),
            last_played=int(raw[7]),
            monthly_score=int(raw[8]),
        )


@dataclass(frozen=True)
class CreatedGame:
    game_id: int
    tx_hash: str
    commitment_hash: bytes
    id_source: GameIdSource


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    player: Address
    monthly_score: int
    stats: PlayerStats


@dataclass(frozen=True)
class LedgerOverview:
    reward_pool: int
    total_games: int
    total_players: int
    fee_percentage: int
