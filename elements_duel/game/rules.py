"""
Protocol rules: transition table, role checks, duel outcome and UI action gating.

    OPEN --join--> REVEAL_PHASE --reveal--> COMPLETED
    REVEAL_PHASE --claim_timeout (deadline elapsed, by opponent)--> COMPLETED
    OPEN --cancel (creator, no opponent)--> CANCELED

Nothing else is legal. COMPLETED, CANCELED and EXPIRED are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from elements_duel.core.addresses import Address
from elements_duel.core.exceptions import (
    DeadlineNotElapsedError,
    IllegalTransitionError,
    PreconditionFailedError,
)
from elements_duel.game.models import GameRecord, GameStatus, Move


class Operation(str, Enum):
    JOIN = "join"
    REVEAL = "reveal"
    CANCEL = "cancel"
    CLAIM_TIMEOUT = "claim_timeout"


class Outcome(str, Enum):
    CREATOR_WINS = "creator_wins"
    OPPONENT_WINS = "opponent_wins"
    TIE = "tie"


TRANSITIONS: dict[tuple[GameStatus, Operation], GameStatus] = {
    (GameStatus.OPEN, Operation.JOIN): GameStatus.REVEAL_PHASE,
    (GameStatus.OPEN, Operation.CANCEL): GameStatus.CANCELED,
    (GameStatus.REVEAL_PHASE, Operation.REVEAL): GameStatus.COMPLETED,
    (GameStatus.REVEAL_PHASE, Operation.CLAIM_TIMEOUT): GameStatus.COMPLETED,
}

# move -> the move it beats
_BEATS = {
    Move.FIRE: Move.PLANT,
    Move.WATER: Move.FIRE,
    Move.PLANT: Move.WATER,
}


def check_transition(status: GameStatus, op: Operation) -> GameStatus:
    """Return the target status or raise IllegalTransitionError."""
    try:
        return TRANSITIONS[(status, op)]
    except KeyError:
        raise IllegalTransitionError(
            f"Cannot {op.value.replace('_', ' ')} a game in status {status.name}"
        ) from None


def ensure_allowed(game: GameRecord, op: Operation, account: str, now: float) -> GameStatus:
    """
    Full local pre-check for a write: transition table plus role and deadline rules.
    Raises a PreconditionFailedError subclass; returns the target status.
    """
    target = check_transition(game.status, op)
    is_creator = game.creator.matches(account)
    opponent = game.opponent
    if op is Operation.JOIN:
        if is_creator:
            raise PreconditionFailedError("Cannot join your own game")
    elif op is Operation.CANCEL:
        if not is_creator:
            raise PreconditionFailedError("Only the creator can cancel a game")
        if isinstance(opponent, Address):
            raise PreconditionFailedError("Cannot cancel a game that already has an opponent")
    elif op is Operation.REVEAL:
        if not is_creator:
            raise PreconditionFailedError("Only the creator can reveal a move")
    elif op is Operation.CLAIM_TIMEOUT:
        if not (isinstance(opponent, Address) and opponent.matches(account)):
            raise PreconditionFailedError("Only the opponent can claim a timeout")
        if now <= game.reveal_deadline:
            remaining = int(game.reveal_deadline - now)
            raise DeadlineNotElapsedError(
                f"Reveal deadline has not passed yet ({remaining}s remaining)"
            )
    return target


def decide_outcome(creator_move: Move, opponent_move: Move) -> Outcome:
    """Fire beats Plant, Water beats Fire, Plant beats Water; equal moves tie."""
    if not (creator_move.playable and opponent_move.playable):
        raise ValueError("both moves must be playable")
    if creator_move is opponent_move:
        return Outcome.TIE
    if _BEATS[creator_move] is opponent_move:
        return Outcome.CREATOR_WINS
    return Outcome.OPPONENT_WINS


@dataclass(frozen=True)
class AvailableActions:
    can_join: bool = False
    can_reveal: bool = False
    can_cancel: bool = False
    can_claim_timeout: bool = False


def available_actions(game: GameRecord, account: str | None, now: float) -> AvailableActions:
    """What the given account may do with the game right now (UI gating)."""
    if not account:
        return AvailableActions()

    def allowed(op: Operation) -> bool:
        try:
            ensure_allowed(game, op, account, now)
        except PreconditionFailedError:
            return False
        return True

    return AvailableActions(
        can_join=allowed(Operation.JOIN),
        can_reveal=allowed(Operation.REVEAL) and now <= game.reveal_deadline,
        can_cancel=allowed(Operation.CANCEL),
        can_claim_timeout=allowed(Operation.CLAIM_TIMEOUT),
    )
