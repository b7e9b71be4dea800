"""
Player level system derived from the monthly score.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PlayerLevel:
    level: int
    title: str
    min_score: int


PLAYER_LEVELS: tuple[PlayerLevel, ...] = (
    PlayerLevel(1, "Rookie", 0),
    PlayerLevel(2, "Apprentice", 50),
    PlayerLevel(3, "Warrior", 150),
    PlayerLevel(4, "Champion", 300),
    PlayerLevel(5, "Master", 500),
    PlayerLevel(6, "Grandmaster", 800),
    PlayerLevel(7, "Legend", 1200),
    PlayerLevel(8, "Mythic", 2000),
)

LEVEL_BONUS_PCT_PER_LEVEL = 5

# (min streak, multiplier), highest first
_STREAK_MULTIPLIERS = ((10, 3.0), (7, 2.5), (5, 2.0), (3, 1.5))


@dataclass(frozen=True)
class LevelProgress:
    current: PlayerLevel
    next: PlayerLevel | None
    progress: float
    """Percent towards the next level, 100 at the top tier."""


def get_player_level(score: int) -> PlayerLevel:
    for lvl in reversed(PLAYER_LEVELS):
        if score >= lvl.min_score:
            return lvl
    return PLAYER_LEVELS[0]


def progress_to_next_level(score: int) -> LevelProgress:
    current = get_player_level(score)
    idx = current.level  # levels are 1-based, so this is the next index
    if idx >= len(PLAYER_LEVELS):
        return LevelProgress(current=current, next=None, progress=100.0)
    nxt = PLAYER_LEVELS[idx]
    span = nxt.min_score - current.min_score
    progress = min(100.0, (score - current.min_score) / span * 100)
    return LevelProgress(current=current, next=nxt, progress=progress)


def streak_multiplier(win_streak: int) -> float:
    for threshold, mult in _STREAK_MULTIPLIERS:
        if win_streak >= threshold:
            return mult
    return 1.0


def level_bonus(level: PlayerLevel, base_reward: float) -> float:
    """Extra reward: 5% per level above Rookie."""
    return base_reward * (level.level - 1) * LEVEL_BONUS_PCT_PER_LEVEL / 100
