"""
XP and Leveling System

Pure functions mapping a completion to awarded XP and total XP to a level.

Leveling Curve:
- Levels 1-12 follow LEVEL_THRESHOLDS (roughly doubling)
- Level 13+ doubles the previous threshold each level

XP Award Rules:
- Base XP by difficulty: easy 10, medium 25, hard 50
- Streak bonus: +5% per streak day, capped at +50%
- Morning bonus: +10% when completed before 9 AM
"""

from dataclasses import dataclass
from typing import Any, Dict, Union
import logging
import math

from questhabit.exceptions import InvalidInputError
from questhabit.models.habit import HabitDifficulty

logger = logging.getLogger(__name__)

BASE_XP: Dict[HabitDifficulty, int] = {
    HabitDifficulty.EASY: 10,
    HabitDifficulty.MEDIUM: 25,
    HabitDifficulty.HARD: 50,
}

STREAK_BONUS_PER_DAY = 0.05
MAX_STREAK_BONUS = 0.5
MORNING_HOUR = 9
MORNING_BONUS = 0.1

LEVEL_THRESHOLDS = [
    0,       # Level 1
    100,     # Level 2
    250,     # Level 3
    500,     # Level 4
    1000,    # Level 5
    2000,    # Level 6
    4000,    # Level 7
    8000,    # Level 8
    16000,   # Level 9
    32000,   # Level 10
    64000,   # Level 11
    128000,  # Level 12
]


@dataclass(frozen=True)
class XPBreakdown:
    """XP awarded for one completion"""
    base_xp: int
    total_xp: int
    streak_bonus: float
    time_bonus: float

    @property
    def multiplier(self) -> float:
        return 1 + self.streak_bonus + self.time_bonus


@dataclass(frozen=True)
class LevelProgress:
    """Position of a total XP amount within its level"""
    current_level: int
    current_level_xp: int
    next_level_xp: int
    progress: float


def _round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; XP rounds .5 upwards
    return int(math.floor(value + 0.5))


def parse_difficulty(difficulty: Union[HabitDifficulty, str]) -> HabitDifficulty:
    """Coerce a difficulty value, raising InvalidInputError for unknown ones"""
    try:
        return HabitDifficulty(difficulty)
    except ValueError:
        raise InvalidInputError(
            f"'{difficulty}' is not one of {[d.value for d in HabitDifficulty]}",
            field="difficulty",
            value=difficulty
        )


def compute_completion_xp(
    difficulty: Union[HabitDifficulty, str],
    current_streak: int,
    completion_hour: int
) -> XPBreakdown:
    """
    Calculate XP earned for completing a habit

    Args:
        difficulty: Habit difficulty (easy/medium/hard)
        current_streak: Streak length before this completion
        completion_hour: Local hour of the completion (0-23)

    Returns:
        XPBreakdown with total XP and the bonus fractions applied
    """
    base_xp = BASE_XP[parse_difficulty(difficulty)]

    # Streak bonus: +5% per day, capped at +50%
    streak_bonus = min(max(current_streak, 0) * STREAK_BONUS_PER_DAY, MAX_STREAK_BONUS)

    # Morning bonus: +10% if before 9 AM
    time_bonus = MORNING_BONUS if completion_hour < MORNING_HOUR else 0.0

    total_xp = _round_half_up(base_xp * (1 + streak_bonus + time_bonus))

    return XPBreakdown(
        base_xp=base_xp,
        total_xp=total_xp,
        streak_bonus=streak_bonus,
        time_bonus=time_bonus,
    )


def level_threshold(level: int) -> int:
    """Total XP needed to reach a level (level 1 starts at 0)"""
    if level <= 1:
        return 0
    if level <= len(LEVEL_THRESHOLDS):
        return LEVEL_THRESHOLDS[level - 1]
    # After defined levels, keep doubling the last threshold
    return LEVEL_THRESHOLDS[-1] * 2 ** (level - len(LEVEL_THRESHOLDS))


def get_level(total_xp: int) -> int:
    """Highest level whose threshold does not exceed total_xp"""
    for index in range(len(LEVEL_THRESHOLDS) - 1, -1, -1):
        if total_xp >= LEVEL_THRESHOLDS[index]:
            level = index + 1
            break
    else:
        return 1

    if level < len(LEVEL_THRESHOLDS):
        return level

    while total_xp >= level_threshold(level + 1):
        level += 1
    return level


def get_xp_for_next_level(level: int) -> int:
    """Total XP threshold of the level after ``level``"""
    return level_threshold(level + 1)


def get_level_progress(total_xp: int) -> LevelProgress:
    """
    Get XP progress within the current level

    Negative totals are treated as 0 so current_level_xp is never negative.
    """
    total_xp = max(total_xp, 0)
    current_level = get_level(total_xp)
    current_threshold = level_threshold(current_level)
    next_threshold = get_xp_for_next_level(current_level)

    xp_into_level = total_xp - current_threshold
    xp_needed_for_level = next_threshold - current_threshold

    return LevelProgress(
        current_level=current_level,
        current_level_xp=xp_into_level,
        next_level_xp=xp_needed_for_level,
        progress=min(xp_into_level / xp_needed_for_level, 1.0),
    )


def check_level_up(previous_xp: int, new_xp: int) -> Dict[str, Any]:
    """
    Check if an XP change crossed a level boundary

    Returns:
        {
            'leveled_up': bool,
            'previous_level': int,
            'new_level': int
        }
    """
    previous_level = get_level(previous_xp)
    new_level = get_level(new_xp)

    if new_level > previous_level:
        logger.debug(f"Level up: {previous_level} -> {new_level} ({previous_xp} -> {new_xp} XP)")

    return {
        "leveled_up": new_level > previous_level,
        "previous_level": previous_level,
        "new_level": new_level,
    }
