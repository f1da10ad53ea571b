"""
Per-Habit Streak Tracking System

Pure bookkeeping over a habit's Streak record. Callers pass the current
streak in and persist the returned copy.

Features:
- Best streak tracking
- Frequency-aware gaps (a weekdays habit is not broken by a weekend)
- Streak protection (freeze days)
- Milestone detection (7, 14, 30, 100 days)

Gap policy:
- RESET: a missed due day resets the streak to 1, unless exactly one due
  day was missed and a streak freeze is available
- FORGIVE: every completion extends the streak, whatever the gap
"""

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Optional
import logging

from questhabit.exceptions import InvalidInputError
from questhabit.models.habit import HabitFrequency, Streak

logger = logging.getLogger(__name__)

STREAK_MILESTONES = (7, 14, 30, 100)


class StreakGapPolicy(str, Enum):
    """What happens to a streak when due days are missed"""
    RESET = "reset"
    FORGIVE = "forgive"


@dataclass(frozen=True)
class StreakUpdate:
    """Result of recording one completion against a streak"""
    streak: Streak
    freeze_used: bool = False
    was_reset: bool = False
    milestone: Optional[int] = None


def missed_due_days(frequency: HabitFrequency, last_date: date, today: date) -> int:
    """Count due days strictly between last_date and today"""
    missed = 0
    day = last_date + timedelta(days=1)
    while day < today:
        if frequency.is_due_on(day):
            missed += 1
        day += timedelta(days=1)
    return missed


def record_completion(
    streak: Streak,
    today: date,
    frequency: Optional[HabitFrequency] = None,
    freezes_available: int = 0,
    policy: StreakGapPolicy = StreakGapPolicy.RESET
) -> StreakUpdate:
    """
    Update a streak when the habit is completed

    Logic:
    - First completion: streak becomes 1
    - Same day as the last completion: no change
    - No due day missed (or FORGIVE policy): streak + 1
    - One due day missed and a freeze available: freeze consumed, streak + 1
    - Otherwise: streak reset to 1
    - best_streak is raised to current_streak when exceeded

    Args:
        streak: Current streak state (not mutated)
        today: Completion date
        frequency: Habit frequency; daily when omitted
        freezes_available: User's remaining streak freezes
        policy: Gap policy

    Returns:
        StreakUpdate with the new streak and what happened
    """
    frequency = frequency or HabitFrequency()
    last_date = streak.last_completed_date
    current = streak.current_streak
    freeze_used = False
    was_reset = False

    if last_date is None:
        current = 1
    elif last_date == today:
        # Already counted for today, no change
        return StreakUpdate(streak=streak)
    elif policy == StreakGapPolicy.FORGIVE or last_date > today:
        current += 1
    else:
        missed = missed_due_days(frequency, last_date, today)
        if missed == 0:
            current += 1
        elif missed == 1 and freezes_available > 0:
            current += 1
            freeze_used = True
            logger.info(f"Streak freeze protected habit {streak.habit_id} (1 missed day)")
        else:
            logger.info(
                f"Streak broken for habit {streak.habit_id}. "
                f"Was {current}, missed {missed} due days"
            )
            current = 1
            was_reset = True

    new_streak = streak.model_copy(update={
        "current_streak": current,
        "best_streak": max(streak.best_streak, current),
        "last_completed_date": today,
        "freeze_used_at": today if freeze_used else streak.freeze_used_at,
    })

    milestone = current if current in STREAK_MILESTONES else None

    return StreakUpdate(
        streak=new_streak,
        freeze_used=freeze_used,
        was_reset=was_reset,
        milestone=milestone,
    )


def refresh_streak(
    streak: Streak,
    today: date,
    frequency: Optional[HabitFrequency] = None,
    freezes_available: int = 0,
    policy: StreakGapPolicy = StreakGapPolicy.RESET
) -> Streak:
    """
    Reset a streak that can no longer be continued

    A streak survives while no due day between the last completion and
    today has been missed (today itself can still be completed), or while a
    single missed day can still be covered by a freeze.
    """
    if policy == StreakGapPolicy.FORGIVE:
        return streak
    if streak.current_streak == 0 or streak.last_completed_date is None:
        return streak
    if streak.last_completed_date >= today:
        return streak

    missed = missed_due_days(frequency or HabitFrequency(), streak.last_completed_date, today)
    if missed == 0 or (missed == 1 and freezes_available > 0):
        return streak

    logger.debug(f"Resetting stale streak for habit {streak.habit_id} ({missed} missed due days)")
    return streak.model_copy(update={"current_streak": 0})


def apply_streak_freeze(
    streak: Streak,
    today: date,
    frequency: Optional[HabitFrequency] = None
) -> Streak:
    """
    Use a freeze to cover a single missed due day

    The streak then continues as if the habit had been completed yesterday.
    """
    if streak.current_streak <= 0 or streak.last_completed_date is None:
        raise InvalidInputError(
            "There is no active streak to protect",
            field="habit_id",
            value=streak.habit_id
        )

    missed = missed_due_days(frequency or HabitFrequency(), streak.last_completed_date, today)
    if missed == 0:
        raise InvalidInputError(
            "Streak is not at risk",
            field="habit_id",
            value=streak.habit_id
        )
    if missed > 1:
        raise InvalidInputError(
            f"A freeze covers one missed day, {missed} were missed",
            field="habit_id",
            value=streak.habit_id
        )

    yesterday = today - timedelta(days=1)

    return streak.model_copy(update={
        "last_completed_date": yesterday,
        "freeze_used_at": today,
    })


def revert_completion(streak: Streak, previous_date: Optional[date], freeze_refunded: bool = False) -> Streak:
    """
    Undo the effect of the latest completion

    best_streak is left as is. A freeze the completion consumed is cleared
    along with it.
    """
    updates = {
        "current_streak": max(streak.current_streak - 1, 0),
        "last_completed_date": previous_date,
    }
    if freeze_refunded:
        updates["freeze_used_at"] = None

    return streak.model_copy(update=updates)


def consecutive_active_days(completion_dates: Iterable[date], today: date) -> int:
    """
    Number of consecutive days with at least one completion

    Counts back from today, or from yesterday when nothing is done yet today.
    """
    active = set(completion_dates)
    day = today if today in active else today - timedelta(days=1)
    count = 0
    while day in active:
        count += 1
        day -= timedelta(days=1)
    return count
