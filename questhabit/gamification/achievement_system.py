"""
Achievement System

A fixed registry of named predicates evaluated against a snapshot of the
user's state. Evaluation is pure: persisting unlocks and awarding their XP
bonus is the progression service's job.

Categories:
- Milestones (first completion, levels, habit count)
- Consistency (streaks, perfect days and weeks)
- Time of day (early bird, night owl)
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Sequence
import logging

from questhabit.models.achievement import AchievementDefinition, AchievementType, UserAchievement
from questhabit.models.habit import Completion, HabitWithStreak

logger = logging.getLogger(__name__)

EARLY_BIRD_HOUR = 6
NIGHT_OWL_HOUR = 22


ACHIEVEMENTS: Dict[AchievementType, AchievementDefinition] = {
    definition.type: definition
    for definition in [
        AchievementDefinition(
            type=AchievementType.FIRST_STEP,
            name="First Step",
            description="Complete your first habit",
            icon="🚀",
            xp_bonus=50,
        ),
        AchievementDefinition(
            type=AchievementType.WEEK_WARRIOR,
            name="Week Warrior",
            description="Maintain a 7-day streak",
            icon="🔥",
            xp_bonus=100,
        ),
        AchievementDefinition(
            type=AchievementType.FORTNIGHT_FIGHTER,
            name="Fortnight Fighter",
            description="Maintain a 14-day streak",
            icon="⚔️",
            xp_bonus=200,
        ),
        AchievementDefinition(
            type=AchievementType.MONTHLY_MASTER,
            name="Monthly Master",
            description="Maintain a 30-day streak",
            icon="👑",
            xp_bonus=500,
        ),
        AchievementDefinition(
            type=AchievementType.EARLY_BIRD,
            name="Early Bird",
            description="Complete a habit before 6 AM",
            icon="🌅",
            xp_bonus=25,
        ),
        AchievementDefinition(
            type=AchievementType.NIGHT_OWL,
            name="Night Owl",
            description="Complete a habit after 10 PM",
            icon="🦉",
            xp_bonus=25,
        ),
        AchievementDefinition(
            type=AchievementType.PERFECT_DAY,
            name="Perfect Day",
            description="Complete all habits in a day",
            icon="✨",
            xp_bonus=50,
        ),
        AchievementDefinition(
            type=AchievementType.PERFECT_WEEK,
            name="Perfect Week",
            description="7 consecutive perfect days",
            icon="🏆",
            xp_bonus=250,
        ),
        AchievementDefinition(
            type=AchievementType.HABIT_COLLECTOR,
            name="Habit Collector",
            description="Create 5 habits",
            icon="📦",
            xp_bonus=50,
        ),
        AchievementDefinition(
            type=AchievementType.LEVEL_5,
            name="Level 5",
            description="Reach level 5",
            icon="⭐",
            xp_bonus=100,
        ),
        AchievementDefinition(
            type=AchievementType.LEVEL_10,
            name="Level 10",
            description="Reach level 10",
            icon="🌟",
            xp_bonus=250,
        ),
    ]
}


@dataclass(frozen=True)
class AchievementContext:
    """Aggregated user state the predicates are evaluated against"""
    habits: Sequence[HabitWithStreak]
    completions: Sequence[Completion]
    unlocked_achievements: Sequence[UserAchievement]
    total_xp: int
    level: int
    completed_today: int
    total_habits_today: int
    current_hour: int
    today: date = field(default_factory=date.today)


AchievementChecker = Callable[[AchievementContext], bool]


def _any_streak_at_least(days: int) -> AchievementChecker:
    def check(ctx: AchievementContext) -> bool:
        return any(habit.current_streak >= days for habit in ctx.habits)
    return check


def _completed_today_where(hour_matches: Callable[[int], bool]) -> AchievementChecker:
    def check(ctx: AchievementContext) -> bool:
        return any(
            c.completed_date == ctx.today and hour_matches(c.completed_at.hour)
            for c in ctx.completions
        )
    return check


def _perfect_day(ctx: AchievementContext) -> bool:
    return ctx.total_habits_today > 0 and ctx.completed_today == ctx.total_habits_today


def _perfect_week(ctx: AchievementContext) -> bool:
    # Simplified: a completion on each of the last 7 days
    completed_days = {c.completed_date for c in ctx.completions}
    return all(ctx.today - timedelta(days=offset) in completed_days for offset in range(7))


_CHECKERS: Dict[AchievementType, AchievementChecker] = {
    AchievementType.FIRST_STEP: lambda ctx: len(ctx.completions) >= 1,
    AchievementType.WEEK_WARRIOR: _any_streak_at_least(7),
    AchievementType.FORTNIGHT_FIGHTER: _any_streak_at_least(14),
    AchievementType.MONTHLY_MASTER: _any_streak_at_least(30),
    AchievementType.EARLY_BIRD: _completed_today_where(lambda hour: hour < EARLY_BIRD_HOUR),
    AchievementType.NIGHT_OWL: _completed_today_where(lambda hour: hour >= NIGHT_OWL_HOUR),
    AchievementType.PERFECT_DAY: _perfect_day,
    AchievementType.PERFECT_WEEK: _perfect_week,
    AchievementType.HABIT_COLLECTOR: lambda ctx: sum(1 for h in ctx.habits if not h.is_archived) >= 5,
    AchievementType.LEVEL_5: lambda ctx: ctx.level >= 5,
    AchievementType.LEVEL_10: lambda ctx: ctx.level >= 10,
}

_missing = set(AchievementType) - set(_CHECKERS)
if _missing:
    raise RuntimeError(f"Achievement types without a checker: {sorted(t.value for t in _missing)}")


def evaluate_achievements(ctx: AchievementContext) -> List[AchievementType]:
    """
    Check for newly unlocked achievements

    Returns every registered type not already unlocked whose predicate holds,
    in registry order. Does not mutate the context.
    """
    already_unlocked = {a.achievement_type for a in ctx.unlocked_achievements}
    newly_unlocked = []

    for achievement_type, checker in _CHECKERS.items():
        if achievement_type in already_unlocked:
            continue
        if checker(ctx):
            newly_unlocked.append(achievement_type)

    if newly_unlocked:
        logger.debug(f"Achievements now satisfied: {[t.value for t in newly_unlocked]}")

    return newly_unlocked


def get_achievement_info(achievement_type: AchievementType) -> AchievementDefinition:
    """Display data and XP bonus for an achievement"""
    return ACHIEVEMENTS[AchievementType(achievement_type)]


def calculate_achievement_xp(achievements: Iterable[UserAchievement]) -> int:
    """Total XP bonus earned from unlocked achievements"""
    return sum(ACHIEVEMENTS[a.achievement_type].xp_bonus for a in achievements)
