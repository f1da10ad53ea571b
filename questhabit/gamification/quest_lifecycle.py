"""
Quest Lifecycle

Quest instances move through a small state machine:

    active -> completed -> claimed
    active -> expired

Progress is driven by habit completion events. Each requirement kind has
exactly one progress rule; the rule table is checked against the
requirement union when this module is imported.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Type, get_args
import logging

from questhabit.exceptions import InvalidInputError, QuestNotReadyToClaimError
from questhabit.gamification.quest_pool import (
    DEFAULT_DAILY_COUNT,
    select_daily_quests,
    select_legendary_quest,
    select_weekly_quest,
)
from questhabit.models.quest import (
    ActiveQuest,
    CompleteAfterTimeRequirement,
    CompleteAnyRequirement,
    CompleteBeforeTimeRequirement,
    CompleteCategoryRequirement,
    CompleteDifficultyRequirement,
    ConsecutiveDaysRequirement,
    PerfectDayRequirement,
    QuestCompletion,
    QuestProgressEvent,
    QuestRequirementKind,
    QuestStatus,
    QuestTemplate,
    QuestTier,
    StreakReachRequirement,
    XpEarnRequirement,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestPeriod:
    """A rotation period: its key and the instant its quests expire"""
    key: str
    expires_at: datetime


@dataclass(frozen=True)
class QuestState:
    status: QuestStatus
    progress: int


# ============================================
# Periods
# ============================================

def _end_of_day(day: date, now: datetime) -> datetime:
    return datetime.combine(day, time.max, tzinfo=now.tzinfo)


def daily_period(now: datetime) -> QuestPeriod:
    """Today's period, ending at the last microsecond of the day"""
    today = now.date()
    return QuestPeriod(key=today.isoformat(), expires_at=_end_of_day(today, now))


def weekly_period(now: datetime) -> QuestPeriod:
    """This week's period: keyed by Monday, ending at the end of Sunday"""
    monday = now.date() - timedelta(days=now.weekday())
    sunday = monday + timedelta(days=6)
    return QuestPeriod(key=monday.isoformat(), expires_at=_end_of_day(sunday, now))


# ============================================
# Rotation
# ============================================

def instantiate_quest(
    template: QuestTemplate,
    user_id: str,
    period: QuestPeriod,
    now: datetime
) -> ActiveQuest:
    """Create a fresh active quest from a template"""
    return ActiveQuest(
        user_id=user_id,
        template_id=template.id,
        tier=template.tier,
        period_key=period.key,
        name=template.name,
        description=template.description,
        requirement=template.requirement,
        reward=template.reward,
        icon=template.icon,
        progress=0,
        status=QuestStatus.ACTIVE,
        activated_at=now,
        expires_at=period.expires_at,
    )


def plan_quest_rotation(
    user_id: str,
    now: datetime,
    is_pro: bool = False,
    daily_count: int = DEFAULT_DAILY_COUNT
) -> List[ActiveQuest]:
    """
    Quests the user should hold for the periods containing ``now``

    Daily quests for today, the weekly quest for this week and, for Pro
    users, the legendary quest for this week. The result is deterministic
    apart from generated ids, so the store's conditional insert makes
    rotation idempotent.
    """
    day = daily_period(now)
    week = weekly_period(now)

    planned = [
        instantiate_quest(template, user_id, day, now)
        for template in select_daily_quests(user_id, day.key, daily_count)
    ]
    planned.append(instantiate_quest(select_weekly_quest(user_id, week.key), user_id, week, now))

    if is_pro:
        planned.append(instantiate_quest(select_legendary_quest(user_id, week.key), user_id, week, now))

    return planned


def is_expired(quest: ActiveQuest, now: datetime) -> bool:
    return quest.status == QuestStatus.ACTIVE and now > quest.expires_at


def expire_stale_quests(quests: Iterable[ActiveQuest], now: datetime) -> List[ActiveQuest]:
    """Expired copies of the active quests whose deadline has passed"""
    return [
        quest.model_copy(update={"status": QuestStatus.EXPIRED})
        for quest in quests
        if is_expired(quest, now)
    ]


# ============================================
# Progress Rules
# ============================================

ProgressRule = Callable[[ActiveQuest, QuestProgressEvent], int]


def _increment_if(matches: Callable[[ActiveQuest, QuestProgressEvent], bool]) -> ProgressRule:
    def rule(quest: ActiveQuest, event: QuestProgressEvent) -> int:
        return quest.progress + 1 if matches(quest, event) else quest.progress
    return rule


def _before_time(quest: ActiveQuest, event: QuestProgressEvent) -> bool:
    return event.completion_hour is not None and event.completion_hour < quest.requirement.hour


def _after_time(quest: ActiveQuest, event: QuestProgressEvent) -> bool:
    return event.completion_hour is not None and event.completion_hour >= quest.requirement.hour


def _perfect_day(quest: ActiveQuest, event: QuestProgressEvent) -> bool:
    return (
        event.total_completed_today is not None
        and event.total_due_today is not None
        and event.total_due_today > 0
        and event.total_completed_today >= event.total_due_today
    )


def _streak_reach(quest: ActiveQuest, event: QuestProgressEvent) -> int:
    # Binary: either the streak is reached or not
    if event.current_streak is not None and event.current_streak >= quest.target:
        return quest.target
    return quest.progress


def _xp_earn(quest: ActiveQuest, event: QuestProgressEvent) -> int:
    if event.xp_earned is None:
        return quest.progress
    return quest.progress + event.xp_earned


def _consecutive_days(quest: ActiveQuest, event: QuestProgressEvent) -> int:
    if event.consecutive_days is None:
        return quest.progress
    return max(quest.progress, event.consecutive_days)


_RULES: Dict[Type, ProgressRule] = {
    CompleteAnyRequirement: _increment_if(lambda quest, event: True),
    CompleteCategoryRequirement: _increment_if(
        lambda quest, event: event.habit_category == quest.requirement.category
    ),
    CompleteBeforeTimeRequirement: _increment_if(_before_time),
    CompleteAfterTimeRequirement: _increment_if(_after_time),
    PerfectDayRequirement: _increment_if(_perfect_day),
    StreakReachRequirement: _streak_reach,
    XpEarnRequirement: _xp_earn,
    CompleteDifficultyRequirement: _increment_if(
        lambda quest, event: event.habit_difficulty == quest.requirement.difficulty
    ),
    ConsecutiveDaysRequirement: _consecutive_days,
}

_missing = set(get_args(QuestRequirementKind)) - set(_RULES)
if _missing:
    raise RuntimeError(f"Quest requirements without a progress rule: {sorted(t.__name__ for t in _missing)}")


def evaluate_quest_progress(quest: ActiveQuest, event: QuestProgressEvent) -> int:
    """
    Progress a quest would have after a habit completion event

    Never lower than the current progress and never above the target.
    Quests that are not active keep their progress.
    """
    if quest.status != QuestStatus.ACTIVE:
        return quest.progress

    candidate = _RULES[type(quest.requirement)](quest, event)
    return min(max(candidate, quest.progress), quest.target)


def apply_progress(quest: ActiveQuest, candidate: int, now: datetime) -> ActiveQuest:
    """
    Move an active quest's progress forward

    Progress is clamped to the target; reaching it completes the quest.
    Returns the quest unchanged when nothing moves.
    """
    if quest.status != QuestStatus.ACTIVE or candidate <= quest.progress:
        return quest

    progress = min(candidate, quest.target)
    update = {"progress": progress}
    if progress >= quest.target:
        update["status"] = QuestStatus.COMPLETED
        update["completed_at"] = now
        logger.info(f"Quest {quest.template_id} completed for user {quest.user_id}")

    return quest.model_copy(update=update)


def advance_quest_lifecycle(quest: ActiveQuest, now: datetime) -> QuestState:
    """
    Time-driven transition of a quest

    An active quest past its deadline expires; an active quest at its
    target completes; anything else stays as it is.
    """
    if quest.status == QuestStatus.ACTIVE:
        if now > quest.expires_at:
            return QuestState(status=QuestStatus.EXPIRED, progress=quest.progress)
        if quest.progress >= quest.target:
            return QuestState(status=QuestStatus.COMPLETED, progress=quest.progress)
    return QuestState(status=quest.status, progress=quest.progress)


def claim_quest(quest: ActiveQuest, now: datetime) -> Tuple[ActiveQuest, QuestCompletion]:
    """
    Claim a completed quest's reward

    Returns:
        (claimed quest, completion record to append)

    Raises:
        QuestNotReadyToClaimError: Quest is not in the completed state
    """
    if quest.status != QuestStatus.COMPLETED:
        raise QuestNotReadyToClaimError(quest_id=quest.id, status=quest.status.value, user_id=quest.user_id)

    claimed = quest.model_copy(update={"status": QuestStatus.CLAIMED, "claimed_at": now})
    completion = QuestCompletion(
        user_id=quest.user_id,
        quest_id=quest.id,
        quest_template_id=quest.template_id,
        quest_name=quest.name,
        tier=quest.tier,
        xp_earned=quest.reward.xp,
        streak_freezes_earned=quest.reward.streak_freezes,
        badge_earned=quest.reward.badge,
        completed_at=now,
    )
    return claimed, completion


def validate_manual_progress(progress: Optional[int]) -> int:
    """Progress values set by hand must be non-negative integers"""
    if progress is None or isinstance(progress, bool) or not isinstance(progress, int) or progress < 0:
        raise InvalidInputError("Quest progress must be a non-negative integer", field="progress", value=progress)
    return progress


def tier_sort_key(quest: ActiveQuest) -> Tuple[int, datetime]:
    """Order quests daily, weekly, legendary, then by activation"""
    return (list(QuestTier).index(quest.tier), quest.activated_at)
