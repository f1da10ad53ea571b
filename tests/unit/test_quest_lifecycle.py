"""Unit tests for quest periods, rotation, progress rules and claiming"""
import pytest
from datetime import date, datetime, timedelta, timezone

from questhabit.exceptions import InvalidInputError, QuestNotReadyToClaimError
from questhabit.gamification.quest_lifecycle import (
    advance_quest_lifecycle,
    apply_progress,
    claim_quest,
    daily_period,
    evaluate_quest_progress,
    expire_stale_quests,
    plan_quest_rotation,
    tier_sort_key,
    validate_manual_progress,
    weekly_period,
)
from questhabit.models.habit import HabitCategory, HabitDifficulty
from questhabit.models.quest import QuestProgressEvent, QuestStatus, QuestTier

# 2026-10-19 is a Monday
MONDAY = date(2026, 10, 19)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def completion_event(**kwargs) -> QuestProgressEvent:
    defaults = {
        "habit_category": HabitCategory.LEARNING,
        "habit_difficulty": HabitDifficulty.MEDIUM,
        "completion_hour": 12,
        "total_completed_today": 1,
        "total_due_today": 3,
        "current_streak": 1,
        "xp_earned": 25,
        "consecutive_days": 1,
    }
    defaults.update(kwargs)
    return QuestProgressEvent(**defaults)


# ============================================================================
# Period Tests
# ============================================================================

def test_daily_period():
    """Test daily period ends at the last instant of the day"""
    period = daily_period(at(MONDAY, 15))

    assert period.key == "2026-10-19"
    assert period.expires_at.date() == MONDAY
    assert period.expires_at > at(MONDAY, 23, 59)


def test_weekly_period_keyed_by_monday():
    """Test every day of the week maps to the same Monday key"""
    for offset in range(7):
        period = weekly_period(at(MONDAY + timedelta(days=offset), 10))
        assert period.key == "2026-10-19"
        assert period.expires_at.date() == date(2026, 10, 25)


def test_weekly_period_on_sunday_belongs_to_previous_monday():
    """Test Sunday closes the week started the previous Monday"""
    assert weekly_period(at(MONDAY - timedelta(days=1), 10)).key == "2026-10-12"


# ============================================================================
# Rotation Tests
# ============================================================================

def test_plan_rotation_free_user(test_user_id):
    """Test free users get daily quests plus one weekly quest"""
    quests = plan_quest_rotation(test_user_id, at(MONDAY, 8))

    tiers = [q.tier for q in quests]
    assert tiers.count(QuestTier.DAILY) == 3
    assert tiers.count(QuestTier.WEEKLY) == 1
    assert QuestTier.LEGENDARY not in tiers
    assert all(q.status == QuestStatus.ACTIVE and q.progress == 0 for q in quests)


def test_plan_rotation_pro_user(test_user_id):
    """Test Pro users also get a legendary quest for the week"""
    quests = plan_quest_rotation(test_user_id, at(MONDAY, 8), is_pro=True)

    legendary = [q for q in quests if q.tier == QuestTier.LEGENDARY]
    assert len(legendary) == 1
    assert legendary[0].period_key == "2026-10-19"


def test_plan_rotation_is_deterministic(test_user_id):
    """Test two plans for the same day pick the same templates"""
    first = plan_quest_rotation(test_user_id, at(MONDAY, 8))
    second = plan_quest_rotation(test_user_id, at(MONDAY, 20))

    assert [q.template_id for q in first] == [q.template_id for q in second]
    assert [q.period_key for q in first] == [q.period_key for q in second]


def test_expire_stale_quests(make_quest):
    """Test only active quests past their deadline expire"""
    active = make_quest()
    completed = make_quest(progress=3, status=QuestStatus.COMPLETED)
    tomorrow = at(MONDAY + timedelta(days=1), 0, 1)

    expired = expire_stale_quests([active, completed], tomorrow)

    assert [q.id for q in expired] == [active.id]
    assert expired[0].status == QuestStatus.EXPIRED
    assert expire_stale_quests([active], at(MONDAY, 23, 59)) == []


# ============================================================================
# Progress Rule Tests
# ============================================================================

def test_complete_any_increments(make_quest):
    """Test any completion counts"""
    quest = make_quest("daily_complete_3", progress=1)
    assert evaluate_quest_progress(quest, completion_event()) == 2


def test_category_rule(make_quest):
    """Test category quests count only matching habits"""
    quest = make_quest("daily_health_focus")

    assert evaluate_quest_progress(quest, completion_event(habit_category=HabitCategory.HEALTH)) == 1
    assert evaluate_quest_progress(quest, completion_event(habit_category=HabitCategory.LEARNING)) == 0


def test_difficulty_rule(make_quest):
    """Test difficulty quests count only matching habits"""
    quest = make_quest("daily_hard_mode")

    assert evaluate_quest_progress(quest, completion_event(habit_difficulty=HabitDifficulty.HARD)) == 1
    assert evaluate_quest_progress(quest, completion_event()) == 0


def test_before_time_rule(make_quest):
    """Test before-time quests need an hour strictly before the limit"""
    quest = make_quest("daily_early_bird")  # before 9

    assert evaluate_quest_progress(quest, completion_event(completion_hour=8)) == 1
    assert evaluate_quest_progress(quest, completion_event(completion_hour=9)) == 0
    assert evaluate_quest_progress(quest, completion_event(completion_hour=None)) == 0


def test_after_time_rule(make_quest):
    """Test after-time quests include the limit hour"""
    quest = make_quest("daily_night_owl")  # 22 or later

    assert evaluate_quest_progress(quest, completion_event(completion_hour=22)) == 1
    assert evaluate_quest_progress(quest, completion_event(completion_hour=21)) == 0


def test_perfect_day_rule(make_quest):
    """Test perfect day needs every due habit done"""
    quest = make_quest("daily_perfect")

    assert evaluate_quest_progress(quest, completion_event(total_completed_today=3, total_due_today=3)) == 1
    assert evaluate_quest_progress(quest, completion_event(total_completed_today=2, total_due_today=3)) == 0
    assert evaluate_quest_progress(quest, completion_event(total_completed_today=0, total_due_today=0)) == 0


def test_streak_reach_is_binary(make_quest):
    """Test streak quests jump straight to the target"""
    quest = make_quest("weekly_streak_7")

    assert evaluate_quest_progress(quest, completion_event(current_streak=6)) == 0
    assert evaluate_quest_progress(quest, completion_event(current_streak=9)) == 7


def test_xp_earn_accumulates_and_clamps(make_quest):
    """Test XP quests add earned XP up to the target"""
    quest = make_quest("daily_xp_hunter", progress=60)  # target 100

    assert evaluate_quest_progress(quest, completion_event(xp_earned=25)) == 85
    assert evaluate_quest_progress(quest, completion_event(xp_earned=75)) == 100


def test_consecutive_days_takes_max(make_quest):
    """Test consecutive-day quests track the longest run and never drop"""
    quest = make_quest("weekly_consistency", progress=4)

    assert evaluate_quest_progress(quest, completion_event(consecutive_days=5)) == 5
    assert evaluate_quest_progress(quest, completion_event(consecutive_days=2)) == 4


def test_non_active_quest_unchanged(make_quest):
    """Test completed, claimed and expired quests do not progress"""
    for status in (QuestStatus.COMPLETED, QuestStatus.CLAIMED, QuestStatus.EXPIRED):
        quest = make_quest(progress=1, status=status)
        assert evaluate_quest_progress(quest, completion_event()) == 1


# ============================================================================
# Apply & Lifecycle Tests
# ============================================================================

def test_apply_progress_completes_at_target(make_quest):
    """Test reaching the target completes the quest"""
    quest = make_quest(progress=2)
    now = at(MONDAY, 13)

    updated = apply_progress(quest, 3, now)

    assert updated.progress == 3
    assert updated.status == QuestStatus.COMPLETED
    assert updated.completed_at == now


def test_apply_progress_clamps_above_target(make_quest):
    """Test progress never exceeds the target"""
    assert apply_progress(make_quest(), 10, at(MONDAY, 13)).progress == 3


def test_apply_progress_never_decreases(make_quest):
    """Test a lower candidate returns the same quest"""
    quest = make_quest(progress=2)

    assert apply_progress(quest, 1, at(MONDAY, 13)) is quest
    assert apply_progress(quest, 2, at(MONDAY, 13)) is quest


def test_advance_lifecycle(make_quest):
    """Test time-driven transitions"""
    tomorrow = at(MONDAY + timedelta(days=1), 1)

    assert advance_quest_lifecycle(make_quest(), tomorrow).status == QuestStatus.EXPIRED
    assert advance_quest_lifecycle(make_quest(progress=3), at(MONDAY, 13)).status == QuestStatus.COMPLETED
    assert advance_quest_lifecycle(make_quest(progress=1), at(MONDAY, 13)).status == QuestStatus.ACTIVE

    claimed = make_quest(progress=3, status=QuestStatus.CLAIMED)
    assert advance_quest_lifecycle(claimed, tomorrow).status == QuestStatus.CLAIMED


# ============================================================================
# Claim Tests
# ============================================================================

def test_claim_completed_quest(make_quest):
    """Test claiming produces the claimed quest and its completion record"""
    quest = make_quest("daily_complete_3", progress=3, status=QuestStatus.COMPLETED)
    now = at(MONDAY, 18)

    claimed, completion = claim_quest(quest, now)

    assert claimed.status == QuestStatus.CLAIMED
    assert claimed.claimed_at == now
    assert completion.quest_id == quest.id
    assert completion.quest_template_id == "daily_complete_3"
    assert completion.xp_earned == 50
    assert completion.tier == QuestTier.DAILY


def test_claim_active_quest_fails(make_quest):
    """Test claiming an unfinished quest raises"""
    with pytest.raises(QuestNotReadyToClaimError) as exc_info:
        claim_quest(make_quest(progress=1), at(MONDAY, 18))

    assert exc_info.value.status == "active"


def test_claim_twice_fails(make_quest):
    """Test a claimed quest cannot be claimed again"""
    quest = make_quest(progress=3, status=QuestStatus.COMPLETED)
    claimed, _ = claim_quest(quest, at(MONDAY, 18))

    with pytest.raises(QuestNotReadyToClaimError):
        claim_quest(claimed, at(MONDAY, 19))


# ============================================================================
# Misc
# ============================================================================

@pytest.mark.parametrize("value", [None, -1, 1.5, "3", True])
def test_validate_manual_progress_rejects(value):
    """Test invalid manual progress values"""
    with pytest.raises(InvalidInputError):
        validate_manual_progress(value)


def test_validate_manual_progress_accepts_zero():
    assert validate_manual_progress(0) == 0


def test_tier_sort_key(test_user_id):
    """Test quests order daily, weekly, legendary"""
    quests = plan_quest_rotation(test_user_id, at(MONDAY, 8), is_pro=True)

    ordered = sorted(reversed(quests), key=tier_sort_key)

    assert [q.tier for q in ordered][-2:] == [QuestTier.WEEKLY, QuestTier.LEGENDARY]
    assert ordered[0].tier == QuestTier.DAILY
