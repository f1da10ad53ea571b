"""Unit tests for the in-memory progression store"""
import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone

from questhabit.exceptions import (
    AlreadyCompletedTodayError,
    CompletionNotFoundError,
    InvalidInputError,
    QuestNotFoundError,
    QuestNotReadyToClaimError,
)
from questhabit.gamification.quest_lifecycle import claim_quest
from questhabit.models.achievement import AchievementType, UserAchievement
from questhabit.models.habit import Completion
from questhabit.models.quest import QuestStatus

TODAY = date(2026, 10, 19)


def completion(user_id: str, habit_id: str = "habit-1", xp: int = 25, day: date = TODAY) -> Completion:
    return Completion(
        habit_id=habit_id,
        user_id=user_id,
        completed_at=datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc),
        completed_date=day,
        xp_earned=xp,
    )


# ============================================================================
# Profile Tests
# ============================================================================

@pytest.mark.asyncio
async def test_get_profile_creates_default(store, test_user_id):
    """Test unknown users get a fresh level 1 profile"""
    profile = await store.get_profile(test_user_id)

    assert profile.total_xp == 0
    assert profile.level == 1
    assert profile.timezone == "UTC"


@pytest.mark.asyncio
async def test_save_profile_derives_level(store, test_user_id):
    """Test level is recomputed from total XP on save"""
    profile = await store.get_profile(test_user_id)

    saved = await store.save_profile(profile.model_copy(update={"total_xp": 1000, "level": 1}))

    assert saved.level == 5
    assert (await store.get_profile(test_user_id)).level == 5


# ============================================================================
# Completion Tests
# ============================================================================

@pytest.mark.asyncio
async def test_record_completion_updates_profile(store, test_user_id, make_streak):
    """Test XP, level and streak are written together"""
    streak = make_streak(current=1, last=TODAY)

    profile = await store.record_completion(completion(test_user_id, xp=120), streak)

    assert profile.total_xp == 120
    assert profile.level == 2
    assert (await store.get_streak(test_user_id, "habit-1")).current_streak == 1
    assert await store.get_completion(test_user_id, "habit-1", TODAY) is not None


@pytest.mark.asyncio
async def test_record_completion_twice_same_day(store, test_user_id, make_streak):
    """Test the second completion for a date is rejected and awards nothing"""
    streak = make_streak(current=1, last=TODAY)
    await store.record_completion(completion(test_user_id), streak)

    with pytest.raises(AlreadyCompletedTodayError):
        await store.record_completion(completion(test_user_id), streak)

    assert (await store.get_profile(test_user_id)).total_xp == 25


@pytest.mark.asyncio
async def test_concurrent_completions_award_once(store, test_user_id, make_streak):
    """Test racing completions for the same habit and date award XP once"""
    streak = make_streak(current=1, last=TODAY)

    results = await asyncio.gather(
        store.record_completion(completion(test_user_id), streak),
        store.record_completion(completion(test_user_id), streak),
        return_exceptions=True,
    )

    assert sum(isinstance(r, AlreadyCompletedTodayError) for r in results) == 1
    assert (await store.get_profile(test_user_id)).total_xp == 25


@pytest.mark.asyncio
async def test_record_completion_consumes_freeze(store, test_user_id, make_streak):
    """Test freezes used by a completion are deducted"""
    profile = await store.get_profile(test_user_id)
    await store.save_profile(profile.model_copy(update={"streak_freezes_remaining": 2}))

    updated = await store.record_completion(completion(test_user_id), make_streak(current=3, last=TODAY), freezes_used=1)

    assert updated.streak_freezes_remaining == 1


@pytest.mark.asyncio
async def test_revert_completion(store, test_user_id, make_streak):
    """Test undo removes the completion and its XP"""
    done = completion(test_user_id, xp=40)
    await store.record_completion(done, make_streak(current=1, last=TODAY))

    profile = await store.revert_completion(done, make_streak(current=0))

    assert profile.total_xp == 0
    assert await store.get_completion(test_user_id, "habit-1", TODAY) is None

    with pytest.raises(CompletionNotFoundError):
        await store.revert_completion(done, make_streak(current=0))


@pytest.mark.asyncio
async def test_revert_completion_refunds_freeze(store, test_user_id, make_streak):
    """Test undoing a completion that used a freeze gives it back"""
    profile = await store.get_profile(test_user_id)
    await store.save_profile(profile.model_copy(update={"streak_freezes_remaining": 1}))
    done = completion(test_user_id).model_copy(update={"freeze_used": True})
    await store.record_completion(done, make_streak(current=4, last=TODAY), freezes_used=1)

    reverted = await store.revert_completion(done, make_streak(current=3))

    assert reverted.streak_freezes_remaining == 1


@pytest.mark.asyncio
async def test_list_completions_since(store, test_user_id, make_streak):
    """Test filtering completions by date"""
    old = completion(test_user_id, day=TODAY - timedelta(days=10))
    new = completion(test_user_id, habit_id="habit-2")
    await store.record_completion(old, make_streak(current=1, last=old.completed_date))
    await store.record_completion(new, make_streak(current=1, last=TODAY, habit_id="habit-2"))

    assert len(await store.list_completions(test_user_id)) == 2
    assert [c.id for c in await store.list_completions(test_user_id, since=TODAY - timedelta(days=1))] == [new.id]


# ============================================================================
# Habit Tests
# ============================================================================

@pytest.mark.asyncio
async def test_habits_scoped_to_owner(store, make_habit):
    """Test other users' habits are invisible"""
    mine = await store.save_habit(make_habit(name="Mine"))
    await store.save_habit(make_habit(name="Theirs", user_id="someone-else"))
    await store.save_habit(make_habit(name="Old", is_archived=True))

    assert await store.get_habit("someone-else", mine.id) is None
    assert [h.name for h in await store.list_habits(mine.user_id)] == ["Mine"]
    assert len(await store.list_habits(mine.user_id, include_archived=True)) == 2


# ============================================================================
# Achievement & Freeze Tests
# ============================================================================

@pytest.mark.asyncio
async def test_unlock_achievement_once(store, test_user_id):
    """Test an achievement and its bonus are granted once"""
    achievement = UserAchievement(
        user_id=test_user_id,
        achievement_type=AchievementType.FIRST_STEP,
        unlocked_at=datetime(2026, 10, 19, tzinfo=timezone.utc),
    )

    assert await store.unlock_achievement(achievement, xp_bonus=50) is True
    assert await store.unlock_achievement(achievement, xp_bonus=50) is False
    assert (await store.get_profile(test_user_id)).total_xp == 50
    assert len(await store.list_achievements(test_user_id)) == 1


@pytest.mark.asyncio
async def test_use_streak_freeze_requires_balance(store, test_user_id, make_streak):
    """Test freezes cannot go below zero"""
    with pytest.raises(InvalidInputError):
        await store.use_streak_freeze(make_streak(current=3))

    profile = await store.get_profile(test_user_id)
    await store.save_profile(profile.model_copy(update={"streak_freezes_remaining": 1}))

    assert (await store.use_streak_freeze(make_streak(current=3))).streak_freezes_remaining == 0


# ============================================================================
# Quest Tests
# ============================================================================

@pytest.mark.asyncio
async def test_insert_quests_if_absent(store, make_quest):
    """Test the same template and period is inserted once"""
    first = make_quest()
    duplicate = make_quest()

    assert await store.insert_quests_if_absent([first]) == [first]
    assert await store.insert_quests_if_absent([duplicate]) == []
    assert len(await store.list_quests(first.user_id)) == 1


@pytest.mark.asyncio
async def test_update_quest_progress_monotonic(store, make_quest):
    """Test stored progress never decreases"""
    quest = make_quest(progress=2)
    await store.insert_quests_if_absent([quest])

    assert await store.update_quest_progress(quest.model_copy(update={"progress": 1})) is True
    assert (await store.get_quest(quest.user_id, quest.id)).progress == 2


@pytest.mark.asyncio
async def test_update_quest_progress_ignores_finished_quests(store, make_quest):
    """Test completed quests are not rewritten"""
    quest = make_quest(progress=3, status=QuestStatus.COMPLETED)
    await store.insert_quests_if_absent([quest])

    assert await store.update_quest_progress(quest.model_copy(update={"progress": 3})) is False


@pytest.mark.asyncio
async def test_expire_quests(store, make_quest):
    """Test active quests past their deadline are expired"""
    quest = make_quest()
    await store.insert_quests_if_absent([quest])

    expired = await store.expire_quests(quest.user_id, quest.expires_at + timedelta(seconds=1))

    assert [q.id for q in expired] == [quest.id]
    assert (await store.get_quest(quest.user_id, quest.id)).status == QuestStatus.EXPIRED
    assert await store.list_quests(quest.user_id, statuses=[QuestStatus.ACTIVE]) == []


@pytest.mark.asyncio
async def test_record_quest_claim_once(store, make_quest):
    """Test a quest reward is granted exactly once"""
    quest = make_quest("legendary_perfect_week", progress=7, status=QuestStatus.COMPLETED)
    await store.insert_quests_if_absent([quest])
    claimed, record = claim_quest(quest, quest.activated_at)

    profile = await store.record_quest_claim(claimed, record)

    assert profile.total_xp == 750
    assert profile.streak_freezes_remaining == 2
    assert (await store.list_quest_completions(quest.user_id))[0].badge_earned == "perfectionist"

    with pytest.raises(QuestNotReadyToClaimError):
        await store.record_quest_claim(claimed, record)
    assert (await store.get_profile(quest.user_id)).total_xp == 750


@pytest.mark.asyncio
async def test_record_quest_claim_unknown_quest(store, make_quest):
    """Test claiming a quest the store does not hold"""
    quest = make_quest(progress=3, status=QuestStatus.COMPLETED)
    claimed, record = claim_quest(quest, quest.activated_at)

    with pytest.raises(QuestNotFoundError):
        await store.record_quest_claim(claimed, record)
