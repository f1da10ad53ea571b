"""Global test fixtures and utilities for questhabit tests"""
import pytest
from datetime import date, datetime, timezone
from typing import Optional

from questhabit.db.memory_store import InMemoryStore
from questhabit.events import EventBus
from questhabit.gamification.streak_system import StreakGapPolicy
from questhabit.models.habit import (
    Habit,
    HabitCategory,
    HabitDifficulty,
    HabitFrequency,
    Streak,
)
from questhabit.models.quest import ActiveQuest, QuestStatus
from questhabit.gamification.quest_lifecycle import daily_period, instantiate_quest
from questhabit.gamification.quest_pool import get_template
from questhabit.services.progression_service import ProgressionService


# 2026-10-19 is a Monday
MONDAY = date(2026, 10, 19)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant on a calendar day"""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


# ============================================================================
# User Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "user-123"


@pytest.fixture
def monday():
    return MONDAY


# ============================================================================
# Model Factories
# ============================================================================

@pytest.fixture
def make_habit(test_user_id):
    """Factory for habits owned by the test user"""
    def _make(
        name: str = "Read",
        difficulty: HabitDifficulty = HabitDifficulty.MEDIUM,
        category: HabitCategory = HabitCategory.LEARNING,
        frequency: Optional[HabitFrequency] = None,
        user_id: Optional[str] = None,
        **kwargs
    ) -> Habit:
        return Habit(
            user_id=user_id or test_user_id,
            name=name,
            difficulty=difficulty,
            category=category,
            frequency=frequency or HabitFrequency(),
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            **kwargs
        )
    return _make


@pytest.fixture
def make_streak(test_user_id):
    """Factory for streak records"""
    def _make(
        current: int = 0,
        best: Optional[int] = None,
        last: Optional[date] = None,
        habit_id: str = "habit-1"
    ) -> Streak:
        return Streak(
            habit_id=habit_id,
            user_id=test_user_id,
            current_streak=current,
            best_streak=best if best is not None else current,
            last_completed_date=last,
        )
    return _make


@pytest.fixture
def make_quest(test_user_id):
    """Factory for active quests built from catalogue templates"""
    def _make(
        template_id: str = "daily_complete_3",
        progress: int = 0,
        status: QuestStatus = QuestStatus.ACTIVE,
        now: Optional[datetime] = None
    ) -> ActiveQuest:
        now = now or at(MONDAY, 12)
        quest = instantiate_quest(get_template(template_id), test_user_id, daily_period(now), now)
        return quest.model_copy(update={"progress": progress, "status": status})
    return _make


# ============================================================================
# Engine Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Fresh in-memory store"""
    return InMemoryStore()


@pytest.fixture
def event_bus():
    """Event bus recording every published event"""
    bus = EventBus()
    bus.published = []
    bus.subscribe(bus.published.append)
    return bus


@pytest.fixture
def service(store, event_bus):
    """ProgressionService over the in-memory store with the reset gap policy"""
    return ProgressionService(
        store,
        events=event_bus,
        gap_policy=StreakGapPolicy.RESET,
        daily_quest_count=3
    )
