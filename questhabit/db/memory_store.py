"""
In-memory ProgressionStore

Used by the tests and for local runs without PostgreSQL. Enforces the same
uniqueness rules as the database schema; a single asyncio lock makes every
write atomic.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from questhabit.config import DEFAULT_TIMEZONE
from questhabit.db.store import ProgressionStore
from questhabit.exceptions import (
    AlreadyCompletedTodayError,
    CompletionNotFoundError,
    InvalidInputError,
    QuestNotFoundError,
    QuestNotReadyToClaimError,
)
from questhabit.gamification.quest_lifecycle import expire_stale_quests, tier_sort_key
from questhabit.gamification.xp_system import get_level
from questhabit.models.achievement import AchievementType, UserAchievement
from questhabit.models.habit import Completion, Habit, Streak
from questhabit.models.quest import ActiveQuest, QuestCompletion, QuestStatus
from questhabit.models.user import UserProgress

logger = logging.getLogger(__name__)


class InMemoryStore(ProgressionStore):
    """Dictionary-backed store"""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._profiles: Dict[str, UserProgress] = {}
        self._habits: Dict[str, Habit] = {}
        self._streaks: Dict[str, Streak] = {}
        self._completions: Dict[Tuple[str, date], Completion] = {}
        self._achievements: Dict[Tuple[str, AchievementType], UserAchievement] = {}
        self._quests: Dict[str, ActiveQuest] = {}
        self._quest_keys: Dict[Tuple[str, str, str, str], str] = {}
        self._quest_completions: List[QuestCompletion] = []

    # ==========================================
    # Profiles
    # ==========================================

    def _profile(self, user_id: str) -> UserProgress:
        if user_id not in self._profiles:
            self._profiles[user_id] = UserProgress(user_id=user_id, timezone=DEFAULT_TIMEZONE)
            logger.info(f"Created new progress record for user {user_id}")
        return self._profiles[user_id]

    def _adjust_profile(self, user_id: str, xp_delta: int = 0, freezes_delta: int = 0) -> UserProgress:
        profile = self._profile(user_id)
        total_xp = max(profile.total_xp + xp_delta, 0)
        updated = profile.model_copy(update={
            "total_xp": total_xp,
            "level": get_level(total_xp),
            "streak_freezes_remaining": max(profile.streak_freezes_remaining + freezes_delta, 0),
        })
        self._profiles[user_id] = updated
        return updated

    async def get_profile(self, user_id: str) -> UserProgress:
        async with self._lock:
            return self._profile(user_id)

    async def save_profile(self, profile: UserProgress) -> UserProgress:
        async with self._lock:
            stored = profile.model_copy(update={"level": get_level(profile.total_xp)})
            self._profiles[profile.user_id] = stored
            return stored

    # ==========================================
    # Habits & Streaks
    # ==========================================

    async def save_habit(self, habit: Habit) -> Habit:
        self._habits[habit.id] = habit
        return habit

    async def get_habit(self, user_id: str, habit_id: str) -> Optional[Habit]:
        habit = self._habits.get(habit_id)
        if habit is None or habit.user_id != user_id:
            return None
        return habit

    async def list_habits(self, user_id: str, include_archived: bool = False) -> List[Habit]:
        habits = [
            h for h in self._habits.values()
            if h.user_id == user_id and (include_archived or not h.is_archived)
        ]
        return sorted(habits, key=lambda h: h.created_at)

    async def get_streak(self, user_id: str, habit_id: str) -> Optional[Streak]:
        streak = self._streaks.get(habit_id)
        if streak is None or streak.user_id != user_id:
            return None
        return streak

    async def list_streaks(self, user_id: str) -> List[Streak]:
        return [s for s in self._streaks.values() if s.user_id == user_id]

    async def save_streak(self, streak: Streak) -> None:
        self._streaks[streak.habit_id] = streak

    # ==========================================
    # Completions
    # ==========================================

    async def get_completion(self, user_id: str, habit_id: str, completed_date: date) -> Optional[Completion]:
        completion = self._completions.get((habit_id, completed_date))
        if completion is None or completion.user_id != user_id:
            return None
        return completion

    async def list_completions(self, user_id: str, since: Optional[date] = None) -> List[Completion]:
        completions = [
            c for c in self._completions.values()
            if c.user_id == user_id and (since is None or c.completed_date >= since)
        ]
        return sorted(completions, key=lambda c: c.completed_at)

    async def record_completion(
        self,
        completion: Completion,
        streak: Streak,
        freezes_used: int = 0
    ) -> UserProgress:
        key = (completion.habit_id, completion.completed_date)

        async with self._lock:
            if key in self._completions:
                raise AlreadyCompletedTodayError(
                    habit_id=completion.habit_id,
                    completed_date=completion.completed_date,
                    user_id=completion.user_id
                )

            self._completions[key] = completion
            self._streaks[streak.habit_id] = streak
            return self._adjust_profile(
                completion.user_id,
                xp_delta=completion.xp_earned,
                freezes_delta=-freezes_used
            )

    async def revert_completion(self, completion: Completion, streak: Streak) -> UserProgress:
        key = (completion.habit_id, completion.completed_date)

        async with self._lock:
            if key not in self._completions:
                raise CompletionNotFoundError(habit_id=completion.habit_id, user_id=completion.user_id)

            del self._completions[key]
            self._streaks[streak.habit_id] = streak
            return self._adjust_profile(
                completion.user_id,
                xp_delta=-completion.xp_earned,
                freezes_delta=1 if completion.freeze_used else 0
            )

    # ==========================================
    # Achievements
    # ==========================================

    async def list_achievements(self, user_id: str) -> List[UserAchievement]:
        unlocked = [a for (owner, _), a in self._achievements.items() if owner == user_id]
        return sorted(unlocked, key=lambda a: a.unlocked_at)

    async def unlock_achievement(self, achievement: UserAchievement, xp_bonus: int = 0) -> bool:
        key = (achievement.user_id, achievement.achievement_type)

        async with self._lock:
            if key in self._achievements:
                return False
            self._achievements[key] = achievement
            self._adjust_profile(achievement.user_id, xp_delta=xp_bonus)
            return True

    # ==========================================
    # Streak Freezes
    # ==========================================

    async def use_streak_freeze(self, streak: Streak) -> UserProgress:
        async with self._lock:
            if self._profile(streak.user_id).streak_freezes_remaining <= 0:
                raise InvalidInputError(
                    "No streak freezes remaining",
                    field="streak_freezes_remaining",
                    value=0,
                    user_id=streak.user_id
                )
            self._streaks[streak.habit_id] = streak
            return self._adjust_profile(streak.user_id, freezes_delta=-1)

    # ==========================================
    # Quests
    # ==========================================

    async def get_quest(self, user_id: str, quest_id: str) -> Optional[ActiveQuest]:
        quest = self._quests.get(quest_id)
        if quest is None or quest.user_id != user_id:
            return None
        return quest

    async def list_quests(
        self,
        user_id: str,
        statuses: Optional[Iterable[QuestStatus]] = None
    ) -> List[ActiveQuest]:
        wanted = set(statuses) if statuses is not None else None
        quests = [
            q for q in self._quests.values()
            if q.user_id == user_id and (wanted is None or q.status in wanted)
        ]
        return sorted(quests, key=tier_sort_key)

    async def insert_quests_if_absent(self, quests: List[ActiveQuest]) -> List[ActiveQuest]:
        inserted = []

        async with self._lock:
            for quest in quests:
                key = (quest.user_id, quest.tier.value, quest.period_key, quest.template_id)
                if key in self._quest_keys:
                    continue
                self._quest_keys[key] = quest.id
                self._quests[quest.id] = quest
                inserted.append(quest)

        return inserted

    async def update_quest_progress(self, quest: ActiveQuest) -> bool:
        async with self._lock:
            stored = self._quests.get(quest.id)
            if stored is None or stored.status != QuestStatus.ACTIVE:
                return False

            self._quests[quest.id] = stored.model_copy(update={
                "progress": max(stored.progress, quest.progress),
                "status": quest.status,
                "completed_at": quest.completed_at,
            })
            return True

    async def expire_quests(self, user_id: str, now: datetime) -> List[ActiveQuest]:
        async with self._lock:
            owned = [q for q in self._quests.values() if q.user_id == user_id]
            expired = expire_stale_quests(owned, now)
            for quest in expired:
                self._quests[quest.id] = quest
            return expired

    async def record_quest_claim(self, quest: ActiveQuest, completion: QuestCompletion) -> UserProgress:
        async with self._lock:
            stored = self._quests.get(quest.id)
            if stored is None or stored.user_id != quest.user_id:
                raise QuestNotFoundError(quest_id=quest.id, user_id=quest.user_id)
            if stored.status != QuestStatus.COMPLETED:
                raise QuestNotReadyToClaimError(
                    quest_id=quest.id,
                    status=stored.status.value,
                    user_id=quest.user_id
                )

            self._quests[quest.id] = stored.model_copy(update={
                "status": QuestStatus.CLAIMED,
                "claimed_at": quest.claimed_at,
            })
            self._quest_completions.append(completion)
            return self._adjust_profile(
                quest.user_id,
                xp_delta=completion.xp_earned,
                freezes_delta=completion.streak_freezes_earned
            )

    async def list_quest_completions(self, user_id: str, limit: int = 20) -> List[QuestCompletion]:
        owned = [c for c in self._quest_completions if c.user_id == user_id]
        owned.sort(key=lambda c: c.completed_at, reverse=True)
        return owned[:limit]
