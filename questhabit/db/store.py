"""
Persistence interface for the progression engine

Every call is an awaited round trip that may raise PersistenceError.
Uniqueness is the store's job:
- one completion per (habit, completed_date)
- one achievement per (user, type)
- one quest per (user, tier, period_key, template_id)

Writes that must land together are single calls (record_completion,
revert_completion, record_quest_claim, unlock_achievement,
use_streak_freeze), each applied atomically by the implementation.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Iterable, List, Optional

from questhabit.models.achievement import UserAchievement
from questhabit.models.habit import Completion, Habit, Streak
from questhabit.models.quest import ActiveQuest, QuestCompletion, QuestStatus
from questhabit.models.user import UserProgress


class ProgressionStore(ABC):
    """Async persistence collaborator used by ProgressionService"""

    # ==========================================
    # Profiles
    # ==========================================

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProgress:
        """Get user progress (creates a default record if missing)"""

    @abstractmethod
    async def save_profile(self, profile: UserProgress) -> UserProgress:
        """Insert or replace the profile's settings (is_pro, timezone)"""

    # ==========================================
    # Habits & Streaks
    # ==========================================

    @abstractmethod
    async def save_habit(self, habit: Habit) -> Habit:
        """Insert or replace a habit"""

    @abstractmethod
    async def get_habit(self, user_id: str, habit_id: str) -> Optional[Habit]:
        """Get one of the user's habits, archived included"""

    @abstractmethod
    async def list_habits(self, user_id: str, include_archived: bool = False) -> List[Habit]:
        """User's habits, oldest first"""

    @abstractmethod
    async def get_streak(self, user_id: str, habit_id: str) -> Optional[Streak]:
        """Streak record for a habit, None before the first completion"""

    @abstractmethod
    async def list_streaks(self, user_id: str) -> List[Streak]:
        """All of the user's streak records"""

    @abstractmethod
    async def save_streak(self, streak: Streak) -> None:
        """Insert or replace a streak record"""

    # ==========================================
    # Completions
    # ==========================================

    @abstractmethod
    async def get_completion(self, user_id: str, habit_id: str, completed_date: date) -> Optional[Completion]:
        """Completion of a habit on a date"""

    @abstractmethod
    async def list_completions(self, user_id: str, since: Optional[date] = None) -> List[Completion]:
        """User's completions, optionally from a date on, oldest first"""

    @abstractmethod
    async def record_completion(
        self,
        completion: Completion,
        streak: Streak,
        freezes_used: int = 0
    ) -> UserProgress:
        """
        Atomically store a completion with its streak and XP

        Inserts the completion, replaces the streak, adds
        ``completion.xp_earned`` to the profile (recomputing its level) and
        consumes ``freezes_used`` streak freezes.

        Raises:
            AlreadyCompletedTodayError: A completion exists for (habit, date);
                nothing is written
        """

    @abstractmethod
    async def revert_completion(self, completion: Completion, streak: Streak) -> UserProgress:
        """
        Atomically delete a completion, restore the streak and remove its XP

        Total XP never drops below 0. A streak freeze the completion consumed
        is given back.

        Raises:
            CompletionNotFoundError: The completion no longer exists
        """

    # ==========================================
    # Achievements
    # ==========================================

    @abstractmethod
    async def list_achievements(self, user_id: str) -> List[UserAchievement]:
        """User's unlocked achievements, in unlock order"""

    @abstractmethod
    async def unlock_achievement(self, achievement: UserAchievement, xp_bonus: int = 0) -> bool:
        """
        Atomically record an unlock and award its XP bonus

        Returns:
            False when the user already had the achievement (no XP awarded)
        """

    # ==========================================
    # Streak Freezes
    # ==========================================

    @abstractmethod
    async def use_streak_freeze(self, streak: Streak) -> UserProgress:
        """
        Atomically save a frozen streak and consume one streak freeze

        Raises:
            InvalidInputError: No streak freezes remaining
        """

    # ==========================================
    # Quests
    # ==========================================

    @abstractmethod
    async def get_quest(self, user_id: str, quest_id: str) -> Optional[ActiveQuest]:
        """One of the user's quest instances"""

    @abstractmethod
    async def list_quests(
        self,
        user_id: str,
        statuses: Optional[Iterable[QuestStatus]] = None
    ) -> List[ActiveQuest]:
        """User's quests ordered by tier then activation, optionally by status"""

    @abstractmethod
    async def insert_quests_if_absent(self, quests: List[ActiveQuest]) -> List[ActiveQuest]:
        """
        Conditionally insert quest instances

        A quest is skipped when (user, tier, period_key, template_id) already
        exists, so concurrent refreshes never create duplicates.

        Returns:
            The quests actually inserted
        """

    @abstractmethod
    async def update_quest_progress(self, quest: ActiveQuest) -> bool:
        """
        Persist progress, status and completed_at of a quest still active

        Stored progress never decreases.

        Returns:
            False when the stored quest is no longer active
        """

    @abstractmethod
    async def expire_quests(self, user_id: str, now: datetime) -> List[ActiveQuest]:
        """Mark active quests past their deadline as expired, returning them"""

    @abstractmethod
    async def record_quest_claim(self, quest: ActiveQuest, completion: QuestCompletion) -> UserProgress:
        """
        Atomically claim a quest

        Marks the quest claimed (only if it is still completed), appends the
        quest completion and adds the reward's XP and streak freezes.

        Raises:
            QuestNotReadyToClaimError: The stored quest is not completed
        """

    @abstractmethod
    async def list_quest_completions(self, user_id: str, limit: int = 20) -> List[QuestCompletion]:
        """Most recent quest completions first"""
