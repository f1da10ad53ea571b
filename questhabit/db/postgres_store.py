"""
PostgreSQL ProgressionStore

Each call runs in its own transaction on a pooled connection. Uniqueness is
enforced by the schema's constraints and ``ON CONFLICT`` clauses, so
concurrent requests cannot double-count a completion, an unlock or a quest.
Transient failures are retried with backoff.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional

import psycopg

from questhabit.config import DEFAULT_TIMEZONE
from questhabit.db.connection import Database, db
from questhabit.db.store import ProgressionStore
from questhabit.exceptions import (
    AlreadyCompletedTodayError,
    CompletionNotFoundError,
    InvalidInputError,
    QuestHabitError,
    QuestNotFoundError,
    QuestNotReadyToClaimError,
    wrap_external_exception,
)
from questhabit.gamification.xp_system import get_level
from questhabit.models.achievement import UserAchievement
from questhabit.models.habit import Completion, Habit, Streak
from questhabit.models.quest import ActiveQuest, QuestCompletion, QuestStatus
from questhabit.models.user import UserProgress
from questhabit.monitoring.metrics import track_store_call
from questhabit.resilience.retry import with_retry

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "user_id, total_xp, level, streak_freezes_remaining, is_pro, timezone"
HABIT_COLUMNS = "id, user_id, name, description, category, difficulty, frequency, icon, is_archived, created_at"
STREAK_COLUMNS = "habit_id, user_id, current_streak, best_streak, last_completed_date, freeze_used_at"
COMPLETION_COLUMNS = (
    "id, habit_id, user_id, completed_at, completed_date, xp_earned, streak_bonus, time_bonus, "
    "freeze_used, previous_completed_date"
)
QUEST_COLUMNS = (
    "id, user_id, template_id, tier, period_key, name, description, requirement, reward, icon, "
    "progress, status, activated_at, expires_at, completed_at, claimed_at"
)
QUEST_ORDER = "array_position(ARRAY['daily', 'weekly', 'legendary'], tier), activated_at"


class PostgresStore(ProgressionStore):
    """Store backed by the psycopg connection pool"""

    def __init__(self, database: Database = db):
        self._db = database

    @asynccontextmanager
    async def _cursor(
        self,
        operation: str,
        user_id: Optional[str] = None
    ) -> AsyncGenerator[psycopg.AsyncCursor, None]:
        """Cursor inside a transaction; driver errors become PersistenceError"""
        try:
            with track_store_call(operation):
                async with self._db.connection() as conn:
                    async with conn.transaction():
                        async with conn.cursor() as cur:
                            yield cur
        except QuestHabitError:
            raise
        except Exception as e:
            raise wrap_external_exception(e, operation=operation, user_id=user_id) from e

    # ==========================================
    # Profiles
    # ==========================================

    async def _lock_profile(self, cur: psycopg.AsyncCursor, user_id: str) -> Dict[str, Any]:
        await cur.execute(
            """
            INSERT INTO user_progress (user_id, timezone)
            VALUES (%s, %s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (user_id, DEFAULT_TIMEZONE)
        )
        await cur.execute(
            f"SELECT {PROFILE_COLUMNS} FROM user_progress WHERE user_id = %s FOR UPDATE",
            (user_id,)
        )
        return await cur.fetchone()

    async def _adjust_profile(
        self,
        cur: psycopg.AsyncCursor,
        user_id: str,
        xp_delta: int = 0,
        freezes_delta: int = 0
    ) -> UserProgress:
        row = await self._lock_profile(cur, user_id)
        total_xp = max(row["total_xp"] + xp_delta, 0)
        freezes = max(row["streak_freezes_remaining"] + freezes_delta, 0)

        await cur.execute(
            f"""
            UPDATE user_progress
            SET total_xp = %s,
                level = %s,
                streak_freezes_remaining = %s,
                updated_at = CURRENT_TIMESTAMP
            WHERE user_id = %s
            RETURNING {PROFILE_COLUMNS}
            """,
            (total_xp, get_level(total_xp), freezes, user_id)
        )
        return UserProgress.model_validate(await cur.fetchone())

    @with_retry()
    async def get_profile(self, user_id: str) -> UserProgress:
        async with self._cursor("get_profile", user_id) as cur:
            row = await self._lock_profile(cur, user_id)
            return UserProgress.model_validate(row)

    @with_retry()
    async def save_profile(self, profile: UserProgress) -> UserProgress:
        async with self._cursor("save_profile", profile.user_id) as cur:
            await cur.execute(
                f"""
                INSERT INTO user_progress (user_id, total_xp, level, streak_freezes_remaining, is_pro, timezone)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE
                SET total_xp = EXCLUDED.total_xp,
                    level = EXCLUDED.level,
                    streak_freezes_remaining = EXCLUDED.streak_freezes_remaining,
                    is_pro = EXCLUDED.is_pro,
                    timezone = EXCLUDED.timezone,
                    updated_at = CURRENT_TIMESTAMP
                RETURNING {PROFILE_COLUMNS}
                """,
                (
                    profile.user_id,
                    profile.total_xp,
                    get_level(profile.total_xp),
                    profile.streak_freezes_remaining,
                    profile.is_pro,
                    profile.timezone,
                )
            )
            return UserProgress.model_validate(await cur.fetchone())

    # ==========================================
    # Habits & Streaks
    # ==========================================

    @with_retry()
    async def save_habit(self, habit: Habit) -> Habit:
        async with self._cursor("save_habit", habit.user_id) as cur:
            await cur.execute(
                """
                INSERT INTO habits (id, user_id, name, description, category, difficulty, frequency, icon, is_archived, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE
                SET name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    category = EXCLUDED.category,
                    difficulty = EXCLUDED.difficulty,
                    frequency = EXCLUDED.frequency,
                    icon = EXCLUDED.icon,
                    is_archived = EXCLUDED.is_archived
                """,
                (
                    habit.id,
                    habit.user_id,
                    habit.name,
                    habit.description,
                    habit.category.value,
                    habit.difficulty.value,
                    json.dumps(habit.frequency.model_dump(mode="json")),
                    habit.icon,
                    habit.is_archived,
                    habit.created_at,
                )
            )
        return habit

    @with_retry()
    async def get_habit(self, user_id: str, habit_id: str) -> Optional[Habit]:
        async with self._cursor("get_habit", user_id) as cur:
            await cur.execute(
                f"SELECT {HABIT_COLUMNS} FROM habits WHERE id = %s AND user_id = %s",
                (habit_id, user_id)
            )
            row = await cur.fetchone()
            return Habit.model_validate(row) if row else None

    @with_retry()
    async def list_habits(self, user_id: str, include_archived: bool = False) -> List[Habit]:
        async with self._cursor("list_habits", user_id) as cur:
            await cur.execute(
                f"""
                SELECT {HABIT_COLUMNS} FROM habits
                WHERE user_id = %s AND (%s OR NOT is_archived)
                ORDER BY created_at
                """,
                (user_id, include_archived)
            )
            return [Habit.model_validate(row) for row in await cur.fetchall()]

    @with_retry()
    async def get_streak(self, user_id: str, habit_id: str) -> Optional[Streak]:
        async with self._cursor("get_streak", user_id) as cur:
            await cur.execute(
                f"SELECT {STREAK_COLUMNS} FROM streaks WHERE habit_id = %s AND user_id = %s",
                (habit_id, user_id)
            )
            row = await cur.fetchone()
            return Streak.model_validate(row) if row else None

    @with_retry()
    async def list_streaks(self, user_id: str) -> List[Streak]:
        async with self._cursor("list_streaks", user_id) as cur:
            await cur.execute(f"SELECT {STREAK_COLUMNS} FROM streaks WHERE user_id = %s", (user_id,))
            return [Streak.model_validate(row) for row in await cur.fetchall()]

    async def _upsert_streak(self, cur: psycopg.AsyncCursor, streak: Streak) -> None:
        await cur.execute(
            """
            INSERT INTO streaks (habit_id, user_id, current_streak, best_streak, last_completed_date, freeze_used_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (habit_id) DO UPDATE
            SET current_streak = EXCLUDED.current_streak,
                best_streak = EXCLUDED.best_streak,
                last_completed_date = EXCLUDED.last_completed_date,
                freeze_used_at = EXCLUDED.freeze_used_at,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                streak.habit_id,
                streak.user_id,
                streak.current_streak,
                streak.best_streak,
                streak.last_completed_date,
                streak.freeze_used_at,
            )
        )

    @with_retry()
    async def save_streak(self, streak: Streak) -> None:
        async with self._cursor("save_streak", streak.user_id) as cur:
            await self._upsert_streak(cur, streak)

    # ==========================================
    # Completions
    # ==========================================

    @with_retry()
    async def get_completion(self, user_id: str, habit_id: str, completed_date: date) -> Optional[Completion]:
        async with self._cursor("get_completion", user_id) as cur:
            await cur.execute(
                f"""
                SELECT {COMPLETION_COLUMNS} FROM habit_completions
                WHERE habit_id = %s AND user_id = %s AND completed_date = %s
                """,
                (habit_id, user_id, completed_date)
            )
            row = await cur.fetchone()
            return Completion.model_validate(row) if row else None

    @with_retry()
    async def list_completions(self, user_id: str, since: Optional[date] = None) -> List[Completion]:
        async with self._cursor("list_completions", user_id) as cur:
            await cur.execute(
                f"""
                SELECT {COMPLETION_COLUMNS} FROM habit_completions
                WHERE user_id = %s AND (%s::date IS NULL OR completed_date >= %s::date)
                ORDER BY completed_at
                """,
                (user_id, since, since)
            )
            return [Completion.model_validate(row) for row in await cur.fetchall()]

    @with_retry()
    async def record_completion(
        self,
        completion: Completion,
        streak: Streak,
        freezes_used: int = 0
    ) -> UserProgress:
        async with self._cursor("record_completion", completion.user_id) as cur:
            await cur.execute(
                """
                INSERT INTO habit_completions (id, habit_id, user_id, completed_at, completed_date, xp_earned, streak_bonus, time_bonus,
                                               freeze_used, previous_completed_date)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (habit_id, completed_date) DO NOTHING
                RETURNING id
                """,
                (
                    completion.id,
                    completion.habit_id,
                    completion.user_id,
                    completion.completed_at,
                    completion.completed_date,
                    completion.xp_earned,
                    completion.streak_bonus,
                    completion.time_bonus,
                    completion.freeze_used,
                    completion.previous_completed_date,
                )
            )
            if await cur.fetchone() is None:
                raise AlreadyCompletedTodayError(
                    habit_id=completion.habit_id,
                    completed_date=completion.completed_date,
                    user_id=completion.user_id
                )

            await self._upsert_streak(cur, streak)
            return await self._adjust_profile(
                cur,
                completion.user_id,
                xp_delta=completion.xp_earned,
                freezes_delta=-freezes_used
            )

    @with_retry()
    async def revert_completion(self, completion: Completion, streak: Streak) -> UserProgress:
        async with self._cursor("revert_completion", completion.user_id) as cur:
            await cur.execute(
                "DELETE FROM habit_completions WHERE id = %s AND user_id = %s RETURNING id",
                (completion.id, completion.user_id)
            )
            if await cur.fetchone() is None:
                raise CompletionNotFoundError(habit_id=completion.habit_id, user_id=completion.user_id)

            await self._upsert_streak(cur, streak)
            return await self._adjust_profile(
                cur,
                completion.user_id,
                xp_delta=-completion.xp_earned,
                freezes_delta=1 if completion.freeze_used else 0
            )

    # ==========================================
    # Achievements
    # ==========================================

    @with_retry()
    async def list_achievements(self, user_id: str) -> List[UserAchievement]:
        async with self._cursor("list_achievements", user_id) as cur:
            await cur.execute(
                """
                SELECT user_id, achievement_type, unlocked_at FROM user_achievements
                WHERE user_id = %s
                ORDER BY unlocked_at
                """,
                (user_id,)
            )
            return [UserAchievement.model_validate(row) for row in await cur.fetchall()]

    @with_retry()
    async def unlock_achievement(self, achievement: UserAchievement, xp_bonus: int = 0) -> bool:
        async with self._cursor("unlock_achievement", achievement.user_id) as cur:
            await cur.execute(
                """
                INSERT INTO user_achievements (user_id, achievement_type, unlocked_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id, achievement_type) DO NOTHING
                RETURNING achievement_type
                """,
                (achievement.user_id, achievement.achievement_type.value, achievement.unlocked_at)
            )
            if await cur.fetchone() is None:
                return False

            await self._adjust_profile(cur, achievement.user_id, xp_delta=xp_bonus)
            return True

    # ==========================================
    # Streak Freezes
    # ==========================================

    @with_retry()
    async def use_streak_freeze(self, streak: Streak) -> UserProgress:
        async with self._cursor("use_streak_freeze", streak.user_id) as cur:
            row = await self._lock_profile(cur, streak.user_id)
            if row["streak_freezes_remaining"] <= 0:
                raise InvalidInputError(
                    "No streak freezes remaining",
                    field="streak_freezes_remaining",
                    value=0,
                    user_id=streak.user_id
                )

            await self._upsert_streak(cur, streak)
            return await self._adjust_profile(cur, streak.user_id, freezes_delta=-1)

    # ==========================================
    # Quests
    # ==========================================

    @with_retry()
    async def get_quest(self, user_id: str, quest_id: str) -> Optional[ActiveQuest]:
        async with self._cursor("get_quest", user_id) as cur:
            await cur.execute(
                f"SELECT {QUEST_COLUMNS} FROM active_quests WHERE id = %s AND user_id = %s",
                (quest_id, user_id)
            )
            row = await cur.fetchone()
            return ActiveQuest.model_validate(row) if row else None

    @with_retry()
    async def list_quests(
        self,
        user_id: str,
        statuses: Optional[Iterable[QuestStatus]] = None
    ) -> List[ActiveQuest]:
        wanted = [QuestStatus(s).value for s in statuses] if statuses is not None else None

        async with self._cursor("list_quests", user_id) as cur:
            await cur.execute(
                f"""
                SELECT {QUEST_COLUMNS} FROM active_quests
                WHERE user_id = %s AND (%s::text[] IS NULL OR status = ANY(%s::text[]))
                ORDER BY {QUEST_ORDER}
                """,
                (user_id, wanted, wanted)
            )
            return [ActiveQuest.model_validate(row) for row in await cur.fetchall()]

    @with_retry()
    async def insert_quests_if_absent(self, quests: List[ActiveQuest]) -> List[ActiveQuest]:
        if not quests:
            return []

        inserted = []
        async with self._cursor("insert_quests_if_absent", quests[0].user_id) as cur:
            for quest in quests:
                await cur.execute(
                    """
                    INSERT INTO active_quests (id, user_id, template_id, tier, period_key, name, description,
                                               requirement, reward, icon, progress, status, activated_at, expires_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, %s, %s, %s)
                    ON CONFLICT ON CONSTRAINT uq_active_quests_period DO NOTHING
                    RETURNING id
                    """,
                    (
                        quest.id,
                        quest.user_id,
                        quest.template_id,
                        quest.tier.value,
                        quest.period_key,
                        quest.name,
                        quest.description,
                        json.dumps(quest.requirement.model_dump(mode="json")),
                        json.dumps(quest.reward.model_dump(mode="json")),
                        quest.icon,
                        quest.progress,
                        quest.status.value,
                        quest.activated_at,
                        quest.expires_at,
                    )
                )
                if await cur.fetchone() is not None:
                    inserted.append(quest)

        return inserted

    @with_retry()
    async def update_quest_progress(self, quest: ActiveQuest) -> bool:
        async with self._cursor("update_quest_progress", quest.user_id) as cur:
            await cur.execute(
                """
                UPDATE active_quests
                SET progress = GREATEST(progress, %s),
                    status = %s,
                    completed_at = %s
                WHERE id = %s AND user_id = %s AND status = 'active'
                RETURNING id
                """,
                (quest.progress, quest.status.value, quest.completed_at, quest.id, quest.user_id)
            )
            return await cur.fetchone() is not None

    @with_retry()
    async def expire_quests(self, user_id: str, now: datetime) -> List[ActiveQuest]:
        async with self._cursor("expire_quests", user_id) as cur:
            await cur.execute(
                f"""
                UPDATE active_quests
                SET status = 'expired'
                WHERE user_id = %s AND status = 'active' AND expires_at < %s
                RETURNING {QUEST_COLUMNS}
                """,
                (user_id, now)
            )
            return [ActiveQuest.model_validate(row) for row in await cur.fetchall()]

    @with_retry()
    async def record_quest_claim(self, quest: ActiveQuest, completion: QuestCompletion) -> UserProgress:
        async with self._cursor("record_quest_claim", quest.user_id) as cur:
            await cur.execute(
                """
                UPDATE active_quests
                SET status = 'claimed', claimed_at = %s
                WHERE id = %s AND user_id = %s AND status = 'completed'
                RETURNING id
                """,
                (quest.claimed_at, quest.id, quest.user_id)
            )
            if await cur.fetchone() is None:
                await cur.execute(
                    "SELECT status FROM active_quests WHERE id = %s AND user_id = %s",
                    (quest.id, quest.user_id)
                )
                row = await cur.fetchone()
                if row is None:
                    raise QuestNotFoundError(quest_id=quest.id, user_id=quest.user_id)
                raise QuestNotReadyToClaimError(quest_id=quest.id, status=row["status"], user_id=quest.user_id)

            await cur.execute(
                """
                INSERT INTO quest_completions (id, user_id, quest_id, quest_template_id, quest_name, tier,
                                               xp_earned, streak_freezes_earned, badge_earned, completed_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    completion.id,
                    completion.user_id,
                    completion.quest_id,
                    completion.quest_template_id,
                    completion.quest_name,
                    completion.tier.value,
                    completion.xp_earned,
                    completion.streak_freezes_earned,
                    completion.badge_earned,
                    completion.completed_at,
                )
            )
            return await self._adjust_profile(
                cur,
                quest.user_id,
                xp_delta=completion.xp_earned,
                freezes_delta=completion.streak_freezes_earned
            )

    @with_retry()
    async def list_quest_completions(self, user_id: str, limit: int = 20) -> List[QuestCompletion]:
        async with self._cursor("list_quest_completions", user_id) as cur:
            await cur.execute(
                """
                SELECT id, user_id, quest_id, quest_template_id, quest_name, tier,
                       xp_earned, streak_freezes_earned, badge_earned, completed_at
                FROM quest_completions
                WHERE user_id = %s
                ORDER BY completed_at DESC
                LIMIT %s
                """,
                (user_id, limit)
            )
            return [QuestCompletion.model_validate(row) for row in await cur.fetchall()]
