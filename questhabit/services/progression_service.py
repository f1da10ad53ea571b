"""
ProgressionService - Progression Orchestration

Composes the pure gamification rules over a ProgressionStore:
habit completion -> XP + streak -> quest progress -> achievements.

Every public method returns a result dict and never raises across its
boundary:
- success: {"success": True, ...}
- failure: {"success": False, "error": <code>, "message": <user message>, ...}

Only the completion write itself is fatal to complete_habit. Quest and
achievement evaluation run after it; their failures are logged and
reported in ``warnings``.
"""

import logging
from datetime import date, datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Sequence

from questhabit.config import DAILY_QUEST_COUNT, STREAK_GAP_POLICY
from questhabit.db.store import ProgressionStore
from questhabit.events import EventBus
from questhabit.exceptions import (
    AlreadyCompletedTodayError,
    CompletionNotFoundError,
    HabitNotFoundError,
    InvalidInputError,
    QuestHabitError,
    QuestNotFoundError,
)
from questhabit.gamification.achievement_system import (
    AchievementContext,
    calculate_achievement_xp,
    evaluate_achievements,
    get_achievement_info,
)
from questhabit.gamification.quest_lifecycle import (
    advance_quest_lifecycle,
    apply_progress,
    claim_quest,
    evaluate_quest_progress,
    plan_quest_rotation,
    validate_manual_progress,
)
from questhabit.gamification.streak_system import (
    StreakGapPolicy,
    apply_streak_freeze,
    consecutive_active_days,
    record_completion,
    refresh_streak,
    revert_completion,
)
from questhabit.gamification.xp_system import check_level_up, compute_completion_xp, get_level_progress
from questhabit.models.achievement import UserAchievement
from questhabit.models.habit import Completion, Habit, HabitWithStreak, Streak
from questhabit.models.quest import ActiveQuest, QuestProgressEvent, QuestStatus
from questhabit.models.user import UserProgress
from questhabit.monitoring import metrics
from questhabit.utils.datetime_helpers import get_timezone, resolve_now

logger = logging.getLogger(__name__)


def engine_operation(func: Callable) -> Callable:
    """Turn raised errors into failure results at the service boundary"""
    @wraps(func)
    async def wrapper(self, user_id: str, *args: Any, **kwargs: Any) -> Dict[str, Any]:
        try:
            return await func(self, user_id, *args, **kwargs)
        except QuestHabitError as e:
            return e.to_dict()
        except Exception as e:
            error = QuestHabitError(
                message=f"{func.__name__} failed unexpectedly: {e}",
                user_id=user_id,
                operation=func.__name__,
                cause=e
            )
            return error.to_dict()
    return wrapper


class ProgressionService:
    """
    Service for habit progression.

    Responsibilities:
    - Habit completion and undo (XP, level, streak)
    - Quest rotation, progress and reward claiming
    - Achievement checking and unlocking
    - Streak freezes
    """

    def __init__(
        self,
        store: ProgressionStore,
        events: Optional[EventBus] = None,
        gap_policy: Optional[StreakGapPolicy] = None,
        daily_quest_count: int = DAILY_QUEST_COUNT
    ):
        """
        Initialize ProgressionService.

        Args:
            store: Persistence collaborator
            events: Event bus to publish progression events on
            gap_policy: Streak gap policy (defaults to STREAK_GAP_POLICY)
            daily_quest_count: Daily quests handed out per day
        """
        self.store = store
        self.events = events or EventBus()
        self.gap_policy = StreakGapPolicy(gap_policy or STREAK_GAP_POLICY)
        self.daily_quest_count = daily_quest_count
        logger.debug(f"ProgressionService initialized (gap policy: {self.gap_policy.value})")

    # ==========================================
    # Habit Completion
    # ==========================================

    @engine_operation
    async def complete_habit(
        self,
        user_id: str,
        habit_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Process a habit completion.

        Args:
            user_id: User identifier
            habit_id: Habit being completed
            now: Completion instant (defaults to the current time)

        Returns:
            {
                'success': True,
                'completion_id': str,
                'xp_earned': int,
                'xp_breakdown': dict,
                'total_xp': int,
                'level': int,
                'leveled_up': bool,
                'new_level': int,
                'streak': dict,
                'freeze_used': bool,
                'quests_completed': list,
                'achievements_unlocked': list,
                'warnings': list
            }
        """
        profile = await self.store.get_profile(user_id)
        local_now = resolve_now(now, profile.timezone)
        today = local_now.date()

        habit = await self._get_active_habit(user_id, habit_id)

        if await self.store.get_completion(user_id, habit_id, today):
            raise AlreadyCompletedTodayError(habit_id=habit_id, completed_date=today, user_id=user_id)

        stored_streak = await self.store.get_streak(user_id, habit_id) or Streak(habit_id=habit_id, user_id=user_id)
        effective_streak = refresh_streak(
            stored_streak,
            today,
            habit.frequency,
            profile.streak_freezes_remaining,
            self.gap_policy
        )

        # XP uses the streak as it stood before this completion
        breakdown = compute_completion_xp(habit.difficulty, effective_streak.current_streak, local_now.hour)
        streak_update = record_completion(
            stored_streak,
            today,
            habit.frequency,
            profile.streak_freezes_remaining,
            self.gap_policy
        )

        completion = Completion(
            habit_id=habit_id,
            user_id=user_id,
            completed_at=local_now,
            completed_date=today,
            xp_earned=breakdown.total_xp,
            streak_bonus=breakdown.streak_bonus,
            time_bonus=breakdown.time_bonus,
            freeze_used=streak_update.freeze_used,
            previous_completed_date=stored_streak.last_completed_date,
        )

        updated_profile = await self.store.record_completion(
            completion,
            streak_update.streak,
            freezes_used=1 if completion.freeze_used else 0
        )
        xp_before = updated_profile.total_xp - completion.xp_earned

        logger.info(
            f"User {user_id} completed habit {habit_id}: +{completion.xp_earned} XP, "
            f"streak {streak_update.streak.current_streak}"
        )
        metrics.record_completion(habit.difficulty.value, completion.xp_earned)

        warnings: List[str] = []
        quests_completed: List[Dict[str, Any]] = []
        achievements_unlocked: List[Dict[str, Any]] = []

        try:
            habits = await self.store.list_habits(user_id)
            completions = await self.store.list_completions(user_id)
        except Exception as e:
            logger.warning(f"Could not load progression state for user {user_id}: {e}", exc_info=True)
            metrics.record_evaluation_failure("load")
            habits, completions = None, None
            warnings.extend(["quest_progress_failed", "achievement_check_failed"])

        if habits is not None:
            try:
                event = self._build_quest_event(
                    habit,
                    local_now,
                    habits,
                    completions,
                    streak_update.streak.current_streak,
                    completion.xp_earned
                )
                quests_completed = await self._progress_quests(user_id, event, local_now)
            except Exception as e:
                logger.warning(f"Quest progress failed for user {user_id}: {e}", exc_info=True)
                metrics.record_evaluation_failure("quests")
                warnings.append("quest_progress_failed")

            try:
                achievements_unlocked = await self._unlock_achievements(
                    user_id,
                    local_now,
                    updated_profile,
                    habits,
                    completions
                )
            except Exception as e:
                logger.warning(f"Achievement check failed for user {user_id}: {e}", exc_info=True)
                metrics.record_evaluation_failure("achievements")
                warnings.append("achievement_check_failed")

        total_xp = updated_profile.total_xp + sum(a["xp_bonus"] for a in achievements_unlocked)

        level_change = check_level_up(xp_before, total_xp)
        if level_change["leveled_up"]:
            metrics.record_level_up()
            await self.events.emit(
                "level_up",
                user_id,
                previous_level=level_change["previous_level"],
                new_level=level_change["new_level"]
            )

        if streak_update.freeze_used:
            metrics.record_streak_freeze()
            await self.events.emit("streak_freeze_used", user_id, habit_id=habit_id, automatic=True)

        await self.events.emit(
            "habit_completed",
            user_id,
            habit_id=habit_id,
            xp_earned=completion.xp_earned,
            streak=streak_update.streak.current_streak,
            milestone=streak_update.milestone
        )

        return {
            "success": True,
            "completion_id": completion.id,
            "xp_earned": completion.xp_earned,
            "xp_breakdown": {
                "base_xp": breakdown.base_xp,
                "streak_bonus": breakdown.streak_bonus,
                "time_bonus": breakdown.time_bonus,
                "multiplier": breakdown.multiplier,
                "total_xp": breakdown.total_xp,
            },
            "total_xp": total_xp,
            "level": level_change["new_level"],
            "leveled_up": level_change["leveled_up"],
            "new_level": level_change["new_level"],
            "streak": {
                "current": streak_update.streak.current_streak,
                "best": streak_update.streak.best_streak,
                "milestone": streak_update.milestone,
                "was_reset": streak_update.was_reset,
            },
            "freeze_used": streak_update.freeze_used,
            "quests_completed": quests_completed,
            "achievements_unlocked": achievements_unlocked,
            "warnings": warnings,
        }

    @engine_operation
    async def uncomplete_habit(
        self,
        user_id: str,
        habit_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Undo today's completion of a habit.

        Removes the completion, takes back its XP (total never below 0) and
        steps the streak back. A streak freeze the completion used is given
        back. Quest progress is kept.
        """
        profile = await self.store.get_profile(user_id)
        local_now = resolve_now(now, profile.timezone)
        today = local_now.date()

        await self._get_active_habit(user_id, habit_id)

        completion = await self.store.get_completion(user_id, habit_id, today)
        if completion is None:
            raise CompletionNotFoundError(habit_id=habit_id, user_id=user_id)

        streak = await self.store.get_streak(user_id, habit_id) or Streak(habit_id=habit_id, user_id=user_id)
        reverted = revert_completion(
            streak,
            completion.previous_completed_date,
            freeze_refunded=completion.freeze_used
        )

        updated_profile = await self.store.revert_completion(completion, reverted)
        logger.info(f"User {user_id} undid habit {habit_id}: -{completion.xp_earned} XP")

        await self.events.emit("habit_uncompleted", user_id, habit_id=habit_id, xp_removed=completion.xp_earned)

        return {
            "success": True,
            "xp_removed": completion.xp_earned,
            "total_xp": updated_profile.total_xp,
            "level": updated_profile.level,
            "streak": reverted.current_streak,
            "freeze_refunded": completion.freeze_used,
            "streak_freezes_remaining": updated_profile.streak_freezes_remaining,
        }

    # ==========================================
    # Quests
    # ==========================================

    @engine_operation
    async def refresh_quests(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Rotate quests for the current periods.

        1. Expire active quests past their deadline
        2. Reset streaks that can no longer be continued
        3. Hand out today's daily quests, this week's weekly quest and, for
           Pro users, this week's legendary quest (skipping existing ones)

        Returns:
            {'success': True, 'quests': list, 'activated': int, 'expired': int}
        """
        profile = await self.store.get_profile(user_id)
        local_now = resolve_now(now, profile.timezone)

        expired = await self.store.expire_quests(user_id, local_now)
        for quest in expired:
            metrics.record_quest_transition(quest.tier.value, "expired")

        await self._reset_broken_streaks(user_id, profile, local_now.date())

        planned = plan_quest_rotation(user_id, local_now, profile.is_pro, self.daily_quest_count)
        inserted = await self.store.insert_quests_if_absent(planned)
        for quest in inserted:
            metrics.record_quest_transition(quest.tier.value, "activated")

        if inserted or expired:
            logger.info(f"Quest rotation for user {user_id}: {len(inserted)} activated, {len(expired)} expired")

        quests = await self.store.list_quests(user_id, [QuestStatus.ACTIVE, QuestStatus.COMPLETED])

        return {
            "success": True,
            "quests": [q.model_dump(mode="json") for q in quests],
            "activated": len(inserted),
            "expired": len(expired),
        }

    @engine_operation
    async def update_quest_progress(
        self,
        user_id: str,
        quest_id: str,
        progress: int,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Set a quest's progress by hand (never lowers it, clamps to the target)"""
        validate_manual_progress(progress)
        return await self._set_quest_progress(user_id, quest_id, lambda quest: progress, now)

    @engine_operation
    async def complete_quest(
        self,
        user_id: str,
        quest_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Mark an active quest as completed"""
        return await self._set_quest_progress(user_id, quest_id, lambda quest: quest.target, now)

    @engine_operation
    async def claim_quest_reward(
        self,
        user_id: str,
        quest_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Claim a completed quest's reward.

        Returns:
            {
                'success': True,
                'xp_earned': int,
                'streak_freezes_earned': int,
                'badge': str | None,
                'total_xp': int,
                'level': int,
                'leveled_up': bool
            }
        """
        quest = await self._get_quest(user_id, quest_id)
        profile = await self.store.get_profile(user_id)
        local_now = resolve_now(now, profile.timezone)

        claimed, completion = claim_quest(quest, local_now)
        updated_profile = await self.store.record_quest_claim(claimed, completion)

        logger.info(f"User {user_id} claimed quest {quest.template_id}: +{completion.xp_earned} XP")
        metrics.record_quest_transition(quest.tier.value, "claimed")
        metrics.record_xp("quest", completion.xp_earned)

        level_change = check_level_up(updated_profile.total_xp - completion.xp_earned, updated_profile.total_xp)
        if level_change["leveled_up"]:
            metrics.record_level_up()
            await self.events.emit(
                "level_up",
                user_id,
                previous_level=level_change["previous_level"],
                new_level=level_change["new_level"]
            )

        await self.events.emit(
            "quest_claimed",
            user_id,
            quest_id=quest_id,
            template_id=quest.template_id,
            xp_earned=completion.xp_earned,
            streak_freezes_earned=completion.streak_freezes_earned,
            badge=completion.badge_earned
        )

        return {
            "success": True,
            "xp_earned": completion.xp_earned,
            "streak_freezes_earned": completion.streak_freezes_earned,
            "badge": completion.badge_earned,
            "total_xp": updated_profile.total_xp,
            "level": updated_profile.level,
            "leveled_up": level_change["leveled_up"],
        }

    # ==========================================
    # Achievements & Streak Freezes
    # ==========================================

    @engine_operation
    async def check_achievements(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Evaluate and unlock achievements outside of a completion"""
        profile = await self.store.get_profile(user_id)
        local_now = resolve_now(now, profile.timezone)

        habits = await self.store.list_habits(user_id)
        completions = await self.store.list_completions(user_id)
        unlocked = await self._unlock_achievements(user_id, local_now, profile, habits, completions)

        if unlocked:
            profile = await self.store.get_profile(user_id)

        return {
            "success": True,
            "achievements_unlocked": unlocked,
            "total_xp": profile.total_xp,
            "level": profile.level,
        }

    @engine_operation
    async def use_streak_freeze(
        self,
        user_id: str,
        habit_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Spend a streak freeze to cover yesterday's missed day"""
        profile = await self.store.get_profile(user_id)
        if profile.streak_freezes_remaining <= 0:
            raise InvalidInputError(
                "No streak freezes remaining",
                field="streak_freezes_remaining",
                value=0,
                user_id=user_id
            )

        local_now = resolve_now(now, profile.timezone)
        habit = await self._get_active_habit(user_id, habit_id)
        streak = await self.store.get_streak(user_id, habit_id) or Streak(habit_id=habit_id, user_id=user_id)

        frozen = apply_streak_freeze(streak, local_now.date(), habit.frequency)
        updated_profile = await self.store.use_streak_freeze(frozen)

        logger.info(f"User {user_id} used a streak freeze on habit {habit_id}")
        metrics.record_streak_freeze()
        await self.events.emit("streak_freeze_used", user_id, habit_id=habit_id, automatic=False)

        return {
            "success": True,
            "streak": frozen.current_streak,
            "streak_freezes_remaining": updated_profile.streak_freezes_remaining,
        }

    @engine_operation
    async def get_progress_summary(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        User's progression at a glance.

        Returns:
            {
                'success': True,
                'total_xp': int,
                'level': int,
                'current_level_xp': int,
                'next_level_xp': int,
                'progress': float,
                'streak_freezes_remaining': int,
                'achievements_unlocked': int,
                'achievement_xp': int,
                'best_streak': int,
                'recent_quest_completions': list
            }
        """
        profile = await self.store.get_profile(user_id)
        level_progress = get_level_progress(profile.total_xp)
        achievements = await self.store.list_achievements(user_id)
        streaks = await self.store.list_streaks(user_id)
        recent = await self.store.list_quest_completions(user_id, limit=5)

        return {
            "success": True,
            "user_id": user_id,
            "total_xp": profile.total_xp,
            "level": level_progress.current_level,
            "current_level_xp": level_progress.current_level_xp,
            "next_level_xp": level_progress.next_level_xp,
            "progress": level_progress.progress,
            "streak_freezes_remaining": profile.streak_freezes_remaining,
            "is_pro": profile.is_pro,
            "achievements_unlocked": len(achievements),
            "achievement_xp": calculate_achievement_xp(achievements),
            "best_streak": max((s.best_streak for s in streaks), default=0),
            "recent_quest_completions": [c.model_dump(mode="json") for c in recent],
        }

    # ==========================================
    # Helpers
    # ==========================================

    async def _get_active_habit(self, user_id: str, habit_id: str) -> Habit:
        habit = await self.store.get_habit(user_id, habit_id)
        if habit is None or habit.is_archived:
            raise HabitNotFoundError(habit_id=habit_id, user_id=user_id)
        return habit

    async def _get_quest(self, user_id: str, quest_id: str) -> ActiveQuest:
        quest = await self.store.get_quest(user_id, quest_id)
        if quest is None:
            raise QuestNotFoundError(quest_id=quest_id, user_id=user_id)
        return quest

    async def _reset_broken_streaks(self, user_id: str, profile: UserProgress, today: date) -> None:
        habits = {h.id: h for h in await self.store.list_habits(user_id)}

        for streak in await self.store.list_streaks(user_id):
            habit = habits.get(streak.habit_id)
            if habit is None:
                continue

            refreshed = refresh_streak(
                streak,
                today,
                habit.frequency,
                profile.streak_freezes_remaining,
                self.gap_policy
            )
            if refreshed.current_streak != streak.current_streak:
                await self.store.save_streak(refreshed)

    def _build_quest_event(
        self,
        habit: Habit,
        local_now: datetime,
        habits: Sequence[Habit],
        completions: Sequence[Completion],
        current_streak: int,
        xp_earned: int
    ) -> QuestProgressEvent:
        today = local_now.date()
        completed_today = {c.habit_id for c in completions if c.completed_date == today}
        due_today = [h for h in habits if h.frequency.is_due_on(today)]

        return QuestProgressEvent(
            habit_category=habit.category,
            habit_difficulty=habit.difficulty,
            completion_hour=local_now.hour,
            total_completed_today=sum(1 for h in due_today if h.id in completed_today),
            total_due_today=len(due_today),
            current_streak=current_streak,
            xp_earned=xp_earned,
            consecutive_days=consecutive_active_days((c.completed_date for c in completions), today),
        )

    async def _progress_quests(
        self,
        user_id: str,
        event: QuestProgressEvent,
        local_now: datetime
    ) -> List[Dict[str, Any]]:
        completed = []

        for quest in await self.store.list_quests(user_id, [QuestStatus.ACTIVE]):
            if advance_quest_lifecycle(quest, local_now).status == QuestStatus.EXPIRED:
                continue

            updated = apply_progress(quest, evaluate_quest_progress(quest, event), local_now)
            if updated is quest:
                continue

            if await self.store.update_quest_progress(updated) and updated.status == QuestStatus.COMPLETED:
                completed.append(await self._on_quest_completed(updated))

        return completed

    async def _set_quest_progress(
        self,
        user_id: str,
        quest_id: str,
        candidate: Callable[[ActiveQuest], int],
        now: Optional[datetime]
    ) -> Dict[str, Any]:
        quest = await self._get_quest(user_id, quest_id)
        profile = await self.store.get_profile(user_id)
        local_now = resolve_now(now, profile.timezone)

        changed = False
        if advance_quest_lifecycle(quest, local_now).status != QuestStatus.EXPIRED:
            updated = apply_progress(quest, candidate(quest), local_now)
            if updated is not quest and await self.store.update_quest_progress(updated):
                changed = True
                if updated.status == QuestStatus.COMPLETED:
                    await self._on_quest_completed(updated)
                quest = updated

        return {
            "success": True,
            "changed": changed,
            "quest": quest.model_dump(mode="json"),
        }

    async def _on_quest_completed(self, quest: ActiveQuest) -> Dict[str, Any]:
        metrics.record_quest_transition(quest.tier.value, "completed")
        await self.events.emit(
            "quest_completed",
            quest.user_id,
            quest_id=quest.id,
            template_id=quest.template_id,
            tier=quest.tier.value
        )
        return {
            "quest_id": quest.id,
            "template_id": quest.template_id,
            "name": quest.name,
            "tier": quest.tier.value,
            "reward": quest.reward.model_dump(mode="json"),
        }

    async def _unlock_achievements(
        self,
        user_id: str,
        local_now: datetime,
        profile: UserProgress,
        habits: Sequence[Habit],
        completions: Sequence[Completion]
    ) -> List[Dict[str, Any]]:
        today = local_now.date()
        user_tz = get_timezone(profile.timezone)
        streaks = {s.habit_id: s for s in await self.store.list_streaks(user_id)}
        completed_today = {c.habit_id for c in completions if c.completed_date == today}
        due_today = [h for h in habits if h.frequency.is_due_on(today)]

        habits_with_streaks = []
        for habit in habits:
            streak = streaks.get(habit.id)
            if streak is not None:
                streak = refresh_streak(
                    streak,
                    today,
                    habit.frequency,
                    profile.streak_freezes_remaining,
                    self.gap_policy
                )
            habits_with_streaks.append(HabitWithStreak(
                **habit.model_dump(),
                streak=streak,
                completed_today=habit.id in completed_today
            ))

        ctx = AchievementContext(
            habits=habits_with_streaks,
            completions=[
                c.model_copy(update={"completed_at": c.completed_at.astimezone(user_tz)})
                for c in completions
            ],
            unlocked_achievements=await self.store.list_achievements(user_id),
            total_xp=profile.total_xp,
            level=profile.level,
            completed_today=sum(1 for h in due_today if h.id in completed_today),
            total_habits_today=len(due_today),
            current_hour=local_now.hour,
            today=today,
        )

        unlocked = []
        for achievement_type in evaluate_achievements(ctx):
            info = get_achievement_info(achievement_type)
            achievement = UserAchievement(user_id=user_id, achievement_type=achievement_type, unlocked_at=local_now)

            if not await self.store.unlock_achievement(achievement, xp_bonus=info.xp_bonus):
                # Unlocked concurrently; the bonus was already awarded
                continue

            logger.info(f"User {user_id} unlocked achievement {achievement_type.value} (+{info.xp_bonus} XP)")
            metrics.record_achievement(achievement_type.value)
            metrics.record_xp("achievement", info.xp_bonus)
            await self.events.emit(
                "achievement_unlocked",
                user_id,
                achievement_type=achievement_type.value,
                xp_bonus=info.xp_bonus
            )
            unlocked.append({
                "type": achievement_type.value,
                "name": info.name,
                "icon": info.icon,
                "xp_bonus": info.xp_bonus,
            })

        return unlocked
