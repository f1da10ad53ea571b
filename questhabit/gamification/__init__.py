"""
Gamification engine for QuestHabit

Pure rule modules turning habit completions into progression:
- XP and leveling system
- Per-habit streak tracking with streak freezes
- Achievement system
- Quest pool, deterministic rotation and quest progress
"""

from questhabit.gamification.xp_system import compute_completion_xp, get_level, get_level_progress
from questhabit.gamification.streak_system import record_completion, apply_streak_freeze, StreakGapPolicy
from questhabit.gamification.achievement_system import evaluate_achievements, AchievementContext
from questhabit.gamification.quest_pool import select_daily_quests, select_weekly_quest, select_legendary_quest
from questhabit.gamification.quest_lifecycle import evaluate_quest_progress, advance_quest_lifecycle

__all__ = [
    "compute_completion_xp",
    "get_level",
    "get_level_progress",
    "record_completion",
    "apply_streak_freeze",
    "StreakGapPolicy",
    "evaluate_achievements",
    "AchievementContext",
    "select_daily_quests",
    "select_weekly_quest",
    "select_legendary_quest",
    "evaluate_quest_progress",
    "advance_quest_lifecycle",
]
