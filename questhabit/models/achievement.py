"""Achievement models for gamification"""
from enum import Enum
from pydantic import BaseModel
from datetime import datetime


class AchievementType(str, Enum):
    """Every achievement a user can unlock"""
    FIRST_STEP = "first_step"
    WEEK_WARRIOR = "week_warrior"
    FORTNIGHT_FIGHTER = "fortnight_fighter"
    MONTHLY_MASTER = "monthly_master"
    EARLY_BIRD = "early_bird"
    NIGHT_OWL = "night_owl"
    PERFECT_DAY = "perfect_day"
    PERFECT_WEEK = "perfect_week"
    HABIT_COLLECTOR = "habit_collector"
    LEVEL_5 = "level_5"
    LEVEL_10 = "level_10"


class AchievementDefinition(BaseModel):
    """Achievement display data and XP bonus"""
    type: AchievementType
    name: str
    description: str
    icon: str
    xp_bonus: int


class UserAchievement(BaseModel):
    """User's unlocked achievement"""
    user_id: str
    achievement_type: AchievementType
    unlocked_at: datetime
