"""Habit, completion and streak models"""
from enum import Enum
from typing import Optional
from datetime import date, datetime, timezone
from pydantic import BaseModel, Field, field_validator
from uuid import uuid4


class HabitCategory(str, Enum):
    """Habit categories"""
    HEALTH = "health"
    PRODUCTIVITY = "productivity"
    LEARNING = "learning"
    WELLNESS = "wellness"
    CUSTOM = "custom"


class HabitDifficulty(str, Enum):
    """Habit difficulty, drives base XP"""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class FrequencyType(str, Enum):
    """How often a habit is due"""
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    CUSTOM = "custom"


class HabitFrequency(BaseModel):
    """Frequency rule for a habit"""
    type: FrequencyType = FrequencyType.DAILY
    days: list[int] = Field(default_factory=list)  # 0=Sunday .. 6=Saturday (custom only)

    @field_validator('days')
    @classmethod
    def validate_days(cls, v: list[int]) -> list[int]:
        """Days must be 0-6"""
        for day in v:
            if day < 0 or day > 6:
                raise ValueError(f"Invalid day {day}. Must be 0 (Sunday) to 6 (Saturday)")
        return sorted(set(v))

    def is_due_on(self, day: date) -> bool:
        """Whether the habit is due on the given calendar date"""
        # date.weekday() is 0=Monday; frequency days use 0=Sunday
        day_of_week = (day.weekday() + 1) % 7

        if self.type == FrequencyType.DAILY:
            return True
        if self.type == FrequencyType.WEEKDAYS:
            return 1 <= day_of_week <= 5
        if self.type == FrequencyType.WEEKENDS:
            return day_of_week in (0, 6)
        return day_of_week in self.days


class Habit(BaseModel):
    """User-defined recurring habit"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str
    description: Optional[str] = None
    category: HabitCategory = HabitCategory.CUSTOM
    difficulty: HabitDifficulty = HabitDifficulty.MEDIUM
    frequency: HabitFrequency = Field(default_factory=HabitFrequency)
    icon: Optional[str] = None
    is_archived: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Completion(BaseModel):
    """One completion of a habit on a calendar date"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    habit_id: str
    user_id: str
    completed_at: datetime
    completed_date: date
    xp_earned: int
    streak_bonus: float = 0.0
    time_bonus: float = 0.0
    freeze_used: bool = False
    previous_completed_date: Optional[date] = None


class Streak(BaseModel):
    """Consecutive-completion counters for one habit"""
    habit_id: str
    user_id: str
    current_streak: int = 0
    best_streak: int = 0
    last_completed_date: Optional[date] = None
    freeze_used_at: Optional[date] = None


class HabitWithStreak(Habit):
    """Habit joined with its streak and today's completion flag"""
    streak: Optional[Streak] = None
    completed_today: bool = False

    @property
    def current_streak(self) -> int:
        return self.streak.current_streak if self.streak else 0
