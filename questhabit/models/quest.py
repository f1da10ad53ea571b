"""Quest models: templates, requirements, rewards and per-user instances"""
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from datetime import datetime, timezone
from pydantic import BaseModel, Field
from uuid import uuid4

from questhabit.models.habit import HabitCategory, HabitDifficulty


class QuestTier(str, Enum):
    """Quest tiers, ordered by period length and difficulty"""
    DAILY = "daily"
    WEEKLY = "weekly"
    LEGENDARY = "legendary"  # Pro only


class QuestStatus(str, Enum):
    """
    Quest instance status

    active -> completed -> claimed
    active -> expired
    """
    ACTIVE = "active"
    COMPLETED = "completed"
    CLAIMED = "claimed"
    EXPIRED = "expired"


# ============================================
# Requirements (closed tagged union)
# ============================================

class CompleteAnyRequirement(BaseModel):
    type: Literal["complete_any"] = "complete_any"
    target: int = Field(gt=0)


class CompleteCategoryRequirement(BaseModel):
    type: Literal["complete_category"] = "complete_category"
    target: int = Field(gt=0)
    category: HabitCategory


class CompleteBeforeTimeRequirement(BaseModel):
    type: Literal["complete_before_time"] = "complete_before_time"
    target: int = Field(gt=0)
    hour: int = Field(default=9, ge=0, le=24)


class CompleteAfterTimeRequirement(BaseModel):
    type: Literal["complete_after_time"] = "complete_after_time"
    target: int = Field(gt=0)
    hour: int = Field(default=22, ge=0, le=24)


class PerfectDayRequirement(BaseModel):
    type: Literal["perfect_day"] = "perfect_day"
    target: int = Field(gt=0)


class StreakReachRequirement(BaseModel):
    type: Literal["streak_reach"] = "streak_reach"
    target: int = Field(gt=0)


class XpEarnRequirement(BaseModel):
    type: Literal["xp_earn"] = "xp_earn"
    target: int = Field(gt=0)


class CompleteDifficultyRequirement(BaseModel):
    type: Literal["complete_difficulty"] = "complete_difficulty"
    target: int = Field(gt=0)
    difficulty: HabitDifficulty


class ConsecutiveDaysRequirement(BaseModel):
    type: Literal["consecutive_days"] = "consecutive_days"
    target: int = Field(gt=0)


QuestRequirementKind = Union[
    CompleteAnyRequirement,
    CompleteCategoryRequirement,
    CompleteBeforeTimeRequirement,
    CompleteAfterTimeRequirement,
    PerfectDayRequirement,
    StreakReachRequirement,
    XpEarnRequirement,
    CompleteDifficultyRequirement,
    ConsecutiveDaysRequirement,
]

QuestRequirement = Annotated[QuestRequirementKind, Field(discriminator="type")]


class QuestReward(BaseModel):
    """What claiming a quest grants"""
    xp: int = Field(ge=0)
    streak_freezes: int = Field(default=0, ge=0)
    badge: Optional[str] = None


class QuestTemplate(BaseModel):
    """Static catalogue entry"""
    id: str
    name: str
    description: str
    tier: QuestTier
    requirement: QuestRequirement
    reward: QuestReward
    icon: str = ""


class ActiveQuest(BaseModel):
    """A template instantiated for one user and one period"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    template_id: str
    tier: QuestTier
    period_key: str  # ISO date of the day (daily) or of the week's Monday
    name: str
    description: str
    requirement: QuestRequirement
    reward: QuestReward
    icon: str = ""
    progress: int = 0
    status: QuestStatus = QuestStatus.ACTIVE
    activated_at: datetime
    expires_at: datetime
    completed_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None

    @property
    def target(self) -> int:
        return self.requirement.target


class QuestCompletion(BaseModel):
    """Immutable record written when a quest reward is claimed"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    quest_id: str
    quest_template_id: str
    quest_name: str
    tier: QuestTier
    xp_earned: int
    streak_freezes_earned: int = 0
    badge_earned: Optional[str] = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class QuestProgressEvent(BaseModel):
    """Descriptor of one habit completion, as seen by quest evaluation"""
    type: Literal["habit_completed"] = "habit_completed"
    habit_category: Optional[HabitCategory] = None
    habit_difficulty: Optional[HabitDifficulty] = None
    completion_hour: Optional[int] = None
    total_completed_today: Optional[int] = None
    total_due_today: Optional[int] = None
    current_streak: Optional[int] = None
    xp_earned: Optional[int] = None
    consecutive_days: Optional[int] = None
