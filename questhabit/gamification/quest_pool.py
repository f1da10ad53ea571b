"""
Quest Template Pool

Daily quests: 3 selected each day, reset at midnight
Weekly quests: 1 selected each Monday, resets Sunday night
Legendary quests: Pro only, 1 per week, bigger rewards

Selection is deterministic per (user, period, tier) and differs across
users: a 32-bit string hash seeds a linear-congruential shuffle of the
tier's pool. The hash and generator reproduce the mobile client's
arithmetic exactly so existing users keep their assigned quests.
"""

from typing import Dict, List, Sequence, TypeVar
import logging

from questhabit.exceptions import InvalidInputError
from questhabit.models.habit import HabitCategory, HabitDifficulty
from questhabit.models.quest import (
    CompleteAfterTimeRequirement,
    CompleteAnyRequirement,
    CompleteBeforeTimeRequirement,
    CompleteCategoryRequirement,
    CompleteDifficultyRequirement,
    ConsecutiveDaysRequirement,
    PerfectDayRequirement,
    QuestReward,
    QuestTemplate,
    QuestTier,
    StreakReachRequirement,
    XpEarnRequirement,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DAILY_COUNT = 3

LCG_MULTIPLIER = 1103515245
LCG_INCREMENT = 12345
LCG_MASK = 0x7FFFFFFF


# ============================================
# Template Catalogue
# ============================================

QUEST_TEMPLATES: List[QuestTemplate] = [
    # ========== DAILY QUESTS (achievable in a single day) ==========
    QuestTemplate(
        id="daily_complete_3",
        name="Triple Threat",
        description="Complete 3 habits today",
        tier=QuestTier.DAILY,
        requirement=CompleteAnyRequirement(target=3),
        reward=QuestReward(xp=50),
        icon="✦",
    ),
    QuestTemplate(
        id="daily_complete_5",
        name="High Five",
        description="Complete 5 habits today",
        tier=QuestTier.DAILY,
        requirement=CompleteAnyRequirement(target=5),
        reward=QuestReward(xp=100),
        icon="★",
    ),
    QuestTemplate(
        id="daily_perfect",
        name="Flawless Victory",
        description="Complete ALL of today's habits",
        tier=QuestTier.DAILY,
        requirement=PerfectDayRequirement(target=1),
        reward=QuestReward(xp=75),
        icon="◆",
    ),
    QuestTemplate(
        id="daily_early_bird",
        name="Early Bird",
        description="Complete 2 habits before 9 AM",
        tier=QuestTier.DAILY,
        requirement=CompleteBeforeTimeRequirement(target=2, hour=9),
        reward=QuestReward(xp=60),
        icon="☼",
    ),
    QuestTemplate(
        id="daily_night_owl",
        name="Night Owl",
        description="Complete a habit after 10 PM",
        tier=QuestTier.DAILY,
        requirement=CompleteAfterTimeRequirement(target=1, hour=22),
        reward=QuestReward(xp=40),
        icon="☽",
    ),
    QuestTemplate(
        id="daily_health_focus",
        name="Body & Mind",
        description="Complete 2 Health habits today",
        tier=QuestTier.DAILY,
        requirement=CompleteCategoryRequirement(target=2, category=HabitCategory.HEALTH),
        reward=QuestReward(xp=55),
        icon="♥",
    ),
    QuestTemplate(
        id="daily_productivity_focus",
        name="Grind Mode",
        description="Complete 2 Productivity habits today",
        tier=QuestTier.DAILY,
        requirement=CompleteCategoryRequirement(target=2, category=HabitCategory.PRODUCTIVITY),
        reward=QuestReward(xp=55),
        icon="◉",
    ),
    QuestTemplate(
        id="daily_learning_focus",
        name="Scholar's Path",
        description="Complete 2 Learning habits today",
        tier=QuestTier.DAILY,
        requirement=CompleteCategoryRequirement(target=2, category=HabitCategory.LEARNING),
        reward=QuestReward(xp=55),
        icon="■",
    ),
    QuestTemplate(
        id="daily_hard_mode",
        name="Hard Mode",
        description="Complete a Hard difficulty habit",
        tier=QuestTier.DAILY,
        requirement=CompleteDifficultyRequirement(target=1, difficulty=HabitDifficulty.HARD),
        reward=QuestReward(xp=65),
        icon="⬢",
    ),
    QuestTemplate(
        id="daily_xp_hunter",
        name="XP Hunter",
        description="Earn 100 XP today",
        tier=QuestTier.DAILY,
        requirement=XpEarnRequirement(target=100),
        reward=QuestReward(xp=50),
        icon="✦",
    ),
    QuestTemplate(
        id="daily_dawn_patrol",
        name="Dawn Patrol",
        description="Complete a habit before 7 AM",
        tier=QuestTier.DAILY,
        requirement=CompleteBeforeTimeRequirement(target=1, hour=7),
        reward=QuestReward(xp=70),
        icon="▲",
    ),
    QuestTemplate(
        id="daily_wellness_check",
        name="Wellness Check",
        description="Complete 2 Wellness habits today",
        tier=QuestTier.DAILY,
        requirement=CompleteCategoryRequirement(target=2, category=HabitCategory.WELLNESS),
        reward=QuestReward(xp=55),
        icon="◈",
    ),

    # ========== WEEKLY QUESTS (achievable over 7 days) ==========
    QuestTemplate(
        id="weekly_streak_7",
        name="Week Warrior",
        description="Maintain a 7-day streak on any habit",
        tier=QuestTier.WEEKLY,
        requirement=StreakReachRequirement(target=7),
        reward=QuestReward(xp=200),
        icon="⬢",
    ),
    QuestTemplate(
        id="weekly_perfect_3",
        name="Trifecta",
        description="Have 3 perfect days this week",
        tier=QuestTier.WEEKLY,
        requirement=PerfectDayRequirement(target=3),
        reward=QuestReward(xp=250),
        icon="★",
    ),
    QuestTemplate(
        id="weekly_complete_20",
        name="Habit Machine",
        description="Complete 20 habits this week",
        tier=QuestTier.WEEKLY,
        requirement=CompleteAnyRequirement(target=20),
        reward=QuestReward(xp=200),
        icon="◉",
    ),
    QuestTemplate(
        id="weekly_early_5",
        name="Morning Glory",
        description="Complete habits before 9 AM on 5 different days",
        tier=QuestTier.WEEKLY,
        requirement=CompleteBeforeTimeRequirement(target=5, hour=9),
        reward=QuestReward(xp=225),
        icon="☼",
    ),
    QuestTemplate(
        id="weekly_xp_500",
        name="XP Feast",
        description="Earn 500 XP this week",
        tier=QuestTier.WEEKLY,
        requirement=XpEarnRequirement(target=500),
        reward=QuestReward(xp=200),
        icon="✦",
    ),
    QuestTemplate(
        id="weekly_hard_5",
        name="Challenge Accepted",
        description="Complete 5 Hard difficulty habits this week",
        tier=QuestTier.WEEKLY,
        requirement=CompleteDifficultyRequirement(target=5, difficulty=HabitDifficulty.HARD),
        reward=QuestReward(xp=275),
        icon="⬢",
    ),
    QuestTemplate(
        id="weekly_consistency",
        name="Consistency King",
        description="Complete at least 1 habit every day for 7 days",
        tier=QuestTier.WEEKLY,
        requirement=ConsecutiveDaysRequirement(target=7),
        reward=QuestReward(xp=300),
        icon="◆",
    ),
    QuestTemplate(
        id="weekly_variety",
        name="Renaissance",
        description="Complete habits from 3 different categories",
        tier=QuestTier.WEEKLY,
        requirement=CompleteAnyRequirement(target=3),
        reward=QuestReward(xp=175),
        icon="◈",
    ),

    # ========== LEGENDARY QUESTS (Pro only, big rewards) ==========
    QuestTemplate(
        id="legendary_perfect_week",
        name="The Perfect Week",
        description="Complete ALL habits every single day for 7 days straight",
        tier=QuestTier.LEGENDARY,
        requirement=PerfectDayRequirement(target=7),
        reward=QuestReward(xp=750, streak_freezes=2, badge="perfectionist"),
        icon="★",
    ),
    QuestTemplate(
        id="legendary_xp_1000",
        name="XP Overlord",
        description="Earn 1,000 XP in a single week",
        tier=QuestTier.LEGENDARY,
        requirement=XpEarnRequirement(target=1000),
        reward=QuestReward(xp=500, badge="xp_overlord"),
        icon="✦",
    ),
    QuestTemplate(
        id="legendary_streak_14",
        name="The Iron Will",
        description="Maintain a 14-day streak on any habit",
        tier=QuestTier.LEGENDARY,
        requirement=StreakReachRequirement(target=14),
        reward=QuestReward(xp=600, streak_freezes=1, badge="iron_will"),
        icon="◆",
    ),
    QuestTemplate(
        id="legendary_complete_50",
        name="The Grinder",
        description="Complete 50 habits in a single week",
        tier=QuestTier.LEGENDARY,
        requirement=CompleteAnyRequirement(target=50),
        reward=QuestReward(xp=500, badge="grinder"),
        icon="⬢",
    ),
    QuestTemplate(
        id="legendary_dawn_warrior",
        name="Dawn Warrior",
        description="Complete a habit before 7 AM every day for a week",
        tier=QuestTier.LEGENDARY,
        requirement=CompleteBeforeTimeRequirement(target=7, hour=7),
        reward=QuestReward(xp=650, streak_freezes=1, badge="dawn_warrior"),
        icon="▲",
    ),
]

_TEMPLATES_BY_ID: Dict[str, QuestTemplate] = {t.id: t for t in QUEST_TEMPLATES}

QUEST_TIER_INFO: Dict[QuestTier, Dict[str, str]] = {
    QuestTier.DAILY: {"label": "DAILY", "icon": "◉", "duration": "Resets at midnight"},
    QuestTier.WEEKLY: {"label": "WEEKLY", "icon": "★", "duration": "Resets Monday"},
    QuestTier.LEGENDARY: {"label": "LEGENDARY", "icon": "♦", "duration": "Pro Only"},
}


def get_quests_by_tier(tier: QuestTier) -> List[QuestTemplate]:
    """Templates of one tier, in catalogue order"""
    return [t for t in QUEST_TEMPLATES if t.tier == QuestTier(tier)]


def get_template(template_id: str) -> QuestTemplate:
    """Look up a template by id"""
    try:
        return _TEMPLATES_BY_ID[template_id]
    except KeyError:
        raise InvalidInputError(
            f"Unknown quest template '{template_id}'",
            field="template_id",
            value=template_id
        )


def get_quest_tier_info(tier: QuestTier) -> Dict[str, str]:
    """Tier metadata for display"""
    return dict(QUEST_TIER_INFO[QuestTier(tier)])


# ============================================
# Deterministic Selection
# ============================================

def hash_code(text: str) -> int:
    """
    31-multiplier string hash over UTF-16 code units

    Wrapped to a signed 32-bit integer, then made non-negative.
    """
    encoded = text.encode("utf-16-le", "surrogatepass")
    value = 0
    for index in range(0, len(encoded), 2):
        code_unit = encoded[index] | (encoded[index + 1] << 8)
        value = (value * 31 + code_unit) & 0xFFFFFFFF

    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


def _next_seed(seed: int) -> int:
    # The product is computed in double precision, as the client does
    return int(float(seed) * LCG_MULTIPLIER + LCG_INCREMENT) & LCG_MASK


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """Fisher-Yates shuffle driven by a linear-congruential generator"""
    shuffled = list(items)
    m = len(shuffled)
    s = seed

    while m:
        s = _next_seed(s)
        i = s % m
        m -= 1
        shuffled[m], shuffled[i] = shuffled[i], shuffled[m]

    return shuffled


def _select(user_id: str, period_key: str, tier: QuestTier) -> List[QuestTemplate]:
    pool = get_quests_by_tier(tier)
    seed = hash_code(f"{user_id}-{period_key}-{tier.value}")
    return seeded_shuffle(pool, seed)


def select_daily_quests(user_id: str, date_key: str, count: int = DEFAULT_DAILY_COUNT) -> List[QuestTemplate]:
    """
    Pick the user's daily quests for a date

    Args:
        user_id: User identifier
        date_key: ISO date, e.g. '2026-10-19'
        count: Number of quests (clamped to the pool size)

    Returns:
        Ordered list of templates, identical for identical arguments
    """
    if count < 0:
        raise InvalidInputError("Quest count must not be negative", field="count", value=count)
    return _select(user_id, date_key, QuestTier.DAILY)[:count]


def select_weekly_quest(user_id: str, week_key: str) -> QuestTemplate:
    """Pick the user's weekly quest for the week starting at week_key"""
    return _select(user_id, week_key, QuestTier.WEEKLY)[0]


def select_legendary_quest(user_id: str, week_key: str) -> QuestTemplate:
    """Pick the user's legendary quest for the week starting at week_key"""
    return _select(user_id, week_key, QuestTier.LEGENDARY)[0]
