"""Database schema for the progression engine"""
import logging

from questhabit.db.connection import Database

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_progress (
    user_id TEXT PRIMARY KEY,
    total_xp INTEGER NOT NULL DEFAULT 0 CHECK (total_xp >= 0),
    level INTEGER NOT NULL DEFAULT 1,
    streak_freezes_remaining INTEGER NOT NULL DEFAULT 0 CHECK (streak_freezes_remaining >= 0),
    is_pro BOOLEAN NOT NULL DEFAULT FALSE,
    timezone TEXT NOT NULL DEFAULT 'UTC',
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS habits (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    category TEXT NOT NULL,
    difficulty TEXT NOT NULL,
    frequency JSONB NOT NULL,
    icon TEXT,
    is_archived BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_habits_user ON habits (user_id);

CREATE TABLE IF NOT EXISTS streaks (
    habit_id TEXT PRIMARY KEY REFERENCES habits (id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    current_streak INTEGER NOT NULL DEFAULT 0,
    best_streak INTEGER NOT NULL DEFAULT 0,
    last_completed_date DATE,
    freeze_used_at DATE,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CHECK (best_streak >= current_streak)
);

CREATE TABLE IF NOT EXISTS habit_completions (
    id TEXT PRIMARY KEY,
    habit_id TEXT NOT NULL REFERENCES habits (id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    completed_at TIMESTAMPTZ NOT NULL,
    completed_date DATE NOT NULL,
    xp_earned INTEGER NOT NULL,
    streak_bonus DOUBLE PRECISION NOT NULL DEFAULT 0,
    time_bonus DOUBLE PRECISION NOT NULL DEFAULT 0,
    freeze_used BOOLEAN NOT NULL DEFAULT FALSE,
    previous_completed_date DATE,
    CONSTRAINT uq_habit_completions_habit_date UNIQUE (habit_id, completed_date)
);

CREATE INDEX IF NOT EXISTS idx_habit_completions_user_date ON habit_completions (user_id, completed_date);

CREATE TABLE IF NOT EXISTS user_achievements (
    user_id TEXT NOT NULL,
    achievement_type TEXT NOT NULL,
    unlocked_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (user_id, achievement_type)
);

CREATE TABLE IF NOT EXISTS active_quests (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    template_id TEXT NOT NULL,
    tier TEXT NOT NULL,
    period_key TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    requirement JSONB NOT NULL,
    reward JSONB NOT NULL,
    icon TEXT NOT NULL DEFAULT '',
    progress INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    activated_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    completed_at TIMESTAMPTZ,
    claimed_at TIMESTAMPTZ,
    CONSTRAINT uq_active_quests_period UNIQUE (user_id, tier, period_key, template_id)
);

CREATE INDEX IF NOT EXISTS idx_active_quests_user_status ON active_quests (user_id, status);

CREATE TABLE IF NOT EXISTS quest_completions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    quest_id TEXT NOT NULL REFERENCES active_quests (id),
    quest_template_id TEXT NOT NULL,
    quest_name TEXT NOT NULL,
    tier TEXT NOT NULL,
    xp_earned INTEGER NOT NULL,
    streak_freezes_earned INTEGER NOT NULL DEFAULT 0,
    badge_earned TEXT,
    completed_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_quest_completions_user ON quest_completions (user_id, completed_at DESC);
"""


async def init_schema(database: Database) -> None:
    """Create tables and indexes if they do not exist"""
    async with database.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(SCHEMA_SQL)
        await conn.commit()
    logger.info("Database schema ready")
