"""User progression models"""
from pydantic import BaseModel, Field


class UserProgress(BaseModel):
    """
    User's XP, level and consumables

    ``level`` is derived from ``total_xp`` by the XP system and is never
    written independently of it.
    """
    user_id: str
    total_xp: int = 0
    level: int = 1
    streak_freezes_remaining: int = Field(default=0, ge=0)
    is_pro: bool = False
    timezone: str = "UTC"  # IANA timezone (e.g., "America/New_York", "Europe/London")
