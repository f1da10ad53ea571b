"""
Service Layer Package

Business logic services between callers (apps, bots, APIs) and the
persistence layer.

Core Services:
- ProgressionService: habit completion, quests, achievements, streak freezes
"""

from questhabit.services.progression_service import ProgressionService

__all__ = [
    "ProgressionService",
]
