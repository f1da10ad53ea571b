"""Monitoring infrastructure for questhabit"""
from questhabit.monitoring.metrics import (
    ProgressionMetrics,
    record_completion,
    record_xp,
    record_level_up,
    record_achievement,
    record_quest_transition,
    record_streak_freeze,
    record_evaluation_failure,
    record_retry,
    track_store_call
)

__all__ = [
    "ProgressionMetrics",
    "record_completion",
    "record_xp",
    "record_level_up",
    "record_achievement",
    "record_quest_transition",
    "record_streak_freeze",
    "record_evaluation_failure",
    "record_retry",
    "track_store_call"
]
