"""Unit tests for XP and Leveling System (questhabit/gamification/xp_system.py)"""
import pytest
from typing import Any, Dict, get_type_hints

from questhabit.exceptions import InvalidInputError
from questhabit.gamification.xp_system import (
    LEVEL_THRESHOLDS,
    check_level_up,
    compute_completion_xp,
    get_level,
    get_level_progress,
    get_xp_for_next_level,
    level_threshold,
)
from questhabit.models.habit import HabitDifficulty


# ============================================================================
# Completion XP Tests
# ============================================================================

def test_base_xp_by_difficulty():
    """Test base XP without bonuses"""
    assert compute_completion_xp(HabitDifficulty.EASY, 0, 12).total_xp == 10
    assert compute_completion_xp(HabitDifficulty.MEDIUM, 0, 12).total_xp == 25
    assert compute_completion_xp(HabitDifficulty.HARD, 0, 12).total_xp == 50


def test_difficulty_accepts_plain_strings():
    """Test string difficulty values are coerced"""
    assert compute_completion_xp("hard", 0, 12).base_xp == 50


def test_capped_streak_and_morning_bonus():
    """Test easy habit, streak 10, 6 AM -> round(10 * 1.6) = 16"""
    result = compute_completion_xp(HabitDifficulty.EASY, 10, 6)

    assert result.base_xp == 10
    assert result.streak_bonus == 0.5
    assert result.time_bonus == 0.1
    assert result.total_xp == 16


def test_streak_bonus_caps_at_fifty_percent():
    """Test streak bonus never exceeds +50%"""
    assert compute_completion_xp(HabitDifficulty.HARD, 10, 12).streak_bonus == 0.5
    assert compute_completion_xp(HabitDifficulty.HARD, 365, 12).streak_bonus == 0.5
    assert compute_completion_xp(HabitDifficulty.HARD, 365, 12).total_xp == 75


def test_morning_bonus_boundary():
    """Test morning bonus applies before 9 AM only"""
    assert compute_completion_xp(HabitDifficulty.MEDIUM, 0, 8).time_bonus == 0.1
    assert compute_completion_xp(HabitDifficulty.MEDIUM, 0, 9).time_bonus == 0.0
    assert compute_completion_xp(HabitDifficulty.MEDIUM, 0, 0).time_bonus == 0.1


def test_half_xp_rounds_up():
    """Test 10 * 1.05 = 10.5 rounds up to 11"""
    assert compute_completion_xp(HabitDifficulty.EASY, 1, 12).total_xp == 11


def test_negative_streak_counts_as_zero():
    """Test negative streak gives no bonus"""
    result = compute_completion_xp(HabitDifficulty.MEDIUM, -3, 12)

    assert result.streak_bonus == 0
    assert result.total_xp == 25


def test_invalid_difficulty_raises():
    """Test unknown difficulty raises InvalidInputError"""
    with pytest.raises(InvalidInputError) as exc_info:
        compute_completion_xp("legendary", 0, 12)

    assert exc_info.value.field == "difficulty"


def test_breakdown_multiplier():
    """Test multiplier combines both bonuses"""
    result = compute_completion_xp(HabitDifficulty.MEDIUM, 2, 7)
    assert result.multiplier == pytest.approx(1.2)


# ============================================================================
# Level Calculation Tests
# ============================================================================

@pytest.mark.parametrize("total_xp,expected_level", [
    (-50, 1),
    (0, 1),
    (99, 1),
    (100, 2),
    (249, 2),
    (250, 3),
    (1000, 5),
    (32000, 10),
    (127999, 11),
    (128000, 12),
    (255999, 12),
    (256000, 13),
    (512000, 14),
])
def test_get_level(total_xp, expected_level):
    """Test level lookup across the table and the doubling rule"""
    assert get_level(total_xp) == expected_level


def test_level_threshold_doubles_after_table():
    """Test thresholds beyond level 12 keep doubling"""
    assert level_threshold(1) == 0
    assert level_threshold(12) == 128000
    assert level_threshold(13) == 256000
    assert level_threshold(15) == 1024000
    assert get_xp_for_next_level(12) == 256000


def test_get_level_is_monotonic():
    """Test more XP never lowers the level"""
    previous = 0
    for xp in range(0, 300000, 997):
        level = get_level(xp)
        assert level >= previous
        previous = level


def test_every_threshold_starts_its_level():
    """Test each table threshold maps to its own level"""
    for index, threshold in enumerate(LEVEL_THRESHOLDS):
        assert get_level(threshold) == index + 1


# ============================================================================
# Level Progress Tests
# ============================================================================

def test_level_progress_zero_xp():
    """Test 0 XP is level 1 with no progress"""
    progress = get_level_progress(0)

    assert progress.current_level == 1
    assert progress.current_level_xp == 0
    assert progress.next_level_xp == 100
    assert progress.progress == 0


def test_level_progress_at_threshold():
    """Test 100 XP is level 2 with 0 XP into the level"""
    progress = get_level_progress(100)

    assert progress.current_level == 2
    assert progress.current_level_xp == 0
    assert progress.next_level_xp == 150


def test_level_progress_midway():
    """Test progress fraction within a level"""
    progress = get_level_progress(175)

    assert progress.current_level == 2
    assert progress.current_level_xp == 75
    assert progress.progress == pytest.approx(0.5)


def test_level_progress_negative_xp():
    """Test negative XP is treated as zero"""
    progress = get_level_progress(-40)

    assert progress.current_level == 1
    assert progress.current_level_xp == 0
    assert 0 <= progress.progress <= 1


# ============================================================================
# Level Up Tests
# ============================================================================

def test_check_level_up_crossing_boundary():
    """Test crossing a threshold reports the level up"""
    result = check_level_up(90, 110)

    assert result == {"leveled_up": True, "previous_level": 1, "new_level": 2}


def test_check_level_up_same_level():
    """Test staying inside a level"""
    result = check_level_up(110, 200)

    assert result["leveled_up"] is False
    assert result["new_level"] == 2


def test_check_level_up_return_annotation():
    assert get_type_hints(check_level_up)["return"] == Dict[str, Any]
