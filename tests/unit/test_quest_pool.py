"""Unit tests for quest template pool and deterministic selection"""
import pytest

from questhabit.exceptions import InvalidInputError
from questhabit.gamification.quest_pool import (
    QUEST_TEMPLATES,
    get_quest_tier_info,
    get_quests_by_tier,
    get_template,
    hash_code,
    seeded_shuffle,
    select_daily_quests,
    select_legendary_quest,
    select_weekly_quest,
)
from questhabit.models.quest import QuestTier


# ============================================================================
# Catalogue Tests
# ============================================================================

def test_catalogue_sizes():
    """Test each tier has its full pool"""
    assert len(get_quests_by_tier(QuestTier.DAILY)) == 12
    assert len(get_quests_by_tier(QuestTier.WEEKLY)) == 8
    assert len(get_quests_by_tier(QuestTier.LEGENDARY)) == 5


def test_template_ids_unique():
    """Test template ids are unique"""
    ids = [t.id for t in QUEST_TEMPLATES]
    assert len(ids) == len(set(ids))


def test_get_template():
    """Test template lookup by id"""
    template = get_template("legendary_perfect_week")

    assert template.tier == QuestTier.LEGENDARY
    assert template.requirement.type == "perfect_day"
    assert template.requirement.target == 7
    assert template.reward.xp == 750
    assert template.reward.streak_freezes == 2
    assert template.reward.badge == "perfectionist"


def test_get_unknown_template():
    """Test unknown template id raises InvalidInputError"""
    with pytest.raises(InvalidInputError):
        get_template("daily_does_not_exist")


def test_tier_info():
    """Test tier display metadata"""
    assert get_quest_tier_info(QuestTier.LEGENDARY)["duration"] == "Pro Only"
    assert get_quest_tier_info("daily")["label"] == "DAILY"


# ============================================================================
# Hash Tests
# ============================================================================

@pytest.mark.parametrize("text,expected", [
    ("", 0),
    ("abc", 96354),
    ("hello", 99162322),
    ("😀", 1772899),  # surrogate pair, hashed as two code units
])
def test_hash_code(text, expected):
    """Test 31-multiplier hash matches known values"""
    assert hash_code(text) == expected


def test_hash_code_min_value_is_positive():
    """Test the most negative 32-bit value becomes its absolute value"""
    assert hash_code("polygenelubricants") == 2147483648


def test_hash_code_lone_surrogate():
    """Test unpaired surrogates hash as their raw code unit"""
    assert hash_code("\ud83d") == 55357
    assert hash_code("\ud83d\ude00") == hash_code("\U0001F600") == 1772899


def test_hash_code_never_negative():
    """Test hashes are non-negative for arbitrary strings"""
    for text in ["user-123-2026-10-19-daily", "x" * 200, "ü∑ß", "-"]:
        assert hash_code(text) >= 0


# ============================================================================
# Shuffle Tests
# ============================================================================

def test_seeded_shuffle_known_sequences():
    """Test shuffle output for seed 0"""
    assert seeded_shuffle(["a", "b"], 0) == ["a", "b"]
    assert seeded_shuffle(["a", "b", "c"], 0) == ["b", "c", "a"]


def test_seeded_shuffle_is_permutation():
    """Test shuffle keeps every element exactly once"""
    items = list(range(25))
    shuffled = seeded_shuffle(items, 987654321)

    assert sorted(shuffled) == items
    assert items == list(range(25))  # input untouched


def test_seeded_shuffle_empty():
    """Test empty input gives empty output"""
    assert seeded_shuffle([], 42) == []


# ============================================================================
# Selection Tests
# ============================================================================

def test_daily_selection_is_deterministic():
    """Test same user and date always get the same quests"""
    first = select_daily_quests("user-123", "2026-10-19")
    second = select_daily_quests("user-123", "2026-10-19")

    assert [t.id for t in first] == [t.id for t in second]
    assert len(first) == 3
    assert len({t.id for t in first}) == 3
    assert all(t.tier == QuestTier.DAILY for t in first)


def test_selection_accepts_unpaired_surrogates():
    """Test user ids with a broken surrogate pair still select quests"""
    assert len(select_daily_quests("user-\ud83d", "2026-10-19")) == 3


def test_daily_selection_varies():
    """Test selections differ across users or dates"""
    selections = {
        tuple(t.id for t in select_daily_quests(f"user-{n}", "2026-10-19"))
        for n in range(20)
    }
    assert len(selections) > 1


def test_daily_selection_count_edges():
    """Test count of zero, above the pool and negative"""
    assert select_daily_quests("user-123", "2026-10-19", 0) == []
    assert len(select_daily_quests("user-123", "2026-10-19", 50)) == 12

    with pytest.raises(InvalidInputError):
        select_daily_quests("user-123", "2026-10-19", -1)


def test_daily_selection_is_prefix_stable():
    """Test a smaller count is a prefix of a larger one"""
    three = select_daily_quests("user-123", "2026-10-19", 3)
    five = select_daily_quests("user-123", "2026-10-19", 5)

    assert [t.id for t in five[:3]] == [t.id for t in three]


def test_weekly_and_legendary_selection():
    """Test weekly and legendary picks come from their own tier"""
    weekly = select_weekly_quest("user-123", "2026-10-19")
    legendary = select_legendary_quest("user-123", "2026-10-19")

    assert weekly.tier == QuestTier.WEEKLY
    assert legendary.tier == QuestTier.LEGENDARY
    assert select_weekly_quest("user-123", "2026-10-19").id == weekly.id
