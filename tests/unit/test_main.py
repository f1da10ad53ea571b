"""Unit tests for the command-line entry point"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from questhabit.main import build_parser, run_action


@pytest.fixture
def mock_service():
    service = MagicMock()
    for name in [
        "complete_habit", "uncomplete_habit", "refresh_quests", "update_quest_progress",
        "complete_quest", "claim_quest_reward", "check_achievements", "use_streak_freeze",
        "get_progress_summary",
    ]:
        setattr(service, name, AsyncMock(return_value={"success": True, "action": name}))
    return service


def test_parser_rejects_unknown_action():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["explode", "user-123"])


@pytest.mark.asyncio
async def test_complete_dispatch(mock_service):
    """Test the complete action calls complete_habit"""
    args = build_parser().parse_args(["complete", "user-123", "--habit", "habit-1"])

    result = await run_action(mock_service, args)

    assert result["action"] == "complete_habit"
    mock_service.complete_habit.assert_awaited_once_with("user-123", "habit-1")


@pytest.mark.asyncio
async def test_progress_dispatch(mock_service):
    """Test manual quest progress passes the value through"""
    args = build_parser().parse_args(["progress", "user-123", "--quest", "q-1", "--progress", "2"])

    await run_action(mock_service, args)

    mock_service.update_quest_progress.assert_awaited_once_with("user-123", "q-1", 2)


@pytest.mark.asyncio
async def test_missing_habit_argument(mock_service):
    """Test habit actions require --habit"""
    args = build_parser().parse_args(["freeze", "user-123"])

    result = await run_action(mock_service, args)

    assert result["success"] is False
    assert result["error"] == "invalid_input"
    mock_service.use_streak_freeze.assert_not_called()


@pytest.mark.asyncio
async def test_missing_quest_argument(mock_service):
    """Test quest actions require --quest"""
    args = build_parser().parse_args(["claim", "user-123"])

    result = await run_action(mock_service, args)

    assert result["error"] == "invalid_input"


@pytest.mark.asyncio
async def test_summary_is_default(mock_service):
    args = build_parser().parse_args(["summary", "user-123"])

    result = await run_action(mock_service, args)

    assert result["action"] == "get_progress_summary"
