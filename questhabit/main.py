"""Main entry point for the QuestHabit progression engine

Runs one engine operation against the PostgreSQL store and prints the
result as JSON:

    python -m questhabit.main refresh <user_id>
    python -m questhabit.main complete <user_id> --habit <habit_id>
    python -m questhabit.main claim <user_id> --quest <quest_id>
"""
import argparse
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from questhabit.config import validate_config, LOG_LEVEL
from questhabit.db.connection import db
from questhabit.db.postgres_store import PostgresStore
from questhabit.db.schema import init_schema
from questhabit.events import EventBus, ProgressionEvent
from questhabit.services.progression_service import ProgressionService

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)

ACTIONS = ["complete", "uncomplete", "refresh", "progress", "complete-quest", "claim", "achievements", "freeze", "summary"]


def log_event(event: ProgressionEvent) -> None:
    """Default subscriber: record every progression event in the log"""
    logger.info(f"[EVENT] {event.type} user={event.user_id} {event.payload}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="QuestHabit progression engine")
    parser.add_argument("action", choices=ACTIONS, help="Operation to perform")
    parser.add_argument("user_id", help="User ID")
    parser.add_argument("--habit", help="Habit ID (complete, uncomplete, freeze)")
    parser.add_argument("--quest", help="Quest ID (progress, complete-quest, claim)")
    parser.add_argument("--progress", type=int, help="New quest progress (progress)")
    parser.add_argument("--init-schema", action="store_true", help="Create tables before running")
    return parser


async def run_action(service: ProgressionService, args: argparse.Namespace) -> Dict[str, Any]:
    """Dispatch a parsed command to the service"""
    if args.action in ("complete", "uncomplete", "freeze") and not args.habit:
        return {"success": False, "error": "invalid_input", "message": "--habit is required"}
    if args.action in ("progress", "complete-quest", "claim") and not args.quest:
        return {"success": False, "error": "invalid_input", "message": "--quest is required"}

    if args.action == "complete":
        return await service.complete_habit(args.user_id, args.habit)
    if args.action == "uncomplete":
        return await service.uncomplete_habit(args.user_id, args.habit)
    if args.action == "refresh":
        return await service.refresh_quests(args.user_id)
    if args.action == "progress":
        return await service.update_quest_progress(args.user_id, args.quest, args.progress)
    if args.action == "complete-quest":
        return await service.complete_quest(args.user_id, args.quest)
    if args.action == "claim":
        return await service.claim_quest_reward(args.user_id, args.quest)
    if args.action == "achievements":
        return await service.check_achievements(args.user_id)
    if args.action == "freeze":
        return await service.use_streak_freeze(args.user_id, args.habit)
    return await service.get_progress_summary(args.user_id)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point"""
    args = build_parser().parse_args(argv)
    result: Dict[str, Any] = {"success": False, "error": "internal_error"}

    try:
        # Validate configuration
        logger.info("Validating configuration...")
        validate_config()

        # Initialize database
        logger.info("Initializing database connection pool...")
        await db.init_pool()

        if args.init_schema:
            await init_schema(db)

        events = EventBus()
        events.subscribe(log_event)
        service = ProgressionService(PostgresStore(db), events=events)

        result = await run_action(service, args)

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        logger.info("Closing database connection...")
        await db.close_pool()

    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") else 1


def cli() -> None:
    """Console script entry point"""
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
