#!/usr/bin/env python3
"""CLI for streak recovery operator tasks.

Usage:
    python -m cli <command>

Commands:
    create-tables   Create the document store table
    show-streak     Show a user's streak as of now
    missed-days     Show a user's missed days and last study date
    record-study    Record a study action for a user (advances the streak)
    can-recover     Check the recovery cooldown for a user and objective
    estimate        Show missed, recoverable days and quiz size for a user
    active-objectives  List a user's in-progress objectives
    check-db        Check that the database is reachable
"""

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from core.database import (
    check_db_connection,
    create_engine,
    create_session_maker,
    create_tables,
    dispose_engine,
)
from core.logger import bind_contextvars, configure_logging, get_logger
from repositories.document_store import DocumentStore, SqlDocumentStore

logger = get_logger(__name__)

T = TypeVar("T")


async def _with_store(action: Callable[[DocumentStore], Awaitable[T]]) -> T:
    engine = create_engine()
    try:
        store = SqlDocumentStore(create_session_maker(engine))
        return await action(store)
    finally:
        await dispose_engine(engine)


def _print_model(model: BaseModel) -> None:
    print(model.model_dump_json(indent=2))


def cmd_create_tables() -> int:
    """Create the documents table."""

    async def _run() -> None:
        engine = create_engine()
        try:
            await create_tables(engine)
        finally:
            await dispose_engine(engine)

    logger.info("cli.create_tables.started")
    asyncio.run(_run())
    logger.info("cli.create_tables.completed")
    return 0


def cmd_show_streak(user_id: str) -> int:
    from services.streaks_service import StreakService

    streak = asyncio.run(
        _with_store(lambda store: StreakService(store).get_streak(user_id))
    )
    _print_model(streak)
    return 0


def cmd_missed_days(user_id: str) -> int:
    from services.streaks_service import StreakService

    result = asyncio.run(
        _with_store(lambda store: StreakService(store).calculate_missed_days(user_id))
    )
    _print_model(result)
    return 0


def cmd_record_study(user_id: str) -> int:
    from services.streaks_service import StreakService

    async def _run(store: DocumentStore):
        service = StreakService(store)
        await service.update_streak_on_study(user_id)
        return await service.get_streak(user_id)

    streak = asyncio.run(_with_store(_run))
    _print_model(streak)
    return 0


def _recovery_service(store: DocumentStore):
    from services.llm_service import GeminiQuestionGenerator
    from services.recovery_service import RecoveryService

    return RecoveryService(store, GeminiQuestionGenerator())


def cmd_check_db() -> int:
    """Exit 0 when the database answers, 1 otherwise."""

    async def _run() -> None:
        engine = create_engine()
        try:
            await check_db_connection(engine)
        finally:
            await dispose_engine(engine)

    try:
        asyncio.run(_run())
    except Exception as e:
        logger.error("cli.check_db.failed", error=str(e), error_type=type(e).__name__)
        return 1
    logger.info("cli.check_db.ok")
    return 0


def cmd_estimate(user_id: str) -> int:
    estimate = asyncio.run(
        _with_store(lambda store: _recovery_service(store).estimate_recovery(user_id))
    )
    _print_model(estimate)
    return 0


def cmd_active_objectives(user_id: str) -> int:
    async def _run(store: DocumentStore):
        service = _recovery_service(store)
        return await service.get_active_objectives_for_recovery(user_id)

    objectives = asyncio.run(_with_store(_run))
    print(json.dumps(to_jsonable_python(objectives), indent=2))
    return 0


def cmd_can_recover(user_id: str, objective_id: str) -> int:
    status = asyncio.run(
        _with_store(
            lambda store: _recovery_service(store).can_attempt_recovery(
                user_id, objective_id
            )
        )
    )
    _print_model(status)
    return 0 if status.can_attempt else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Streak recovery CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("create-tables", help="Create the document store table")

    show = subparsers.add_parser("show-streak", help="Show a user's streak as of now")
    show.add_argument("user_id")

    missed = subparsers.add_parser(
        "missed-days", help="Show a user's missed days and last study date"
    )
    missed.add_argument("user_id")

    study = subparsers.add_parser(
        "record-study", help="Record a study action for a user"
    )
    study.add_argument("user_id")

    recover = subparsers.add_parser(
        "can-recover", help="Check the recovery cooldown for a user and objective"
    )
    recover.add_argument("user_id")
    recover.add_argument("objective_id")

    estimate = subparsers.add_parser(
        "estimate", help="Show what recovering a user's missed days would take"
    )
    estimate.add_argument("user_id")

    objectives = subparsers.add_parser(
        "active-objectives", help="List a user's in-progress objectives"
    )
    objectives.add_argument("user_id")

    subparsers.add_parser("check-db", help="Check that the database is reachable")

    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging(stream=sys.stderr)
    parser = build_parser()
    args = parser.parse_args(argv)
    bind_contextvars(command=args.command)

    if args.command == "create-tables":
        return cmd_create_tables()
    elif args.command == "show-streak":
        return cmd_show_streak(args.user_id)
    elif args.command == "missed-days":
        return cmd_missed_days(args.user_id)
    elif args.command == "record-study":
        return cmd_record_study(args.user_id)
    elif args.command == "can-recover":
        return cmd_can_recover(args.user_id, args.objective_id)
    elif args.command == "estimate":
        return cmd_estimate(args.user_id)
    elif args.command == "active-objectives":
        return cmd_active_objectives(args.user_id)
    elif args.command == "check-db":
        return cmd_check_db()
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
