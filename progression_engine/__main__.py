"""CLI entry point for progression-engine."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .clock import SystemClock
from .config import ProgressionConfig, load_config
from .database import ProgressionDatabase
from .engine import ProgressionEngine
from .models import LeaderboardWindow, ResultKind


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Progression Engine — XP, streaks, gems and leaderboards")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--validate-config", action="store_true", help="Validate config and exit")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("init-db", help="Create database tables")
    register = sub.add_parser("register", help="Create a user's progression row")
    register.add_argument("user_id")
    show = sub.add_parser("show", help="Print a user's progression")
    show.add_argument("user_id")
    board = sub.add_parser("leaderboard", help="Print a leaderboard")
    board.add_argument("--window", default="weekly", choices=[w.value for w in LeaderboardWindow])
    board.add_argument("--limit", type=int, default=None)
    audit = sub.add_parser("audit", help="Check a user's gem balance against the ledger")
    audit.add_argument("user_id")
    return parser.parse_args(argv)


def resolve_config(config_path: str | None, logger: logging.Logger) -> ProgressionConfig:
    if not config_path and Path("./config.yaml").exists():
        config_path = "./config.yaml"
    if not config_path:
        logger.warning("No config file found; using built-in defaults.")
        return ProgressionConfig()
    return load_config(config_path)


async def run_command(args: argparse.Namespace, engine: ProgressionEngine, db: ProgressionDatabase) -> int:
    if args.command == "init-db":
        await db.initialize()
        return 0

    await db.initialize()

    if args.command == "register":
        outcome = await engine.register_user(args.user_id)
        print(f"{args.user_id}: registered (gems={outcome.progression.gems})")
        return 0

    if args.command == "show":
        outcome = await engine.get_progression(args.user_id)
        if outcome.kind is ResultKind.NOT_FOUND:
            print(f"{args.user_id}: not found")
            return 1
        p = outcome.progression
        print(
            f"{p.user_id}: level {p.level} ({p.total_xp} XP, "
            f"{engine.curve.xp_to_next_level(p.total_xp)} to next) | "
            f"gems {p.gems} | lives {p.lives}/{p.max_lives} | "
            f"streak {p.streak_current} (best {p.streak_longest}, {p.streak_state.value}) | "
            f"freezes {p.streak_freezes}"
        )
        return 0

    if args.command == "leaderboard":
        entries = await engine.get_leaderboard(args.window, args.limit)
        if not entries:
            print("No entries.")
        for entry in entries:
            print(f"{entry.rank:>4}. {entry.user_id:<24} {entry.xp_in_window:>8} XP  ({entry.period})")
        return 0

    if args.command == "audit":
        audit = await engine.ledger.verify(args.user_id)
        if audit is None:
            print(f"{args.user_id}: not found")
            return 1
        status = "ok" if audit.consistent else "DRIFT"
        print(
            f"{audit.user_id}: cached {audit.cached_balance}, ledger {audit.ledger_sum} "
            f"over {audit.entries} entries [{status}]"
        )
        return 0 if audit.consistent else 2

    return 0


async def main_async(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("progression")

    try:
        config = resolve_config(args.config, logger)
    except Exception as e:
        logger.error("Config validation failed: %s", e)
        return 1

    if args.validate_config:
        logger.info("Config is valid.")
        return 0
    if not args.command:
        logger.error("No command given. See --help.")
        return 1

    db = ProgressionDatabase(config.database.path, logger)
    engine = ProgressionEngine(config, db, SystemClock(), logger)
    return await run_command(args, engine, db)


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
