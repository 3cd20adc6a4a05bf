"""Seed a database with an open cash game and funded demo users.

Usage:
    python -m src.contest_draft.seed [player_pool_file] [user_count]
"""

import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from sqlalchemy import select

from src.board_pipeline import load_player_pool, make_board_factory
from src.board_pipeline.config import DEFAULT_POOL_FILE
from src.contest_draft.config import CASH_GAME_NAME_PREFIX, ROOM_CAPACITY
from src.contest_draft.db import Contest, Database, User
from src.logging_config import setup_logging

logger = logging.getLogger(__name__)


def seed_contest(
    database: Database,
    board: Optional[List[List[Any]]],
    name: str = f"{CASH_GAME_NAME_PREFIX}1",
    contest_type: str = "cash",
    entry_fee_cents: int = 500,
    prize_pool_cents: int = 2000,
    max_entries: int = ROOM_CAPACITY,
    max_entries_per_user: Optional[int] = None,
) -> str:
    """Create an open contest and return its id."""
    with database.session() as session:
        contest = Contest(
            type=contest_type,
            name=name,
            status="open",
            entry_fee_cents=entry_fee_cents,
            prize_pool_cents=prize_pool_cents,
            max_entries=max_entries,
            current_entries=0,
            max_entries_per_user=max_entries_per_user,
            player_board=board,
        )
        session.add(contest)
        session.flush()
        contest_id = contest.id
    logger.info("Created %s contest %s (%s)", contest_type, contest_id, name)
    return contest_id


def seed_users(
    database: Database, count: int, balance_cents: int = 10_000, prefix: str = "user"
) -> List[str]:
    """Create (or top up) ``count`` users and return their ids."""
    user_ids = []
    with database.session() as session:
        for i in range(1, count + 1):
            user_id = f"{prefix}-{i}"
            user = session.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
            if user is None:
                session.add(User(id=user_id, username=f"{prefix}{i}", balance_cents=balance_cents))
            else:
                user.balance_cents = max(user.balance_cents, balance_cents)
            user_ids.append(user_id)
    logger.info("Seeded %d users", len(user_ids))
    return user_ids


def run_seed(pool_file: Path = DEFAULT_POOL_FILE, user_count: int = ROOM_CAPACITY) -> str:
    """Create schema, one cash game and ``user_count`` users."""
    database = Database()
    database.create_all()

    pool = load_player_pool(pool_file)
    board = make_board_factory(pool)()

    contest_id = seed_contest(database, board)
    seed_users(database, user_count)
    database.dispose()
    return contest_id


if __name__ == "__main__":
    setup_logging()
    pool_arg = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_POOL_FILE
    users_arg = int(sys.argv[2]) if len(sys.argv) > 2 else ROOM_CAPACITY
    run_seed(pool_arg, users_arg)
