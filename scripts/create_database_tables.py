"""
Create Database Tables Using SQLAlchemy

This script creates all database tables directly using SQLAlchemy's create_all()
method. This bypasses Alembic migrations and is useful for local development
and demos. Optionally grants starting credits to users.

Usage:
    python scripts/create_database_tables.py
    python scripts/create_database_tables.py --grant user-1:100 --grant user-2:25
"""
import argparse
import sys
from pathlib import Path

# Add parent directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

import sqlalchemy as sa

from src.codeleads.credits.ledger import CreditLedger
from src.codeleads.db.session import create_all_tables, get_engine, with_retry
from src.codeleads.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


@with_retry(max_retries=5, retry_delay=2)
def create_schema(engine):
    create_all_tables(engine)
    return sorted(sa.inspect(engine).get_table_names())


def parse_grant(value: str):
    user_id, _, amount = value.rpartition(":")
    if not user_id or not amount.isdigit() or int(amount) <= 0:
        raise argparse.ArgumentTypeError(f"Expected USER:AMOUNT, got {value!r}")
    return user_id, int(amount)


def main(argv=None):
    """Create all database tables."""
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--grant", action="append", type=parse_grant, default=[],
                        help="Grant starting credits as USER:AMOUNT (repeatable)")
    args = parser.parse_args(argv)

    setup_logging()
    engine = get_engine()

    logger.info("database_setup_started", url=engine.url.render_as_string(hide_password=True))
    tables = create_schema(engine)
    logger.info("database_tables_verified", count=len(tables), tables=tables)

    ledger = CreditLedger()
    for user_id, amount in args.grant:
        ledger.grant(user_id, amount, meta={"source": "setup_script"})
        logger.info("starting_balance", user_id=user_id, balance=ledger.balance(user_id))

    logger.info("database_setup_complete")


if __name__ == "__main__":
    main()
