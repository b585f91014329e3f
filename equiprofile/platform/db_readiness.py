"""Database schema readiness checks for the tables enforcement reads."""

import logging
from dataclasses import dataclass
from typing import Iterable, List

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Tables read by the gateway middleware and the procedure guards
REQUIRED_ENFORCEMENT_TABLES = (
    "users",
    "admin_sessions",
)


@dataclass(frozen=True)
class DBReadinessResult:
    """Result payload for DB schema readiness checks."""

    ready: bool
    missing_tables: List[str]
    checked_tables: List[str]


def check_required_tables(session: Session, required_tables: Iterable[str]) -> DBReadinessResult:
    """Check whether required tables exist in the current database schema."""
    checked = list(required_tables)

    try:
        existing = set(inspect(session.get_bind()).get_table_names())
    except SQLAlchemyError:
        logger.exception("Failed listing database tables", extra={"tables": checked})
        raise

    missing = [name for name in checked if name not in existing]
    return DBReadinessResult(
        ready=len(missing) == 0,
        missing_tables=missing,
        checked_tables=checked,
    )
