import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def store_errors(db: Session, action: str) -> Iterator[None]:
    """Rolls back and re-raises database failures as ``StoreUnavailable``."""
    try:
        yield
    except OperationalError as e:
        db.rollback()
        logger.error("Database operational error during %s: %s", action, e)
        raise StoreUnavailable(
            f"Database connection failed during {action}. Please try again shortly."
        ) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Unexpected SQLAlchemy error during %s", action)
        raise StoreUnavailable(f"An unexpected database error occurred during {action}.") from e
