from contextlib import contextmanager
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing.core.config import settings
from billing.core.exceptions import BillingError, ConflictError
from billing.logger_config import logger


@contextmanager
def atomic(db: Session, action: str):
    """
    Run a block as one transaction: commit on success, roll back on any error.

    Billing refusals are re-raised untouched, unique/foreign-key violations
    become ``ConflictError``, anything else is logged and re-raised.
    """
    try:
        yield
        db.commit()
    except BillingError as e:
        db.rollback()
        logger.warning(f"{action} refused: {e.message}")
        raise
    except IntegrityError as ie:
        db.rollback()
        logger.error(f"Database integrity error during {action}: {str(ie.orig)}")
        raise ConflictError(f"{action} failed due to a database constraint")
    except Exception:
        db.rollback()
        logger.exception(f"Unexpected error during {action}")
        raise


def clamp_page(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    """Default page size when unset, capped at MAX_PAGE_SIZE; negative offsets become 0."""
    if not limit or limit <= 0:
        limit = settings.DEFAULT_PAGE_SIZE
    if limit > settings.MAX_PAGE_SIZE:
        limit = settings.MAX_PAGE_SIZE
    if not offset or offset < 0:
        offset = 0
    return limit, offset


def search_pattern(search: Optional[str]) -> Optional[str]:
    if search is None:
        return None
    search = search.strip()
    return f"%{search}%" if search else None
