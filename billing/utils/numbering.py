from datetime import date
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session


def next_document_number(db: Session, column, prefix: str, on: Optional[date] = None) -> str:
    """
    Next human-readable number for the year, e.g. ``ORD-2026-0007``.

    Counts the year's existing numbers and then skips forward past any taken
    value; the column's unique constraint is the final guard.
    """
    year = (on or date.today()).year
    pattern = f"{prefix}-{year}-%"

    count = db.query(func.count(column)).filter(column.like(pattern)).scalar() or 0
    sequence = count + 1
    candidate = f"{prefix}-{year}-{sequence:04d}"

    attempts = 0
    while db.query(column).filter(column == candidate).first():
        sequence += 1
        attempts += 1
        candidate = f"{prefix}-{year}-{sequence:04d}"
        if attempts > 1000:
            raise RuntimeError(f"Failed to generate unique {prefix} number")

    return candidate
