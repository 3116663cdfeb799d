from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from billing.core.dependencies import get_db
from billing.services.report_service import DashboardService, TimeRange, resolve_time_range
from billing.schemas.dashboard import DashboardResponse

router = APIRouter()


@router.get("", response_model=DashboardResponse)
def get_dashboard(
    range_name: str = Query("month", alias="range"),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    db: Session = Depends(get_db)
):
    """
    Dashboard rollups for a named range (month, quarter, year, all)
    or an explicit start/end date pair, which takes precedence.
    """
    if start or end:
        time_range = TimeRange(start, end)
    else:
        time_range = resolve_time_range(range_name)
    return DashboardService(db).get_dashboard(time_range)
