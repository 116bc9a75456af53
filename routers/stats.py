from typing import Callable, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_clock
from services.aggregation import StatsService
from services.window import DEFAULT_PERIOD, ReportingWindow

router = APIRouter()


def _stats_service(db, clock, period, start_date, end_date) -> StatsService:
    now = clock()
    window = ReportingWindow.from_params(period, start_date, end_date, now)
    return StatsService(db, window, now)


@router.get("/stats")
def get_stats(
    period: str = DEFAULT_PERIOD,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock)
):
    return _stats_service(db, clock, period, startDate, endDate).basic_stats()


@router.get("/stats/enhanced")
def get_enhanced_stats(
    period: str = DEFAULT_PERIOD,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock)
):
    """Enhanced statistics endpoint with all metrics"""
    return _stats_service(db, clock, period, startDate, endDate).enhanced_stats()
