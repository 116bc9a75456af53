from typing import Callable, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_clock
from services.aggregation import ACTIVE_WINDOW
from services.storage import AnalyticsRepository

router = APIRouter()

DEFAULT_LIMIT = 50
MAX_LIMIT = 1000
REALTIME_LIMIT = 50


def parse_limit(value: Optional[str]) -> int:
    """Non-numeric or non-positive limits fall back to the default; large ones are capped"""
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    if limit < 1:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


@router.get("/visitors")
def get_visitors(limit: Optional[str] = None, db: Session = Depends(get_db)):
    """Most recently seen visitors with their latest details and session totals"""
    return AnalyticsRepository(db).list_recent_visitors(parse_limit(limit))


@router.get("/realtime")
def get_realtime(db: Session = Depends(get_db), clock: Callable = Depends(get_clock)):
    """Page views from the last five minutes, newest first"""
    since = clock() - ACTIVE_WINDOW
    visitors = AnalyticsRepository(db).list_active_page_views(since, REALTIME_LIMIT)
    return {
        "count": len(visitors),
        "visitors": visitors
    }
