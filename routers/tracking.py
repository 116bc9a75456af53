from typing import Any, Callable

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_client_ip, get_clock, get_normalizer
from services.ingestion import IngestionService
from services.normalizer import BeaconNormalizer
import schemas

router = APIRouter()


@router.post("/track", response_model=schemas.TrackResponse, response_model_exclude_none=True)
def track(
    request: Request,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    normalizer: BeaconNormalizer = Depends(get_normalizer),
    clock: Callable = Depends(get_clock)
):
    """Receive one tracking beacon"""
    beacon = normalizer.normalize(payload, get_client_ip(request))
    IngestionService(db, clock=clock).ingest(beacon)
    return {"success": True}
