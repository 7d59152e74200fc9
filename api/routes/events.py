from fastapi import APIRouter, Query

from utils.event_logger import read_events

router = APIRouter()


@router.get("/events")
def events(limit: int = Query(100, le=500)):
    return read_events(limit)
