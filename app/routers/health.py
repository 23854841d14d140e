from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db
from app.logging_config import get_logger
from app.schemas.webhook import QueueHealthResponse
from app.services.event_store import queue_stats

logger = get_logger("health")

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/health/queue", response_model=QueueHealthResponse)
def queue_health(db: Session = Depends(get_db)):
    try:
        counts = queue_stats(db)
    except SQLAlchemyError as exc:
        logger.error("Queue health check failed", extra={"context": {"error": str(exc)[:200]}})
        return JSONResponse(status_code=503, content={"status": "unavailable", "events": {}})
    return QueueHealthResponse(status="ok", events=counts)
