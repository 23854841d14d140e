import asyncio
import os

from fastapi import FastAPI

from app.config import settings
from app.logging_config import get_logger, setup_logging
from app.routers import health, webhooks
from app.worker import EventWorker, build_processor

setup_logging(settings.log_level)

app = FastAPI(
    title="WhatsApp Summarizer API",
    description="Webhook ingestion and event worker for the WhatsApp summarizer",
    version="0.1.0",
)

app.include_router(health.router)
app.include_router(webhooks.router)

worker_logger = get_logger("worker_task")
_worker: EventWorker | None = None
_worker_task: asyncio.Task | None = None


def _is_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.worker_enabled


@app.on_event("startup")
async def start_worker() -> None:
    global _worker, _worker_task
    if not _is_worker_enabled():
        return
    if _worker_task is None or _worker_task.done():
        _worker = EventWorker(build_processor(settings), config=settings)
        _worker_task = asyncio.create_task(_worker.run_forever())
        worker_logger.info("In-process worker started")


@app.on_event("shutdown")
async def stop_worker() -> None:
    global _worker, _worker_task
    if _worker_task is None:
        return
    _worker.request_stop()
    try:
        await asyncio.wait_for(_worker_task, timeout=settings.worker_idle_sleep_seconds + 30)
    except asyncio.TimeoutError:
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass
    _worker = None
    _worker_task = None
