"""Event worker: claims one inbound event at a time and runs its pipeline.

Run standalone with ``python -m app.worker`` or inside the API process with
WORKER_ENABLED=true.
"""

import asyncio
import signal
import time
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.database import SessionLocal
from app.errors import PermanentEventError
from app.logging_config import get_logger, setup_logging
from app.services.concurrency import ConcurrencyGate
from app.services.event_store import claim_next_event, mark_dead, mark_done, mark_error
from app.services.processors import BillingProcessor, ChatProcessor, EventProcessor
from app.services.summarizer_service import Summarizer
from app.services.whatsapp_service import WhatsAppClient

logger = get_logger("worker")


def build_processor(config: Settings = default_settings) -> EventProcessor:
    """Wire the pipelines. The concurrency gate is created once per process."""
    gate = ConcurrencyGate(config.openai_concurrency)
    summarizer = Summarizer(config=config, gate=gate)
    messenger = WhatsAppClient(config=config)
    return EventProcessor(
        chat=ChatProcessor(summarizer, messenger, config),
        billing=BillingProcessor(config),
    )


class EventWorker:
    def __init__(
        self,
        processor: EventProcessor,
        session_factory: Callable[[], Session] = SessionLocal,
        config: Settings = default_settings,
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.processor = processor
        self.session_factory = session_factory
        self.config = config
        self._sleep = sleep_func or asyncio.sleep
        self._stop = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        if not self._stop.is_set():
            logger.info("Worker stop requested")
        self._stop.set()

    async def run_once(self) -> Optional[str]:
        """Claim and fully process at most one event. Returns the outcome, or None when idle."""
        db = self.session_factory()
        try:
            event = claim_next_event(db, lock_timeout_seconds=self.config.queue_lock_timeout_seconds)
            if event is None:
                return None

            start = time.monotonic()
            try:
                outcome = await self.processor.process(db, event)
            except PermanentEventError as exc:
                db.rollback()
                mark_dead(db, event.id, str(exc))
                outcome = "dead"
                logger.warning(
                    "Event dead-lettered",
                    extra={"context": {"event_id": str(event.id), "provider": event.provider, "error": str(exc)[:200]}},
                )
            except Exception as exc:
                db.rollback()
                outcome = mark_error(db, event.id, str(exc), attempts=event.attempts, config=self.config)
                logger.error(
                    "Event processing failed",
                    extra={
                        "context": {
                            "event_id": str(event.id),
                            "provider": event.provider,
                            "attempts": event.attempts,
                            "status": outcome,
                            "error": str(exc)[:200],
                        }
                    },
                    exc_info=True,
                )
            else:
                mark_done(db, event.id)

            logger.info(
                "Event processed",
                extra={
                    "context": {
                        "event_id": str(event.id),
                        "provider": event.provider,
                        "outcome": outcome,
                        "elapsed_ms": int((time.monotonic() - start) * 1000),
                    }
                },
            )
            return outcome
        finally:
            db.close()

    async def run_forever(self) -> None:
        logger.info("Worker started")
        while not self._stop.is_set():
            try:
                outcome = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Claim failures (store down) are retried after the idle sleep.
                logger.error("Worker iteration failed", extra={"context": {"error": str(exc)[:200]}})
                outcome = None
            delay = self.config.worker_busy_sleep_seconds if outcome else self.config.worker_idle_sleep_seconds
            await self._sleep(delay)
        logger.info("Worker stopped")


def install_signal_handlers(worker: EventWorker, loop: asyncio.AbstractEventLoop) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_stop)


async def _main() -> None:
    worker = EventWorker(build_processor())
    install_signal_handlers(worker, asyncio.get_running_loop())
    await worker.run_forever()


def main() -> None:
    setup_logging(default_settings.log_level)
    asyncio.run(_main())


if __name__ == "__main__":
    main()
