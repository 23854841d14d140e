import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from app.errors import RetryableExternalError
from app.logging_config import get_logger

logger = get_logger("retry")

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    *,
    base_seconds: float,
    max_seconds: float,
    jitter_ratio: float = 0.0,
    rand: Callable[[float, float], float] = random.uniform,
) -> float:
    """Exponential delay for a 0-based attempt number, capped at max_seconds.

    Jitter is drawn from [0, jitter_ratio * raw] with jitter_ratio <= 1, so the
    delay for attempt n+1 is never below the delay for attempt n.
    """
    raw = base_seconds * (2 ** max(attempt, 0))
    jitter_ratio = min(max(jitter_ratio, 0.0), 1.0)
    jitter = rand(0.0, jitter_ratio * raw) if jitter_ratio else 0.0
    return min(max_seconds, raw + jitter)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    base_seconds: float,
    max_seconds: float,
    jitter_ratio: float = 0.25,
    sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    label: str = "external_call",
) -> T:
    """Run operation, retrying RetryableExternalError up to max_retries times.

    Total attempts never exceed max_retries + 1. Any other exception propagates
    immediately.
    """
    sleep_func = sleep_func or asyncio.sleep
    attempt = 0
    while True:
        try:
            return await operation()
        except RetryableExternalError as exc:
            if attempt >= max_retries:
                logger.warning(
                    "Retries exhausted",
                    extra={"context": {"label": label, "attempts": attempt + 1, "error": str(exc)[:200]}},
                )
                raise
            delay = backoff_delay(
                attempt,
                base_seconds=base_seconds,
                max_seconds=max_seconds,
                jitter_ratio=jitter_ratio,
            )
            logger.info(
                "Retrying after transient failure",
                extra={
                    "context": {
                        "label": label,
                        "attempt": attempt + 1,
                        "delay_seconds": round(delay, 3),
                        "status_code": exc.status_code,
                    }
                },
            )
            await sleep_func(delay)
            attempt += 1
