from typing import Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    ok: bool
    error: Optional[str] = None


class QueueHealthResponse(BaseModel):
    status: str
    events: dict[str, int]
