from fastapi import APIRouter, BackgroundTasks, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import settings
from app.errors import SignatureError
from app.logging_config import get_logger, redact
from app.schemas.webhook import WebhookAck
from app.services.ingestion_service import ingest_billing_payload, ingest_chat_payload
from app.services.signature_service import verify_signature

logger = get_logger("webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_warned_unsigned_chat = False


def _unauthorized(exc: SignatureError, header_value: str | None) -> JSONResponse:
    logger.warning(
        "Webhook signature rejected",
        extra={"context": {"reason": exc.reason, "signature": redact(header_value)}},
    )
    return JSONResponse(status_code=401, content=WebhookAck(ok=False, error="invalid_signature").model_dump())


@router.post("/billing", response_model=WebhookAck)
async def billing_webhook(request: Request, background_tasks: BackgroundTasks):
    """Verify the raw body, acknowledge, then enqueue out of band."""
    raw_body = await request.body()
    signature = request.headers.get("X-Signature")
    try:
        verify_signature(raw_body, signature, settings.billing_signing_secret)
    except SignatureError as exc:
        return _unauthorized(exc, signature)

    background_tasks.add_task(ingest_billing_payload, raw_body)
    return WebhookAck(ok=True)


@router.post("/chat", response_model=WebhookAck)
async def chat_webhook(request: Request, background_tasks: BackgroundTasks):
    global _warned_unsigned_chat

    raw_body = await request.body()
    if settings.whatsapp_app_secret:
        signature = request.headers.get("X-Hub-Signature-256")
        try:
            verify_signature(raw_body, signature, settings.whatsapp_app_secret, prefix="sha256=")
        except SignatureError as exc:
            return _unauthorized(exc, signature)
    elif not _warned_unsigned_chat:
        logger.warning("WHATSAPP_APP_SECRET not set, chat webhooks are accepted unsigned")
        _warned_unsigned_chat = True

    background_tasks.add_task(ingest_chat_payload, raw_body)
    return WebhookAck(ok=True)


@router.get("/chat")
async def chat_webhook_handshake(
    mode: str | None = Query(None, alias="hub.mode"),
    verify_token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
):
    if (
        settings.whatsapp_verify_token
        and mode == "subscribe"
        and verify_token == settings.whatsapp_verify_token
        and challenge is not None
    ):
        return PlainTextResponse(challenge)
    return PlainTextResponse("forbidden", status_code=403)
