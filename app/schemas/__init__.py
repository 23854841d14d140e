from app.schemas.billing import BillingWebhook
from app.schemas.events import BillingEventMeta, ChatEventMeta
from app.schemas.webhook import QueueHealthResponse, WebhookAck
from app.schemas.whatsapp import WhatsAppWebhook

__all__ = [
    "BillingWebhook",
    "BillingEventMeta",
    "ChatEventMeta",
    "QueueHealthResponse",
    "WebhookAck",
    "WhatsAppWebhook",
]
