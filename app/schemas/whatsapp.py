from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class WhatsAppText(BaseModel):
    body: Optional[str] = None


class WhatsAppButton(BaseModel):
    text: Optional[str] = None
    payload: Optional[str] = None


class WhatsAppReply(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None


class WhatsAppInteractive(BaseModel):
    type: Optional[str] = None
    button_reply: Optional[WhatsAppReply] = None
    list_reply: Optional[WhatsAppReply] = None


class WhatsAppMessage(BaseModel):
    id: Optional[str] = None
    from_phone: Optional[str] = Field(default=None, alias="from")  # "from" is reserved in Python
    timestamp: Optional[Union[int, str]] = None
    type: Optional[str] = None
    text: Optional[WhatsAppText] = None
    button: Optional[WhatsAppButton] = None
    interactive: Optional[WhatsAppInteractive] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class WhatsAppStatus(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    timestamp: Optional[Union[int, str]] = None
    recipient_id: Optional[str] = None


class WhatsAppContact(BaseModel):
    wa_id: Optional[str] = None


class WhatsAppMetadata(BaseModel):
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None


class WhatsAppValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[WhatsAppMetadata] = None
    contacts: list[WhatsAppContact] = []
    messages: list[WhatsAppMessage] = []
    statuses: list[WhatsAppStatus] = []


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: Optional[WhatsAppValue] = None


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = []


class WhatsAppWebhook(BaseModel):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = []
