"""Canonical, vendor-agnostic models shared by every provider."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


DATA_URI_PREFIX = "data:image/png;base64,"
# error carried by sends a provider refused locally, without contacting its vendor
RATE_LIMITED = "rate limited"


# ============================================================================
# Enums
# ============================================================================


class ConnectionState(str, Enum):
    """Lifecycle state of one vendor-side instance."""

    connecting = "connecting"
    connected = "connected"
    disconnected = "disconnected"
    reconnecting = "reconnecting"
    failed = "failed"


class MessageType(str, Enum):
    """Kind of an inbound message."""

    text = "text"
    image = "image"
    video = "video"
    audio = "audio"
    document = "document"
    location = "location"
    contact = "contact"


class MessageStatus(str, Enum):
    """Delivery status of an outbound message."""

    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"


MediaKind = Literal["image", "video", "audio", "document"]
PayloadKind = Literal["media", "buttons", "list", "text"]


# ============================================================================
# Provider configuration
# ============================================================================


class RateLimit(BaseModel):
    messages_per_minute: int = Field(default=60, ge=1)
    burst_limit: int = Field(default=10, ge=1)

    class Config:
        frozen = True


class ProviderConfig(BaseModel):
    """Per-provider settings. Immutable once built."""

    name: str
    priority: int = Field(default=1, description="Lower value is tried first")
    enabled: bool = True
    retry_attempts: int = Field(default=3, ge=1)
    timeout: float = Field(default=30.0, gt=0, description="Per vendor call, seconds")
    rate_limit: Optional[RateLimit] = None

    class Config:
        frozen = True

    @classmethod
    def merged(cls, defaults: "ProviderConfig", **overrides: Any) -> "ProviderConfig":
        """Build a config from ``defaults`` with caller ``overrides`` applied on top."""
        data = defaults.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)


# ============================================================================
# Connection / pairing
# ============================================================================


class ConnectionStatus(BaseModel):
    state: ConnectionState
    is_authenticated: bool = False
    phone_number: Optional[str] = None
    last_seen: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.connected

    @classmethod
    def failure(cls, error: str) -> "ConnectionStatus":
        return cls(state=ConnectionState.failed, is_authenticated=False, error=error)


class QRCodeData(BaseModel):
    """Pairing code. Only valid until the instance authenticates or the vendor expires it."""

    qr_code: str
    base64: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_raw(cls, code: str) -> "QRCodeData":
        return cls(qr_code=code, base64=code, url=f"{DATA_URI_PREFIX}{code}")


# ============================================================================
# Outbound
# ============================================================================


class MediaMessage(BaseModel):
    url: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: str
    caption: Optional[str] = None
    filename: Optional[str] = None

    @property
    def kind(self) -> MediaKind:
        if self.mime_type.startswith("image/"):
            return "image"
        if self.mime_type.startswith("video/"):
            return "video"
        if self.mime_type.startswith("audio/"):
            return "audio"
        return "document"


class Button(BaseModel):
    id: str
    title: str
    description: Optional[str] = None


class ListRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = None


class ListSection(BaseModel):
    title: str
    rows: list[ListRow] = Field(default_factory=list)


class ListMessage(BaseModel):
    button_text: str
    sections: list[ListSection] = Field(default_factory=list)


class SendMessageParams(BaseModel):
    """Outbound message.

    One payload kind is expected per call. When several are set the
    precedence is media, buttons, list, then text; ``text`` doubles as the
    body of button and list messages.
    """

    to: str
    text: Optional[str] = None
    media: Optional[MediaMessage] = None
    buttons: Optional[list[Button]] = None
    list_: Optional[ListMessage] = Field(default=None, alias="list")
    quoted_message_id: Optional[str] = None

    class Config:
        populate_by_name = True

    @property
    def payload_kind(self) -> Optional[PayloadKind]:
        if self.media is not None:
            return "media"
        if self.buttons:
            return "buttons"
        if self.list_ is not None:
            return "list"
        if self.text:
            return "text"
        return None


class MessageResult(BaseModel):
    id: str
    status: MessageStatus
    timestamp: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != MessageStatus.failed

    @classmethod
    def sent(cls, message_id: str | None = None) -> "MessageResult":
        return cls(id=message_id or gen_id("msg"), status=MessageStatus.sent)

    @classmethod
    def failed(cls, error: str) -> "MessageResult":
        return cls(id=gen_id("failed"), status=MessageStatus.failed, error=error)

    @property
    def rate_limited(self) -> bool:
        return self.status == MessageStatus.failed and self.error == RATE_LIMITED


# ============================================================================
# Inbound
# ============================================================================


class QuotedMessage(BaseModel):
    id: str
    body: Optional[str] = None
    from_: str = Field(default="", alias="from")

    class Config:
        populate_by_name = True


class IncomingMessage(BaseModel):
    id: str
    from_: str = Field(alias="from")
    to: str = ""
    body: Optional[str] = None
    type: MessageType = MessageType.text
    media_url: Optional[str] = None
    media_data: Optional[bytes] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    is_from_me: bool = False
    is_group: bool = False
    group_name: Optional[str] = None
    sender_name: Optional[str] = None
    quoted_message: Optional[QuotedMessage] = None

    class Config:
        populate_by_name = True


# ============================================================================
# Manager bookkeeping
# ============================================================================


class SessionData(BaseModel):
    """What the manager remembers about an instance between calls."""

    instance_id: str
    business_id: str
    provider: str
    phone_number: Optional[str] = None
    status: ConnectionStatus = Field(
        default_factory=lambda: ConnectionStatus(state=ConnectionState.disconnected)
    )
    last_activity: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)
