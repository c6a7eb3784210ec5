from __future__ import annotations

import abc
from typing import Any, Optional, Protocol, Union, runtime_checkable

from wagateway.domain.models import (
    ConnectionStatus,
    IncomingMessage,
    MediaMessage,
    MessageResult,
    ProviderConfig,
    QRCodeData,
    SendMessageParams,
)
from wagateway.providers.registry import MessageHandler, QRCodeHandler, StatusHandler


class WhatsAppProvider(abc.ABC):
    """Contract every WhatsApp backend adapter satisfies.

    Callers depend on this type only. Commands (connect, disconnect,
    restart) may raise; status, read and send operations return typed
    failure values instead.
    """

    name: str
    config: ProviderConfig
    # optional operations the adapter defines but its vendor cannot honour
    unsupported_operations: frozenset[str] = frozenset()

    # Lifecycle
    @abc.abstractmethod
    async def initialize(self) -> None:
        """Fail fast when the vendor endpoint is unreachable."""

    @abc.abstractmethod
    async def dispose(self) -> None:
        ...

    # Connection management
    @abc.abstractmethod
    async def connect(self, instance_id: str, business_id: str) -> Union[QRCodeData, ConnectionStatus]:
        """Return the status if already connected, otherwise a fresh pairing code."""

    @abc.abstractmethod
    async def disconnect(self, instance_id: str) -> None:
        ...

    @abc.abstractmethod
    async def restart(self, instance_id: str) -> None:
        ...

    # Status & health
    @abc.abstractmethod
    async def get_connection_status(self, instance_id: str) -> ConnectionStatus:
        ...

    @abc.abstractmethod
    async def get_qrcode(self, instance_id: str) -> Optional[QRCodeData]:
        ...

    @abc.abstractmethod
    async def is_healthy(self) -> bool:
        ...

    # Messaging
    @abc.abstractmethod
    async def send_message(self, instance_id: str, params: SendMessageParams) -> MessageResult:
        ...

    async def send_text(self, instance_id: str, to: str, text: str) -> MessageResult:
        return await self.send_message(instance_id, SendMessageParams(to=to, text=text))

    async def send_media(self, instance_id: str, to: str, media: MediaMessage) -> MessageResult:
        return await self.send_message(instance_id, SendMessageParams(to=to, media=media))

    # Sessions: no-ops for vendors that keep credentials remotely
    @abc.abstractmethod
    async def save_session(self, instance_id: str, session_data: Any) -> None:
        ...

    @abc.abstractmethod
    async def load_session(self, instance_id: str) -> Any:
        ...

    @abc.abstractmethod
    async def delete_session(self, instance_id: str) -> None:
        ...

    # Event subscription, replace semantics
    @abc.abstractmethod
    def on_message(self, instance_id: str, handler: MessageHandler) -> None:
        ...

    @abc.abstractmethod
    def on_status_change(self, instance_id: str, handler: StatusHandler) -> None:
        ...

    @abc.abstractmethod
    def on_qrcode_updated(self, instance_id: str, handler: QRCodeHandler) -> None:
        ...

    # Instances
    @abc.abstractmethod
    async def list_instances(self) -> list[str]:
        ...

    @abc.abstractmethod
    async def instance_exists(self, instance_id: str) -> bool:
        ...


@runtime_checkable
class WebhookCapable(Protocol):
    async def set_webhook(self, instance_id: str, url: str) -> None: ...


@runtime_checkable
class WebhookRemovalCapable(Protocol):
    async def remove_webhook(self, instance_id: str) -> None: ...


@runtime_checkable
class HistoryCapable(Protocol):
    async def fetch_contacts(self, instance_id: str) -> list[dict[str, Any]]: ...

    async def fetch_chats(self, instance_id: str) -> list[dict[str, Any]]: ...

    async def fetch_messages(self, instance_id: str, chat_id: str, limit: int = 50) -> list[IncomingMessage]: ...


CAPABILITIES: dict[str, tuple[type, tuple[str, ...]]] = {
    "webhook": (WebhookCapable, ("set_webhook",)),
    "webhook_removal": (WebhookRemovalCapable, ("remove_webhook",)),
    "history": (HistoryCapable, ("fetch_contacts", "fetch_chats", "fetch_messages")),
}


def supports(provider: WhatsAppProvider, capability: str) -> bool:
    """Probe an optional capability ("webhook", "webhook_removal" or "history") before calling it.

    A provider supports a capability when it implements the protocol and
    does not list any of its operations in ``unsupported_operations``.
    """
    try:
        proto, operations = CAPABILITIES[capability]
    except KeyError:
        raise KeyError(f"unknown capability: {capability}") from None
    if not isinstance(provider, proto):
        return False
    return not set(operations) & provider.unsupported_operations
