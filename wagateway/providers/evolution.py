"""Provider backed by the Evolution API (Baileys integration)."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from wagateway.clients.base import VendorClient
from wagateway.clients.evolution import EvolutionClient, media_reference
from wagateway.config import Settings
from wagateway.core.boundary import command, fail_soft
from wagateway.core.errors import (
    InvalidMessageParams,
    ProviderCommandError,
    ProviderInitError,
    UnsupportedCapabilityError,
)
from wagateway.domain.models import (
    ConnectionStatus,
    IncomingMessage,
    MessageResult,
    ProviderConfig,
    QRCodeData,
    RATE_LIMITED,
    RateLimit,
    SendMessageParams,
)
from wagateway.observability import metrics
from wagateway.observability.logging import get_logger
from wagateway.providers.base import WhatsAppProvider
from wagateway.providers.evolution_codec import map_state, to_incoming_message
from wagateway.providers.registry import HandlerRegistry, MessageHandler, QRCodeHandler, StatusHandler
from wagateway.providers.webhook import WebhookDispatcher
from wagateway.security.rate_limit import RateLimiter

T = TypeVar("T")
log = get_logger("evolution")

DEFAULT_CONFIG = ProviderConfig(
    name="evolution",
    priority=1,
    enabled=True,
    retry_attempts=3,
    timeout=30.0,
    rate_limit=RateLimit(messages_per_minute=60, burst_limit=10),
)


def describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _result_id(raw: Any) -> Optional[str]:
    if not isinstance(raw, dict):
        return None
    key = raw.get("key") if isinstance(raw.get("key"), dict) else {}
    return raw.get("messageId") or raw.get("id") or key.get("id")


class EvolutionProvider(WhatsAppProvider):
    """Evolution API adapter.

    The vendor is the system of record for instances and sessions; this
    object only keeps the handler registry in memory.
    """

    # the vendor has no endpoint to drop a webhook
    unsupported_operations = frozenset({"remove_webhook"})

    def __init__(
        self,
        client: VendorClient,
        config: ProviderConfig | None = None,
        *,
        webhook_url_for: Callable[[str], str] | None = None,
        owns_client: bool = False,
        **overrides: Any,
    ):
        self.config = ProviderConfig.merged(config or DEFAULT_CONFIG, **overrides)
        self.name = self.config.name
        self.client = client
        self.registry = HandlerRegistry()
        self.dispatcher = WebhookDispatcher(self.registry)
        self._webhook_url_for = webhook_url_for
        self._owns_client = owns_client
        self._limiter = RateLimiter.per_minute(self.config.rate_limit) if self.config.rate_limit else None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "EvolutionProvider":
        config = ProviderConfig.merged(
            DEFAULT_CONFIG,
            priority=settings.provider_priority,
            retry_attempts=settings.provider_retry_attempts,
            timeout=settings.provider_timeout_s,
            rate_limit=RateLimit(
                messages_per_minute=settings.rate_limit_messages_per_minute,
                burst_limit=settings.rate_limit_burst,
            ),
            **overrides,
        )
        client = EvolutionClient(
            settings.evolution_api_url,
            settings.evolution_api_key,
            timeout=config.timeout,
            retry_attempts=config.retry_attempts,
        )
        webhook_url_for = settings.webhook_url_for if settings.public_webhook_url else None
        return cls(client, config, webhook_url_for=webhook_url_for, owns_client=True)

    async def _call(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        return await asyncio.wait_for(fn(*args), timeout=self.config.timeout)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        log.info("provider_initializing", provider=self.name)
        try:
            healthy = await self._call(self.client.health_check)
        except Exception as e:
            raise ProviderInitError(f"{self.name} vendor endpoint unreachable: {describe(e)}") from e
        if not healthy:
            raise ProviderInitError(f"{self.name} vendor endpoint is not accessible")
        log.info("provider_initialized", provider=self.name)

    async def dispose(self) -> None:
        log.info("provider_disposing", provider=self.name)
        self.registry.clear_all()
        if self._owns_client:
            await self.client.aclose()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @command
    async def connect(self, instance_id: str, business_id: str) -> Union[QRCodeData, ConnectionStatus]:
        log.info("provider_connect", provider=self.name, instance_id=instance_id, business_id=business_id)
        instances = await self._call(self.client.fetch_instances)
        exists = any(i.get("instanceName") == instance_id for i in instances)

        if exists:
            status = await self.get_connection_status(instance_id)
            if status.is_connected:
                return status
        else:
            webhook_url = self._webhook_url_for(instance_id) if self._webhook_url_for else None
            await self._call(self.client.create_instance, instance_id, webhook_url)

        code = await self._call(self.client.connect_instance, instance_id)
        if not code:
            raise ProviderCommandError(f"{self.name} returned no pairing code for {instance_id}")
        return QRCodeData.from_raw(code)

    @command
    async def disconnect(self, instance_id: str) -> None:
        log.info("provider_disconnect", provider=self.name, instance_id=instance_id)
        await self._call(self.client.delete_instance, instance_id)
        self.registry.clear(instance_id)
        if self._limiter:
            self._limiter.forget(instance_id)

    @command
    async def restart(self, instance_id: str) -> None:
        log.info("provider_restart", provider=self.name, instance_id=instance_id)
        await self._call(self.client.restart_instance, instance_id)

    # ------------------------------------------------------------------
    # Status & health
    # ------------------------------------------------------------------

    @fail_soft(lambda e: ConnectionStatus.failure(describe(e)))
    async def get_connection_status(self, instance_id: str) -> ConnectionStatus:
        token = await self._call(self.client.get_connection_state, instance_id)
        return map_state(token)

    @fail_soft(lambda e: None)
    async def get_qrcode(self, instance_id: str) -> Optional[QRCodeData]:
        code = await self._call(self.client.get_qrcode, instance_id)
        return QRCodeData.from_raw(code) if code else None

    @fail_soft(lambda e: False)
    async def is_healthy(self) -> bool:
        return bool(await self._call(self.client.health_check))

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(self, instance_id: str, params: SendMessageParams) -> MessageResult:
        result = await self._deliver(instance_id, params)
        metrics.messages_sent.labels(provider=self.name, status=result.status.value).inc()
        return result

    @fail_soft(lambda e: MessageResult.failed(describe(e)))
    async def _deliver(self, instance_id: str, params: SendMessageParams) -> MessageResult:
        kind = params.payload_kind
        if kind is None:
            raise InvalidMessageParams("Invalid message parameters: expected text, media, buttons or list")
        if self._limiter and not self._limiter.allow(instance_id):
            log.warning("provider_rate_limited", provider=self.name, instance_id=instance_id)
            return MessageResult.failed(RATE_LIMITED)

        if kind == "media":
            media = params.media
            ref = media_reference(media.url, media.data)
            if not ref:
                raise InvalidMessageParams("Invalid message parameters: media needs a url or data")
            raw = await self._call(
                self.client.send_media,
                instance_id,
                params.to,
                ref,
                media.kind,
                media.caption,
                media.filename,
                media.mime_type,
                params.quoted_message_id,
            )
        elif kind == "buttons":
            raw = await self._call(
                self.client.send_buttons,
                instance_id,
                params.to,
                params.text or "",
                [b.model_dump() for b in params.buttons],
            )
        elif kind == "list":
            raw = await self._call(
                self.client.send_list,
                instance_id,
                params.to,
                params.text or "",
                params.list_.button_text,
                [s.model_dump() for s in params.list_.sections],
            )
        else:
            raw = await self._call(
                self.client.send_text, instance_id, params.to, params.text, params.quoted_message_id
            )
        return MessageResult.sent(_result_id(raw))

    # ------------------------------------------------------------------
    # Sessions live in the vendor
    # ------------------------------------------------------------------

    async def save_session(self, instance_id: str, session_data: Any) -> None:
        log.debug("session_managed_by_vendor", provider=self.name, instance_id=instance_id)

    async def load_session(self, instance_id: str) -> Any:
        log.debug("session_managed_by_vendor", provider=self.name, instance_id=instance_id)
        return None

    @command
    async def delete_session(self, instance_id: str) -> None:
        await self._call(self.client.delete_instance, instance_id)
        self.registry.clear(instance_id)

    # ------------------------------------------------------------------
    # Event subscription
    # ------------------------------------------------------------------

    def on_message(self, instance_id: str, handler: MessageHandler) -> None:
        self.registry.set_message(instance_id, handler)
        log.debug("handler_registered", kind="message", instance_id=instance_id)

    def on_status_change(self, instance_id: str, handler: StatusHandler) -> None:
        self.registry.set_status(instance_id, handler)
        log.debug("handler_registered", kind="status", instance_id=instance_id)

    def on_qrcode_updated(self, instance_id: str, handler: QRCodeHandler) -> None:
        self.registry.set_qrcode(instance_id, handler)
        log.debug("handler_registered", kind="qrcode", instance_id=instance_id)

    async def handle_webhook(self, instance_id: str, payload: Any) -> bool:
        return await self.dispatcher.dispatch(instance_id, payload)

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    @fail_soft(lambda e: [])
    async def list_instances(self) -> list[str]:
        instances = await self._call(self.client.fetch_instances)
        return [i["instanceName"] for i in instances if i.get("instanceName")]

    async def instance_exists(self, instance_id: str) -> bool:
        return instance_id in await self.list_instances()

    # ------------------------------------------------------------------
    # Optional capabilities
    # ------------------------------------------------------------------

    @command
    async def set_webhook(self, instance_id: str, url: str) -> None:
        await self._call(self.client.set_webhook, instance_id, url)
        log.info("webhook_configured", provider=self.name, instance_id=instance_id, url=url)

    async def remove_webhook(self, instance_id: str) -> None:
        """Always raises: callers probe ``supports(p, "webhook_removal")`` first, or repoint the webhook with set_webhook."""
        log.warning("webhook_remove_unsupported", provider=self.name, instance_id=instance_id)
        metrics.unsupported_calls.labels(provider=self.name, capability="remove_webhook").inc()
        raise UnsupportedCapabilityError(self.name, "remove_webhook")

    @fail_soft(lambda e: [])
    async def fetch_contacts(self, instance_id: str) -> list[dict[str, Any]]:
        return await self._call(self.client.fetch_contacts, instance_id)

    @fail_soft(lambda e: [])
    async def fetch_chats(self, instance_id: str) -> list[dict[str, Any]]:
        return await self._call(self.client.fetch_chats, instance_id)

    @fail_soft(lambda e: [])
    async def fetch_messages(self, instance_id: str, chat_id: str, limit: int = 50) -> list[IncomingMessage]:
        raw = await self._call(self.client.fetch_messages, instance_id, chat_id, limit)
        messages = []
        for item in raw:
            try:
                messages.append(to_incoming_message(item))
            except (ValueError, TypeError) as e:
                log.debug("history_message_skipped", instance_id=instance_id, error=str(e))
        return messages
