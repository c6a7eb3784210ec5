"""Vendor webhook classification and delivery to registered handlers.

Nothing in here raises: the HTTP layer must always acknowledge the vendor,
otherwise it retries and backs off.
"""
from __future__ import annotations

import inspect
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel

from wagateway.domain.models import DATA_URI_PREFIX, QRCodeData
from wagateway.observability import metrics
from wagateway.observability.logging import bind_instance_id, get_logger, unbind_instance_id
from wagateway.providers.evolution_codec import map_state, to_incoming_message
from wagateway.providers.registry import HandlerRegistry

log = get_logger("webhook")


class WebhookEvent(str, Enum):
    messages_upsert = "MESSAGES_UPSERT"
    connection_update = "CONNECTION_UPDATE"
    qrcode_updated = "QRCODE_UPDATED"

    @classmethod
    def parse(cls, raw: Any) -> Optional["WebhookEvent"]:
        """Accepts ``MESSAGES_UPSERT`` as well as ``messages.upsert``."""
        token = str(raw or "").strip().upper().replace(".", "_")
        try:
            return cls(token)
        except ValueError:
            return None


class WebhookEnvelope(BaseModel):
    event: str
    data: Any = None
    instance: Optional[str] = None

    class Config:
        extra = "ignore"


async def _invoke(handler: Callable[[Any], Any], arg: Any) -> None:
    result = handler(arg)
    if inspect.isawaitable(result):
        await result


def _raw_messages(data: dict[str, Any]) -> list[dict[str, Any]]:
    messages = data.get("messages")
    if isinstance(messages, list):
        return [m for m in messages if isinstance(m, dict)]
    # single-message upserts carry the message itself as data
    if "key" in data or "id" in data:
        return [data]
    return []


def _qrcode_payload(data: dict[str, Any]) -> str:
    raw = data.get("qrcode")
    if isinstance(raw, dict):
        raw = raw.get("base64") or raw.get("code")
    code = str(raw or "")
    if code.startswith(DATA_URI_PREFIX):
        code = code[len(DATA_URI_PREFIX):]
    return code


class WebhookDispatcher:
    def __init__(self, registry: HandlerRegistry):
        self.registry = registry

    async def dispatch(self, instance_id: str, payload: Any) -> bool:
        """Deliver one envelope. Returns True when a handler was invoked."""
        bind_instance_id(instance_id)
        try:
            envelope = payload if isinstance(payload, WebhookEnvelope) else WebhookEnvelope.model_validate(payload)
            event = WebhookEvent.parse(envelope.event)
            metrics.webhook_events.labels(event=event.value if event else "unknown").inc()
            if event is None:
                log.info("webhook_event_ignored", event=envelope.event)
                return False

            data = envelope.data if isinstance(envelope.data, dict) else {}
            if event == WebhookEvent.messages_upsert:
                return await self._on_messages(instance_id, data)
            if event == WebhookEvent.connection_update:
                return await self._on_connection(instance_id, data)
            return await self._on_qrcode(instance_id, data)
        except Exception as e:
            metrics.webhook_errors.inc()
            log.error("webhook_dispatch_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            return False
        finally:
            unbind_instance_id()

    def _dropped(self, kind: str) -> bool:
        metrics.webhook_dropped.labels(kind=kind).inc()
        log.debug("webhook_event_dropped", kind=kind, reason="no_handler")
        return False

    async def _on_messages(self, instance_id: str, data: dict[str, Any]) -> bool:
        handler = self.registry.get_message(instance_id)
        if handler is None:
            return self._dropped("message")

        delivered = False
        for raw in _raw_messages(data):
            try:
                message = to_incoming_message(raw)
            except (ValueError, TypeError) as e:
                log.warning("webhook_message_skipped", error=str(e))
                continue
            await _invoke(handler, message)
            delivered = True
        return delivered

    async def _on_connection(self, instance_id: str, data: dict[str, Any]) -> bool:
        handler = self.registry.get_status(instance_id)
        if handler is None:
            return self._dropped("status")
        status = map_state(data.get("state"), phone_number=data.get("wuid"))
        log.info("webhook_connection_update", state=status.state.value)
        await _invoke(handler, status)
        return True

    async def _on_qrcode(self, instance_id: str, data: dict[str, Any]) -> bool:
        handler = self.registry.get_qrcode(instance_id)
        if handler is None:
            return self._dropped("qrcode")
        code = _qrcode_payload(data)
        if not code:
            log.warning("webhook_qrcode_empty")
            return False
        await _invoke(handler, QRCodeData.from_raw(code))
        return True
