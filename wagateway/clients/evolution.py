"""httpx client for the Evolution API."""
from __future__ import annotations

import base64
from typing import Any, Optional

import httpx

from wagateway.core.circuit_breaker import CircuitBreaker
from wagateway.core.errors import VendorError
from wagateway.core.retry import is_transient, retry_async
from wagateway.observability.logging import get_logger
from wagateway.providers.evolution_codec import clean_phone_number

log = get_logger("evolution_client")

WEBHOOK_EVENTS = [
    "APPLICATION_STARTUP",
    "QRCODE_UPDATED",
    "CONNECTION_UPDATE",
    "MESSAGES_UPSERT",
    "MESSAGES_UPDATE",
    "SEND_MESSAGE",
]


def media_reference(url: Optional[str], data: Optional[bytes]) -> str:
    """The vendor takes either a public URL or the raw file as base64."""
    if url:
        return url
    if data:
        return base64.b64encode(data).decode("ascii")
    return ""


class EvolutionClient:
    """Thin RPC wrapper. Every call is retried on transient errors and goes
    through a circuit breaker; anything that still fails becomes VendorError."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_attempts = retry_attempts
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"apikey": api_key, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )
        # one breaker per vendor endpoint, shared by every instance: only outages may trip it
        self._breaker = breaker or CircuitBreaker(
            "evolution", failure_threshold=5, window=60.0, recovery_timeout=30.0, is_failure=is_transient
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._http.request(method, path, **kwargs)
        resp.raise_for_status()
        if not resp.content:
            return {}
        return resp.json()

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        try:
            data = await self._breaker.call(
                retry_async, self._send, method, path, max_attempts=self.retry_attempts, **kwargs
            )
        except VendorError:
            raise
        except httpx.HTTPStatusError as e:
            body = e.response.text[:200]
            raise VendorError(
                f"{operation}: HTTP {e.response.status_code} {body}",
                status_code=e.response.status_code,
                operation=operation,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise VendorError(f"{operation}: {str(e) or type(e).__name__}", operation=operation) from e
        log.debug("evolution_call", operation=operation, path=path)
        return data

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        try:
            resp = await self._http.get("/")
        except httpx.HTTPError as e:
            log.warning("evolution_health_check_failed", error=str(e) or type(e).__name__)
            return False
        return resp.status_code == 200

    async def fetch_instances(self) -> list[dict[str, Any]]:
        data = await self._request("fetch_instances", "GET", "/instance/fetchInstances")
        instances = []
        for item in data or []:
            inner = item.get("instance") or {}
            instances.append({
                "instanceName": item.get("name") or item.get("instanceName") or inner.get("instanceName"),
                "instanceId": item.get("id") or item.get("instanceId") or inner.get("instanceId"),
                "status": item.get("connectionStatus") or inner.get("connectionStatus") or "disconnected",
                "connectionState": item.get("state") or inner.get("state"),
                "owner": item.get("ownerJid") or inner.get("owner"),
            })
        return instances

    async def create_instance(self, instance_name: str, webhook_url: Optional[str] = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "instanceName": instance_name,
            "integration": "WHATSAPP-BAILEYS",
            "qrcode": True,
        }
        if webhook_url:
            payload.update({"webhookUrl": webhook_url, "webhookByEvents": True, "events": WEBHOOK_EVENTS})
        return await self._request("create_instance", "POST", "/instance/create", json=payload)

    async def connect_instance(self, instance_name: str) -> str:
        data = await self._request("connect_instance", "GET", f"/instance/connect/{instance_name}")
        return data.get("code") or data.get("qrcode") or data.get("base64") or ""

    async def get_qrcode(self, instance_name: str) -> str:
        try:
            data = await self._request("get_qrcode", "GET", f"/instance/connect/{instance_name}")
        except VendorError as e:
            # not generated yet
            if e.status_code in (400, 404):
                return ""
            raise
        return data.get("code") or data.get("base64") or ""

    async def get_connection_state(self, instance_name: str) -> str:
        data = await self._request("get_connection_state", "GET", f"/instance/connectionState/{instance_name}")
        return data.get("state") or (data.get("instance") or {}).get("state") or "close"

    async def delete_instance(self, instance_name: str) -> None:
        await self._request("logout_instance", "DELETE", f"/instance/logout/{instance_name}")

    async def restart_instance(self, instance_name: str) -> None:
        await self._request("restart_instance", "PUT", f"/instance/restart/{instance_name}")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @staticmethod
    def _options(quoted_message_id: Optional[str]) -> dict[str, Any]:
        if not quoted_message_id:
            return {}
        return {"options": {"quoted": {"key": {"id": quoted_message_id}}}}

    async def send_text(
        self, instance_name: str, to: str, text: str, quoted_message_id: Optional[str] = None
    ) -> dict[str, Any]:
        payload = {"number": clean_phone_number(to), "textMessage": {"text": text}}
        payload.update(self._options(quoted_message_id))
        return await self._request("send_text", "POST", f"/message/sendText/{instance_name}", json=payload)

    async def send_media(
        self,
        instance_name: str,
        to: str,
        media: str,
        media_type: str,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
        quoted_message_id: Optional[str] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"number": clean_phone_number(to)}
        if media_type == "audio":
            payload["audioMessage"] = {"audio": media}
            path = f"/message/sendWhatsAppAudio/{instance_name}"
        else:
            message: dict[str, Any] = {"mediatype": media_type, "media": media, "caption": caption or ""}
            if mime_type:
                message["mimetype"] = mime_type
            if media_type == "document":
                message["fileName"] = filename or caption or "document"
            payload["mediaMessage"] = message
            path = f"/message/sendMedia/{instance_name}"
        payload.update(self._options(quoted_message_id))
        return await self._request("send_media", "POST", path, json=payload)

    async def send_buttons(
        self, instance_name: str, to: str, text: str, buttons: list[dict[str, Any]]
    ) -> dict[str, Any]:
        payload = {
            "number": clean_phone_number(to),
            "buttonMessage": {
                "text": text,
                "buttons": [
                    {"buttonId": b["id"], "buttonText": {"displayText": b["title"]}, "type": 1}
                    for b in buttons
                ],
                "headerType": 1,
            },
        }
        return await self._request("send_buttons", "POST", f"/message/sendButtons/{instance_name}", json=payload)

    async def send_list(
        self, instance_name: str, to: str, text: str, button_text: str, sections: list[dict[str, Any]]
    ) -> dict[str, Any]:
        payload = {
            "number": clean_phone_number(to),
            "listMessage": {
                "text": text,
                "buttonText": button_text,
                "sections": [
                    {
                        "title": s["title"],
                        "rows": [
                            {"rowId": r["id"], "title": r["title"], "description": r.get("description") or ""}
                            for r in s.get("rows", [])
                        ],
                    }
                    for s in sections
                ],
            },
        }
        return await self._request("send_list", "POST", f"/message/sendList/{instance_name}", json=payload)

    # ------------------------------------------------------------------
    # Webhooks, contacts, history
    # ------------------------------------------------------------------

    async def set_webhook(self, instance_name: str, url: str) -> dict[str, Any]:
        payload = {
            "enabled": True,
            "url": url,
            "webhookByEvents": True,
            "webhookBase64": False,
            "events": WEBHOOK_EVENTS,
        }
        return await self._request("set_webhook", "POST", f"/webhook/set/{instance_name}", json=payload)

    async def fetch_contacts(self, instance_name: str) -> list[dict[str, Any]]:
        data = await self._request("fetch_contacts", "GET", f"/contact/fetchContacts/{instance_name}")
        return [
            {
                "id": c.get("id"),
                "name": c.get("name") or c.get("pushName") or c.get("id"),
                "phone": c.get("id"),
                "profilePicUrl": c.get("profilePicUrl"),
                "isBlocked": bool(c.get("isBlocked", False)),
                "isGroup": "@g.us" in (c.get("id") or ""),
            }
            for c in data or []
        ]

    async def fetch_chats(self, instance_name: str) -> list[dict[str, Any]]:
        return list(await self._request("fetch_chats", "GET", f"/chat/fetchAllChats/{instance_name}") or [])

    async def fetch_messages(self, instance_name: str, chat_id: str, limit: int = 50) -> list[dict[str, Any]]:
        data = await self._request(
            "fetch_messages",
            "GET",
            f"/chat/fetchMessages/{instance_name}",
            params={"number": chat_id, "limit": limit},
        )
        return list(data or [])
