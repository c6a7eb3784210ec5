from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional, Protocol, Union

from wagateway.core.errors import NoProviderAvailableError
from wagateway.domain.models import (
    ConnectionState,
    ConnectionStatus,
    MessageResult,
    QRCodeData,
    SendMessageParams,
    SessionData,
    utcnow,
)
from wagateway.observability import metrics
from wagateway.observability.logging import get_logger
from wagateway.providers.base import WhatsAppProvider
from wagateway.providers.registry import MessageHandler, QRCodeHandler, StatusHandler

log = get_logger("manager")


class SessionStore(Protocol):
    async def get(self, instance_id: str) -> Optional[SessionData]: ...

    async def put(self, session: SessionData) -> None: ...

    async def delete(self, instance_id: str) -> None: ...

    async def all(self) -> list[SessionData]: ...


class InMemorySessionStore:
    def __init__(self) -> None:
        self._data: dict[str, SessionData] = {}

    async def get(self, instance_id: str) -> Optional[SessionData]:
        return self._data.get(instance_id)

    async def put(self, session: SessionData) -> None:
        self._data[session.instance_id] = session

    async def delete(self, instance_id: str) -> None:
        self._data.pop(instance_id, None)

    async def all(self) -> list[SessionData]:
        return list(self._data.values())


class ProviderManager:
    """Owns the registered providers and remembers which one serves each instance.

    Providers are tried in ``config.priority`` order (lower first), starting
    with the one already bound to the instance. Connect and send fall back
    to the next provider when the current one fails.

    Handlers registered through the manager are kept here as well and are
    installed on whichever provider the instance is bound to, so a failover
    moves them along. Every bound instance also gets a status handler that
    keeps its ``SessionData.status`` in step with webhook pushes.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        *,
        primary_provider: str | None = None,
        health_check_interval: float = 30.0,
    ):
        self.store: SessionStore = store or InMemorySessionStore()
        self.primary_provider = primary_provider
        self.health_check_interval = health_check_interval
        self._providers: dict[str, WhatsAppProvider] = {}
        self._sessions: dict[str, SessionData] = {}
        self._handlers: dict[str, dict[str, Callable[[Any], Any]]] = {}
        self._health: dict[str, bool] = {}
        self._health_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def register(self, provider: WhatsAppProvider) -> None:
        self._providers[provider.name] = provider
        log.info("provider_registered", provider=provider.name, priority=provider.config.priority)

    def get(self, name: str) -> WhatsAppProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise NoProviderAvailableError(f"provider not registered: {name}") from None

    def providers(self) -> list[WhatsAppProvider]:
        """Enabled providers, lowest priority value first."""
        enabled = [p for p in self._providers.values() if p.config.enabled]
        return sorted(enabled, key=lambda p: p.config.priority)

    def _candidates(self, preferred: str | None) -> list[WhatsAppProvider]:
        ordered = self.providers()
        if preferred:
            ordered.sort(key=lambda p: p.name != preferred)
        return ordered

    def _default_provider_name(self) -> str:
        if self.primary_provider and self.primary_provider in self._providers:
            return self.primary_provider
        ordered = self.providers()
        if not ordered:
            raise NoProviderAvailableError("no enabled provider registered")
        return ordered[0].name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        for provider in self.providers():
            try:
                await provider.initialize()
                self._health[provider.name] = True
            except Exception as e:
                # one unreachable vendor must not take the others down
                self._health[provider.name] = False
                log.error("provider_init_failed", provider=provider.name, error=str(e))
            metrics.provider_healthy.labels(provider=provider.name).set(1 if self._health[provider.name] else 0)

        for session in await self.store.all():
            self._sessions[session.instance_id] = session
            if session.provider in self._providers:
                self._install(session.instance_id, self._providers[session.provider])
        log.info("manager_initialized", providers=list(self._providers), sessions=len(self._sessions))

        if self.health_check_interval > 0:
            self._health_task = asyncio.create_task(self._health_loop())

    async def dispose(self) -> None:
        if self._health_task:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        for session in self._sessions.values():
            await self.store.put(session)

        for name, provider in self._providers.items():
            try:
                await provider.dispose()
            except Exception as e:
                log.error("provider_dispose_failed", provider=name, error=str(e))
        self._sessions.clear()

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_check_interval)
            await self.check_health()

    async def check_health(self) -> dict[str, bool]:
        for provider in self.providers():
            healthy = await provider.is_healthy()
            if not healthy:
                log.warning("provider_unhealthy", provider=provider.name)
            self._health[provider.name] = healthy
            metrics.provider_healthy.labels(provider=provider.name).set(1 if healthy else 0)
        return dict(self._health)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def _session(self, instance_id: str) -> Optional[SessionData]:
        session = self._sessions.get(instance_id)
        if session is None:
            session = await self.store.get(instance_id)
            if session is not None:
                self._sessions[instance_id] = session
        return session

    async def _touch(self, session: SessionData, status: ConnectionStatus | None = None) -> None:
        if status is not None:
            session.status = status
            if status.phone_number:
                session.phone_number = status.phone_number
        session.last_activity = utcnow()
        self._sessions[session.instance_id] = session
        await self.store.put(session)

    def sessions(self) -> list[SessionData]:
        return list(self._sessions.values())

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(
        self, instance_id: str, business_id: str, provider_name: str | None = None
    ) -> Union[QRCodeData, ConnectionStatus]:
        session = await self._session(instance_id)
        if session is None:
            session = SessionData(
                instance_id=instance_id,
                business_id=business_id,
                provider=provider_name or self._default_provider_name(),
            )

        last_error: Exception | None = None
        for provider in self._candidates(provider_name or session.provider):
            try:
                result = await provider.connect(instance_id, business_id)
            except Exception as e:
                last_error = e
                log.error("manager_connect_failed", provider=provider.name, instance_id=instance_id, error=str(e))
                continue
            self._bind(session, provider)
            status = result if isinstance(result, ConnectionStatus) else ConnectionStatus(state=ConnectionState.connecting)
            await self._touch(session, status)
            return result

        raise NoProviderAvailableError(f"all providers failed to connect {instance_id}") from last_error

    async def disconnect(self, instance_id: str) -> None:
        session = await self._session(instance_id)
        if session is None:
            log.warning("manager_no_session", instance_id=instance_id, operation="disconnect")
            return
        await self.get(session.provider).disconnect(instance_id)
        self._sessions.pop(instance_id, None)
        self._handlers.pop(instance_id, None)
        await self.store.delete(instance_id)

    async def restart(self, instance_id: str) -> None:
        session = await self._session(instance_id)
        if session is None:
            raise NoProviderAvailableError(f"no session for {instance_id}")
        await self.get(session.provider).restart(instance_id)

    async def get_connection_status(self, instance_id: str) -> Optional[ConnectionStatus]:
        session = await self._session(instance_id)
        if session is None:
            return None
        status = await self.get(session.provider).get_connection_status(instance_id)
        await self._touch(session, status)
        return status

    async def get_qrcode(self, instance_id: str) -> Optional[QRCodeData]:
        session = await self._session(instance_id)
        if session is None:
            return None
        return await self.get(session.provider).get_qrcode(instance_id)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(self, instance_id: str, params: SendMessageParams) -> MessageResult:
        session = await self._session(instance_id)
        if session is None:
            return MessageResult.failed(f"no active session for {instance_id}")
        if params.payload_kind is None:
            return await self.get(session.provider).send_message(instance_id, params)

        result: MessageResult | None = None
        for provider in self._candidates(session.provider):
            result = await provider.send_message(instance_id, params)
            if result.ok:
                if provider.name != session.provider:
                    self._bind(session, provider)
                await self._touch(session)
                return result
            if result.rate_limited:
                # refused locally; the instance may not exist on the other vendors
                log.warning("manager_send_rate_limited", provider=provider.name, instance_id=instance_id)
                return result
            log.warning("manager_send_failed", provider=provider.name, instance_id=instance_id, error=result.error)
        return result or MessageResult.failed("no enabled provider registered")

    async def send_text(self, instance_id: str, to: str, text: str) -> MessageResult:
        return await self.send_message(instance_id, SendMessageParams(to=to, text=text))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _provider_for(self, instance_id: str) -> WhatsAppProvider:
        session = await self._session(instance_id)
        return self.get(session.provider if session else self._default_provider_name())

    def _status_tracker(self, instance_id: str) -> StatusHandler:
        async def _tracked(status: ConnectionStatus) -> None:
            session = await self._session(instance_id)
            if session is not None:
                await self._touch(session, status)
            handler = self._handlers.get(instance_id, {}).get("status")
            if handler is not None:
                result = handler(status)
                if inspect.isawaitable(result):
                    await result

        return _tracked

    def _install(self, instance_id: str, provider: WhatsAppProvider) -> None:
        handlers = self._handlers.get(instance_id, {})
        if "message" in handlers:
            provider.on_message(instance_id, handlers["message"])
        if "qrcode" in handlers:
            provider.on_qrcode_updated(instance_id, handlers["qrcode"])
        provider.on_status_change(instance_id, self._status_tracker(instance_id))

    def _bind(self, session: SessionData, provider: WhatsAppProvider) -> None:
        if provider.name != session.provider:
            log.info("manager_provider_switched", instance_id=session.instance_id, provider=provider.name)
        session.provider = provider.name
        self._install(session.instance_id, provider)

    async def _subscribe(self, instance_id: str, kind: str, handler: Callable[[Any], Any]) -> None:
        self._handlers.setdefault(instance_id, {})[kind] = handler
        self._install(instance_id, await self._provider_for(instance_id))

    async def on_message(self, instance_id: str, handler: MessageHandler) -> None:
        await self._subscribe(instance_id, "message", handler)

    async def on_status_change(self, instance_id: str, handler: StatusHandler) -> None:
        await self._subscribe(instance_id, "status", handler)

    async def on_qrcode_updated(self, instance_id: str, handler: QRCodeHandler) -> None:
        await self._subscribe(instance_id, "qrcode", handler)

    async def handle_webhook(self, instance_id: str, payload: Any) -> bool:
        provider = await self._provider_for(instance_id)
        handle = getattr(provider, "handle_webhook", None)
        if handle is None:
            log.warning("webhook_unsupported_provider", provider=provider.name, instance_id=instance_id)
            return False
        return await handle(instance_id, payload)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        usage: dict[str, int] = {}
        for session in self._sessions.values():
            usage[session.provider] = usage.get(session.provider, 0) + 1
        return {
            "total_sessions": len(self._sessions),
            "connected_sessions": sum(1 for s in self._sessions.values() if s.status.is_connected),
            "provider_usage": usage,
            "providers": [p.name for p in self.providers()],
            "health": dict(self._health),
        }
