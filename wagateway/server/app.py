from __future__ import annotations
import json
from typing import Any, Optional
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from pydantic import BaseModel
from wagateway.config import Settings
from wagateway.core.errors import NoProviderAvailableError, ProviderCommandError
from wagateway.core.manager import ProviderManager
from wagateway.domain.models import ConnectionStatus, SendMessageParams
from wagateway.providers.evolution import EvolutionProvider
from wagateway.security.auth import ClientKeyGuard
from wagateway.observability.logging import configure_logging, get_logger

log = get_logger("app")

VERSION = "0.1.0"

class ConnectRequest(BaseModel):
    business_id: str
    provider: Optional[str] = None

def build_manager(settings: Settings) -> ProviderManager:
    manager = ProviderManager(
        primary_provider=settings.primary_provider,
        health_check_interval=settings.health_check_interval_s,
    )
    manager.register(EvolutionProvider.from_settings(settings))
    return manager

def create_app(settings: Settings, manager: ProviderManager | None = None) -> FastAPI:
    configure_logging(settings.log_level, settings.json_logs)
    app = FastAPI(title="WhatsApp Provider Gateway", version=VERSION)
    manager = manager or build_manager(settings)
    app.state.manager = manager

    @app.on_event("startup")
    async def _startup():
        await manager.initialize()
        log.info("gateway_started", host=settings.host, port=settings.port)

    @app.on_event("shutdown")
    async def _shutdown():
        await manager.dispose()

    @app.exception_handler(NoProviderAvailableError)
    async def _no_provider(request: Request, exc: NoProviderAvailableError):
        return JSONResponse(status_code=503, content={"ok": False, "error": str(exc)})

    @app.exception_handler(ProviderCommandError)
    async def _command_failed(request: Request, exc: ProviderCommandError):
        return JSONResponse(status_code=502, content={"ok": False, "error": str(exc)})

    guard = ClientKeyGuard(settings)

    async def _auth(x_api_key: str | None = Header(default=None)):
        if not guard.accepts(x_api_key):
            raise HTTPException(status_code=401, detail="unauthorized")
        return True

    # health/metrics
    @app.get(settings.health_path)
    async def healthz():
        return {"ok": True, "service": "wa-gateway", "version": VERSION, "health": manager.summary()["health"]}

    @app.get(settings.metrics_path)
    async def metrics_endpoint():
        return PlainTextResponse(generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    # Vendor webhooks. Always 200: a non-2xx makes the vendor retry with backoff.
    async def _receive(instance_id: str, request: Request, event_hint: str | None = None) -> dict[str, Any]:
        try:
            payload = json.loads(await request.body() or b"{}")
            if isinstance(payload, dict) and not payload.get("event") and event_hint:
                payload["event"] = event_hint
            delivered = await manager.handle_webhook(instance_id, payload)
            return {"ok": True, "delivered": delivered}
        except Exception as e:
            log.error("webhook_receive_failed", instance_id=instance_id, error=str(e), error_type=type(e).__name__)
            return {"ok": True, "delivered": False}

    @app.post(settings.webhook_path + "/{instance_id}")
    async def webhook(instance_id: str, request: Request):
        return await _receive(instance_id, request)

    # per-event URLs: the vendor appends e.g. "/messages-upsert" when webhookByEvents is on
    @app.post(settings.webhook_path + "/{instance_id}/{event}")
    async def webhook_by_event(instance_id: str, event: str, request: Request):
        return await _receive(instance_id, request, event_hint=event.replace("-", "_"))

    # Instance management
    @app.get("/instances", dependencies=[Depends(_auth)])
    async def instances_list():
        return {"instances": [s.model_dump(mode="json") for s in manager.sessions()]}

    @app.post("/instances/{instance_id}/connect", dependencies=[Depends(_auth)])
    async def instance_connect(instance_id: str, body: ConnectRequest):
        result = await manager.connect(instance_id, body.business_id, provider_name=body.provider)
        kind = "status" if isinstance(result, ConnectionStatus) else "qrcode"
        return {"kind": kind, kind: result.model_dump(mode="json")}

    @app.get("/instances/{instance_id}/status", dependencies=[Depends(_auth)])
    async def instance_status(instance_id: str):
        status = await manager.get_connection_status(instance_id)
        if status is None:
            raise HTTPException(status_code=404, detail="unknown instance")
        return {"status": status.model_dump(mode="json")}

    @app.get("/instances/{instance_id}/qrcode", dependencies=[Depends(_auth)])
    async def instance_qrcode(instance_id: str):
        qr = await manager.get_qrcode(instance_id)
        if qr is None:
            raise HTTPException(status_code=404, detail="no pairing code available")
        return {"qrcode": qr.model_dump(mode="json")}

    @app.post("/instances/{instance_id}/messages", dependencies=[Depends(_auth)])
    async def instance_send(instance_id: str, params: SendMessageParams):
        result = await manager.send_message(instance_id, params)
        return {"result": result.model_dump(mode="json")}

    @app.post("/instances/{instance_id}/restart", dependencies=[Depends(_auth)])
    async def instance_restart(instance_id: str):
        await manager.restart(instance_id)
        return {"ok": True}

    @app.delete("/instances/{instance_id}", dependencies=[Depends(_auth)])
    async def instance_disconnect(instance_id: str):
        await manager.disconnect(instance_id)
        return {"ok": True}

    return app
