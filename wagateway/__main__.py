from __future__ import annotations
import uvicorn
from wagateway.config import load_settings
from wagateway.observability.logging import get_logger
from wagateway.server.app import create_app

log = get_logger("main")

def main():
    settings = load_settings()
    app = create_app(settings)
    if not settings.public_webhook_url:
        log.warning("public_webhook_url_unset", hint="new instances are created without a webhook")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=settings.access_log,
    )

if __name__ == "__main__":
    main()
