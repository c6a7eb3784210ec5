from __future__ import annotations
import secrets
from typing import Optional

from wagateway.config import Settings
from wagateway.observability.logging import get_logger

log = get_logger("auth")

def key_matches(expected: str, provided: str) -> bool:
    return secrets.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))

class ClientKeyGuard:
    """Checks the ``x-api-key`` header sent to instance management routes."""

    def __init__(self, settings: Settings):
        self.enabled = settings.require_client_auth
        self.keys = list(settings.client_api_keys)
        if self.enabled and not self.keys:
            log.warning("client_auth_without_keys")

    def accepts(self, provided: Optional[str]) -> bool:
        if not self.enabled:
            return True
        if not provided:
            return False
        # no early exit: every key is compared
        matched = False
        for k in self.keys:
            matched = key_matches(k, provided) or matched
        return matched
