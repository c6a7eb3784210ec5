"""Error taxonomy for the provider layer."""
from __future__ import annotations


class GatewayError(Exception):
    """Base class for every error raised by this package."""

    pass


class VendorError(GatewayError):
    """A vendor call failed: transport error, non-2xx answer or timeout."""

    def __init__(self, message: str, *, status_code: int | None = None, operation: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation


class ProviderInitError(GatewayError):
    """The vendor endpoint is unreachable at startup."""

    pass


class ProviderCommandError(GatewayError):
    """A command (connect, disconnect, restart, set_webhook) failed."""

    pass


class InvalidMessageParams(GatewayError):
    """Outbound parameters carry no recognized payload kind."""

    pass


class UnsupportedCapabilityError(GatewayError):
    """The provider does not implement an optional capability."""

    def __init__(self, provider: str, capability: str):
        super().__init__(f"{provider} does not support {capability}")
        self.provider = provider
        self.capability = capability


class NoProviderAvailableError(GatewayError):
    """Every registered provider failed the operation."""

    pass
