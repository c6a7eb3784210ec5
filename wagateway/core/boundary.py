"""Adapter boundary policy.

Polling, read and send paths are wrapped with ``fail_soft`` and degrade to a
typed value. Command paths are wrapped with ``command`` and raise
``ProviderCommandError``. Both decorators expect a method whose ``self``
exposes ``name``.
"""
from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, TypeVar

from wagateway.core.errors import InvalidMessageParams, ProviderCommandError
from wagateway.observability import metrics
from wagateway.observability.logging import get_logger

T = TypeVar("T")
log = get_logger("boundary")


def fail_soft(fallback: Callable[[Exception], T]):
    """Convert any exception raised by the wrapped coroutine into ``fallback(exc)``."""

    def decorator(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(method)
        async def wrapper(self, *args: Any, **kwargs: Any) -> T:
            try:
                return await method(self, *args, **kwargs)
            except InvalidMessageParams as e:
                log.warning("provider_invalid_input", provider=self.name, operation=method.__name__, error=str(e))
                return fallback(e)
            except Exception as e:
                log.error(
                    "provider_call_degraded",
                    provider=self.name,
                    operation=method.__name__,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                metrics.vendor_errors.labels(provider=self.name, operation=method.__name__).inc()
                return fallback(e)

        return wrapper

    return decorator


def command(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Surface failures of an explicit user command as ProviderCommandError."""

    @functools.wraps(method)
    async def wrapper(self, *args: Any, **kwargs: Any) -> T:
        try:
            return await method(self, *args, **kwargs)
        except ProviderCommandError:
            raise
        except Exception as e:
            log.error(
                "provider_command_failed",
                provider=self.name,
                operation=method.__name__,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProviderCommandError(f"{self.name} {method.__name__} failed: {e}") from e

    return wrapper
