from __future__ import annotations
from prometheus_client import Counter, Gauge

webhook_events = Counter("wagw_webhook_events_total", "Vendor webhook envelopes received", ["event"])
webhook_dropped = Counter("wagw_webhook_dropped_total", "Webhook events with no registered handler", ["kind"])
webhook_errors = Counter("wagw_webhook_errors_total", "Webhook envelopes that failed normalization")
messages_sent = Counter("wagw_messages_sent_total", "Outbound messages by result", ["provider", "status"])
vendor_errors = Counter("wagw_vendor_errors_total", "Vendor calls degraded to a fail-soft value", ["provider", "operation"])
unsupported_calls = Counter("wagw_unsupported_calls_total", "Calls to capabilities a provider lacks", ["provider", "capability"])
provider_healthy = Gauge("wagw_provider_healthy", "1 when the provider's vendor endpoint answered the last health check", ["provider"])
