from __future__ import annotations
import logging, sys
import structlog

# chatty at INFO: one line per vendor request
NOISY_LOGGERS = ("httpx", "httpcore")

def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, stream=sys.stdout, format="%(message)s")
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    processors.append(structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

def get_logger(name: str = "wagw"):
    return structlog.get_logger(name)

def bind_instance_id(instance_id: str | None):
    """Tag every log line emitted while handling one instance's webhook."""
    structlog.contextvars.bind_contextvars(instance_id=instance_id or "-")

def unbind_instance_id():
    structlog.contextvars.unbind_contextvars("instance_id")
