"""Evolution API wire shapes <-> canonical models."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

from wagateway.domain.models import (
    ConnectionState,
    ConnectionStatus,
    IncomingMessage,
    MessageType,
    QuotedMessage,
    utcnow,
)

GROUP_SUFFIX = "@g.us"
USER_SUFFIX = "@s.whatsapp.net"

STATE_MAP: dict[str, ConnectionState] = {
    "open": ConnectionState.connected,
    "connecting": ConnectionState.connecting,
    "close": ConnectionState.disconnected,
    "reconnecting": ConnectionState.reconnecting,
}

# Checked in this order; the first marker present wins.
TYPE_MARKERS: tuple[MessageType, ...] = (
    MessageType.image,
    MessageType.video,
    MessageType.audio,
    MessageType.document,
    MessageType.location,
    MessageType.contact,
)

_NON_DIGITS = re.compile(r"\D")


class MalformedPayload(ValueError):
    pass


def map_state(token: Optional[str], *, phone_number: Optional[str] = None) -> ConnectionStatus:
    """Translate a raw vendor state token. Unknown tokens read as disconnected."""
    state = STATE_MAP.get((token or "").lower(), ConnectionState.disconnected)
    return ConnectionStatus(
        state=state,
        is_authenticated=state == ConnectionState.connected,
        phone_number=phone_number,
        last_seen=utcnow(),
    )


def _content(raw: dict[str, Any]) -> dict[str, Any]:
    content = raw.get("message")
    return content if isinstance(content, dict) else {}


def _marker(raw: dict[str, Any], kind: MessageType) -> Optional[dict[str, Any]]:
    field = f"{kind.value}Message"
    for source in (raw, _content(raw)):
        value = source.get(field)
        if value:
            return value if isinstance(value, dict) else {}
    return None


def message_type(raw: dict[str, Any]) -> MessageType:
    for kind in TYPE_MARKERS:
        if _marker(raw, kind) is not None or raw.get("type") == kind.value:
            return kind
    return MessageType.text


def _timestamp(value: Any) -> datetime:
    if value in (None, ""):
        return utcnow()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and not value.isdigit():
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return utcnow()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    try:
        if isinstance(value, dict):
            # protobuf Long serialized as {low, high, unsigned}
            value = int(value.get("high") or 0) * 2**32 + int(value.get("low") or 0) % 2**32
        seconds = float(value)
        # vendors mix epoch seconds and milliseconds
        if seconds > 1e11:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return utcnow()


def _quoted(raw: dict[str, Any]) -> Optional[QuotedMessage]:
    quoted = raw.get("quotedMessage") or raw.get("quoted")
    if isinstance(quoted, dict) and quoted.get("id"):
        return QuotedMessage(
            id=quoted["id"],
            body=quoted.get("body") or quoted.get("conversation"),
            from_=quoted.get("from") or quoted.get("participant") or "",
        )
    ext = _content(raw).get("extendedTextMessage") or {}
    ctx = ext.get("contextInfo") if isinstance(ext, dict) else None
    if isinstance(ctx, dict) and ctx.get("stanzaId"):
        inner = ctx.get("quotedMessage") or {}
        return QuotedMessage(
            id=ctx["stanzaId"],
            body=inner.get("conversation") if isinstance(inner, dict) else None,
            from_=ctx.get("participant") or "",
        )
    return None


def to_incoming_message(raw: dict[str, Any]) -> IncomingMessage:
    """Normalize one raw vendor message.

    Accepts both the flat shape (``id``, ``remoteJid``, ``conversation``...)
    and the nested ``{key, message}`` shape the vendor posts on upserts.
    """
    key = raw.get("key") if isinstance(raw.get("key"), dict) else {}
    content = _content(raw)

    msg_id = raw.get("id") or raw.get("messageId") or key.get("id")
    sender = raw.get("from") or raw.get("remoteJid") or key.get("remoteJid")
    if not msg_id or not sender:
        raise MalformedPayload("message without id or sender")

    ext = content.get("extendedTextMessage")
    body = (
        raw.get("body")
        or raw.get("text")
        or raw.get("conversation")
        or content.get("conversation")
        or (ext.get("text") if isinstance(ext, dict) else None)
    )

    kind = message_type(raw)
    media = (_marker(raw, kind) or {}) if kind != MessageType.text else {}

    return IncomingMessage(
        id=str(msg_id),
        from_=sender,
        to=raw.get("to") or raw.get("participant") or key.get("participant") or "",
        body=body if isinstance(body, str) else None,
        type=kind,
        media_url=raw.get("mediaUrl") or media.get("url"),
        mime_type=raw.get("mimetype") or media.get("mimetype"),
        caption=raw.get("caption") or media.get("caption"),
        timestamp=_timestamp(raw.get("timestamp") or raw.get("messageTimestamp")),
        is_from_me=bool(raw.get("fromMe", key.get("fromMe", False))),
        is_group=GROUP_SUFFIX in sender,
        group_name=raw.get("groupName"),
        sender_name=raw.get("pushName") or raw.get("senderName"),
        quoted_message=_quoted(raw),
    )


def clean_phone_number(phone: str) -> str:
    """Vendor-ready JID for a phone number.

    Numbers without a country code are assumed Brazilian (55), and bare
    10-digit numbers are assumed to be in area 11. Strings that already
    are JIDs pass through.
    """
    if "@" in phone:
        return phone
    cleaned = _NON_DIGITS.sub("", phone)
    if len(cleaned) == 11 and cleaned.startswith("11"):
        cleaned = "55" + cleaned
    elif len(cleaned) == 10:
        cleaned = "5511" + cleaned
    elif not cleaned.startswith("55") and len(cleaned) >= 10:
        cleaned = "55" + cleaned
    return cleaned + USER_SUFFIX
