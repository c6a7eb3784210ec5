import pytest
from pydantic import ValidationError

from wagateway.domain.models import (
    Button,
    ListMessage,
    ListSection,
    MediaMessage,
    MessageResult,
    MessageStatus,
    ProviderConfig,
    QRCodeData,
    RateLimit,
    SendMessageParams,
)

def test_qrcode_from_raw_builds_data_uri():
    qr = QRCodeData.from_raw("abc123==")
    assert qr.qr_code == "abc123=="
    assert qr.base64 == "abc123=="
    assert qr.url == "data:image/png;base64,abc123=="

def test_payload_kind_precedence():
    media = MediaMessage(url="https://x/y.png", mime_type="image/png")
    assert SendMessageParams(to="1", text="hi", media=media).payload_kind == "media"
    buttons = [Button(id="b1", title="Yes")]
    assert SendMessageParams(to="1", text="pick", buttons=buttons).payload_kind == "buttons"
    lst = ListMessage(button_text="Open", sections=[ListSection(title="S")])
    assert SendMessageParams(to="1", text="pick", list=lst).payload_kind == "list"
    assert SendMessageParams(to="1", text="hi").payload_kind == "text"
    assert SendMessageParams(to="1").payload_kind is None
    assert SendMessageParams(to="1", text="").payload_kind is None

def test_media_kind_from_mime_type():
    assert MediaMessage(mime_type="image/jpeg").kind == "image"
    assert MediaMessage(mime_type="video/mp4").kind == "video"
    assert MediaMessage(mime_type="audio/ogg").kind == "audio"
    assert MediaMessage(mime_type="application/pdf").kind == "document"

def test_provider_config_merges_overrides_and_is_frozen():
    defaults = ProviderConfig(name="evolution", rate_limit=RateLimit(messages_per_minute=60, burst_limit=10))
    cfg = ProviderConfig.merged(defaults, priority=5, timeout=None)
    assert cfg.priority == 5
    assert cfg.timeout == defaults.timeout
    assert cfg.rate_limit.burst_limit == 10
    with pytest.raises(ValidationError):
        cfg.priority = 1

def test_failed_result_gets_fallback_id():
    a = MessageResult.failed("boom")
    b = MessageResult.failed("boom")
    assert a.status == MessageStatus.failed and a.error == "boom"
    assert a.id and a.id != b.id
    assert not a.ok
    assert MessageResult.sent("x").ok
