import asyncio

import pytest

from wagateway.core.errors import (
    ProviderCommandError,
    ProviderInitError,
    UnsupportedCapabilityError,
    VendorError,
)
from wagateway.domain.models import (
    Button,
    ConnectionState,
    ConnectionStatus,
    ListMessage,
    ListRow,
    ListSection,
    MediaMessage,
    MessageStatus,
    ProviderConfig,
    QRCodeData,
    RateLimit,
    SendMessageParams,
)
from wagateway.providers.base import WhatsAppProvider, supports
from wagateway.providers.evolution import DEFAULT_CONFIG, EvolutionProvider

from conftest import make_vendor


def test_is_a_provider_with_optional_capabilities(provider):
    assert isinstance(provider, WhatsAppProvider)
    assert supports(provider, "webhook")
    assert supports(provider, "history")
    assert not supports(provider, "webhook_removal")
    with pytest.raises(KeyError):
        supports(provider, "payments")


def test_config_overrides_keep_defaults():
    p = EvolutionProvider(make_vendor(), priority=3, timeout=None)
    assert p.config.priority == 3
    assert p.config.timeout == DEFAULT_CONFIG.timeout
    assert p.config.rate_limit.messages_per_minute == 60
    assert p.name == "evolution"


@pytest.mark.asyncio
async def test_initialize_fails_fast(vendor, provider):
    await provider.initialize()
    vendor.health_check.return_value = False
    with pytest.raises(ProviderInitError):
        await provider.initialize()
    vendor.health_check.side_effect = VendorError("down")
    with pytest.raises(ProviderInitError):
        await provider.initialize()


@pytest.mark.asyncio
@pytest.mark.parametrize("token,state,authed", [
    ("open", ConnectionState.connected, True),
    ("connecting", ConnectionState.connecting, False),
    ("close", ConnectionState.disconnected, False),
    ("reconnecting", ConnectionState.reconnecting, False),
    ("banana", ConnectionState.disconnected, False),
])
async def test_connection_status_mapping(vendor, provider, token, state, authed):
    vendor.get_connection_state.return_value = token
    status = await provider.get_connection_status("inst-1")
    assert status.state == state
    assert status.is_authenticated is authed


@pytest.mark.asyncio
async def test_connection_status_degrades_on_vendor_error(vendor, provider):
    vendor.get_connection_state.side_effect = VendorError("boom")
    status = await provider.get_connection_status("inst-1")
    assert status.state == ConnectionState.failed
    assert status.is_authenticated is False
    assert status.error == "boom"


@pytest.mark.asyncio
async def test_connect_returns_status_when_already_connected(vendor, provider):
    result = await provider.connect("inst-1", "biz-1")
    assert isinstance(result, ConnectionStatus)
    assert result.is_connected
    vendor.create_instance.assert_not_called()
    vendor.connect_instance.assert_not_called()


@pytest.mark.asyncio
async def test_connect_creates_instance_and_returns_qrcode(vendor):
    p = EvolutionProvider(
        vendor,
        ProviderConfig(name="evolution"),
        webhook_url_for=lambda i: f"https://gw.example/webhook/whatsapp/{i}",
    )
    result = await p.connect("inst-2", "biz-1")
    assert isinstance(result, QRCodeData)
    assert result.qr_code == "UVJDT0RF"
    assert result.url == "data:image/png;base64,UVJDT0RF"
    vendor.create_instance.assert_awaited_once_with("inst-2", "https://gw.example/webhook/whatsapp/inst-2")


@pytest.mark.asyncio
async def test_connect_existing_but_closed_instance_asks_for_pairing(vendor, provider):
    vendor.get_connection_state.return_value = "close"
    result = await provider.connect("inst-1", "biz-1")
    assert isinstance(result, QRCodeData)
    vendor.create_instance.assert_not_called()


@pytest.mark.asyncio
async def test_connect_failures_raise_command_error(vendor, provider):
    vendor.fetch_instances.side_effect = VendorError("unreachable")
    with pytest.raises(ProviderCommandError):
        await provider.connect("inst-1", "biz-1")

    vendor.fetch_instances.side_effect = None
    vendor.connect_instance.return_value = ""
    with pytest.raises(ProviderCommandError):
        await provider.connect("inst-9", "biz-1")


@pytest.mark.asyncio
async def test_get_qrcode(vendor, provider):
    qr = await provider.get_qrcode("inst-1")
    assert qr.base64 == "UVJDT0RF"
    vendor.get_qrcode.return_value = ""
    assert await provider.get_qrcode("inst-1") is None
    vendor.get_qrcode.side_effect = VendorError("boom")
    assert await provider.get_qrcode("inst-1") is None


@pytest.mark.asyncio
async def test_send_text(vendor, provider):
    result = await provider.send_text("inst-1", "5511999", "hello")
    assert result.status == MessageStatus.sent
    assert result.id == "wamid-text"
    vendor.send_text.assert_awaited_once_with("inst-1", "5511999", "hello", None)


@pytest.mark.asyncio
async def test_media_takes_precedence_over_text(vendor, provider):
    params = SendMessageParams(
        to="5511999",
        text="ignored",
        media=MediaMessage(url="https://cdn/x.pdf", mime_type="application/pdf", filename="x.pdf"),
    )
    result = await provider.send_message("inst-1", params)
    assert result.id == "wamid-media"
    vendor.send_text.assert_not_called()
    args = vendor.send_media.await_args.args
    assert args[2] == "https://cdn/x.pdf"
    assert args[3] == "document"


@pytest.mark.asyncio
async def test_media_bytes_are_sent_as_base64(vendor, provider):
    media = MediaMessage(data=b"\x89PNG", mime_type="image/png")
    await provider.send_media("inst-1", "5511999", media)
    args = vendor.send_media.await_args.args
    assert args[2] == "iVBORw=="
    assert args[3] == "image"


@pytest.mark.asyncio
async def test_buttons_and_lists(vendor, provider):
    buttons = SendMessageParams(to="5511999", text="pick", buttons=[Button(id="b1", title="Yes")])
    assert (await provider.send_message("inst-1", buttons)).id == "wamid-buttons"
    sent = vendor.send_buttons.await_args.args
    assert sent[2] == "pick"
    assert sent[3][0]["id"] == "b1"

    menu = ListMessage(button_text="Menu", sections=[ListSection(title="Food", rows=[ListRow(id="r1", title="Pizza")])])
    listing = SendMessageParams(to="5511999", text="choose", list=menu)
    assert (await provider.send_message("inst-1", listing)).id == "wamid-list"
    sent = vendor.send_list.await_args.args
    assert sent[3] == "Menu"
    assert sent[4][0]["rows"][0]["id"] == "r1"


@pytest.mark.asyncio
async def test_invalid_params_fail_without_vendor_call(vendor, provider):
    result = await provider.send_message("inst-1", SendMessageParams(to="5511999"))
    assert result.status == MessageStatus.failed
    assert result.id.startswith("failed_")
    assert "Invalid message parameters" in result.error
    vendor.send_text.assert_not_called()
    vendor.send_media.assert_not_called()
    vendor.send_buttons.assert_not_called()
    vendor.send_list.assert_not_called()


@pytest.mark.asyncio
async def test_vendor_error_becomes_failed_result(vendor, provider):
    vendor.send_text.side_effect = VendorError("send_text: HTTP 500")
    result = await provider.send_text("inst-1", "5511999", "hello")
    assert result.status == MessageStatus.failed
    assert result.error == "send_text: HTTP 500"


@pytest.mark.asyncio
async def test_rate_limit_per_instance(vendor):
    p = EvolutionProvider(vendor, ProviderConfig(name="evolution", rate_limit=RateLimit(messages_per_minute=1, burst_limit=2)))
    results = [await p.send_text("inst-1", "5511999", "hi") for _ in range(3)]
    assert [r.ok for r in results] == [True, True, False]
    assert results[2].error == "rate limited"
    assert vendor.send_text.await_count == 2
    assert (await p.send_text("inst-2", "5511999", "hi")).ok


@pytest.mark.asyncio
async def test_disconnect_clears_handlers(vendor, provider):
    calls = []
    provider.on_message("inst-1", calls.append)
    provider.on_status_change("inst-1", calls.append)
    provider.on_qrcode_updated("inst-1", calls.append)
    await provider.disconnect("inst-1")
    vendor.delete_instance.assert_awaited_once_with("inst-1")
    assert provider.registry.instances() == []

    payload = {"event": "MESSAGES_UPSERT", "data": {"messages": [{"id": "m1", "remoteJid": "5511999@s.whatsapp.net"}]}}
    assert await provider.handle_webhook("inst-1", payload) is False
    assert calls == []


@pytest.mark.asyncio
async def test_restart_and_disconnect_raise_on_vendor_error(vendor, provider):
    vendor.restart_instance.side_effect = VendorError("nope")
    with pytest.raises(ProviderCommandError):
        await provider.restart("inst-1")
    vendor.delete_instance.side_effect = VendorError("nope")
    with pytest.raises(ProviderCommandError):
        await provider.disconnect("inst-1")


@pytest.mark.asyncio
async def test_instances(vendor, provider):
    assert await provider.list_instances() == ["inst-1"]
    assert await provider.instance_exists("inst-1")
    assert not await provider.instance_exists("inst-2")
    vendor.fetch_instances.side_effect = VendorError("down")
    assert await provider.list_instances() == []


@pytest.mark.asyncio
async def test_health(vendor, provider):
    assert await provider.is_healthy() is True
    vendor.health_check.side_effect = VendorError("down")
    assert await provider.is_healthy() is False


@pytest.mark.asyncio
async def test_sessions_are_vendor_managed(vendor, provider):
    await provider.save_session("inst-1", {"creds": 1})
    assert await provider.load_session("inst-1") is None
    provider.on_message("inst-1", lambda m: None)
    await provider.delete_session("inst-1")
    vendor.delete_instance.assert_awaited_once_with("inst-1")
    assert provider.registry.get_message("inst-1") is None


@pytest.mark.asyncio
async def test_webhook_capability(vendor, provider):
    await provider.set_webhook("inst-1", "https://gw.example/hook")
    vendor.set_webhook.assert_awaited_once_with("inst-1", "https://gw.example/hook")
    with pytest.raises(UnsupportedCapabilityError):
        await provider.remove_webhook("inst-1")


@pytest.mark.asyncio
async def test_history_capability(vendor, provider):
    vendor.fetch_contacts.return_value = [{"id": "5511999@s.whatsapp.net", "name": "Ana"}]
    vendor.fetch_messages.return_value = [
        {"key": {"id": "h1", "remoteJid": "5511999@s.whatsapp.net"}, "message": {"conversation": "old"}},
        {"broken": True},
    ]
    assert (await provider.fetch_contacts("inst-1"))[0]["name"] == "Ana"
    assert await provider.fetch_chats("inst-1") == []
    history = await provider.fetch_messages("inst-1", "5511999@s.whatsapp.net", limit=10)
    assert [m.body for m in history] == ["old"]
    vendor.fetch_messages.assert_awaited_once_with("inst-1", "5511999@s.whatsapp.net", 10)
    vendor.fetch_chats.side_effect = VendorError("down")
    assert await provider.fetch_chats("inst-1") == []


class _WebhookOnly:
    name = "stub"
    unsupported_operations = frozenset()

    async def set_webhook(self, instance_id, url):
        return None

    async def remove_webhook(self, instance_id):
        return None


def test_capability_probe_matches_what_calls_do():
    stub = _WebhookOnly()
    assert supports(stub, "webhook")
    assert supports(stub, "webhook_removal")
    assert not supports(stub, "history")
    stub.unsupported_operations = frozenset({"set_webhook"})
    assert not supports(stub, "webhook")


@pytest.mark.asyncio
async def test_vendor_timeouts_follow_the_fail_soft_paths(vendor):
    async def hang(*args):
        await asyncio.sleep(1)

    for name in ("send_text", "get_connection_state", "fetch_instances"):
        getattr(vendor, name).side_effect = hang
    p = EvolutionProvider(vendor, ProviderConfig(name="evolution", timeout=0.05))

    result = await p.send_text("inst-1", "5511999", "hi")
    assert result.status == MessageStatus.failed
    status = await p.get_connection_status("inst-1")
    assert status.state == ConnectionState.failed
    assert await p.list_instances() == []


@pytest.mark.asyncio
async def test_vendor_timeout_on_a_command_raises(vendor):
    async def hang(*args):
        await asyncio.sleep(1)

    vendor.restart_instance.side_effect = hang
    p = EvolutionProvider(vendor, ProviderConfig(name="evolution", timeout=0.05))
    with pytest.raises(ProviderCommandError):
        await p.restart("inst-1")
