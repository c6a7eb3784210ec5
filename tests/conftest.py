from unittest.mock import AsyncMock

import pytest

from wagateway.domain.models import ProviderConfig
from wagateway.providers.evolution import EvolutionProvider


def make_vendor() -> AsyncMock:
    """Vendor client double with a healthy, connected instance 'inst-1'."""
    vendor = AsyncMock()
    vendor.health_check.return_value = True
    vendor.fetch_instances.return_value = [{"instanceName": "inst-1", "status": "open"}]
    vendor.create_instance.return_value = {"instance": {"instanceName": "inst-2"}}
    vendor.connect_instance.return_value = "UVJDT0RF"
    vendor.get_qrcode.return_value = "UVJDT0RF"
    vendor.get_connection_state.return_value = "open"
    vendor.send_text.return_value = {"key": {"id": "wamid-text"}}
    vendor.send_media.return_value = {"key": {"id": "wamid-media"}}
    vendor.send_buttons.return_value = {"key": {"id": "wamid-buttons"}}
    vendor.send_list.return_value = {"key": {"id": "wamid-list"}}
    vendor.fetch_contacts.return_value = []
    vendor.fetch_chats.return_value = []
    vendor.fetch_messages.return_value = []
    return vendor


@pytest.fixture
def vendor():
    return make_vendor()


@pytest.fixture
def provider(vendor):
    # no rate limit unless a test asks for one
    return EvolutionProvider(vendor, ProviderConfig(name="evolution", timeout=5.0))
