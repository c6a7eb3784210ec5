from __future__ import annotations
from typing import Any, Optional, Protocol

class VendorClient(Protocol):
    """Remote procedure boundary of one WhatsApp vendor.

    Implementations raise ``VendorError`` on any failure except
    ``health_check``, which answers False instead.
    """

    async def health_check(self) -> bool: ...

    async def fetch_instances(self) -> list[dict[str, Any]]: ...

    async def create_instance(self, instance_name: str, webhook_url: Optional[str] = None) -> dict[str, Any]: ...

    async def connect_instance(self, instance_name: str) -> str: ...

    async def get_qrcode(self, instance_name: str) -> str: ...

    async def get_connection_state(self, instance_name: str) -> str: ...

    async def delete_instance(self, instance_name: str) -> None: ...

    async def restart_instance(self, instance_name: str) -> None: ...

    async def send_text(
        self, instance_name: str, to: str, text: str, quoted_message_id: Optional[str] = None
    ) -> dict[str, Any]: ...

    async def send_media(
        self,
        instance_name: str,
        to: str,
        media: str,
        media_type: str,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
        quoted_message_id: Optional[str] = None,
    ) -> dict[str, Any]: ...

    async def send_buttons(
        self, instance_name: str, to: str, text: str, buttons: list[dict[str, Any]]
    ) -> dict[str, Any]: ...

    async def send_list(
        self, instance_name: str, to: str, text: str, button_text: str, sections: list[dict[str, Any]]
    ) -> dict[str, Any]: ...

    async def set_webhook(self, instance_name: str, url: str) -> dict[str, Any]: ...

    async def fetch_contacts(self, instance_name: str) -> list[dict[str, Any]]: ...

    async def fetch_chats(self, instance_name: str) -> list[dict[str, Any]]: ...

    async def fetch_messages(self, instance_name: str, chat_id: str, limit: int = 50) -> list[dict[str, Any]]: ...

    async def aclose(self) -> None: ...
