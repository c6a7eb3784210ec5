from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Union

from wagateway.domain.models import ConnectionStatus, IncomingMessage, QRCodeData

MessageHandler = Callable[[IncomingMessage], Union[None, Awaitable[None]]]
StatusHandler = Callable[[ConnectionStatus], Union[None, Awaitable[None]]]
QRCodeHandler = Callable[[QRCodeData], Union[None, Awaitable[None]]]


class HandlerRegistry:
    """Per-instance callbacks, one per kind.

    Registering again for the same instance replaces the previous callback.
    Registration is expected from a single setup path, so no locking.
    """

    def __init__(self) -> None:
        self._message: dict[str, MessageHandler] = {}
        self._status: dict[str, StatusHandler] = {}
        self._qrcode: dict[str, QRCodeHandler] = {}

    def set_message(self, instance_id: str, handler: MessageHandler) -> None:
        self._message[instance_id] = handler

    def set_status(self, instance_id: str, handler: StatusHandler) -> None:
        self._status[instance_id] = handler

    def set_qrcode(self, instance_id: str, handler: QRCodeHandler) -> None:
        self._qrcode[instance_id] = handler

    def get_message(self, instance_id: str) -> Optional[MessageHandler]:
        return self._message.get(instance_id)

    def get_status(self, instance_id: str) -> Optional[StatusHandler]:
        return self._status.get(instance_id)

    def get_qrcode(self, instance_id: str) -> Optional[QRCodeHandler]:
        return self._qrcode.get(instance_id)

    def clear(self, instance_id: str) -> None:
        self._message.pop(instance_id, None)
        self._status.pop(instance_id, None)
        self._qrcode.pop(instance_id, None)

    def clear_all(self) -> None:
        self._message.clear()
        self._status.clear()
        self._qrcode.clear()

    def instances(self) -> list[str]:
        return sorted(set(self._message) | set(self._status) | set(self._qrcode))

    def stats(self) -> dict[str, Any]:
        return {"message": len(self._message), "status": len(self._status), "qrcode": len(self._qrcode)}
