from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ..models import BotRights, MemberRole


class MessagingError(Exception):
    """Raised when the chat platform rejects or fails an operation."""


class MessagingPermissionError(MessagingError):
    """Raised when the bot lacks the rights needed for an operation."""


@runtime_checkable
class MessagingClient(Protocol):
    """Platform operations the coordinator and alert scheduler depend on."""

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        ...

    async def ban_member(self, chat_id: int, user_id: int) -> None:
        ...

    async def send_message(self, chat_id: int, text: str, *, reply_to: Optional[int] = None) -> None:
        ...

    async def get_member_status(self, chat_id: int, user_id: int) -> MemberRole:
        ...

    async def get_bot_rights(self, chat_id: int) -> BotRights:
        ...

    async def download_media(self, file_ref: str) -> bytes:
        ...
