from __future__ import annotations

from io import BytesIO
from typing import Optional

import structlog
from aiogram import Bot, Dispatcher, F
from aiogram.enums import ChatType
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest, TelegramForbiddenError
from aiogram.filters import Command
from aiogram.types import ChatMemberUpdated, Message

from ..config import BotSettings
from ..messaging.base import MessagingError, MessagingPermissionError
from ..models import BotRights, ChatContext, ContentKind, MemberRole, MessageEnvelope
from ..storage.base import StorageError
from .moderation_service import ModerationCoordinator

logger = structlog.get_logger(__name__)

GROUP_CHATS = {ChatType.GROUP.value, ChatType.SUPERGROUP.value}

_PERMISSION_MARKERS = ("not enough rights", "chat_admin_required", "can't remove chat owner", "need administrator")

HELP_TEXT = (
    "🛡 Moderation commands (chat admins):\n"
    "/addword <word> – add a word to this group's filter\n"
    "/removeword <word> – remove a word from this group's filter\n"
    "/listwords – show global and group words\n"
    "/toggle text|image|video – switch moderation for a content type\n"
    "/settings – show moderation settings\n"
    "/set_alert_message <minutes> <message> – post a recurring message\n"
    "/alert – show the recurring message\n"
    "/remove_alert – stop the recurring message\n"
    "Bot operator only: /addglobalword <word>, /removeglobalword <word>"
)


def _is_permission_error(exc: TelegramAPIError) -> bool:
    if isinstance(exc, TelegramForbiddenError):
        return True
    message = str(exc).lower()
    return isinstance(exc, TelegramBadRequest) and any(marker in message for marker in _PERMISSION_MARKERS)


def _translate(exc: TelegramAPIError, operation: str) -> MessagingError:
    if _is_permission_error(exc):
        return MessagingPermissionError(f"{operation}: {exc}")
    return MessagingError(f"{operation}: {exc}")


def _plain_value(status: object) -> str:
    return str(getattr(status, "value", status))


def bot_rights_from_member(member: object) -> BotRights:
    status = _plain_value(getattr(member, "status", ""))
    if status == MemberRole.CREATOR.value:
        return BotRights.full()
    if status != MemberRole.ADMINISTRATOR.value:
        return BotRights()
    return BotRights(
        is_admin=True,
        can_delete_messages=bool(getattr(member, "can_delete_messages", False)),
        can_restrict_members=bool(getattr(member, "can_restrict_members", False)),
    )


class TelegramMessagingClient:
    """``MessagingClient`` over an aiogram ``Bot``; aiogram errors become messaging errors."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        try:
            await self._bot.delete_message(chat_id, message_id)
        except TelegramAPIError as exc:
            raise _translate(exc, "delete_message") from exc

    async def ban_member(self, chat_id: int, user_id: int) -> None:
        try:
            await self._bot.ban_chat_member(chat_id, user_id)
        except TelegramAPIError as exc:
            raise _translate(exc, "ban_chat_member") from exc

    async def send_message(self, chat_id: int, text: str, *, reply_to: Optional[int] = None) -> None:
        try:
            await self._bot.send_message(chat_id, text, reply_to_message_id=reply_to)
        except TelegramAPIError as exc:
            raise _translate(exc, "send_message") from exc

    async def get_member_status(self, chat_id: int, user_id: int) -> MemberRole:
        try:
            member = await self._bot.get_chat_member(chat_id, user_id)
        except TelegramAPIError as exc:
            raise _translate(exc, "get_chat_member") from exc
        status = _plain_value(member.status)
        try:
            return MemberRole(status)
        except ValueError:
            logger.warning("member_status_unknown", chat_id=chat_id, user_id=user_id, status=status)
            return MemberRole.UNKNOWN

    async def get_bot_rights(self, chat_id: int) -> BotRights:
        try:
            me = await self._bot.me()
            member = await self._bot.get_chat_member(chat_id, me.id)
        except TelegramAPIError as exc:
            raise _translate(exc, "get_bot_rights") from exc
        return bot_rights_from_member(member)

    async def download_media(self, file_ref: str) -> bytes:
        buffer = BytesIO()
        try:
            file = await self._bot.get_file(file_ref)
            await self._bot.download(file, destination=buffer)
        except TelegramAPIError as exc:
            raise _translate(exc, "download") from exc
        return buffer.getvalue()


def build_envelope(message: Message) -> Optional[MessageEnvelope]:
    """Normalize a group message into a ``MessageEnvelope``; None when there is nothing to moderate."""
    if message.from_user is None:
        return None
    media_kind, media_ref = _detect_media(message)
    if media_kind is None and not (message.text or message.caption):
        return None
    user = message.from_user
    return MessageEnvelope(
        context=ChatContext(
            chat_id=message.chat.id,
            user_id=user.id,
            message_id=message.message_id,
            timestamp=message.date,
            username=user.username,
            display_name=user.full_name,
        ),
        text=message.text,
        caption=message.caption,
        media_kind=media_kind,
        media_ref=media_ref,
        metadata={
            "telegram_content_type": message.content_type,
            "chat_title": message.chat.title,
        },
    )


def _detect_media(message: Message) -> tuple[Optional[ContentKind], Optional[str]]:
    if message.photo:
        return ContentKind.IMAGE, message.photo[-1].file_id
    if message.video:
        return ContentKind.VIDEO, message.video.file_id
    if message.animation:
        return ContentKind.VIDEO, message.animation.file_id
    document = message.document
    if document and (document.mime_type or "").startswith("video/"):
        return ContentKind.VIDEO, document.file_id
    return None, None


def parse_alert_args(text: str) -> tuple[int, str]:
    """``/set_alert_message <minutes> <message>`` -> ``(minutes, message)``."""
    parts = (text or "").split(maxsplit=2)
    if len(parts) < 3:
        raise ValueError("Usage: /set_alert_message <minutes> <message>")
    try:
        minutes = int(parts[1])
    except ValueError as exc:
        raise ValueError("Interval must be a whole number of minutes.") from exc
    if minutes <= 0:
        raise ValueError("Interval must be at least 1 minute.")
    message = parts[2].strip()
    if not message:
        raise ValueError("Please provide the alert message.")
    return minutes, message


def _command_argument(message: Message) -> str:
    parts = (message.text or "").split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else ""


_ABSENT = {MemberRole.LEFT.value, MemberRole.KICKED.value}
_PRESENT = {MemberRole.MEMBER.value, MemberRole.RESTRICTED.value}


def membership_notice(old_status: str, new_status: str, rights: BotRights) -> Optional[str]:
    """Group message for a change of the bot's own membership, or None when nothing is said."""
    if old_status in _ABSENT and new_status in _PRESENT:
        return (
            "👋 Hello! I moderate this group.\n"
            "Please promote me to admin with the Delete Messages and Ban Users permissions.\n\n"
            + HELP_TEXT
        )
    if new_status == MemberRole.ADMINISTRATOR.value and old_status != new_status:
        missing = []
        if not rights.can_delete_messages:
            missing.append("- ❌ Delete Messages (needed to remove abusive content)")
        if not rights.can_restrict_members:
            missing.append("- ❌ Ban Users (needed to remove repeat offenders)")
        if not missing:
            return "✅ Thanks for promoting me! I have every permission I need to moderate this group."
        return "✅ Thanks for promoting me! I am still missing:\n" + "\n".join(missing)
    if old_status == MemberRole.ADMINISTRATOR.value and new_status in _PRESENT:
        return (
            "⚠️ I am no longer an admin, so I cannot delete messages or ban users. "
            "Please restore my admin permissions."
        )
    return None


def welcome_notice(old_status: str, new_status: str, first_name: str, *, is_bot: bool = False) -> Optional[str]:
    if is_bot or old_status not in _ABSENT or new_status not in _PRESENT:
        return None
    return f"Welcome to the group, {first_name}! Please follow the group rules and be respectful to others."


class TelegramModerationApp:
    """
    Aiogram integration wrapper around the moderation coordinator.

    - Group text, captions, photos, videos, animations and video documents
      are moderated.
    - Admin commands manage the word filter, per-type switches and the
      recurring alert of the group they are sent in.
    """

    def __init__(self, settings: BotSettings, *, coordinator: Optional[ModerationCoordinator] = None) -> None:
        self._settings = settings
        self.bot = Bot(token=settings.telegram_token)
        self.dispatcher = Dispatcher()
        self.messaging = TelegramMessagingClient(self.bot)
        self.coordinator = coordinator or ModerationCoordinator(settings, self.messaging)
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.dispatcher.message(Command(commands=["start", "help"]))(self._handle_help)
        self.dispatcher.message(Command(commands=["addword"]))(self._handle_add_word)
        self.dispatcher.message(Command(commands=["removeword"]))(self._handle_remove_word)
        self.dispatcher.message(Command(commands=["listwords"]))(self._handle_list_words)
        self.dispatcher.message(Command(commands=["addglobalword"]))(self._handle_add_global_word)
        self.dispatcher.message(Command(commands=["removeglobalword"]))(self._handle_remove_global_word)
        self.dispatcher.message(Command(commands=["toggle"]))(self._handle_toggle)
        self.dispatcher.message(Command(commands=["settings"]))(self._handle_settings)
        self.dispatcher.message(Command(commands=["set_alert_message"]))(self._handle_set_alert)
        self.dispatcher.message(Command(commands=["remove_alert"]))(self._handle_remove_alert)
        self.dispatcher.message(Command(commands=["alert"]))(self._handle_show_alert)
        self.dispatcher.message(
            F.text | F.caption | F.photo | F.video | F.animation | F.document
        )(self._handle_message)
        self.dispatcher.my_chat_member()(self._handle_bot_membership)
        self.dispatcher.chat_member()(self._handle_member_update)

    async def run(self) -> None:
        await self.coordinator.start()
        try:
            await self.dispatcher.start_polling(
                self.bot,
                allowed_updates=self.dispatcher.resolve_used_update_types(),
            )
        finally:
            await self.coordinator.shutdown()
            await self.bot.session.close()

    async def _handle_message(self, message: Message) -> None:
        if _plain_value(message.chat.type) not in GROUP_CHATS:
            return
        envelope = build_envelope(message)
        if envelope is None:
            return
        logger.debug(
            "telegram_message_ingested",
            chat_id=envelope.context.chat_id,
            message_id=envelope.context.message_id,
            kind=(envelope.media_kind or ContentKind.TEXT).value,
        )
        try:
            await self.coordinator.handle_message(envelope)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(
                "moderation_failed",
                chat_id=envelope.context.chat_id,
                message_id=envelope.context.message_id,
                error=str(exc),
            )

    async def _handle_bot_membership(self, event: ChatMemberUpdated) -> None:
        if _plain_value(event.chat.type) not in GROUP_CHATS:
            return
        old_status = _plain_value(event.old_chat_member.status)
        new_status = _plain_value(event.new_chat_member.status)
        logger.info(
            "bot_membership_changed", chat_id=event.chat.id, old_status=old_status, new_status=new_status
        )
        text = membership_notice(old_status, new_status, bot_rights_from_member(event.new_chat_member))
        if text:
            await self._announce(event.chat.id, text)

    async def _handle_member_update(self, event: ChatMemberUpdated) -> None:
        if _plain_value(event.chat.type) not in GROUP_CHATS or not self._settings.welcome_new_members:
            return
        user = event.new_chat_member.user
        text = welcome_notice(
            _plain_value(event.old_chat_member.status),
            _plain_value(event.new_chat_member.status),
            user.first_name,
            is_bot=user.is_bot,
        )
        if text:
            await self._announce(event.chat.id, text)

    async def _announce(self, chat_id: int, text: str) -> None:
        try:
            await self.messaging.send_message(chat_id, text)
        except MessagingError as exc:
            logger.error("announcement_failed", chat_id=chat_id, error=str(exc))

    async def _handle_help(self, message: Message) -> None:
        await message.reply(HELP_TEXT)

    async def _require_group_admin(self, message: Message) -> bool:
        if _plain_value(message.chat.type) not in GROUP_CHATS:
            await message.reply("This command only works in groups.")
            return False
        user_id = message.from_user.id if message.from_user else 0
        if self.coordinator.is_operator(user_id) or await self.coordinator.is_chat_admin(message.chat.id, user_id):
            return True
        await message.reply("You must be a chat admin to use this command.")
        return False

    async def _require_operator(self, message: Message) -> bool:
        user_id = message.from_user.id if message.from_user else 0
        if self.coordinator.is_operator(user_id):
            return True
        await message.reply("Only the bot operator can change the global word list.")
        return False

    async def _handle_add_word(self, message: Message) -> None:
        if not await self._require_group_admin(message):
            return
        term = _command_argument(message)
        if not term:
            await message.reply("Usage: /addword <word>")
            return
        try:
            added = await self.coordinator.add_term(message.chat.id, term)
        except StorageError as exc:
            logger.error("add_word_failed", chat_id=message.chat.id, error=str(exc))
            await message.reply("Failed to save the word. Try again later.")
            return
        await message.reply(f"✅ Added \"{term.lower()}\"." if added else f"\"{term.lower()}\" is already in the list.")

    async def _handle_remove_word(self, message: Message) -> None:
        if not await self._require_group_admin(message):
            return
        term = _command_argument(message)
        if not term:
            await message.reply("Usage: /removeword <word>")
            return
        try:
            removed = await self.coordinator.remove_term(message.chat.id, term)
        except StorageError as exc:
            logger.error("remove_word_failed", chat_id=message.chat.id, error=str(exc))
            await message.reply("Failed to remove the word. Try again later.")
            return
        await message.reply(f"🗑 Removed \"{term.lower()}\"." if removed else f"\"{term.lower()}\" is not in the list.")

    async def _handle_list_words(self, message: Message) -> None:
        if not await self._require_group_admin(message):
            return
        global_terms, chat_terms = await self.coordinator.list_terms(message.chat.id)
        lines = [
            "📋 Global words: " + (", ".join(global_terms) or "none"),
            "📋 Group words: " + (", ".join(chat_terms) or "none"),
        ]
        await message.reply("\n".join(lines))

    async def _handle_add_global_word(self, message: Message) -> None:
        if not await self._require_operator(message):
            return
        term = _command_argument(message)
        if not term:
            await message.reply("Usage: /addglobalword <word>")
            return
        try:
            added = await self.coordinator.add_global_term(term)
        except OSError as exc:
            logger.error("add_global_word_failed", error=str(exc))
            await message.reply("Failed to update the global word list.")
            return
        await message.reply(f"✅ Added \"{term.lower()}\" globally." if added else "Already in the global list.")

    async def _handle_remove_global_word(self, message: Message) -> None:
        if not await self._require_operator(message):
            return
        term = _command_argument(message)
        if not term:
            await message.reply("Usage: /removeglobalword <word>")
            return
        try:
            removed = await self.coordinator.remove_global_term(term)
        except OSError as exc:
            logger.error("remove_global_word_failed", error=str(exc))
            await message.reply("Failed to update the global word list.")
            return
        await message.reply(f"🗑 Removed \"{term.lower()}\" globally." if removed else "Not in the global list.")

    async def _handle_toggle(self, message: Message) -> None:
        if not await self._require_group_admin(message):
            return
        try:
            kind = ContentKind(_command_argument(message).lower())
        except ValueError:
            await message.reply("Usage: /toggle text|image|video")
            return
        try:
            config = await self.coordinator.toggle(message.chat.id, kind)
        except StorageError as exc:
            logger.error("toggle_failed", chat_id=message.chat.id, error=str(exc))
            await message.reply("Failed to save the setting. Try again later.")
            return
        state = "enabled" if config.is_enabled(kind) else "disabled"
        await message.reply(f"⚙️ {kind.value.capitalize()} moderation {state}.")

    async def _handle_settings(self, message: Message) -> None:
        if not await self._require_group_admin(message):
            return
        config = await self.coordinator.get_group_config(message.chat.id)
        lines = ["⚙️ Moderation settings:"]
        for kind in ContentKind:
            lines.append(f"{kind.value}: {'on' if config.is_enabled(kind) else 'off'}")
        await message.reply("\n".join(lines))

    async def _handle_set_alert(self, message: Message) -> None:
        if not await self._require_group_admin(message):
            return
        try:
            minutes, text = parse_alert_args(message.text or "")
        except ValueError as exc:
            await message.reply(str(exc))
            return
        try:
            await self.coordinator.set_alert(message.chat.id, text, minutes)
        except StorageError as exc:
            logger.error("set_alert_failed", chat_id=message.chat.id, error=str(exc))
            await message.reply("Failed to save the alert. Try again later.")
            return
        await message.reply(f"⏰ Alert set. It will be posted every {minutes} minute(s).")

    async def _handle_remove_alert(self, message: Message) -> None:
        if not await self._require_group_admin(message):
            return
        try:
            removed = await self.coordinator.remove_alert(message.chat.id)
        except StorageError as exc:
            logger.error("remove_alert_failed", chat_id=message.chat.id, error=str(exc))
            await message.reply("Failed to remove the alert. Try again later.")
            return
        await message.reply("🗑 Alert removed." if removed else "No alert is configured.")

    async def _handle_show_alert(self, message: Message) -> None:
        if not await self._require_group_admin(message):
            return
        try:
            alert = await self.coordinator.get_alert(message.chat.id)
        except StorageError as exc:
            logger.error("show_alert_failed", chat_id=message.chat.id, error=str(exc))
            await message.reply("Failed to load the alert. Try again later.")
            return
        if alert is None:
            await message.reply("No alert is configured.")
            return
        await message.reply(f"⏰ Every {alert.interval_minutes} minute(s):\n{alert.message}")


__all__ = [
    "TelegramMessagingClient",
    "TelegramModerationApp",
    "bot_rights_from_member",
    "build_envelope",
    "membership_notice",
    "parse_alert_args",
    "welcome_notice",
]
