from .moderation_service import ModerationCoordinator
from .telegram_bot import TelegramMessagingClient, TelegramModerationApp

__all__ = ["ModerationCoordinator", "TelegramMessagingClient", "TelegramModerationApp"]
