"""
Groupkeeper moderation bot core package.

Exposes the coordinator that runs the moderation cascade, escalation ladder
and recurring alerts, and the aiogram application that feeds it group
updates.
"""

from .services.moderation_service import ModerationCoordinator
from .services.telegram_bot import TelegramModerationApp

__all__ = ["ModerationCoordinator", "TelegramModerationApp"]
