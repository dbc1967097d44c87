from __future__ import annotations

from dataclasses import replace

import structlog

from ..models import ContentKind, GroupModerationConfig
from ..storage.base import GroupConfigRepository, StorageError

logger = structlog.get_logger(__name__)


class GroupConfigService:
    """
    Per-group moderation switches.

    A group without a stored row gets the default policy (everything enabled),
    which is persisted on first access. When the store is unreachable the
    default is served for the request and nothing is written.
    """

    def __init__(self, repository: GroupConfigRepository) -> None:
        self._repository = repository

    async def get_config(self, chat_id: int) -> GroupModerationConfig:
        try:
            config = await self._repository.get_group_config(chat_id)
            if config is None:
                config = GroupModerationConfig(chat_id=chat_id)
                await self._repository.put_group_config(config)
                logger.info("group_config_created", chat_id=chat_id)
        except StorageError as exc:
            logger.warning("group_config_default_used", chat_id=chat_id, error=str(exc))
            return GroupModerationConfig(chat_id=chat_id)
        return config

    async def set_enabled(self, chat_id: int, kind: ContentKind, enabled: bool) -> GroupModerationConfig:
        current = await self._load_for_update(chat_id)
        updated = replace(current, **{f"{kind.value}_enabled": enabled})
        await self._repository.put_group_config(updated)
        logger.info("group_config_updated", chat_id=chat_id, kind=kind.value, enabled=enabled)
        return updated

    async def toggle(self, chat_id: int, kind: ContentKind) -> GroupModerationConfig:
        current = await self._load_for_update(chat_id)
        return await self.set_enabled(chat_id, kind, not current.is_enabled(kind))

    async def _load_for_update(self, chat_id: int) -> GroupModerationConfig:
        # Writes must not silently fall back to defaults; StorageError propagates.
        config = await self._repository.get_group_config(chat_id)
        return config or GroupModerationConfig(chat_id=chat_id)
