from __future__ import annotations

import abc
from typing import Optional

from ..models import AlertRecord, GroupModerationConfig, ViolationRecord


class StorageError(Exception):
    """Raised when the durable store cannot be reached or queried."""


class GroupConfigRepository(abc.ABC):
    @abc.abstractmethod
    async def get_group_config(self, chat_id: int) -> Optional[GroupModerationConfig]:
        ...

    @abc.abstractmethod
    async def put_group_config(self, config: GroupModerationConfig) -> None:
        ...


class TermRepository(abc.ABC):
    @abc.abstractmethod
    async def list_terms(self, chat_id: int) -> list[str]:
        ...

    @abc.abstractmethod
    async def add_term(self, chat_id: int, term: str) -> bool:
        """Store ``term``; False when it was already present."""

    @abc.abstractmethod
    async def remove_term(self, chat_id: int, term: str) -> bool:
        """Drop ``term``; False when it was absent."""


class ViolationRepository(abc.ABC):
    @abc.abstractmethod
    async def get_violation(self, user_id: int, chat_id: int) -> Optional[ViolationRecord]:
        ...

    @abc.abstractmethod
    async def upsert_violation(self, record: ViolationRecord) -> None:
        ...


class AlertRepository(abc.ABC):
    @abc.abstractmethod
    async def list_alerts(self) -> list[AlertRecord]:
        ...

    @abc.abstractmethod
    async def get_alert(self, chat_id: int) -> Optional[AlertRecord]:
        ...

    @abc.abstractmethod
    async def upsert_alert(self, alert: AlertRecord) -> None:
        ...

    @abc.abstractmethod
    async def delete_alert(self, chat_id: int) -> bool:
        ...

    @abc.abstractmethod
    async def mark_alert_sent(self, chat_id: int, sent_at: int) -> None:
        ...


class StorageGateway(
    GroupConfigRepository,
    TermRepository,
    ViolationRepository,
    AlertRepository,
    abc.ABC,
):
    """Combined repository interface for convenience."""

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    async def disconnect(self) -> None:
        ...
