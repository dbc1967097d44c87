from __future__ import annotations

import asyncio
from typing import Iterable

import structlog

from ..storage.base import StorageError, TermRepository
from .matcher import normalize_term

logger = structlog.get_logger(__name__)


class TermRegistry:
    """
    Resolves the abusive term list for a chat.

    The global list is an immutable snapshot that is only replaced through
    ``seed``. Per-chat terms are read from the repository on every lookup and
    merged with the snapshot, so there is no merged cache to go stale.
    """

    def __init__(self, repository: TermRepository) -> None:
        self._repository = repository
        self._global: frozenset[str] = frozenset()
        self._lock = asyncio.Lock()

    @property
    def global_terms(self) -> frozenset[str]:
        return self._global

    async def seed(self, terms: Iterable[str]) -> None:
        snapshot = frozenset(filter(None, (normalize_term(term) for term in terms)))
        async with self._lock:
            self._global = snapshot
        logger.info("term_registry_seeded", global_terms=len(snapshot))

    async def chat_terms(self, chat_id: int) -> list[str]:
        try:
            return await self._repository.list_terms(chat_id)
        except StorageError as exc:
            logger.warning("chat_terms_unavailable", chat_id=chat_id, error=str(exc))
            return []

    async def terms_for(self, chat_id: int) -> list[str]:
        snapshot = self._global
        combined = sorted(snapshot)
        combined.extend(term for term in await self.chat_terms(chat_id) if term not in snapshot)
        return combined
