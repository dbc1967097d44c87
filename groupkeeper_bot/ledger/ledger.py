from __future__ import annotations

from dataclasses import dataclass, replace

import structlog

from ..models import ViolationRecord
from ..storage.base import StorageError, ViolationRepository

logger = structlog.get_logger(__name__)

LedgerKey = tuple[int, int]


@dataclass(slots=True, frozen=True)
class LedgerCount:
    count: int
    cache_only: bool = False


class ViolationLedger:
    """
    Per-(user, chat) violation counter.

    The repository is authoritative. A process-local cache mirrors every
    successful durable access and is only consulted while the repository is
    unreachable; results served from it carry ``cache_only=True``. Concurrent
    increments for the same key are last-write-wins.
    """

    def __init__(self, repository: ViolationRepository) -> None:
        self._repository = repository
        self._cache: dict[LedgerKey, ViolationRecord] = {}

    async def increment(self, user_id: int, chat_id: int) -> LedgerCount:
        key = (user_id, chat_id)
        try:
            current = await self._load(user_id, chat_id)
            updated = replace(current, count=current.count + 1)
            await self._repository.upsert_violation(updated)
        except StorageError as exc:
            cached = self._cache.get(key) or ViolationRecord(user_id=user_id, chat_id=chat_id)
            updated = replace(cached, count=cached.count + 1)
            self._cache[key] = updated
            logger.warning(
                "ledger_increment_cache_only",
                user_id=user_id,
                chat_id=chat_id,
                count=updated.count,
                error=str(exc),
            )
            return LedgerCount(count=updated.count, cache_only=True)
        self._cache[key] = updated
        logger.info("ledger_incremented", user_id=user_id, chat_id=chat_id, count=updated.count)
        return LedgerCount(count=updated.count)

    async def read(self, user_id: int, chat_id: int) -> LedgerCount:
        try:
            record = await self._load(user_id, chat_id)
        except StorageError as exc:
            cached = self._cache.get((user_id, chat_id))
            logger.warning("ledger_read_cache_only", user_id=user_id, chat_id=chat_id, error=str(exc))
            return LedgerCount(count=cached.count if cached else 0, cache_only=True)
        self._cache[(user_id, chat_id)] = record
        return LedgerCount(count=record.count)

    async def reset(self, user_id: int, chat_id: int) -> bool:
        """Zero the count; returns False when only the cache could be reset."""
        key = (user_id, chat_id)
        cached = self._cache.get(key) or ViolationRecord(user_id=user_id, chat_id=chat_id)
        self._cache[key] = replace(cached, count=0)
        try:
            current = await self._load(user_id, chat_id)
            reset = replace(current, count=0)
            await self._repository.upsert_violation(reset)
        except StorageError as exc:
            logger.error("ledger_reset_cache_only", user_id=user_id, chat_id=chat_id, error=str(exc))
            return False
        self._cache[key] = reset
        logger.info("ledger_reset", user_id=user_id, chat_id=chat_id)
        return True

    async def last_warned_at(self, user_id: int, chat_id: int) -> int:
        try:
            record = await self._load(user_id, chat_id)
        except StorageError:
            cached = self._cache.get((user_id, chat_id))
            return cached.last_warned_at if cached else 0
        return record.last_warned_at

    async def mark_warned(self, user_id: int, chat_id: int, at: int) -> None:
        key = (user_id, chat_id)
        cached = self._cache.get(key) or ViolationRecord(user_id=user_id, chat_id=chat_id)
        self._cache[key] = replace(cached, last_warned_at=at)
        try:
            current = await self._load(user_id, chat_id)
            updated = replace(current, last_warned_at=at)
            await self._repository.upsert_violation(updated)
        except StorageError as exc:
            logger.warning("ledger_mark_warned_cache_only", user_id=user_id, chat_id=chat_id, error=str(exc))
            return
        self._cache[key] = updated

    async def _load(self, user_id: int, chat_id: int) -> ViolationRecord:
        record = await self._repository.get_violation(user_id, chat_id)
        return record or ViolationRecord(user_id=user_id, chat_id=chat_id)
