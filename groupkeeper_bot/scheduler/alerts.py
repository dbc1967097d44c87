from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Optional

import structlog

from ..messaging.base import MessagingClient
from ..models import AlertRecord
from ..storage.base import AlertRepository, StorageError
from ..utils.clock import Clock, now_ms

logger = structlog.get_logger(__name__)


class AlertScheduler:
    """
    Recurring per-group announcements.

    An alert is due when ``interval_minutes`` have elapsed since it was last
    sent; a freshly set alert (``last_sent_at == 0``) is due immediately. The
    background loop ticks every ``tick_seconds`` and a tick that fires while
    the previous one is still running is dropped.
    """

    def __init__(
        self,
        repository: AlertRepository,
        messaging: MessagingClient,
        *,
        tick_seconds: float = 60.0,
        clock: Clock = now_ms,
    ) -> None:
        self._repository = repository
        self._messaging = messaging
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._tick_lock = asyncio.Lock()
        self._running = False
        self._main_task: Optional[asyncio.Task[None]] = None
        self._tick_task: Optional[asyncio.Task[int]] = None
        # chat_id -> send time that could not be persisted yet
        self._unsaved: dict[int, int] = {}

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._main_task = asyncio.create_task(self._run())
        logger.info("alert_scheduler_started", tick_seconds=self._tick_seconds)

    async def stop(self) -> None:
        self._running = False
        tasks = [task for task in (self._main_task, self._tick_task) if task and not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._main_task = None
        self._tick_task = None
        logger.info("alert_scheduler_stopped")

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self._tick_seconds)
            if self._tick_task and not self._tick_task.done():
                logger.warning("alert_tick_skipped", reason="previous tick still running")
                continue
            self._tick_task = asyncio.create_task(self.tick())
            self._tick_task.add_done_callback(self._on_tick_done)

    def _on_tick_done(self, task: asyncio.Task[int]) -> None:
        if task.cancelled():
            return
        if task.exception():
            logger.error("alert_tick_failed", error=str(task.exception()))

    async def due_alerts(self, now: int) -> list[AlertRecord]:
        due: list[AlertRecord] = []
        for alert in await self._repository.list_alerts():
            pending = self._unsaved.get(alert.chat_id)
            if pending is not None:
                await self._flush_unsaved(alert, pending)
                alert = replace(alert, last_sent_at=max(alert.last_sent_at, pending))
            if alert.is_due(now):
                due.append(alert)
        return due

    async def mark_sent(self, chat_id: int, now: int) -> None:
        try:
            await self._repository.mark_alert_sent(chat_id, now)
        except StorageError:
            # still counts as sent for due checks until it is persisted
            self._unsaved[chat_id] = now
            raise
        self._unsaved.pop(chat_id, None)

    async def _flush_unsaved(self, alert: AlertRecord, pending: int) -> None:
        if alert.last_sent_at >= pending:
            self._unsaved.pop(alert.chat_id, None)
            return
        try:
            await self.mark_sent(alert.chat_id, pending)
        except StorageError as exc:
            logger.warning("alert_mark_sent_retry_failed", chat_id=alert.chat_id, error=str(exc))
            return
        logger.info("alert_mark_sent_recovered", chat_id=alert.chat_id, sent_at=pending)

    async def tick(self) -> int:
        """Send every due alert once; returns how many were delivered."""
        if self._tick_lock.locked():
            logger.warning("alert_tick_skipped", reason="tick in progress")
            return 0
        async with self._tick_lock:
            now = self._clock()
            try:
                due = await self.due_alerts(now)
            except StorageError as exc:
                logger.error("alert_tick_storage_failed", error=str(exc))
                return 0
            sent = 0
            for alert in due:
                try:
                    await self._messaging.send_message(alert.chat_id, alert.message)
                except Exception as exc:  # pylint: disable=broad-except
                    logger.error("alert_send_failed", chat_id=alert.chat_id, error=str(exc))
                    continue
                sent += 1
                logger.info("alert_sent", chat_id=alert.chat_id, interval_minutes=alert.interval_minutes)
                try:
                    await self.mark_sent(alert.chat_id, now)
                except StorageError as exc:
                    logger.error("alert_mark_sent_failed", chat_id=alert.chat_id, sent_at=now, error=str(exc))
            if due:
                logger.debug("alert_tick_completed", due=len(due), sent=sent)
            return sent

    async def set_alert(self, chat_id: int, message: str, interval_minutes: int) -> AlertRecord:
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        message = message.strip()
        if not message:
            raise ValueError("alert message must not be empty")
        alert = AlertRecord(chat_id=chat_id, message=message, interval_minutes=interval_minutes)
        await self._repository.upsert_alert(alert)
        self._unsaved.pop(chat_id, None)
        logger.info("alert_set", chat_id=chat_id, interval_minutes=interval_minutes)
        return alert

    async def remove_alert(self, chat_id: int) -> bool:
        removed = await self._repository.delete_alert(chat_id)
        self._unsaved.pop(chat_id, None)
        logger.info("alert_removed", chat_id=chat_id, removed=removed)
        return removed

    async def get_alert(self, chat_id: int) -> Optional[AlertRecord]:
        return await self._repository.get_alert(chat_id)
