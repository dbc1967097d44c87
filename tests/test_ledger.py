from __future__ import annotations

import pytest

from groupkeeper_bot.ledger.ledger import ViolationLedger
from groupkeeper_bot.models import ViolationRecord
from tests.factories import InMemoryStorage


@pytest.mark.asyncio
async def test_increment_persists_and_counts_up() -> None:
    storage = InMemoryStorage()
    ledger = ViolationLedger(storage)

    first = await ledger.increment(42, 7)
    second = await ledger.increment(42, 7)

    assert (first.count, second.count) == (1, 2)
    assert not second.cache_only
    assert storage.violations[(42, 7)].count == 2
    assert (await ledger.read(42, 8)).count == 0


@pytest.mark.asyncio
async def test_outage_falls_back_to_cache_and_flags_it() -> None:
    storage = InMemoryStorage()
    ledger = ViolationLedger(storage)
    await ledger.increment(42, 7)

    storage.fail = True
    degraded = await ledger.increment(42, 7)

    assert degraded.count == 2
    assert degraded.cache_only
    assert (await ledger.read(42, 7)).cache_only


@pytest.mark.asyncio
async def test_durable_count_wins_after_recovery() -> None:
    storage = InMemoryStorage()
    ledger = ViolationLedger(storage)
    storage.fail = True
    await ledger.increment(42, 7)
    await ledger.increment(42, 7)

    storage.fail = False
    storage.violations[(42, 7)] = ViolationRecord(user_id=42, chat_id=7, count=5)
    recovered = await ledger.increment(42, 7)

    assert recovered.count == 6
    assert not recovered.cache_only


@pytest.mark.asyncio
async def test_reset_zeroes_count_but_keeps_last_warning() -> None:
    storage = InMemoryStorage()
    ledger = ViolationLedger(storage)
    await ledger.increment(42, 7)
    await ledger.mark_warned(42, 7, 123_456)

    assert await ledger.reset(42, 7) is True

    record = storage.violations[(42, 7)]
    assert record.count == 0
    assert record.last_warned_at == 123_456
    assert await ledger.last_warned_at(42, 7) == 123_456


@pytest.mark.asyncio
async def test_reset_during_outage_only_clears_cache() -> None:
    storage = InMemoryStorage()
    ledger = ViolationLedger(storage)
    await ledger.increment(42, 7)
    storage.fail = True

    assert await ledger.reset(42, 7) is False
    assert (await ledger.read(42, 7)).count == 0
