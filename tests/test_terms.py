from __future__ import annotations

import json

import pytest

from groupkeeper_bot.terms.registry import TermRegistry
from groupkeeper_bot.terms.service import TermService
from tests.factories import InMemoryStorage


def make_service(tmp_path, storage: InMemoryStorage | None = None, defaults=("fuck", "shit")):
    storage = storage or InMemoryStorage()
    registry = TermRegistry(storage)
    service = TermService(registry, storage, tmp_path / "terms.json", default_terms=defaults)
    return service, registry, storage


@pytest.mark.asyncio
async def test_bootstrap_seeds_file_from_defaults(tmp_path) -> None:
    service, registry, _ = make_service(tmp_path)
    await service.bootstrap()

    assert registry.global_terms == frozenset({"fuck", "shit"})
    assert json.loads((tmp_path / "terms.json").read_text(encoding="utf-8")) == ["fuck", "shit"]


@pytest.mark.asyncio
async def test_bootstrap_reads_existing_file(tmp_path) -> None:
    (tmp_path / "terms.json").write_text(json.dumps([" Spam ", "spam", 3, "scam"]), encoding="utf-8")
    service, registry, _ = make_service(tmp_path)
    await service.bootstrap()

    assert registry.global_terms == frozenset({"spam", "scam"})


@pytest.mark.asyncio
async def test_chat_term_add_and_remove_are_idempotent(tmp_path) -> None:
    service, registry, _ = make_service(tmp_path)
    await service.bootstrap()

    assert await service.add_chat_term(7, "Idiot") is True
    assert await service.add_chat_term(7, "idiot ") is False
    assert await registry.terms_for(7) == ["fuck", "shit", "idiot"]
    assert await registry.terms_for(8) == ["fuck", "shit"]

    assert await service.remove_chat_term(7, "idiot") is True
    assert await service.remove_chat_term(7, "idiot") is False
    assert await registry.terms_for(7) == ["fuck", "shit"]


@pytest.mark.asyncio
async def test_empty_term_is_rejected(tmp_path) -> None:
    service, _, _ = make_service(tmp_path)
    with pytest.raises(ValueError):
        await service.add_chat_term(7, "   ")


@pytest.mark.asyncio
async def test_global_term_mutation_persists_and_reloads_snapshot(tmp_path) -> None:
    service, registry, _ = make_service(tmp_path)
    await service.bootstrap()

    assert await service.add_global_term("Moron") is True
    assert await service.add_global_term("moron") is False
    assert "moron" in registry.global_terms
    assert "moron" in json.loads((tmp_path / "terms.json").read_text(encoding="utf-8"))

    assert await service.remove_global_term("moron") is True
    assert await service.remove_global_term("moron") is False
    assert "moron" not in registry.global_terms


@pytest.mark.asyncio
async def test_chat_terms_store_outage_falls_back_to_global(tmp_path) -> None:
    service, registry, storage = make_service(tmp_path)
    await service.bootstrap()
    storage.terms[7] = ["idiot"]
    storage.fail = True

    assert await registry.terms_for(7) == ["fuck", "shit"]


@pytest.mark.asyncio
async def test_list_terms_splits_global_and_chat(tmp_path) -> None:
    service, _, _ = make_service(tmp_path)
    await service.bootstrap()
    await service.add_chat_term(7, "idiot")

    global_terms, chat_terms = await service.list_terms(7)
    assert global_terms == ["fuck", "shit"]
    assert chat_terms == ["idiot"]
