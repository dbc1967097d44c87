from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Iterable

import structlog

from ..storage.base import TermRepository
from ..utils.concurrency import run_blocking
from .matcher import normalize_term
from .registry import TermRegistry

logger = structlog.get_logger(__name__)


class TermService:
    """Admin-facing term management for the global JSON list and per-chat lists."""

    def __init__(
        self,
        registry: TermRegistry,
        repository: TermRepository,
        global_path: str | Path,
        *,
        default_terms: Iterable[str] = (),
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._path = Path(global_path)
        self._default_terms = [normalize_term(term) for term in default_terms if normalize_term(term)]
        self._lock = asyncio.Lock()

    async def bootstrap(self) -> None:
        await self.reload_global()

    async def reload_global(self) -> None:
        terms = await run_blocking(self._read_global_file)
        await self._registry.seed(terms)
        logger.info("global_terms_loaded", path=str(self._path), count=len(terms))

    async def add_global_term(self, term: str) -> bool:
        normalized = self._require(term)
        async with self._lock:
            terms = await run_blocking(self._read_global_file)
            if normalized in terms:
                logger.info("global_term_exists", term=normalized)
                return False
            terms.append(normalized)
            await run_blocking(self._write_global_file, terms)
            await self._registry.seed(terms)
        logger.info("global_term_added", term=normalized)
        return True

    async def remove_global_term(self, term: str) -> bool:
        normalized = self._require(term)
        async with self._lock:
            terms = await run_blocking(self._read_global_file)
            if normalized not in terms:
                logger.info("global_term_absent", term=normalized)
                return False
            terms = [existing for existing in terms if existing != normalized]
            await run_blocking(self._write_global_file, terms)
            await self._registry.seed(terms)
        logger.info("global_term_removed", term=normalized)
        return True

    async def add_chat_term(self, chat_id: int, term: str) -> bool:
        normalized = self._require(term)
        added = await self._repository.add_term(chat_id, normalized)
        logger.info("chat_term_add", chat_id=chat_id, term=normalized, added=added)
        return added

    async def remove_chat_term(self, chat_id: int, term: str) -> bool:
        normalized = self._require(term)
        removed = await self._repository.remove_term(chat_id, normalized)
        logger.info("chat_term_remove", chat_id=chat_id, term=normalized, removed=removed)
        return removed

    async def list_terms(self, chat_id: int) -> tuple[list[str], list[str]]:
        """Return ``(global_terms, chat_terms)``."""
        return sorted(self._registry.global_terms), await self._registry.chat_terms(chat_id)

    def _require(self, term: str) -> str:
        normalized = normalize_term(term)
        if not normalized:
            raise ValueError("Term must not be empty.")
        return normalized

    def _read_global_file(self) -> list[str]:
        if not self._path.exists():
            logger.info("global_terms_file_missing", path=str(self._path))
            self._write_global_file(self._default_terms)
            return list(self._default_terms)
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("global_terms_file_unreadable", path=str(self._path), error=str(exc))
            return sorted(self._registry.global_terms) or list(self._default_terms)
        terms: list[str] = []
        for item in raw if isinstance(raw, list) else []:
            if isinstance(item, str):
                normalized = normalize_term(item)
                if normalized and normalized not in terms:
                    terms.append(normalized)
        return terms

    def _write_global_file(self, terms: list[str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(terms, indent=2, ensure_ascii=False), encoding="utf-8")
