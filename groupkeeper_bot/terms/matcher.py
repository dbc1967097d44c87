"""
Whole-word lexical matching of message text against abusive term lists.

Terms are matched literally. A hit only counts when the term is not glued to
another letter or digit on either side, which approximates word boundaries for
scripts where ``\\b`` is unreliable. When a boundary pattern cannot be built or
evaluated for a term, that single term is checked by plain substring
containment instead of being skipped.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

# Unicode letters and digits, i.e. word characters minus the underscore.
_ALNUM = r"[^\W_]"


def normalize_term(term: str) -> str:
    return term.strip().lower()


@lru_cache(maxsize=4096)
def _boundary_pattern(term: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!{_ALNUM}){re.escape(term)}(?!{_ALNUM})")


def _term_occurs(term: str, lowered_text: str) -> bool:
    try:
        return _boundary_pattern(term).search(lowered_text) is not None
    except (re.error, RecursionError, OverflowError) as exc:
        logger.warning("term_boundary_fallback", term=term, error=str(exc))
        return term in lowered_text


def find_first_term(text: object, terms: Iterable[str]) -> Optional[str]:
    if not isinstance(text, str) or not text:
        return None
    lowered = text.lower()
    for raw in terms:
        if not isinstance(raw, str):
            continue
        term = normalize_term(raw)
        if term and _term_occurs(term, lowered):
            return term
    return None


def find_abusive_terms(text: object, terms: Iterable[str]) -> list[str]:
    """Return every distinct term present in ``text``, in term-list order."""
    if not isinstance(text, str) or not text:
        return []
    lowered = text.lower()
    found: list[str] = []
    for raw in terms:
        if not isinstance(raw, str):
            continue
        term = normalize_term(raw)
        if term and term not in found and _term_occurs(term, lowered):
            found.append(term)
    return found


def contains_abusive_term(text: object, terms: Iterable[str]) -> bool:
    return find_first_term(text, terms) is not None
