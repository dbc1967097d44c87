from __future__ import annotations

import base64

import structlog

from ...models import DetectionStage, ModerationVerdict
from .base import ImageSubject, ModerationStage

logger = structlog.get_logger(__name__)


def term_variants(term: str) -> tuple[str, ...]:
    upper = term.upper()
    return (
        term,
        upper,
        base64.b64encode(term.encode("utf-8")).decode("ascii"),
        base64.b64encode(upper.encode("utf-8")).decode("ascii"),
    )


class EncodedPayloadStage(ModerationStage):
    """
    Crude high-recall backstop: looks for denylist terms, and their base64
    forms, inside the base64 transport encoding of the image.
    Terms shorter than ``min_term_length`` are skipped.
    """

    stage = DetectionStage.PAYLOAD

    def __init__(self, *, min_term_length: int = 5) -> None:
        super().__init__(priority=30)
        self._min_term_length = min_term_length

    async def evaluate(self, subject: ImageSubject) -> ModerationVerdict | None:
        haystack = subject.encoded.lower()
        found: list[str] = []
        for term in subject.terms:
            if term in found or len(term) < self._min_term_length:
                continue
            if any(variant.lower() in haystack for variant in term_variants(term)):
                found.append(term)
        if not found:
            logger.debug("payload_scan_clean", chat_id=subject.chat_id, terms=len(subject.terms))
            return None
        logger.info("payload_scan_flagged", chat_id=subject.chat_id, terms=found)
        return self.flag(f"Found explicit terms ({', '.join(found)})", terms=found)
