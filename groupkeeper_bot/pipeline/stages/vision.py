from __future__ import annotations

from typing import Optional

import structlog

from ...adapters.openai import GPTClient, OpenAIAdapterError
from ...models import DetectionStage, ModerationVerdict
from .base import ImageSubject, ModerationStage

logger = structlog.get_logger(__name__)

REVIEW_PROMPT = (
    "Analyze this image and determine if it contains ANY inappropriate content such as nudity, "
    "sexual content, pornography, explicit text, offensive words, derogatory terms written on "
    "bodies, or other harmful material. Be strict. Only respond with 'INAPPROPRIATE: [reason]' "
    "or 'APPROPRIATE'."
)

DEFAULT_REASON = "Inappropriate content"


def parse_review(content: str) -> Optional[tuple[bool, Optional[str]]]:
    """
    Parse an ``INAPPROPRIATE: reason`` / ``APPROPRIATE`` answer.

    Returns ``(flagged, reason)`` or None when the answer follows neither form.
    """
    text = content.strip().lstrip("*`'\" ").strip()
    head = text.upper()
    if head.startswith("INAPPROPRIATE"):
        _, _, tail = text.partition(":")
        reason = tail.strip().strip("*`'\" .").strip()
        return True, reason or DEFAULT_REASON
    if head.startswith("APPROPRIATE"):
        return False, None
    return None


class VisionReviewStage(ModerationStage):
    stage = DetectionStage.VISION

    def __init__(self, client: GPTClient, *, model: str = "gpt-4o", prompt: str = REVIEW_PROMPT) -> None:
        super().__init__(priority=20)
        self._client = client
        self._model = model
        self._prompt = prompt

    async def evaluate(self, subject: ImageSubject) -> ModerationVerdict | None:
        try:
            completion = await self._client.ask_about_image(
                self._prompt,
                subject.payload,
                model=self._model,
                max_completion_tokens=50,
            )
        except OpenAIAdapterError as exc:
            logger.error("vision_api_error", error=str(exc), chat_id=subject.chat_id)
            return None

        parsed = parse_review(completion.content)
        if parsed is None:
            logger.warning(
                "vision_response_ambiguous",
                chat_id=subject.chat_id,
                content_preview=completion.content[:120],
            )
            return None
        flagged, reason = parsed
        if not flagged:
            logger.debug("vision_not_flagged", chat_id=subject.chat_id)
            return None
        logger.info("vision_flagged", chat_id=subject.chat_id, reason=reason)
        return self.flag(reason or DEFAULT_REASON, raw=completion.content[:200])
