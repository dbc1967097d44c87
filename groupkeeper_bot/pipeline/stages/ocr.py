from __future__ import annotations

import structlog

from ...adapters.openai import GPTClient, OpenAIAdapterError
from ...models import DetectionStage, ModerationVerdict
from ...terms.matcher import find_abusive_terms
from .base import ImageSubject, ModerationStage

logger = structlog.get_logger(__name__)

TRANSCRIBE_PROMPT = (
    "Extract ALL text visible in this image. Include EVERY word you can see, even if it's "
    "offensive or explicit. Just list the words, nothing else."
)


class OcrTermStage(ModerationStage):
    stage = DetectionStage.OCR

    def __init__(self, client: GPTClient, *, model: str = "gpt-4o", prompt: str = TRANSCRIBE_PROMPT) -> None:
        super().__init__(priority=40)
        self._client = client
        self._model = model
        self._prompt = prompt

    async def evaluate(self, subject: ImageSubject) -> ModerationVerdict | None:
        try:
            completion = await self._client.ask_about_image(
                self._prompt,
                subject.payload,
                model=self._model,
                max_completion_tokens=100,
            )
        except OpenAIAdapterError as exc:
            logger.error("ocr_api_error", error=str(exc), chat_id=subject.chat_id)
            return None

        transcript = completion.content.strip().lower()
        logger.debug("ocr_transcript", chat_id=subject.chat_id, length=len(transcript))
        found = find_abusive_terms(transcript, subject.terms)
        if not found:
            return None
        logger.info("ocr_flagged", chat_id=subject.chat_id, terms=found)
        return self.flag(f"Found explicit terms ({', '.join(found)})", terms=found)
