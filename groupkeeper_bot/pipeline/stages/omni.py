from __future__ import annotations

import structlog

from ...adapters.openai import OmniModerationClient, OpenAIAdapterError
from ...models import DetectionStage, ModerationVerdict
from .base import ImageSubject, ModerationStage

logger = structlog.get_logger(__name__)

POLICY_INSTRUCTION = (
    "Check this image for inappropriate content including pornography, nudity, violence, abuse, "
    "threatening behavior, harmful material, sexual content, explicit imagery, derogatory terms, "
    "or offensive language written on bodies."
)


class OmniModerationStage(ModerationStage):
    stage = DetectionStage.OMNI

    def __init__(
        self,
        client: OmniModerationClient,
        *,
        model: str = "omni-moderation-latest",
        instruction: str = POLICY_INSTRUCTION,
    ) -> None:
        super().__init__(priority=10)
        self._client = client
        self._model = model
        self._instruction = instruction

    async def evaluate(self, subject: ImageSubject) -> ModerationVerdict | None:
        try:
            result = await self._client.classify_image(
                subject.payload,
                instruction=self._instruction,
                model=self._model,
            )
        except OpenAIAdapterError as exc:
            logger.error("omni_api_error", error=str(exc), chat_id=subject.chat_id)
            return None

        if not result.flagged:
            logger.debug("omni_not_flagged", chat_id=subject.chat_id)
            return None

        categories = result.flagged_categories()
        reason = (
            f"Flagged categories: {', '.join(categories)}"
            if categories
            else "Inappropriate content detected"
        )
        logger.info("omni_flagged", chat_id=subject.chat_id, categories=categories)
        return self.flag(reason, categories=categories, scores=result.category_scores)
