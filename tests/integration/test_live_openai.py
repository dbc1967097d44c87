from __future__ import annotations

import logging
import os

import pytest

from groupkeeper_bot.adapters.openai import GPTClient, OmniModerationClient
from groupkeeper_bot.media.normalizer import MediaNormalizer
from groupkeeper_bot.models import DetectionStage
from groupkeeper_bot.pipeline.pipeline import ModerationPipeline
from groupkeeper_bot.pipeline.stages.ocr import OcrTermStage
from groupkeeper_bot.pipeline.stages.omni import OmniModerationStage
from groupkeeper_bot.pipeline.stages.vision import REVIEW_PROMPT, VisionReviewStage, parse_review
from groupkeeper_bot.terms.registry import TermRegistry
from tests.factories import InMemoryStorage, make_image


logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")


pytestmark = pytest.mark.skipif(
    not os.getenv("RUN_LIVE_TESTS"),
    reason="Set RUN_LIVE_TESTS=1 to execute tests against the real OpenAI API.",
)


def _require_api_key() -> str:
    key = os.getenv("GROUPKEEPER_OPENAI__API_KEY")
    if not key:
        raise pytest.SkipTest("GROUPKEEPER_OPENAI__API_KEY env variable is required for live tests.")
    return key


@pytest.mark.asyncio
async def test_live_vision_review_answers_in_expected_format() -> None:
    key = _require_api_key()
    client = GPTClient(api_key=key)
    normalizer = MediaNormalizer()
    try:
        image = await normalizer.normalize_image(make_image((800, 600)))
        completion = await client.ask_about_image(REVIEW_PROMPT, image, max_completion_tokens=50)
    finally:
        await client.close()

    logger.info("Vision review answered: %s", completion.content)
    assert parse_review(completion.content) is not None, "Answer should follow the APPROPRIATE/INAPPROPRIATE form."


@pytest.mark.asyncio
async def test_live_cascade_passes_plain_image() -> None:
    key = _require_api_key()
    omni_client = OmniModerationClient(api_key=key)
    gpt_client = GPTClient(api_key=key)
    registry = TermRegistry(InMemoryStorage())
    await registry.seed(["fuck", "slut"])

    try:
        pipeline = ModerationPipeline(
            [OmniModerationStage(omni_client), VisionReviewStage(gpt_client), OcrTermStage(gpt_client)],
            normalizer=MediaNormalizer(),
            terms=registry,
            stage_timeout=30.0,
        )
        logger.info("Submitting a solid-colour image to the live cascade")
        verdict = await pipeline.classify_image(make_image((640, 480)), chat_id=1)
    finally:
        await omni_client.close()
        await gpt_client.close()

    logger.info("Live verdict: flagged=%s stage=%s reason=%s", verdict.flagged, verdict.stage, verdict.reason)
    assert not verdict.flagged
    assert verdict.stage == DetectionStage.NONE
    assert verdict.details["evaluated"] == ["omni", "vision", "ocr"]
