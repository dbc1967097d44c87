from __future__ import annotations

import base64
from dataclasses import replace

import pytest

from groupkeeper_bot.adapters.openai import OmniModerationResult, OpenAIAdapterError
from groupkeeper_bot.models import DetectionStage
from groupkeeper_bot.pipeline.stages.base import ImageSubject
from groupkeeper_bot.pipeline.stages.ocr import OcrTermStage
from groupkeeper_bot.pipeline.stages.omni import OmniModerationStage
from groupkeeper_bot.pipeline.stages.payload import EncodedPayloadStage, term_variants
from groupkeeper_bot.pipeline.stages.vision import VisionReviewStage, parse_review
from tests.factories import FakeGPTClient, FakeOmniClient


def make_subject(payload: bytes = b"\x89PNG...", terms=("slut", "porn")) -> ImageSubject:
    return ImageSubject(
        chat_id=7,
        payload=payload,
        encoded=base64.b64encode(payload).decode("ascii"),
        terms=tuple(terms),
    )


@pytest.mark.parametrize(
    "content, expected",
    [
        ("INAPPROPRIATE: nudity", (True, "nudity")),
        ("**INAPPROPRIATE**: explicit text.", (True, "explicit text")),
        ("inappropriate", (True, "Inappropriate content")),
        ("APPROPRIATE", (False, None)),
        ("  appropriate.", (False, None)),
        ("I cannot help with that.", None),
        ("", None),
    ],
)
def test_parse_review(content: str, expected) -> None:
    assert parse_review(content) == expected


def test_term_variants_cover_upper_and_base64() -> None:
    assert term_variants("porn") == ("porn", "PORN", "cG9ybg==", "UE9STg==")


@pytest.mark.asyncio
async def test_omni_stage_reports_flagged_categories() -> None:
    client = FakeOmniClient(
        OmniModerationResult(
            flagged=True,
            categories={"sexual": True, "violence": False, "harassment": True},
            category_scores={"sexual": 0.9},
        )
    )
    stage = OmniModerationStage(client)

    verdict = await stage.evaluate(make_subject())

    assert verdict is not None
    assert verdict.stage == DetectionStage.OMNI
    assert verdict.reason == "Flagged categories: sexual, harassment"
    assert client.calls[0]["instruction"]


@pytest.mark.asyncio
async def test_omni_stage_not_flagged_or_error_is_none() -> None:
    clean = OmniModerationStage(FakeOmniClient(OmniModerationResult(False, {}, {})))
    broken = OmniModerationStage(FakeOmniClient(error=OpenAIAdapterError("503")))

    assert await clean.evaluate(make_subject()) is None
    assert await broken.evaluate(make_subject()) is None


@pytest.mark.asyncio
async def test_vision_stage_flags_on_inappropriate() -> None:
    stage = VisionReviewStage(FakeGPTClient("INAPPROPRIATE: nudity"))
    verdict = await stage.evaluate(make_subject())
    assert verdict is not None and verdict.reason == "nudity"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["APPROPRIATE", "maybe?"])
async def test_vision_stage_clean_or_ambiguous_is_none(content: str) -> None:
    stage = VisionReviewStage(FakeGPTClient(content))
    assert await stage.evaluate(make_subject()) is None


@pytest.mark.asyncio
async def test_vision_stage_transport_error_is_none() -> None:
    stage = VisionReviewStage(FakeGPTClient(error=OpenAIAdapterError("timeout")))
    assert await stage.evaluate(make_subject()) is None


@pytest.mark.asyncio
async def test_payload_stage_finds_base64_encoded_term() -> None:
    # 3-byte aligned, so base64("naked") appears verbatim in the payload encoding.
    subject = make_subject(payload=b"abcnaked", terms=("slut", "naked"))
    stage = EncodedPayloadStage()

    verdict = await stage.evaluate(subject)

    assert verdict is not None
    assert verdict.stage == DetectionStage.PAYLOAD
    assert verdict.reason == "Found explicit terms (naked)"


@pytest.mark.asyncio
async def test_payload_stage_ignores_short_terms_by_default() -> None:
    subject = replace(make_subject(terms=("sex", "ass")), encoded="q9SEXz0ASSk1")

    assert await EncodedPayloadStage().evaluate(subject) is None
    verdict = await EncodedPayloadStage(min_term_length=3).evaluate(subject)
    assert verdict.details["terms"] == ["sex", "ass"]


@pytest.mark.asyncio
async def test_payload_stage_clean_payload_is_none() -> None:
    stage = EncodedPayloadStage()
    assert await stage.evaluate(make_subject(payload=b"\x00\x01\x02", terms=("slut",))) is None


@pytest.mark.asyncio
async def test_ocr_stage_matches_transcript_against_terms() -> None:
    stage = OcrTermStage(FakeGPTClient("Hello\nSLUT\nworld"))
    verdict = await stage.evaluate(make_subject())

    assert verdict is not None
    assert verdict.stage == DetectionStage.OCR
    assert verdict.details["terms"] == ["slut"]


@pytest.mark.asyncio
async def test_ocr_stage_requires_whole_words() -> None:
    stage = OcrTermStage(FakeGPTClient("sluttish pornography"))
    assert await stage.evaluate(make_subject()) is None
