from __future__ import annotations

import asyncio
import base64
from typing import Iterable, Sequence

import structlog

from ..media.normalizer import MediaNormalizer
from ..models import DetectionStage, ModerationVerdict
from ..terms.matcher import find_first_term, normalize_term
from ..terms.registry import TermRegistry
from .stages.base import ImageSubject, ModerationStage

logger = structlog.get_logger(__name__)


class ModerationPipeline:
    """
    Ordered detection cascade for media, plus the word filter for text.

    Stages run strictly by priority and the first flagged verdict wins. A
    stage that errors or overruns its timeout counts as "not flagged" and
    the cascade moves on.
    """

    def __init__(
        self,
        stages: Iterable[ModerationStage],
        *,
        normalizer: MediaNormalizer,
        terms: TermRegistry,
        explicit_terms: Iterable[str] = (),
        stage_timeout: float = 20.0,
    ) -> None:
        self.stages: Sequence[ModerationStage] = tuple(sorted(stages))
        self._normalizer = normalizer
        self._terms = terms
        self._explicit_terms = tuple(filter(None, (normalize_term(term) for term in explicit_terms)))
        self._stage_timeout = stage_timeout
        logger.info(
            "pipeline_initialized",
            stages=[stage.stage.value for stage in self.stages],
            stage_timeout=stage_timeout,
        )

    async def classify_text(self, text: str, *, chat_id: int) -> ModerationVerdict:
        terms = await self._terms.terms_for(chat_id)
        term = find_first_term(text, terms)
        if term is None:
            return ModerationVerdict.clean()
        logger.info("word_filter_flagged", chat_id=chat_id, term=term)
        stage = DetectionStage.WORD_FILTER
        return ModerationVerdict(
            flagged=True,
            stage=stage,
            reason=f"{stage.value}: abusive term '{term}'",
            details={"term": term},
        )

    async def classify_image(self, image: bytes, *, chat_id: int) -> ModerationVerdict:
        if not image:
            logger.error("classify_image_empty_payload", chat_id=chat_id)
            return ModerationVerdict.unclassified("empty image payload")
        payload = await self._normalizer.normalize_image(image)
        subject = ImageSubject(
            chat_id=chat_id,
            payload=payload,
            encoded=base64.b64encode(payload).decode("ascii"),
            terms=await self._subject_terms(chat_id),
        )
        return await self.run_cascade(subject)

    async def classify_video(self, video: bytes, *, chat_id: int) -> ModerationVerdict:
        frame = await self._normalizer.extract_frame(video)
        if frame is None:
            logger.error("classify_video_no_frame", chat_id=chat_id, size=len(video or b""))
            return ModerationVerdict.unclassified("frame extraction failed")
        return await self.classify_image(frame, chat_id=chat_id)

    async def run_cascade(self, subject: ImageSubject) -> ModerationVerdict:
        evaluated: list[str] = []
        for stage in self.stages:
            evaluated.append(stage.stage.value)
            try:
                verdict = await asyncio.wait_for(stage.evaluate(subject), timeout=self._stage_timeout)
            except TimeoutError:
                logger.error("stage_timeout", stage=stage.stage.value, timeout=self._stage_timeout)
                continue
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("stage_failed", stage=stage.stage.value, error=str(exc))
                continue
            if verdict and verdict.flagged:
                result = ModerationVerdict(
                    flagged=True,
                    stage=stage.stage,
                    reason=f"{stage.stage.value}: {verdict.reason}",
                    details={**verdict.details, "evaluated": evaluated},
                )
                logger.info(
                    "pipeline_image_violation",
                    chat_id=subject.chat_id,
                    stage=stage.stage.value,
                    reason=result.reason,
                )
                return result
        logger.debug("pipeline_image_clean", chat_id=subject.chat_id, evaluated=evaluated)
        return ModerationVerdict(flagged=False, stage=DetectionStage.NONE, details={"evaluated": evaluated})

    async def _subject_terms(self, chat_id: int) -> tuple[str, ...]:
        terms = list(self._explicit_terms)
        terms.extend(term for term in await self._terms.terms_for(chat_id) if term not in terms)
        return tuple(terms)
