from __future__ import annotations

import abc
from dataclasses import dataclass

from ...models import DetectionStage, ModerationVerdict


@dataclass(slots=True, frozen=True)
class ImageSubject:
    """A normalized still image plus what the heuristic stages match against."""

    chat_id: int
    payload: bytes
    encoded: str
    terms: tuple[str, ...]


class ModerationStage(abc.ABC):
    """Base class for cascade stages. Lower priority runs first."""

    stage: DetectionStage

    def __init__(self, priority: int) -> None:
        self.priority = priority

    @abc.abstractmethod
    async def evaluate(self, subject: ImageSubject) -> ModerationVerdict | None:
        """Return a flagged verdict, or None when this stage does not flag."""

    def flag(self, reason: str, **details) -> ModerationVerdict:
        return ModerationVerdict(flagged=True, stage=self.stage, reason=reason, details=details)

    def __lt__(self, other: "ModerationStage") -> bool:
        return self.priority < other.priority
