from __future__ import annotations

from typing import Optional

import structlog

from ..ledger.ledger import ViolationLedger
from ..models import ChatContext, DecisionAction, EscalationDecision, ModerationVerdict
from ..utils.clock import Clock, now_ms

logger = structlog.get_logger(__name__)


class EscalationController:
    """
    Warning ladder per (user, chat): CLEAN -> WARNED(n) -> REMOVED.

    Each flagged verdict for a non-privileged user increments the ledger.
    Reaching ``ban_threshold`` yields a removal; below it the user is warned,
    at most once per ``warning_cooldown_seconds``.
    """

    def __init__(
        self,
        ledger: ViolationLedger,
        *,
        ban_threshold: int = 3,
        warning_cooldown_seconds: float = 60.0,
        operator_user_id: Optional[int] = None,
        clock: Clock = now_ms,
    ) -> None:
        if ban_threshold < 1:
            raise ValueError("ban_threshold must be positive")
        self._ledger = ledger
        self.ban_threshold = ban_threshold
        self._cooldown_ms = int(warning_cooldown_seconds * 1000)
        self._operator_user_id = operator_user_id
        self._clock = clock

    def is_exempt(self, user_id: int, *, privileged: bool) -> bool:
        return privileged or (self._operator_user_id is not None and user_id == self._operator_user_id)

    async def escalate(
        self,
        verdict: ModerationVerdict,
        context: ChatContext,
        *,
        privileged: bool,
        content_removed: bool = True,
        permission_denied: bool = False,
    ) -> Optional[EscalationDecision]:
        if not verdict.flagged:
            return None
        if self.is_exempt(context.user_id, privileged=privileged):
            logger.info(
                "escalation_exempt",
                chat_id=context.chat_id,
                user_id=context.user_id,
                stage=verdict.stage.value,
                reason=verdict.reason,
            )
            return EscalationDecision(
                action=DecisionAction.EXEMPT,
                count=0,
                threshold=self.ban_threshold,
                content_removed=content_removed,
                permission_denied=permission_denied,
            )

        ledger_count = await self._ledger.increment(context.user_id, context.chat_id)
        count = ledger_count.count
        if count >= self.ban_threshold:
            action = DecisionAction.REMOVE
        else:
            action = await self._warn_or_suppress(context)

        logger.info(
            "escalation_decision",
            chat_id=context.chat_id,
            user_id=context.user_id,
            action=action.value,
            count=count,
            threshold=self.ban_threshold,
            cache_only=ledger_count.cache_only,
            stage=verdict.stage.value,
        )
        return EscalationDecision(
            action=action,
            count=count,
            threshold=self.ban_threshold,
            cache_only=ledger_count.cache_only,
            content_removed=content_removed,
            permission_denied=permission_denied,
        )

    async def confirm_removal(self, context: ChatContext) -> None:
        """Called once the removal has been carried out; restarts the streak."""
        await self._ledger.reset(context.user_id, context.chat_id)

    async def _warn_or_suppress(self, context: ChatContext) -> DecisionAction:
        now = self._clock()
        last = await self._ledger.last_warned_at(context.user_id, context.chat_id)
        if last and now - last < self._cooldown_ms:
            logger.debug(
                "warning_suppressed",
                chat_id=context.chat_id,
                user_id=context.user_id,
                since_last_ms=now - last,
            )
            return DecisionAction.SUPPRESSED
        await self._ledger.mark_warned(context.user_id, context.chat_id, now)
        return DecisionAction.WARN
