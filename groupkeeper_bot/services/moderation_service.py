from __future__ import annotations

from typing import Optional

import structlog

from ..adapters.openai import GPTClient, OmniModerationClient
from ..config import BotSettings
from ..escalation.controller import EscalationController
from ..escalation.notices import permission_notice, render_notice
from ..groups.service import GroupConfigService
from ..ledger.ledger import ViolationLedger
from ..logging.events import setup_logging
from ..media.normalizer import MediaNormalizer
from ..messaging.base import MessagingClient, MessagingError, MessagingPermissionError
from ..models import (
    AlertRecord,
    BotRights,
    ContentKind,
    DecisionAction,
    GroupModerationConfig,
    MessageEnvelope,
    ModerationOutcome,
    ModerationVerdict,
)
from ..pipeline.pipeline import ModerationPipeline
from ..pipeline.stages.base import ModerationStage
from ..pipeline.stages.ocr import OcrTermStage
from ..pipeline.stages.omni import OmniModerationStage
from ..pipeline.stages.payload import EncodedPayloadStage
from ..pipeline.stages.vision import VisionReviewStage
from ..scheduler.alerts import AlertScheduler
from ..storage.base import StorageGateway
from ..storage.sqlite import SQLiteStorage
from ..terms.registry import TermRegistry
from ..terms.service import TermService
from ..utils.clock import Clock, now_ms

logger = structlog.get_logger(__name__)


class ModerationCoordinator:
    """
    Wires storage, terms, the detection pipeline, escalation and alerts
    together and executes decisions through a ``MessagingClient``.
    """

    def __init__(
        self,
        settings: BotSettings,
        messaging: MessagingClient,
        *,
        storage: Optional[StorageGateway] = None,
        omni_client: Optional[OmniModerationClient] = None,
        gpt_client: Optional[GPTClient] = None,
        normalizer: Optional[MediaNormalizer] = None,
        clock: Clock = now_ms,
        configure_logging: bool = True,
    ) -> None:
        if configure_logging:
            setup_logging(settings.logging)
        self._settings = settings
        self._messaging = messaging
        self._storage = storage or SQLiteStorage(settings.storage.sqlite_path)
        self._omni_client = omni_client or OmniModerationClient(
            api_key=settings.openai.api_key,
            base_url=settings.openai.base_url,
            timeout=settings.openai.timeout_seconds,
        )
        self._gpt_client = gpt_client or GPTClient(
            api_key=settings.openai.api_key,
            base_url=settings.openai.base_url,
            timeout=settings.openai.timeout_seconds,
        )
        self._registry = TermRegistry(self._storage)
        self.terms = TermService(
            self._registry,
            self._storage,
            settings.terms.global_terms_path,
            default_terms=settings.terms.default_terms,
        )
        self.groups = GroupConfigService(self._storage)
        self.pipeline = ModerationPipeline(
            self._build_stages(),
            normalizer=normalizer or MediaNormalizer(settings.media),
            terms=self._registry,
            explicit_terms=settings.pipeline.explicit_terms,
            stage_timeout=settings.pipeline.stage_timeout_seconds,
        )
        self.escalation = EscalationController(
            ViolationLedger(self._storage),
            ban_threshold=settings.moderation.ban_threshold,
            warning_cooldown_seconds=settings.moderation.warning_cooldown_seconds,
            operator_user_id=settings.operator_user_id,
            clock=clock,
        )
        self.alerts = AlertScheduler(
            self._storage,
            messaging,
            tick_seconds=settings.alerts.tick_seconds,
            clock=clock,
        )

    def _build_stages(self) -> list[ModerationStage]:
        pipeline = self._settings.pipeline
        stages: list[ModerationStage] = [
            OmniModerationStage(self._omni_client, model=pipeline.omni_model),
            VisionReviewStage(self._gpt_client, model=pipeline.vision_model),
        ]
        if pipeline.payload_scan_enabled:
            stages.append(EncodedPayloadStage(min_term_length=pipeline.payload_min_term_length))
        if pipeline.ocr_scan_enabled:
            stages.append(OcrTermStage(self._gpt_client, model=pipeline.vision_model))
        return stages

    async def start(self) -> None:
        await self._storage.connect()
        await self.terms.bootstrap()
        await self.alerts.start()
        logger.info("moderation_coordinator_started")

    async def shutdown(self) -> None:
        await self.alerts.stop()
        await self._storage.disconnect()
        await self._omni_client.close()
        await self._gpt_client.close()
        logger.info("moderation_coordinator_stopped")

    async def handle_message(self, envelope: MessageEnvelope) -> ModerationOutcome:
        ctx = envelope.context
        kind = envelope.media_kind or ContentKind.TEXT
        config = await self.groups.get_config(ctx.chat_id)
        verdict = await self._classify_caption(envelope, config)
        if verdict is not None:
            kind = ContentKind.TEXT
        elif not config.is_enabled(kind):
            logger.debug("moderation_disabled", chat_id=ctx.chat_id, kind=kind.value)
            return ModerationOutcome(message=envelope, kind=kind, verdict=None, skipped_reason="disabled")
        else:
            verdict = await self._classify(envelope, kind)
        if verdict is None:
            return ModerationOutcome(message=envelope, kind=kind, verdict=None, skipped_reason="no content")
        if not verdict.flagged:
            return ModerationOutcome(message=envelope, kind=kind, verdict=verdict)

        privileged = await self._is_privileged(ctx.chat_id, ctx.user_id)
        if self.escalation.is_exempt(ctx.user_id, privileged=privileged):
            decision = await self.escalation.escalate(verdict, ctx, privileged=privileged)
            return ModerationOutcome(message=envelope, kind=kind, verdict=verdict, decision=decision)

        rights = await self._bot_rights(ctx.chat_id)
        if not rights.can_delete_messages:
            notice = permission_notice(ctx, kind, "act on it")
            logger.warning("bot_cannot_moderate", chat_id=ctx.chat_id, is_admin=rights.is_admin)
            await self._notify(ctx.chat_id, notice)
            return ModerationOutcome(
                message=envelope,
                kind=kind,
                verdict=verdict,
                notice=notice,
                skipped_reason="bot lacks rights",
            )

        content_removed, permission_denied = await self._delete(envelope)
        decision = await self.escalation.escalate(
            verdict,
            ctx,
            privileged=privileged,
            content_removed=content_removed,
            permission_denied=permission_denied,
        )
        notice = render_notice(decision, ctx, kind)
        if decision.action == DecisionAction.REMOVE and not await self._ban(envelope, rights):
            notice = permission_notice(ctx, kind, "remove the user")
        if notice:
            await self._notify(ctx.chat_id, notice)
        return ModerationOutcome(
            message=envelope,
            kind=kind,
            verdict=verdict,
            decision=decision,
            notice=notice,
        )

    async def _classify_caption(
        self,
        envelope: MessageEnvelope,
        config: GroupModerationConfig,
    ) -> Optional[ModerationVerdict]:
        """A flagged caption on a media message is handled as a text violation."""
        if envelope.media_kind is None or not envelope.caption or not config.text_enabled:
            return None
        verdict = await self.pipeline.classify_text(envelope.caption, chat_id=envelope.context.chat_id)
        return verdict if verdict.flagged else None

    async def _classify(self, envelope: MessageEnvelope, kind: ContentKind) -> Optional[ModerationVerdict]:
        ctx = envelope.context
        if kind == ContentKind.TEXT:
            text = envelope.content_text()
            if not text:
                return None
            return await self.pipeline.classify_text(text, chat_id=ctx.chat_id)
        if not envelope.media_ref:
            logger.warning("media_reference_missing", chat_id=ctx.chat_id, kind=kind.value)
            return None
        try:
            data = await self._messaging.download_media(envelope.media_ref)
        except MessagingError as exc:
            logger.error("media_download_failed", chat_id=ctx.chat_id, kind=kind.value, error=str(exc))
            return ModerationVerdict.unclassified("download failed")
        if kind == ContentKind.VIDEO:
            return await self.pipeline.classify_video(data, chat_id=ctx.chat_id)
        return await self.pipeline.classify_image(data, chat_id=ctx.chat_id)

    async def _is_privileged(self, chat_id: int, user_id: int) -> bool:
        try:
            role = await self._messaging.get_member_status(chat_id, user_id)
        except MessagingError as exc:
            logger.warning("member_status_unavailable", chat_id=chat_id, user_id=user_id, error=str(exc))
            return False
        return role.privileged

    async def _bot_rights(self, chat_id: int) -> BotRights:
        """Rights that cannot be read count as full; delete and ban report their own failures."""
        try:
            return await self._messaging.get_bot_rights(chat_id)
        except MessagingError as exc:
            logger.warning("bot_rights_unavailable", chat_id=chat_id, error=str(exc))
            return BotRights.full()

    async def _delete(self, envelope: MessageEnvelope) -> tuple[bool, bool]:
        """Returns ``(removed, permission_denied)``."""
        ctx = envelope.context
        try:
            await self._messaging.delete_message(ctx.chat_id, ctx.message_id)
        except MessagingPermissionError as exc:
            logger.error("delete_forbidden", chat_id=ctx.chat_id, message_id=ctx.message_id, error=str(exc))
            return False, True
        except MessagingError as exc:
            logger.error("delete_failed", chat_id=ctx.chat_id, message_id=ctx.message_id, error=str(exc))
            return False, False
        return True, False

    async def _ban(self, envelope: MessageEnvelope, rights: BotRights) -> bool:
        ctx = envelope.context
        if not rights.can_restrict_members:
            logger.error("ban_not_permitted", chat_id=ctx.chat_id, user_id=ctx.user_id)
            return False
        try:
            await self._messaging.ban_member(ctx.chat_id, ctx.user_id)
        except MessagingError as exc:
            logger.error("ban_failed", chat_id=ctx.chat_id, user_id=ctx.user_id, error=str(exc))
            return False
        await self.escalation.confirm_removal(ctx)
        logger.info("member_removed", chat_id=ctx.chat_id, user_id=ctx.user_id)
        return True

    async def _notify(self, chat_id: int, text: str) -> None:
        try:
            await self._messaging.send_message(chat_id, text)
        except MessagingError as exc:
            logger.error("notice_send_failed", chat_id=chat_id, error=str(exc))

    async def is_chat_admin(self, chat_id: int, user_id: int) -> bool:
        return await self._is_privileged(chat_id, user_id)

    def is_operator(self, user_id: int) -> bool:
        return self._settings.operator_user_id is not None and user_id == self._settings.operator_user_id

    async def add_term(self, chat_id: int, term: str) -> bool:
        return await self.terms.add_chat_term(chat_id, term)

    async def remove_term(self, chat_id: int, term: str) -> bool:
        return await self.terms.remove_chat_term(chat_id, term)

    async def list_terms(self, chat_id: int) -> tuple[list[str], list[str]]:
        return await self.terms.list_terms(chat_id)

    async def add_global_term(self, term: str) -> bool:
        return await self.terms.add_global_term(term)

    async def remove_global_term(self, term: str) -> bool:
        return await self.terms.remove_global_term(term)

    async def get_group_config(self, chat_id: int) -> GroupModerationConfig:
        return await self.groups.get_config(chat_id)

    async def toggle(self, chat_id: int, kind: ContentKind) -> GroupModerationConfig:
        return await self.groups.toggle(chat_id, kind)

    async def set_alert(self, chat_id: int, message: str, interval_minutes: int) -> AlertRecord:
        return await self.alerts.set_alert(chat_id, message, interval_minutes)

    async def remove_alert(self, chat_id: int) -> bool:
        return await self.alerts.remove_alert(chat_id)

    async def get_alert(self, chat_id: int) -> Optional[AlertRecord]:
        return await self.alerts.get_alert(chat_id)

