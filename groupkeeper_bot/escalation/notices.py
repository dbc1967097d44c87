from __future__ import annotations

from typing import Optional

from ..models import ChatContext, ContentKind, DecisionAction, EscalationDecision

_SUBJECTS = {
    ContentKind.TEXT: "Abusive language",
    ContentKind.IMAGE: "Inappropriate images",
    ContentKind.VIDEO: "Inappropriate videos",
}

_RULES = {
    ContentKind.TEXT: "abusive language is",
    ContentKind.IMAGE: "inappropriate images are",
    ContentKind.VIDEO: "inappropriate videos are",
}

CLEANUP_NOTE = "I could not delete the message, an admin may need to remove it manually."
PERMISSION_NOTE = (
    "I could not delete the message because I lack the permission to delete messages. "
    "Please check my admin permissions."
)


def _delete_note(decision: EscalationDecision) -> Optional[str]:
    if decision.content_removed:
        return None
    return PERMISSION_NOTE if decision.permission_denied else CLEANUP_NOTE


def warning_notice(decision: EscalationDecision, context: ChatContext, kind: ContentKind) -> str:
    lines = [
        f"⚠️ Warning to {context.mention()}: {_RULES[kind]} not allowed in this group.",
        f"This is warning {decision.count}/{decision.threshold}. "
        f"You will be removed after {decision.threshold} warnings.",
    ]
    note = _delete_note(decision)
    if note:
        lines.append(note)
    return "\n".join(lines)


def removal_notice(decision: EscalationDecision, context: ChatContext, kind: ContentKind) -> str:
    text = (
        f"🚫 {context.mention()} has been removed after {decision.count}/{decision.threshold} "
        f"violations ({_SUBJECTS[kind].lower()})."
    )
    note = _delete_note(decision)
    return f"{text}\n{note}" if note else text


def cleanup_notice(context: ChatContext, kind: ContentKind) -> str:
    return f"⚠️ {_SUBJECTS[kind]} from {context.mention()} detected. {CLEANUP_NOTE}"


def permission_notice(context: ChatContext, kind: ContentKind, action: str) -> str:
    return (
        f"⚠️ {_SUBJECTS[kind]} from {context.mention()} detected, but I could not {action}. "
        "Please check my admin permissions."
    )


def render_notice(
    decision: EscalationDecision,
    context: ChatContext,
    kind: ContentKind,
) -> Optional[str]:
    """The single user-facing message for a decision, or None when nothing is owed."""
    if decision.action == DecisionAction.EXEMPT:
        return None
    if decision.action == DecisionAction.WARN:
        return warning_notice(decision, context, kind)
    if decision.action == DecisionAction.REMOVE:
        return removal_notice(decision, context, kind)
    # Suppressed warning: stay quiet unless the content is still visible.
    if decision.content_removed:
        return None
    if decision.permission_denied:
        return permission_notice(context, kind, "delete the message")
    return cleanup_notice(context, kind)
