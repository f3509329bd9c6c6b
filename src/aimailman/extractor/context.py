"""Bounded textual representation of a message for classification prompts."""

from __future__ import annotations

from dataclasses import dataclass

from ..types import CandidateMessage
from .html import html_to_text, normalize_whitespace

DEFAULT_SUBJECT_MAX_LENGTH = 1024
DEFAULT_BODY_MAX_LENGTH = 2048
UNKNOWN_SENDER = "Unknown Sender"


@dataclass(frozen=True)
class MessageContext:
    """Prompt-ready message fields, already stripped and truncated."""

    message_id: str
    sender: str
    subject: str
    body_preview: str
    body: str

    def as_variables(self) -> dict[str, str]:
        """Return the template variables consumed by the decision prompt."""

        return {
            "messageId": self.message_id,
            "sender": self.sender,
            "subject": self.subject,
            "bodyPreview": self.body_preview,
            "body": self.body,
        }


def build_message_context(
    message: CandidateMessage,
    *,
    subject_max_length: int = DEFAULT_SUBJECT_MAX_LENGTH,
    body_max_length: int = DEFAULT_BODY_MAX_LENGTH,
) -> MessageContext:
    """Strip markup from the body, then truncate subject and body by characters."""

    if message.body_type.lower() == "html":
        body = html_to_text(message.body)
    else:
        body = normalize_whitespace(message.body)
    return MessageContext(
        message_id=message.id,
        sender=message.sender or UNKNOWN_SENDER,
        subject=truncate(message.subject or "", subject_max_length),
        body_preview=message.body_preview or "",
        body=truncate(body, body_max_length),
    )


def truncate(text: str, limit: int) -> str:
    if limit < 0:
        raise ValueError("limit must be non-negative")
    return text[:limit]


__all__ = [
    "DEFAULT_BODY_MAX_LENGTH",
    "DEFAULT_SUBJECT_MAX_LENGTH",
    "MessageContext",
    "UNKNOWN_SENDER",
    "build_message_context",
    "truncate",
]
