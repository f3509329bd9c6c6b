from datetime import datetime, timezone

import pytest

from aimailman.extractor import build_message_context, truncate
from aimailman.extractor.context import UNKNOWN_SENDER
from aimailman.types import CandidateMessage


def _message(**overrides) -> CandidateMessage:
    values = {
        "id": "AAMk-1",
        "sender": "news@example.com",
        "subject": "Weekly news",
        "body_preview": "This week...",
        "body": "<p>This week <b>only</b></p>",
        "received_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
        "body_type": "html",
    }
    values.update(overrides)
    return CandidateMessage(**values)


def test_context_strips_markup_before_truncating() -> None:
    context = build_message_context(_message(), body_max_length=9)

    assert context.body == "This week"


def test_context_truncates_subject_by_characters() -> None:
    context = build_message_context(_message(subject="é" * 20), subject_max_length=5)

    assert context.subject == "ééééé"


def test_context_uses_default_limits() -> None:
    context = build_message_context(
        _message(subject="s" * 5000, body="b" * 5000, body_type="text")
    )

    assert len(context.subject) == 1024
    assert len(context.body) == 2048


def test_context_falls_back_to_unknown_sender() -> None:
    context = build_message_context(_message(sender=""))

    assert context.sender == UNKNOWN_SENDER


def test_context_variables_match_prompt_placeholders() -> None:
    variables = build_message_context(_message(body_type="text", body="plain")).as_variables()

    assert variables == {
        "messageId": "AAMk-1",
        "sender": "news@example.com",
        "subject": "Weekly news",
        "bodyPreview": "This week...",
        "body": "plain",
    }


def test_truncate_rejects_negative_limit() -> None:
    with pytest.raises(ValueError):
        truncate("abc", -1)
