from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from aimailman import types as mail_types

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def test_folder_path_accepts_both_separators() -> None:
    forward = mail_types.FolderPath.parse("Mailman/Newsletters")
    backward = mail_types.FolderPath.parse("Mailman\\Newsletters")

    assert forward.segments == ("Mailman", "Newsletters")
    assert forward == backward
    assert forward.cache_key == backward.cache_key
    assert str(backward) == "Mailman/Newsletters"


def test_folder_path_drops_blank_segments_and_trims_names() -> None:
    path = mail_types.FolderPath.parse("/Projects// Q1 Reports /")

    assert path.segments == ("Projects", "Q1 Reports")


def test_folder_path_padding_around_separators_is_ignored() -> None:
    padded = mail_types.FolderPath.parse("Mailman / Newsletter")

    assert padded.segments == ("Mailman", "Newsletter")
    assert padded.cache_key == mail_types.FolderPath.parse("Mailman/Newsletter").cache_key


@pytest.mark.parametrize("raw", ["", "/", "\\\\", " / "])
def test_folder_path_without_segments_is_empty(raw: str) -> None:
    assert mail_types.FolderPath.parse(raw).is_empty


def test_folder_path_cache_key_ignores_case() -> None:
    assert (
        mail_types.FolderPath.parse("mailman/NEWSLETTERS").cache_key
        == mail_types.FolderPath.parse("Mailman/Newsletters").cache_key
    )


def test_window_rejects_message_younger_than_min_age() -> None:
    window = mail_types.EligibilityWindow(min_age=timedelta(minutes=5), max_age=timedelta(days=7))

    assert window.contains(NOW - timedelta(minutes=2), NOW) is False


def test_window_rejects_message_older_than_max_age() -> None:
    window = mail_types.EligibilityWindow(min_age=timedelta(minutes=5), max_age=timedelta(days=1))

    assert window.contains(NOW - timedelta(days=2), NOW) is False


def test_window_accepts_message_inside_range() -> None:
    window = mail_types.EligibilityWindow(min_age=timedelta(minutes=5), max_age=timedelta(days=1))

    assert window.contains(NOW - timedelta(minutes=10), NOW) is True
    assert window.bounds(NOW) == (NOW - timedelta(days=1), NOW - timedelta(minutes=5))


def test_inverted_window_is_invalid_and_matches_nothing() -> None:
    window = mail_types.EligibilityWindow(min_age=timedelta(days=2), max_age=timedelta(days=1))

    assert window.is_valid is False
    assert window.contains(NOW - timedelta(days=1, hours=12), NOW) is False


def test_only_classifier_errors_skip_tagging() -> None:
    assert mail_types.should_tag(mail_types.MoveToFolder(folder_path="A/B")) is True
    assert mail_types.should_tag(mail_types.NoAction()) is True
    assert mail_types.should_tag(mail_types.ClassifierError(message="Error: boom")) is False


def test_candidate_message_is_immutable() -> None:
    message = mail_types.CandidateMessage(
        id="m1",
        sender="a@example.com",
        subject="Hi",
        body_preview="",
        body="",
        received_at=NOW,
    )

    with pytest.raises(FrozenInstanceError):
        message.subject = "changed"  # type: ignore[misc]
