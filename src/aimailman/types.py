"""Core immutable data structures used throughout aimailman."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta

FOLDER_PATH_SEPARATORS = re.compile(r"[\\/]")
DEFAULT_REVIEW_CATEGORY = "✓ AI"
NO_ACTION_PHRASE = "No action needed"
ERROR_PREFIX = "Error:"


@dataclass(frozen=True)
class FolderPath:
    """Ordered display-name segments of a mailbox folder path."""

    segments: tuple[str, ...]

    @classmethod
    def parse(cls, raw: str) -> FolderPath:
        """Split ``raw`` on either separator, trimming segments and dropping blank ones.

        A path without segments is returned as-is; callers decide whether an
        empty path is an error.
        """

        parts = FOLDER_PATH_SEPARATORS.split(raw or "")
        return cls(tuple(part.strip() for part in parts if part.strip()))

    @property
    def is_empty(self) -> bool:
        return not self.segments

    @property
    def normalized(self) -> str:
        return "/".join(self.segments)

    @property
    def cache_key(self) -> str:
        return self.normalized.casefold()

    def __str__(self) -> str:
        return self.normalized


@dataclass(frozen=True)
class Folder:
    """Mail folder as reported by the mail store."""

    id: str
    display_name: str


@dataclass(frozen=True)
class ResolvedFolder:
    """Outcome of a successful folder path resolution."""

    owner_id: str
    path: FolderPath
    folder_id: str


@dataclass(frozen=True)
class CandidateMessage:
    """Mailbox item fetched for triage; never mutated by the pipeline."""

    id: str
    sender: str
    subject: str
    body_preview: str
    body: str
    received_at: datetime
    is_read: bool = False
    categories: frozenset[str] = field(default_factory=frozenset)
    body_type: str = "html"


@dataclass(frozen=True)
class EligibilityWindow:
    """Age range a message's receipt time must fall within to be fetched."""

    min_age: timedelta
    max_age: timedelta

    @property
    def is_valid(self) -> bool:
        return self.min_age < self.max_age

    def bounds(self, now: datetime) -> tuple[datetime, datetime]:
        """Return ``(oldest, newest)`` receive timestamps accepted at ``now``."""

        return now - self.max_age, now - self.min_age

    def contains(self, received_at: datetime, now: datetime) -> bool:
        if not self.is_valid:
            return False
        age = now - received_at
        return self.min_age <= age <= self.max_age


@dataclass(frozen=True)
class MoveToFolder:
    """The message was moved into ``folder_path``.

    ``new_message_id`` is set when the store gave the message a different id
    on the move; later operations must address it by that id.
    """

    folder_path: str
    explanation: str = ""
    new_message_id: str | None = None


@dataclass(frozen=True)
class NoAction:
    """The classifier decided to leave the message alone."""

    explanation: str = NO_ACTION_PHRASE


@dataclass(frozen=True)
class ClassifierError:
    """The model or tool path failed; the message stays untagged."""

    message: str


ClassificationDecision = MoveToFolder | NoAction | ClassifierError


def should_tag(decision: ClassificationDecision) -> bool:
    """Return True when the review category should be applied."""

    return not isinstance(decision, ClassifierError)


__all__ = [
    "DEFAULT_REVIEW_CATEGORY",
    "ERROR_PREFIX",
    "NO_ACTION_PHRASE",
    "CandidateMessage",
    "ClassificationDecision",
    "ClassifierError",
    "EligibilityWindow",
    "Folder",
    "FolderPath",
    "MoveToFolder",
    "NoAction",
    "ResolvedFolder",
    "should_tag",
]
