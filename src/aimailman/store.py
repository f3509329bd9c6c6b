"""Mail store protocol, error taxonomy, and the dry-run wrapper."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from .types import CandidateMessage, EligibilityWindow, Folder

LOGGER = logging.getLogger(__name__)
DRY_RUN_FOLDER_PREFIX = "dry-run:"


class MailStoreError(RuntimeError):
    """Raised when a mail store operation fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FolderConflictError(MailStoreError):
    """Raised when a folder with the requested name already exists under the parent."""


@runtime_checkable
class MailStore(Protocol):
    """Operations the triage pipeline consumes from a mailbox backend."""

    def find_child_folder(
        self,
        owner_id: str,
        parent_id: str | None,
        display_name: str,
    ) -> Folder | None:
        """Return the child folder of ``parent_id`` (root when None) named ``display_name``."""

    def create_child_folder(
        self,
        owner_id: str,
        parent_id: str | None,
        display_name: str,
    ) -> Folder:
        """Create a child folder; raise FolderConflictError if the name is taken."""

    def fetch_candidates(
        self,
        owner_id: str,
        folder_id: str,
        exclude_category: str,
        window: EligibilityWindow,
        limit: int,
    ) -> list[CandidateMessage]:
        """Return untagged messages within ``window``, newest first."""

    def move_message(
        self, owner_id: str, message_id: str, destination_folder_id: str
    ) -> str | None:
        """Move a message; return its id after the move when the store reports one."""

    def add_categories(self, owner_id: str, message_id: str, categories: Iterable[str]) -> None:
        """Merge ``categories`` into the message's existing categories."""


class DryRunMailStore:
    """Pass reads through to ``inner`` while only logging mutations."""

    def __init__(self, inner: MailStore) -> None:
        self._inner = inner

    def close(self) -> None:
        close_store(self._inner)

    def find_child_folder(
        self,
        owner_id: str,
        parent_id: str | None,
        display_name: str,
    ) -> Folder | None:
        if parent_id is not None and parent_id.startswith(DRY_RUN_FOLDER_PREFIX):
            # Placeholder parents only exist in this run; nothing lives beneath them.
            return None
        return self._inner.find_child_folder(owner_id, parent_id, display_name)

    def create_child_folder(
        self,
        owner_id: str,
        parent_id: str | None,
        display_name: str,
    ) -> Folder:
        LOGGER.info(
            "Dry-run: would create folder '%s' under '%s' (owner=%s)",
            display_name,
            parent_id or "root",
            owner_id,
        )
        return Folder(id=f"{DRY_RUN_FOLDER_PREFIX}{display_name}", display_name=display_name)

    def fetch_candidates(
        self,
        owner_id: str,
        folder_id: str,
        exclude_category: str,
        window: EligibilityWindow,
        limit: int,
    ) -> list[CandidateMessage]:
        return self._inner.fetch_candidates(owner_id, folder_id, exclude_category, window, limit)

    def move_message(
        self, owner_id: str, message_id: str, destination_folder_id: str
    ) -> str | None:
        LOGGER.info(
            "Dry-run: would move message %s to folder %s (owner=%s)",
            message_id,
            destination_folder_id,
            owner_id,
        )
        return None

    def add_categories(self, owner_id: str, message_id: str, categories: Iterable[str]) -> None:
        LOGGER.info(
            "Dry-run: would add categories %s to message %s (owner=%s)",
            ", ".join(sorted(categories)),
            message_id,
            owner_id,
        )


def close_store(store: object) -> None:
    """Release transport resources held by ``store``, if it owns any."""

    close = getattr(store, "close", None)
    if callable(close):
        close()


__all__ = [
    "DRY_RUN_FOLDER_PREFIX",
    "DryRunMailStore",
    "FolderConflictError",
    "MailStore",
    "MailStoreError",
    "close_store",
]
