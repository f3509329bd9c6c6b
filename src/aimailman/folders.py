"""Resolve human-readable folder paths to stable mail store folder ids."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from enum import Enum

from .store import FolderConflictError, MailStore, MailStoreError
from .types import FolderPath, ResolvedFolder

LOGGER = logging.getLogger(__name__)

# Display name -> Graph well-known folder id.
DEFAULT_WELL_KNOWN_FOLDERS: dict[str, str] = {
    "Inbox": "inbox",
    "Archive": "archive",
    "Drafts": "drafts",
    "Sent Items": "sentitems",
    "Deleted Items": "deleteditems",
    "Junk Email": "junkemail",
}


class ResolutionFailure(str, Enum):
    """Reasons a folder path could not be resolved."""

    EMPTY_PATH = "empty_path"
    CONFLICT_UNRESOLVED = "conflict_unresolved"
    CREATE_FAILED = "create_failed"
    TRANSPORT_ERROR = "transport_error"
    NOT_FOUND = "not_found"


class PathResolutionError(RuntimeError):
    """Raised when a folder path segment can neither be found nor created."""

    def __init__(
        self,
        kind: ResolutionFailure,
        message: str,
        *,
        owner_id: str,
        path: str,
        segment: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.owner_id = owner_id
        self.path = path
        self.segment = segment
        self.cause = cause


class FolderCache:
    """Maps ``(owner, path)`` to folder ids, case-insensitive on both.

    Only successful resolutions are stored. Entries live until invalidated.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def get(self, owner_id: str, path: FolderPath) -> str | None:
        with self._lock:
            return self._entries.get(_cache_key(owner_id, path))

    def put(self, owner_id: str, path: FolderPath, folder_id: str) -> str:
        """Insert ``folder_id`` unless an entry exists; return the stored id."""

        with self._lock:
            return self._entries.setdefault(_cache_key(owner_id, path), folder_id)

    def invalidate(self, owner_id: str, path: FolderPath) -> bool:
        with self._lock:
            return self._entries.pop(_cache_key(owner_id, path), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _cache_key(owner_id: str, path: FolderPath) -> tuple[str, str]:
    return owner_id.casefold(), path.cache_key


class FolderPathResolver:
    """Walks folder paths segment by segment, creating missing folders.

    The mail store only exposes one level of children at a time, so every
    segment is looked up beneath its parent. Creation conflicts are recovered
    by re-running the lookup once, which keeps repeated or concurrent
    resolutions of the same path from producing duplicate folders.
    """

    def __init__(
        self,
        store: MailStore,
        cache: FolderCache | None = None,
        *,
        well_known: Mapping[str, str] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache if cache is not None else FolderCache()
        source = DEFAULT_WELL_KNOWN_FOLDERS if well_known is None else well_known
        self._well_known = {name.casefold(): folder_id for name, folder_id in source.items()}

    @property
    def cache(self) -> FolderCache:
        return self._cache

    def resolve(self, owner_id: str, path: str | FolderPath) -> str:
        """Return the folder id for ``path``, creating missing segments."""

        return self._resolve(owner_id, _as_path(path), create=True)

    def resolve_folder(self, owner_id: str, path: str | FolderPath) -> ResolvedFolder:
        folder_path = _as_path(path)
        folder_id = self._resolve(owner_id, folder_path, create=True)
        return ResolvedFolder(owner_id=owner_id, path=folder_path, folder_id=folder_id)

    def find(self, owner_id: str, path: str | FolderPath) -> str | None:
        """Look ``path`` up without creating anything; None when a segment is missing."""

        try:
            return self._resolve(owner_id, _as_path(path), create=False)
        except PathResolutionError as exc:
            if exc.kind is ResolutionFailure.NOT_FOUND:
                return None
            raise

    def _resolve(self, owner_id: str, path: FolderPath, *, create: bool) -> str:
        if path.is_empty:
            LOGGER.warning("Folder path resulted in zero segments (owner=%s)", owner_id)
            raise PathResolutionError(
                ResolutionFailure.EMPTY_PATH,
                "Folder path has no segments.",
                owner_id=owner_id,
                path=str(path),
            )

        cached = self._cache.get(owner_id, path)
        if cached is not None:
            LOGGER.debug("Using cached folder id for '%s' (owner=%s): %s", path, owner_id, cached)
            return cached

        LOGGER.info("Resolving folder path '%s' (owner=%s)", path, owner_id)
        start, remaining = self._well_known_start(path)
        if start is None:
            folder_id = self._resolve_segment(owner_id, path, None, remaining[0], create=create)
            remaining = remaining[1:]
        else:
            folder_id = start
        for segment in remaining:
            folder_id = self._resolve_segment(owner_id, path, folder_id, segment, create=create)

        stored = self._cache.put(owner_id, path, folder_id)
        LOGGER.info("Resolved folder path '%s' (owner=%s) to %s", path, owner_id, stored)
        return stored

    def _well_known_start(self, path: FolderPath) -> tuple[str | None, tuple[str, ...]]:
        first = path.segments[0]
        folder_id = self._well_known.get(first.casefold())
        if folder_id is None:
            return None, path.segments
        LOGGER.debug("Segment '%s' is well-known folder '%s'", first, folder_id)
        return folder_id, path.segments[1:]

    def _resolve_segment(
        self,
        owner_id: str,
        path: FolderPath,
        parent_id: str | None,
        segment: str,
        *,
        create: bool,
    ) -> str:
        LOGGER.debug(
            "Processing segment '%s' under parent '%s' (owner=%s)",
            segment,
            parent_id or "root",
            owner_id,
        )
        found = self._find(owner_id, path, parent_id, segment)
        if found is not None:
            return found
        if not create:
            LOGGER.warning(
                "Folder segment '%s' of '%s' not found under parent '%s' (owner=%s)",
                segment,
                path,
                parent_id or "root",
                owner_id,
            )
            raise PathResolutionError(
                ResolutionFailure.NOT_FOUND,
                f"Folder segment '{segment}' of '{path}' does not exist.",
                owner_id=owner_id,
                path=str(path),
                segment=segment,
            )

        LOGGER.info(
            "Folder segment '%s' not found under parent '%s' (owner=%s); creating it",
            segment,
            parent_id or "root",
            owner_id,
        )
        try:
            created = self._store.create_child_folder(owner_id, parent_id, segment)
        except FolderConflictError as exc:
            LOGGER.warning(
                "Creating segment '%s' conflicted with an existing folder; re-fetching (%s)",
                segment,
                exc,
            )
            recovered = self._find(owner_id, path, parent_id, segment)
            if recovered is None:
                LOGGER.error(
                    "Segment '%s' reported as existing but could not be found under '%s' "
                    "(owner=%s)",
                    segment,
                    parent_id or "root",
                    owner_id,
                )
                raise PathResolutionError(
                    ResolutionFailure.CONFLICT_UNRESOLVED,
                    f"Folder segment '{segment}' conflicts but cannot be found.",
                    owner_id=owner_id,
                    path=str(path),
                    segment=segment,
                    cause=exc,
                ) from exc
            return recovered
        except MailStoreError as exc:
            LOGGER.error(
                "Failed to create folder segment '%s' under '%s' (owner=%s): %s",
                segment,
                parent_id or "root",
                owner_id,
                exc,
            )
            raise PathResolutionError(
                ResolutionFailure.CREATE_FAILED,
                f"Could not create folder segment '{segment}': {exc}",
                owner_id=owner_id,
                path=str(path),
                segment=segment,
                cause=exc,
            ) from exc

        LOGGER.info(
            "Created folder segment '%s' with id %s under '%s' (owner=%s)",
            segment,
            created.id,
            parent_id or "root",
            owner_id,
        )
        return created.id

    def _find(
        self,
        owner_id: str,
        path: FolderPath,
        parent_id: str | None,
        segment: str,
    ) -> str | None:
        try:
            folder = self._store.find_child_folder(owner_id, parent_id, segment)
        except MailStoreError as exc:
            LOGGER.error(
                "Error finding folder segment '%s' under '%s' (owner=%s): %s",
                segment,
                parent_id or "root",
                owner_id,
                exc,
            )
            raise PathResolutionError(
                ResolutionFailure.TRANSPORT_ERROR,
                f"Lookup of folder segment '{segment}' failed: {exc}",
                owner_id=owner_id,
                path=str(path),
                segment=segment,
                cause=exc,
            ) from exc
        if folder is None or not folder.id:
            return None
        LOGGER.debug("Found folder segment '%s' with id %s", segment, folder.id)
        return folder.id


def _as_path(path: str | FolderPath) -> FolderPath:
    if isinstance(path, FolderPath):
        return path
    return FolderPath.parse(path)


__all__ = [
    "DEFAULT_WELL_KNOWN_FOLDERS",
    "FolderCache",
    "FolderPathResolver",
    "PathResolutionError",
    "ResolutionFailure",
]
