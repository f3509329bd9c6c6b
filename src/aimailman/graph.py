"""Microsoft Graph implementation of the mail store."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Generator, Iterable
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from .config import GraphConfig
from .store import FolderConflictError, MailStoreError
from .types import CandidateMessage, EligibilityWindow, Folder

LOGGER = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
FOLDER_EXISTS_CODE = "ErrorFolderExists"
MESSAGE_FIELDS = "id,subject,from,bodyPreview,body,receivedDateTime,isRead,categories"
TOKEN_EXPIRY_MARGIN_SECONDS = 60.0
# Ids stay stable when a message moves between folders.
IMMUTABLE_ID_PREFERENCE = 'IdType="ImmutableId"'


class GraphError(MailStoreError):
    """Raised when Microsoft Graph answers with a non-success status."""

    def __init__(
        self, message: str, *, status_code: int | None = None, code: str | None = None
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.code = code


class GraphAuthError(GraphError):
    """Raised when an access token cannot be obtained."""


class ClientCredentialsAuth(httpx.Auth):
    """OAuth2 client-credentials flow, caching the token until shortly before expiry."""

    requires_response_body = True

    def __init__(
        self,
        *,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str = GRAPH_SCOPE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        self._clock = clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    @classmethod
    def from_config(cls, config: GraphConfig) -> ClientCredentialsAuth:
        return cls(
            token_url=f"{config.authority}{config.tenant_id}/oauth2/v2.0/token",
            client_id=config.client_id,
            client_secret=config.client_secret,
        )

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self._cached_token()
        if token is None:
            token = self._store_token((yield self._token_request()))
        request.headers["Authorization"] = f"Bearer {token}"
        response = yield request

        if response.status_code == 401:
            LOGGER.info("Graph rejected the access token; requesting a new one")
            self.invalidate()
            token = self._store_token((yield self._token_request()))
            request.headers["Authorization"] = f"Bearer {token}"
            yield request

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def _cached_token(self) -> str | None:
        with self._lock:
            if self._token is not None and self._clock() < self._expires_at:
                return self._token
            return None

    def _token_request(self) -> httpx.Request:
        LOGGER.debug("Requesting Graph access token from %s", self._token_url)
        return httpx.Request(
            "POST",
            self._token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "scope": self._scope,
            },
        )

    def _store_token(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code != 200 or not payload.get("access_token"):
            code = payload.get("error")
            description = payload.get("error_description") or response.text
            raise GraphAuthError(
                f"Token request failed ({response.status_code}): {description}",
                status_code=response.status_code,
                code=code,
            )
        lifetime = float(payload.get("expires_in", 3600))
        with self._lock:
            self._token = payload["access_token"]
            self._expires_at = self._clock() + max(lifetime - TOKEN_EXPIRY_MARGIN_SECONDS, 0.0)
            return self._token


class GraphMailStore:
    """Mail store backed by the Microsoft Graph v1.0 REST API."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, config: GraphConfig) -> GraphMailStore:
        client = httpx.Client(
            base_url=config.base_url,
            auth=ClientCredentialsAuth.from_config(config),
            timeout=config.timeout_seconds,
            headers={"Accept": "application/json", "Prefer": IMMUTABLE_ID_PREFERENCE},
        )
        return cls(client)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GraphMailStore:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def find_child_folder(
        self,
        owner_id: str,
        parent_id: str | None,
        display_name: str,
    ) -> Folder | None:
        params = {
            "$filter": f"displayName eq '{odata_literal(display_name)}'",
            "$top": "1",
            "$select": "id,displayName",
        }
        response = self._request("GET", _folders_url(owner_id, parent_id), params=params)
        folders = response.json().get("value") or []
        if not folders:
            return None
        return _parse_folder(folders[0])

    def create_child_folder(
        self,
        owner_id: str,
        parent_id: str | None,
        display_name: str,
    ) -> Folder:
        response = self._request(
            "POST",
            _folders_url(owner_id, parent_id),
            json={"displayName": display_name},
        )
        return _parse_folder(response.json())

    def fetch_candidates(
        self,
        owner_id: str,
        folder_id: str,
        exclude_category: str,
        window: EligibilityWindow,
        limit: int,
    ) -> list[CandidateMessage]:
        oldest, newest = window.bounds(self._clock())
        query = (
            f"not(categories/any(c:c eq '{odata_literal(exclude_category)}'))"
            f" and receivedDateTime ge {_odata_timestamp(oldest)}"
            f" and receivedDateTime le {_odata_timestamp(newest)}"
        )
        params = {
            "$filter": query,
            "$orderby": "receivedDateTime desc",
            "$top": str(limit),
            "$select": MESSAGE_FIELDS,
        }
        url = f"/users/{_segment(owner_id)}/mailFolders/{_segment(folder_id)}/messages"
        LOGGER.debug("Fetching messages with filter: %s", query)
        response = self._request("GET", url, params=params)
        messages = [_parse_message(item) for item in response.json().get("value") or []]
        LOGGER.info("Graph returned %s candidate message(s) (owner=%s)", len(messages), owner_id)
        return messages[:limit]

    def move_message(
        self, owner_id: str, message_id: str, destination_folder_id: str
    ) -> str | None:
        response = self._request(
            "POST",
            f"{_message_url(owner_id, message_id)}/move",
            json={"destinationId": destination_folder_id},
        )
        try:
            payload = response.json()
        except ValueError:
            return None
        new_id = payload.get("id") if isinstance(payload, dict) else None
        return str(new_id) if new_id else None

    def add_categories(self, owner_id: str, message_id: str, categories: Iterable[str]) -> None:
        url = _message_url(owner_id, message_id)
        response = self._request("GET", url, params={"$select": "categories"})
        existing = list(response.json().get("categories") or [])
        merged = merge_categories(existing, categories)
        if len(merged) == len(existing):
            LOGGER.debug("Message already carries the requested categories")
            return
        self._request("PATCH", url, json={"categories": merged})

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise MailStoreError(f"Graph request {method} {url} failed: {exc}") from exc
        if response.is_success:
            return response

        code, message = _error_details(response)
        detail = f"Graph {method} {url} returned {response.status_code}: {code or 'error'}"
        if message:
            detail = f"{detail} {message}"
        detail = detail.rstrip()
        if response.status_code == 409 and code == FOLDER_EXISTS_CODE:
            raise FolderConflictError(detail, status_code=response.status_code)
        raise GraphError(detail, status_code=response.status_code, code=code)


def merge_categories(existing: Iterable[str], additions: Iterable[str]) -> list[str]:
    """Append ``additions`` not already present, comparing case-insensitively."""

    merged = list(existing)
    seen = {category.casefold() for category in merged}
    for category in additions:
        if category.casefold() not in seen:
            merged.append(category)
            seen.add(category.casefold())
    return merged


def odata_literal(value: str) -> str:
    return value.replace("'", "''")


def _segment(value: str) -> str:
    return quote(value, safe="@")


def _folders_url(owner_id: str, parent_id: str | None) -> str:
    base = f"/users/{_segment(owner_id)}/mailFolders"
    if parent_id is None:
        return base
    return f"{base}/{_segment(parent_id)}/childFolders"


def _message_url(owner_id: str, message_id: str) -> str:
    return f"/users/{_segment(owner_id)}/messages/{_segment(message_id)}"


def _odata_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return None, response.text
    if not isinstance(error, dict):
        return None, str(error)
    return error.get("code"), error.get("message") or ""


def _parse_folder(item: dict[str, Any]) -> Folder:
    return Folder(id=item.get("id") or "", display_name=item.get("displayName") or "")


def _parse_message(item: dict[str, Any]) -> CandidateMessage:
    address = (item.get("from") or {}).get("emailAddress") or {}
    body = item.get("body") or {}
    received = item.get("receivedDateTime")
    return CandidateMessage(
        id=item.get("id") or "",
        sender=address.get("address") or address.get("name") or "",
        subject=item.get("subject") or "",
        body_preview=item.get("bodyPreview") or "",
        body=body.get("content") or "",
        body_type=(body.get("contentType") or "text").lower(),
        received_at=datetime.fromisoformat(received) if received else datetime.now(timezone.utc),
        is_read=bool(item.get("isRead")),
        categories=frozenset(item.get("categories") or ()),
    )


__all__ = [
    "IMMUTABLE_ID_PREFERENCE",
    "ClientCredentialsAuth",
    "GraphAuthError",
    "GraphError",
    "GraphMailStore",
    "merge_categories",
    "odata_literal",
]
