"""Classification gateway: asks the language model what to do with one message."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .extractor import build_message_context
from .extractor.context import DEFAULT_BODY_MAX_LENGTH, DEFAULT_SUBJECT_MAX_LENGTH
from .folders import FolderPathResolver, PathResolutionError
from .llm import LanguageModelClient, LanguageModelError, ToolCapability
from .logging import short_id
from .prompts import SYSTEM_PROMPT, TRIAGE_PROMPT, fill_folder_catalog
from .store import MailStore, MailStoreError
from .types import (
    ERROR_PREFIX,
    CandidateMessage,
    ClassificationDecision,
    ClassifierError,
    FolderPath,
    MoveToFolder,
    NoAction,
)

LOGGER = logging.getLogger(__name__)

MOVE_TOOL_NAME = "move_to_folder"
MOVE_TOOL_DESCRIPTION = (
    "Move the email into one of the listed destination folders. "
    "Use the exact folder path from the list."
)
MOVE_TOOL_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "messageId": {
            "type": "string",
            "description": "Id of the email being classified.",
        },
        "folderName": {
            "type": "string",
            "description": "Destination folder path, e.g. 'Mailman/Newsletters'.",
        },
    },
    "required": ["messageId", "folderName"],
}


@dataclass(frozen=True)
class MoveOutcome:
    """Structured record of one ``move_to_folder`` invocation."""

    message_id: str
    folder_path: str
    succeeded: bool
    detail: str
    folder_id: str | None = None
    new_message_id: str | None = None


class _MoveSession:
    """Move capability bound to a single candidate message."""

    def __init__(self, gateway: ClassificationGateway, message_id: str) -> None:
        self._gateway = gateway
        self._message_id = message_id
        self.outcomes: list[MoveOutcome] = []

    @property
    def moved(self) -> MoveOutcome | None:
        return next((outcome for outcome in self.outcomes if outcome.succeeded), None)

    def capability(self) -> ToolCapability:
        return ToolCapability(
            name=MOVE_TOOL_NAME,
            description=MOVE_TOOL_DESCRIPTION,
            parameters=MOVE_TOOL_PARAMETERS,
            handler=self.move_to_folder,
        )

    def move_to_folder(self, **arguments: Any) -> str:
        message_id = str(arguments.get("messageId") or "").strip()
        folder_name = str(arguments.get("folderName") or "").strip()
        outcome = self._move(message_id, folder_name)
        self.outcomes.append(outcome)
        if outcome.succeeded:
            return outcome.detail
        return f"{ERROR_PREFIX} {outcome.detail}"

    def _move(self, message_id: str, folder_name: str) -> MoveOutcome:
        gateway = self._gateway
        owner_id = gateway.owner_id
        LOGGER.info(
            "Model requested move of message %s to '%s' (owner=%s)",
            short_id(message_id),
            folder_name,
            owner_id,
        )
        if message_id != self._message_id:
            LOGGER.warning(
                "Refusing move for message %s; the message under review is %s",
                short_id(message_id),
                short_id(self._message_id),
            )
            return self._refused(
                message_id,
                folder_name,
                "this message id is not the one being classified.",
            )
        previous = self.moved
        if previous is not None:
            LOGGER.warning(
                "Refusing second move of message %s; already moved to '%s'",
                short_id(message_id),
                previous.folder_path,
            )
            return self._refused(
                message_id,
                folder_name,
                f"message already moved to '{previous.folder_path}'.",
            )
        path = gateway.catalog_path(folder_name)
        if path is None:
            LOGGER.warning(
                "Refusing move to '%s'; not a configured destination folder", folder_name
            )
            return self._refused(
                message_id,
                folder_name,
                f"'{folder_name}' is not one of the allowed folders.",
            )

        try:
            folder_id = gateway.resolver.resolve(owner_id, path)
        except PathResolutionError as exc:
            LOGGER.error(
                "Could not resolve folder '%s' for message %s (owner=%s): %s",
                path,
                short_id(message_id),
                owner_id,
                exc,
            )
            return self._refused(
                message_id,
                str(path),
                f"folder '{path}' could not be resolved: {exc}",
            )

        try:
            reported_id = gateway.store.move_message(owner_id, message_id, folder_id)
        except MailStoreError as exc:
            if exc.status_code == 404:
                gateway.resolver.cache.invalidate(owner_id, path)
                LOGGER.warning(
                    "Dropped cached id for '%s' after a 404 move (owner=%s)", path, owner_id
                )
            LOGGER.error(
                "Failed to move message %s to '%s' (owner=%s): %s",
                short_id(message_id),
                path,
                owner_id,
                exc,
            )
            return self._refused(
                message_id,
                str(path),
                f"moving to '{path}' failed: {exc}",
            )

        LOGGER.info("Moved message %s to '%s' (owner=%s)", short_id(message_id), path, owner_id)
        return MoveOutcome(
            message_id=message_id,
            folder_path=str(path),
            succeeded=True,
            detail=f"Successfully moved message {message_id} to folder '{path}'.",
            folder_id=folder_id,
            new_message_id=reported_id if reported_id and reported_id != message_id else None,
        )

    @staticmethod
    def _refused(message_id: str, folder_path: str, detail: str) -> MoveOutcome:
        return MoveOutcome(
            message_id=message_id,
            folder_path=folder_path,
            succeeded=False,
            detail=detail,
        )


class ClassificationGateway:
    """Turns one candidate message into a classification decision.

    The model sees a bounded rendering of the message and a closed catalog of
    destination folders. It may act through exactly one capability,
    ``move_to_folder``; every invocation is recorded as a :class:`MoveOutcome`
    and those records decide the result before the model's free text does.
    """

    def __init__(
        self,
        *,
        llm: LanguageModelClient,
        resolver: FolderPathResolver,
        store: MailStore,
        owner_id: str,
        target_folders: Iterable[str],
        template: str = TRIAGE_PROMPT,
        system_prompt: str | None = SYSTEM_PROMPT,
        subject_max_length: int = DEFAULT_SUBJECT_MAX_LENGTH,
        body_max_length: int = DEFAULT_BODY_MAX_LENGTH,
    ) -> None:
        self.llm = llm
        self.resolver = resolver
        self.store = store
        self.owner_id = owner_id
        self._catalog: dict[str, FolderPath] = {}
        for raw in target_folders:
            path = FolderPath.parse(raw)
            if path.is_empty:
                LOGGER.warning("Ignoring empty destination folder entry %r", raw)
                continue
            self._catalog.setdefault(path.cache_key, path)
        self._prompt = fill_folder_catalog(template, self.catalog)
        self._system_prompt = system_prompt
        self._subject_max_length = subject_max_length
        self._body_max_length = body_max_length

    @property
    def catalog(self) -> list[str]:
        """Destination folder paths the model may choose from."""

        return [str(path) for path in self._catalog.values()]

    @property
    def prompt(self) -> str:
        return self._prompt

    def catalog_path(self, folder_name: str) -> FolderPath | None:
        """Return the configured path matching ``folder_name``, if any."""

        return self._catalog.get(FolderPath.parse(folder_name).cache_key)

    def classify(self, candidate: CandidateMessage) -> ClassificationDecision:
        context = build_message_context(
            candidate,
            subject_max_length=self._subject_max_length,
            body_max_length=self._body_max_length,
        )
        session = _MoveSession(self, candidate.id)
        LOGGER.debug(
            "Classifying message %s from %s: %s",
            short_id(candidate.id),
            context.sender,
            context.subject,
        )
        try:
            text = self.llm.invoke(
                self._prompt,
                context.as_variables(),
                [session.capability()],
                system_prompt=self._system_prompt,
            )
        except LanguageModelError as exc:
            LOGGER.error("Model call failed for message %s: %s", short_id(candidate.id), exc)
            return _after_failure(session, f"{ERROR_PREFIX} AI processing failed - {exc}")
        except Exception as exc:
            LOGGER.exception("Unexpected failure classifying message %s", short_id(candidate.id))
            return _after_failure(session, f"{ERROR_PREFIX} AI processing failed - {exc}")

        decision = decide(session.outcomes, text)
        LOGGER.info(
            "Message %s classified as %s",
            short_id(candidate.id),
            type(decision).__name__,
        )
        return decision


def decide(outcomes: Iterable[MoveOutcome], text: str) -> ClassificationDecision:
    """Map recorded move outcomes and the model's final text to a decision."""

    recorded = list(outcomes)
    for outcome in recorded:
        if outcome.succeeded:
            return MoveToFolder(
                folder_path=outcome.folder_path,
                explanation=text,
                new_message_id=outcome.new_message_id,
            )
    if recorded:
        return ClassifierError(message=f"{ERROR_PREFIX} {recorded[-1].detail}")
    if is_error_text(text):
        return ClassifierError(message=text)
    return NoAction(explanation=text) if text else NoAction()


def is_error_text(text: str) -> bool:
    """Return True when ``text`` opens with the error prefix, in any letter case."""

    return text[: len(ERROR_PREFIX)].casefold() == ERROR_PREFIX.casefold()


def _after_failure(session: _MoveSession, message: str) -> ClassificationDecision:
    # A move that already happened stands even if the conversation broke afterwards.
    moved = session.moved
    if moved is not None:
        return MoveToFolder(
            folder_path=moved.folder_path,
            explanation=message,
            new_message_id=moved.new_message_id,
        )
    return ClassifierError(message=message)


__all__ = [
    "MOVE_TOOL_NAME",
    "ClassificationGateway",
    "MoveOutcome",
    "decide",
    "is_error_text",
]
