"""Processing cycle: fetch untagged mail, classify it, and tag what was handled."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .folders import FolderPathResolver, PathResolutionError
from .gateway import ClassificationGateway
from .logging import short_id
from .store import MailStore, MailStoreError
from .types import (
    CandidateMessage,
    ClassificationDecision,
    ClassifierError,
    EligibilityWindow,
    MoveToFolder,
    NoAction,
    should_tag,
)

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CycleReport:
    """Counters for a single processing cycle."""

    started_at: datetime
    fetched: int = 0
    moved: int = 0
    no_action: int = 0
    classifier_errors: int = 0
    failures: int = 0
    skipped: int = 0
    tagged: int = 0
    cancelled: bool = False

    def record(self, decision: ClassificationDecision) -> None:
        if isinstance(decision, MoveToFolder):
            self.moved += 1
        elif isinstance(decision, NoAction):
            self.no_action += 1
        elif isinstance(decision, ClassifierError):
            self.classifier_errors += 1

    def summary(self) -> str:
        text = (
            f"fetched={self.fetched} moved={self.moved} no_action={self.no_action} "
            f"errors={self.classifier_errors} failures={self.failures} "
            f"skipped={self.skipped} tagged={self.tagged}"
        )
        if self.cancelled:
            text += " (cancelled)"
        return text


@dataclass
class PipelineMetrics:
    """Counters accumulated across cycles for status output."""

    cycles: int = 0
    fetched: int = 0
    moved: int = 0
    no_action: int = 0
    classifier_errors: int = 0
    failures: int = 0
    tagged: int = 0
    folder_moves: dict[str, int] = field(default_factory=dict)
    last_cycle_at: datetime | None = None

    def record_cycle(self, report: CycleReport) -> None:
        self.cycles += 1
        self.fetched += report.fetched
        self.moved += report.moved
        self.no_action += report.no_action
        self.classifier_errors += report.classifier_errors
        self.failures += report.failures
        self.tagged += report.tagged
        self.last_cycle_at = report.started_at

    def record_move(self, folder_path: str) -> None:
        self.folder_moves[folder_path] = self.folder_moves.get(folder_path, 0) + 1

    def snapshot(self) -> dict[str, object]:
        return {
            "cycles": self.cycles,
            "fetched": self.fetched,
            "moved": self.moved,
            "no_action": self.no_action,
            "classifier_errors": self.classifier_errors,
            "failures": self.failures,
            "tagged": self.tagged,
            "folder_moves": dict(self.folder_moves),
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
        }


class ProcessingCycleOrchestrator:
    """Runs one bounded processing cycle at a time against a single mailbox."""

    def __init__(
        self,
        *,
        store: MailStore,
        resolver: FolderPathResolver,
        gateway: ClassificationGateway,
        owner_id: str,
        source_folder: str,
        review_category: str,
        window: EligibilityWindow,
        max_emails_per_run: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._gateway = gateway
        self.owner_id = owner_id
        self.source_folder = source_folder
        self.review_category = review_category
        self.window = window
        self.max_emails_per_run = max_emails_per_run
        self._clock = clock
        self.metrics = PipelineMetrics()

    def run_cycle(self, cancel: threading.Event | None = None) -> CycleReport:
        """Process up to ``max_emails_per_run`` candidates; never raises."""

        report = CycleReport(started_at=self._clock())
        try:
            candidates = self.fetch_candidates()
            report.fetched = len(candidates)
            if not candidates:
                LOGGER.info("No emails found to process (owner=%s)", self.owner_id)
            else:
                LOGGER.info(
                    "Processing %s email(s) from '%s' (owner=%s)",
                    len(candidates),
                    self.source_folder,
                    self.owner_id,
                )
            for candidate in candidates:
                if cancel is not None and cancel.is_set():
                    LOGGER.info("Cycle cancelled; remaining messages wait for the next cycle")
                    report.cancelled = True
                    break
                self._process(candidate, report)
        except Exception:
            LOGGER.exception("Processing cycle failed (owner=%s)", self.owner_id)
        self.metrics.record_cycle(report)
        LOGGER.info("Cycle finished (owner=%s): %s", self.owner_id, report.summary())
        return report

    def fetch_candidates(self) -> list[CandidateMessage]:
        """Return untagged messages in the eligibility window, newest first.

        Any reason the cycle cannot start (invalid window, missing source
        folder, store failure) is logged and yields an empty list.
        """

        if not self.window.is_valid:
            LOGGER.warning(
                "Eligibility window is empty (min age %s, max age %s); nothing to fetch",
                self.window.min_age,
                self.window.max_age,
            )
            return []
        try:
            folder_id = self._resolver.find(self.owner_id, self.source_folder)
        except PathResolutionError as exc:
            LOGGER.error(
                "Could not look up source folder '%s' (owner=%s): %s",
                self.source_folder,
                self.owner_id,
                exc,
            )
            return []
        if folder_id is None:
            LOGGER.error(
                "Source folder '%s' not found (owner=%s)", self.source_folder, self.owner_id
            )
            return []
        try:
            return self._store.fetch_candidates(
                self.owner_id,
                folder_id,
                self.review_category,
                self.window,
                self.max_emails_per_run,
            )
        except MailStoreError as exc:
            LOGGER.error(
                "Fetching messages from '%s' failed (owner=%s): %s",
                self.source_folder,
                self.owner_id,
                exc,
            )
            return []

    def process_message(self, candidate: CandidateMessage) -> ClassificationDecision | None:
        """Classify and tag a single message outside a scheduled cycle."""

        report = CycleReport(started_at=self._clock(), fetched=1)
        decision = self._process(candidate, report)
        self.metrics.record_cycle(report)
        return decision

    def _process(
        self, candidate: CandidateMessage, report: CycleReport
    ) -> ClassificationDecision | None:
        if not candidate.id:
            LOGGER.warning(
                "Skipping message without an id (subject=%r, owner=%s)",
                candidate.subject,
                self.owner_id,
            )
            report.skipped += 1
            return None

        LOGGER.info("Processing message %s (owner=%s)", short_id(candidate.id), self.owner_id)
        try:
            decision = self._gateway.classify(candidate)
            report.record(decision)
            if isinstance(decision, MoveToFolder):
                self.metrics.record_move(decision.folder_path)
            if not should_tag(decision):
                LOGGER.warning(
                    "Message %s not tagged; it will be retried next cycle (%s)",
                    short_id(candidate.id),
                    getattr(decision, "message", decision),
                )
                return decision
            tag_id = candidate.id
            if isinstance(decision, MoveToFolder) and decision.new_message_id:
                tag_id = decision.new_message_id
            self._store.add_categories(self.owner_id, tag_id, [self.review_category])
            report.tagged += 1
            LOGGER.info(
                "Tagged message %s with '%s' (owner=%s)",
                short_id(candidate.id),
                self.review_category,
                self.owner_id,
            )
            return decision
        except Exception:
            report.failures += 1
            LOGGER.exception(
                "Failed processing message %s (owner=%s)", short_id(candidate.id), self.owner_id
            )
            return None


__all__ = ["CycleReport", "PipelineMetrics", "ProcessingCycleOrchestrator"]
