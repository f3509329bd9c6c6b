from __future__ import annotations

import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from aimailman.folders import FolderPathResolver
from aimailman.gateway import ClassificationGateway
from aimailman.pipeline import ProcessingCycleOrchestrator
from aimailman.types import DEFAULT_REVIEW_CATEGORY, EligibilityWindow
from tests.fakes import NOW, OWNER, FakeMailStore, ScriptedLanguageModel

TARGET_FOLDERS = ("Mailman/Newsletter", "Mailman/Receipts", "Archive/Travel")


class EventCollector:
    """Thread-safe helper for waiting on asynchronous events."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self._condition = threading.Condition()

    def add(self, event: dict[str, Any]) -> None:
        with self._condition:
            self.events.append(event)
            self._condition.notify_all()

    def wait_for(self, count: int, timeout: float = 30.0) -> bool:
        """Wait until a minimum number of events have been collected."""

        deadline = time.monotonic() + timeout
        with self._condition:
            while len(self.events) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(timeout=remaining)
            return True


def build_orchestrator(
    store: FakeMailStore,
    model: ScriptedLanguageModel,
    *,
    target_folders: tuple[str, ...] = TARGET_FOLDERS,
    max_emails_per_run: int = 20,
) -> ProcessingCycleOrchestrator:
    """Wire the real resolver, gateway, and orchestrator around in-memory fakes."""

    resolver = FolderPathResolver(store)
    gateway = ClassificationGateway(
        llm=model,
        resolver=resolver,
        store=store,
        owner_id=OWNER,
        target_folders=target_folders,
    )
    return ProcessingCycleOrchestrator(
        store=store,
        resolver=resolver,
        gateway=gateway,
        owner_id=OWNER,
        source_folder="Inbox",
        review_category=DEFAULT_REVIEW_CATEGORY,
        window=EligibilityWindow(min_age=timedelta(minutes=5), max_age=timedelta(days=7)),
        max_emails_per_run=max_emails_per_run,
        clock=lambda: NOW,
    )


@pytest.fixture()
def store() -> FakeMailStore:
    return FakeMailStore()


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests in this package as integration."""

    package_root = Path(__file__).resolve().parent
    integration_mark = pytest.mark.integration
    for item in items:
        try:
            path = Path(item.fspath).resolve()
        except OSError:
            continue
        if package_root in path.parents:
            item.add_marker(integration_mark)
