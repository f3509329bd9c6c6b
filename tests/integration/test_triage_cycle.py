from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from datetime import timedelta

import pytest

from aimailman.llm import LanguageModelError, ToolCapability
from aimailman.runtime import CycleScheduler
from aimailman.types import DEFAULT_REVIEW_CATEGORY
from tests.fakes import FakeMailStore, ScriptedLanguageModel, move_to, reply
from tests.integration.conftest import EventCollector, build_orchestrator


def test_cycle_moves_tags_and_does_not_refetch(store: FakeMailStore) -> None:
    store.add_message("news-1", subject="Weekly digest", age=timedelta(minutes=20))
    store.add_message("personal-1", subject="Dinner on Friday?", age=timedelta(hours=2))
    model = ScriptedLanguageModel(
        {
            "news-1": move_to("Mailman/Newsletter", "Looks like a newsletter."),
            "personal-1": reply("Personal mail, leaving it in the inbox."),
        }
    )
    orchestrator = build_orchestrator(store, model)

    first = orchestrator.run_cycle()

    assert first.fetched == 2
    assert first.moved == 1
    assert first.no_action == 1
    assert first.tagged == 2
    assert store.path_of(store.messages["news-1"].folder_id) == "Mailman/Newsletter"
    assert store.messages["personal-1"].folder_id == "inbox"
    for stored in store.messages.values():
        assert stored.categories == [DEFAULT_REVIEW_CATEGORY]
    # Newest first.
    assert [call["variables"]["messageId"] for call in model.calls] == ["news-1", "personal-1"]

    second = orchestrator.run_cycle()

    assert second.fetched == 0
    assert len(model.calls) == 2


def test_destination_folders_are_created_once(store: FakeMailStore) -> None:
    for index in range(3):
        store.add_message(f"news-{index}", age=timedelta(minutes=10 + index))
    orchestrator = build_orchestrator(
        store, ScriptedLanguageModel(move_to("mailman/newsletter"))
    )

    report = orchestrator.run_cycle()

    assert report.moved == 3
    assert [name for _, _, name in store.create_calls] == ["Mailman", "Newsletter"]
    assert orchestrator.metrics.folder_moves == {"Mailman/Newsletter": 3}


def test_classifier_error_is_retried_next_cycle(store: FakeMailStore) -> None:
    store.add_message("flaky-1", subject="Invoice 42")
    attempts: list[str] = []

    def responder(variables: Mapping[str, str], tools: Sequence[ToolCapability]) -> str:
        attempts.append(variables["messageId"])
        if len(attempts) == 1:
            raise LanguageModelError("rate limited")
        return move_to("Mailman/Receipts")(variables, tools)

    orchestrator = build_orchestrator(store, ScriptedLanguageModel(responder))

    first = orchestrator.run_cycle()

    assert first.classifier_errors == 1
    assert first.tagged == 0
    assert store.messages["flaky-1"].categories == []

    second = orchestrator.run_cycle()

    assert second.fetched == 1
    assert second.moved == 1
    assert store.messages["flaky-1"].categories == [DEFAULT_REVIEW_CATEGORY]
    assert store.path_of(store.messages["flaky-1"].folder_id) == "Mailman/Receipts"


def test_off_catalog_destination_leaves_message_untagged(store: FakeMailStore) -> None:
    store.add_message("m1")
    orchestrator = build_orchestrator(store, ScriptedLanguageModel(move_to("Secret/Stash")))

    report = orchestrator.run_cycle()

    assert report.classifier_errors == 1
    assert store.create_calls == []
    assert store.messages["m1"].folder_id == "inbox"
    assert store.messages["m1"].categories == []


def test_window_and_limit_bound_each_cycle(store: FakeMailStore) -> None:
    store.add_message("too-new", age=timedelta(minutes=1))
    store.add_message("too-old", age=timedelta(days=30))
    store.add_message("tagged", categories=[DEFAULT_REVIEW_CATEGORY])
    for index in range(4):
        store.add_message(f"eligible-{index}", age=timedelta(hours=index + 1))
    model = ScriptedLanguageModel(reply("No action needed"))
    orchestrator = build_orchestrator(store, model, max_emails_per_run=3)

    report = orchestrator.run_cycle()

    assert report.fetched == 3
    assert [call["variables"]["messageId"] for call in model.calls] == [
        "eligible-0",
        "eligible-1",
        "eligible-2",
    ]
    assert store.messages["too-new"].categories == []
    assert store.messages["too-old"].categories == []


@pytest.mark.timeout(20)
def test_scheduler_processes_mail_until_stopped(store: FakeMailStore) -> None:
    store.add_message("news-1")
    collector = EventCollector()

    def responder(variables: Mapping[str, str], tools: Sequence[ToolCapability]) -> str:
        text = move_to("Mailman/Newsletter")(variables, tools)
        collector.add({"message_id": variables["messageId"], "text": text})
        return text

    orchestrator = build_orchestrator(store, ScriptedLanguageModel(responder))
    scheduler = CycleScheduler(orchestrator, interval_seconds=1, poll_seconds=0.05)
    thread = threading.Thread(target=scheduler.run, daemon=True)
    thread.start()
    try:
        assert collector.wait_for(1, timeout=10)
        # Give the next cycle a chance to run; it must not see the message again.
        threading.Event().wait(1.5)
    finally:
        scheduler.stop()
        thread.join(timeout=10)

    assert not thread.is_alive()
    assert len(collector.events) == 1
    snapshot = scheduler.status_snapshot()
    assert snapshot["moved"] == 1
    assert snapshot["tagged"] == 1
    assert snapshot["cycles"] >= 1


def test_store_assigned_ids_after_move_are_tagged_and_not_refetched(
    store: FakeMailStore,
) -> None:
    store.renumber_on_move = True
    store.add_message("news-1")
    orchestrator = build_orchestrator(
        store, ScriptedLanguageModel(move_to("Mailman/Newsletter"))
    )

    first = orchestrator.run_cycle()

    assert (first.moved, first.tagged, first.failures) == (1, 1, 0)
    assert store.messages["news-1-moved"].categories == [DEFAULT_REVIEW_CATEGORY]
    assert orchestrator.run_cycle().fetched == 0
