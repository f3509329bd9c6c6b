from __future__ import annotations

from datetime import timedelta

from aimailman.folders import FolderPathResolver
from aimailman.store import DRY_RUN_FOLDER_PREFIX, DryRunMailStore, MailStore, close_store
from aimailman.types import EligibilityWindow
from tests.fakes import OWNER, FakeMailStore


def test_fake_store_satisfies_protocol() -> None:
    assert isinstance(FakeMailStore(), MailStore)
    assert isinstance(DryRunMailStore(FakeMailStore()), MailStore)


def test_dry_run_passes_reads_through() -> None:
    inner = FakeMailStore()
    folder_id = inner.add_folder("Existing")
    inner.add_message("m1")
    store = DryRunMailStore(inner)
    window = EligibilityWindow(min_age=timedelta(minutes=5), max_age=timedelta(days=7))

    folder = store.find_child_folder(OWNER, None, "Existing")
    messages = store.fetch_candidates(OWNER, "inbox", "✓ AI", window, 10)

    assert folder is not None and folder.id == folder_id
    assert [message.id for message in messages] == ["m1"]


def test_dry_run_skips_mutations() -> None:
    inner = FakeMailStore()
    inner.add_message("m1")
    store = DryRunMailStore(inner)

    created = store.create_child_folder(OWNER, None, "Mailman")
    store.move_message(OWNER, "m1", created.id)
    store.add_categories(OWNER, "m1", ["✓ AI"])

    assert created.id == f"{DRY_RUN_FOLDER_PREFIX}Mailman"
    assert inner.mutation_calls == 0
    assert inner.messages["m1"].folder_id == "inbox"


def test_close_store_closes_wrapped_store() -> None:
    class Closable(FakeMailStore):
        closed = False

        def close(self) -> None:
            self.closed = True

    inner = Closable()
    close_store(DryRunMailStore(inner))
    close_store(FakeMailStore())

    assert inner.closed is True


def test_dry_run_never_looks_up_children_of_placeholder_folders() -> None:
    inner = FakeMailStore()
    inner.strict_parents = True
    store = DryRunMailStore(inner)

    folder_id = FolderPathResolver(store).resolve(OWNER, "Mailman/Newsletter")

    assert folder_id == f"{DRY_RUN_FOLDER_PREFIX}Newsletter"
    assert inner.find_calls == [(OWNER, None, "Mailman")]
    assert inner.mutation_calls == 0


def test_dry_run_move_reports_no_new_id() -> None:
    inner = FakeMailStore()
    inner.add_message("m1")

    assert DryRunMailStore(inner).move_message(OWNER, "m1", "inbox") is None
