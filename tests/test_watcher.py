import threading

import pytest
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from conftest import FakeObserver, wait_for
from mdpreview import watcher as watcher_module
from mdpreview.errors import WatchSubscriptionError
from mdpreview.file_store import FileStore
from mdpreview.watcher import ChangeWatcher, MarkdownEventHandler


@pytest.fixture
def docs(tmp_path):
    root = tmp_path / "docs"
    (root / "sub").mkdir(parents=True)
    (root / "a.md").write_text("# A")
    (root / "sub" / "b.markdown").write_text("# B")
    (root / "notes.txt").write_text("not markdown")
    return root


def make_watcher(root, **kwargs):
    store = FileStore()
    calls = []
    watcher = ChangeWatcher(
        root,
        store,
        key_prefix="docs",
        observer_factory=FakeObserver,
        **kwargs,
    )
    watcher.add_listener(calls.append)
    return watcher, store, calls


def test_scan_seeds_store_with_markdown_only(docs):
    watcher, store, calls = make_watcher(docs)
    assert watcher.scan() == 2
    assert store.paths() == ["docs/a.md", "docs/sub/b.markdown"]
    assert store.get("docs/a.md") == "# A"
    assert calls == []


def test_scan_skips_unreadable_files(docs):
    (docs / "broken.md").write_bytes(b"\xff\xfe\x00")
    watcher, store, _ = make_watcher(docs)
    assert watcher.scan() == 2
    assert "docs/broken.md" not in store


def test_change_updates_store_and_notifies_once(docs):
    watcher, store, calls = make_watcher(docs)
    watcher.scan()
    (docs / "a.md").write_text("# A!")
    assert watcher.process("modified", "a.md")
    assert store.get("docs/a.md") == "# A!"
    assert calls == ["docs/a.md"]
    # a second native event for the same write is coalesced
    assert not watcher.process("modified", "a.md")
    assert calls == ["docs/a.md"]


def test_new_file_is_added_on_first_event(docs):
    watcher, store, calls = make_watcher(docs)
    watcher.scan()
    (docs / "sub" / "new.md").write_text("fresh")
    assert watcher.process("created", "sub/new.md")
    assert store.get("docs/sub/new.md") == "fresh"
    assert calls == ["docs/sub/new.md"]


def test_read_failure_suppresses_notification(docs):
    watcher, store, calls = make_watcher(docs)
    watcher.scan()
    (docs / "a.md").unlink()
    assert not watcher.process("modified", "a.md")
    assert store.get("docs/a.md") == "# A"
    assert calls == []


def test_deleted_file_is_flagged_stale_not_removed(docs):
    watcher, store, calls = make_watcher(docs)
    watcher.scan()
    (docs / "a.md").unlink()
    assert not watcher.process("deleted", "a.md")
    entry = store.entry("docs/a.md")
    assert entry.stale
    assert entry.raw_content == "# A"
    # recreated with identical text still counts as a change
    (docs / "a.md").write_text("# A")
    assert watcher.process("created", "a.md")
    assert not store.entry("docs/a.md").stale
    assert calls == ["docs/a.md"]


def test_failing_listener_does_not_block_others(docs):
    watcher, store, calls = make_watcher(docs)

    def broken(key):
        raise RuntimeError("listener bug")

    watcher._listeners.insert(0, broken)
    watcher.scan()
    (docs / "a.md").write_text("changed")
    assert watcher.process("modified", "a.md")
    assert calls == ["docs/a.md"]


def test_event_handler_filters_and_queues_in_order(docs):
    watcher, store, calls = make_watcher(docs)
    watcher.scan()
    handler = MarkdownEventHandler(watcher)
    handler.on_modified(DirModifiedEvent(str(docs / "sub")))
    handler.on_modified(FileModifiedEvent(str(docs / "notes.txt")))
    handler.on_modified(FileModifiedEvent(str(docs.parent / "outside.md")))
    assert watcher.events.empty()

    (docs / "a.md").write_text("one")
    handler.on_modified(FileModifiedEvent(str(docs / "a.md")))
    (docs / "c.md").write_text("moved here")
    handler.on_moved(FileMovedEvent(str(docs / "sub" / "b.markdown"),
                                    str(docs / "c.md")))
    handler.on_created(FileCreatedEvent(str(docs / "c.md")))
    handler.on_deleted(FileDeletedEvent(str(docs / "gone.md")))
    queued = list(watcher.events.queue)
    assert queued == [
        ("modified", "a.md"),
        ("deleted", "sub/b.markdown"),
        ("moved", "c.md"),
        ("created", "c.md"),
        ("deleted", "gone.md"),
    ]
    assert watcher.run_pending() == 5
    assert calls == ["docs/a.md", "docs/c.md"]
    assert store.entry("docs/sub/b.markdown").stale


def test_single_file_watch_only_admits_that_file(tmp_path):
    target = tmp_path / "notes.md"
    target.write_text("notes")
    (tmp_path / "other.md").write_text("other")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "notes.md").write_text("nested")
    store = FileStore()
    watcher = ChangeWatcher.for_file(
        target, store, observer_factory=FakeObserver
    )
    assert watcher.scan() == 1
    assert store.paths() == [target.as_posix()]
    watcher.enqueue("modified", str(tmp_path / "other.md"))
    watcher.enqueue("modified", str(tmp_path / "sub" / "notes.md"))
    assert watcher.events.empty()


def test_start_subscribes_and_stop_releases(docs):
    watcher, store, calls = make_watcher(docs)
    watcher.start()
    observer = watcher.observer
    assert observer.started
    assert observer.scheduled == [(str(docs), True)]
    assert len(store) == 2

    (docs / "a.md").write_text("# A!")
    observer.handler.on_modified(FileModifiedEvent(str(docs / "a.md")))
    assert wait_for(lambda: calls == ["docs/a.md"])

    watcher.stop()
    assert observer.stopped and observer.joined
    assert watcher.observer is None
    assert not any(
        thread.name == "mdpreview-dispatcher" and thread.is_alive()
        for thread in threading.enumerate()
    )


def test_subscription_starts_before_scan(docs):
    seen = []

    class EagerObserver(FakeObserver):
        def start(self):
            super().start()
            seen.append(len(store))
            # an edit that lands while the scan is still running
            (docs / "a.md").write_text("# A edited")
            self.handler.on_modified(FileModifiedEvent(str(docs / "a.md")))

    store = FileStore()
    watcher = ChangeWatcher(
        docs, store, key_prefix="docs", observer_factory=EagerObserver
    )
    watcher.start()
    try:
        assert seen == [0]
        assert wait_for(lambda: store.get("docs/a.md") == "# A edited")
    finally:
        watcher.stop()


def test_missing_root_is_a_subscription_error(tmp_path):
    watcher = ChangeWatcher(
        tmp_path / "nope", FileStore(), observer_factory=FakeObserver
    )
    with pytest.raises(WatchSubscriptionError):
        watcher.start()


def test_observer_failure_is_a_subscription_error(docs):
    class DeniedObserver(FakeObserver):
        def start(self):
            raise PermissionError("permission denied")

    watcher = ChangeWatcher(docs, FileStore(), observer_factory=DeniedObserver)
    with pytest.raises(WatchSubscriptionError) as excinfo:
        watcher.start()
    assert "permission denied" in str(excinfo.value)


def test_default_observer_is_watchdog(docs, monkeypatch):
    monkeypatch.setattr(watcher_module, "Observer", FakeObserver)
    watcher = ChangeWatcher(docs, FileStore())
    watcher.start()
    assert isinstance(watcher.observer, FakeObserver)
    watcher.stop()
