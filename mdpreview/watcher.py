"""Filesystem watching for markdown sources.

Watchdog calls its handlers on the observer thread. Those callbacks only
put ``(kind, relative_path)`` pairs on a queue; one dispatcher thread takes
them off in order, refreshes the FileStore and tells the listeners. Events
for a given path are therefore handled in the order they were observed.
"""

import logging
import os
import queue
import threading
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .errors import FileReadError, WatchSubscriptionError
from .file_store import read_markdown, store_key

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIXES = (".md", ".markdown")

CREATED = "created"
MODIFIED = "modified"
MOVED = "moved"
DELETED = "deleted"


def is_markdown(path):
    return str(path).lower().endswith(MARKDOWN_SUFFIXES)


class MarkdownEventHandler(FileSystemEventHandler):
    def __init__(self, watcher):
        self.watcher = watcher

    def on_created(self, event):
        if not event.is_directory:
            self.watcher.enqueue(CREATED, event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self.watcher.enqueue(MODIFIED, event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self.watcher.enqueue(DELETED, event.src_path)
            self.watcher.enqueue(MOVED, event.dest_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self.watcher.enqueue(DELETED, event.src_path)


class ChangeWatcher:
    """Keep a FileStore in sync with the markdown files under ``root``.

    ``key_prefix`` is what store keys start with (the directory as the user
    typed it), so ``docs/a.md`` is found under ``docs/a.md`` whatever the
    absolute location. ``only`` restricts the watcher to a single
    root-relative file.
    """

    def __init__(
        self,
        root,
        store,
        key_prefix=None,
        recursive=True,
        only=None,
        observer_factory=None,
    ):
        self.root = Path(root)
        self.store = store
        self.key_prefix = (
            self.root.as_posix() if key_prefix is None else key_prefix
        )
        self.recursive = recursive
        self.only = only
        self.observer_factory = (
            Observer if observer_factory is None else observer_factory
        )
        self.observer = None
        self.events = queue.Queue()
        self._listeners = []
        self._dispatcher = None

    @classmethod
    def for_file(cls, path, store, observer_factory=None):
        """Watch a single file through a non-recursive watch on its parent."""
        path = Path(path)
        prefix = path.parent.as_posix()
        return cls(
            path.parent,
            store,
            key_prefix=prefix,
            recursive=False,
            only=path.name,
            observer_factory=observer_factory,
        )

    def add_listener(self, listener):
        """``listener(key)`` is called once per changed file."""
        self._listeners.append(listener)

    def key_for(self, rel):
        return store_key(self.key_prefix, rel)

    def relative(self, path):
        path = os.fsdecode(path)
        rel = os.path.relpath(
            os.path.abspath(path), os.path.abspath(self.root)
        )
        if rel in (os.curdir, os.pardir) or rel.startswith(os.pardir + os.sep):
            return None
        return Path(rel).as_posix()

    def accepts(self, rel):
        if rel is None or not is_markdown(rel):
            return False
        if not self.recursive and "/" in rel:
            return False
        return self.only is None or rel == self.only

    def scan(self):
        """Seed the store with every matching file; return how many."""
        count = 0
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            if not self.recursive:
                dirnames.clear()
            for name in sorted(filenames):
                rel = self.relative(os.path.join(dirpath, name))
                if not self.accepts(rel):
                    continue
                try:
                    content = read_markdown(self.root / rel)
                except FileReadError as exc:
                    logger.warning("Skipping %s: %s", rel, exc.cause)
                    continue
                self.store.put(self.key_for(rel), content)
                count += 1
        return count

    def start(self):
        if not self.root.is_dir():
            raise WatchSubscriptionError(
                f"Cannot watch {self.root}: not an existing directory"
            )
        observer = self.observer_factory()
        try:
            observer.schedule(
                MarkdownEventHandler(self),
                str(self.root),
                recursive=self.recursive,
            )
            observer.start()
        except OSError as exc:
            raise WatchSubscriptionError(
                f"Cannot watch {self.root}: {exc}"
            ) from exc
        self.observer = observer
        # subscribed first, so edits made during the scan are queued
        found = self.scan()
        logger.info("Found %d markdown file(s) under %s", found, self.root)
        self._dispatcher = threading.Thread(
            target=self._dispatch_forever,
            name="mdpreview-dispatcher",
            daemon=True,
        )
        self._dispatcher.start()

    def stop(self):
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None
        if self._dispatcher is not None:
            self.events.put(None)
            self._dispatcher.join()
            self._dispatcher = None

    def enqueue(self, kind, path):
        rel = self.relative(path)
        if self.accepts(rel):
            self.events.put((kind, rel))

    def run_pending(self):
        """Handle every queued event on the calling thread."""
        handled = 0
        while True:
            try:
                item = self.events.get_nowait()
            except queue.Empty:
                return handled
            if item is None:
                return handled
            self.process(*item)
            handled += 1

    def _dispatch_forever(self):
        while True:
            item = self.events.get()
            if item is None:
                return
            try:
                self.process(*item)
            except Exception:
                logger.exception("Failed to handle change event %r", item)

    def process(self, kind, rel):
        """Apply one event to the store; return True if listeners ran."""
        key = self.key_for(rel)
        if kind == DELETED:
            if self.store.mark_stale(key):
                logger.info("Removed from disk: %s", key)
            return False
        try:
            content = read_markdown(self.root / rel)
        except FileReadError as exc:
            # deleted or locked between the event and the read
            logger.warning("Ignoring change to %s: %s", key, exc.cause)
            return False
        entry = self.store.entry(key)
        if entry is not None and not entry.stale:
            if entry.raw_content == content:
                logger.debug("Unchanged content for %s", key)
                return False
        self.store.put(key, content)
        logger.info("Change detected: %s", key)
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:
                logger.exception("Change listener failed for %s", key)
        return True
