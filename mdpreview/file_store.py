import posixpath
import threading
from dataclasses import dataclass
from pathlib import Path

from .errors import FileReadError


@dataclass
class WatchedFile:
    path: str
    raw_content: str
    last_rendered_html: str | None = None
    # set when the file disappeared from disk; the entry is kept and served
    stale: bool = False


def read_markdown(path):
    """Read a markdown source as UTF-8, raising FileReadError on failure."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise FileReadError(path, exc) from exc


class FileStore:
    """Last-known content of every watched markdown file.

    All access goes through one lock: the watcher's dispatcher thread writes
    while HTTP request threads read.
    """

    def __init__(self):
        self._files = {}
        self._lock = threading.Lock()

    def get(self, path):
        """Return the stored content of ``path``, or None if unknown."""
        with self._lock:
            entry = self._files.get(path)
            return None if entry is None else entry.raw_content

    def put(self, path, content):
        with self._lock:
            entry = self._files.get(path)
            if entry is None:
                self._files[path] = WatchedFile(path, content)
            else:
                entry.raw_content = content
                entry.last_rendered_html = None
                entry.stale = False

    def entry(self, path):
        """Return a snapshot copy of the entry for ``path``, or None."""
        with self._lock:
            entry = self._files.get(path)
            if entry is None:
                return None
            return WatchedFile(
                entry.path,
                entry.raw_content,
                entry.last_rendered_html,
                entry.stale,
            )

    def mark_stale(self, path):
        with self._lock:
            entry = self._files.get(path)
            if entry is None:
                return False
            entry.stale = True
            return True

    def cache_render(self, path, content, html):
        # Only cache if nobody replaced the content while we were rendering.
        with self._lock:
            entry = self._files.get(path)
            if entry is None or entry.raw_content != content:
                return False
            entry.last_rendered_html = html
            return True

    def paths(self):
        with self._lock:
            return sorted(self._files)

    def __contains__(self, path):
        with self._lock:
            return path in self._files

    def __len__(self):
        with self._lock:
            return len(self._files)


def store_key(prefix, rel):
    """Join a watch target and a root-relative path into a store key."""
    if prefix in ("", "."):
        return rel
    return posixpath.join(prefix, rel)
