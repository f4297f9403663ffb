"""Turn a content request into a complete HTML page.

Every page is a full document with status 200, even when the file is
missing or the renderer fails; the viewer script only ever has to reload.
"""

import html
import logging
import posixpath
import traceback
from urllib.parse import quote, unquote, urlsplit

from .errors import FileReadError
from .file_store import FileStore, read_markdown, store_key
from .notify import DEFAULT_KEEPALIVE, SEND_TIMEOUT, ViewerRegistry
from .render import (
    diagnostic_fragment,
    highlight_css,
    render_markdown,
    render_to_result,
    result_fragment,
    template_environment,
)

logger = logging.getLogger(__name__)

EVENTS_PATH = "/__events"
# tried in order when a watch-mode request names no file
INDEX_NAMES = ("README.md", "index.md")
STALE_NOTE = (
    "This file was removed from disk; showing the last known content."
)


class PreviewSession:
    """Everything a request handler needs, passed explicitly.

    One session per running server, so tests can run several side by side.
    """

    def __init__(
        self,
        config,
        store=None,
        viewers=None,
        renderer=render_markdown,
        keepalive=DEFAULT_KEEPALIVE,
        send_timeout=SEND_TIMEOUT,
    ):
        self.config = config
        self.store = FileStore() if store is None else store
        self.viewers = ViewerRegistry() if viewers is None else viewers
        self.renderer = renderer
        self.keepalive = keepalive
        self.send_timeout = send_timeout

    @property
    def watch_mode(self):
        return self.config.mode == "watch"

    def notify_changed(self, key):
        """Change-watcher listener: tell every viewer to reload."""
        reached = self.viewers.broadcast()
        logger.debug("Reload for %s sent to %d viewer(s)", key, reached)


def default_target(session):
    if not session.watch_mode:
        return session.config.target
    for name in INDEX_NAMES:
        key = store_key(session.config.target, name)
        if key in session.store:
            return key
    paths = session.store.paths()
    if paths:
        return paths[0]
    return session.config.target


def resolve_request_path(session, raw_path):
    """Map the request target to a file key (a store key or a disk path)."""
    path = urlsplit(raw_path or "").path
    if path.startswith("/"):
        path = path[1:]
    if not path:
        return default_target(session)
    return unquote(path)


def file_href(key):
    # "/" is encoded too, so absolute keys never look like //host/ URLs
    return "/" + quote(key, safe="")


def display_name(session, key):
    target = session.config.target
    if target not in ("", ".") and key.startswith(target.rstrip("/") + "/"):
        return posixpath.relpath(key, target)
    return key


def not_found_fragment(key):
    return (
        '<div class="mdpreview-error">'
        "<h1>File not found</h1>"
        f"<p><code>{html.escape(key)}</code> is not among the watched"
        " markdown files.</p>"
        "</div>"
    )


def _watched_fragment(session, key):
    entry = session.store.entry(key)
    if entry is None:
        return not_found_fragment(key), None
    note = STALE_NOTE if entry.stale else None
    if entry.last_rendered_html is not None:
        return entry.last_rendered_html, note
    result = render_to_result(entry.raw_content, session.renderer)
    if result.ok:
        session.store.cache_render(key, entry.raw_content, result.html)
    return result_fragment(result), note


def _disk_fragment(session, key):
    try:
        content = read_markdown(key)
    except FileReadError as exc:
        logger.warning("%s", exc)
        return diagnostic_fragment(
            type(exc.cause).__name__,
            str(exc.cause),
            title="Failed to load markdown file",
        )
    return result_fragment(render_to_result(content, session.renderer))


def sidebar_files(session, current):
    files = []
    for key in session.store.paths():
        entry = session.store.entry(key)
        files.append(
            {
                "path": key,
                "name": display_name(session, key),
                "href": file_href(key),
                "current": key == current,
                "stale": entry is not None and entry.stale,
            }
        )
    return files


def render_shell(content, title, files=None, note=None, events_url=None):
    """Wrap a rendered fragment in the full page layout."""
    return (
        template_environment()
        .get_template("page.html")
        .render(
            content=content,
            title=title,
            files=files or [],
            note=note,
            events_url=events_url,
            highlight_css=highlight_css(),
        )
    )


def fallback_page(exc):
    # Used when building the normal page failed; no templates involved.
    detail = "".join(
        traceback.format_exception(type(exc), exc, exc.__traceback__)
    )
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"UTF-8\">"
        "<title>MD Preview - Error</title></head><body>"
        "<h1>Error</h1>"
        f"<p>{html.escape(type(exc).__name__)}: {html.escape(str(exc))}</p>"
        f"<pre>{html.escape(detail)}</pre>"
        f"<script>new EventSource({EVENTS_PATH!r}).onmessage ="
        " () => location.reload();</script>"
        "</body></html>\n"
    )


def render_page(session, raw_path):
    """Return the HTML document for the request target ``raw_path``."""
    key = None
    try:
        key = resolve_request_path(session, raw_path)
        if session.watch_mode:
            content, note = _watched_fragment(session, key)
            files = sidebar_files(session, key)
        else:
            content, note = _disk_fragment(session, key), None
            files = None
        return render_shell(
            content,
            posixpath.basename(key) or key,
            files=files,
            note=note,
            events_url=EVENTS_PATH,
        )
    except Exception as exc:
        logger.exception("Failed to build page for %r", key or raw_path)
        return fallback_page(exc)
