"""HTTP front end for the serve and watch commands."""

import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

from .command_registry import register_command
from .config import DEFAULT_HOST, DEFAULT_PORT, build_config
from .errors import ConfigError
from .notify import ViewerConnection
from .render import render_markdown
from .router import EVENTS_PATH, PreviewSession, render_page
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


class PreviewRequestHandler(BaseHTTPRequestHandler):
    session = None
    server_version = "mdpreview"

    def do_GET(self):
        path = urlsplit(self.path).path
        if path == EVENTS_PATH:
            self.serve_events()
        elif path == "/favicon.ico":
            self.send_response(204)
            self.end_headers()
        else:
            self.serve_page()

    def serve_page(self):
        body = render_page(self.session, self.path).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def serve_events(self):
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        # stalled writes time out and drop the viewer
        self.connection.settimeout(self.session.send_timeout)
        connection = ViewerConnection(self.wfile)
        self.session.viewers.serve_connection(
            connection, keepalive=self.session.keepalive
        )

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def make_handler(session):
    class Handler(PreviewRequestHandler):
        pass

    Handler.session = session
    return Handler


def _serve_forever(httpd: ThreadingHTTPServer):
    """Run the HTTP server until shutdown is called."""
    httpd.serve_forever()


class PreviewServer:
    def __init__(self, session, host=DEFAULT_HOST, port=DEFAULT_PORT):
        self.session = session
        self.httpd = ThreadingHTTPServer((host, port), make_handler(session))
        self.httpd.daemon_threads = True
        self._thread = None

    @property
    def port(self):
        return self.httpd.server_address[1]

    @property
    def url(self):
        host = self.httpd.server_address[0]
        return f"http://{host}:{self.port}/"

    def start(self):
        self._thread = threading.Thread(
            target=_serve_forever, args=(self.httpd,), daemon=True
        )
        self._thread.start()

    def shutdown(self):
        # viewers first, otherwise their request threads keep the sockets
        self.session.viewers.close_all()
        if self._thread is not None:
            self.httpd.shutdown()
            self._thread.join()
            self._thread = None
        self.httpd.server_close()


def sleep_until_interrupted():
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass


def create_watcher(session):
    config = session.config
    if session.watch_mode:
        watcher = ChangeWatcher(
            config.target_path, session.store, key_prefix=config.target
        )
    else:
        # serve reads from disk per request; the watcher only drives reloads
        watcher = ChangeWatcher.for_file(config.target_path, session.store)
    watcher.add_listener(session.notify_changed)
    return watcher


def run_preview(
    config, renderer=render_markdown, wait=sleep_until_interrupted
):
    """Start watching and serving; block in ``wait`` then clean up."""
    session = PreviewSession(config, renderer=renderer)
    watcher = create_watcher(session)
    watcher.start()
    try:
        server = PreviewServer(session, config.host, config.port)
    except OSError as exc:
        watcher.stop()
        raise ConfigError(
            f"Could not start server on port {config.port}: {exc}"
        ) from exc
    if session.watch_mode:
        print("Watching directory:")
        print(" ", config.target_path.resolve())
    print(f"Serving {config.target} at {server.url}")
    server.start()
    try:
        wait()
    finally:
        watcher.stop()
        server.shutdown()
    return 0


@register_command(
    "Serve a single markdown file and reload the browser when it changes",
    help={
        "file": "Markdown file to preview (default: README.md)",
        "port": "Port number (0 picks a free port)",
        "host": "Interface to bind",
    },
    short={"file": "-f", "port": "-p"},
)
def serve(file="README.md", port=DEFAULT_PORT, host=DEFAULT_HOST):
    return run_preview(build_config("serve", file=file, port=port, host=host))


@register_command(
    "Watch a directory of markdown files and serve them with a file list",
    help={
        "dir": "Directory to watch recursively",
        "port": "Port number (0 picks a free port)",
        "host": "Interface to bind",
    },
    short={"dir": "-d", "port": "-p"},
)
def watch(dir=".", port=DEFAULT_PORT, host=DEFAULT_HOST):
    return run_preview(build_config("watch", dir=dir, port=port, host=host))
