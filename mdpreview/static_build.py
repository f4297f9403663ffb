"""Batch rendering of markdown sources into standalone HTML files."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .command_registry import register_command
from .config import DEFAULT_OUT_DIR, build_config
from .errors import ConfigError, FileReadError
from .file_store import FileStore, read_markdown
from .render import render_markdown, render_to_result
from .router import render_shell
from .server import sleep_until_interrupted
from .watcher import ChangeWatcher, is_markdown

logger = logging.getLogger(__name__)


@dataclass
class BuildReport:
    written: list = field(default_factory=list)
    unchanged: list = field(default_factory=list)
    # (source, error kind, message)
    failures: list = field(default_factory=list)
    # artifact path -> resolved source that produced it
    claimed: dict = field(default_factory=dict)

    @property
    def ok(self):
        return not self.failures

    def fail(self, source, kind, message):
        logger.error("Failed to build %s: %s: %s", source, kind, message)
        self.failures.append((str(source), kind, message))


def output_path(source, out_dir, root=None):
    """Where the artifact for ``source`` goes: same name, ``.html``."""
    source = Path(source)
    rel = source.relative_to(root) if root is not None else Path(source.name)
    return Path(out_dir) / rel.with_suffix(".html")


def inside(path, directory):
    return Path(directory).resolve() in Path(path).resolve().parents


def build_file(
    source,
    out_dir,
    renderer=render_markdown,
    root=None,
    report=None,
    content=None,
):
    """Render one markdown file into ``out_dir``.

    ``content`` skips the disk read when the caller already holds the text.
    Returns the artifact path, or None if the file failed.
    """
    source = Path(source)
    report = BuildReport() if report is None else report
    target = output_path(source, out_dir, root)
    owner = report.claimed.setdefault(target, source.resolve())
    if owner != source.resolve():
        # a.md and a.markdown both map to a.html
        message = f"{target} is already built from {owner}"
        report.fail(source, "OutputCollision", message)
        return None
    if content is None:
        try:
            content = read_markdown(source)
        except FileReadError as exc:
            report.fail(source, type(exc).__name__, str(exc))
            return None
    result = render_to_result(content, renderer)
    if not result.ok:
        report.fail(source, result.error_kind, result.message)
        return None
    data = render_shell(result.html, source.name).encode("utf-8")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_file() and target.read_bytes() == data:
            # leave the mtime alone so downstream watchers stay quiet
            report.unchanged.append(target)
            return target
        target.write_bytes(data)
    except OSError as exc:
        report.fail(source, "FileWriteError", str(exc))
        return None
    report.written.append(target)
    return target


def markdown_sources(root, out_dir=None):
    root = Path(root)
    for path in sorted(root.rglob("*")):
        if not path.is_file() or not is_markdown(path.name):
            continue
        if out_dir is not None and inside(path, out_dir):
            continue
        yield path


def build_directory(root, out_dir, renderer=render_markdown, report=None):
    report = BuildReport() if report is None else report
    Path(out_dir).mkdir(parents=True, exist_ok=True)
    for source in markdown_sources(root, out_dir):
        build_file(source, out_dir, renderer, root=root, report=report)
    return report


def run_build(config, renderer=render_markdown):
    out_dir = Path(config.out_dir)
    if config.target_is_dir:
        if not config.target_path.is_dir():
            raise ConfigError(
                f"--dir {config.target} is not an existing directory"
            )
        return build_directory(config.target_path, out_dir, renderer)
    report = BuildReport()
    out_dir.mkdir(parents=True, exist_ok=True)
    build_file(config.target_path, out_dir, renderer, report=report)
    return report


def print_report(report):
    for path in report.written:
        print(f"Wrote {path}")
    for path in report.unchanged:
        print(f"Unchanged {path}")
    for source, kind, message in report.failures:
        print(f"Failed {source}: {kind}: {message}")


def watch_and_build(
    config, renderer=render_markdown, wait=sleep_until_interrupted
):
    """Build once, then rebuild each changed file until ``wait`` returns."""
    initial = run_build(config, renderer)
    print_report(initial)
    store = FileStore()
    if config.target_is_dir:
        watcher = ChangeWatcher(
            config.target_path, store, key_prefix=config.target
        )
        root = config.target_path
    else:
        watcher = ChangeWatcher.for_file(config.target_path, store)
        root = None

    def rebuild(key):
        if inside(key, config.out_dir):
            return
        report = BuildReport(claimed=initial.claimed)
        build_file(
            Path(key),
            config.out_dir,
            renderer,
            root=root,
            report=report,
            content=store.get(key),
        )
        print_report(report)

    watcher.add_listener(rebuild)
    watcher.start()
    print(f"Watching {config.target} for changes")
    try:
        wait()
    finally:
        watcher.stop()
    return 0


@register_command(
    "Render markdown to static HTML files",
    help={
        "file": "Markdown file to render",
        "dir": "Directory whose markdown files are all rendered",
        "out": "Output directory (created if missing)",
        "watch": "Keep running and rebuild files as they change",
    },
    short={"file": "-f", "dir": "-d", "out": "-o"},
)
def build(file=None, dir=None, out=DEFAULT_OUT_DIR, watch=False):
    config = build_config("build", file=file, dir=dir, out=out, watch=watch)
    if config.rebuild_on_change:
        return watch_and_build(config)
    report = run_build(config)
    print_report(report)
    return 0 if report.ok else 1
