"""Markdown rendering and the diagnostics shown when it goes wrong."""

import logging
import traceback
from dataclasses import dataclass
from pathlib import Path

import markdown
from jinja2 import Environment, FileSystemLoader, select_autoescape
from markdown.extensions.codehilite import CodeHiliteExtension
from pygments.formatters import HtmlFormatter

from .errors import RenderError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
HIGHLIGHT_CLASS = "codehilite"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
    keep_trailing_newline=True,
)


def template_environment():
    return _env


def render_markdown(text: str) -> str:
    """Convert markdown to an HTML fragment.

    A fresh ``markdown.Markdown`` instance is built per call because the
    converter keeps per-document state (footnotes, toc) and is not safe to
    share between request threads.
    """
    md = markdown.Markdown(
        extensions=[
            "extra",
            "sane_lists",
            "toc",
            CodeHiliteExtension(css_class=HIGHLIGHT_CLASS, guess_lang=False),
        ],
        output_format="html",
    )
    return md.convert(text)


def highlight_css() -> str:
    return HtmlFormatter().get_style_defs("." + HIGHLIGHT_CLASS)


@dataclass(frozen=True)
class RenderResult:
    html: str | None = None
    error_kind: str | None = None
    message: str | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def failure(cls, message, detail=None):
        return cls(
            error_kind=RenderError.__name__, message=message, detail=detail
        )


def render_to_result(text, renderer=render_markdown) -> RenderResult:
    """Run ``renderer`` and capture any failure as a structured result."""
    try:
        html = renderer(text)
    except Exception as exc:
        # Third-party renderers raise anything; report them all as RenderError.
        logger.warning("Render failed: %s: %s", type(exc).__name__, exc)
        return RenderResult.failure(
            f"{type(exc).__name__}: {exc}", traceback.format_exc()
        )
    if not isinstance(html, str):
        return RenderResult.failure(
            f"Renderer returned {type(html).__name__}, expected str"
        )
    return RenderResult(html=html)


def diagnostic_fragment(error_kind, message, detail=None, title="Error"):
    """HTML fragment describing a failure, shown in place of content."""
    return _env.get_template("diagnostic.html").render(
        title=title,
        error_kind=error_kind,
        message=message,
        detail=detail,
    )


def result_fragment(result: RenderResult) -> str:
    if result.ok:
        return result.html
    return diagnostic_fragment(
        result.error_kind,
        result.message,
        result.detail,
        title="Failed to render markdown",
    )
