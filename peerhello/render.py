from __future__ import annotations

import html
import logging
from pathlib import Path
from string import Template
from typing import Callable

from .models import Accepted, ResolutionOutcome

DEFAULT_UI_DIR = Path(__file__).resolve().parent / "ui"
INDEX_TEMPLATE = "index.html"

_LOGGER = logging.getLogger("peerhello.render")

_FALLBACK_PAGE = (
    b"<!doctype html>\n<html><head><meta charset=\"utf-8\"><title>hello</title></head>"
    b"<body><h1>Hello!</h1></body></html>\n"
)

_BLANK_CONTEXT = {"display_name": "", "login_name": "", "first_initial": ""}


def page_context(outcome: ResolutionOutcome) -> dict[str, str]:
    if isinstance(outcome, Accepted):
        return {
            "display_name": html.escape(outcome.identity.display_name),
            "login_name": html.escape(outcome.identity.login_name),
            "first_initial": html.escape(outcome.first_initial),
        }
    return dict(_BLANK_CONTEXT)


def file_template_loader(path: Path, *, reload: bool) -> Callable[[], Template]:
    """Template loader for ``path``.

    With ``reload`` the file is read on every call so edits show up without a
    restart; otherwise it is read once, here.
    """
    if reload:
        def _load() -> Template:
            return Template(path.read_text(encoding="utf-8"))

        return _load

    template = Template(path.read_text(encoding="utf-8"))
    return lambda: template


class PageRenderer:
    def __init__(self, loader: Callable[[], Template]) -> None:
        self._loader = loader

    def _render_context(self, context: dict[str, str]) -> bytes:
        return self._loader().substitute(context).encode("utf-8")

    def render(self, outcome: ResolutionOutcome) -> bytes:
        try:
            return self._render_context(page_context(outcome))
        except Exception:
            _LOGGER.exception("error rendering template for %s outcome", "accepted" if outcome.accepted else "rejected")
        try:
            return self._render_context(dict(_BLANK_CONTEXT))
        except Exception:
            _LOGGER.exception("error rendering template with blank context")
        return _FALLBACK_PAGE


def build_renderer(ui_dir: str | Path | None = None, *, dev: bool = False) -> PageRenderer:
    base = Path(ui_dir) if ui_dir else DEFAULT_UI_DIR
    return PageRenderer(file_template_loader(base / INDEX_TEMPLATE, reload=dev))
