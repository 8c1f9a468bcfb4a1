"""Template rendering for guest notification email.

Templates live next to this module and use ``{{ name }}`` placeholders;
unknown or ``None`` values render as empty strings. Values placed in
``*.html.j2`` templates are HTML-escaped.
"""
from __future__ import annotations

import html
import re
from pathlib import Path
from typing import Any, Mapping

from .providers import OutboundEmail

_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER = re.compile(r"{{\s*(\w+)\s*}}")


def _render(template_name: str, context: Mapping[str, Any]) -> str:
    source = (_TEMPLATE_DIR / template_name).read_text(encoding="utf-8")
    escape = template_name.endswith(".html.j2")

    def _substitute(match: re.Match[str]) -> str:
        value = context.get(match.group(1))
        text = "" if value is None else str(value)
        return html.escape(text) if escape else text

    return _PLACEHOLDER.sub(_substitute, source).strip()


def render_email(kind: str, to: str, context: Mapping[str, Any]) -> OutboundEmail:
    return OutboundEmail(
        to=to,
        subject=_render(f"{kind}_subject.txt.j2", context),
        text_body=_render(f"{kind}_body.txt.j2", context),
        html_body=_render(f"{kind}_body.html.j2", context),
    )


def render_table_ready(to: str, context: Mapping[str, Any]) -> OutboundEmail:
    return render_email("table_ready", to, context)


__all__ = ["render_email", "render_table_ready"]
