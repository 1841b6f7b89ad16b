"""Best-effort extraction of a component artifact from raw model output.

The backend is asked to answer in the form::

    JSX:
    <markup>

    CSS:
    <style>

but nothing forces it to. Parsing therefore never raises: a missing marker
just leaves the matching field empty.
"""

from __future__ import annotations

import re
from typing import Any

from ..domain.session_models import Artifact


_MARKUP_RE = re.compile(r"JSX:\s*([\s\S]*?)(?=CSS:|$)")
_STYLE_RE = re.compile(r"CSS:\s*([\s\S]*)$")


def parse_artifact(text: Any) -> Artifact:
    if not isinstance(text, str):
        return Artifact()
    markup_match = _MARKUP_RE.search(text)
    style_match = _STYLE_RE.search(text)
    return Artifact(
        markup=markup_match.group(1).strip() if markup_match else "",
        style=style_match.group(1).strip() if style_match else "",
    )
