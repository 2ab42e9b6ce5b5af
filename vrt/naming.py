"""Deterministic screenshot filenames and result keys."""

from __future__ import annotations

import re

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_-]")


def sanitize(value: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_-]`` with an underscore."""
    return _UNSAFE_CHARS_RE.sub("_", value)


def screenshot_filename(scenario_id: str, viewport_key: str) -> str:
    """Filename shared by the candidate, baseline and diff images of one task."""
    return f"{sanitize(scenario_id)}__{sanitize(viewport_key)}.png"


def result_key(scenario_id: str, viewport_key: str) -> str:
    return f"{scenario_id}__{viewport_key}"
