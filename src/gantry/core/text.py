# src/gantry/core/text.py
"""Small text helpers shared by the executor and publisher."""

import re

# CSI sequences (colours, cursor movement) plus OSC sequences (hyperlinks, titles)
_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences; viewers are not terminals."""
    return _ANSI_PATTERN.sub("", text)


def slugify(value: str, *, fallback: str = "app") -> str:
    """Lower-case, hyphen-separated, URL-safe form of ``value``.

    >>> slugify("My Cool App!")
    'my-cool-app'
    """
    slug = _SLUG_INVALID.sub("-", value.strip().lower()).strip("-")
    return slug[:63].rstrip("-") or fallback
