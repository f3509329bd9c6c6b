"""Helpers for turning HTML message bodies into plain text."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

_WHITESPACE = re.compile(r"\s+")
_NON_CONTENT_TAGS = ["script", "style", "head", "title", "meta", "noscript"]


def html_to_text(html: str | None) -> str:
    """Return the visible text of an HTML fragment with all markup removed."""

    if not html or not html.strip():
        return ""

    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(_NON_CONTENT_TAGS):
        tag.decompose()
    return normalize_whitespace(soup.get_text(" ", strip=True))


def normalize_whitespace(text: str | None) -> str:
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


__all__ = ["html_to_text", "normalize_whitespace"]
