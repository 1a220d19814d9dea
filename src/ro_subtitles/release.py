"""Release-group and tag extraction from scene-style filenames."""

from __future__ import annotations

import re
from typing import Iterable, Optional, Set

from .tags import IGNORED_TAGS, QUALITY_TAGS, TECHNICAL_TAGS

EXTENSION_RE = re.compile(r"\.[a-zA-Z0-9]+$")
DASH_GROUP_RE = re.compile(r"-([a-z0-9]+)(?:[\[\s]|$)")
BRACKET_GROUP_RE = re.compile(r"^\[([a-z0-9.]+)\]|\[([a-z0-9.]+)\]$")
TOKEN_SPLIT_RE = re.compile(r"[.\-_\[\]()\s]+")
YEAR_TOKEN_RE = re.compile(r"^\d{4}$")


def _stem(filename: str) -> str:
    return EXTENSION_RE.sub("", filename).lower()


def _looks_like_release(tokens: Iterable[str]) -> bool:
    for token in tokens:
        if token in IGNORED_TAGS or YEAR_TOKEN_RE.match(token):
            return True
    return False


def extract_group(filename: Optional[str]) -> Optional[str]:
    """Return the upper-cased release group of ``filename`` or ``None``.

    Tried in order: a dash-suffixed token (``Title-GROUP``), a bracketed token
    at either end (``[GROUP] Title``), then the last two words of names that
    carry at least one release tag or year. Plain names such as
    ``Unknown.File.mkv`` have no group.
    """
    if not filename:
        return None

    name = _stem(filename)

    match = DASH_GROUP_RE.search(name)
    if match:
        return match.group(1).upper()

    match = BRACKET_GROUP_RE.search(name)
    if match:
        return (match.group(1) or match.group(2)).upper()

    words = [w.upper() for w in TOKEN_SPLIT_RE.split(name) if w]
    if not _looks_like_release(words):
        return None
    for word in reversed(words[-2:]):
        if word in IGNORED_TAGS or YEAR_TOKEN_RE.match(word):
            continue
        if len(word) >= 2:
            return word
    return None


def extract_tags(filename: Optional[str], catalog: Iterable[str]) -> Set[str]:
    """Case-insensitive substring scan of ``filename`` against ``catalog``."""
    if not filename:
        return set()
    normalized = filename.upper()
    return {tag for tag in catalog if tag in normalized}


def quality_tags(filename: Optional[str]) -> Set[str]:
    return extract_tags(filename, QUALITY_TAGS)


def technical_tags(filename: Optional[str]) -> Set[str]:
    return extract_tags(filename, TECHNICAL_TAGS)


def has_release_signal(filename: Optional[str]) -> bool:
    """True when ``filename`` yields a group and at least one source tag."""
    return extract_group(filename) is not None and bool(quality_tags(filename))


__all__ = ["extract_group", "extract_tags", "quality_tags", "technical_tags", "has_release_signal"]
