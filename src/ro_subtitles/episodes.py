"""Season/episode matching for subtitle filenames, titles and descriptions.

Once a text names a season (``S01E05``, ``1x05``, ``Sezonul 1`` ...), only
the exact season/episode pair is accepted. Texts without any season context
(flat anime numbering, single-season releases) are matched on the episode
number alone.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional, Pattern, Tuple

SEASON_KEYWORDS = r"(?:season|sezon(?:ul)?|stagione|saison|staffel|évad|κύκλος|temporada)"
EPISODE_KEYWORDS = r"(?:episode|episod(?:ul)?|episodio|épisode|folge|epizód|επεισόδιο|episódio)"

DIGIT_RE = re.compile(r"\d")
SEASON_INDICATOR_RE = re.compile(
    rf"s\d+e\d+|\d+x\d+|{SEASON_KEYWORDS}\s*\d+",
    re.IGNORECASE,
)


@lru_cache(maxsize=512)
def _strict_patterns(season: int, episode: int) -> Tuple[Pattern[str], ...]:
    s, e = f"{season:02d}", f"{episode:02d}"
    s_short, e_short = str(season), str(episode)
    sources = [
        rf"s{s}e{e}\b",
        rf"s{s_short}e{e_short}\b",
        rf"s{s}e{e_short}\b",
        rf"s{s_short}e{e}\b",
        rf"\b{s_short}x{e}\b",
        rf"\b{s_short}x{e_short}\b",
        rf"\b{s}x{e}\b",
        rf"\b{SEASON_KEYWORDS}\s*{s_short}(?!\d).*?\b{EPISODE_KEYWORDS}\s*{e_short}\b",
        rf"\b{SEASON_KEYWORDS}\s*{s}(?!\d).*?\b{EPISODE_KEYWORDS}\s*{e}\b",
    ]
    return tuple(re.compile(src, re.IGNORECASE) for src in sources)


@lru_cache(maxsize=512)
def _episode_only_patterns(episode: int) -> Tuple[Pattern[str], ...]:
    e, e_short = f"{episode:02d}", str(episode)
    sources = [
        rf"\be{e}\b",
        rf"\be{e_short}\b",
        rf"\bep\.?\s*{e_short}\b",
        rf"\bep\.?\s*{e}\b",
        rf"\b{EPISODE_KEYWORDS}\s*{e_short}\b",
        rf"\b{EPISODE_KEYWORDS}\s*{e}\b",
        rf"[-._\s]{e}[-._\s\[]",
    ]
    return tuple(re.compile(src, re.IGNORECASE) for src in sources)


def has_season_indicator(text: str) -> bool:
    return bool(SEASON_INDICATOR_RE.search(text))


def matches_episode(text: Optional[str], season: Optional[int], episode: Optional[int]) -> bool:
    """Return True when ``text`` refers to ``season``/``episode``.

    A ``None`` season means the request carries no season context: texts
    without a season indicator are matched on the episode alone, texts that
    name a season cannot be confirmed and are rejected.
    """
    if not text or episode is None:
        return False
    if not DIGIT_RE.search(text):
        return False

    normalized = text.lower()
    if has_season_indicator(normalized):
        if season is None:
            return False
        return any(p.search(normalized) for p in _strict_patterns(season, episode))
    return any(p.search(normalized) for p in _episode_only_patterns(episode))


__all__ = ["matches_episode", "has_season_indicator"]
