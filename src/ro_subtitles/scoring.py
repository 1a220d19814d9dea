"""Weighted match score between a video filename and a subtitle filename.

Bonuses, each awarded at most once and the total capped at 100:

- release group match: +50
- source/quality tag match (filename or provider page formats): +30
- any technical tag match (resolution, codec, audio): +5
- token-set fuzzy similarity: 0..``fuzzy_cap`` (15 at most)
- retail record: +5, added after the filename-derived bonuses

Without a group match the total stays below ``GROUP_BONUS``, and technical,
fuzzy and retail together stay below ``SOURCE_BONUS``. Lower tiers therefore
only break ties between candidates that agree on every higher tier.
"""

from __future__ import annotations

import math
from typing import Optional

from rapidfuzz import fuzz, utils

from .models import PageMetadata
from .release import extract_group, quality_tags, technical_tags

GROUP_BONUS = 50
SOURCE_BONUS = 30
TECHNICAL_BONUS = 5
RETAIL_BONUS = 5
DEFAULT_FUZZY_CAP = 15
MAX_FUZZY_CAP = 15
MAX_SCORE = 100
MAX_NON_GROUP_SCORE = GROUP_BONUS - 1


def _has_group_match(video_group: Optional[str], subtitle_filename: str, subtitle_upper: str) -> bool:
    if not video_group:
        return False
    return video_group == extract_group(subtitle_filename) or video_group in subtitle_upper


def _has_source_match(video_tags: set, subtitle_upper: str, metadata: Optional[PageMetadata]) -> bool:
    if any(tag in subtitle_upper for tag in video_tags):
        return True
    if metadata is None or not metadata.formats:
        return False
    formats = [fmt.upper() for fmt in metadata.formats if fmt]
    return any(fmt in tag or tag in fmt for tag in video_tags for fmt in formats)


def fuzzy_bonus(video_filename: str, subtitle_filename: str, cap: int = DEFAULT_FUZZY_CAP) -> int:
    cap = max(0, min(cap, MAX_FUZZY_CAP))
    ratio = fuzz.token_set_ratio(
        video_filename.lower(),
        subtitle_filename.lower(),
        processor=utils.default_process,
    )
    # Half rounds up
    return min(cap, math.floor(ratio * cap / 100.0 + 0.5))


def calculate_match_score(
    video_filename: Optional[str],
    subtitle_filename: Optional[str],
    metadata: Optional[PageMetadata] = None,
    fuzzy_cap: int = DEFAULT_FUZZY_CAP,
    is_retail: bool = False,
) -> int:
    if not video_filename or not subtitle_filename:
        return RETAIL_BONUS if is_retail else 0

    subtitle_upper = subtitle_filename.upper()
    group_matched = _has_group_match(extract_group(video_filename), subtitle_filename, subtitle_upper)

    score = 0
    if _has_source_match(quality_tags(video_filename), subtitle_upper, metadata):
        score += SOURCE_BONUS

    if any(tag in subtitle_upper for tag in technical_tags(video_filename)):
        score += TECHNICAL_BONUS

    score += fuzzy_bonus(video_filename, subtitle_filename, fuzzy_cap)

    # TODO: compare PageMetadata.fps against the player's videoFps extra once Stremio sends it reliably.
    if is_retail:
        score += RETAIL_BONUS

    if group_matched:
        return min(MAX_SCORE, GROUP_BONUS + score)
    return min(MAX_NON_GROUP_SCORE, score)


__all__ = [
    "calculate_match_score",
    "fuzzy_bonus",
    "GROUP_BONUS",
    "SOURCE_BONUS",
    "TECHNICAL_BONUS",
    "RETAIL_BONUS",
    "MAX_FUZZY_CAP",
]
