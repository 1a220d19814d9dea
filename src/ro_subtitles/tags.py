"""Static release-tag tables shared by the extractor and the scorer."""

from __future__ import annotations

from typing import FrozenSet, Tuple

# Source/quality tags, ordered roughly from worst to best source.
QUALITY_TAGS: Tuple[str, ...] = (
    # Cam
    "CAM", "CAMRIP", "CAM-RIP", "HDCAM",
    # Telesync
    "TS", "HDTS", "TELESYNC", "PDVD", "PREDVDRIP",
    # Workprint
    "WP", "WORKPRINT",
    # Telecine
    "TC", "HDTC", "TELECINE",
    # Pay-per-view
    "PPV", "PPVRIP",
    # Screeners
    "SCR", "SCREENER", "DVDSCR", "DVDSCREENER", "BDSCR", "WEBSCREENER",
    "DDC",
    "R5",
    # DVD
    "DVDRIP", "DVDMUX", "DVDR", "DVD-FULL", "FULL-RIP", "DVD-5", "DVD-9",
    # TV / satellite
    "DSR", "DSRIP", "SATRIP", "DTHRIP", "DVBRIP", "HDTV", "PDTV", "DTVRIP", "TVRIP", "HDTVRIP",
    # VOD
    "VODRIP", "VODR",
    "HC", "HDRIP",
    "WEBCAP", "WEB-CAP",
    # WEB
    "WEB-DL", "WEBDL", "WEBRIP", "WEB-RIP", "WEB-DLRIP",
    # Blu-ray
    "BLURAY", "BLU-RAY", "BDRIP", "BRRIP", "BRIP", "BDR",
    "BD25", "BD50", "BD66", "BD100", "BD5", "BD9",
    "BDMV", "BDISO", "COMPLETE.BLURAY",
    "REMUX",
)

# Encoding, resolution and release-flag tokens. Never a release group.
TECHNICAL_TAGS: Tuple[str, ...] = (
    # Resolution
    "1080P", "720P", "2160P", "4K", "UHD", "480P", "576P",
    # HDR
    "HDR", "HDR10", "HDR10PLUS", "DOLBYVISION", "DV",
    # Video codecs
    "X264", "H264", "X265", "H265", "HEVC", "AVC", "XVID", "DIVX", "VP9", "AV1",
    # Audio codecs
    "AAC", "AC3", "DTS", "DTSHD", "DTSHDMA", "TRUEHD", "ATMOS",
    "DDP5", "DDP2", "DDP", "DD5", "DD2", "EAC3", "FLAC", "MP3", "OPUS",
    # Channels
    "5.1", "7.1", "2.0", "1.0",
    # Release flags
    "INTERNAL", "REPACK", "PROPER", "LIMITED", "MULTI", "DUBBED", "SUBBED",
    "SUBS", "RO", "EN", "EXTENDED", "UNRATED", "DIRECTORS", "CUT", "THEATRICAL",
    # Containers
    "MKV", "MP4", "AVI",
)

IGNORED_TAGS: FrozenSet[str] = frozenset(QUALITY_TAGS) | frozenset(TECHNICAL_TAGS)


__all__ = ["QUALITY_TAGS", "TECHNICAL_TAGS", "IGNORED_TAGS"]
