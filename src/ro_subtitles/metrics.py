from prometheus_client import Counter, Histogram

RESOLVE_COUNT = Counter(
    "subsro_resolve_total",
    "Subtitle resolutions by outcome",
    ["outcome"],
)
ARCHIVE_LOOKUPS = Counter(
    "subsro_archive_lookups_total",
    "Archive listing lookups by outcome",
    ["outcome"],
)
RESOLVE_LATENCY = Histogram(
    "subsro_resolve_seconds",
    "Time spent computing an uncached resolution",
)
