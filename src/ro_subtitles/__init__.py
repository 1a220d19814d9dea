"""Romanian subtitles (subs.ro) resolution engine for Stremio."""

__version__ = "0.3.0"
