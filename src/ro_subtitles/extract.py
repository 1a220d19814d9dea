from __future__ import annotations

import io
import os
import tempfile
import zipfile
from typing import List

import py7zr
import rarfile
from rarfile import Error as RarError, RarCannotExec

from .models import ArchiveKind

SUBTITLE_EXTENSIONS = {".srt"}
IGNORED_PREFIXES = ("__MACOSX/",)

ZIP_MAGIC = b"PK\x03\x04"
RAR_MAGIC = b"Rar!\x1a\x07"
SEVEN_ZIP_MAGIC = b"7z\xbc\xaf\x27\x1c"


class ArchiveError(RuntimeError):
    """Raised when a downloaded archive cannot be listed or read."""


def detect_archive_kind(data: bytes) -> ArchiveKind:
    head = data[:8] if data else b""
    if head.startswith(ZIP_MAGIC):
        return ArchiveKind.ZIP
    if head.startswith(RAR_MAGIC):
        return ArchiveKind.RAR
    if head.startswith(SEVEN_ZIP_MAGIC):
        return ArchiveKind.SEVEN_ZIP
    return ArchiveKind.UNKNOWN


def _is_subtitle(name: str) -> bool:
    if name.startswith(IGNORED_PREFIXES):
        return False
    return os.path.splitext(name)[1].lower() in SUBTITLE_EXTENSIONS


def _member_names(data: bytes, kind: ArchiveKind) -> List[str]:
    if kind is ArchiveKind.ZIP:
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                return [info.filename for info in archive.infolist() if not info.is_dir()]
        except zipfile.BadZipFile as exc:
            raise ArchiveError(f"Corrupt ZIP archive: {exc}") from exc

    if kind is ArchiveKind.RAR:
        try:
            with rarfile.RarFile(io.BytesIO(data)) as archive:
                return [info.filename for info in archive.infolist() if not info.isdir()]
        except (RarError, RarCannotExec) as exc:
            raise ArchiveError(f"RAR listing failed: {exc}") from exc

    if kind is ArchiveKind.SEVEN_ZIP:
        try:
            with py7zr.SevenZipFile(io.BytesIO(data)) as archive:
                return [entry.filename for entry in archive.list() if not entry.is_directory]
        except py7zr.Bad7zFile as exc:
            raise ArchiveError(f"Corrupt 7z archive: {exc}") from exc

    raise ArchiveError("Unsupported subtitle container")


def list_subtitle_files(data: bytes) -> List[str]:
    """Return the ``.srt`` member paths of an archive, in archive order."""
    if not data:
        raise ArchiveError("Empty archive payload")
    names = _member_names(data, detect_archive_kind(data))
    return [name for name in names if _is_subtitle(name)]


def read_subtitle_file(data: bytes, path: str) -> bytes:
    """Return the raw bytes of member ``path``."""
    kind = detect_archive_kind(data)
    if path not in _member_names(data, kind):
        raise ArchiveError(f"Archive does not contain {path!r}")

    if kind is ArchiveKind.ZIP:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            return archive.read(path)

    if kind is ArchiveKind.RAR:
        try:
            with rarfile.RarFile(io.BytesIO(data)) as archive:
                return archive.read(path)
        except (RarError, RarCannotExec) as exc:
            raise ArchiveError(
                "RAR archive extraction failed. Install 'unrar', 'unar', or 'bsdtar' on the host."
            ) from exc

    with tempfile.TemporaryDirectory() as tmp:
        with py7zr.SevenZipFile(io.BytesIO(data)) as archive:
            archive.extract(path=tmp, targets=[path])
        target = os.path.join(tmp, path)
        if not os.path.isfile(target):
            raise ArchiveError(f"7z extraction produced no file for {path!r}")
        with open(target, "rb") as handle:
            return handle.read()


__all__ = ["ArchiveError", "detect_archive_kind", "list_subtitle_files", "read_subtitle_file"]
