"""Tar/gzip codec used to move files in and out of sandbox containers.

Uploads are always packed as a gzip-compressed tar stream.  The Docker daemon
answers ``GET /containers/{id}/archive`` with a plain tar stream, so
:func:`unpack_single` accepts either form and returns the first regular file it
finds.  The entry name of a downloaded archive is not required to match the
requested path because the daemon roots the archive at the basename.
"""

from __future__ import annotations

import gzip
import io
import tarfile
import time
import zlib
from dataclasses import dataclass
from typing import Iterable

from .errors import NotFound

_GZIP_MAGIC = b"\x1f\x8b"


@dataclass(frozen=True)
class ArchiveEntry:
    """A single ``(path, data)`` pair packed into an archive."""

    path: str
    data: bytes


def _entry_name(path: str) -> str:
    name = path.replace("\\", "/").lstrip("/")
    if not name:
        raise ValueError(f"archive entry path must name a file: {path!r}")
    return name


def pack(entries: Iterable[ArchiveEntry]) -> bytes:
    """Return a gzip-compressed tar stream holding ``entries``.

    Leading ``/`` is stripped from entry names so the archive can be extracted
    relative to the container root.
    """

    buf = io.BytesIO()
    now = int(time.time())
    count = 0
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for entry in entries:
            info = tarfile.TarInfo(name=_entry_name(entry.path))
            info.size = len(entry.data)
            info.mode = 0o644
            info.mtime = now
            tar.addfile(info, io.BytesIO(entry.data))
            count += 1
    if not count:
        raise ValueError("cannot pack an empty archive")
    return buf.getvalue()


def pack_single(path: str, data: bytes) -> bytes:
    """Shortcut for packing one entry."""
    return pack([ArchiveEntry(path, data)])


def unpack_single(data: bytes) -> bytes:
    """Return the payload of the first file entry in ``data``.

    ``data`` may be a plain or gzip-compressed tar stream.  :class:`NotFound`
    is raised when the stream is empty, corrupt or holds no regular file.
    """

    if not data:
        raise NotFound("<archive>", "empty archive")
    if data[:2] == _GZIP_MAGIC:
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as exc:
            raise NotFound("<archive>", exc) from exc
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                extracted = tar.extractfile(member)
                if extracted is None:
                    continue
                return extracted.read()
    except tarfile.TarError as exc:
        raise NotFound("<archive>", exc) from exc
    raise NotFound("<archive>", "archive holds no file entry")


__all__ = ["ArchiveEntry", "pack", "pack_single", "unpack_single"]
