"""Find the CSV payload inside a ZIP or TAR container.

Each container format gets a locator implementing ``PayloadLocator``; the
module-level ``locate()`` dispatches on ``ArchiveFormat`` through a registry
instead of branching inline.

Selection policy (both formats):

1. An entry named exactly ``data.csv`` wins.
2. Otherwise the first entry whose name ends in ``.csv``.
3. Otherwise ``PayloadNotFoundError``.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
import zipfile
import zlib
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import IO, Protocol, runtime_checkable

from pricepack.core.exceptions import (
    ArchiveCorruptError,
    IngestionError,
    PayloadNotFoundError,
    UnsupportedFormatError,
)
from pricepack.core.models import ArchiveFormat

logger = logging.getLogger(__name__)

PAYLOAD_NAME = "data.csv"
PAYLOAD_SUFFIX = ".csv"

_CHUNK_SIZE = 64 * 1024
_SPOOL_MAX_BYTES = 8 << 20

# General purpose flag bit 0: member data is encrypted.
_ZIP_ENCRYPTED = 0x1

# Errors raised by the stdlib archive readers when the container is damaged,
# either while opening it or lazily while a member is being read.
_ZIP_ERRORS = (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError, NotImplementedError)
_TAR_ERRORS = (tarfile.TarError, zlib.error, EOFError, OSError)


@runtime_checkable
class PayloadLocator(Protocol):
    """Produces the located CSV byte stream for one container format."""

    def open_payload(self, container: IO[bytes]) -> AbstractContextManager[IO[bytes]]: ...


def is_preferred(name: str) -> bool:
    return name == PAYLOAD_NAME


def is_candidate(name: str) -> bool:
    return name.endswith(PAYLOAD_SUFFIX)


class ZipLocator:
    """Locates the payload through the ZIP central directory.

    Requires a seekable container.
    """

    format = ArchiveFormat.ZIP

    @contextmanager
    def open_payload(self, container: IO[bytes]) -> Iterator[IO[bytes]]:
        try:
            archive = zipfile.ZipFile(container)
        except _ZIP_ERRORS as e:
            raise ArchiveCorruptError(
                f"Invalid zip archive: {e}",
                context={"format": str(self.format), "reason": str(e)},
            ) from e

        with archive:
            entries = archive.infolist()
            chosen = self._select(entries)
            if chosen is None:
                raise PayloadNotFoundError(
                    "data.csv not found in archive",
                    context={"format": str(self.format), "entries": len(entries)},
                )
            if chosen.flag_bits & _ZIP_ENCRYPTED:
                raise ArchiveCorruptError(
                    f"Zip member {chosen.filename} is encrypted",
                    context={"format": str(self.format), "reason": "encrypted member"},
                )
            logger.debug("Selected zip member %s (%d bytes)", chosen.filename, chosen.file_size)
            try:
                with archive.open(chosen) as payload:
                    yield payload
            except _ZIP_ERRORS as e:
                raise ArchiveCorruptError(
                    f"Failed to read {chosen.filename} from zip archive: {e}",
                    context={"format": str(self.format), "reason": str(e)},
                ) from e

    @staticmethod
    def _select(entries: list[zipfile.ZipInfo]) -> zipfile.ZipInfo | None:
        fallback = None
        for info in entries:
            if info.is_dir():
                continue
            if is_preferred(info.filename):
                return info
            if fallback is None and is_candidate(info.filename):
                fallback = info
        return fallback


class TarLocator:
    """Locates the payload by scanning a TAR stream sequentially.

    The container is opened in stream mode (``r|*``), so compressed
    variants (gzip, bz2, xz) are accepted and no seeking is needed.
    Members that are not selected are drained chunk by chunk. The first
    ``.csv`` candidate is spooled aside until the end of the stream in case
    a ``data.csv`` member follows it.
    """

    format = ArchiveFormat.TAR

    @contextmanager
    def open_payload(self, container: IO[bytes]) -> Iterator[IO[bytes]]:
        with tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_BYTES) as spool:
            try:
                name = self._scan(container, spool)
            except _TAR_ERRORS as e:
                raise ArchiveCorruptError(
                    f"Invalid tar archive: {e}",
                    context={"format": str(self.format), "reason": str(e)},
                ) from e
            logger.debug("Selected tar member %s", name)
            spool.seek(0)
            yield spool

    def _scan(self, container: IO[bytes], spool: IO[bytes]) -> str:
        fallback: str | None = None
        inspected = 0
        with tarfile.open(fileobj=container, mode="r|*") as archive:
            for member in archive:
                inspected += 1
                stream = archive.extractfile(member) if member.isfile() else None
                if stream is None:
                    continue
                if is_preferred(member.name):
                    spool.seek(0)
                    spool.truncate()
                    shutil.copyfileobj(stream, spool, _CHUNK_SIZE)
                    return member.name
                if fallback is None and is_candidate(member.name):
                    shutil.copyfileobj(stream, spool, _CHUNK_SIZE)
                    fallback = member.name
                    continue
                _drain(stream)

        if fallback is None:
            raise PayloadNotFoundError(
                "data.csv not found in archive",
                context={"format": str(self.format), "entries": inspected},
            )
        return fallback


def _drain(stream: IO[bytes]) -> None:
    """Consume and discard a member's bytes."""
    while stream.read(_CHUNK_SIZE):
        pass


_LOCATORS: dict[ArchiveFormat, PayloadLocator] = {
    ArchiveFormat.ZIP: ZipLocator(),
    ArchiveFormat.TAR: TarLocator(),
}


def resolve_format(value: ArchiveFormat | str) -> ArchiveFormat:
    """Coerce a user-supplied archive type, rejecting unknown values."""
    try:
        return ArchiveFormat(value)
    except ValueError as e:
        raise UnsupportedFormatError(
            f"Unsupported archive type: {value!r}",
            context={"format": str(value)},
        ) from e


@contextmanager
def locate(container: IO[bytes], fmt: ArchiveFormat | str) -> Iterator[IO[bytes]]:
    """Yield the CSV payload stream found inside ``container``.

    Errors raised by the archive readers while the caller consumes the
    payload are reported as ``ArchiveCorruptError``.
    """
    archive_format = resolve_format(fmt)
    locator = _LOCATORS[archive_format]
    try:
        with locator.open_payload(container) as payload:
            yield payload
    except IngestionError:
        raise
    except _ZIP_ERRORS + _TAR_ERRORS as e:
        raise ArchiveCorruptError(
            f"Failed to read {archive_format} archive: {e}",
            context={"format": str(archive_format), "reason": str(e)},
        ) from e
