"""Binary record format of the correspondence table file.

The file is a bare sequence of 20-byte records::

    offset  size  field
    0       4     partition id, signed little-endian
    4       16    UUID bytes (RFC 4122 byte order)

There is no header, length field or checksum. How many records a reader
expects is decided by the caller (the live partition count at init time).
The local cache and the remote copy use exactly this layout.
"""

from __future__ import annotations

import logging
import struct
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from lparlink.errors import ConsistencyError, LinkIOError

logger = logging.getLogger(__name__)

RECORD = struct.Struct("<i16s")
RECORD_SIZE = RECORD.size  # 20

TOMBSTONE_ID = -1
NIL_UUID = uuid.UUID(int=0)


@dataclass
class CorrespondenceEntry:
    """One partition id and the UUID invented for it."""

    id: int
    uuid: uuid.UUID

    @property
    def is_tombstone(self) -> bool:
        return self.id == TOMBSTONE_ID

    def tombstone(self) -> None:
        self.id = TOMBSTONE_ID
        self.uuid = NIL_UUID

    def pack(self) -> bytes:
        return RECORD.pack(self.id, self.uuid.bytes)

    @classmethod
    def unpack(cls, record: bytes) -> CorrespondenceEntry:
        partition_id, raw = RECORD.unpack(record)
        return cls(id=partition_id, uuid=uuid.UUID(bytes=raw))


def encode_entries(entries: Iterable[CorrespondenceEntry]) -> bytes:
    return b"".join(entry.pack() for entry in entries)


def decode_entries(data: bytes, min_count: int = 0) -> list[CorrespondenceEntry]:
    """Decode every complete record in ``data``.

    Args:
        data: Raw file contents.
        min_count: Records the caller knows must be present.

    Raises:
        ConsistencyError: Fewer than ``min_count`` complete records.
    """
    count, remainder = divmod(len(data), RECORD_SIZE)
    if count < min_count:
        raise ConsistencyError(
            f"Table holds {count} records, expected at least {min_count}"
        )
    if remainder:
        logger.warning("Ignoring %d trailing bytes of a partial record", remainder)
    return [
        CorrespondenceEntry.unpack(data[i * RECORD_SIZE : (i + 1) * RECORD_SIZE])
        for i in range(count)
    ]


def write_table_file(path: Path, entries: Iterable[CorrespondenceEntry]) -> int:
    """Rewrite ``path`` with all entries; returns the file size in bytes."""
    data = encode_entries(entries)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as e:
        raise LinkIOError(f"Unable to write information to local file {path}: {e}") from e
    return len(data)


def read_table_file(path: Path, min_count: int = 0) -> list[CorrespondenceEntry]:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise LinkIOError(f"Unable to read information from local file {path}: {e}") from e
    return decode_entries(data, min_count=min_count)
