"""Stable UUIDs for partitions that only have reassignable integer ids.

The remote manager identifies partitions by small integers that may be
reused after a partition is deleted and recreated. This table invents a
UUID per partition id, keeps it in memory, caches it in a local file and
mirrors that file to the remote user's home directory so every client of
the same account sees the same UUIDs.

Lifecycle per connection::

    UNINITIALIZED → INITIALIZING → READY ⇄ PERSISTING
                         ↓
                       FAILED

Every mutation rewrites the whole local file and pushes it again; there is
no incremental update. Removal tombstones an entry (id -1, nil UUID), so the
table never shrinks. No transaction spans the local write and the push: a
failure between them leaves the copies divergent until the next init.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from lparlink.errors import (
    ConsistencyError,
    EntryNotFound,
    RemoteFileNotFound,
    TableStateError,
)
from lparlink.table.records import (
    NIL_UUID,
    TOMBSTONE_ID,
    CorrespondenceEntry,
    read_table_file,
    write_table_file,
)

logger = logging.getLogger(__name__)


class TableState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    PERSISTING = "persisting"
    FAILED = "failed"


class TableTransfer(Protocol):
    """The two file operations the table needs from the transfer layer."""

    def push(self, local_path: str | Path, remote_path: str) -> None: ...

    def pull(self, remote_path: str, local_path: str | Path) -> int: ...


class CorrespondenceTable:
    """In-memory id↔UUID table with a local cache and a remote mirror."""

    def __init__(self, transfer: TableTransfer, local_path: Path, remote_path: str):
        self.transfer = transfer
        self.local_path = Path(local_path)
        self.remote_path = remote_path
        self.state = TableState.UNINITIALIZED
        self._entries: list[CorrespondenceEntry] = []
        self._issued: set[uuid.UUID] = set()

    # -------------------------
    # inspection
    # -------------------------
    @property
    def entries(self) -> tuple[CorrespondenceEntry, ...]:
        return tuple(self._entries)

    def live_entries(self) -> list[CorrespondenceEntry]:
        return [entry for entry in self._entries if not entry.is_tombstone]

    def __len__(self) -> int:
        return len(self._entries)

    def _require_ready(self) -> None:
        if self.state is not TableState.READY:
            raise TableStateError(f"Correspondence table is {self.state.value}")

    # -------------------------
    # initialization
    # -------------------------
    def generate_uuid(self) -> uuid.UUID:
        """A random UUID that differs from every UUID this table has issued."""
        while True:
            candidate = uuid.uuid4()
            if candidate not in self._issued and candidate != NIL_UUID:
                self._issued.add(candidate)
                return candidate

    def init(self, live_ids: Sequence[int], expected_count: int | None = None) -> None:
        """Load or create the table for the partitions currently on the host.

        Args:
            live_ids: Partition ids from one enumeration of the remote
                inventory, in listing order.
            expected_count: Partition count from an independent query. When
                given it must equal ``len(live_ids)``.

        Raises:
            ConsistencyError: The two enumerations disagree, or the persisted
                table holds fewer records than there are live partitions.
            ProtocolError: Pulling or pushing the remote copy failed.
            LinkIOError: The local cache could not be read or written.
        """
        if self.state is not TableState.UNINITIALIZED:
            raise TableStateError(f"Correspondence table is {self.state.value}")

        ids = list(live_ids)
        if expected_count is not None and expected_count != len(ids):
            self.state = TableState.FAILED
            raise ConsistencyError(
                "Unable to determine number of partitions: "
                f"count reports {expected_count}, listing returned {len(ids)}"
            )

        self.state = TableState.INITIALIZING
        if not ids:
            self.state = TableState.READY
            return

        try:
            try:
                self.transfer.pull(self.remote_path, self.local_path)
            except RemoteFileNotFound as e:
                self._create(ids, reason=e.reason)
            else:
                self._load(ids)
        except Exception:
            self._entries = []
            self.state = TableState.FAILED
            raise
        self.state = TableState.READY

    def _create(self, ids: list[int], reason: str) -> None:
        logger.info(
            "No table at %s (%s), creating one for %d partition(s)",
            self.remote_path,
            reason or "absent",
            len(ids),
        )
        self._entries = [CorrespondenceEntry(pid, self.generate_uuid()) for pid in ids]
        self._write_and_push()

    def _load(self, ids: list[int]) -> None:
        self._entries = read_table_file(self.local_path, min_count=len(ids))
        self._issued.update(e.uuid for e in self._entries if not e.is_tombstone)

        known = {entry.id for entry in self._entries if not entry.is_tombstone}
        missing = [pid for pid in ids if pid not in known]
        if missing:
            # Drift left behind by an earlier torn mutation
            logger.warning(
                "Table %s lacks %d live partition(s) %s, assigning new UUIDs",
                self.remote_path,
                len(missing),
                missing,
            )
            self._entries.extend(
                CorrespondenceEntry(pid, self.generate_uuid()) for pid in missing
            )
            self._write_and_push()
        logger.debug("Loaded %d table entries from %s", len(self._entries), self.local_path)

    # -------------------------
    # operations
    # -------------------------
    def lookup(self, partition_id: int) -> uuid.UUID:
        """UUID of the first entry with ``partition_id``.

        Raises:
            EntryNotFound: No live entry has this id.
        """
        self._require_ready()
        if partition_id != TOMBSTONE_ID:
            for entry in self._entries:
                if entry.id == partition_id:
                    return entry.uuid
        raise EntryNotFound(partition_id)

    def add(self, partition_uuid: uuid.UUID, partition_id: int) -> None:
        """Append an entry, then rewrite and push the whole table."""
        self._require_ready()
        self._entries.append(CorrespondenceEntry(partition_id, partition_uuid))
        self._issued.add(partition_uuid)
        self._persist()

    def remove(self, partition_id: int) -> None:
        """Tombstone every entry with ``partition_id``, then rewrite and push."""
        self._require_ready()
        for entry in self._entries:
            if entry.id == partition_id:
                entry.tombstone()
        self._persist()

    def _persist(self) -> None:
        self.state = TableState.PERSISTING
        try:
            self._write_and_push()
        finally:
            self.state = TableState.READY

    def _write_and_push(self) -> None:
        size = write_table_file(self.local_path, self._entries)
        self.transfer.push(self.local_path, self.remote_path)
        logger.debug("Persisted %d entries (%d bytes) to %s", len(self._entries), size, self.remote_path)
