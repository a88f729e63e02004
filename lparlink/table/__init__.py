"""Partition id ↔ UUID correspondence table and its file format."""

from lparlink.table.correspondence import (
    CorrespondenceTable,
    TableState,
    TableTransfer,
)
from lparlink.table.records import (
    NIL_UUID,
    RECORD_SIZE,
    TOMBSTONE_ID,
    CorrespondenceEntry,
    decode_entries,
    encode_entries,
    read_table_file,
    write_table_file,
)

__all__ = [
    "NIL_UUID",
    "RECORD_SIZE",
    "TOMBSTONE_ID",
    "CorrespondenceEntry",
    "CorrespondenceTable",
    "TableState",
    "TableTransfer",
    "decode_entries",
    "encode_entries",
    "read_table_file",
    "write_table_file",
]
