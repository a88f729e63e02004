"""Tests for the binary table record format."""

import logging
import struct
import uuid

import pytest

from lparlink.errors import ConsistencyError, LinkIOError
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

SAMPLE_UUID = uuid.UUID("12345678-9abc-def0-1234-56789abcdef0")


class TestRecordLayout:
    """Tests for the 20-byte record layout."""

    def test_record_size(self):
        assert RECORD_SIZE == 20

    def test_field_layout(self):
        """Id is little-endian int32, followed by the raw UUID bytes."""
        packed = CorrespondenceEntry(5, SAMPLE_UUID).pack()

        assert packed[:4] == b"\x05\x00\x00\x00"
        assert packed[4:] == SAMPLE_UUID.bytes

    def test_negative_id(self):
        packed = CorrespondenceEntry(-1, NIL_UUID).pack()
        assert packed == struct.pack("<i", -1) + bytes(16)

    def test_unpack(self):
        entry = CorrespondenceEntry.unpack(struct.pack("<i", 12) + SAMPLE_UUID.bytes)
        assert entry == CorrespondenceEntry(12, SAMPLE_UUID)


class TestTombstone:
    """Tests for entry removal markers."""

    def test_tombstone_clears_both_fields(self):
        entry = CorrespondenceEntry(3, SAMPLE_UUID)
        entry.tombstone()

        assert entry.id == TOMBSTONE_ID
        assert entry.uuid == NIL_UUID
        assert entry.is_tombstone

    def test_live_entry_is_not_tombstone(self):
        assert not CorrespondenceEntry(0, SAMPLE_UUID).is_tombstone


class TestDecode:
    """Tests for decode_entries()."""

    def test_decodes_in_order(self):
        entries = [CorrespondenceEntry(i, uuid.uuid4()) for i in range(3)]
        assert decode_entries(encode_entries(entries)) == entries

    def test_fewer_records_than_required(self):
        data = encode_entries([CorrespondenceEntry(1, SAMPLE_UUID)])
        with pytest.raises(ConsistencyError, match="expected at least 2"):
            decode_entries(data, min_count=2)

    def test_extra_records_kept(self):
        entries = [CorrespondenceEntry(i, uuid.uuid4()) for i in range(4)]
        assert len(decode_entries(encode_entries(entries), min_count=2)) == 4

    def test_trailing_partial_record_ignored(self, caplog):
        data = encode_entries([CorrespondenceEntry(1, SAMPLE_UUID)]) + b"\x01\x02"

        with caplog.at_level(logging.WARNING):
            entries = decode_entries(data, min_count=1)

        assert entries == [CorrespondenceEntry(1, SAMPLE_UUID)]
        assert "2 trailing bytes" in caplog.text

    def test_empty(self):
        assert decode_entries(b"") == []


class TestTableFiles:
    """Tests for reading and writing whole table files."""

    def test_write_creates_parent(self, tmp_path):
        path = tmp_path / "cache" / "hscroot@hmc01.uuid_table"
        entries = [CorrespondenceEntry(1, SAMPLE_UUID), CorrespondenceEntry(2, NIL_UUID)]

        assert write_table_file(path, entries) == 40
        assert path.stat().st_size == 40
        assert read_table_file(path, min_count=2) == entries

    def test_write_replaces_previous_contents(self, tmp_path):
        path = tmp_path / "table"
        path.write_bytes(b"\xff" * 100)

        write_table_file(path, [CorrespondenceEntry(1, SAMPLE_UUID)])

        assert path.stat().st_size == RECORD_SIZE

    def test_read_missing_file(self, tmp_path):
        with pytest.raises(LinkIOError, match="Unable to read"):
            read_table_file(tmp_path / "missing")

    def test_write_into_file_path_fails(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(LinkIOError, match="Unable to write"):
            write_table_file(blocker / "table", [])
