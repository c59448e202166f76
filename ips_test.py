#!/usr/bin/env python3
"""
Unit tests for the `ips` module.
"""
import logging
import os
import sys
import tempfile

import pytest

import ips


def _reader(data: bytes) -> ips.PatchRecordReader:
    reader = ips.PatchRecordReader(data)
    reader.read_header()
    return reader


def test_header():
    ips.PatchRecordReader(b'PATCHEOF').read_header()

    for data in (b'', b'PAT', b'patch', b'PATCX', b'IPS32EOF'):
        with pytest.raises(ips.InvalidHeaderError):
            ips.PatchRecordReader(data).read_header()


def test_header_read_twice():
    reader = _reader(b'PATCHEOF')
    with pytest.raises(RuntimeError):
        reader.read_header()


def test_record_before_header():
    reader = ips.PatchRecordReader(b'PATCHEOF')
    with pytest.raises(RuntimeError):
        reader.next_record()


def test_end_of_stream():
    reader = _reader(b'PATCHEOF')
    assert reader.next_record() is ips.EndOfStream
    assert reader.position == 8

    with pytest.raises(RuntimeError):
        reader.next_record()


def test_standard_record():
    reader = _reader(b'PATCH' + b'\x01\x02\x03' + b'\x00\x03' + b'XYZ' + b'EOF')

    record = reader.next_record()
    assert record == ips.StandardRecord(0x010203, b'XYZ')
    assert record.end == 0x010206
    assert reader.position == 13

    assert reader.next_record() is ips.EndOfStream


def test_run_length_record():
    reader = _reader(b'PATCH' + b'\x00\x00\x02' + b'\x00\x00' + b'\x01\x00' + b'Z' + b'EOF')

    record = reader.next_record()
    assert record == ips.RunLengthRecord(2, 0x100, ord('Z'))
    assert record.end == 0x102
    assert record.payload() == b'Z' * 0x100

    assert reader.next_record() is ips.EndOfStream


def test_zero_length_run_length_record():
    reader = _reader(b'PATCH' + b'\x00\x00\x02' + b'\x00\x00' + b'\x00\x00' + b'Z' + b'EOF')
    with pytest.raises(ips.MalformedRecordError):
        reader.next_record()


def test_eof_marker_takes_precedence_over_offset():
    # 0x454F46 spells `EOF`; a record at that offset cannot be expressed.
    reader = _reader(b'PATCH' + b'EOF' + b'\x00\x01' + b'A')
    assert reader.next_record() is ips.EndOfStream


def test_offset_limits():
    records = ips.read_records(b'PATCH' + b'\x00\x00\x00' + b'\x00\x01' + b'A' + b'\xFF\xFF\xFF' +
                               b'\x00\x01' + b'B' + b'EOF')
    assert [record.offset for record in records] == [0, ips.MAX_OFFSET]


def test_maximum_size():
    data = os.urandom(ips.MAX_SIZE)
    records = ips.read_records(b'PATCH' + b'\x00\x00\x10' + b'\xFF\xFF' + data + b'EOF')
    assert records == [ips.StandardRecord(0x10, data)]


def test_truncated_patches():
    full = (b'PATCH' + b'\x00\x00\x02' + b'\x00\x03' + b'XYZ' + b'\x00\x00\x08' + b'\x00\x00' +
            b'\x00\x02' + b'Q' + b'EOF')

    # Every cut that removes the marker, or leaves a record incomplete, must be reported.
    for cut in range(len(ips.MAGIC), len(full)):
        with pytest.raises(ips.UnexpectedEofError):
            ips.read_records(full[:cut])

    assert len(ips.read_records(full)) == 2


def test_truncated_error_reports_position():
    with pytest.raises(ips.UnexpectedEofError, match='position 10'):
        ips.read_records(b'PATCH' + b'\x00\x00\x02' + b'\x00\x03' + b'XY')


def test_iteration_stops_before_sentinel():
    reader = ips.PatchRecordReader(b'PATCH' + b'\x00\x00\x01' + b'\x00\x01' + b'A' + b'EOF')
    assert list(reader) == [ips.StandardRecord(1, b'A')]


def test_trailing_bytes_are_ignored(caplog):
    with caplog.at_level(logging.WARNING, logger='ips'):
        records = ips.read_records(b'PATCH' + b'\x00\x00\x01' + b'\x00\x01' + b'A' + b'EOF' +
                                   b'\x00\x10\x00')

    assert records == [ips.StandardRecord(1, b'A')]
    assert '3 trailing bytes' in caplog.text


def test_bytes_like_input():
    data = bytearray(b'PATCH' + b'\x00\x00\x01' + b'\x00\x02' + b'AB' + b'EOF')
    records = ips.read_records(memoryview(data))
    assert records == [ips.StandardRecord(1, b'AB')]
    assert isinstance(records[0].data, bytes)


def test_describe_record():
    assert ips.describe_record(ips.EndOfStream) == 'EOF'
    assert '0x000010' in ips.describe_record(ips.StandardRecord(0x10, b'ABC'))
    assert 'value=0x5A' in ips.describe_record(ips.RunLengthRecord(0x10, 3, 0x5A))


def test_read_ips_file():
    with tempfile.TemporaryDirectory() as tmp_dir:
        filepath = os.path.join(tmp_dir, 'test.ips')
        with open(filepath, 'wb') as f:
            f.write(b'PATCH' + b'\x00\x00\x02' + b'\x00\x00' + b'\x00\x03' + b'Z' + b'EOF')

        assert ips.read_ips_file(filepath) == [ips.RunLengthRecord(2, 3, ord('Z'))]


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv))
