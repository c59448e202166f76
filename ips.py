"""
Module that includes functions and classes for decoding IPS binary patches.

Details of the IPS format:
- https://zerosoft.zophar.net/ips.php
- http://justsolve.archiveteam.org/wiki/IPS_(binary_patch_format)

A patch is the `PATCH` magic, followed by a sequence of records, terminated by the `EOF` marker.
Each record starts with a 24-bit big-endian offset and a 16-bit big-endian size. A nonzero size is
followed by that many bytes of data; a zero size denotes an RLE record, where a 16-bit length and a
single fill byte follow.
"""
import logging
import struct

from typing import NamedTuple, Union

log = logging.getLogger(__name__)

MAGIC = b'PATCH'
EOF_MARKER = b'EOF'

OFFSET_SIZE = 3
SIZE_SIZE = 2
RLE_LENGTH_SIZE = 2
RLE_VALUE_SIZE = 1

MAX_OFFSET = 0xFFFFFF
MAX_SIZE = 0xFFFF


class IPSFormatError(Exception):
    pass


class InvalidHeaderError(IPSFormatError):
    pass


class UnexpectedEofError(IPSFormatError):
    pass


class MalformedRecordError(IPSFormatError):
    pass


class StandardRecord(NamedTuple):
    offset: int
    data: bytes

    @property
    def end(self) -> int:
        return self.offset + len(self.data)

    def payload(self) -> bytes:
        return self.data


class RunLengthRecord(NamedTuple):
    offset: int
    length: int
    value: int

    @property
    def end(self) -> int:
        return self.offset + self.length

    def payload(self) -> bytes:
        return bytes((self.value, )) * self.length


class _EndOfStream:

    def __repr__(self):
        return 'EndOfStream'


EndOfStream = _EndOfStream()
"""
Sentinel record returned once the `EOF` marker has been consumed.
"""

PatchRecord = Union[StandardRecord, RunLengthRecord, _EndOfStream]


class PatchRecordReader:
    """
    Sequential decoder of the records in an in-memory IPS patch.

    `read_header()` must be called once before any record is read. `next_record()` then returns one
    record per call, until `EndOfStream` is returned; no further calls are valid after that.
    """

    def __init__(self, data):
        self._data = memoryview(data).cast('B')
        self._position = 0
        self._header_read = False
        self._finished = False

    @property
    def position(self) -> int:
        return self._position

    @property
    def remaining(self) -> int:
        return len(self._data) - self._position

    def _peek(self, size: int) -> bytes:
        if self.remaining < size:
            raise UnexpectedEofError(f'Unexpected end of patch at position {self._position}: '
                                     f'{size} bytes required, {self.remaining} available.')
        return bytes(self._data[self._position:self._position + size])

    def _read(self, size: int) -> bytes:
        chunk = self._peek(size)
        self._position += size
        return chunk

    def read_header(self):
        if self._header_read:
            raise RuntimeError('Patch header has already been read.')

        try:
            magic = self._read(len(MAGIC))
        except UnexpectedEofError as e:
            raise InvalidHeaderError('Patch is too short to contain the PATCH header.') from e
        if magic != MAGIC:
            raise InvalidHeaderError(f'Invalid patch header: {magic!r} (expected {MAGIC!r}).')

        self._header_read = True

    def next_record(self) -> PatchRecord:
        if not self._header_read:
            raise RuntimeError('Patch header must be read before any record.')
        if self._finished:
            raise RuntimeError('End of patch has already been reached.')

        record_position = self._position

        # The marker must be checked before the same three bytes are taken as an offset: `EOF` is
        # also the valid offset 0x454F46.
        probe = self._peek(OFFSET_SIZE)
        if probe == EOF_MARKER:
            self._position += OFFSET_SIZE
            self._finished = True
            return EndOfStream

        self._position += OFFSET_SIZE
        offset = struct.unpack('>I', b'\x00' + probe)[0]
        size = struct.unpack('>H', self._read(SIZE_SIZE))[0]

        if size:
            data = self._read(size)
            record = StandardRecord(offset, data)
        else:
            length = struct.unpack('>H', self._read(RLE_LENGTH_SIZE))[0]
            value = self._read(RLE_VALUE_SIZE)[0]
            if not length:
                raise MalformedRecordError(
                    f'RLE record at position {record_position} has a fill length of zero.')
            record = RunLengthRecord(offset, length, value)

        log.debug(f'Decoded {record_position:#08x}: {describe_record(record)}')

        return record

    def __iter__(self):
        if not self._header_read:
            self.read_header()

        while True:
            record = self.next_record()
            if record is EndOfStream:
                if self.remaining:
                    log.warning(f'{self.remaining} trailing bytes after the EOF marker will be '
                                'ignored.')
                return
            yield record


def describe_record(record: PatchRecord) -> str:
    if record is EndOfStream:
        return 'EOF'
    if isinstance(record, RunLengthRecord):
        return (f'RLE      offset=0x{record.offset:06X} length={record.length} '
                f'value=0x{record.value:02X}')
    return f'standard offset=0x{record.offset:06X} length={len(record.data)}'


def read_records(data) -> list:
    """
    Decodes all the records in the given patch data. The `EndOfStream` sentinel is not included.
    """
    return list(PatchRecordReader(data))


def read_ips_file(filepath: str) -> list:
    with open(filepath, 'rb') as f:
        data = f.read()

    return read_records(data)
