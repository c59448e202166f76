"""
Module that includes an in-memory byte buffer that supports offset-addressed writes, growing as
needed when a write goes past its current end.
"""


class PatchableBuffer:
    """
    Owned copy of a binary image. The length never shrinks; gaps created by writes past the end are
    filled with zeros.
    """

    def __init__(self, initial=b''):
        self._data = bytearray(initial)

    def __len__(self) -> int:
        return len(self._get_data())

    def _get_data(self) -> bytearray:
        if self._data is None:
            raise RuntimeError('Buffer has already been consumed.')
        return self._data

    def _grow(self, end: int) -> bytearray:
        data = self._get_data()
        if end > len(data):
            data.extend(bytes(end - len(data)))
        return data

    def write(self, offset: int, chunk):
        if offset < 0:
            raise ValueError(f'Offset cannot be negative ({offset}).')

        end = offset + len(chunk)
        data = self._grow(end)
        data[offset:end] = chunk

    def write_fill(self, offset: int, length: int, value: int):
        if offset < 0:
            raise ValueError(f'Offset cannot be negative ({offset}).')
        if length < 0:
            raise ValueError(f'Length cannot be negative ({length}).')

        end = offset + length
        data = self._grow(end)
        data[offset:end] = bytes((value, )) * length

    def into_bytes(self) -> bytes:
        data = self._get_data()
        self._data = None
        return bytes(data)
