"""Constant Quark Database (CQDB) chunks.

A CQDB chunk is a read-only, hash-indexed string/id table. It is the
on-disk form of the attribute and label dictionaries inside a model file
and is byte-compatible with the chunks written by CRFsuite:

- 24-byte header: chunk id, chunk size, flags, byte-order check,
  backward array size and offset
- 256 hash table references (offset, number of slots)
- key records: id (u32), key size (u32), key bytes with a trailing NUL
- open-addressing hash tables, twice as many slots as keys
- backward array mapping ids to record offsets

All integers are little endian. Keys are hashed with Bob Jenkins'
lookup3 ``hashlittle`` over the UTF-8 bytes including the NUL.
"""

import struct
from collections.abc import Iterator

import numpy as np

from crfchain.exceptions import CorruptModel

CHUNK_ID = b"CQDB"
BYTEORDER_CHECK = 0x62445371
NUM_TABLES = 256
HEADER_SIZE = 24
OFFSET_DATA = HEADER_SIZE + 8 * NUM_TABLES

# Flag: do not store the backward (id -> name) array
ONEWAY = 0x00000001

_MASK = 0xFFFFFFFF
_HEADER = struct.Struct("<4sIIIII")
_TABLE_REFS = struct.Struct(f"<{2 * NUM_TABLES}I")
_PAIR = struct.Struct("<II")


def _rot(x: int, k: int) -> int:
    return ((x << k) | (x >> (32 - k))) & _MASK


def _mix(a: int, b: int, c: int) -> tuple[int, int, int]:
    a = ((a - c) & _MASK) ^ _rot(c, 4)
    c = (c + b) & _MASK
    b = ((b - a) & _MASK) ^ _rot(a, 6)
    a = (a + c) & _MASK
    c = ((c - b) & _MASK) ^ _rot(b, 8)
    b = (b + a) & _MASK
    a = ((a - c) & _MASK) ^ _rot(c, 16)
    c = (c + b) & _MASK
    b = ((b - a) & _MASK) ^ _rot(a, 19)
    a = (a + c) & _MASK
    c = ((c - b) & _MASK) ^ _rot(b, 4)
    b = (b + a) & _MASK
    return a, b, c


def _final(a: int, b: int, c: int) -> int:
    c = ((c ^ b) - _rot(b, 14)) & _MASK
    a = ((a ^ c) - _rot(c, 11)) & _MASK
    b = ((b ^ a) - _rot(a, 25)) & _MASK
    c = ((c ^ b) - _rot(b, 16)) & _MASK
    a = ((a ^ c) - _rot(c, 4)) & _MASK
    b = ((b ^ a) - _rot(a, 14)) & _MASK
    c = ((c ^ b) - _rot(b, 24)) & _MASK
    return c


def hashlittle(key: bytes, initval: int = 0) -> int:
    """Bob Jenkins' lookup3 hash of a byte string (little-endian variant).

    Args:
        key: Bytes to hash.
        initval: Previous hash or an arbitrary seed.

    Returns:
        32-bit unsigned hash value.
    """
    length = len(key)
    a = b = c = (0xDEADBEEF + length + initval) & _MASK

    offset = 0
    while length > 12:
        a = (a + int.from_bytes(key[offset : offset + 4], "little")) & _MASK
        b = (b + int.from_bytes(key[offset + 4 : offset + 8], "little")) & _MASK
        c = (c + int.from_bytes(key[offset + 8 : offset + 12], "little")) & _MASK
        a, b, c = _mix(a, b, c)
        length -= 12
        offset += 12

    if length == 0:
        return c

    # Zero padding the last block is equivalent to the byte-wise fall-through
    tail = key[offset:] + bytes(12 - length)
    a = (a + int.from_bytes(tail[0:4], "little")) & _MASK
    b = (b + int.from_bytes(tail[4:8], "little")) & _MASK
    c = (c + int.from_bytes(tail[8:12], "little")) & _MASK
    return _final(a, b, c)


def _encode_key(name: str) -> bytes:
    return name.encode("utf-8") + b"\0"


class Writer:
    """Builds a CQDB chunk in memory.

    Example:
        writer = Writer()
        writer.put("B-PER", 0)
        writer.put("O", 1)
        chunk = writer.to_bytes()
    """

    def __init__(self, flag: int = 0) -> None:
        self._flag = flag
        self._records = bytearray()
        self._tables: list[list[tuple[int, int]]] = [[] for _ in range(NUM_TABLES)]
        self._backward: list[int] = []

    def put(self, name: str, id_: int) -> None:
        """Store a name with its id.

        Raises:
            ValueError: If id_ is negative.
        """
        if id_ < 0:
            raise ValueError(f"CQDB ids must be non-negative, got {id_}")

        key = _encode_key(name)
        hv = hashlittle(key)
        offset = OFFSET_DATA + len(self._records)

        self._records += _PAIR.pack(id_, len(key))
        self._records += key
        self._tables[hv % NUM_TABLES].append((hv, offset))

        if not self._flag & ONEWAY:
            if len(self._backward) <= id_:
                self._backward.extend([0] * (id_ + 1 - len(self._backward)))
            self._backward[id_] = offset

    def to_bytes(self) -> bytes:
        """Serialize the chunk."""
        body = bytearray(self._records)
        cur = OFFSET_DATA + len(body)

        refs: list[int] = []
        for buckets in self._tables:
            if not buckets:
                refs.extend((0, 0))
                continue

            n = len(buckets) * 2
            slots = [(0, 0)] * n
            for hv, offset in buckets:
                k = (hv >> 8) % n
                while slots[k][1] != 0:
                    k = (k + 1) % n
                slots[k] = (hv, offset)

            refs.extend((cur, n))
            packed = struct.pack(f"<{2 * n}I", *(v for slot in slots for v in slot))
            body += packed
            cur += len(packed)

        bwd_offset = 0
        if not self._flag & ONEWAY and self._backward:
            bwd_offset = cur
            packed = struct.pack(f"<{len(self._backward)}I", *self._backward)
            body += packed
            cur += len(packed)

        header = _HEADER.pack(
            CHUNK_ID,
            cur,
            self._flag,
            BYTEORDER_CHECK,
            len(self._backward),
            bwd_offset,
        )
        return header + _TABLE_REFS.pack(*refs) + bytes(body)


class Reader:
    """Read-only dictionary over a CQDB chunk.

    The chunk is validated structurally on construction; record contents
    are read on demand.
    """

    def __init__(self, buffer: bytes | memoryview, offset: int = 0) -> None:
        """Open a chunk.

        Args:
            buffer: Buffer holding the chunk.
            offset: Position of the chunk within buffer.

        Raises:
            CorruptModel: If the chunk fails validation.
        """
        view = memoryview(buffer)
        if offset < 0 or len(view) - offset < OFFSET_DATA:
            raise CorruptModel(message=f"CQDB chunk at {offset} is truncated")
        view = view[offset:]

        chunk_id, size, flag, byteorder, bwd_size, bwd_offset = _HEADER.unpack_from(view, 0)
        if chunk_id != CHUNK_ID:
            raise CorruptModel(message=f"Bad CQDB chunk id {chunk_id!r}")
        if byteorder != BYTEORDER_CHECK:
            raise CorruptModel(message=f"Bad CQDB byte-order marker {byteorder:#x}")
        if size < OFFSET_DATA or size > len(view):
            raise CorruptModel(message=f"CQDB chunk size {size} exceeds the buffer")

        self._view = view[:size]
        self._size = size
        self._flag = flag

        refs = _TABLE_REFS.unpack_from(view, HEADER_SIZE)
        self._tables: list[tuple[int, int]] = []
        num = 0
        for i in range(NUM_TABLES):
            table_offset, table_size = refs[2 * i], refs[2 * i + 1]
            if table_size:
                if table_offset < OFFSET_DATA or table_offset + 8 * table_size > size:
                    raise CorruptModel(message=f"CQDB hash table {i} is out of bounds")
                slots = np.frombuffer(self._view, dtype="<u4", count=2 * table_size, offset=table_offset)
                offsets = slots[1::2]
                used = offsets[offsets != 0]
                if np.any(used < OFFSET_DATA) or np.any(used.astype(np.int64) + 8 > size):
                    raise CorruptModel(message=f"CQDB hash table {i} references records out of bounds")
                if len(used) == table_size:
                    raise CorruptModel(message=f"CQDB hash table {i} has no vacant slot")
            self._tables.append((table_offset, table_size))
            num += table_size // 2
        self._num = num

        self._bwd: np.ndarray | None = None
        if bwd_offset:
            if bwd_offset < OFFSET_DATA or bwd_offset + 4 * bwd_size > size:
                raise CorruptModel(message="CQDB backward array is out of bounds")
            bwd = np.frombuffer(self._view, dtype="<u4", count=bwd_size, offset=bwd_offset)
            used = bwd[bwd != 0]
            if np.any(used < OFFSET_DATA) or np.any(used.astype(np.int64) + 8 > size):
                raise CorruptModel(message="CQDB backward array references records out of bounds")
            self._bwd = bwd

    @property
    def size(self) -> int:
        """Size of the chunk in bytes."""
        return self._size

    def _key_at(self, offset: int) -> tuple[int, memoryview]:
        id_, ksize = _PAIR.unpack_from(self._view, offset)
        if ksize == 0 or offset + 8 + ksize > self._size:
            raise CorruptModel(message=f"CQDB record at {offset} is out of bounds")
        return id_, self._view[offset + 8 : offset + 8 + ksize]

    def id_of(self, name: str) -> int | None:
        key = _encode_key(name)
        hv = hashlittle(key)
        table_offset, n = self._tables[hv % NUM_TABLES]
        if n == 0:
            return None

        k = (hv >> 8) % n
        for _ in range(n):
            slot_hash, record = _PAIR.unpack_from(self._view, table_offset + 8 * k)
            if record == 0:
                return None
            if slot_hash == hv:
                id_, stored = self._key_at(record)
                if stored == key:
                    return id_
            k = (k + 1) % n
        return None

    def name_of(self, id_: int) -> str | None:
        if self._bwd is None or not 0 <= id_ < len(self._bwd):
            return None
        offset = int(self._bwd[id_])
        if offset == 0:
            return None
        _, stored = self._key_at(offset)
        try:
            return bytes(stored[:-1]).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptModel(message=f"CQDB key for id {id_} is not valid UTF-8") from exc

    def count(self) -> int:
        return self._num

    def __len__(self) -> int:
        return self._num

    def __iter__(self) -> Iterator[str]:
        if self._bwd is None:
            return
        for id_ in range(len(self._bwd)):
            name = self.name_of(id_)
            if name is not None:
                yield name
