"""Nested tagged binary chunks used by scene and asset packs."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

SIZE_MASK = 0x3FFFFFFF
FLAG_SUBCHUNKS = 0x80000000
FLAG_MULTIDATA = 0x40000000

_U32 = struct.Struct("<I")
_RECORD = struct.Struct("<4I")


def fourcc(name: str) -> int:
    """Return the tag value whose little-endian bytes spell ``name`` (NUL padded)."""
    raw = name.encode("latin-1")
    if len(raw) > 4:
        raise ValueError(f"tag name {name!r} is longer than 4 characters")
    return int.from_bytes(raw.ljust(4, b"\0"), "little")


def tag_name(tag: int) -> str:
    """Return the readable name of a tag value, without trailing NULs."""
    return (tag & 0xFFFFFFFF).to_bytes(4, "little").rstrip(b"\0").decode("latin-1")


def _read_u32(data: bytes, offset: int) -> int:
    if offset < 0:
        raise ValueError(f"invalid chunk offset {offset}")
    try:
        return _U32.unpack_from(data, offset)[0]
    except struct.error as exc:
        raise ValueError(f"chunk data truncated at offset {offset}") from exc


def _slice(data: bytes, offset: int, length: int) -> bytes:
    if offset < 0 or length < 0 or offset + length > len(data):
        raise ValueError(f"chunk data truncated: need {length} bytes at offset {offset}")
    return bytes(data[offset:offset + length])


@dataclass
class Chunk:
    """A tagged node holding either one data buffer or several, plus child chunks."""

    tag: int = 0
    maindata: bytes = b""
    multidata: list[bytes] = field(default_factory=list)
    subchunks: list[Chunk] = field(default_factory=list)

    def find_subchunk(self, tag: int | str) -> Chunk | None:
        """Return the first direct child with the given tag, or None."""
        if isinstance(tag, str):
            tag = fourcc(tag)
        return next((sub for sub in self.subchunks if sub.tag == tag), None)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> Chunk:
        """Parse a chunk (and its children) starting at ``offset`` in ``data``."""
        tag = _read_u32(data, offset)
        info = _read_u32(data, offset + 4)
        size = info & SIZE_MASK
        has_subchunks = bool(info & FLAG_SUBCHUNKS)
        has_multidata = bool(info & FLAG_MULTIDATA)

        pos = offset + 8
        if has_subchunks or has_multidata:
            data_offset = _read_u32(data, pos)
            pos += 4
        else:
            data_offset = 8

        num_subchunks = 0
        if has_subchunks:
            num_subchunks = _read_u32(data, pos)
            pos += 4

        lengths: list[int] = []
        if has_multidata:
            count = _read_u32(data, pos)
            pos += 4
            lengths = [_read_u32(data, pos + 4 * i) for i in range(count)]
            pos += 4 * count

        subchunks = []
        for _ in range(num_subchunks):
            subchunks.append(cls.from_bytes(data, pos))
            pos += _read_u32(data, pos + 4) & SIZE_MASK

        data_pos = offset + data_offset
        multidata: list[bytes] = []
        maindata = b""
        if has_multidata:
            for length in lengths:
                multidata.append(_slice(data, data_pos, length))
                data_pos += length
        else:
            maindata = _slice(data, data_pos, size - data_offset)

        return cls(tag=tag, maindata=maindata, multidata=multidata, subchunks=subchunks)

    def to_bytes(self) -> bytes:
        """Serialize the chunk tree."""
        out = bytearray()
        self._write(out)
        return bytes(out)

    def _write(self, out: bytearray) -> None:
        begin = len(out)
        has_multidata = bool(self.multidata)
        has_subchunks = bool(self.subchunks)

        out += _U32.pack(self.tag)
        out += bytes(4)
        if has_multidata or has_subchunks:
            out += bytes(4)
        if has_subchunks:
            out += _U32.pack(len(self.subchunks))
        if has_multidata:
            out += _U32.pack(len(self.multidata))
            for buf in self.multidata:
                out += _U32.pack(len(buf))

        for sub in self.subchunks:
            sub._write(out)

        data_offset = len(out) - begin
        if has_multidata:
            for buf in self.multidata:
                out += buf
        else:
            out += self.maindata

        length_flags = (len(out) - begin)
        if has_multidata:
            length_flags |= FLAG_MULTIDATA
        if has_subchunks:
            length_flags |= FLAG_SUBCHUNKS
        _U32.pack_into(out, begin + 4, length_flags & 0xFFFFFFFF)
        if has_multidata or has_subchunks:
            _U32.pack_into(out, begin + 8, data_offset)

    @classmethod
    def reconstruct_pack_from_repeat(cls, packrep: bytes, repeat: bytes) -> Chunk:
        """Rebuild a pack chunk from its header-only description and a shared repeat file."""
        packrep = bytes(packrep)
        repeat = bytes(repeat)
        recons_offset = _read_u32(packrep, 4)

        cursor = 8
        current = 0
        targets: dict[int, tuple[Chunk, int | None]] = {}

        def take() -> int:
            nonlocal cursor
            value = _read_u32(packrep, cursor)
            cursor += 4
            return value

        def build(chunk: Chunk) -> None:
            nonlocal current
            begin = current
            chunk.tag = take()
            info = take()
            size = info & SIZE_MASK
            has_subchunks = bool(info & FLAG_SUBCHUNKS)
            has_multidata = bool(info & FLAG_MULTIDATA)

            data_offset = 8
            if has_subchunks or has_multidata:
                data_offset = take()

            if has_subchunks:
                chunk.subchunks = [cls() for _ in range(take())]

            num_multidata = 0
            if has_multidata:
                num_multidata = take()
                chunk.multidata = [bytes(take()) for _ in range(num_multidata)]
                for index, buf in enumerate(chunk.multidata):
                    targets[current + data_offset] = (chunk, index)
                    data_offset += len(buf)
            else:
                targets[current + data_offset] = (chunk, None)

            if has_subchunks:
                current += 16 + (4 + 4 * num_multidata if has_multidata else 0)
                for sub in chunk.subchunks:
                    build(sub)

            current = begin + size

        root = cls()
        build(root)

        pos = 8 + recons_offset
        while pos < len(packrep):
            try:
                repeat_offset, key, data_size, first = _RECORD.unpack_from(packrep, pos)
            except struct.error as exc:
                raise ValueError(f"truncated reconstruction record at offset {pos}") from exc
            pos += _RECORD.size
            try:
                chunk, index = targets[key]
            except KeyError:
                raise ValueError(f"reconstruction refers to unknown data offset {key}") from None
            if index is not None and len(chunk.multidata[index]) != data_size:
                raise ValueError(f"reconstruction size mismatch at data offset {key}")
            buf = bytearray(_slice(repeat, repeat_offset, data_size))
            head = _U32.pack(first)
            keep = min(4, data_size)
            buf[:keep] = head[:keep]
            if index is None:
                chunk.maindata = bytes(buf)
            else:
                chunk.multidata[index] = bytes(buf)

        return root