"""DBL lists: the typed property values attached to scene objects."""

from __future__ import annotations

import logging
import re
import struct
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from .audio import AudioRef
from .classinfo import ObjectMember

_log = logging.getLogger(__name__)

_U8 = struct.Struct("<B")
_U32 = struct.Struct("<I")
_F32 = struct.Struct("<f")
_F64 = struct.Struct("<d")

END_MARKER = 0xFF
_SIZE_MASK = 0xFFFFFF

_FLOAT_PREFIX = re.compile(r"\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_INT_PREFIX = re.compile(r"\s*[-+]?\d+")


class EntryType(IntEnum):
    UNDEFINED = 0
    DOUBLE = 1
    FLOAT = 2
    INT = 3
    STRING = 4
    FILE = 5
    TERMINATOR = 6
    DATA = 7
    ZGEOMREF = 8
    ZGEOMREFTAB = 9
    MSG = 10
    SNDREF = 11
    SCRIPT = 12


_TYPE_NAMES = (
    "0", "double", "float", "int", "char*", "5", "EndCpnt", "7",
    "ZGEOMREF", "ZGEOMREFTAB", "MSG", "SNDREF", "Script",
)


def entry_type_name(type_code: int) -> str:
    """Return the display name of an entry type code (flag bits are ignored)."""
    code = type_code & 0x3F
    if code == 0x3F:
        return "EndDBL"
    if code < len(_TYPE_NAMES):
        return _TYPE_NAMES[code]
    return "?"


@dataclass
class DBLEntry:
    """One typed value; object references hold the referenced object or None."""

    type: EntryType = EntryType.UNDEFINED
    flags: int = 0
    value: Any = None


def _u32(data: bytes, pos: int) -> int:
    try:
        return _U32.unpack_from(data, pos)[0]
    except struct.error as exc:
        raise ValueError(f"DBL data truncated at offset {pos}") from exc


def _slice(data: bytes, begin: int, end: int) -> bytes:
    if begin < 0 or end < begin or end > len(data):
        raise ValueError(f"DBL data truncated at offset {begin}")
    return data[begin:end]


def _decode_ref(object_id: int, idobjmap: Mapping[int, Any] | None) -> Any:
    if object_id == 0:
        return None
    try:
        return (idobjmap or {})[object_id]
    except KeyError:
        raise KeyError(f"DBL refers to unknown object id {object_id}") from None


def _lookup_id(objidmap: Mapping[Any, int] | None, obj: Any) -> int:
    if obj is None or objidmap is None:
        return 0
    try:
        return objidmap.get(obj, 0)
    except TypeError:
        return next((i for o, i in objidmap.items() if o is obj), 0)


def _parse_float(text: str) -> float:
    match = _FLOAT_PREFIX.match(text)
    if not match:
        raise ValueError(f"invalid floating-point default {text!r}")
    return float(match.group())


def _parse_int(text: str) -> int:
    match = _INT_PREFIX.match(text)
    if not match:
        raise ValueError(f"invalid integer default {text!r}")
    return int(match.group())


def _round_f32(value: float) -> float:
    return _F32.unpack(_F32.pack(value))[0]


@dataclass
class DBLList:
    """An ordered list of DBL entries with header flags."""

    flags: int = 0
    entries: list[DBLEntry] = field(default_factory=list)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        offset: int = 0,
        idobjmap: Mapping[int, Any] | None = None,
    ) -> DBLList:
        """Decode a list at ``offset``; ``idobjmap`` maps object ids to objects."""
        return cls._parse(bytes(data), offset, idobjmap)

    @classmethod
    def _parse(cls, data: bytes, offset: int, idobjmap: Mapping[int, Any] | None) -> DBLList:
        header = _u32(data, offset)
        size = header & _SIZE_MASK
        result = cls(flags=(header >> 24) & 0xFF)
        end = offset + size
        pos = offset + 4
        while pos < end:
            if pos >= len(data):
                raise ValueError(f"DBL data truncated at offset {pos}")
            code = data[pos]
            if code == END_MARKER:
                if pos != end - 1:
                    _log.warning("DBL list has more bytes after the end")
                break
            try:
                etype = EntryType(code & 0x3F)
            except ValueError:
                raise ValueError("Unknown DBL entry type!") from None
            entry = DBLEntry(type=etype, flags=code & 0xC0)
            result.entries.append(entry)
            pos += 1

            if etype in (EntryType.UNDEFINED, EntryType.TERMINATOR):
                pass
            elif etype == EntryType.DOUBLE:
                entry.value = _F64.unpack(_slice(data, pos, pos + 8))[0]
                pos += 8
            elif etype == EntryType.FLOAT:
                entry.value = _F32.unpack(_slice(data, pos, pos + 4))[0]
                pos += 4
            elif etype in (EntryType.INT, EntryType.MSG):
                entry.value = _u32(data, pos)
                pos += 4
            elif etype in (EntryType.STRING, EntryType.FILE):
                nul = data.find(b"\0", pos)
                if nul < 0:
                    raise ValueError(f"unterminated DBL string at offset {pos}")
                entry.value = data[pos:nul].decode("latin-1")
                pos = nul + 1
            elif etype == EntryType.DATA:
                length = _u32(data, pos)
                if length < 4:
                    raise ValueError(f"invalid DBL data size {length}")
                entry.value = _slice(data, pos + 4, pos + length)
                pos += length
            elif etype == EntryType.ZGEOMREF:
                entry.value = _decode_ref(_u32(data, pos), idobjmap)
                pos += 4
            elif etype == EntryType.ZGEOMREFTAB:
                length = _u32(data, pos)
                if length < 4:
                    raise ValueError(f"invalid DBL reference table size {length}")
                entry.value = [
                    _decode_ref(_u32(data, pos + 4 + 4 * i), idobjmap)
                    for i in range((length - 4) // 4)
                ]
                pos += length
            elif etype == EntryType.SNDREF:
                entry.value = AudioRef(_u32(data, pos))
                pos += 4
            elif etype == EntryType.SCRIPT:
                entry.value = cls._parse(data, pos, idobjmap)
                pos += _u32(data, pos) & _SIZE_MASK
        return result

    def to_bytes(self, objidmap: Mapping[Any, int] | None = None) -> bytes:
        """Encode the list; ``objidmap`` maps referenced objects to their ids."""
        out = bytearray(4)
        for entry in self.entries:
            etype = EntryType(entry.type)
            out += _U8.pack((int(etype) | entry.flags) & 0xFF)
            value = entry.value
            if etype in (EntryType.UNDEFINED, EntryType.TERMINATOR):
                continue
            if etype == EntryType.DOUBLE:
                out += _F64.pack(value)
            elif etype == EntryType.FLOAT:
                out += _F32.pack(value)
            elif etype in (EntryType.INT, EntryType.MSG):
                out += _U32.pack(value & 0xFFFFFFFF)
            elif etype in (EntryType.STRING, EntryType.FILE):
                out += value.encode("latin-1") + b"\0"
            elif etype == EntryType.DATA:
                out += _U32.pack(len(value) + 4)
                out += value
            elif etype == EntryType.ZGEOMREF:
                out += _U32.pack(_lookup_id(objidmap, value))
            elif etype == EntryType.ZGEOMREFTAB:
                out += _U32.pack(len(value) * 4 + 4)
                for obj in value:
                    out += _U32.pack(_lookup_id(objidmap, obj))
            elif etype == EntryType.SNDREF:
                out += _U32.pack(value.id)
            elif etype == EntryType.SCRIPT:
                out += value.to_bytes(objidmap)
        if self.entries:
            out += _U8.pack(END_MARKER)
        _U32.pack_into(out, 0, (len(out) | (self.flags << 24)) & 0xFFFFFFFF)
        return bytes(out)

    def add_members(self, members: Iterable[ObjectMember]) -> None:
        """Append one entry with its default value for each member slot."""
        for member in members:
            info = member.info
            kind = info.type
            default = info.default_value
            entry = DBLEntry()
            self.entries.append(entry)
            if kind == "DOUBLE":
                entry.type = EntryType.DOUBLE
                entry.value = _parse_float(default) if default else 0.0
            elif kind == "FLOAT":
                entry.type = EntryType.FLOAT
                entry.value = _round_f32(_parse_float(default)) if default else 0.0
            elif kind in ("INT", "LONG", "BOOL", "COLOR"):
                if default in ("", "false", "FALSE"):
                    number = 0
                elif default in ("true", "TRUE"):
                    number = 1
                else:
                    number = _parse_int(default)
                entry.type = EntryType.INT
                entry.value = number & 0xFFFFFFFF
            elif kind in ("ENUM", "WINOBJTYPE"):
                entry.type = EntryType.INT
                entry.value = 0
            elif kind in ("CHAR*", "SUBPIC"):
                entry.type = EntryType.STRING
                entry.value = default
            elif kind in ("DATA", "TABLE"):
                entry.type = EntryType.DATA
                entry.value = b""
            elif kind == "ZGEOMREF":
                entry.type = EntryType.ZGEOMREF
                entry.value = None
            elif kind == "ZGEOMREFTAB":
                entry.type = EntryType.ZGEOMREFTAB
                entry.value = []
            elif kind == "MSG":
                entry.type = EntryType.MSG
                entry.value = 0
            elif kind in ("SNDREF", "SNDSETREF", "ROOMREF", "MATERIALREF"):
                entry.type = EntryType.SNDREF
                entry.value = AudioRef()
            elif kind == "SCRIPT":
                entry.type = EntryType.SCRIPT
                entry.value = DBLList()
            elif kind == "":
                entry.type = EntryType.TERMINATOR
            else:
                _log.warning("unknown member type %s", kind)