"""Audio object table stored in the ANDS and SNDR chunks of a scene pack."""

from __future__ import annotations

import struct
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import ClassVar, TypeVar

from .chunk import Chunk, fourcc

_U32 = struct.Struct("<I")
_F32 = struct.Struct("<f")


@dataclass
class AudioRef:
    """Reference to an audio object by its slot id (0 means none)."""

    id: int = 0


class _BufferReader:
    """Reads one value per data buffer, in order."""

    def __init__(self, buffers: Iterable[bytes]):
        self._buffers = iter(buffers)

    def _next(self) -> bytes:
        try:
            return next(self._buffers)
        except StopIteration:
            raise ValueError("audio chunk ran out of data entries") from None

    def _unpack(self, codec: struct.Struct):
        try:
            return codec.unpack_from(self._next())[0]
        except struct.error as exc:
            raise ValueError("audio data entry is too short") from exc

    def u32(self) -> int:
        return self._unpack(_U32)

    def f32(self) -> float:
        return self._unpack(_F32)

    def ref(self) -> AudioRef:
        return AudioRef(self.u32())

    def string(self) -> str:
        return bytes(self._next()).split(b"\0", 1)[0].decode("latin-1")

    def read(self, kind: str):
        readers: dict[str, Callable[[], object]] = {
            "u32": self.u32,
            "f32": self.f32,
            "ref": self.ref,
            "str": self.string,
        }
        return readers[kind]()


def _encode(kind: str, value) -> bytes:
    if kind == "u32":
        return _U32.pack(value)
    if kind == "f32":
        return _F32.pack(value)
    if kind == "ref":
        return _U32.pack(value.id)
    if kind == "str":
        return value.encode("latin-1") + b"\0"
    raise ValueError(f"unknown field kind {kind!r}")


@dataclass
class AudioObject:
    """Base of all audio objects; each subclass lists its serialized fields."""

    TYPEID: ClassVar[int] = 0
    FIELDS: ClassVar[tuple[tuple[str, str], ...]] = ()

    def _load_fields(self, reader: _BufferReader) -> None:
        for name, kind in self.FIELDS:
            setattr(self, name, reader.read(kind))

    def _dump_fields(self) -> list[bytes]:
        return [_encode(kind, getattr(self, name)) for name, kind in self.FIELDS]


@dataclass
class WaveAudioObject(AudioObject):
    TYPEID: ClassVar[int] = 1


@dataclass
class SoundAudioObject(AudioObject):
    TYPEID: ClassVar[int] = 2
    FIELDS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("wave_ref", "ref"),
        ("param1", "f32"),
        ("param2", "f32"),
        ("param3", "f32"),
        ("param4", "u32"),
    )

    wave_ref: AudioRef = field(default_factory=AudioRef)
    param1: float = 12.7
    param2: float = 1.7
    param3: float = 0.0
    param4: int = 0


@dataclass
class SetAudioObject(AudioObject):
    TYPEID: ClassVar[int] = 3
    # The fifth and sixth stored slots are both bound to param4.
    FIELDS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("param1", "f32"),
        ("param2", "f32"),
        ("param3", "u32"),
        ("param4", "u32"),
        ("param4", "u32"),
        ("param4", "u32"),
    )

    param1: float = 100.0
    param2: float = 1.0
    param3: int = 1
    param4: int = 0
    param5: int = 0
    param6: int = 0
    sounds: list[AudioRef] = field(default_factory=list)

    def _load_sounds(self, sets_chunk: Chunk) -> None:
        sources = sets_chunk.multidata if sets_chunk.multidata else [sets_chunk.maindata]
        reader = _BufferReader(sources)
        count = reader.u32()
        self.sounds = [reader.ref() for _ in range(count)]

    def _sets_chunk(self) -> Chunk:
        chunk = Chunk(tag=fourcc("SETS"))
        chunk.multidata.append(_encode("u32", len(self.sounds)))
        chunk.multidata.extend(_encode("ref", ref) for ref in self.sounds)
        return chunk


@dataclass
class MaterialAudioObject(AudioObject):
    TYPEID: ClassVar[int] = 4
    FIELDS: ClassVar[tuple[tuple[str, str], ...]] = tuple(
        (f"mat_param{i}", "u32") for i in range(8)
    )

    mat_param0: int = 0
    mat_param1: int = 0
    mat_param2: int = 0
    mat_param3: int = 0
    mat_param4: int = 0
    mat_param5: int = 0
    mat_param6: int = 0
    mat_param7: int = 0


@dataclass
class ImpactAudioObject(AudioObject):
    TYPEID: ClassVar[int] = 5
    FIELDS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("set", "ref"),
        ("mat1", "ref"),
        ("mat2", "ref"),
    )

    set: AudioRef = field(default_factory=AudioRef)
    mat1: AudioRef = field(default_factory=AudioRef)
    mat2: AudioRef = field(default_factory=AudioRef)


_ROOM_KINDS = (
    "u32", "f32", "f32", "u32", "u32", "u32", "f32", "u32", "f32",
    "f32", "f32", "u32", "f32", "u32", "u32", "u32", "u32",
)


@dataclass
class RoomAudioObject(AudioObject):
    TYPEID: ClassVar[int] = 6
    FIELDS: ClassVar[tuple[tuple[str, str], ...]] = tuple(
        (f"rao_unk{i}", kind) for i, kind in enumerate(_ROOM_KINDS)
    )

    rao_unk0: int = 0
    rao_unk1: float = 0.0
    rao_unk2: float = 0.0
    rao_unk3: int = 0
    rao_unk4: int = 0
    rao_unk5: int = 0
    rao_unk6: float = 0.0
    rao_unk7: int = 0
    rao_unk8: float = 0.0
    rao_unk9: float = 0.0
    rao_unk10: float = 0.0
    rao_unk11: int = 0
    rao_unk12: float = 0.0
    rao_unk13: int = 0
    rao_unk14: int = 0
    rao_unk15: int = 0
    rao_unk16: int = 0


_TAGGED_TYPES: tuple[tuple[str, type[AudioObject]], ...] = (
    ("WAVC", WaveAudioObject),
    ("SNDC", SoundAudioObject),
    ("SETC", SetAudioObject),
    ("MTLS", MaterialAudioObject),
    ("MMPS", ImpactAudioObject),
    ("ROMS", RoomAudioObject),
)

T = TypeVar("T", bound=AudioObject)


@dataclass
class AudioManager:
    """Audio objects and their names, indexed by slot id (slot 0 is unused)."""

    objects: list[AudioObject | None] = field(default_factory=list)
    names: list[str] = field(default_factory=list)

    def allocate_slot(self, index: int) -> None:
        """Grow the tables so that ``index`` is a valid slot."""
        if index == 0:
            raise ValueError("audio slot 0 is reserved")
        if index >= len(self.objects):
            self.objects.extend([None] * (index + 1 - len(self.objects)))
        if index >= len(self.names):
            self.names.extend([""] * (index + 1 - len(self.names)))

    def get_object(self, object_id: int) -> AudioObject | None:
        if 0 < object_id < len(self.objects):
            return self.objects[object_id]
        return None

    def get_object_as(self, object_id: int, cls: type[T]) -> T | None:
        obj = self.get_object(object_id)
        if obj is not None and obj.TYPEID == cls.TYPEID:
            return obj  # type: ignore[return-value]
        return None

    def load(self, ands: Chunk, sndr: Chunk) -> None:
        """Fill the tables from an ANDS chunk and its SNDR name list."""
        for tag, kind in _TAGGED_TYPES:
            chunk = ands.find_subchunk(fourcc(tag))
            if chunk is None:
                raise ValueError(f"audio data has no {tag} chunk")
            reader = _BufferReader(chunk.multidata)
            reader.u32()  # format version, normally 1
            count = reader.u32()
            for index in range(count):
                object_id = reader.u32()
                name = reader.string()
                obj = kind()
                obj._load_fields(reader)
                if isinstance(obj, SetAudioObject):
                    if index >= len(chunk.subchunks):
                        raise ValueError(f"sound set {object_id} has no SETS chunk")
                    obj._load_sounds(chunk.subchunks[index])
                self.allocate_slot(object_id)
                self.objects[object_id] = obj
                self.names[object_id] = name

        reader = _BufferReader(sndr.multidata)
        for _ in range((len(sndr.multidata) + 1) // 2):
            object_id = reader.u32()
            name = reader.string()
            self.allocate_slot(object_id)
            if self.objects[object_id] is not None and self.names[object_id] != name:
                raise ValueError(
                    f"audio object {object_id} is named {self.names[object_id]!r} "
                    f"but the name list says {name!r}"
                )
            self.names[object_id] = name

    def save(self) -> tuple[Chunk, Chunk]:
        """Build the ANDS and SNDR chunks describing the tables."""
        ands = Chunk(tag=fourcc("ANDS"), maindata=_U32.pack(1))
        for tag, kind in _TAGGED_TYPES:
            chunk = Chunk(tag=fourcc(tag))
            chunk.multidata.append(_U32.pack(1))
            chunk.multidata.append(_U32.pack(0))
            count = 0
            for object_id, (obj, name) in enumerate(zip(self.objects, self.names)):
                if object_id == 0 or obj is None or obj.TYPEID != kind.TYPEID:
                    continue
                chunk.multidata.append(_encode("u32", object_id))
                chunk.multidata.append(_encode("str", name))
                chunk.multidata.extend(obj._dump_fields())
                if isinstance(obj, SetAudioObject):
                    chunk.subchunks.append(obj._sets_chunk())
                count += 1
            chunk.multidata[1] = _U32.pack(count)
            ands.subchunks.append(chunk)

        sndr = Chunk(tag=fourcc("SNDR"))
        for object_id, name in enumerate(self.names):
            if object_id == 0 or not name:
                continue
            sndr.multidata.append(_encode("u32", object_id))
            sndr.multidata.append(_encode("str", name))
        return ands, sndr