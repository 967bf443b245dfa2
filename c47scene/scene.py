"""Scenes: the object tree and tables of a scene archive, loaded from and saved to ZIP files."""

from __future__ import annotations

import dataclasses
import io
import math
import struct
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .audio import AudioManager
from .chunk import Chunk, fourcc
from .dbl import DBLEntry, DBLList, EntryType
from .gameobj import (
    FLAG_LIGHT,
    FLAG_LINE,
    FLAG_MESH,
    GameObject,
    Light,
    Mesh,
    MeshExtension,
    ObjLine,
    TextureAnimation,
    translation_matrix,
)
from .spkwriter import build_spk

_FIXED_ONE = 1073741824.0  # 2^30
_F32 = struct.Struct("<f")

ZROOM_TYPE = 0x21

_REQUIRED_OBJECT_CHUNKS = (
    "PROT", "PCLP", "PHEA", "PNAM", "PPOS", "PMTX", "PVER",
    "PFAC", "PFTX", "PUVC", "PDBL", "PDAT", "PEXC",
)
_KNOWN_CHUNKS = frozenset(
    fourcc(name)
    for name in _REQUIRED_OBJECT_CHUNKS
    + ("ANDS", "SNDR", "ZDEF", "MSGV", "MATL", "PTXI", "PZFI", "DLCF", "SPAT")
)
_NO_COPY_FILES = frozenset(
    name.lower()
    for name in (
        "Pack.SPK", "Pack.PAL", "Pack.DXT", "Pack.ANM", "Pack.WAV", "Pack.LGT",
        "PackRepeat.PAL", "PackRepeat.DXT", "PackRepeat.ANM", "PackRepeat.WAV",
    )
)

DEFAULT_DLC_FILES = ("GeomsBase.dlc", "EventsBase.dlc")
DEFAULT_SCENE_PATHS = ("Worlds", "Masters", "Z:\\c47edit", "Sounds", "")


class SceneError(Exception):
    """Raised when a scene archive is missing parts or holds malformed data."""


def _unpack(fmt: str, data: bytes, offset: int) -> tuple:
    try:
        return struct.unpack_from(fmt, data, offset)
    except struct.error as exc:
        raise SceneError(f"scene data truncated at offset {offset}") from exc


def _u32(data: bytes, offset: int) -> int:
    return _unpack("<I", data, offset)[0]


def _u32s(data: bytes, offset: int, count: int) -> list[int]:
    return list(_unpack(f"<{count}I", data, offset))


def _u16s(data: bytes, offset: int, count: int) -> list[int]:
    return list(_unpack(f"<{count}H", data, offset))


def _floats(data: bytes, offset: int, count: int) -> list[float]:
    return list(_unpack(f"<{count}f", data, offset))


def _records(fmt: str, data: bytes, offset: int, count: int) -> list[tuple]:
    size = struct.calcsize(fmt) * count
    if offset + size > len(data):
        raise SceneError(f"scene data truncated at offset {offset}")
    return list(struct.iter_unpack(fmt, data[offset:offset + size])) if size else []


def _cstr(data: bytes, offset: int = 0) -> str:
    if offset > len(data):
        raise SceneError(f"string offset {offset} is outside its buffer")
    end = data.find(b"\0", offset)
    if end < 0:
        end = len(data)
    return data[offset:end].decode("latin-1")


def _round_f32(value: float) -> float:
    return _F32.unpack(_F32.pack(value))[0]


def _cross(a: list[float], b: list[float]) -> list[float]:
    return [
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    ]


def _copy_value(value: Any) -> Any:
    if isinstance(value, DBLList):
        return _copy_dbl(value)
    if isinstance(value, list):
        return list(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, (type, GameObject)):
        return dataclasses.replace(value)
    return value


def _copy_dbl(dbl: DBLList) -> DBLList:
    return DBLList(
        flags=dbl.flags,
        entries=[DBLEntry(e.type, e.flags, _copy_value(e.value)) for e in dbl.entries],
    )


class _Archive:
    """Case-insensitive access to the members of a scene ZIP archive."""

    def __init__(self, archive: zipfile.ZipFile):
        self._zip = archive
        self._names: dict[str, str] = {}
        for info in archive.infolist():
            self._names.setdefault(info.filename.lower(), info.filename)

    def read(self, name: str) -> bytes | None:
        real = self._names.get(name.lower())
        return None if real is None else self._zip.read(real)


@dataclass
class _Packs:
    hea: bytes
    nam: bytes
    pos: bytes
    mtx: bytes
    ver: bytes
    fac: bytes
    ftx: bytes
    uvc: bytes
    dbl: bytes
    dat: bytes
    exc: bytes


@dataclass(eq=False)
class Scene:
    """A scene: object tree, asset packs, audio objects and scene tables."""

    old_spk_chunk: Chunk | None = None
    root_obj: GameObject | None = None
    clip_root_obj: GameObject | None = None
    super_root: GameObject | None = None
    last_spk_filename: str = ""
    zip_mem: bytes = b""
    pal_pack: Chunk = field(default_factory=Chunk)
    dxt_pack: Chunk = field(default_factory=Chunk)
    lgt_pack: Chunk = field(default_factory=Chunk)
    anm_pack: Chunk = field(default_factory=Chunk)
    wav_pack: Chunk = field(default_factory=Chunk)
    has_anm_pack: bool = False
    ready: bool = False
    audio_mgr: AudioManager = field(default_factory=AudioManager)
    zdef_names: str = ""
    zdef_values: DBLList = field(default_factory=DBLList)
    zdef_types: str = ""
    msg_definitions: dict[int, tuple[str, str]] = field(default_factory=dict)
    texture_material_map: list[tuple[str, str, int]] = field(default_factory=list)
    num_textures: int = 0
    zip_files_included: list[str] = field(default_factory=list)
    dlc_files: list[str] = field(default_factory=list)
    scene_paths: list[str] = field(default_factory=list)
    remaining_chunks: list[Chunk] = field(default_factory=list)

    # -- life cycle --------------------------------------------------------------------

    def _make_roots(self) -> None:
        self.root_obj = GameObject(name="Root", type=ZROOM_TYPE)
        self.clip_root_obj = GameObject(name="ClipRoot", type=ZROOM_TYPE)
        self.super_root = GameObject(name="SuperRoot", type=ZROOM_TYPE)
        self.super_root.subobj.extend([self.root_obj, self.clip_root_obj])
        self.root_obj.parent = self.clip_root_obj.parent = self.super_root
        self.root_obj.root = self.root_obj
        self.clip_root_obj.root = self.clip_root_obj

    def load_empty(self) -> None:
        """Replace the scene with a new empty one."""
        self.close()
        self._make_roots()
        self.pal_pack.tag = fourcc("LAP")
        self.dxt_pack.tag = fourcc("TXD")
        self.lgt_pack.tag = fourcc("TGL")
        self.anm_pack.tag = fourcc("MNA")
        self.wav_pack.tag = fourcc("VAW")
        self.dlc_files = list(DEFAULT_DLC_FILES)
        self.scene_paths = list(DEFAULT_SCENE_PATHS)
        self.zdef_values.entries.append(DBLEntry(type=EntryType.TERMINATOR))
        self.ready = True

    def close(self) -> None:
        """Discard the loaded scene, leaving an empty, not-ready one."""
        if not self.ready:
            return
        vars(self).update(vars(type(self)()))

    # -- loading -----------------------------------------------------------------------

    def _read_pack(self, archive: _Archive, ext: str, repeat_dir: Path,
                   required: bool = True) -> Chunk | None:
        packrep = archive.read(f"PackRepeat.{ext}")
        if packrep is not None:
            repeat_path = repeat_dir / f"Repeat.{ext}"
            try:
                repeat = repeat_path.read_bytes()
            except OSError as exc:
                raise SceneError(
                    f"Could not open {repeat_path}. Copy the Repeat files "
                    "(.ANM, .DXT, .PAL, .WAV) from the game's folder."
                ) from exc
            return Chunk.reconstruct_pack_from_repeat(packrep, repeat)
        pack = archive.read(f"Pack.{ext}")
        if pack is None:
            if required:
                raise SceneError("Failed to find Pack.* or PackRepeat.* in ZIP archive.")
            return None
        return Chunk.from_bytes(pack, 0)

    def _read_asset_packs(self, archive: _Archive, repeat_dir: Path) -> None:
        self.pal_pack = self._read_pack(archive, "PAL", repeat_dir)
        self.dxt_pack = self._read_pack(archive, "DXT", repeat_dir)
        self.lgt_pack = self._read_pack(archive, "LGT", repeat_dir)
        self.wav_pack = self._read_pack(archive, "WAV", repeat_dir)
        anm = self._read_pack(archive, "ANM", repeat_dir, required=False)
        self.has_anm_pack = anm is not None
        if anm is not None:
            self.anm_pack = anm
        for pack, name in ((self.pal_pack, "PAL"), (self.dxt_pack, "DXT"), (self.lgt_pack, "LGT")):
            if pack.tag != fourcc(name[::-1]):
                raise SceneError(f"Not a {name} chunk in Repeat.{name}")
        if len(self.pal_pack.subchunks) != len(self.dxt_pack.subchunks):
            raise SceneError("PAL and DXT packs hold different numbers of textures")

    def load_spk(self, filename: str | Path, repeat_dir: str | Path | None = None) -> None:
        """Load a scene archive; ``repeat_dir`` holds the game's Repeat.* files."""
        self.close()
        try:
            zip_mem = Path(filename).read_bytes()
        except OSError as exc:
            raise SceneError("Could not open the ZIP file.") from exc
        try:
            zfile = zipfile.ZipFile(io.BytesIO(zip_mem))
        except zipfile.BadZipFile as exc:
            raise SceneError("Failed to initialize ZIP reading.") from exc
        with zfile:
            archive = _Archive(zfile)
            spk_bytes = archive.read("Pack.SPK")
            if spk_bytes is None:
                raise SceneError("Failed to extract Pack.SPK from ZIP archive.")
            self._read_asset_packs(archive, Path(repeat_dir) if repeat_dir is not None else Path())
        self.zip_mem = zip_mem
        spk = Chunk.from_bytes(spk_bytes, 0)
        self.last_spk_filename = str(filename)

        found = {name: spk.find_subchunk(fourcc(name)) for name in _REQUIRED_OBJECT_CHUNKS}
        if any(chunk is None for chunk in found.values()):
            raise SceneError("One or more important chunks were not found in Pack.SPK .")
        packs = _Packs(*(bytes(found[name].maindata) for name in (
            "PHEA", "PNAM", "PPOS", "PMTX", "PVER", "PFAC", "PFTX", "PUVC", "PDBL", "PDAT", "PEXC")))

        self._make_roots()
        self._load_objects(found["PCLP"], found["PROT"], packs)
        self._load_tables(spk)

        self.remaining_chunks = [c for c in spk.subchunks if c.tag not in _KNOWN_CHUNKS]
        self.old_spk_chunk = spk
        self.ready = True

    def _load_objects(self, pclp: Chunk, prot: Chunk, packs: _Packs) -> None:
        idobjmap: dict[int, GameObject] = {}
        placed: list[tuple[Chunk, GameObject]] = []

        def create(tree: Chunk, parent: GameObject) -> None:
            for chunk in tree.subchunks:
                base = chunk.tag & 0xFFFFFF
                name = _cstr(packs.nam, _u32(packs.hea, base + 8))
                type_id, flags = _unpack("<2H", packs.hea, base + 20)
                obj = GameObject(name=name, type=type_id, flags=flags)
                obj.parent = parent
                parent.subobj.append(obj)
                idobjmap[len(idobjmap) + 1] = obj
                placed.append((chunk, obj))
                create(chunk, obj)

        create(pclp, self.clip_root_obj)
        create(prot, self.root_obj)

        mesh_map: dict[tuple[int, ...], Mesh] = {}
        line_map: dict[tuple[int, ...], ObjLine] = {}
        for chunk, obj in placed:
            base = chunk.tag & 0xFFFFFF

            def p(index: int, base: int = base) -> int:
                return _u32(packs.hea, base + 4 * index)

            state = (chunk.tag >> 24) & 0xFF
            if state >= 4:
                raise SceneError(f"invalid object state {state} for {obj.name!r}")
            obj.is_included_scene = bool(state & 2)
            obj.root = obj.parent.root
            obj.matrix = self._read_matrix(packs, p(4), p(3))

            if obj.flags & (FLAG_MESH | FLAG_LINE):
                key = tuple(p(i) for i in (6, 7, 8, 9, 10, 11, 12, 14))
            if obj.flags & FLAG_MESH:
                obj.color = p(13)
                if key not in mesh_map:
                    mesh_map[key] = self._read_mesh(packs, p)
                obj.mesh = mesh_map[key]
            if obj.flags & FLAG_LINE:
                obj.color = p(13)
                if key not in line_map:
                    if p(7) != 0 or p(11) != 0:
                        raise SceneError(f"line object {obj.name!r} has face data")
                    line_map[key] = ObjLine(
                        vertices=_floats(packs.ver, 4 * p(6), 3 * p(10)),
                        terms=_u32s(packs.dat, p(8), p(12)),
                        ftxo=p(9),
                        weird=p(14),
                    )
                obj.line = line_map[key]
            if obj.flags & FLAG_LIGHT:
                obj.light = Light(param=[p(6 + i) for i in range(7)])

            obj.dbl = DBLList.from_bytes(packs.dbl, p(0), idobjmap)
            exc_offset = p(1)
            if exc_offset != 0:
                obj.exc_chunk = Chunk.from_bytes(packs.exc, exc_offset - 1)

        self._idobjmap = idobjmap

    @staticmethod
    def _read_matrix(packs: _Packs, pos_offset: int, mtx_index: int) -> list[list[float]]:
        matrix = translation_matrix(*_unpack("<3f", packs.pos, pos_offset))
        raw = _unpack("<4i", packs.mtx, 16 * mtx_index)
        mc = [_round_f32(value / _FIXED_ONE) for value in raw]
        rv2 = [mc[0], mc[1], math.sqrt(max(0.0, 1.0 - mc[0] * mc[0] - mc[1] * mc[1]))]
        rv1 = [mc[2], mc[3], math.sqrt(max(0.0, 1.0 - mc[2] * mc[2] - mc[3] * mc[3]))]
        if raw[0] & 1:
            rv2[2] = -rv2[2]
        if raw[2] & 1:
            rv1[2] = -rv1[2]
        for row, vector in enumerate((_cross(rv1, rv2), rv1, rv2)):
            matrix[row][:3] = vector
        return matrix

    @staticmethod
    def _read_mesh(packs: _Packs, p) -> Mesh:
        mesh = Mesh(weird=p(14))
        mesh.vertices = _floats(packs.ver, 4 * p(6), 3 * p(10))
        mesh.quadindices = _u16s(packs.fac, 2 * p(7), 4 * p(11))
        mesh.triindices = _u16s(packs.fac, 2 * p(8), 3 * p(12))

        ftx_word = p(9)
        if ftx_word & 0x80000000:
            ext_base = ftx_word & 0x7FFFFFFF
            ftxo, ext_type = _u32s(packs.dat, ext_base, 2)
            if ext_type not in (3, 4):
                raise SceneError(f"unknown mesh extension type {ext_type}")
            ext = MeshExtension(type=ext_type)
            for i in range(ext.num_tex_anims):
                anim_offset = _u32(packs.dat, ext_base + 8 + 4 * i)
                count = _u32(packs.dat, anim_offset)
                frames = _records("<2I", packs.dat, anim_offset + 4, count)
                name = _cstr(packs.dat, anim_offset + 4 + 8 * count)
                ext.tex_anims[i] = TextureAnimation(frames=frames, name=name)
            mesh.extension = ext
        else:
            ftxo = ftx_word

        if ftxo != 0:
            ftx_base = ftxo - 1
            uv1, uv2, num_faces = _u32s(packs.ftx, ftx_base, 3)
            if num_faces != mesh.num_tris() + mesh.num_quads():
                raise SceneError("face texture count does not match the mesh faces")
            mesh.ftx_faces = _records("<6H", packs.ftx, ftx_base + 12, num_faces)
            textured = sum(1 for face in mesh.ftx_faces if face[0] & 0x20)
            lit = sum(1 for face in mesh.ftx_faces if face[0] & 0x80)
            mesh.texture_coords = _floats(packs.uvc, 4 * uv1, 8 * textured)
            mesh.light_coords = _floats(packs.uvc, 4 * uv2, 8 * lit)
        return mesh

    def _load_tables(self, spk: Chunk) -> None:
        def need(name: str) -> Chunk:
            chunk = spk.find_subchunk(fourcc(name))
            if chunk is None:
                raise SceneError(f"chunk {name} was not found in Pack.SPK")
            return chunk

        idobjmap = self._idobjmap
        self.audio_mgr.load(need("ANDS"), need("SNDR"))

        zdef = need("ZDEF")
        if len(zdef.multidata) < 3:
            raise SceneError("ZDEF chunk is incomplete")
        self.zdef_names = _cstr(bytes(zdef.multidata[0]))
        self.zdef_values = DBLList.from_bytes(bytes(zdef.multidata[1]), 0, idobjmap)
        self.zdef_types = _cstr(bytes(zdef.multidata[2]))

        for msg in need("MSGV").subchunks:
            if len(msg.multidata) < 2:
                raise SceneError("message definition is incomplete")
            self.msg_definitions[msg.tag] = (
                _cstr(bytes(msg.multidata[0])), _cstr(bytes(msg.multidata[1])))

        matl = need("MATL")
        mtlv = matl.find_subchunk(fourcc("MTLV"))
        if mtlv is None or bytes(mtlv.maindata) != struct.pack("<I", 1):
            raise SceneError("unsupported material map version")
        parts = [bytes(d) for d in matl.multidata]
        for tex_name, mat_name, number in zip(parts[0::3], parts[1::3], parts[2::3]):
            self.texture_material_map.append((_cstr(tex_name), _cstr(mat_name), _u32(number, 0)))

        self.num_textures = _u32(bytes(need("PTXI").maindata), 0)

        for name, target in (("PZFI", self.zip_files_included),
                             ("DLCF", self.dlc_files),
                             ("SPAT", self.scene_paths)):
            chunk = need(name)
            if chunk.maindata:
                target.append(_cstr(bytes(chunk.maindata)))
            target.extend(_cstr(bytes(d)) for d in chunk.multidata)
        del self._idobjmap

    # -- saving ------------------------------------------------------------------------

    def construct_spk(self) -> Chunk:
        """Build the SPK chunk describing the current scene."""
        return build_spk(self)

    def save_spk(self, filename: str | Path) -> None:
        """Write the scene archive, keeping the other files of the loaded archive."""
        spk = self.construct_spk()
        with zipfile.ZipFile(filename, "w", zipfile.ZIP_DEFLATED) as out:
            if self.zip_mem:
                try:
                    original = zipfile.ZipFile(io.BytesIO(self.zip_mem))
                except zipfile.BadZipFile as exc:
                    raise SceneError("Couldn't reopen the original scene ZIP file.") from exc
                with original:
                    for info in original.infolist():
                        if info.filename.lower() not in _NO_COPY_FILES:
                            out.writestr(info, original.read(info))
            out.writestr("Pack.SPK", spk.to_bytes())
            out.writestr("Pack.PAL", self.pal_pack.to_bytes())
            out.writestr("Pack.DXT", self.dxt_pack.to_bytes())
            out.writestr("Pack.LGT", self.lgt_pack.to_bytes())
            out.writestr("Pack.WAV", self.wav_pack.to_bytes())
            if self.has_anm_pack:
                out.writestr("Pack.ANM", self.anm_pack.to_bytes())
        self.old_spk_chunk = spk

    # -- editing -----------------------------------------------------------------------

    def create_object(self, type_id: int, parent: GameObject, class_info: Any) -> GameObject:
        """Create an object of a class under ``parent`` with default property values."""
        obj = GameObject()
        obj.type = type_id
        obj.flags = class_info.get_obj_type_category(type_id)
        self.give_object(obj, parent)
        obj.root = parent.root
        if obj.flags & FLAG_MESH:
            obj.mesh = Mesh()
        if obj.flags & FLAG_LIGHT:
            obj.light = Light()
        if obj.flags & FLAG_LINE:
            obj.line = ObjLine()
        obj.dbl.add_members(class_info.get_member_names(obj))
        return obj

    def remove_object(self, obj: GameObject) -> None:
        """Detach an object (and its subtree) from its parent."""
        if obj.parent is not None:
            if not any(child is obj for child in obj.parent.subobj):
                raise ValueError(f"object {obj.name!r} is not among its parent's children")
            obj.parent.subobj.remove(obj)
            obj.parent = None

    def duplicate_object(self, obj: GameObject, parent: GameObject | None = None) -> GameObject | None:
        """Copy an object and its subtree under ``parent`` (the root by default).

        Geometry, light and extra chunk are shared with the original; the property
        list is copied. Objects without a parent cannot be duplicated.
        """
        if parent is None:
            parent = self.root_obj
        if obj.parent is None:
            return None
        copy = dataclasses.replace(
            obj,
            subobj=[],
            parent=parent,
            matrix=[list(row) for row in obj.matrix],
            dbl=_copy_dbl(obj.dbl),
        )
        parent.subobj.append(copy)
        for child in obj.subobj:
            self.duplicate_object(child, copy)
        return copy

    def give_object(self, obj: GameObject, target: GameObject) -> None:
        """Move an object to the end of ``target``'s children."""
        if obj.parent is not None and any(child is obj for child in obj.parent.subobj):
            obj.parent.subobj.remove(obj)
        target.subobj.append(obj)
        obj.parent = target