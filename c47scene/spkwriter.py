"""Building the SPK scene pack chunk from a scene's object tree and tables."""

from __future__ import annotations

import itertools
import logging
import math
import struct
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from .chunk import Chunk, fourcc, tag_name
from .gameobj import FLAG_LIGHT, FLAG_LINE, FLAG_MESH, GameObject

_log = logging.getLogger(__name__)

_U32 = struct.Struct("<I")
_F32 = struct.Struct("<f")
_VEC3 = struct.Struct("<3f")
_MTX = struct.Struct("<4I")
_HEADER = struct.Struct("<5I2H")
_FTX_HEADER = struct.Struct("<3I")
_FTX_FACE = struct.Struct("<6H")

_FIXED_ONE = 1073741824.0  # 2^30

SPK_TAG = fourcc("KPS")
SPK_VERSION = (10, 0x40000)


def compute_bytesum(data: bytes) -> int:
    """Return the 32-bit sum of all bytes."""
    return sum(data) & 0xFFFFFFFF


def _round_f32(value: float) -> float:
    return _F32.unpack(_F32.pack(value))[0]


def _fixed(value: float) -> int:
    return math.trunc(_round_f32(value) * _FIXED_ONE) & 0xFFFFFFFF


def _floats(values: list[float]) -> bytes:
    return struct.pack(f"<{len(values)}f", *values)


def _u16s(values: list[int]) -> bytes:
    return struct.pack(f"<{len(values)}H", *values)


def _u32s(values: list[int]) -> bytes:
    return struct.pack(f"<{len(values)}I", *values)


def _nt(text: str) -> bytes:
    return text.encode("latin-1") + b"\0"


@dataclass
class PackBuffer:
    """Concatenated buffer that stores each distinct element once."""

    offset_unit: int = 1
    terminator: bytes = b""
    buffer: bytearray = field(default_factory=bytearray)
    offsets: dict[bytes, int] = field(default_factory=dict)

    def add_byte_offset(self, elem: bytes) -> int:
        """Store ``elem`` unless already present; return its byte offset."""
        key = bytes(elem)
        offset = self.offsets.get(key)
        if offset is None:
            offset = len(self.buffer)
            self.offsets[key] = offset
            self.buffer += key + self.terminator
        return offset

    def add(self, elem: bytes) -> int:
        """Store ``elem`` and return its offset in units of ``offset_unit`` bytes."""
        return self.add_byte_offset(elem) // self.offset_unit


@dataclass
class NonsharingPackBuffer:
    """Concatenated buffer that stores every element, even repeated ones."""

    offset_unit: int = 1
    buffer: bytearray = field(default_factory=bytearray)

    def add_byte_offset(self, elem: bytes) -> int:
        offset = len(self.buffer)
        self.buffer += elem
        return offset

    def add(self, elem: bytes) -> int:
        return self.add_byte_offset(elem) // self.offset_unit


@dataclass
class SceneSaver:
    """Accumulates the shared pack buffers while object chunks are built."""

    objidmap: dict[GameObject, int] = field(default_factory=dict)
    moc_objcount: int = 0
    heabuf: bytearray = field(default_factory=bytearray)
    pos_pack: PackBuffer = field(default_factory=lambda: PackBuffer(1))
    mtx_pack: PackBuffer = field(default_factory=lambda: PackBuffer(16))
    nam_pack: PackBuffer = field(default_factory=lambda: PackBuffer(1, b"\0"))
    dbl_pack: PackBuffer = field(default_factory=lambda: PackBuffer(1))
    ver_pack: PackBuffer = field(default_factory=lambda: PackBuffer(4))
    fac_pack: PackBuffer = field(default_factory=lambda: PackBuffer(2))
    dat_pack: PackBuffer = field(default_factory=lambda: PackBuffer(1))
    ftx_pack: NonsharingPackBuffer = field(default_factory=lambda: NonsharingPackBuffer(1))
    uvc_pack: PackBuffer = field(default_factory=lambda: PackBuffer(4))
    exc_pack: PackBuffer = field(default_factory=lambda: PackBuffer(1))

    def _matrix_record(self, obj: GameObject) -> bytes:
        m = obj.matrix
        first = (_fixed(m[2][0]) & 0xFFFFFFFE) | (1 if m[2][2] < 0 else 0)
        third = (_fixed(m[1][0]) & 0xFFFFFFFE) | (1 if m[1][2] < 0 else 0)
        return _MTX.pack(first, _fixed(m[2][1]), third, _fixed(m[1][1]))

    def _mesh_ftx_offset(self, obj: GameObject) -> int:
        mesh = obj.mesh
        real_ftx = 0
        if mesh.ftx_faces:
            tc_off = self.uvc_pack.add(_floats(mesh.texture_coords)) if mesh.texture_coords else 0
            lc_off = self.uvc_pack.add(_floats(mesh.light_coords)) if mesh.light_coords else 0
            record = bytearray(_FTX_HEADER.pack(tc_off, lc_off, len(mesh.ftx_faces)))
            for face in mesh.ftx_faces:
                record += _FTX_FACE.pack(*face)
            real_ftx = self.ftx_pack.add(bytes(record)) + 1
        ext = mesh.extension
        if ext is None:
            return real_ftx
        ext_words = [real_ftx, ext.type, 0, 0]
        for i, anim in enumerate(ext.tex_anims[:ext.num_tex_anims]):
            record = bytearray(_U32.pack(len(anim.frames)))
            for first, second in anim.frames:
                record += _u32s([first, second])
            record += _nt(anim.name)
            ext_words[2 + i] = self.dat_pack.add(bytes(record))
        ext_off = self.dat_pack.add(_u32s(ext_words[:2 + ext.num_tex_anims]))
        return ext_off | 0x80000000

    def make_obj_chunk(self, obj: GameObject, is_clip: bool) -> Chunk:
        """Pack an object (and its children) and return its tree chunk."""
        self.moc_objcount += 1
        if obj.mesh is not None and obj.line is not None:
            raise ValueError(f"object {obj.name!r} has both a mesh and a line")

        posoff = self.pos_pack.add(_VEC3.pack(*obj.matrix[3][:3]))
        mtxoff = self.mtx_pack.add(self._matrix_record(obj))
        dbloff = self.dbl_pack.add(obj.dbl.to_bytes(self.objidmap))
        namoff = self.nam_pack.add(obj.name.encode("latin-1"))

        veroff = trifacoff = quadfacoff = linetermoff = ftxoff = 0
        geometry = obj.mesh if obj.mesh is not None else obj.line
        if geometry is not None and geometry.vertices:
            veroff = self.ver_pack.add(_floats(geometry.vertices))

        if obj.mesh is not None:
            if obj.mesh.triindices:
                trifacoff = self.fac_pack.add(_u16s(obj.mesh.triindices))
            if obj.mesh.quadindices:
                quadfacoff = self.fac_pack.add(_u16s(obj.mesh.quadindices))
            ftxoff = self._mesh_ftx_offset(obj)

        if obj.line is not None and obj.line.terms:
            linetermoff = self.dat_pack.add(_u32s(obj.line.terms))

        excoff = 0
        if obj.exc_chunk is not None:
            excoff = self.exc_pack.add(obj.exc_chunk.to_bytes()) + 1

        heaoff = len(self.heabuf)
        self.heabuf += _HEADER.pack(dbloff, excoff, namoff, mtxoff, posoff,
                                    obj.type & 0xFFFF, obj.flags & 0xFFFF)
        if obj.flags & FLAG_MESH:
            mesh = obj.mesh
            if mesh is None:
                raise ValueError(f"object {obj.name!r} is flagged as a mesh but has none")
            self.heabuf += _u32s([veroff, quadfacoff, trifacoff, ftxoff,
                                  mesh.num_vertices(), mesh.num_quads(), mesh.num_tris(),
                                  obj.color & 0xFFFFFFFF, mesh.weird])
        if obj.flags & FLAG_LINE:
            line = obj.line
            if line is None:
                raise ValueError(f"object {obj.name!r} is flagged as a line but has none")
            self.heabuf += _u32s([veroff, 0, linetermoff, line.ftxo,
                                  line.num_vertices(), 0, len(line.terms),
                                  obj.color & 0xFFFFFFFF, line.weird])
        if obj.flags & FLAG_LIGHT:
            if obj.light is None:
                raise ValueError(f"object {obj.name!r} is flagged as a light but has none")
            self.heabuf += _u32s(list(obj.light.param[:7]))

        state = (2 if obj.is_included_scene else 0) | (1 if is_clip else 0)
        chunk = Chunk(tag=heaoff | (state << 24))
        chunk.subchunks = [self.make_obj_chunk(child, is_clip) for child in obj.subobj]
        return chunk


def _descendants(obj: GameObject) -> Iterator[GameObject]:
    for child in obj.subobj:
        yield child
        yield from _descendants(child)


def _compare_chunks(old: Chunk, new: Chunk, name: str) -> None:
    _log.debug("comparison of old and new %s", name)
    if old.tag != new.tag:
        _log.debug("different tag")
    if len(old.multidata) != len(new.multidata):
        _log.debug("different num_datas: %d -> %d", len(old.multidata), len(new.multidata))
    if len(old.maindata) != len(new.maindata):
        _log.debug("different maindata size: %d -> %d", len(old.maindata), len(new.maindata))
    elif old.maindata:
        diff = sum(a != b for a, b in zip(old.maindata, new.maindata))
        if diff:
            _log.debug("different maindata content: %d bytes are different", diff)
        same_sum = compute_bytesum(old.maindata) == compute_bytesum(new.maindata)
        _log.debug("same bytesum" if same_sum else "different bytesum")
    elif old.multidata:
        total = len(old.multidata)
        size_diff = content_diff = same = 0
        for a, b in zip(old.multidata, new.multidata):
            if len(a) != len(b):
                size_diff += 1
            elif a != b:
                content_diff += 1
            else:
                same += 1
        _log.debug("%d/%d parts have different sizes", size_diff, total)
        _log.debug("%d/%d parts have same size but different content", content_diff, total)
        _log.debug("%d/%d parts have same size and content", same, total)


def build_spk(scene: Any) -> Chunk:
    """Build the SPK chunk of a scene.

    The scene provides ``root_obj``, ``clip_root_obj``, ``audio_mgr``, ``zdef_names``,
    ``zdef_values``, ``zdef_types``, ``msg_definitions``, ``texture_material_map``,
    ``num_textures``, ``zip_files_included``, ``dlc_files``, ``scene_paths``,
    ``remaining_chunks`` and ``old_spk_chunk`` (which may be None).
    """
    saver = SceneSaver()
    spk = Chunk(tag=SPK_TAG)

    ids = itertools.count(1)
    for top in (scene.clip_root_obj, scene.root_obj):
        for obj in _descendants(top):
            saver.objidmap[obj] = next(ids)

    def object_tree(tag: str, top: GameObject, is_clip: bool) -> Chunk:
        saver.moc_objcount = 0
        chunk = Chunk(tag=fourcc(tag))
        chunk.subchunks = [saver.make_obj_chunk(child, is_clip) for child in top.subobj]
        chunk.maindata = _U32.pack(saver.moc_objcount)
        return chunk

    prot = object_tree("PROT", scene.root_obj, False)
    pclp = object_tree("PCLP", scene.clip_root_obj, True)
    spk.subchunks += [prot, pclp]

    for name, buffer in (
        ("PHEA", saver.heabuf),
        ("PNAM", saver.nam_pack.buffer),
        ("PPOS", saver.pos_pack.buffer),
        ("PMTX", saver.mtx_pack.buffer),
        ("PDBL", saver.dbl_pack.buffer),
        ("PVER", saver.ver_pack.buffer),
        ("PFAC", saver.fac_pack.buffer),
        ("PDAT", saver.dat_pack.buffer),
        ("PFTX", saver.ftx_pack.buffer),
        ("PUVC", saver.uvc_pack.buffer),
        ("PEXC", saver.exc_pack.buffer),
    ):
        spk.subchunks.append(Chunk(tag=fourcc(name), maindata=bytes(buffer)))

    spk.maindata = _u32s(list(SPK_VERSION))

    ands, sndr = scene.audio_mgr.save()
    spk.subchunks += [ands, sndr]

    spk.subchunks.append(Chunk(tag=fourcc("ZDEF"), multidata=[
        _nt(scene.zdef_names),
        scene.zdef_values.to_bytes(saver.objidmap),
        _nt(scene.zdef_types),
    ]))

    msgv = Chunk(tag=fourcc("MSGV"))
    msgv.subchunks = [
        Chunk(tag=msg_id, multidata=[_nt(first), _nt(second)])
        for msg_id, (first, second) in sorted(scene.msg_definitions.items())
    ]
    spk.subchunks.append(msgv)

    matl = Chunk(tag=fourcc("MATL"))
    matl.subchunks.append(Chunk(tag=fourcc("MTLV"), maindata=_U32.pack(1)))
    for tex_name, mat_name, number in scene.texture_material_map:
        matl.multidata += [_nt(tex_name), _nt(mat_name), _U32.pack(number)]
    spk.subchunks.append(matl)

    spk.subchunks.append(Chunk(tag=fourcc("PTXI"), maindata=_U32.pack(scene.num_textures)))

    for tag, strings in (
        ("PZFI", scene.zip_files_included),
        ("DLCF", scene.dlc_files),
        ("SPAT", scene.scene_paths),
    ):
        spk.subchunks.append(Chunk(tag=fourcc(tag), multidata=[_nt(s) for s in strings]))

    spk.subchunks.extend(scene.remaining_chunks)

    old = scene.old_spk_chunk if scene.old_spk_chunk is not None else Chunk()
    for new_chunk in spk.subchunks:
        old_chunk = old.find_subchunk(new_chunk.tag)
        if old_chunk is None:
            _log.debug("new chunk %s", tag_name(new_chunk.tag))
        else:
            _compare_chunks(old_chunk, new_chunk, tag_name(new_chunk.tag))

    return spk