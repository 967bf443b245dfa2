import struct
from types import SimpleNamespace

import pytest

from c47scene.audio import AudioManager
from c47scene.chunk import Chunk, fourcc, tag_name
from c47scene.dbl import DBLEntry, DBLList, EntryType
from c47scene.gameobj import (
    GameObject,
    Light,
    Mesh,
    MeshExtension,
    ObjLine,
    TextureAnimation,
    translation_matrix,
)
from c47scene.spkwriter import (
    NonsharingPackBuffer,
    PackBuffer,
    SceneSaver,
    build_spk,
    compute_bytesum,
)


def _adopt(parent, child):
    child.parent = parent
    parent.subobj.append(child)
    return child


def _scene():
    super_root = GameObject("SuperRoot", 0x21)
    root = _adopt(super_root, GameObject("Root", 0x21))
    clip = _adopt(super_root, GameObject("ClipRoot", 0x21))
    return SimpleNamespace(
        super_root=super_root, root_obj=root, clip_root_obj=clip,
        audio_mgr=AudioManager(), zdef_names="", zdef_values=DBLList(), zdef_types="",
        msg_definitions={}, texture_material_map=[], num_textures=0,
        zip_files_included=[], dlc_files=[], scene_paths=[],
        remaining_chunks=[], old_spk_chunk=None,
    )


def test_bytesum_is_additive():
    a, b = b"\x10\xff\x03", b"\x80\x80"
    assert compute_bytesum(a + b) == compute_bytesum(a) + compute_bytesum(b)
    assert compute_bytesum(b"") == 0


def test_pack_buffer_shares_elements():
    buf = PackBuffer(4)
    first = buf.add(b"\x00" * 4)
    second = buf.add(b"\x01" * 4)
    assert buf.add(b"\x00" * 4) == first == 0
    assert second == 1
    assert bytes(buf.buffer) == b"\x00" * 4 + b"\x01" * 4


def test_pack_buffer_terminator():
    buf = PackBuffer(1, b"\0")
    a = buf.add(b"ab")
    b = buf.add(b"cd")
    assert buf.add(b"ab") == a
    assert bytes(buf.buffer) == b"ab\0cd\0"
    assert b == len(b"ab\0")


def test_nonsharing_buffer_repeats():
    buf = NonsharingPackBuffer(1)
    first = buf.add(b"xy")
    second = buf.add(b"xy")
    assert first != second
    assert bytes(buf.buffer) == b"xyxy"


def test_identity_matrix_record():
    saver = SceneSaver()
    saver.make_obj_chunk(GameObject("A"), False)
    assert struct.unpack("<4I", saver.mtx_pack.buffer) == (0, 0, 0, 1073741824)


def test_mesh_header_and_ftx():
    obj = GameObject("M", type=2, flags=0x20)
    obj.mesh = Mesh(vertices=[0.0, 1.0, 2.0, 3.0, 4.0, 5.0], triindices=[0, 2, 4],
                    ftx_faces=[(0x20, 0, 5, 0, 0, 0)], texture_coords=[0.5] * 8)
    saver = SceneSaver()
    chunk = saver.make_obj_chunk(obj, False)
    assert chunk.tag == 0
    fields = struct.unpack("<5I2H9I", saver.heabuf)
    assert fields[5:7] == (2, 0x20)
    ver, quad, tri, ftx, nver, nquad, ntri = fields[7:14]
    assert (ver, quad, tri, ftx) == (0, 0, 0, 1)
    assert (nver, nquad, ntri) == (obj.mesh.num_vertices(), 0, obj.mesh.num_tris())
    assert bytes(saver.ftx_pack.buffer) == struct.pack("<3I6H", 0, 0, 1, 0x20, 0, 5, 0, 0, 0)
    assert struct.unpack("<6f", saver.ver_pack.buffer) == tuple(obj.mesh.vertices)


def test_light_and_state_bits():
    obj = GameObject("L", flags=0x80, light=Light(list(range(7))), is_included_scene=True)
    saver = SceneSaver()
    chunk = saver.make_obj_chunk(obj, True)
    assert chunk.tag >> 24 == 3
    assert struct.unpack_from("<7I", saver.heabuf, 24) == tuple(range(7))


def test_missing_geometry_raises():
    with pytest.raises(ValueError):
        SceneSaver().make_obj_chunk(GameObject("X", flags=0x20), False)
    with pytest.raises(ValueError):
        SceneSaver().make_obj_chunk(GameObject("X", flags=0x400), False)
    both = GameObject("X", mesh=Mesh())
    both.line = ObjLine()
    with pytest.raises(ValueError):
        SceneSaver().make_obj_chunk(both, False)


def test_children_counted_and_shared_positions():
    parent = GameObject("P", matrix=translation_matrix(1.0, 2.0, 3.0))
    _adopt(parent, GameObject("C", matrix=translation_matrix(1.0, 2.0, 3.0)))
    saver = SceneSaver()
    chunk = saver.make_obj_chunk(parent, False)
    assert saver.moc_objcount == 2
    assert len(chunk.subchunks) == 1
    assert struct.unpack("<3f", saver.pos_pack.buffer) == (1.0, 2.0, 3.0)
    assert bytes(saver.nam_pack.buffer) == b"P\0C\0"


def test_build_spk_layout_and_round_trip():
    scene = _scene()
    _adopt(scene.root_obj, GameObject("A"))
    scene.dlc_files = ["GeomsBase.dlc", "EventsBase.dlc"]
    spk = build_spk(scene)
    names = [tag_name(c.tag) for c in spk.subchunks]
    assert names[:13] == ["PROT", "PCLP", "PHEA", "PNAM", "PPOS", "PMTX", "PDBL",
                          "PVER", "PFAC", "PDAT", "PFTX", "PUVC", "PEXC"]
    assert names[13:] == ["ANDS", "SNDR", "ZDEF", "MSGV", "MATL", "PTXI",
                          "PZFI", "DLCF", "SPAT"]
    assert struct.unpack("<2I", spk.maindata) == (10, 0x40000)
    assert struct.unpack("<I", spk.find_subchunk("PROT").maindata)[0] == 1
    assert spk.find_subchunk("DLCF").multidata == [b"GeomsBase.dlc\0", b"EventsBase.dlc\0"]
    assert Chunk.from_bytes(spk.to_bytes()) == spk


def test_build_spk_object_references():
    scene = _scene()
    a = _adopt(scene.root_obj, GameObject("A"))
    b = _adopt(scene.clip_root_obj, GameObject("B"))
    a.dbl = DBLList(entries=[DBLEntry(EntryType.ZGEOMREF, 0, b)])
    spk = build_spk(scene)
    a_chunk = spk.find_subchunk("PROT").subchunks[0]
    b_chunk = spk.find_subchunk("PCLP").subchunks[0]
    assert a_chunk.tag >> 24 == 0
    assert b_chunk.tag >> 24 == 1
    phea = spk.find_subchunk("PHEA").maindata
    dbloff = struct.unpack_from("<I", phea, a_chunk.tag & 0xFFFFFF)[0]
    pdbl = spk.find_subchunk("PDBL").maindata
    decoded = DBLList.from_bytes(pdbl, dbloff, {1: b, 2: a})
    assert decoded.entries[0].value is b


def test_build_spk_tables():
    scene = _scene()
    scene.msg_definitions = {7: ("b", "B"), 3: ("a", "A")}
    scene.texture_material_map = [("tex", "mat", 5)]
    scene.num_textures = 9
    scene.zdef_names = "names"
    scene.remaining_chunks = [Chunk(tag=fourcc("PSCR"), maindata=b"xyz")]
    spk = build_spk(scene)
    msgv = spk.find_subchunk("MSGV")
    assert [c.tag for c in msgv.subchunks] == [3, 7]
    assert msgv.subchunks[0].multidata == [b"a\0", b"A\0"]
    matl = spk.find_subchunk("MATL")
    assert matl.multidata == [b"tex\0", b"mat\0", struct.pack("<I", 5)]
    assert matl.find_subchunk("MTLV").maindata == struct.pack("<I", 1)
    assert spk.find_subchunk("PTXI").maindata == struct.pack("<I", 9)
    assert spk.find_subchunk("ZDEF").multidata[0] == b"names\0"
    assert spk.subchunks[-1].maindata == b"xyz"