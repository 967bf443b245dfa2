import struct
import zipfile
from types import SimpleNamespace

import pytest

from c47scene.chunk import fourcc
from c47scene.dbl import DBLEntry, EntryType
from c47scene.gameobj import (
    FLAG_LIGHT,
    FLAG_MESH,
    GameObject,
    Light,
    Mesh,
    identity_matrix,
    translation_matrix,
)
from c47scene.scene import Scene, SceneError


def _sample_scene():
    scene = Scene()
    scene.load_empty()
    box = GameObject(name="Box", type=2, flags=FLAG_MESH)
    box.matrix = translation_matrix(1.5, -2.0, 4.25)
    box.mesh = Mesh(
        vertices=[0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0, 0.0],
        triindices=[0, 2, 4],
        ftx_faces=[(0x20, 0, 7, 0, 0, 0)],
        texture_coords=[0.0, 0.0, 1.0, 0.0, 0.0, 1.0, 0.0, 0.0],
    )
    scene.give_object(box, scene.root_obj)
    box.root = scene.root_obj
    lamp = GameObject(name="Lamp", type=0x23, flags=FLAG_LIGHT, light=Light(param=[1, 2, 3, 4, 5, 6, 7]))
    scene.give_object(lamp, box)
    clip = GameObject(name="Clip", type=1)
    scene.give_object(clip, scene.clip_root_obj)
    box.dbl.entries = [
        DBLEntry(EntryType.INT, 0, 7),
        DBLEntry(EntryType.STRING, 0, "hello"),
        DBLEntry(EntryType.ZGEOMREF, 0, lamp),
    ]
    scene.msg_definitions = {5: ("Hello", "World")}
    scene.texture_material_map = [("brick", "stone", 3)]
    scene.num_textures = 12
    return scene


def _round_trip(scene, tmp_path, name="scene.zip"):
    path = tmp_path / name
    scene.save_spk(path)
    loaded = Scene()
    loaded.load_spk(path, tmp_path)
    return loaded, path


def test_round_trip_tree_and_paths(tmp_path):
    loaded, path = _round_trip(_sample_scene(), tmp_path)
    assert loaded.ready
    assert loaded.last_spk_filename == str(path)
    lamp = loaded.root_obj.find_by_path("Box\\Lamp")
    assert lamp.get_path() == "SuperRoot\\Root\\Box\\Lamp"
    assert lamp.root is loaded.root_obj
    assert [c.name for c in loaded.clip_root_obj.subobj] == ["Clip"]
    assert loaded.clip_root_obj.subobj[0].root is loaded.clip_root_obj


def test_round_trip_mesh_and_light(tmp_path):
    loaded, _ = _round_trip(_sample_scene(), tmp_path)
    box = loaded.root_obj.find_by_path("Box")
    assert box.flags == FLAG_MESH
    assert box.mesh.vertices == [0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0, 0.0]
    assert box.mesh.triindices == [0, 2, 4]
    assert [tuple(f) for f in box.mesh.ftx_faces] == [(0x20, 0, 7, 0, 0, 0)]
    assert box.mesh.texture_coords == [0.0, 0.0, 1.0, 0.0, 0.0, 1.0, 0.0, 0.0]
    lamp = box.find_by_path("Lamp")
    assert lamp.type == 0x23
    assert lamp.light.param == [1, 2, 3, 4, 5, 6, 7]


def test_round_trip_matrix(tmp_path):
    scene = _sample_scene()
    rotated = scene.root_obj.find_by_path("Box\\Lamp")
    rotated.matrix = [[0.0, 1.0, 0.0, 0.0], [-1.0, 0.0, 0.0, 0.0],
                      [0.0, 0.0, 1.0, 0.0], [3.0, 0.5, -1.0, 1.0]]
    loaded, _ = _round_trip(scene, tmp_path)
    box = loaded.root_obj.find_by_path("Box")
    assert box.matrix[3][:3] == [1.5, -2.0, 4.25]
    assert [row[:3] for row in box.matrix[:3]] == [row[:3] for row in identity_matrix()[:3]]
    lamp = box.find_by_path("Lamp")
    for got, want in zip(lamp.matrix, rotated.matrix):
        assert got[:3] == pytest.approx(want[:3], abs=1e-6)


def test_round_trip_dbl_references(tmp_path):
    loaded, _ = _round_trip(_sample_scene(), tmp_path)
    box = loaded.root_obj.find_by_path("Box")
    entries = box.dbl.entries
    assert [e.type for e in entries] == [EntryType.INT, EntryType.STRING, EntryType.ZGEOMREF]
    assert entries[0].value == 7
    assert entries[1].value == "hello"
    assert entries[2].value is box.find_by_path("Lamp")


def test_round_trip_tables(tmp_path):
    loaded, _ = _round_trip(_sample_scene(), tmp_path)
    assert loaded.msg_definitions == {5: ("Hello", "World")}
    assert loaded.texture_material_map == [("brick", "stone", 3)]
    assert loaded.num_textures == 12
    assert loaded.dlc_files == ["GeomsBase.dlc", "EventsBase.dlc"]
    assert loaded.scene_paths == ["Worlds", "Masters", "Z:\\c47edit", "Sounds", ""]
    assert [e.type for e in loaded.zdef_values.entries] == [EntryType.TERMINATOR]
    assert loaded.remaining_chunks == []
    assert loaded.pal_pack.tag == fourcc("LAP")
    assert loaded.has_anm_pack is False


def test_identical_meshes_are_shared_after_load(tmp_path):
    scene = Scene()
    scene.load_empty()
    mesh = Mesh(vertices=[0.0, 0.0, 0.0, 2.0, 0.0, 0.0, 0.0, 2.0, 0.0], triindices=[0, 2, 4])
    for name in ("A", "B"):
        obj = GameObject(name=name, type=2, flags=FLAG_MESH, mesh=mesh)
        scene.give_object(obj, scene.root_obj)
    loaded, _ = _round_trip(scene, tmp_path)
    a, b = loaded.root_obj.subobj
    assert a.mesh is b.mesh
    assert a.mesh.triindices == [0, 2, 4]


def test_construct_spk_object_trees():
    scene = _sample_scene()
    spk = scene.construct_spk()
    assert spk.tag == fourcc("KPS")
    assert spk.subchunks[0].tag == fourcc("PROT")
    assert spk.subchunks[1].tag == fourcc("PCLP")
    assert struct.unpack("<I", bytes(spk.subchunks[0].maindata))[0] == 2
    assert struct.unpack("<I", bytes(spk.subchunks[1].maindata))[0] == 1


def test_save_keeps_other_files_and_replaces_packs(tmp_path):
    first = tmp_path / "first.zip"
    _sample_scene().save_spk(first)
    with zipfile.ZipFile(first, "a") as zf:
        zf.writestr("Extra.txt", b"keep me")
    scene = Scene()
    scene.load_spk(first, tmp_path)
    second = tmp_path / "second.zip"
    scene.save_spk(second)
    with zipfile.ZipFile(second) as zf:
        names = zf.namelist()
        assert zf.read("Extra.txt") == b"keep me"
    assert names.count("Pack.SPK") == 1
    assert names.count("Pack.PAL") == 1
    assert "Pack.ANM" not in names


def test_load_missing_file(tmp_path):
    with pytest.raises(SceneError):
        Scene().load_spk(tmp_path / "missing.zip", tmp_path)


def test_load_not_a_zip(tmp_path):
    path = tmp_path / "bad.zip"
    path.write_bytes(b"not a zip archive")
    with pytest.raises(SceneError):
        Scene().load_spk(path, tmp_path)


def test_load_without_spk(tmp_path):
    path = tmp_path / "empty.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("Readme.txt", b"nothing")
    with pytest.raises(SceneError):
        Scene().load_spk(path, tmp_path)


def _without(source, target, excluded, extra=None):
    with zipfile.ZipFile(source) as zin, zipfile.ZipFile(target, "w") as zout:
        for info in zin.infolist():
            if info.filename != excluded:
                zout.writestr(info, zin.read(info))
        for name, data in (extra or {}).items():
            zout.writestr(name, data)


def test_load_without_pal_pack(tmp_path):
    full = tmp_path / "full.zip"
    _sample_scene().save_spk(full)
    broken = tmp_path / "broken.zip"
    _without(full, broken, "Pack.PAL")
    with pytest.raises(SceneError):
        Scene().load_spk(broken, tmp_path)


def test_load_pack_repeat_without_repeat_file(tmp_path):
    full = tmp_path / "full.zip"
    _sample_scene().save_spk(full)
    broken = tmp_path / "repeat.zip"
    _without(full, broken, "Pack.PAL", {"PackRepeat.PAL": b"\0" * 16})
    with pytest.raises(SceneError):
        Scene().load_spk(broken, tmp_path)


def test_give_object_moves_between_parents():
    scene = _sample_scene()
    box = scene.root_obj.find_by_path("Box")
    lamp = box.find_by_path("Lamp")
    scene.give_object(lamp, scene.clip_root_obj)
    assert box.subobj == []
    assert scene.clip_root_obj.subobj[-1] is lamp
    assert lamp.parent is scene.clip_root_obj


def test_remove_object_detaches():
    scene = _sample_scene()
    box = scene.root_obj.find_by_path("Box")
    scene.remove_object(box)
    assert scene.root_obj.find_by_path("Box") is None
    assert box.parent is None


def test_remove_object_not_in_parent():
    scene = _sample_scene()
    stray = GameObject(name="Stray")
    stray.parent = scene.root_obj
    with pytest.raises(ValueError):
        scene.remove_object(stray)


def test_duplicate_object_copies_subtree():
    scene = _sample_scene()
    box = scene.root_obj.find_by_path("Box")
    copy = scene.duplicate_object(box)
    assert copy is not box
    assert scene.root_obj.subobj[-1] is copy
    assert copy.parent is scene.root_obj
    assert [c.name for c in copy.subobj] == ["Lamp"]
    assert copy.subobj[0] is not box.subobj[0]
    assert copy.mesh is box.mesh
    copy.dbl.entries[0].value = 99
    assert box.dbl.entries[0].value == 7
    assert copy.dbl.entries[2].value is box.find_by_path("Lamp")


def test_duplicate_object_without_parent():
    scene = _sample_scene()
    assert scene.duplicate_object(GameObject(name="Orphan")) is None


def test_create_object_uses_class_info():
    scene = Scene()
    scene.load_empty()
    class_info = SimpleNamespace(
        get_obj_type_category=lambda type_id: FLAG_MESH | FLAG_LIGHT,
        get_member_names=lambda obj: [
            SimpleNamespace(info=SimpleNamespace(type="INT", default_value="5")),
            SimpleNamespace(info=SimpleNamespace(type="", default_value="")),
        ],
    )
    obj = scene.create_object(2, scene.root_obj, class_info)
    assert obj.parent is scene.root_obj
    assert obj.root is scene.root_obj
    assert obj.flags == FLAG_MESH | FLAG_LIGHT
    assert obj.mesh.vertices == []
    assert obj.light.param == [0] * 7
    assert obj.line is None
    assert [(e.type, e.value) for e in obj.dbl.entries] == [
        (EntryType.INT, 5), (EntryType.TERMINATOR, None)]


def test_close_resets_scene():
    scene = _sample_scene()
    scene.close()
    assert scene.ready is False
    assert scene.root_obj is None
    assert scene.dlc_files == []
    assert scene.msg_definitions == {}