import struct

import pytest

from c47scene.pathfinder import (
    PfDoor,
    PfDoorInstance,
    PfDoorsEdge,
    PfInfo,
    PfLayer,
    PfLeafEdge,
    PfLeafNode,
    PfNode,
    PfRoom,
    PfRoomInstance,
)


def _sample() -> PfInfo:
    room = PfRoom(
        leaf_nodes=[PfLeafNode(2, 0, 1.5, 2.5, -3.0, 7), PfLeafNode(1, 2, 0.0, 0.5, 4.0, -1)],
        nodes=[PfNode(300, 2, 1, -1), PfNode(5, 0, -2, 3)],
        layers=[PfLayer(0), PfLayer(4)],
        leaf_edges=[PfLeafEdge(1, 0.25), PfLeafEdge(0, 2.0), PfLeafEdge(1, 8.5)],
        min_coords=(-1.0, -2.0, -3.0),
        max_coords=(1.0, 2.0, 3.0),
        resolution=(0.5, 0.5, 0.5),
        doors=[
            PfDoor((1.0, 0.0, 2.0), 0.5, bytes(range(12))),
            PfDoor((3.0, 1.0, 0.0), 1.0, bytes(range(12, 24))),
            PfDoor((0.0, 0.0, 0.0), 0.0, bytes(12)),
        ],
        door_edges=[PfDoorsEdge(1.0, 2, 3), PfDoorsEdge(4.0, 5, 6), PfDoorsEdge(7.0, 8, 9)],
        kongs=[(1.0, 2.0, 3.0)],
        unk_string="RoomA",
    )
    empty_room = PfRoom(unk_string="Other")
    return PfInfo(
        rooms=[room, empty_room],
        room_instances=[
            PfRoomInstance("inst0", 0, [10, 11, 12]),
            PfRoomInstance("inst1", 1, []),
        ],
        door_instances=[PfDoorInstance((0, 1, -1, -1))],
        last_value=42,
    )


def test_round_trip():
    info = _sample()
    assert PfInfo.from_bytes(info.to_bytes()) == info


def test_round_trip_is_stable():
    data = _sample().to_bytes()
    assert PfInfo.from_bytes(data).to_bytes() == data


def test_header_starts_with_marker():
    data = _sample().to_bytes()
    assert struct.unpack_from("<I", data, 0)[0] == 0x12312312


def test_empty_info_bytes():
    data = PfInfo().to_bytes()
    assert data == struct.pack("<IIIIII", 0x12312312, 0, 0, 0, 0, 0)
    assert PfInfo.from_bytes(data) == PfInfo()


def test_name_buffer_holds_room_then_instance_names():
    data = _sample().to_bytes()
    size = struct.unpack_from("<I", data, 4)[0]
    assert data[8:8 + size] == b"RoomA\0Other\0inst0\0inst1\0"


def test_read_without_marker():
    names = b"abc\0"
    data = (
        struct.pack("<I", len(names)) + names
        + struct.pack("<I", 1)
        + struct.pack("<IIII", 0, 0, 0, 0)
        + struct.pack("<9f", *([0.0] * 9))
        + struct.pack("<I", 0)
        + struct.pack("<I", 0)
        + struct.pack("<I", 0)
        + struct.pack("<I", 0)
        + struct.pack("<I", 0)
        + struct.pack("<I", 99)
    )
    info = PfInfo.from_bytes(data)
    assert info.rooms[0].unk_string == "abc"
    assert info.last_value == 99
    assert info.room_instances == []


def test_door_edges_follow_door_count():
    info = PfInfo.from_bytes(_sample().to_bytes())
    doors = len(info.rooms[0].doors)
    assert len(info.rooms[0].door_edges) == doors * (doors - 1) // 2


def test_room_instance_door_count_follows_room():
    info = PfInfo.from_bytes(_sample().to_bytes())
    for inst in info.room_instances:
        assert len(inst.door_instance_indices) == len(info.rooms[inst.room_index].doors)


def test_truncated_data_raises():
    data = _sample().to_bytes()
    with pytest.raises(ValueError):
        PfInfo.from_bytes(data[:-3])


def test_unknown_room_index_raises():
    info = PfInfo(room_instances=[PfRoomInstance("x", 5, [])])
    with pytest.raises(ValueError):
        PfInfo.from_bytes(info.to_bytes())


def test_bad_door_data_length_raises():
    info = PfInfo(rooms=[PfRoom(doors=[PfDoor(add_data=b"\x01\x02")])])
    with pytest.raises(ValueError):
        info.to_bytes()