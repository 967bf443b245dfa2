"""Pathfinding information: rooms, BSP nodes, doors and their instances."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

Vector3 = tuple[float, float, float]

NAME_BUFFER_MARKER = 0x12312312

_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_F32 = struct.Struct("<f")
_VEC3 = struct.Struct("<3f")
_LEAF_NODE = struct.Struct("<iifffi")
_NODE = struct.Struct("<HBii")
_DOOR = struct.Struct("<4f")
_DOOR_EDGE = struct.Struct("<fii")
_DOOR_INSTANCE = struct.Struct("<4i")
_DOOR_DATA_SIZE = 12


@dataclass
class PfLeafNode:
    edge_count: int = 0
    first_edge_index: int = 0
    center_x: float = 0.0
    center_z: float = 0.0
    center_y: float = 0.0
    unk6: int = 0


@dataclass
class PfNode:
    value: int = 0
    comparison: int = 0
    left_node_index: int = 0
    right_node_index: int = 0


@dataclass
class PfLayer:
    start_node_index: int = 0


@dataclass
class PfLeafEdge:
    neighbor_leaf_node_index: int = 0
    cost: float = 0.0


@dataclass
class PfDoor:
    position: Vector3 = (0.0, 0.0, 0.0)
    unk: float = 0.0
    add_data: bytes = bytes(_DOOR_DATA_SIZE)


@dataclass
class PfDoorsEdge:
    unk1: float = 0.0
    unk2: int = 0
    unk3: int = 0


@dataclass
class PfRoom:
    leaf_nodes: list[PfLeafNode] = field(default_factory=list)
    nodes: list[PfNode] = field(default_factory=list)
    layers: list[PfLayer] = field(default_factory=list)
    leaf_edges: list[PfLeafEdge] = field(default_factory=list)
    min_coords: Vector3 = (0.0, 0.0, 0.0)
    max_coords: Vector3 = (0.0, 0.0, 0.0)
    resolution: Vector3 = (0.0, 0.0, 0.0)
    doors: list[PfDoor] = field(default_factory=list)
    door_edges: list[PfDoorsEdge] = field(default_factory=list)
    kongs: list[Vector3] = field(default_factory=list)
    unk_string: str = ""


@dataclass
class PfRoomInstance:
    name: str = ""
    room_index: int = 0
    door_instance_indices: list[int] = field(default_factory=list)


@dataclass
class PfDoorInstance:
    room_indices: tuple[int, int, int, int] = (0, 0, 0, 0)


class _Reader:
    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._pos = 0

    def unpack(self, codec: struct.Struct) -> tuple:
        try:
            values = codec.unpack_from(self._data, self._pos)
        except struct.error as exc:
            raise ValueError(f"pathfinder data truncated at offset {self._pos}") from exc
        self._pos += codec.size
        return values

    def u32(self) -> int:
        return self.unpack(_U32)[0]

    def i32(self) -> int:
        return self.unpack(_I32)[0]

    def f32(self) -> float:
        return self.unpack(_F32)[0]

    def vec3(self) -> Vector3:
        return self.unpack(_VEC3)

    def take(self, length: int) -> bytes:
        if length < 0 or self._pos + length > len(self._data):
            raise ValueError(f"pathfinder data truncated: need {length} bytes at offset {self._pos}")
        chunk = self._data[self._pos:self._pos + length]
        self._pos += length
        return chunk


def _string_at(names: bytes, offset: int) -> str:
    if offset >= len(names):
        raise ValueError(f"name offset {offset} is outside the name buffer")
    end = names.find(b"\0", offset)
    if end < 0:
        end = len(names)
    return names[offset:end].decode("latin-1")


@dataclass
class PfInfo:
    """Complete pathfinding description of a scene."""

    rooms: list[PfRoom] = field(default_factory=list)
    room_instances: list[PfRoomInstance] = field(default_factory=list)
    door_instances: list[PfDoorInstance] = field(default_factory=list)
    last_value: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> PfInfo:
        """Decode pathfinding information from its binary form."""
        reader = _Reader(data)
        info = cls()

        names_size = reader.u32()
        if names_size == NAME_BUFFER_MARKER:
            names_size = reader.i32()
        names = reader.take(names_size)

        for _ in range(reader.u32()):
            room = PfRoom()
            room.leaf_nodes = [PfLeafNode(*reader.unpack(_LEAF_NODE)) for _ in range(reader.u32())]
            room.nodes = [PfNode(*reader.unpack(_NODE)) for _ in range(reader.u32())]
            room.layers = [PfLayer(reader.i32()) for _ in range(reader.u32())]
            num_edges = reader.u32()
            neighbors = [reader.i32() for _ in range(num_edges)]
            costs = [reader.f32() for _ in range(num_edges)]
            room.leaf_edges = [PfLeafEdge(n, c) for n, c in zip(neighbors, costs)]
            room.min_coords = reader.vec3()
            room.max_coords = reader.vec3()
            room.resolution = reader.vec3()

            for _ in range(reader.u32()):
                x, y, z, unk = reader.unpack(_DOOR)
                room.doors.append(PfDoor(position=(x, y, z), unk=unk))
            num_doors = len(room.doors)
            room.door_edges = [
                PfDoorsEdge(*reader.unpack(_DOOR_EDGE))
                for _ in range(num_doors * (num_doors - 1) // 2)
            ]
            for door in room.doors:
                door.add_data = reader.take(_DOOR_DATA_SIZE)

            room.kongs = [reader.vec3() for _ in range(reader.u32())]
            room.unk_string = _string_at(names, reader.u32())
            info.rooms.append(room)

        for _ in range(reader.u32()):
            name = _string_at(names, reader.u32())
            room_index = reader.i32()
            if not 0 <= room_index < len(info.rooms):
                raise ValueError(f"room instance {name!r} refers to unknown room {room_index}")
            doors = [reader.i32() for _ in info.rooms[room_index].doors]
            info.room_instances.append(PfRoomInstance(name, room_index, doors))

        info.door_instances = [
            PfDoorInstance(reader.unpack(_DOOR_INSTANCE)) for _ in range(reader.u32())
        ]
        info.last_value = reader.u32()
        return info

    def to_bytes(self) -> bytes:
        """Encode the pathfinding information into its binary form."""
        names = bytearray()

        def add_name(text: str) -> int:
            offset = len(names)
            names.extend(text.encode("latin-1") + b"\0")
            return offset

        room_name_offsets = [add_name(room.unk_string) for room in self.rooms]
        inst_name_offsets = [add_name(inst.name) for inst in self.room_instances]

        out = bytearray()
        out += _U32.pack(NAME_BUFFER_MARKER)
        out += _U32.pack(len(names))
        out += names

        out += _U32.pack(len(self.rooms))
        for room, name_offset in zip(self.rooms, room_name_offsets):
            out += _U32.pack(len(room.leaf_nodes))
            for leaf in room.leaf_nodes:
                out += _LEAF_NODE.pack(leaf.edge_count, leaf.first_edge_index,
                                       leaf.center_x, leaf.center_z, leaf.center_y, leaf.unk6)
            out += _U32.pack(len(room.nodes))
            for node in room.nodes:
                out += _NODE.pack(node.value, node.comparison,
                                  node.left_node_index, node.right_node_index)
            out += _U32.pack(len(room.layers))
            for layer in room.layers:
                out += _I32.pack(layer.start_node_index)
            out += _U32.pack(len(room.leaf_edges))
            for edge in room.leaf_edges:
                out += _I32.pack(edge.neighbor_leaf_node_index)
            for edge in room.leaf_edges:
                out += _F32.pack(edge.cost)
            out += _VEC3.pack(*room.min_coords)
            out += _VEC3.pack(*room.max_coords)
            out += _VEC3.pack(*room.resolution)

            out += _U32.pack(len(room.doors))
            for door in room.doors:
                out += _DOOR.pack(*door.position, door.unk)
            for door_edge in room.door_edges:
                out += _DOOR_EDGE.pack(door_edge.unk1, door_edge.unk2, door_edge.unk3)
            for door in room.doors:
                if len(door.add_data) != _DOOR_DATA_SIZE:
                    raise ValueError(f"door data must be {_DOOR_DATA_SIZE} bytes long")
                out += door.add_data

            out += _U32.pack(len(room.kongs))
            for kong in room.kongs:
                out += _VEC3.pack(*kong)
            out += _U32.pack(name_offset)

        out += _U32.pack(len(self.room_instances))
        for inst, name_offset in zip(self.room_instances, inst_name_offsets):
            out += _U32.pack(name_offset)
            out += _I32.pack(inst.room_index)
            for index in inst.door_instance_indices:
                out += _I32.pack(index)

        out += _U32.pack(len(self.door_instances))
        for door_inst in self.door_instances:
            out += _DOOR_INSTANCE.pack(*door_inst.room_indices)

        out += _U32.pack(self.last_value)
        return bytes(out)