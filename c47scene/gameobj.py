"""Scene objects: their geometry, lights, transforms and place in the object tree."""

from __future__ import annotations

from dataclasses import dataclass, field

from .chunk import Chunk
from .dbl import DBLList

Matrix = list[list[float]]

FLAG_MESH = 0x0020
FLAG_LIGHT = 0x0080
FLAG_LINE = 0x0400

PATH_SEPARATOR = "\\"

_OBJ_TYPE_NAMES = (
    # 0x00
    "Z0", "ZGROUP", "ZSTDOBJ", "ZCAMERA",
    "?", "?", "?", "?",
    "?", "?", "?", "Z2DOBJ",
    "?", "ZENVIRONMENT", "?", "?",
    # 0x10
    "?", "?", "ZSNDOBJ", "?",
    "?", "?", "?", "?",
    "?", "?", "ZLIST", "? ",
    "?", "?", "?", "?",
    # 0x20
    "?", "ZROOM", "?", "ZSPOTLIGHT",
    "?", "?", "?", "ZIKLNKOBJ",
    "?", "?", "?", "ZEDITORGROUP",
    "ZWINOBJ", "ZCHAROBJ", "ZWINGROUP", "ZFONT",
    # 0x30
    "ZWINDOWS", "ZWINDOW", "?", "ZBUTTON",
    "?", "?", "?", "?",
    "ZLINEOBJ", "?", "ZTTFONT", "ZSCROLLAREA",
    "?", "?", "?", "?",
    # 0x40
    "ZSCROLLBAR", "ZSCALESTDOBJ", "?", "?",
    "?", "?", "?", "?",
    "?", "?", "?", "?",
    "?", "?", "?", "?",
    # 0x50
    "?", "?", "?", "?",
    "?", "?", "?", "?",
    "?", "?", "?", "?",
    "?", "?", "?", "?",
    # 0x60
    "?", "?", "?", "?",
    "?", "?", "ZITEMGROUP", "?",
    "?", "ZITEMGROUPWEAPON", "ZITEMGROUPAMMO", "?",
    "?", "?", "?", "?",
)


def get_obj_type_string(type_id: int) -> str:
    """Return the built-in class name for a type id, or "?" when unknown."""
    if 0 <= type_id < len(_OBJ_TYPE_NAMES):
        return _OBJ_TYPE_NAMES[type_id]
    return "?"


def identity_matrix() -> Matrix:
    """Return a new 4x4 identity matrix (rows of row-vector transforms)."""
    return [[1.0 if row == col else 0.0 for col in range(4)] for row in range(4)]


def translation_matrix(x: float, y: float, z: float) -> Matrix:
    """Return a matrix translating by (x, y, z); the offset lives in the last row."""
    matrix = identity_matrix()
    matrix[3][:3] = [x, y, z]
    return matrix


def multiply_matrices(a: Matrix, b: Matrix) -> Matrix:
    """Return the product ``a * b`` of two 4x4 matrices."""
    columns = list(zip(*b))
    return [[sum(x * y for x, y in zip(row, col)) for col in columns] for row in a]


@dataclass
class TextureAnimation:
    """Animated texture: (frame, duration) pairs and the animation name."""

    frames: list[tuple[int, int]] = field(default_factory=list)
    name: str = ""


@dataclass
class MeshExtension:
    """Extra mesh data; type 3 uses one texture animation, type 4 uses two."""

    type: int = 3
    tex_anims: list[TextureAnimation] = field(
        default_factory=lambda: [TextureAnimation(), TextureAnimation()]
    )

    @property
    def num_tex_anims(self) -> int:
        return 2 if self.type == 4 else 1


@dataclass
class Mesh:
    """Polygon geometry with optional per-face texture information."""

    vertices: list[float] = field(default_factory=list)
    quadindices: list[int] = field(default_factory=list)
    triindices: list[int] = field(default_factory=list)
    weird: int = 0
    texture_coords: list[float] = field(default_factory=list)
    light_coords: list[float] = field(default_factory=list)
    ftx_faces: list[tuple[int, int, int, int, int, int]] = field(default_factory=list)
    extension: MeshExtension | None = None

    def num_vertices(self) -> int:
        return len(self.vertices) // 3

    def num_quads(self) -> int:
        return len(self.quadindices) // 4

    def num_tris(self) -> int:
        return len(self.triindices) // 3


@dataclass
class ObjLine:
    """Polyline geometry; ``terms`` holds the vertex count of each strip."""

    vertices: list[float] = field(default_factory=list)
    terms: list[int] = field(default_factory=list)
    ftxo: int = 0
    weird: int = 0

    def num_vertices(self) -> int:
        return len(self.vertices) // 3


@dataclass
class Light:
    """Light parameters, stored as seven raw 32-bit values."""

    param: list[int] = field(default_factory=lambda: [0] * 7)


@dataclass(eq=False)
class GameObject:
    """A node of the scene tree; objects compare and hash by identity."""

    name: str = "Unnamed"
    type: int = 0
    flags: int = 0
    matrix: Matrix = field(default_factory=identity_matrix)
    is_included_scene: bool = False
    subobj: list[GameObject] = field(default_factory=list, repr=False)
    parent: GameObject | None = field(default=None, repr=False)
    root: GameObject | None = field(default=None, repr=False)
    mesh: Mesh | None = None
    line: ObjLine | None = None
    color: int = 0
    light: Light | None = None
    dbl: DBLList = field(default_factory=DBLList)
    exc_chunk: Chunk | None = None

    def get_path(self) -> str:
        """Return the backslash-separated names from the top of the tree down to this object."""
        names = [self.name]
        obj = self.parent
        while obj is not None:
            names.append(obj.name)
            obj = obj.parent
        return PATH_SEPARATOR.join(reversed(names))

    def find_by_path(self, path: str) -> GameObject | None:
        """Find a descendant by a backslash-separated path relative to this object."""
        to_find, _, rest = path.partition(PATH_SEPARATOR)
        child = next((c for c in self.subobj if c.name == to_find), None)
        if child is None or not rest:
            return child
        return child.find_by_path(rest)

    def get_global_transform(self, reference: GameObject | None = None) -> Matrix:
        """Combine the transforms from this object up to (excluding) ``reference``."""
        matrix = identity_matrix()
        obj: GameObject | None = self
        while obj is not None and obj is not reference:
            matrix = multiply_matrices(obj.matrix, matrix)
            obj = obj.parent
        return matrix