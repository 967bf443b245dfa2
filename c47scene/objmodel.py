"""Reader for Wavefront OBJ models and their MTL material libraries."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path, PureWindowsPath

_WORD_SEPARATORS = " \t"
_LINE_SEPARATORS = "\r\n"
_INT_PREFIX = re.compile(r"-?\d+")
_FLOAT_PREFIX = re.compile(r"-?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

Vector3 = tuple[float, float, float]
Corner = tuple[int, int, int]


def split_tokens(text: str, separators: str) -> Iterator[str]:
    """Yield the non-empty runs of ``text`` between any of the separator characters."""
    if not separators:
        if text:
            yield text
        return
    pattern = f"[^{re.escape(separators)}]+"
    for match in re.finditer(pattern, text):
        yield match.group()


def _verb_and_rest(line: str) -> tuple[str, str]:
    line = line.lstrip(_WORD_SEPARATORS)
    match = re.match(f"[^{_WORD_SEPARATORS}]*", line)
    verb = match.group() if match else ""
    return verb, line[len(verb):].lstrip(_WORD_SEPARATORS)


def _parse_float(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        match = _FLOAT_PREFIX.match(text)
        return float(match.group()) if match else 0.0


def _parse_index(text: str) -> int:
    match = _INT_PREFIX.match(text)
    if not match:
        raise ValueError(f"invalid face index {text!r}")
    return int(match.group())


def _parse_vector(words: Iterator[str]) -> Vector3:
    values = [_parse_float(word) for _, word in zip(range(3), words)]
    values.extend([0.0] * (3 - len(values)))
    return (values[0], values[1], values[2])


def _parse_corner(vertex: str) -> Corner:
    parts = list(split_tokens(vertex, "/"))[:3]
    parts.extend([""] * (3 - len(parts)))
    pos, txc, nrm = parts
    return (
        _parse_index(pos) - 1,
        (_parse_index(txc) if txc else 0) - 1,
        (_parse_index(nrm) if nrm else 0) - 1,
    )


def _read_lines(filename: str | Path) -> Iterator[str]:
    text = Path(filename).read_bytes().decode("latin-1")
    return split_tokens(text, _LINE_SEPARATORS)


@dataclass
class ObjGroup:
    """A run of triangles ``[start, end)`` sharing one material."""

    name: str = ""
    start: int = 0
    end: int = 0


@dataclass
class ObjMaterial:
    """Material entry; ``map_kd`` is the stem of the diffuse texture file."""

    map_kd: str = ""


@dataclass
class ObjModel:
    """Geometry read from an OBJ file, with faces fanned into triangles."""

    vertices: list[Vector3] = field(default_factory=list)
    tex_coords: list[Vector3] = field(default_factory=list)
    triangles: list[tuple[Corner, Corner, Corner]] = field(default_factory=list)
    groups: list[ObjGroup] = field(default_factory=list)
    materials: dict[str, ObjMaterial] = field(default_factory=dict)

    def load(self, filename: str | Path) -> None:
        """Read an OBJ file, adding its contents to this model."""
        path = Path(filename)
        group_name = ""
        group_start = 0

        def flush_group() -> None:
            if group_start < len(self.triangles):
                self.groups.append(ObjGroup(group_name, group_start, len(self.triangles)))

        for line in _read_lines(path):
            verb, rest = _verb_and_rest(line)
            words = split_tokens(rest, _WORD_SEPARATORS)
            if verb == "v":
                self.vertices.append(_parse_vector(words))
            elif verb == "vt":
                self.tex_coords.append(_parse_vector(words))
            elif verb == "f":
                corners = [_parse_corner(word) for word in words]
                first = corners[0] if corners else None
                for prev, cur in zip(corners[1:], corners[2:]):
                    self.triangles.append((first, prev, cur))
            elif verb == "usemtl":
                flush_group()
                group_start = len(self.triangles)
                group_name = next(words, "")
            elif verb == "mtllib":
                self.load_material_lib(path.parent / rest)
        flush_group()

    def load_material_lib(self, filename: str | Path) -> None:
        """Read an MTL file, recording the diffuse texture of each material."""
        material: ObjMaterial | None = None
        for line in _read_lines(filename):
            verb, rest = _verb_and_rest(line)
            if verb == "newmtl":
                name = next(split_tokens(rest, _WORD_SEPARATORS), "")
                material = self.materials.setdefault(name, ObjMaterial())
            elif verb == "map_Kd":
                if material is None:
                    raise ValueError("map_Kd appears before any newmtl")
                material.map_kd = PureWindowsPath(rest).stem