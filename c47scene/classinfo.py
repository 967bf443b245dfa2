"""Class descriptions of scene objects and components, read from a JSON file."""

from __future__ import annotations

import json
import re
import string
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_WORD_STOPS = " ;=["
_INT_PREFIX = re.compile(r"-?\d+")
_UPPER = str.maketrans(string.ascii_lowercase, string.ascii_uppercase)


@dataclass
class ClassMember:
    """One declared data member of a class or component."""

    type: str = ""
    name: str = ""
    default_value: str = ""
    value_choices: list[str] = field(default_factory=list)
    array_count: int = 1
    is_protected: bool = False


@dataclass
class ObjectMember:
    """A member slot of an object's DBL list; arrays give one slot per element."""

    info: ClassMember
    array_index: int = -1


_EMPTY_MEMBER = ClassMember("", "")
_INITIAL_MEMBERS = (
    ClassMember("CHAR*", "Routs"),
    ClassMember("ENUM", "Create", "", ["ROOT", "CLIP"]),
    ClassMember("SCRIPT", "ZGeomScript"),
)


def _skip_spaces(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] == " ":
        pos += 1
    return pos


def _skip_until(text: str, pos: int, stops: str) -> int:
    while pos < len(text) and text[pos] not in stops:
        pos += 1
    return pos


def _decode_members(text: str) -> Iterator[tuple[str, str, str, int]]:
    """Yield (type, name, value, array count) for each member declaration."""
    end = len(text)
    pos = 0
    while True:
        pos = _skip_spaces(text, pos)
        if pos >= end:
            return
        begin = pos
        pos = _skip_until(text, pos, _WORD_STOPS)
        member_type = text[begin:pos]
        pos = _skip_spaces(text, pos)
        begin = pos
        pos = _skip_until(text, pos, _WORD_STOPS)
        name = text[begin:pos]
        pos = _skip_spaces(text, pos)

        count = 1
        if pos < end and text[pos] == "[":
            pos += 1
            begin = pos
            pos = _skip_until(text, pos, "]")
            match = _INT_PREFIX.match(text, begin, pos)
            if match:
                count = int(match.group())
            pos = _skip_spaces(text, min(pos + 1, end))

        value = ""
        if pos < end and text[pos] == "=":
            pos = _skip_spaces(text, pos + 1)
            begin = pos
            if pos < end and text[pos] == "{":
                pos = min(_skip_until(text, pos, "}") + 1, end)
            else:
                pos = _skip_until(text, pos, _WORD_STOPS)
            value = text[begin:pos]

        pos = min(_skip_until(text, pos, ";") + 1, end)
        yield member_type, name, value, count


def parse_member_list(members_string: str) -> list[ClassMember]:
    """Parse a member list such as ``"int number=47;char* name;ZGEOMREF weapon;"``."""
    members = []
    for member_type, name, value, count in _decode_members(members_string):
        member = ClassMember(type=member_type.translate(_UPPER), name=name, array_count=count)
        if value.startswith("{"):
            member.value_choices = value[1:].split("}", 1)[0].split(",")
        else:
            member.default_value = value
        if member.type.startswith("@"):
            member.is_protected = True
            member.type = member.type[1:]
        members.append(member)
    return members


def add_dbl_member_info(members: list[ObjectMember], memlist: list[ClassMember]) -> list[ObjectMember]:
    """Append one slot per member (one per element for arrays), then a terminator slot."""
    for member in memlist:
        if member.array_count == 1:
            members.append(ObjectMember(member))
        else:
            members.extend(ObjectMember(member, i) for i in range(member.array_count))
    members.append(ObjectMember(_EMPTY_MEMBER))
    return members


def _component_names(text: str) -> Iterator[str]:
    end = len(text)
    pos = 0
    while pos < end:
        pos = _skip_spaces(text, pos)
        begin = pos
        pos = _skip_until(text, pos, " ,")
        name = text[begin:pos]
        pos = _skip_until(text, pos, ",")
        if pos < end:
            pos += 1
        pos = _skip_spaces(text, pos)
        yield name


class ClassInfo:
    """Lookup tables for object classes and components."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.classes_by_id: dict[int, dict[str, Any]] = {}
        self.string_ids: dict[str, int] = {}
        self.components: dict[str, dict[str, Any]] = {}
        self.member_lists: dict[str, list[ClassMember]] = {}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ClassInfo:
        """Build the tables from parsed class description data."""
        info = cls()
        info.data = data
        for geom in data["geoms"]:
            type_id = geom["num2"] & 0xFFFFF
            name = geom["name"]
            info.classes_by_id[type_id] = geom
            info.string_ids[name] = type_id
            info.member_lists[name] = parse_member_list(geom["members"])
        for component in data["components"]:
            name = component["infoClassName"][1:]
            info.components[name] = component
            info.member_lists[name] = parse_member_list(component["members"])
        return info

    @classmethod
    def from_file(cls, path: str | Path = "classes.json") -> ClassInfo:
        """Read the class description file."""
        with open(path, encoding="utf-8") as handle:
            return cls.from_json(json.load(handle))

    def _class(self, type_id: int) -> dict[str, Any]:
        try:
            return self.classes_by_id[type_id]
        except KeyError:
            raise KeyError(f"unknown object class id {type_id}") from None

    def get_obj_type_string(self, type_id: int) -> str:
        """Return the class name for a class id."""
        return self._class(type_id)["name"]

    def get_obj_type_category(self, type_id: int) -> int:
        """Return the category flags of a class."""
        return (self._class(type_id)["num2"] & 0xFFFFFFFF) >> 16

    def get_member_names(self, obj: Any) -> list[ObjectMember]:
        """Return the DBL member slots of an object (needs ``type`` and ``dbl`` attributes)."""
        members = [ObjectMember(m) for m in _INITIAL_MEMBERS]
        members.append(ObjectMember(_EMPTY_MEMBER))

        def on_class(cls_data: dict[str, Any]) -> None:
            if cls_data["name"] == "ZGEOM":
                return
            parent = cls_data["type"]
            try:
                parent_id = self.string_ids[parent]
            except KeyError:
                raise KeyError(f"unknown parent class {parent!r}") from None
            on_class(self._class(parent_id))
            add_dbl_member_info(members, self.member_lists[cls_data["name"]])

        on_class(self._class(obj.type))

        entries = obj.dbl.entries
        if entries:
            component_list = entries[0].value
            if not isinstance(component_list, str):
                raise TypeError("first DBL entry must hold the component list string")
            for name in _component_names(component_list):
                try:
                    memlist = self.member_lists[name]
                except KeyError:
                    raise KeyError(f"unknown component {name!r}") from None
                add_dbl_member_info(members, memlist)
        return members