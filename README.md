# c47scene

A library for reading, editing and writing scene archives of *Hitman: Codename 47*.

A scene is a ZIP archive. It holds a `Pack.SPK` chunk tree, which describes the
objects of the scene, and several asset packs (`PAL`, `DXT`, `LGT`, `WAV` and,
optionally, `ANM`). This package reads the archive into a tree of
`GameObject`s and the scene's tables, and writes it back out.

It has no dependencies outside the standard library.

## Modules

- `c47scene.chunk`: the nested chunk container format. `Chunk.from_bytes(data, offset)`
  parses a chunk tree, `Chunk.to_bytes()` writes it, `Chunk.find_subchunk(tag)`
  finds a direct child (the tag may be an integer or a name such as `"PROT"`), and
  `Chunk.reconstruct_pack_from_repeat(packrep, repeat)` rebuilds a pack stored as
  a `PackRepeat.*` file against the game's shared `Repeat.*` file. `fourcc(name)`
  and `tag_name(tag)` convert between tag names and tag values.
- `c47scene.gameobj`: `GameObject`, with its `Mesh`, `ObjLine`, `Light` and
  `MeshExtension` data; `get_path()`, `find_by_path(path)` (backslash-separated)
  and `get_global_transform(reference)`. Matrices are 4x4 lists of lists;
  `identity_matrix()`, `translation_matrix(x, y, z)` and `multiply_matrices(a, b)`
  work on them. `get_obj_type_string(type_id)` gives the built-in class names.
- `c47scene.dbl`: DBL property lists, through `DBLList.from_bytes`,
  `DBLList.to_bytes`, `DBLList.add_members`, `DBLEntry`, `EntryType` and
  `entry_type_name`.
- `c47scene.audio`: wave, sound, set, material, impact and room audio objects,
  held in an `AudioManager` and read from and written to the `ANDS` and `SNDR`
  chunks with `load(ands, sndr)` and `save()`.
- `c47scene.pathfinder`: pathfinding data (rooms, BSP nodes, doors and their
  instances), through `PfInfo.from_bytes(data)` and `PfInfo.to_bytes()`.
- `c47scene.classinfo`: class and component descriptions, read with
  `ClassInfo.from_file(path)` (by default `classes.json`) or
  `ClassInfo.from_json(data)`; `parse_member_list` parses member strings such as
  `"int number=47;char* name;ZGEOMREF weapon;"`.
- `c47scene.scriptparser`: `ScriptParser` reads script files from the scene
  archive, follows `#include`s, and collects `NativeImport` properties and
  `NativeTypeAlias` entries. Errors raise `ScriptParserError`.
- `c47scene.objmodel`: a small Wavefront OBJ/MTL reader (`ObjModel`); faces are
  fanned into triangles and grouped by `usemtl`.
- `c47scene.spkwriter`: builds the `Pack.SPK` chunk from a scene (`build_spk`),
  sharing repeated data in the pack buffers. Differences from the previously
  loaded pack are reported through the `logging` module at debug level.
- `c47scene.scene`: the `Scene` class, which loads, builds and saves whole scenes
  and edits the object tree. Errors in archives raise `SceneError`.

## Installation

```
pip install .
```

## Usage

Load a scene, duplicate an object and save the result:

```python
from c47scene.scene import Scene

scene = Scene()
scene.load_spk("C0_Training.zip", repeat_dir=".")

obj = scene.root_obj.find_by_path("Level\\Door01")
print(obj.get_path(), obj.type, obj.flags)

copy = scene.duplicate_object(obj, None)
copy.name = "Door02"

scene.save_spk("C0_Training_edited.zip")
```

Scenes that store their packs as `PackRepeat.*` need the game's `Repeat.*`
files; pass the folder that holds them as `repeat_dir`. When saving, the other
files of the loaded archive are copied over and the packs are written as
`Pack.*`.

To build a scene from scratch, start with `Scene.load_empty()` and add objects
with `Scene.create_object(type_id, parent, class_info)`, where `class_info` is a
`ClassInfo`:

```python
from c47scene.classinfo import ClassInfo
from c47scene.scene import Scene

info = ClassInfo.from_file("classes.json")
scene = Scene()
scene.load_empty()
obj = scene.create_object(0x02, scene.root_obj, info)
```

Read the native-import property list of a script in a loaded scene:

```python
from c47scene.scriptparser import ScriptParser

parser = ScriptParser(scene.zip_mem)
parser.parse_file("Scripts\\C0_Training\\Personel01.sdl")
print(parser.get_native_import_property_list(parser.last_script))
```

Work with a chunk file directly:

```python
from c47scene.chunk import Chunk

with open("Pack.SPK", "rb") as f:
    spk = Chunk.from_bytes(f.read(), 0)
print(spk.find_subchunk("PHEA") is not None)
```

## What it does not do

- There is no editor, viewer or command-line program; this is a library only.
- Textures, palettes, lights, sounds and animations in the asset packs are kept
  as opaque `Chunk` trees: they are read and written back but not decoded.
- There is no import or export of 3D model formats other than reading OBJ/MTL
  files with `ObjModel`, and `ObjModel` data is not turned into scene meshes.
- Pathfinding data is decoded and encoded by `PfInfo` but is not located inside
  a scene by `Scene`.

## Running the tests

```
pip install .[test]
pytest
```