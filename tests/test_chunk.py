import struct

import pytest

from c47scene.chunk import FLAG_MULTIDATA, FLAG_SUBCHUNKS, Chunk, fourcc, tag_name


def u32(*values):
    return struct.pack(f"<{len(values)}I", *values)


def test_fourcc_is_little_endian_bytes():
    assert fourcc("ABCD") == int.from_bytes(b"ABCD", "little")
    assert fourcc("PAL").to_bytes(4, "little") == b"PAL\0"


def test_tag_name_round_trip():
    for name in ("ANDS", "SNDR", "PAL", "WAVC"):
        assert tag_name(fourcc(name)) == name


def test_fourcc_rejects_long_names():
    with pytest.raises(ValueError):
        fourcc("TOOLONG")


def test_simple_chunk_wire_bytes():
    chunk = Chunk(tag=fourcc("ABCD"), maindata=b"xy")
    assert chunk.to_bytes() == b"ABCD" + u32(10) + b"xy"


def test_simple_chunk_parse():
    chunk = Chunk.from_bytes(b"ABCD" + u32(10) + b"xy")
    assert chunk == Chunk(tag=fourcc("ABCD"), maindata=b"xy")


def test_multidata_header_flags():
    chunk = Chunk(tag=fourcc("MULT"), multidata=[b"ab", b"cde"])
    data = chunk.to_bytes()
    info = struct.unpack_from("<I", data, 4)[0]
    assert info & FLAG_MULTIDATA
    assert not info & FLAG_SUBCHUNKS
    assert info & 0x3FFFFFFF == len(data)
    assert data.endswith(b"abcde")


def test_nested_round_trip():
    tree = Chunk(
        tag=fourcc("ROOT"),
        maindata=b"root data",
        subchunks=[
            Chunk(tag=fourcc("SUB1"), multidata=[b"\x01\x02\x03\x04", b"", b"zz"]),
            Chunk(
                tag=fourcc("SUB2"),
                subchunks=[Chunk(tag=fourcc("LEAF"), maindata=b"leaf")],
                multidata=[b"m"],
            ),
        ],
    )
    data = tree.to_bytes()
    parsed = Chunk.from_bytes(data)
    assert parsed == tree
    assert parsed.to_bytes() == data


def test_from_bytes_with_offset():
    inner = Chunk(tag=fourcc("DATA"), maindata=b"1234").to_bytes()
    assert Chunk.from_bytes(b"junk" + inner, 4).maindata == b"1234"


def test_truncated_data_raises():
    data = Chunk(tag=fourcc("DATA"), maindata=b"123456").to_bytes()
    with pytest.raises(ValueError):
        Chunk.from_bytes(data[:-2])


def test_find_subchunk():
    first = Chunk(tag=fourcc("AAAA"), maindata=b"1")
    second = Chunk(tag=fourcc("AAAA"), maindata=b"2")
    parent = Chunk(subchunks=[Chunk(tag=fourcc("BBBB")), first, second])
    assert parent.find_subchunk(fourcc("AAAA")) is first
    assert parent.find_subchunk("AAAA") is first
    assert parent.find_subchunk("CCCC") is None


def test_reconstruct_single_maindata():
    header = u32(fourcc("PACK"), 24)
    records = u32(2, 8, 6, 0xAABBCCDD)
    packrep = u32(0, len(header)) + header + records
    repeat = b"..XXXXyz.."
    chunk = Chunk.reconstruct_pack_from_repeat(packrep, repeat)
    assert chunk.tag == fourcc("PACK")
    assert chunk.maindata == u32(0xAABBCCDD) + b"yz"


def test_reconstruct_unknown_offset_raises():
    header = u32(fourcc("PACK"), 16)
    packrep = u32(0, len(header)) + header + u32(0, 100, 4, 1)
    with pytest.raises(ValueError):
        Chunk.reconstruct_pack_from_repeat(packrep, bytes(8))


def test_reconstruct_multidata_size_mismatch_raises():
    header = u32(fourcc("PACK"), 0, 20, 1, 4)
    packrep = u32(0, len(header)) + header + u32(0, 20, 8, 1)
    with pytest.raises(ValueError):
        Chunk.reconstruct_pack_from_repeat(packrep, bytes(16))