import io
import struct

import pytest

from treecodec.core.attributes import NAME_ATTR, Attribute, AttributeRegistry
from treecodec.core.tree import TreeCollection, make_tree, standardise_attributes
from treecodec.format.binary import (
    BinaryTreeWriter,
    ShortIntWriter,
    append_binary_trees,
    begin_binary_trees,
    shared_tables,
    write_binary_trees,
    write_string,
    write_tree_record,
    write_varint,
)
from treecodec.parse.binary import (
    MAGIC,
    TRAILER,
    ShortIntReader,
    read_binary_trees,
    read_string,
    read_tree_record,
    read_varint,
)

_edges = [(3, 0), (3, 4), (4, 1), (4, 2)]


def _tree(labels, **kwargs):
    return make_tree(labels, _edges, [1.0, 4.0, 2.0, 3.0], **kwargs)


@pytest.mark.parametrize(
    "values",
    [
        [0, 1, 2, 3, 4, 5, 6, 1000],
        [2, 2, 2, 2],
        [0, 1],
        [3, 300, 0],
        [0, 0, 0, 7],
        [5, 5],
    ],
)
def test_short_int_roundtrip(values):
    """packed values are recovered and the stream ends just after them"""
    stream = io.BytesIO()
    writer = ShortIntWriter(stream)
    for value in values:
        writer.write(value)
    writer.flush()
    stream.write(b"\xab")

    stream.seek(0)
    reader = ShortIntReader(stream)
    got = [reader.read() for _ in values]
    reader.finish()
    assert got == values
    assert stream.read(1) == b"\xab"


def test_short_int_packing():
    """2 bit codes are packed least significant bits first"""
    stream = io.BytesIO()
    writer = ShortIntWriter(stream)
    for value in (0, 2, 3, 1):
        writer.write(value)
    writer.flush()
    assert stream.getvalue() == bytes([0b11_10_01_00, 0b00])


def test_short_int_at_end_of_data():
    """a full final byte does not need a following byte"""
    stream = io.BytesIO(bytes([0b01010101]))
    reader = ShortIntReader(stream)
    assert [reader.read() for _ in range(4)] == [2, 2, 2, 2]
    reader.finish()
    assert stream.tell() == 1


def test_short_int_negative():
    """negative values cannot be packed"""
    with pytest.raises(ValueError):
        ShortIntWriter(io.BytesIO()).write(-1)


@pytest.mark.parametrize("value,size", [(0, 1), (253, 1), (254, 5), (70000, 5)])
def test_varint(value, size):
    """values from 254 take five bytes"""
    stream = io.BytesIO()
    write_varint(stream, value)
    assert len(stream.getvalue()) == size
    stream.seek(0)
    assert read_varint(stream) == value


@pytest.mark.parametrize("text", ["", "abc", "Ωmega", "\U0001d49c sign"])
def test_string_roundtrip(text):
    """strings are stored as UTF-16 code units"""
    stream = io.BytesIO()
    write_string(stream, text)
    stream.seek(0)
    assert read_string(stream) == text


def test_string_code_units():
    """characters outside the BMP take two code units"""
    stream = io.BytesIO()
    write_string(stream, "a\U0001d49c")
    data = stream.getvalue()
    assert data[0] == 3
    assert data[1] == ord("a")


def test_write_binary_trees_layout(tmp_path, three_tip_tree):
    """file starts with the magic and ends with the trailer"""
    path = tmp_path / "one.tbi"
    write_binary_trees(three_tip_tree, path)
    data = path.read_bytes()
    assert data[:4] == MAGIC
    assert data[-4:] == TRAILER
    # a single tree shares both tables
    assert data[4] == 0b11
    label_address = struct.unpack("<q", data[-12:-4])[0]
    assert data[label_address] == 1


def test_shared_tables_names_per_tree():
    """mostly new names in a later tree move names into the records"""
    trees = [standardise_attributes(_tree(list("ABC"))), standardise_attributes(_tree(list("DEF")))]
    names, attributes = shared_tables(trees)
    assert names is None
    assert [a.name for a in attributes] == ["Name", "Length", "Support"]


def test_shared_tables_attributes_per_tree():
    """mostly new attributes in a later tree move attributes into the records"""
    extra = [Attribute(f"x{i}", True) for i in range(5)]
    trees = [
        standardise_attributes(_tree(list("ABC"))),
        standardise_attributes(_tree(list("ABC"), attributes=extra, tip_attribute_values=[[1, 2, 3]] * 5)),
    ]
    names, attributes = shared_tables(trees)
    assert names == ["A", "B", "C"]
    assert attributes is None


def test_shared_tables_shared():
    """trees over the same tips share both tables"""
    trees = [standardise_attributes(_tree(list("ABC"))), standardise_attributes(_tree(list("CBA")))]
    names, attributes = shared_tables(trees)
    assert names == ["A", "B", "C"]
    assert len(attributes) == 3


@pytest.mark.parametrize(
    "second,header",
    [
        (["D", "E", "F"], 0b10),
        (["C", "A", "B"], 0b11),
    ],
)
def test_header_bits(tmp_path, second, header):
    """the header records which tables are shared"""
    trees = TreeCollection([("t1", _tree(list("ABC"))), ("t2", _tree(second))])
    path = tmp_path / "trees.tbi"
    write_binary_trees(trees, path)
    assert path.read_bytes()[4] == header
    got = read_binary_trees(path)
    assert got.names == ["t1", "t2"]
    assert got.trees[1].tip_labels == second


def test_per_tree_attribute_tables(tmp_path):
    """records with their own attribute tables are read back"""
    extra = [Attribute(f"x{i}", True) for i in range(5)]
    trees = TreeCollection(
        [
            ("t1", _tree(list("ABC"))),
            ("t2", _tree(list("ABC"), attributes=extra, tip_attribute_values=[[1, 2, 3]] * 5)),
        ]
    )
    path = tmp_path / "trees.tbi"
    write_binary_trees(trees, path)
    assert path.read_bytes()[4] == 0b01
    got = read_binary_trees(path)
    assert [a.name for a in got.trees[1].attributes][:5] == [a.name for a in extra]
    assert list(got.trees[1].get_values(extra[4])) == [1.0, 2.0, 3.0]


def test_literal_names():
    """names missing from the shared table are stored literally"""
    tree = standardise_attributes(_tree(list("ABC")))
    stream = io.BytesIO()
    write_tree_record(stream, tree, names={"A": 0})
    stream.seek(0)
    got = read_tree_record(stream, names=["A"])
    assert got.tip_labels == ["A", "B", "C"]


def test_missing_shared_attribute():
    """every attribute must be in a shared attribute table"""
    tree = standardise_attributes(_tree(list("ABC")))
    with pytest.raises(ValueError):
        write_tree_record(io.BytesIO(), tree, attributes=AttributeRegistry([NAME_ATTR]))


def test_extra_bytes(tmp_path, three_tip_tree):
    """extra bytes sit just before the label section"""
    path = tmp_path / "extra.tbi"
    write_binary_trees([three_tip_tree], path, extra=b"hello")
    data = path.read_bytes()
    label_address = struct.unpack("<q", data[-12:-4])[0]
    assert data[label_address - 5 : label_address] == b"hello"
    assert read_binary_trees(path).names == ["tree1"]


def test_binary_tree_writer(tmp_path, three_tip_tree):
    """trees are appended one batch at a time"""
    path = tmp_path / "incremental.tbi"
    with BinaryTreeWriter(path) as writer:
        writer.append(three_tip_tree)
        writer.append(TreeCollection([("x", _tree(list("DEF"))), ("y", _tree(list("GHI")))]))
        assert writer.num_trees == 3

    data = path.read_bytes()
    assert data[4] == 0
    assert data[-4:] == TRAILER
    got = read_binary_trees(path)
    assert got.names == ["tree", "x", "y"]
    assert got.trees[2].tip_labels == ["G", "H", "I"]


def test_binary_tree_writer_not_open(tmp_path, three_tip_tree):
    """appending to a writer outside its context fails"""
    writer = BinaryTreeWriter(tmp_path / "closed.tbi")
    with pytest.raises(ValueError):
        writer.append(three_tip_tree)


def test_unfinished_file(tmp_path, three_tip_tree):
    """complete records of a file without a trailer are recovered"""
    path = tmp_path / "unfinished.tbi"
    with open(path, "wb") as outfile:
        addresses = begin_binary_trees(outfile)
        append_binary_trees(outfile, [three_tip_tree, _tree(list("DEF"))], addresses)

    with pytest.warns(UserWarning, match="Invalid file trailer"):
        got = read_binary_trees(path)
    assert got.names == ["tree1", "tree2"]
    assert got.failure is None
    assert got.trees[1].tip_labels == ["D", "E", "F"]
