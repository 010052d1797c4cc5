"""Writer for the compact binary tree format, see treecodec.parse.binary"""

import struct
import typing
from collections.abc import Iterable

from tqdm import tqdm

from treecodec.core.attributes import NAME_ATTR, Attribute, AttributeRegistry
from treecodec.core.tree import Tree, TreeCollection, as_collection, standardise_attributes
from treecodec.core.traversal import tree_order
from treecodec.parse.binary import (
    LITERAL_NAME,
    MAGIC,
    NUMERIC_TAG,
    SHARED_ATTRIBUTES,
    SHARED_NAMES,
    TEXT_TAG,
    TRAILER,
    VARINT_ESCAPE,
)
from treecodec.util.io import PathType, atomic_write, open_

_int32 = struct.Struct("<i")
_int64 = struct.Struct("<q")
_double = struct.Struct("=d")

# value -> (code, bit width), anything else is escaped
_CODES = {
    0: (0b00, 2),
    2: (0b01, 2),
    3: (0b10, 2),
    1: (0b0011, 4),
    4: (0b0111, 4),
    5: (0b1011, 4),
}
_ESCAPE = (0b1111, 4)


def write_byte(stream: typing.BinaryIO, value: int) -> None:
    stream.write(bytes((value,)))


def write_int64(stream: typing.BinaryIO, value: int) -> None:
    stream.write(_int64.pack(value))


def write_double(stream: typing.BinaryIO, value: float) -> None:
    stream.write(_double.pack(value))


def write_varint(stream: typing.BinaryIO, value: int) -> None:
    if 0 <= value < VARINT_ESCAPE:
        write_byte(stream, value)
    else:
        write_byte(stream, VARINT_ESCAPE)
        stream.write(_int32.pack(value))


def write_string(stream: typing.BinaryIO, text: str) -> None:
    data = text.encode("utf-16-le", "surrogatepass")
    units = struct.unpack(f"<{len(data) // 2}H", data)
    write_varint(stream, len(units))
    for unit in units:
        write_varint(stream, unit)


class ShortIntWriter:
    """packs small non-negative integers into 2 or 4 bit codes

    Parameters
    ----------
    stream
        binary stream the packed bytes are written to

    Notes
    -----
    0, 2 and 3 take 2 bits, 1, 4 and 5 take 4 bits. Other values write an
    escape code, pad the current byte and follow it with a variable int.
    Call ``flush()`` after the last value.
    """

    def __init__(self, stream: typing.BinaryIO) -> None:
        self._stream = stream
        self._byte = 0
        self._cursor = 0

    def _put(self, code: int, width: int) -> None:
        self._byte |= (code << self._cursor) & 0xFF
        self._cursor += width
        if self._cursor >= 8:
            write_byte(self._stream, self._byte)
            self._cursor -= 8
            self._byte = code >> (width - self._cursor)

    def write(self, value: int) -> None:
        if value < 0:
            msg = f"cannot pack negative value {value}"
            raise ValueError(msg)

        if value in _CODES:
            self._put(*_CODES[value])
            return

        self._put(*_ESCAPE)
        self.flush()
        write_varint(self._stream, value)

    def flush(self) -> None:
        """writes the partially filled byte, if any"""
        if self._cursor:
            write_byte(self._stream, self._byte)
        self._byte = 0
        self._cursor = 0


def write_attribute_table(stream: typing.BinaryIO, attributes: Iterable[Attribute]) -> None:
    attributes = list(attributes)
    write_varint(stream, len(attributes))
    for attr in attributes:
        write_string(stream, attr.name)
        write_varint(stream, NUMERIC_TAG if attr.is_numeric else TEXT_TAG)


def _write_name(stream: typing.BinaryIO, name: str, names: dict[str, int]) -> None:
    if name not in names:
        write_byte(stream, LITERAL_NAME)
        write_string(stream, name)
        return
    write_varint(stream, names[name] + 1)


def write_tree_record(
    stream: typing.BinaryIO,
    tree: Tree,
    names: dict[str, int] | None = None,
    attributes: AttributeRegistry | None = None,
) -> None:
    """encodes one tree at the current stream position

    Parameters
    ----------
    stream
        binary stream
    tree
        the tree, its reserved attributes should already be standardised
    names
        shared name table as name -> index, None to store names literally
    attributes
        shared attribute table, None to store a table with this record
    """
    if attributes is None:
        write_attribute_table(stream, tree.attributes)
        slot_map = list(range(len(tree.attributes)))
    else:
        write_byte(stream, 0)
        slot_map = []
        for attr in tree.attributes:
            index = attributes.index(attr.name, attr.is_numeric)
            if index is None:
                msg = f"attribute {attr.name!r} is missing from the shared table"
                raise ValueError(msg)
            slot_map.append(index)

    order = tree_order(tree)
    packer = ShortIntWriter(stream)
    for count in order.child_counts():
        packer.write(count)
    packer.flush()

    for node_id in order.order:
        present = tree.node_attributes(int(node_id))
        write_varint(stream, len(present))
        for index, value in present:
            attr = tree.attributes[index]
            write_varint(stream, slot_map[index])
            if attr.is_numeric:
                write_double(stream, value)
            elif names is not None and attr.same_slot(NAME_ATTR):
                _write_name(stream, value, names)
            else:
                write_string(stream, value)


def _node_names(tree: Tree) -> list[str]:
    names = []
    for tips in (True, False):
        values = tree.get_values(NAME_ATTR, tips=tips)
        if values is not None:
            names.extend(name for name in values if name)
    return names


def shared_tables(trees: list[Tree]) -> tuple[list[str] | None, AttributeRegistry | None]:
    """the shared name and attribute tables, None where a table is per tree

    Notes
    -----
    The tables are grown one tree at a time. Once a tree after the first
    introduces new names for more than half of its names, names are stored
    per tree. Attributes are decided the same way.
    """
    names: dict[str, int] = {}
    attributes = AttributeRegistry()
    per_tree_names = per_tree_attributes = False
    for tree in trees:
        prev_name_count = len(names)
        prev_attr_count = len(attributes)

        tree_names = _node_names(tree)
        for name in tree_names:
            names.setdefault(name, len(names))
        attributes.merge(tree.attributes)

        if prev_name_count and (len(names) - prev_name_count) * 2 > len(tree_names):
            per_tree_names = True
        if prev_attr_count and (len(attributes) - prev_attr_count) * 2 > len(tree.attributes):
            per_tree_attributes = True
        if per_tree_names and per_tree_attributes:
            break

    return (
        None if per_tree_names else list(names),
        None if per_tree_attributes else attributes,
    )


def begin_binary_trees(stream: typing.BinaryIO) -> list[int]:
    """starts a file without shared tables, returns the address list"""
    stream.write(MAGIC)
    write_byte(stream, 0)
    return [stream.tell()]


def _standardised(trees: "Tree | TreeCollection | Iterable[Tree]") -> list[Tree]:
    return [standardise_attributes(tree, tree_name=name) for name, tree in as_collection(trees)]


def append_binary_trees(
    stream: typing.BinaryIO,
    trees: "Tree | TreeCollection | Iterable[Tree]",
    addresses: list[int],
) -> list[int]:
    """writes trees with per-tree tables, extending addresses in place

    Parameters
    ----------
    stream
        stream returned to begin_binary_trees
    trees
        trees to append, a single Tree is written under the name 'tree'
    addresses
        as returned by begin_binary_trees, the last entry must be the
        current stream position
    """
    for tree in _standardised(trees):
        write_tree_record(stream, tree)
        addresses.append(stream.tell())
    return addresses


def finish_binary_trees(stream: typing.BinaryIO, addresses: list[int], extra: bytes = b"") -> None:
    """writes the extra bytes, the label section and the trailer

    Parameters
    ----------
    stream
        the stream being written
    addresses
        the start of every tree record followed by the position after the
        last one
    extra
        opaque bytes stored between the trees and the label section
    """
    stream.write(extra)
    tree_addresses = addresses[:-1]
    write_varint(stream, len(tree_addresses))
    for address in tree_addresses:
        write_int64(stream, address)
    write_int64(stream, addresses[-1] + len(extra))
    stream.write(TRAILER)


class BinaryTreeWriter:
    """writes trees to a binary file one batch at a time

    Parameters
    ----------
    path
        output file
    extra
        opaque bytes stored before the label section on close

    Notes
    -----
    Trees are written with their own name and attribute tables. A file
    left unfinished has no trailer, readers recover its complete records.

    Examples
    --------
    >>> with BinaryTreeWriter("out.tbi") as writer:
    ...     writer.append(tree)
    """

    def __init__(self, path: PathType, extra: bytes = b"") -> None:
        self._path = path
        self._extra = extra
        self._file = None
        self._addresses = None

    def __enter__(self) -> "BinaryTreeWriter":
        self._file = open_(self._path, mode="wb")
        self._addresses = begin_binary_trees(self._file)
        return self

    def append(self, trees: "Tree | TreeCollection | Iterable[Tree]") -> None:
        if self._file is None:
            msg = "writer is not open"
            raise ValueError(msg)
        append_binary_trees(self._file, trees, self._addresses)

    @property
    def num_trees(self) -> int:
        return 0 if self._addresses is None else len(self._addresses) - 1

    def close(self) -> None:
        if self._file is None:
            return
        finish_binary_trees(self._file, self._addresses, self._extra)
        self._file.close()
        self._file = None

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self.close()
        elif self._file is not None:
            self._file.close()
            self._file = None


def write_binary_stream(
    stream: typing.BinaryIO,
    trees: "Tree | TreeCollection | Iterable[Tree]",
    extra: bytes = b"",
    show_progress: bool = False,
) -> None:
    """writes a complete binary tree file to an open stream"""
    trees = _standardised(trees)
    names, attributes = shared_tables(trees)

    header = (SHARED_NAMES if names is not None else 0) | (
        SHARED_ATTRIBUTES if attributes is not None else 0
    )
    stream.write(MAGIC)
    write_byte(stream, header)
    if names is not None:
        write_varint(stream, len(names))
        for name in names:
            write_string(stream, name)
        names = {name: i for i, name in enumerate(names)}
    if attributes is not None:
        write_attribute_table(stream, attributes)

    addresses = [stream.tell()]
    for tree in tqdm(trees, disable=not show_progress):
        write_tree_record(stream, tree, names=names, attributes=attributes)
        addresses.append(stream.tell())

    finish_binary_trees(stream, addresses, extra)


def write_binary_trees(
    trees: "Tree | TreeCollection | Iterable[Tree]",
    path: PathType,
    extra: bytes = b"",
    show_progress: bool = False,
) -> None:
    """writes trees to a binary tree file

    Parameters
    ----------
    trees
        a TreeCollection, a sequence of trees or a single Tree
    path
        output file, written atomically
    extra
        opaque bytes stored between the trees and the label section
    show_progress
        display a progress bar

    Notes
    -----
    Names and attributes shared across the trees are stored once in the
    file header unless too many of them are specific to individual trees.
    Each tree's collection name is stored as its TreeName attribute.
    """
    with atomic_write(path, mode="wb") as outfile:
        write_binary_stream(outfile, trees, extra=extra, show_progress=show_progress)
