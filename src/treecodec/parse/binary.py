"""Reader for the compact binary tree format.

File layout
-----------
- magic ``23 54 52 45``
- header byte: bit 0 shared name table, bit 1 shared attribute table,
  all other bits must be zero
- optional shared name table and shared attribute table
- tree records, back to back
- optional caller supplied bytes
- label section: tree count, then one int64 offset per tree
- int64 offset of the label section
- trailer ``45 4E 44 FF``

Each tree record holds an optional local attribute table, the packed
child counts of every node in canonical depth-first order, then the
attribute values present on each node in that same order.
"""

import dataclasses
import io
import os
import struct
import typing
import warnings
from collections.abc import Iterator

from tqdm import tqdm

from treecodec.core.attributes import NAME_ATTR, Attribute
from treecodec.core.tree import Tree, TreeCollection, build_tree, tree_name_of
from treecodec.parse.record import BinaryFormatError
from treecodec.util.io import PathType, get_format_suffixes, open_
from treecodec.util.result import NotCompleted, attempt

MAGIC = b"\x23\x54\x52\x45"
TRAILER = b"\x45\x4e\x44\xff"
SHARED_NAMES = 0b01
SHARED_ATTRIBUTES = 0b10
RESERVED_BITS = 0xFC
TEXT_TAG = 1
NUMERIC_TAG = 2
VARINT_ESCAPE = 254
LITERAL_NAME = 255
# magic + header byte
DATA_START = 5

_int32 = struct.Struct("<i")
_int64 = struct.Struct("<q")
_double = struct.Struct("=d")

# 2 bit codes, the escape 0b11 leads to a 4 bit code
_TWO_BIT = {0b00: 0, 0b01: 2, 0b10: 3}
_FOUR_BIT = {0b0011: 1, 0b0111: 4, 0b1011: 5}
_ESCAPE = 0b1111


def _open_binary(path: PathType) -> typing.BinaryIO:
    """opens path for reading, decompressing it into memory if compressed"""
    _, compression = get_format_suffixes(path)
    infile = open_(path, mode="rb")
    if compression is None:
        return infile
    # compressed streams cannot seek from the end
    with infile:
        return io.BytesIO(infile.read())


def _read_exact(stream: typing.BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        msg = f"unexpected end of data at byte {stream.tell()}"
        raise BinaryFormatError(msg)
    return data


def read_byte(stream: typing.BinaryIO) -> int:
    return _read_exact(stream, 1)[0]


def read_int32(stream: typing.BinaryIO) -> int:
    return _int32.unpack(_read_exact(stream, _int32.size))[0]


def read_int64(stream: typing.BinaryIO) -> int:
    return _int64.unpack(_read_exact(stream, _int64.size))[0]


def read_double(stream: typing.BinaryIO) -> float:
    return _double.unpack(_read_exact(stream, _double.size))[0]


def read_varint(stream: typing.BinaryIO) -> int:
    """values below 254 are one byte, otherwise 254 then an int32"""
    value = read_byte(stream)
    if value < VARINT_ESCAPE:
        return value
    return read_int32(stream)


def read_string(stream: typing.BinaryIO) -> str:
    """a length, then one variable int per UTF-16 code unit"""
    units = [read_varint(stream) for _ in range(read_varint(stream))]
    try:
        text = "".join(map(chr, units))
        return text.encode("utf-16-le", "surrogatepass").decode("utf-16-le")
    except (ValueError, UnicodeError) as err:
        msg = f"invalid character data {units[:10]}"
        raise BinaryFormatError(msg) from err


class ShortIntReader:
    """unpacks child counts written by ShortIntWriter

    Parameters
    ----------
    stream
        positioned at the first byte of the packed data

    Notes
    -----
    Codes are read LSB-first. A byte is loaded as soon as the previous one
    is used up, so after the last value ``finish()`` must be called to
    step back over a byte that was read ahead.
    """

    def __init__(self, stream: typing.BinaryIO) -> None:
        self._stream = stream
        self._byte = read_byte(stream)
        self._cursor = 0
        self._read_ahead = False

    def _load(self) -> None:
        data = self._stream.read(1)
        self._read_ahead = bool(data)
        self._byte = data[0] if data else 0
        self._cursor = 0

    def _take(self) -> int:
        if self._cursor == 8:
            self._load()
            if not self._read_ahead:
                msg = "unexpected end of data in child counts"
                raise BinaryFormatError(msg)
        bits = (self._byte >> self._cursor) & 0b11
        self._cursor += 2
        self._read_ahead = False
        return bits

    def read(self) -> int:
        code = self._take()
        if code in _TWO_BIT:
            value = _TWO_BIT[code]
        else:
            code |= self._take() << 2
            if code == _ESCAPE:
                value = read_varint(self._stream)
                self._load()
                return value
            value = _FOUR_BIT[code]

        if self._cursor == 8:
            self._load()
        return value

    def finish(self) -> None:
        """rewinds over a byte read ahead after the last value"""
        if self._cursor == 0 and self._read_ahead:
            self._stream.seek(-1, io.SEEK_CUR)
        self._read_ahead = False


def read_attribute_table(stream: typing.BinaryIO, count: int | None = None) -> list[Attribute]:
    """(name, type tag) pairs, preceded by their count unless given"""
    if count is None:
        count = read_varint(stream)
    attributes = []
    for _ in range(count):
        name = read_string(stream)
        tag = read_varint(stream)
        if tag not in (TEXT_TAG, NUMERIC_TAG):
            msg = f"unknown type tag {tag} for attribute {name!r}"
            raise BinaryFormatError(msg)
        attributes.append(Attribute(name, tag == NUMERIC_TAG))
    return attributes


def _read_structure(stream: typing.BinaryIO) -> tuple[list[int], list[list[int]]]:
    """parent and children of every node, in depth-first order"""
    reader = ShortIntReader(stream)
    parents = [-1]
    children: list[list[int]] = []
    counts: list[int] = []
    current = 0
    while current >= 0:
        counts.append(reader.read())
        children.append([])
        while current >= 0 and len(children[current]) == counts[current]:
            current = parents[current]

        if current >= 0:
            node = len(parents)
            children[current].append(node)
            parents.append(current)
            current = node

    reader.finish()
    return parents, children


def _read_name(stream: typing.BinaryIO, names: list[str]) -> str:
    lead = read_byte(stream)
    if lead == 0:
        return ""
    if lead == LITERAL_NAME:
        return read_string(stream)

    stream.seek(-1, io.SEEK_CUR)
    index = read_varint(stream) - 1
    if index >= len(names):
        msg = f"name index {index} outside the {len(names)} shared names"
        raise BinaryFormatError(msg)
    return names[index]


def read_tree_record(
    stream: typing.BinaryIO,
    names: list[str] | None = None,
    attributes: list[Attribute] | None = None,
) -> Tree:
    """decodes the tree record at the current stream position

    Parameters
    ----------
    stream
        binary stream positioned at the start of the record
    names
        the shared name table, None if names are stored per tree
    attributes
        the shared attribute table, used when the record has no local one
    """
    if count := read_varint(stream):
        attributes = read_attribute_table(stream, count)
    attributes = attributes or []

    parents, children = _read_structure(stream)

    node_attrs = []
    for _ in parents:
        pairs = []
        for _ in range(read_varint(stream)):
            index = read_varint(stream)
            if index >= len(attributes):
                msg = f"attribute index {index} outside the {len(attributes)} attributes"
                raise BinaryFormatError(msg)
            attr = attributes[index]
            if attr.is_numeric:
                value = read_double(stream)
            elif names is not None and attr.same_slot(NAME_ATTR):
                value = _read_name(stream, names)
            else:
                value = read_string(stream)
            pairs.append((attr, value))
        node_attrs.append(pairs)

    return build_tree(parents, children, node_attrs, attributes=attributes)


@dataclasses.dataclass
class BinaryTreeMetadata:
    """what the header and trailer of a binary tree file describe

    Attributes
    ----------
    global_names, global_attributes
        whether the file holds shared name / attribute tables
    names, attributes
        the shared tables, None when absent
    tree_addresses
        byte offsets of the tree records, None when unknown
    valid_trailer
        whether the file ended with a valid trailer
    data_start
        offset of the first byte after the shared tables
    """

    global_names: bool
    global_attributes: bool
    names: list[str] | None = None
    attributes: list[Attribute] | None = None
    tree_addresses: list[int] | None = None
    valid_trailer: bool = True
    data_start: int = DATA_START


def has_valid_trailer(stream: typing.BinaryIO) -> bool:
    """whether the stream ends with the trailer, leaves position unchanged"""
    position = stream.tell()
    size = stream.seek(0, io.SEEK_END)
    result = False
    if size >= DATA_START + 1 + _int64.size + len(TRAILER):
        stream.seek(-len(TRAILER), io.SEEK_END)
        result = stream.read(len(TRAILER)) == TRAILER
    stream.seek(position)
    return result


def read_header(stream: typing.BinaryIO) -> tuple[bool, bool]:
    """validates magic and reserved bits, returns the shared table flags"""
    stream.seek(0)
    if stream.read(len(MAGIC)) != MAGIC:
        msg = "Invalid file header!"
        raise BinaryFormatError(msg)

    header = stream.read(1)
    if not header or header[0] & RESERVED_BITS:
        msg = "Invalid file header!"
        raise BinaryFormatError(msg)
    return bool(header[0] & SHARED_NAMES), bool(header[0] & SHARED_ATTRIBUTES)


def read_tree_addresses(stream: typing.BinaryIO) -> list[int]:
    """tree offsets listed in the label section"""
    stream.seek(-(len(TRAILER) + _int64.size), io.SEEK_END)
    stream.seek(read_int64(stream))
    return [read_int64(stream) for _ in range(read_varint(stream))]


def _scan_records(
    stream: typing.BinaryIO, metadata: BinaryTreeMetadata
) -> Iterator[tuple[int, Tree | NotCompleted]]:
    """decodes records back to back until one fails, yields (offset, result)"""
    size = stream.seek(0, io.SEEK_END)
    stream.seek(metadata.data_start)
    ordinal = 0
    while (offset := stream.tell()) < size:
        ordinal += 1
        result = attempt(
            read_tree_record,
            stream,
            metadata.names,
            metadata.attributes,
            source=f"tree #{ordinal} at byte {offset}",
        )
        yield offset, result
        if not result:
            return


def read_metadata(
    stream: typing.BinaryIO, invalid_trailer: str = "scan"
) -> BinaryTreeMetadata:
    """metadata from an open binary stream, see read_binary_tree_metadata"""
    if invalid_trailer not in ("scan", "fail", "ignore"):
        msg = f"invalid_trailer must be 'scan', 'fail' or 'ignore', not {invalid_trailer!r}"
        raise ValueError(msg)

    global_names, global_attributes = read_header(stream)
    metadata = BinaryTreeMetadata(global_names=global_names, global_attributes=global_attributes)
    if global_names:
        metadata.names = [read_string(stream) for _ in range(read_varint(stream))]
    if global_attributes:
        metadata.attributes = read_attribute_table(stream)
    metadata.data_start = stream.tell()

    metadata.valid_trailer = has_valid_trailer(stream)
    if metadata.valid_trailer:
        metadata.tree_addresses = read_tree_addresses(stream)
        return metadata

    if invalid_trailer == "fail":
        msg = "Invalid file trailer!"
        raise BinaryFormatError(msg)

    warnings.warn("Invalid file trailer!", UserWarning, stacklevel=3)
    if invalid_trailer == "scan":
        metadata.tree_addresses = [
            offset for offset, result in _scan_records(stream, metadata) if result
        ]
    return metadata


def read_binary_tree_metadata(path: PathType, invalid_trailer: str = "scan") -> BinaryTreeMetadata:
    """reads the header tables and tree offsets of a binary tree file

    Parameters
    ----------
    path
        binary tree file
    invalid_trailer
        what to do when the file lacks a valid trailer, e.g. because it is
        incomplete. 'scan' warns then decodes every record to collect the
        offsets of those that can be read. 'fail' raises BinaryFormatError.
        'ignore' warns and leaves tree_addresses as None.

    Returns
    -------
    BinaryTreeMetadata
    """
    with _open_binary(path) as infile:
        return read_metadata(infile, invalid_trailer=invalid_trailer)


def _collection_name(ordinal: int, tree: Tree) -> str:
    return tree_name_of(tree) or f"tree{ordinal}"


def parse_binary_trees(
    stream: typing.BinaryIO, show_progress: bool = False
) -> TreeCollection:
    """decodes every tree from an open binary stream

    Notes
    -----
    When the trailer is missing or invalid a UserWarning is issued and
    records are decoded one after the other until one fails. The trees
    decoded before the failure are returned, with the failure recorded on
    the collection.
    """
    metadata = read_metadata(stream, invalid_trailer="ignore")
    items = []
    failure = None
    if metadata.valid_trailer:
        addresses = metadata.tree_addresses
        for ordinal, address in enumerate(tqdm(addresses, disable=not show_progress), 1):
            stream.seek(address)
            tree = read_tree_record(stream, metadata.names, metadata.attributes)
            items.append((_collection_name(ordinal, tree), tree))
        return TreeCollection(items)

    records = _scan_records(stream, metadata)
    for ordinal, (_, result) in enumerate(tqdm(records, disable=not show_progress), 1):
        if not result:
            failure = result
            break
        items.append((_collection_name(ordinal, result), result))

    return TreeCollection(items, failure=failure)


def read_binary_trees(
    path: PathType,
    tree_names: list[str] | None = None,
    show_progress: bool = False,
) -> TreeCollection:
    """reads all trees from a binary tree file

    Parameters
    ----------
    path
        binary tree file
    tree_names
        names for the trees, replacing those from the file. Trees are
        otherwise named by their TreeName attribute, or tree1, tree2, ...
    show_progress
        display a progress bar

    Returns
    -------
    TreeCollection
    """
    with _open_binary(path) as infile:
        trees = parse_binary_trees(infile, show_progress=show_progress)

    return trees if tree_names is None else trees.rename(tree_names)


def read_one_binary_tree(
    path: PathType,
    index: int = 0,
    address: int | None = None,
    metadata: BinaryTreeMetadata | None = None,
) -> Tree:
    """reads a single tree from a binary tree file

    Parameters
    ----------
    path
        binary tree file
    index
        0-based position of the tree in the file, ignored if address given
    address
        byte offset of the tree record
    metadata
        from read_binary_tree_metadata, read from the file if not provided.
        Reuse it to read several trees without re-reading the header.
    """
    if metadata is None:
        metadata = read_binary_tree_metadata(path)

    if address is None:
        if metadata.tree_addresses is None:
            msg = "metadata has no tree addresses, provide an address"
            raise ValueError(msg)
        address = metadata.tree_addresses[index]

    with _open_binary(path) as infile:
        infile.seek(address)
        return read_tree_record(infile, metadata.names, metadata.attributes)


def is_binary_tree_file(path: PathType) -> bool:
    """whether path starts with the binary tree magic"""
    if not os.path.isfile(path):
        return False
    with open_(path, mode="rb") as infile:
        return infile.read(len(MAGIC)) == MAGIC
