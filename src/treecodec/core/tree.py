"""In-memory model of a tree and of a named collection of trees.

A Tree stores its topology as an edge list over a unified node-id space:
leaves occupy ids ``[0, tip_count)`` and internal nodes occupy
``[tip_count, tip_count + internal_node_count)``. Per-node attributes are
held column-wise, one vector per attribute slot for the tips and another
for the internal nodes.
"""

import json
import math
import typing
from collections.abc import Iterable, Iterator, Sequence

import numpy

from treecodec._version import __version__
from treecodec.core.attributes import (
    LENGTH_ATTR,
    NAME_ATTR,
    SUPPORT_ATTR,
    TREE_NAME_ATTR,
    Attribute,
    AttributeRegistry,
    AttributeValue,
)
from treecodec.util.misc import get_object_provenance

if typing.TYPE_CHECKING:  # pragma: no cover
    from treecodec.util.result import NotCompleted

ValueVector = typing.Union[numpy.ndarray, list]


class TreeError(Exception):
    pass


def _make_vector(attr: Attribute, values: Iterable | None, size: int) -> ValueVector:
    if values is None:
        return numpy.full(size, numpy.nan) if attr.is_numeric else [""] * size

    if attr.is_numeric:
        values = [attr.check_value(v) for v in values]
        return numpy.array(values, dtype=float).reshape(-1)
    return [attr.check_value(v) for v in values]


def _fill_unset(attr: Attribute, target: ValueVector, other: ValueVector) -> None:
    """fills unset entries of target from other, in place"""
    for i, value in enumerate(other):
        if not attr.is_set(target[i]) and attr.is_set(value):
            target[i] = value


def _same_vector(attr: Attribute, a: ValueVector, b: ValueVector) -> bool:
    if attr.is_numeric:
        return numpy.array_equal(a, b, equal_nan=True)
    return list(a) == list(b)


def format_support(value: float) -> str:
    """fixed-precision decimal rendering used for numeric labels"""
    return f"{value:f}"


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


class Tree:
    """a rooted tree with named per-node attributes

    Parameters
    ----------
    tip_labels
        one label per leaf, index is the leaf id
    edges
        (parent id, child id) pairs
    edge_lengths
        aligned with edges, NaN for an unset length
    internal_node_count
        number of non-leaf nodes, inferred from the edge count if omitted
    root_edge
        length above the root, NaN if absent
    node_labels
        optional labels aligned to the internal nodes
    attributes
        attribute slots
    tip_attribute_values, node_attribute_values
        one vector per attribute, aligned to the tips / internal nodes.
        Numeric vectors are float arrays (NaN unset), text vectors are
        lists of str ("" unset). None for a slot means all unset.

    Notes
    -----
    Attributes that are case variants of the same slot are merged, with the
    first set value winning, and the reserved Name, Length, Support and
    TreeName slots are normalised to their canonical casing.
    """

    def __init__(
        self,
        tip_labels: Sequence[str],
        edges: typing.Any,  # noqa: ANN401
        edge_lengths: Sequence[float] | None = None,
        internal_node_count: int | None = None,
        root_edge: float = math.nan,
        node_labels: Sequence[str] | None = None,
        attributes: Sequence[Attribute] = (),
        tip_attribute_values: Sequence[Iterable | None] | None = None,
        node_attribute_values: Sequence[Iterable | None] | None = None,
    ) -> None:
        self.tip_labels = [str(label) for label in tip_labels]
        edges = numpy.array(edges, dtype=int)
        if edges.size == 0:
            edges = edges.reshape(0, 2)
        if edges.ndim != 2 or edges.shape[1] != 2:
            msg = f"edges must be (parent, child) pairs, not shape {edges.shape}"
            raise TreeError(msg)
        self.edges = edges

        tip_count = len(self.tip_labels)
        if internal_node_count is None:
            internal_node_count = len(edges) + 1 - tip_count
        self.internal_node_count = int(internal_node_count)
        if self.internal_node_count < 0 or len(edges) != self.node_count - 1:
            msg = (
                f"{len(edges)} edges is inconsistent with {tip_count} tips "
                f"and {self.internal_node_count} internal nodes"
            )
            raise TreeError(msg)

        if len(edges) and (edges.min() < 0 or edges.max() >= self.node_count):
            msg = f"node ids must be in [0, {self.node_count})"
            raise TreeError(msg)

        if edge_lengths is None:
            edge_lengths = numpy.full(len(edges), numpy.nan)
        self.edge_lengths = numpy.array(edge_lengths, dtype=float).reshape(-1)
        if len(self.edge_lengths) != len(edges):
            msg = f"{len(self.edge_lengths)} edge lengths for {len(edges)} edges"
            raise TreeError(msg)

        self.root_edge = float(root_edge)

        if node_labels is not None:
            node_labels = [str(label) for label in node_labels]
            if len(node_labels) != self.internal_node_count:
                msg = f"{len(node_labels)} node labels for {self.internal_node_count} internal nodes"
                raise TreeError(msg)
        self.node_labels = node_labels

        self._set_attributes(attributes, tip_attribute_values, node_attribute_values)

    def _set_attributes(self, attributes, tip_values, node_values) -> None:
        tip_values = tip_values or [None] * len(attributes)
        node_values = node_values or [None] * len(attributes)
        if not len(tip_values) == len(node_values) == len(attributes):
            msg = "attribute value vectors must match the attributes"
            raise TreeError(msg)

        registry = AttributeRegistry()
        self.tip_attribute_values: list[ValueVector] = []
        self.node_attribute_values: list[ValueVector] = []
        for attr, tips, nodes in zip(attributes, tip_values, node_values, strict=True):
            tips = _make_vector(attr, tips, self.tip_count)
            nodes = _make_vector(attr, nodes, self.internal_node_count)
            if len(tips) != self.tip_count or len(nodes) != self.internal_node_count:
                msg = (
                    f"attribute {attr.name!r} needs {self.tip_count} tip and "
                    f"{self.internal_node_count} node values"
                )
                raise TreeError(msg)

            if attr in registry:
                index = registry.add(attr)
                _fill_unset(attr, self.tip_attribute_values[index], tips)
                _fill_unset(attr, self.node_attribute_values[index], nodes)
                continue

            registry.add(attr)
            self.tip_attribute_values.append(tips)
            self.node_attribute_values.append(nodes)

        self.attributes = list(registry)

    @property
    def tip_count(self) -> int:
        return len(self.tip_labels)

    @property
    def node_count(self) -> int:
        """total number of nodes, tips included"""
        return self.tip_count + self.internal_node_count

    @property
    def has_edge_length(self) -> bool:
        return bool(numpy.any(~numpy.isnan(self.edge_lengths)))

    @property
    def has_node_label(self) -> bool:
        return self.node_labels is not None

    @property
    def root(self) -> int:
        """id of the node that is never a child"""
        if self.node_count == 1:
            return 0
        candidates = set(range(self.node_count)) - set(self.edges[:, 1].tolist())
        if len(candidates) != 1:
            msg = f"tree must have exactly one root, found {len(candidates)}"
            raise TreeError(msg)
        return candidates.pop()

    def is_tip(self, node_id: int) -> bool:
        return node_id < self.tip_count

    def attribute_index(self, attr: Attribute) -> int | None:
        """index of the slot matching attr, None if absent"""
        for i, existing in enumerate(self.attributes):
            if existing.same_slot(attr):
                return i
        return None

    def get_value(self, attr_index: int, node_id: int) -> AttributeValue:
        """value of attribute attr_index on node_id"""
        if self.is_tip(node_id):
            return self.tip_attribute_values[attr_index][node_id]
        return self.node_attribute_values[attr_index][node_id - self.tip_count]

    def get_values(self, attr: Attribute, tips: bool = True) -> ValueVector | None:
        """the tip (or internal node) vector for attr, None if absent"""
        index = self.attribute_index(attr)
        if index is None:
            return None
        return self.tip_attribute_values[index] if tips else self.node_attribute_values[index]

    def node_attributes(self, node_id: int) -> list[tuple[int, AttributeValue]]:
        """(attribute index, value) pairs for the attributes set on node_id"""
        result = []
        for i, attr in enumerate(self.attributes):
            value = self.get_value(i, node_id)
            if attr.is_set(value):
                result.append((i, float(value) if attr.is_numeric else value))
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tree):
            return NotImplemented

        if (
            self.tip_labels != other.tip_labels
            or self.internal_node_count != other.internal_node_count
            or not numpy.array_equal(self.edges, other.edges)
            or not numpy.array_equal(self.edge_lengths, other.edge_lengths, equal_nan=True)
            or not (
                self.root_edge == other.root_edge
                or (math.isnan(self.root_edge) and math.isnan(other.root_edge))
            )
            or self.node_labels != other.node_labels
            or self.attributes != other.attributes
        ):
            return False

        return all(
            _same_vector(attr, a, b)
            for attr, a, b in zip(self.attributes, self.tip_attribute_values, other.tip_attribute_values, strict=True)
        ) and all(
            _same_vector(attr, a, b)
            for attr, a, b in zip(self.attributes, self.node_attribute_values, other.node_attribute_values, strict=True)
        )

    def __repr__(self) -> str:
        tips = ", ".join(self.tip_labels[:4])
        if self.tip_count > 4:
            tips += ", ..."
        names = [a.name for a in self.attributes]
        return (
            f"{self.__class__.__name__}(tips=[{tips}], internal_node_count="
            f"{self.internal_node_count}, attributes={names})"
        )

    def to_rich_dict(self) -> dict:
        """returns the tree as a dict of json-compatible values"""
        return {
            "type": get_object_provenance(self),
            "version": __version__,
            "tip_labels": list(self.tip_labels),
            "edges": self.edges.tolist(),
            "edge_lengths": self.edge_lengths.tolist(),
            "internal_node_count": self.internal_node_count,
            "root_edge": self.root_edge,
            "node_labels": self.node_labels,
            "attributes": [[a.name, a.is_numeric] for a in self.attributes],
            "tip_attribute_values": [list(numpy.asarray(v).tolist()) for v in self.tip_attribute_values],
            "node_attribute_values": [list(numpy.asarray(v).tolist()) for v in self.node_attribute_values],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_rich_dict())

    @classmethod
    def from_rich_dict(cls, data: dict) -> "Tree":
        data = dict(data)
        data.pop("type", None)
        data.pop("version", None)
        data["attributes"] = [Attribute(name, bool(num)) for name, num in data["attributes"]]
        return cls(**data)


def make_tree(
    tip_labels: Sequence[str],
    edges: typing.Any,  # noqa: ANN401
    edge_lengths: Sequence[float] | None = None,
    **kwargs: typing.Any,  # noqa: ANN401
) -> Tree:
    """convenience constructor for a Tree

    Parameters
    ----------
    tip_labels
        leaf labels, index is the leaf id
    edges
        (parent id, child id) pairs, leaves are ids 0..n-1
    edge_lengths
        one per edge, None or NaN entries are unset
    kwargs
        passed to Tree
    """
    if edge_lengths is not None:
        edge_lengths = [math.nan if v is None else v for v in edge_lengths]
    return Tree(tip_labels, edges, edge_lengths=edge_lengths, **kwargs)


def derive_node_labels(
    attributes: Sequence[Attribute], node_values: Sequence[ValueVector]
) -> list[str] | None:
    """node labels from internal-node Name values, or else Support values

    Non-empty names win. Otherwise, if any support value is positive, all
    supports are rendered as fixed-precision decimals. Otherwise None.
    """
    registry = AttributeRegistry(attributes)
    if (index := registry.index(NAME_ATTR.name, False)) is not None:
        names = list(node_values[index])
        if any(names):
            return names

    if (index := registry.index(SUPPORT_ATTR.name, True)) is not None:
        supports = numpy.asarray(node_values[index], dtype=float)
        if numpy.any(supports > 0):
            return [format_support(v) for v in supports]

    return None


def build_tree(
    parents: Sequence[int],
    children: Sequence[Sequence[int]],
    node_attrs: Sequence[Iterable[tuple[Attribute, AttributeValue]]],
    attributes: Sequence[Attribute] = (),
) -> Tree:
    """converts per-node parent links and attribute values into a Tree

    Parameters
    ----------
    parents
        parent index of each node, -1 for the root, which must be node 0.
        Every other node must appear after its parent.
    children
        child indices of each node, in order
    node_attrs
        (attribute, value) pairs set on each node
    attributes
        slots declared up front, they are kept even when no node sets them

    Notes
    -----
    Leaves and internal nodes are numbered in the order they appear in
    parents. Edge i - 1 leads to node i.
    """
    is_tip = [not kids for kids in children]
    tip_count = sum(is_tip)
    internal_count = len(parents) - tip_count

    node_ids = []
    tip_index = internal_index = 0
    for tip in is_tip:
        if tip:
            node_ids.append(tip_index)
            tip_index += 1
        else:
            node_ids.append(tip_count + internal_index)
            internal_index += 1

    registry = AttributeRegistry()
    tip_values: list[ValueVector] = []
    node_values: list[ValueVector] = []

    def slot_index(attr: Attribute) -> int:
        if attr not in registry:
            tip_values.append(_make_vector(attr, None, tip_count))
            node_values.append(_make_vector(attr, None, internal_count))
        return registry.add(attr)

    for attr in attributes:
        slot_index(attr)

    tip_labels = [""] * tip_count
    edges = numpy.zeros((len(parents) - 1, 2), dtype=int)
    lengths = numpy.full(len(parents) - 1, numpy.nan)
    root_edge = math.nan

    for i, pairs in enumerate(node_attrs):
        length = math.nan
        for attr, value in pairs:
            index = slot_index(attr)
            if is_tip[i]:
                tip_values[index][node_ids[i]] = value
                if attr.same_slot(NAME_ATTR):
                    tip_labels[node_ids[i]] = value
            else:
                node_values[index][node_ids[i] - tip_count] = value

            if attr.same_slot(LENGTH_ATTR):
                length = value

        if parents[i] >= 0:
            edges[i - 1] = node_ids[parents[i]], node_ids[i]
            lengths[i - 1] = length
        else:
            root_edge = length

    attributes = list(registry)
    return Tree(
        tip_labels,
        edges,
        edge_lengths=lengths,
        internal_node_count=internal_count,
        root_edge=root_edge,
        node_labels=derive_node_labels(attributes, node_values),
        attributes=attributes,
        tip_attribute_values=tip_values,
        node_attribute_values=node_values,
    )


def standardise_attributes(tree: Tree, tree_name: str | None = None) -> Tree:
    """returns a tree whose reserved attribute slots are populated

    Parameters
    ----------
    tree
        the source tree, not modified
    tree_name
        if provided and the tree has no TreeName slot, it is added with
        this value on the root node

    Notes
    -----
    A missing Name slot is built from the tip labels and any non-numeric
    node labels; an existing one supplies the tip labels. A missing Length
    slot is built from the edge lengths, the root taking root_edge. A
    missing Support slot is built from the node labels when all of them are
    numeric or empty.
    """
    attributes = list(tree.attributes)
    tip_values = [v.copy() for v in tree.tip_attribute_values]
    node_values = [v.copy() for v in tree.node_attribute_values]
    tip_labels = list(tree.tip_labels)
    labels = tree.node_labels or [""] * tree.internal_node_count
    numeric_labels = all(not label or _is_number(label) for label in labels)

    if (index := tree.attribute_index(NAME_ATTR)) is None:
        attributes.append(NAME_ATTR)
        tip_values.append(list(tip_labels))
        node_values.append([""] * tree.internal_node_count if numeric_labels else list(labels))
    else:
        tip_labels = list(tip_values[index])

    if tree.attribute_index(LENGTH_ATTR) is None:
        tip_lengths = numpy.full(tree.tip_count, numpy.nan)
        node_lengths = numpy.full(tree.internal_node_count, numpy.nan)
        for (_, child), length in zip(tree.edges, tree.edge_lengths, strict=True):
            if tree.is_tip(child):
                tip_lengths[child] = length
            else:
                node_lengths[child - tree.tip_count] = length
        if tree.internal_node_count and not tree.is_tip(root := tree.root):
            node_lengths[root - tree.tip_count] = tree.root_edge
        elif tree.tip_count == 1:
            tip_lengths[0] = tree.root_edge
        attributes.append(LENGTH_ATTR)
        tip_values.append(tip_lengths)
        node_values.append(node_lengths)

    if tree.attribute_index(SUPPORT_ATTR) is None:
        supports = numpy.full(tree.internal_node_count, numpy.nan)
        if numeric_labels:
            for i, label in enumerate(labels):
                if label:
                    supports[i] = float(label)
        attributes.append(SUPPORT_ATTR)
        tip_values.append(numpy.full(tree.tip_count, numpy.nan))
        node_values.append(supports)

    if tree_name is not None and tree.attribute_index(TREE_NAME_ATTR) is None and tree.internal_node_count:
        names = [""] * tree.internal_node_count
        names[tree.root - tree.tip_count] = tree_name
        attributes.append(TREE_NAME_ATTR)
        tip_values.append([""] * tree.tip_count)
        node_values.append(names)

    return Tree(
        tip_labels,
        tree.edges,
        edge_lengths=tree.edge_lengths,
        internal_node_count=tree.internal_node_count,
        root_edge=tree.root_edge,
        node_labels=tree.node_labels,
        attributes=attributes,
        tip_attribute_values=tip_values,
        node_attribute_values=node_values,
    )


def tree_name_of(tree: Tree) -> str:
    """the non-empty TreeName on the root, or an empty string"""
    if tree.internal_node_count == 0:
        return ""
    values = tree.get_values(TREE_NAME_ATTR, tips=False)
    if values is None:
        return ""
    return values[tree.root - tree.tip_count]


class TreeCollection:
    """an ordered sequence of (name, tree) pairs

    Parameters
    ----------
    items
        (name, Tree) pairs
    failure
        set by readers that stopped early, describes the item that failed
    """

    def __init__(
        self,
        items: Iterable[tuple[str, Tree]] = (),
        failure: "NotCompleted | None" = None,
    ) -> None:
        self._items = [(str(name), tree) for name, tree in items]
        self.failure = failure

    @classmethod
    def from_trees(
        cls, trees: Iterable[Tree], names: Sequence[str] | None = None
    ) -> "TreeCollection":
        """names default to tree1, tree2, ..."""
        trees = list(trees)
        if names is None:
            names = [f"tree{i + 1}" for i in range(len(trees))]
        if len(names) != len(trees):
            msg = f"{len(names)} names for {len(trees)} trees"
            raise ValueError(msg)
        return cls(zip(names, trees, strict=True))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._items]

    @property
    def trees(self) -> list[Tree]:
        return [tree for _, tree in self._items]

    def get(self, name: str, default: Tree | None = None) -> Tree | None:
        """first tree with name"""
        for item_name, tree in self._items:
            if item_name == name:
                return tree
        return default

    def rename(self, names: Sequence[str]) -> "TreeCollection":
        """returns a new collection with the trees named by names"""
        if len(names) != len(self):
            msg = f"{len(names)} names for {len(self)} trees"
            raise ValueError(msg)
        return self.__class__(zip(names, self.trees, strict=True), failure=self.failure)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[tuple[str, Tree]]:
        return iter(self._items)

    def __getitem__(self, index: int) -> tuple[str, Tree]:
        return self._items[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TreeCollection):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        failed = "" if self.failure is None else ", incomplete"
        return f"{self.__class__.__name__}(names={self.names}{failed})"

    def to_rich_dict(self) -> dict:
        return {
            "type": get_object_provenance(self),
            "version": __version__,
            "names": self.names,
            "trees": [tree.to_rich_dict() for tree in self.trees],
            "failure": None if self.failure is None else self.failure.to_rich_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_rich_dict())


def as_collection(trees: "Tree | TreeCollection | Iterable[Tree]") -> TreeCollection:
    """a single tree is wrapped as a collection with the name 'tree'"""
    if isinstance(trees, TreeCollection):
        return trees
    if isinstance(trees, Tree):
        return TreeCollection([("tree", trees)])
    return TreeCollection.from_trees(trees)
