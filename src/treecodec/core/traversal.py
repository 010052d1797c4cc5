"""Canonical depth-first ordering of a tree's nodes.

Both the binary and the NWKA writers emit nodes in this order and both
readers rebuild it from the encoded structure, so it must not change.
"""

import dataclasses
import typing

import numpy

from treecodec.core.tree import TreeError

if typing.TYPE_CHECKING:  # pragma: no cover
    from treecodec.core.tree import Tree


@dataclasses.dataclass(frozen=True)
class CanonicalOrder:
    """pre-order depth-first layout of a tree

    Attributes
    ----------
    order
        DFS position -> node id
    position
        node id -> DFS position
    parents
        DFS position -> parent DFS position, -1 for the root
    children
        DFS position -> child DFS positions, in edge-list order
    """

    order: numpy.ndarray
    position: numpy.ndarray
    parents: numpy.ndarray
    children: list[list[int]]

    def __len__(self) -> int:
        return len(self.order)

    @property
    def root(self) -> int:
        """node id of the root"""
        return int(self.order[0])

    def child_counts(self) -> list[int]:
        return [len(kids) for kids in self.children]


def canonical_order(edges: typing.Any, node_count: int) -> CanonicalOrder:  # noqa: ANN401
    """depth-first pre-order walk from the root, children in edge-list order

    Parameters
    ----------
    edges
        (parent id, child id) pairs
    node_count
        total number of nodes

    Notes
    -----
    The root is the single node that never appears as a child. Uses an
    explicit stack, so arbitrarily deep trees are fine.
    """
    adjacency: list[list[int]] = [[] for _ in range(node_count)]
    has_parent = numpy.zeros(node_count, dtype=bool)
    for parent, child in edges:
        parent, child = int(parent), int(child)
        if not (0 <= parent < node_count and 0 <= child < node_count):
            msg = f"edge ({parent}, {child}) refers to a node outside [0, {node_count})"
            raise TreeError(msg)
        if has_parent[child]:
            msg = f"node {child} has more than one parent"
            raise TreeError(msg)
        has_parent[child] = True
        adjacency[parent].append(child)

    roots = numpy.flatnonzero(~has_parent)
    if len(roots) != 1:
        msg = f"tree must have exactly one root, found {len(roots)}"
        raise TreeError(msg)

    order = []
    parents = []
    children: list[list[int]] = []
    stack = [(int(roots[0]), -1)]
    while stack:
        node, parent_pos = stack.pop()
        pos = len(order)
        order.append(node)
        parents.append(parent_pos)
        children.append([])
        if parent_pos >= 0:
            children[parent_pos].append(pos)
        stack.extend((child, pos) for child in reversed(adjacency[node]))

    if len(order) != node_count:
        msg = f"only {len(order)} of {node_count} nodes are reachable from the root"
        raise TreeError(msg)

    order = numpy.array(order, dtype=int)
    position = numpy.empty(node_count, dtype=int)
    position[order] = numpy.arange(node_count)
    return CanonicalOrder(
        order=order,
        position=position,
        parents=numpy.array(parents, dtype=int),
        children=children,
    )


def tree_order(tree: "Tree") -> CanonicalOrder:
    """canonical order of a Tree"""
    return canonical_order(tree.edges, tree.node_count)
