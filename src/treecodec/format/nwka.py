"""Writer for Newick and Newick-with-Attributes (NWKA) trees"""

from collections.abc import Iterable, Sequence

from tqdm import tqdm

from treecodec.core.attributes import (
    LENGTH_ATTR,
    NAME_ATTR,
    SUPPORT_ATTR,
    Attribute,
    AttributeValue,
)
from treecodec.core.traversal import tree_order
from treecodec.core.tree import Tree, TreeCollection, as_collection, standardise_attributes
from treecodec.util.io import PathType, atomic_write, open_


def _number(value: float) -> str:
    return f"{value:f}"


def escape(text: str) -> str:
    """backslash escapes backslashes and quotes"""
    return text.replace("\\", "\\\\").replace("'", "\\'").replace('"', '\\"')


def _quoted(text: str, quote: bool = True) -> str:
    return f"'{escape(text)}'" if quote else text


def _pair(attr: Attribute, value: AttributeValue) -> str:
    if attr.is_numeric:
        return f"{attr.name}={_number(value)}"
    if "'" in value:
        return f'{attr.name}="{escape(value)}"'
    return f"{attr.name}='{escape(value)}'"


def _bracket(tree: Tree, node_id: int, exclude: Sequence[Attribute]) -> str:
    pairs = [
        _pair(tree.attributes[index], value)
        for index, value in tree.node_attributes(node_id)
        if not any(tree.attributes[index].name.lower() == e.name.lower() for e in exclude)
    ]
    return f"[{','.join(pairs)}]" if pairs else ""


def _value(tree: Tree, attr: Attribute, node_id: int) -> AttributeValue:
    index = tree.attribute_index(attr)
    if index is None:
        return attr.unset()
    return tree.get_value(index, node_id)


def _node_suffix(
    tree: Tree,
    node_id: int,
    label: str,
    nwka: bool,
    quote: bool,
) -> str:
    """text following a node: label, support, length and attributes"""
    length = _value(tree, LENGTH_ATTR, node_id)
    if tree.is_tip(node_id):
        suffix = _quoted(label, quote)
        exclude = (NAME_ATTR, LENGTH_ATTR)
    else:
        name = _value(tree, NAME_ATTR, node_id)
        support = _value(tree, SUPPORT_ATTR, node_id)
        has_support = SUPPORT_ATTR.is_set(support)
        suffix = ""
        if name and not has_support:
            suffix = _quoted(name, quote)
        if has_support:
            suffix += _number(support)
        exclude = (LENGTH_ATTR, SUPPORT_ATTR) if has_support else (NAME_ATTR, LENGTH_ATTR, SUPPORT_ATTR)

    if LENGTH_ATTR.is_set(length):
        suffix += f":{_number(length)}"
    if nwka:
        suffix += _bracket(tree, node_id, exclude)
    return suffix


def format_nwka(
    tree: Tree,
    nwka: bool = True,
    single_quoted: bool = False,
    tree_name: str | None = None,
    tip_labels: Sequence[str] | None = None,
) -> str:
    """returns a tree as a single line of NWKA or Newick text

    Parameters
    ----------
    tree
        the tree
    nwka
        include bracketed attributes, otherwise plain Newick
    single_quoted
        quote labels in plain Newick, labels are always quoted in NWKA
    tree_name
        stored as the root's TreeName attribute if it has none
    tip_labels
        replaces the tree's tip labels, indexed by tip id

    Notes
    -----
    Nodes are written in canonical depth-first order. Numbers use six
    decimal places. An internal node's name is written after its clade
    unless it has a support value, which takes that place, in which case
    the name goes into the brackets. Backslashes and quotes in quoted text
    are backslash escaped.
    """
    tree = standardise_attributes(tree, tree_name=tree_name)
    labels = tree.tip_labels if tip_labels is None else tip_labels
    quote = nwka or single_quoted
    order = tree_order(tree)

    # each node contributes an opening, then a closing once its children are done
    parts = []
    stack: list[tuple[int | None, bool]] = [(0, False)]
    while stack:
        pos, closing = stack.pop()
        if pos is None:
            parts.append(",")
            continue

        node_id = int(order.order[pos])
        kids = order.children[pos]
        if kids and not closing:
            parts.append("(")
            stack.append((pos, True))
            for i, kid in enumerate(reversed(kids)):
                stack.append((kid, False))
                if i < len(kids) - 1:
                    stack.append((None, False))
            continue

        label = labels[node_id] if tree.is_tip(node_id) else ""
        if kids:
            parts.append(")")
        parts.append(_node_suffix(tree, node_id, label, nwka, quote))

    parts.append(";")
    return "".join(parts)


def _lines(
    trees: "Tree | TreeCollection | Iterable[Tree]",
    nwka: bool,
    single_quoted: bool,
    show_progress: bool,
) -> Iterable[str]:
    for name, tree in tqdm(list(as_collection(trees)), disable=not show_progress):
        yield format_nwka(tree, nwka=nwka, single_quoted=single_quoted, tree_name=name) + "\n"


def write_nwka_string(
    trees: "Tree | TreeCollection | Iterable[Tree]",
    nwka: bool = True,
    single_quoted: bool = False,
) -> str:
    """returns trees as NWKA or Newick text, one tree per line"""
    return "".join(_lines(trees, nwka, single_quoted, False))


def write_nwka_file(
    trees: "Tree | TreeCollection | Iterable[Tree]",
    path: PathType,
    nwka: bool = True,
    single_quoted: bool = False,
    append: bool = False,
    show_progress: bool = False,
) -> None:
    """writes trees as NWKA or Newick text, one tree per line

    Parameters
    ----------
    trees
        a TreeCollection, a sequence of trees or a single Tree
    path
        output file
    nwka
        include bracketed attributes, otherwise plain Newick
    single_quoted
        quote labels in plain Newick
    append
        add to the end of an existing file instead of replacing it
    show_progress
        display a progress bar
    """
    lines = _lines(trees, nwka, single_quoted, show_progress)
    if append:
        with open_(path, mode="a", encoding="utf-8") as outfile:
            outfile.writelines(lines)
        return

    with atomic_write(path, mode="w", encoding="utf-8") as outfile:
        outfile.writelines(lines)
