"""treecodec: reading and writing phylogenetic trees in a compact binary
format, in Newick-with-Attributes (NWKA) and in NEXUS."""

import os
import typing
import warnings
from importlib import import_module

from treecodec._version import __version__

if typing.TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable

    from treecodec.core.tree import Tree, TreeCollection

__license__ = "BSD-3"


def __getattr__(name: str) -> typing.Any:  # noqa: ANN401
    if (attr := globals().get(name)) is not None:
        return attr

    if name not in _import_mapping:
        raise AttributeError(name)

    module_name = _import_mapping[name]
    module = import_module(f".{module_name}", package=__name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


_import_mapping = {
    "Attribute": "core.attributes",
    "AttributeRegistry": "core.attributes",
    "make_tree": "core.tree",
    "standardise_attributes": "core.tree",
    "Tree": "core.tree",
    "TreeCollection": "core.tree",
    "TreeError": "core.tree",
    "canonical_order": "core.traversal",
    "FileFormatError": "parse.record",
    "TreeParseError": "parse.record",
    "BinaryFormatError": "parse.record",
    "read_binary_trees": "parse.binary",
    "read_binary_tree_metadata": "parse.binary",
    "read_one_binary_tree": "parse.binary",
    "is_binary_tree_file": "parse.binary",
    "read_nwka_string": "parse.nwka",
    "read_nwka_file": "parse.nwka",
    "read_nexus_file": "parse.nexus",
    "write_binary_trees": "format.binary",
    "BinaryTreeWriter": "format.binary",
    "format_nwka": "format.nwka",
    "write_nwka_string": "format.nwka",
    "write_nwka_file": "format.nwka",
    "format_nexus": "format.nexus",
    "write_nexus_trees": "format.nexus",
    "convert_trees": "convert",
    "deserialise_object": "util.deserialise",
    "NotCompleted": "util.result",
    "open_": "util.io",
}


def __dir__() -> list[str]:
    return list(_import_mapping.keys()) + list(globals().keys())


__all__ = [*_import_mapping.keys(), "load_trees", "save_trees"]

version = __version__
version_info = tuple(int(v) for v in version.split(".") if v.isdigit())


warn_env = "TREECODEC_WARNINGS"

if warn := os.environ.get(warn_env):
    warnings.simplefilter(warn)


def load_trees(
    filename: os.PathLike | str,
    format_name: str | None = None,
    tree_names: list[str] | None = None,
    keep_multi: bool = True,
    show_progress: bool = False,
) -> "TreeCollection | Tree":
    """
    loads trees from a binary, NEXUS, NWKA / Newick or json file

    Parameters
    ----------
    filename
        path to the file
    format_name
        'binary', 'nexus', 'nwka' or 'json', if not specified it is
        guessed from the path suffix
    tree_names
        names for the trees, replacing those from the file
    keep_multi
        if False and the file holds exactly one tree, return that Tree
    show_progress
        display a progress bar

    Notes
    -----
    Readers of multi-tree files stop at the first tree that cannot be read.
    The trees before it are returned, a warning is issued and the
    collection's ``failure`` attribute describes the problem.

    Returns
    -------
    ``TreeCollection``, or a ``Tree`` when keep_multi is False
    """
    from treecodec.core.tree import Tree, as_collection
    from treecodec.parse.binary import read_binary_trees
    from treecodec.parse.nexus import read_nexus_file
    from treecodec.parse.nwka import read_nwka_file
    from treecodec.util.deserialise import deserialise_object
    from treecodec.util.io import get_tree_format

    fmt = get_tree_format(filename, format_name)
    if fmt == "json":
        trees = deserialise_object(filename)
        trees = as_collection(trees) if isinstance(trees, Tree) else trees
        trees = trees if tree_names is None else trees.rename(tree_names)
    else:
        reader = {
            "binary": read_binary_trees,
            "nexus": read_nexus_file,
            "nwka": read_nwka_file,
        }[fmt]
        trees = reader(filename, tree_names=tree_names, show_progress=show_progress)

    if not keep_multi and len(trees) == 1:
        return trees.trees[0]
    return trees


def save_trees(
    trees: "TreeCollection | Tree | Iterable[Tree]",
    filename: os.PathLike | str,
    format_name: str | None = None,
    **kwargs: typing.Any,  # noqa: ANN401
) -> None:
    """
    writes trees to a binary, NEXUS, NWKA / Newick or json file

    Parameters
    ----------
    trees
        a TreeCollection, a sequence of trees or a single Tree, which is
        written under the name 'tree'
    filename
        path to the file
    format_name
        'binary', 'nexus', 'nwka' or 'json', if not specified it is
        guessed from the path suffix
    kwargs
        passed to the writer, e.g. extra for binary, translate for NEXUS,
        nwka, single_quoted or append for NWKA
    """
    from treecodec.core.tree import as_collection
    from treecodec.format.binary import write_binary_trees
    from treecodec.format.nexus import write_nexus_trees
    from treecodec.format.nwka import write_nwka_file
    from treecodec.util.io import atomic_write, get_tree_format

    fmt = get_tree_format(filename, format_name)
    if fmt == "json":
        with atomic_write(filename, mode="w", encoding="utf-8") as outfile:
            outfile.write(as_collection(trees).to_json())
        return

    writer = {
        "binary": write_binary_trees,
        "nexus": write_nexus_trees,
        "nwka": write_nwka_file,
    }[fmt]
    writer(trees, filename, **kwargs)
