"""Writer for trees in NEXUS files"""

from collections.abc import Iterable

from tqdm import tqdm

from treecodec.core.tree import Tree, TreeCollection, as_collection, standardise_attributes
from treecodec.format.nwka import escape, format_nwka
from treecodec.util.io import PathType, atomic_write


def translation_table(trees: TreeCollection) -> dict[str, str]:
    """maps each distinct tip label to a token, 1..N in first seen order"""
    table: dict[str, str] = {}
    for _, tree in trees:
        for label in standardise_attributes(tree).tip_labels:
            if label not in table:
                table[label] = str(len(table) + 1)
    return table


def _label(label: str, quoted: bool) -> str:
    return f"'{escape(label)}'" if quoted else label


def _statement_name(name: str) -> str:
    """quotes names a NEXUS reader would otherwise split"""
    if any(c.isspace() or c in "[],;=()'\"\\" for c in name):
        return f"'{escape(name)}'"
    return name


def format_nexus(
    trees: "Tree | TreeCollection | Iterable[Tree]",
    translate: bool = True,
    translate_quotes: bool = True,
    show_progress: bool = False,
) -> str:
    """returns trees as the text of a NEXUS file

    Parameters
    ----------
    trees
        a TreeCollection, a sequence of trees or a single Tree
    translate
        write a Taxa block and a Translate statement, and use numeric
        tokens in place of the tip labels in the trees
    translate_quotes
        quote the labels in the Taxa block and the Translate statement
    show_progress
        display a progress bar

    Notes
    -----
    Trees are written in NWKA with single-quoted labels.
    """
    trees = as_collection(trees)
    table = translation_table(trees) if translate else {}

    lines = ["#NEXUS", ""]
    if translate:
        lines.extend(
            ["Begin Taxa;", f"\tDimensions ntax={len(table)};", "\tTaxLabels"]
        )
        lines.extend(f"\t\t{_label(label, translate_quotes)}" for label in table)
        lines.extend(["\t\t;", "End;", "", "Begin Trees;", "\tTranslate"])
        entries = [f"\t\t{token} {_label(label, translate_quotes)}" for label, token in table.items()]
        if entries:
            lines.append(",\n".join(entries))
        lines.append("\t\t;")
    else:
        lines.append("Begin Trees;")

    for name, tree in tqdm(list(trees), disable=not show_progress):
        tree = standardise_attributes(tree, tree_name=name)
        tokens = [table[label] for label in tree.tip_labels] if translate else None
        lines.append(f"\tTree {_statement_name(name)} = {format_nwka(tree, tip_labels=tokens)}")

    lines.append("End;")
    return "\n".join(lines) + "\n"


def write_nexus_trees(
    trees: "Tree | TreeCollection | Iterable[Tree]",
    path: PathType,
    translate: bool = True,
    translate_quotes: bool = True,
    show_progress: bool = False,
) -> None:
    """writes trees to a NEXUS file, see format_nexus"""
    text = format_nexus(
        trees, translate=translate, translate_quotes=translate_quotes, show_progress=show_progress
    )
    with atomic_write(path, mode="w", encoding="utf-8") as outfile:
        outfile.write(text)
