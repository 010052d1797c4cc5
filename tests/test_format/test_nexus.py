import pytest

from treecodec.core.tree import TreeCollection, make_tree
from treecodec.format.nexus import format_nexus, translation_table, write_nexus_trees
from treecodec.parse.nexus import read_nexus_file, read_nexus_string

_pair = [(2, 0), (2, 1)]


@pytest.fixture
def trees():
    return TreeCollection(
        [
            ("t1", make_tree(["A", "B"], _pair, [1.0, 2.0])),
            ("t2", make_tree(["C", "A", "B"], [(3, 0), (3, 4), (4, 1), (4, 2)])),
        ]
    )


def test_translation_table(trees):
    """labels get tokens 1..N in the order first seen"""
    assert translation_table(trees) == {"A": "1", "B": "2", "C": "3"}


def test_format_nexus_translated():
    """taxa block, translate statement and tokenised trees"""
    trees = TreeCollection([("t1", make_tree(["A", "B"], _pair, [1.0, 2.0]))])
    expect = "\n".join(
        [
            "#NEXUS",
            "",
            "Begin Taxa;",
            "\tDimensions ntax=2;",
            "\tTaxLabels",
            "\t\t'A'",
            "\t\t'B'",
            "\t\t;",
            "End;",
            "",
            "Begin Trees;",
            "\tTranslate",
            "\t\t1 'A',",
            "\t\t2 'B'",
            "\t\t;",
            "\tTree t1 = ('1':1.000000,'2':2.000000)[TreeName='t1'];",
            "End;",
            "",
        ]
    )
    assert format_nexus(trees) == expect


def test_format_nexus_untranslated():
    """without translation the labels are written in the trees"""
    trees = TreeCollection([("t1", make_tree(["A", "B"], _pair, [1.0, 2.0]))])
    expect = "#NEXUS\n\nBegin Trees;\n\tTree t1 = ('A':1.000000,'B':2.000000)[TreeName='t1'];\nEnd;\n"
    assert format_nexus(trees, translate=False) == expect


def test_format_nexus_unquoted_labels():
    """translate_quotes controls quoting in the taxa and translate lists"""
    got = format_nexus(make_tree(["A", "B"], _pair), translate_quotes=False)
    assert "\t\t1 A,\n\t\t2 B\n" in got
    assert "\t\tA\n\t\tB\n" in got


def test_format_nexus_quotes_names():
    """statement names with spaces are quoted"""
    trees = TreeCollection([("my tree", make_tree(["A", "B"], _pair))])
    assert "\tTree 'my tree' = " in format_nexus(trees)


def test_nexus_roundtrip(tmp_path, trees):
    """labels and names are recovered through the translate table"""
    path = tmp_path / "trees.nex"
    write_nexus_trees(trees, path)
    got = read_nexus_file(path)
    assert got.names == ["t1", "t2"]
    assert got.trees[0].tip_labels == ["A", "B"]
    assert got.trees[1].tip_labels == ["C", "A", "B"]

    got = read_nexus_string(format_nexus(trees, translate=False))
    assert got.trees[1].tip_labels == ["C", "A", "B"]


def test_format_nexus_escapes():
    """quotes in the taxa and translate lists and in statement names are escaped"""
    trees = TreeCollection([("O'Brien tree", make_tree(["O'Brien", "B"], _pair))])
    got = format_nexus(trees)
    assert "\t\t'O\\'Brien'\n" in got
    assert "\t\t1 'O\\'Brien',\n" in got
    assert "\tTree 'O\\'Brien tree' = " in got


@pytest.mark.parametrize("translate", [True, False])
@pytest.mark.parametrize("label", ["O'Brien", 'say "hi"', "back\\slash"])
def test_nexus_roundtrip_quotes(translate, label):
    """labels and names with quotes or backslashes survive a round trip"""
    trees = TreeCollection([(label, make_tree([label, "B"], _pair))])
    got = read_nexus_string(format_nexus(trees, translate=translate))
    assert got.names == [label]
    assert got.trees[0].tip_labels == [label, "B"]
