import math

import pytest
from numpy.testing import assert_allclose

from treecodec.core.attributes import SUPPORT_ATTR, Attribute
from treecodec.core.tree import tree_name_of
from treecodec.parse.nexus import (
    NexusWords,
    parse_tree_statement,
    read_nexus_file,
    read_nexus_string,
)
from treecodec.parse.record import TreeParseError

_translated = """#NEXUS
Begin Trees;
\tTranslate
\t\t1 Alpha,
\t\t2 Beta
\t\t;
\tTree t1 = (1:1,2:2);
End;
"""


def _words(text):
    words = NexusWords(text)
    result = []
    while (word := words.next()) is not None:
        result.append(word)
    return result


def test_nexus_words():
    """punctuation is split off, quoted text is kept together"""
    got = _words("Begin Trees;\n  1 'Homo sapiens',[x y]")
    assert got == ["Begin", "Trees", ";", "1", "'Homo sapiens'", ",", "[", "x", "y", "]"]


def test_translate():
    """tip tokens are replaced by their labels"""
    got = read_nexus_string(_translated)
    assert got.names == ["t1"]
    tree = got.trees[0]
    assert tree.tip_labels == ["Alpha", "Beta"]
    assert_allclose(tree.edge_lengths, [1.0, 2.0])
    assert tree_name_of(tree) == "t1"


def test_untranslated_labels_kept():
    """labels without a translation are left as they are"""
    text = _translated.replace("(1:1,2:2)", "(1:1,3:2)")
    assert read_nexus_string(text).trees[0].tip_labels == ["Alpha", "3"]


def test_skips_other_blocks_and_comments():
    """only the trees block is read"""
    text = """#NEXUS
[ a tree = (x,y); in a comment ]
Begin Taxa;
\tDimensions ntax=2;
\tTaxLabels A B;
End;
Begin Trees;
\t[Tree ignored = (p,q);]
\tTree one = (A,B);
\tTREE two = ((A,B),C);
End;
"""
    got = read_nexus_string(text)
    assert got.names == ["one", "two"]
    assert got.trees[1].tip_labels == ["A", "B", "C"]


def test_statement_comments():
    """rooting comments are ignored, other comments go on the root"""
    text = """#NEXUS
begin trees;
\ttree STATE_0 [&lnP=-1204.5] = [&R] (A:1,B:2);
\ttree STATE_1 = [&lnL=-100.5] (A:1,B:2);
end;
"""
    got = read_nexus_string(text)
    assert got.names == ["STATE_0", "STATE_1"]
    first, second = got.trees
    assert first.get_values(Attribute("lnL", True), tips=False) is None
    assert second.get_values(Attribute("lnL", True), tips=False)[0] == -100.5


def test_quoted_names_and_translations():
    """quoted statement names and labels are unquoted"""
    text = """#NEXUS
Begin Trees;
\tTranslate 1 'Homo sapiens', 2 'Pan troglodytes';
\tTree 'tree one' = (1,2);
End;
"""
    got = read_nexus_string(text)
    assert got.names == ["tree one"]
    assert got.trees[0].tip_labels == ["Homo sapiens", "Pan troglodytes"]


def test_semicolon_in_quotes():
    """a ';' inside a quoted label does not end the statement"""
    text = "#NEXUS\nBegin Trees;\n\tTree t = ('a;b',c);\nEnd;\n"
    assert read_nexus_string(text).trees[0].tip_labels == ["a;b", "c"]


def test_parse_tree_statement():
    """the statement name becomes the TreeName unless one is given"""
    tree = parse_tree_statement("s1", "", "(A,B)")
    assert tree_name_of(tree) == "s1"
    tree = parse_tree_statement("s1", "", "(A,B)[TreeName='inner']")
    assert tree_name_of(tree) == "inner"
    with pytest.raises(TreeParseError):
        parse_tree_statement("s1", "", "")


def test_translation_of_internal_names():
    """translation applies to every node name"""
    tree = parse_tree_statement("s", "", "((1,2)'3',4)", translate={"3": "clade", "4": "D"})
    assert tree.node_labels == ["", "clade"]
    assert tree.tip_labels == ["1", "2", "D"]


def test_failure_stops_reading():
    """a bad tree ends the read with a warning"""
    text = "#NEXUS\nBegin Trees;\n\tTree a = (A,B);\n\tTree b = (A[&length=x],B);\n\tTree c = (A,B);\nEnd;\n"
    with pytest.warns(UserWarning, match="An error occurred while parsing tree #2!"):
        got = read_nexus_string(text)
    assert got.names == ["a"]
    assert not got.failure


def test_read_nexus_file(DATA_DIR):
    """reads a file with a taxa block and translation"""
    got = read_nexus_file(DATA_DIR / "primates.nex")
    assert got.names == ["first", "second"]
    first, second = got.trees
    assert first.tip_labels == ["Homo sapiens", "Pan", "Gorilla", "Pongo"]
    supports = first.get_values(SUPPORT_ATTR, tips=False)
    assert supports[2] == 95.0
    assert math.isnan(supports[0])
    assert second.tip_labels == ["Homo sapiens", "Gorilla", "Pan", "Pongo"]
    assert second.get_values(SUPPORT_ATTR, tips=False)[2] == 0.75
    assert second.get_values(Attribute("lnL", True), tips=False)[0] == -1200.25
    names = read_nexus_file(DATA_DIR / "primates.nex", tree_names=["x", "y"]).names
    assert names == ["x", "y"]


def test_nexus_words_escapes():
    """a backslash keeps the next character in the word"""
    got = _words("1 'O\\'Brien', a\\ b;")
    assert got == ["1", "'O\\'Brien'", ",", "a\\ b", ";"]
    text = "#NEXUS\nBegin Trees;\n\tTranslate 1 'O\\'Brien', 2 B;\n\tTree 'it\\'s' = (1,2);\nEnd;\n"
    got = read_nexus_string(text)
    assert got.names == ["it's"]
    assert got.trees[0].tip_labels == ["O'Brien", "B"]
