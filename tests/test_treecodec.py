import pytest
from numpy.testing import assert_allclose
from scitrack import CachingLogger

import treecodec
from treecodec import convert_trees, load_trees, save_trees
from treecodec.core.tree import Tree, TreeCollection


@pytest.fixture
def trees(DATA_DIR):
    return load_trees(DATA_DIR / "primates.nwka")


def test_lazy_imports():
    """public names resolve from their modules"""
    assert treecodec.TreeCollection is TreeCollection
    assert "load_trees" in treecodec.__all__
    assert "read_binary_trees" in dir(treecodec)
    with pytest.raises(AttributeError):
        treecodec.not_a_name  # noqa: B018


def test_load_trees_formats(DATA_DIR):
    """the format is inferred from the suffix"""
    nwka = load_trees(DATA_DIR / "primates.nwka")
    nexus = load_trees(DATA_DIR / "primates.nex")
    assert nwka.names == ["tree1", "named"]
    assert nexus.names == ["first", "second"]
    assert nwka.trees[0].tip_labels == nexus.trees[0].tip_labels


def test_load_trees_format_name(DATA_DIR, tmp_path):
    """format_name overrides the suffix"""
    path = tmp_path / "trees.txt"
    path.write_text((DATA_DIR / "primates.nex").read_text())
    got = load_trees(path, format_name="nexus", tree_names=["a", "b"])
    assert got.names == ["a", "b"]


def test_load_trees_keep_multi(tmp_path, three_tip_tree):
    """a single tree can be returned as a Tree"""
    path = tmp_path / "one.nwk"
    save_trees(three_tip_tree, path)
    got = load_trees(path, keep_multi=False)
    assert isinstance(got, Tree)
    assert got.tip_labels == ["A", "B", "C"]
    assert isinstance(load_trees(path), TreeCollection)


@pytest.mark.parametrize("suffix", ("tbi", "nex", "nwk", "json", "tbi.gz", "nwk.bz2"))
def test_save_load_roundtrip(tmp_path, trees, suffix):
    """trees survive a round trip through every format"""
    path = tmp_path / f"trees.{suffix}"
    save_trees(trees, path)
    got = load_trees(path)
    assert got.names == trees.names
    for (_, expect), (_, tree) in zip(trees, got, strict=True):
        assert tree.tip_labels == expect.tip_labels
        assert_allclose(tree.edge_lengths, expect.edge_lengths)


def test_save_trees_kwargs(tmp_path, trees):
    """writer options are passed through"""
    path = tmp_path / "trees.nwk"
    save_trees(trees, path, nwka=False)
    assert "[" not in path.read_text()
    path = tmp_path / "trees.nex"
    save_trees(trees, path, translate=False)
    assert "Translate" not in path.read_text()


def test_save_trees_unknown_format(tmp_path, trees):
    """unknown suffixes raise ValueError"""
    with pytest.raises(ValueError):
        save_trees(trees, tmp_path / "trees.phy")


def test_convert_trees(DATA_DIR, tmp_path):
    """converts between formats, logging to a file beside the output"""
    outpath = tmp_path / "primates.tbi"
    got = convert_trees(DATA_DIR / "primates.nex", outpath)
    assert got.names == ["first", "second"]
    assert load_trees(outpath).names == ["first", "second"]

    log_path = tmp_path / "primates-convert.log"
    assert log_path.exists()
    log = log_path.read_text()
    assert "number of trees" in log
    assert "TIME TAKEN" in log
    assert "primates.nex" in log


def test_convert_trees_custom_logger(DATA_DIR, tmp_path):
    """a supplied logger is used as is"""
    log_path = tmp_path / "custom.log"
    logger = CachingLogger(create_dir=True)
    logger.log_file_path = str(log_path)
    convert_trees(DATA_DIR / "primates.nwka", tmp_path / "out.nex", logger=logger)
    assert "TIME TAKEN" in log_path.read_text()
    assert not (tmp_path / "out-convert.log").exists()


def test_convert_trees_no_logger(DATA_DIR, tmp_path):
    """logging can be disabled"""
    convert_trees(DATA_DIR / "primates.nwka", tmp_path / "out.json", logger=False)
    assert (tmp_path / "out.json").exists()
    assert not (tmp_path / "out-convert.log").exists()


def test_convert_trees_invalid_logger(DATA_DIR, tmp_path):
    """only CachingLogger instances are accepted"""
    with pytest.raises(TypeError):
        convert_trees(DATA_DIR / "primates.nwka", tmp_path / "out.nex", logger="log.txt")


def test_convert_trees_partial_input(tmp_path):
    """trees before a failure are converted and the failure logged"""
    inpath = tmp_path / "bad.nwk"
    inpath.write_text("(A,B);(C[&length=x],D);")
    outpath = tmp_path / "bad.tbi"
    with pytest.warns(UserWarning):
        got = convert_trees(inpath, outpath)
    assert len(got) == 1
    assert load_trees(outpath).names == ["tree1"]
    assert "incomplete input" in (tmp_path / "bad-convert.log").read_text()


def test_save_load_json_keeps_failure(tmp_path):
    """a partial collection keeps its failure through json"""
    inpath = tmp_path / "bad.nwk"
    inpath.write_text("(A,B);(C[&length=x],D);")
    with pytest.warns(UserWarning):
        trees = load_trees(inpath)
    outpath = tmp_path / "bad.json"
    save_trees(trees, outpath)
    got = load_trees(outpath)
    assert got.names == ["tree1"]
    assert "TreeParseError" in got.failure.message
