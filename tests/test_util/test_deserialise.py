import json

import pytest

from treecodec.core.tree import TreeCollection, make_tree
from treecodec.util.deserialise import deserialise_object, register_deserialiser
from treecodec.util.result import NotCompleted


def test_roundtrip_from_file(tmp_path, three_tip_tree):
    """objects are deserialised from a json file path"""
    trees = TreeCollection([("x", three_tip_tree)])
    path = tmp_path / "trees.json"
    path.write_text(trees.to_json())
    got = deserialise_object(path)
    assert got == trees


def test_roundtrip_from_dict(three_tip_tree):
    """objects are deserialised from a dict"""
    got = deserialise_object(json.loads(three_tip_tree.to_json()))
    assert got == three_tip_tree


def test_deserialise_python_builtins():
    """data without a type is returned as is"""
    data = {"a": 1, "b": [1, 2]}
    assert deserialise_object(json.dumps(data)) == data
    assert deserialise_object(data) is data


def test_deserialise_unknown_type():
    """unregistered types raise NotImplementedError"""
    with pytest.raises(NotImplementedError):
        deserialise_object({"type": "some.other.Thing"})


def test_custom_deserialiser():
    """custom deserialisers can be registered"""

    @register_deserialiser("test_deserialise.pair")
    def make_pair(data):
        return make_tree(data["labels"], [(2, 0), (2, 1)])

    got = deserialise_object({"type": "test_deserialise.pair", "labels": ["A", "B"]})
    assert got.tip_labels == ["A", "B"]


def test_register_deserialiser_requires_str():
    """type names must be strings"""
    with pytest.raises(TypeError):
        register_deserialiser(1)


def test_collection_failure_roundtrip():
    """the failure of a partial collection is kept"""
    failure = NotCompleted("ERROR", "parse_nwka_tree", "TreeParseError: bad", source="tree #2")
    trees = TreeCollection([("x", make_tree(["A", "B"], [(2, 0), (2, 1)]))], failure=failure)
    got = deserialise_object(trees.to_json())
    assert got == trees
    assert not got.failure
    assert got.failure.message == "TreeParseError: bad"
    assert got.failure.source == "tree #2"
    assert deserialise_object(TreeCollection(trees).to_json()).failure is None
