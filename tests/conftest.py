import pathlib

import pytest

from treecodec.core.tree import make_tree


@pytest.fixture(scope="session")
def DATA_DIR() -> pathlib.Path:
    return pathlib.Path(__file__).parent / "data"


@pytest.fixture
def three_tip_tree():
    """((B,C),A) style tree, A is tip 0, the root is node 3"""
    return make_tree(
        ["A", "B", "C"],
        [(3, 0), (3, 4), (4, 1), (4, 2)],
        [1.0, 4.0, 2.0, 3.0],
    )
