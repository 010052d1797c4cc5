import json

from treecodec.util.io import open_, path_exists

_deserialise_func_map = {}


class register_deserialiser:
    """
    registration decorator for functions to inflate objects that were
    serialised using json.

    Functions are added to a dict which is used by the deserialise_object()
    function. The type string(s) must uniquely identify the appropriate
    value for the dict 'type' entry, e.g. 'treecodec.core.tree.Tree'.

    Parameters
    ----------
    args: str or sequence of str
        must be unique
    """

    def __init__(self, *args) -> None:
        for type_str in args:
            if not isinstance(type_str, str):
                msg = f"{type_str!r} is not a string"
                raise TypeError(msg)
            assert type_str not in _deserialise_func_map, (
                f"{type_str!r} already in {list(_deserialise_func_map)}"
            )
        self._type_str = args

    def __call__(self, func):
        for type_str in self._type_str:
            _deserialise_func_map[type_str] = func
        return func


@register_deserialiser("treecodec.core.tree.TreeCollection")
def deserialise_tree_collection(data: dict):
    """returns a TreeCollection"""
    from treecodec.core.tree import Tree, TreeCollection

    trees = [Tree.from_rich_dict(t) for t in data["trees"]]
    failure = data.get("failure")
    failure = None if failure is None else deserialise_not_completed(failure)
    return TreeCollection(zip(data["names"], trees, strict=True), failure=failure)


@register_deserialiser("treecodec.core.tree.Tree")
def deserialise_tree(data: dict):
    """returns a Tree"""
    from treecodec.core.tree import Tree

    return Tree.from_rich_dict(data)


@register_deserialiser("treecodec.util.result.NotCompleted")
def deserialise_not_completed(data: dict):
    """deserialising NotCompletedResult"""
    from treecodec.util.result import NotCompleted

    data.pop("version", None)
    init = data.pop("not_completed_construction")
    args = init.pop("args")
    kwargs = init.pop("kwargs")
    return NotCompleted(*args, **kwargs)


def deserialise_object(data):
    """
    deserialises from json

    Parameters
    ----------
    data
        path to json file, json string or a dict

    Returns
    -------
    If the dict from json.loads does not contain a "type" key, the object will
    be returned as is. Otherwise, it will be deserialised to a treecodec object.

    Notes
    -----
    The value of the "type" key is used to identify the specific function for recreating
    the original instance.
    """
    if path_exists(data):
        with open_(data) as infile:
            data = json.load(infile)

    if isinstance(data, str):
        data = json.loads(str(data))

    type_ = data.get("type", None) if hasattr(data, "get") else None
    if type_ is None:
        return data

    # exact matches first, "Tree" is a prefix of "TreeCollection"
    func = _deserialise_func_map.get(type_)
    if func is None:
        for type_str, func in _deserialise_func_map.items():
            if type_str in type_:
                break
        else:
            msg = f"deserialising '{type_}' from json"
            raise NotImplementedError(msg)

    return func(data)
