"""Per-item results for batch operations.

Batch readers decode one tree at a time. Each attempt yields either the
decoded tree or a NotCompleted instance; the loop stops at the first
NotCompleted and keeps everything decoded before it.
"""

import json
import typing

from treecodec._version import __version__
from treecodec.core.tree import TreeError
from treecodec.parse.record import FileFormatError
from treecodec.util.misc import get_object_provenance


def _get_origin(origin: typing.Any) -> str:  # noqa: ANN401
    if isinstance(origin, str):
        return origin
    if callable(origin):
        return getattr(origin, "__name__", origin.__class__.__name__)
    return origin.__class__.__name__


class NotCompleted(int):
    """results that failed to complete"""

    def __new__(cls, type, origin, message, source=None):
        """
        Parameters
        ----------
        type : str
            examples are 'ERROR', 'FAIL'
        origin
            where the instance was created, can be an instance or function
        message : str
            descriptive message, succinct traceback
        source : str
            the data operated on that led to this result, e.g. the tree
            ordinal and file name
        """
        origin = _get_origin(origin)
        source = None if source is None else str(source)
        result = int.__new__(cls, False)
        result._persistent = (type, origin, message), {"source": source}

        result.type = type
        result.origin = origin
        result.message = message
        result.source = source
        return result

    def __getnewargs_ex__(self, *args, **kw):
        return self._persistent[0], self._persistent[1]

    def __repr__(self):
        return str(self)

    def __str__(self):
        name = self.__class__.__name__
        source = self.source or "Unknown"
        return f'{name}(type={self.type}, origin={self.origin}, source="{source}", message="{self.message}")'

    def to_rich_dict(self):
        """returns components for to_json"""
        return {
            "type": get_object_provenance(self),
            "not_completed_construction": dict(
                args=self._persistent[0], kwargs=self._persistent[1]
            ),
            "version": __version__,
        }

    def to_json(self):
        """returns json string"""
        return json.dumps(self.to_rich_dict())


def attempt(func: typing.Callable, *args, source=None, **kwargs):
    """returns func(*args, **kwargs), or a NotCompleted if it raised

    Only exceptions signalling malformed input are converted, anything
    else propagates.
    """
    try:
        return func(*args, **kwargs)
    except (FileFormatError, TreeError, ValueError, IndexError, EOFError) as err:
        return NotCompleted("ERROR", func, f"{err.__class__.__name__}: {err}", source=source)
