"""Attribute slots and the case-insensitive catalogues that hold them.

Attribute names are compared case-insensitively everywhere. Lookups use a
normalised key (the lowercased name, plus the numeric flag for slots) and
keep the first-seen spelling for output.
"""

import dataclasses
import math
import numbers
import typing
from collections.abc import Iterable, Iterator, MutableMapping

AttributeValue = typing.Union[float, str]

NAME = "Name"
LENGTH = "Length"
SUPPORT = "Support"
TREE_NAME = "TreeName"
PROB = "prob"
UNKNOWN = "Unknown"


@dataclasses.dataclass(frozen=True)
class Attribute:
    """a named attribute slot

    Parameters
    ----------
    name
        attribute name, compared case-insensitively
    is_numeric
        numeric slots hold floats (NaN when unset), text slots hold
        strings ("" when unset)
    """

    name: str
    is_numeric: bool

    @property
    def key(self) -> tuple[str, bool]:
        return self.name.lower(), self.is_numeric

    def same_slot(self, other: "Attribute") -> bool:
        return self.key == other.key

    def unset(self) -> AttributeValue:
        return math.nan if self.is_numeric else ""

    def is_set(self, value: AttributeValue) -> bool:
        if self.is_numeric:
            return not math.isnan(value)
        return value != ""

    def check_value(self, value: typing.Any) -> AttributeValue:  # noqa: ANN401
        """returns value as the slot's type, raises TypeError on a mismatch"""
        if self.is_numeric:
            if isinstance(value, numbers.Real) and not isinstance(value, bool):
                return float(value)
        elif isinstance(value, str):
            return value
        elif value is None:
            return ""

        kind = "numeric" if self.is_numeric else "text"
        msg = f"{value!r} is not a valid value for {kind} attribute {self.name!r}"
        raise TypeError(msg)


NAME_ATTR = Attribute(NAME, False)
LENGTH_ATTR = Attribute(LENGTH, True)
SUPPORT_ATTR = Attribute(SUPPORT, True)
TREE_NAME_ATTR = Attribute(TREE_NAME, False)

_reserved = {attr.key: attr for attr in (NAME_ATTR, LENGTH_ATTR, SUPPORT_ATTR, TREE_NAME_ATTR)}


def canonical(attr: Attribute) -> Attribute:
    """returns the canonical-cased reserved slot if attr is a case variant of one"""
    return _reserved.get(attr.key, attr)


def value_kind(value: AttributeValue) -> bool:
    """returns True if value belongs in a numeric slot"""
    if isinstance(value, str):
        return False
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        return True
    msg = f"attribute values must be str or float, not {type(value).__name__}"
    raise TypeError(msg)


class AttributeRegistry:
    """ordered catalogue of attribute slots

    Two attributes share a slot when their names match case-insensitively
    and they agree on numeric-ness. The first spelling added is kept,
    except for the reserved Name, Length, Support and TreeName slots which
    are always stored with their canonical casing.
    """

    def __init__(self, attributes: Iterable[Attribute] = ()) -> None:
        self._attrs: list[Attribute] = []
        self._index: dict[tuple[str, bool], int] = {}
        for attr in attributes:
            self.add(attr)

    def add(self, attr: Attribute) -> int:
        """adds attr if it's a new slot, returns the slot index"""
        if (index := self._index.get(attr.key)) is not None:
            return index

        self._attrs.append(canonical(attr))
        index = len(self._attrs) - 1
        self._index[attr.key] = index
        return index

    def index(self, name: str, is_numeric: bool) -> int | None:
        """returns the slot index for name, None if absent"""
        return self._index.get((name.lower(), is_numeric))

    def merge(self, other: Iterable[Attribute]) -> list[int]:
        """adds every attribute in other, returns their slot indices"""
        return [self.add(attr) for attr in other]

    def __contains__(self, attr: Attribute) -> bool:
        return attr.key in self._index

    def __getitem__(self, index: int) -> Attribute:
        return self._attrs[index]

    def __iter__(self) -> Iterator[Attribute]:
        return iter(self._attrs)

    def __len__(self) -> int:
        return len(self._attrs)

    def __repr__(self) -> str:
        names = ", ".join(repr(a.name) for a in self._attrs)
        return f"{self.__class__.__name__}([{names}])"


class NodeAttributes(MutableMapping):
    """case-insensitive ordered map of attribute name to value for one node

    Values are floats (numeric) or strings (text). Setting an existing key
    under a different case replaces the value but keeps the first spelling.
    """

    def __init__(self, data: typing.Mapping[str, AttributeValue] | None = None) -> None:
        self._data: dict[str, tuple[str, AttributeValue]] = {}
        if data:
            self.update(data)

    def __getitem__(self, name: str) -> AttributeValue:
        return self._data[name.lower()][1]

    def __setitem__(self, name: str, value: AttributeValue) -> None:
        value = float(value) if value_kind(value) else value
        key = name.lower()
        original = self._data[key][0] if key in self._data else name
        self._data[key] = original, value

    def __delitem__(self, name: str) -> None:
        del self._data[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({dict(self.items())})"

    def is_unset(self, name: str) -> bool:
        """True when name is absent or holds NaN / an empty string"""
        if name not in self:
            return True
        value = self[name]
        if isinstance(value, str):
            return value == ""
        return math.isnan(value)

    def unique_name(self, prefix: str = UNKNOWN) -> str:
        """returns prefix, or prefix2, prefix3, ... whichever is unused"""
        if prefix not in self:
            return prefix
        index = 2
        while f"{prefix}{index}" in self:
            index += 1
        return f"{prefix}{index}"

    def slots(self) -> list[tuple[Attribute, AttributeValue]]:
        """(attribute slot, value) pairs for this node"""
        return [(Attribute(name, value_kind(value)), value) for name, value in self.items()]
