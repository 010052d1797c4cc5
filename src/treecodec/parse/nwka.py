"""Parser for Newick-with-Attributes (NWKA) trees.

NWKA is a superset of Newick. Besides ``label:length`` and a support value
after a clade, every node may carry bracketed ``[key=value, ...]`` pairs,
optionally prefixed by ``&`` or ``&!`` as written by BEAST or MrBayes.
"""

import math
import re
import typing
import warnings
from collections.abc import Iterator

from tqdm import tqdm

from treecodec.core.attributes import (
    LENGTH,
    NAME,
    PROB,
    SUPPORT,
    TREE_NAME,
    NodeAttributes,
)
from treecodec.core.tree import Tree, TreeCollection, build_tree, tree_name_of
from treecodec.parse.record import TreeParseError
from treecodec.util.io import PathType, open_
from treecodec.util.result import attempt

_float_text = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$|^[+-]?(inf|infinity|nan)$", re.I)
_DIGITS = frozenset("0123456789")


def try_float(text: str) -> float | None:
    """the value of text if the whole of it is a decimal number, else None"""
    if not _float_text.match(text):
        return None
    return float(text)


def _is_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] == text[-1] and text[0] in "'\""


def _unquote(text: str) -> str:
    return text[1:-1] if _is_quoted(text) else text


class NwkaTokeniser:
    """yields the characters of NWKA text that matter to the grammar

    Parameters
    ----------
    text
        the text to tokenise
    position
        index of the first character to consider

    Notes
    -----
    Whitespace outside quotes is skipped. A backslash is returned as is and
    the character following it is returned with ``escaped`` True. Inside
    single or double quotes only the matching quote and backslash are
    special.
    """

    def __init__(self, text: str, position: int = 0) -> None:
        self.text = text
        self.position = position
        self.escaping = False
        self.escaped = False
        self.in_double = False
        self.in_single = False
        self.eof = False

    @property
    def quoted(self) -> bool:
        return self.in_double or self.in_single

    def _at_end(self) -> bool:
        if self.position >= len(self.text):
            self.eof = True
            self.escaped = False
            return True
        return False

    def next(self) -> str | None:
        """the next character, None at the end of the text"""
        if self._at_end():
            return None

        char = self.text[self.position]
        self.position += 1
        self.eof = False

        if self.escaping:
            self.escaping = False
            self.escaped = True
            return char

        self.escaped = False
        if not self.quoted:
            while char.isspace():
                if self._at_end():
                    return None
                char = self.text[self.position]
                self.position += 1

            if char == "\\":
                self.escaping = True
            elif char == '"':
                self.in_double = True
            elif char == "'":
                self.in_single = True
        elif self.in_double:
            if char == '"':
                self.in_double = False
            elif char == "\\":
                self.escaping = True
        elif char == "'":
            self.in_single = False
        elif char == "\\":
            self.escaping = True

        return char

    def is_plain(self, char: str | None, *options: str) -> bool:
        """char is one of options and is neither escaped nor quoted"""
        return char in options and not self.escaped and not self.quoted

    def __iter__(self) -> Iterator[tuple[str, bool]]:
        while (char := self.next()) is not None:
            yield char, self.escaped


def _store_unknown(attributes: NodeAttributes, value: str) -> None:
    attributes[attributes.unique_name()] = value


def _store_pair(attributes: NodeAttributes, key: str, value: str) -> None:
    key = key.removeprefix("&").removeprefix("!")
    if key.lower() == NAME.lower():
        attributes[NAME] = _unquote(value)
    elif key.lower() in (SUPPORT.lower(), LENGTH.lower()):
        number = try_float(value)
        if number is None:
            msg = f"{key} value {value!r} is not a number"
            raise TreeParseError(msg)
        attributes[SUPPORT if key.lower() == SUPPORT.lower() else LENGTH] = number
    else:
        number = try_float(value)
        attributes[key] = _unquote(value) if number is None else number


def _store_token(
    attributes: NodeAttributes,
    token: str,
    separator: str | None,
    child_count: int,
    in_brackets: bool,
) -> None:
    """assigns a token without '=' from what separated it from the previous one"""
    number = try_float(token)
    if separator in (":", "/"):
        if number is None:
            _store_unknown(attributes, token)
        else:
            attributes[LENGTH if separator == ":" else SUPPORT] = number
        return

    value = _unquote(token)
    is_name = _is_quoted(token)
    if child_count == 0 and all(attributes.is_unset(n) for n in (NAME, LENGTH, SUPPORT)):
        is_name = True

    if attributes.is_unset(NAME) and not in_brackets and (is_name or value[:1] not in _DIGITS):
        attributes[NAME] = value
    elif attributes.is_unset(SUPPORT) and (number := try_float(value)) is not None:
        attributes[SUPPORT] = number
    else:
        _store_unknown(attributes, value)


def parse_attributes(
    text: str,
    position: int = 0,
    child_count: int = 0,
    attributes: NodeAttributes | None = None,
) -> NodeAttributes:
    """parses a node's label, length, support and bracketed attributes

    Parameters
    ----------
    text
        NWKA text
    position
        index in text where the node suffix starts, e.g. just after the
        closing parenthesis of an internal node
    child_count
        number of children of the node, 0 for a leaf
    attributes
        values are added to this map, a new one is created if None

    Returns
    -------
    NodeAttributes

    Notes
    -----
    A token before ':' is a length, before '/' a support value. Other
    tokens outside brackets are a name if quoted, if on a leaf without
    name, length or support, or if not starting with a digit, otherwise a
    support value. Tokens that fit none of these are kept as Unknown,
    Unknown2, ... Numeric values for name=value pairs must parse fully,
    Support and Length values that do not raise TreeParseError. A 'prob'
    value supplies Support if none was given.
    """
    attributes = NodeAttributes() if attributes is None else attributes
    tokens = NwkaTokeniser(text, position)

    key: list[str] = []
    value: list[str] = []
    square = curly = 0
    key_finished = False
    last_separator: str | None = ","
    start = True
    closed_outer = False
    in_brackets = False
    expected_close = ""

    def reset_brackets() -> None:
        nonlocal closed_outer, expected_close, start, in_brackets
        closed_outer = False
        expected_close = ""
        start = True
        in_brackets = False

    while not tokens.eof:
        if closed_outer:
            char, plain = ",", True
        else:
            char = tokens.next()
            plain = not tokens.escaped and not tokens.quoted

        if start and char == "[" and plain:
            expected_close = "]"
            char = ","
            start = False

        if char == "=" and plain:
            key_finished = True
            if closed_outer:
                reset_brackets()
            if expected_close:
                in_brackets = True
        elif tokens.eof or (plain and char in (":", "/", ",") and square == 0 and curly == 0):
            if value:
                _store_pair(attributes, "".join(key), "".join(value))
            elif key:
                _store_token(attributes, "".join(key), last_separator, child_count, in_brackets)

            last_separator = char
            key_finished = False
            key = []
            value = []
            if closed_outer:
                reset_brackets()
            if expected_close:
                in_brackets = True
        else:
            if closed_outer:
                reset_brackets()
            if expected_close:
                in_brackets = True

            if plain and char == "[":
                square += 1
            elif plain and char == "]":
                if square:
                    square -= 1
                elif expected_close == char:
                    closed_outer = True
            elif plain and char == "{":
                curly += 1
            elif plain and char == "}" and curly:
                curly -= 1

            # an escaping backslash is dropped, the character after it is kept
            if not closed_outer and not tokens.escaping:
                (value if key_finished else key).append(char)

    if attributes.is_unset(SUPPORT) and PROB in attributes:
        prob = attributes[PROB]
        if isinstance(prob, str):
            prob = try_float(prob)
        attributes[SUPPORT] = math.nan if prob is None else prob

    return attributes


def _trim(text: str) -> str:
    text = text.strip()
    return text[:-1] if text.endswith(";") else text


def _split_children(text: str) -> tuple[list[str], int]:
    """top-level children of a clade and the position after its ')'"""
    tokens = NwkaTokeniser(text, 1)
    children = []
    current: list[str] = []
    depth = square = curly = 0
    while True:
        char = tokens.next()
        if char is None:
            msg = f"unbalanced parentheses in {text[:50]!r}"
            raise TreeParseError(msg)

        if not tokens.escaped and not tokens.quoted:
            if char == "(":
                depth += 1
            elif char == ")":
                if not depth:
                    break
                depth -= 1
            elif char == "[":
                square += 1
            elif char == "]":
                square -= 1
            elif char == "{":
                curly += 1
            elif char == "}":
                curly -= 1
            elif char == "," and depth == square == curly == 0:
                children.append("".join(current))
                current = []
                continue

        current.append(char)

    children.append("".join(current))
    return children, tokens.position


def parse_nwka_node(
    text: str,
) -> tuple[list[int], list[list[int]], list[NodeAttributes]]:
    """parses the body of one NWKA tree

    Parameters
    ----------
    text
        a single tree, without a tree name prefix

    Returns
    -------
    parent index per node (-1 for the root), child indices per node, and
    attributes per node, with nodes numbered in pre-order
    """
    parents: list[int] = []
    children: list[list[int]] = []
    node_attrs: list[NodeAttributes] = []

    stack = [(text, -1)]
    while stack:
        body, parent = stack.pop()
        body = _trim(body)
        index = len(parents)
        parents.append(parent)
        children.append([])
        if parent >= 0:
            children[parent].append(index)

        if body.startswith("("):
            kids, position = _split_children(body)
            node_attrs.append(parse_attributes(body, position, child_count=len(kids)))
            stack.extend((kid, index) for kid in reversed(kids))
        else:
            node_attrs.append(parse_attributes(body))

    return parents, children, node_attrs


def _split_tree_name(text: str) -> tuple[str, str]:
    """text before the first '(' and the remainder"""
    tokens = NwkaTokeniser(text)
    while (char := tokens.next()) is not None:
        if tokens.is_plain(char, "("):
            index = tokens.position - 1
            return text[:index].strip(), text[index:]
    return "", text


def parse_nwka_tree(text: str) -> Tree:
    """parses a single NWKA tree

    Parameters
    ----------
    text
        tree text, a trailing ';' is optional. Text preceding the first
        '(' is taken as the tree name and stored as the TreeName attribute
        of the root, unless the root already has one.
    """
    tree_name, body = _split_tree_name(text)
    parents, children, node_attrs = parse_nwka_node(body)
    if tree_name and TREE_NAME not in node_attrs[0]:
        node_attrs[0][TREE_NAME] = tree_name
    return build_tree(parents, children, [attrs.slots() for attrs in node_attrs])


def split_trees(text: str) -> Iterator[str]:
    """yields each ';' terminated tree, whitespace outside quotes removed"""
    tokens = NwkaTokeniser(text)
    current: list[str] = []
    for char, _ in tokens:
        if tokens.is_plain(char, ";"):
            if current:
                yield "".join(current)
            current = []
            continue
        current.append(char)

    if current:
        yield "".join(current)


def parse_trees(
    texts: typing.Iterable[str],
    show_progress: bool = False,
    source: str | None = None,
) -> TreeCollection:
    """parses trees until one fails

    Notes
    -----
    If a tree cannot be parsed a UserWarning is issued and the trees parsed
    before it are returned, the collection's failure attribute describing
    the error.
    """
    items = []
    failure = None
    for text in tqdm(texts, disable=not show_progress):
        ordinal = len(items) + 1
        label = f"tree #{ordinal}" if source is None else f"tree #{ordinal} in {source}"
        result = attempt(parse_nwka_tree, text, source=label)
        if not result:
            warnings.warn(
                f"An error occurred while parsing tree #{ordinal}! {result.message}",
                UserWarning,
                stacklevel=3,
            )
            failure = result
            break
        items.append((tree_name_of(result) or f"tree{ordinal}", result))

    return TreeCollection(items, failure=failure)


def read_nwka_string(
    text: str,
    tree_names: list[str] | None = None,
    show_progress: bool = False,
) -> TreeCollection:
    """parses one or more ';' separated NWKA trees

    Parameters
    ----------
    text
        NWKA or Newick text
    tree_names
        names for the trees, replacing those from the text. Trees are
        otherwise named by their TreeName attribute, or tree1, tree2, ...
    show_progress
        display a progress bar

    Returns
    -------
    TreeCollection
    """
    trees = parse_trees(split_trees(text), show_progress=show_progress)
    return trees if tree_names is None else trees.rename(tree_names)


def read_nwka_file(
    path: PathType,
    tree_names: list[str] | None = None,
    show_progress: bool = False,
) -> TreeCollection:
    """reads all trees from a NWKA or Newick file, see read_nwka_string"""
    with open_(path) as infile:
        text = infile.read()

    trees = parse_trees(split_trees(text), show_progress=show_progress, source=str(path))
    return trees if tree_names is None else trees.rename(tree_names)
