"""Reader for trees in NEXUS files.

Only the TREES block is interpreted, other blocks are skipped. Each
``Tree name = ...;`` statement holds a NWKA tree, whose labels may be
tokens from a preceding ``Translate`` statement.
"""

import enum
import re
import warnings

from tqdm import tqdm

from treecodec.core.attributes import NAME, TREE_NAME
from treecodec.core.tree import Tree, TreeCollection, build_tree
from treecodec.parse.nwka import NwkaTokeniser, parse_attributes, parse_nwka_node
from treecodec.parse.record import TreeParseError
from treecodec.util.io import PathType, open_
from treecodec.util.result import NotCompleted, attempt

_single_char_words = frozenset("[],;")
# rooting comments carry no attributes
_rooting = frozenset(("[&R]", "[&U]"))
_escaped_char = re.compile(r"\\(.)", re.S)


class _State(enum.Enum):
    ROOT = enum.auto()
    ROOT_COMMENT = enum.auto()
    OTHER_BLOCK = enum.auto()
    OTHER_BLOCK_COMMENT = enum.auto()
    TREE_BLOCK = enum.auto()
    TREE_BLOCK_COMMENT = enum.auto()
    TRANSLATE = enum.auto()
    TRANSLATE_COMMENT = enum.auto()
    TREE_STATEMENT = enum.auto()
    TREE_NAME_COMMENT = enum.auto()


_comment_states = {
    _State.ROOT: _State.ROOT_COMMENT,
    _State.OTHER_BLOCK: _State.OTHER_BLOCK_COMMENT,
    _State.TREE_BLOCK: _State.TREE_BLOCK_COMMENT,
    _State.TRANSLATE: _State.TRANSLATE_COMMENT,
    _State.TREE_STATEMENT: _State.TREE_NAME_COMMENT,
}
_after_comment = {comment: state for state, comment in _comment_states.items()}


def _unquote(word: str) -> str:
    if len(word) >= 2 and word[0] == word[-1] and word[0] in "'\"":
        word = word[1:-1]
    return _escaped_char.sub(r"\1", word)


class NexusWords:
    """splits NEXUS text into words

    Words are separated by whitespace, and each of ``[ ] , ;`` is a word by
    itself. Text enclosed in single or double quotes is kept together, and
    a backslash escapes the character after it.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.position = 0

    def next(self) -> str | None:
        """the next word, None when the text is exhausted"""
        text = self.text
        size = len(text)
        pos = self.position
        while pos < size and text[pos].isspace():
            pos += 1
        if pos >= size:
            self.position = pos
            return None

        start = pos
        if text[pos] in _single_char_words:
            self.position = pos + 1
            return text[pos]

        quote = ""
        while pos < size:
            char = text[pos]
            if char == "\\":
                pos = min(pos + 2, size)
                continue
            if quote:
                if char == quote:
                    quote = ""
            elif char in "'\"":
                quote = char
            elif char.isspace() or char in _single_char_words:
                break
            pos += 1

        self.position = pos
        return text[start:pos]


def _read_statement(words: NexusWords) -> tuple[str, str]:
    """the pre-tree comments and the tree text of a tree statement

    Characters are consumed up to the '=' and then to the first ';' that is
    outside comments and quotes.
    """
    tokens = NwkaTokeniser(words.text, words.position)
    in_comment = False

    def track(char: str) -> None:
        nonlocal in_comment
        if tokens.escaped or tokens.quoted:
            return
        if char == "[":
            in_comment = True
        elif char == "]":
            in_comment = False

    while (char := tokens.next()) is not None and (char != "=" or in_comment):
        track(char)

    comments = []
    while (char := tokens.next()) is not None and (char != "(" or in_comment):
        comments.append(char)
        track(char)

    body = []
    while char is not None and not (char == ";" and not in_comment and not tokens.escaped and not tokens.quoted):
        body.append(char)
        track(char)
        char = tokens.next()

    words.position = tokens.position
    return "".join(comments).strip(), "".join(body)


def parse_tree_statement(
    name: str, comments: str, body: str, translate: dict[str, str] | None = None
) -> Tree:
    """builds the tree of one NEXUS tree statement

    Parameters
    ----------
    name
        the statement's tree name, stored as TreeName if the tree has none
    comments
        bracketed text between '=' and the tree. Apart from the rooting
        comments [&R] and [&U] its attributes are set on the root.
    body
        the NWKA tree
    translate
        maps tokens to labels, applied to every node name
    """
    if not body:
        msg = f"tree {name!r} has no content"
        raise TreeParseError(msg)

    parents, children, node_attrs = parse_nwka_node(body)
    root = node_attrs[0]
    if TREE_NAME not in root:
        root[TREE_NAME] = name

    if translate:
        for attrs in node_attrs:
            label = attrs.get(NAME)
            if isinstance(label, str) and label in translate:
                attrs[NAME] = translate[label]

    if comments and comments not in _rooting:
        root.update(parse_attributes(comments, child_count=2))

    return build_tree(parents, children, [attrs.slots() for attrs in node_attrs])


def parse_nexus(
    text: str, show_progress: bool = False, source: str | None = None
) -> TreeCollection:
    """parses the trees in NEXUS text

    Notes
    -----
    If a tree statement cannot be parsed a UserWarning is issued and the
    trees before it are returned, the collection's failure attribute
    describing the error.
    """
    words = NexusWords(text)
    translate: dict[str, str] = {}
    items = []
    failure: NotCompleted | None = None
    state = _State.ROOT
    progress = tqdm(disable=not show_progress, unit="tree")

    while (word := words.next()) is not None:
        lowered = word.lower()
        if state in _after_comment:
            if word == "]":
                state = _after_comment[state]
        elif word == "[":
            state = _comment_states[state]
        elif state is _State.ROOT:
            if lowered == "begin":
                block = words.next() or ""
                state = _State.TREE_BLOCK if block.lower() == "trees" else _State.OTHER_BLOCK
        elif state is _State.OTHER_BLOCK:
            if lowered == "end":
                state = _State.ROOT
        elif state is _State.TREE_BLOCK:
            if lowered == "translate":
                state = _State.TRANSLATE
            elif lowered == "tree":
                state = _State.TREE_STATEMENT
            elif lowered == "end":
                state = _State.ROOT
        elif state is _State.TRANSLATE:
            if word == ";":
                state = _State.TREE_BLOCK
            elif word != ",":
                label = words.next()
                if label is None:
                    break
                translate[_unquote(word)] = _unquote(label)
        elif state is _State.TREE_STATEMENT:
            name = _unquote(word)
            comments, body = _read_statement(words)
            ordinal = len(items) + 1
            label = f"tree #{ordinal}" if source is None else f"tree #{ordinal} in {source}"
            result = attempt(parse_tree_statement, name, comments, body, translate, source=label)
            if not result:
                warnings.warn(
                    f"An error occurred while parsing tree #{ordinal}! {result.message}",
                    UserWarning,
                    stacklevel=3,
                )
                failure = result
                break
            items.append((name, result))
            progress.update()
            state = _State.TREE_BLOCK

    progress.close()
    return TreeCollection(items, failure=failure)


def read_nexus_string(
    text: str, tree_names: list[str] | None = None, show_progress: bool = False
) -> TreeCollection:
    """reads the trees from NEXUS text

    Parameters
    ----------
    text
        NEXUS text
    tree_names
        names for the trees, replacing the names of the tree statements
    show_progress
        display a progress bar

    Returns
    -------
    TreeCollection
    """
    trees = parse_nexus(text, show_progress=show_progress)
    return trees if tree_names is None else trees.rename(tree_names)


def read_nexus_file(
    path: PathType, tree_names: list[str] | None = None, show_progress: bool = False
) -> TreeCollection:
    """reads the trees from a NEXUS file, see read_nexus_string"""
    with open_(path) as infile:
        text = infile.read()

    trees = parse_nexus(text, show_progress=show_progress, source=str(path))
    return trees if tree_names is None else trees.rename(tree_names)
