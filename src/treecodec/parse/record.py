"""Exceptions raised while reading tree files."""


class FileFormatError(Exception):
    """Exception raised when a file can not be parsed."""


class TreeParseError(FileFormatError):
    """Exception raised when a NWKA or NEXUS tree can not be parsed."""


class BinaryFormatError(FileFormatError):
    """Exception raised when binary tree data is malformed or truncated."""
