import contextlib
import shutil
import uuid
from bz2 import open as bzip_open
from gzip import open as gzip_open
from lzma import open as lzma_open
from os import PathLike
from pathlib import Path, PurePath
from tempfile import mkdtemp
from typing import IO, Callable, Optional, Tuple, Union

from chardet import detect

from treecodec.util.misc import _wout_period

PathType = Union[str, PathLike, PurePath]

_compression_handlers = {
    "gz": gzip_open,
    "bz2": bzip_open,
    "xz": lzma_open,
    "lzma": lzma_open,
}


def _get_compression_open(
    path: Optional[PathType] = None, compression: Optional[str] = None
) -> Optional[Callable]:
    """returns function for opening compression formats

    Parameters
    ----------
    path
        file path
    compression
        file compression suffix

    Returns
    -------
    function for opening compressed files or None if unknown compression
    """
    assert path or compression
    if compression is None:
        _, compression = get_format_suffixes(path)
    return _compression_handlers.get(compression, None)


def _detect_encoding(data: bytes) -> Optional[str]:
    encoding = detect(data)["encoding"]
    # a short ascii sample says nothing about the remainder of the file
    return "utf-8" if encoding in (None, "ascii") else encoding


def open_(filename: PathType, mode="rt", **kwargs) -> IO:
    """open that handles different compression

    Parameters
    ----------
    filename
        path, a leading ~ is expanded
    mode
        standard file opening mode
    kwargs
        passed to open functions

    Returns
    -------
    an object compatible with the file protocol

    Notes
    -----
    When reading text without an explicit encoding, the encoding is
    detected from the first bytes of the file.
    """
    if not filename:
        raise ValueError(f"{filename} not a valid file name")

    mode = mode or "rt"
    filename = Path(filename).expanduser()
    op = _get_compression_open(filename) or open

    encoding = kwargs.pop("encoding", None)
    need_encoding = mode.startswith("r") and "b" not in mode
    if need_encoding and encoding is None:
        with op(filename, mode="rb") as infile:
            data = infile.read(100)

        encoding = _detect_encoding(data)

    if "b" in mode:
        return op(filename, mode, **kwargs)

    if op is not open and "t" not in mode:
        mode = f"{mode}t"

    return op(filename, mode, encoding=encoding, **kwargs)


class atomic_write:
    """performs atomic write operations, cleans up if fails"""

    def __init__(self, path: PathType, tmpdir=None, mode="w", encoding=None):
        """

        Parameters
        ----------
        path
            path to file
        tmpdir
            directory where temporary file will be created
        mode
            file writing mode
        encoding
            text encoding
        """
        self._path = Path(path).expanduser()
        self._mode = mode
        self._file = None
        self._encoding = encoding
        self._tmppath = self._make_tmppath(tmpdir)

        self.succeeded = None

    def _make_tmppath(self, tmpdir):
        """returns path of temporary file

        Parameters
        ----------
        tmpdir: Path
            to directory

        Returns
        -------
        full path to a temporary file

        Notes
        -----
        Uses a random uuid as the file name, adds suffixes from path
        """
        suffixes = "".join(self._path.suffixes)
        name = f"{uuid.uuid4()}{suffixes}"
        tmpdir = Path(mkdtemp(dir=self._path.parent)) if tmpdir is None else Path(tmpdir)

        if not tmpdir.exists():
            raise FileNotFoundError(f"{tmpdir} directory does not exist")

        return tmpdir / name

    def _get_fileobj(self):
        """returns file to be written to"""
        if self._file is None:
            kwargs = {} if "b" in self._mode else {"encoding": self._encoding}
            self._file = open_(self._tmppath, self._mode, **kwargs)

        return self._file

    def __enter__(self) -> IO:
        return self._get_fileobj()

    def _close_rename(self, src):
        dest = Path(self._path)
        try:
            dest.unlink()
        except FileNotFoundError:
            pass
        finally:
            src.rename(dest)

        shutil.rmtree(src.parent)

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._get_fileobj().close()
        if exc_type is None:
            self._close_rename(self._tmppath)
            self.succeeded = True
        else:
            self.succeeded = False
            shutil.rmtree(self._tmppath.parent)

    def write(self, data):
        """writes data to file"""
        fileobj = self._get_fileobj()
        fileobj.write(data)

    def close(self):
        """closes file"""
        self.__exit__(None, None, None)


T = Optional[str]


def get_format_suffixes(filename: PathType) -> Tuple[T, T]:
    """returns file, compression suffixes"""
    filename = Path(filename)
    if not filename.suffix:
        return None, None

    suffixes = [_wout_period.sub("", sfx).lower() for sfx in filename.suffixes[-2:]]
    if suffixes[-1] in _compression_handlers:
        cmp_suffix = suffixes[-1]
    else:
        cmp_suffix = None

    if len(suffixes) == 2 and cmp_suffix is not None:
        suffix = suffixes[0]
    elif cmp_suffix is None:
        suffix = suffixes[-1]
    else:
        suffix = None
    return suffix, cmp_suffix


def path_exists(path: PathType) -> bool:
    """whether path is a valid path and it exists"""
    with contextlib.suppress(Exception):
        return Path(path).exists()
    return False


_tree_formats = {
    "tbi": "binary",
    "bin": "binary",
    "binary": "binary",
    "nex": "nexus",
    "nexus": "nexus",
    "nxs": "nexus",
    "nwk": "nwka",
    "nwka": "nwka",
    "tre": "nwka",
    "tree": "nwka",
    "newick": "nwka",
    "json": "json",
}


def get_tree_format(path: PathType, format_name: Optional[str] = None) -> str:
    """returns 'binary', 'nexus', 'nwka' or 'json'

    Parameters
    ----------
    path
        file path, its suffix is used if format_name is not given
    format_name
        a format name or one of its suffixes
    """
    name = format_name or get_format_suffixes(path)[0]
    name = (name or "").lower()
    if name not in _tree_formats:
        msg = f"unknown tree format {name!r} for {str(path)!r}, use one of {sorted(set(_tree_formats))}"
        raise ValueError(msg)
    return _tree_formats[name]
