"""Conversion of tree files between formats, with a provenance log."""

import os
import time
import typing
from pathlib import Path

from scitrack import CachingLogger

from treecodec.core.tree import TreeCollection


def _make_logfile_name(outpath: Path) -> str:
    return f"{outpath.name.split('.')[0]}-convert.log"


def _get_logger(logger: "CachingLogger | typing.Literal[False] | None", outpath: Path) -> CachingLogger | None:
    if logger is False:
        return None
    if logger is None:
        logger = CachingLogger(create_dir=True)
    if not isinstance(logger, CachingLogger):
        msg = f"logger must be of type CachingLogger not {type(logger)}"
        raise TypeError(msg)
    if not logger.log_file_path:
        logger.log_file_path = str(outpath.parent / _make_logfile_name(outpath))
    return logger


def convert_trees(
    inpath: os.PathLike | str,
    outpath: os.PathLike | str,
    in_format: str | None = None,
    out_format: str | None = None,
    logger: "CachingLogger | typing.Literal[False] | None" = None,
    show_progress: bool = False,
    **kwargs: typing.Any,  # noqa: ANN401
) -> TreeCollection:
    """reads every tree from inpath and writes them to outpath

    Parameters
    ----------
    inpath, outpath
        tree files
    in_format, out_format
        'binary', 'nexus', 'nwka' or 'json', guessed from the suffixes if
        not specified
    logger
        a scitrack CachingLogger. If None, one is created writing to
        <outpath name>-convert.log beside outpath. False disables logging.
    show_progress
        display progress bars
    kwargs
        passed to the writer

    Returns
    -------
    the trees that were written. If the input could not be read completely
    the trees before the failure are written, and the failure is logged.
    """
    from treecodec import load_trees, save_trees

    outpath = Path(outpath).expanduser()
    logger = _get_logger(logger, outpath)

    start = time.time()
    if logger is not None:
        logger.log_message(f"convert_trees(in_format={in_format!r}, out_format={out_format!r})", label="command")
        logger.log_versions(["treecodec", "numpy"])
        logger.input_file(str(Path(inpath).expanduser()))

    trees = load_trees(inpath, format_name=in_format, show_progress=show_progress)
    save_trees(trees, outpath, format_name=out_format, show_progress=show_progress, **kwargs)

    if logger is not None:
        logger.log_message(f"{len(trees)}", label="number of trees")
        if trees.failure is not None:
            logger.log_message(str(trees.failure), label="incomplete input")
        logger.output_file(str(outpath))
        logger.log_message(f"{time.time() - start}", label="TIME TAKEN")
        logger.shutdown()

    return trees
