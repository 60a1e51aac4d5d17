"""Materialize the directories and shard files of one array segment."""

from __future__ import annotations

import itertools
import logging
import os
from pathlib import Path

from zarrsink._sink import FileSink

__all__ = ["FileCreator"]

logger = logging.getLogger(__name__)


class FileCreator:
    """Create the shard files for one segment of an array.

    Given shard counts `(n_0, ..., n_k)` for the non-append dimensions, files are
    laid out as `base_dir/<i_0>/.../<i_k>`: one directory level per outer dimension
    (so that, e.g., each channel gets its own directory) and one file per shard
    along the innermost dimension.

    Parameters
    ----------
    base_dir : str | PathLike
        Directory under which the files are created. May be changed with
        `set_base_dir` to start a new segment.
    """

    def __init__(self, base_dir: str | os.PathLike) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def set_base_dir(self, base_dir: str | os.PathLike) -> None:
        self._base_dir = Path(base_dir)

    def create(self, *shards_per_dim: int) -> list[FileSink] | None:
        """Create the directory tree and files, returning one sink per shard.

        Sinks are returned in C order of their shard coordinates. Existing
        directories are reused and existing files truncated, so the call may be
        repeated for the same base directory.

        Returns
        -------
        list[FileSink] | None
            The open sinks, or None if any directory or file could not be
            created. In that case, files opened so far are closed again, but
            already-created paths are left in place.
        """
        if not shards_per_dim or any(n < 1 for n in shards_per_dim):
            raise ValueError(f"Invalid shard counts: {shards_per_dim}")

        *outer, n_files = shards_per_dim
        if not self._create_dirs(outer):
            return None

        sinks: list[FileSink] = []
        for dir_index in itertools.product(*(range(n) for n in outer)):
            directory = self._base_dir.joinpath(*map(str, dir_index))
            for i in range(n_files):
                path = directory / str(i)
                try:
                    sinks.append(FileSink(path))
                except OSError as e:
                    logger.error("Failed to create shard file %s: %s", path, e)
                    for sink in sinks:
                        sink.close()
                    return None

        logger.debug("Created %d shard files under %s", len(sinks), self._base_dir)
        return sinks

    def _create_dirs(self, outer: list[int]) -> bool:
        for dir_index in itertools.product(*(range(n) for n in outer)):
            directory = self._base_dir.joinpath(*map(str, dir_index))
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("Failed to create directory %s: %s", directory, e)
                return False
        return True
