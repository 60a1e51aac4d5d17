"""Byte-range write target backed by a local file."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from types import TracebackType

    from typing_extensions import Self

__all__ = ["FileSink"]

logger = logging.getLogger(__name__)


class FileSink:
    """A file that receives bytes at explicit offsets.

    Opening truncates any existing file at `path`. A sink is owned by exactly one
    writer; it does no locking of its own.

    Parameters
    ----------
    path : str | PathLike
        Location of the file. Its parent directory must exist.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)
        self._file = self._path.open("wb")

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<{self.__class__.__name__} {state} {str(self._path)!r}>"

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._file.closed

    def write(self, offset: int, data: Any) -> bool:
        """Write `data` starting at byte `offset`, return False on failure."""
        try:
            self._file.seek(offset)
            self._file.write(data)
        except (OSError, ValueError) as e:
            logger.error("Failed to write %d bytes to %s: %s", len(data), self._path, e)
            return False
        return True

    def close(self) -> None:
        """Flush and close the file. Calling close again does nothing."""
        if not self._file.closed:
            self._file.close()
