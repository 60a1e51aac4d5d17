from __future__ import annotations

import json
import math
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable

    from zarrsink._types import Dimension

__all__ = [
    "ExternalMetadataError",
    "chunks_along_dimension",
    "parse_json_with_comments",
    "ravel_index",
    "shards_along_dimension",
]

COMMENT_RE = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*|/\*.*?\*/', re.DOTALL)
"""Regular expression matching JSON string literals and JavaScript-style comments.

String literals are captured in group 1 so that comment markers inside strings
(e.g. "http://...") are preserved.
"""


class ExternalMetadataError(ValueError):
    """Raised when user-supplied metadata is not valid JSON (comments allowed)."""


def parse_json_with_comments(text: str) -> Any:
    """Parse JSON text that may contain `//` line and `/* */` block comments.

    Raises
    ------
    ExternalMetadataError
        If the text, with comments removed, is not valid JSON.
    """
    stripped = COMMENT_RE.sub(lambda m: m.group(1) or "", text)
    try:
        return json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ExternalMetadataError(
            f"External metadata is not valid JSON: {e.msg} "
            f"(line {e.lineno}, column {e.colno})"
        ) from e


def chunks_along_dimension(dim: Dimension) -> int:
    """Number of chunks needed to cover `dim`, or 0 for an unbounded dimension."""
    return math.ceil(dim.array_size_px / dim.chunk_size_px)


def shards_along_dimension(dim: Dimension) -> int:
    """Number of shards needed to cover `dim`, or 0 for an unbounded dimension."""
    return math.ceil(chunks_along_dimension(dim) / dim.shard_size_chunks)


def ravel_index(coords: Iterable[int], shape: Iterable[int]) -> int:
    """C-order flat index of `coords` in an array of `shape`."""
    index = 0
    for c, s in zip(coords, shape, strict=True):
        index = index * s + c
    return index
