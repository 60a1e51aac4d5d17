"""Pyramid policy: derive coarser array levels and reduce frames to match them."""

from __future__ import annotations

import logging
import math
from pathlib import PurePath
from typing import TYPE_CHECKING

import numpy as np

from zarrsink._types import ArrayConfig, VideoFrame
from zarrsink._util import chunks_along_dimension

if TYPE_CHECKING:
    from zarrsink._types import Dimension

__all__ = ["downsample", "downsample_frame"]

logger = logging.getLogger(__name__)


def downsample(config: ArrayConfig) -> tuple[ArrayConfig | None, bool]:
    """Return the configuration of the next coarser level of `config`.

    A level can be reduced while its y or x extent spans more than one chunk.
    Reducing halves the y and x extents, rounding up (`(n + n % 2) // 2`), shrinks
    their chunk size to the new extent if needed, and clamps the shard size to the
    number of chunks left. All other dimensions, the sample type and the
    compression parameters are unchanged. The data root of the new level is the
    sibling directory named after the next level index.

    Returns
    -------
    tuple[ArrayConfig | None, bool]
        `(next_config, True)` if `config` could be reduced, else `(None, False)`.

    Examples
    --------
    With 64 px chunks, a 512x512 level reduces to 256, 128 and finally 64 px,
    which can't be reduced any further:

    >>> from zarrsink import ArrayConfig, Dimension, ImageShape, downsample
    >>> config = ArrayConfig(
    ...     image_shape=ImageShape(width=512, height=512),
    ...     dimensions=[
    ...         Dimension(name="t", array_size_px=0, chunk_size_px=8),
    ...         Dimension(name="y", array_size_px=512, chunk_size_px=64),
    ...         Dimension(name="x", array_size_px=512, chunk_size_px=64),
    ...     ],
    ...     data_root="out.zarr/data/root/0",
    ... )
    >>> sizes = []
    >>> while config is not None:
    ...     sizes.append(config.image_shape.width)
    ...     config, _ = downsample(config)
    >>> sizes
    [512, 256, 128, 64]
    """
    *outer, dim_y, dim_x = config.dimensions
    if all(chunks_along_dimension(d) <= 1 for d in (dim_y, dim_x)):
        return None, False

    new_y, new_x = _halve(dim_y), _halve(dim_x)
    root = PurePath(config.data_root)
    level = int(root.name) + 1 if root.name.isdigit() else 1
    next_config = ArrayConfig(
        image_shape=config.image_shape.model_copy(
            update={"width": new_x.array_size_px, "height": new_y.array_size_px}
        ),
        dimensions=(*outer, new_y, new_x),
        data_root=str(root.parent / str(level)),
        compression_params=config.compression_params,
    )
    logger.debug("Level %d: %dx%d px", level, new_y.array_size_px, new_x.array_size_px)
    return next_config, True


def _halve(dim: Dimension) -> Dimension:
    array_size_px = (dim.array_size_px + dim.array_size_px % 2) // 2
    chunk_size_px = min(dim.chunk_size_px, array_size_px)
    n_chunks = math.ceil(array_size_px / chunk_size_px)
    return dim.model_copy(
        update={
            "array_size_px": array_size_px,
            "chunk_size_px": chunk_size_px,
            "shard_size_chunks": min(dim.shard_size_chunks, n_chunks),
        }
    )


def downsample_frame(frame: VideoFrame) -> VideoFrame:
    """Reduce a frame 2x2 by averaging, for the next pyramid level.

    Odd extents are first padded by repeating the last row or column, so the
    result has `ceil(height / 2)` rows and `ceil(width / 2)` columns. The mean is
    cast back to the frame's dtype (truncating for integer types).
    """
    data = frame.data
    height, width = data.shape
    padded = np.pad(data, ((0, height % 2), (0, width % 2)), mode="edge")
    reduced = padded.reshape(padded.shape[0] // 2, 2, padded.shape[1] // 2, 2).mean(
        axis=(1, 3)
    )
    return VideoFrame(
        data=reduced.astype(data.dtype),
        sample_type=frame.sample_type,
        frame_id=frame.frame_id,
        timestamp=frame.timestamp,
    )
