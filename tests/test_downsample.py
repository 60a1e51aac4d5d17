"""Tests for the multiscale pyramid policy."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pytest

from zarrsink import (
    BloscCompressionParams,
    Dimension,
    SampleType,
    VideoFrame,
    downsample,
    downsample_frame,
)

if TYPE_CHECKING:
    from typing import Callable

    from zarrsink import ArrayConfig


def _pyramid(config: ArrayConfig) -> list[ArrayConfig]:
    levels = [config]
    while True:
        next_config, reducible = downsample(levels[-1])
        if not reducible:
            assert next_config is None
            return levels
        assert next_config is not None
        levels.append(next_config)


def test_512_with_64px_chunks(make_config: Callable) -> None:
    dims = [
        Dimension(name="t", array_size_px=0, chunk_size_px=8, shard_size_chunks=2),
        Dimension(name="y", array_size_px=512, chunk_size_px=64, shard_size_chunks=8),
        Dimension(name="x", array_size_px=512, chunk_size_px=64, shard_size_chunks=2),
    ]
    config = make_config(dims, compression_params=BloscCompressionParams.lz4())
    levels = _pyramid(config)

    assert len(levels) == 4
    assert [c.image_shape.height for c in levels] == [512, 256, 128, 64]
    assert [c.image_shape.width for c in levels] == [512, 256, 128, 64]
    assert [c.chunks_per_shard for c in levels] == [
        (2, 8, 2),
        (2, 4, 2),
        (2, 2, 2),
        (2, 1, 1),
    ]
    root = Path(config.data_root)
    assert [Path(c.data_root) for c in levels] == [
        root.parent / str(i) for i in range(4)
    ]
    for level in levels[1:]:
        assert level.append_dimension == config.append_dimension
        assert level.chunk_shape == (8, 64, 64)
        assert level.compression_params == config.compression_params
        assert level.image_shape.sample_type == SampleType.U16


def test_pyramid_is_deterministic(make_config: Callable) -> None:
    dims = [
        Dimension(name="t", array_size_px=0, chunk_size_px=8),
        Dimension(name="y", array_size_px=480, chunk_size_px=64),
        Dimension(name="x", array_size_px=640, chunk_size_px=64),
    ]
    config = make_config(dims)
    assert _pyramid(config) == _pyramid(config)


def test_odd_extents_round_up(make_config: Callable) -> None:
    dims = [
        Dimension(name="t", array_size_px=0, chunk_size_px=1),
        Dimension(name="y", array_size_px=101, chunk_size_px=64),
        Dimension(name="x", array_size_px=33, chunk_size_px=64),
    ]
    next_config, reducible = downsample(make_config(dims))
    assert reducible
    assert next_config is not None
    *_, dim_y, dim_x = next_config.dimensions
    assert (dim_y.array_size_px, dim_y.chunk_size_px) == (51, 51)
    assert (dim_x.array_size_px, dim_x.chunk_size_px) == (17, 17)
    assert (next_config.image_shape.height, next_config.image_shape.width) == (51, 17)


def test_middle_dimensions_unchanged(make_config: Callable) -> None:
    dims = [
        Dimension(name="t", array_size_px=0, chunk_size_px=4),
        Dimension(name="c", array_size_px=3, chunk_size_px=1),
        Dimension(name="y", array_size_px=128, chunk_size_px=64),
        Dimension(name="x", array_size_px=128, chunk_size_px=64),
    ]
    next_config, _ = downsample(make_config(dims))
    assert next_config is not None
    assert next_config.dimensions[:2] == tuple(dims[:2])
    assert next_config.frames_per_chunk == 12


@pytest.mark.parametrize(("y", "x"), [(64, 64), (64, 10), (1, 1)])
def test_single_chunk_not_reducible(make_config: Callable, y: int, x: int) -> None:
    dims = [
        Dimension(name="t", array_size_px=0, chunk_size_px=1),
        Dimension(name="y", array_size_px=y, chunk_size_px=64),
        Dimension(name="x", array_size_px=x, chunk_size_px=64),
    ]
    assert downsample(make_config(dims)) == (None, False)


def test_downsample_frame_even() -> None:
    data = np.arange(16, dtype=np.uint16).reshape(4, 4)
    frame = VideoFrame.from_array(data, frame_id=3, timestamp=1.5)
    reduced = downsample_frame(frame)
    # means of 2x2 blocks, truncated to integers
    np.testing.assert_array_equal(reduced.data, [[2, 4], [10, 12]])
    assert reduced.data.dtype == np.uint16
    assert reduced.sample_type is SampleType.U16
    assert (reduced.frame_id, reduced.timestamp) == (3, 1.5)


def test_downsample_frame_odd_pads_edges() -> None:
    data = np.array([[0, 2, 4], [6, 8, 10], [12, 14, 16]], dtype=np.uint8)
    reduced = downsample_frame(VideoFrame.from_array(data))
    np.testing.assert_array_equal(reduced.data, [[4, 7], [13, 16]])
    assert reduced.data.dtype == np.uint8


def test_downsample_frame_float() -> None:
    data = np.array([[0.0, 1.0], [2.0, 4.0]], dtype=np.float32)
    reduced = downsample_frame(VideoFrame.from_array(data))
    np.testing.assert_allclose(reduced.data, [[1.75]])
    assert reduced.sample_type is SampleType.F32
