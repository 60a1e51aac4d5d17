"""Tests for dimensions, array configurations and frames."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest
from pydantic import ValidationError

from zarrsink import (
    ArrayConfig,
    Dimension,
    DimensionType,
    ImageShape,
    SampleType,
    VideoFrame,
)

if TYPE_CHECKING:
    from typing import Callable


@pytest.mark.parametrize(
    ("name", "kind"),
    [
        ("x", DimensionType.SPACE),
        ("Z", DimensionType.SPACE),
        ("t", DimensionType.TIME),
        ("time", DimensionType.TIME),
        ("c", DimensionType.CHANNEL),
        ("p", DimensionType.OTHER),
    ],
)
def test_dimension_kind_inferred(name: str, kind: DimensionType) -> None:
    dim = Dimension(name=name, array_size_px=1, chunk_size_px=1)
    assert dim.kind == kind


def test_dimension_kind_explicit() -> None:
    dim = Dimension(name="x", kind="other", array_size_px=1, chunk_size_px=1)
    assert dim.kind == DimensionType.OTHER


def test_dimension_is_frozen() -> None:
    dim = Dimension(name="x", array_size_px=1, chunk_size_px=1)
    with pytest.raises(ValidationError):
        dim.array_size_px = 2  # type: ignore[misc]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": "", "array_size_px": 1, "chunk_size_px": 1},
        {"name": "x", "array_size_px": -1, "chunk_size_px": 1},
        {"name": "x", "array_size_px": 1, "chunk_size_px": 0},
        {"name": "x", "array_size_px": 1, "chunk_size_px": 1, "shard_size_chunks": 0},
    ],
)
def test_invalid_dimension(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        Dimension(**kwargs)


def test_array_config_properties(make_config: Callable) -> None:
    dims = [
        Dimension(name="t", array_size_px=0, chunk_size_px=5, shard_size_chunks=2),
        Dimension(name="c", array_size_px=3, chunk_size_px=2),
        Dimension(name="z", array_size_px=4, chunk_size_px=4),
        Dimension(name="y", array_size_px=100, chunk_size_px=32, shard_size_chunks=3),
        Dimension(name="x", array_size_px=80, chunk_size_px=8, shard_size_chunks=4),
    ]
    config = make_config(dims, sample_type="u8")

    assert config.append_dimension.name == "t"
    assert config.frames_per_append_step == 12
    assert config.frames_per_chunk == 60
    assert config.max_frames is None
    assert config.chunk_shape == (5, 2, 4, 32, 8)
    assert config.chunks_per_shard == (2, 1, 1, 3, 4)
    assert config.chunk_lattice_shape == (2, 1, 4, 10)
    assert config.shard_lattice_shape == (2, 1, 2, 3)
    assert config.bytes_per_chunk == 5 * 2 * 4 * 32 * 8


def test_array_config_bounded(make_config: Callable) -> None:
    dims = [
        Dimension(name="t", array_size_px=10, chunk_size_px=5),
        Dimension(name="y", array_size_px=8, chunk_size_px=8),
        Dimension(name="x", array_size_px=8, chunk_size_px=8),
    ]
    assert make_config(dims).max_frames == 10


def _dims(y: int = 8, x: int = 8, t: int = 0, name_x: str = "x") -> list[Dimension]:
    return [
        Dimension(name="t", array_size_px=t, chunk_size_px=1),
        Dimension(name="y", array_size_px=y, chunk_size_px=8),
        Dimension(name=name_x, array_size_px=x, chunk_size_px=8),
    ]


def test_array_config_duplicate_names() -> None:
    with pytest.raises(ValidationError, match="Duplicate name: y"):
        ArrayConfig(
            image_shape=ImageShape(width=8, height=8),
            dimensions=_dims(name_x="y"),
            data_root="out",
        )


def test_array_config_unbounded_inner_dimension() -> None:
    dims = _dims()
    dims.insert(1, Dimension(name="c", array_size_px=0, chunk_size_px=1))
    with pytest.raises(ValidationError, match="Only the outermost dimension"):
        ArrayConfig(
            image_shape=ImageShape(width=8, height=8), dimensions=dims, data_root="out"
        )


def test_array_config_image_shape_mismatch() -> None:
    with pytest.raises(ValidationError, match="must match the image shape"):
        ArrayConfig(
            image_shape=ImageShape(width=8, height=16),
            dimensions=_dims(),
            data_root="out",
        )


def test_array_config_needs_three_dimensions() -> None:
    with pytest.raises(ValidationError):
        ArrayConfig(
            image_shape=ImageShape(width=8, height=8),
            dimensions=_dims()[1:],
            data_root="out",
        )


@pytest.mark.parametrize(
    ("sample_type", "dtype", "zarr_data_type"),
    [
        ("u8", np.uint8, "|u1"),
        ("i8", np.int8, "|i1"),
        ("u16", np.uint16, "<u2"),
        ("u12", np.uint16, "<u2"),
        ("i16", np.int16, "<i2"),
        ("f32", np.float32, "<f4"),
        ("f64", np.float64, "<f8"),
    ],
)
def test_sample_types(sample_type: str, dtype: type, zarr_data_type: str) -> None:
    st = SampleType(sample_type)
    assert st.dtype == np.dtype(dtype)
    assert st.zarr_data_type == zarr_data_type


def test_sample_type_from_dtype() -> None:
    assert SampleType.from_dtype(np.uint16) is SampleType.U16
    assert SampleType.from_dtype("float32") is SampleType.F32
    with pytest.raises(ValueError, match="Unsupported sample dtype"):
        SampleType.from_dtype(np.complex64)


def test_video_frame_from_array() -> None:
    frame = VideoFrame.from_array(np.zeros((3, 4), dtype=np.int16), frame_id=7)
    assert frame.sample_type is SampleType.I16
    assert (frame.height, frame.width) == (3, 4)
    assert frame.bytes_of_image == 24
    assert frame.frame_id == 7

    packed = VideoFrame.from_array(np.zeros((3, 4), dtype=np.uint16), "u10")
    assert packed.sample_type is SampleType.U10


def test_image_shape_bytes_per_frame() -> None:
    shape = ImageShape(width=640, height=480, sample_type="u16")
    assert shape.bytes_per_frame == 640 * 480 * 2
