"""Value types describing frames, dimensions and array configurations."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any

import numpy as np
from annotated_types import MinLen
from pydantic import Field, field_validator, model_validator
from pydantic_core import PydanticCustomError
from typing_extensions import Self

from zarrsink._base import _FrozenModel
from zarrsink._compression import BloscCompressionParams  # noqa: TC001
from zarrsink._util import chunks_along_dimension, shards_along_dimension

__all__ = [
    "ArrayConfig",
    "Dimension",
    "DimensionType",
    "ImageShape",
    "SampleType",
    "VideoFrame",
]


class SampleType(str, Enum):
    """Pixel sample type of a frame."""

    U8 = "u8"
    U16 = "u16"
    I8 = "i8"
    I16 = "i16"
    F32 = "f32"
    U10 = "u10"
    U12 = "u12"
    U14 = "u14"
    U32 = "u32"
    I32 = "i32"
    F64 = "f64"

    @property
    def dtype(self) -> np.dtype:
        """Numpy dtype that holds one sample."""
        return np.dtype(SAMPLE_TYPE_DTYPES[self][0])

    @property
    def zarr_data_type(self) -> str:
        """The `data_type` string written to the array metadata."""
        return SAMPLE_TYPE_DTYPES[self][1]

    @classmethod
    def from_dtype(cls, dtype: Any) -> SampleType:
        """Return the sample type for a numpy dtype (u10/u12/u14 map to u16)."""
        dtype = np.dtype(dtype)
        for sample_type in cls:
            if np.dtype(SAMPLE_TYPE_DTYPES[sample_type][0]) == dtype:
                return sample_type
        raise ValueError(f"Unsupported sample dtype: {dtype}")


# sample type -> (numpy dtype, zarr v3 data_type)
# packed 10/12/14 bit samples are stored in 16 bit words
SAMPLE_TYPE_DTYPES: dict[SampleType, tuple[str, str]] = {
    SampleType.U8: ("uint8", "|u1"),
    SampleType.U16: ("<u2", "<u2"),
    SampleType.I8: ("int8", "|i1"),
    SampleType.I16: ("<i2", "<i2"),
    SampleType.F32: ("<f4", "<f4"),
    SampleType.U10: ("<u2", "<u2"),
    SampleType.U12: ("<u2", "<u2"),
    SampleType.U14: ("<u2", "<u2"),
    SampleType.U32: ("<u4", "<u4"),
    SampleType.I32: ("<i4", "<i4"),
    SampleType.F64: ("<f8", "<f8"),
}


class DimensionType(str, Enum):
    SPACE = "space"
    CHANNEL = "channel"
    TIME = "time"
    OTHER = "other"


class Dimension(_FrozenModel):
    """One axis of an array, with its chunking and sharding.

    Examples
    --------
    A timelapse of 512x512 frames, 32 frames per chunk, 4x4 chunks per shard:

    >>> from zarrsink import Dimension
    >>> dims = [
    ...     Dimension(name="t", array_size_px=0, chunk_size_px=32),
    ...     Dimension(name="y", array_size_px=512, chunk_size_px=128,
    ...               shard_size_chunks=4),
    ...     Dimension(name="x", array_size_px=512, chunk_size_px=128,
    ...               shard_size_chunks=4),
    ... ]
    >>> dims[0].kind
    <DimensionType.TIME: 'time'>
    """

    name: str = Field(min_length=1, description="The name of the dimension.")
    kind: DimensionType = Field(
        default=DimensionType.OTHER,
        description=(
            "The type of the dimension. If not provided, it is inferred from the "
            "name: x/y/z -> 'space', t -> 'time', c -> 'channel'."
        ),
    )
    array_size_px: int = Field(
        ge=0,
        description=(
            "Extent of the array along this dimension. 0 means unbounded, which is "
            "only allowed for the outermost (append) dimension."
        ),
    )
    chunk_size_px: int = Field(ge=1, description="Extent of one chunk.")
    shard_size_chunks: int = Field(
        default=1, ge=1, description="Number of chunks per shard along this axis."
    )

    @model_validator(mode="before")
    @classmethod
    def _infer_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("kind") is None:
            data = {**data, "kind": _infer_dimension_type(str(data.get("name", "")))}
        return data


def _infer_dimension_type(name: str) -> DimensionType:
    name_lower = name.lower()
    if name_lower in ("x", "y", "z"):
        return DimensionType.SPACE
    if name_lower in {"t", "time"}:
        return DimensionType.TIME
    if name_lower in {"c", "channel"}:
        return DimensionType.CHANNEL
    return DimensionType.OTHER


class ImageShape(_FrozenModel):
    """Pixel extent and sample type of a single frame."""

    width: int = Field(ge=1)
    height: int = Field(ge=1)
    sample_type: SampleType = SampleType.U16

    @property
    def bytes_per_frame(self) -> int:
        return self.width * self.height * self.sample_type.dtype.itemsize


class ArrayConfig(_FrozenModel):
    """Immutable description of one array (one pyramid level).

    The dimensions are ordered outer-to-inner. The outermost one is the append
    dimension that grows as frames arrive, the innermost two are the spatial y
    and x axes of a frame, and any in between (e.g. channel, z) are filled by
    consecutive frames before the append dimension advances.
    """

    image_shape: ImageShape
    dimensions: Annotated[tuple[Dimension, ...], MinLen(3)]
    data_root: str = Field(description="Directory receiving this array's shards.")
    compression_params: BloscCompressionParams | None = None

    @field_validator("dimensions")
    @classmethod
    def _validate_unique_names(
        cls, v: tuple[Dimension, ...]
    ) -> tuple[Dimension, ...]:
        names = [d.name for d in v]
        for i, name in enumerate(names):
            if name in names[i + 1 :]:
                raise PydanticCustomError(
                    "dimensionNamesNotUnique",
                    "Dimension names are not unique. Duplicate name: {name}",
                    {"name": name},
                )
        return v

    @model_validator(mode="after")
    def _validate_dimensions(self) -> Self:
        for dim in self.dimensions[1:]:
            if dim.array_size_px == 0:
                raise ValueError(
                    f"Only the outermost dimension may be unbounded, but {dim.name!r} "
                    "has array_size_px=0."
                )
        y, x = self.dimensions[-2:]
        if (y.array_size_px, x.array_size_px) != (
            self.image_shape.height,
            self.image_shape.width,
        ):
            raise ValueError(
                f"The spatial dimensions ({y.name}={y.array_size_px}, "
                f"{x.name}={x.array_size_px}) must match the image shape "
                f"(height={self.image_shape.height}, width={self.image_shape.width})."
            )
        return self

    @property
    def append_dimension(self) -> Dimension:
        return self.dimensions[0]

    @property
    def frames_per_append_step(self) -> int:
        """Number of frames filling one index of the append dimension."""
        return math.prod(d.array_size_px for d in self.dimensions[1:-2])

    @property
    def frames_per_chunk(self) -> int:
        """Number of frames filling one chunk along the append dimension."""
        return self.append_dimension.chunk_size_px * self.frames_per_append_step

    @property
    def max_frames(self) -> int | None:
        """Number of frames the array can hold, None if unbounded."""
        if self.append_dimension.array_size_px == 0:
            return None
        return self.append_dimension.array_size_px * self.frames_per_append_step

    @property
    def chunk_shape(self) -> tuple[int, ...]:
        return tuple(d.chunk_size_px for d in self.dimensions)

    @property
    def chunks_per_shard(self) -> tuple[int, ...]:
        return tuple(d.shard_size_chunks for d in self.dimensions)

    @property
    def chunk_lattice_shape(self) -> tuple[int, ...]:
        """Number of chunks along every dimension but the append one."""
        return tuple(chunks_along_dimension(d) for d in self.dimensions[1:])

    @property
    def shard_lattice_shape(self) -> tuple[int, ...]:
        """Number of shards along every dimension but the append one."""
        return tuple(shards_along_dimension(d) for d in self.dimensions[1:])

    @property
    def bytes_per_chunk(self) -> int:
        itemsize = self.image_shape.sample_type.dtype.itemsize
        return math.prod(self.chunk_shape) * itemsize


@dataclass(frozen=True)
class VideoFrame:
    """One (height, width) frame delivered by an acquisition."""

    data: np.ndarray
    sample_type: SampleType
    frame_id: int = 0
    timestamp: float | None = None

    @classmethod
    def from_array(
        cls,
        data: Any,
        sample_type: SampleType | None = None,
        frame_id: int = 0,
        timestamp: float | None = None,
    ) -> VideoFrame:
        """Wrap array data, inferring the sample type from its dtype."""
        arr = np.asarray(data)
        if sample_type is None:
            sample_type = SampleType.from_dtype(arr.dtype)
        return cls(arr, SampleType(sample_type), frame_id, timestamp)

    @property
    def height(self) -> int:
        return int(self.data.shape[0]) if self.data.ndim >= 1 else 0

    @property
    def width(self) -> int:
        return int(self.data.shape[1]) if self.data.ndim >= 2 else 0

    @property
    def bytes_of_image(self) -> int:
        return int(self.data.nbytes)
