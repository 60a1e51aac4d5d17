"""Blosc compression parameters and the chunk compression function."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from numcodecs import Blosc
from pydantic import Field
from typing_extensions import Self

from zarrsink._base import _FrozenModel

__all__ = ["BLOSC_CODEC_URI", "BloscCodecId", "BloscCompressionParams", "compress"]

logger = logging.getLogger(__name__)

BLOSC_CODEC_URI = "https://purl.org/zarr/spec/codec/blosc/1.0"


class BloscCodecId(str, Enum):
    """Compressors available inside a blosc container."""

    BLOSCLZ = "blosclz"
    LZ4 = "lz4"
    LZ4HC = "lz4hc"
    ZLIB = "zlib"
    ZSTD = "zstd"

    def __str__(self) -> str:
        return self.value


class BloscCompressionParams(_FrozenModel):
    """Codec, level and shuffle mode applied to every chunk of an array.

    A single instance is shared by every level of a multiscale pyramid.

    Examples
    --------
    >>> from zarrsink import BloscCompressionParams
    >>> params = BloscCompressionParams(codec_id="zstd", clevel=3, shuffle=1)
    >>> params.codec_id
    <BloscCodecId.ZSTD: 'zstd'>
    """

    codec_id: BloscCodecId = Field(
        description="Name of the compressor used inside the blosc container."
    )
    clevel: int = Field(
        default=1, ge=0, le=9, description="Compression level, 0 (none) to 9."
    )
    shuffle: int = Field(
        default=1,
        ge=0,
        le=2,
        description="Shuffle filter: 0 = none, 1 = byte shuffle, 2 = bit shuffle.",
    )

    @classmethod
    def zstd(cls, clevel: int = 1, shuffle: int = 1) -> Self:
        return cls(codec_id=BloscCodecId.ZSTD, clevel=clevel, shuffle=shuffle)

    @classmethod
    def lz4(cls, clevel: int = 1, shuffle: int = 1) -> Self:
        return cls(codec_id=BloscCodecId.LZ4, clevel=clevel, shuffle=shuffle)

    def to_configuration(self) -> dict[str, Any]:
        """Return the `configuration` object of the blosc codec metadata."""
        return {
            "blocksize": 0,
            "clevel": self.clevel,
            "cname": self.codec_id.value,
            "shuffle": self.shuffle,
        }


def compress(data: Any, params: BloscCompressionParams) -> bytes:
    """Compress `data` into a blosc frame.

    Parameters
    ----------
    data : buffer-like
        Bytes to compress. When a numpy array is given, its itemsize is used as
        the blosc typesize, which is what makes the shuffle filter effective.
    params : BloscCompressionParams
        Codec, level and shuffle mode.

    Returns
    -------
    bytes
        The compressed blosc frame.
    """
    codec = Blosc(
        cname=params.codec_id.value,
        clevel=params.clevel,
        shuffle=params.shuffle,
        blocksize=0,
    )
    encoded = codec.encode(data)
    logger.debug(
        "compressed %d bytes to %d with blosc/%s",
        getattr(data, "nbytes", len(data)),
        len(encoded),
        params.codec_id.value,
    )
    return bytes(encoded)
