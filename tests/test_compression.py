"""Tests for blosc compression parameters."""

from __future__ import annotations

import numpy as np
import pytest
from numcodecs import Blosc
from pydantic import ValidationError

from zarrsink import BloscCodecId, BloscCompressionParams, compress


def test_factories() -> None:
    zstd = BloscCompressionParams.zstd()
    assert (zstd.codec_id, zstd.clevel, zstd.shuffle) == (BloscCodecId.ZSTD, 1, 1)
    lz4 = BloscCompressionParams.lz4(clevel=5, shuffle=2)
    assert (lz4.codec_id, lz4.clevel, lz4.shuffle) == (BloscCodecId.LZ4, 5, 2)


def test_to_configuration() -> None:
    params = BloscCompressionParams(codec_id="lz4hc", clevel=9, shuffle=0)
    assert params.to_configuration() == {
        "blocksize": 0,
        "clevel": 9,
        "cname": "lz4hc",
        "shuffle": 0,
    }


@pytest.mark.parametrize(
    "kwargs",
    [
        {"codec_id": "snappy"},
        {"codec_id": "zstd", "clevel": 10},
        {"codec_id": "zstd", "clevel": -1},
        {"codec_id": "zstd", "shuffle": 3},
    ],
)
def test_invalid_params(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        BloscCompressionParams(**kwargs)


@pytest.mark.parametrize("codec_id", list(BloscCodecId))
@pytest.mark.parametrize("shuffle", [0, 1, 2])
def test_compress_decodes(codec_id: BloscCodecId, shuffle: int) -> None:
    data = np.arange(4096, dtype=np.uint16).reshape(64, 64) % 17
    params = BloscCompressionParams(codec_id=codec_id, shuffle=shuffle)
    encoded = compress(data, params)
    assert isinstance(encoded, bytes)
    assert bytes(Blosc().decode(encoded)) == data.tobytes()
