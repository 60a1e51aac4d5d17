"""Metadata documents of a Zarr v3 (core protocol 3.0) dataset.

The dataset is laid out as follows:

  my_dataset.zarr/
  ├── zarr.json                  # entry point (EntryPointMetadata)
  ├── meta/
  │   ├── root.group.json        # root group (GroupMetadata)
  │   └── root/
  │       ├── 0.array.json       # one per pyramid level (ArrayMetadata)
  │       └── 1.array.json
  └── data/
      └── root/
          ├── 0/c0/0/0           # shard files of level 0
          └── 1/c0/0/0           # shard files of level 1

  zarr.json:

  {
    "extensions": [],
    "metadata_encoding": "https://purl.org/zarr/spec/protocol/core/3.0",
    "metadata_key_suffix": ".json",
    "zarr_format": "https://purl.org/zarr/spec/protocol/core/3.0"
  }

  meta/root.group.json (custom acquisition metadata, or "" when there is none):

  {
    "attributes": {
      "acquire": {"exposure_ms": 10}
    }
  }

  meta/root/0.array.json:

  {
    "attributes": {},
    "chunk_grid": {"chunk_shape": [32, 128, 128], "separator": "/", "type": "regular"},
    "chunk_memory_layout": "C",
    "data_type": "<u2",
    "extensions": [],
    "fill_value": 0,
    "shape": [100, 512, 512],
    "compressor": {
      "codec": "https://purl.org/zarr/spec/codec/blosc/1.0",
      "configuration": {"blocksize": 0, "clevel": 1, "cname": "zstd", "shuffle": 1}
    },
    "storage_transformers": [
      {
        "type": "indexed",
        "extension": "https://purl.org/zarr/spec/storage_transformers/sharding/1.0",
        "configuration": {"chunks_per_shard": [1, 4, 4]}
      }
    ]
  }
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import Field
from typing_extensions import Self

from zarrsink._base import _BaseModel
from zarrsink._compression import BLOSC_CODEC_URI
from zarrsink._types import ArrayConfig  # noqa: TC001

__all__ = [
    "ArrayMetadata",
    "EntryPointMetadata",
    "GroupMetadata",
]

PROTOCOL_URI = "https://purl.org/zarr/spec/protocol/core/3.0"
SHARDING_URI = "https://purl.org/zarr/spec/storage_transformers/sharding/1.0"


class _MetadataDocument(_BaseModel):
    def to_json(self, indent: int = 4) -> str:
        """Serialize to JSON text, leaving out unset optional sections."""
        data = self.model_dump(mode="json", exclude_none=True)
        return json.dumps(data, indent=indent)


class EntryPointMetadata(_MetadataDocument):
    """The `zarr.json` document at the root of the dataset."""

    extensions: list[Any] = Field(default_factory=list)
    metadata_encoding: str = PROTOCOL_URI
    metadata_key_suffix: str = ".json"
    zarr_format: str = PROTOCOL_URI


class GroupAttributes(_BaseModel):
    acquire: Any = Field(
        default="",
        description=(
            "Custom metadata supplied with the acquisition, parsed from JSON. The "
            "empty string means none was supplied."
        ),
    )


class GroupMetadata(_MetadataDocument):
    """The `meta/root.group.json` document."""

    attributes: GroupAttributes = Field(default_factory=GroupAttributes)

    def to_json(self, indent: int = 4) -> str:
        # custom metadata is written verbatim, nulls included
        return json.dumps(self.model_dump(mode="json"), indent=indent)


class ChunkGrid(_BaseModel):
    chunk_shape: list[int]
    separator: Literal["/"] = "/"
    type: Literal["regular"] = "regular"


class BloscCompressor(_BaseModel):
    codec: str = BLOSC_CODEC_URI
    configuration: dict[str, Any]


class ShardingConfiguration(_BaseModel):
    chunks_per_shard: list[int]


class ShardingTransformer(_BaseModel):
    type: Literal["indexed"] = "indexed"
    extension: str = SHARDING_URI
    configuration: ShardingConfiguration


class ArrayMetadata(_MetadataDocument):
    """A `meta/root/<level>.array.json` document."""

    attributes: dict[str, Any] = Field(default_factory=dict)
    chunk_grid: ChunkGrid
    chunk_memory_layout: Literal["C"] = "C"
    data_type: str
    extensions: list[Any] = Field(default_factory=list)
    fill_value: int = 0
    shape: list[int]
    compressor: BloscCompressor | None = None
    storage_transformers: list[ShardingTransformer]

    @classmethod
    def from_config(cls, config: ArrayConfig, frames_written: int) -> Self:
        """Describe an array holding `frames_written` frames.

        The leading entry of `shape` is the number of frames actually written,
        which may be less than planned if acquisition stopped early.
        """
        shape = [
            frames_written,
            *(d.array_size_px for d in config.dimensions[1:]),
        ]
        compressor = None
        if (params := config.compression_params) is not None:
            compressor = BloscCompressor(configuration=params.to_configuration())
        return cls(
            chunk_grid=ChunkGrid(chunk_shape=list(config.chunk_shape)),
            data_type=config.image_shape.sample_type.zarr_data_type,
            shape=shape,
            compressor=compressor,
            storage_transformers=[
                ShardingTransformer(
                    configuration=ShardingConfiguration(
                        chunks_per_shard=list(config.chunks_per_shard)
                    )
                )
            ],
        )
