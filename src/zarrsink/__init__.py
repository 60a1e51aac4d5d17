"""Stream image frames into chunked, sharded, multiscale Zarr v3 datasets."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("zarrsink")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "uninstalled"

from ._compression import BloscCodecId, BloscCompressionParams, compress
from ._downsample import downsample, downsample_frame
from ._file_creator import FileCreator
from ._metadata import ArrayMetadata, EntryPointMetadata, GroupMetadata
from ._sink import FileSink
from ._types import (
    ArrayConfig,
    Dimension,
    DimensionType,
    ImageShape,
    SampleType,
    VideoFrame,
)
from ._util import ExternalMetadataError, parse_json_with_comments
from ._writer import ArrayWriter, WriterError, ZarrV3Writer
from ._zarr_v3 import StoragePropertyMetadata, StreamSettings, ZarrV3

__all__ = [
    "ArrayConfig",
    "ArrayMetadata",
    "ArrayWriter",
    "BloscCodecId",
    "BloscCompressionParams",
    "Dimension",
    "DimensionType",
    "EntryPointMetadata",
    "ExternalMetadataError",
    "FileCreator",
    "FileSink",
    "GroupMetadata",
    "ImageShape",
    "SampleType",
    "StoragePropertyMetadata",
    "StreamSettings",
    "VideoFrame",
    "WriterError",
    "ZarrV3",
    "ZarrV3Writer",
    "compress",
    "downsample",
    "downsample_frame",
    "parse_json_with_comments",
]
