"""Stream frames into a multiscale, sharded Zarr v3 dataset.

The general pattern is:

1. Describe the acquisition with `StreamSettings`: where to write, the dimensions
   (outermost first, the last two being the y and x axes of a frame), the sample
   type, and optionally compression, multiscale and custom metadata.
2. Create a `ZarrV3` from the settings and `append` frames as they arrive.
3. Call `finalize()` (or leave the `with` block) to flush the last chunks and
   write the metadata documents.

Data for each pyramid level goes to its own `ZarrV3Writer`; the metadata is only
written once every writer has finalized successfully, using the number of frames
that were actually written.
"""

from __future__ import annotations

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import numpy as np
from annotated_types import MinLen
from pydantic import Field

from zarrsink._base import _BaseModel, _FrozenModel
from zarrsink._compression import BloscCompressionParams  # noqa: TC001
from zarrsink._downsample import downsample, downsample_frame
from zarrsink._metadata import ArrayMetadata, EntryPointMetadata, GroupMetadata
from zarrsink._sink import FileSink
from zarrsink._types import ArrayConfig, Dimension, ImageShape, SampleType, VideoFrame
from zarrsink._util import parse_json_with_comments
from zarrsink._writer import WriterError, ZarrV3Writer, default_max_workers

if TYPE_CHECKING:
    from types import TracebackType

    from typing_extensions import Self

__all__ = ["StoragePropertyMetadata", "StreamSettings", "ZarrV3"]

logger = logging.getLogger(__name__)


class StreamSettings(_BaseModel):
    """Everything needed to stream an acquisition to a Zarr v3 dataset.

    Examples
    --------
    >>> from zarrsink import Dimension, StreamSettings
    >>> settings = StreamSettings(
    ...     store_path="acquisition.zarr",
    ...     dimensions=[
    ...         Dimension(name="t", array_size_px=0, chunk_size_px=32),
    ...         Dimension(name="c", array_size_px=2, chunk_size_px=1),
    ...         Dimension(name="y", array_size_px=480, chunk_size_px=240),
    ...         Dimension(name="x", array_size_px=640, chunk_size_px=320),
    ...     ],
    ...     data_type="u16",
    ...     multiscale=True,
    ... )
    >>> settings.image_shape
    ImageShape(width=640, height=480, sample_type=<SampleType.U16: 'u16'>)
    """

    store_path: Path = Field(description="Root directory of the dataset.")
    dimensions: Annotated[list[Dimension], MinLen(3)] = Field(
        description=(
            "Dimensions of the array, outermost first. The first is the append "
            "dimension, the last two are the y and x axes of each frame."
        )
    )
    data_type: SampleType = Field(
        default=SampleType.U16, description="Sample type of every frame."
    )
    compression: BloscCompressionParams | None = Field(
        default=None,
        description="Blosc compression for every chunk. None writes raw chunks.",
    )
    multiscale: bool = Field(
        default=False,
        description="Also write spatially downsampled copies, halving y and x at "
        "each level until a level fits in a single chunk.",
    )
    custom_metadata: str | None = Field(
        default=None,
        description=(
            "JSON text (comments allowed) stored verbatim in the root group's "
            "`acquire` attribute."
        ),
    )
    overwrite: bool = Field(
        default=False,
        description=(
            "Replace an existing dataset at `store_path`. Directories that don't "
            "look like a dataset are never removed."
        ),
    )
    max_workers: int = Field(
        default_factory=default_max_workers,
        ge=1,
        description="Number of threads compressing and writing chunks. Defaults "
        "to $ZARRSINK_MAX_WORKERS, or the number of CPUs (up to 8).",
    )
    backpressure_timeout: float | None = Field(
        default=None,
        ge=0,
        description=(
            "Seconds `append` waits for a chunk buffer still being compressed before "
            "rejecting the frame. None waits indefinitely."
        ),
    )

    @property
    def image_shape(self) -> ImageShape:
        *_, dim_y, dim_x = self.dimensions
        return ImageShape(
            width=dim_x.array_size_px,
            height=dim_y.array_size_px,
            sample_type=self.data_type,
        )


class StoragePropertyMetadata(_FrozenModel):
    """Capabilities reported to the host application."""

    chunking_is_supported: bool = True
    sharding_is_supported: bool = True
    multiscale_is_supported: bool = False


class ZarrV3:
    """Coordinator writing one dataset: data for every pyramid level, then metadata.

    Parameters
    ----------
    settings : StreamSettings | None
        The stream settings. Alternatively, pass the fields of `StreamSettings`
        as keyword arguments.

    Examples
    --------
    >>> import numpy as np
    >>> from zarrsink import Dimension, ZarrV3
    >>> dims = [
    ...     Dimension(name="t", array_size_px=0, chunk_size_px=8),
    ...     Dimension(name="y", array_size_px=256, chunk_size_px=64),
    ...     Dimension(name="x", array_size_px=256, chunk_size_px=64,
    ...               shard_size_chunks=2),
    ... ]
    >>> with ZarrV3(store_path="demo.zarr", dimensions=dims, multiscale=True) as zarr:
    ...     for _ in range(10):
    ...         _ = zarr.append(np.zeros((256, 256), dtype=np.uint16))
    >>> len(zarr.writers)
    3
    """

    def __init__(self, settings: StreamSettings | None = None, **kwargs: Any) -> None:
        if settings is None:
            settings = StreamSettings(**kwargs)
        elif kwargs:
            data = {**settings.model_dump(), **kwargs}
            settings = StreamSettings.model_validate(data)
        self._settings = settings
        self._dataset_root = Path(settings.store_path)

        self._thread_pool: ThreadPoolExecutor | None = None
        self._writers: list[ZarrV3Writer] = []
        self._incomplete_levels: set[int] = set()
        self._started = False
        self._finalized = False

    @classmethod
    def compressed_zstd(
        cls, settings: StreamSettings | None = None, **kwargs: Any
    ) -> Self:
        """A coordinator compressing chunks with blosc/zstd, level 1, byte shuffle."""
        return cls(settings, **kwargs, compression=BloscCompressionParams.zstd())

    @classmethod
    def compressed_lz4(
        cls, settings: StreamSettings | None = None, **kwargs: Any
    ) -> Self:
        """A coordinator compressing chunks with blosc/lz4, level 1, byte shuffle."""
        return cls(settings, **kwargs, compression=BloscCompressionParams.lz4())

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} {str(self._dataset_root)!r}: "
            f"{len(self._writers)} levels>"
        )

    def __enter__(self) -> Self:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.finalize()

    @property
    def settings(self) -> StreamSettings:
        return self._settings

    @property
    def store_path(self) -> Path:
        return self._dataset_root

    @property
    def writers(self) -> tuple[ZarrV3Writer, ...]:
        """One writer per pyramid level, full resolution first."""
        return tuple(self._writers)

    @property
    def frames_written(self) -> int:
        """Frames accepted at full resolution."""
        return self._writers[0].frames_written if self._writers else 0

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def get_meta(self) -> StoragePropertyMetadata:
        """Report capabilities.

        Multiscale output is controlled by `settings.multiscale` alone and is not
        reported as a capability.
        """
        return StoragePropertyMetadata(
            chunking_is_supported=True,
            sharding_is_supported=True,
            multiscale_is_supported=False,
        )

    # ------------------------ Lifecycle --------------------------

    def start(self) -> None:
        """Create the dataset root and a writer for every pyramid level.

        Called automatically by the first `append`. Calling it again does nothing.

        Raises
        ------
        FileExistsError
            If `store_path` is a non-empty directory and `overwrite` is False, or
            if it doesn't look like a dataset and would have to be deleted.
        """
        if self._started:
            return
        _prepare_dataset_root(self._dataset_root, self._settings.overwrite)
        self.allocate_writers()
        self._started = True
        logger.info(
            "Started streaming to %s (%d levels).",
            self._dataset_root,
            len(self._writers),
        )

    def allocate_writers(self) -> None:
        """Create the writers, full resolution first.

        With multiscale enabled, each further level is derived from the previous one
        by `downsample` until it reports that no further reduction is possible.
        """
        settings = self._settings
        config = ArrayConfig(
            image_shape=settings.image_shape,
            dimensions=tuple(settings.dimensions),
            data_root=str(self._dataset_root / "data" / "root" / "0"),
            compression_params=settings.compression,
        )
        configs = [config]
        if settings.multiscale:
            while True:
                next_config, reducible = downsample(configs[-1])
                if not reducible or next_config is None:
                    break
                configs.append(next_config)

        if self._thread_pool is None:
            self._thread_pool = ThreadPoolExecutor(
                max_workers=settings.max_workers, thread_name_prefix="zarrsink"
            )
        # only full resolution may reject a frame for backpressure; coarser levels
        # wait, so that an accepted frame always reaches every level
        self._writers = [
            ZarrV3Writer(
                c,
                self._thread_pool,
                backpressure_timeout=settings.backpressure_timeout if i == 0 else None,
            )
            for i, c in enumerate(configs)
        ]

    def append(self, frame: VideoFrame | Any) -> bool:
        """Write one frame to every pyramid level.

        Parameters
        ----------
        frame : VideoFrame | ArrayLike
            The frame, or a (height, width) array of the configured sample type.

        Returns
        -------
        bool
            False if the frame was rejected: it doesn't match the configured image
            shape or sample type, the full resolution buffers are busy
            (backpressure), the array is full, or writing has failed. The stream
            stays usable after a rejected frame. Once full resolution has taken
            the frame, the result is True: a coarser level that fails to take it
            is logged, and `finalize` raises `WriterError`.
        """
        if self._finalized:
            logger.warning("Cannot append to %s: already finalized.", self)
            return False
        self.start()

        if not isinstance(frame, VideoFrame):
            data = np.asarray(frame)
            sample_type = self._settings.data_type
            try:
                frame = VideoFrame.from_array(
                    data, sample_type if data.dtype == sample_type.dtype else None
                )
            except (TypeError, ValueError) as e:
                logger.warning("Rejected frame: %s", e)
                return False

        base, *scaled = self._writers
        if not base.write(frame):
            return False
        for level, writer in enumerate(scaled, start=1):
            frame = downsample_frame(frame)
            if not writer.write(frame):
                logger.error("Level %d of %s rejected a frame.", level, self)
                self._incomplete_levels.add(level)
        return True

    def finalize(self) -> None:
        """Finalize every writer, then write all metadata documents.

        Every writer is finalized, even if another failed, so that each flushes
        whatever it can. Calling `finalize` again does nothing.

        Raises
        ------
        WriterError
            If any writer failed, or a pyramid level missed a frame. No metadata
            is written in that case.
        ExternalMetadataError
            If `custom_metadata` is not valid JSON. No metadata is written.
        """
        if self._finalized:
            return
        self._finalized = True
        self.start()

        errors: list[WriterError] = []
        try:
            for writer in self._writers:
                try:
                    writer.finalize()
                except WriterError as e:
                    logger.error("Failed to finalize %s: %s", writer, e)
                    errors.append(e)
        finally:
            if self._thread_pool is not None:
                self._thread_pool.shutdown(wait=True)
                self._thread_pool = None

        if errors:
            raise WriterError(
                f"{len(errors)} of {len(self._writers)} arrays in "
                f"{self._dataset_root} failed to write; metadata was not written."
            ) from errors[0]
        if self._incomplete_levels:
            raise WriterError(
                f"Levels {sorted(self._incomplete_levels)} of {self._dataset_root} "
                "missed frames; metadata was not written."
            )

        # fail on bad custom metadata before any document is written
        self._group_metadata()
        self.write_base_metadata()
        self.write_group_metadata()
        for level in range(len(self._writers)):
            self.write_array_metadata(level)
        logger.info(
            "Finalized %s: %d frames, %d levels.",
            self._dataset_root,
            self.frames_written,
            len(self._writers),
        )

    # ------------------------ Metadata --------------------------

    def make_metadata_sink_paths(self) -> list[Path]:
        """Paths of the metadata documents, in sink order.

        The entry point, the root group, then one array document per level.
        """
        root = self._dataset_root
        paths = [root / "zarr.json", root / "meta" / "root.group.json"]
        paths.extend(
            root / "meta" / "root" / f"{level}.array.json"
            for level in range(len(self._writers))
        )
        return paths

    def write_base_metadata(self) -> None:
        """Write `zarr.json`."""
        self._write_metadata(0, EntryPointMetadata().to_json())

    def write_group_metadata(self) -> None:
        """Write `meta/root.group.json`, embedding the custom metadata."""
        self._write_metadata(1, self._group_metadata().to_json())

    def write_array_metadata(self, level: int) -> None:
        """Write `meta/root/<level>.array.json`.

        Raises
        ------
        IndexError
            If there is no such level.
        RuntimeError
            If the level's writer hasn't been finalized yet.
        """
        if not 0 <= level < len(self._writers):
            raise IndexError(
                f"No level {level}: {self} has {len(self._writers)} levels."
            )
        writer = self._writers[level]
        if not writer.is_finalized:
            raise RuntimeError(
                f"Level {level} must be finalized before its metadata is written."
            )
        metadata = ArrayMetadata.from_config(writer.config, writer.frames_written)
        self._write_metadata(2 + level, metadata.to_json())

    def _group_metadata(self) -> GroupMetadata:
        text = self._settings.custom_metadata
        acquire = parse_json_with_comments(text) if text else ""
        return GroupMetadata.model_validate({"attributes": {"acquire": acquire}})

    def _write_metadata(self, index: int, text: str) -> None:
        # one sink per document, open only while that document is written
        paths = self.make_metadata_sink_paths()
        assert index < len(paths), f"no metadata sink {index}"
        path = paths[index]
        path.parent.mkdir(parents=True, exist_ok=True)
        with FileSink(path) as sink:
            if not sink.write(0, text.encode("utf-8")):
                raise WriterError(f"Failed to write metadata to {sink.path}")
        logger.debug("Wrote %s", path)


def _prepare_dataset_root(dest_path: Path, overwrite: bool) -> None:
    """Create an empty dataset directory, replacing an old dataset if asked to."""
    if dest_path.exists() and (not dest_path.is_dir() or any(dest_path.iterdir())):
        if not overwrite:
            raise FileExistsError(
                f"Dataset already exists at {dest_path}. "
                "Use overwrite=True to replace it."
            )
        # Be cautious before deleting.
        # If it doesn't look like a dataset, raise an error rather than deleting.
        if not (dest_path / "zarr.json").exists():
            raise FileExistsError(
                f"Destination {dest_path} exists, but is not a Zarr dataset. "
                "Refusing to overwrite.  Please delete manually."
            )
        shutil.rmtree(dest_path, ignore_errors=True)

    dest_path.mkdir(parents=True, exist_ok=True)
