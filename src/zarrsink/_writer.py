"""Buffer frames into chunks and write them, compressed, into shard files.

A writer owns everything needed to persist one array (one pyramid level):

- one in-memory chunk buffer per chunk position of a single step along the append
  dimension (i.e. per chunk of the non-append dimensions), each guarded by a
  readiness event;
- the shard files of the current *segment*, that is, the run of
  `shard_size_chunks` chunks along the append dimension that share shard files.

Frames are copied into the buffers on the caller's thread. When a chunk along the
append dimension is complete, the buffers are handed to a thread pool: one task per
buffer compresses it (and then releases the buffer for reuse), and one task per
flush appends the compressed chunks to their shard files. Flush tasks wait for their
predecessor, so chunks always land in chunk order and every chunk offset is the sum
of the sizes of the chunks written before it in the same shard.

Each shard file ends with an index of `(offset, nbytes)` pairs, one per chunk
position inside the shard, as little-endian uint64. Missing chunks are marked with
`2**64 - 1` in both fields.
"""

from __future__ import annotations

import logging
import math
import os
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from zarrsink._compression import compress
from zarrsink._file_creator import FileCreator
from zarrsink._types import ArrayConfig, VideoFrame
from zarrsink._util import ravel_index

if TYPE_CHECKING:
    from zarrsink._sink import FileSink

__all__ = ["ArrayWriter", "WriterError", "ZarrV3Writer"]

logger = logging.getLogger(__name__)

EMPTY_CHUNK = np.iinfo(np.uint64).max
"""Index table value marking a chunk that is absent from its shard."""


class WriterError(RuntimeError):
    """Raised when an array's data could not be written completely."""


@runtime_checkable
class ArrayWriter(Protocol):
    """What the dataset coordinator needs from the writer of one array."""

    @property
    def config(self) -> ArrayConfig: ...

    @property
    def frames_written(self) -> int: ...

    @property
    def is_finalized(self) -> bool: ...

    def write(self, frame: VideoFrame | Any) -> bool:
        """Buffer one frame, returning False if it was not accepted."""
        ...

    def finalize(self) -> None:
        """Flush everything, wait for pending work, and close all files."""
        ...


def default_max_workers() -> int:
    """Thread pool size: `ZARRSINK_MAX_WORKERS` if set, else up to 8 CPUs."""
    if env := os.getenv("ZARRSINK_MAX_WORKERS"):
        return max(1, int(env))
    return min(8, os.cpu_count() or 1)


class ZarrV3Writer:
    """Writer for one sharded Zarr v3 array.

    Parameters
    ----------
    config : ArrayConfig
        The array to write. Its `data_root` receives the shard files.
    thread_pool : Executor | None, optional
        Pool running compression and write tasks. It is typically shared by all
        writers of a dataset. If None, the writer creates its own and shuts it
        down in `finalize`.
    backpressure_timeout : float | None, optional
        Seconds `write` waits for a buffer that is still being compressed before
        giving up and returning False. None (default) waits as long as it takes,
        0 doesn't wait at all.

    Examples
    --------
    >>> import numpy as np
    >>> from zarrsink import ArrayConfig, Dimension, ImageShape, ZarrV3Writer
    >>> config = ArrayConfig(
    ...     image_shape=ImageShape(width=64, height=48, sample_type="u8"),
    ...     dimensions=[
    ...         Dimension(name="t", array_size_px=0, chunk_size_px=4),
    ...         Dimension(name="y", array_size_px=48, chunk_size_px=16),
    ...         Dimension(name="x", array_size_px=64, chunk_size_px=32),
    ...     ],
    ...     data_root="example.zarr/data/root/0",
    ... )
    >>> writer = ZarrV3Writer(config)
    >>> writer.write(np.zeros((48, 64), dtype=np.uint8))
    True
    >>> writer.finalize()
    >>> writer.frames_written
    1
    """

    def __init__(
        self,
        config: ArrayConfig,
        thread_pool: Executor | None = None,
        *,
        backpressure_timeout: float | None = None,
    ) -> None:
        self._config = config
        self._owns_pool = thread_pool is None
        self._pool: Executor = thread_pool or ThreadPoolExecutor(
            max_workers=default_max_workers(), thread_name_prefix="zarrsink"
        )
        self._backpressure_timeout = backpressure_timeout

        self._data_root = Path(config.data_root)
        self._file_creator = FileCreator(self._data_root / "c0")

        # chunk buffers, one per chunk position of the non-append dimensions
        self._lattice = config.chunk_lattice_shape
        dtype = config.image_shape.sample_type.dtype
        n_buffers = math.prod(self._lattice)
        self._buffers = [
            np.zeros(config.chunk_shape, dtype=dtype) for _ in range(n_buffers)
        ]
        self._ready = [threading.Event() for _ in range(n_buffers)]
        for event in self._ready:
            event.set()
        self._touched = [False] * n_buffers

        # spatial tiling of a frame: (start, stop) along y and x
        *_, dim_y, dim_x = config.dimensions
        self._tiles_y = _tile_bounds(dim_y.array_size_px, dim_y.chunk_size_px)
        self._tiles_x = _tile_bounds(dim_x.array_size_px, dim_x.chunk_size_px)

        # bookkeeping, owned by the ingest side
        self._lock = threading.Lock()
        self._frames_written = 0
        self._current_chunk = 0
        self._pending: list[Future] = []
        self._last_flush: Future | None = None
        self._finalized = False

        # shard state of the open segment, owned by the (serialized) flush tasks
        self._segment = -1
        self._sinks: list[FileSink] = []
        self._offsets: list[int] = []
        self._tables: list[np.ndarray] = []
        self._error: BaseException | None = None

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} {self._config.data_root!r}: "
            f"{self._frames_written} frames>"
        )

    @property
    def config(self) -> ArrayConfig:
        return self._config

    @property
    def frames_written(self) -> int:
        """Number of frames accepted by `write` so far."""
        return self._frames_written

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    @property
    def failed(self) -> bool:
        """True once writing chunk data has failed; the array is then invalid."""
        return self._error is not None

    # ------------------------ Ingest --------------------------

    def write(self, frame: VideoFrame | Any) -> bool:
        """Copy one frame into the chunk buffers.

        Returns False, leaving the writer unchanged, if the frame doesn't match the
        array, if a buffer it needs is still being compressed (backpressure; try
        again later), if the array is full, or if an earlier flush failed.
        """
        with self._lock:
            if self._finalized:
                logger.warning("Cannot write to %s: already finalized.", self)
                return False
            if self._error is not None:
                logger.warning("Cannot write to %s: a previous flush failed.", self)
                return False
            if (frame := self._validate_frame(frame)) is None:
                return False
            max_frames = self._config.max_frames
            if max_frames is not None and self._frames_written >= max_frames:
                logger.warning("Cannot write to %s: array is full.", self)
                return False

            index, slots = self._locate_frame(self._frames_written)
            for slot in slots:
                if not self._ready[slot].wait(self._backpressure_timeout):
                    logger.debug("Buffer %d of %s is still in flight.", slot, self)
                    return False

            self._copy_frame(frame, index, slots)
            self._frames_written += 1
            if self._frames_written % self._config.frames_per_chunk == 0:
                self._flush()
            return True

    def _validate_frame(self, frame: VideoFrame | Any) -> VideoFrame | None:
        shape = self._config.image_shape
        if not isinstance(frame, VideoFrame):
            data = np.asarray(frame)
            # raw arrays of the right dtype adopt the array's sample type (e.g. u12)
            sample_type = (
                shape.sample_type if data.dtype == shape.sample_type.dtype else None
            )
            try:
                frame = VideoFrame.from_array(data, sample_type)
            except (TypeError, ValueError) as e:
                logger.warning("Rejected frame: %s", e)
                return None

        if frame.sample_type != shape.sample_type or not np.can_cast(
            frame.data.dtype, shape.sample_type.dtype, casting="equiv"
        ):
            logger.warning(
                "Rejected frame %d: sample type %s (%s) does not match %s.",
                frame.frame_id,
                frame.sample_type.value,
                frame.data.dtype,
                shape.sample_type.value,
            )
            return None
        if frame.data.shape != (shape.height, shape.width):
            logger.warning(
                "Rejected frame %d: shape %s does not match (%d, %d).",
                frame.frame_id,
                frame.data.shape,
                shape.height,
                shape.width,
            )
            return None
        return frame

    def _locate_frame(self, frame_index: int) -> tuple[tuple[int, ...], list[int]]:
        """Position of a frame inside its chunks, and the buffers it touches."""
        config = self._config
        middle = config.dimensions[1:-2]
        group_shape = (config.append_dimension.chunk_size_px,) + tuple(
            d.array_size_px for d in middle
        )
        t, *coords = np.unravel_index(
            frame_index % config.frames_per_chunk, group_shape
        )
        within = (int(t),) + tuple(
            int(c) % d.chunk_size_px for c, d in zip(coords, middle)
        )
        chunk_of = tuple(int(c) // d.chunk_size_px for c, d in zip(coords, middle))
        slots = [
            ravel_index((*chunk_of, ty, tx), self._lattice)
            for ty in range(len(self._tiles_y))
            for tx in range(len(self._tiles_x))
        ]
        return within, slots

    def _copy_frame(
        self, frame: VideoFrame, index: tuple[int, ...], slots: list[int]
    ) -> None:
        tiles = ((y, x) for y in self._tiles_y for x in self._tiles_x)
        for slot, ((y0, y1), (x0, x1)) in zip(slots, tiles):
            self._buffers[slot][(*index, slice(0, y1 - y0), slice(0, x1 - x0))] = (
                frame.data[y0:y1, x0:x1]
            )
            self._touched[slot] = True

    # ------------------------ Flushing --------------------------

    def _flush(self) -> None:
        """Hand the touched buffers to the pool and schedule their write."""
        chunk_index = self._current_chunk
        self._current_chunk += 1

        compressed: dict[int, Future] = {}
        for slot, touched in enumerate(self._touched):
            if not touched:
                continue
            self._ready[slot].clear()
            self._touched[slot] = False
            compressed[slot] = self._pool.submit(self._compress_buffer, slot)

        self._last_flush = self._pool.submit(
            self._write_chunks, chunk_index, compressed, self._last_flush
        )
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.extend(compressed.values())
        self._pending.append(self._last_flush)
        logger.debug(
            "Scheduled chunk %d of %s (%d buffers).", chunk_index, self, len(compressed)
        )

    def _compress_buffer(self, slot: int) -> bytes:
        buffer = self._buffers[slot]
        try:
            if (params := self._config.compression_params) is not None:
                return compress(buffer, params)
            return buffer.tobytes()
        finally:
            buffer.fill(0)
            self._ready[slot].set()

    def _write_chunks(
        self,
        chunk_index: int,
        compressed: dict[int, Future],
        previous: Future | None,
    ) -> None:
        try:
            if previous is not None:
                previous.result()
            self._write_chunks_in_order(chunk_index, compressed)
        except BaseException as e:
            if self._error is None:
                self._error = e
            raise

    def _write_chunks_in_order(
        self, chunk_index: int, compressed: dict[int, Future]
    ) -> None:
        config = self._config
        shard_t, *shard_inner = config.chunks_per_shard
        segment, t_in_shard = divmod(chunk_index, shard_t)
        if segment != self._segment:
            if self._sinks:
                self._close_segment()
            self._open_segment(segment)

        for slot in sorted(compressed):
            data = compressed[slot].result()
            coords = np.unravel_index(slot, self._lattice)
            shard = ravel_index(
                (int(c) // s for c, s in zip(coords, shard_inner)),
                config.shard_lattice_shape,
            )
            internal = ravel_index(
                (t_in_shard, *(int(c) % s for c, s in zip(coords, shard_inner))),
                config.chunks_per_shard,
            )
            offset = self._offsets[shard]
            if not self._sinks[shard].write(offset, data):
                raise WriterError(
                    f"Failed to write chunk {chunk_index}/{slot} to "
                    f"{self._sinks[shard].path}"
                )
            self._tables[shard][internal] = (offset, len(data))
            self._offsets[shard] = offset + len(data)

        if t_in_shard == shard_t - 1:
            self._close_segment()

    def _open_segment(self, segment: int) -> None:
        """Create the shard files for the next run of chunks along the append axis."""
        self._file_creator.set_base_dir(self._data_root / f"c{segment}")
        sinks = self._file_creator.create(*self._config.shard_lattice_shape)
        if sinks is None:
            raise WriterError(
                f"Failed to create shard files under {self._file_creator.base_dir}"
            )
        n_entries = math.prod(self._config.chunks_per_shard)
        self._segment = segment
        self._sinks = sinks
        self._offsets = [0] * len(sinks)
        self._tables = [
            np.full((n_entries, 2), EMPTY_CHUNK, dtype="<u8") for _ in sinks
        ]
        logger.debug("Opened segment %d of %s.", segment, self)

    def _close_segment(self) -> None:
        """Append the index table to every open shard file and close it."""
        sinks, self._sinks = self._sinks, []
        failed = [
            sink.path
            for sink, offset, table in zip(sinks, self._offsets, self._tables)
            if not sink.write(offset, table.tobytes())
        ]
        for sink in sinks:
            sink.close()
        if failed:
            raise WriterError(f"Failed to write shard index to {failed}")
        logger.debug("Closed segment %d of %s.", self._segment, self)

    # ------------------------ Finalize --------------------------

    def finalize(self) -> None:
        """Flush the last (possibly partial) chunk and close all files.

        Blocks until every compression and write task of this writer has finished.
        The last chunk is written full size, padded with zeros past the last frame.
        Calling `finalize` again does nothing.

        Raises
        ------
        WriterError
            If any chunk or shard index could not be written. The array's files
            are closed, but its data is incomplete.
        """
        with self._lock:
            if self._finalized:
                return
            self._finalized = True

            try:
                if self._error is None and any(self._touched):
                    self._flush()
                wait(self._pending)
                if self._error is None and self._sinks:
                    try:
                        self._close_segment()
                    except WriterError as e:
                        self._error = e
            finally:
                for sink in self._sinks:
                    sink.close()
                self._sinks = []
                if self._owns_pool:
                    self._pool.shutdown(wait=True)

        if self._error is not None:
            raise WriterError(f"Failed to write {self._data_root}") from self._error
        logger.info(
            "Finalized %s: %d frames in %d chunks.",
            self._data_root,
            self._frames_written,
            self._current_chunk,
        )


def _tile_bounds(size: int, tile: int) -> list[tuple[int, int]]:
    return [(start, min(start + tile, size)) for start in range(0, size, tile)]
