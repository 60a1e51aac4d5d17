"""Shared fixtures for the zarrsink test suite."""

from __future__ import annotations

from concurrent.futures import Executor, Future
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from zarrsink import ArrayConfig, Dimension, ImageShape, SampleType

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Callable

    from zarrsink import BloscCompressionParams


class DeferredExecutor(Executor):
    """Executor that queues tasks until `run_pending` is called.

    Once `deferred` is set to False, tasks run synchronously on submit.
    """

    def __init__(self) -> None:
        self.deferred = True
        self._queue: list[tuple[Future, Callable, tuple, dict]] = []

    def submit(self, fn: Callable, /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        self._queue.append((future, fn, args, kwargs))
        if not self.deferred:
            self.run_pending()
        return future

    def run_pending(self, order: Sequence[int] | None = None) -> None:
        """Run queued tasks.

        With `order`, run only the tasks at those queue positions, in that order,
        and leave the rest queued. Otherwise run everything in submission order.
        """
        if order is not None:
            tasks = [self._queue[i] for i in order]
            self._queue = [t for i, t in enumerate(self._queue) if i not in order]
            for task in tasks:
                _run(*task)
            return
        while self._queue:
            _run(*self._queue.pop(0))

    @property
    def n_pending(self) -> int:
        return len(self._queue)


def _run(future: Future, fn: Callable, args: tuple, kwargs: dict) -> None:
    if not future.set_running_or_notify_cancel():  # pragma: no cover
        return
    try:
        result = fn(*args, **kwargs)
    except BaseException as e:
        future.set_exception(e)
    else:
        future.set_result(result)


@pytest.fixture
def deferred_executor() -> DeferredExecutor:
    return DeferredExecutor()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., ArrayConfig]:
    """Factory for level-0 array configs rooted in `tmp_path`."""

    def _make_config(
        dimensions: Sequence[Dimension],
        sample_type: str = "u16",
        compression_params: BloscCompressionParams | None = None,
    ) -> ArrayConfig:
        *_, dim_y, dim_x = dimensions
        return ArrayConfig(
            image_shape=ImageShape(
                width=dim_x.array_size_px,
                height=dim_y.array_size_px,
                sample_type=SampleType(sample_type),
            ),
            dimensions=tuple(dimensions),
            data_root=str(tmp_path / "data" / "root" / "0"),
            compression_params=compression_params,
        )

    return _make_config


@pytest.fixture
def tyx_dims() -> list[Dimension]:
    """t/y/x with 3x2 chunks per frame, 2x2 shards, and 2 chunks per shard in t."""
    return [
        Dimension(name="t", array_size_px=0, chunk_size_px=4, shard_size_chunks=2),
        Dimension(name="y", array_size_px=48, chunk_size_px=16, shard_size_chunks=2),
        Dimension(name="x", array_size_px=64, chunk_size_px=32, shard_size_chunks=1),
    ]


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


def _read_shard(path: Path, n_entries: int) -> tuple[bytes, np.ndarray]:
    raw = path.read_bytes()
    table = np.frombuffer(raw[-16 * n_entries :], dtype="<u8").reshape(n_entries, 2)
    return raw, table


@pytest.fixture
def read_shard() -> Callable[[Path, int], tuple[bytes, np.ndarray]]:
    """Return the raw bytes of a shard file and its (offset, nbytes) index table."""
    return _read_shard
