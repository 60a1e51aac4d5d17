# /// script
# requires-python = ">=3.10"
# dependencies = [
#     "zarrsink",
#     "numpy",
# ]
#
# [tool.uv.sources]
# zarrsink = { path = "../", editable = true }
# ///
"""Simple example of streaming a two-channel timelapse into a Zarr v3 dataset."""

from __future__ import annotations

import time
from pathlib import Path

import numpy as np

from zarrsink import Dimension, VideoFrame, ZarrV3

dims = [
    Dimension(name="t", array_size_px=0, chunk_size_px=16),
    Dimension(name="c", array_size_px=2, chunk_size_px=1),
    Dimension(name="y", array_size_px=512, chunk_size_px=128, shard_size_chunks=2),
    Dimension(name="x", array_size_px=512, chunk_size_px=128, shard_size_chunks=2),
]

dest = Path("example_timelapse.zarr")
metadata = """{
    // free-form acquisition metadata
    "exposure_ms": 10,
    "channels": ["GFP", "mCherry"]
}"""

zarr = ZarrV3.compressed_zstd(
    store_path=dest,
    dimensions=dims,
    data_type="u12",
    multiscale=True,
    custom_metadata=metadata,
    overwrite=True,
)

rng = np.random.default_rng()
start = time.perf_counter()
with zarr:
    for i in range(40 * 2):  # 40 time points, 2 channels each
        data = rng.integers(0, 4096, size=(512, 512), dtype=np.uint16)
        frame = VideoFrame.from_array(data, "u12", frame_id=i)
        zarr.append(frame)
elapsed = time.perf_counter() - start

print(f"\n✅ Dataset written to: {zarr.store_path} in {elapsed:.2f}s")
print(f"   Frames: {zarr.frames_written}")
for level, writer in enumerate(zarr.writers):
    print(f"   Level {level}: {writer.config.image_shape.width} px wide")
print("   Metadata documents:")
for path in zarr.make_metadata_sink_paths():
    print(f"   - {path.relative_to(dest)}")
