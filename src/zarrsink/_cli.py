"""Command-line interface for zarrsink."""

from __future__ import annotations

import argparse
import logging
import sys

import numpy as np
from pydantic import ValidationError

from zarrsink._compression import BloscCodecId, BloscCompressionParams
from zarrsink._types import Dimension
from zarrsink._writer import WriterError
from zarrsink._zarr_v3 import StreamSettings, ZarrV3


def synthetic_frame(index: int, height: int, width: int) -> np.ndarray:
    """A uint16 ramp, shifted by `index` so that consecutive frames differ."""
    ramp = np.arange(height * width, dtype=np.uint32) + index
    return (ramp % 65536).astype(np.uint16).reshape(height, width)


def build_settings(args: argparse.Namespace) -> StreamSettings:
    """Translate the `stream` arguments into stream settings."""
    dims = [Dimension(name="t", array_size_px=0, chunk_size_px=args.chunk_frames)]
    if args.channels > 1:
        dims.append(Dimension(name="c", array_size_px=args.channels, chunk_size_px=1))
    for name, size in (("y", args.height), ("x", args.width)):
        dims.append(
            Dimension(
                name=name,
                array_size_px=size,
                chunk_size_px=min(args.chunk_px, size),
                shard_size_chunks=args.shard_chunks,
            )
        )

    compression = None
    if args.compression != "none":
        compression = BloscCompressionParams(
            codec_id=BloscCodecId(args.compression),
            clevel=args.clevel,
            shuffle=args.shuffle,
        )
    return StreamSettings(
        store_path=args.path,
        dimensions=dims,
        data_type="u16",
        compression=compression,
        multiscale=args.multiscale,
        custom_metadata=args.metadata,
        overwrite=args.overwrite,
    )


def stream_command(args: argparse.Namespace) -> int:
    """Execute the stream subcommand.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command-line arguments

    Returns
    -------
    int
        Exit code (0 for success, 1 for write failure, 2 for other errors)
    """
    try:
        settings = build_settings(args)
        zarr = ZarrV3(settings)
        rejected = 0
        with zarr:
            for i in range(args.frames * args.channels):
                frame = synthetic_frame(i, args.height, args.width)
                if not zarr.append(frame):
                    rejected += 1
    except WriterError as e:
        print(f"✗ Write failed for: {args.path}\n", file=sys.stderr)
        print(str(e), file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"✗ Invalid settings:\n{e}", file=sys.stderr)
        return 2
    except Exception as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 2

    if rejected:
        print(f"✗ {rejected} frames were rejected", file=sys.stderr)
        return 1

    print(f"✓ Wrote {zarr.store_path}")
    print(f"  Frames: {zarr.frames_written}")
    for level, writer in enumerate(zarr.writers):
        shape = "x".join(str(d.array_size_px) for d in writer.config.dimensions[1:])
        print(f"  Level {level}: {shape}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Parameters
    ----------
    argv : list[str] | None
        Command-line arguments (defaults to sys.argv[1:])

    Returns
    -------
    int
        Exit code
    """
    parser = argparse.ArgumentParser(
        prog="zarrsink",
        description="CLI tools for streaming frames into Zarr v3 datasets",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress (-v for info, -vv for debug)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Stream subcommand
    stream_parser = subparsers.add_parser(
        "stream",
        help="Stream synthetic uint16 frames into a new dataset",
    )
    stream_parser.add_argument("path", help="Path of the dataset to create")
    stream_parser.add_argument(
        "--frames", type=int, default=64, help="Number of time points (default: 64)"
    )
    stream_parser.add_argument("--width", type=int, default=512)
    stream_parser.add_argument("--height", type=int, default=512)
    stream_parser.add_argument(
        "--channels", type=int, default=1, help="Frames per time point (default: 1)"
    )
    stream_parser.add_argument(
        "--chunk-px", type=int, default=128, help="Chunk size along y and x"
    )
    stream_parser.add_argument(
        "--chunk-frames", type=int, default=32, help="Chunk size along t"
    )
    stream_parser.add_argument(
        "--shard-chunks", type=int, default=1, help="Chunks per shard along y and x"
    )
    stream_parser.add_argument(
        "--compression", choices=["none", "zstd", "lz4"], default="none"
    )
    stream_parser.add_argument("--clevel", type=int, default=1)
    stream_parser.add_argument("--shuffle", type=int, choices=[0, 1, 2], default=1)
    stream_parser.add_argument(
        "--multiscale", action="store_true", help="Also write a downsampled pyramid"
    )
    stream_parser.add_argument(
        "--metadata", default=None, help="JSON stored with the dataset"
    )
    stream_parser.add_argument(
        "--overwrite", action="store_true", help="Replace an existing dataset"
    )
    stream_parser.set_defaults(func=stream_command)

    # Parse arguments
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose > 1 else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    # Show help if no command specified
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    # Execute the command
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
