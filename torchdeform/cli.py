"""
Command line entry point: compose two displacement fields and optionally
warp an intensity image and a label image with the composed field.
"""

import argparse
import logging
import sys
from pathlib import Path

import torch

from .pipeline import DEFAULT_OUTPUT, run_pipeline


def _device(value: str) -> torch.device:
    try:
        return torch.device(value)
    except RuntimeError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="torchdeform-compose",
        description="Compose two 3D displacement fields (FIELD_B applied first, "
        "then FIELD_A) and optionally warp images with the result.",
    )
    parser.add_argument(
        "field_a", type=Path, help="Displacement field applied second"
    )
    parser.add_argument(
        "field_b",
        type=Path,
        help="Displacement field applied first; defines the output geometry",
    )
    parser.add_argument(
        "output",
        type=Path,
        nargs="?",
        default=Path(DEFAULT_OUTPUT),
        help=f"Composed displacement field (default: {DEFAULT_OUTPUT})",
    )
    parser.add_argument(
        "--intensity",
        type=Path,
        nargs=2,
        metavar=("INPUT", "OUTPUT"),
        help="Intensity image to warp with trilinear interpolation",
    )
    parser.add_argument(
        "--labels",
        type=Path,
        nargs=2,
        metavar=("INPUT", "OUTPUT"),
        help="Label image to warp with nearest-neighbor interpolation",
    )
    parser.add_argument(
        "--device",
        type=_device,
        default="cpu",
        help="Device used for running tensor computations",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help="Number of z-slices processed per slab (default: whole volume)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of threads processing slabs",
    )
    parser.add_argument(
        "--compress",
        action="store_true",
        help="Compress the composed displacement field on disk",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true")
    verbosity.add_argument("-q", "--quiet", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        result = run_pipeline(
            args.field_a,
            args.field_b,
            args.output,
            intensity=args.intensity,
            labels=args.labels,
            device=args.device,
            chunk_size=args.chunk_size,
            num_workers=args.workers,
            use_compression=args.compress,
        )
    except (TypeError, ValueError) as e:
        parser.error(str(e))

    for stage in result.failed:
        print(f"{stage.name} failed: {stage.error}", file=sys.stderr)
    print(" done!", file=sys.stderr)
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
