"""
Partitioning of voxel loops into independent z-slabs.

Every output voxel of composition and warping depends only on immutable
inputs, so the output volume can be split into disjoint slabs of z-slices
that are computed independently and joined at the end.
"""

import logging
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor

import torch

logger = logging.getLogger(__name__)


def check_chunking(chunk_size: int | None, num_workers: int) -> None:
    """Validate slab options shared by the composer and the warper."""
    if chunk_size is not None:
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int):
            raise TypeError(
                f"chunk_size must be an int or None, got {type(chunk_size).__name__}"
            )
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
    if isinstance(num_workers, bool) or not isinstance(num_workers, int):
        raise TypeError(
            f"num_workers must be an int, got {type(num_workers).__name__}"
        )
    if num_workers < 1:
        raise ValueError(f"num_workers must be at least 1, got {num_workers}")


def iter_slabs(depth: int, chunk_size: int | None = None) -> Iterator[tuple[int, int]]:
    """
    Yield disjoint (start, stop) ranges covering ``range(depth)``.

    Args:
        depth: Number of z-slices
        chunk_size: Slices per slab; the whole volume is one slab if None
    """
    step = depth if chunk_size is None else chunk_size
    for start in range(0, depth, step):
        yield start, min(start + step, depth)


def run_slabs(
    fn: Callable[[int, int], None],
    slabs: list[tuple[int, int]],
    num_workers: int = 1,
) -> None:
    """
    Run ``fn(start, stop)`` for each slab.

    With more than one worker, slabs are distributed over a thread pool
    (PyTorch releases the GIL inside tensor kernels). All slabs are joined
    before returning and the first failure is re-raised.
    """
    if num_workers == 1 or len(slabs) == 1:
        for start, stop in slabs:
            fn(start, stop)
        return

    logger.debug("Processing %d slabs on %d workers", len(slabs), num_workers)
    with ThreadPoolExecutor(max_workers=num_workers) as executor:
        futures = [executor.submit(fn, start, stop) for start, stop in slabs]
    for future in futures:
        future.result()


def resolve_device(device: torch.device | str | None) -> torch.device:
    """Device to compute on; CPU unless requested otherwise."""
    if device is None:
        return torch.device("cpu")
    return torch.device(device)
