"""
Composition of two displacement fields.

Given a primary field A and a secondary field B on the same geometry, the
composed field C is computed at every voxel v of B as::

    p = physical(v)
    C[v] = A(p + B[v]) + B[v]

where A(.) is a trilinear sample with zero displacement outside A. C
represents applying the displacement of B first and then the displacement of
A at the displaced location. This is the first-order ``warp(A by B) + B``
composition, not exact function composition for large or rotational
displacements.
"""

import logging

import torch

from .grid import VectorGrid
from .processing import check_chunking, iter_slabs, resolve_device, run_slabs
from .sampling import sample_tensor

logger = logging.getLogger(__name__)


class FieldComposer:
    """
    Compose displacement fields voxel by voxel.

    The output inherits the secondary field's geometry exactly.
    """

    def __init__(
        self,
        device: torch.device | str | None = None,
        chunk_size: int | None = None,
        num_workers: int = 1,
    ):
        """
        Args:
            device: PyTorch device used for the computation (CPU if None)
            chunk_size: Number of z-slices per independently computed slab;
                the whole volume is processed at once if None
            num_workers: Number of threads processing slabs concurrently
        """
        check_chunking(chunk_size, num_workers)
        self.device = resolve_device(device)
        self.chunk_size = chunk_size
        self.num_workers = num_workers

    def compose(self, primary: VectorGrid, secondary: VectorGrid) -> VectorGrid:
        """
        Compose ``primary`` after ``secondary``.

        Args:
            primary: Field A, sampled at the displaced positions
            secondary: Field B, applied first; defines the output geometry

        Returns:
            Composed field with B's geometry and dtype

        Raises:
            GeometryMismatchError: if A and B do not share geometry
        """
        for name, field in (("primary", primary), ("secondary", secondary)):
            if not isinstance(field, VectorGrid):
                raise TypeError(
                    f"{name} field must be a VectorGrid, got {type(field).__name__}"
                )
        primary.geometry.check_matches(
            secondary.geometry, "primary and secondary displacement fields"
        )

        geometry = secondary.geometry
        primary_data = primary.data.to(self.device)
        secondary_data = secondary.data.to(self.device)
        output = torch.empty_like(secondary_data)

        slabs = list(iter_slabs(geometry.array_shape[0], self.chunk_size))
        logger.info(
            "Composing displacement fields of size %s in %d slab(s)",
            geometry.dimensions,
            len(slabs),
        )

        def compose_slab(start: int, stop: int) -> None:
            points = geometry.physical_grid((start, stop), device=self.device)
            displacement = secondary_data[start:stop]
            sampled = sample_tensor(
                primary_data,
                primary.geometry,
                points + displacement.to(points.dtype),
                mode="trilinear",
            )
            output[start:stop] = sampled.to(output.dtype) + displacement

        run_slabs(compose_slab, slabs, self.num_workers)
        return VectorGrid(output, geometry)

    __call__ = compose


def compose_fields(
    primary: VectorGrid, secondary: VectorGrid, **kwargs
) -> VectorGrid:
    """
    Compose two displacement fields.

    Shortcut for ``FieldComposer(**kwargs).compose(primary, secondary)``.
    """
    return FieldComposer(**kwargs).compose(primary, secondary)
