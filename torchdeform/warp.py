"""
Resampling of scalar volumes through a displacement field.
"""

import logging

import torch

from .grid import ScalarGrid, VectorGrid
from .processing import check_chunking, iter_slabs, resolve_device, run_slabs
from .sampling import check_mode, sample_tensor

logger = logging.getLogger(__name__)


def cast_samples(values: torch.Tensor, dtype: torch.dtype) -> torch.Tensor:
    """
    Convert sampled values to the pixel type of the source image.

    Floating values headed for an integer type are rounded to the nearest
    integer and clipped to the range of that type.
    """
    if values.dtype == dtype:
        return values
    if values.is_floating_point() and not dtype.is_floating_point:
        info = torch.iinfo(dtype)
        values = torch.round(values).clamp(info.min, info.max)
    return values.to(dtype)


class VolumeWarper:
    """
    Warp scalar images with a displacement field.

    For every voxel v of the field, the output is the source image sampled
    at ``physical(v) + field[v]``. The output geometry mirrors the field, not
    the source image, and the output keeps the source pixel type.

    Use ``mode="trilinear"`` for intensity images and ``mode="nearest"`` for
    label images, so that no new label values are invented at boundaries.
    """

    def __init__(
        self,
        mode: str = "trilinear",
        boundary_value: float = 0.0,
        device: torch.device | str | None = None,
        chunk_size: int | None = None,
        num_workers: int = 1,
    ):
        """
        Args:
            mode: Interpolation mode, "trilinear" or "nearest"
            boundary_value: Value of samples falling outside the source image
            device: PyTorch device used for the computation (CPU if None)
            chunk_size: Number of z-slices per independently computed slab
            num_workers: Number of threads processing slabs concurrently
        """
        self.mode = check_mode(mode)
        check_chunking(chunk_size, num_workers)
        self.boundary_value = boundary_value
        self.device = resolve_device(device)
        self.chunk_size = chunk_size
        self.num_workers = num_workers

    def warp(self, field: VectorGrid, image: ScalarGrid) -> ScalarGrid:
        """
        Resample ``image`` through ``field``.

        Args:
            field: Displacement field defining the output geometry
            image: Source image, on any geometry

        Returns:
            Warped image on the field's geometry with the source dtype
        """
        if not isinstance(field, VectorGrid):
            raise TypeError(
                f"field must be a VectorGrid, got {type(field).__name__}"
            )
        if not isinstance(image, ScalarGrid):
            raise TypeError(
                f"image must be a ScalarGrid, got {type(image).__name__}"
            )

        geometry = field.geometry
        field_data = field.data.to(self.device)
        image_data = image.data.to(self.device)
        output = torch.empty(
            geometry.array_shape, dtype=image_data.dtype, device=self.device
        )

        slabs = list(iter_slabs(geometry.array_shape[0], self.chunk_size))
        logger.info(
            "Warping image of size %s onto field of size %s (%s, %d slab(s))",
            image.geometry.dimensions,
            geometry.dimensions,
            self.mode,
            len(slabs),
        )

        def warp_slab(start: int, stop: int) -> None:
            points = geometry.physical_grid((start, stop), device=self.device)
            points = points + field_data[start:stop].to(points.dtype)
            sampled = sample_tensor(
                image_data,
                image.geometry,
                points,
                mode=self.mode,
                boundary_value=self.boundary_value,
            )
            output[start:stop] = cast_samples(sampled, output.dtype)

        run_slabs(warp_slab, slabs, self.num_workers)
        return ScalarGrid(output, geometry)

    __call__ = warp


def warp_volume(
    field: VectorGrid, image: ScalarGrid, mode: str = "trilinear", **kwargs
) -> ScalarGrid:
    """
    Warp an image with a displacement field.

    Shortcut for ``VolumeWarper(mode, **kwargs).warp(field, image)``.
    """
    return VolumeWarper(mode, **kwargs).warp(field, image)
