"""
Compose two displacement fields from disk and optionally warp an intensity
image and a label image with the result.

Stages run in order and are recorded individually. Loading and composing
the fields must succeed for anything else to run. Saving the composed field,
warping the intensity image and warping the label image are independent of
each other, and a failing stage never invalidates files written by earlier
stages.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

import torch

from .compose import FieldComposer
from .errors import GeometryMismatchError, InvalidGridShapeError, VolumeIOError
from .grid import BaseGrid, ScalarGrid, VectorGrid
from .io import load_scalar_grid, load_vector_grid, save_grid
from .warp import VolumeWarper

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "output.nii.gz"

# Failures that abort a stage; anything else is a bug and propagates
STAGE_ERRORS = (GeometryMismatchError, InvalidGridShapeError, VolumeIOError)


@dataclass
class StageResult:
    """Outcome of one pipeline stage."""

    name: str
    ok: bool
    output_path: Path | None = None
    error: Exception | None = None


@dataclass
class PipelineResult:
    """Outcomes of all attempted stages, in order."""

    stages: list[StageResult] = field(default_factory=list)
    composed: VectorGrid | None = None

    @property
    def ok(self) -> bool:
        return all(stage.ok for stage in self.stages)

    @property
    def failed(self) -> list[StageResult]:
        return [stage for stage in self.stages if not stage.ok]

    def stage(self, name: str) -> StageResult:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)


def _run_stage(
    result: PipelineResult,
    name: str,
    output_path: Path | None,
    fn: Callable[[], BaseGrid | None],
) -> BaseGrid | None:
    try:
        value = fn()
    except STAGE_ERRORS as e:
        logger.error("Stage '%s' failed: %s", name, e)
        result.stages.append(StageResult(name, False, output_path, e))
        return None
    logger.info("Stage '%s' done%s", name, f" -> {output_path}" if output_path else "")
    result.stages.append(StageResult(name, True, output_path))
    return value


def run_pipeline(
    primary_path: str | Path,
    secondary_path: str | Path,
    output_path: str | Path = DEFAULT_OUTPUT,
    intensity: tuple[str | Path, str | Path] | None = None,
    labels: tuple[str | Path, str | Path] | None = None,
    *,
    device: torch.device | str | None = None,
    chunk_size: int | None = None,
    num_workers: int = 1,
    use_compression: bool = False,
) -> PipelineResult:
    """
    Compose two displacement fields and warp images with the result.

    Args:
        primary_path: Displacement field applied second (sampled at displaced points)
        secondary_path: Displacement field applied first; defines output geometry
        output_path: Where to write the composed field
        intensity: Optional (input, output) paths of an intensity image,
            warped with trilinear interpolation
        labels: Optional (input, output) paths of a label image,
            warped with nearest-neighbor interpolation
        device: PyTorch device used for the computation
        chunk_size: Number of z-slices per slab
        num_workers: Number of threads processing slabs
        use_compression: Whether to compress the written composed field

    Returns:
        PipelineResult with one StageResult per attempted stage
    """
    result = PipelineResult()
    output_path = Path(output_path)

    # Invalid options are caller errors, raised before touching any file
    options = dict(device=device, chunk_size=chunk_size, num_workers=num_workers)
    composer = FieldComposer(**options)
    warpers = {
        "intensity": VolumeWarper("trilinear", **options),
        "labels": VolumeWarper("nearest", **options),
    }

    def compose() -> VectorGrid:
        primary = load_vector_grid(primary_path)
        secondary = load_vector_grid(secondary_path)
        return composer.compose(primary, secondary)

    composed = _run_stage(result, "compose", None, compose)
    if not isinstance(composed, VectorGrid):
        return result
    result.composed = composed

    # The composed field stays usable for warping even if it cannot be saved
    _run_stage(
        result,
        "save",
        output_path,
        lambda: save_grid(composed, output_path, use_compression),
    )

    for name, paths in (("intensity", intensity), ("labels", labels)):
        if paths is None:
            continue
        input_path, warped_path = Path(paths[0]), Path(paths[1])
        _run_stage(
            result,
            name,
            warped_path,
            partial(_warp_file, warpers[name], composed, input_path, warped_path),
        )

    return result


def _warp_file(
    warper: VolumeWarper, composed: VectorGrid, input_path: Path, output_path: Path
) -> ScalarGrid:
    warped = warper.warp(composed, load_scalar_grid(input_path))
    save_grid(warped, output_path)
    return warped
