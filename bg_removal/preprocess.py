from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from .config import MAX_DIMENSION
from .errors import RenderTargetError
from .raster import Raster


@dataclass(frozen=True)
class ResizeMeta:
    """How the working raster relates to the decoded input."""

    orig_h: int
    orig_w: int
    resized_h: int
    resized_w: int
    scale: float


def fit_dimensions(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> Tuple[int, int, float]:
    """
    Scaled (w, h, ratio) bounded by max_dimension. Never upscales.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {(width, height)}")
    if max_dimension <= 0:
        raise ValueError(f"max_dimension must be positive, got {max_dimension}")
    if width <= max_dimension and height <= max_dimension:
        return width, height, 1.0

    ratio = min(max_dimension / float(width), max_dimension / float(height))
    new_w = min(max_dimension, max(1, int(round(width * ratio))))
    new_h = min(max_dimension, max(1, int(round(height * ratio))))
    return new_w, new_h, ratio


def resize_to_max_dimension(raster: Raster, max_dimension: int = MAX_DIMENSION) -> Tuple[Raster, ResizeMeta]:
    """
    Aspect-safe downscale so neither side exceeds max_dimension.

    Returns a working copy of the input when it already fits.
    """
    new_w, new_h, ratio = fit_dimensions(raster.width, raster.height, max_dimension)
    meta = ResizeMeta(
        orig_h=raster.height,
        orig_w=raster.width,
        resized_h=new_h,
        resized_w=new_w,
        scale=ratio,
    )
    if ratio == 1.0:
        return raster.copy(), meta

    try:
        resized = cv2.resize(raster.pixels, (new_w, new_h), interpolation=cv2.INTER_AREA)
    except (cv2.error, MemoryError) as e:
        raise RenderTargetError(f"Failed to allocate {new_w}x{new_h} working surface") from e
    if resized is None or resized.shape[:2] != (new_h, new_w):
        raise RenderTargetError(f"Failed to allocate {new_w}x{new_h} working surface")

    return Raster(pixels=np.ascontiguousarray(resized, dtype=np.uint8)), meta
