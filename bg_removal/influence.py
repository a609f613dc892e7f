from __future__ import annotations

import math
from typing import Iterable, Optional, Tuple

import numpy as np

from .config import POINT_NEUTRAL_VALUE, POINT_RADIUS
from .contracts import Point
from .raster import Mask


def _influence_kernel(radius: int) -> np.ndarray:
    """(2r+1, 2r+1) linear falloff: 1 at the center, 0 at distance >= r."""
    r = int(radius)
    d = np.arange(-r, r + 1, dtype=np.float64)
    dist = np.sqrt(d[None, :] ** 2 + d[:, None] ** 2)
    return np.maximum(0.0, 1.0 - dist / float(r))


def apply_point_hints(
    mask: Mask,
    points: Iterable[Point],
    radius: int = POINT_RADIUS,
    raster_size: Optional[Tuple[int, int]] = None,
) -> Mask:
    """
    Blend point hints into a copy of `mask`.

    Points are applied in order onto the current state, so later points win
    where influence regions overlap. raster_size=(w, h) rescales point
    coordinates from working-raster space into mask space.
    """
    if radius <= 0:
        raise ValueError(f"radius must be positive, got {radius}")
    scores = mask.scores.astype(np.float64, copy=True)
    h, w = scores.shape
    sx = sy = 1.0
    if raster_size is not None:
        rw, rh = raster_size
        sx = w / float(rw)
        sy = h / float(rh)

    kernel = _influence_kernel(radius)
    r = int(radius)
    for point in points:
        cx = int(math.floor(point.x * sx))
        cy = int(math.floor(point.y * sy))

        x0, x1 = max(0, cx - r), min(w, cx + r + 1)
        y0, y1 = max(0, cy - r), min(h, cy + r + 1)
        if x0 >= x1 or y0 >= y1:
            continue

        k = kernel[y0 - (cy - r) : y1 - (cy - r), x0 - (cx - r) : x1 - (cx - r)]
        region = scores[y0:y1, x0:x1]
        scores[y0:y1, x0:x1] = point.target * k + region * (1.0 - k)

    return Mask(scores=np.clip(scores, 0.0, 1.0).astype(np.float32))


def build_point_mask(
    width: int,
    height: int,
    points: Iterable[Point],
    radius: int = POINT_RADIUS,
    initial: float = POINT_NEUTRAL_VALUE,
) -> Mask:
    """
    Mask built from hints alone, starting from a neutral (undecided) value.
    """
    return apply_point_hints(Mask.filled(width, height, initial), points, radius=radius)
