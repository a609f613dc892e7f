from __future__ import annotations

import numpy as np
from PIL import Image, ImageColor

from .contracts import RemovalSettings
from .errors import RenderTargetError
from .raster import Mask, Raster


def map_mask_to_raster(mask: Mask, width: int, height: int) -> np.ndarray:
    """
    Nearest-neighbor index mapping of a mask onto a (height, width) grid:
      mx = floor(x * mask_w / width), my = floor(y * mask_h / height)
    Integer arithmetic only, so output is bit-reproducible.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid raster size: {(width, height)}")
    mx = np.minimum((np.arange(width, dtype=np.int64) * mask.width) // width, mask.width - 1)
    my = np.minimum((np.arange(height, dtype=np.int64) * mask.height) // height, mask.height - 1)
    return mask.scores[np.ix_(my, mx)]


def alpha_from_foreground(foreground: np.ndarray) -> np.ndarray:
    """
    Enhanced mask values are foreground strength, so 0 is fully removed and
    1 fully kept: alpha = round(255 * v), rounding half up.
    """
    fg = np.clip(foreground.astype(np.float64), 0.0, 1.0)
    a = np.floor(255.0 * fg + 0.5)
    return np.clip(a, 0, 255).astype(np.uint8)


def inject_alpha(raster: Raster, mask: Mask) -> Raster:
    """
    New raster with RGB from `raster` and alpha derived from `mask`
    (resampled to the raster's resolution).
    """
    fg = map_mask_to_raster(mask, raster.width, raster.height)
    out = raster.pixels.copy()
    out[..., 3] = alpha_from_foreground(fg)
    return Raster(pixels=out)


def flatten_onto_color(raster: Raster, color: str) -> Raster:
    """
    Fill a same-size surface with `color` and draw `raster` over it.
    """
    try:
        r, g, b = ImageColor.getrgb(color)[:3]
    except ValueError as e:
        raise RenderTargetError(f"Cannot fill background with {color!r}") from e
    try:
        bg = Image.new("RGBA", (raster.width, raster.height), (r, g, b, 255))
        comp = Image.alpha_composite(bg, raster.to_pil())
    except (MemoryError, ValueError) as e:
        raise RenderTargetError(f"Failed to allocate {raster.width}x{raster.height} background surface") from e
    return Raster.from_pil(comp)


def composite(raster: Raster, enhanced: Mask, settings: RemovalSettings) -> Raster:
    """
    Apply the enhanced mask as alpha, then optionally flatten onto the
    configured background color.
    """
    out = inject_alpha(raster, enhanced)
    if settings.is_transparent:
        return out
    return flatten_onto_color(out, settings.background_color)
