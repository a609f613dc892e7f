from __future__ import annotations

from typing import Tuple

import numpy as np

from .config import (
    CLEANUP_DIFF_THRESHOLD,
    CLEANUP_MIN_NEIGHBORS,
    EDGE_DIFF_THRESHOLD,
    EDGE_PUSH_SCALE,
)
from .contracts import RemovalSettings
from .raster import Mask

_NEIGHBOR_OFFSETS: Tuple[Tuple[int, int], ...] = tuple(
    (dy, dx) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if (dy, dx) != (0, 0)
)


def _neighbor_stack(values: np.ndarray) -> np.ndarray:
    """
    (8, H, W) stack of the 8-neighborhood of every pixel. Out-of-bounds
    neighbors are NaN, so comparisons against them are always False.
    """
    h, w = values.shape
    padded = np.pad(values.astype(np.float64), 1, mode="constant", constant_values=np.nan)
    return np.stack([padded[1 + dy : 1 + dy + h, 1 + dx : 1 + dx + w] for dy, dx in _NEIGHBOR_OFFSETS])


def soft_threshold(scores: np.ndarray, threshold: float, softness: float) -> np.ndarray:
    """
    Hard decision outside (threshold - softness, threshold + softness), linear
    ramp inside it. softness == 0 disables the ramp.
    """
    if scores.ndim != 2:
        raise ValueError(f"Expected 2D mask, got shape={scores.shape}")
    v = scores.astype(np.float64)
    t = float(threshold)
    s = float(softness)

    out = (v > t).astype(np.float64)
    if s > 0.0:
        lo = t - s
        band = (v > lo) & (v < t + s)
        out[band] = (v[band] - lo) / (2.0 * s)
    return out.astype(np.float32)


def enhance_edges(raw: np.ndarray, soft: np.ndarray, strength: float) -> np.ndarray:
    """
    Sharpen ambiguous pixels (0 < soft < 1) that sit next to a strong local
    gradient in the raw mask: push them away from the raw neighbor average
    by strength * EDGE_PUSH_SCALE.
    """
    if raw.shape != soft.shape:
        raise ValueError(f"Raw mask {raw.shape} does not match soft mask {soft.shape}")
    out = soft.astype(np.float64)
    if strength <= 0.0:
        return out.astype(np.float32)

    ambiguous = (out > 0.0) & (out < 1.0)
    if not ambiguous.any():
        return out.astype(np.float32)

    r = raw.astype(np.float64)
    neighbors = _neighbor_stack(r)
    with np.errstate(invalid="ignore"):
        has_edge = (np.abs(neighbors - r[None, ...]) > EDGE_DIFF_THRESHOLD).any(axis=0)

    valid = ~np.isnan(neighbors)
    count = valid.sum(axis=0)
    avg = np.where(valid, neighbors, 0.0).sum(axis=0) / np.maximum(count, 1)

    target = ambiguous & has_edge
    direction = np.sign(out - avg)
    pushed = np.clip(out + direction * float(strength) * EDGE_PUSH_SCALE, 0.0, 1.0)
    out = np.where(target, pushed, out)
    return out.astype(np.float32)


def cleanup_isolated_pixels(enhanced: np.ndarray) -> np.ndarray:
    """
    Flip interior pixels that disagree (diff > 0.5) with at least 6 of their
    8 neighbors. Decisions read a snapshot; results go to a separate buffer.
    """
    if enhanced.ndim != 2:
        raise ValueError(f"Expected 2D mask, got shape={enhanced.shape}")
    read_buf = enhanced.astype(np.float32, copy=True)
    write_buf = read_buf.copy()
    h, w = read_buf.shape
    if h < 3 or w < 3:
        return write_buf

    neighbors = _neighbor_stack(read_buf)
    with np.errstate(invalid="ignore"):
        disagree = (np.abs(neighbors - read_buf[None, ...].astype(np.float64)) > CLEANUP_DIFF_THRESHOLD).sum(axis=0)

    interior = np.zeros((h, w), dtype=bool)
    interior[1:-1, 1:-1] = True
    flip = interior & (disagree >= CLEANUP_MIN_NEIGHBORS)
    write_buf[flip] = 1.0 - read_buf[flip]
    return write_buf


def enhance_mask(mask: Mask, settings: RemovalSettings) -> Mask:
    """
    Full enhancement at the mask's native resolution:
      - soft threshold
      - edge enhancement (reads the raw mask, single pass)
      - optional isolated-pixel cleanup

    Output values are foreground strength in [0,1].
    """
    raw = mask.scores
    soft = soft_threshold(raw, settings.threshold, settings.softness)
    enhanced = enhance_edges(raw, soft, settings.edge_enhancement)
    if settings.cleanup:
        enhanced = cleanup_isolated_pixels(enhanced)
    return Mask(scores=np.clip(enhanced, 0.0, 1.0).astype(np.float32, copy=False))
