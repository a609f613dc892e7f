from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from PIL import Image


@dataclass(frozen=True)
class Raster:
    """RGBA uint8 image buffer of shape (height, width, 4)."""

    pixels: np.ndarray

    def __post_init__(self) -> None:
        p = self.pixels
        if p.ndim != 3 or p.shape[2] != 4:
            raise ValueError(f"Expected RGBA raster (H,W,4), got shape={p.shape}")
        if p.shape[0] <= 0 or p.shape[1] <= 0:
            raise ValueError(f"Invalid raster size: {p.shape[:2]}")
        if p.dtype != np.uint8:
            raise ValueError(f"Expected uint8 raster, got dtype={p.dtype}")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]

    @classmethod
    def from_buffer(cls, width: int, height: int, data: bytes) -> "Raster":
        """
        Wrap a flat R,G,B,A byte buffer. Length must be exactly width*height*4.
        """
        expected = int(width) * int(height) * 4
        if len(data) != expected:
            raise ValueError(f"RGBA buffer length {len(data)} != {width}x{height}x4 = {expected}")
        arr = np.frombuffer(bytes(data), dtype=np.uint8).reshape(int(height), int(width), 4)
        return cls(pixels=arr.copy())

    @classmethod
    def from_pil(cls, img: Image.Image) -> "Raster":
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return cls(pixels=np.array(img, dtype=np.uint8))

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.pixels)

    def to_bytes(self) -> bytes:
        return self.pixels.tobytes()

    def copy(self) -> "Raster":
        return Raster(pixels=self.pixels.copy())


@dataclass(frozen=True)
class Mask:
    """Single-channel float32 scores in [0,1], shape (height, width)."""

    scores: np.ndarray

    def __post_init__(self) -> None:
        s = self.scores
        if s.ndim != 2:
            raise ValueError(f"Expected 2D mask, got shape={s.shape}")
        if s.shape[0] <= 0 or s.shape[1] <= 0:
            raise ValueError(f"Invalid mask size: {s.shape}")
        if s.dtype != np.float32:
            raise ValueError(f"Expected float32 mask, got dtype={s.dtype}")

    @property
    def width(self) -> int:
        return int(self.scores.shape[1])

    @property
    def height(self) -> int:
        return int(self.scores.shape[0])

    @classmethod
    def from_samples(cls, samples, width: int | None = None, height: int | None = None) -> "Mask":
        """
        Coerce float or normalized-integer samples to a float mask in [0,1].

        A flat buffer needs width and height; a 2D array carries its own shape.
        """
        arr = np.asarray(samples)
        if arr.ndim == 1:
            if width is None or height is None:
                raise ValueError("Flat mask samples require width and height.")
            if arr.size != int(width) * int(height):
                raise ValueError(f"Mask length {arr.size} != {width}x{height}")
            arr = arr.reshape(int(height), int(width))
        elif arr.ndim == 3 and arr.shape[2] == 1:
            arr = arr[..., 0]

        if arr.dtype == np.bool_:
            out = arr.astype(np.float32)
        elif np.issubdtype(arr.dtype, np.integer):
            out = arr.astype(np.float32) / float(np.iinfo(arr.dtype).max)
        else:
            out = arr.astype(np.float32)

        if np.isnan(out).any():
            raise ValueError("NaNs detected in mask samples.")
        return cls(scores=np.clip(out, 0.0, 1.0).astype(np.float32, copy=False))

    @classmethod
    def filled(cls, width: int, height: int, value: float) -> "Mask":
        return cls(scores=np.full((int(height), int(width)), float(value), dtype=np.float32))

    def copy(self) -> "Mask":
        return Mask(scores=self.scores.copy())
