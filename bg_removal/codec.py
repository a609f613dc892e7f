from __future__ import annotations

import base64
import binascii
import io
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .config import JPEG_DEFAULT_QUALITY, JPEG_FLATTEN_COLOR
from .errors import DecodeError, EncodeError
from .raster import Raster

_PIL_FORMATS = {"png": "PNG", "jpeg": "JPEG", "jpg": "JPEG", "webp": "WEBP"}
_MIME_TYPES = {"PNG": "image/png", "JPEG": "image/jpeg", "WEBP": "image/webp"}


def decode_image(data: bytes) -> Raster:
    """
    Decode encoded image bytes (any format Pillow reads) into an RGBA raster.
    """
    if not data:
        raise DecodeError("Image loading failed: empty input.")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise DecodeError(f"Image loading failed: {e}") from e
    return Raster.from_pil(img)


def load_image(path: str) -> Raster:
    p = Path(path)
    if not p.is_file():
        raise DecodeError(f"Could not read image: {path}")
    return decode_image(p.read_bytes())


def _flatten_alpha(img: Image.Image, color=JPEG_FLATTEN_COLOR) -> Image.Image:
    rgba = img.convert("RGBA")
    bg = Image.new("RGBA", rgba.size, (*color, 255))
    return Image.alpha_composite(bg, rgba).convert("RGB")


def encode_image(raster: Raster, fmt: str = "png", quality: Optional[float] = None) -> bytes:
    """
    Encode a raster as PNG, JPEG or WEBP.

    quality is a fraction in (0, 1]:
      - JPEG defaults to 0.9; alpha is flattened onto white.
      - PNG is always lossless.
      - WEBP is lossless unless a quality is given.
    """
    pil_format = _PIL_FORMATS.get(fmt.lower())
    if pil_format is None:
        raise EncodeError(f"Unsupported output format: {fmt!r}")
    if quality is not None and not (0.0 < float(quality) <= 1.0):
        raise EncodeError(f"Quality must be in (0, 1], got {quality}")

    img = raster.to_pil()
    buf = io.BytesIO()
    try:
        if pil_format == "JPEG":
            q = JPEG_DEFAULT_QUALITY if quality is None else float(quality)
            _flatten_alpha(img).save(buf, format="JPEG", quality=int(round(q * 100)))
        elif pil_format == "WEBP":
            if quality is None:
                img.save(buf, format="WEBP", lossless=True)
            else:
                img.save(buf, format="WEBP", quality=int(round(float(quality) * 100)))
        else:
            img.save(buf, format="PNG", optimize=False)
    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(f"Failed to create {pil_format} image: {e}") from e

    out = buf.getvalue()
    if not out:
        raise EncodeError(f"Failed to create {pil_format} image: empty buffer")
    return out


def save_image(raster: Raster, out_path: str, fmt: str = "png", quality: Optional[float] = None) -> None:
    data = encode_image(raster, fmt=fmt, quality=quality)
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(data)


def raster_to_data_uri(raster: Raster, fmt: str = "png") -> str:
    pil_format = _PIL_FORMATS.get(fmt.lower(), "PNG")
    b64 = base64.b64encode(encode_image(raster, fmt=fmt)).decode("utf-8")
    return f"data:{_MIME_TYPES[pil_format]};base64,{b64}"


def data_uri_to_pil(uri: str) -> Image.Image:
    """
    Decode a base64 data URI into a PIL image.
    """
    if not uri.startswith("data:") or "," not in uri:
        raise DecodeError("Not a data URI.")
    header, payload = uri.split(",", 1)
    if ";base64" not in header:
        raise DecodeError("Only base64 data URIs are supported.")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 payload: {e}") from e
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise DecodeError(f"Image loading failed: {e}") from e
    return img
