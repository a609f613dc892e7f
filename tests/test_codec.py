from __future__ import annotations

import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from bg_removal.codec import (
    data_uri_to_pil,
    decode_image,
    encode_image,
    load_image,
    raster_to_data_uri,
    save_image,
)
from bg_removal.errors import DecodeError, EncodeError
from bg_removal.raster import Mask, Raster


def _half_transparent(h: int = 8, w: int = 12) -> Raster:
    px = np.zeros((h, w, 4), dtype=np.uint8)
    px[..., 0] = 255
    px[:, : w // 2, 3] = 255
    return Raster(pixels=px)


def _png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def test_decode_rgb_png_gets_opaque_alpha():
    raster = decode_image(_png_bytes(Image.new("RGB", (32, 24), (10, 20, 30))))
    assert (raster.width, raster.height) == (32, 24)
    assert raster.pixels[0, 0].tolist() == [10, 20, 30, 255]


def test_decode_garbage_raises_decode_error():
    with pytest.raises(DecodeError):
        decode_image(b"definitely not an image")
    with pytest.raises(DecodeError):
        decode_image(b"")


def test_oversized_image_is_decode_error(monkeypatch):
    data = _png_bytes(Image.new("RGB", (200, 200), (5, 5, 5)))
    uri = raster_to_data_uri(decode_image(data))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(DecodeError):
        decode_image(data)
    with pytest.raises(DecodeError):
        data_uri_to_pil(uri)


def test_load_missing_file_raises_decode_error(tmp_path: Path):
    with pytest.raises(DecodeError):
        load_image(str(tmp_path / "missing.png"))


def test_png_is_lossless(tmp_path: Path):
    src = _half_transparent()
    out_path = tmp_path / "out" / "x.png"
    save_image(src, str(out_path))
    back = load_image(str(out_path))
    np.testing.assert_array_equal(back.pixels, src.pixels)


def test_jpeg_has_no_alpha_and_is_flattened_onto_white():
    data = encode_image(_half_transparent(32, 32), "jpeg")
    img = Image.open(io.BytesIO(data))
    assert img.format == "JPEG"
    assert img.mode == "RGB"
    r, g, b = img.getpixel((31, 16))
    assert r > 240 and g > 240 and b > 240


def test_jpeg_quality_affects_size():
    rng = np.random.default_rng(1)
    px = rng.integers(0, 256, size=(64, 64, 4), dtype=np.uint8)
    px[..., 3] = 255
    raster = Raster(pixels=px)
    assert len(encode_image(raster, "jpeg", quality=0.3)) < len(encode_image(raster, "jpeg", quality=1.0))


def test_webp_default_is_lossless():
    src = _half_transparent()
    back = decode_image(encode_image(src, "webp"))
    np.testing.assert_array_equal(back.pixels[..., 3], src.pixels[..., 3])


def test_unsupported_format_and_bad_quality():
    with pytest.raises(EncodeError):
        encode_image(_half_transparent(), "gif")
    with pytest.raises(EncodeError):
        encode_image(_half_transparent(), "jpeg", quality=1.5)


def test_data_uri_round_trip():
    src = _half_transparent()
    uri = raster_to_data_uri(src)
    assert uri.startswith("data:image/png;base64,")
    img = data_uri_to_pil(uri)
    assert img.size == (src.width, src.height)


def test_data_uri_rejects_plain_strings():
    with pytest.raises(DecodeError):
        data_uri_to_pil("not-a-uri")


def test_raster_buffer_length_is_checked():
    with pytest.raises(ValueError):
        Raster.from_buffer(2, 2, bytes(15))
    r = Raster.from_buffer(2, 1, bytes([1, 2, 3, 4, 5, 6, 7, 8]))
    assert r.pixels[0, 1].tolist() == [5, 6, 7, 8]
    assert r.to_bytes() == bytes([1, 2, 3, 4, 5, 6, 7, 8])


def test_mask_coerces_integer_samples():
    m = Mask.from_samples(np.array([0, 255, 51], dtype=np.uint8), width=3, height=1)
    np.testing.assert_allclose(m.scores[0], [0.0, 1.0, 0.2], atol=1e-6)
    m16 = Mask.from_samples(np.array([[65535, 0]], dtype=np.uint16))
    assert m16.scores.tolist() == [[1.0, 0.0]]
    mb = Mask.from_samples(np.array([[True, False]]))
    assert mb.scores.tolist() == [[1.0, 0.0]]


def test_mask_rejects_bad_length_and_nan():
    with pytest.raises(ValueError):
        Mask.from_samples([0.1, 0.2, 0.3], width=2, height=2)
    with pytest.raises(ValueError):
        Mask.from_samples(np.array([[np.nan]], dtype=np.float32))
