from __future__ import annotations

import asyncio
import threading

import numpy as np
import pytest
from PIL import Image

from bg_removal.codec import raster_to_data_uri
from bg_removal.config import MODEL_SEGFORMER_B0, MODEL_SEGFORMER_B2, InferenceConfig
from bg_removal.errors import InferenceError
from bg_removal.raster import Raster


class _FakePipe:
    def __init__(self, outputs):
        self.outputs = outputs
        self.images = []

    def __call__(self, image):
        self.images.append(image)
        return self.outputs


def _uri(w: int = 6, h: int = 4) -> str:
    return raster_to_data_uri(Raster(pixels=np.full((h, w, 4), 255, dtype=np.uint8)))


@pytest.fixture
def fake_factory(monkeypatch):
    """
    Patch transformers.pipeline; the client imports it lazily at load time.
    """
    transformers = pytest.importorskip("transformers")
    created = []

    def _factory(task, model=None, device=None, model_kwargs=None):
        mask = Image.fromarray(np.array([[0, 255, 255, 0, 0, 0]] * 4, dtype=np.uint8))
        pipe = _FakePipe([{"label": "wall", "score": None, "mask": mask}, {"label": "sky", "score": 0.5}])
        created.append({"task": task, "model": model, "device": device, "model_kwargs": model_kwargs})
        return pipe

    monkeypatch.setattr(transformers, "pipeline", _factory)
    return created


def test_segment_returns_float_masks(fake_factory):
    from bg_removal.inference import SegmentationClient

    client = SegmentationClient(InferenceConfig(device="cpu"))
    results = client.segment(_uri(), MODEL_SEGFORMER_B0)

    assert [r.label for r in results] == ["wall", "sky"]
    first = results[0]
    assert first.score is None
    assert (first.mask.width, first.mask.height) == (6, 4)
    assert first.mask.scores[0].tolist() == [0.0, 1.0, 1.0, 0.0, 0.0, 0.0]
    assert results[1].mask is None
    assert results[1].score == pytest.approx(0.5)
    assert fake_factory[0]["task"] == "image-segmentation"


def test_loaded_pipelines_are_reused_per_client(fake_factory):
    from bg_removal.inference import SegmentationClient

    client = SegmentationClient(InferenceConfig(device="cpu", cache_dir="/tmp/models"))
    assert not client.is_loaded(MODEL_SEGFORMER_B0)
    client.segment(_uri(), MODEL_SEGFORMER_B0)
    client.segment(_uri(), MODEL_SEGFORMER_B0)
    assert client.is_loaded(MODEL_SEGFORMER_B0)
    assert len(fake_factory) == 1
    assert fake_factory[0]["model_kwargs"] == {"cache_dir": "/tmp/models"}

    # a separate client does not see the first one's pipelines
    other = SegmentationClient(InferenceConfig(device="cpu"))
    assert not other.is_loaded(MODEL_SEGFORMER_B0)


def test_unknown_model_rejected_unless_local_models_allowed(fake_factory):
    from bg_removal.inference import SegmentationClient

    with pytest.raises(InferenceError):
        SegmentationClient(InferenceConfig(device="cpu")).load("./my-local-model")

    relaxed = SegmentationClient(InferenceConfig(device="cpu", allow_local_models=True))
    relaxed.load("./my-local-model")
    assert fake_factory[-1]["model"] == "./my-local-model"


@pytest.fixture
def slow_primary_factory(monkeypatch):
    """
    transformers.pipeline that blocks while building b2 until released.
    """
    transformers = pytest.importorskip("transformers")
    release = threading.Event()
    built = []

    def _factory(task, model=None, device=None, model_kwargs=None):
        if model == MODEL_SEGFORMER_B2:
            release.wait(timeout=5.0)
        mask = Image.fromarray(np.full((4, 6), 255, dtype=np.uint8))
        built.append(model)
        return _FakePipe([{"label": "person", "score": 0.9, "mask": mask}])

    monkeypatch.setattr(transformers, "pipeline", _factory)
    yield release, built
    release.set()


def test_slow_load_does_not_block_other_models(slow_primary_factory):
    from bg_removal.inference import SegmentationClient

    release, built = slow_primary_factory
    client = SegmentationClient(InferenceConfig(device="cpu"))
    worker = threading.Thread(target=client.load, args=(MODEL_SEGFORMER_B2,))
    worker.start()
    try:
        client.load(MODEL_SEGFORMER_B0)
        assert client.is_loaded(MODEL_SEGFORMER_B0)
        assert not client.is_loaded(MODEL_SEGFORMER_B2)
    finally:
        release.set()
        worker.join(timeout=5.0)
    assert built == [MODEL_SEGFORMER_B0, MODEL_SEGFORMER_B2]


def test_timed_out_load_falls_back_to_default_model(slow_primary_factory):
    from bg_removal.inference import SegmentationClient
    from bg_removal.pipeline import remove_background

    release, _ = slow_primary_factory
    client = SegmentationClient(InferenceConfig(device="cpu", timeout_s=0.2))
    raster = Raster(pixels=np.full((4, 6, 4), 255, dtype=np.uint8))

    async def _run():
        try:
            return await remove_background(raster, {"model": MODEL_SEGFORMER_B2}, client)
        finally:
            release.set()

    result = asyncio.run(_run())
    assert result.model == MODEL_SEGFORMER_B0
    assert (result.raster.alpha == 255).all()
