from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
import torch
from PIL import Image

from .codec import data_uri_to_pil
from .config import SUPPORTED_MODELS, InferenceConfig
from .errors import InferenceError
from .raster import Mask

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentationResult:
    label: str
    score: Optional[float]
    mask: Optional[Mask]


def _best_device(preferred: Optional[str] = None) -> torch.device:
    if preferred:
        return torch.device(preferred)
    if torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def _to_result(item: Any) -> SegmentationResult:
    """
    transformers image-segmentation outputs are dicts with label/score/mask,
    where mask is a PIL "L" image. Anything else yields a result without mask.
    """
    if not isinstance(item, dict):
        return SegmentationResult(label="", score=None, mask=None)
    raw = item.get("mask")
    mask: Optional[Mask] = None
    if isinstance(raw, Image.Image):
        mask = Mask.from_samples(np.array(raw.convert("L"), dtype=np.uint8))
    elif isinstance(raw, np.ndarray) and raw.ndim == 2:
        mask = Mask.from_samples(raw)
    score = item.get("score")
    return SegmentationResult(
        label=str(item.get("label", "")),
        score=float(score) if score is not None else None,
        mask=mask,
    )


class SegmentationClient:
    """
    Wraps a Hugging Face image-segmentation pipeline.

    All environment-dependent behavior comes from the InferenceConfig given
    at construction; nothing is read from module globals.
    """

    def __init__(self, config: Optional[InferenceConfig] = None):
        self.config = config or InferenceConfig()
        self.device = _best_device(self.config.device)
        self._pipelines: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._model_locks: Dict[str, threading.Lock] = {}

    def _check_model(self, model: str) -> None:
        if model in SUPPORTED_MODELS:
            return
        if not self.config.allow_local_models:
            raise InferenceError(f"Unsupported model: {model!r}")

    def is_loaded(self, model: str) -> bool:
        return model in self._pipelines

    def _model_lock(self, model: str) -> threading.Lock:
        with self._lock:
            return self._model_locks.setdefault(model, threading.Lock())

    def load(self, model: str):
        """
        Build (or reuse) the segmentation pipeline for `model`.

        Each model id has its own lock, so a slow load never blocks another model.
        """
        self._check_model(model)
        with self._model_lock(model):
            cached = self._pipelines.get(model)
            if cached is not None:
                return cached

            try:
                from transformers import pipeline as hf_pipeline
            except Exception as e:  # noqa: BLE001
                raise RuntimeError("transformers is not installed. Run: pip install transformers") from e

            logger.info("Loading segmentation model %s on %s", model, self.device)
            model_kwargs = {}
            if self.config.cache_dir:
                model_kwargs["cache_dir"] = self.config.cache_dir
            pipe = hf_pipeline(
                "image-segmentation",
                model=model,
                device=self.device,
                model_kwargs=model_kwargs,
            )
            self._pipelines[model] = pipe
            return pipe

    def segment(self, image: str, model: str) -> List[SegmentationResult]:
        """
        Run segmentation on a data-URI encoded image.
        """
        pipe = self.load(model)
        img = data_uri_to_pil(image).convert("RGB")
        with torch.inference_mode():
            outputs = pipe(img)
        if isinstance(outputs, dict):
            outputs = [outputs]
        results = [_to_result(o) for o in (outputs or [])]
        logger.debug("Model %s returned %d segment(s)", model, len(results))
        return results
