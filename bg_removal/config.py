"""
Centralized configuration for the background removal compositor.

Ground rules:
- Pure constants live at module level.
- Anything environment-dependent is carried by an explicit InferenceConfig
  handed to the inference client at construction time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Working-size bound for the resizer (longest side).
MAX_DIMENSION = 1024

# Mask enhancer constants.
EDGE_DIFF_THRESHOLD = 0.3
EDGE_PUSH_SCALE = 0.5
CLEANUP_DIFF_THRESHOLD = 0.5
CLEANUP_MIN_NEIGHBORS = 6

# Point-influence field.
POINT_RADIUS = 5
POINT_NEUTRAL_VALUE = 0.5

TRANSPARENT = "transparent"

# Segmentation models. The b0 variant is the known-good fallback.
MODEL_SEGFORMER_B0 = "nvidia/segformer-b0-finetuned-ade-512-512"
MODEL_SEGFORMER_B2 = "nvidia/segformer-b2-finetuned-ade-512-512"
SUPPORTED_MODELS = (MODEL_SEGFORMER_B0, MODEL_SEGFORMER_B2)
FALLBACK_MODEL = MODEL_SEGFORMER_B0

# Encoding.
JPEG_DEFAULT_QUALITY = 0.9
JPEG_FLATTEN_COLOR = (255, 255, 255)

# Progress milestones (percent).
PROGRESS_RESIZED = 20
PROGRESS_MODEL_LOADED = 40
PROGRESS_INFERENCE_DONE = 60
PROGRESS_MASK_GENERATED = 70
PROGRESS_COMPOSITED = 80
PROGRESS_DONE = 100


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


@dataclass(frozen=True)
class InferenceConfig:
    """Runtime settings for the segmentation client."""

    allow_local_models: bool = False
    cache_dir: Optional[str] = None
    device: Optional[str] = None
    timeout_s: Optional[float] = None
    fallback_model: str = FALLBACK_MODEL

    @classmethod
    def from_env(cls) -> "InferenceConfig":
        """
        Build from BG_REMOVAL_* environment variables (a local .env is honored).
        """
        load_dotenv()
        return cls(
            allow_local_models=_env_bool("BG_REMOVAL_ALLOW_LOCAL_MODELS", False),
            cache_dir=os.getenv("BG_REMOVAL_CACHE_DIR") or None,
            device=os.getenv("BG_REMOVAL_DEVICE") or None,
            timeout_s=_env_float("BG_REMOVAL_TIMEOUT_S"),
            fallback_model=os.getenv("BG_REMOVAL_FALLBACK_MODEL", FALLBACK_MODEL),
        )
