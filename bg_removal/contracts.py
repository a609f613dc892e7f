from __future__ import annotations

from typing import Literal

from PIL import ImageColor
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import MODEL_SEGFORMER_B2, SUPPORTED_MODELS, TRANSPARENT


class RemovalSettings(BaseModel):
    """
    User-tunable knobs. Passed by value into each processing call.

    preserve_details / remove_shades / finetune_mode are reserved and not read
    by the compositor.

    model must be one of SUPPORTED_MODELS. Local model ids are only reachable
    by calling SegmentationClient directly with allow_local_models set.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, protected_namespaces=())

    model: str = MODEL_SEGFORMER_B2
    threshold: float = Field(default=0.35, ge=0.05, le=0.95)
    softness: float = Field(default=0.3, ge=0.0, le=1.0)
    edge_enhancement: float = Field(default=0.4, ge=0.0, le=1.0, alias="edgeEnhancement")
    cleanup: bool = True
    background_color: str = Field(default=TRANSPARENT, alias="backgroundColor")
    preserve_details: bool = Field(default=True, alias="preserveDetails")
    remove_shades: bool = Field(default=True, alias="removeShades")
    finetune_mode: bool = Field(default=False, alias="finetuneMode")

    @field_validator("model")
    @classmethod
    def _check_model(cls, v: str) -> str:
        if v not in SUPPORTED_MODELS:
            raise ValueError(f"Unsupported model: {v!r}; expected one of {SUPPORTED_MODELS}")
        return v

    @field_validator("background_color")
    @classmethod
    def _check_color(cls, v: str) -> str:
        v = v.strip()
        if v.lower() == TRANSPARENT:
            return TRANSPARENT
        try:
            ImageColor.getrgb(v)
        except ValueError as e:
            raise ValueError(f"Unrecognized background color: {v!r}") from e
        return v

    @property
    def is_transparent(self) -> bool:
        return self.background_color == TRANSPARENT


class Point(BaseModel):
    """A foreground/background hint in working-raster pixel coordinates."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    type: Literal["foreground", "background"]

    @property
    def target(self) -> float:
        return 1.0 if self.type == "foreground" else 0.0


DEFAULT_SETTINGS = RemovalSettings()
