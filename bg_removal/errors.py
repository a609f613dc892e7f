from __future__ import annotations


class BackgroundRemovalError(RuntimeError):
    """Base class for every failure surfaced by the pipeline."""

    kind = "error"


class DecodeError(BackgroundRemovalError):
    """The input image could not be loaded."""

    kind = "decode"


class RenderTargetError(BackgroundRemovalError):
    """No drawing surface could be produced for a stage."""

    kind = "render_target"


class InferenceError(BackgroundRemovalError):
    """The segmentation mask is unavailable or malformed."""

    kind = "inference"


class EncodeError(BackgroundRemovalError):
    """The final image buffer could not be produced."""

    kind = "encode"
