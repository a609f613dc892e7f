from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple, Union

from .codec import decode_image, encode_image, load_image, raster_to_data_uri, save_image
from .composite import composite
from .config import (
    MAX_DIMENSION,
    PROGRESS_COMPOSITED,
    PROGRESS_DONE,
    PROGRESS_INFERENCE_DONE,
    PROGRESS_MASK_GENERATED,
    PROGRESS_MODEL_LOADED,
    PROGRESS_RESIZED,
)
from .contracts import DEFAULT_SETTINGS, Point, RemovalSettings
from .errors import BackgroundRemovalError, InferenceError
from .inference import SegmentationClient, SegmentationResult
from .influence import apply_point_hints, build_point_mask
from .postprocess import enhance_mask
from .preprocess import ResizeMeta, resize_to_max_dimension
from .raster import Mask, Raster

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Any]
SettingsLike = Union[RemovalSettings, Mapping[str, Any]]


@dataclass(frozen=True)
class StageTimings:
    preprocess_s: float
    inference_s: float
    postprocess_s: float
    composite_s: float
    total_s: float


@dataclass(frozen=True)
class RemovalResult:
    raster: Raster
    mask: Mask
    resize: ResizeMeta
    model: Optional[str]
    timings: StageTimings


class _Progress:
    """
    Best-effort, monotonic progress reporting. Callback failures are logged
    and never abort the run.
    """

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self._last = 0

    def __call__(self, percent: int) -> None:
        percent = max(int(percent), self._last)
        self._last = percent
        if self._callback is None:
            return
        try:
            self._callback(percent)
        except Exception:  # noqa: BLE001 - progress is advisory
            logger.exception("Progress callback raised at %d%%; continuing", percent)


def _coerce_settings(settings: Optional[SettingsLike]) -> RemovalSettings:
    if settings is None:
        return DEFAULT_SETTINGS
    if isinstance(settings, RemovalSettings):
        return settings
    return RemovalSettings.model_validate(dict(settings))


def _extract_mask(results: List[SegmentationResult]) -> Mask:
    """
    The first result carries the mask; anything else is a malformed response.
    """
    if not results:
        raise InferenceError("Segmentation failed: model returned no results")
    first = results[0]
    if first.mask is None:
        raise InferenceError("Segmentation failed: result has no mask")
    return first.mask


async def _segment_once(
    client: SegmentationClient,
    image_uri: str,
    model: str,
    progress: _Progress,
) -> Mask:
    await asyncio.to_thread(client.load, model)
    progress(PROGRESS_MODEL_LOADED)
    results = await asyncio.to_thread(client.segment, image_uri, model)
    return _extract_mask(results)


async def _with_timeout(coro, timeout_s: Optional[float], model: str):
    if timeout_s is None:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise InferenceError(f"Segmentation with {model} timed out after {timeout_s:.1f}s") from e


async def run_inference(
    client: SegmentationClient,
    image_uri: str,
    model: str,
    progress: Optional[_Progress] = None,
) -> Tuple[Mask, str]:
    """
    Segment `image_uri` with `model`. A failing non-fallback model is retried
    exactly once with the client's fallback model.

    Returns (mask, model_actually_used).
    """
    progress = progress or _Progress(None)
    timeout_s = client.config.timeout_s
    fallback = client.config.fallback_model
    try:
        mask = await _with_timeout(_segment_once(client, image_uri, model, progress), timeout_s, model)
        return mask, model
    except Exception as e:  # noqa: BLE001 - any model failure triggers the fallback
        if model == fallback:
            if isinstance(e, BackgroundRemovalError):
                raise
            raise InferenceError(f"Segmentation with {model} failed: {e}") from e
        logger.warning("Segmentation with %s failed (%s); falling back to %s", model, e, fallback)

    try:
        mask = await _with_timeout(_segment_once(client, image_uri, fallback, progress), timeout_s, fallback)
    except BackgroundRemovalError:
        raise
    except Exception as e:  # noqa: BLE001
        raise InferenceError(f"Segmentation with fallback {fallback} failed: {e}") from e
    return mask, fallback


async def _remove_background(
    raster: Raster,
    settings: RemovalSettings,
    client: Optional[SegmentationClient],
    points: Optional[Iterable[Point]],
    use_inference: bool,
    max_dimension: int,
    progress: _Progress,
) -> RemovalResult:
    t0 = time.perf_counter()

    # Preprocess
    t_pre0 = time.perf_counter()
    working, meta = resize_to_max_dimension(raster, max_dimension)
    progress(PROGRESS_RESIZED)
    t_pre1 = time.perf_counter()

    # Inference (or hints only)
    t_inf0 = time.perf_counter()
    hints = list(points or [])
    used_model: Optional[str] = None
    if use_inference:
        if client is None:
            raise ValueError("A segmentation client is required when use_inference=True")
        image_uri = await asyncio.to_thread(raster_to_data_uri, working)
        mask, used_model = await run_inference(client, image_uri, settings.model, progress)
        progress(PROGRESS_INFERENCE_DONE)
        if hints:
            mask = apply_point_hints(mask, hints, raster_size=(working.width, working.height))
    else:
        mask = build_point_mask(working.width, working.height, hints)
    t_inf1 = time.perf_counter()

    # Post-process
    t_post0 = time.perf_counter()
    enhanced = enhance_mask(mask, settings)
    progress(PROGRESS_MASK_GENERATED)
    t_post1 = time.perf_counter()

    # Composite
    t_comp0 = time.perf_counter()
    out = composite(working, enhanced, settings)
    progress(PROGRESS_COMPOSITED)
    t_comp1 = time.perf_counter()

    t1 = time.perf_counter()
    return RemovalResult(
        raster=out,
        mask=enhanced,
        resize=meta,
        model=used_model,
        timings=StageTimings(
            preprocess_s=t_pre1 - t_pre0,
            inference_s=t_inf1 - t_inf0,
            postprocess_s=t_post1 - t_post0,
            composite_s=t_comp1 - t_comp0,
            total_s=t1 - t0,
        ),
    )


async def remove_background(
    raster: Raster,
    settings: Optional[SettingsLike] = None,
    client: Optional[SegmentationClient] = None,
    *,
    points: Optional[Iterable[Point]] = None,
    use_inference: bool = True,
    max_dimension: int = MAX_DIMENSION,
    progress: Optional[ProgressCallback] = None,
) -> RemovalResult:
    """
    Linear pipeline on an already decoded raster:
      1) Resize to the working size
      2) Inference (with one fallback) and/or point hints
      3) Mask enhancement
      4) Composite

    Every call owns its buffers; concurrent calls do not share state.
    """
    report = _Progress(progress)
    result = await _remove_background(
        raster,
        _coerce_settings(settings),
        client,
        points,
        use_inference,
        max_dimension,
        report,
    )
    report(PROGRESS_DONE)
    return result


async def remove_background_bytes(
    data: bytes,
    settings: Optional[SettingsLike] = None,
    client: Optional[SegmentationClient] = None,
    *,
    fmt: str = "png",
    quality: Optional[float] = None,
    points: Optional[Iterable[Point]] = None,
    use_inference: bool = True,
    max_dimension: int = MAX_DIMENSION,
    progress: Optional[ProgressCallback] = None,
) -> bytes:
    """
    Decode -> remove background -> encode. Fails fast on the first error.
    """
    report = _Progress(progress)
    raster = await asyncio.to_thread(decode_image, data)
    result = await _remove_background(
        raster,
        _coerce_settings(settings),
        client,
        points,
        use_inference,
        max_dimension,
        report,
    )
    encoded = await asyncio.to_thread(encode_image, result.raster, fmt, quality)
    report(PROGRESS_DONE)
    return encoded


def process_image(
    image_path: str,
    out_path: str,
    client: Optional[SegmentationClient],
    settings: Optional[SettingsLike] = None,
    *,
    fmt: str = "png",
    quality: Optional[float] = None,
    points: Optional[Iterable[Point]] = None,
    use_inference: bool = True,
) -> StageTimings:
    """
    Synchronous convenience wrapper: load a file, process it, save the result.
    """
    raster = load_image(image_path)
    result = asyncio.run(
        remove_background(
            raster,
            settings,
            client,
            points=points,
            use_inference=use_inference,
        )
    )
    save_image(result.raster, out_path, fmt=fmt, quality=quality)
    logger.info(
        "%s: total=%.3fs (pre=%.3fs inf=%.3fs post=%.3fs comp=%.3fs)",
        image_path,
        result.timings.total_s,
        result.timings.preprocess_s,
        result.timings.inference_s,
        result.timings.postprocess_s,
        result.timings.composite_s,
    )
    return result.timings
