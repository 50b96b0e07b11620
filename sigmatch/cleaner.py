# cleaner.py

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from sigmatch.commons import ImageInput, to_grayscale
from sigmatch.variables import (
    BLOCK_SIZE,
    BRIDGE_RADIUS,
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    CONTRAST_CONSTANTS,
    CROP_MARGIN,
    GLYPH_ASPECT_RANGE,
    GLYPH_MAX_HEIGHT,
    GLYPH_MAX_PIXELS,
    GLYPH_MAX_WIDTH,
    GLYPH_MIN_DENSITY,
    LINE_KERNEL_MIN,
    LINE_KERNEL_RATIO,
    MAX_BLOB_RATIO,
    MIN_BLOB_AREA,
    MIN_STROKE_AREA,
    NOISE_MIN_AREA,
)

logger = logging.getLogger(__name__)


@dataclass
class SignatureExtraction:
    mask: np.ndarray
    contrast: int
    blob_area: int

    @property
    def stroke_area(self) -> int:
        return int(np.count_nonzero(self.mask))


# --- BINARIZATION AND LINE REMOVAL ---


def inward_crop(gray: np.ndarray) -> Tuple[np.ndarray, Tuple[int, int]]:
    """Drop a thin border (cropping artifacts) and return the crop and its offset."""
    h, w = gray.shape[:2]
    mx = min(CROP_MARGIN, w // 4)
    my = min(CROP_MARGIN, h // 4)
    return gray[my : h - my, mx : w - mx], (mx, my)


def adaptive_threshold(gray: np.ndarray, c: float, block_size: int = BLOCK_SIZE) -> np.ndarray:
    """Mark pixels darker than their Gaussian-weighted local mean minus ``c``.

    Same weighting as OpenCV's ADAPTIVE_THRESH_GAUSSIAN_C, but the comparison
    is done in float so the mean is not rounded to a byte.
    """
    sigma = (block_size - 1) / 6.0
    src = gray.astype(np.float32)
    local_mean = cv2.GaussianBlur(
        src, (block_size, block_size), sigma, borderType=cv2.BORDER_REPLICATE
    )
    return np.where(src < local_mean - c, 255, 0).astype(np.uint8)


def remove_lines(mask: np.ndarray) -> np.ndarray:
    """Subtract long horizontal and vertical rules found by morphological opening."""
    h, w = mask.shape
    # odd sizes keep the kernel anchor centered
    kernel_w = max(LINE_KERNEL_MIN, int(LINE_KERNEL_RATIO * w)) | 1
    kernel_h = max(LINE_KERNEL_MIN, int(LINE_KERNEL_RATIO * h)) | 1

    for ksize in ((kernel_w, 1), (1, kernel_h)):
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, ksize)
        lines = cv2.morphologyEx(
            mask, cv2.MORPH_OPEN, kernel, borderType=cv2.BORDER_CONSTANT, borderValue=0
        )
        mask = cv2.subtract(mask, lines)
    return mask


# --- CONNECTED COMPONENTS ---


def label_components(mask: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Label 4-connected foreground components.

    Returns ``(labels, stats)`` as produced by ``cv2.connectedComponentsWithStats``:
    ``labels`` is int32 with 0 for background and ``stats[k]`` holds the
    bounding box and pixel count of label ``k`` (row 0 is the background).
    """
    binary = (mask > 0).astype(np.uint8)
    _, labels, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=4, ltype=cv2.CV_32S)
    return labels, stats


def _areas(stats: np.ndarray) -> np.ndarray:
    areas = stats[:, cv2.CC_STAT_AREA].copy()
    areas[0] = 0
    return areas


def remove_small_components(mask: np.ndarray, min_area: int = NOISE_MIN_AREA) -> np.ndarray:
    labels, stats = label_components(mask)
    keep = _areas(stats) >= min_area
    keep[0] = False
    return np.where(keep[labels], 255, 0).astype(np.uint8)


def largest_component(mask: np.ndarray) -> Tuple[Optional[np.ndarray], int]:
    """Boolean mask of the single largest component and its area."""
    labels, stats = label_components(mask)
    if len(stats) <= 1:
        return None, 0
    areas = _areas(stats)
    k = int(np.argmax(areas[1:])) + 1
    return labels == k, int(areas[k])


def remove_printed_glyphs(mask: np.ndarray) -> np.ndarray:
    """Blank out components shaped like typed characters.

    Typed glyphs are small, compact and dense; handwriting strokes are
    long or sparse and survive.
    """
    labels, stats = label_components(mask)
    bw = stats[:, cv2.CC_STAT_WIDTH]
    bh = stats[:, cv2.CC_STAT_HEIGHT]
    pixels = stats[:, cv2.CC_STAT_AREA]
    aspect = bw / np.maximum(1, bh)
    density = pixels / np.maximum(1, bw * bh)
    lo, hi = GLYPH_ASPECT_RANGE

    glyph = (
        (bh < GLYPH_MAX_HEIGHT)
        & (bw < GLYPH_MAX_WIDTH)
        & (aspect > lo)
        & (aspect < hi)
        & (density > GLYPH_MIN_DENSITY)
        & (pixels < GLYPH_MAX_PIXELS)
    )
    glyph[0] = False
    result = mask.copy()
    result[glyph[labels]] = 0
    return result


# --- INK STROKE EXTRACTION ---


def ink_candidates(gray: np.ndarray, c: float, filter_glyphs: bool = False) -> Tuple[np.ndarray, Tuple[int, int]]:
    """Threshold, strip rules and drop specks; every surviving component is kept.

    Returns the mask (in the coordinates of the inward crop) and the crop offset.
    """
    region, offset = inward_crop(gray)
    if region.size == 0:
        return np.zeros(region.shape, dtype=np.uint8), offset
    binary = adaptive_threshold(region, c)
    binary = remove_lines(binary)
    binary = remove_small_components(binary, NOISE_MIN_AREA)
    if filter_glyphs:
        binary = remove_printed_glyphs(binary)
    return binary, offset


def extract_ink(gray: np.ndarray, c: float, filter_glyphs: bool = False) -> Optional[Tuple[np.ndarray, int]]:
    """Single extraction attempt with contrast constant ``c``.

    Returns ``(mask, blob_area)`` or ``None`` when the sanity checks fail.
    """
    binary, _ = ink_candidates(gray, c, filter_glyphs)
    if not binary.any():
        return None

    size = 2 * BRIDGE_RADIUS + 1
    bridged = cv2.dilate(binary, np.ones((size, size), np.uint8))
    blob, area = largest_component(bridged)

    if blob is None or area < MIN_BLOB_AREA:
        logger.debug(f"C={c}: largest blob too small ({area}px)")
        return None
    if area > MAX_BLOB_RATIO * binary.size:
        logger.debug(f"C={c}: blob covers {area / binary.size:.0%} of the crop, background captured")
        return None

    strokes = blob & (binary > 0)
    stroke_area = int(np.count_nonzero(strokes))
    if stroke_area < MIN_STROKE_AREA:
        logger.debug(f"C={c}: only {stroke_area}px of stroke inside the blob")
        return None

    return np.where(strokes, 255, 0).astype(np.uint8), area


def extract_signature(
    image_input: ImageInput,
    contrast_constants: Sequence[float] = CONTRAST_CONSTANTS,
    filter_glyphs: bool = False,
) -> Optional[SignatureExtraction]:
    """Isolate the dominant ink blob, sweeping the contrast constants in order."""
    gray = to_grayscale(image_input)
    for c in contrast_constants:
        result = extract_ink(gray, c, filter_glyphs)
        if result is not None:
            mask, area = result
            logger.debug(f"Ink extracted with C={c}, blob area {area}px")
            return SignatureExtraction(mask=mask, contrast=c, blob_area=area)
    logger.warning(
        f"No signature detected in {gray.shape[1]}x{gray.shape[0]} region "
        f"after C={list(contrast_constants)}"
    )
    return None


# --- NORMALIZATION ---


def normalize_mask(
    mask: np.ndarray, size: Tuple[int, int] = (CANVAS_WIDTH, CANVAS_HEIGHT)
) -> Optional[np.ndarray]:
    """Crop to content, scale uniformly into ``size`` (width, height) and center.

    Returns ``None`` when the mask has no foreground.
    """
    target_w, target_h = size
    ys, xs = np.nonzero(mask)
    if ys.size == 0:
        logger.warning("No foreground pixels found for normalization.")
        return None

    box = mask[ys.min() : ys.max() + 1, xs.min() : xs.max() + 1]
    box_h, box_w = box.shape
    scale = min(target_h / box_h, target_w / box_w)

    new_w = min(target_w, max(1, int(round(box_w * scale))))
    new_h = min(target_h, max(1, int(round(box_h * scale))))
    resized = cv2.resize(
        np.where(box > 0, 255, 0).astype(np.uint8),
        (new_w, new_h),
        interpolation=cv2.INTER_NEAREST,
    )

    canvas = np.zeros((target_h, target_w), dtype=np.uint8)
    r_start = (target_h - new_h) // 2
    c_start = (target_w - new_w) // 2
    canvas[r_start : r_start + new_h, c_start : c_start + new_w] = resized
    return canvas


class SignatureCleaner:
    def __init__(
        self,
        canvas_size: Tuple[int, int] = (CANVAS_WIDTH, CANVAS_HEIGHT),
        contrast_constants: Sequence[float] = CONTRAST_CONSTANTS,
        filter_glyphs: bool = False,
    ):
        """
        Hold the extraction settings shared by every call.

        Args:
            canvas_size: normalized canvas as (width, height)
            contrast_constants: C values tried in order by the threshold sweep
            filter_glyphs: also drop components shaped like typed characters
        """
        self.canvas_size = tuple(canvas_size)
        self.contrast_constants = tuple(contrast_constants)
        self.filter_glyphs = filter_glyphs

    def extract(self, image_input: ImageInput) -> Optional[SignatureExtraction]:
        return extract_signature(image_input, self.contrast_constants, self.filter_glyphs)

    def normalize(self, mask: np.ndarray) -> Optional[np.ndarray]:
        return normalize_mask(mask, self.canvas_size)

    def clean_and_normalize(
        self, image_input: ImageInput
    ) -> Optional[Tuple[SignatureExtraction, np.ndarray]]:
        """
        Full pipeline: decode, extract the ink blob and normalize it onto the canvas.
        Returns ``(extraction, canvas)`` or ``None`` when no signature is found.
        """
        extraction = self.extract(image_input)
        if extraction is None:
            return None
        canvas = self.normalize(extraction.mask)
        if canvas is None:
            return None
        return extraction, canvas
