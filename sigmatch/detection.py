import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from sigmatch.cleaner import ink_candidates
from sigmatch.commons import ImageInput, Rect, clamp_rect, crop, load_pixels, to_brightness, to_grayscale
from sigmatch.variables import (
    CONTRAST_CONSTANTS,
    FALLBACK_REGION,
    FILTERED_PADDING,
    PAGE_DARK_THRESHOLD,
    PAGE_MARGIN,
    PAGE_PAD_RATIO,
    REGION_DARK_THRESHOLD,
    REGION_MARGIN,
)

logger = logging.getLogger(__name__)

RectLike = Union[Rect, tuple, dict]


class DetectionStrategy(str, Enum):
    PAGE = "page"
    REGION = "region"
    FILTERED = "filtered"


def _round(value: float) -> int:
    # half-up, so 2.5 px of padding becomes 3 rather than 2
    return int(np.floor(value + 0.5))


def _dark_bbox(brightness: np.ndarray, threshold: float):
    ys, xs = np.nonzero(brightness < threshold)
    if ys.size == 0:
        return None
    return int(xs.min()), int(ys.min()), int(xs.max()), int(ys.max())


def default_search_region(width: int, height: int) -> Rect:
    """Full-width band from half the page height, 40% of the page tall."""
    return Rect(0, _round(height * 0.5), width, _round(height * 0.4))


def _resolve_region(sub_region: Optional[RectLike], width: int, height: int) -> Tuple[Rect, Rect]:
    """The requested search rectangle and its part inside the page."""
    requested = default_search_region(width, height) if sub_region is None else Rect.from_any(sub_region)
    clipped = clamp_rect(
        requested.x, requested.y, requested.x + requested.width, requested.y + requested.height, width, height
    )
    if clipped.width == 0 or clipped.height == 0:
        raise ValueError(f"Search region {tuple(requested)} lies outside the {width}x{height} page")
    return requested, clipped


def _padded_box(min_x, min_y, max_x, max_y, pad_x, pad_y, width, height) -> Rect:
    # extents are measured as max - min, and the size is limited to what is left of the page
    x = max(0, min_x - pad_x)
    y = max(0, min_y - pad_y)
    return Rect(x, y, min(width - x, max_x - min_x + 2 * pad_x), min(height - y, max_y - min_y + 2 * pad_y))


def detect_whole_page(page: ImageInput) -> Rect:
    """Bounding box of every dark pixel on the page, with proportional padding.

    Falls back to the conventional bottom signature zone when the page is blank.
    """
    brightness = to_brightness(page)
    height, width = brightness.shape
    bbox = _dark_bbox(brightness, PAGE_DARK_THRESHOLD)

    if bbox is None:
        fx, fy, fw, fh = FALLBACK_REGION
        logger.info("No dark pixels on page, using the default signature zone")
        return Rect(_round(width * fx), _round(height * fy), _round(width * fw), _round(height * fh))

    min_x, min_y, max_x, max_y = bbox
    pad_x = max(PAGE_MARGIN, _round((max_x - min_x) * PAGE_PAD_RATIO))
    pad_y = max(PAGE_MARGIN, _round((max_y - min_y) * PAGE_PAD_RATIO))
    return _padded_box(min_x, min_y, max_x, max_y, pad_x, pad_y, width, height)


def detect_in_region(page: ImageInput, sub_region: Optional[RectLike] = None) -> Rect:
    """Same scan as :func:`detect_whole_page`, restricted to ``sub_region``.

    Returns ``sub_region`` unchanged when it holds no dark pixels.
    """
    brightness = to_brightness(page)
    height, width = brightness.shape
    requested, region = _resolve_region(sub_region, width, height)

    bbox = _dark_bbox(crop(brightness, region), REGION_DARK_THRESHOLD)
    if bbox is None:
        return requested

    min_x, min_y, max_x, max_y = bbox
    return _padded_box(
        region.x + min_x,
        region.y + min_y,
        region.x + max_x,
        region.y + max_y,
        REGION_MARGIN,
        REGION_MARGIN,
        width,
        height,
    )


def detect_filtered(
    page: ImageInput, sub_region: Optional[RectLike] = None, filter_glyphs: bool = False
) -> Rect:
    """Ink-stroke based detection inside ``sub_region``.

    Runs thresholding, rule removal and speck pruning (no single-blob
    restriction) and pads the box around whatever ink survives.
    """
    gray = to_grayscale(page)
    height, width = gray.shape
    requested, region = _resolve_region(sub_region, width, height)
    region_gray = crop(gray, region)

    for c in CONTRAST_CONSTANTS:
        binary, (off_x, off_y) = ink_candidates(region_gray, c, filter_glyphs)
        ys, xs = np.nonzero(binary)
        if ys.size:
            break
    else:
        logger.info(f"No ink strokes inside region {tuple(requested)}")
        return requested

    pad = FILTERED_PADDING
    x0 = region.x + off_x + int(xs.min())
    y0 = region.y + off_y + int(ys.min())
    x1 = region.x + off_x + int(xs.max()) + 1
    y1 = region.y + off_y + int(ys.max()) + 1
    return clamp_rect(x0 - pad, y0 - pad, x1 + pad, y1 + pad, width, height)


class SignatureDetector:
    def __init__(self, strategy: Union[str, DetectionStrategy] = DetectionStrategy.PAGE, filter_glyphs: bool = False):
        try:
            self.strategy = DetectionStrategy(strategy)
        except ValueError:
            raise ValueError(
                f"Unknown detection strategy {strategy!r}, expected one of "
                f"{[s.value for s in DetectionStrategy]}"
            ) from None
        self.filter_glyphs = filter_glyphs

    def detect(self, page: ImageInput, sub_region: Optional[RectLike] = None) -> Rect:
        """Detect the signature bounding box on ``page``.

        Args:
            page: page raster (path, bytes, PIL image or numpy array)
            sub_region: search rectangle for the region strategies; ignored by ``page``

        Returns:
            Rect in source pixel coordinates
        """
        pixels = load_pixels(page)
        if self.strategy is DetectionStrategy.PAGE:
            rect = detect_whole_page(pixels)
        elif self.strategy is DetectionStrategy.REGION:
            rect = detect_in_region(pixels, sub_region)
        else:
            rect = detect_filtered(pixels, sub_region, self.filter_glyphs)
        logger.debug(f"{self.strategy.value} detection -> {tuple(rect)}")
        return rect

    def process_batch(self, pages: List[ImageInput]) -> Dict[int, Rect]:
        """Detect on each page; pages that fail to decode are logged and skipped."""
        results = {}
        for idx, page in enumerate(pages):
            try:
                results[idx] = self.detect(page)
            except ValueError as e:
                logger.error(f"Error processing page at index {idx}: {e}")
        return results
