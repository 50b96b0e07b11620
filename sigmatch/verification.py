import logging
from enum import Enum
from typing import Dict, Tuple, Union

import cv2
import numpy as np
from scipy.stats import pearsonr

from sigmatch.variables import ENABLE_PRINT, GRID_COLUMNS, GRID_ROWS, MODE_WEIGHTS

logger = logging.getLogger(__name__)


def c_print(*args, **kwargs):
    if ENABLE_PRINT:
        print(*args, **kwargs)


class ComparisonMode(str, Enum):
    LENIENT = "lenient"
    STRICT = "strict"
    # exposed by the product surface; scored exactly like lenient
    SUPER_LENIENT = "super_lenient"

    @classmethod
    def parse(cls, mode: Union[str, "ComparisonMode"]) -> "ComparisonMode":
        try:
            return cls(mode)
        except ValueError:
            raise ValueError(
                f"Unknown comparison mode {mode!r}, expected one of {[m.value for m in cls]}"
            ) from None

    @property
    def scoring_key(self) -> str:
        if self is ComparisonMode.SUPER_LENIENT:
            return ComparisonMode.LENIENT.value
        return self.value


# --- MORPHOLOGICAL OPERATIONS ---


def thin_signature(binary_mask: np.ndarray) -> np.ndarray:
    """Zhang-Suen thinning of a binary mask down to 1px wide curves.

    Neighbours are numbered clockwise from north: P2 (N), P3 (NE), P4 (E),
    P5 (SE), P6 (S), P7 (SW), P8 (W), P9 (NW). Pixels outside the mask count
    as background.
    """
    img = np.pad((binary_mask > 0).astype(np.uint8), 1)

    while True:
        changed = False
        for step in (0, 1):
            p2 = img[:-2, 1:-1]
            p3 = img[:-2, 2:]
            p4 = img[1:-1, 2:]
            p5 = img[2:, 2:]
            p6 = img[2:, 1:-1]
            p7 = img[2:, :-2]
            p8 = img[1:-1, :-2]
            p9 = img[:-2, :-2]
            center = img[1:-1, 1:-1]

            ring = [p2, p3, p4, p5, p6, p7, p8, p9, p2]
            b = sum(p.astype(np.int16) for p in ring[:-1])
            a = sum(((ring[i] == 0) & (ring[i + 1] == 1)).astype(np.int16) for i in range(8))

            if step == 0:
                c1 = (p2 & p4 & p6) == 0
                c2 = (p4 & p6 & p8) == 0
            else:
                c1 = (p2 & p4 & p8) == 0
                c2 = (p2 & p6 & p8) == 0

            remove = (center == 1) & (b >= 2) & (b <= 6) & (a == 1) & c1 & c2
            if remove.any():
                center[remove] = 0
                changed = True
        if not changed:
            break

    return img[1:-1, 1:-1] * np.uint8(255)


def dilate_mask(mask: np.ndarray, radius: int = 1) -> np.ndarray:
    size = 2 * radius + 1
    return cv2.dilate(mask, np.ones((size, size), np.uint8))


# --- METRICS ---


def _correlation_percent(a: np.ndarray, b: np.ndarray) -> float:
    """Pearson correlation mapped to [0, 100]; negative correlation counts as 0."""
    if np.std(a) == 0 or np.std(b) == 0:
        # undefined correlation: only an exact copy counts as a match
        return 100.0 if np.array_equal(a, b) else 0.0
    r, _ = pearsonr(a, b)
    if np.isnan(r):
        return 0.0
    return float(min(1.0, max(0.0, r)) * 100.0)


def curve_profile(skeleton: np.ndarray) -> np.ndarray:
    """Mean row index of foreground per column; empty columns get the canvas height."""
    h, _ = skeleton.shape
    fg = skeleton > 0
    counts = fg.sum(axis=0)
    rows = np.arange(h, dtype=np.float64)[:, None]
    sums = (fg * rows).sum(axis=0)
    return np.where(counts > 0, sums / np.maximum(counts, 1), float(h))


def curve_correlation(skeleton1: np.ndarray, skeleton2: np.ndarray) -> float:
    return _correlation_percent(curve_profile(skeleton1), curve_profile(skeleton2))


def grid_density(canvas: np.ndarray, columns: int = GRID_COLUMNS, rows: int = GRID_ROWS) -> np.ndarray:
    """Ink fill ratio of each cell in a ``columns`` x ``rows`` grid, row-major."""
    h, w = canvas.shape
    fg = canvas > 0
    x_edges = (np.arange(columns + 1) * w) // columns
    y_edges = (np.arange(rows + 1) * h) // rows
    cells = []
    for r in range(rows):
        for c in range(columns):
            cell = fg[y_edges[r] : y_edges[r + 1], x_edges[c] : x_edges[c + 1]]
            cells.append(cell.mean() if cell.size else 0.0)
    return np.array(cells, dtype=np.float64)


def grid_correlation(canvas1: np.ndarray, canvas2: np.ndarray) -> float:
    return _correlation_percent(grid_density(canvas1), grid_density(canvas2))


def pixel_iou(mask1: np.ndarray, mask2: np.ndarray) -> float:
    a = mask1 > 0
    b = mask2 > 0
    union = np.count_nonzero(a | b)
    if union == 0:
        return 0.0
    return float(np.count_nonzero(a & b) / union * 100.0)


# --- SCORING ---


def combine_metrics(grid: float, iou: float, curve: float, mode: Union[str, ComparisonMode]) -> float:
    """Weighted sum of the three metrics, boosted per mode and clamped to [0, 100]."""
    mode = ComparisonMode.parse(mode)
    (w_grid, w_iou, w_curve), boost, _ = MODE_WEIGHTS[mode.scoring_key]
    raw = w_grid * grid + w_iou * iou + w_curve * curve
    return float(max(0.0, min(100.0, raw * boost)))


def score_canvases(
    canvas1: np.ndarray, canvas2: np.ndarray, mode: Union[str, ComparisonMode] = ComparisonMode.LENIENT
) -> Tuple[float, Dict[str, float]]:
    """Score two normalized canvases of equal size.

    Returns the final score and the individual metrics.
    """
    if canvas1.shape != canvas2.shape:
        raise ValueError(f"Canvas shapes differ: {canvas1.shape} vs {canvas2.shape}")
    mode = ComparisonMode.parse(mode)
    _, _, dilate = MODE_WEIGHTS[mode.scoring_key]

    skeleton1 = thin_signature(canvas1)
    skeleton2 = thin_signature(canvas2)

    curve = curve_correlation(skeleton1, skeleton2)
    grid = grid_correlation(canvas1, canvas2)
    if dilate:
        iou = pixel_iou(dilate_mask(skeleton1), dilate_mask(skeleton2))
    else:
        iou = pixel_iou(skeleton1, skeleton2)

    score = combine_metrics(grid, iou, curve, mode)
    metrics = {"curve": curve, "grid": grid, "iou": iou}

    c_print(f"🔍 {mode.value}: curve={curve:.2f} grid={grid:.2f} iou={iou:.2f} -> {score:.2f}")
    logger.debug(f"Metrics {metrics} -> score {score:.2f} ({mode.value})")
    return score, metrics
