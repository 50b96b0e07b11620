import base64
import logging
import math
from dataclasses import dataclass
from typing import Iterable, NamedTuple, Optional, Tuple

import cv2
import numpy as np

from sigmatch.commons import ImageInput, Rect, clamp_rect, crop, to_grayscale
from sigmatch.variables import (
    ABSOLUTE_CONFIDENCE,
    ANCHOR_GAP,
    ANCHOR_PATCH_SIZE,
    COARSE_MIN_NCC,
    COARSE_TARGET,
    FINAL_MIN_NCC,
    FRACTIONAL_CONFIDENCE,
    NCC_TRUST,
    REFINE_MIN_RADIUS,
)

logger = logging.getLogger(__name__)

Fraction = Tuple[float, float, float, float]


class PatchMatch(NamedTuple):
    x: int
    y: int
    confidence: float


class PageMatch(NamedTuple):
    page: int
    confidence: float


@dataclass
class AnchorMatch:
    x: int
    y: int
    confidence: float
    method: str

    def to_dict(self):
        return {"x": self.x, "y": self.y, "confidence": self.confidence, "method": self.method}


@dataclass
class VisualAnchor:
    patch: np.ndarray
    patch_rect: Rect
    offset: Tuple[int, int]
    patch_fraction: Optional[Fraction] = None
    mask_fraction: Optional[Fraction] = None
    mask_size: Optional[Tuple[int, int]] = None

    def mask_rect(self, match: AnchorMatch) -> Optional[Rect]:
        """Mask rectangle at a resolved position, when the mask size is known."""
        if self.mask_size is None:
            return None
        return Rect(match.x, match.y, *self.mask_size)

    def to_dict(self):
        ok, buf = cv2.imencode(".png", self.patch)
        if not ok:
            raise ValueError("Image encoding failed")
        return {
            "patch_png": base64.b64encode(buf.tobytes()).decode("ascii"),
            "patch_rect": self.patch_rect.to_dict(),
            "offset": {"dx": self.offset[0], "dy": self.offset[1]},
            "patch_fraction": list(self.patch_fraction) if self.patch_fraction else None,
            "mask_fraction": list(self.mask_fraction) if self.mask_fraction else None,
            "mask_size": list(self.mask_size) if self.mask_size else None,
        }

    @classmethod
    def from_dict(cls, data) -> "VisualAnchor":
        patch = to_grayscale(base64.b64decode(data["patch_png"]))
        offset = data["offset"]
        return cls(
            patch=patch,
            patch_rect=Rect.from_any(data["patch_rect"]),
            offset=(int(offset["dx"]), int(offset["dy"])),
            patch_fraction=tuple(data["patch_fraction"]) if data.get("patch_fraction") else None,
            mask_fraction=tuple(data["mask_fraction"]) if data.get("mask_fraction") else None,
            mask_size=tuple(data["mask_size"]) if data.get("mask_size") else None,
        )


# --- NORMALIZED CROSS-CORRELATION ---


def _stats(values: np.ndarray) -> Tuple[float, float]:
    mean = float(values.mean())
    std = math.sqrt(max(0.0, float((values * values).mean()) - mean * mean))
    return mean, std


def ncc_at(page: np.ndarray, patch: np.ndarray, patch_mean: float, patch_std: float, x: int, y: int) -> Optional[float]:
    """Zero-normalized cross-correlation of ``patch`` against the page window at (x, y).

    ``page`` and ``patch`` are float64. Returns ``None`` for flat windows
    (std < 1) where the correlation is undefined.
    """
    ph, pw = patch.shape
    window = page[y : y + ph, x : x + pw]
    n = window.size
    mean_v, std_v = _stats(window)
    if std_v < 1:
        return None
    cross = float((window * patch).sum())
    return (cross - n * mean_v * patch_mean) / (n * std_v * patch_std)


def _scan(page, patch, patch_mean, patch_std, xs, ys, best=None):
    """Keep the highest NCC over every (x, y) in ``xs`` x ``ys``; ``best`` seeds the search."""
    for y in ys:
        for x in xs:
            score = ncc_at(page, patch, patch_mean, patch_std, x, y)
            if score is not None and (best is None or score > best.confidence):
                best = PatchMatch(x, y, score)
    return best


def _window(center: int, radius: int, limit: int, step: int):
    return range(max(0, center - radius), min(limit, center + radius) + 1, step)


def find_patch(page: np.ndarray, patch: np.ndarray) -> Optional[PatchMatch]:
    """Locate ``patch`` on ``page`` (both grayscale) with a coarse-to-fine NCC search.

    1. coarse: both images subsampled so the page is about 600px, patch stepped
       a quarter of its size at a time;
    2. refine: full resolution around the coarse hit, step 1/12 of the patch;
    3. fine: every pixel within one refine step of the refined hit.

    Returns ``None`` for featureless patches or when the correlation is too weak.
    """
    page_h, page_w = page.shape
    ph, pw = patch.shape
    if ph > page_h or pw > page_w:
        logger.debug(f"Patch {pw}x{ph} larger than page {page_w}x{page_h}")
        return None

    page_f = page.astype(np.float64)
    patch_f = patch.astype(np.float64)
    patch_mean, patch_std = _stats(patch_f)
    if patch_std < 1:
        logger.debug("Anchor patch is featureless, skipping search")
        return None

    factor = max(1, max(page_w, page_h) // COARSE_TARGET)
    small_page = page_f[::factor, ::factor]
    small_patch = patch_f[::factor, ::factor]
    sph, spw = small_patch.shape
    small_mean, small_std = _stats(small_patch)
    if small_std < 1:
        return None

    coarse_step = max(1, min(spw, sph) // 4)
    coarse = _scan(
        small_page,
        small_patch,
        small_mean,
        small_std,
        range(0, small_page.shape[1] - spw + 1, coarse_step),
        range(0, small_page.shape[0] - sph + 1, coarse_step),
    )
    if coarse is None or coarse.confidence < COARSE_MIN_NCC:
        logger.debug(f"Coarse search too weak: {coarse.confidence if coarse else None}")
        return None

    max_x = page_w - pw
    max_y = page_h - ph
    cx = min(coarse.x * factor, max_x)
    cy = min(coarse.y * factor, max_y)
    seed_score = ncc_at(page_f, patch_f, patch_mean, patch_std, cx, cy)
    seed = PatchMatch(cx, cy, seed_score) if seed_score is not None else None

    refine_radius = max(coarse_step * factor, REFINE_MIN_RADIUS)
    refine_step = max(1, min(pw, ph) // 12)
    refined = _scan(
        page_f,
        patch_f,
        patch_mean,
        patch_std,
        _window(cx, refine_radius, max_x, refine_step),
        _window(cy, refine_radius, max_y, refine_step),
        best=seed,
    )
    if refined is None:
        return None

    final = _scan(
        page_f,
        patch_f,
        patch_mean,
        patch_std,
        _window(refined.x, refine_step, max_x, 1),
        _window(refined.y, refine_step, max_y, 1),
        best=refined,
    )
    logger.debug(
        f"Patch search: coarse {coarse.confidence:.3f} (x{factor}), "
        f"refined {refined.confidence:.3f}, final {final.confidence:.3f} at ({final.x}, {final.y})"
    )
    if final.confidence < FINAL_MIN_NCC:
        return None
    return final


# --- ANCHOR CAPTURE ---


def _overlaps(x: int, y: int, w: int, h: int, rect: Rect) -> bool:
    overlap_x = min(x + w, rect.x + rect.width) - max(x, rect.x)
    overlap_y = min(y + h, rect.y + rect.height) - max(y, rect.y)
    return overlap_x > 0 and overlap_y > 0


def select_anchor_patch(page: ImageInput, mask_rect) -> Optional[Rect]:
    """Pick a textured patch near the mask that does not overlap it.

    Candidates sit beside the mask, in the page corners and on the page
    edges. Patches with contrast and edges score higher, and closer ones are
    preferred. Returns ``None`` on pages too small to hold a patch.
    """
    gray = to_grayscale(page)
    ch, cw = gray.shape
    if cw < 40 or ch < 40:
        return None
    mask = Rect.from_any(mask_rect)

    pw = min(ANCHOR_PATCH_SIZE, int(cw * 0.25))
    ph = min(ANCHOR_PATCH_SIZE, int(ch * 0.25))
    mask_cx = mask.x + mask.width / 2
    mask_cy = mask.y + mask.height / 2
    max_dist = math.hypot(cw, ch)

    offsets = [
        (mask.x - pw - ANCHOR_GAP, mask.y),
        (mask.x + mask.width + ANCHOR_GAP, mask.y),
        (mask.x, mask.y - ph - ANCHOR_GAP),
        (mask.x, mask.y + mask.height + ANCHOR_GAP),
        (ANCHOR_GAP, ANCHOR_GAP),
        (cw - pw - ANCHOR_GAP, ANCHOR_GAP),
        (ANCHOR_GAP, ch - ph - ANCHOR_GAP),
        (cw - pw - ANCHOR_GAP, ch - ph - ANCHOR_GAP),
        (cw // 2 - pw // 2, ANCHOR_GAP),
        (ANCHOR_GAP, ch // 2 - ph // 2),
    ]

    best = None
    first_free = None
    for ox, oy in offsets:
        px = max(0, min(cw - pw, int(round(ox))))
        py = max(0, min(ch - ph, int(round(oy))))
        if _overlaps(px, py, pw, ph, mask):
            continue
        if first_free is None:
            first_free = (px, py)

        window = gray[py : py + ph, px : px + pw].astype(np.int32)
        variance = float(window.var())
        gx = window[1:-1, 2:] - window[1:-1, :-2]
        gy = window[2:, 1:-1] - window[:-2, 1:-1]
        edge_density = np.count_nonzero(np.abs(gx) + np.abs(gy) > 40) / window.size

        dist = math.hypot(px + pw / 2 - mask_cx, py + ph / 2 - mask_cy)
        proximity = 1 - (dist / max_dist) * 0.3
        score = (variance * 0.4 + edge_density * 15000 * 0.6) * proximity

        if variance > 100 and edge_density > 0.02 and (best is None or score > best[0]):
            best = (score, px, py)

    if best is not None:
        return Rect(best[1], best[2], pw, ph)
    if first_free is not None:
        logger.info("No textured anchor candidate, using the first free position")
        return Rect(first_free[0], first_free[1], pw, ph)
    return None


def capture_anchor(page: ImageInput, anchor_rect, mask_rect) -> VisualAnchor:
    """Record a patch and the geometry needed to find ``mask_rect`` again.

    ``anchor_rect`` may be ``None`` to let :func:`select_anchor_patch` choose.
    """
    gray = to_grayscale(page)
    height, width = gray.shape
    mask = Rect.from_any(mask_rect)

    if anchor_rect is None:
        patch_rect = select_anchor_patch(gray, mask)
        if patch_rect is None:
            raise ValueError(f"Page {width}x{height} is too small to hold an anchor patch")
    else:
        requested = Rect.from_any(anchor_rect)
        patch_rect = clamp_rect(
            requested.x, requested.y, requested.x + requested.width, requested.y + requested.height, width, height
        )
        if patch_rect.width == 0 or patch_rect.height == 0:
            raise ValueError(f"Anchor rectangle {tuple(requested)} lies outside the page")

    return VisualAnchor(
        patch=crop(gray, patch_rect).copy(),
        patch_rect=patch_rect,
        offset=(mask.x - patch_rect.x, mask.y - patch_rect.y),
        patch_fraction=(
            patch_rect.x / width,
            patch_rect.y / height,
            patch_rect.width / width,
            patch_rect.height / height,
        ),
        mask_fraction=(mask.x / width, mask.y / height, mask.width / width, mask.height / height),
        mask_size=(mask.width, mask.height),
    )


# --- ANCHOR RESOLUTION ---


def resolve_anchor(page: ImageInput, anchor: VisualAnchor) -> AnchorMatch:
    """Where the anchored mask sits on ``page``.

    A confident patch match wins; otherwise the stored page fractions are
    used, and as a last resort the original absolute position.
    """
    gray = to_grayscale(page)
    height, width = gray.shape
    dx, dy = anchor.offset

    found = find_patch(gray, anchor.patch)
    if found is not None and found.confidence >= NCC_TRUST:
        return AnchorMatch(found.x + dx, found.y + dy, float(found.confidence), "ncc")

    if anchor.mask_fraction is not None:
        fx, fy = anchor.mask_fraction[:2]
        logger.info(
            f"Anchor match weak ({found.confidence if found else 'none'}), "
            "falling back to fractional position"
        )
        return AnchorMatch(int(round(width * fx)), int(round(height * fy)), FRACTIONAL_CONFIDENCE, "fractional")

    logger.warning("Anchor not found and no fractional position stored, using absolute position")
    return AnchorMatch(anchor.patch_rect.x + dx, anchor.patch_rect.y + dy, ABSOLUTE_CONFIDENCE, "absolute")


def find_page_by_anchor(pages: Iterable[ImageInput], anchor: VisualAnchor) -> Optional[PageMatch]:
    """Best matching page (numbered from 1) for ``anchor``; pages may be a lazy iterable."""
    best = None
    for number, page in enumerate(pages, start=1):
        found = find_patch(to_grayscale(page), anchor.patch)
        if found is not None and (best is None or found.confidence > best.confidence):
            best = PageMatch(number, float(found.confidence))
    if best is None or best.confidence < FINAL_MIN_NCC:
        return None
    return best
