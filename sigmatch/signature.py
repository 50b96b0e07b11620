# signature.py

import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from sigmatch.anchor import AnchorMatch, VisualAnchor, capture_anchor, resolve_anchor
from sigmatch.cleaner import SignatureCleaner, SignatureExtraction
from sigmatch.commons import ImageInput, Rect, encode_mask_png
from sigmatch.detection import DetectionStrategy, SignatureDetector
from sigmatch.variables import CANVAS_HEIGHT, CANVAS_WIDTH, DEFAULT_MODE, LOG_LEVEL, MAX_WORKERS
from sigmatch.verification import ComparisonMode, score_canvases

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

__all__ = [
    "ComparisonResult",
    "SignatureVerifier",
    "compare_signatures",
    "detect_region",
    "capture_anchor",
    "resolve_anchor",
    "AnchorMatch",
    "VisualAnchor",
]


@dataclass
class ComparisonResult:
    score: float
    mode: str
    determined: bool
    metrics: Dict[str, float] = field(default_factory=dict)
    # extracted ink (non-normalized) for the report layer
    extraction1: Optional[SignatureExtraction] = None
    extraction2: Optional[SignatureExtraction] = None

    def ink_png(self) -> Tuple[Optional[bytes], Optional[bytes]]:
        """PNG bytes of both extracted signatures, dark ink on white."""
        return tuple(
            encode_mask_png(e.mask) if e is not None else None
            for e in (self.extraction1, self.extraction2)
        )

    def to_dict(self):
        return {
            "score": round(self.score, 1),
            "mode": self.mode,
            "determined": self.determined,
            "metrics": {k: round(v, 2) for k, v in self.metrics.items()},
        }


class SignatureVerifier:
    def __init__(
        self,
        mode: Union[str, ComparisonMode] = DEFAULT_MODE,
        canvas_size: Tuple[int, int] = (CANVAS_WIDTH, CANVAS_HEIGHT),
        filter_glyphs: bool = False,
    ):
        self.mode = ComparisonMode.parse(mode)
        self.cleaner = SignatureCleaner(canvas_size=canvas_size, filter_glyphs=filter_glyphs)

    def extract_signature(self, image: ImageInput) -> Optional[SignatureExtraction]:
        return self.cleaner.extract(image)

    def _preprocess(self, image: ImageInput, label: str):
        start = time.time()
        prepared = self.cleaner.clean_and_normalize(image)
        logger.info(f"    ├─ preprocess {label}: {time.time() - start:.3f}s")
        return prepared

    def compare_two_signatures(
        self,
        image1: ImageInput,
        image2: ImageInput,
        mode: Union[str, ComparisonMode, None] = None,
    ) -> ComparisonResult:
        """
        Compare two signature crops.

        Args:
            image1: first crop (path, bytes, PIL image or numpy array)
            image2: second crop
            mode: lenient, strict or super_lenient; defaults to the verifier's mode

        Returns:
            ComparisonResult. When either crop yields no signature the score
            is 0 and ``determined`` is False.
        """
        mode = ComparisonMode.parse(mode) if mode is not None else self.mode
        overall_start = time.time()

        prepared1 = self._preprocess(image1, "image 1")
        prepared2 = self._preprocess(image2, "image 2")

        if prepared1 is None or prepared2 is None:
            missing = [n for n, p in (("image 1", prepared1), ("image 2", prepared2)) if p is None]
            logger.warning(f"No signature found in {', '.join(missing)}; score is undetermined")
            return ComparisonResult(
                score=0.0,
                mode=mode.value,
                determined=False,
                extraction1=prepared1[0] if prepared1 else None,
                extraction2=prepared2[0] if prepared2 else None,
            )

        extraction1, canvas1 = prepared1
        extraction2, canvas2 = prepared2

        score_start = time.time()
        score, metrics = score_canvases(canvas1, canvas2, mode)
        logger.info(f"    └─ scoring: {time.time() - score_start:.3f}s")
        logger.info(f"Comparison ({mode.value}) score {score:.2f} in {time.time() - overall_start:.3f}s")

        return ComparisonResult(
            score=score,
            mode=mode.value,
            determined=True,
            metrics=metrics,
            extraction1=extraction1,
            extraction2=extraction2,
        )

    def compare_many(
        self,
        pairs: Sequence[Tuple[ImageInput, ImageInput]],
        mode: Union[str, ComparisonMode, None] = None,
        max_workers: int = MAX_WORKERS,
    ) -> List[ComparisonResult]:
        """Compare independent pairs in parallel; results keep the input order."""
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(lambda pair: self.compare_two_signatures(*pair, mode=mode), pairs))


def compare_signatures(
    image1: ImageInput, image2: ImageInput, mode: Union[str, ComparisonMode] = DEFAULT_MODE
) -> float:
    """Similarity score in [0, 100]; 0 when either crop holds no signature."""
    return SignatureVerifier(mode).compare_two_signatures(image1, image2).score


def detect_region(
    page: ImageInput,
    sub_region=None,
    strategy: Union[str, DetectionStrategy] = DetectionStrategy.PAGE,
    filter_glyphs: bool = False,
) -> Rect:
    return SignatureDetector(strategy, filter_glyphs=filter_glyphs).detect(page, sub_region)
