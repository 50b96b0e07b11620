"""Ink-stroke signature comparison, signature region detection and anchor relocation."""

from sigmatch.anchor import AnchorMatch, VisualAnchor, capture_anchor, find_page_by_anchor, resolve_anchor
from sigmatch.commons import Rect
from sigmatch.errors import ImageDecodeError
from sigmatch.signature import ComparisonResult, SignatureVerifier, compare_signatures, detect_region
from sigmatch.verification import ComparisonMode

__all__ = [
    "compare_signatures",
    "detect_region",
    "capture_anchor",
    "resolve_anchor",
    "find_page_by_anchor",
    "AnchorMatch",
    "VisualAnchor",
    "ComparisonMode",
    "ComparisonResult",
    "SignatureVerifier",
    "ImageDecodeError",
    "Rect",
]

__version__ = "0.1.0"
