"""Command line interface for sigmatch."""

import argparse
import json
import sys
from typing import Iterable, Optional

from sigmatch.anchor import capture_anchor, resolve_anchor
from sigmatch.detection import DetectionStrategy
from sigmatch.errors import ImageDecodeError
from sigmatch.signature import SignatureVerifier, detect_region
from sigmatch.verification import ComparisonMode


def _parse_rect(value: str):
    try:
        x, y, w, h = (int(v) for v in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected x,y,width,height, got {value!r}") from None
    return (x, y, w, h)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sigmatch",
        description="Compare handwritten signatures and locate signature regions on pages.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    compare = sub.add_parser("compare", help="Score the similarity of two signature crops")
    compare.add_argument("image1", help="Path to the reference signature crop")
    compare.add_argument("image2", help="Path to the signature crop to verify")
    compare.add_argument(
        "--mode",
        default=ComparisonMode.LENIENT.value,
        choices=[m.value for m in ComparisonMode],
        help="Scoring mode",
    )
    compare.add_argument("--glyph-filter", action="store_true", help="Drop typed-character blobs")

    detect = sub.add_parser("detect", help="Find the signature bounding box on a page")
    detect.add_argument("page", help="Path to the page image")
    detect.add_argument(
        "--strategy",
        default=DetectionStrategy.PAGE.value,
        choices=[s.value for s in DetectionStrategy],
    )
    detect.add_argument("--region", type=_parse_rect, help="Search rectangle x,y,width,height")

    locate = sub.add_parser("locate", help="Relocate a mask from a reference page onto a new page")
    locate.add_argument("reference", help="Path to the reference page image")
    locate.add_argument("page", help="Path to the new page image")
    locate.add_argument("--mask", type=_parse_rect, required=True, help="Mask x,y,width,height on the reference")
    locate.add_argument("--anchor", type=_parse_rect, help="Anchor patch x,y,width,height (auto when omitted)")
    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "compare":
            verifier = SignatureVerifier(args.mode, filter_glyphs=args.glyph_filter)
            output = verifier.compare_two_signatures(args.image1, args.image2).to_dict()
        elif args.command == "detect":
            output = detect_region(args.page, args.region, args.strategy).to_dict()
        else:
            anchor = capture_anchor(args.reference, args.anchor, args.mask)
            output = resolve_anchor(args.page, anchor).to_dict()
    except ImageDecodeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
